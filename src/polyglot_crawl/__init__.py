"""polyglot-crawl core library.

This package crawls paginated parallel-text sources into aligned,
multilingual units, keeping every bit of crawl progress in a durable session
so that any process start can pick the traversal back up.

Repo rules:
- A page transition always ends the current controller; the next step only
  happens through the resume bootstrapper.
- The session is written before navigation, never after.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
