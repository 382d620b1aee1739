from __future__ import annotations

from typing import Protocol

from .cache import LoadedPage
from .models import PageResult


class Extractor(Protocol):
    """Turns the materialized page into a ``PageResult``.

    Must be idempotent: an unchanged page yields the same units every time.
    Raises ``ExtractionError`` (or anything else) on structural failure; the
    controller retries whatever is raised.
    """

    def __call__(self, page: LoadedPage) -> PageResult: ...
