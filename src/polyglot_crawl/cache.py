from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .http_client import load_json


@dataclass(frozen=True)
class LoadedPage:
    """The page the crawler is currently "on".

    ``error`` is set when the last navigation did not produce a usable body;
    the page still counts as loaded at ``url``, like a browser error page.
    """

    url: str
    final_url: str
    status_code: int
    html: str
    loaded_at: str
    error: str | None = None

    @property
    def complete(self) -> bool:
        return (
            self.error is None
            and 200 <= self.status_code < 400
            and bool(self.html.strip())
        )

    def meta(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "final_url": self.final_url,
            "status_code": self.status_code,
            "loaded_at": self.loaded_at,
            "error": self.error,
        }


@dataclass(frozen=True)
class CacheEntry:
    cache_dir: Path
    meta_path: Path


def cache_paths(cache_dir: Path, *, key: str) -> CacheEntry:
    cache_dir.mkdir(parents=True, exist_ok=True)
    return CacheEntry(cache_dir=cache_dir, meta_path=cache_dir / f"{key}.json")


def read_page(entry: CacheEntry) -> LoadedPage | None:
    meta = load_json(entry.meta_path)
    if meta is None or not meta.get("url") or not meta.get("body"):
        return None
    try:
        html = (entry.cache_dir / str(meta["body"])).read_text(
            encoding="utf-8", errors="replace"
        )
    except OSError:
        return None
    return LoadedPage(
        url=str(meta["url"]),
        final_url=str(meta.get("final_url") or meta["url"]),
        status_code=int(meta.get("status_code") or 0),
        html=html,
        loaded_at=str(meta.get("loaded_at") or ""),
        error=meta.get("error"),
    )


def write_page(entry: CacheEntry, page: LoadedPage) -> None:
    # Content-addressed body, then an atomic meta swap naming it; a crash in
    # between leaves the previous page fully intact.
    body_name = hashlib.sha256(page.html.encode("utf-8")).hexdigest()[:16] + ".html"
    body_path = entry.cache_dir / body_name
    if not body_path.exists():
        body_path.write_text(page.html, encoding="utf-8", newline="\n")

    meta = page.meta()
    meta["body"] = body_name
    tmp = entry.meta_path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(meta, indent=2, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, entry.meta_path)

    for stale in entry.cache_dir.glob("*.html"):
        if stale.name != body_name:
            stale.unlink()
