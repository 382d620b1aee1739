from __future__ import annotations

import json
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .errors import CheckpointError, SessionCorruptError
from .models import PageResult, Session

logger = logging.getLogger(__name__)


def _safe_key(key: str) -> str:
    cleaned = "".join(ch if ch.isalnum() or ch in "-_." else "-" for ch in key)
    return cleaned.strip(".-") or "default"


@dataclass
class SessionStore:
    """File-backed session store keyed by source name.

    Layout per key::

        <state_dir>/<key>/session.json    current Session (atomic replace)
        <state_dir>/<key>/results.jsonl   one PageResult per line
        <state_dir>/<key>/stop.requested  present while a stop is pending
    """

    state_dir: Path
    write_attempts: int = 3
    write_backoff_s: float = 0.2
    sleep: Callable[[float], None] = time.sleep
    _appended: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def key_dir(self, key: str) -> Path:
        return self.state_dir / _safe_key(key)

    def _session_path(self, key: str) -> Path:
        return self.key_dir(key) / "session.json"

    def _results_path(self, key: str) -> Path:
        return self.key_dir(key) / "results.jsonl"

    def _stop_path(self, key: str) -> Path:
        return self.key_dir(key) / "stop.requested"

    def _with_write_retries(self, what: str, write: Callable[[], None]) -> None:
        last_error: OSError | None = None
        for attempt in range(1, self.write_attempts + 1):
            try:
                write()
                return
            except OSError as e:
                last_error = e
                logger.warning(
                    "Writing %s failed (attempt %d/%d): %s",
                    what,
                    attempt,
                    self.write_attempts,
                    e,
                )
                if attempt < self.write_attempts:
                    self.sleep(self.write_backoff_s * attempt)
        raise CheckpointError(f"Could not write {what}: {last_error}")

    def get(self, key: str) -> Session | None:
        path = self._session_path(key)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SessionCorruptError(f"Unreadable session file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise SessionCorruptError(f"Session file {path} is not an object")
        return Session.from_dict(raw)

    def set(self, key: str, session: Session) -> None:
        path = self._session_path(key)
        payload = json.dumps(session.to_dict(), indent=2, ensure_ascii=False)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".tmp")
            tmp.write_text(payload, encoding="utf-8", newline="\n")
            os.replace(tmp, path)

        self._with_write_retries(f"session {key!r}", _write)

    def append_unit(self, key: str, result: PageResult) -> int:
        """Append one page result; returns how many lines the results file holds."""

        path = self._results_path(key)
        line = json.dumps(result.to_dict(), ensure_ascii=False) + "\n"

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8", newline="\n") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())

        self._with_write_retries(f"result for {result.target_page_id!r}", _write)
        if key not in self._appended:
            self._appended[key] = self._count_lines(path)
        else:
            self._appended[key] += 1
        return self._appended[key]

    @staticmethod
    def _count_lines(path: Path) -> int:
        with path.open("r", encoding="utf-8") as f:
            return sum(1 for line in f if line.strip())

    def load_results(self, key: str) -> list[PageResult]:
        """Stored results in capture order, one per target page.

        A page re-extracted after a crash between append and checkpoint shows
        up twice in the file; the later line wins.
        """

        path = self._results_path(key)
        if not path.exists():
            return []
        by_id: dict[str, PageResult] = {}
        with path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    result = PageResult.from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                    logger.warning("Skipping unreadable result line in %s", path)
                    continue
                by_id.pop(result.target_page_id, None)
                by_id[result.target_page_id] = result
        return list(by_id.values())

    def clear(self, key: str) -> None:
        self._appended.pop(key, None)
        key_dir = self.key_dir(key)
        if key_dir.exists():
            shutil.rmtree(key_dir)

    def request_stop(self, key: str) -> None:
        path = self._stop_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("stop\n", encoding="utf-8")

    def stop_requested(self, key: str) -> bool:
        return self._stop_path(key).exists()

    def clear_stop(self, key: str) -> None:
        path = self._stop_path(key)
        if path.exists():
            path.unlink()
