from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def utc_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@dataclass
class EventLog:
    """Append-only JSONL event stream (``events.jsonl``) plus a JSON summary."""

    out_dir: Path
    name: str = "events"

    def __post_init__(self) -> None:
        self.jsonl_path = self.out_dir / f"{self.name}.jsonl"

    def append(self, event: dict[str, Any]) -> None:
        event = dict(event)
        event.setdefault("at", utc_iso())
        self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
        with self.jsonl_path.open("a", encoding="utf-8", newline="\n") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")

    def read(self) -> list[dict[str, Any]]:
        if not self.jsonl_path.exists():
            return []
        events: list[dict[str, Any]] = []
        with self.jsonl_path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return events


@dataclass(frozen=True)
class IntegrityVerdict:
    passed: bool
    expected: int
    captured: int
    failed: int
    skipped: int
    warnings: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "expected": self.expected,
            "captured": self.captured,
            "failed": self.failed,
            "skipped": self.skipped,
            "warnings": self.warnings,
        }


@dataclass
class IntegrityManifest:
    """Expected/captured/failed/skipped bookkeeping for one crawl.

    Lists only grow, counters only go up, ``expected_count`` is set once.
    """

    expected_count: int = 0
    captured_count: int = 0
    failed: list[dict[str, str]] = field(default_factory=list)
    skipped: list[dict[str, str]] = field(default_factory=list)
    warnings: list[dict[str, str]] = field(default_factory=list)
    started_at: str | None = None
    ended_at: str | None = None

    @classmethod
    def begin(cls, expected_count: int) -> IntegrityManifest:
        return cls(expected_count=expected_count, started_at=utc_iso())

    @property
    def resolved_count(self) -> int:
        return self.captured_count + len(self.failed) + len(self.skipped)

    def _check_room(self) -> None:
        if self.resolved_count >= self.expected_count:
            raise ValueError(
                "manifest already accounts for all "
                f"{self.expected_count} expected targets"
            )

    def record_capture(self) -> None:
        self._check_room()
        self.captured_count += 1

    def record_failure(self, target_page_id: str, name: str, error: str) -> None:
        self._check_room()
        self.failed.append(
            {"target_page_id": target_page_id, "name": name, "error": error}
        )

    def record_skip(self, target_page_id: str, name: str, reason: str) -> None:
        self._check_room()
        self.skipped.append(
            {"target_page_id": target_page_id, "name": name, "reason": reason}
        )

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append({"time": utc_iso(), "message": message})

    def finish(self) -> None:
        if self.ended_at is None:
            self.ended_at = utc_iso()

    def verdict(self) -> IntegrityVerdict:
        return IntegrityVerdict(
            passed=(
                self.captured_count == self.expected_count and not self.failed
            ),
            expected=self.expected_count,
            captured=self.captured_count,
            failed=len(self.failed),
            skipped=len(self.skipped),
            warnings=len(self.warnings),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "expected_count": self.expected_count,
            "captured_count": self.captured_count,
            "failed": [dict(f) for f in self.failed],
            "skipped": [dict(s) for s in self.skipped],
            "warnings": [dict(w) for w in self.warnings],
            "started_at": self.started_at,
            "ended_at": self.ended_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IntegrityManifest:
        return cls(
            expected_count=int(data.get("expected_count") or 0),
            captured_count=int(data.get("captured_count") or 0),
            failed=[dict(f) for f in data.get("failed") or []],
            skipped=[dict(s) for s in data.get("skipped") or []],
            warnings=[dict(w) for w in data.get("warnings") or []],
            started_at=data.get("started_at"),
            ended_at=data.get("ended_at"),
        )
