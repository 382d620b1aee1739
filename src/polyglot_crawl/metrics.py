from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any


@dataclass
class MetricsRecorder:
    """Advisory timing and coverage numbers; nothing reads them for control."""

    pages: list[dict[str, Any]] = field(default_factory=list)

    def record_page(
        self,
        target_page_id: str,
        *,
        duration_s: float,
        units: int,
        languages: list[str],
    ) -> None:
        self.pages.append(
            {
                "target_page_id": target_page_id,
                "outcome": "captured",
                "duration_s": round(duration_s, 3),
                "units": units,
                "languages": sorted(languages),
            }
        )

    def record_failure(self, target_page_id: str, *, duration_s: float) -> None:
        self.pages.append(
            {
                "target_page_id": target_page_id,
                "outcome": "failed",
                "duration_s": round(duration_s, 3),
                "units": 0,
                "languages": [],
            }
        )

    def summary(self) -> dict[str, Any]:
        durations = [float(p["duration_s"]) for p in self.pages]
        captured = [p for p in self.pages if p["outcome"] == "captured"]
        coverage: Counter[str] = Counter()
        for p in captured:
            coverage.update(p["languages"])

        total = sum(durations)
        return {
            "pages_timed": len(self.pages),
            "total_duration_s": round(total, 3),
            "mean_duration_s": round(total / len(durations), 3) if durations else 0.0,
            "max_duration_s": max(durations) if durations else 0.0,
            "units_total": sum(int(p["units"]) for p in captured),
            # pages each language variant family appeared on
            "language_coverage": dict(sorted(coverage.items())),
        }

    def to_dict(self) -> dict[str, Any]:
        return {"pages": [dict(p) for p in self.pages]}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MetricsRecorder:
        return cls(pages=[dict(p) for p in (data or {}).get("pages") or []])
