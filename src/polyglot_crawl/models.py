from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import SessionCorruptError
from .manifest import IntegrityManifest, utc_iso
from .metrics import MetricsRecorder


@dataclass(frozen=True)
class TargetPage:
    id: str
    url: str
    display_name: str
    group_label: str
    ordinal: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "display_name": self.display_name,
            "group_label": self.group_label,
            "ordinal": self.ordinal,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TargetPage:
        return cls(
            id=str(data["id"]),
            url=str(data["url"]),
            display_name=str(data.get("display_name") or f"Section {data['id']}"),
            group_label=str(data.get("group_label") or "Unknown"),
            ordinal=int(data.get("ordinal") or 0),
        )


@dataclass(frozen=True)
class VariantText:
    text: str
    source_reference: str = ""


@dataclass(frozen=True)
class ExtractedUnit:
    unit_id: str
    index: int
    variants: dict[str, VariantText]

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "index": self.index,
            "variants": {
                key: {"text": v.text, "source_reference": v.source_reference}
                for key, v in self.variants.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractedUnit:
        return cls(
            unit_id=str(data["unit_id"]),
            index=int(data["index"]),
            variants={
                key: VariantText(
                    text=str(v.get("text") or ""),
                    source_reference=str(v.get("source_reference") or ""),
                )
                for key, v in (data.get("variants") or {}).items()
            },
        )


@dataclass(frozen=True)
class PageResult:
    target_page_id: str
    section_name: str
    source_url: str
    units: list[ExtractedUnit]
    languages_observed: frozenset[str]
    extracted_at: str = field(default_factory=utc_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_page_id": self.target_page_id,
            "section_name": self.section_name,
            "source_url": self.source_url,
            "units": [u.to_dict() for u in self.units],
            "languages_observed": sorted(self.languages_observed),
            "extracted_at": self.extracted_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PageResult:
        return cls(
            target_page_id=str(data["target_page_id"]),
            section_name=str(data.get("section_name") or ""),
            source_url=str(data.get("source_url") or ""),
            units=[ExtractedUnit.from_dict(u) for u in data.get("units") or []],
            languages_observed=frozenset(data.get("languages_observed") or []),
            extracted_at=str(data.get("extracted_at") or ""),
        )


@dataclass
class Session:
    """Everything that outlives one controller step.

    ``target_pages`` is fixed for the crawl; ``current_index`` only moves
    forward.
    """

    is_active: bool
    target_pages: list[TargetPage]
    current_index: int
    started_at: str
    manifest: IntegrityManifest
    metadata: dict[str, Any] = field(default_factory=dict)
    metrics: MetricsRecorder = field(default_factory=MetricsRecorder)
    navigation_attempts: int = 0

    @classmethod
    def begin(
        cls, target_pages: list[TargetPage], *, metadata: dict[str, Any]
    ) -> Session:
        manifest = IntegrityManifest.begin(len(target_pages))
        return cls(
            is_active=True,
            target_pages=list(target_pages),
            current_index=0,
            started_at=manifest.started_at or utc_iso(),
            manifest=manifest,
            metadata=dict(metadata),
        )

    @property
    def expected_count(self) -> int:
        return self.manifest.expected_count

    @property
    def finished(self) -> bool:
        return self.current_index >= self.expected_count

    def current_target(self) -> TargetPage | None:
        if self.finished:
            return None
        return self.target_pages[self.current_index]

    def advance_past(self, index: int) -> None:
        if index + 1 <= self.current_index:
            raise ValueError(
                f"cannot move current_index back from {self.current_index} "
                f"to {index + 1}"
            )
        self.current_index = index + 1
        self.navigation_attempts = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_active": self.is_active,
            "target_pages": [t.to_dict() for t in self.target_pages],
            "current_index": self.current_index,
            "started_at": self.started_at,
            "manifest": self.manifest.to_dict(),
            "metadata": dict(self.metadata),
            "metrics": self.metrics.to_dict(),
            "navigation_attempts": self.navigation_attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        try:
            session = cls(
                is_active=bool(data.get("is_active")),
                target_pages=[
                    TargetPage.from_dict(t) for t in data.get("target_pages") or []
                ],
                current_index=int(data.get("current_index") or 0),
                started_at=str(data.get("started_at") or ""),
                manifest=IntegrityManifest.from_dict(data.get("manifest") or {}),
                metadata=dict(data.get("metadata") or {}),
                metrics=MetricsRecorder.from_dict(data.get("metrics")),
                navigation_attempts=int(data.get("navigation_attempts") or 0),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise SessionCorruptError(f"Unreadable session: {e}") from e

        if session.target_pages and session.expected_count != len(
            session.target_pages
        ):
            raise SessionCorruptError(
                f"Session expects {session.expected_count} targets but lists "
                f"{len(session.target_pages)}"
            )
        return session
