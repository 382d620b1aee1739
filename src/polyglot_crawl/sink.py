from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from .errors import HandoffError
from .manifest import IntegrityVerdict, utc_iso
from .models import PageResult, Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandoffResult:
    success: bool
    sections_count: int
    units_count: int
    paths: dict[str, str]

    def counts_summary(self) -> dict[str, int]:
        return {"sections": self.sections_count, "units": self.units_count}


class Sink(Protocol):
    def deliver(
        self,
        *,
        session: Session,
        results: list[PageResult],
        verdict: IntegrityVerdict,
        metrics: dict[str, Any],
    ) -> HandoffResult: ...


def _ordered(session: Session, results: list[PageResult]) -> list[PageResult]:
    order = {t.id: t.ordinal for t in session.target_pages}
    known = [r for r in results if r.target_page_id in order]
    return sorted(known, key=lambda r: order[r.target_page_id])


@dataclass
class JsonFileSink:
    """Packages a crawl as one JSON document plus a manifest, under ``out_dir``.

    The document layout is what the polyglot merge tooling reads:
    ``metadata.source == "polyglotta"`` and one chapter per section with its
    aligned units under ``polyglot_content``.
    """

    out_dir: Path
    source: str = "polyglotta"

    def build_document(
        self,
        *,
        session: Session,
        results: list[PageResult],
        verdict: IntegrityVerdict,
    ) -> dict[str, Any]:
        targets = {t.id: t for t in session.target_pages}
        chapters: list[dict[str, Any]] = []
        for number, result in enumerate(_ordered(session, results), start=1):
            target = targets[result.target_page_id]
            chapters.append(
                {
                    "chapter_number": number,
                    "stable_id": f"{self.source}-{result.target_page_id}",
                    "title": result.section_name or target.display_name,
                    "group_label": target.group_label,
                    "source_url": result.source_url,
                    "extracted_at": result.extracted_at,
                    "languages": sorted(result.languages_observed),
                    "polyglot_content": [
                        {
                            "id": unit.unit_id,
                            "index": unit.index,
                            "versions": {
                                key: {
                                    "text": v.text,
                                    "reference": v.source_reference,
                                }
                                for key, v in unit.variants.items()
                            },
                        }
                        for unit in result.units
                    ],
                }
            )

        return {
            "metadata": {
                "source": self.source,
                "scrape_date": utc_iso(),
                "text": dict(session.metadata),
                "total_sections": len(chapters),
                "total_paragraphs": sum(
                    len(ch["polyglot_content"]) for ch in chapters
                ),
                "session_started_at": session.started_at,
                "integrity": verdict.to_dict(),
            },
            "chapters": chapters,
        }

    def deliver(
        self,
        *,
        session: Session,
        results: list[PageResult],
        verdict: IntegrityVerdict,
        metrics: dict[str, Any],
    ) -> HandoffResult:
        document = self.build_document(
            session=session, results=results, verdict=verdict
        )
        sections = document["metadata"]["total_sections"]
        units = document["metadata"]["total_paragraphs"]
        stamp = time.strftime("%Y%m%dT%H%M%SZ", time.gmtime())
        doc_path = self.out_dir / f"{self.source}_{sections}sections_{stamp}.json"
        manifest_path = self.out_dir / "manifest.json"

        summary = {
            "generated_at": utc_iso(),
            "document": doc_path.name,
            "verdict": verdict.to_dict(),
            "manifest": session.manifest.to_dict(),
            "metrics": metrics,
        }
        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
            doc_path.write_text(
                json.dumps(document, indent=2, ensure_ascii=False) + "\n",
                encoding="utf-8",
                newline="\n",
            )
            manifest_path.write_text(
                json.dumps(summary, indent=2, ensure_ascii=False) + "\n",
                encoding="utf-8",
                newline="\n",
            )
        except OSError as e:
            raise HandoffError(f"Could not write package to {self.out_dir}: {e}") from e

        logger.info("Wrote %d sections / %d units to %s", sections, units, doc_path)
        return HandoffResult(
            success=True,
            sections_count=sections,
            units_count=units,
            paths={"document": str(doc_path), "manifest": str(manifest_path)},
        )
