from __future__ import annotations

from dataclasses import dataclass

from .models import PageResult

NEAR_EMPTY_CHARS = 3


@dataclass(frozen=True)
class ValidationReport:
    valid: bool
    issues: tuple[str, ...]


def _near_empty(variants: dict) -> bool:
    return all(len(v.text) < NEAR_EMPTY_CHARS for v in variants.values())


def validate(
    result: PageResult,
    *,
    min_languages: int = 2,
    max_empty_fraction: float = 0.0,
) -> ValidationReport:
    """Completeness heuristics for one extracted page.

    Issues are advisory: they end up as manifest warnings and never reject
    the result.
    """

    issues: list[str] = []

    if not result.units:
        issues.append("No units extracted")

    languages = sorted(result.languages_observed)
    if len(languages) < min_languages:
        issues.append(
            f"Only {len(languages)} language(s) found: {', '.join(languages)}"
        )

    if result.units:
        empty = sum(1 for u in result.units if _near_empty(u.variants))
        if empty and empty / len(result.units) > max_empty_fraction:
            issues.append(f"{empty} unit(s) appear empty")

    return ValidationReport(valid=not issues, issues=tuple(issues))
