from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol, TypeVar

from .cache import LoadedPage
from .models import TargetPage

logger = logging.getLogger(__name__)

N = TypeVar("N")


class NavigationSource(Protocol):
    """What the controller needs to know about a source's page tree."""

    name: str

    def expand(self) -> int: ...

    def enumerate_targets(self) -> list[TargetPage]: ...

    def resolve_target_id(self, page: LoadedPage) -> str | None: ...

    def describe(self) -> dict[str, Any]: ...


@dataclass(frozen=True)
class TargetCandidate:
    id: str
    url: str
    display_name: str
    group_label: str = "Unknown"


def expand_tree(
    find_collapsed: Callable[[], list[N]],
    reveal: Callable[[N], bool],
    *,
    max_iterations: int = 20,
    reveal_wait_s: float = 0.5,
    settle_s: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Reveal collapsed nodes until none are left or the iteration cap hits.

    ``find_collapsed`` must stop reporting a node once ``reveal`` has been
    called on it, whether or not the reveal worked.
    """

    revealed = 0
    iterations = 0
    while iterations < max_iterations:
        pending = find_collapsed()
        if not pending:
            break
        for node in pending:
            if reveal(node):
                revealed += 1
            sleep(reveal_wait_s)
        iterations += 1
        sleep(settle_s)

    if iterations >= max_iterations and find_collapsed():
        logger.warning(
            "Stopped expanding after %d iterations with nodes still collapsed",
            max_iterations,
        )
    logger.info("Expanded %d navigation nodes", revealed)
    return revealed


def _id_sort_key(target_id: str) -> tuple[int, int, str]:
    if target_id.isdigit():
        return (0, int(target_id), target_id)
    return (1, 0, target_id)


def collect_targets(candidates: Iterable[TargetCandidate]) -> list[TargetPage]:
    """Deduplicate by id (first sighting wins) and order by id.

    Numeric ids sort numerically and before any non-numeric ones, so the
    result does not depend on where in the tree a link was found.
    """

    by_id: dict[str, TargetCandidate] = {}
    for candidate in candidates:
        if candidate.id in by_id:
            continue
        by_id[candidate.id] = candidate

    ordered = sorted(by_id.values(), key=lambda c: _id_sort_key(c.id))
    return [
        TargetPage(
            id=c.id,
            url=c.url,
            display_name=c.display_name or f"Section {c.id}",
            group_label=c.group_label or "Unknown",
            ordinal=ordinal,
        )
        for ordinal, c in enumerate(ordered)
    ]
