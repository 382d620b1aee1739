from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .browser import Browser
from .errors import (
    CheckpointError,
    CrawlError,
    ExtractionError,
    FatalCrawlError,
    HandoffError,
    MissingPageError,
    RetryExhaustedError,
    SessionCorruptError,
)
from .extraction import Extractor
from .manifest import IntegrityVerdict
from .models import PageResult, Session, TargetPage
from .navigation import NavigationSource
from .retry import RetryPolicy, call_with_retry
from .sink import HandoffResult, Sink
from .state import SessionStore
from .status import StatusBroadcaster, StatusType
from .validate import validate

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    NAVIGATE = "navigate"
    COMPLETED = "completed"
    HANDOFF_FAILED = "handoff_failed"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class StepOutcome:
    """How a controller run ended.

    ``NAVIGATE`` means the session is checkpointed and the caller must load
    ``url``; the controller that produced it is finished and must not be
    reused.
    """

    kind: OutcomeKind
    url: str | None = None
    verdict: IntegrityVerdict | None = None
    handoff: HandoffResult | None = None
    error: str | None = None

    @classmethod
    def navigate(cls, url: str) -> StepOutcome:
        return cls(kind=OutcomeKind.NAVIGATE, url=url)

    @classmethod
    def failed(cls, error: str) -> StepOutcome:
        return cls(kind=OutcomeKind.FAILED, error=error)


@dataclass
class ControllerConfig:
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    # wait before each extraction attempt, for the page to settle
    page_settle_s: float = 0.0
    expand_settle_s: float = 1.0
    nav_delay_min_s: float = 2.0
    nav_delay_max_s: float = 4.0
    max_navigation_attempts: int = 3
    min_languages: int = 2
    max_empty_fraction: float = 0.0


class CrawlController:
    """Drives one crawl from whatever page is currently loaded.

    Every state change is written to the session store before anything else
    happens. Navigation is never performed here: a run that needs another
    page checkpoints, returns ``StepOutcome.navigate`` and is done.
    """

    def __init__(
        self,
        *,
        key: str,
        store: SessionStore,
        browser: Browser,
        source: NavigationSource,
        extractor: Extractor,
        sink: Sink,
        config: ControllerConfig | None = None,
        status: StatusBroadcaster | None = None,
        session: Session | None = None,
        stop_event: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.key = key
        self.store = store
        self.browser = browser
        self.source = source
        self.extractor = extractor
        self.sink = sink
        self.cfg = config or ControllerConfig()
        self.status = status or StatusBroadcaster()
        self.session = session
        self._stop_event = stop_event or threading.Event()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock

    def _require_session(self) -> Session:
        if self.session is None:
            raise CrawlError("Controller has no session; start or resume first")
        return self.session

    def _checkpoint(self) -> None:
        self.store.set(self.key, self._require_session())

    def _warn(self, message: str) -> None:
        self._require_session().manifest.warn(message)
        self.status.log(f"warning: {message}")

    def _stop_requested(self) -> bool:
        return self._stop_event.is_set() or self.store.stop_requested(self.key)

    def start(self, *, max_targets: int | None = None) -> StepOutcome:
        self.status.log("Starting crawl...")
        try:
            session = self._enumerate(max_targets)
        except (FatalCrawlError, MissingPageError) as e:
            self.store.clear(self.key)
            logger.error("Crawl failed before the first page: %s", e)
            self.status.status("error", str(e))
            self.status.emit(StatusType.ERROR, {"message": str(e)})
            return StepOutcome.failed(str(e))

        self.session = session
        try:
            self._checkpoint()
        except CheckpointError as e:
            self.store.clear(self.key)
            self.status.emit(StatusType.ERROR, {"message": str(e)})
            return StepOutcome.failed(str(e))
        return self.run()

    def _enumerate(self, max_targets: int | None) -> Session:
        if self.browser.current() is None:
            raise FatalCrawlError("No page is loaded; open the text's start page first")

        self.status.status("working", "Expanding navigation tree...")
        self.source.expand()
        self._sleep(self.cfg.expand_settle_s)

        self.status.status("working", "Counting sections...")
        targets = self.source.enumerate_targets()
        if not targets:
            raise FatalCrawlError(
                "No section URLs found. Make sure the loaded page shows the "
                "navigation tree of a fulltext view."
            )

        if max_targets is not None and 0 < max_targets < len(targets):
            targets = targets[:max_targets]
            self.status.log(f"Limited to first {max_targets} sections")

        metadata = self.source.describe()
        try:
            previous = self.store.get(self.key)
        except SessionCorruptError:
            previous = None
        if previous is not None:
            logger.warning("Replacing the previous session for %r", self.key)
        self.store.clear(self.key)

        session = Session.begin(targets, metadata=metadata)
        first, last = targets[0], targets[-1]
        self.status.log(
            f"Pre-flight: {len(targets)} sections expected; "
            f"first {first.display_name} (id={first.id}), "
            f"last {last.display_name} (id={last.id})"
        )
        self.status.log(f"Text: {metadata.get('title', 'Unknown Text')}")
        return session

    def run(self) -> StepOutcome:
        try:
            while True:
                outcome = self.step()
                if outcome is not None:
                    return outcome
        except CheckpointError as e:
            logger.error("Checkpoint failed; not navigating: %s", e)
            self.status.status("error", str(e))
            self.status.emit(StatusType.ERROR, {"message": str(e)})
            return StepOutcome.failed(str(e))

    def step(self) -> StepOutcome | None:
        """Resolve the current target as far as this process can.

        Returns ``None`` when the next step can run in-process.
        """

        session = self._require_session()
        if self._stop_requested():
            return self._stop()
        if session.finished:
            return self._complete()

        index = session.current_index
        target = session.target_pages[index]
        total = session.expected_count
        self.status.log(
            f"Section {index + 1}/{total}: {target.display_name} "
            f"({target.group_label})"
        )
        self.status.progress(
            index + 1, total, f"{target.group_label}: {target.display_name}"
        )

        page = self.browser.current()
        current_id = (
            self.source.resolve_target_id(page) if page is not None else None
        )
        if current_id != target.id:
            return self._navigate_to(target)

        self._extract(index, target)

        upcoming = session.current_target()
        if upcoming is not None:
            return self._navigate_to(upcoming)
        return None

    def _navigate_to(self, target: TargetPage) -> StepOutcome | None:
        session = self._require_session()

        if not self.browser.allowed(target.url):
            self._skip(target, "disallowed by robots.txt")
            return None
        if session.navigation_attempts >= self.cfg.max_navigation_attempts:
            self._skip(
                target,
                f"page never resolved to id {target.id} after "
                f"{session.navigation_attempts} navigations",
            )
            return None

        session.navigation_attempts += 1
        self._checkpoint()

        delay = self._rng.uniform(self.cfg.nav_delay_min_s, self.cfg.nav_delay_max_s)
        crawl_delay = self.browser.crawl_delay_s(target.url)
        if crawl_delay is not None:
            delay = max(delay, crawl_delay)
        self.status.log(f"Waiting {delay:.1f}s before next section...")
        self._sleep(delay)

        self.status.log(f"Navigating to: {target.display_name}")
        return StepOutcome.navigate(target.url)

    def _skip(self, target: TargetPage, reason: str) -> None:
        session = self._require_session()
        session.manifest.record_skip(target.id, target.display_name, reason)
        self._warn(f"Skipped {target.display_name} (id={target.id}): {reason}")
        session.advance_past(session.current_index)
        self._checkpoint()

    def _extract_once(self, target: TargetPage) -> PageResult:
        if self.cfg.page_settle_s:
            self._sleep(self.cfg.page_settle_s)
        page = self.browser.materialize()
        result = self.extractor(page)
        if not result.units:
            raise ExtractionError(
                "No units extracted - page may not have loaded fully"
            )
        if result.target_page_id != target.id:
            raise ExtractionError(
                f"Loaded page is id {result.target_page_id!r}, "
                f"expected {target.id!r}"
            )
        return result

    def _extract(self, index: int, target: TargetPage) -> None:
        session = self._require_session()
        context = f"Extract section id={target.id}"
        started = self._clock()

        def _on_retry(attempt: int, delay: float, error: Exception) -> None:
            self._warn(
                f"{context} failed (attempt {attempt}/{self.cfg.retry.max_retries})"
                f": {error}. Retrying in {delay:.1f}s..."
            )

        try:
            result = call_with_retry(
                lambda: self._extract_once(target),
                policy=self.cfg.retry,
                context=context,
                sleep=self._sleep,
                on_retry=_on_retry,
            )
        except RetryExhaustedError as e:
            self._warn(f"Failed to extract {target.display_name}: {e}")
            session.manifest.record_failure(target.id, target.display_name, str(e))
            session.metrics.record_failure(
                target.id, duration_s=self._clock() - started
            )
            session.advance_past(index)
            self._checkpoint()
            return

        self.store.append_unit(self.key, result)

        report = validate(
            result,
            min_languages=self.cfg.min_languages,
            max_empty_fraction=self.cfg.max_empty_fraction,
        )
        if not report.valid:
            self._warn(
                f"Validation issues for {result.section_name}: "
                f"{', '.join(report.issues)}"
            )

        session.manifest.record_capture()
        session.metrics.record_page(
            target.id,
            duration_s=self._clock() - started,
            units=len(result.units),
            languages=sorted(result.languages_observed),
        )
        session.advance_past(index)
        self._checkpoint()
        self.status.log(
            f"Captured: {result.section_name} ({len(result.units)} units, "
            f"{len(result.languages_observed)} languages)"
        )

    def _complete(self) -> StepOutcome:
        session = self._require_session()
        manifest = session.manifest
        manifest.finish()
        self._checkpoint()

        verdict = manifest.verdict()
        logger.info(
            "Crawl complete: expected=%d captured=%d failed=%d skipped=%d "
            "warnings=%d",
            verdict.expected,
            verdict.captured,
            verdict.failed,
            verdict.skipped,
            verdict.warnings,
        )
        for failure in manifest.failed:
            logger.info(
                "  failed: %s (id=%s): %s",
                failure.get("name"),
                failure.get("target_page_id"),
                failure.get("error"),
            )
        if verdict.passed:
            self.status.log("Integrity check passed")
        else:
            self.status.log(
                f"Integrity check: {verdict.captured}/{verdict.expected} "
                "sections captured"
            )
        return self._handoff(verdict, kind=OutcomeKind.COMPLETED)

    def _stop(self) -> StepOutcome:
        session = self._require_session()
        self.status.log("Crawl stopped by user")
        self.status.status("ready", "Stopped")
        session.is_active = False
        session.manifest.finish()
        self._checkpoint()
        self.store.clear_stop(self.key)
        self._stop_event.clear()
        return self._handoff(session.manifest.verdict(), kind=OutcomeKind.STOPPED)

    def handoff(self) -> StepOutcome:
        """Retry packaging a stopped or finished session that is still stored."""

        session = self._require_session()
        if session.is_active and not session.finished:
            raise CrawlError(
                "Crawl is still in progress; stop it or let it finish first"
            )
        session.manifest.finish()
        kind = OutcomeKind.COMPLETED if session.finished else OutcomeKind.STOPPED
        return self._handoff(session.manifest.verdict(), kind=kind)

    def _captured_results(self, session: Session) -> list[PageResult]:
        """Stored results the manifest counts as captured.

        A result appended before a crash, for a page that was later recorded
        as failed or skipped or never advanced past, is left out.
        """

        done = {t.id for t in session.target_pages[: session.current_index]}
        done -= {
            entry.get("target_page_id")
            for entry in session.manifest.failed + session.manifest.skipped
        }
        results = self.store.load_results(self.key)
        dropped = [r.target_page_id for r in results if r.target_page_id not in done]
        if dropped:
            logger.warning(
                "Leaving %d uncounted result(s) out of the package: %s",
                len(dropped),
                ", ".join(dropped),
            )
        return [r for r in results if r.target_page_id in done]

    def _handoff(self, verdict: IntegrityVerdict, *, kind: OutcomeKind) -> StepOutcome:
        session = self._require_session()
        self.status.status("working", "Preparing package...")
        results = self._captured_results(session)
        try:
            handoff = self.sink.deliver(
                session=session,
                results=results,
                verdict=verdict,
                metrics=session.metrics.summary(),
            )
        except HandoffError as e:
            logger.error("Hand-off failed; session kept for retry: %s", e)
            self.status.status("error", str(e))
            self.status.emit(
                StatusType.COMPLETE,
                {"handoff_failed": True, "manifest": session.manifest.to_dict()},
            )
            return StepOutcome(
                kind=OutcomeKind.HANDOFF_FAILED, verdict=verdict, error=str(e)
            )

        self.store.clear(self.key)
        self.status.status("ready", f"Complete! {handoff.units_count} units")
        self.status.emit(
            StatusType.COMPLETE,
            {
                "sections_count": handoff.sections_count,
                "units_count": handoff.units_count,
                "integrity_passed": verdict.passed,
                "manifest": session.manifest.to_dict(),
            },
        )
        return StepOutcome(kind=kind, verdict=verdict, handoff=handoff)
