from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import requests

from .bootstrap import ResumeBootstrapper
from .browser import Browser
from .controller import ControllerConfig, CrawlController, OutcomeKind, StepOutcome
from .errors import CrawlError, SessionCorruptError
from .http_client import DEFAULT_USER_AGENT, HttpClient
from .manifest import IntegrityManifest
from .models import Session
from .sink import JsonFileSink, Sink
from .sources.polyglotta import SOURCE_NAME, PolyglottaNavigation, extract_section
from .state import SessionStore
from .status import (
    EventLogChannel,
    ProgressBarChannel,
    StatusBroadcaster,
    StatusChannel,
)

logger = logging.getLogger(__name__)


@dataclass
class ServiceConfig:
    state_dir: Path = Path(".polyglot-crawl")
    out_dir: Path = Path("polyglot-out")
    key: str = SOURCE_NAME
    timeout_s: int = 45
    http_max_retries: int = 2
    user_agent: str = DEFAULT_USER_AGENT
    respect_robots: bool = True
    resume_settle_s: float = 2.0
    expand_max_iterations: int = 20
    reveal_wait_s: float = 0.5
    # exit after every navigation; the next process resumes
    once: bool = False
    progress_bar: bool = False
    controller: ControllerConfig = field(default_factory=ControllerConfig)


class CrawlService:
    """The command surface: start, resume, stop, inspect, package.

    Wires one source (Polyglotta) to the store, the page holder and the sink,
    and performs the navigations the controller asks for.
    """

    def __init__(
        self,
        config: ServiceConfig,
        *,
        http: HttpClient | None = None,
        sink: Sink | None = None,
        channels: list[StatusChannel] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.cfg = config
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.http = http or HttpClient(
            requests.Session(),
            timeout_s=config.timeout_s,
            max_retries=config.http_max_retries,
            user_agent=config.user_agent,
            sleep=sleep,
        )
        self.store = SessionStore(config.state_dir, sleep=sleep)
        self.browser = Browser(
            self.http,
            state_dir=config.state_dir,
            respect_robots=config.respect_robots,
        )
        self.sink = sink or JsonFileSink(config.out_dir, source=SOURCE_NAME)
        if channels is None:
            channels = [EventLogChannel(config.state_dir)]
            if config.progress_bar:
                channels.append(ProgressBarChannel())
        self.status = StatusBroadcaster(channels)
        self.stop_event = threading.Event()

    def _source(self) -> PolyglottaNavigation:
        return PolyglottaNavigation(
            self.browser,
            max_iterations=self.cfg.expand_max_iterations,
            reveal_wait_s=self.cfg.reveal_wait_s,
            settle_s=self.cfg.reveal_wait_s,
            sleep=self._sleep,
        )

    def _controller(self, session: Session | None = None) -> CrawlController:
        return CrawlController(
            key=self.cfg.key,
            store=self.store,
            browser=self.browser,
            source=self._source(),
            extractor=extract_section,
            sink=self.sink,
            config=self.cfg.controller,
            status=self.status,
            session=session,
            stop_event=self.stop_event,
            sleep=self._sleep,
            rng=self._rng,
        )

    def _bootstrapper(self) -> ResumeBootstrapper:
        return ResumeBootstrapper(
            store=self.store,
            key=self.cfg.key,
            controller_factory=self._controller,
            settle_s=self.cfg.resume_settle_s,
            sleep=self._sleep,
        )

    def _stored_session(self) -> Session | None:
        try:
            return self.store.get(self.cfg.key)
        except SessionCorruptError as e:
            logger.error("Stored session is unreadable: %s", e)
            return None

    def _drive(self, outcome: StepOutcome | None) -> StepOutcome | None:
        while outcome is not None and outcome.kind is OutcomeKind.NAVIGATE:
            if outcome.url is None:
                raise CrawlError("Navigation outcome carries no URL")
            self.browser.navigate(outcome.url)
            if self.cfg.once:
                return outcome
            outcome = self._bootstrapper().resume()
        return outcome

    def start(
        self, url: str, *, max_targets: int | None = None
    ) -> StepOutcome | None:
        """Load ``url`` as the text's start page and crawl every section.

        ``None`` means the stored crawl disappeared between navigations.
        """

        page = self.browser.navigate(url)
        if not page.complete:
            logger.warning("Start page %s did not load cleanly: %s", url, page.error)
        return self._drive(self._controller().start(max_targets=max_targets))

    def resume(self) -> StepOutcome | None:
        """Continue a stored crawl from its checkpoint; ``None`` if there is none."""

        return self._drive(self._bootstrapper().resume())

    def stop(self, *, finalize: bool = False) -> StepOutcome | None:
        """Ask the crawl to stop at its next step boundary.

        With ``finalize`` the stop is carried out right away, for when no
        process is currently driving the crawl.
        """

        self.stop_event.set()
        session = self._stored_session()
        if session is None or not session.is_active:
            self.stop_event.clear()
            return None
        self.store.request_stop(self.cfg.key)
        if not finalize:
            return None
        return self._controller(session).run()

    def get_manifest(self) -> IntegrityManifest | None:
        session = self._stored_session()
        return session.manifest if session is not None else None

    def session(self) -> Session | None:
        return self._stored_session()

    def package(self) -> StepOutcome | None:
        """Retry the hand-off of a stopped or finished crawl."""

        session = self._stored_session()
        if session is None:
            return None
        return self._controller(session).handoff()
