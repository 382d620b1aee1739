from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from .controller import CrawlController, StepOutcome
from .errors import SessionCorruptError
from .models import Session
from .state import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class ResumeBootstrapper:
    """Runs at every process start and after every navigation.

    It is the only way back into a crawl: the controller is rebuilt from the
    stored session, never carried over in memory.
    """

    store: SessionStore
    key: str
    controller_factory: Callable[[Session], CrawlController]
    settle_s: float = 2.0
    sleep: Callable[[float], None] = time.sleep

    def load(self) -> Session | None:
        """The stored session if it can be resumed; resets broken ones."""

        try:
            session = self.store.get(self.key)
        except SessionCorruptError as e:
            logger.error("Discarding unreadable session %r: %s", self.key, e)
            self.store.clear(self.key)
            return None

        if session is None or not session.is_active:
            return None
        if not session.target_pages:
            logger.error("Session %r has no target pages; resetting", self.key)
            self.store.clear(self.key)
            return None
        return session

    def resume(self) -> StepOutcome | None:
        session = self.load()
        if session is None:
            logger.debug("Nothing to resume for %r", self.key)
            return None

        logger.info(
            "Resuming %r at section %d/%d",
            self.key,
            min(session.current_index + 1, session.expected_count),
            session.expected_count,
        )
        self.sleep(self.settle_s)
        return self.controller_factory(session).run()
