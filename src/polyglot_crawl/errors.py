from __future__ import annotations


class CrawlError(RuntimeError):
    """Base class for everything the crawler raises on purpose."""


class FatalCrawlError(CrawlError):
    """A precondition failed; the crawl cannot start or continue."""


class ExtractionError(CrawlError):
    """The materialized page could not be turned into a result."""


class RetryExhaustedError(CrawlError):
    def __init__(self, context: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{context} failed after {attempts} attempts: {last_error}")
        self.context = context
        self.attempts = attempts
        self.last_error = last_error


class CheckpointError(CrawlError):
    """The session could not be written; navigating now would lose progress."""


class SessionCorruptError(CrawlError):
    pass


class HandoffError(CrawlError):
    """The sink refused or failed to accept the finished crawl."""


class MissingPageError(CrawlError):
    """No page has been materialized yet."""
