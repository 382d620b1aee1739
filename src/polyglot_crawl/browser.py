from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urlparse

import requests

from .cache import LoadedPage, cache_paths, read_page, write_page
from .errors import MissingPageError
from .http_client import HttpClient
from .manifest import utc_iso
from .robots import RobotsCache, RobotsRules
from .urls import host_of, normalize_url

logger = logging.getLogger(__name__)


class Browser:
    """Holds the currently materialized page on disk.

    ``navigate`` replaces the page; it never raises for a bad load, the
    failure is recorded on the page instead. Because the page lives on disk a
    new process sees exactly what the previous one navigated to.
    """

    def __init__(
        self,
        http: HttpClient,
        *,
        state_dir: Path,
        respect_robots: bool = True,
    ) -> None:
        self.http = http
        self.respect_robots = respect_robots
        self._page_entry = cache_paths(state_dir / "page", key="current")
        self._robots_cache = RobotsCache(state_dir / "robots")
        self._robots: dict[str, RobotsRules | None] = {}

    def current(self) -> LoadedPage | None:
        return read_page(self._page_entry)

    def navigate(self, url: str) -> LoadedPage:
        url = normalize_url(url)
        logger.info("Navigating to %s", url)
        try:
            res = self.http.get(url)
        except RuntimeError as e:
            logger.warning("Navigation to %s failed: %s", url, e)
            page = LoadedPage(
                url=url,
                final_url=url,
                status_code=0,
                html="",
                loaded_at=utc_iso(),
                error=str(e),
            )
        else:
            error = None
            if not 200 <= res.status_code < 400:
                error = f"HTTP {res.status_code}"
            page = LoadedPage(
                url=url,
                final_url=normalize_url(res.final_url or url),
                status_code=res.status_code,
                html=res.text(),
                loaded_at=utc_iso(),
                error=error,
            )
        write_page(self._page_entry, page)
        return page

    def materialize(self) -> LoadedPage:
        """Return the current page, reloading it if the last load failed."""

        page = self.current()
        if page is None:
            raise MissingPageError("No page is loaded; navigate to a start URL first")
        if page.complete:
            return page
        logger.info("Reloading incomplete page %s (%s)", page.url, page.error)
        return self.navigate(page.url)

    def _rules_for(self, url: str) -> RobotsRules | None:
        parsed = urlparse(url)
        host = (parsed.netloc or "").lower()
        origin = f"{(parsed.scheme or 'https').lower()}://{host}"
        if origin in self._robots:
            return self._robots[origin]

        text = self._robots_cache.load_text(host)
        if text is None:
            try:
                res = self.http.get(f"{origin}/robots.txt")
            except (RuntimeError, requests.RequestException) as e:
                logger.debug("robots.txt for %s unavailable: %s", host, e)
                res = None
            if res is not None and res.status_code < 400:
                text = res.text()
                self._robots_cache.store(host, text)

        rules = (
            RobotsRules(text, user_agent=self.http.user_agent)
            if text is not None
            else None
        )
        self._robots[origin] = rules
        return rules

    def allowed(self, url: str) -> bool:
        if not self.respect_robots:
            return True
        host = host_of(url)
        if not host:
            return False
        rules = self._rules_for(url)
        return rules is None or rules.can_fetch(url)

    def crawl_delay_s(self, url: str) -> float | None:
        if not self.respect_robots:
            return None
        host = host_of(url)
        rules = self._rules_for(url) if host else None
        return rules.crawl_delay_s if rules is not None else None
