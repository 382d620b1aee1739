from __future__ import annotations

from fakes import ROBOTS_URL, START_URL, section_url

from polyglot_crawl.browser import Browser
from polyglot_crawl.robots import RobotsRules

ROBOTS = """
User-agent: *
Disallow: /polyglotta/index.php?page=fulltext&view=fulltext&vid=1&cid=103
Crawl-delay: 5

User-agent: polyglot-crawl
Disallow: /private
Allow: /private/open
"""


def test_wildcard_group_applies_to_other_agents():
    rules = RobotsRules(ROBOTS, user_agent="SomeBot/2.0")
    assert not rules.can_fetch(section_url("103"))
    assert rules.can_fetch(section_url("104"))
    assert rules.crawl_delay_s == 5.0


def test_own_group_wins_and_longest_match_decides():
    rules = RobotsRules(ROBOTS, user_agent="polyglot-crawl/0.1 (+research)")
    assert rules.can_fetch(section_url("103"))
    assert not rules.can_fetch("https://example.org/private/x")
    assert rules.can_fetch("https://example.org/private/open/x")
    assert rules.crawl_delay_s is None


def test_browser_fetches_robots_once_and_caches_it(tmp_path, http):
    http.add(ROBOTS_URL, ROBOTS)
    browser = Browser(http, state_dir=tmp_path)

    assert not browser.allowed(section_url("103"))
    assert browser.allowed(section_url("101"))
    assert browser.crawl_delay_s(START_URL) == 5.0
    assert http.fetched(ROBOTS_URL) == 1
    assert (tmp_path / "robots" / "www2.hf.uio.no.txt").exists()


def test_missing_robots_allows_everything(tmp_path, http):
    browser = Browser(http, state_dir=tmp_path)
    assert browser.allowed(section_url("103"))
    assert browser.crawl_delay_s(section_url("103")) is None


def test_robots_can_be_ignored(tmp_path, http):
    http.add(ROBOTS_URL, ROBOTS)
    browser = Browser(http, state_dir=tmp_path, respect_robots=False)
    assert browser.allowed(section_url("103"))
    assert http.calls == []


def test_robots_follow_the_page_scheme(tmp_path, http):
    http.add("http://example.org/robots.txt", "User-agent: *\nDisallow: /closed\n")
    browser = Browser(http, state_dir=tmp_path)

    assert not browser.allowed("http://example.org/closed/page")
    assert browser.allowed("http://example.org/open")
    assert http.calls == ["http://example.org/robots.txt"]
