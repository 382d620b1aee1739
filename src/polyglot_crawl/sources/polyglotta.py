"""Polyglotta (www2.hf.uio.no/polyglotta) parallel-text source.

Section pages are addressed by ``cid``; the text as a whole by ``vid``. Each
``.BolkContainer`` on a section page is one aligned unit, holding one
``.textvar`` per language version.
"""

from __future__ import annotations

import copy
import logging
import re
import time
from typing import Any, Callable

from bs4 import BeautifulSoup, Tag

from ..browser import Browser
from ..cache import LoadedPage
from ..errors import ExtractionError, MissingPageError
from ..manifest import utc_iso
from ..models import ExtractedUnit, PageResult, TargetPage, VariantText
from ..navigation import TargetCandidate, collect_targets, expand_tree
from ..urls import absolute_url, query_param

logger = logging.getLogger(__name__)

SOURCE_NAME = "polyglotta"

TARGET_LINK_SELECTOR = 'a[href*="page=fulltext"][href*="cid="]'

COLLAPSED_SELECTORS = (
    'a.ajax_tree0[onclick*="LevelTree"]',
    'a.ajax_tree1[onclick*="LevelTree"]',
    'a.ajax_tree2[onclick*="LevelTree"]',
    '[class*="Collapse"][class*="Option"]:not([style*="display: none"])',
    "span.collapsed",
    'img[src*="plus"]',
)

ACTIVE_LINK_SELECTOR = ", ".join(
    f'a.ajax_tree{n}[style*="green"]' for n in range(3)
)

LANGUAGE_CLASSES = ("Sanskrit", "Chinese", "Tibetan", "English", "Pali", "Mongolian")

# (language class, translator substring, variant key)
TRANSLATOR_VARIANTS = (
    ("Chinese", "Zhīqiān", "chinese-zhiqian"),
    ("Chinese", "Kumārajīva", "chinese-kumarajiva"),
    ("Chinese", "Xuánzàng", "chinese-xuanzang"),
    ("English", "Boin", "english-lamotte"),
    ("English", "Lamotte", "english-lamotte"),
    ("English", "Thurman", "english-thurman"),
)

_CID_RE = re.compile(r"cid=(\d+)")
_CHAPTER_RE = re.compile(r"Chapter\s+([IVX]+|[0-9]+)", re.IGNORECASE)
_PARAGRAPH_ID_RE = re.compile(r"^(§\d+)")
_REVEALED_ATTR = "data-polyglot-revealed"
_GROUP_ATTR = "data-polyglot-group"

_EMPTY_TEXTS = {"", "&nbsp;", "\u00a0"}


def _attr_text(val: object) -> str:
    if isinstance(val, list):
        if not val:
            return ""
        return str(val[0])
    return str(val or "")


def cid_of(url: str) -> str | None:
    cid = query_param(url, "cid")
    if cid is not None:
        return cid
    m = _CID_RE.search(url)
    return m.group(1) if m else None


def infer_group_label(link: Tag, *, max_depth: int = 10) -> str:
    """Best-effort "Chapter N" from the link's nearest ancestors."""

    preset = _attr_text(link.get(_GROUP_ATTR)).strip()
    if preset:
        return preset
    parent = link.parent
    for _ in range(max_depth):
        if parent is None or not isinstance(parent, Tag):
            break
        m = _CHAPTER_RE.search(parent.get_text(" "))
        if m:
            return f"Chapter {m.group(1)}"
        parent = parent.parent
    return "Unknown"


class PolyglottaNavigation:
    """Expands and enumerates the navigation tree of the loaded text page.

    Revealing a collapsed tree node fetches the page it points at and grafts
    the section links found there next to the node, so later scans see them.
    """

    name = SOURCE_NAME

    def __init__(
        self,
        browser: Browser,
        *,
        max_iterations: int = 20,
        reveal_wait_s: float = 0.5,
        settle_s: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.browser = browser
        self.max_iterations = max_iterations
        self.reveal_wait_s = reveal_wait_s
        self.settle_s = settle_s
        self._sleep = sleep
        self._soup: BeautifulSoup | None = None
        self._soup_url: str | None = None
        self._fetched: set[str] = set()

    def _page(self) -> LoadedPage:
        page = self.browser.current()
        if page is None:
            raise MissingPageError("No page is loaded; navigate to a start URL first")
        return page

    def _tree(self) -> tuple[BeautifulSoup, str]:
        page = self._page()
        if self._soup is None or self._soup_url != page.final_url:
            self._soup = BeautifulSoup(page.html, "html.parser")
            self._soup_url = page.final_url
            self._fetched = set()
        return self._soup, page.final_url

    def _find_collapsed(self) -> list[Tag]:
        soup, _ = self._tree()
        nodes = soup.select(", ".join(COLLAPSED_SELECTORS))
        return [n for n in nodes if not n.has_attr(_REVEALED_ATTR)]

    def _reveal_url(self, node: Tag, base_url: str) -> str | None:
        candidates = [node]
        anchor = node if node.name == "a" else node.find_parent("a")
        if anchor is not None and anchor is not node:
            candidates.append(anchor)
        for el in candidates:
            for attr in ("data-src", "data-href", "href"):
                href = _attr_text(el.get(attr)).strip()
                if not href or href.startswith("#"):
                    continue
                if href.lower().startswith(("javascript:", "mailto:")):
                    continue
                return absolute_url(href, base_url=base_url)
        return None

    def _graft(self, fragment: BeautifulSoup, *, fragment_url: str) -> Tag | None:
        soup, base_url = self._tree()
        known_ids = {
            cid_of(_attr_text(a.get("href")))
            for a in soup.select(TARGET_LINK_SELECTOR)
        }
        known_reveals = {
            self._reveal_url(n, base_url)
            for n in soup.select(", ".join(COLLAPSED_SELECTORS))
        }

        container = soup.new_tag("div")
        container["class"] = "polyglot-revealed"
        selector = ", ".join((TARGET_LINK_SELECTOR,) + COLLAPSED_SELECTORS)
        for el in fragment.select(selector):
            href = _attr_text(el.get("href"))
            cid = cid_of(href) if "page=fulltext" in href else None
            if cid is not None:
                if cid in known_ids:
                    continue
                known_ids.add(cid)
                clone = copy.copy(el)
                clone["href"] = absolute_url(href, base_url=fragment_url)
                clone[_GROUP_ATTR] = infer_group_label(el)
                container.append(clone)
                continue

            reveal_url = self._reveal_url(el, fragment_url)
            if reveal_url is None or reveal_url in known_reveals:
                continue
            known_reveals.add(reveal_url)
            clone = copy.copy(el)
            clone["data-src"] = reveal_url
            container.append(clone)

        return container if container.contents else None

    def _reveal(self, node: Tag) -> bool:
        _, base_url = self._tree()
        node[_REVEALED_ATTR] = "1"

        url = self._reveal_url(node, base_url)
        if url is None or url in self._fetched:
            return False
        self._fetched.add(url)

        try:
            res = self.browser.http.get(url)
        except RuntimeError as e:
            logger.warning("Could not reveal tree node via %s: %s", url, e)
            return False
        if res.status_code >= 400:
            logger.warning(
                "Could not reveal tree node via %s: HTTP %s", url, res.status_code
            )
            return False

        fragment = BeautifulSoup(res.text(), "html.parser")
        container = self._graft(fragment, fragment_url=res.final_url or url)
        if container is not None:
            node.insert_after(container)
        return True

    def expand(self) -> int:
        return expand_tree(
            self._find_collapsed,
            self._reveal,
            max_iterations=self.max_iterations,
            reveal_wait_s=self.reveal_wait_s,
            settle_s=self.settle_s,
            sleep=self._sleep,
        )

    def enumerate_targets(self) -> list[TargetPage]:
        soup, base_url = self._tree()
        candidates: list[TargetCandidate] = []
        for link in soup.select(TARGET_LINK_SELECTOR):
            href = _attr_text(link.get("href")).strip()
            if not href:
                continue
            url = absolute_url(href, base_url=base_url)
            cid = cid_of(url)
            if cid is None:
                continue
            candidates.append(
                TargetCandidate(
                    id=cid,
                    url=url,
                    display_name=link.get_text(" ", strip=True) or f"Section {cid}",
                    group_label=infer_group_label(link),
                )
            )

        targets = collect_targets(candidates)
        logger.info("Found %d section URLs across navigation tree", len(targets))
        return targets

    def resolve_target_id(self, page: LoadedPage) -> str | None:
        return cid_of(page.final_url) or cid_of(page.url)

    def describe(self) -> dict[str, Any]:
        page = self._page()
        return describe_text(page)


def describe_text(page: LoadedPage) -> dict[str, Any]:
    """Title, ``vid`` and the language selector of a Polyglotta text page."""

    soup = BeautifulSoup(page.html, "html.parser")
    headline = soup.select_one(".headline")
    crumbs = soup.select(".brodsmuleboks a")
    title = ""
    if headline is not None:
        title = headline.get_text(" ", strip=True)
    if not title and crumbs:
        title = crumbs[-1].get_text(" ", strip=True)

    languages: list[dict[str, Any]] = []
    for checkbox in soup.select('input[name^="spraak_valg"]'):
        label = checkbox.find_parent("label")
        if label is None:
            continue
        text = label.get_text(" ", strip=True)
        if not text:
            continue
        parts = text.split(":")
        languages.append(
            {
                "name": parts[0].strip(),
                "code": parts[1].strip() if len(parts) > 1 else "",
                "source": ":".join(parts[2:]).strip(),
                "id": _attr_text(checkbox.get("value")),
                "checked": checkbox.has_attr("checked"),
            }
        )

    return {
        "source": SOURCE_NAME,
        "title": title or "Unknown Text",
        "vid": query_param(page.final_url, "vid") or query_param(page.url, "vid"),
        "languages": languages,
        "url": page.final_url,
    }


def _variant_key(language: str, source_reference: str) -> str:
    key = language.lower()
    m = re.search(r":\s*([^,]+)", source_reference)
    if not m:
        return key
    translator = m.group(1).strip()
    for lang, needle, variant in TRANSLATOR_VARIANTS:
        if lang == language and needle in translator:
            return variant
    return key


def extract_section(page: LoadedPage) -> PageResult:
    """Pull every aligned unit off a Polyglotta section page."""

    soup = BeautifulSoup(page.html, "html.parser")
    containers = soup.select(".BolkContainer")
    cid = cid_of(page.final_url) or cid_of(page.url)

    units: list[ExtractedUnit] = []
    languages: set[str] = set()

    for index, container in enumerate(containers):
        variants: dict[str, VariantText] = {}
        unit_id: str | None = None

        for textvar in container.select(".textvar"):
            lang_div = textvar.select_one("div[class]")
            if lang_div is None:
                continue
            language = next(
                (c for c in lang_div.get("class") or [] if c in LANGUAGE_CLASSES),
                None,
            )
            if language is None:
                continue
            languages.add(language.lower())

            ref_el = lang_div.select_one(".kilderef")
            source_reference = ref_el.get_text().strip() if ref_el else ""
            text_el = lang_div.select_one("span.paragraph, span.chaptertitle")
            text = text_el.get_text().strip() if text_el else ""

            if unit_id is None:
                m = _PARAGRAPH_ID_RE.match(text)
                if m:
                    unit_id = m.group(1)

            clean = re.sub(r"^§\d+\s*", "", text).strip()
            if clean in _EMPTY_TEXTS:
                continue
            variants[_variant_key(language, source_reference)] = VariantText(
                text=clean, source_reference=source_reference
            )

        if variants:
            units.append(
                ExtractedUnit(
                    unit_id=unit_id or f"p{index + 1}",
                    index=index,
                    variants=variants,
                )
            )

    if not units:
        raise ExtractionError(
            f"No aligned units on {page.final_url} "
            f"({len(containers)} containers); page may not have loaded fully"
        )

    active = soup.select_one(ACTIVE_LINK_SELECTOR)
    section_name = active.get_text(" ", strip=True) if active is not None else ""

    return PageResult(
        target_page_id=cid or "",
        section_name=section_name or f"Section {cid}",
        source_url=page.final_url,
        units=units,
        languages_observed=frozenset(languages),
        extracted_at=utc_iso(),
    )
