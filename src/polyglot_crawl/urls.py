from __future__ import annotations

from urllib.parse import ParseResult, parse_qs, urljoin, urlparse, urlunparse


def normalize_url(raw_url: str) -> str:
    """Normalize a URL so the same page always compares equal.

    - Lowercases scheme + hostname.
    - Strips fragments.
    - Keeps the query string as-is; page identity lives there.
    """

    parsed: ParseResult = urlparse(raw_url)
    scheme = (parsed.scheme or "").lower()
    netloc = (parsed.netloc or "").lower()

    parsed = parsed._replace(
        scheme=scheme,
        netloc=netloc,
        fragment="",
    )
    return urlunparse(parsed)


def absolute_url(href: str, *, base_url: str) -> str:
    return normalize_url(urljoin(base_url, href))


def query_param(url: str, name: str) -> str | None:
    """Return the first value of ``name`` in the URL query, if present."""

    try:
        values = parse_qs(urlparse(url).query).get(name)
    except ValueError:
        return None
    if not values:
        return None
    value = values[0].strip()
    return value or None


def host_of(url: str) -> str:
    return (urlparse(url).hostname or "").lower()
