"""URL, title, and time canonicalization for news identity.

All functions here are pure. They define what it means for two articles
to be "the same" article:

- with a URL: same canonical URL (tracking params removed)
- or the same normalized title published within 5 minutes
"""

from __future__ import annotations

import hashlib
import html
import re
from datetime import datetime, timezone
from typing import Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from market_hub.core.models import NewsItem

BUCKET_SECONDS = 300

_TRACKING_PARAMS = frozenset({"fbclid", "gclid"})
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")

_SEARCH_PARAMS = frozenset({"q", "query", "s"})
_SEARCH_PATH_RE = re.compile(r"/(search|quote|symbol|ticker|topic|tag)(/|$)", re.IGNORECASE)


def _is_tracking(param: str) -> bool:
    p = param.lower()
    return p.startswith("utm_") or p in _TRACKING_PARAMS


def canonical_url(url: str) -> str:
    """Strip tracking parameters and cosmetic differences from a URL.

    Returns "" for empty input. Scheme-less input ("a.com/x") is
    treated as http.
    """
    url = (url or "").strip()
    if not url:
        return ""
    if not _SCHEME_RE.match(url):
        url = "http://" + url.lstrip("/")

    parts = urlsplit(url)
    query = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking(k)
    ]
    path = parts.path
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/")
    # http and https variants of the same article are one article
    scheme = "https" if parts.scheme.lower() in ("http", "https") else parts.scheme.lower()
    return urlunsplit((scheme, parts.netloc.lower(), path, urlencode(query), ""))


def unescape_html(text: str) -> str:
    """Decode HTML entities and drop tags, collapsing whitespace."""
    if not text:
        return ""
    text = html.unescape(text)
    text = _TAG_RE.sub(" ", text)
    # Double-encoded feeds ("&amp;amp;") need a second pass
    text = html.unescape(text)
    return _WS_RE.sub(" ", text).strip()


def normalize_title(title: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    text = _NON_WORD_RE.sub(" ", (title or "").lower())
    return _WS_RE.sub(" ", text).strip()


def time_bucket(dt: datetime, seconds: int = BUCKET_SECONDS) -> int:
    """Index of the fixed `seconds`-wide window containing `dt`."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp()) // seconds


def identity_key(url: str, title: str, published_at: datetime) -> str:
    """Dedup key: canonical URL, else normalized title + time bucket."""
    canon = canonical_url(url)
    if canon:
        return f"url:{canon}"
    return f"title:{normalize_title(title)}:{time_bucket(published_at)}"


def news_id(url: str, title: str, published_at: datetime) -> str:
    """Stable short id derived from the identity key."""
    key = identity_key(url, title, published_at)
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]


def looks_like_search_page(url: str) -> bool:
    """True for search/topic/quote listing pages rather than articles."""
    parts = urlsplit(url)
    if _SEARCH_PATH_RE.search(parts.path):
        return True
    params = {k.lower() for k, _ in parse_qsl(parts.query, keep_blank_values=True)}
    return bool(params & _SEARCH_PARAMS)


def dedupe(items: Iterable[NewsItem]) -> list[NewsItem]:
    """Drop duplicate articles, keeping the earliest of each group.

    Items are ordered by (published_at, id) first, so the result does not
    depend on the order providers returned them. Two items are duplicates
    when their canonical URLs match, or when their normalized titles match
    and the later one falls within BUCKET_SECONDS of the earliest kept one.
    Kept items with the same title are therefore always in different
    buckets.
    """
    ordered = sorted(items, key=lambda n: (n.published_at, n.id))
    seen_urls: set[str] = set()
    title_anchor: dict[str, datetime] = {}
    kept: list[NewsItem] = []
    for item in ordered:
        canon = canonical_url(item.url)
        if canon and canon in seen_urls:
            continue
        title = normalize_title(item.title)
        anchor = title_anchor.get(title) if title else None
        if anchor is not None and (item.published_at - anchor).total_seconds() < BUCKET_SECONDS:
            continue
        if canon:
            seen_urls.add(canon)
        if title:
            title_anchor[title] = item.published_at
        kept.append(item)
    return kept
