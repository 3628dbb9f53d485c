from __future__ import annotations

from typing import Iterable
from urllib.parse import urlsplit

from .models import (
    ROLE_ANALYSIS,
    ROLE_OFFICIAL,
    ROLE_OPINION,
    ROLE_REPORTING,
    NormalizedArticle,
    RawItem,
    SourceRecord,
)
from .utils import collapse_whitespace, normalize_url, sha256_hex, strip_html, truncate, utc_now_iso

SUMMARY_MAX_LENGTH = 420

PRECISION_BY_SOURCE = {
    "published": 3,
    "modified": 2,
    "guessed": 1,
}

OFFICIAL_HINTS = ("press release", "news release", "official statement")
OPINION_HINTS = (
    "op-ed",
    "op ed",
    "opinion",
    "commentary",
    "editorial",
    "guest essay",
    "viewpoint",
    "column",
)
ANALYSIS_HINTS = ("analysis",)


def _lower(value: str | None) -> str:
    return collapse_whitespace(value).lower()


def _has_hint(text: str, hints: Iterable[str]) -> bool:
    return any(hint in text for hint in hints)


def is_usable_url(url: str | None) -> bool:
    if not url:
        return False
    split = urlsplit(url.strip())
    return split.scheme.lower() in ("http", "https") and bool(split.netloc)


def normalize_title(title: str | None) -> str:
    return _lower(title)


def dedup_key(
    url: str | None, source_id: str, title: str | None, published_at: str | None
) -> str:
    """Stable identity for an article.

    Derived from the canonical URL when one is usable, so the same story seen
    through different feeds or with different tracking parameters maps to one
    key. Without a URL the key falls back to source, title and publish day.
    """
    if is_usable_url(url):
        return sha256_hex(normalize_url(url or ""))
    day = (published_at or "")[:10]
    return sha256_hex(f"{source_id}|{normalize_title(title)}|{day}")


def is_opinion_like_title(title: str | None) -> bool:
    return _has_hint(_lower(title), OPINION_HINTS)


def resolve_article_role(
    source: SourceRecord | None, categories: Iterable[str], title: str | None
) -> str:
    for category in categories:
        text = _lower(category)
        if not text:
            continue
        if _has_hint(text, OFFICIAL_HINTS):
            return ROLE_OFFICIAL
        if _has_hint(text, OPINION_HINTS):
            return ROLE_OPINION
        if _has_hint(text, ANALYSIS_HINTS):
            return ROLE_ANALYSIS
    role = source.role if source else ROLE_REPORTING
    if role == ROLE_REPORTING and is_opinion_like_title(title):
        return ROLE_OPINION
    return role


def normalize(
    raw: RawItem, source: SourceRecord | None = None, fetched_at: str | None = None
) -> NormalizedArticle | None:
    link = (raw.link or "").strip()
    url = link if is_usable_url(link) else None
    title = strip_html(raw.title)
    if not url and not title:
        return None
    canonical_url = normalize_url(url) if url else None
    if not title:
        title = canonical_url or ""
    summary = truncate(strip_html(raw.summary), SUMMARY_MAX_LENGTH) or None
    return NormalizedArticle(
        dedup_key=dedup_key(url, raw.source_id, title, raw.published_at),
        title=title,
        summary=summary,
        url=url,
        canonical_url=canonical_url,
        source_id=raw.source_id,
        published_at=raw.published_at,
        published_precision=(
            PRECISION_BY_SOURCE.get(raw.published_at_source or "", 0) if raw.published_at else 0
        ),
        fetched_at=fetched_at or utc_now_iso(),
        source_role=resolve_article_role(source, raw.categories, title),
        author=collapse_whitespace(raw.author) or None,
        guid=(raw.guid or "").strip() or None,
    )
