from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import feedparser

from .config import FetchOptions
from .enrichment.pool import run_bounded
from .models import ROLE_OFFICIAL, ROLE_OPINION, FetchResult, RawItem, SourceError, SourceRecord
from .normalize import dedup_key, is_usable_url, resolve_article_role
from .utils import (
    epoch_seconds,
    extract_published_at,
    log_event,
    read_with_deadline,
    strip_html,
    utc_now,
)

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml;q=0.9, */*;q=0.5"
MAX_FETCH_WORKERS = 16
TIMEOUT_GRACE_SECONDS = 2.0

CADENCE_CAPS = {
    "weekly": 18,
    "daily": 42,
}

QUALITY_WEIGHTS = {
    "high": 1.25,
    "medium": 1.0,
}
BASELINE_QUALITY_WEIGHT = 0.82

Fetcher = Callable[[str, dict[str, str], float], bytes]


class SourceFetchError(Exception):
    pass


def quality_weight(tier: str | None) -> float:
    return QUALITY_WEIGHTS.get((tier or "medium").lower(), BASELINE_QUALITY_WEIGHT)


def max_items_for_cadence(source: SourceRecord, max_per_source: int) -> int:
    cap = CADENCE_CAPS.get(source.cadence)
    if cap is None:
        return max_per_source
    return min(max_per_source, cap)


def _fetch_url(url: str, headers: dict[str, str], timeout_seconds: float) -> bytes:
    deadline = time.monotonic() + timeout_seconds
    request = Request(url, headers=headers)
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            status = response.getcode()
            content = read_with_deadline(response, deadline)
    except HTTPError as exc:
        raise SourceFetchError(f"Feed request failed with status {exc.code}") from exc
    except URLError as exc:
        raise SourceFetchError(f"Feed request failed: {exc.reason}") from exc
    except TimeoutError as exc:
        raise SourceFetchError(f"Feed request timed out after {timeout_seconds:g}s") from exc
    if status is not None and status >= 400:
        raise SourceFetchError(f"Feed request failed with status {status}")
    return content


def _entry_summary(entry: Any) -> str | None:
    summary = entry.get("summary") or entry.get("description")
    if summary:
        return summary
    content = entry.get("content") or []
    if content and isinstance(content[0], dict):
        return content[0].get("value")
    return None


def _entry_link(entry: Any) -> str | None:
    link = entry.get("link")
    if link:
        return link
    for candidate in entry.get("links") or []:
        href = candidate.get("href") if isinstance(candidate, dict) else None
        if href:
            return href
    guid = entry.get("id")
    if is_usable_url(guid):
        return guid
    return None


def _entry_categories(entry: Any) -> tuple[str, ...]:
    categories: list[str] = []
    for tag in entry.get("tags") or []:
        term = tag.get("term") if isinstance(tag, dict) else None
        if term:
            categories.append(str(term))
    return tuple(categories)


def raw_item_from_entry(entry: Any, source: SourceRecord) -> RawItem:
    published_at, published_at_source = extract_published_at(entry)
    return RawItem(
        source_id=source.id,
        title=entry.get("title"),
        link=_entry_link(entry),
        summary=_entry_summary(entry),
        published_at=published_at,
        published_at_source=published_at_source,
        author=entry.get("author"),
        guid=entry.get("id"),
        categories=_entry_categories(entry),
    )


def _newest_first(items: Sequence[RawItem]) -> list[RawItem]:
    return sorted(items, key=lambda item: (item.published_at is None, -epoch_seconds(item.published_at)))


def fetch_source(
    source: SourceRecord,
    timeout_seconds: float,
    max_items: int,
    user_agent: str,
    fetcher: Fetcher | None = None,
) -> list[RawItem]:
    fetch = fetcher or _fetch_url
    headers = {"User-Agent": user_agent, "Accept": FEED_ACCEPT}
    content = fetch(source.feed_url, headers, timeout_seconds)
    if not content:
        raise SourceFetchError("Feed response was empty")
    parsed = feedparser.parse(content)
    entries = parsed.entries or []
    if not entries and parsed.bozo:
        raise SourceFetchError(f"Feed could not be parsed: {parsed.bozo_exception}")
    items = [raw_item_from_entry(entry, source) for entry in entries]
    return _newest_first(items)[:max_items]


def _rank(item: RawItem, source: SourceRecord | None) -> float:
    weight = source.weight if source else 3
    tier = source.quality_tier if source else "medium"
    role = resolve_article_role(source, item.categories, item.title)
    adjustment = 0
    if role == ROLE_OPINION:
        adjustment = -32_000
    elif role == ROLE_OFFICIAL:
        adjustment = 10_000
    published_ms = epoch_seconds(item.published_at) * 1000
    summary_score = min(len(strip_html(item.summary)), 320)
    return published_ms + round(weight * 1000 * quality_weight(tier)) + summary_score + adjustment


def dedupe_items(items: Sequence[RawItem], sources_by_id: dict[str, SourceRecord]) -> list[RawItem]:
    best: dict[str, tuple[float, RawItem]] = {}
    for item in items:
        key = dedup_key(item.link, item.source_id, strip_html(item.title), item.published_at)
        rank = _rank(item, sources_by_id.get(item.source_id))
        existing = best.get(key)
        if existing is None or rank > existing[0]:
            best[key] = (rank, item)
    return [item for _, item in best.values()]


def pull(
    sources: Sequence[SourceRecord],
    options: FetchOptions | None = None,
    now: datetime | None = None,
    fetcher: Fetcher | None = None,
    logger: logging.Logger | None = None,
) -> FetchResult:
    """Fetch every source concurrently and merge their items.

    A failing or hanging source contributes no items and exactly one
    SourceError. Each source is timed from its own start; one still running
    after the request timeout plus a short grace period is reported as timed
    out and abandoned without holding back the sources queued behind it.
    """
    logger = logger or logging.getLogger("fieldbrief.ingest")
    opts = (options or FetchOptions()).clamped()
    now = now or utc_now()
    fetched_at = now.isoformat()
    timeout_seconds = opts.timeout_ms / 1000.0
    sources = list(sources)
    sources_by_id = {source.id: source for source in sources}
    errors: list[SourceError] = []
    collected: list[RawItem] = []

    if sources:
        parsed: dict[str, list[RawItem]] = {}

        def _fetch(source: SourceRecord) -> list[RawItem]:
            return fetch_source(
                source,
                timeout_seconds,
                max_items_for_cadence(source, opts.max_per_source),
                opts.user_agent,
                fetcher,
            )

        for source, items, error in run_bounded(
            sources,
            _fetch,
            MAX_FETCH_WORKERS,
            item_timeout=timeout_seconds + TIMEOUT_GRACE_SECONDS,
            thread_name_prefix="fieldbrief-feed",
        ):
            if error is not None:
                if isinstance(error, TimeoutError):
                    message = f"Feed request timed out after {opts.timeout_ms}ms"
                else:
                    message = str(error) or error.__class__.__name__
                errors.append(SourceError(source.id, source.name, message))
                log_event(logger, logging.ERROR, "source_fetch_failed", source_id=source.id, error=message)
                continue
            log_event(logger, logging.INFO, "source_parsed", source_id=source.id, found_count=len(items))
            parsed[source.id] = items
        order = {source.id: index for index, source in enumerate(sources)}
        errors.sort(key=lambda error: order[error.source_id])
        for source in sources:
            collected.extend(parsed.get(source.id, []))

    cutoff = (now - timedelta(hours=opts.since_hours)).timestamp()
    recent = [
        item
        for item in collected
        if item.published_at is None or epoch_seconds(item.published_at) >= cutoff
    ]
    deduped = dedupe_items(recent, sources_by_id)
    ordered = sorted(deduped, key=lambda item: -epoch_seconds(item.published_at))[: opts.limit]

    log_event(
        logger,
        logging.INFO,
        "pull_completed",
        sources=len(sources),
        articles=len(ordered),
        errors=len(errors),
    )
    return FetchResult(
        items=ordered,
        source_count=len(sources),
        article_count=len(ordered),
        errors=errors,
        fetched_at=fetched_at,
    )
