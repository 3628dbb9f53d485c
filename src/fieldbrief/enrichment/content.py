from __future__ import annotations

import logging
from typing import Callable, Sequence

from ..models import CONTENT_FAILED, CONTENT_FETCHED, ArticleRecord, ContentEnrichmentResult, ContentExtraction
from ..pipelines.content_fetch import fetch_article_content
from ..utils import log_event, utc_now_iso
from .pool import run_bounded

DEFAULT_USER_AGENT = "FieldBriefIngestBot/0.1"
ITEM_GRACE_SECONDS = 1.0

ContentFetcher = Callable[[ArticleRecord], ContentExtraction]


def _failed(error: str) -> ContentExtraction:
    return ContentExtraction(
        full_text=None,
        excerpt=None,
        lead_image_url=None,
        word_count=0,
        reading_minutes=0,
        status=CONTENT_FAILED,
        error=error,
        fetched_at=utc_now_iso(),
    )


def enrich_content(
    adapter,
    articles: Sequence[ArticleRecord],
    concurrency: int = 5,
    timeout_ms: int = 15000,
    fetcher: ContentFetcher | None = None,
    user_agent: str = DEFAULT_USER_AGENT,
    logger: logging.Logger | None = None,
) -> ContentEnrichmentResult:
    logger = logger or logging.getLogger("fieldbrief.enrichment.content")
    timeout_seconds = max(1, int(timeout_ms)) / 1000.0
    pending = [
        article
        for article in articles
        if article.content_fetch_status != CONTENT_FETCHED and article.url
    ]
    if not pending:
        return ContentEnrichmentResult(processed=0, fetched=0, failed=0)

    def _default_fetch(article: ArticleRecord) -> ContentExtraction:
        return fetch_article_content(
            article.url or "",
            timeout_seconds=timeout_seconds,
            user_agent=user_agent,
            logger=logger,
        )

    fetch = fetcher or _default_fetch

    fetched = 0
    failed = 0
    for article, extraction, error in run_bounded(
        pending,
        fetch,
        concurrency,
        item_timeout=timeout_seconds + ITEM_GRACE_SECONDS,
        thread_name_prefix="fieldbrief-content",
    ):
        if error is not None or extraction is None:
            message = str(error) if error is not None else "No extraction result"
            extraction = _failed(message or error.__class__.__name__)
        adapter.record_content_result(article.id, extraction)
        if extraction.status == CONTENT_FETCHED:
            fetched += 1
        else:
            failed += 1
            log_event(
                logger,
                logging.WARNING,
                "content_enrich_failed",
                article_id=article.id,
                error=extraction.error,
            )

    log_event(
        logger,
        logging.INFO,
        "content_enrich_completed",
        processed=len(pending),
        fetched=fetched,
        failed=failed,
    )
    return ContentEnrichmentResult(processed=len(pending), fetched=fetched, failed=failed)
