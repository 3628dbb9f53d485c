from __future__ import annotations

import logging
from typing import Callable, Sequence

from ..models import (
    CONTENT_FETCHED,
    TOPIC_EMPTY,
    TOPIC_FAILED,
    TOPIC_TAGGED,
    ArticleRecord,
    TopicAssignment,
    TopicEnrichmentResult,
)
from ..tagger import extract_topics
from ..utils import log_event
from .pool import run_bounded

Classifier = Callable[[ArticleRecord], Sequence[TopicAssignment]]


def classify_article(article: ArticleRecord) -> list[TopicAssignment]:
    return extract_topics(article.title, article.summary, article.full_text)


def enrich_topics(
    adapter,
    articles: Sequence[ArticleRecord],
    concurrency: int = 3,
    classifier: Classifier | None = None,
    logger: logging.Logger | None = None,
) -> TopicEnrichmentResult:
    logger = logger or logging.getLogger("fieldbrief.enrichment.topics")
    pending = [
        article
        for article in articles
        if article.content_fetch_status == CONTENT_FETCHED and article.topic_status != TOPIC_TAGGED
    ]
    if not pending:
        return TopicEnrichmentResult(processed=0, with_topics=0, failed=0)

    classify = classifier or classify_article
    with_topics = 0
    failed = 0
    for article, topics, error in run_bounded(
        pending, classify, concurrency, thread_name_prefix="fieldbrief-topics"
    ):
        if error is not None:
            adapter.mark_topic_status(article.id, TOPIC_FAILED)
            failed += 1
            log_event(
                logger,
                logging.WARNING,
                "topic_enrich_failed",
                article_id=article.id,
                error=str(error) or error.__class__.__name__,
            )
            continue
        topics = list(topics or [])
        if not topics:
            adapter.mark_topic_status(article.id, TOPIC_EMPTY)
            failed += 1
            log_event(logger, logging.DEBUG, "topic_enrich_empty", article_id=article.id)
            continue
        adapter.replace_article_topics(article.id, topics)
        with_topics += 1

    log_event(
        logger,
        logging.INFO,
        "topic_enrich_completed",
        processed=len(pending),
        with_topics=with_topics,
        failed=failed,
    )
    return TopicEnrichmentResult(processed=len(pending), with_topics=with_topics, failed=failed)
