from __future__ import annotations

import logging
from dataclasses import asdict, replace
from datetime import datetime
from typing import Any, Callable, Sequence

from .config import ClusterPolicy, Config, ContentOptions, FetchOptions, GeneratorConfig, TopicOptions
from .digest import DeterministicDigestGenerator, DigestGenerator, run_cluster_pass
from .enrichment.content import ContentFetcher, enrich_content
from .enrichment.topics import Classifier, enrich_topics
from .ingest import Fetcher, pull
from .models import SourceRecord
from .normalize import normalize
from .storage import PersistenceAdapter
from .utils import log_event, utc_now

STAGE_PULL = "pull"
STAGE_ENRICH_CONTENT = "enrich_content"
STAGE_ENRICH_TOPICS = "enrich_topics"
STAGE_CLUSTER = "cluster"
STAGE_NAMES = (STAGE_PULL, STAGE_ENRICH_CONTENT, STAGE_ENRICH_TOPICS, STAGE_CLUSTER)


def build_generator(config: GeneratorConfig, logger: logging.Logger | None = None) -> DigestGenerator:
    if config.kind == "chat_completions":
        from .llm import ChatCompletionsDigestGenerator

        return ChatCompletionsDigestGenerator(config, logger=logger)
    return DeterministicDigestGenerator()


def _run_stage(stage: str, logger: logging.Logger, func: Callable[[], dict[str, Any]]) -> dict[str, Any]:
    try:
        result = func()
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.ERROR, "run_failed", stage=stage, error=str(exc))
        return {"ok": False, "stage": stage, "error": str(exc) or exc.__class__.__name__}
    log_event(logger, logging.INFO, "run_succeeded", stage=stage)
    return {"ok": True, "stage": stage, **result}


def run_pull(
    conn,
    sources: Sequence[SourceRecord],
    options: FetchOptions | None = None,
    fetcher: Fetcher | None = None,
    now: datetime | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    logger = logger or logging.getLogger("fieldbrief.pipeline")

    def _pull() -> dict[str, Any]:
        enabled = [source for source in sources if source.enabled]
        result = pull(enabled, options, now=now, fetcher=fetcher, logger=logger)
        by_id = {source.id: source for source in enabled}
        articles = [
            article
            for article in (normalize(item, by_id.get(item.source_id), result.fetched_at) for item in result.items)
            if article is not None
        ]
        failed_ids = {error.source_id for error in result.errors}
        touched = [
            source if source.id in failed_ids else replace(source, last_fetched_at=result.fetched_at)
            for source in enabled
        ]
        upserted = PersistenceAdapter(conn, logger=logger).upsert(touched, articles)
        return {
            "source_count": result.source_count,
            "article_count": result.article_count,
            "upserted_source_count": upserted.upserted_source_count,
            "upserted_article_count": upserted.upserted_article_count,
            "used_legacy_schema": upserted.used_legacy_schema,
            "fetched_at": result.fetched_at,
            "errors": [asdict(error) for error in result.errors],
        }

    return _run_stage(STAGE_PULL, logger, _pull)


def run_enrich_content(
    conn,
    options: ContentOptions | None = None,
    fetcher: ContentFetcher | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    logger = logger or logging.getLogger("fieldbrief.pipeline")
    options = options or ContentOptions()

    def _enrich() -> dict[str, Any]:
        adapter = PersistenceAdapter(conn, logger=logger)
        if not adapter.has_rich_schema:
            return {"processed": 0, "fetched": 0, "failed": 0, "used_legacy_schema": True}
        articles = adapter.select_articles_needing_content(options.batch_size)
        result = enrich_content(
            adapter,
            articles,
            concurrency=options.concurrency,
            timeout_ms=options.timeout_ms,
            fetcher=fetcher,
            user_agent=options.user_agent,
            logger=logger,
        )
        return {"processed": result.processed, "fetched": result.fetched, "failed": result.failed}

    return _run_stage(STAGE_ENRICH_CONTENT, logger, _enrich)


def run_enrich_topics(
    conn,
    options: TopicOptions | None = None,
    classifier: Classifier | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    logger = logger or logging.getLogger("fieldbrief.pipeline")
    options = options or TopicOptions()

    def _enrich() -> dict[str, Any]:
        adapter = PersistenceAdapter(conn, logger=logger)
        if not adapter.has_rich_schema:
            return {"processed": 0, "with_topics": 0, "failed": 0, "used_legacy_schema": True}
        articles = adapter.select_articles_missing_topics(options.batch_size)
        result = enrich_topics(
            adapter, articles, concurrency=options.concurrency, classifier=classifier, logger=logger
        )
        return {
            "processed": result.processed,
            "with_topics": result.with_topics,
            "failed": result.failed,
        }

    return _run_stage(STAGE_ENRICH_TOPICS, logger, _enrich)


def run_cluster(
    conn,
    policy: ClusterPolicy | None = None,
    generator: DigestGenerator | None = None,
    now: datetime | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    logger = logger or logging.getLogger("fieldbrief.pipeline")

    def _cluster() -> dict[str, Any]:
        adapter = PersistenceAdapter(conn, logger=logger)
        if not adapter.has_rich_schema:
            return {"clusters": 0, "digests_generated": 0, "digests_failed": 0, "used_legacy_schema": True}
        result = run_cluster_pass(
            adapter,
            generator or DeterministicDigestGenerator(),
            policy,
            now=now or utc_now(),
            logger=logger,
        )
        return {
            "clusters": len(result.clusters),
            "digests_generated": result.digests_generated,
            "digests_failed": result.digests_failed,
            "digests_skipped": result.digests_skipped,
            "cluster_keys": [story.cluster_key for story in result.clusters],
        }

    return _run_stage(STAGE_CLUSTER, logger, _cluster)


def run_all(
    conn,
    config: Config,
    sources: Sequence[SourceRecord],
    fetcher: Fetcher | None = None,
    content_fetcher: ContentFetcher | None = None,
    classifier: Classifier | None = None,
    generator: DigestGenerator | None = None,
    now: datetime | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    """Run every stage in order, stopping at the first fatal failure."""
    logger = logger or logging.getLogger("fieldbrief.pipeline")
    stages: dict[str, dict[str, Any]] = {}
    steps: list[tuple[str, Callable[[], dict[str, Any]]]] = [
        (STAGE_PULL, lambda: run_pull(conn, sources, config.fetch, fetcher=fetcher, now=now, logger=logger)),
        (
            STAGE_ENRICH_CONTENT,
            lambda: run_enrich_content(conn, config.content, fetcher=content_fetcher, logger=logger),
        ),
        (
            STAGE_ENRICH_TOPICS,
            lambda: run_enrich_topics(conn, config.topics, classifier=classifier, logger=logger),
        ),
        (
            STAGE_CLUSTER,
            lambda: run_cluster(
                conn,
                config.clustering,
                generator or build_generator(config.generator, logger=logger),
                now=now,
                logger=logger,
            ),
        ),
    ]
    for stage, step in steps:
        result = step()
        stages[stage] = result
        if not result["ok"]:
            return {"ok": False, "error": result.get("error"), "failed_stage": stage, "stages": stages}
    return {"ok": True, "stages": stages}
