from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Protocol, Sequence

import jsonschema

from .clustering import cluster as build_clusters
from .config import ClusterPolicy
from .curation import CurationSummary, curate_citations
from .models import (
    REVIEW_NEEDS_REVIEW,
    ArticleRecord,
    Citation,
    ClusterPassResult,
    StoryCluster,
    StoryDigest,
)
from .utils import collapse_whitespace, log_event, utc_now

MODE_AUTOMATED = "automated"
MODE_ASSISTED = "assisted"

DEK_MAX_LENGTH = 220
MAX_KEY_POINTS = 5
KEY_POINT_MIN_LENGTH = 30
FALLBACK_KEY_POINT = "Coverage is still developing. Review cited reporting for the latest details."

HIGH_RISK_ARTICLES = 14
MEDIUM_RISK_ARTICLES = 8
_HIGH_RISK_RE = re.compile(r"(strike|missile|nuclear|conflict|deterrence|airspace|incursion|sanction|mobilization)")
_MEDIUM_RISK_RE = re.compile(r"(exercise|deployment|procurement|counter|security)")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")

DIGEST_INSTRUCTION = (
    "You write short, neutral defense news digests. Use only the facts contained in the "
    "citations provided in the context. Do not add facts, names or numbers that are not in "
    "the citations. Respond with a JSON object with keys headline, dek, keyPoints (array of "
    "strings), whyItMatters and riskLevel (one of low, medium, high)."
)

DIGEST_OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["headline", "dek", "keyPoints", "whyItMatters", "riskLevel"],
    "properties": {
        "headline": {"type": "string", "minLength": 1},
        "dek": {"type": "string"},
        "keyPoints": {
            "type": "array",
            "items": {"type": "string", "minLength": 1},
            "minItems": 1,
            "maxItems": 8,
        },
        "whyItMatters": {"type": "string"},
        "riskLevel": {"type": "string", "enum": ["low", "medium", "high"]},
    },
}


class DigestGenerationError(Exception):
    pass


class DigestGenerator(Protocol):
    mode: str

    def generate(self, instruction: str, context: dict[str, Any]) -> dict[str, Any]:
        ...


def validate_digest_output(output: Any) -> dict[str, Any]:
    try:
        jsonschema.validate(output, DIGEST_OUTPUT_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise DigestGenerationError(f"digest output failed validation: {exc.message}") from exc
    return output


def needs_regeneration(cluster: StoryCluster, previous: StoryDigest | None) -> bool:
    if previous is None:
        return True
    if cluster.needs_digest:
        return True
    return previous.signature != cluster.signature


def build_context(
    cluster: StoryCluster,
    articles_by_id: dict[int, ArticleRecord],
    citations: Sequence[Citation],
) -> dict[str, Any]:
    """Generation context limited to the cluster's own citations."""
    representative = articles_by_id.get(cluster.representative_article_id)
    cited = []
    for citation in citations:
        article = articles_by_id.get(citation.article_id)
        cited.append(
            {
                "articleId": citation.article_id,
                "headline": citation.headline,
                "sourceName": citation.source_name,
                "sourceRole": citation.source_role,
                "url": citation.url,
                "summary": (article.summary if article else None) or "",
                "excerpt": (article.excerpt if article else None) or "",
            }
        )
    return {
        "clusterKey": cluster.cluster_key,
        "topicLabel": cluster.topic_label,
        "representative": {
            "articleId": cluster.representative_article_id,
            "headline": representative.title if representative else (citations[0].headline if citations else ""),
            "summary": (representative.summary or representative.excerpt or "") if representative else "",
        },
        "articleCount24h": cluster.article_count_24h,
        "uniqueSources24h": cluster.unique_sources_24h,
        "isCongested": cluster.is_congested,
        "pressReleaseDriven": cluster.press_release_driven,
        "opinionLimited": cluster.opinion_limited,
        "citations": cited,
    }


def _split_sentences(text: str) -> list[str]:
    return [
        sentence.strip()
        for sentence in _SENTENCE_SPLIT_RE.split(collapse_whitespace(text))
        if len(sentence.strip()) >= KEY_POINT_MIN_LENGTH
    ]


def _key_points(citations: Sequence[dict[str, Any]]) -> list[str]:
    sentences: list[str] = []
    for citation in citations[:12]:
        text = citation.get("summary") or citation.get("excerpt") or ""
        sentences.extend(_split_sentences(text))
        if len(sentences) >= MAX_KEY_POINTS * 4:
            break
    seen: set[str] = set()
    points: list[str] = []
    for sentence in sentences:
        normalized = re.sub(r"[^a-z0-9\s]", "", sentence.lower()).strip()
        if normalized in seen:
            continue
        seen.add(normalized)
        points.append(sentence)
        if len(points) >= MAX_KEY_POINTS:
            break
    return points or [FALLBACK_KEY_POINT]


def _risk_level(article_count: int, text: str) -> str:
    lowered = text.lower()
    if article_count >= HIGH_RISK_ARTICLES or _HIGH_RISK_RE.search(lowered):
        return "high"
    if article_count >= MEDIUM_RISK_ARTICLES or _MEDIUM_RISK_RE.search(lowered):
        return "medium"
    return "low"


class DeterministicDigestGenerator:
    """Builds a digest from the context alone, without any model call."""

    mode = MODE_AUTOMATED

    def generate(self, instruction: str, context: dict[str, Any]) -> dict[str, Any]:
        citations = context.get("citations") or []
        representative = context.get("representative") or {}
        headline = collapse_whitespace(representative.get("headline")) or "Developing defense story"
        summary = collapse_whitespace(representative.get("summary"))
        source_count = len({c.get("sourceName") for c in citations if c.get("sourceName")})
        if summary:
            dek = summary if len(summary) <= DEK_MAX_LENGTH else f"{summary[:217].rstrip()}..."
        else:
            dek = f"Multi-source defense coverage from {source_count} outlets."
        topic_label = context.get("topicLabel")
        if topic_label:
            why = (
                f"{source_count} sources are converging on {topic_label}. This digest highlights "
                "operational and policy implications without collapsing distinct reporting lines."
            )
        else:
            why = (
                f"{source_count} sources are covering this developing defense story. The digest "
                "summarizes overlapping facts and preserves source-attributed context."
            )
        return {
            "headline": headline,
            "dek": dek,
            "keyPoints": _key_points(citations),
            "whyItMatters": why,
            "riskLevel": _risk_level(int(context.get("articleCount24h") or 0), f"{headline} {summary}"),
        }


def digest(
    cluster: StoryCluster,
    articles: Sequence[ArticleRecord],
    generator: DigestGenerator,
    policy: ClusterPolicy | None = None,
    now: datetime | None = None,
) -> StoryDigest:
    """Generate a digest for one cluster.

    Citations are curated from the cluster's member articles and attached by
    this function; the generator output only supplies the prose fields.
    Raises DigestGenerationError when the generator fails or returns output
    that does not match DIGEST_OUTPUT_SCHEMA.
    """
    policy = policy or ClusterPolicy()
    now = now or utc_now()
    member_ids = cluster.member_ids
    members = [article for article in articles if article.id in member_ids]
    citations, summary = curate_citations(
        members, policy, cluster.press_release_driven, cluster.representative_article_id
    )
    context = build_context(cluster, {a.id: a for a in members}, citations)
    try:
        output = generator.generate(DIGEST_INSTRUCTION, context)
    except DigestGenerationError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise DigestGenerationError(f"digest generator failed: {exc}") from exc
    output = validate_digest_output(output)
    return _assemble(cluster, output, citations, summary, getattr(generator, "mode", MODE_AUTOMATED), now)


def _assemble(
    cluster: StoryCluster,
    output: dict[str, Any],
    citations: list[Citation],
    summary: CurationSummary,
    mode: str,
    now: datetime,
) -> StoryDigest:
    return StoryDigest(
        cluster_key=cluster.cluster_key,
        headline=collapse_whitespace(output["headline"]),
        dek=collapse_whitespace(output["dek"]),
        key_points=[collapse_whitespace(point) for point in output["keyPoints"]],
        why_it_matters=collapse_whitespace(output["whyItMatters"]),
        risk_level=output["riskLevel"],
        citations=citations,
        citation_count=len(citations),
        generation_mode=mode,
        review_status=REVIEW_NEEDS_REVIEW,
        generated_at=now.isoformat(),
        signature=cluster.signature,
        source_diversity=summary.source_diversity,
        has_official_source=summary.has_official_source,
    )


def run_cluster_pass(
    adapter,
    generator: DigestGenerator,
    policy: ClusterPolicy | None = None,
    now: datetime | None = None,
    logger: logging.Logger | None = None,
) -> ClusterPassResult:
    """Recluster recent articles, persist clusters and refresh stale digests.

    A failed generation keeps whatever digest the cluster already had and
    flags the cluster so the next pass retries it.
    """
    logger = logger or logging.getLogger("fieldbrief.digest")
    policy = policy or ClusterPolicy()
    now = now or utc_now()
    since = (now - timedelta(hours=policy.lookback_hours)).isoformat()

    articles = adapter.list_articles_for_clustering(since)
    existing = adapter.list_clusters(since)
    known = {article.id for article in articles}
    missing = {m.article_id for c in existing for m in c.members if m.article_id not in known}
    if missing:
        articles = articles + adapter.get_articles(missing)

    clusters = build_clusters(articles, existing, policy.window_hours, policy, now)
    generated = 0
    failed = 0
    skipped = 0
    saved: list[StoryCluster] = []
    for story in clusters:
        adapter.save_cluster(story)
        previous = adapter.get_digest(story.cluster_key)
        if not needs_regeneration(story, previous):
            skipped += 1
            saved.append(story)
            continue
        try:
            result = digest(story, articles, generator, policy, now=now)
        except DigestGenerationError as exc:
            adapter.mark_cluster_for_retry(story.cluster_key)
            failed += 1
            saved.append(replace(story, needs_digest=True))
            log_event(
                logger,
                logging.WARNING,
                "digest_generation_failed",
                cluster_key=story.cluster_key,
                error=str(exc),
            )
            continue
        adapter.save_digest(result)
        generated += 1
        saved.append(replace(story, needs_digest=False))

    log_event(
        logger,
        logging.INFO,
        "cluster_pass_completed",
        clusters=len(clusters),
        digests_generated=generated,
        digests_failed=failed,
        digests_skipped=skipped,
    )
    return ClusterPassResult(
        clusters=saved,
        digests_generated=generated,
        digests_failed=failed,
        digests_skipped=skipped,
    )
