from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Any, Iterable, Sequence

from .models import (
    CONTENT_FETCHED,
    TOPIC_PENDING,
    TOPIC_TAGGED,
    ArticleRecord,
    Citation,
    ClusterMember,
    ContentExtraction,
    ContractLink,
    NormalizedArticle,
    SourceRecord,
    StoryCluster,
    StoryDigest,
    TopicAssignment,
    UpsertResult,
)
from .utils import log_event, utc_now_iso

UPSERT_BATCH_SIZE = 300

SCHEMA_RICH = "rich"
SCHEMA_LEGACY = "legacy"

_RICH_ARTICLE_COLUMNS = {"content_fetch_status", "word_count", "topic_status"}

_ARTICLE_SELECT = """
    SELECT a.id, a.dedup_key, a.title, a.summary, a.url, a.canonical_url, a.source_id,
           COALESCE(s.name, a.source_id), a.source_role, COALESCE(s.weight, 3),
           a.published_at, a.fetched_at, a.full_text, a.excerpt, a.word_count,
           a.content_fetch_status, a.topic_status, a.reading_minutes, a.lead_image_url,
           a.content_fetch_error, a.author
    FROM articles a
    LEFT JOIN sources s ON s.id = a.source_id
"""

_CLUSTER_SELECT = """
    SELECT cluster_key, topic_slug, topic_label, representative_article_id,
           article_count_24h, unique_sources_24h, congestion_score, is_congested,
           reporting_count, analysis_count, official_count, opinion_count,
           press_release_driven, opinion_limited, signature, needs_digest, last_member_at
    FROM story_clusters
"""

_DIGEST_SELECT = """
    SELECT cluster_key, headline, dek, key_points_json, why_it_matters, risk_level,
           citations_json, citation_count, generation_mode, review_status,
           source_diversity, has_official_source, signature, generated_at
    FROM story_digests
"""


class SchemaUnavailableError(RuntimeError):
    pass


def detect_schema(conn: Any) -> str:
    columns = _table_columns(conn, "articles")
    if _RICH_ARTICLE_COLUMNS.issubset(columns) and _table_exists(conn, "article_topics"):
        return SCHEMA_RICH
    return SCHEMA_LEGACY


def _table_exists(conn: Any, table: str) -> bool:
    if getattr(conn, "backend", "sqlite") == "postgres":
        cursor = conn.execute("SELECT to_regclass(?)", (f"public.{table}",))
        row = cursor.fetchone()
        return bool(row and row[0])
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
    )
    return cursor.fetchone() is not None


def _table_columns(conn: Any, table: str) -> set[str]:
    if getattr(conn, "backend", "sqlite") == "postgres":
        cursor = conn.execute(
            """
            SELECT column_name
            FROM information_schema.columns
            WHERE table_schema = 'public' AND table_name = ?
            """,
            (table,),
        )
        return {row[0] for row in cursor.fetchall()}
    cursor = conn.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cursor.fetchall()}


def _chunks(rows: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def _unique_articles(articles: Iterable[NormalizedArticle]) -> list[NormalizedArticle]:
    by_key: dict[str, NormalizedArticle] = {}
    for article in articles:
        by_key[article.dedup_key] = article
    return list(by_key.values())


def _upsert_sources(conn: Any, sources: Sequence[SourceRecord]) -> int:
    now = utc_now_iso()
    rows = [
        (
            source.id,
            source.name,
            source.feed_url,
            source.badge,
            source.category,
            source.role,
            source.weight,
            source.quality_tier,
            source.homepage_url,
            source.last_fetched_at,
            now,
            now,
        )
        for source in sources
    ]
    for batch in _chunks(rows, UPSERT_BATCH_SIZE):
        conn.executemany(
            """
            INSERT INTO sources
                (id, name, feed_url, badge, category, role, weight, quality_tier,
                 homepage_url, last_fetched_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name,
                feed_url=excluded.feed_url,
                badge=excluded.badge,
                category=excluded.category,
                role=excluded.role,
                weight=excluded.weight,
                quality_tier=excluded.quality_tier,
                homepage_url=COALESCE(excluded.homepage_url, sources.homepage_url),
                last_fetched_at=COALESCE(excluded.last_fetched_at, sources.last_fetched_at),
                updated_at=excluded.updated_at
            """,
            list(batch),
        )
        conn.commit()
    return len(rows)


class RichArticleWriter:
    used_legacy_schema = False

    def __init__(self, conn: Any) -> None:
        self.conn = conn

    def write(self, articles: Sequence[NormalizedArticle]) -> int:
        now = utc_now_iso()
        rows = [
            (
                article.dedup_key,
                article.title,
                article.summary,
                article.url,
                article.canonical_url,
                article.source_id,
                article.published_at,
                article.published_precision,
                article.fetched_at,
                article.source_role,
                article.author,
                article.guid,
                now,
            )
            for article in articles
        ]
        for batch in _chunks(rows, UPSERT_BATCH_SIZE):
            self.conn.executemany(
                """
                INSERT INTO articles
                    (dedup_key, title, summary, url, canonical_url, source_id, published_at,
                     published_precision, fetched_at, source_role, author, guid, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(dedup_key) DO UPDATE SET
                    title=COALESCE(excluded.title, articles.title),
                    summary=COALESCE(excluded.summary, articles.summary),
                    url=COALESCE(excluded.url, articles.url),
                    canonical_url=COALESCE(excluded.canonical_url, articles.canonical_url),
                    published_at=CASE
                        WHEN excluded.published_at IS NOT NULL
                             AND excluded.published_precision >= articles.published_precision
                        THEN excluded.published_at
                        ELSE articles.published_at
                    END,
                    published_precision=CASE
                        WHEN excluded.published_at IS NOT NULL
                             AND excluded.published_precision >= articles.published_precision
                        THEN excluded.published_precision
                        ELSE articles.published_precision
                    END,
                    fetched_at=COALESCE(excluded.fetched_at, articles.fetched_at),
                    source_role=COALESCE(excluded.source_role, articles.source_role),
                    author=COALESCE(excluded.author, articles.author),
                    guid=COALESCE(excluded.guid, articles.guid),
                    updated_at=excluded.updated_at
                """,
                list(batch),
            )
            self.conn.commit()
        return len(rows)


class LegacyArticleWriter:
    used_legacy_schema = True

    def __init__(self, conn: Any) -> None:
        self.conn = conn

    def write(self, articles: Sequence[NormalizedArticle]) -> int:
        rows = [
            (
                article.dedup_key,
                article.title,
                article.url,
                article.source_id,
                article.published_at,
            )
            for article in articles
        ]
        for batch in _chunks(rows, UPSERT_BATCH_SIZE):
            self.conn.executemany(
                """
                INSERT INTO articles (dedup_key, title, url, source_id, published_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(dedup_key) DO UPDATE SET
                    title=COALESCE(excluded.title, articles.title),
                    url=COALESCE(excluded.url, articles.url),
                    published_at=COALESCE(excluded.published_at, articles.published_at)
                """,
                list(batch),
            )
            self.conn.commit()
        return len(rows)


class PersistenceAdapter:
    """Storage boundary for every pipeline stage.

    The schema is inspected once at construction. Databases that predate the
    enrichment columns get the legacy writer, which stores only the minimal
    article fields; all enrichment, clustering and read helpers require the
    rich schema and raise SchemaUnavailableError otherwise.
    """

    def __init__(self, conn: Any, logger: logging.Logger | None = None) -> None:
        self.conn = conn
        self.logger = logger or logging.getLogger("fieldbrief.storage")
        self.schema = detect_schema(conn)
        if self.schema == SCHEMA_RICH:
            self._writer: RichArticleWriter | LegacyArticleWriter = RichArticleWriter(conn)
        else:
            self._writer = LegacyArticleWriter(conn)
            log_event(self.logger, logging.WARNING, "legacy_schema_detected")

    @property
    def has_rich_schema(self) -> bool:
        return self.schema == SCHEMA_RICH

    def _require_rich(self, operation: str) -> None:
        if not self.has_rich_schema:
            raise SchemaUnavailableError(f"{operation} requires the enriched article schema")

    def upsert(
        self, sources: Sequence[SourceRecord], articles: Iterable[NormalizedArticle]
    ) -> UpsertResult:
        unique = _unique_articles(articles)
        try:
            source_count = _upsert_sources(self.conn, sources)
            article_count = self._writer.write(unique)
        except Exception:
            self.conn.rollback()
            raise
        log_event(
            self.logger,
            logging.INFO,
            "articles_upserted",
            sources=source_count,
            articles=article_count,
            schema=self.schema,
        )
        return UpsertResult(
            upserted_source_count=source_count,
            upserted_article_count=article_count,
            used_legacy_schema=self._writer.used_legacy_schema,
        )

    # Content enrichment

    def select_articles_needing_content(self, limit: int) -> list[ArticleRecord]:
        self._require_rich("select_articles_needing_content")
        cursor = self.conn.execute(
            _ARTICLE_SELECT
            + """
            WHERE (a.content_fetch_status IS NULL OR a.content_fetch_status != ?)
              AND a.url IS NOT NULL
            ORDER BY COALESCE(a.published_at, a.fetched_at) DESC, a.id ASC
            LIMIT ?
            """,
            (CONTENT_FETCHED, int(limit)),
        )
        return [_article_from_row(row) for row in cursor.fetchall()]

    def record_content_result(self, article_id: int, result: ContentExtraction) -> None:
        self._require_rich("record_content_result")
        now = utc_now_iso()
        if result.status == CONTENT_FETCHED:
            self.conn.execute(
                """
                UPDATE articles
                SET full_text = ?, excerpt = ?, lead_image_url = ?, word_count = ?,
                    reading_minutes = ?, content_fetch_status = ?, content_fetch_error = NULL,
                    content_fetched_at = ?, topic_status = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    result.full_text,
                    result.excerpt,
                    result.lead_image_url,
                    result.word_count,
                    result.reading_minutes,
                    result.status,
                    result.fetched_at,
                    TOPIC_PENDING,
                    now,
                    article_id,
                ),
            )
        else:
            self.conn.execute(
                """
                UPDATE articles
                SET content_fetch_status = ?, content_fetch_error = ?, content_fetched_at = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (result.status, result.error, result.fetched_at, now, article_id),
            )
        self.conn.commit()

    # Topic enrichment

    def select_articles_missing_topics(self, limit: int) -> list[ArticleRecord]:
        self._require_rich("select_articles_missing_topics")
        cursor = self.conn.execute(
            _ARTICLE_SELECT
            + """
            WHERE a.content_fetch_status = ?
              AND (a.topic_status IS NULL OR a.topic_status IN ('pending', 'failed'))
            ORDER BY COALESCE(a.published_at, a.fetched_at) DESC, a.id ASC
            LIMIT ?
            """,
            (CONTENT_FETCHED, int(limit)),
        )
        return [_article_from_row(row) for row in cursor.fetchall()]

    def replace_article_topics(self, article_id: int, topics: Sequence[TopicAssignment]) -> None:
        self._require_rich("replace_article_topics")
        try:
            self.conn.execute("DELETE FROM article_topics WHERE article_id = ?", (article_id,))
            for topic in topics:
                topic_id = self._upsert_topic(topic)
                self.conn.execute(
                    """
                    INSERT INTO article_topics
                        (article_id, topic_id, confidence, occurrences, is_primary)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(article_id, topic_id) DO UPDATE SET
                        confidence=excluded.confidence,
                        occurrences=excluded.occurrences,
                        is_primary=excluded.is_primary
                    """,
                    (
                        article_id,
                        topic_id,
                        float(topic.confidence),
                        int(topic.occurrences),
                        1 if topic.is_primary else 0,
                    ),
                )
            self.conn.execute(
                "UPDATE articles SET topic_status = ?, updated_at = ? WHERE id = ?",
                (TOPIC_TAGGED, utc_now_iso(), article_id),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def _upsert_topic(self, topic: TopicAssignment) -> int:
        self.conn.execute(
            """
            INSERT INTO topics (slug, label, topic_type)
            VALUES (?, ?, ?)
            ON CONFLICT(slug) DO UPDATE SET label=excluded.label, topic_type=excluded.topic_type
            """,
            (topic.slug, topic.label, topic.topic_type),
        )
        row = self.conn.execute("SELECT id FROM topics WHERE slug = ?", (topic.slug,)).fetchone()
        return int(row[0])

    def mark_topic_status(self, article_id: int, status: str) -> None:
        self._require_rich("mark_topic_status")
        self.conn.execute(
            "UPDATE articles SET topic_status = ?, updated_at = ? WHERE id = ?",
            (status, utc_now_iso(), article_id),
        )
        self.conn.commit()

    # Clustering

    def list_articles_for_clustering(self, since: str) -> list[ArticleRecord]:
        self._require_rich("list_articles_for_clustering")
        cursor = self.conn.execute(
            _ARTICLE_SELECT
            + """
            WHERE a.topic_status = ?
              AND COALESCE(a.published_at, a.fetched_at) >= ?
            ORDER BY a.id ASC
            """,
            (TOPIC_TAGGED, since),
        )
        return self._attach_topics([_article_from_row(row) for row in cursor.fetchall()])

    def get_articles(self, article_ids: Iterable[int]) -> list[ArticleRecord]:
        self._require_rich("get_articles")
        ids = sorted(set(int(value) for value in article_ids))
        if not ids:
            return []
        records: list[ArticleRecord] = []
        for batch in _chunks(ids, UPSERT_BATCH_SIZE):
            placeholders = ", ".join("?" for _ in batch)
            cursor = self.conn.execute(
                _ARTICLE_SELECT + f" WHERE a.id IN ({placeholders}) ORDER BY a.id ASC",
                tuple(batch),
            )
            records.extend(_article_from_row(row) for row in cursor.fetchall())
        return self._attach_topics(records)

    def _attach_topics(self, records: list[ArticleRecord]) -> list[ArticleRecord]:
        if not records:
            return records
        topics_by_article: dict[int, list[TopicAssignment]] = {}
        ids = [record.id for record in records]
        for batch in _chunks(ids, UPSERT_BATCH_SIZE):
            placeholders = ", ".join("?" for _ in batch)
            cursor = self.conn.execute(
                f"""
                SELECT at.article_id, t.id, t.slug, t.label, t.topic_type,
                       at.confidence, at.occurrences, at.is_primary
                FROM article_topics at
                JOIN topics t ON t.id = at.topic_id
                WHERE at.article_id IN ({placeholders})
                ORDER BY at.article_id, at.is_primary DESC, at.confidence DESC, t.slug
                """,
                tuple(batch),
            )
            for row in cursor.fetchall():
                topics_by_article.setdefault(int(row[0]), []).append(
                    TopicAssignment(
                        slug=row[2],
                        label=row[3],
                        is_primary=bool(row[7]),
                        confidence=float(row[5] or 0),
                        topic_id=int(row[1]),
                        topic_type=row[4],
                        occurrences=int(row[6] or 0),
                    )
                )
        return [_with_topics(record, topics_by_article.get(record.id, [])) for record in records]

    def list_clusters(self, since: str | None = None) -> list[StoryCluster]:
        self._require_rich("list_clusters")
        if since:
            cursor = self.conn.execute(
                _CLUSTER_SELECT
                + " WHERE last_member_at IS NULL OR last_member_at >= ? ORDER BY cluster_key",
                (since,),
            )
        else:
            cursor = self.conn.execute(_CLUSTER_SELECT + " ORDER BY cluster_key")
        rows = cursor.fetchall()
        return [_cluster_from_row(row, self._cluster_members(row[0])) for row in rows]

    def get_cluster(self, cluster_key: str) -> StoryCluster | None:
        self._require_rich("get_cluster")
        row = self.conn.execute(
            _CLUSTER_SELECT + " WHERE cluster_key = ?", (cluster_key,)
        ).fetchone()
        if not row:
            return None
        return _cluster_from_row(row, self._cluster_members(cluster_key))

    def _cluster_members(self, cluster_key: str) -> list[ClusterMember]:
        cursor = self.conn.execute(
            """
            SELECT article_id, dedup_key, source_role, is_representative, similarity
            FROM cluster_members
            WHERE cluster_key = ?
            ORDER BY article_id
            """,
            (cluster_key,),
        )
        return [
            ClusterMember(
                article_id=int(row[0]),
                dedup_key=row[1],
                source_role=row[2],
                is_representative=bool(row[3]),
                similarity=float(row[4] or 0),
            )
            for row in cursor.fetchall()
        ]

    def save_cluster(self, cluster: StoryCluster) -> None:
        self._require_rich("save_cluster")
        now = utc_now_iso()
        try:
            self.conn.execute(
                """
                INSERT INTO story_clusters
                    (cluster_key, topic_slug, topic_label, representative_article_id,
                     article_count_24h, unique_sources_24h, congestion_score, is_congested,
                     reporting_count, analysis_count, official_count, opinion_count,
                     press_release_driven, opinion_limited, signature, needs_digest,
                     last_member_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(cluster_key) DO UPDATE SET
                    topic_slug=excluded.topic_slug,
                    topic_label=excluded.topic_label,
                    representative_article_id=excluded.representative_article_id,
                    article_count_24h=excluded.article_count_24h,
                    unique_sources_24h=excluded.unique_sources_24h,
                    congestion_score=excluded.congestion_score,
                    is_congested=excluded.is_congested,
                    reporting_count=excluded.reporting_count,
                    analysis_count=excluded.analysis_count,
                    official_count=excluded.official_count,
                    opinion_count=excluded.opinion_count,
                    press_release_driven=excluded.press_release_driven,
                    opinion_limited=excluded.opinion_limited,
                    signature=excluded.signature,
                    needs_digest=excluded.needs_digest,
                    last_member_at=excluded.last_member_at,
                    updated_at=excluded.updated_at
                """,
                (
                    cluster.cluster_key,
                    cluster.topic_slug,
                    cluster.topic_label,
                    cluster.representative_article_id,
                    cluster.article_count_24h,
                    cluster.unique_sources_24h,
                    cluster.congestion_score,
                    1 if cluster.is_congested else 0,
                    cluster.reporting_count,
                    cluster.analysis_count,
                    cluster.official_count,
                    cluster.opinion_count,
                    1 if cluster.press_release_driven else 0,
                    1 if cluster.opinion_limited else 0,
                    cluster.signature,
                    1 if cluster.needs_digest else 0,
                    cluster.last_member_at,
                    now,
                    now,
                ),
            )
            self.conn.execute(
                "DELETE FROM cluster_members WHERE cluster_key = ?", (cluster.cluster_key,)
            )
            self.conn.executemany(
                """
                INSERT INTO cluster_members
                    (cluster_key, article_id, dedup_key, source_role, is_representative, similarity)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        cluster.cluster_key,
                        member.article_id,
                        member.dedup_key,
                        member.source_role,
                        1 if member.is_representative else 0,
                        member.similarity,
                    )
                    for member in cluster.members
                ],
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def mark_cluster_for_retry(self, cluster_key: str) -> None:
        self._require_rich("mark_cluster_for_retry")
        self.conn.execute(
            "UPDATE story_clusters SET needs_digest = 1, updated_at = ? WHERE cluster_key = ?",
            (utc_now_iso(), cluster_key),
        )
        self.conn.commit()

    def get_digest(self, cluster_key: str) -> StoryDigest | None:
        self._require_rich("get_digest")
        row = self.conn.execute(
            _DIGEST_SELECT + " WHERE cluster_key = ?", (cluster_key,)
        ).fetchone()
        if not row:
            return None
        return _digest_from_row(row)

    def save_digest(self, digest: StoryDigest) -> None:
        self._require_rich("save_digest")
        citations_json = json.dumps(
            [
                {
                    "article_id": citation.article_id,
                    "headline": citation.headline,
                    "source_name": citation.source_name,
                    "url": citation.url,
                    "source_role": citation.source_role,
                }
                for citation in digest.citations
            ]
        )
        try:
            self.conn.execute(
                """
                INSERT INTO story_digests
                    (cluster_key, headline, dek, key_points_json, why_it_matters, risk_level,
                     citations_json, citation_count, generation_mode, review_status,
                     source_diversity, has_official_source, signature, generated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(cluster_key) DO UPDATE SET
                    headline=excluded.headline,
                    dek=excluded.dek,
                    key_points_json=excluded.key_points_json,
                    why_it_matters=excluded.why_it_matters,
                    risk_level=excluded.risk_level,
                    citations_json=excluded.citations_json,
                    citation_count=excluded.citation_count,
                    generation_mode=excluded.generation_mode,
                    review_status=excluded.review_status,
                    source_diversity=excluded.source_diversity,
                    has_official_source=excluded.has_official_source,
                    signature=excluded.signature,
                    generated_at=excluded.generated_at
                """,
                (
                    digest.cluster_key,
                    digest.headline,
                    digest.dek,
                    json.dumps(list(digest.key_points)),
                    digest.why_it_matters,
                    digest.risk_level,
                    citations_json,
                    digest.citation_count,
                    digest.generation_mode,
                    digest.review_status,
                    digest.source_diversity,
                    1 if digest.has_official_source else 0,
                    digest.signature,
                    digest.generated_at,
                ),
            )
            self.conn.execute(
                "UPDATE story_clusters SET needs_digest = 0, updated_at = ? WHERE cluster_key = ?",
                (utc_now_iso(), digest.cluster_key),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    # Contract links

    def upsert_contract_links(self, links: Sequence[ContractLink]) -> int:
        self._require_rich("upsert_contract_links")
        now = utc_now_iso()
        rows = [
            (link.article_id, link.award_id, link.match_type, float(link.confidence), now)
            for link in links
        ]
        for batch in _chunks(rows, UPSERT_BATCH_SIZE):
            self.conn.executemany(
                """
                INSERT INTO article_contract_links
                    (article_id, award_id, match_type, confidence, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(article_id, award_id) DO UPDATE SET
                    match_type=excluded.match_type,
                    confidence=excluded.confidence,
                    updated_at=excluded.updated_at
                """,
                list(batch),
            )
            self.conn.commit()
        return len(rows)

    def list_contract_links(self, article_id: int) -> list[ContractLink]:
        self._require_rich("list_contract_links")
        cursor = self.conn.execute(
            """
            SELECT article_id, award_id, match_type, confidence
            FROM article_contract_links
            WHERE article_id = ?
            ORDER BY confidence DESC, award_id ASC
            """,
            (article_id,),
        )
        return [
            ContractLink(
                article_id=int(row[0]),
                award_id=row[1],
                match_type=row[2],
                confidence=float(row[3]),
            )
            for row in cursor.fetchall()
        ]

    # Downstream reads

    def list_articles(self, page: int = 1, page_size: int = 20) -> dict[str, Any]:
        self._require_rich("list_articles")
        page = max(1, int(page))
        page_size = max(1, min(int(page_size), 100))
        total_row = self.conn.execute("SELECT COUNT(*) FROM articles").fetchone()
        cursor = self.conn.execute(
            _ARTICLE_SELECT
            + """
            ORDER BY COALESCE(a.published_at, a.fetched_at) DESC, a.id DESC
            LIMIT ? OFFSET ?
            """,
            (page_size, (page - 1) * page_size),
        )
        items = self._attach_topics([_article_from_row(row) for row in cursor.fetchall()])
        return {
            "items": items,
            "page": page,
            "page_size": page_size,
            "total": int(total_row[0]) if total_row else 0,
        }

    def get_article(self, article_id: int) -> ArticleRecord | None:
        records = self.get_articles([article_id])
        return records[0] if records else None

    def get_story(self, cluster_key: str) -> dict[str, Any] | None:
        cluster = self.get_cluster(cluster_key)
        if cluster is None:
            return None
        return {
            "cluster": cluster,
            "digest": self.get_digest(cluster_key),
            "articles": self.get_articles(cluster.member_ids),
        }


def _article_from_row(row: Sequence[Any]) -> ArticleRecord:
    return ArticleRecord(
        id=int(row[0]),
        dedup_key=row[1],
        title=row[2],
        summary=row[3],
        url=row[4],
        canonical_url=row[5],
        source_id=row[6],
        source_name=row[7],
        source_role=row[8] or "reporting",
        source_weight=int(row[9] if row[9] is not None else 3),
        published_at=row[10],
        fetched_at=row[11],
        full_text=row[12],
        excerpt=row[13],
        word_count=int(row[14] or 0),
        content_fetch_status=row[15] or "pending",
        topic_status=row[16] or TOPIC_PENDING,
        reading_minutes=int(row[17] or 0),
        lead_image_url=row[18],
        content_fetch_error=row[19],
        author=row[20],
    )


def _with_topics(record: ArticleRecord, topics: list[TopicAssignment]) -> ArticleRecord:
    return replace(record, topics=topics)


def _cluster_from_row(row: Sequence[Any], members: list[ClusterMember]) -> StoryCluster:
    return StoryCluster(
        cluster_key=row[0],
        topic_slug=row[1],
        topic_label=row[2],
        representative_article_id=int(row[3]),
        members=members,
        article_count_24h=int(row[4] or 0),
        unique_sources_24h=int(row[5] or 0),
        congestion_score=float(row[6] or 0),
        is_congested=bool(row[7]),
        reporting_count=int(row[8] or 0),
        analysis_count=int(row[9] or 0),
        official_count=int(row[10] or 0),
        opinion_count=int(row[11] or 0),
        press_release_driven=bool(row[12]),
        opinion_limited=bool(row[13]),
        signature=row[14],
        needs_digest=bool(row[15]),
        last_member_at=row[16],
    )


def _digest_from_row(row: Sequence[Any]) -> StoryDigest:
    citations = [
        Citation(
            article_id=int(item["article_id"]),
            headline=item.get("headline") or "",
            source_name=item.get("source_name") or "",
            url=item.get("url"),
            source_role=item.get("source_role") or "reporting",
        )
        for item in json.loads(row[6] or "[]")
    ]
    return StoryDigest(
        cluster_key=row[0],
        headline=row[1],
        dek=row[2],
        key_points=list(json.loads(row[3] or "[]")),
        why_it_matters=row[4],
        risk_level=row[5],
        citations=citations,
        citation_count=int(row[7] or 0),
        generation_mode=row[8],
        review_status=row[9],
        source_diversity=int(row[10] or 0),
        has_official_source=bool(row[11]),
        signature=row[12],
        generated_at=row[13],
    )
