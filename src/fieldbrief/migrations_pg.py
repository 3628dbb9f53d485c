from __future__ import annotations

import logging

from .utils import utc_now_iso

LEGACY_VERSION = "pg_0001_legacy_articles"
ENRICHED_VERSION = "pg_0002_enriched_articles"


def apply_migrations_pg(conn, target: str | None = None) -> None:
    logger = logging.getLogger("fieldbrief.migrations")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in ((LEGACY_VERSION, _bootstrap_legacy), (ENRICHED_VERSION, _migrate_enriched)):
            if version not in applied:
                migration(conn)
                conn.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, utc_now_iso()),
                )
                logger.info("migration_applied version=%s", version)
            if target and version == target:
                break
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _bootstrap_legacy(conn) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sources (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            feed_url TEXT NOT NULL,
            badge TEXT NULL,
            category TEXT NULL,
            role TEXT NOT NULL DEFAULT 'reporting',
            weight INTEGER NOT NULL DEFAULT 3,
            quality_tier TEXT NULL,
            homepage_url TEXT NULL,
            last_fetched_at TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS articles (
            id BIGSERIAL PRIMARY KEY,
            dedup_key TEXT NOT NULL UNIQUE,
            title TEXT NOT NULL,
            url TEXT NULL,
            source_id TEXT NOT NULL,
            published_at TEXT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_articles_source ON articles(source_id)")


def _migrate_enriched(conn) -> None:
    for column, ddl in (
        ("summary", "TEXT NULL"),
        ("canonical_url", "TEXT NULL"),
        ("fetched_at", "TEXT NULL"),
        ("published_precision", "INTEGER NOT NULL DEFAULT 0"),
        ("source_role", "TEXT NOT NULL DEFAULT 'reporting'"),
        ("author", "TEXT NULL"),
        ("guid", "TEXT NULL"),
        ("full_text", "TEXT NULL"),
        ("excerpt", "TEXT NULL"),
        ("lead_image_url", "TEXT NULL"),
        ("word_count", "INTEGER NOT NULL DEFAULT 0"),
        ("reading_minutes", "INTEGER NOT NULL DEFAULT 0"),
        ("content_fetch_status", "TEXT NOT NULL DEFAULT 'pending'"),
        ("content_fetch_error", "TEXT NULL"),
        ("content_fetched_at", "TEXT NULL"),
        ("topic_status", "TEXT NOT NULL DEFAULT 'pending'"),
        ("updated_at", "TEXT NULL"),
    ):
        conn.execute(f"ALTER TABLE articles ADD COLUMN IF NOT EXISTS {column} {ddl}")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_articles_content_status ON articles(content_fetch_status)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_articles_published ON articles(published_at)")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS topics (
            id BIGSERIAL PRIMARY KEY,
            slug TEXT NOT NULL UNIQUE,
            label TEXT NOT NULL,
            topic_type TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS article_topics (
            article_id BIGINT NOT NULL REFERENCES articles(id),
            topic_id BIGINT NOT NULL REFERENCES topics(id),
            confidence DOUBLE PRECISION NOT NULL DEFAULT 0,
            occurrences INTEGER NOT NULL DEFAULT 1,
            is_primary INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (article_id, topic_id)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS story_clusters (
            cluster_key TEXT PRIMARY KEY,
            topic_slug TEXT NOT NULL,
            topic_label TEXT NOT NULL,
            representative_article_id BIGINT NOT NULL,
            article_count_24h INTEGER NOT NULL DEFAULT 0,
            unique_sources_24h INTEGER NOT NULL DEFAULT 0,
            congestion_score DOUBLE PRECISION NOT NULL DEFAULT 0,
            is_congested INTEGER NOT NULL DEFAULT 0,
            reporting_count INTEGER NOT NULL DEFAULT 0,
            analysis_count INTEGER NOT NULL DEFAULT 0,
            official_count INTEGER NOT NULL DEFAULT 0,
            opinion_count INTEGER NOT NULL DEFAULT 0,
            press_release_driven INTEGER NOT NULL DEFAULT 0,
            opinion_limited INTEGER NOT NULL DEFAULT 0,
            signature TEXT NOT NULL,
            needs_digest INTEGER NOT NULL DEFAULT 1,
            last_member_at TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS cluster_members (
            cluster_key TEXT NOT NULL REFERENCES story_clusters(cluster_key),
            article_id BIGINT NOT NULL REFERENCES articles(id),
            dedup_key TEXT NOT NULL,
            source_role TEXT NOT NULL,
            is_representative INTEGER NOT NULL DEFAULT 0,
            similarity DOUBLE PRECISION NOT NULL DEFAULT 0,
            PRIMARY KEY (cluster_key, article_id)
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_cluster_members_article ON cluster_members(article_id)"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS story_digests (
            cluster_key TEXT PRIMARY KEY REFERENCES story_clusters(cluster_key),
            headline TEXT NOT NULL,
            dek TEXT NOT NULL,
            key_points_json TEXT NOT NULL,
            why_it_matters TEXT NOT NULL,
            risk_level TEXT NOT NULL,
            citations_json TEXT NOT NULL,
            citation_count INTEGER NOT NULL,
            generation_mode TEXT NOT NULL,
            review_status TEXT NOT NULL,
            source_diversity INTEGER NOT NULL DEFAULT 0,
            has_official_source INTEGER NOT NULL DEFAULT 0,
            signature TEXT NOT NULL,
            generated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS article_contract_links (
            article_id BIGINT NOT NULL REFERENCES articles(id),
            award_id TEXT NOT NULL,
            match_type TEXT NOT NULL,
            confidence DOUBLE PRECISION NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (article_id, award_id)
        )
        """
    )
