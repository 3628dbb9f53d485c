import os

import pytest
from conftest import NOW

from fieldbrief.db import connect_db
from fieldbrief.migrations_pg import LEGACY_VERSION, apply_migrations_pg
from fieldbrief.models import (
    Citation,
    ClusterMember,
    NormalizedArticle,
    SourceRecord,
    StoryCluster,
    StoryDigest,
)
from fieldbrief.storage import SCHEMA_LEGACY, SCHEMA_RICH, PersistenceAdapter, SchemaUnavailableError

pytestmark = pytest.mark.postgres

TABLES = (
    "article_contract_links",
    "story_digests",
    "cluster_members",
    "story_clusters",
    "article_topics",
    "topics",
    "articles",
    "sources",
    "schema_migrations",
)

ALPHA = SourceRecord(id="alpha", name="Alpha News", feed_url="https://alpha.example.com/feed", weight=4)


def _drop_tables(conn):
    for table in TABLES:
        conn.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
    conn.commit()


def _connect(target=None):
    conn = connect_db("", os.environ["FB_DB_URL"], migrate=False)
    _drop_tables(conn)
    apply_migrations_pg(conn, target=target)
    return conn


@pytest.fixture
def pg():
    conn = _connect()
    yield conn
    _drop_tables(conn)
    conn.close()


def _article(key, title="Title", summary=None, published_at=None, precision=0):
    return NormalizedArticle(
        dedup_key=key,
        title=title,
        summary=summary,
        url=f"https://alpha.example.com/{key}",
        canonical_url=f"https://alpha.example.com/{key}",
        source_id="alpha",
        published_at=published_at,
        published_precision=precision,
        fetched_at=NOW.isoformat(),
    )


def test_migrations_are_idempotent_and_rich(pg):
    apply_migrations_pg(pg)
    assert PersistenceAdapter(pg).schema == SCHEMA_RICH


def test_legacy_schema_detected_on_postgres():
    conn = _connect(target=LEGACY_VERSION)
    try:
        adapter = PersistenceAdapter(conn)
        result = adapter.upsert([ALPHA], [_article("k1", summary="Dropped in legacy mode")])

        assert adapter.schema == SCHEMA_LEGACY
        assert result.used_legacy_schema is True
        assert conn.execute("SELECT title, url FROM articles").fetchone() == ("Title", "https://alpha.example.com/k1")
        try:
            adapter.list_articles()
        except SchemaUnavailableError:
            pass
        else:
            raise AssertionError("Expected SchemaUnavailableError")
    finally:
        _drop_tables(conn)
        conn.close()


def test_upsert_merges_on_postgres(pg):
    adapter = PersistenceAdapter(pg)
    adapter.upsert(
        [ALPHA],
        [_article("k1", summary="Original summary", published_at="2026-10-19T08:00:00+00:00", precision=3)],
    )
    second = adapter.upsert(
        [ALPHA],
        [_article("k1", title="Updated title", published_at="2026-10-19T09:00:00+00:00", precision=1)],
    )

    assert second.used_legacy_schema is False
    row = pg.execute("SELECT title, summary, published_at FROM articles WHERE dedup_key = ?", ("k1",)).fetchone()
    assert row == ("Updated title", "Original summary", "2026-10-19T08:00:00+00:00")
    assert pg.execute("SELECT COUNT(*) FROM articles").fetchone()[0] == 1


def test_cluster_and_digest_round_trip_on_postgres(pg):
    adapter = PersistenceAdapter(pg)
    adapter.upsert([ALPHA], [_article("k1", title="First"), _article("k2", title="Second")])
    ids = {item.dedup_key: item.id for item in adapter.list_articles()["items"]}
    story = StoryCluster(
        cluster_key="hypersonics-20261019-abcdef012345",
        topic_slug="hypersonics",
        topic_label="Hypersonics",
        representative_article_id=ids["k1"],
        members=[
            ClusterMember(ids["k1"], "k1", "reporting", is_representative=True, similarity=1.0),
            ClusterMember(ids["k2"], "k2", "reporting", similarity=0.5),
        ],
        article_count_24h=2,
        unique_sources_24h=1,
        congestion_score=0.16,
        reporting_count=2,
        signature="sig-1",
        last_member_at=NOW.isoformat(),
    )
    adapter.save_cluster(story)
    assert adapter.get_cluster(story.cluster_key) == story

    summary = StoryDigest(
        cluster_key=story.cluster_key,
        headline="First",
        dek="Two reports on the same flight.",
        key_points=["The flight completed."],
        why_it_matters="Coverage is converging.",
        risk_level="low",
        citations=[
            Citation(ids["k1"], "First", "Alpha News", "https://alpha.example.com/k1", "reporting"),
            Citation(ids["k2"], "Second", "Alpha News", "https://alpha.example.com/k2", "reporting"),
        ],
        citation_count=2,
        generation_mode="automated",
        review_status="needs_review",
        generated_at=NOW.isoformat(),
        signature="sig-1",
        source_diversity=1,
    )
    adapter.save_digest(summary)

    assert adapter.get_digest(story.cluster_key) == summary
    assert adapter.get_cluster(story.cluster_key).needs_digest is False
    adapter.mark_cluster_for_retry(story.cluster_key)
    assert adapter.get_cluster(story.cluster_key).needs_digest is True
    assert {article.id for article in adapter.get_story(story.cluster_key)["articles"]} == set(ids.values())
