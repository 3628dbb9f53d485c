import sqlite3
import threading

from conftest import NOW

from fieldbrief.db import DBConn, connect_db
from fieldbrief.migrations import LEGACY_VERSION, apply_migrations
from fieldbrief.models import ContentExtraction, ContractLink, NormalizedArticle, SourceRecord, TopicAssignment
from fieldbrief.storage import SCHEMA_LEGACY, SCHEMA_RICH, PersistenceAdapter, SchemaUnavailableError

ALPHA = SourceRecord(id="alpha", name="Alpha News", feed_url="https://alpha.example.com/feed", weight=4)


def _article(key, title="Title", summary=None, published_at=None, precision=0, author=None):
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
        author=author,
    )


def test_upsert_is_idempotent(adapter, db):
    articles = [_article("k1"), _article("k2")]
    first = adapter.upsert([ALPHA], articles)
    second = adapter.upsert([ALPHA], articles)

    assert first.upserted_source_count == 1
    assert first.upserted_article_count == 2
    assert second.used_legacy_schema is False
    assert db.execute("SELECT COUNT(*) FROM articles").fetchone()[0] == 2
    assert db.execute("SELECT COUNT(*) FROM sources").fetchone()[0] == 1


def test_upsert_collapses_duplicate_keys_in_one_batch(adapter, db):
    adapter.upsert([ALPHA], [_article("k1", title="First"), _article("k1", title="Second")])
    assert db.execute("SELECT COUNT(*) FROM articles").fetchone()[0] == 1


def test_upsert_never_overwrites_with_null(adapter, db):
    adapter.upsert(
        [ALPHA],
        [_article("k1", summary="Original summary", author="Reporter", published_at="2026-10-19T08:00:00+00:00", precision=3)],
    )
    adapter.upsert([ALPHA], [_article("k1", title="Updated title", summary=None, author=None)])

    row = db.execute("SELECT title, summary, author, published_at FROM articles WHERE dedup_key = 'k1'").fetchone()
    assert row == ("Updated title", "Original summary", "Reporter", "2026-10-19T08:00:00+00:00")


def test_published_at_only_replaced_when_at_least_as_precise(adapter, db):
    adapter.upsert([ALPHA], [_article("k1", published_at="2026-10-19T08:00:00+00:00", precision=3)])
    adapter.upsert([ALPHA], [_article("k1", published_at="2026-10-19T09:00:00+00:00", precision=1)])
    assert db.execute("SELECT published_at FROM articles").fetchone()[0] == "2026-10-19T08:00:00+00:00"

    adapter.upsert([ALPHA], [_article("k1", published_at="2026-10-19T07:30:00+00:00", precision=3)])
    assert db.execute("SELECT published_at FROM articles").fetchone()[0] == "2026-10-19T07:30:00+00:00"


def test_legacy_schema_fallback(tmp_path):
    raw = sqlite3.connect(str(tmp_path / "legacy.sqlite3"))
    apply_migrations(raw, target=LEGACY_VERSION)
    conn = DBConn(raw, "sqlite")
    adapter = PersistenceAdapter(conn)

    result = adapter.upsert([ALPHA], [_article("k1", summary="Dropped in legacy mode")])

    assert adapter.schema == SCHEMA_LEGACY
    assert result.used_legacy_schema is True
    assert result.upserted_article_count == 1
    assert conn.execute("SELECT title, url FROM articles").fetchone() == ("Title", "https://alpha.example.com/k1")
    try:
        adapter.select_articles_needing_content(10)
    except SchemaUnavailableError:
        pass
    else:
        raise AssertionError("Expected SchemaUnavailableError")
    conn.close()


def test_concurrent_writers_do_not_duplicate_rows(tmp_path):
    path = str(tmp_path / "state.sqlite3")
    connect_db(path).close()
    errors = []
    articles = [_article(f"k{index}", title=f"Title {index}") for index in range(40)]

    def writer():
        conn = connect_db(path, migrate=False)
        try:
            PersistenceAdapter(conn).upsert([ALPHA], articles)
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)
        finally:
            conn.close()

    threads = [threading.Thread(target=writer) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    conn = connect_db(path, migrate=False)
    try:
        assert conn.execute("SELECT COUNT(*) FROM articles").fetchone()[0] == 40
        assert conn.execute("SELECT COUNT(DISTINCT dedup_key) FROM articles").fetchone()[0] == 40
    finally:
        conn.close()


def test_content_result_resets_topic_status(adapter, db):
    adapter.upsert([ALPHA], [_article("k1")])
    article = adapter.select_articles_needing_content(10)[0]
    assert article.source_name == "Alpha News"
    assert article.source_weight == 4

    adapter.replace_article_topics(article.id, [TopicAssignment(slug="navy", label="Navy", is_primary=True)])
    adapter.record_content_result(
        article.id,
        ContentExtraction(
            full_text="Full text body",
            excerpt="Full text body",
            lead_image_url=None,
            word_count=3,
            reading_minutes=1,
            status="fetched",
            error=None,
            fetched_at=NOW.isoformat(),
        ),
    )

    stored = adapter.get_article(article.id)
    assert stored.content_fetch_status == "fetched"
    assert stored.topic_status == "pending"
    assert stored.full_text == "Full text body"
    assert adapter.select_articles_needing_content(10) == []
    assert [a.id for a in adapter.select_articles_missing_topics(10)] == [article.id]


def test_replace_article_topics_replaces_previous_set(adapter):
    adapter.upsert([ALPHA], [_article("k1")])
    article_id = adapter.list_articles()["items"][0].id
    adapter.replace_article_topics(
        article_id,
        [
            TopicAssignment(slug="navy", label="Navy", is_primary=True, confidence=0.9),
            TopicAssignment(slug="budget", label="Budget", is_primary=False, confidence=0.5),
        ],
    )
    adapter.replace_article_topics(article_id, [TopicAssignment(slug="army", label="Army", is_primary=True)])

    article = adapter.get_article(article_id)
    assert [topic.slug for topic in article.topics] == ["army"]
    assert article.topic_status == "tagged"
    assert article.topics[0].topic_id is not None


def test_contract_links_round_trip(adapter):
    adapter.upsert([ALPHA], [_article("k1")])
    article_id = adapter.list_articles()["items"][0].id
    adapter.upsert_contract_links(
        [
            ContractLink(article_id=article_id, award_id="AWD-1", match_type="exact", confidence=0.9),
            ContractLink(article_id=article_id, award_id="AWD-2", match_type="fuzzy", confidence=0.4),
        ]
    )
    adapter.upsert_contract_links(
        [ContractLink(article_id=article_id, award_id="AWD-2", match_type="fuzzy", confidence=0.95)]
    )
    links = adapter.list_contract_links(article_id)
    assert [(link.award_id, link.confidence) for link in links] == [("AWD-2", 0.95), ("AWD-1", 0.9)]


def test_list_articles_paginates(adapter):
    adapter.upsert(
        [ALPHA],
        [
            _article(f"k{index}", published_at=f"2026-10-1{index}T00:00:00+00:00", precision=3)
            for index in range(5)
        ],
    )
    page = adapter.list_articles(page=2, page_size=2)
    assert page["total"] == 5
    assert page["page"] == 2
    assert [item.dedup_key for item in page["items"]] == ["k2", "k1"]


def test_detect_schema_rich(adapter):
    assert adapter.schema == SCHEMA_RICH
    assert adapter.has_rich_schema
    assert adapter.get_story("missing") is None
