import sqlite3

from conftest import NOW, rfc822_hours_ago, rss_feed

from fieldbrief.cli import main
from fieldbrief.config import load_config
from fieldbrief.db import DBConn
from fieldbrief.migrations import LEGACY_VERSION, apply_migrations
from fieldbrief.models import ContentExtraction, SourceRecord
from fieldbrief.pipeline import run_all, run_cluster, run_enrich_content
from fieldbrief.storage import PersistenceAdapter

SOURCES = [
    SourceRecord(
        id="dod",
        name="Defense Office",
        feed_url="https://dod.example.com/feed",
        role="official",
        weight=5,
    ),
    SourceRecord(id="alpha", name="Alpha News", feed_url="https://alpha.example.com/feed", weight=4),
    SourceRecord(id="bravo", name="Bravo Daily", feed_url="https://bravo.example.com/feed", weight=3),
    SourceRecord(
        id="retired", name="Retired Feed", feed_url="https://retired.example.com/feed", enabled=False
    ),
]

FEEDS = {
    "https://dod.example.com/feed": rss_feed(
        "Defense Office",
        [
            {
                "title": "Hypersonic glide vehicle completes flight",
                "link": "https://dod.example.com/releases/glide-flight",
                "description": "the hypersonic glide vehicle flew its planned profile over open water.",
                "pubDate": rfc822_hours_ago(3),
            }
        ],
    ),
    "https://alpha.example.com/feed": rss_feed(
        "Alpha News",
        [
            {
                "title": "Hypersonic glide flight confirmed by officials",
                "link": "https://alpha.example.com/news/glide-confirmed",
                "description": "officials said the glide vehicle reached its planned speed during the flight.",
                "pubDate": rfc822_hours_ago(2),
            }
        ],
    ),
    "https://bravo.example.com/feed": rss_feed(
        "Bravo Daily",
        [
            {
                "title": "Hypersonic program logs another flight",
                "link": "https://bravo.example.com/stories/program-flight",
                "description": "engineers will now review the telemetry gathered during the flight.",
                "pubDate": rfc822_hours_ago(1),
            }
        ],
    ),
}


def _fetcher(url, headers, timeout_seconds):
    return FEEDS[url]


def _content_fetcher(article):
    text = f"the hypersonic flight was covered in story {article.id}. telemetry review continues."
    return ContentExtraction(
        full_text=text,
        excerpt=text,
        lead_image_url=None,
        word_count=len(text.split()),
        reading_minutes=1,
        status="fetched",
        error=None,
        fetched_at=NOW.isoformat(),
    )


def _run(db):
    return run_all(
        db,
        load_config(None),
        SOURCES,
        fetcher=_fetcher,
        content_fetcher=_content_fetcher,
        now=NOW,
    )


def test_run_all_builds_story_with_digest(db):
    result = _run(db)

    assert result["ok"] is True
    stages = result["stages"]
    assert list(stages) == ["pull", "enrich_content", "enrich_topics", "cluster"]
    assert stages["pull"]["source_count"] == 3
    assert stages["pull"]["upserted_article_count"] == 3
    assert stages["pull"]["errors"] == []
    assert stages["enrich_content"]["fetched"] == 3
    assert stages["enrich_topics"]["with_topics"] == 3
    assert stages["cluster"]["clusters"] == 1
    assert stages["cluster"]["digests_generated"] == 1

    key = stages["cluster"]["cluster_keys"][0]
    assert key.startswith("hypersonics-20261019-")

    adapter = PersistenceAdapter(db)
    story = adapter.get_story(key)
    representative = next(a for a in story["articles"] if a.id == story["cluster"].representative_article_id)
    assert representative.source_id == "dod"
    assert len(story["articles"]) == 3

    digest = story["digest"]
    assert digest.headline == "Hypersonic glide vehicle completes flight"
    assert digest.citation_count == 3
    assert {citation.source_name for citation in digest.citations} == {"Defense Office", "Alpha News", "Bravo Daily"}
    assert digest.has_official_source is True
    assert digest.source_diversity == 3
    assert story["cluster"].press_release_driven is False
    assert digest.generation_mode == "automated"
    assert digest.review_status == "needs_review"

    retired = db.execute("SELECT COUNT(*) FROM articles WHERE source_id = 'retired'").fetchone()[0]
    assert retired == 0
    stamped = db.execute("SELECT last_fetched_at FROM sources WHERE id = 'alpha'").fetchone()[0]
    assert stamped == NOW.isoformat()


def test_second_run_is_idempotent(db):
    first = _run(db)
    second = _run(db)

    assert second["ok"] is True
    stages = second["stages"]
    assert stages["enrich_content"]["processed"] == 0
    assert stages["enrich_topics"]["processed"] == 0
    assert stages["cluster"]["digests_generated"] == 0
    assert stages["cluster"]["digests_skipped"] == 1
    assert stages["cluster"]["cluster_keys"] == first["stages"]["cluster"]["cluster_keys"]
    assert db.execute("SELECT COUNT(*) FROM articles").fetchone()[0] == 3


def test_run_all_stops_at_first_failed_stage(tmp_path):
    raw = sqlite3.connect(str(tmp_path / "closed.sqlite3"))
    conn = DBConn(raw, "sqlite")
    apply_migrations(raw)
    conn.close()

    result = run_all(conn, load_config(None), SOURCES, fetcher=_fetcher, now=NOW)

    assert result["ok"] is False
    assert result["failed_stage"] == "pull"
    assert result["error"]
    assert list(result["stages"]) == ["pull"]


def test_stages_skip_on_legacy_schema(tmp_path):
    raw = sqlite3.connect(str(tmp_path / "legacy.sqlite3"))
    apply_migrations(raw, target=LEGACY_VERSION)
    conn = DBConn(raw, "sqlite")
    try:
        content = run_enrich_content(conn)
        clustered = run_cluster(conn, now=NOW)
    finally:
        conn.close()

    assert content["ok"] is True
    assert content["used_legacy_schema"] is True
    assert content["processed"] == 0
    assert clustered["ok"] is True
    assert clustered["used_legacy_schema"] is True


def test_cli_lists_sources(tmp_path, capsys):
    config_path = tmp_path / "config.yml"
    config_path.write_text("fetch:\n  limit: 50\n", encoding="utf-8")
    sources_path = tmp_path / "sources.yml"
    sources_path.write_text(
        "sources:\n"
        "  - id: alpha\n"
        "    name: Alpha News\n"
        "    feed_url: https://alpha.example.com/feed\n"
        "  - id: dod\n"
        "    name: Defense Office\n"
        "    feed_url: https://dod.example.com/feed\n"
        "    role: official\n"
        "    weight: 5\n",
        encoding="utf-8",
    )

    code = main(["--config", str(config_path), "sources", "--sources", str(sources_path)])

    assert code == 0
    out = capsys.readouterr().out
    assert '"count": 2' in out
    assert '"feed_url": "https://dod.example.com/feed"' in out


def test_cli_rejects_invalid_config(tmp_path):
    config_path = tmp_path / "config.yml"
    config_path.write_text("fetch:\n  bogus_option: 1\n", encoding="utf-8")
    assert main(["--config", str(config_path), "sources"]) == 1


def test_press_release_item_in_reporting_feed_is_cited_as_official(db):
    alpha = SourceRecord(id="alpha", name="Alpha News", feed_url="https://alpha.example.com/feed", weight=4)
    bravo = SourceRecord(id="bravo", name="Bravo Daily", feed_url="https://bravo.example.com/feed", weight=3)
    urls = {
        "a1": "https://alpha.example.com/releases/glide-flight",
        "a2": "https://alpha.example.com/news/glide-confirmed",
        "a3": "https://bravo.example.com/stories/program-flight",
    }
    feeds = {
        alpha.feed_url: rss_feed(
            "Alpha News",
            [
                {
                    "title": "Hypersonic glide vehicle completes flight",
                    "link": urls["a1"],
                    "description": "the hypersonic glide vehicle flew its planned profile.",
                    "pubDate": rfc822_hours_ago(3),
                    "categories": ["Press Release"],
                },
                {
                    "title": "Hypersonic glide flight confirmed by officials",
                    "link": urls["a2"],
                    "description": "officials said the glide vehicle reached its planned speed.",
                    "pubDate": rfc822_hours_ago(2),
                },
            ],
        ),
        bravo.feed_url: rss_feed(
            "Bravo Daily",
            [
                {
                    "title": "Hypersonic program logs another flight",
                    "link": urls["a3"],
                    "description": "engineers will now review the telemetry gathered during the flight.",
                    "pubDate": rfc822_hours_ago(1),
                }
            ],
        ),
    }

    result = run_all(
        db,
        load_config(None),
        [alpha, bravo],
        fetcher=lambda url, headers, timeout_seconds: feeds[url],
        content_fetcher=_content_fetcher,
        now=NOW,
    )

    assert result["ok"] is True
    assert result["stages"]["cluster"]["clusters"] == 1
    story = PersistenceAdapter(db).get_story(result["stages"]["cluster"]["cluster_keys"][0])
    cluster = story["cluster"]
    assert len(cluster.members) == 3
    assert cluster.official_count == 1
    assert cluster.reporting_count == 2
    assert cluster.press_release_driven is False
    representative = next(a for a in story["articles"] if a.id == cluster.representative_article_id)
    assert representative.url == urls["a1"]
    assert representative.source_role == "official"
    assert {citation.url for citation in story["digest"].citations} == set(urls.values())
