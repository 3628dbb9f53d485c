from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

import pytest

from fieldbrief.db import connect_db
from fieldbrief.models import ArticleRecord, TopicAssignment
from fieldbrief.storage import PersistenceAdapter

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def pytest_collection_modifyitems(config, items) -> None:
    if os.environ.get("FB_DB_URL"):
        return
    skip_pg = pytest.mark.skip(reason="FB_DB_URL is required for Postgres-only tests")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


@pytest.fixture
def db(tmp_path):
    conn = connect_db(str(tmp_path / "state.sqlite3"))
    yield conn
    conn.close()


@pytest.fixture
def adapter(db):
    return PersistenceAdapter(db)


def iso_hours_ago(hours: float, now: datetime = NOW) -> str:
    return (now - timedelta(hours=hours)).isoformat()


def make_article(
    article_id: int,
    *,
    source_id: str = "alpha",
    source_name: str | None = None,
    role: str = "reporting",
    weight: int = 3,
    hours_ago: float | None = 1.0,
    topic: str | None = "hypersonics",
    title: str | None = None,
    summary: str | None = None,
) -> ArticleRecord:
    topics = []
    if topic:
        topics = [TopicAssignment(slug=topic, label=topic.replace("-", " ").title(), is_primary=True, confidence=0.95)]
    return ArticleRecord(
        id=article_id,
        dedup_key=f"key-{article_id:04d}",
        title=title or f"Story {article_id}",
        summary=summary,
        url=f"https://{source_id}.example.com/story-{article_id}",
        canonical_url=f"https://{source_id}.example.com/story-{article_id}",
        source_id=source_id,
        source_name=source_name or source_id.title(),
        source_role=role,
        source_weight=weight,
        published_at=iso_hours_ago(hours_ago) if hours_ago is not None else None,
        fetched_at=NOW.isoformat(),
        full_text=None,
        excerpt=None,
        word_count=0,
        content_fetch_status="fetched",
        topic_status="tagged",
        topics=topics,
    )


def rss_feed(title: str, items: list[dict]) -> bytes:
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<rss version="2.0"><channel>',
        f"<title>{title}</title><link>https://example.com/</link><description>feed</description>",
    ]
    for item in items:
        parts.append("<item>")
        parts.append(f"<title>{item['title']}</title>")
        if item.get("link"):
            parts.append(f"<link>{item['link']}</link>")
        if item.get("description"):
            parts.append(f"<description>{item['description']}</description>")
        if item.get("pubDate"):
            parts.append(f"<pubDate>{item['pubDate']}</pubDate>")
        for category in item.get("categories", []):
            parts.append(f"<category>{category}</category>")
        parts.append("</item>")
    parts.append("</channel></rss>")
    return "".join(parts).encode("utf-8")


def rfc822_hours_ago(hours: float, now: datetime = NOW) -> str:
    return (now - timedelta(hours=hours)).strftime("%a, %d %b %Y %H:%M:%S GMT")
