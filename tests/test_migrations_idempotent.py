import sqlite3

from fieldbrief.migrations import LEGACY_VERSION, _get_migrations, apply_migrations


def test_apply_migrations_idempotent(tmp_path):
    db_path = tmp_path / "state.sqlite3"
    conn = sqlite3.connect(str(db_path))
    apply_migrations(conn)
    apply_migrations(conn)

    rows = conn.execute("SELECT version FROM schema_migrations").fetchall()
    versions = [row[0] for row in rows]
    expected = [version for version, _ in _get_migrations()]
    assert sorted(versions) == sorted(expected)
    assert len(versions) == len(set(versions))


def test_legacy_database_upgrades_in_place(tmp_path):
    db_path = tmp_path / "state.sqlite3"
    conn = sqlite3.connect(str(db_path))
    apply_migrations(conn, target=LEGACY_VERSION)
    conn.execute(
        "INSERT INTO articles (dedup_key, title, url, source_id, published_at) VALUES (?, ?, ?, ?, ?)",
        ("k1", "Legacy row", "https://example.com/a", "alpha", None),
    )
    conn.commit()

    apply_migrations(conn)

    columns = {row[1] for row in conn.execute("PRAGMA table_info(articles)").fetchall()}
    assert {"content_fetch_status", "topic_status", "word_count"} <= columns
    row = conn.execute("SELECT title, content_fetch_status, topic_status FROM articles").fetchone()
    assert row == ("Legacy row", "pending", "pending")
