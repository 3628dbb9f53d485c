from pathlib import Path

import pytest

from fieldbrief.config import (
    DEFAULT_CONFIG,
    ConfigError,
    FetchOptions,
    load_config,
    load_sources_file,
    validate_config,
)

REPO_ROOT = Path(__file__).resolve().parents[1]


def test_load_config_defaults_without_path():
    config = load_config(None)
    assert config.fetch.max_per_source == 30
    assert config.clustering.opinion_ceiling == 0.2
    assert config.clustering.congestion.min_sources == 6
    assert config.generator.kind == "deterministic"
    assert config.paths.db_url is None


def test_load_config_merges_overrides(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(
        "fetch:\n  limit: 50\nclustering:\n  opinion_ceiling: 0.25\n",
        encoding="utf-8",
    )
    config = load_config(str(path))
    assert config.fetch.limit == 50
    assert config.fetch.timeout_ms == 15000
    assert config.clustering.opinion_ceiling == 0.25


def test_load_config_rejects_unknown_keys(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("fetch:\n  retries: 3\n", encoding="utf-8")
    with pytest.raises(ConfigError) as excinfo:
        load_config(str(path))
    assert "unknown config.fetch.retries" in str(excinfo.value)


def test_validate_config_rejects_bad_generator_kind():
    import copy

    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["generator"]["kind"] = "magic"
    errors = validate_config(cfg)
    assert any("generator.kind" in error for error in errors)


def test_missing_config_file_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "missing.yml"))


def test_fetch_options_clamped():
    options = FetchOptions(since_hours=0, max_per_source=500, limit=0, timeout_ms=10).clamped()
    assert options.since_hours == 1
    assert options.max_per_source == 100
    assert options.limit == 1
    assert options.timeout_ms == 1500


def test_bundled_sources_file_loads():
    sources = load_sources_file(str(REPO_ROOT / "config" / "sources.yml"))
    by_id = {source.id: source for source in sources}
    assert by_id["dod-releases"].role == "official"
    assert by_id["real-clear-defense"].role == "opinion"
    assert by_id["csis"].cadence == "weekly"
    assert len(by_id) == len(sources)


def test_sources_file_rejects_invalid_role(tmp_path):
    path = tmp_path / "sources.yml"
    path.write_text(
        "sources:\n  - id: alpha\n    feed_url: https://alpha.example.com/feed\n    role: rumor\n",
        encoding="utf-8",
    )
    with pytest.raises(ConfigError):
        load_sources_file(str(path))
