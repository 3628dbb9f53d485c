from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import yaml

from .models import SOURCE_ROLES, SourceRecord


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class PathsConfig:
    state_db: str
    db_url: str | None


@dataclass(frozen=True)
class FetchOptions:
    since_hours: int = 168
    max_per_source: int = 30
    limit: int = 200
    timeout_ms: int = 15000
    user_agent: str = "FieldBriefIngestBot/0.1"

    def clamped(self) -> "FetchOptions":
        return FetchOptions(
            since_hours=max(1, min(int(self.since_hours), 24 * 90)),
            max_per_source=max(1, min(int(self.max_per_source), 100)),
            limit=max(1, min(int(self.limit), 1000)),
            timeout_ms=max(1500, min(int(self.timeout_ms), 90000)),
            user_agent=self.user_agent,
        )


@dataclass(frozen=True)
class ContentOptions:
    batch_size: int = 20
    concurrency: int = 5
    timeout_ms: int = 15000
    user_agent: str = "FieldBriefIngestBot/0.1"


@dataclass(frozen=True)
class TopicOptions:
    batch_size: int = 50
    concurrency: int = 3


@dataclass(frozen=True)
class CongestionRules:
    min_articles: int = 10
    min_sources: int = 6
    window_hours: int = 24


@dataclass(frozen=True)
class ClusterPolicy:
    window_hours: int = 48
    lookback_hours: int = 72
    official_majority: float = 0.5
    opinion_ceiling: float = 0.2
    max_citations: int = 10
    congestion: CongestionRules = CongestionRules()


@dataclass(frozen=True)
class GeneratorConfig:
    kind: str
    base_url: str | None
    api_key: str | None
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: int


@dataclass(frozen=True)
class Config:
    paths: PathsConfig
    fetch: FetchOptions
    content: ContentOptions
    topics: TopicOptions
    clustering: ClusterPolicy
    generator: GeneratorConfig
    sources_file: str | None


DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "state_db": "data/state.sqlite3",
        "db_url": "",
    },
    "sources_file": "config/sources.yml",
    "fetch": {
        "since_hours": 168,
        "max_per_source": 30,
        "limit": 200,
        "timeout_ms": 15000,
        "user_agent": "FieldBriefIngestBot/0.1",
    },
    "content": {
        "batch_size": 20,
        "concurrency": 5,
        "timeout_ms": 15000,
        "user_agent": "FieldBriefIngestBot/0.1",
    },
    "topics": {
        "batch_size": 50,
        "concurrency": 3,
    },
    "clustering": {
        "window_hours": 48,
        "lookback_hours": 72,
        "official_majority": 0.5,
        "opinion_ceiling": 0.2,
        "max_citations": 10,
        "congestion": {
            "min_articles": 10,
            "min_sources": 6,
            "window_hours": 24,
        },
    },
    "generator": {
        "kind": "deterministic",
        "base_url": "",
        "api_key": "",
        "model": "gpt-4o-mini",
        "temperature": 0.2,
        "max_tokens": 700,
        "timeout_seconds": 30,
    },
}

_GENERATOR_KINDS = {"deterministic", "chat_completions"}


def load_config(path: str | None) -> Config:
    raw: dict[str, Any] = {}
    if path:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                raw = yaml.safe_load(handle) or {}
        except FileNotFoundError as exc:
            raise ConfigError(f"config file not found: {path}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"config file is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("config root must be a mapping")
    merged = _deep_merge(_deep_copy(DEFAULT_CONFIG), raw)
    errors = validate_config(merged)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(merged)


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    if errors:
        return errors
    if cfg["generator"]["kind"] not in _GENERATOR_KINDS:
        errors.append(f"config.generator.kind must be one of {sorted(_GENERATOR_KINDS)}")
    for key in ("official_majority", "opinion_ceiling"):
        value = cfg["clustering"][key]
        if not 0 <= float(value) <= 1:
            errors.append(f"config.clustering.{key} must be between 0 and 1")
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            errors.append(f"missing {path}.{key}")
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if value is not None and not isinstance(value, str):
            errors.append(f"{path} must be a string")


def _build_config(cfg: dict[str, Any]) -> Config:
    paths_cfg = cfg["paths"]
    fetch_cfg = cfg["fetch"]
    content_cfg = cfg["content"]
    topics_cfg = cfg["topics"]
    cluster_cfg = cfg["clustering"]
    congestion_cfg = cluster_cfg["congestion"]
    generator_cfg = cfg["generator"]

    return Config(
        paths=PathsConfig(
            state_db=str(paths_cfg["state_db"]),
            db_url=str(paths_cfg["db_url"] or "").strip() or None,
        ),
        fetch=FetchOptions(
            since_hours=int(fetch_cfg["since_hours"]),
            max_per_source=int(fetch_cfg["max_per_source"]),
            limit=int(fetch_cfg["limit"]),
            timeout_ms=int(fetch_cfg["timeout_ms"]),
            user_agent=str(fetch_cfg["user_agent"]),
        ),
        content=ContentOptions(
            batch_size=int(content_cfg["batch_size"]),
            concurrency=int(content_cfg["concurrency"]),
            timeout_ms=int(content_cfg["timeout_ms"]),
            user_agent=str(content_cfg["user_agent"]),
        ),
        topics=TopicOptions(
            batch_size=int(topics_cfg["batch_size"]),
            concurrency=int(topics_cfg["concurrency"]),
        ),
        clustering=ClusterPolicy(
            window_hours=int(cluster_cfg["window_hours"]),
            lookback_hours=int(cluster_cfg["lookback_hours"]),
            official_majority=float(cluster_cfg["official_majority"]),
            opinion_ceiling=float(cluster_cfg["opinion_ceiling"]),
            max_citations=int(cluster_cfg["max_citations"]),
            congestion=CongestionRules(
                min_articles=int(congestion_cfg["min_articles"]),
                min_sources=int(congestion_cfg["min_sources"]),
                window_hours=int(congestion_cfg["window_hours"]),
            ),
        ),
        generator=GeneratorConfig(
            kind=str(generator_cfg["kind"]),
            base_url=str(generator_cfg["base_url"] or "").strip() or None,
            api_key=str(generator_cfg["api_key"] or "").strip() or None,
            model=str(generator_cfg["model"]),
            temperature=float(generator_cfg["temperature"]),
            max_tokens=int(generator_cfg["max_tokens"]),
            timeout_seconds=int(generator_cfg["timeout_seconds"]),
        ),
        sources_file=str(cfg["sources_file"] or "").strip() or None,
    )


def load_sources_file(path: str) -> list[SourceRecord]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"sources file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"sources file is not valid YAML: {exc}") from exc
    entries = raw.get("sources") if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise ConfigError("sources file must contain a list under 'sources'")
    sources: list[SourceRecord] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        source = source_from_dict(entry, f"sources[{index}]")
        if source.id in seen:
            raise ConfigError(f"duplicate source id: {source.id}")
        seen.add(source.id)
        sources.append(source)
    return sources


def source_from_dict(entry: Any, path: str = "source") -> SourceRecord:
    if not isinstance(entry, dict):
        raise ConfigError(f"{path} must be a mapping")
    source_id = str(entry.get("id") or "").strip()
    feed_url = str(entry.get("feed_url") or entry.get("url") or "").strip()
    if not source_id:
        raise ConfigError(f"{path}.id is required")
    if not feed_url:
        raise ConfigError(f"{path}.feed_url is required")
    role = str(entry.get("role") or "reporting").strip().lower()
    if role not in SOURCE_ROLES:
        raise ConfigError(f"{path}.role must be one of {list(SOURCE_ROLES)}")
    weight = entry.get("weight", 3)
    if isinstance(weight, bool) or not isinstance(weight, int):
        raise ConfigError(f"{path}.weight must be an integer")
    return SourceRecord(
        id=source_id,
        name=str(entry.get("name") or source_id),
        feed_url=feed_url,
        badge=str(entry.get("badge") or "Reporting"),
        category=str(entry.get("category") or "journalism"),
        role=role,
        weight=weight,
        quality_tier=str(entry.get("quality_tier") or "medium"),
        cadence=str(entry.get("cadence") or "daily"),
        homepage_url=str(entry["homepage_url"]) if entry.get("homepage_url") else None,
        enabled=bool(entry.get("enabled", True)),
    )


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
