from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from typing import Any

from .config import Config, ConfigError, load_config, load_sources_file
from .db import connect_db
from .models import SourceRecord
from .pipeline import build_generator, run_all, run_cluster, run_enrich_content, run_enrich_topics, run_pull
from .utils import configure_logging, json_dumps, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("fieldbrief")


def _load(args: argparse.Namespace, logger: logging.Logger) -> Config | None:
    try:
        return load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None


def _load_sources(config: Config, args: argparse.Namespace, logger: logging.Logger) -> list[SourceRecord] | None:
    path = getattr(args, "sources", None) or config.sources_file
    if not path:
        log_event(logger, logging.ERROR, "no_sources", hint="Set sources_file in config.yml or pass --sources")
        return None
    try:
        return load_sources_file(path)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None


def _connect(config: Config):
    return connect_db(config.paths.state_db, config.paths.db_url)


def _emit(result: dict[str, Any]) -> int:
    print(json_dumps(result))
    return 0 if result.get("ok") else 1


def _fetch_options(config: Config, args: argparse.Namespace):
    overrides = {
        key: getattr(args, key)
        for key in ("since_hours", "max_per_source", "limit", "timeout_ms")
        if getattr(args, key, None) is not None
    }
    return replace(config.fetch, **overrides)


def _cmd_pull(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    sources = _load_sources(config, args, logger)
    if sources is None:
        return 1
    conn = _connect(config)
    try:
        return _emit(run_pull(conn, sources, _fetch_options(config, args), logger=logger))
    finally:
        conn.close()


def _cmd_enrich_content(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    options = config.content
    if args.batch_size is not None:
        options = replace(options, batch_size=args.batch_size)
    if args.concurrency is not None:
        options = replace(options, concurrency=args.concurrency)
    conn = _connect(config)
    try:
        return _emit(run_enrich_content(conn, options, logger=logger))
    finally:
        conn.close()


def _cmd_enrich_topics(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    options = config.topics
    if args.batch_size is not None:
        options = replace(options, batch_size=args.batch_size)
    if args.concurrency is not None:
        options = replace(options, concurrency=args.concurrency)
    conn = _connect(config)
    try:
        return _emit(run_enrich_topics(conn, options, logger=logger))
    finally:
        conn.close()


def _cmd_cluster(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    conn = _connect(config)
    try:
        generator = build_generator(config.generator, logger=logger)
        return _emit(run_cluster(conn, config.clustering, generator, logger=logger))
    finally:
        conn.close()


def _cmd_run(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    sources = _load_sources(config, args, logger)
    if sources is None:
        return 1
    config = replace(config, fetch=_fetch_options(config, args))
    conn = _connect(config)
    try:
        return _emit(run_all(conn, config, sources, logger=logger))
    finally:
        conn.close()


def _cmd_sources(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    sources = _load_sources(config, args, logger)
    if sources is None:
        return 1
    for source in sources:
        log_event(
            logger,
            logging.INFO,
            "source",
            source_id=source.id,
            enabled=source.enabled,
            role=source.role,
            weight=source.weight,
            cadence=source.cadence,
        )
    log_event(logger, logging.INFO, "sources_listed", count=len(sources))
    return _emit({"ok": True, "count": len(sources), "sources": sources})


def _add_fetch_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--sources", default=None, help="Path to sources YAML (overrides config)")
    parser.add_argument("--since-hours", type=int, default=None, help="Drop items older than this")
    parser.add_argument("--max-per-source", type=int, default=None, help="Per-source item cap")
    parser.add_argument("--limit", type=int, default=None, help="Global item limit")
    parser.add_argument("--timeout-ms", type=int, default=None, help="Per-request timeout")


def _add_pool_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--batch-size", type=int, default=None, help="Articles selected per run")
    parser.add_argument("--concurrency", type=int, default=None, help="Worker pool size")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fieldbrief", description="FieldBrief pipeline CLI")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (built-in defaults when omitted)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    pull_parser = subparsers.add_parser("pull", help="Fetch feeds and upsert articles")
    _add_fetch_arguments(pull_parser)
    pull_parser.set_defaults(func=_cmd_pull)

    content_parser = subparsers.add_parser("enrich-content", help="Fetch full text for pending articles")
    _add_pool_arguments(content_parser)
    content_parser.set_defaults(func=_cmd_enrich_content)

    topics_parser = subparsers.add_parser("enrich-topics", help="Tag fetched articles with topics")
    _add_pool_arguments(topics_parser)
    topics_parser.set_defaults(func=_cmd_enrich_topics)

    cluster_parser = subparsers.add_parser("cluster", help="Recompute story clusters and digests")
    cluster_parser.set_defaults(func=_cmd_cluster)

    run_parser = subparsers.add_parser("run", help="Run every stage in order")
    _add_fetch_arguments(run_parser)
    run_parser.set_defaults(func=_cmd_run)

    sources_parser = subparsers.add_parser("sources", help="List configured sources")
    sources_parser.add_argument("--sources", default=None, help="Path to sources YAML (overrides config)")
    sources_parser.set_defaults(func=_cmd_sources)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
