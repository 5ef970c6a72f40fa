from __future__ import annotations

import argparse
import json
import logging
import shutil
from dataclasses import replace
from pathlib import Path

from .config import load_config
from .errors import ITEM_ERRORS, ConfigError, FetchError
from .fsinit import build_default_paths, ensure_runtime_dirs, set_umask_from_env
from .ingest import make_fetcher, select_items
from .policy import find_partition, resolve_partitions
from .publish import build_publisher, thumbnail_key
from .storage import count_documents, get_batch_stats, init_db, list_documents
from .thumbnails import FrameExtractor
from .utils import configure_logging, log_event, normalize_identifier, utc_now
from .worker import run_once


def _setup_logging() -> logging.Logger:
    return configure_logging("thumbreel")


def _cmd_run(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1

    set_umask_from_env()
    ensure_runtime_dirs(build_default_paths(config))
    return run_once(config, logger)


def _cmd_preview(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        config = load_config(args.config)
        partition = find_partition(config, args.partition, logger)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    if args.limit:
        partition = replace(partition, limit=args.limit)

    try:
        items = make_fetcher(config)(partition)
    except FetchError as exc:
        log_event(
            logger,
            logging.ERROR,
            "partition_fetch_failed",
            partition=partition.name,
            status=exc.status,
            error=str(exc),
        )
        return 1

    conn = init_db(config.paths.state_db)
    try:
        decisions, accepted = select_items(config, partition, items, conn, utc_now())
    finally:
        conn.close()

    for decision in decisions:
        log_event(
            logger,
            logging.INFO,
            "item_decision",
            item_id=decision.item_id,
            decision=decision.decision,
            reasons=",".join(decision.reasons) or "-",
            title=json.dumps(decision.title),
        )
    log_event(
        logger,
        logging.INFO,
        "preview_summary",
        partition=partition.name,
        found_count=len(items),
        eligible_count=len(accepted),
    )
    return 0


def _cmd_thumbnail(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1

    video_url = args.url
    local = Path(video_url)
    if local.exists():
        video_url = local.resolve().as_uri()
    item_id = args.item_id or normalize_identifier(args.url)
    out_path = Path(args.out or f"{item_id}.jpg")
    extractor = FrameExtractor(config.thumbnail, config.http.user_agent, logger=logger)
    try:
        with extractor.extract(video_url, item_id, config.paths.scratch_dir) as artifact:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(artifact.path, out_path)
            url = None
            if args.publish:
                publisher = build_publisher(config.publish)
                url = publisher.publish(artifact, thumbnail_key(item_id, config.publish.key_prefix))
    except ITEM_ERRORS as exc:
        log_event(
            logger,
            logging.ERROR,
            "thumbnail_failed",
            item_id=item_id,
            step=getattr(exc, "step", "extract"),
            error=str(exc),
        )
        return 1
    except OSError as exc:
        log_event(logger, logging.ERROR, "thumbnail_write_failed", path=str(out_path), error=str(exc))
        return 1

    log_event(
        logger,
        logging.INFO,
        "thumbnail_written",
        item_id=item_id,
        path=str(out_path),
        width=artifact.width,
        height=artifact.height,
        source_width=artifact.source_width,
        source_height=artifact.source_height,
        offset=artifact.offset_seconds,
        url=url,
    )
    return 0


def _cmd_stats(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1

    conn = init_db(config.paths.state_db)
    try:
        stats = get_batch_stats(conn, config.store.stats_collection, config.store.stats_doc_id)
        total = count_documents(conn, config.store.collection)
    finally:
        conn.close()
    if not stats:
        log_event(logger, logging.WARNING, "stats_missing", records=total)
        return 1
    log_event(logger, logging.INFO, "last_batch", records=total, **stats)
    return 0


def _cmd_records(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1

    conn = init_db(config.paths.state_db)
    try:
        records = list_documents(conn, config.store.collection, limit=args.limit)
    finally:
        conn.close()
    if not records:
        log_event(logger, logging.WARNING, "no_records", collection=config.store.collection)
        return 1
    logger.info(json.dumps(records, indent=2, sort_keys=True))
    log_event(logger, logging.INFO, "records_listed", count=len(records))
    return 0


def _cmd_partitions(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        config = load_config(args.config)
        partitions = resolve_partitions(config, logger)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1

    for partition in partitions:
        log_event(
            logger,
            logging.INFO,
            "partition",
            name=partition.name,
            limit=partition.limit,
            time_window=partition.time_window,
            recency_hours=partition.recency_hours,
            allow_nsfw=partition.allow_nsfw,
        )
    log_event(logger, logging.INFO, "partitions_listed", count=len(partitions))
    return 0


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1

    ensure_runtime_dirs(build_default_paths(config))
    init_db(config.paths.state_db).close()
    log_event(logger, logging.INFO, "db_migrated", path=config.paths.state_db)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="thumbreel", description="Thumbreel CLI")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to TR_CONFIG_PATH or /config/config.yml)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one ingestion batch")
    run_parser.set_defaults(func=_cmd_run)

    preview_parser = subparsers.add_parser(
        "preview", help="Fetch one partition and show eligibility decisions"
    )
    preview_parser.add_argument("partition", help="Partition name")
    preview_parser.add_argument("--limit", type=int, default=None, help="Listing size")
    preview_parser.set_defaults(func=_cmd_preview)

    thumb_parser = subparsers.add_parser("thumbnail", help="Extract a thumbnail from one video")
    thumb_parser.add_argument("url", help="Video URL or local file path")
    thumb_parser.add_argument("--id", dest="item_id", default=None, help="Identifier for the key")
    thumb_parser.add_argument("--out", default=None, help="Where to write the JPEG")
    thumb_parser.add_argument(
        "--publish", action="store_true", help="Also publish with the configured backend"
    )
    thumb_parser.set_defaults(func=_cmd_thumbnail)

    stats_parser = subparsers.add_parser("stats", help="Show the last batch stats")
    stats_parser.set_defaults(func=_cmd_stats)

    records_parser = subparsers.add_parser("records", help="List recent records")
    records_parser.add_argument("--limit", type=int, default=20, help="Number of records")
    records_parser.set_defaults(func=_cmd_records)

    partitions_parser = subparsers.add_parser("partitions", help="List resolved partitions")
    partitions_parser.set_defaults(func=_cmd_partitions)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)
    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logger = _setup_logging()
    return args.func(args, logger)
