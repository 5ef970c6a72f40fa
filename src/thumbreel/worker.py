from __future__ import annotations

import argparse
import logging
import time
from functools import partial

from .budget import MemoryBudget
from .config import Config, load_config
from .errors import ConfigError
from .fsinit import build_default_paths, ensure_runtime_dirs, set_umask_from_env
from .ingest import Collaborators, make_fetcher, run_batch
from .policy import resolve_partitions
from .publish import build_publisher
from .storage import init_db
from .thumbnails import FrameExtractor
from .utils import configure_logging, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("thumbreel.worker")


def build_collaborators(config: Config, logger: logging.Logger) -> Collaborators:
    budget = MemoryBudget(config.batch.memory_ceiling_bytes)
    return Collaborators(
        connect=partial(init_db, config.paths.state_db),
        publisher=build_publisher(config.publish),
        extractor=FrameExtractor(config.thumbnail, config.http.user_agent, budget, logger),
        budget=budget,
        fetch=make_fetcher(config),
    )


def run_once(
    config: Config,
    logger: logging.Logger,
    deps: Collaborators | None = None,
    sleep=time.sleep,
) -> int:
    try:
        partitions = resolve_partitions(config, logger)
        if deps is None:
            deps = build_collaborators(config, logger)
    except (ConfigError, ValueError) as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    if not partitions:
        log_event(logger, logging.ERROR, "no_partitions")
        return 1

    attempt = 0
    while True:
        try:
            stats = run_batch(config, partitions, deps, logger)
        except Exception as exc:  # noqa: BLE001
            if attempt >= config.worker.max_retries:
                log_event(
                    logger,
                    logging.ERROR,
                    "batch_failed",
                    attempts=attempt + 1,
                    error=f"{type(exc).__name__}: {exc}",
                )
                return 1
            attempt += 1
            delay = config.worker.backoff_seconds * attempt
            log_event(
                logger,
                logging.WARNING,
                "batch_retry",
                attempt=attempt,
                delay_seconds=delay,
                error=f"{type(exc).__name__}: {exc}",
            )
            sleep(delay)
            continue
        if stats.aborted:
            log_event(logger, logging.WARNING, "batch_aborted", reason=stats.abort_reason)
        return 0


def run_loop(config: Config, logger: logging.Logger, interval_seconds: int) -> int:
    while True:
        started = time.monotonic()
        run_once(config, logger)
        elapsed = time.monotonic() - started
        time.sleep(max(0.0, interval_seconds - elapsed))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="thumbreel-worker")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to TR_CONFIG_PATH or /config/config.yml)",
    )
    parser.add_argument("--once", action="store_true", help="Run a single batch and exit")
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between batch starts (defaults to worker.interval_seconds)",
    )
    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logger = _setup_logging()
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    set_umask_from_env()
    ensure_runtime_dirs(build_default_paths(config))
    if args.once:
        return run_once(config, logger)
    return run_loop(config, logger, args.interval or config.worker.interval_seconds)


if __name__ == "__main__":
    raise SystemExit(main())
