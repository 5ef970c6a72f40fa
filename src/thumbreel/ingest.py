from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, ContextManager, Protocol

from .budget import MemoryBudget
from .config import Config
from .eligibility import evaluate_item
from .errors import ITEM_ERRORS, FetchError, MemoryBudgetExceeded
from .feed import fetch_items
from .models import BatchStats, Decision, FeedItem, Partition, PartitionResult, ThumbnailArtifact
from .publish import Publisher, thumbnail_key
from .records import build_record
from .storage import document_exists, existing_doc_ids, merge_document, write_batch_stats
from .utils import log_event, normalize_identifier, utc_now, utc_now_iso


class Extractor(Protocol):
    def extract(
        self,
        video_url: str,
        item_id: str,
        scratch_dir: str,
        duration_hint: float | None = None,
    ) -> ContextManager[ThumbnailArtifact]: ...


@dataclass
class Collaborators:
    connect: Callable[[], Any]
    publisher: Publisher
    extractor: Extractor
    budget: MemoryBudget
    fetch: Callable[[Partition], list[FeedItem]]
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], datetime] = utc_now
    monotonic: Callable[[], float] = time.monotonic


@dataclass
class _BatchState:
    deadline: float
    monotonic: Callable[[], float]
    processed: int = 0
    errored: int = 0
    skipped: int = 0
    partitions_failed: int = 0
    abort_reason: str | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)

    def add(self, result: PartitionResult) -> None:
        with self.lock:
            self.processed += result.processed_count
            self.errored += result.error_count
            self.skipped += result.skipped_count
            if result.status != "ok":
                self.partitions_failed += 1

    def abort(self, reason: str) -> None:
        with self.lock:
            if self.abort_reason is None:
                self.abort_reason = reason

    def should_stop(self) -> bool:
        if self.abort_reason is not None:
            return True
        if self.monotonic() >= self.deadline:
            self.abort("deadline")
            return True
        return False


def make_fetcher(config: Config) -> Callable[[Partition], list[FeedItem]]:
    def _fetch(partition: Partition) -> list[FeedItem]:
        return fetch_items(
            partition.name,
            partition.limit,
            config.http,
            base_url=config.feed.base_url,
            time_window=partition.time_window,
        )

    return _fetch


def run_batch(
    config: Config,
    partitions: list[Partition],
    deps: Collaborators,
    logger: logging.Logger,
) -> BatchStats:
    started_at = utc_now_iso()
    state = _BatchState(
        deadline=deps.monotonic() + config.batch.deadline_seconds,
        monotonic=deps.monotonic,
    )
    log_event(
        logger,
        logging.INFO,
        "batch_started",
        partitions=len(partitions),
        workers=config.batch.partition_workers,
    )

    conn = deps.connect()
    try:
        if config.batch.partition_workers <= 1:
            for index, partition in enumerate(partitions):
                if state.should_stop():
                    break
                state.add(_run_partition(config, partition, deps, conn, state, logger))
                if index < len(partitions) - 1 and not state.should_stop():
                    deps.sleep(config.batch.partition_delay_seconds)
        else:
            worker = partial(_run_partition_own_conn, config, deps=deps, state=state, logger=logger)
            with ThreadPoolExecutor(max_workers=config.batch.partition_workers) as executor:
                for result in executor.map(worker, partitions):
                    if result is not None:
                        state.add(result)

        stats = BatchStats(
            processed_count=state.processed,
            error_count=state.errored,
            skipped_count=state.skipped,
            partitions_failed=state.partitions_failed,
            aborted=state.abort_reason is not None,
            abort_reason=state.abort_reason,
            started_at=started_at,
            timestamp=utc_now_iso(),
        )
        write_batch_stats(conn, config.store.stats_collection, config.store.stats_doc_id, stats)
    finally:
        _close_quietly(conn, logger)

    log_event(
        logger,
        logging.INFO,
        "batch_finished",
        processed=stats.processed_count,
        errored=stats.error_count,
        skipped=stats.skipped_count,
        partitions_failed=stats.partitions_failed,
        aborted=stats.aborted,
        abort_reason=stats.abort_reason,
    )
    return stats


def _run_partition_own_conn(
    config: Config,
    partition: Partition,
    *,
    deps: Collaborators,
    state: _BatchState,
    logger: logging.Logger,
) -> PartitionResult | None:
    if state.should_stop():
        return None
    try:
        conn = deps.connect()
    except Exception as exc:  # noqa: BLE001
        log_event(
            logger,
            logging.ERROR,
            "partition_failed",
            partition=partition.name,
            error=f"{type(exc).__name__}: {exc}",
        )
        return _failed_result(partition, str(exc))
    try:
        result = _run_partition(config, partition, deps, conn, state, logger)
    finally:
        _close_quietly(conn, logger)
    if not state.should_stop():
        deps.sleep(config.batch.partition_delay_seconds)
    return result


def _run_partition(
    config: Config,
    partition: Partition,
    deps: Collaborators,
    conn,
    state: _BatchState,
    logger: logging.Logger,
) -> PartitionResult:
    try:
        return process_partition(config, partition, deps, conn, state, logger)
    except Exception as exc:  # noqa: BLE001
        log_event(
            logger,
            logging.ERROR,
            "partition_failed",
            partition=partition.name,
            error=f"{type(exc).__name__}: {exc}",
        )
        return _failed_result(partition, str(exc))


def process_partition(
    config: Config,
    partition: Partition,
    deps: Collaborators,
    conn,
    state: _BatchState,
    logger: logging.Logger,
) -> PartitionResult:
    log_event(logger, logging.INFO, "partition_started", partition=partition.name)
    try:
        items = deps.fetch(partition)
    except FetchError as exc:
        log_event(
            logger,
            logging.ERROR,
            "partition_fetch_failed",
            partition=partition.name,
            status=exc.status,
            error=str(exc),
        )
        return _failed_result(partition, str(exc))

    decisions, accepted = select_items(config, partition, items, conn, deps.clock())
    skipped = len(items) - len(accepted)
    log_event(
        logger,
        logging.INFO,
        "partition_filtered",
        partition=partition.name,
        found_count=len(items),
        eligible_count=len(accepted),
        skipped_count=skipped,
    )
    _log_skip_reasons(logger, partition.name, decisions)

    processed = 0
    errored = 0
    for item, decision in accepted:
        if state.should_stop():
            break
        estimate = item.video.estimated_bytes() if item.video else 0
        try:
            deps.budget.check(estimate)
            outcome = process_item(config, partition, item, decision, deps, conn, logger)
        except MemoryBudgetExceeded as exc:
            log_event(
                logger,
                logging.ERROR,
                "memory_budget_exceeded",
                partition=partition.name,
                item_id=decision.item_id,
                in_flight=exc.in_flight,
                upcoming=exc.upcoming,
                ceiling=exc.ceiling,
            )
            state.abort("memory_budget")
            break
        if outcome == "processed":
            processed += 1
        elif outcome == "error":
            errored += 1
        else:
            skipped += 1
            continue
        if not state.should_stop():
            deps.sleep(config.batch.item_delay_seconds)

    log_event(
        logger,
        logging.INFO,
        "partition_finished",
        partition=partition.name,
        processed=processed,
        errored=errored,
        skipped=skipped,
    )
    return PartitionResult(
        partition=partition.name,
        status="ok",
        found_count=len(items),
        eligible_count=len(accepted),
        processed_count=processed,
        error_count=errored,
        skipped_count=skipped,
        decisions=decisions,
    )


def select_items(
    config: Config,
    partition: Partition,
    items: list[FeedItem],
    conn,
    now: datetime,
) -> tuple[list[Decision], list[tuple[FeedItem, Decision]]]:
    existing = existing_doc_ids(
        conn, config.store.collection, (normalize_identifier(item.permalink) for item in items)
    )
    window = timedelta(hours=partition.recency_hours)
    decisions: list[Decision] = []
    accepted: list[tuple[FeedItem, Decision]] = []
    for item in items:
        decision = evaluate_item(
            item,
            now,
            window,
            existing,
            allow_nsfw=partition.allow_nsfw,
            extensions=config.eligibility.video_extensions,
            hosts=config.eligibility.video_hosts,
        )
        decisions.append(decision)
        if decision.decision == "ACCEPT":
            # A listing may repeat a permalink; only the first copy is taken.
            existing.add(decision.item_id)
            accepted.append((item, decision))
    return decisions, accepted


def process_item(
    config: Config,
    partition: Partition,
    item: FeedItem,
    decision: Decision,
    deps: Collaborators,
    conn,
    logger: logging.Logger,
) -> str:
    item_id = decision.item_id
    step = "recheck"
    try:
        # The store may have changed since the partition was filtered.
        if document_exists(conn, config.store.collection, item_id):
            log_event(
                logger,
                logging.INFO,
                "item_skipped",
                partition=partition.name,
                item_id=item_id,
                reason="duplicate",
            )
            return "skipped"
        step = "extract"
        duration = item.video.duration if item.video else None
        with deps.extractor.extract(
            decision.video_url or "", item_id, config.paths.scratch_dir, duration
        ) as artifact:
            step = "publish"
            thumbnail_url = deps.publisher.publish(
                artifact, thumbnail_key(item_id, config.publish.key_prefix)
            )
            record = build_record(item, partition.name, thumbnail_url, artifact)
        step = "persist"
        merge_document(conn, config.store.collection, item_id, record)
    except ITEM_ERRORS as exc:
        log_event(
            logger,
            logging.ERROR,
            "item_failed",
            partition=partition.name,
            item_id=item_id,
            step=getattr(exc, "step", step),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return "error"
    except MemoryBudgetExceeded:
        raise
    except Exception as exc:  # noqa: BLE001
        log_event(
            logger,
            logging.ERROR,
            "item_failed",
            partition=partition.name,
            item_id=item_id,
            step=step,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return "error"
    log_event(
        logger,
        logging.INFO,
        "item_ingested",
        partition=partition.name,
        item_id=item_id,
        thumbnail=thumbnail_url,
        width=artifact.width,
        height=artifact.height,
    )
    return "processed"


def _log_skip_reasons(logger: logging.Logger, partition: str, decisions: list[Decision]) -> None:
    counts: dict[str, int] = {}
    for decision in decisions:
        for reason in decision.reasons:
            counts[reason] = counts.get(reason, 0) + 1
    if counts:
        log_event(
            logger,
            logging.DEBUG,
            "partition_skip_reasons",
            partition=partition,
            **{key: counts[key] for key in sorted(counts)},
        )


def _close_quietly(conn, logger: logging.Logger) -> None:
    try:
        conn.close()
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.WARNING, "db_close_failed", error=str(exc))


def _failed_result(partition: Partition, error: str) -> PartitionResult:
    return PartitionResult(
        partition=partition.name,
        status="error",
        found_count=0,
        eligible_count=0,
        processed_count=0,
        error_count=0,
        skipped_count=0,
        error=error,
    )
