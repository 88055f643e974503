"""
Xano → Elasticsearch Sync Pipeline

Drives the checkpointed, page-by-page sync:

1. Fetch a page of records from Xano
2. Reconcile against the index to find records not yet indexed
3. Enrich new records with embeddings (and decode serialized ones)
4. Map to the index schema and bulk write
5. Advance and persist the checkpoint

Pages are processed strictly in order, one at a time. The checkpoint is only
a position pointer: it advances after every page that returned records,
whatever the outcome of the individual writes, which are tracked in the
failure log instead.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .checkpoint import CheckpointStore
from .config import SyncConfig
from .embeddings import EMBEDDING_FIELD, EmbeddingEnricher, has_embedding
from .errors import EmbeddingDecodeError, FailureKind
from .failure_log import FailureLog
from .index_writer import IndexWriter
from .models import Checkpoint, FetchResult
from .reconciler import ExistenceReconciler, partition_new
from .source import XanoSourceReader
from .transformers import decode_embedding, is_number_list, to_index_document

logger = logging.getLogger(__name__)


@dataclass
class SyncStats:
    pages_processed: int = 0
    pages_skipped: int = 0
    records_fetched: int = 0
    records_existing: int = 0
    records_new: int = 0
    records_written: int = 0
    records_failed: int = 0
    failures: Counter = field(default_factory=Counter)
    halted: bool = False
    stopped_early: bool = False

    def add_failure(self, kind: FailureKind, count: int = 1) -> None:
        self.failures[kind.value] += count


@dataclass
class SyncContext:
    """Everything one sync run needs, passed explicitly to each phase."""
    config: SyncConfig
    source: XanoSourceReader
    reconciler: ExistenceReconciler
    writer: IndexWriter
    checkpoint_store: CheckpointStore
    failure_log: FailureLog
    enricher: Optional[EmbeddingEnricher] = None
    dry_run: bool = False
    stats: SyncStats = field(default_factory=SyncStats)

    def close(self) -> None:
        """Release the source and index clients."""
        self.source.close()
        self.writer.es.close()


@dataclass
class PageOutcome:
    """Result of processing one page."""
    page: int
    fetched: int = 0
    fetch_failed: bool = False
    new: int = 0
    written: int = 0
    transport_error: Optional[str] = None
    checkpoint: Optional[Checkpoint] = None

    @property
    def skipped(self) -> bool:
        return self.fetched == 0


def max_record_id(records: List[Dict[str, Any]]) -> int:
    return max(int(r["id"]) for r in records)


def prepare_embedding(ctx: SyncContext, record: Dict[str, Any]) -> Dict[str, Any]:
    """Enrich a new record and make sure its embedding is a decoded list."""
    if ctx.enricher is not None and not has_embedding(record):
        ctx.enricher.enrich(record)
        if not has_embedding(record):
            ctx.stats.add_failure(FailureKind.EMBEDDING)

    value = record.get(EMBEDDING_FIELD)
    if value is not None and not is_number_list(value):
        try:
            record[EMBEDDING_FIELD] = decode_embedding(value)
        except EmbeddingDecodeError as e:
            ctx.failure_log.record(record.get("id"), f"Embedding decode Error: {e}", FailureKind.DECODE)
            ctx.stats.add_failure(FailureKind.DECODE)
            record[EMBEDDING_FIELD] = []
    return record


def persist_checkpoint(ctx: SyncContext, checkpoint: Checkpoint) -> None:
    """Save the checkpoint; a failed write is logged and the run continues."""
    logger.info(
        "Updating checkpoint: page %d, last record ID %d",
        checkpoint.last_processed_page,
        checkpoint.last_processed_record_id,
    )
    try:
        ctx.checkpoint_store.save(checkpoint)
    except OSError as e:
        logger.error("Error saving checkpoint: %s", e)
        ctx.stats.add_failure(FailureKind.CHECKPOINT)


def process_page(ctx: SyncContext, page: int) -> PageOutcome:
    """Run one page through fetch → reconcile → enrich → map → write.

    Does not persist the checkpoint; the returned outcome carries the
    checkpoint to save, or None when the page must not advance it.
    """
    outcome = PageOutcome(page=page)
    fetched: FetchResult = ctx.source.fetch(page)
    if fetched.failed:
        outcome.fetch_failed = True
        ctx.failure_log.record(f"page-{page}", fetched.error, FailureKind.FETCH)
        ctx.stats.add_failure(FailureKind.FETCH)

    records = fetched.records
    outcome.fetched = len(records)
    if not records:
        logger.warning("No records found on page %d, skipping...", page)
        return outcome

    ctx.stats.records_fetched += len(records)

    existing = ctx.reconciler.find_existing([str(r["id"]) for r in records])
    if ctx.reconciler.last_error:
        ctx.stats.add_failure(FailureKind.RECONCILE)
    new_records = partition_new(records, existing)
    outcome.new = len(new_records)
    ctx.stats.records_existing += len(records) - len(new_records)
    ctx.stats.records_new += len(new_records)
    logger.info("Found %d new records to process out of %d", len(new_records), len(records))

    if new_records:
        for record in new_records:
            prepare_embedding(ctx, record)

        documents = [to_index_document(r) for r in new_records]
        if ctx.dry_run:
            logger.info("DRY RUN: skipping bulk write of %d documents", len(documents))
        else:
            result = ctx.writer.bulk_write(documents)
            outcome.written = len(result.written_ids)
            outcome.transport_error = result.transport_error
            ctx.stats.records_written += len(result.written_ids)
            ctx.stats.records_failed += len(result.failed_ids)
            if result.failed_ids:
                ctx.stats.add_failure(FailureKind.INDEX, len(result.failed_ids))
            if result.transport_error:
                ctx.stats.add_failure(FailureKind.TRANSPORT)
    else:
        logger.info("No new records to insert for this page")

    if outcome.transport_error and ctx.config.halt_on_transport_failure:
        logger.error("Bulk write for page %d was lost; not advancing checkpoint", page)
        return outcome

    outcome.checkpoint = Checkpoint(
        last_processed_page=page,
        last_processed_record_id=max_record_id(records),
    )
    return outcome


def run_sync(ctx: SyncContext) -> SyncStats:
    """
    Run the sync from the stored checkpoint to the last page.

    Returns:
        SyncStats aggregated over the run

    Raises:
        Exception: Anything raised outside the per-record and per-batch
            guarded paths propagates to the caller
    """
    config = ctx.config
    stats = ctx.stats
    job_start = time.time()

    logger.info("Starting Xano to Elasticsearch sync process")
    checkpoint = ctx.checkpoint_store.load()
    total_pages = config.total_pages
    start_page = checkpoint.last_processed_page + 1
    logger.info("Total pages to process: %d (resuming at page %d)", total_pages, start_page)

    consecutive_empty = 0
    for page in range(start_page, total_pages + 1):
        logger.info("Processing page %d/%d", page, total_pages)
        t0 = time.time()
        outcome = process_page(ctx, page)

        if outcome.skipped:
            stats.pages_skipped += 1
            # only a successful fetch with zero items counts as evidence of exhaustion
            if outcome.fetch_failed:
                consecutive_empty = 0
            else:
                consecutive_empty += 1
            limit = config.max_consecutive_empty_pages
            if limit is not None and consecutive_empty >= limit:
                logger.warning("%d consecutive empty pages, stopping at page %d", consecutive_empty, page)
                stats.stopped_early = True
                break
            continue

        consecutive_empty = 0
        stats.pages_processed += 1

        if outcome.checkpoint is None:
            stats.halted = True
            break

        if ctx.dry_run:
            logger.info("DRY RUN: checkpoint not saved (would be page %d)", page)
        else:
            persist_checkpoint(ctx, outcome.checkpoint)
        logger.info("✓ Page %d done in %.2fs (%d new, %d written)", page, time.time() - t0, outcome.new, outcome.written)

    logger.info(
        "✓ Sync finished in %.2fs: %d pages processed, %d skipped, %d records written",
        time.time() - job_start,
        stats.pages_processed,
        stats.pages_skipped,
        stats.records_written,
    )
    return stats
