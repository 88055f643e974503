"""Sync CLI Entry Point

Provides the command-line interface for the Xano → Elasticsearch sync.
Handles argument parsing, logging configuration, client construction and
the run summary.

Usage:
    python -m src.run_sync [--env-file .env] [--dry-run] [--skip-embeddings]
"""

import argparse
import logging
import time
from pathlib import Path

from elasticsearch import Elasticsearch
from openai import OpenAI

from src.xano_es_sync.checkpoint import JsonFileCheckpointStore
from src.xano_es_sync.config import SyncConfig, load_config
from src.xano_es_sync.embeddings import EmbeddingEnricher
from src.xano_es_sync.errors import ConfigError
from src.xano_es_sync.failure_log import InMemoryFailureLog, JsonFileFailureLog
from src.xano_es_sync.index_writer import IndexWriter
from src.xano_es_sync.pipeline import SyncContext, run_sync
from src.xano_es_sync.reconciler import ExistenceReconciler
from src.xano_es_sync.source import XanoSourceReader


def configure_logging(log_dir: Path = Path("logs")) -> None:
    """Configure logging with both console and file output.

    Sets up:
      - Root logger at DEBUG level
      - Console handler at INFO level for user-facing messages
      - File handler at DEBUG level for detailed troubleshooting
      - Reduced verbosity for httpx, openai and elasticsearch transport loggers
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "sync.log"

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    for noisy in ("httpx", "openai", "elastic_transport"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    # Clear existing handlers to avoid duplicates if run multiple times
    logger.handlers.clear()
    logger.addHandler(console_handler)
    logger.addHandler(file_handler)


def build_context(config: SyncConfig, dry_run: bool = False) -> SyncContext:
    """Wire the real Xano, OpenAI and Elasticsearch clients into a SyncContext."""
    # dry runs keep failures in memory so nothing is written to disk
    failure_log = InMemoryFailureLog() if dry_run else JsonFileFailureLog(config.errors_file)
    source = XanoSourceReader(
        base_url=config.xano_meta_base_url,
        api_key=config.xano_api_key,
        workspace_id=config.xano_workspace_id,
        table_id=config.xano_table_id,
        per_page=config.records_per_page,
        timeout=config.http_timeout_seconds,
    )
    es = Elasticsearch(config.elasticsearch_url, request_timeout=config.http_timeout_seconds)

    enricher = None
    if not config.skip_embeddings and not dry_run:
        enricher = EmbeddingEnricher(
            client=OpenAI(api_key=config.openai_api_key),
            target=source,
            failure_log=failure_log,
            model=config.embedding_model,
            dimensions=config.embedding_dimensions,
            max_input_tokens=config.max_input_tokens,
            delay_seconds=config.embedding_delay_seconds,
        )

    return SyncContext(
        config=config,
        source=source,
        reconciler=ExistenceReconciler(es, config.elasticsearch_index),
        writer=IndexWriter(es, config.elasticsearch_index, failure_log),
        checkpoint_store=JsonFileCheckpointStore(config.checkpoint_file),
        failure_log=failure_log,
        enricher=enricher,
        dry_run=dry_run,
    )


def main(argv=None, context_factory=build_context) -> int:
    """
    CLI entrypoint for the sync.

    Returns a Unix-style exit code (0 on completion, 1 on configuration
    errors or any unhandled exception).
    """
    parser = argparse.ArgumentParser(
        description="Sync Xano table records into Elasticsearch"
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Optional .env file to load before reading the environment.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch, reconcile and map, but write nothing (index, Xano, checkpoint).",
    )
    parser.add_argument(
        "--skip-embeddings",
        action="store_true",
        help="Never call the embedding provider; missing embeddings are indexed as [].",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=Path("logs"),
        help="Directory for the sync.log file.",
    )
    args = parser.parse_args(argv)

    configure_logging(args.log_dir)
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.env_file)
    except ConfigError as e:
        logger.error("%s", e)
        return 1
    if args.skip_embeddings:
        config = config.model_copy(update={"skip_embeddings": True})

    logger.info("=== Starting Xano → Elasticsearch sync ===")
    logger.info("Elasticsearch index: %s", config.elasticsearch_index)
    logger.info("Records per page: %d", config.records_per_page)
    logger.info("Xano table: %s", config.xano_table_id)
    logger.info("Skip embeddings: %s", config.skip_embeddings)
    if args.dry_run:
        logger.info("DRY RUN MODE: nothing will be written")

    ctx = None
    try:
        start_time = time.time()
        ctx = context_factory(config, dry_run=args.dry_run)
        stats = run_sync(ctx)
        elapsed_time = time.time() - start_time

        logger.info("=" * 70)
        logger.info("Sync completed in %.2fs", elapsed_time)
        logger.info("")
        logger.info("Summary:")
        logger.info("  Pages processed:  %d", stats.pages_processed)
        logger.info("  Pages skipped:    %d", stats.pages_skipped)
        logger.info("  Records fetched:  %d", stats.records_fetched)
        logger.info("  Already indexed:  %d", stats.records_existing)
        logger.info("  Written:          %d", stats.records_written)
        logger.info("  Failed:           %d", stats.records_failed)
        for kind, count in sorted(stats.failures.items()):
            logger.info("  Failures %-10s %d", f"{kind}:", count)
        if stats.halted:
            logger.warning("Stopped after a lost bulk write; rerun to retry that page")
        logger.info("=" * 70)

    except Exception as e:
        logger.exception(f"Fatal error in sync process: {e}")
        return 1
    finally:
        if ctx is not None:
            ctx.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
