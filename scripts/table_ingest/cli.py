#!/usr/bin/env python3
"""
Command line entry point for table ingestion.

    flights-ingest load /data/flights --tier standard --batch-size 100
    flights-ingest status --tier premium
"""
import sys
import argparse
from pathlib import Path

from table_ingest.config import ERR_FOLDER_REQUIRED, TIER_CONNECTION_VARS, TIER_PREMIUM, IngestConfig
from table_ingest.database import PostgresTableStore
from table_ingest.errors import ConfigError, InputPathError, StoreError
from table_ingest.logger import LogLevel, StructuredLogger, get_logger, set_logger
from table_ingest.metrics import MetricsCollector
from table_ingest.orchestrator import IngestionOrchestrator


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_BAD_INPUT = 2
EXIT_STORE_FAILURE = 3
EXIT_INTERRUPTED = 130


def load_config(args, **overrides) -> IngestConfig:
    env_file = Path(args.env_file) if args.env_file else None
    return IngestConfig.from_env(tier=args.tier, env_file=env_file, **overrides)


def load_command(args) -> int:
    """Ingest every file in the target folder."""
    logger = get_logger()
    logger.section("FLIGHT TABLE LOAD")

    if not args.folder:
        logger.error(ERR_FOLDER_REQUIRED)
        return EXIT_BAD_INPUT

    try:
        config = load_config(
            args,
            batch_size=args.batch_size,
            max_records_per_file=args.limit,
            rate_limit_backoff_ms=args.backoff_ms,
            rate_limit_retries=args.retries,
            thread_count=args.workers,
            parallel_groups=args.parallel_groups or None,
            continue_on_error=args.continue_on_error or None,
            table_name=args.table,
        )
    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        return EXIT_ERROR

    logger.info(
        "Environment loaded",
        tier=config.tier,
        table=config.table_name,
        batch_size=config.batch_size,
    )

    metrics = MetricsCollector()
    try:
        store = PostgresTableStore(config)
    except StoreError as e:
        logger.error("Store connection failed", error=str(e))
        return EXIT_STORE_FAILURE

    try:
        orchestrator = IngestionOrchestrator(config, store, metrics=metrics, logger=logger)
        summary = orchestrator.run(Path(args.folder), show_progress=args.progress)

        print(metrics.format_summary())

        if not summary.succeeded:
            logger.error(
                "Ingestion finished with failed batches",
                failed_batches=summary.failed_batches,
            )
            return EXIT_STORE_FAILURE

        logger.success(
            "Load completed successfully",
            records=summary.records,
            submitted=summary.records_submitted,
        )
        return EXIT_OK

    except KeyboardInterrupt:
        logger.warning("Operation cancelled by user")
        return EXIT_INTERRUPTED
    except InputPathError as e:
        logger.error("Bad input path", error=str(e))
        return EXIT_BAD_INPUT
    except StoreError as e:
        logger.error("Load aborted", error=str(e))
        print(metrics.format_summary())
        return EXIT_STORE_FAILURE
    except Exception as e:
        logger.error("Load failed", error=f"{type(e).__name__}: {e}")
        return EXIT_ERROR
    finally:
        store.close()


def status_command(args) -> int:
    """Check store connectivity and the target table's row count."""
    logger = get_logger()
    logger.section("STORE STATUS")

    try:
        config = load_config(args, table_name=args.table)
    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        return EXIT_ERROR

    try:
        store = PostgresTableStore(config)
    except StoreError as e:
        logger.error("Store connection failed", error=str(e))
        return EXIT_STORE_FAILURE

    try:
        if not store.test_connection():
            return EXIT_STORE_FAILURE
        rows = store.count_rows(config.table_name)
        logger.info("Table status", tier=config.tier, table=config.table_name, rows=f"{rows:,}")
        return EXIT_OK
    except StoreError as e:
        logger.error("Status check failed", error=str(e))
        return EXIT_STORE_FAILURE
    except Exception as e:
        logger.error("Status check failed", error=f"{type(e).__name__}: {e}")
        return EXIT_ERROR
    finally:
        store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Bulk load delimited flight files into a partitioned table store",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Global options
    parser.add_argument(
        '--tier',
        choices=sorted(TIER_CONNECTION_VARS),
        default=TIER_PREMIUM,
        help='Store tier whose connection string to use'
    )
    parser.add_argument(
        '--env-file',
        type=str,
        help='Path to .env file (default: .env.local, then .env)'
    )
    parser.add_argument(
        '--table',
        type=str,
        help='Target table name (default: flights)'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    load_parser = subparsers.add_parser('load', help='Load every file in a folder')
    load_parser.add_argument(
        'folder',
        nargs='?',
        help='Folder containing files that share one schema'
    )
    load_parser.add_argument(
        '--batch-size',
        type=int,
        help='Maximum operations per batch (default: 100)'
    )
    load_parser.add_argument(
        '--limit',
        type=int,
        help='Maximum records to read per file'
    )
    load_parser.add_argument(
        '--backoff-ms',
        type=int,
        help='Wait before retrying a rate-limited batch (default: 1000)'
    )
    load_parser.add_argument(
        '--retries',
        type=int,
        help='Retries for a rate-limited batch (default: 1)'
    )
    load_parser.add_argument(
        '--workers',
        type=int,
        help='Worker threads for chunking and parallel execution'
    )
    load_parser.add_argument(
        '--parallel-groups',
        action='store_true',
        help='Execute different partitions concurrently'
    )
    load_parser.add_argument(
        '--continue-on-error',
        action='store_true',
        help='Record failed batches and keep going instead of aborting'
    )
    load_parser.add_argument(
        '--progress',
        action='store_true',
        help='Show a per-file progress bar'
    )

    subparsers.add_parser('status', help='Check store connection and row count')

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = LogLevel.DEBUG if args.verbose else LogLevel.INFO
    set_logger(StructuredLogger(min_level=log_level))

    if args.command == 'load':
        return load_command(args)
    elif args.command == 'status':
        return status_command(args)
    else:
        parser.print_help()
        return EXIT_ERROR


if __name__ == '__main__':
    sys.exit(main())
