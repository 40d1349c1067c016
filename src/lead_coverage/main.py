#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Main entry point for the Lead Coverage Monitor.

This module wires the store, lead source, orchestrator and scheduler
together, and provides the command-line interface for running the
scheduler or triggering population work by hand.
"""

import sys
import json
import time
import signal
import logging
import argparse
import threading
from dataclasses import replace
from typing import Optional, List, Dict, Any, Tuple

from lead_coverage.config import AppConfig, config
from lead_coverage.errors import ConfigurationError, LeadCoverageError
from lead_coverage.fetching.lead_source import build_lead_source
from lead_coverage.models.partition import Partition
from lead_coverage.orchestration.orchestrator import CoverageOrchestrator
from lead_coverage.scheduler.scheduler import PopulationScheduler
from lead_coverage.utils.storage import LeadStore
from lead_coverage.utils.timeout import Deadline
from lead_coverage.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

COMMANDS = [
    "run",
    "status",
    "stats",
    "detect-low-data",
    "detect-missing",
    "populate-low-data",
    "populate-missing",
    "populate",
]


def setup_argparse() -> argparse.ArgumentParser:
    """
    Set up command-line argument parsing.

    Returns:
        argparse.ArgumentParser: Configured argument parser
    """
    parser = argparse.ArgumentParser(
        description="Lead Coverage Monitor",
        epilog="Keeps every industry/country partition of the lead directory populated.",
    )

    parser.add_argument(
        "command",
        nargs="?",
        choices=COMMANDS,
        help="Command to execute",
    )
    parser.add_argument(
        "partitions",
        nargs="*",
        help="Partitions for 'populate', as industry:country (e.g. tattoo:US)",
    )

    # Detection / population options
    parser.add_argument(
        "--threshold",
        type=int,
        help=f"Lead count threshold for low-data detection (default: {config.low_data_job.threshold})",
    )
    parser.add_argument(
        "--top",
        type=int,
        help="Number of partitions to populate",
    )
    parser.add_argument(
        "--target",
        type=int,
        help="Leads to request per partition",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Maximum concurrent fetches",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Time budget in seconds for the command",
    )

    # Common options
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version information",
    )

    return parser


def build_components(app_config: AppConfig) -> Tuple[LeadStore, CoverageOrchestrator]:
    """Create the store, lead source and orchestrator from configuration."""
    store = LeadStore(app_config.database_url)
    lead_source = build_lead_source(app_config, store)
    orchestrator = CoverageOrchestrator(store, lead_source, app_config)
    return store, orchestrator


def _override(job, **values):
    """Copy of a JobConfig with the non-None values replaced."""
    return replace(job, **{k: v for k, v in values.items() if v is not None})


def _emit(payload: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2, default=str))
        return
    for key, value in payload.items():
        if isinstance(value, list):
            print(f"{key}:")
            for item in value:
                print(f"  {item}")
        else:
            print(f"{key}: {value}")


def run_scheduler(orchestrator: CoverageOrchestrator, app_config: AppConfig) -> bool:
    """
    Start the scheduler and block until SIGINT or SIGTERM.

    Returns:
        bool: True if the scheduler ran and stopped cleanly
    """
    scheduler = PopulationScheduler(orchestrator, app_config)
    try:
        scheduler.start()
    except ConfigurationError as e:
        logger.error(f"Failed to start scheduler: {e}")
        return False

    shutdown = threading.Event()

    def _signal_handler(signum, frame) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown")
        shutdown.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        while not shutdown.is_set():
            time.sleep(1)
    finally:
        scheduler.stop(wait=True)
    return True


def show_status(orchestrator: CoverageOrchestrator, app_config: AppConfig, as_json: bool) -> bool:
    import lead_coverage

    summary = orchestrator.stats.summarize()
    payload = {
        "version": lead_coverage.__version__,
        "database": app_config.database_url,
        "catalog_partitions": len(orchestrator.index),
        "stored_partitions": summary.total_partitions,
        "total_leads": summary.total_leads,
        "jobs": [f"{job.name}: '{job.cron}'" for job in app_config.jobs],
    }
    _emit(payload, as_json)
    return True


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the application.

    Returns:
        int: Exit code (0 for success, non-zero for failure)
    """
    parser = setup_argparse()
    args = parser.parse_args(argv)

    if args.version:
        import lead_coverage
        print(f"Lead Coverage Monitor v{lead_coverage.__version__}")
        return 0

    if not args.command:
        parser.print_help()
        return 1

    app_config = config
    if args.log_level:
        app_config.log_level = getattr(logging, args.log_level)

    configure_logging(
        level=logging.DEBUG if args.verbose else app_config.log_level,
        log_file=str(app_config.log_file_path) if app_config.log_file_path else None,
        json_logs=app_config.log_json,
    )

    errors = app_config.validate()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        return 1

    deadline = Deadline(args.timeout) if args.timeout else None

    try:
        _, orchestrator = build_components(app_config)

        if args.command == "run":
            success = run_scheduler(orchestrator, app_config)

        elif args.command == "status":
            success = show_status(orchestrator, app_config, args.json)

        elif args.command == "stats":
            summary = orchestrator.report_stats(deadline)
            _emit(summary.to_dict(), args.json)
            success = True

        elif args.command == "detect-low-data":
            threshold = args.threshold or app_config.low_data_job.threshold
            pairs = orchestrator.detector.detect_low_data(threshold)
            if args.top is not None:
                pairs = pairs[:args.top]
            _emit({"low_data": [p.to_dict() for p in pairs]}, args.json)
            success = True

        elif args.command == "detect-missing":
            pairs = orchestrator.detector.detect_missing(app_config.missing_job.floor)
            if args.top is not None:
                pairs = pairs[:args.top]
            _emit({"missing": [p.to_dict() for p in pairs]}, args.json)
            success = True

        elif args.command == "populate-low-data":
            job = _override(app_config.low_data_job, threshold=args.threshold, top_k=args.top,
                            target_count=args.target, max_concurrent=args.concurrency)
            report = orchestrator.populate_low_data(job, deadline)
            _emit(report.to_dict(), args.json)
            success = True

        elif args.command == "populate-missing":
            job = _override(app_config.missing_job, top_k=args.top, target_count=args.target,
                            max_concurrent=args.concurrency)
            report = orchestrator.populate_missing(job, deadline)
            _emit(report.to_dict(), args.json)
            success = True

        elif args.command == "populate":
            if not args.partitions:
                logger.error("'populate' needs at least one industry:country partition")
                return 1
            partitions = [Partition.parse(value) for value in args.partitions]
            result = orchestrator.populate_partitions(
                partitions,
                target_count=(args.target if args.target is not None
                              else app_config.low_data_job.target_count),
                max_concurrent=(args.concurrency if args.concurrency is not None
                                else app_config.low_data_job.max_concurrent),
                deadline=deadline,
            )
            _emit(result.to_dict(), args.json)
            success = result.ok

        else:
            logger.error(f"Unknown command: {args.command}")
            return 1

        return 0 if success else 1

    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        return 130  # Standard exit code for SIGINT
    except (LeadCoverageError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
