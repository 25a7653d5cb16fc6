"""
Entry point for the scraper worker.

Runs the worker loop against the scraper_jobs table, and offers a couple of
operator commands for queueing jobs and recovering stale locks by hand.
"""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import List, Optional

from scraper_worker.config import LOGS_DIR, load_settings, get_supabase_client
from scraper_worker.jobs import cleanup_stale_locks, enqueue_job
from scraper_worker.models import JOB_TYPE_FWC_LOOKUP, JOB_TYPE_INCOLINK_SYNC, SUPPORTED_JOB_TYPES
from scraper_worker.worker import Worker

logger = logging.getLogger("scraper_worker")


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure logging to write to both console and rotating file.

    Returns:
        The package logger
    """
    # Prevent duplicate handlers if function is called multiple times
    if logger.handlers:
        return logger

    logger.setLevel(level)

    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOGS_DIR / "worker.log"

    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Rotating file handler (max 10MB, keep 5 backups)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger


def build_payload(args) -> dict:
    payload = {"employerIds": args.employer_ids}
    if args.job_type == JOB_TYPE_FWC_LOOKUP:
        options = {"autoLink": not args.no_auto_link}
        if args.search_override:
            overrides = {}
            for item in args.search_override:
                employer_id, _, term = item.partition("=")
                if not term:
                    raise ValueError(f"--search-override must look like EMPLOYER_ID=TERM, got {item!r}")
                overrides[employer_id] = term
            options["searchOverrides"] = overrides
        payload["options"] = options
    elif args.job_type == JOB_TYPE_INCOLINK_SYNC and args.invoice_number:
        payload["invoiceNumber"] = args.invoice_number
    return payload


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with command-line argument handling."""
    import argparse

    parser = argparse.ArgumentParser(
        description='FWC / Incolink scraper job worker',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the worker loop
  python -m scraper_worker.main run

  # Process at most one job and exit
  python -m scraper_worker.main run --once

  # Queue an FWC lookup for two employers
  python -m scraper_worker.main enqueue fwc_lookup --employer-id EMP1 EMP2

  # Requeue jobs whose worker died
  python -m scraper_worker.main cleanup
        """
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command')

    run_parser = subparsers.add_parser('run', help='Run the worker loop (default)')
    run_parser.add_argument('--once', action='store_true', help='Process at most one job, then exit')

    enqueue_parser = subparsers.add_parser('enqueue', help='Queue a new scraper job')
    enqueue_parser.add_argument('job_type', choices=list(SUPPORTED_JOB_TYPES))
    enqueue_parser.add_argument('--employer-id', dest='employer_ids', nargs='+', required=True,
                                help='Employer ids to process')
    enqueue_parser.add_argument('--priority', type=int, help='1 (highest) to 10, default 5')
    enqueue_parser.add_argument('--max-attempts', type=int, help='Retry budget (default: RETRY_MAX_ATTEMPTS)')
    enqueue_parser.add_argument('--no-auto-link', action='store_true',
                                help='fwc_lookup: record candidates instead of linking the best result')
    enqueue_parser.add_argument('--search-override', nargs='+', metavar='EMPLOYER_ID=TERM',
                                help='fwc_lookup: search term to use for an employer')
    enqueue_parser.add_argument('--invoice-number', help='incolink_sync: invoice to open')

    subparsers.add_parser('cleanup', help='Requeue running jobs with stale locks')

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        settings = load_settings()
        client = get_supabase_client(settings)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    if args.command == 'enqueue':
        try:
            payload = build_payload(args)
        except ValueError as e:
            logger.error(str(e))
            return 1

        max_attempts = args.max_attempts
        if max_attempts is None:
            max_attempts = settings.retry.max_attempts

        job = enqueue_job(
            client,
            args.job_type,
            payload,
            priority=args.priority,
            max_attempts=max_attempts,
            progress_total=len(args.employer_ids),
            environment=settings.job_environment,
        )
        print(json.dumps({"id": job.id, "job_type": job.job_type, "status": job.status}))
        return 0

    if args.command == 'cleanup':
        recovered = cleanup_stale_locks(client, settings.lock_timeout_ms)
        logger.info(f"Requeued {recovered} jobs with stale locks")
        return 0

    worker = Worker(client, settings)
    worker.install_signal_handlers()

    if getattr(args, 'once', False):
        processed = worker.run_once()
        logger.info("Processed one job" if processed else "No job available")
        return 0

    worker.run_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
