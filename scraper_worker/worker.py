"""
Worker loop: poll the queue, run one job at a time, record the outcome.

Single active job per process. Jobs are claimed through the conditional
update in scraper_worker.jobs, so running several worker processes against
the same table is safe.

Shutdown is cooperative: a signal stops new claims and the in-flight job is
left to finish. If it is still running when the grace period ends, its row
is put back on the queue and the process exits.
"""

import logging
import os
import signal
import threading
import time
from typing import Any, Callable, Dict, Optional

from supabase import Client

from scraper_worker.config import WorkerSettings
from scraper_worker.jobs import (
    append_event,
    cleanup_stale_locks,
    mark_job_status,
    release_job_lock,
    requeue_interrupted_job,
    reserve_job,
    update_progress,
)
from scraper_worker.models import (
    ScraperJob,
    PayloadError,
    JOB_TYPE_FWC_LOOKUP,
    JOB_TYPE_INCOLINK_SYNC,
    STATUS_FAILED,
    STATUS_QUEUED,
    STATUS_SUCCEEDED,
    parse_job_payload,
)
from scraper_worker.FWC.fwc_scraper import process_fwc_job
from scraper_worker.INCOLINK.incolink_scraper import process_incolink_job
from scraper_worker.utils import iso_after

logger = logging.getLogger(__name__)

Processor = Callable[[Client, ScraperJob, WorkerSettings], Dict[str, Any]]

DEFAULT_PROCESSORS: Dict[str, Processor] = {
    JOB_TYPE_FWC_LOOKUP: process_fwc_job,
    JOB_TYPE_INCOLINK_SYNC: process_incolink_job,
}

SHUTDOWN_POLL_SECONDS = 1


class Worker:
    """Polls scraper_jobs and dispatches claimed jobs to their pipeline."""

    def __init__(
        self,
        client: Client,
        settings: WorkerSettings,
        processors: Optional[Dict[str, Processor]] = None,
    ):
        self.client = client
        self.settings = settings
        self.processors = processors if processors is not None else dict(DEFAULT_PROCESSORS)

        self.current_job_id: Optional[str] = None
        self._shutdown_event = threading.Event()
        self._watchdog: Optional[threading.Thread] = None
        self._last_cleanup: Optional[float] = None
        self._claiming = False

    @property
    def is_shutting_down(self) -> bool:
        return self._shutdown_event.is_set()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run_forever(self) -> None:
        """Process jobs until a shutdown is requested."""
        logger.info("=" * 80)
        logger.info(f"Scraper worker {self.settings.worker_id} started")
        logger.info(f"Job types: {', '.join(self.processors)}")
        logger.info(f"Poll interval: {self.settings.poll_interval_ms}ms")
        if self.settings.job_environment:
            logger.info(f"Environment: {self.settings.job_environment}")
        logger.info("=" * 80)

        while not self.is_shutting_down:
            try:
                processed = self.run_once()
            except Exception as e:
                logger.error(f"Worker iteration failed: {e}", exc_info=True)
                processed = False

            if not processed:
                self._shutdown_event.wait(self.settings.poll_interval_ms / 1000)

        logger.info("Worker loop stopped")

    def run_once(self) -> bool:
        """
        Run one loop iteration.

        Returns:
            True if a job was claimed and processed, False if the queue was empty
            or a shutdown is in progress
        """
        if self.is_shutting_down:
            return False

        self.maybe_cleanup_stale_locks()

        # In flight for the shutdown watchdog from the moment the claim starts
        self._claiming = True
        try:
            job = reserve_job(
                self.client,
                self.settings.worker_id,
                limit=self.settings.reserve_batch_size,
                job_environment=self.settings.job_environment,
            )
            if job:
                self.current_job_id = job.id
        finally:
            self._claiming = False

        if not job:
            return False

        self.process_job(job)
        return True

    def maybe_cleanup_stale_locks(self) -> int:
        """Run the stale-lock recovery pass if the cleanup interval has elapsed."""
        now = time.monotonic()
        interval = self.settings.stale_cleanup_interval_ms / 1000
        if self._last_cleanup is not None and now - self._last_cleanup < interval:
            return 0

        self._last_cleanup = now
        try:
            recovered = cleanup_stale_locks(self.client, self.settings.lock_timeout_ms)
        except Exception as e:
            logger.error(f"Stale lock cleanup failed: {e}")
            return 0

        if recovered:
            logger.info(f"♻️  Requeued {recovered} jobs with stale locks")
        return recovered

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def process_job(self, job: ScraperJob) -> None:
        """Run a claimed job and record its outcome. Always releases the lock."""
        self.current_job_id = job.id
        try:
            processor = self.processors.get(job.job_type)
            if processor is None:
                logger.warning(f"Skipping job {job.id}: unsupported job type '{job.job_type}'")
                append_event(self.client, job.id, "job_skipped", {"jobType": job.job_type})
                mark_job_status(self.client, job.id, STATUS_FAILED, {"last_error": "Unsupported job type"})
                return

            logger.info(f"▶️  Starting job {job.id} ({job.job_type})")
            try:
                payload = parse_job_payload(job.job_type, job.payload)
                append_event(self.client, job.id, "job_started", {
                    "workerId": self.settings.worker_id,
                    "attempt": job.attempts,
                })
                update_progress(self.client, job.id, 0, {"progress_total": len(payload.employer_ids)})

                summary = processor(self.client, job, self.settings)

                append_event(self.client, job.id, "job_completed", summary)
                mark_job_status(self.client, job.id, STATUS_SUCCEEDED, {
                    "lock_token": None,
                    "locked_at": None,
                    "last_error": None,
                })
                logger.info(f"✓ Job {job.id} succeeded: {summary}")
            except PayloadError as e:
                self.handle_failure(job, e, retryable=False)
            except Exception as e:
                self.handle_failure(job, e)
        finally:
            try:
                release_job_lock(self.client, job.id)
            except Exception as e:
                logger.error(f"Failed to release lock on job {job.id}: {e}")
            self.current_job_id = None

    def handle_failure(self, job: ScraperJob, error: Exception, retryable: bool = True) -> None:
        """
        Record a failed attempt and either requeue the job or fail it for good.

        A job is retried while attempts < max_attempts, on the next poll.
        """
        message = str(error) or error.__class__.__name__
        logger.error(f"✗ Job {job.id} failed on attempt {job.attempts}/{job.max_attempts}: {message}")

        append_event(self.client, job.id, "job_failed", {"error": message, "attempt": job.attempts})

        should_retry = retryable and job.attempts < job.max_attempts
        if should_retry:
            delay_ms = self.settings.poll_interval_ms
            mark_job_status(self.client, job.id, STATUS_QUEUED, {
                "last_error": message,
                "progress_completed": 0,
                "run_at": iso_after(delay_ms),
            })
            append_event(self.client, job.id, "job_requeued", {
                "attempt": job.attempts,
                "delayMs": delay_ms,
            })
            logger.info(f"↩️  Requeued job {job.id}, next attempt in {delay_ms / 1000:.1f}s")
        else:
            mark_job_status(self.client, job.id, STATUS_FAILED, {"last_error": message})

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self.request_shutdown)
        signal.signal(signal.SIGINT, self.request_shutdown)

    def request_shutdown(self, signum=None, frame=None) -> None:
        """
        Stop claiming jobs and start the grace-period watchdog.

        Safe to call more than once; only the first call starts the watchdog.
        """
        if self.is_shutting_down:
            logger.info("Shutdown already in progress")
            return

        signal_name = signal.Signals(signum).name if signum else "request"
        logger.info(f"🛑 Shutdown requested ({signal_name}), no new jobs will be claimed")
        self._shutdown_event.set()

        self._watchdog = threading.Thread(
            target=self._shutdown_watchdog,
            name="shutdown-watchdog",
            daemon=True,
        )
        self._watchdog.start()

    def wait_for_in_flight_job(self, timeout_ms: Optional[int] = None) -> bool:
        """
        Wait for the in-flight job to finish.

        Returns:
            True if no job is running any more, False if the timeout elapsed first
        """
        if timeout_ms is None:
            timeout_ms = self.settings.graceful_shutdown_timeout_ms

        deadline = time.monotonic() + timeout_ms / 1000
        while self._claiming or self.current_job_id is not None:
            if time.monotonic() >= deadline:
                return False
            logger.info(f"⏳ Waiting for job {self.current_job_id or '(claiming)'} to finish before shutdown...")
            time.sleep(SHUTDOWN_POLL_SECONDS)
        return True

    def force_requeue_in_flight(self) -> Optional[str]:
        """Put the in-flight job back on the queue; returns its id, if any."""
        job_id = self.current_job_id
        if not job_id:
            return None

        logger.warning(f"⚠️  Job {job_id} still running after grace period, requeueing")
        requeue_interrupted_job(self.client, job_id)
        return job_id

    def _shutdown_watchdog(self) -> None:
        if self.wait_for_in_flight_job():
            return

        try:
            self.force_requeue_in_flight()
        except Exception as e:
            logger.error(f"Failed to requeue interrupted job: {e}")
        finally:
            logging.shutdown()
            os._exit(1)
