"""
Job queue operations against the scraper_jobs / scraper_job_events tables.

The scraper_jobs row is the only shared state between workers. Every mutation
goes through these functions; claiming is a conditional update, so several
worker processes can poll the same table and at most one wins a given job.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from postgrest.exceptions import APIError
from supabase import Client

from scraper_worker.models import (
    ScraperJob,
    STATUS_QUEUED,
    STATUS_RUNNING,
    SUPPORTED_JOB_TYPES,
    TERMINAL_STATUSES,
)
from scraper_worker.utils import iso_before, iso_now

logger = logging.getLogger(__name__)

JOBS_TABLE = "scraper_jobs"
EVENTS_TABLE = "scraper_job_events"

STALE_LOCK_MESSAGE = "Lock expired - worker presumed crashed"
SHUTDOWN_MESSAGE = "interrupted by worker shutdown"

DEFAULT_PRIORITY = 5
DEFAULT_MAX_ATTEMPTS = 5


class JobQueueError(RuntimeError):
    """A read or write against the job tables failed."""


def reserve_job(
    client: Client,
    worker_id: str,
    limit: int = 5,
    job_environment: Optional[str] = None,
) -> Optional[ScraperJob]:
    """
    Claim the next eligible job, if any.

    Candidates are queued jobs of a supported type whose run_at has passed,
    ordered by priority then age. Each candidate is claimed with a
    conditional update; losing the race simply moves on to the next one.

    Args:
        client: Supabase client
        worker_id: Identifier recorded on the job_locked event
        limit: Number of candidates to fetch
        job_environment: Only consider jobs tagged with this environment

    Returns:
        The claimed ScraperJob, or None if nothing could be claimed

    Raises:
        JobQueueError: If the candidate query fails
    """
    now = iso_now()
    try:
        query = (
            client.table(JOBS_TABLE)
            .select("*")
            .eq("status", STATUS_QUEUED)
            .in_("job_type", list(SUPPORTED_JOB_TYPES))
            .lte("run_at", now)
        )
        if job_environment:
            query = query.eq("environment", job_environment)
        response = (
            query.order("priority")
            .order("created_at")
            .limit(limit)
            .execute()
        )
    except APIError as e:
        raise JobQueueError(f"Failed to fetch queued jobs: {e.message}") from e

    candidates = response.data or []
    if not candidates:
        return None

    logger.debug(f"Found {len(candidates)} candidate jobs")

    for candidate in candidates:
        job = claim_job(client, candidate, worker_id)
        if job:
            return job
        logger.debug(f"Lost claim on job {candidate['id']}, trying next candidate")

    return None


def claim_job(client: Client, candidate: Dict[str, Any], worker_id: str) -> Optional[ScraperJob]:
    """
    Try to take ownership of a single queued job.

    Args:
        client: Supabase client
        candidate: The job row as read during candidate selection
        worker_id: Identifier recorded on the job_locked event

    Returns:
        The claimed ScraperJob, or None if another worker got there first
    """
    now = iso_now()
    lock_token = str(uuid.uuid4())
    attempts = (candidate.get("attempts") or 0) + 1

    try:
        response = (
            client.table(JOBS_TABLE)
            .update({
                "lock_token": lock_token,
                "status": STATUS_RUNNING,
                "attempts": attempts,
                "locked_at": now,
                "last_error": None,
                "updated_at": now,
            })
            .eq("id", candidate["id"])
            .eq("status", STATUS_QUEUED)
            .lte("run_at", now)
            .is_("lock_token", "null")
            .execute()
        )
    except APIError as e:
        raise JobQueueError(f"Failed to claim job {candidate['id']}: {e.message}") from e

    rows = response.data or []
    if not rows:
        return None

    job = ScraperJob.from_row(rows[0])
    append_event(client, job.id, "job_locked", {"workerId": worker_id, "attempt": job.attempts})
    logger.info(f"🔒 Claimed job {job.id} ({job.job_type}), attempt {job.attempts}/{job.max_attempts}")
    return job


def append_event(
    client: Client,
    job_id: str,
    event_type: str,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Append an audit event for a job.

    Raises:
        JobQueueError: If the insert fails
    """
    row: Dict[str, Any] = {"job_id": job_id, "event_type": event_type}
    if payload is not None:
        row["payload"] = payload

    try:
        client.table(EVENTS_TABLE).insert(row).execute()
    except APIError as e:
        raise JobQueueError(f"Failed to append event {event_type} for job {job_id}: {e.message}") from e


def update_progress(
    client: Client,
    job_id: str,
    completed: int,
    extra_fields: Optional[Dict[str, Any]] = None,
) -> None:
    update: Dict[str, Any] = {
        "progress_completed": completed,
        "updated_at": iso_now(),
    }
    if extra_fields:
        update.update(extra_fields)

    try:
        client.table(JOBS_TABLE).update(update).eq("id", job_id).execute()
    except APIError as e:
        raise JobQueueError(f"Failed to update progress for job {job_id}: {e.message}") from e


def mark_job_status(
    client: Client,
    job_id: str,
    status: str,
    fields: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Set a job's status, merging any extra columns.

    Terminal statuses also stamp completed_at.
    """
    now = iso_now()
    update: Dict[str, Any] = {"status": status, "updated_at": now}
    if fields:
        update.update(fields)
    if status in TERMINAL_STATUSES:
        update["completed_at"] = now

    try:
        client.table(JOBS_TABLE).update(update).eq("id", job_id).execute()
    except APIError as e:
        raise JobQueueError(f"Failed to mark job {job_id} as {status}: {e.message}") from e


def release_job_lock(client: Client, job_id: str) -> None:
    try:
        client.table(JOBS_TABLE).update({"lock_token": None, "locked_at": None}).eq("id", job_id).execute()
    except APIError as e:
        raise JobQueueError(f"Failed to release lock on job {job_id}: {e.message}") from e


def cleanup_stale_locks(client: Client, lock_timeout_ms: int) -> int:
    """
    Requeue running jobs whose lock is older than the timeout.

    A worker that crashes mid-job never releases its lock; this puts such
    jobs back on the queue so another worker can pick them up right away.

    Args:
        client: Supabase client
        lock_timeout_ms: Age after which a running job's lock is considered dead

    Returns:
        Number of jobs recovered
    """
    now = iso_now()
    cutoff = iso_before(lock_timeout_ms)

    try:
        response = (
            client.table(JOBS_TABLE)
            .update({
                "status": STATUS_QUEUED,
                "lock_token": None,
                "locked_at": None,
                "last_error": STALE_LOCK_MESSAGE,
                "run_at": now,
                "updated_at": now,
            })
            .eq("status", STATUS_RUNNING)
            .lt("locked_at", cutoff)
            .execute()
        )
    except APIError as e:
        raise JobQueueError(f"Failed to clean up stale locks: {e.message}") from e

    recovered = response.data or []
    for row in recovered:
        logger.warning(f"♻️  Recovered stale job {row['id']} ({row.get('job_type')})")

    return len(recovered)


def requeue_interrupted_job(client: Client, job_id: str) -> None:
    """Put a job that outlived the shutdown grace period back on the queue."""
    now = iso_now()
    try:
        (
            client.table(JOBS_TABLE)
            .update({
                "status": STATUS_QUEUED,
                "lock_token": None,
                "locked_at": None,
                "last_error": SHUTDOWN_MESSAGE,
                "run_at": now,
                "updated_at": now,
            })
            .eq("id", job_id)
            .eq("status", STATUS_RUNNING)
            .execute()
        )
    except APIError as e:
        raise JobQueueError(f"Failed to requeue interrupted job {job_id}: {e.message}") from e


def _normalize_priority(priority: Any) -> int:
    try:
        value = int(priority)
    except (TypeError, ValueError):
        return DEFAULT_PRIORITY
    return min(max(value, 1), 10)


def enqueue_job(
    client: Client,
    job_type: str,
    payload: Dict[str, Any],
    priority: Optional[int] = None,
    max_attempts: Optional[int] = None,
    run_at: Optional[str] = None,
    progress_total: Optional[int] = None,
    environment: Optional[str] = None,
) -> ScraperJob:
    """
    Insert a new queued job, the same way the admin app does.

    Args:
        client: Supabase client
        job_type: One of SUPPORTED_JOB_TYPES
        payload: Job payload (employerIds plus job-specific options)
        priority: 1 (highest) to 10; clamped, defaults to 5
        max_attempts: Retry budget, at least 1, defaults to 5
        run_at: Earliest ISO timestamp the job may run
        progress_total: Initial progress total
        environment: Environment tag the job is reserved under

    Returns:
        The inserted ScraperJob

    Raises:
        ValueError: If the job type is not supported
        JobQueueError: If the insert fails
    """
    if job_type not in SUPPORTED_JOB_TYPES:
        raise ValueError(f"Unsupported job type: {job_type}")

    row: Dict[str, Any] = {
        "job_type": job_type,
        "payload": payload,
        "status": STATUS_QUEUED,
        "priority": _normalize_priority(priority if priority is not None else DEFAULT_PRIORITY),
        "max_attempts": max(1, max_attempts) if max_attempts is not None else DEFAULT_MAX_ATTEMPTS,
        "run_at": run_at or iso_now(),
    }
    if progress_total is not None:
        row["progress_total"] = max(0, progress_total)
    if environment:
        row["environment"] = environment

    try:
        response = client.table(JOBS_TABLE).insert(row).execute()
    except APIError as e:
        raise JobQueueError(f"Failed to enqueue {job_type} job: {e.message}") from e

    job = ScraperJob.from_row(response.data[0])
    append_event(client, job.id, "queued", {"source": "cli"})
    logger.info(f"📥 Enqueued {job_type} job {job.id} (priority {row['priority']})")
    return job
