"""
Data models for scraper jobs and their payloads.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

# Job statuses
STATUS_QUEUED = "queued"
STATUS_RUNNING = "running"
STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

TERMINAL_STATUSES = (STATUS_SUCCEEDED, STATUS_FAILED, STATUS_CANCELLED)

# Job types handled by this worker
JOB_TYPE_FWC_LOOKUP = "fwc_lookup"
JOB_TYPE_INCOLINK_SYNC = "incolink_sync"

SUPPORTED_JOB_TYPES = (JOB_TYPE_FWC_LOOKUP, JOB_TYPE_INCOLINK_SYNC)


class PayloadError(ValueError):
    """Raised when a job payload doesn't match the shape its job type needs."""


@dataclass
class ScraperJob:
    """A row of the scraper_jobs table"""

    id: str
    job_type: str
    status: str
    payload: Dict[str, Any] = field(default_factory=dict)
    priority: int = 5
    run_at: Optional[str] = None
    attempts: int = 0
    max_attempts: int = 5
    lock_token: Optional[str] = None
    locked_at: Optional[str] = None
    progress_completed: int = 0
    progress_total: Optional[int] = None
    last_error: Optional[str] = None
    environment: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ScraperJob":
        payload = row.get("payload")
        return cls(
            id=row["id"],
            job_type=row.get("job_type") or "",
            status=row.get("status") or STATUS_QUEUED,
            payload=payload if isinstance(payload, dict) else {},
            priority=row.get("priority") if row.get("priority") is not None else 5,
            run_at=row.get("run_at"),
            attempts=row.get("attempts") or 0,
            max_attempts=row.get("max_attempts") or 5,
            lock_token=row.get("lock_token"),
            locked_at=row.get("locked_at"),
            progress_completed=row.get("progress_completed") or 0,
            progress_total=row.get("progress_total"),
            last_error=row.get("last_error"),
            environment=row.get("environment"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            completed_at=row.get("completed_at"),
        )


@dataclass
class FwcLookupPayload:
    """Payload of a fwc_lookup job"""

    employer_ids: List[str]
    auto_link: bool = True
    search_overrides: Dict[str, str] = field(default_factory=dict)


@dataclass
class IncolinkSyncPayload:
    """Payload of an incolink_sync job"""

    employer_ids: List[str]
    invoice_number: Optional[str] = None


JobPayload = Union[FwcLookupPayload, IncolinkSyncPayload]


def _parse_employer_ids(payload: Dict[str, Any]) -> List[str]:
    employer_ids = payload.get("employerIds", [])
    if employer_ids is None:
        return []
    if not isinstance(employer_ids, list):
        raise PayloadError("employerIds must be a list")
    for employer_id in employer_ids:
        if not isinstance(employer_id, str) or not employer_id.strip():
            raise PayloadError(f"Invalid employer id in employerIds: {employer_id!r}")
    return employer_ids


def parse_job_payload(job_type: str, payload: Any) -> JobPayload:
    """
    Validate a raw job payload and turn it into the dataclass for its job type.

    Args:
        job_type: The job's job_type column
        payload: The job's payload column (decoded JSON)

    Returns:
        FwcLookupPayload or IncolinkSyncPayload

    Raises:
        PayloadError: If the payload is malformed or the job type is unknown
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise PayloadError("Job payload must be an object")

    employer_ids = _parse_employer_ids(payload)

    if job_type == JOB_TYPE_FWC_LOOKUP:
        options = payload.get("options") or {}
        if not isinstance(options, dict):
            raise PayloadError("options must be an object")

        overrides = options.get("searchOverrides") or {}
        if not isinstance(overrides, dict):
            raise PayloadError("options.searchOverrides must be an object")

        return FwcLookupPayload(
            employer_ids=employer_ids,
            # Auto-linking is on unless explicitly disabled
            auto_link=options.get("autoLink") is not False,
            search_overrides={
                str(key): value for key, value in overrides.items()
                if isinstance(value, str)
            },
        )

    if job_type == JOB_TYPE_INCOLINK_SYNC:
        invoice_number = payload.get("invoiceNumber")
        if invoice_number is not None and not isinstance(invoice_number, (str, int)):
            raise PayloadError("invoiceNumber must be a string")
        invoice_number = str(invoice_number).strip() if invoice_number is not None else None

        return IncolinkSyncPayload(
            employer_ids=employer_ids,
            invoice_number=invoice_number or None,
        )

    raise PayloadError(f"Unsupported job type: {job_type}")
