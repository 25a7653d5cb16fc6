"""
Reconcile Incolink invoice members with the workers and worker_placements tables.
"""

import logging
from typing import Optional

from postgrest.exceptions import APIError
from supabase import Client

from scraper_worker.INCOLINK.models import InvoiceResult, MemberRecord, PersistCounts
from scraper_worker.utils import normalize_date, today_iso

logger = logging.getLogger(__name__)

WORKERS_TABLE = "workers"
PLACEMENTS_TABLE = "worker_placements"
EMPLOYERS_TABLE = "employers"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so ilike behaves as a case-insensitive equality."""
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def find_worker_by_member_number(client: Client, member_number: str) -> Optional[str]:
    response = (
        client.table(WORKERS_TABLE)
        .select("id")
        .eq("incolink_member_id", member_number)
        .limit(1)
        .execute()
    )
    return response.data[0]["id"] if response.data else None


def find_worker_by_name(client: Client, first_name: str, surname: str) -> Optional[str]:
    response = (
        client.table(WORKERS_TABLE)
        .select("id")
        .ilike("first_name", escape_like(first_name))
        .ilike("surname", escape_like(surname))
        .limit(1)
        .execute()
    )
    return response.data[0]["id"] if response.data else None


def create_worker(client: Client, first_name: str, surname: str, member_number: Optional[str]) -> Optional[str]:
    response = (
        client.table(WORKERS_TABLE)
        .insert({
            "first_name": first_name or "(unknown)",
            "surname": surname or "(unknown)",
            "union_membership_status": "unknown",
            "incolink_member_id": member_number,
        })
        .execute()
    )
    return response.data[0]["id"] if response.data else None


def has_open_placement(client: Client, worker_id: str, employer_id: str) -> bool:
    response = (
        client.table(PLACEMENTS_TABLE)
        .select("id, end_date")
        .eq("worker_id", worker_id)
        .eq("employer_id", employer_id)
        .is_("end_date", "null")
        .limit(1)
        .execute()
    )
    return bool(response.data)


def resolve_worker(client: Client, member: MemberRecord, counts: PersistCounts) -> Optional[str]:
    """
    Find or create the worker row for a member.

    Match order: member number, then case-insensitive first name + surname,
    else a new worker. A name match without a stored member number gets the
    member number backfilled; an existing member number is never replaced.
    """
    first_name = (member.given_names or '').strip()
    surname = (member.surname or '').strip()
    member_number = (member.member_number or '').strip() or None

    worker_id = None
    if member_number:
        worker_id = find_worker_by_member_number(client, member_number)
        if worker_id:
            counts.matched_workers += 1
            return worker_id

    if first_name and surname:
        worker_id = find_worker_by_name(client, first_name, surname)

    if worker_id:
        counts.matched_workers += 1
        if member_number:
            (
                client.table(WORKERS_TABLE)
                .update({"incolink_member_id": member_number})
                .eq("id", worker_id)
                .is_("incolink_member_id", "null")
                .execute()
            )
        return worker_id

    worker_id = create_worker(client, first_name, surname, member_number)
    if worker_id:
        counts.created_workers += 1
        logger.info(f"    + Created worker {surname}, {first_name} ({member_number or 'no member no.'})")
    return worker_id


def persist_members(client: Client, employer_id: str, invoice: InvoiceResult) -> PersistCounts:
    """
    Write an invoice's members to the database for one employer.

    For each member: resolve (or create) the worker, add a placement with the
    employer unless an open one exists, and stamp incolink_last_matched on the
    worker. The employer is stamped once at the end.

    Args:
        client: Supabase client
        employer_id: Employer the invoice belongs to
        invoice: Scraped invoice

    Returns:
        PersistCounts for the employer

    Raises:
        RuntimeError: If any database call fails
    """
    counts = PersistCounts()
    today = today_iso()

    matched_date = None
    if invoice.invoice_date:
        matched_date = normalize_date(invoice.invoice_date) or invoice.invoice_date

    try:
        for member in invoice.members:
            worker_id = resolve_worker(client, member, counts)
            if not worker_id:
                continue

            if has_open_placement(client, worker_id, employer_id):
                counts.placements_skipped += 1
            else:
                (
                    client.table(PLACEMENTS_TABLE)
                    .insert({
                        "worker_id": worker_id,
                        "employer_id": employer_id,
                        "job_site_id": None,
                        "employment_status": "permanent",
                        "start_date": today,
                    })
                    .execute()
                )
                counts.placements_created += 1

            if matched_date:
                (
                    client.table(WORKERS_TABLE)
                    .update({"incolink_last_matched": matched_date})
                    .eq("id", worker_id)
                    .execute()
                )

        if matched_date:
            (
                client.table(EMPLOYERS_TABLE)
                .update({"incolink_last_matched": matched_date})
                .eq("id", employer_id)
                .execute()
            )
    except APIError as e:
        raise RuntimeError(f"Failed to persist Incolink members for employer {employer_id}: {e.message}") from e

    return counts
