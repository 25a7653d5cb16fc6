"""
Write FWC search results to Supabase.

The best search result for an employer is stored in company_eba_records (one
record per employer) and the employer is flagged as having an agreement.
"""

import logging
from typing import Any, Dict

from postgrest.exceptions import APIError
from supabase import Client

from scraper_worker.FWC.models import SearchResult
from scraper_worker.utils import normalize_date_input

logger = logging.getLogger(__name__)

EBA_TABLE = "company_eba_records"
EMPLOYERS_TABLE = "employers"


def transform_result_data(result: SearchResult, existing: bool) -> Dict[str, Any]:
    """
    Build the company_eba_records columns for a search result.

    Args:
        result: Search result chosen for the employer
        existing: Whether a record already exists (changes the comment)

    Returns:
        Dictionary ready for insert/update
    """
    if existing:
        comments = f"Updated from FWC search. Agreement: {result.title}. Status: {result.status}."
    else:
        comments = f"Auto-imported from FWC search. Agreement: {result.title}. Status: {result.status}."

    return {
        "fwc_document_url": result.document_url,
        "fwc_lodgement_number": result.lodgement_number,
        "fwc_certified_date": normalize_date_input(result.approved_date),
        "nominal_expiry_date": normalize_date_input(result.expiry_date),
        "comments": comments,
    }


def upsert_eba_record(client: Client, employer_id: str, result: SearchResult) -> None:
    """
    Insert or update the employer's EBA record and set its agreement flag.

    Both writes must succeed; any failure is raised so the employer is
    counted as failed.

    Raises:
        RuntimeError: If a select, insert or update fails
    """
    try:
        response = (
            client.table(EBA_TABLE)
            .select("id")
            .eq("employer_id", employer_id)
            .limit(1)
            .execute()
        )
    except APIError as e:
        raise RuntimeError(f"Failed to fetch existing EBA record: {e.message}") from e

    existing_record = response.data[0] if response.data else None
    update_data = transform_result_data(result, existing=existing_record is not None)

    if existing_record:
        try:
            client.table(EBA_TABLE).update(update_data).eq("id", existing_record["id"]).execute()
        except APIError as e:
            raise RuntimeError(f"Failed to update existing EBA record: {e.message}") from e
        logger.info(f"  ✓ Updated EBA record for employer {employer_id}")
    else:
        insert_data = {
            "employer_id": employer_id,
            "eba_file_number": result.title[:100],
            **update_data,
        }
        try:
            client.table(EBA_TABLE).insert(insert_data).execute()
        except APIError as e:
            raise RuntimeError(f"Failed to insert new EBA record: {e.message}") from e
        logger.info(f"  ✓ Created EBA record for employer {employer_id}")

    try:
        (
            client.table(EMPLOYERS_TABLE)
            .update({"enterprise_agreement_status": True})
            .eq("id", employer_id)
            .execute()
        )
    except APIError as e:
        raise RuntimeError(f"Failed to update employer status: {e.message}") from e
