"""
Fair Work Commission (FWC) agreement lookup.

For each employer in a fwc_lookup job:
1. Build a list of query candidates from the employer name (and any override)
2. Search the FWC document search with each candidate until one returns results
3. Parse the results (embedded view-model, falling back to the rendered HTML)
4. Either link the best result to the employer, or record the candidates for
   manual review

Employer-level problems (timeouts, empty searches, database errors) are
recorded as events and counted; they never fail the job as a whole.
"""

import logging
import time
from typing import Any, Dict, List

from playwright.sync_api import Browser, TimeoutError as PlaywrightTimeout
from postgrest.exceptions import APIError
from supabase import Client

from scraper_worker.browser import new_page, close_page, open_browser, page_diagnostics
from scraper_worker.config import WorkerSettings
from scraper_worker.jobs import append_event, update_progress
from scraper_worker.models import ScraperJob, FwcLookupPayload, parse_job_payload
from scraper_worker.FWC.config import (
    DEFAULT_NAVIGATION_TIMEOUT,
    SEARCH_TIMEOUT,
    VIEW_MODEL_TIMEOUT,
    DELAY_BETWEEN_EMPLOYERS,
    MAX_LOGGED_RESULTS,
)
from scraper_worker.FWC.models import SearchOutcome, SearchResult
from scraper_worker.FWC.parser import build_query_candidates, build_search_url, parse_search_results
from scraper_worker.FWC.upload_to_supabase import upsert_eba_record

logger = logging.getLogger(__name__)

VIEW_MODEL_READY = "() => Boolean(window.aspViewModel && window.aspViewModel.documentResult)"


def search_fwc_agreements(browser: Browser, query: str) -> SearchOutcome:
    """
    Run one query against the FWC document search.

    Args:
        browser: Playwright browser
        query: Free-text query

    Returns:
        SearchOutcome with the parsed results, or with a failure context
        describing the page at the point the search broke
    """
    search_url = build_search_url(query)
    page = new_page(browser, navigation_timeout_ms=DEFAULT_NAVIGATION_TIMEOUT)

    try:
        logger.info(f"  🌐 Searching FWC for: '{query}'")
        try:
            page.goto(search_url, wait_until="networkidle", timeout=SEARCH_TIMEOUT)
        except Exception as e:
            logger.warning(f"  ⚠️  Navigation failed for '{query}': {e}")
            return SearchOutcome(query=query, failure=page_diagnostics(page, "goto", query, e))

        wait_failure = None
        waited_for_view_model = False
        try:
            page.wait_for_function(VIEW_MODEL_READY, timeout=VIEW_MODEL_TIMEOUT)
            waited_for_view_model = True
        except PlaywrightTimeout as e:
            wait_failure = page_diagnostics(page, "wait_for_viewmodel", query, e)
            logger.warning(
                f"  ⚠️  aspViewModel wait timed out for '{query}' "
                f"(url: {wait_failure.page_url}, title: {wait_failure.page_title})"
            )

        try:
            results = parse_search_results(page.content())
        except Exception as e:
            logger.warning(f"  ⚠️  Failed to parse FWC results for '{query}': {e}")
            return SearchOutcome(query=query, failure=page_diagnostics(page, "parse", query, e))

        logger.info(
            f"  📊 FWC search '{query}': {len(results)} results "
            f"(view-model ready: {waited_for_view_model})"
        )

        if not results and wait_failure:
            return SearchOutcome(query=query, failure=wait_failure)

        return SearchOutcome(query=query, results=results)

    finally:
        close_page(page)


def load_employer_names(client: Client, employer_ids: List[str]) -> Dict[str, str]:
    """
    Look up display names for the job's employers.

    Raises:
        RuntimeError: If the employers can't be read (fails the whole job)
    """
    try:
        response = client.table("employers").select("id, name").in_("id", employer_ids).execute()
    except APIError as e:
        raise RuntimeError(f"Failed to load employer names: {e.message}") from e

    return {row["id"]: row.get("name") or "" for row in (response.data or [])}


def search_with_fallback(browser: Browser, client: Client, job_id: str, employer_id: str,
                         employer_name: str, queries: List[str]) -> SearchOutcome:
    """
    Try each query in turn; the first one with results wins.

    A failed attempt stops the search so the failure can be reported with
    its page context.
    """
    for query in queries:
        append_event(client, job_id, "fwc_employer_query_attempt", {
            "employerId": employer_id,
            "employerName": employer_name,
            "query": query,
        })

        outcome = search_fwc_agreements(browser, query)
        if not outcome.ok or outcome.results:
            return outcome

    # Nothing found; report against the first (most specific) query
    return SearchOutcome(query=queries[0] if queries else employer_name)


def process_employer(browser: Browser, client: Client, job: ScraperJob, payload: FwcLookupPayload,
                     employer_id: str, employer_name: str) -> bool:
    """
    Search for one employer and apply the outcome.

    Returns:
        True if the employer counts as succeeded, False otherwise

    Raises:
        RuntimeError: If linking the result to the employer fails
    """
    queries = build_query_candidates(employer_name, payload.search_overrides.get(employer_id))
    outcome = search_with_fallback(browser, client, job.id, employer_id, employer_name, queries)

    if not outcome.ok:
        append_event(client, job.id, "fwc_employer_debug", {
            "employerId": employer_id,
            "employerName": employer_name,
            "context": outcome.failure.to_dict(),
        })
        append_event(client, job.id, "fwc_employer_failed", {
            "employerId": employer_id,
            "employerName": employer_name,
            "error": outcome.failure.error_message,
            "debug": outcome.failure.to_dict(),
        })
        logger.error(f"  ✗ FWC search failed at stage '{outcome.failure.stage}': {outcome.failure.error_message}")
        return False

    results: List[SearchResult] = outcome.results
    limited_results = [result.to_dict() for result in results[:MAX_LOGGED_RESULTS]]

    append_event(client, job.id, "fwc_employer_results", {
        "employerId": employer_id,
        "employerName": employer_name,
        "query": outcome.query,
        "resultsCount": len(results),
        "firstTitle": results[0].title if results else None,
        "results": None if payload.auto_link else limited_results,
    })

    if not results:
        append_event(client, job.id, "fwc_employer_no_results", {
            "employerId": employer_id,
            "employerName": employer_name,
        })
        logger.info(f"  ⚠️  No FWC results for {employer_name}")
        return False

    if payload.auto_link:
        best_result = results[0]
        upsert_eba_record(client, employer_id, best_result)
        append_event(client, job.id, "fwc_employer_succeeded", {
            "employerId": employer_id,
            "employerName": employer_name,
            "resultTitle": best_result.title,
            "status": best_result.status,
        })
        logger.info(f"  ✓ Linked '{best_result.title}' to {employer_name}")
    else:
        append_event(client, job.id, "fwc_employer_candidates", {
            "employerId": employer_id,
            "employerName": employer_name,
            "query": outcome.query,
            "results": limited_results,
        })
        logger.info(f"  ✓ Recorded {len(limited_results)} candidates for {employer_name}")

    return True


def process_fwc_job(client: Client, job: ScraperJob, settings: WorkerSettings) -> Dict[str, Any]:
    """
    Run a fwc_lookup job.

    Args:
        client: Supabase client
        job: The claimed job
        settings: Worker settings (browser options)

    Returns:
        Dict with `succeeded` and `failed` employer counts

    Raises:
        PayloadError: If the payload is malformed
        RuntimeError: If the employer list can't be loaded
    """
    payload = parse_job_payload(job.job_type, job.payload)

    if not payload.employer_ids:
        append_event(client, job.id, "fwc_no_employers")
        return {"succeeded": 0, "failed": 0}

    employer_names = load_employer_names(client, payload.employer_ids)

    succeeded = 0
    failed = 0

    logger.info(f"FWC job {job.id} started: {len(payload.employer_ids)} employers, auto-link: {payload.auto_link}")

    with open_browser(settings) as browser:
        for index, employer_id in enumerate(payload.employer_ids):
            employer_name = employer_names.get(employer_id) or employer_id
            logger.info(f"\n[{index + 1}/{len(payload.employer_ids)}] FWC lookup: {employer_name}")

            append_event(client, job.id, "fwc_employer_started", {
                "employerId": employer_id,
                "employerName": employer_name,
            })

            try:
                if process_employer(browser, client, job, payload, employer_id, employer_name):
                    succeeded += 1
                else:
                    failed += 1
            except Exception as e:
                failed += 1
                append_event(client, job.id, "fwc_employer_failed", {
                    "employerId": employer_id,
                    "employerName": employer_name,
                    "error": str(e) or "unknown error",
                })
                logger.error(f"  ✗ FWC lookup failed for {employer_name}: {e}")

            update_progress(client, job.id, index + 1)
            time.sleep(DELAY_BETWEEN_EMPLOYERS)

    logger.info(f"FWC job {job.id} finished: {succeeded} succeeded, {failed} failed")
    return {"succeeded": succeeded, "failed": failed}
