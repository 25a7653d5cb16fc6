"""
Incolink ComplianceLink member sync.

For each employer in an incolink_sync job that has an Incolink account number:
1. Log in to the portal in a fresh page
2. Search for the employer (the search box sits inside a frame)
3. Pick an invoice: the one named in the job, or the first with a non-zero
   amount, or the first bare invoice-number link
4. Open the invoice and read the invoice date and the member rows
5. Reconcile the members against workers / worker_placements

The portal has no API, so all of this is DOM-driven. Each employer is handled
independently; a failure is recorded and the job carries on.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from playwright.sync_api import Browser, Page, TimeoutError as PlaywrightTimeout
from postgrest.exceptions import APIError
from supabase import Client

from scraper_worker.browser import (
    new_page,
    close_page,
    open_browser,
    wait_for_any_frame,
    collect_from_frames,
)
from scraper_worker.config import WorkerSettings
from scraper_worker.jobs import append_event, update_progress
from scraper_worker.models import ScraperJob, parse_job_payload
from scraper_worker.INCOLINK.config import (
    PORTAL_URL,
    EMAIL_SELECTORS,
    PASSWORD_SELECTORS,
    TERMS_CHECKBOX_SELECTOR,
    LOGIN_BUTTON_SELECTOR,
    FALLBACK_SUBMIT_SELECTORS,
    EMPLOYER_SEARCH_SELECTORS,
    RESULTS_SELECTORS,
    TABLE_ROW_SELECTOR,
    GRID_ROW_SELECTOR,
    NAVIGATION_TIMEOUT,
    SEARCH_INPUT_TIMEOUT,
    RESULTS_TIMEOUT,
    CREDENTIAL_TYPING_DELAY,
    SEARCH_TYPING_DELAY,
    DELAY_AFTER_SEARCH,
    DELAY_AFTER_INVOICE_CLICK,
    DELAY_BETWEEN_EMPLOYERS,
)
from scraper_worker.INCOLINK.models import InvoiceResult, MemberRecord, PersistCounts
from scraper_worker.INCOLINK.parser import (
    parse_member_rows,
    find_invoice_in_rows,
    find_numeric_invoice_link,
    find_date_in_text,
)
from scraper_worker.INCOLINK.upload_to_supabase import persist_members

logger = logging.getLogger(__name__)


# ============================================================================
# PAGE SCRIPTS
# ============================================================================

INVOICE_ROWS_SCRIPT = """(rows) => rows.map((tr) => {
    const cells = Array.from(tr.querySelectorAll('td')).map((td) => (td.textContent || '').trim());
    const link = tr.querySelector('a');
    return { cells, link_text: link ? (link.textContent || '').trim() : null };
})"""

LINK_TEXTS_SCRIPT = "(anchors) => anchors.map((a) => (a.textContent || '').trim())"

CLICK_LINK_SCRIPT = """(invoiceText) => {
    const target = Array.from(document.querySelectorAll('a'))
        .find((a) => (a.textContent || '').trim() === String(invoiceText).trim());
    if (target) {
        target.click();
        return true;
    }
    return false;
}"""

PAGE_TEXT_SCRIPT = """() => {
    const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT);
    const lines = [];
    while (walker.nextNode()) {
        const text = (walker.currentNode.textContent || '').trim();
        if (text) lines.push(text);
    }
    return lines.join(' ');
}"""

# First cell of each table row; prefer the link or span inside it
TABLE_MEMBER_SCRIPT = """(rows) => rows.map((tr) => {
    const td = tr.querySelector('td');
    if (!td) return '';
    const node = td.querySelector('a') || td.querySelector('span') || td;
    return (node.textContent || '').trim();
}).filter(Boolean)"""

GRID_MEMBER_SCRIPT = """(rows) => rows.map((row) => {
    const cell = row.querySelector('div[role="cell"], td, th');
    return cell ? (cell.textContent || '').trim() : '';
}).filter(Boolean)"""


# ============================================================================
# PORTAL STEPS
# ============================================================================

def _close_popup(popup: Page) -> None:
    try:
        popup.close()
    except Exception as e:
        logger.debug(f"Popup already closed: {e}")


def _first_match(page: Page, selectors: List[str]):
    for selector in selectors:
        element = page.query_selector(selector)
        if element:
            return element
    return None


def login(page: Page, email: str, password: str) -> None:
    """
    Log in to ComplianceLink.

    Raises:
        RuntimeError: If the email or password inputs can't be found
    """
    logger.info("  🌐 Opening Incolink portal...")
    page.goto(PORTAL_URL, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT)

    email_input = _first_match(page, EMAIL_SELECTORS)
    if not email_input:
        raise RuntimeError("Incolink email input not found")
    email_input.type(email, delay=CREDENTIAL_TYPING_DELAY)

    password_input = _first_match(page, PASSWORD_SELECTORS)
    if not password_input:
        raise RuntimeError("Incolink password input not found")
    password_input.type(password, delay=CREDENTIAL_TYPING_DELAY)

    # Terms checkbox only shows up on some logins
    try:
        terms = page.query_selector(TERMS_CHECKBOX_SELECTOR)
        if terms and not terms.is_checked():
            terms.click()
    except Exception as e:
        logger.debug(f"  Terms checkbox not handled: {e}")

    submit = page.query_selector(LOGIN_BUTTON_SELECTOR) or _first_match(page, FALLBACK_SUBMIT_SELECTORS)

    logger.info("  🔑 Submitting login...")
    try:
        with page.expect_navigation(wait_until="networkidle", timeout=NAVIGATION_TIMEOUT):
            if submit:
                submit.click()
            else:
                password_input.press("Enter")
    except PlaywrightTimeout:
        # Portal sometimes swaps content in place without a navigation
        logger.warning("  ⚠️  No navigation after login submit, continuing")


def search_employer(page: Page, incolink_id: str) -> None:
    """
    Type the employer's Incolink number into the portal search.

    Raises:
        TimeoutError: If no search input appears in any frame
    """
    search_input = wait_for_any_frame(page, EMPLOYER_SEARCH_SELECTORS, timeout_ms=SEARCH_INPUT_TIMEOUT)

    # Triple click selects any existing text so typing replaces it
    search_input.click(click_count=3)
    search_input.type(str(incolink_id), delay=SEARCH_TYPING_DELAY)
    page.keyboard.press("Enter")
    time.sleep(DELAY_AFTER_SEARCH)


def detect_invoice_selection(page: Page) -> Optional[str]:
    """
    Work out which invoice to open when the job doesn't name one.

    Returns:
        Invoice link text, or None if nothing suitable is on the page
    """
    try:
        rows = page.eval_on_selector_all("table tbody tr", INVOICE_ROWS_SCRIPT)
        invoice = find_invoice_in_rows(rows)
        if invoice:
            return invoice
    except Exception as e:
        logger.debug(f"Could not read invoice rows: {e}")

    try:
        link_texts = page.eval_on_selector_all("a", LINK_TEXTS_SCRIPT)
        return find_numeric_invoice_link(link_texts)
    except Exception as e:
        logger.debug(f"Could not read invoice links: {e}")

    return None


def click_invoice_link(page: Page, invoice_number: str) -> bool:
    return bool(page.evaluate(CLICK_LINK_SCRIPT, invoice_number))


def extract_invoice_date(page: Page) -> Optional[str]:
    try:
        return find_date_in_text(page.evaluate(PAGE_TEXT_SCRIPT))
    except Exception as e:
        logger.debug(f"Could not read invoice date: {e}")
        return None


def extract_members(page: Page) -> List[MemberRecord]:
    """Read member rows from every table and grid in every frame."""
    texts = collect_from_frames(page, TABLE_ROW_SELECTOR, TABLE_MEMBER_SCRIPT)
    texts += collect_from_frames(page, GRID_ROW_SELECTOR, GRID_MEMBER_SCRIPT)
    return parse_member_rows(texts)


def fetch_members_from_incolink(
    browser: Browser,
    settings: WorkerSettings,
    incolink_id: str,
    invoice_number: Optional[str] = None,
) -> InvoiceResult:
    """
    Log in, find the employer's invoice and scrape its members.

    Args:
        browser: Playwright browser
        settings: Worker settings carrying the portal credentials
        incolink_id: Employer's Incolink account number
        invoice_number: Invoice to open; auto-detected when None

    Returns:
        InvoiceResult with the invoice number, date and members

    Raises:
        RuntimeError: If login or invoice selection fails
        TimeoutError: If the employer search box never appears
    """
    page = new_page(browser, navigation_timeout_ms=NAVIGATION_TIMEOUT)
    page.on("popup", _close_popup)

    try:
        login(page, settings.incolink_email, settings.incolink_password)

        logger.info(f"  🔍 Searching for employer {incolink_id}...")
        search_employer(page, incolink_id)

        target_invoice = invoice_number or detect_invoice_selection(page)
        if not target_invoice:
            raise RuntimeError("Could not find a target invoice link")

        logger.info(f"  🧾 Opening invoice {target_invoice}...")
        if not click_invoice_link(page, target_invoice):
            raise RuntimeError("Invoice link element not found")
        time.sleep(DELAY_AFTER_INVOICE_CLICK)

        try:
            wait_for_any_frame(page, RESULTS_SELECTORS, timeout_ms=RESULTS_TIMEOUT)
        except TimeoutError:
            # Invoices with no members never render a table
            logger.warning(f"  ⚠️  No member table appeared for invoice {target_invoice}")

        invoice_date = extract_invoice_date(page)
        members = extract_members(page)
        logger.info(f"  📊 Invoice {target_invoice} ({invoice_date or 'no date'}): {len(members)} members")

        return InvoiceResult(invoice_number=target_invoice, invoice_date=invoice_date, members=members)

    finally:
        close_page(page)


# ============================================================================
# JOB
# ============================================================================

def load_employers(client: Client, employer_ids: List[str]) -> Dict[str, Dict[str, str]]:
    """
    Read names and Incolink numbers for the job's employers.

    Raises:
        RuntimeError: If the employers can't be read (fails the whole job)
    """
    try:
        response = client.table("employers").select("id, name, incolink_id").in_("id", employer_ids).execute()
    except APIError as e:
        raise RuntimeError(f"Failed to load employers: {e.message}") from e

    return {
        row["id"]: {"name": row.get("name") or "", "incolink_id": row.get("incolink_id") or ""}
        for row in (response.data or [])
    }


def process_incolink_job(client: Client, job: ScraperJob, settings: WorkerSettings) -> Dict[str, Any]:
    """
    Run an incolink_sync job.

    Args:
        client: Supabase client
        job: The claimed job
        settings: Worker settings (credentials, browser options)

    Returns:
        Dict with employer and reconciliation counts

    Raises:
        PayloadError: If the payload is malformed
        RuntimeError: If credentials are missing or employers can't be loaded
    """
    payload = parse_job_payload(job.job_type, job.payload)

    totals = {
        "succeeded": 0,
        "failed": 0,
        "created_workers": 0,
        "matched_workers": 0,
        "placements_created": 0,
        "placements_skipped": 0,
    }

    if not payload.employer_ids:
        append_event(client, job.id, "incolink_no_employers")
        return totals

    if not settings.incolink_email or not settings.incolink_password:
        raise RuntimeError("Incolink credentials are not configured (INCOLINK_EMAIL / INCOLINK_PASSWORD)")

    employers = load_employers(client, payload.employer_ids)

    logger.info(f"Incolink job {job.id} started: {len(payload.employer_ids)} employers")

    with open_browser(settings) as browser:
        for index, employer_id in enumerate(payload.employer_ids):
            employer = employers.get(employer_id)
            employer_name = employer["name"] if employer else employer_id
            logger.info(f"\n[{index + 1}/{len(payload.employer_ids)}] Incolink sync: {employer_name}")

            if not employer or not employer["incolink_id"]:
                totals["failed"] += 1
                append_event(client, job.id, "incolink_employer_missing_id", {
                    "employerId": employer_id,
                    "employerName": employer_name,
                })
                logger.warning(f"  ⏭️  {employer_name} has no Incolink number, skipping")
                update_progress(client, job.id, index + 1)
                continue

            append_event(client, job.id, "incolink_employer_started", {
                "employerId": employer_id,
                "employerName": employer_name,
                "incolinkId": employer["incolink_id"],
            })

            try:
                invoice = fetch_members_from_incolink(
                    browser, settings, employer["incolink_id"], payload.invoice_number
                )
                counts: PersistCounts = persist_members(client, employer_id, invoice)

                totals["succeeded"] += 1
                totals["created_workers"] += counts.created_workers
                totals["matched_workers"] += counts.matched_workers
                totals["placements_created"] += counts.placements_created
                totals["placements_skipped"] += counts.placements_skipped

                append_event(client, job.id, "incolink_employer_succeeded", {
                    "employerId": employer_id,
                    "invoiceNumber": invoice.invoice_number,
                    "invoiceDate": invoice.invoice_date,
                    "counts": counts.to_dict(),
                })
                logger.info(f"  ✓ {employer_name}: {counts.to_dict()}")
            except Exception as e:
                totals["failed"] += 1
                append_event(client, job.id, "incolink_employer_failed", {
                    "employerId": employer_id,
                    "error": str(e) or "unknown error",
                })
                logger.error(f"  ✗ Incolink sync failed for {employer_name}: {e}")

            update_progress(client, job.id, index + 1)
            time.sleep(DELAY_BETWEEN_EMPLOYERS)

    logger.info(f"Incolink job {job.id} finished: {totals}")
    return totals
