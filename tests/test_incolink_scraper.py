"""
Tests for the incolink_sync pipeline and the DOM-reading helpers.
"""

from contextlib import contextmanager

import pytest

from scraper_worker.INCOLINK import incolink_scraper
from scraper_worker.INCOLINK.config import GRID_ROW_SELECTOR, TABLE_ROW_SELECTOR
from scraper_worker.INCOLINK.models import InvoiceResult, MemberRecord
from scraper_worker.models import ScraperJob

from conftest import FakeElement, FakeFrame, FakePage


SMITH = MemberRecord(surname="Smith", given_names="John", member_number="12345", raw="Smith, John (12345)")


@pytest.fixture
def incolink_env(fake_db, monkeypatch, no_sleep):
    fake_db.rows("employers").extend([
        {"id": "emp-1", "name": "ABC Pty Ltd", "incolink_id": "7001"},
        {"id": "emp-2", "name": "No Number Pty Ltd", "incolink_id": None},
    ])

    fetches = []

    @contextmanager
    def fake_open_browser(settings):
        yield "browser"

    def fake_fetch(browser, settings, incolink_id, invoice_number=None):
        fetches.append((incolink_id, invoice_number))
        return InvoiceResult(invoice_number=invoice_number or "22222", invoice_date="05/03/2024", members=[SMITH])

    monkeypatch.setattr(incolink_scraper, "open_browser", fake_open_browser)
    monkeypatch.setattr(incolink_scraper, "fetch_members_from_incolink", fake_fetch)
    return fetches


def make_job(fake_db, payload):
    return ScraperJob.from_row(fake_db.add_job(job_type="incolink_sync", status="running",
                                               attempts=1, payload=payload))


# ============================================================================
# JOB PROCESSING
# ============================================================================

def test_sync_persists_members_and_skips_employers_without_number(fake_db, settings, incolink_env):
    job = make_job(fake_db, {"employerIds": ["emp-1", "emp-2"]})

    summary = incolink_scraper.process_incolink_job(fake_db, job, settings)

    assert summary == {
        "succeeded": 1,
        "failed": 1,
        "created_workers": 1,
        "matched_workers": 0,
        "placements_created": 1,
        "placements_skipped": 0,
    }
    assert incolink_env == [("7001", None)]

    missing = fake_db.events(job.id, "incolink_employer_missing_id")
    assert [event["payload"]["employerId"] for event in missing] == ["emp-2"]

    succeeded = fake_db.events(job.id, "incolink_employer_succeeded")[0]["payload"]
    assert succeeded["invoiceNumber"] == "22222"
    assert succeeded["invoiceDate"] == "05/03/2024"
    assert succeeded["counts"]["placements_created"] == 1

    assert fake_db.get("scraper_jobs", job.id)["progress_completed"] == 2
    assert fake_db.get("employers", "emp-1")["incolink_last_matched"] == "2024-03-05"


def test_invoice_number_from_payload_is_passed_through(fake_db, settings, incolink_env):
    job = make_job(fake_db, {"employerIds": ["emp-1"], "invoiceNumber": 98765})

    incolink_scraper.process_incolink_job(fake_db, job, settings)

    assert incolink_env == [("7001", "98765")]


def test_portal_error_fails_only_that_employer(fake_db, settings, incolink_env, monkeypatch):
    fake_db.rows("employers").append({"id": "emp-3", "name": "XYZ Formwork", "incolink_id": "7003"})

    def flaky_fetch(browser, settings, incolink_id, invoice_number=None):
        if incolink_id == "7001":
            raise RuntimeError("Could not find a target invoice link")
        return InvoiceResult(invoice_number="33333", members=[SMITH])

    monkeypatch.setattr(incolink_scraper, "fetch_members_from_incolink", flaky_fetch)
    job = make_job(fake_db, {"employerIds": ["emp-1", "emp-3"]})

    summary = incolink_scraper.process_incolink_job(fake_db, job, settings)

    assert summary["succeeded"] == 1
    assert summary["failed"] == 1
    failed = fake_db.events(job.id, "incolink_employer_failed")[0]["payload"]
    assert failed == {"employerId": "emp-1", "error": "Could not find a target invoice link"}


def test_missing_credentials_fail_the_job(fake_db, settings, incolink_env):
    settings.incolink_password = None
    job = make_job(fake_db, {"employerIds": ["emp-1"]})

    with pytest.raises(RuntimeError, match="Incolink credentials"):
        incolink_scraper.process_incolink_job(fake_db, job, settings)


def test_empty_employer_list(fake_db, settings, incolink_env):
    job = make_job(fake_db, {"employerIds": []})

    summary = incolink_scraper.process_incolink_job(fake_db, job, settings)

    assert summary["succeeded"] == 0
    assert fake_db.event_types(job.id) == ["incolink_no_employers"]
    assert incolink_env == []


# ============================================================================
# LOGIN
# ============================================================================

class FakeLoginPage(FakePage):
    def __init__(self, elements, **kwargs):
        super().__init__(**kwargs)
        self.elements = elements
        self.visited = []

    def goto(self, url, **kwargs):
        self.visited.append(url)

    def query_selector(self, selector):
        return self.elements.get(selector)

    @contextmanager
    def expect_navigation(self, **kwargs):
        yield


class DetachedCheckbox(FakeElement):
    def is_checked(self):
        raise RuntimeError("Element is not attached to the DOM")


def test_login_carries_on_when_terms_checkbox_is_unusable():
    email, password, submit = FakeElement("email"), FakeElement("password"), FakeElement("submit")
    page = FakeLoginPage({
        'input[type="email"]': email,
        'input[type="password"]': password,
        "#termsAndConditionsAccepted": DetachedCheckbox("terms"),
        "#loginButton": submit,
    })

    incolink_scraper.login(page, "ops@example.test", "hunter2")

    assert email.typed == ["ops@example.test"]
    assert password.typed == ["hunter2"]
    assert len(submit.clicks) == 1


# ============================================================================
# PAGE READING
# ============================================================================

class FakeInvoicePage(FakePage):
    def __init__(self, rows=None, links=None, evaluate_result=None, **kwargs):
        super().__init__(**kwargs)
        self.rows = rows or []
        self.links = links or []
        self.evaluate_result = evaluate_result
        self.evaluated = []

    def eval_on_selector_all(self, selector, script):
        if selector == "a":
            return self.links
        return self.rows

    def evaluate(self, script, *args):
        self.evaluated.append(args)
        return self.evaluate_result


def test_detect_invoice_prefers_row_with_amount():
    page = FakeInvoicePage(
        rows=[{"cells": ["11111", "$0.00"], "link_text": "11111"},
              {"cells": ["22222", "$150.00"], "link_text": "22222"}],
        links=["Home", "11111", "22222"],
    )

    assert incolink_scraper.detect_invoice_selection(page) == "22222"


def test_detect_invoice_falls_back_to_numeric_link():
    page = FakeInvoicePage(rows=[], links=["Home", "Invoices", "44444"])

    assert incolink_scraper.detect_invoice_selection(page) == "44444"


def test_click_invoice_link_reports_missing_link():
    page = FakeInvoicePage(evaluate_result=False)

    assert incolink_scraper.click_invoice_link(page, "22222") is False
    assert page.evaluated == [("22222",)]


def test_extract_invoice_date_from_page_text():
    page = FakeInvoicePage(evaluate_result="Invoice 22222 Date 05/03/2024 Amount $150.00")

    assert incolink_scraper.extract_invoice_date(page) == "05/03/2024"


def test_extract_members_reads_tables_and_grids_in_all_frames():
    page = FakePage(frames=[
        FakeFrame(collections={TABLE_ROW_SELECTOR: ["Smith, John (12345)", "Default"]}),
        FakeFrame(broken=True),
        FakeFrame(collections={GRID_ROW_SELECTOR: ["Nguyen, Van (987654)", "Member"]}),
    ])

    members = incolink_scraper.extract_members(page)

    assert [m.member_number for m in members] == ["12345", "987654"]
