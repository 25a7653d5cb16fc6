"""
Tests for reconciling Incolink members with workers and placements.
"""

import pytest

from scraper_worker.INCOLINK.models import InvoiceResult, MemberRecord
from scraper_worker.INCOLINK.upload_to_supabase import escape_like, persist_members
from scraper_worker.utils import today_iso


def member(surname, given_names, number):
    return MemberRecord(
        surname=surname,
        given_names=given_names,
        member_number=number,
        raw=f"{surname}, {given_names} ({number})",
    )


@pytest.fixture
def employer(fake_db):
    row = {"id": "emp-1", "name": "ABC Pty Ltd", "incolink_id": "7001"}
    fake_db.rows("employers").append(row)
    return row


def test_new_member_creates_worker_and_placement(fake_db, employer):
    invoice = InvoiceResult("22222", "05/03/24", [member("Smith", "John", "12345")])

    counts = persist_members(fake_db, "emp-1", invoice)

    assert counts.to_dict() == {
        "created_workers": 1,
        "matched_workers": 0,
        "placements_created": 1,
        "placements_skipped": 0,
    }

    worker = fake_db.rows("workers")[0]
    assert worker["first_name"] == "John"
    assert worker["surname"] == "Smith"
    assert worker["incolink_member_id"] == "12345"
    assert worker["union_membership_status"] == "unknown"
    assert worker["incolink_last_matched"] == "2024-03-05"

    placement = fake_db.rows("worker_placements")[0]
    assert placement["worker_id"] == worker["id"]
    assert placement["employer_id"] == "emp-1"
    assert placement["employment_status"] == "permanent"
    assert placement["start_date"] == today_iso()

    assert fake_db.get("employers", "emp-1")["incolink_last_matched"] == "2024-03-05"


def test_rerunning_an_invoice_does_not_duplicate_placements(fake_db, employer):
    invoice = InvoiceResult("22222", "05/03/2024", [member("Smith", "John", "12345")])

    persist_members(fake_db, "emp-1", invoice)
    counts = persist_members(fake_db, "emp-1", invoice)

    assert counts.created_workers == 0
    assert counts.matched_workers == 1
    assert counts.placements_created == 0
    assert counts.placements_skipped == 1
    assert len(fake_db.rows("workers")) == 1
    assert len(fake_db.rows("worker_placements")) == 1


def test_closed_placement_does_not_block_a_new_one(fake_db, employer):
    fake_db.rows("workers").append({"id": "w-1", "first_name": "John", "surname": "Smith",
                                     "incolink_member_id": "12345"})
    fake_db.rows("worker_placements").append({"id": "p-1", "worker_id": "w-1", "employer_id": "emp-1",
                                               "end_date": "2023-12-31"})

    counts = persist_members(fake_db, "emp-1", InvoiceResult("22222", None, [member("Smith", "John", "12345")]))

    assert counts.placements_created == 1
    assert len(fake_db.rows("worker_placements")) == 2


def test_name_match_backfills_member_number(fake_db, employer):
    fake_db.rows("workers").append({"id": "w-1", "first_name": "JOHN", "surname": "smith",
                                     "incolink_member_id": None})

    counts = persist_members(fake_db, "emp-1", InvoiceResult("22222", None, [member("Smith", "John", "12345")]))

    assert counts.matched_workers == 1
    assert counts.created_workers == 0
    assert fake_db.get("workers", "w-1")["incolink_member_id"] == "12345"


def test_name_match_keeps_existing_member_number(fake_db, employer):
    fake_db.rows("workers").append({"id": "w-1", "first_name": "John", "surname": "Smith",
                                     "incolink_member_id": "99999"})

    persist_members(fake_db, "emp-1", InvoiceResult("22222", None, [member("Smith", "John", "12345")]))

    assert fake_db.get("workers", "w-1")["incolink_member_id"] == "99999"


def test_name_match_is_not_a_wildcard_match(fake_db, employer):
    fake_db.rows("workers").append({"id": "w-1", "first_name": "Jo", "surname": "Smith",
                                     "incolink_member_id": None})

    counts = persist_members(fake_db, "emp-1", InvoiceResult("22222", None, [member("Smith", "J%", "12345")]))

    assert counts.created_workers == 1
    assert counts.matched_workers == 0


def test_member_without_number_is_matched_by_name(fake_db, employer):
    fake_db.rows("workers").append({"id": "w-1", "first_name": "Ann", "surname": "Lee",
                                     "incolink_member_id": None})
    unnumbered = MemberRecord(surname="Lee", given_names="Ann", member_number="", raw="Lee, Ann")

    counts = persist_members(fake_db, "emp-1", InvoiceResult("22222", None, [unnumbered]))

    assert counts.matched_workers == 1
    assert fake_db.get("workers", "w-1")["incolink_member_id"] is None


def test_missing_invoice_date_leaves_stamps_alone(fake_db, employer):
    persist_members(fake_db, "emp-1", InvoiceResult("22222", None, [member("Smith", "John", "12345")]))

    assert "incolink_last_matched" not in fake_db.rows("workers")[0]
    assert "incolink_last_matched" not in fake_db.get("employers", "emp-1")


def test_unrecognised_invoice_date_is_stored_as_is(fake_db, employer):
    persist_members(fake_db, "emp-1", InvoiceResult("22222", "March 2024", [member("Smith", "John", "12345")]))

    assert fake_db.get("employers", "emp-1")["incolink_last_matched"] == "March 2024"


def test_database_errors_are_raised(fake_db, employer):
    fake_db.fail("worker_placements", "insert")

    with pytest.raises(RuntimeError, match="Failed to persist Incolink members for employer emp-1"):
        persist_members(fake_db, "emp-1", InvoiceResult("22222", None, [member("Smith", "John", "12345")]))


def test_escape_like():
    assert escape_like("50%_off\\") == "50\\%\\_off\\\\"
