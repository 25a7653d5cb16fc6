"""
Tests for date normalisation and log helpers
"""

import pytest

from scraper_worker.utils import iso_after, iso_now, normalize_date, normalize_date_input, truncate_for_log


@pytest.mark.parametrize("value, expected", [
    ("05/03/24", "2024-03-05"),
    ("05-03-2024", "2024-03-05"),
    ("5/3/2024", "2024-03-05"),
    ("31/12/99", "1999-12-31"),
    ("01/01/50", "2050-01-01"),
    ("March 2024", None),
    ("", None),
    (None, None),
])
def test_normalize_date(value, expected):
    assert normalize_date(value) == expected


@pytest.mark.parametrize("value, expected", [
    ("12 March 2024", "2024-03-12"),
    ("2024-03-12T00:00:00Z", "2024-03-12"),
    ("2024-03-04", "2024-03-04"),
    ("04/03/2024", "2024-03-04"),
    ("not a date", None),
    ("   ", None),
])
def test_normalize_date_input(value, expected):
    assert normalize_date_input(value) == expected


def test_truncate_for_log():
    assert truncate_for_log(None) == ""
    assert truncate_for_log("short") == "short"
    assert truncate_for_log("abcdef", max_len=3) == "abc…"


def test_iso_after_is_in_the_future():
    assert iso_after(60000) > iso_now()
