"""
Parsing helpers for text scraped from the Incolink portal.

The browser side only collects raw strings (row texts, link texts, page
text); everything here works on plain Python data so it can be tested
without a browser.
"""

import re
from typing import Dict, Iterable, List, Optional

from scraper_worker.INCOLINK.config import PLACEHOLDER_TEXTS
from scraper_worker.INCOLINK.models import MemberRecord

MEMBER_PATTERN = re.compile(r'^\s*([^,]+)\s*,\s*(.*?)\s*\((\d+)\)\s*$')
MEMBER_NUMBER_PATTERN = re.compile(r'\(\d+\)')
INVOICE_LINK_PATTERN = re.compile(r'^\d{5,}$')
DATE_PATTERN = re.compile(r'\b(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})\b')


def normalize_whitespace(text: Optional[str]) -> str:
    return re.sub(r'\s+', ' ', text or '').strip()


def parse_member_text(raw: str) -> MemberRecord:
    """
    Parse "Surname, Given Names (MemberNumber)".

    Args:
        raw: Whitespace-normalised cell text

    Returns:
        MemberRecord; fields are empty strings when the text doesn't match

    Example:
        "Smith, John (12345)" -> surname "Smith", given_names "John", member_number "12345"
    """
    match = MEMBER_PATTERN.match(raw)
    if not match:
        return MemberRecord(surname='', given_names='', member_number='', raw=raw)

    return MemberRecord(
        surname=match.group(1).strip(),
        given_names=match.group(2).strip(),
        member_number=match.group(3),
        raw=raw,
    )


def parse_member_rows(texts: Iterable[str]) -> List[MemberRecord]:
    """
    Turn raw row texts from the member tables into MemberRecords.

    Blank and placeholder rows are dropped, as is anything that has no
    parenthesised member number.
    """
    members = []
    for text in texts:
        raw = normalize_whitespace(text)
        if not raw or raw.lower() in PLACEHOLDER_TEXTS:
            continue

        member = parse_member_text(raw)
        if member.member_number or MEMBER_NUMBER_PATTERN.search(member.raw):
            members.append(member)

    return members


def parse_amount(text: str) -> float:
    cleaned = re.sub(r'[^0-9.\-]', '', text)
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def find_invoice_in_rows(rows: Iterable[Dict]) -> Optional[str]:
    """
    Pick the first invoice row with a non-zero dollar amount and a link.

    Args:
        rows: Dicts with `cells` (list of cell texts) and `link_text`

    Returns:
        The row's link text, or None
    """
    for row in rows:
        cells = row.get('cells') or []
        link_text = (row.get('link_text') or '').strip()

        amount_cell = next((cell for cell in cells if '$' in (cell or '')), None)
        amount = parse_amount(amount_cell) if amount_cell else 0.0

        if link_text and amount > 0:
            return link_text

    return None


def find_numeric_invoice_link(link_texts: Iterable[str]) -> Optional[str]:
    """Return the first link text that is a bare invoice number (5+ digits)."""
    for text in link_texts:
        text = (text or '').strip()
        if INVOICE_LINK_PATTERN.match(text):
            return text
    return None


def find_date_in_text(text: str) -> Optional[str]:
    match = DATE_PATTERN.search(text or '')
    return match.group(1) if match else None
