"""
Parser for Fair Work Commission document search results.

The search page embeds its results as an `aspViewModel` JSON blob that the
client-side app would normally render. We read that directly and only fall
back to walking the rendered HTML when the blob is missing or empty.
"""

import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from scraper_worker.FWC.config import (
    BASE_URL,
    SEARCH_URL,
    QUERY_PREFIX,
    SEARCH_OPTIONS,
    SEARCH_PAGE_SIZE,
    SEARCH_FACETS,
    DEFAULT_AGREEMENT_TYPE,
    DEFAULT_STATUS,
    MIN_TITLE_LENGTH,
)
from scraper_worker.FWC.models import SearchResult
from scraper_worker.utils import normalize_date_input

logger = logging.getLogger(__name__)

VIEW_MODEL_PATTERN = re.compile(r'aspViewModel\s*=\s*(\{[\s\S]*?\})\s*;\s*</script>')
DOCUMENT_SUFFIX_PATTERN = re.compile(r'(\.pdf|\.doc|\.docx|\.rtf|\.zip)(\d+)$', re.IGNORECASE)

CORPORATE_SUFFIX_PATTERN = re.compile(
    r'\s+(Pty\s+Ltd|Pty\.?\s*Ltd\.?|Limited|Ltd\.?|Incorporated|Inc\.?|Corporation|Corp\.?)$',
    re.IGNORECASE,
)
GENERIC_SUFFIX_PATTERN = re.compile(
    r'\s+(Group|Holdings|Enterprises|Services|Solutions|Systems|Technologies|International|Australia|Australian)$',
    re.IGNORECASE,
)


# ============================================================================
# QUERY BUILDING
# ============================================================================

def simplify_company_name(company_name: Optional[str]) -> str:
    """
    Reduce an employer name to the words most likely to appear in an agreement title.

    Strips corporate designators ("Pty Ltd", "Limited"...), parenthesised
    text, generic trailing words ("Group", "Services"...) and punctuation,
    then keeps the first three words longer than two characters.

    Args:
        company_name: Employer name as stored in the employers table

    Returns:
        Simplified name, possibly empty

    Example:
        "ABC Pty Ltd (NSW)" -> "ABC"
    """
    if not company_name:
        return ""

    simplified = re.sub(r'\s*\([^)]*\)', '', company_name).strip()
    simplified = CORPORATE_SUFFIX_PATTERN.sub('', simplified)
    simplified = GENERIC_SUFFIX_PATTERN.sub('', simplified)
    simplified = re.sub(r'[^\w\s]', ' ', simplified)
    simplified = re.sub(r'\s+', ' ', simplified).strip()

    words = [word for word in simplified.split(' ') if len(word) > 2]
    return ' '.join(words[:3])


def with_prefix(term: str) -> str:
    return f"{QUERY_PREFIX} {term}".strip()


def build_query_candidates(company_name: Optional[str], override: Optional[str] = None) -> List[str]:
    """
    Build the ordered, de-duplicated list of queries to try for an employer.

    Order: the override (raw, then prefixed), the simplified name (prefixed,
    then raw), the full name (prefixed, then raw).

    Args:
        company_name: Employer name
        override: Search term supplied by the user for this employer

    Returns:
        Non-empty query strings in the order they should be tried
    """
    company_name = company_name or ""
    clean_override = override.strip() if override else ""
    simplified = simplify_company_name(company_name)

    candidates: List[str] = []

    def add(query: str) -> None:
        if query not in candidates:
            candidates.append(query)

    if clean_override:
        add(clean_override)
        add(with_prefix(clean_override))

    if simplified and simplified != clean_override:
        add(with_prefix(simplified))
        add(simplified)

    if company_name and company_name != simplified and company_name != clean_override:
        add(with_prefix(company_name))
        add(company_name)

    if not candidates:
        add(with_prefix(company_name))
        add(company_name)

    return [query for query in candidates if query.strip()]


def build_search_url(query: str) -> str:
    params = {
        'q': query,
        'options': SEARCH_OPTIONS,
        'pagesize': str(SEARCH_PAGE_SIZE),
        'facets': SEARCH_FACETS,
    }
    return f"{SEARCH_URL}?{urlencode(params)}"


# ============================================================================
# VIEW-MODEL PARSING
# ============================================================================

def extract_view_model(html_content: str) -> Optional[Dict[str, Any]]:
    """
    Pull the aspViewModel JSON out of the search page HTML.

    Returns:
        Decoded view-model dict, or None if it's absent or not valid JSON
    """
    match = VIEW_MODEL_PATTERN.search(html_content)
    if not match:
        return None

    try:
        view_model = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse aspViewModel JSON: {e}")
        return None

    return view_model if isinstance(view_model, dict) else None


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if value is None:
        return []
    return [value]


def pick_string(*candidates: Any) -> Optional[str]:
    """Return the first non-blank string among the candidates (lists are searched too)."""
    for candidate in candidates:
        for value in _as_list(candidate):
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def normalize_view_model_date(value: Any) -> Optional[str]:
    values = _as_list(value)
    if not values or not isinstance(values[0], str):
        return None

    trimmed = values[0].strip()
    if not trimmed:
        return None

    return normalize_date_input(trimmed) or trimmed


def decode_storage_url(value: Any) -> Optional[str]:
    """
    Decode the base64 `metadata_storage_path` into a document URL.

    The decoded path sometimes carries a trailing index after the file
    extension ("...agreement.pdf1"); that index is stripped.
    """
    if not isinstance(value, str) or not value:
        return None

    try:
        padded = value + '=' * (-len(value) % 4)
        decoded = base64.b64decode(padded).decode('utf-8').strip()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None

    return DOCUMENT_SUFFIX_PATTERN.sub(r'\1', decoded) or None


def append_token(url: str, token: Optional[str]) -> str:
    if not token:
        return url
    normalized = token if token.startswith('?') else f"?{token}"
    if '?' in url:
        return f"{url}&{normalized[1:]}"
    return f"{url}{normalized}"


def map_view_model_result(raw: Dict[str, Any], token: Optional[str]) -> Optional[SearchResult]:
    """
    Map one view-model result entry to a SearchResult.

    Fields are read from the entry itself first, then from its nested
    `document`. Entries without a title are dropped.
    """
    document = raw.get('document') or {}
    if not isinstance(document, dict):
        document = {}

    title = pick_string(
        raw.get('DocumentTitle'), document.get('DocumentTitle'),
        raw.get('AgreementTitle'), document.get('AgreementTitle'),
    )
    if not title:
        return None

    document_url = decode_storage_url(document.get('metadata_storage_path'))

    return SearchResult(
        title=title,
        agreement_type=pick_string(raw.get('AgreementType'), document.get('AgreementType')) or DEFAULT_AGREEMENT_TYPE,
        status=pick_string(raw.get('AgreementStatusDesc'), document.get('AgreementStatusDesc')) or DEFAULT_STATUS,
        approved_date=normalize_view_model_date(raw.get('DocumentDates') or document.get('DocumentDates')),
        expiry_date=normalize_view_model_date(raw.get('NominalExpiryDate') or document.get('NominalExpiryDate')),
        lodgement_number=pick_string(raw.get('PublicationID'), document.get('PublicationID')),
        document_url=append_token(document_url, token) if document_url else None,
        summary_url=None,
        download_token=token,
    )


def parse_view_model_results(view_model: Dict[str, Any]) -> List[SearchResult]:
    document_result = view_model.get('documentResult')
    if not isinstance(document_result, dict):
        return []

    token = document_result.get('token') or None
    raw_results = document_result.get('results')
    if not isinstance(raw_results, list):
        return []

    results = []
    for raw in raw_results:
        if not isinstance(raw, dict):
            continue
        result = map_view_model_result(raw, token)
        if result:
            results.append(result)
    return results


# ============================================================================
# LEGACY HTML PARSING
# ============================================================================

def parse_legacy_html(html_content: str) -> List[SearchResult]:
    """
    Parse results from the server-rendered search page.

    Each result is an anchor wrapping an <h3> title; the status, agreement
    id and dates sit in the last <div> of the surrounding block.

    Args:
        html_content: Search page HTML

    Returns:
        List of SearchResult (may be empty)
    """
    soup = BeautifulSoup(html_content, 'html.parser')
    results = []

    for heading in soup.select('a h3'):
        link = heading.find_parent('a')
        if not link:
            continue

        title = heading.get_text(strip=True)
        if not title or len(title) < MIN_TITLE_LENGTH:
            continue

        document_url = link.get('href', '') or ''
        if document_url and not document_url.startswith('http'):
            document_url = f"{BASE_URL}{document_url}"

        wrapper = link.find_parent('div')
        container = wrapper.parent if wrapper is not None else None
        metadata_text = ""
        if container is not None:
            divs = container.find_all('div')
            if divs:
                metadata_text = divs[-1].get_text(' ', strip=True)

        status = DEFAULT_STATUS
        status_match = re.search(r'\b(Approved|Terminated|Replaced|Superseded)\b', metadata_text, re.IGNORECASE)
        if status_match:
            status = status_match.group(1)

        id_match = re.search(r'\b(AE\d+)\b', metadata_text)
        approved_match = re.search(r'Approved:\s*(\d{1,2}\s+\w+\s+\d{4})', metadata_text, re.IGNORECASE)
        expiry_match = re.search(r'Nominal expiry date:\s*(\d{1,2}\s+\w+\s+\d{4})', metadata_text, re.IGNORECASE)
        summary_match = re.search(r'Summary:\s*(https?://\S+)', metadata_text, re.IGNORECASE)

        results.append(SearchResult(
            title=title,
            agreement_type=DEFAULT_AGREEMENT_TYPE,
            status=status,
            approved_date=approved_match.group(1) if approved_match else None,
            expiry_date=expiry_match.group(1) if expiry_match else None,
            lodgement_number=id_match.group(1) if id_match else None,
            document_url=document_url or None,
            summary_url=summary_match.group(1) if summary_match else None,
        ))

    return results


def parse_search_results(html_content: str) -> List[SearchResult]:
    """
    Parse a search results page: view-model first, legacy HTML as fallback.

    Args:
        html_content: Search page HTML

    Returns:
        List of SearchResult, best match first
    """
    view_model = extract_view_model(html_content)
    if view_model:
        results = parse_view_model_results(view_model)
        if results:
            return results
        logger.debug("aspViewModel present but yielded no results, falling back to HTML")

    return parse_legacy_html(html_content)
