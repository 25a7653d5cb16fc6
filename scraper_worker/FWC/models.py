"""
Data models for the FWC agreement lookup
"""

from dataclasses import dataclass, field, asdict
from typing import List, Optional

from scraper_worker.browser import FailureContext


@dataclass
class SearchResult:
    """One agreement returned by the FWC document search"""

    title: str
    agreement_type: str = "Single-enterprise Agreement"
    status: str = "Unknown"

    # Dates
    approved_date: Optional[str] = None
    expiry_date: Optional[str] = None

    # Identification / links
    lodgement_number: Optional[str] = None
    document_url: Optional[str] = None
    summary_url: Optional[str] = None
    download_token: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SearchOutcome:
    """
    Result of one search attempt.

    Either `results` (possibly empty) or `failure` is meaningful: a failure
    carries the page state at the point the search broke.
    """

    query: str
    results: List[SearchResult] = field(default_factory=list)
    failure: Optional[FailureContext] = None

    @property
    def ok(self) -> bool:
        return self.failure is None
