"""
Data models for the Incolink member sync
"""

from dataclasses import dataclass, field, asdict
from typing import List, Optional


@dataclass
class MemberRecord:
    """A member listed on an Incolink invoice"""

    surname: str
    given_names: str
    member_number: str
    raw: str


@dataclass
class InvoiceResult:
    """Members scraped from one employer invoice"""

    invoice_number: str
    invoice_date: Optional[str] = None
    members: List[MemberRecord] = field(default_factory=list)


@dataclass
class PersistCounts:
    """What persist_members did for one employer"""

    created_workers: int = 0
    matched_workers: int = 0
    placements_created: int = 0
    placements_skipped: int = 0

    def to_dict(self) -> dict:
        return asdict(self)
