"""
Data Model Module
Plain value types passed between the pipeline components.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, NamedTuple, Optional

# Sentinel stored for title, supplier and authority when nothing usable was found
NOT_SPECIFIED = "Neuvedeno"

DEFAULT_CATEGORY = "ostatni"
DEFAULT_PROCEDURE_TYPE = "standardní"


class Coordinates(NamedTuple):
    lat: float
    lng: float


class ReconcileResult(NamedTuple):
    id: int
    is_new: bool


@dataclass
class ContractData:
    """A contract record normalized from one dump entry."""
    title: str
    amount: float
    date: datetime
    supplier: str = NOT_SPECIFIED
    authority: str = NOT_SPECIFIED
    category: str = DEFAULT_CATEGORY
    procedure_type: str = DEFAULT_PROCEDURE_TYPE
    external_id: Optional[str] = None
    supplier_tax_id: Optional[str] = None
    authority_address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    def is_empty(self) -> bool:
        """True when title, supplier and authority are all unresolved."""
        return (
            self.title == NOT_SPECIFIED
            and self.supplier == NOT_SPECIFIED
            and self.authority == NOT_SPECIFIED
        )


@dataclass
class BatchResult:
    """Counters for one processed batch of dump records."""
    new: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    contract_ids: List[int] = field(default_factory=list)
    error_messages: List[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.new + self.updated + self.skipped + self.errors
