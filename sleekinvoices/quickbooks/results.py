"""Result types returned by the public QuickBooks sync functions."""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from sleekinvoices.quickbooks.errors import QuickBooksError


@dataclass
class SyncResult:
    """Outcome of a single-entity operation.

    ``qb_entity_id`` is the QuickBooks ID of the customer, invoice or payment
    the local entity is mapped to after a successful sync.
    """

    success: bool
    qb_entity_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, qb_entity_id: Optional[str] = None) -> "SyncResult":
        return cls(success=True, qb_entity_id=qb_entity_id)

    @classmethod
    def failure(cls, error: str, error_code: Optional[str] = None) -> "SyncResult":
        return cls(success=False, error=error, error_code=error_code)

    @classmethod
    def from_error(cls, exc: QuickBooksError) -> "SyncResult":
        return cls.failure(exc.message, exc.code)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BatchSyncResult:
    """Aggregate outcome of a sequential batch sync."""

    synced: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PollResult:
    """Outcome of one inbound payment poll pass."""

    success: bool
    synced: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
