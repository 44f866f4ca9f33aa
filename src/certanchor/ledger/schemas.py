"""Value objects exchanged with the ledger client."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class LedgerOrigin(str, Enum):
    """Where an issuance's ledger reference came from."""

    LEDGER = "ledger"
    FALLBACK = "fallback"


class Provenance(str, Enum):
    """Where a verification answer came from."""

    LEDGER = "ledger"
    FALLBACK = "fallback"
    ERROR = "error"


@dataclass(frozen=True)
class LedgerHealth:
    """Point-in-time reachability of the ledger, handed out per call."""

    enabled: bool
    reachable: bool
    contract_ready: bool
    block_height: Optional[int]
    checked_at: float
    error: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.enabled and self.reachable and self.contract_ready


@dataclass(frozen=True)
class LedgerAnchor:
    """Fields written to the ledger for one certificate."""

    certificate_id: str
    subject_name: str
    course_name: str
    issuer: str
    issued_at: datetime
    fingerprint: str


@dataclass(frozen=True)
class LedgerWrite:
    """Outcome of anchoring a certificate."""

    reference: str
    block_height: int
    cost: str
    origin: LedgerOrigin
    reason: Optional[str] = None


@dataclass
class LedgerVerification:
    """Outcome of looking a certificate up on the ledger."""

    provenance: Provenance
    found: bool = False
    fingerprint_matches: Optional[bool] = None
    record: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
