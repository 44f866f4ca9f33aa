"""CertAnchor: certificate issuance with ledger anchoring and content-addressed storage."""

from certanchor.identity.fingerprint import compute_fingerprint, normalize_hash
from certanchor.verification.payload import build_scan_payload, parse_scan_payload

__all__ = [
    "compute_fingerprint",
    "normalize_hash",
    "build_scan_payload",
    "parse_scan_payload",
]
__version__ = "0.1.0"
