"""
Content fingerprints for certificates.

The fingerprint is SHA-256 over a canonical JSON rendering of the
certificate's semantic fields: keys sorted, no insignificant whitespace,
UTF-8, timestamps normalized to UTC ISO-8601 with microseconds. The same
fields always yield the same 64-char hex digest no matter how the caller
ordered them.
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Mapping


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    if isinstance(value, str):
        return value.strip()
    return value


def canonical_bytes(fields: Mapping[str, Any]) -> bytes:
    """Stable byte encoding of a field mapping."""
    normalized = {key: _normalize(value) for key, value in fields.items()}
    return json.dumps(
        normalized,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def compute_fingerprint(
    *,
    certificate_id: str,
    subject_name: str,
    course_name: str,
    institute_name: str,
    issued_at: datetime,
) -> str:
    """Return the hex SHA-256 fingerprint of a certificate's semantic fields."""
    payload = canonical_bytes({
        "certificate_id": certificate_id,
        "subject_name": subject_name,
        "course_name": course_name,
        "institute_name": institute_name,
        "issued_at": issued_at,
    })
    return hashlib.sha256(payload).hexdigest()


def fingerprint_record(record: Any) -> str:
    """Recompute the fingerprint of a stored certificate record."""
    return compute_fingerprint(
        certificate_id=record.id,
        subject_name=record.subject_name,
        course_name=record.course_name,
        institute_name=record.institute_name,
        issued_at=record.issued_at,
    )


def normalize_hash(value: str) -> str:
    """Lower-case a hex digest and drop an optional 0x prefix."""
    value = value.strip().lower()
    if value.startswith("0x"):
        value = value[2:]
    return value
