"""Scan payloads, the JSON embedded in a certificate's QR code."""

import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from certanchor.common.exceptions import ValidationError
from certanchor.identity.fingerprint import normalize_hash


@dataclass(frozen=True)
class ScanPayload:
    certificate_id: str
    subject_name: Optional[str] = None
    course_name: Optional[str] = None
    fingerprint: Optional[str] = None

    def mismatches(self, record: Any) -> list[str]:
        """Names of fields that disagree with the stored record."""
        expected = {
            "subject_name": record.subject_name,
            "course_name": record.course_name,
            "fingerprint": record.content_fingerprint,
        }
        wrong = []
        for name, stored in expected.items():
            given = getattr(self, name)
            if name == "fingerprint" and given is not None:
                given = normalize_hash(given)
            if given != stored:
                wrong.append(name)
        return wrong


def build_scan_payload(record: Any, verify_base_url: str = "") -> str:
    """Serialize the fields a verifier cross-checks against the record store."""
    body = {
        "certificateId": record.id,
        "subjectName": record.subject_name,
        "courseName": record.course_name,
        "fingerprint": record.content_fingerprint,
    }
    if verify_base_url:
        body["verifyUrl"] = f"{verify_base_url.rstrip('/')}/verify/{record.id}"
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def _pick(data: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return str(value)
    return None


def parse_scan_payload(raw: str | Mapping[str, Any]) -> ScanPayload:
    """Parse a scanned payload; accepts camelCase and snake_case keys."""
    if isinstance(raw, Mapping):
        data = raw
    else:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid scan payload format") from exc
        if not isinstance(data, dict):
            raise ValidationError("Invalid scan payload format")

    certificate_id = _pick(data, "certificateId", "certificate_id")
    if not certificate_id:
        raise ValidationError("Certificate id not found in scan payload", fields=["certificateId"])
    return ScanPayload(
        certificate_id=certificate_id,
        subject_name=_pick(data, "subjectName", "subject_name", "studentName"),
        course_name=_pick(data, "courseName", "course_name"),
        fingerprint=_pick(data, "fingerprint", "contentFingerprint", "blockchainHash"),
    )
