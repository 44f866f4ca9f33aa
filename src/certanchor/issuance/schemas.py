"""Pydantic schemas for issuance endpoints."""

from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

REQUIRED_FIELDS = (
    "subject_name",
    "subject_email",
    "course_name",
    "guardian_name",
    "district",
    "state",
)

# camelCase aliases accepted in batch uploads
_ALIASES = {
    "subject_name": ("subjectName", "studentName"),
    "subject_email": ("subjectEmail", "email"),
    "course_name": ("courseName",),
    "guardian_name": ("guardianName", "fatherName"),
    "district": (),
    "state": (),
}


class IssuanceRequest(BaseModel):
    model_config = {"str_strip_whitespace": True}

    subject_name: str = Field(..., min_length=1, max_length=255)
    subject_email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    course_name: str = Field(..., min_length=1, max_length=255)
    guardian_name: str = Field(..., min_length=1, max_length=255)
    district: str = Field(..., min_length=1, max_length=255)
    state: str = Field(..., min_length=1, max_length=255)
    institute_name: Optional[str] = Field(default=None, max_length=255)
    issued_by: str = Field(default="System Administrator", min_length=1, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)


def normalize_item(item: Mapping[str, Any]) -> dict[str, Any]:
    """Fold accepted camelCase keys onto the canonical field names."""
    data = dict(item)
    for name, aliases in _ALIASES.items():
        if data.get(name) is None:
            for alias in aliases:
                if item.get(alias) is not None:
                    data[name] = item[alias]
                    break
    return data


def missing_fields(item: Mapping[str, Any]) -> list[str]:
    """Required fields that are absent or blank."""
    return [
        name for name in REQUIRED_FIELDS
        if not isinstance(item.get(name), str) or not item[name].strip()
    ]


class BatchIssueRequest(BaseModel):
    items: list[Any]
    issued_by: str = "System Administrator"


class IssuanceResponse(BaseModel):
    certificate_id: str
    status: str
    content_fingerprint: str
    ledger_reference: Optional[str]
    ledger_block_height: Optional[int]
    ledger_origin: str
    document_reference: Optional[str]
    document_url: Optional[str]
    document_pinned: bool
    notification_status: Optional[str]
    issued_at: datetime


class BatchItemSuccessResponse(BaseModel):
    index: int
    certificate_id: str
    subject_name: str
    ledger_origin: str


class BatchItemFailureResponse(BaseModel):
    index: int
    subject_name: Optional[str]
    error: str
    code: str


class BatchIssueResponse(BaseModel):
    total: int
    successful: list[BatchItemSuccessResponse]
    failed: list[BatchItemFailureResponse]


class ResendEmailResponse(BaseModel):
    certificate_id: str
    status: str
    message_id: Optional[str]
    error: Optional[str]
    attachments_count: int
