"""Pydantic schemas for certificate endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class RevocationInfo(BaseModel):
    reason: Optional[str]
    revoked_by: Optional[str]
    revoked_at: Optional[datetime]


class CertificateResponse(BaseModel):
    id: str
    subject_name: str
    subject_email: str
    course_name: str
    guardian_name: str
    district: str
    state: str
    institute_name: str
    issued_by: str
    issued_at: datetime
    content_fingerprint: str
    ledger_reference: Optional[str]
    ledger_block_height: Optional[int]
    ledger_cost: Optional[str]
    ledger_origin: Optional[str]
    document_reference: Optional[str]
    document_url: Optional[str]
    document_pinned: bool
    status: str
    verification_count: int
    last_verified_at: Optional[datetime]
    revocation: Optional[RevocationInfo]
    notified: bool
    metadata: dict[str, Any]


class CertificateSummary(BaseModel):
    """Public view returned to verifiers; no contact details."""

    id: str
    subject_name: str
    course_name: str
    institute_name: str
    issued_at: datetime
    content_fingerprint: str
    ledger_reference: Optional[str]
    ledger_block_height: Optional[int]
    ledger_origin: Optional[str]
    document_reference: Optional[str]
    status: str
    verification_count: int
    last_verified_at: Optional[datetime]


class CertificateListResponse(BaseModel):
    items: list[CertificateResponse]
    total: int
    page: int
    page_size: int
    pages: int


class RevokeRequest(BaseModel):
    reason: str = Field(default="", max_length=2000)
    revoked_by: str = Field(default="", max_length=255)


class RevokeResponse(BaseModel):
    id: str
    status: str
    revocation: RevocationInfo


class NotificationLogResponse(BaseModel):
    id: str
    kind: str
    recipient: str
    subject: str
    status: str
    message_id: Optional[str]
    error: Optional[str]
    sent_by: str
    attachments: list[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class CertificateStatsResponse(BaseModel):
    total_certificates: int
    total_verifications: int
    today_certificates: int
    this_month_certificates: int
    this_year_certificates: int
    revoked_certificates: int
    fallback_certificates: int
    emails_sent: int
    unfinalized: dict[str, int]
    notifications: dict[str, int]


def to_response(record) -> CertificateResponse:
    revocation = record.revocation
    return CertificateResponse(
        id=record.id,
        subject_name=record.subject_name,
        subject_email=record.subject_email,
        course_name=record.course_name,
        guardian_name=record.guardian_name or "",
        district=record.district or "",
        state=record.state or "",
        institute_name=record.institute_name,
        issued_by=record.issued_by,
        issued_at=record.issued_at,
        content_fingerprint=record.content_fingerprint,
        ledger_reference=record.ledger_reference,
        ledger_block_height=record.ledger_block_height,
        ledger_cost=record.ledger_cost,
        ledger_origin=record.ledger_origin,
        document_reference=record.document_reference,
        document_url=record.document_url,
        document_pinned=bool(record.document_pinned),
        status=record.status,
        verification_count=record.verification_count,
        last_verified_at=record.last_verified_at,
        revocation=RevocationInfo(**revocation) if revocation else None,
        notified=bool(record.notified),
        metadata=record.metadata_ or {},
    )


def to_summary(record) -> CertificateSummary:
    return CertificateSummary(
        id=record.id,
        subject_name=record.subject_name,
        course_name=record.course_name,
        institute_name=record.institute_name,
        issued_at=record.issued_at,
        content_fingerprint=record.content_fingerprint,
        ledger_reference=record.ledger_reference,
        ledger_block_height=record.ledger_block_height,
        ledger_origin=record.ledger_origin,
        document_reference=record.document_reference,
        status=record.status,
        verification_count=record.verification_count,
        last_verified_at=record.last_verified_at,
    )
