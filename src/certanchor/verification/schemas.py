"""Pydantic schemas for verification endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from certanchor.certificates.schemas import CertificateSummary, RevocationInfo, to_summary


class VerifyByIdRequest(BaseModel):
    certificate_id: str


class VerifyByHashRequest(BaseModel):
    hash: str


class VerifyByTransactionRequest(BaseModel):
    transaction_hash: str


class VerifyScanRequest(BaseModel):
    # Raw scanned text, or the decoded JSON object.
    payload: str | dict[str, Any]


class VerificationResponse(BaseModel):
    found: bool
    valid: bool
    result: str
    message: str
    provenance: Optional[str] = None
    verified_at: datetime
    certificate: Optional[CertificateSummary] = None
    revocation: Optional[RevocationInfo] = None
    mismatched_fields: list[str] = []


class VerificationLogResponse(BaseModel):
    id: str
    method: str
    identifier: str
    outcome: bool
    provenance: Optional[str]
    ip_address: Optional[str]
    user_agent: Optional[str]
    elapsed_ms: float
    error: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class MethodStats(BaseModel):
    method: str
    count: int
    success_count: int
    success_rate: float


class VerificationStatsResponse(BaseModel):
    total_verifications: int
    successful_verifications: int
    failed_verifications: int
    today_verifications: int
    this_week_verifications: int
    this_month_verifications: int
    average_elapsed_ms: float
    by_method: list[MethodStats]


class TrendPoint(BaseModel):
    date: str
    total: int
    successful: int


class LedgerHealthResponse(BaseModel):
    enabled: bool
    reachable: bool
    contract_ready: bool
    usable: bool
    block_height: Optional[int]
    error: Optional[str]


def to_verification_response(outcome) -> VerificationResponse:
    return VerificationResponse(
        found=outcome.found,
        valid=outcome.valid,
        result=outcome.result,
        message=outcome.message,
        provenance=outcome.provenance.value if outcome.provenance else None,
        verified_at=outcome.verified_at,
        certificate=to_summary(outcome.record) if outcome.record is not None else None,
        revocation=RevocationInfo(**outcome.revocation) if outcome.revocation else None,
        mismatched_fields=outcome.mismatched_fields,
    )
