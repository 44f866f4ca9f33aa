"""Issuance API router."""

from fastapi import APIRouter, Depends

from certanchor.common.security import require_api_key
from certanchor.issuance.schemas import (
    BatchIssueRequest,
    BatchIssueResponse,
    BatchItemFailureResponse,
    BatchItemSuccessResponse,
    IssuanceRequest,
    IssuanceResponse,
    ResendEmailResponse,
)

router = APIRouter()


def _get_orchestrator():
    from certanchor.deps import get_orchestrator
    return get_orchestrator()


def _get_batch():
    from certanchor.deps import get_batch_coordinator
    return get_batch_coordinator()


def _issuance_response(result) -> IssuanceResponse:
    record = result.record
    return IssuanceResponse(
        certificate_id=record.id,
        status=record.status,
        content_fingerprint=record.content_fingerprint,
        ledger_reference=record.ledger_reference,
        ledger_block_height=record.ledger_block_height,
        ledger_origin=result.ledger_origin,
        document_reference=result.document_reference,
        document_url=record.document_url,
        document_pinned=bool(record.document_pinned),
        notification_status=result.notification_status,
        issued_at=record.issued_at,
    )


@router.post("/certificates", response_model=IssuanceResponse, status_code=201)
async def issue_certificate(body: IssuanceRequest, _=Depends(require_api_key)):
    result = await _get_orchestrator().issue(body)
    return _issuance_response(result)


@router.post("/certificates/batch", response_model=BatchIssueResponse)
async def issue_batch(body: BatchIssueRequest, _=Depends(require_api_key)):
    result = await _get_batch().issue_batch(body.items, body.issued_by)
    return BatchIssueResponse(
        total=result.total,
        successful=[
            BatchItemSuccessResponse(
                index=item.index,
                certificate_id=item.result.record.id,
                subject_name=item.result.record.subject_name,
                ledger_origin=item.result.ledger_origin,
            )
            for item in result.successful
        ],
        failed=[
            BatchItemFailureResponse(
                index=item.index,
                subject_name=item.subject_name,
                error=item.error,
                code=item.code,
            )
            for item in result.failed
        ],
    )


@router.post("/certificates/{certificate_id}/resend-email", response_model=ResendEmailResponse)
async def resend_email(certificate_id: str, _=Depends(require_api_key)):
    result = await _get_orchestrator().resend_certificate_email(certificate_id)
    entry = result.notification
    return ResendEmailResponse(
        certificate_id=result.certificate_id,
        status=entry.status if entry else "unrecorded",
        message_id=entry.message_id if entry else None,
        error=entry.error if entry else None,
        attachments_count=result.attachments_count,
    )
