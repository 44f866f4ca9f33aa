"""Certificate record API router."""

import math

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse, Response

from certanchor.certificates.schemas import (
    CertificateListResponse,
    CertificateResponse,
    CertificateStatsResponse,
    NotificationLogResponse,
    RevocationInfo,
    RevokeRequest,
    RevokeResponse,
    to_response,
)
from certanchor.common.exceptions import CertificateNotFoundError
from certanchor.common.security import require_api_key

router = APIRouter()


def _get_service():
    from certanchor.deps import get_certificate_service
    return get_certificate_service()


def _get_db():
    from certanchor.deps import get_db
    return get_db()


async def _load(certificate_id: str):
    async with _get_db().get_session() as session:
        record = await _get_service().get(session, certificate_id)
    if record is None:
        raise CertificateNotFoundError(f"Certificate {certificate_id} not found")
    return record


@router.get("/certificates", response_model=CertificateListResponse)
async def list_certificates(
    q: str = "",
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    _=Depends(require_api_key),
):
    async with _get_db().get_session() as session:
        records, total = await _get_service().search(
            session, q.strip(), limit=page_size, offset=(page - 1) * page_size,
        )
    return CertificateListResponse(
        items=[to_response(r) for r in records],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total else 0,
    )


@router.get("/certificates/stats", response_model=CertificateStatsResponse)
async def certificate_stats(_=Depends(require_api_key)):
    from certanchor.deps import get_notification_service

    async with _get_db().get_session() as session:
        stats = await _get_service().statistics(session)
        notifications = await get_notification_service().count_by_status(session)
    return CertificateStatsResponse(**stats, notifications=notifications)


@router.get("/certificates/{certificate_id}", response_model=CertificateResponse)
async def get_certificate(certificate_id: str, _=Depends(require_api_key)):
    return to_response(await _load(certificate_id))


@router.post("/certificates/{certificate_id}/revoke", response_model=RevokeResponse)
async def revoke_certificate(
    certificate_id: str, body: RevokeRequest | None = None, _=Depends(require_api_key),
):
    from certanchor.deps import get_revocation_manager

    body = body or RevokeRequest()
    record = await get_revocation_manager().revoke(
        certificate_id, reason=body.reason, actor=body.revoked_by,
    )
    return RevokeResponse(
        id=record.id,
        status=record.status,
        revocation=RevocationInfo(**record.revocation),
    )


@router.get(
    "/certificates/{certificate_id}/notifications",
    response_model=list[NotificationLogResponse],
)
async def certificate_notifications(
    certificate_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    _=Depends(require_api_key),
):
    from certanchor.deps import get_notification_service

    async with _get_db().get_session() as session:
        entries = await get_notification_service().history(session, certificate_id, limit)
    return [NotificationLogResponse.model_validate(e) for e in entries]


@router.get("/certificates/{certificate_id}/document")
async def download_document(certificate_id: str):
    """Stream the stored PDF, or redirect to a gateway when none answers."""
    from certanchor.deps import get_document_store

    record = await _load(certificate_id)
    if not record.document_reference:
        raise CertificateNotFoundError(f"Certificate {certificate_id} has no stored document")
    retrieved = await get_document_store().retrieve(record.document_reference)
    if not retrieved.found:
        return RedirectResponse(retrieved.url, status_code=307)
    return Response(
        content=retrieved.data,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="Certificate_{record.id}.pdf"',
        },
    )
