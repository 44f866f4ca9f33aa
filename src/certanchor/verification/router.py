"""Public verification API router."""

from fastapi import APIRouter, Query, Request

from certanchor.verification.schemas import (
    LedgerHealthResponse,
    TrendPoint,
    VerificationLogResponse,
    VerificationResponse,
    VerificationStatsResponse,
    VerifyByHashRequest,
    VerifyByIdRequest,
    VerifyByTransactionRequest,
    VerifyScanRequest,
    to_verification_response,
)
from certanchor.verification.service import Caller

router = APIRouter(prefix="/verify")


def _get_service():
    from certanchor.deps import get_verification_service
    return get_verification_service()


def _get_db():
    from certanchor.deps import get_db
    return get_db()


def _caller(request: Request) -> Caller:
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() if forwarded else None
    if not ip and request.client:
        ip = request.client.host
    return Caller(ip_address=ip, user_agent=request.headers.get("user-agent"))


@router.post("/id", response_model=VerificationResponse)
async def verify_by_id(body: VerifyByIdRequest, request: Request):
    outcome = await _get_service().verify_by_id(body.certificate_id, _caller(request))
    return to_verification_response(outcome)


@router.post("/ledger-hash", response_model=VerificationResponse)
async def verify_by_ledger_hash(body: VerifyByHashRequest, request: Request):
    outcome = await _get_service().verify_by_ledger_hash(body.hash, _caller(request))
    return to_verification_response(outcome)


@router.post("/transaction-hash", response_model=VerificationResponse)
async def verify_by_transaction(body: VerifyByTransactionRequest, request: Request):
    outcome = await _get_service().verify_by_transaction(body.transaction_hash, _caller(request))
    return to_verification_response(outcome)


@router.post("/scan", response_model=VerificationResponse)
async def verify_scan(body: VerifyScanRequest, request: Request):
    outcome = await _get_service().verify_scan_payload(body.payload, _caller(request))
    return to_verification_response(outcome)


@router.get("/history/{certificate_id}", response_model=list[VerificationLogResponse])
async def verification_history(certificate_id: str, limit: int = Query(default=50, ge=1, le=200)):
    async with _get_db().get_session() as session:
        entries = await _get_service().history(session, certificate_id, limit)
    return [VerificationLogResponse.model_validate(e) for e in entries]


@router.get("/stats", response_model=VerificationStatsResponse)
async def verification_stats():
    async with _get_db().get_session() as session:
        stats = await _get_service().stats(session)
    return VerificationStatsResponse(**stats)


@router.get("/trends", response_model=list[TrendPoint])
async def verification_trends(days: int = Query(default=30, ge=1, le=365)):
    async with _get_db().get_session() as session:
        points = await _get_service().trends(session, days)
    return [TrendPoint(**p) for p in points]


@router.get("/ledger/health", response_model=LedgerHealthResponse)
async def ledger_health(refresh: bool = False):
    from certanchor.deps import get_ledger_client

    health = await get_ledger_client().check_health(force=refresh)
    return LedgerHealthResponse(
        enabled=health.enabled,
        reachable=health.reachable,
        contract_ready=health.contract_ready,
        usable=health.usable,
        block_height=health.block_height,
        error=health.error,
    )
