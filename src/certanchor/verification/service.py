"""Verification of certificates by id, hash or scanned payload."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from certanchor.certificates.models import CertificateModel
from certanchor.certificates.service import CertificateService
from certanchor.common.config import CertAnchorSettings
from certanchor.common.exceptions import ValidationError
from certanchor.ledger.client import LedgerClient
from certanchor.ledger.schemas import LedgerVerification, Provenance
from certanchor.verification.models import VerificationLogModel
from certanchor.verification.payload import ScanPayload, parse_scan_payload

logger = logging.getLogger(__name__)

RESULT_VERIFIED = "verified"
RESULT_REVOKED = "revoked"
RESULT_NOT_FOUND = "not_found"
RESULT_MISMATCH = "mismatch"
RESULT_FAILED = "failed"


class VerificationMethod(str, Enum):
    ID = "id"
    LEDGER_HASH = "ledger_hash"
    QR_PAYLOAD = "qr_payload"
    TRANSACTION_HASH = "transaction_hash"


@dataclass(frozen=True)
class Caller:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class VerificationOutcome:
    found: bool
    valid: bool
    result: str
    message: str
    verified_at: datetime
    record: Optional[CertificateModel] = None
    provenance: Optional[Provenance] = None
    revocation: Optional[dict[str, Any]] = None
    mismatched_fields: list[str] = field(default_factory=list)
    ledger: Optional[LedgerVerification] = None


Resolver = Callable[[AsyncSession], Awaitable[Optional[CertificateModel]]]


class VerificationService:
    """Answers "is this certificate genuine?" for every lookup method.

    Each call appends exactly one row to ``verification_logs``. Revoked
    records short-circuit before the ledger is consulted and never bump
    the verification counter.
    """

    def __init__(
        self,
        settings: CertAnchorSettings,
        db,
        ledger: LedgerClient,
        notifier=None,
        certificates: Optional[CertificateService] = None,
    ):
        self.settings = settings
        self.db = db
        self.ledger = ledger
        self.notifier = notifier
        self.certificates = certificates or CertificateService()
        self._background: set[asyncio.Task] = set()

    # ── Entry points ──

    async def verify_by_id(self, certificate_id: str, caller: Caller = Caller()) -> VerificationOutcome:
        certificate_id = _require(certificate_id, "certificate_id")
        return await self._verify(
            VerificationMethod.ID, certificate_id,
            lambda session: self.certificates.get(session, certificate_id),
            caller,
        )

    async def verify_by_ledger_hash(self, value: str, caller: Caller = Caller()) -> VerificationOutcome:
        """Accepts a content fingerprint or a ledger transaction reference."""
        value = _require(value, "hash")
        return await self._verify(
            VerificationMethod.LEDGER_HASH, value,
            lambda session: self.certificates.find_by_ledger_hash(session, value),
            caller,
        )

    async def verify_by_transaction(self, reference: str, caller: Caller = Caller()) -> VerificationOutcome:
        reference = _require(reference, "transaction_hash")
        return await self._verify(
            VerificationMethod.TRANSACTION_HASH, reference,
            lambda session: self.certificates.find_by_ledger_reference(session, reference),
            caller,
        )

    async def verify_scan_payload(
        self, raw: str | Mapping[str, Any], caller: Caller = Caller(),
    ) -> VerificationOutcome:
        payload = parse_scan_payload(raw)
        return await self._verify(
            VerificationMethod.QR_PAYLOAD, payload.certificate_id,
            lambda session: self.certificates.get(session, payload.certificate_id),
            caller,
            payload=payload,
        )

    # ── Core ──

    async def _verify(
        self,
        method: VerificationMethod,
        identifier: str,
        resolve: Resolver,
        caller: Caller,
        payload: Optional[ScanPayload] = None,
    ) -> VerificationOutcome:
        started = time.perf_counter()
        async with self.db.get_session() as session:
            record = await resolve(session)

        if record is None:
            await self._log(method, identifier, None, False, caller, started, error="Certificate not found")
            return VerificationOutcome(
                found=False, valid=False, result=RESULT_NOT_FOUND,
                message="Certificate not found", verified_at=_now(),
            )

        if record.is_revoked:
            return await self._revoked(method, identifier, record, caller, started)

        if payload is not None:
            wrong = payload.mismatches(record)
            if wrong:
                message = "Scanned payload does not match certificate records"
                await self._log(
                    method, identifier, record.id, False, caller, started,
                    error=f"{message}: {', '.join(wrong)}",
                )
                return VerificationOutcome(
                    found=True, valid=False, result=RESULT_MISMATCH, message=message,
                    verified_at=_now(), record=record, mismatched_fields=wrong,
                )

        ledger = await self.ledger.verify(record.id, record.content_fingerprint)
        if ledger.provenance == Provenance.ERROR or ledger.fingerprint_matches is False:
            message = (
                "Ledger fingerprint does not match certificate records"
                if ledger.fingerprint_matches is False
                else "Ledger verification could not complete"
            )
            await self._log(
                method, identifier, record.id, False, caller, started,
                provenance=ledger.provenance, error=ledger.error or message,
            )
            return VerificationOutcome(
                found=True, valid=False, result=RESULT_FAILED, message=message,
                verified_at=_now(), record=record, provenance=ledger.provenance, ledger=ledger,
            )

        verified_at = _now()
        async with self.db.get_session() as session:
            counted = await self.certificates.record_verification(session, record.id, verified_at)
            if counted:
                session.add(self._entry(
                    method, identifier, record.id, True, caller, started,
                    provenance=ledger.provenance,
                ))
            record = await self.certificates.get(session, record.id)
            if record is not None:
                await session.refresh(record)

        if not counted:
            # Revoked between resolution and counting.
            return await self._revoked(method, identifier, record, caller, started)

        logger.info(
            "Certificate verified",
            extra={
                "certificate_id": record.id,
                "method": method.value,
                "provenance": ledger.provenance.value,
            },
        )
        self._alert(record, method, verified_at, caller)
        return VerificationOutcome(
            found=True, valid=True, result=RESULT_VERIFIED,
            message="Certificate is valid", verified_at=verified_at,
            record=record, provenance=ledger.provenance, ledger=ledger,
        )

    async def _revoked(
        self, method, identifier, record: CertificateModel, caller: Caller, started: float,
    ) -> VerificationOutcome:
        await self._log(method, identifier, record.id, False, caller, started,
                        error="Certificate has been revoked")
        return VerificationOutcome(
            found=True, valid=False, result=RESULT_REVOKED,
            message="Certificate has been revoked", verified_at=_now(),
            record=record, revocation=record.revocation,
        )

    # ── Log ──

    @staticmethod
    def _entry(
        method: VerificationMethod,
        identifier: str,
        certificate_id: Optional[str],
        outcome: bool,
        caller: Caller,
        started: float,
        provenance: Optional[Provenance] = None,
        error: Optional[str] = None,
    ) -> VerificationLogModel:
        return VerificationLogModel(
            certificate_id=certificate_id,
            method=method.value,
            identifier=identifier[:512],
            outcome=outcome,
            provenance=provenance.value if provenance else None,
            ip_address=caller.ip_address,
            user_agent=(caller.user_agent or "")[:512] or None,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 3),
            error=error,
        )

    async def _log(self, *args, **kwargs) -> None:
        async with self.db.get_session() as session:
            session.add(self._entry(*args, **kwargs))

    # ── Notifications ──

    def _alert(
        self, record: CertificateModel, method: VerificationMethod,
        verified_at: datetime, caller: Caller,
    ) -> None:
        if self.notifier is None:
            return
        details = {
            "method": method.value,
            "timestamp": verified_at,
            "ip_address": caller.ip_address,
        }
        task = asyncio.create_task(self.notifier.verification_alert(record, details))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for pending verification alerts (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ── Queries ──

    async def history(
        self, session: AsyncSession, certificate_id: str, limit: int = 50,
    ) -> list[VerificationLogModel]:
        result = await session.execute(
            select(VerificationLogModel)
            .where(VerificationLogModel.certificate_id == certificate_id)
            .order_by(VerificationLogModel.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def stats(self, session: AsyncSession, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or _now()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week = now - timedelta(days=7)
        month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        def since(moment: datetime):
            return func.coalesce(
                func.sum(case((VerificationLogModel.created_at >= moment, 1), else_=0)), 0,
            )

        row = (await session.execute(
            select(
                func.count(),
                func.coalesce(func.sum(case((VerificationLogModel.outcome.is_(True), 1), else_=0)), 0),
                since(today),
                since(week),
                since(month),
                func.avg(VerificationLogModel.elapsed_ms),
            )
        )).one()

        by_method = (await session.execute(
            select(
                VerificationLogModel.method,
                func.count(),
                func.coalesce(func.sum(case((VerificationLogModel.outcome.is_(True), 1), else_=0)), 0),
            ).group_by(VerificationLogModel.method)
        )).all()

        total, successful = int(row[0]), int(row[1])
        return {
            "total_verifications": total,
            "successful_verifications": successful,
            "failed_verifications": total - successful,
            "today_verifications": int(row[2]),
            "this_week_verifications": int(row[3]),
            "this_month_verifications": int(row[4]),
            "average_elapsed_ms": round(float(row[5] or 0.0), 3),
            "by_method": [
                {
                    "method": method,
                    "count": count,
                    "success_count": int(ok),
                    "success_rate": round(int(ok) / count * 100, 2) if count else 0.0,
                }
                for method, count, ok in by_method
            ],
        }

    async def trends(
        self, session: AsyncSession, days: int = 30, now: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        now = now or _now()
        start = (now - timedelta(days=days)).replace(hour=0, minute=0, second=0, microsecond=0)
        day = func.date(VerificationLogModel.created_at)
        rows = (await session.execute(
            select(
                day,
                func.count(),
                func.coalesce(func.sum(case((VerificationLogModel.outcome.is_(True), 1), else_=0)), 0),
            )
            .where(VerificationLogModel.created_at >= start)
            .group_by(day)
            .order_by(day)
        )).all()
        return [
            {"date": str(date), "total": count, "successful": int(ok)}
            for date, count, ok in rows
        ]


def _require(value: Optional[str], name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{name} is required", fields=[name])
    return value


def _now() -> datetime:
    return datetime.now(timezone.utc)
