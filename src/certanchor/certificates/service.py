"""Certificate record store: lookups, guarded updates and statistics."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from certanchor.certificates.models import (
    LIFECYCLE_FAILED,
    LIFECYCLE_FINALIZED,
    LIFECYCLE_PROVISIONAL,
    STATUS_ISSUED,
    STATUS_REVOKED,
    STATUS_VERIFIED,
    CertificateModel,
)
from certanchor.identity.allocator import year_bounds
from certanchor.identity.fingerprint import normalize_hash


class CertificateService:
    """Queries and guarded updates against the certificates table.

    Lookups only return finalized records unless asked otherwise, so
    provisional and failed rows never surface as valid certificates.
    """

    # ── Lookups ──

    async def get(
        self, session: AsyncSession, certificate_id: str, include_unfinalized: bool = False,
    ) -> Optional[CertificateModel]:
        query = select(CertificateModel).where(CertificateModel.id == certificate_id)
        if not include_unfinalized:
            query = query.where(CertificateModel.lifecycle == LIFECYCLE_FINALIZED)
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def find_by_fingerprint(
        self, session: AsyncSession, fingerprint: str,
    ) -> Optional[CertificateModel]:
        result = await session.execute(
            select(CertificateModel).where(
                CertificateModel.content_fingerprint == normalize_hash(fingerprint),
                CertificateModel.lifecycle == LIFECYCLE_FINALIZED,
            )
        )
        return result.scalar_one_or_none()

    async def find_by_ledger_reference(
        self, session: AsyncSession, reference: str,
    ) -> Optional[CertificateModel]:
        ref = reference.strip().lower()
        if not ref.startswith("0x"):
            ref = "0x" + ref
        result = await session.execute(
            select(CertificateModel).where(
                CertificateModel.ledger_reference == ref,
                CertificateModel.lifecycle == LIFECYCLE_FINALIZED,
            )
        )
        return result.scalar_one_or_none()

    async def find_by_ledger_hash(
        self, session: AsyncSession, value: str,
    ) -> Optional[CertificateModel]:
        """Fingerprint first, then ledger transaction reference."""
        record = await self.find_by_fingerprint(session, value)
        if record is None:
            record = await self.find_by_ledger_reference(session, value)
        return record

    async def search(
        self,
        session: AsyncSession,
        query: str = "",
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[CertificateModel], int]:
        stmt = select(CertificateModel).where(
            CertificateModel.lifecycle == LIFECYCLE_FINALIZED,
        )
        if query:
            pattern = f"%{query}%"
            stmt = stmt.where(or_(
                CertificateModel.id.ilike(pattern),
                CertificateModel.subject_name.ilike(pattern),
                CertificateModel.course_name.ilike(pattern),
                CertificateModel.subject_email.ilike(pattern),
                CertificateModel.content_fingerprint.ilike(pattern),
                CertificateModel.ledger_reference.ilike(pattern),
            ))
        total = (
            await session.execute(select(func.count()).select_from(stmt.subquery()))
        ).scalar_one()
        result = await session.execute(
            stmt.order_by(CertificateModel.issued_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total

    # ── Guarded updates ──

    async def record_verification(
        self, session: AsyncSession, certificate_id: str, now: datetime,
    ) -> bool:
        """Atomic counter bump; False when the record was revoked meanwhile."""
        result = await session.execute(
            update(CertificateModel)
            .where(
                CertificateModel.id == certificate_id,
                CertificateModel.status != STATUS_REVOKED,
            )
            .values(
                verification_count=CertificateModel.verification_count + 1,
                last_verified_at=now,
                status=case(
                    (CertificateModel.status == STATUS_ISSUED, STATUS_VERIFIED),
                    else_=CertificateModel.status,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_failed(
        self, session: AsyncSession, certificate_id: str, reason: str,
    ) -> bool:
        """Flag a provisional record as failed; the id stays reserved."""
        result = await session.execute(
            update(CertificateModel)
            .where(
                CertificateModel.id == certificate_id,
                CertificateModel.lifecycle == LIFECYCLE_PROVISIONAL,
            )
            .values(lifecycle=LIFECYCLE_FAILED, failure_reason=reason[:2000])
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_stale_provisional(
        self, session: AsyncSession, older_than: datetime,
    ) -> list[str]:
        result = await session.execute(
            select(CertificateModel.id).where(
                CertificateModel.lifecycle == LIFECYCLE_PROVISIONAL,
                CertificateModel.created_at < older_than,
            )
        )
        stale = list(result.scalars().all())
        for certificate_id in stale:
            await self.mark_failed(
                session, certificate_id, "stale provisional record reconciled by sweep",
            )
        return stale

    # ── Stats ──

    async def statistics(
        self, session: AsyncSession, now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        year_start, _ = year_bounds(now.year)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        finalized = CertificateModel.lifecycle == LIFECYCLE_FINALIZED

        def since(moment: datetime):
            return func.sum(case((CertificateModel.issued_at >= moment, 1), else_=0))

        row = (await session.execute(
            select(
                func.count(),
                func.coalesce(func.sum(CertificateModel.verification_count), 0),
                func.coalesce(since(day_start), 0),
                func.coalesce(since(month_start), 0),
                func.coalesce(since(year_start), 0),
                func.coalesce(func.sum(case((CertificateModel.status == STATUS_REVOKED, 1), else_=0)), 0),
                func.coalesce(func.sum(case((CertificateModel.ledger_origin == "fallback", 1), else_=0)), 0),
                func.coalesce(func.sum(case((CertificateModel.notified.is_(True), 1), else_=0)), 0),
            ).where(finalized)
        )).one()

        pending = (await session.execute(
            select(CertificateModel.lifecycle, func.count())
            .where(CertificateModel.lifecycle != LIFECYCLE_FINALIZED)
            .group_by(CertificateModel.lifecycle)
        )).all()

        return {
            "total_certificates": row[0],
            "total_verifications": int(row[1]),
            "today_certificates": int(row[2]),
            "this_month_certificates": int(row[3]),
            "this_year_certificates": int(row[4]),
            "revoked_certificates": int(row[5]),
            "fallback_certificates": int(row[6]),
            "emails_sent": int(row[7]),
            "unfinalized": {lifecycle: count for lifecycle, count in pending},
        }


def stale_cutoff(max_age_seconds: int, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now - timedelta(seconds=max_age_seconds)
