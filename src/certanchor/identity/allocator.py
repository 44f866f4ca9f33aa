"""
Year-scoped certificate identifiers.

Format: {PREFIX}{YYYY}{SEQ}, SEQ zero-padded to the configured width,
e.g. CERT20260007. SEQ is one more than the number of records already
issued in the calendar year. Count-then-format is not atomic; the primary
key on certificates.id arbitrates collisions and the orchestrator
re-derives once.
"""

import re
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from certanchor.certificates.models import CertificateModel


def format_certificate_id(prefix: str, year: int, sequence: int, width: int = 4) -> str:
    return f"{prefix}{year}{sequence:0{width}d}"


def parse_certificate_id(certificate_id: str, prefix: str) -> tuple[int, int] | None:
    """Split an id into (year, sequence); None when it is not ours."""
    match = re.fullmatch(rf"{re.escape(prefix)}(\d{{4}})(\d+)", certificate_id)
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def year_bounds(year: int) -> tuple[datetime, datetime]:
    return (
        datetime(year, 1, 1, tzinfo=timezone.utc),
        datetime(year + 1, 1, 1, tzinfo=timezone.utc),
    )


class IdentifierAllocator:
    """Derives the next certificate id from the record store."""

    def __init__(self, prefix: str, width: int = 4):
        self.prefix = prefix
        self.width = width

    async def count_in_year(self, session: AsyncSession, year: int) -> int:
        start, end = year_bounds(year)
        result = await session.execute(
            select(func.count())
            .select_from(CertificateModel)
            .where(
                CertificateModel.issued_at >= start,
                CertificateModel.issued_at < end,
            )
        )
        return result.scalar_one()

    async def allocate(self, session: AsyncSession, now: datetime | None = None) -> str:
        now = now or datetime.now(timezone.utc)
        issued = await self.count_in_year(session, now.year)
        return format_certificate_id(self.prefix, now.year, issued + 1, self.width)
