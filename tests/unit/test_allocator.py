"""Tests for year-scoped certificate identifiers."""

from datetime import datetime, timezone

from certanchor.certificates.models import CertificateModel
from certanchor.identity.allocator import (
    IdentifierAllocator,
    format_certificate_id,
    parse_certificate_id,
)


def _record(certificate_id: str, issued_at: datetime) -> CertificateModel:
    return CertificateModel(
        id=certificate_id,
        subject_name="S",
        subject_email="s@example.com",
        course_name="C",
        institute_name="I",
        issued_by="test",
        issued_at=issued_at,
        content_fingerprint=certificate_id.lower().ljust(64, "0"),
    )


class TestFormat:
    def test_zero_padded(self):
        assert format_certificate_id("CERT", 2026, 7) == "CERT20260007"

    def test_custom_width(self):
        assert format_certificate_id("DX", 2026, 42, width=6) == "DX2026000042"

    def test_overflow_widens(self):
        assert format_certificate_id("CERT", 2026, 12345) == "CERT202612345"

    def test_parse_round_trip(self):
        assert parse_certificate_id("CERT20260042", "CERT") == (2026, 42)

    def test_parse_foreign_id(self):
        assert parse_certificate_id("XYZ20260042", "CERT") is None
        assert parse_certificate_id("CERT2026", "CERT") is None


class TestAllocate:
    async def test_first_of_year(self, db):
        allocator = IdentifierAllocator("CERT")
        now = datetime(2026, 5, 1, tzinfo=timezone.utc)
        async with db.get_session() as session:
            assert await allocator.allocate(session, now) == "CERT20260001"

    async def test_counts_only_current_year(self, db):
        async with db.get_session() as session:
            session.add(_record("CERT20250001", datetime(2025, 12, 31, 23, 59, tzinfo=timezone.utc)))
            session.add(_record("CERT20260001", datetime(2026, 1, 1, tzinfo=timezone.utc)))
            session.add(_record("CERT20260002", datetime(2026, 2, 1, tzinfo=timezone.utc)))

        allocator = IdentifierAllocator("CERT")
        async with db.get_session() as session:
            assert await allocator.count_in_year(session, 2026) == 2
            assert await allocator.allocate(session, datetime(2026, 6, 1, tzinfo=timezone.utc)) == "CERT20260003"
            assert await allocator.allocate(session, datetime(2027, 1, 2, tzinfo=timezone.utc)) == "CERT20270001"
