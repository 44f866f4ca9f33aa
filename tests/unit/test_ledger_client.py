"""Tests for ledger mode and fallback mode in the ledger client."""

import asyncio
from datetime import datetime, timezone

import pytest

from certanchor.ledger.client import FALLBACK_GAS, LedgerClient, fallback_reference
from certanchor.ledger.schemas import LedgerAnchor, LedgerOrigin, Provenance

from conftest import FakeLedgerBackend, make_settings

ANCHOR = LedgerAnchor(
    certificate_id="CERT20260001",
    subject_name="Asha Rao",
    course_name="Data Science Essentials",
    issuer="Digital Excellence Institute of Technology",
    issued_at=datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc),
    fingerprint="ab" * 32,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def backend():
    return FakeLedgerBackend(height=5000)


@pytest.fixture
def client(tmp_path, backend):
    return LedgerClient(make_settings(tmp_path, ledger_enabled=True), backend=backend)


class TestHealth:
    async def test_usable(self, client):
        health = await client.check_health()
        assert health.usable
        assert health.block_height == 5000

    async def test_disabled_by_config(self, tmp_path, backend):
        client = LedgerClient(make_settings(tmp_path, ledger_enabled=False), backend=backend)
        health = await client.check_health()
        assert not health.enabled
        assert not health.usable

    async def test_unreachable(self, client, backend):
        backend.unreachable = True
        health = await client.check_health()
        assert health.enabled and not health.reachable
        assert "refused" in health.error

    async def test_cached_within_ttl(self, tmp_path, backend):
        clock = FakeClock()
        client = LedgerClient(
            make_settings(tmp_path, ledger_enabled=True, ledger_health_ttl=30),
            backend=backend, clock=clock,
        )
        first = await client.check_health()
        backend.unreachable = True
        clock.now = 10
        assert await client.check_health() is first
        clock.now = 31
        assert not (await client.check_health()).reachable

    async def test_force_refresh(self, client, backend):
        await client.check_health()
        backend.unreachable = True
        assert not (await client.check_health(force=True)).reachable


class TestAnchor:
    async def test_ledger_mode(self, client, backend):
        write = await client.anchor(ANCHOR)
        assert write.origin == LedgerOrigin.LEDGER
        assert write.reference.startswith("0x")
        assert write.block_height == 5001
        assert write.cost == "84000"
        assert backend.records["CERT20260001"]["fingerprint"] == ANCHOR.fingerprint

    async def test_disabled_falls_back(self, tmp_path, backend):
        client = LedgerClient(make_settings(tmp_path, ledger_enabled=False), backend=backend)
        write = await client.anchor(ANCHOR)
        assert write.origin == LedgerOrigin.FALLBACK
        assert write.cost == FALLBACK_GAS
        assert backend.submits == 0

    async def test_submit_error_falls_back(self, client, backend):
        backend.fail_submit = True
        write = await client.anchor(ANCHOR)
        assert write.origin == LedgerOrigin.FALLBACK
        assert write.reference == fallback_reference(ANCHOR)
        assert "reverted" in write.reason
        # Chain tip is still readable, so the fallback height comes from it.
        assert write.block_height >= 5000

    async def test_timeout_treated_as_failure(self, tmp_path, backend):
        async def slow_submit(anchor):
            await asyncio.sleep(5)

        backend.submit = slow_submit
        client = LedgerClient(
            make_settings(tmp_path, ledger_enabled=True, ledger_timeout=0.05), backend=backend,
        )
        write = await client.anchor(ANCHOR)
        assert write.origin == LedgerOrigin.FALLBACK
        assert write.reason == "ledger call timed out"

    async def test_unreachable_uses_plausible_height(self, tmp_path):
        backend = FakeLedgerBackend()
        backend.unreachable = True
        client = LedgerClient(make_settings(tmp_path, ledger_enabled=True), backend=backend)
        write = await client.anchor(ANCHOR)
        assert write.origin == LedgerOrigin.FALLBACK
        assert 15_000_000 <= write.block_height < 16_000_000

    async def test_disabled_ledger_heights_never_decrease(self, tmp_path):
        client = LedgerClient(make_settings(tmp_path, ledger_enabled=False))
        heights = [(await client.anchor(ANCHOR)).block_height for _ in range(30)]
        assert heights == sorted(heights)
        assert 15_000_000 <= heights[0] < 16_000_000

    async def test_fallback_heights_never_decrease(self, client, backend):
        await client.anchor(ANCHOR)  # observes 5001
        backend.height = 10  # a lagging node
        backend.fail_submit = True
        write = await client.anchor(ANCHOR)
        assert write.block_height == 5001


class TestFallbackReference:
    def test_deterministic_hex(self):
        ref = fallback_reference(ANCHOR)
        assert ref == fallback_reference(ANCHOR)
        assert ref.startswith("0x") and len(ref) == 66

    def test_depends_on_certificate(self):
        other = LedgerAnchor(**{**ANCHOR.__dict__, "certificate_id": "CERT20260002"})
        assert fallback_reference(other) != fallback_reference(ANCHOR)


class TestVerify:
    async def test_ledger_provenance(self, client):
        await client.anchor(ANCHOR)
        result = await client.verify("CERT20260001", ANCHOR.fingerprint)
        assert result.provenance == Provenance.LEDGER
        assert result.found
        assert result.fingerprint_matches is True

    async def test_fingerprint_mismatch(self, client):
        await client.anchor(ANCHOR)
        result = await client.verify("CERT20260001", "cd" * 32)
        assert result.provenance == Provenance.LEDGER
        assert result.fingerprint_matches is False

    async def test_empty_record_is_not_found(self, client):
        result = await client.verify("CERT20269999", ANCHOR.fingerprint)
        assert result.provenance == Provenance.FALLBACK
        assert not result.found
        assert result.error == "not found on ledger"

    async def test_lookup_error_falls_back(self, client, backend):
        backend.fail_lookup = True
        result = await client.verify("CERT20260001", ANCHOR.fingerprint)
        assert result.provenance == Provenance.FALLBACK

    async def test_malformed_record_is_error(self, client, backend):
        backend.records["CERT20260001"] = {"subject_name": "Asha Rao"}
        result = await client.verify("CERT20260001", ANCHOR.fingerprint)
        assert result.provenance == Provenance.ERROR

    async def test_disabled_reports_fallback(self, tmp_path, backend):
        client = LedgerClient(make_settings(tmp_path, ledger_enabled=False), backend=backend)
        result = await client.verify("CERT20260001", ANCHOR.fingerprint)
        assert result.provenance == Provenance.FALLBACK
        assert backend.lookups == 0
