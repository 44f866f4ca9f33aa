"""Ledger client that anchors fingerprints on-chain with a tagged fallback mode.

Every call runs in exactly one mode:

* ledger mode: the registry contract is reachable and the call succeeds;
* fallback mode: the ledger is disabled, unreachable, the contract has no
  record, or a call raised / timed out. Writes then get a synthesized
  reference tagged ``origin=fallback``; reads report ``provenance=fallback``.

Reachability is never a process-wide flag: ``check_health()`` returns a
``LedgerHealth`` snapshot, cached for ``ledger_health_ttl`` seconds.
"""

import asyncio
import hashlib
import logging
import secrets
import time
from typing import Any, Callable, Optional

from certanchor.common.config import CertAnchorSettings
from certanchor.common.exceptions import LedgerUnavailable
from certanchor.identity.fingerprint import canonical_bytes, normalize_hash
from certanchor.ledger.schemas import (
    LedgerAnchor,
    LedgerHealth,
    LedgerOrigin,
    LedgerVerification,
    LedgerWrite,
    Provenance,
)

logger = logging.getLogger(__name__)

FALLBACK_GAS = "21000"
# Plausible chain height when no tip can be read at all.
FALLBACK_HEIGHT_BASE = 15_000_000
FALLBACK_HEIGHT_SPAN = 1_000_000


class LedgerClient:
    """Writes and reads certificate fingerprints against the ledger."""

    def __init__(
        self,
        settings: CertAnchorSettings,
        backend: Optional[Any] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.backend = backend
        self._clock = clock
        self._health: Optional[LedgerHealth] = None
        self._last_block_height = 0

    @property
    def timeout(self) -> float:
        return self.settings.ledger_timeout

    # ── Health ──

    async def check_health(self, force: bool = False) -> LedgerHealth:
        """Return a cached reachability snapshot, refreshing it when stale."""
        now = self._clock()
        cached = self._health
        if (
            not force
            and cached is not None
            and now - cached.checked_at < self.settings.ledger_health_ttl
        ):
            return cached

        if not self.settings.ledger_enabled or self.backend is None:
            health = LedgerHealth(
                enabled=False, reachable=False, contract_ready=False,
                block_height=None, checked_at=now,
                error="ledger disabled by configuration",
            )
        else:
            health = await self._probe(now)
        self._health = health
        return health

    async def _probe(self, now: float) -> LedgerHealth:
        try:
            height = await asyncio.wait_for(self.backend.block_number(), self.timeout)
        except Exception as exc:
            logger.warning("Ledger unreachable: %s", exc)
            return LedgerHealth(
                enabled=True, reachable=False, contract_ready=False,
                block_height=None, checked_at=now, error=str(exc) or type(exc).__name__,
            )
        self._observe_height(height)

        try:
            ready = await asyncio.wait_for(self.backend.contract_ready(), self.timeout)
            error = None if ready else "no registry contract configured"
        except Exception as exc:
            logger.warning("Ledger contract check failed: %s", exc)
            ready, error = False, str(exc) or type(exc).__name__
        return LedgerHealth(
            enabled=True, reachable=True, contract_ready=ready,
            block_height=height, checked_at=now, error=error,
        )

    def invalidate_health(self) -> None:
        self._health = None

    # ── Write ──

    async def anchor(self, anchor: LedgerAnchor) -> LedgerWrite:
        """Anchor a fingerprint. Never raises; degrades to fallback mode."""
        health = await self.check_health()
        try:
            if not health.usable:
                raise LedgerUnavailable(health.error or "ledger unavailable")
            result = await asyncio.wait_for(self.backend.submit(anchor), self.timeout)
        except Exception as exc:
            reason = _describe(exc)
            if not isinstance(exc, LedgerUnavailable):
                # A failing call says more than a cached healthy snapshot.
                self.invalidate_health()
            logger.warning(
                "Ledger write for %s fell back: %s", anchor.certificate_id, reason,
                extra={"certificate_id": anchor.certificate_id, "ledger_origin": "fallback"},
            )
            return await self._fallback_write(anchor, health, reason)

        height = int(result["block_number"])
        self._observe_height(height)
        logger.info(
            "Anchored %s on ledger: %s",
            anchor.certificate_id, result["transaction_hash"],
            extra={"certificate_id": anchor.certificate_id, "ledger_origin": "ledger"},
        )
        return LedgerWrite(
            reference=result["transaction_hash"],
            block_height=height,
            cost=str(result.get("gas_used", "")),
            origin=LedgerOrigin.LEDGER,
        )

    async def _fallback_write(
        self, anchor: LedgerAnchor, health: LedgerHealth, reason: str,
    ) -> LedgerWrite:
        return LedgerWrite(
            reference=fallback_reference(anchor),
            block_height=await self._fallback_height(health),
            cost=FALLBACK_GAS,
            origin=LedgerOrigin.FALLBACK,
            reason=reason,
        )

    async def _fallback_height(self, health: LedgerHealth) -> int:
        if health.reachable and self.backend is not None:
            try:
                height = await asyncio.wait_for(self.backend.block_number(), self.timeout)
                return self._observe_height(height)
            except Exception as exc:
                logger.debug("Chain tip unreadable during fallback: %s", exc)
        if self._last_block_height:
            return self._last_block_height
        return self._observe_height(FALLBACK_HEIGHT_BASE + secrets.randbelow(FALLBACK_HEIGHT_SPAN))

    def _observe_height(self, height: int) -> int:
        """Block heights handed out never go backwards."""
        self._last_block_height = max(self._last_block_height, int(height))
        return self._last_block_height

    # ── Read ──

    async def verify(
        self, certificate_id: str, fingerprint: Optional[str] = None,
    ) -> LedgerVerification:
        """Look a certificate up on the ledger and report provenance."""
        health = await self.check_health()
        if not health.usable:
            return LedgerVerification(
                provenance=Provenance.FALLBACK, error=health.error,
            )

        try:
            record = await asyncio.wait_for(self.backend.lookup(certificate_id), self.timeout)
        except Exception as exc:
            self.invalidate_health()
            logger.warning("Ledger lookup for %s fell back: %s", certificate_id, _describe(exc))
            return LedgerVerification(provenance=Provenance.FALLBACK, error=_describe(exc))

        if not record:
            logger.info("Certificate %s not on ledger, record store is authoritative", certificate_id)
            return LedgerVerification(
                provenance=Provenance.FALLBACK, error="not found on ledger",
            )

        try:
            on_chain = normalize_hash(str(record["fingerprint"]))
        except (KeyError, TypeError, AttributeError) as exc:
            logger.error("Malformed ledger record for %s: %s", certificate_id, exc)
            return LedgerVerification(
                provenance=Provenance.ERROR, error=f"malformed ledger record: {exc}",
            )

        matches = None if fingerprint is None else on_chain == normalize_hash(fingerprint)
        return LedgerVerification(
            provenance=Provenance.LEDGER,
            found=True,
            fingerprint_matches=matches,
            record=record,
        )


def fallback_reference(anchor: LedgerAnchor) -> str:
    """Pseudo transaction hash: SHA-256 of the anchor payload plus issuance time."""
    payload = canonical_bytes({
        "certificate_id": anchor.certificate_id,
        "subject_name": anchor.subject_name,
        "course_name": anchor.course_name,
        "issuer": anchor.issuer,
        "issued_at": anchor.issued_at,
        "fingerprint": anchor.fingerprint,
    })
    stamp = str(anchor.issued_at.timestamp()).encode()
    return "0x" + hashlib.sha256(payload + stamp).hexdigest()


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "ledger call timed out"
    return str(exc) or type(exc).__name__
