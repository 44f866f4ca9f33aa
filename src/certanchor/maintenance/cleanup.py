"""Housekeeping: temp document removal, stale record reconciliation, scheduling."""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from certanchor.certificates.service import CertificateService, stale_cutoff
from certanchor.common.config import CertAnchorSettings

logger = logging.getLogger(__name__)


class TempDocumentCleaner:
    """Removes rendered documents from the temp directory.

    A failed delete is retried once after ``retry_delay`` seconds; files
    that still survive are left for the periodic sweep.
    """

    def __init__(self, temp_dir: str | Path, retry_delay: float = 5.0, max_age: int = 3600):
        self.temp_dir = Path(temp_dir)
        self.retry_delay = retry_delay
        self.max_age = max_age
        self._pending: set[asyncio.Task] = set()

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return True
        except OSError as exc:
            logger.warning("Could not remove %s: %s", path, exc)
            return False
        return True

    async def discard(self, path: Optional[Path]) -> bool:
        """Delete now; on failure schedule one delayed retry."""
        if path is None:
            return True
        if await asyncio.to_thread(self._unlink, path):
            return True
        task = asyncio.create_task(self._retry(path))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return False

    async def _retry(self, path: Path) -> None:
        await asyncio.sleep(self.retry_delay)
        if not await asyncio.to_thread(self._unlink, path):
            logger.warning("Leaving %s for the periodic sweep", path)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _sweep_sync(self, now: float) -> list[str]:
        removed = []
        if not self.temp_dir.is_dir():
            return removed
        for entry in self.temp_dir.iterdir():
            try:
                if not entry.is_file() or now - entry.stat().st_mtime <= self.max_age:
                    continue
            except FileNotFoundError:
                continue
            if self._unlink(entry):
                removed.append(entry.name)
        return removed

    async def sweep(self, now: Optional[float] = None) -> list[str]:
        """Remove temp files older than ``max_age``; returns removed names."""
        removed = await asyncio.to_thread(self._sweep_sync, now or time.time())
        if removed:
            logger.info("Swept %d stale temp documents", len(removed))
        return removed


class ProvisionalReconciler:
    """Marks provisional records left behind by crashed issuances as failed."""

    def __init__(self, db, stale_after: int, certificates: Optional[CertificateService] = None):
        self.db = db
        self.stale_after = stale_after
        self.certificates = certificates or CertificateService()

    async def sweep(self) -> list[str]:
        async with self.db.get_session() as session:
            stale = await self.certificates.mark_stale_provisional(
                session, stale_cutoff(self.stale_after),
            )
        if stale:
            logger.warning(
                "Reconciled %d stale provisional certificates",
                len(stale),
                extra={"certificate_ids": stale},
            )
        return stale


class MaintenanceScheduler:
    """Runs both sweeps on a fixed interval until stopped."""

    def __init__(
        self,
        settings: CertAnchorSettings,
        cleaner: TempDocumentCleaner,
        reconciler: ProvisionalReconciler,
    ):
        self.interval = settings.temp_sweep_interval
        self.cleaner = cleaner
        self.reconciler = reconciler
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> dict[str, list[str]]:
        return {
            "temp_documents": await self.cleaner.sweep(),
            "provisional_certificates": await self.reconciler.sweep(),
        }

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Maintenance sweep failed")

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
