"""
Issuance orchestrator.

One request walks an explicit stage sequence:

    ALLOCATING -> FINGERPRINT_COMPUTED -> PROVISIONALLY_PERSISTED
    -> DOCUMENT_RENDERED -> DOCUMENT_UPLOADED -> LEDGER_WRITTEN
    -> FINALIZED -> NOTIFIED -> CLEANED

A hard failure before FINALIZED runs the compensations registered for the
last stage reached (``COMPENSATIONS``) and re-raises. The ledger write is
soft: the ledger client degrades to fallback mode instead of raising.
Notification and cleanup are soft too and never undo a finalized record.
"""

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from certanchor.certificates.models import (
    LIFECYCLE_FINALIZED,
    LIFECYCLE_PROVISIONAL,
    STATUS_ISSUED,
    CertificateModel,
)
from certanchor.certificates.service import CertificateService
from certanchor.common.config import CertAnchorSettings
from certanchor.common.exceptions import (
    AllocationConflict,
    CertAnchorError,
    CertificateNotFoundError,
    IssuanceError,
    RenderingFailure,
    UploadFailure,
)
from certanchor.identity.allocator import IdentifierAllocator
from certanchor.identity.fingerprint import compute_fingerprint
from certanchor.issuance.schemas import IssuanceRequest
from certanchor.ledger.client import LedgerClient
from certanchor.ledger.schemas import LedgerAnchor, LedgerWrite
from certanchor.maintenance.cleanup import TempDocumentCleaner
from certanchor.notifications.mailer import MailAttachment
from certanchor.notifications.models import NotificationLogModel
from certanchor.notifications.service import NotificationService
from certanchor.rendering.renderer import DocumentRenderer, RenderedDocument
from certanchor.storage.client import DocumentStoreClient, StoredDocument

logger = logging.getLogger(__name__)


class IssuanceStage(str, Enum):
    ALLOCATING = "allocating"
    FINGERPRINT_COMPUTED = "fingerprint_computed"
    PROVISIONALLY_PERSISTED = "provisionally_persisted"
    DOCUMENT_RENDERED = "document_rendered"
    DOCUMENT_UPLOADED = "document_uploaded"
    LEDGER_WRITTEN = "ledger_written"
    FINALIZED = "finalized"
    NOTIFIED = "notified"
    CLEANED = "cleaned"
    FAILED = "failed"


# Compensating actions keyed by the last stage reached before a hard failure.
COMPENSATIONS: dict[IssuanceStage, tuple[str, ...]] = {
    IssuanceStage.ALLOCATING: (),
    IssuanceStage.FINGERPRINT_COMPUTED: (),
    IssuanceStage.PROVISIONALLY_PERSISTED: ("discard_document", "mark_failed"),
    IssuanceStage.DOCUMENT_RENDERED: ("discard_document", "mark_failed"),
    IssuanceStage.DOCUMENT_UPLOADED: ("discard_document", "mark_failed"),
    IssuanceStage.LEDGER_WRITTEN: ("discard_document", "mark_failed"),
}


@dataclass
class IssuanceContext:
    """Everything one issuance has produced so far."""

    request: IssuanceRequest
    stages: list[IssuanceStage] = field(default_factory=list)
    certificate_id: Optional[str] = None
    issued_at: Optional[datetime] = None
    fingerprint: Optional[str] = None
    record: Optional[CertificateModel] = None
    document: Optional[RenderedDocument] = None
    stored: Optional[StoredDocument] = None
    ledger: Optional[LedgerWrite] = None
    notification: Optional[NotificationLogModel] = None
    failure: Optional[str] = None

    @property
    def stage(self) -> Optional[IssuanceStage]:
        return self.stages[-1] if self.stages else None

    def advance(self, stage: IssuanceStage) -> None:
        self.stages.append(stage)
        logger.debug(
            "Issuance stage %s", stage.value,
            extra={"certificate_id": self.certificate_id, "stage": stage.value},
        )


@dataclass
class IssuanceResult:
    record: CertificateModel
    ledger_origin: str
    document_reference: str
    notification_status: Optional[str]
    stages: list[IssuanceStage]


@dataclass
class ResendResult:
    certificate_id: str
    notification: Optional[NotificationLogModel]
    attachments_count: int


class IssuanceOrchestrator:
    """Drives a single certificate from request to finalized record."""

    def __init__(
        self,
        settings: CertAnchorSettings,
        db,
        allocator: IdentifierAllocator,
        ledger: LedgerClient,
        store: DocumentStoreClient,
        renderer: DocumentRenderer,
        notifier: NotificationService,
        cleaner: TempDocumentCleaner,
        certificates: Optional[CertificateService] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.settings = settings
        self.db = db
        self.allocator = allocator
        self.ledger = ledger
        self.store = store
        self.renderer = renderer
        self.notifier = notifier
        self.cleaner = cleaner
        self.certificates = certificates or CertificateService()
        self._clock = clock
        # Serializes count-then-insert within this process; the primary key
        # arbitrates between processes.
        self._allocation_lock = asyncio.Lock()

    async def issue(self, request: IssuanceRequest) -> IssuanceResult:
        ctx = IssuanceContext(request=request)
        try:
            await self._reserve(ctx)
            await self._render(ctx)
            await self._upload(ctx)
            await self._anchor(ctx)
            await self._finalize(ctx)
        except Exception as exc:
            failed_at = ctx.stage
            ctx.failure = exc.message if isinstance(exc, CertAnchorError) else (str(exc) or type(exc).__name__)
            await self._compensate(ctx)
            ctx.advance(IssuanceStage.FAILED)
            logger.error(
                "Issuance failed: %s", ctx.failure,
                extra={
                    "certificate_id": ctx.certificate_id,
                    "stage": failed_at.value if failed_at else None,
                },
            )
            if isinstance(exc, CertAnchorError):
                raise
            raise IssuanceError(f"Certificate issuance failed: {ctx.failure}") from exc

        await self._notify(ctx)
        await self._cleanup(ctx)

        logger.info(
            "Certificate issued",
            extra={
                "certificate_id": ctx.certificate_id,
                "ledger_origin": ctx.ledger.origin.value,
                "document_reference": ctx.stored.address,
            },
        )
        return IssuanceResult(
            record=ctx.record,
            ledger_origin=ctx.ledger.origin.value,
            document_reference=ctx.stored.address,
            notification_status=ctx.notification.status if ctx.notification else None,
            stages=list(ctx.stages),
        )

    # ── Stages ──

    async def _reserve(self, ctx: IssuanceContext) -> None:
        request = ctx.request
        institute = request.institute_name or self.settings.institute_name
        async with self._allocation_lock:
            for attempt in (1, 2):
                issued_at = self._clock()
                try:
                    async with self.db.get_session() as session:
                        ctx.certificate_id = await self.allocator.allocate(session, issued_at)
                        ctx.issued_at = issued_at
                        ctx.advance(IssuanceStage.ALLOCATING)

                        ctx.fingerprint = compute_fingerprint(
                            certificate_id=ctx.certificate_id,
                            subject_name=request.subject_name,
                            course_name=request.course_name,
                            institute_name=institute,
                            issued_at=issued_at,
                        )
                        ctx.advance(IssuanceStage.FINGERPRINT_COMPUTED)

                        record = CertificateModel(
                            id=ctx.certificate_id,
                            subject_name=request.subject_name,
                            subject_email=request.subject_email,
                            course_name=request.course_name,
                            guardian_name=request.guardian_name,
                            district=request.district,
                            state=request.state,
                            institute_name=institute,
                            issued_by=request.issued_by,
                            issued_at=issued_at,
                            content_fingerprint=ctx.fingerprint,
                            lifecycle=LIFECYCLE_PROVISIONAL,
                            status=STATUS_ISSUED,
                            verification_count=0,
                            metadata_=dict(request.metadata),
                        )
                        session.add(record)
                        await session.flush()
                except IntegrityError as exc:
                    if attempt == 2:
                        raise AllocationConflict(
                            f"Certificate id {ctx.certificate_id} is already taken"
                        ) from exc
                    logger.warning(
                        "Certificate id %s collided, re-deriving", ctx.certificate_id,
                        extra={"certificate_id": ctx.certificate_id},
                    )
                    ctx.certificate_id = None
                    ctx.stages.clear()
                    continue
                ctx.record = record
                ctx.advance(IssuanceStage.PROVISIONALLY_PERSISTED)
                return

    async def _render(self, ctx: IssuanceContext) -> None:
        try:
            document = await asyncio.wait_for(
                self.renderer.render(ctx.record), self.settings.render_timeout,
            )
        except RenderingFailure:
            raise
        except asyncio.TimeoutError as exc:
            raise RenderingFailure("Certificate rendering timed out") from exc
        except Exception as exc:
            raise RenderingFailure(f"Certificate rendering failed: {exc}") from exc
        ctx.document = document
        if not document.data:
            raise RenderingFailure("Renderer produced an empty document")
        ctx.advance(IssuanceStage.DOCUMENT_RENDERED)

    async def _upload(self, ctx: IssuanceContext) -> None:
        try:
            ctx.stored = await self.store.upload(ctx.document.data, ctx.document.filename)
        except UploadFailure:
            raise
        except Exception as exc:
            raise UploadFailure(f"Document upload failed: {exc}") from exc
        ctx.advance(IssuanceStage.DOCUMENT_UPLOADED)

    async def _anchor(self, ctx: IssuanceContext) -> None:
        record = ctx.record
        ctx.ledger = await self.ledger.anchor(LedgerAnchor(
            certificate_id=record.id,
            subject_name=record.subject_name,
            course_name=record.course_name,
            issuer=record.institute_name,
            issued_at=record.issued_at,
            fingerprint=record.content_fingerprint,
        ))
        ctx.advance(IssuanceStage.LEDGER_WRITTEN)

    async def _finalize(self, ctx: IssuanceContext) -> None:
        ledger, stored = ctx.ledger, ctx.stored
        async with self.db.get_session() as session:
            result = await session.execute(
                update(CertificateModel)
                .where(
                    CertificateModel.id == ctx.certificate_id,
                    CertificateModel.lifecycle == LIFECYCLE_PROVISIONAL,
                )
                .values(
                    ledger_reference=ledger.reference,
                    ledger_block_height=ledger.block_height,
                    ledger_cost=ledger.cost,
                    ledger_origin=ledger.origin.value,
                    document_reference=stored.address,
                    document_url=stored.url,
                    document_size=stored.size,
                    document_pinned=stored.pinned,
                    lifecycle=LIFECYCLE_FINALIZED,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise IssuanceError(
                    f"Certificate {ctx.certificate_id} is no longer provisional"
                )
            ctx.record = await self.certificates.get(session, ctx.certificate_id)
        ctx.advance(IssuanceStage.FINALIZED)

    async def _notify(self, ctx: IssuanceContext) -> None:
        attachments = []
        path = ctx.document.local_path
        if path.exists():
            attachments.append(MailAttachment(filename=ctx.document.filename, path=path))
        ctx.notification = await self.notifier.certificate_issued(
            ctx.record, attachments, sent_by=ctx.request.issued_by,
        )
        ctx.advance(IssuanceStage.NOTIFIED)

    async def _cleanup(self, ctx: IssuanceContext) -> None:
        await self.cleaner.discard(ctx.document.local_path)
        ctx.advance(IssuanceStage.CLEANED)

    # ── Compensation ──

    async def _compensate(self, ctx: IssuanceContext) -> None:
        for action in COMPENSATIONS.get(ctx.stage, ()):
            try:
                await getattr(self, f"_compensate_{action}")(ctx)
            except Exception:
                logger.exception(
                    "Compensation %s failed", action,
                    extra={"certificate_id": ctx.certificate_id},
                )

    async def _compensate_discard_document(self, ctx: IssuanceContext) -> None:
        if ctx.document is not None:
            await self.cleaner.discard(ctx.document.local_path)

    async def _compensate_mark_failed(self, ctx: IssuanceContext) -> None:
        async with self.db.get_session() as session:
            await self.certificates.mark_failed(
                session, ctx.certificate_id, ctx.failure or "issuance aborted",
            )

    # ── Resend ──

    async def resend_certificate_email(self, certificate_id: str) -> ResendResult:
        """Mail the certificate again, attaching the stored document when reachable."""
        async with self.db.get_session() as session:
            record = await self.certificates.get(session, certificate_id)
        if record is None:
            raise CertificateNotFoundError(f"Certificate {certificate_id} not found")

        temp_path: Optional[Path] = None
        if record.document_reference:
            retrieved = await self.store.retrieve(record.document_reference)
            if retrieved.found:
                temp_path = await asyncio.to_thread(
                    _write_resend_copy, Path(self.settings.temp_dir), record.id, retrieved.data,
                )
        if temp_path is None:
            logger.info("Stored document for %s unreachable, re-rendering", record.id)
            try:
                rendered = await asyncio.wait_for(
                    self.renderer.render(record), self.settings.render_timeout,
                )
                temp_path = rendered.local_path
            except Exception as exc:
                logger.warning("Re-render for %s failed, sending without attachment: %s", record.id, exc)

        attachments = []
        if temp_path is not None:
            attachments.append(MailAttachment(filename=f"Certificate_{record.id}.pdf", path=temp_path))
        try:
            entry = await self.notifier.certificate_issued(record, attachments)
        finally:
            await self.cleaner.discard(temp_path)
        return ResendResult(
            certificate_id=record.id,
            notification=entry,
            attachments_count=len(attachments),
        )


def _write_resend_copy(temp_dir: Path, certificate_id: str, data: Any) -> Path:
    temp_dir.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=f"resend_{certificate_id}_", suffix=".pdf", dir=temp_dir)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)
    return Path(name)
