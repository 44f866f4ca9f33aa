"""Dependency injection singletons for CertAnchor."""

from certanchor.common.config import get_settings
from certanchor.common.database import DatabaseManager
from certanchor.certificates.revocation import RevocationManager
from certanchor.certificates.service import CertificateService
from certanchor.identity.allocator import IdentifierAllocator
from certanchor.issuance.batch import BatchCoordinator
from certanchor.issuance.orchestrator import IssuanceOrchestrator
from certanchor.ledger.backend import Web3LedgerBackend
from certanchor.ledger.client import LedgerClient
from certanchor.maintenance.cleanup import (
    MaintenanceScheduler,
    ProvisionalReconciler,
    TempDocumentCleaner,
)
from certanchor.notifications.mailer import EmailSender
from certanchor.notifications.service import NotificationService
from certanchor.rendering.renderer import DocumentRenderer, ReportLabRenderer
from certanchor.storage.client import DocumentStoreClient
from certanchor.verification.service import VerificationService

_db: DatabaseManager | None = None
_certificates: CertificateService | None = None
_ledger: LedgerClient | None = None
_store: DocumentStoreClient | None = None
_renderer: DocumentRenderer | None = None
_sender: EmailSender | None = None
_notifier: NotificationService | None = None
_cleaner: TempDocumentCleaner | None = None
_reconciler: ProvisionalReconciler | None = None
_scheduler: MaintenanceScheduler | None = None
_orchestrator: IssuanceOrchestrator | None = None
_batch: BatchCoordinator | None = None
_revocation: RevocationManager | None = None
_verification: VerificationService | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_certificate_service() -> CertificateService:
    global _certificates
    if _certificates is None:
        _certificates = CertificateService()
    return _certificates


def get_ledger_client() -> LedgerClient:
    global _ledger
    if _ledger is None:
        settings = get_settings()
        backend = Web3LedgerBackend(settings) if settings.ledger_enabled else None
        _ledger = LedgerClient(settings, backend=backend)
    return _ledger


def get_document_store() -> DocumentStoreClient:
    global _store
    if _store is None:
        _store = DocumentStoreClient(get_settings())
    return _store


def get_renderer() -> DocumentRenderer:
    global _renderer
    if _renderer is None:
        _renderer = ReportLabRenderer(get_settings())
    return _renderer


def get_email_sender() -> EmailSender:
    global _sender
    if _sender is None:
        settings = get_settings()
        _sender = EmailSender(
            provider=settings.email_provider,
            api_key=settings.email_api_key,
            from_email=settings.email_from,
            from_name=settings.email_from_name,
            timeout=settings.mail_timeout,
        )
    return _sender


def get_notification_service() -> NotificationService:
    global _notifier
    if _notifier is None:
        _notifier = NotificationService(get_settings(), get_db(), get_email_sender())
    return _notifier


def get_temp_cleaner() -> TempDocumentCleaner:
    global _cleaner
    if _cleaner is None:
        settings = get_settings()
        _cleaner = TempDocumentCleaner(
            settings.temp_dir,
            retry_delay=settings.cleanup_retry_delay,
            max_age=settings.temp_max_age,
        )
    return _cleaner


def get_reconciler() -> ProvisionalReconciler:
    global _reconciler
    if _reconciler is None:
        _reconciler = ProvisionalReconciler(
            get_db(), get_settings().provisional_stale_after,
            certificates=get_certificate_service(),
        )
    return _reconciler


def get_scheduler() -> MaintenanceScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = MaintenanceScheduler(get_settings(), get_temp_cleaner(), get_reconciler())
    return _scheduler


def get_orchestrator() -> IssuanceOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        settings = get_settings()
        _orchestrator = IssuanceOrchestrator(
            settings,
            get_db(),
            IdentifierAllocator(settings.certificate_prefix, settings.sequence_width),
            get_ledger_client(),
            get_document_store(),
            get_renderer(),
            get_notification_service(),
            get_temp_cleaner(),
            certificates=get_certificate_service(),
        )
    return _orchestrator


def get_batch_coordinator() -> BatchCoordinator:
    global _batch
    if _batch is None:
        settings = get_settings()
        _batch = BatchCoordinator(
            get_orchestrator(),
            max_items=settings.batch_max_items,
            group_size=settings.batch_group_size,
        )
    return _batch


def get_revocation_manager() -> RevocationManager:
    global _revocation
    if _revocation is None:
        _revocation = RevocationManager(
            get_db(), get_notification_service(), certificates=get_certificate_service(),
        )
    return _revocation


def get_verification_service() -> VerificationService:
    global _verification
    if _verification is None:
        _verification = VerificationService(
            get_settings(),
            get_db(),
            get_ledger_client(),
            notifier=get_notification_service(),
            certificates=get_certificate_service(),
        )
    return _verification


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _certificates, _ledger, _store, _renderer, _sender, _notifier
    global _cleaner, _reconciler, _scheduler, _orchestrator, _batch, _revocation, _verification
    _db = None
    _certificates = None
    _ledger = None
    _store = None
    _renderer = None
    _sender = None
    _notifier = None
    _cleaner = None
    _reconciler = None
    _scheduler = None
    _orchestrator = None
    _batch = None
    _revocation = None
    _verification = None
