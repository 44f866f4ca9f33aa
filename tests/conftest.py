"""Shared test fixtures for CertAnchor."""

import hashlib
from pathlib import Path

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from certanchor.common.config import CertAnchorSettings
from certanchor.common.exceptions import NotificationFailure, RenderingFailure
from certanchor.notifications.mailer import MailReceipt
from certanchor.rendering.renderer import DocumentRenderer, RenderedDocument


API_KEY = "test-admin-api-key"


# ── Fakes ──

class FakeRenderer(DocumentRenderer):
    """Writes a PDF-looking file without touching reportlab."""

    def __init__(self, temp_dir: Path, fail: bool = False):
        self.temp_dir = Path(temp_dir)
        self.fail = fail
        self.rendered: list[str] = []

    async def render(self, record) -> RenderedDocument:
        if self.fail:
            raise RenderingFailure("renderer exploded")
        data = b"%PDF-1.4\n" + f"{record.id} {record.subject_name}\n".encode() + b"0" * 2048
        path = self.temp_dir / f"Certificate_{record.id}.pdf"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        self.rendered.append(record.id)
        return RenderedDocument(data=data, local_path=path)


class FakeLedgerBackend:
    """In-memory registry contract."""

    def __init__(self, height: int = 1000):
        self.height = height
        self.records: dict[str, dict] = {}
        self.fail_submit = False
        self.fail_lookup = False
        self.unreachable = False
        self.submits = 0
        self.lookups = 0

    async def block_number(self) -> int:
        if self.unreachable:
            raise ConnectionError("connection refused")
        return self.height

    async def contract_ready(self) -> bool:
        return True

    async def submit(self, anchor) -> dict:
        self.submits += 1
        if self.fail_submit:
            raise RuntimeError("execution reverted")
        self.height += 1
        self.records[anchor.certificate_id] = {
            "subject_name": anchor.subject_name,
            "course_name": anchor.course_name,
            "institute_name": anchor.issuer,
            "issued_at": anchor.issued_at.isoformat(),
            "fingerprint": anchor.fingerprint,
            "is_valid": True,
        }
        digest = hashlib.sha256(anchor.certificate_id.encode()).hexdigest()
        return {"transaction_hash": "0x" + digest, "block_number": self.height, "gas_used": "84000"}

    async def lookup(self, certificate_id: str):
        self.lookups += 1
        if self.fail_lookup:
            raise ConnectionError("connection reset")
        return self.records.get(certificate_id)


class FakeSender:
    """Mail transport that records messages instead of sending them."""

    def __init__(self, configured: bool = True, fail: bool = False):
        self._configured = configured
        self.fail = fail
        self.sent: list[dict] = []

    @property
    def configured(self) -> bool:
        return self._configured

    async def send(self, to, subject, html, attachments=()) -> MailReceipt:
        if self.fail:
            raise NotificationFailure("SendGrid error: 401 unauthorized")
        self.sent.append({
            "to": to,
            "subject": subject,
            "html": html,
            "attachments": [a.filename for a in attachments],
        })
        return MailReceipt(message_id=f"msg-{len(self.sent)}")

    async def close(self) -> None:
        pass


# ── Settings and database ──

def make_settings(tmp_path: Path, **overrides) -> CertAnchorSettings:
    values = {
        "db_url": f"sqlite+aiosqlite:///{tmp_path}/test.db",
        "api_key": API_KEY,
        "temp_dir": str(tmp_path / "tmp"),
        "ledger_enabled": False,
        "pinata_api_key": "",
        "pinata_secret_key": "",
        "email_provider": "",
        "cleanup_retry_delay": 0.01,
        "render_timeout": 5.0,
        "ledger_timeout": 1.0,
    }
    values.update(overrides)
    return CertAnchorSettings(**values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
async def db(settings):
    from certanchor.common.database import DatabaseManager

    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def renderer(settings):
    return FakeRenderer(Path(settings.temp_dir))


@pytest.fixture
def ledger_backend():
    return FakeLedgerBackend()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def gateway():
    """Content served by the mocked read gateways, keyed by address."""
    return {}


@pytest.fixture
def pipeline(settings, db, renderer, sender, gateway):
    """Wired services over the test database, ledger in fallback mode."""
    return _build_pipeline(settings, db, renderer, sender, gateway)


@pytest.fixture
def ledger_pipeline(tmp_path, db, renderer, sender, gateway, ledger_backend):
    """Same wiring with the ledger enabled over an in-memory registry."""
    settings = make_settings(tmp_path, ledger_enabled=True)
    return _build_pipeline(settings, db, renderer, sender, gateway, ledger_backend)


def _gateway_transport(gateway: dict) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        for address, body in gateway.items():
            if address in str(request.url):
                return httpx.Response(200, content=body, headers={"content-type": "application/pdf"})
        return httpx.Response(404, text="not found")
    return httpx.MockTransport(handler)


def _build_pipeline(settings, db, renderer, sender, gateway, ledger_backend=None):
    from types import SimpleNamespace

    from certanchor.certificates.revocation import RevocationManager
    from certanchor.certificates.service import CertificateService
    from certanchor.identity.allocator import IdentifierAllocator
    from certanchor.issuance.batch import BatchCoordinator
    from certanchor.issuance.orchestrator import IssuanceOrchestrator
    from certanchor.ledger.client import LedgerClient
    from certanchor.maintenance.cleanup import TempDocumentCleaner
    from certanchor.notifications.service import NotificationService
    from certanchor.storage.client import DocumentStoreClient
    from certanchor.verification.service import VerificationService

    certificates = CertificateService()
    ledger = LedgerClient(settings, backend=ledger_backend)
    store = DocumentStoreClient(
        settings, http_client=httpx.AsyncClient(transport=_gateway_transport(gateway)),
    )
    notifier = NotificationService(settings, db, sender)
    cleaner = TempDocumentCleaner(settings.temp_dir, retry_delay=settings.cleanup_retry_delay)
    orchestrator = IssuanceOrchestrator(
        settings, db,
        IdentifierAllocator(settings.certificate_prefix, settings.sequence_width),
        ledger, store, renderer, notifier, cleaner,
        certificates=certificates,
    )
    return SimpleNamespace(
        settings=settings,
        db=db,
        certificates=certificates,
        ledger=ledger,
        store=store,
        notifier=notifier,
        cleaner=cleaner,
        orchestrator=orchestrator,
        batch=BatchCoordinator(orchestrator, settings.batch_max_items, settings.batch_group_size),
        revocation=RevocationManager(db, notifier, certificates=certificates),
        verification=VerificationService(
            settings, db, ledger, notifier=notifier, certificates=certificates,
        ),
    )


@pytest.fixture
def make_request():
    return _issuance_request


def _issuance_request(**overrides):
    from certanchor.issuance.schemas import IssuanceRequest

    values = {
        "subject_name": "Asha Rao",
        "subject_email": "asha@example.com",
        "course_name": "Data Science Essentials",
        "guardian_name": "Ravi Rao",
        "district": "Pune",
        "state": "Maharashtra",
        "issued_by": "registrar",
    }
    values.update(overrides)
    return IssuanceRequest(**values)


# ── HTTP app ──

@pytest.fixture
def app(tmp_path, monkeypatch):
    """Create a test app over a file-backed SQLite DB, ledger in fallback mode."""
    monkeypatch.setenv("CERTANCHOR_DB_URL", f"sqlite+aiosqlite:///{tmp_path}/app.db")
    monkeypatch.setenv("CERTANCHOR_API_KEY", API_KEY)
    monkeypatch.setenv("CERTANCHOR_TEMP_DIR", str(tmp_path / "tmp"))
    monkeypatch.setenv("CERTANCHOR_LEDGER_ENABLED", "false")
    monkeypatch.setenv("CERTANCHOR_PINATA_API_KEY", "")
    monkeypatch.setenv("CERTANCHOR_EMAIL_PROVIDER", "")

    # Clear caches and singletons so new env vars take effect
    from certanchor.common.config import get_settings
    get_settings.cache_clear()

    from certanchor import deps
    deps.reset_singletons()
    deps._renderer = FakeRenderer(tmp_path / "tmp")
    from certanchor.storage.client import DocumentStoreClient
    deps._store = DocumentStoreClient(
        get_settings(), http_client=httpx.AsyncClient(transport=_gateway_transport({})),
    )

    from certanchor.app import create_app
    yield create_app()

    deps.reset_singletons()
    get_settings.cache_clear()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from certanchor.deps import get_db, get_verification_service
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await get_verification_service().drain()
    await db.close()


@pytest.fixture
def admin_headers():
    return {"X-CertAnchor-Api-Key": API_KEY}
