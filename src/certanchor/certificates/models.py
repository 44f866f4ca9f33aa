"""SQLAlchemy models for certificate records."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from certanchor.common.models import Base, TimestampMixin

# Certificate status (what verifiers see)
STATUS_ISSUED = "issued"
STATUS_VERIFIED = "verified"
STATUS_REVOKED = "revoked"

# Record lifecycle (what the issuance pipeline sees)
LIFECYCLE_PROVISIONAL = "provisional"
LIFECYCLE_FINALIZED = "finalized"
LIFECYCLE_FAILED = "failed"


class CertificateModel(Base, TimestampMixin):
    __tablename__ = "certificates"

    # Year-scoped sequence id, e.g. CERT20260042
    id: Mapped[str] = mapped_column(String(32), primary_key=True)

    subject_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    subject_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    course_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    guardian_name: Mapped[str] = mapped_column(String(255), default="")
    district: Mapped[str] = mapped_column(String(255), default="")
    state: Mapped[str] = mapped_column(String(255), default="")
    institute_name: Mapped[str] = mapped_column(String(255), nullable=False)
    issued_by: Mapped[str] = mapped_column(String(255), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    content_fingerprint: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )

    ledger_reference: Mapped[str | None] = mapped_column(
        String(66), nullable=True, unique=True, index=True
    )
    ledger_block_height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ledger_cost: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ledger_origin: Mapped[str | None] = mapped_column(String(16), nullable=True)

    document_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    document_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    document_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    document_pinned: Mapped[bool] = mapped_column(Boolean, default=False)

    lifecycle: Mapped[str] = mapped_column(
        String(16), nullable=False, default=LIFECYCLE_PROVISIONAL, index=True
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=STATUS_ISSUED, index=True
    )
    verification_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    revocation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    notified: Mapped[bool] = mapped_column(Boolean, default=False)
    notified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    metadata_: Mapped[dict] = mapped_column("metadata", JSON, default=dict)

    @property
    def is_revoked(self) -> bool:
        return self.status == STATUS_REVOKED

    @property
    def revocation(self) -> dict | None:
        if not self.is_revoked:
            return None
        return {
            "reason": self.revocation_reason,
            "revoked_by": self.revoked_by,
            "revoked_at": self.revoked_at,
        }
