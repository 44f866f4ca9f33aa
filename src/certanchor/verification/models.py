"""SQLAlchemy models for the append-only verification log."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from certanchor.common.models import Base, generate_uuid, utcnow


class VerificationLogModel(Base):
    __tablename__ = "verification_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    # Null when the identifier never resolved to a certificate.
    certificate_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    method: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    identifier: Mapped[str] = mapped_column(String(512), nullable=False)
    outcome: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)
    provenance: Mapped[str | None] = mapped_column(String(16), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    elapsed_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )


class ImmutableLogError(RuntimeError):
    pass


@event.listens_for(VerificationLogModel, "before_update")
def _reject_update(mapper, connection, target) -> None:
    raise ImmutableLogError("verification log entries are immutable")


@event.listens_for(VerificationLogModel, "before_delete")
def _reject_delete(mapper, connection, target) -> None:
    raise ImmutableLogError("verification log entries cannot be deleted")
