"""Best-effort certificate mail with a persisted audit entry."""

import asyncio
import logging
from datetime import datetime, timezone
from html import escape
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from certanchor.certificates.models import CertificateModel
from certanchor.common.config import CertAnchorSettings
from certanchor.common.exceptions import NotificationFailure
from certanchor.notifications.mailer import EmailSender, MailAttachment
from certanchor.notifications.models import (
    KIND_CERTIFICATE_ISSUED,
    KIND_REVOCATION_NOTICE,
    KIND_VERIFICATION_ALERT,
    NOTIFICATION_FAILED,
    NOTIFICATION_SENT,
    NOTIFICATION_SKIPPED,
    NotificationLogModel,
)

logger = logging.getLogger(__name__)


class NotificationService:
    """Sends certificate mail and records every attempt.

    Never raises: a failed or skipped delivery is written to
    ``notification_logs`` and returned to the caller.
    """

    def __init__(self, settings: CertAnchorSettings, db, sender: EmailSender):
        self.settings = settings
        self.db = db
        self.sender = sender

    # ── Kinds ──

    async def certificate_issued(
        self,
        record: CertificateModel,
        attachments: Sequence[MailAttachment] = (),
        sent_by: Optional[str] = None,
    ) -> Optional[NotificationLogModel]:
        subject = f"Your Certificate from {record.institute_name}"
        verify_url = f"{self.settings.frontend_url.rstrip('/')}/verify/{record.id}"
        html = (
            f"<p>Dear {escape(record.subject_name)},</p>"
            f"<p>Congratulations on completing <strong>{escape(record.course_name)}</strong>.</p>"
            f"<p>Your certificate <strong>{escape(record.id)}</strong> is attached.</p>"
            f"<p>Anyone can verify it at <a href=\"{escape(verify_url)}\">{escape(verify_url)}</a>.</p>"
            f"<p>Fingerprint: <code>{escape(record.content_fingerprint)}</code></p>"
            f"<p>{escape(record.institute_name)}</p>"
        )
        return await self._deliver(
            record, KIND_CERTIFICATE_ISSUED, subject, html, attachments,
            sent_by=sent_by or record.issued_by,
        )

    async def verification_alert(
        self, record: CertificateModel, details: dict[str, Any],
    ) -> Optional[NotificationLogModel]:
        subject = f"Certificate Verification Alert - {record.id}"
        html = (
            f"<p>Dear {escape(record.subject_name)},</p>"
            f"<p>Your certificate <strong>{escape(record.id)}</strong> was just verified.</p>"
            f"<ul>"
            f"<li>Method: {escape(str(details.get('method', '')))}</li>"
            f"<li>Time: {escape(str(details.get('timestamp', '')))}</li>"
            f"<li>From: {escape(str(details.get('ip_address') or 'unknown'))}</li>"
            f"</ul>"
            f"<p>If you did not expect this, no action is needed.</p>"
        )
        return await self._deliver(
            record, KIND_VERIFICATION_ALERT, subject, html, (),
            sent_by="system", detail=details,
        )

    async def revocation_notice(
        self, record: CertificateModel, reason: str, actor: str,
    ) -> Optional[NotificationLogModel]:
        subject = f"Certificate Revocation Notice - {record.id}"
        html = (
            f"<p>Dear {escape(record.subject_name)},</p>"
            f"<p>Your certificate <strong>{escape(record.id)}</strong> for "
            f"{escape(record.course_name)} has been revoked.</p>"
            f"<p>Reason: {escape(reason)}</p>"
            f"<p>Revoked by: {escape(actor)}</p>"
        )
        return await self._deliver(
            record, KIND_REVOCATION_NOTICE, subject, html, (),
            sent_by=actor, detail={"reason": reason},
        )

    # ── Delivery ──

    async def _deliver(
        self,
        record: CertificateModel,
        kind: str,
        subject: str,
        html: str,
        attachments: Sequence[MailAttachment],
        sent_by: str,
        detail: Optional[dict[str, Any]] = None,
    ) -> Optional[NotificationLogModel]:
        message_id = None
        error = None
        if not self.sender.configured:
            status = NOTIFICATION_SKIPPED
            logger.info("No email provider configured; %s for %s not sent", kind, record.id)
        else:
            try:
                receipt = await asyncio.wait_for(
                    self.sender.send(record.subject_email, subject, html, attachments),
                    self.settings.mail_timeout,
                )
                status, message_id = NOTIFICATION_SENT, receipt.message_id
            except NotificationFailure as exc:
                status, error = NOTIFICATION_FAILED, exc.message
                logger.warning("Failed to send %s for %s: %s", kind, record.id, exc.message)
            except asyncio.TimeoutError:
                status, error = NOTIFICATION_FAILED, "mail transport timed out"
                logger.warning("Mail transport timed out sending %s for %s", kind, record.id)
            except Exception as exc:
                status, error = NOTIFICATION_FAILED, str(exc) or type(exc).__name__
                logger.exception("Unexpected mail failure sending %s for %s", kind, record.id)

        try:
            async with self.db.get_session() as session:
                entry = NotificationLogModel(
                    certificate_id=record.id,
                    recipient=record.subject_email,
                    kind=kind,
                    subject=subject,
                    status=status,
                    message_id=message_id,
                    error=error,
                    sent_by=sent_by,
                    attachments=[att.filename for att in attachments],
                    detail=_jsonable(detail or {}),
                )
                session.add(entry)
                if kind == KIND_CERTIFICATE_ISSUED and status == NOTIFICATION_SENT:
                    await session.execute(
                        update(CertificateModel)
                        .where(CertificateModel.id == record.id)
                        .values(notified=True, notified_at=datetime.now(timezone.utc))
                    )
                await session.flush()
            return entry
        except Exception:
            logger.exception("Failed to record %s notification for %s", kind, record.id)
            return None

    # ── Queries ──

    async def history(
        self, session: AsyncSession, certificate_id: str, limit: int = 50,
    ) -> list[NotificationLogModel]:
        result = await session.execute(
            select(NotificationLogModel)
            .where(NotificationLogModel.certificate_id == certificate_id)
            .order_by(NotificationLogModel.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_by_status(self, session: AsyncSession) -> dict[str, int]:
        result = await session.execute(
            select(NotificationLogModel.status, func.count())
            .group_by(NotificationLogModel.status)
        )
        return {status: count for status, count in result.all()}


def _jsonable(detail: dict[str, Any]) -> dict[str, Any]:
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in detail.items()
    }
