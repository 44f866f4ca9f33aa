"""Mail transport (SendGrid or Resend)."""

import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import httpx

from certanchor.common.exceptions import NotificationFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MailAttachment:
    filename: str
    path: Path
    content_type: str = "application/pdf"

    def encoded(self) -> str:
        return base64.b64encode(self.path.read_bytes()).decode("ascii")


@dataclass(frozen=True)
class MailReceipt:
    message_id: str


class EmailSender:
    """Sends HTML mail with attachments.

    Supports SendGrid and Resend via configuration. ``send`` raises
    NotificationFailure on any delivery problem.
    """

    def __init__(
        self,
        provider: str = "",
        api_key: str = "",
        from_email: str = "certificates@example.org",
        from_name: str = "Certificate Office",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider = provider.lower()  # "sendgrid" or "resend"
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout
        self._http_client = http_client

    @property
    def configured(self) -> bool:
        return self.provider in ("sendgrid", "resend") and bool(self.api_key)

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        attachments: Sequence[MailAttachment] = (),
    ) -> MailReceipt:
        if not self.configured:
            raise NotificationFailure("No email provider configured")
        try:
            encoded = [(att, att.encoded()) for att in attachments]
        except OSError as exc:
            raise NotificationFailure(f"Attachment unreadable: {exc}") from exc

        try:
            if self.provider == "sendgrid":
                return await self._send_sendgrid(to, subject, html, encoded)
            return await self._send_resend(to, subject, html, encoded)
        except httpx.TimeoutException as exc:
            raise NotificationFailure(f"{self.provider} request timed out") from exc
        except httpx.HTTPError as exc:
            raise NotificationFailure(f"{self.provider} request failed: {exc}") from exc

    async def _send_sendgrid(self, to, subject, html, encoded) -> MailReceipt:
        """Send via SendGrid v3 API."""
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }
        if encoded:
            payload["attachments"] = [
                {
                    "content": content,
                    "filename": att.filename,
                    "type": att.content_type,
                    "disposition": "attachment",
                }
                for att, content in encoded
            ]
        resp = await self._get_http_client().post(
            "https://api.sendgrid.com/v3/mail/send",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json=payload,
            timeout=self.timeout,
        )
        if resp.status_code not in (200, 202):
            raise NotificationFailure(f"SendGrid error: {resp.status_code} {resp.text[:200]}")
        logger.info("SendGrid email sent to %s", to)
        return MailReceipt(message_id=resp.headers.get("X-Message-Id", ""))

    async def _send_resend(self, to, subject, html, encoded) -> MailReceipt:
        """Send via Resend API."""
        payload = {
            "from": f"{self.from_name} <{self.from_email}>",
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if encoded:
            payload["attachments"] = [
                {"filename": att.filename, "content": content}
                for att, content in encoded
            ]
        resp = await self._get_http_client().post(
            "https://api.resend.com/emails",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json=payload,
            timeout=self.timeout,
        )
        if resp.status_code not in (200, 201):
            raise NotificationFailure(f"Resend error: {resp.status_code} {resp.text[:200]}")
        logger.info("Resend email sent to %s", to)
        try:
            message_id = resp.json().get("id", "")
        except ValueError:
            message_id = ""
        return MailReceipt(message_id=message_id)
