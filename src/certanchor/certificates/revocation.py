"""Certificate revocation."""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update

from certanchor.certificates.models import (
    LIFECYCLE_FINALIZED,
    STATUS_REVOKED,
    CertificateModel,
)
from certanchor.certificates.service import CertificateService
from certanchor.common.exceptions import AlreadyRevokedError, CertificateNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Administrative revocation"
DEFAULT_ACTOR = "System Administrator"


class RevocationManager:
    """Flips a finalized certificate to revoked, exactly once."""

    def __init__(self, db, notifier=None, certificates: Optional[CertificateService] = None):
        self.db = db
        self.notifier = notifier
        self.certificates = certificates or CertificateService()

    async def revoke(
        self,
        certificate_id: str,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> CertificateModel:
        reason = (reason or "").strip() or DEFAULT_REASON
        actor = (actor or "").strip() or DEFAULT_ACTOR
        now = datetime.now(timezone.utc)

        async with self.db.get_session() as session:
            result = await session.execute(
                update(CertificateModel)
                .where(
                    CertificateModel.id == certificate_id,
                    CertificateModel.lifecycle == LIFECYCLE_FINALIZED,
                    CertificateModel.status != STATUS_REVOKED,
                )
                .values(
                    status=STATUS_REVOKED,
                    revocation_reason=reason,
                    revoked_by=actor,
                    revoked_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                existing = await self.certificates.get(session, certificate_id)
                if existing is None:
                    raise CertificateNotFoundError(f"Certificate {certificate_id} not found")
                raise AlreadyRevokedError(f"Certificate {certificate_id} is already revoked")
            record = await self.certificates.get(session, certificate_id)
            await session.refresh(record)

        logger.info(
            "Certificate revoked",
            extra={"certificate_id": certificate_id, "revoked_by": actor},
        )
        if self.notifier is not None:
            await self.notifier.revocation_notice(record, reason, actor)
        return record
