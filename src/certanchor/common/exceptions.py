"""CertAnchor exception hierarchy."""


class CertAnchorError(Exception):
    """Base exception for all CertAnchor errors."""

    def __init__(self, message: str = "", code: str = "CERTANCHOR_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(CertAnchorError):
    """Raised for caller-fixable input problems, before any side effect."""

    def __init__(self, message: str = "Invalid request", fields: list[str] | None = None):
        self.fields = fields or []
        super().__init__(message, code="VALIDATION_ERROR")


class AllocationConflict(CertAnchorError):
    """Raised when a certificate id collides again after one re-derivation."""

    def __init__(self, message: str = "Certificate id allocation conflict"):
        super().__init__(message, code="ALLOCATION_CONFLICT")


class IssuanceError(CertAnchorError):
    """Hard failure that aborts an issuance."""

    def __init__(self, message: str = "Certificate issuance failed", code: str = "ISSUANCE_FAILED"):
        super().__init__(message, code=code)


class RenderingFailure(IssuanceError):
    """Raised when the document renderer cannot produce the certificate."""

    def __init__(self, message: str = "Certificate rendering failed"):
        super().__init__(message, code="RENDERING_FAILED")


class UploadFailure(IssuanceError):
    """Raised when the rendered document cannot be stored."""

    def __init__(self, message: str = "Document upload failed"):
        super().__init__(message, code="UPLOAD_FAILED")


class LedgerUnavailable(CertAnchorError):
    """Raised inside the ledger client when it must fall back."""

    def __init__(self, message: str = "Ledger unavailable"):
        super().__init__(message, code="LEDGER_UNAVAILABLE")


class NotificationFailure(CertAnchorError):
    """Raised by the mail transport; callers record it and move on."""

    def __init__(self, message: str = "Notification delivery failed"):
        super().__init__(message, code="NOTIFICATION_FAILED")


class CertificateNotFoundError(CertAnchorError):
    """Raised when a certificate cannot be found in the record store."""

    def __init__(self, message: str = "Certificate not found"):
        super().__init__(message, code="NOT_FOUND")


class AlreadyRevokedError(CertAnchorError):
    """Raised when revoking a certificate that is already revoked."""

    def __init__(self, message: str = "Certificate is already revoked"):
        super().__init__(message, code="ALREADY_REVOKED")


HTTP_STATUS_BY_CODE: dict[str, int] = {
    "VALIDATION_ERROR": 400,
    "NOT_FOUND": 404,
    "ALREADY_REVOKED": 409,
    "ALLOCATION_CONFLICT": 409,
    "RENDERING_FAILED": 502,
    "UPLOAD_FAILED": 502,
    "ISSUANCE_FAILED": 500,
}
