"""Error types raised by the service layer.

Every error carries the HTTP status the API layer answers with, so routes never
have to catch and translate by hand.
"""
from typing import Optional


class PrepaidlyError(Exception):
    """Base class for all application errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PrepaidlyError):
    """Client supplied invalid input (bad date range, missing account code...)."""
    status_code = 400


class InvalidStateError(PrepaidlyError):
    """OAuth state parameter is missing, unknown, expired or bound to another user."""
    status_code = 400


class NotFoundError(PrepaidlyError):
    status_code = 404


class ConflictError(PrepaidlyError):
    status_code = 409


class AlreadyPostedError(ConflictError):
    """Journal entry was already posted to Xero."""


class ConfigurationError(PrepaidlyError):
    status_code = 500


class DecryptionError(PrepaidlyError):
    """Stored ciphertext could not be decrypted. The token is unusable."""
    status_code = 500


class PersistenceError(PrepaidlyError):
    status_code = 500


class XeroApiError(PrepaidlyError):
    """A call to Xero failed."""

    status_code = 500

    def __init__(self, message: str, upstream_status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.body = body


class TokenRefreshError(XeroApiError):
    """Transient refresh failure: network, rate limit or server error. Retry later."""


class InvalidGrantError(XeroApiError):
    """Refresh token is expired or revoked. The connection needs re-authorization."""

    def __init__(self, tenant_id: str, reason: str):
        super().__init__(f"Refresh token invalid for tenant {tenant_id}: {reason}")
        self.tenant_id = tenant_id
        self.reason = reason


class ConnectionDisconnectedError(PrepaidlyError):
    """Connection is DISCONNECTED and must be re-authorized by the user."""
    status_code = 400
