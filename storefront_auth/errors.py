"""
Error taxonomy for the handshake and session resolution chain.

Handshake and resolution failures carry an HTTP status, a stable error code, and a
user-facing message; routes render them as {"error": ..., "error_description": ...}.
"""

RESTART_MESSAGE = "Authorization could not be completed. Please restart the authorization flow from the beginning."


class StorefrontAuthError(Exception):
    """Base for all errors raised by this package."""


class HandshakeError(StorefrontAuthError):
    http_status = 400
    error_code = "handshake_failed"
    user_message = RESTART_MESSAGE

    def __init__(self, message: str | None = None):
        super().__init__(message or self.user_message)

    def to_detail(self) -> dict:
        return {"error": self.error_code, "error_description": self.user_message}


class InvalidTenant(HandshakeError):
    """Tenant identifier is malformed. Raised before any state is mutated."""
    error_code = "invalid_tenant"
    user_message = "Invalid shop domain."


class HandshakeNotFound(HandshakeError):
    """
    No usable pending handshake: expired, already consumed, never issued, or issued for
    another tenant. These are deliberately indistinguishable to the caller; do not split
    them into separate codes or messages.
    """
    error_code = "handshake_not_found"


class StateMismatch(HandshakeError):
    """Pending nonce exists but the returned state does not match (possible replay attack)."""
    error_code = "state_mismatch"


class InvalidCallbackSignature(HandshakeError):
    """Callback query is not signed by the platform. The pending handshake is left untouched."""
    error_code = "invalid_signature"


class ExchangeFailed(HandshakeError):
    """Code-for-credential exchange failed; terminal for this handshake."""
    http_status = 502
    error_code = "exchange_failed"


class ResolutionError(StorefrontAuthError):
    http_status = 400
    error_code = "resolution_failed"
    user_message = "Not yet authorized."

    def to_detail(self) -> dict:
        return {"error": self.error_code, "error_description": self.user_message}


class UnknownCaller(ResolutionError):
    http_status = 404
    error_code = "unknown_caller"
    user_message = "No shop is associated with this caller."


class NotAuthenticated(ResolutionError):
    http_status = 401
    error_code = "not_authenticated"
    user_message = "Not yet authorized. The shop must complete authorization first."


class CarrierError(StorefrontAuthError):
    """Fallback carrier token is malformed, tampered, expired, or bound elsewhere."""


class ExchangeError(StorefrontAuthError):
    """Transport or rejection error from the credential exchange collaborator."""


class UnknownTenantError(StorefrontAuthError):
    """Credential write for a tenant that does not exist."""
