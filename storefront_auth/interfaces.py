"""Capability interfaces the handshake coordinator composes."""
from typing import Protocol

from storefront_auth.exchange import ExchangedCredential


class NoncePrimary(Protocol):
    """Authoritative pending-handshake store (process-local by default, swappable for a shared one)."""

    def put(self, tenant_id: str, nonce: str, ttl: int | None = None):
        """Replace the pending nonce for ``tenant_id``."""

    def take(self, tenant_id: str) -> str | None:
        """Atomically remove and return the pending nonce, or ``None`` if absent or expired."""

    def mark_consumed(self, tenant_id: str, nonce: str, expires_at: float) -> bool:
        """Record ``nonce`` as used; ``False`` if it already was."""


class NonceFallback(Protocol):
    """Client-held carrier consulted when the primary store misses."""

    ttl_seconds: int

    def issue(self, nonce: str, ttl: int | None = None, tenant_id: str | None = None) -> str:
        """Return an opaque, tamper-evident token embedding ``nonce``."""

    def read(self, token: str | None, tenant_id: str | None = None) -> str:
        """Return the embedded nonce or raise ``CarrierError``."""


class CredentialExchanger(Protocol):
    """Trades an authorization code for a credential at the external platform."""

    def exchange(self, tenant_id: str, authorization_code: str) -> ExchangedCredential:
        """Return the credential or raise ``ExchangeError``."""


class TenantRegistrar(Protocol):
    def ensure(self, tenant_id: str):
        """Create or reactivate the tenant."""

    def mark_installed(self, tenant_id: str) -> None:
        """Record a successful authorization."""


__all__ = ["CredentialExchanger", "NonceFallback", "NoncePrimary", "TenantRegistrar"]
