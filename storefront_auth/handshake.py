"""
Two-phase authorization handshake: initiate (mint nonce, redirect) and complete (validate
nonce, exchange code, persist the background credential).

The pending nonce is looked up in the primary store first and, only on a miss, recovered from
the client-held carrier. Every "no usable handshake" case (expired, already consumed, never
issued, issued for another tenant, missing or tampered carrier) is reported as the same
HandshakeNotFound. Keep it that way: distinct errors would tell an attacker which case hit.
A nonce that is found but differs from the returned state is StateMismatch.
"""
import enum
import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlencode

from storefront_auth.audit import (
    EVENT_EXCHANGE_FAILED,
    EVENT_FALLBACK_USED,
    EVENT_HANDSHAKE_COMPLETED,
    EVENT_HANDSHAKE_INITIATED,
    EVENT_HANDSHAKE_NOT_FOUND,
    EVENT_STATE_MISMATCH,
    OUTCOME_FAIL,
    OUTCOME_SUCCESS,
    AuditTrail,
)
from storefront_auth.errors import (
    CarrierError,
    ExchangeError,
    ExchangeFailed,
    HandshakeNotFound,
    StateMismatch,
    UnknownTenantError,
)
from storefront_auth.interfaces import CredentialExchanger, NonceFallback, NoncePrimary, TenantRegistrar
from storefront_auth.models import KIND_BACKGROUND, Credential
from storefront_auth.session_store import CredentialData, SessionStore
from storefront_auth.tenants import validate_tenant_id

logger = logging.getLogger(__name__)

# 32 bytes -> 43 chars base64url (256 bits of entropy)
NONCE_BYTES = 32


class HandshakeState(str, enum.Enum):
    INITIATED = "initiated"
    COMPLETING = "completing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class HandshakeStart:
    tenant_id: str
    nonce: str
    authorize_url: str
    carrier_token: str
    expires_at: float
    state: HandshakeState = HandshakeState.INITIATED


@dataclass(frozen=True)
class HandshakeResult:
    tenant_id: str
    credential: Credential
    used_fallback: bool = False
    state: HandshakeState = HandshakeState.SUCCEEDED


def generate_nonce() -> str:
    """Single-use anti-replay value sent as the OAuth state parameter."""
    return secrets.token_urlsafe(NONCE_BYTES)


def build_authorize_url(
    *,
    tenant_id: str,
    client_id: str,
    scopes: str,
    redirect_uri: str,
    state: str,
    scheme: str = "https",
) -> str:
    """Authorization URL at the tenant's admin host."""
    params = {
        "client_id": client_id,
        "scope": scopes,
        "redirect_uri": redirect_uri,
        "state": state,
    }
    return f"{scheme}://{tenant_id}/admin/oauth/authorize?{urlencode(params)}"


def states_match(expected: str, returned: str | None) -> bool:
    """Constant-time comparison of the stored nonce and the returned state."""
    return hmac.compare_digest(expected.encode("utf-8"), (returned or "").encode("utf-8"))


class HandshakeCoordinator:
    def __init__(
        self,
        *,
        primary: NoncePrimary,
        fallback: NonceFallback,
        exchanger: CredentialExchanger,
        session_store: SessionStore,
        tenants: TenantRegistrar,
        client_id: str,
        scopes: str,
        redirect_uri: str,
        audit: AuditTrail | None = None,
        clock: Callable[[], float] = time.time,
    ):
        primary_ttl = getattr(primary, "ttl_seconds", None)
        if primary_ttl is not None and primary_ttl != fallback.ttl_seconds:
            raise ValueError(
                f"Carrier TTL ({fallback.ttl_seconds}s) must equal nonce store TTL ({primary_ttl}s)"
            )
        self.primary = primary
        self.fallback = fallback
        self.exchanger = exchanger
        self.session_store = session_store
        self.tenants = tenants
        self.client_id = client_id
        self.scopes = scopes
        self.redirect_uri = redirect_uri
        self.ttl_seconds = fallback.ttl_seconds
        self._audit = audit
        self._clock = clock

    def _record(self, event_type: str, tenant_id: str | None, outcome: str, client_ip: str | None) -> None:
        if self._audit is not None:
            self._audit.record(event_type, tenant_id=tenant_id, ip=client_ip, outcome=outcome)

    def initiate(self, tenant_id: str, *, client_ip: str | None = None) -> HandshakeStart:
        """
        Validate tenant, mint a nonce, store it (primary + carrier), and build the redirect.
        Raises InvalidTenant before any state is written.
        """
        tenant = validate_tenant_id(tenant_id)
        self.tenants.ensure(tenant)

        nonce = generate_nonce()
        self.primary.put(tenant, nonce, self.ttl_seconds)
        carrier_token = self.fallback.issue(nonce, self.ttl_seconds, tenant_id=tenant)
        url = build_authorize_url(
            tenant_id=tenant,
            client_id=self.client_id,
            scopes=self.scopes,
            redirect_uri=self.redirect_uri,
            state=nonce,
        )
        logger.info("Handshake initiated for %s", tenant)
        self._record(EVENT_HANDSHAKE_INITIATED, tenant, OUTCOME_SUCCESS, client_ip)
        return HandshakeStart(
            tenant_id=tenant,
            nonce=nonce,
            authorize_url=url,
            carrier_token=carrier_token,
            expires_at=self._clock() + self.ttl_seconds,
        )

    def _recover_nonce(self, tenant: str, carrier_token: str | None) -> tuple[str, bool]:
        """Return (nonce, used_fallback) or raise HandshakeNotFound."""
        nonce = self.primary.take(tenant)
        consumed_until = self._clock() + self.ttl_seconds
        if nonce is not None:
            self.primary.mark_consumed(tenant, nonce, consumed_until)
            return nonce, False
        try:
            nonce = self.fallback.read(carrier_token, tenant_id=tenant)
        except CarrierError as e:
            logger.debug("Carrier rejected for %s: %s", tenant, e)
            raise HandshakeNotFound() from None
        if not self.primary.mark_consumed(tenant, nonce, consumed_until):
            raise HandshakeNotFound()
        return nonce, True

    def complete(
        self,
        tenant_id: str,
        returned_state: str | None,
        authorization_code: str | None,
        carrier_token: str | None = None,
        *,
        client_ip: str | None = None,
    ) -> HandshakeResult:
        """
        Validate the returned state against the pending nonce, exchange the code, and upsert
        the tenant's background credential. The pending nonce is consumed whether or not
        completion succeeds.
        """
        tenant = validate_tenant_id(tenant_id)

        try:
            nonce, used_fallback = self._recover_nonce(tenant, carrier_token)
        except HandshakeNotFound:
            logger.info("Handshake not found for %s", tenant)
            self._record(EVENT_HANDSHAKE_NOT_FOUND, tenant, OUTCOME_FAIL, client_ip)
            raise

        if used_fallback:
            logger.info("Handshake for %s recovered from carrier token", tenant)
            self._record(EVENT_FALLBACK_USED, tenant, OUTCOME_SUCCESS, client_ip)

        if not states_match(nonce, returned_state):
            logger.warning("State mismatch for %s: possible replay attack", tenant)
            self._record(EVENT_STATE_MISMATCH, tenant, OUTCOME_FAIL, client_ip)
            raise StateMismatch()

        # No locks held across the network call
        try:
            exchanged = self.exchanger.exchange(tenant, authorization_code or "")
        except ExchangeError as e:
            logger.warning("Credential exchange failed for %s: %s", tenant, e)
            self._record(EVENT_EXCHANGE_FAILED, tenant, OUTCOME_FAIL, client_ip)
            raise ExchangeFailed() from e

        try:
            credential = self.session_store.put(
                CredentialData(
                    tenant_id=tenant,
                    kind=KIND_BACKGROUND,
                    token=exchanged.token,
                    granted_scopes=exchanged.scopes,
                    expires_at=exchanged.expires_at,
                )
            )
        except UnknownTenantError as e:
            # Tenant row vanished between initiation and completion (e.g. database reset)
            logger.warning("Cannot store credential for %s: %s", tenant, e)
            self._record(EVENT_EXCHANGE_FAILED, tenant, OUTCOME_FAIL, client_ip)
            raise ExchangeFailed() from e
        self.tenants.mark_installed(tenant)
        logger.info("Handshake completed for %s (scopes=%s)", tenant, credential.granted_scopes)
        self._record(EVENT_HANDSHAKE_COMPLETED, tenant, OUTCOME_SUCCESS, client_ip)
        return HandshakeResult(tenant_id=tenant, credential=credential, used_fallback=used_fallback)
