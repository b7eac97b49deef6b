"""
Tests for the handshake coordinator: nonce lifecycle, carrier fallback, replay protection,
and background credential persistence.
"""
from urllib.parse import parse_qs, urlparse

import pytest

from storefront_auth.audit import AuditTrail, query_audit_logs
from storefront_auth.carrier import HandshakeCarrier
from storefront_auth.database import SessionLocal
from storefront_auth.errors import (
    ExchangeError,
    ExchangeFailed,
    HandshakeNotFound,
    InvalidTenant,
    StateMismatch,
)
from storefront_auth.exchange import ExchangedCredential
from storefront_auth.handshake import (
    HandshakeCoordinator,
    HandshakeState,
    build_authorize_url,
    states_match,
)
from storefront_auth.models import KIND_BACKGROUND, AuditLog, Credential, Tenant
from storefront_auth.nonce_store import NonceStore
from storefront_auth.session_store import SessionStore
from storefront_auth.tenants import TenantRegistry

SECRET = "handshake-test-secret-0123456789abcdef0123456789"


class FakeExchanger:
    def __init__(self, token="shpat_token", scopes=("read_products",), fail=False):
        self.token = token
        self.scopes = list(scopes)
        self.fail = fail
        self.calls = []

    def exchange(self, tenant_id, authorization_code):
        self.calls.append((tenant_id, authorization_code))
        if self.fail:
            raise ExchangeError("rejected")
        return ExchangedCredential(token=f"{self.token}-{tenant_id}", scopes=self.scopes)


@pytest.fixture
def nonce_store(clock):
    return NonceStore(ttl_seconds=600, clock=clock)


@pytest.fixture
def carrier(clock):
    return HandshakeCarrier(SECRET, ttl_seconds=600, clock=clock)


@pytest.fixture
def exchanger():
    return FakeExchanger()


@pytest.fixture
def session_store():
    return SessionStore(SessionLocal)


@pytest.fixture
def coordinator(nonce_store, carrier, exchanger, session_store, clock):
    return HandshakeCoordinator(
        primary=nonce_store,
        fallback=carrier,
        exchanger=exchanger,
        session_store=session_store,
        tenants=TenantRegistry(SessionLocal),
        client_id="test-api-key",
        scopes="read_products,read_orders",
        redirect_uri="https://app.example/auth/callback",
        audit=AuditTrail(SessionLocal),
        clock=clock,
    )


# --- initiate ---


def test_initiate_returns_redirect_with_nonce_as_state(coordinator, nonce_store):
    start = coordinator.initiate("Shop-A.example.com")
    assert start.tenant_id == "shop-a.example.com"
    assert start.state == HandshakeState.INITIATED
    assert len(start.nonce) >= 43  # 256 bits base64url
    parsed = urlparse(start.authorize_url)
    assert parsed.scheme == "https"
    assert parsed.netloc == "shop-a.example.com"
    assert parsed.path == "/admin/oauth/authorize"
    query = parse_qs(parsed.query)
    assert query["state"] == [start.nonce]
    assert query["client_id"] == ["test-api-key"]
    assert query["redirect_uri"] == ["https://app.example/auth/callback"]
    assert nonce_store.peek("shop-a.example.com").nonce == start.nonce


def test_initiate_issues_carrier_with_same_nonce(coordinator, carrier):
    start = coordinator.initiate("shop-a")
    assert carrier.read(start.carrier_token, tenant_id="shop-a") == start.nonce


def test_initiate_registers_tenant(coordinator, db):
    coordinator.initiate("shop-a")
    tenant = db.get(Tenant, "shop-a")
    assert tenant is not None
    assert tenant.is_active is True


def test_initiate_nonces_are_unique(coordinator):
    assert coordinator.initiate("shop-a").nonce != coordinator.initiate("shop-a").nonce


@pytest.mark.parametrize("bad", ["", "   ", "shop a", "-shop.com", "shop..com", "sh@p.com", "a" * 300])
def test_initiate_invalid_tenant_mutates_nothing(coordinator, nonce_store, db, bad):
    with pytest.raises(InvalidTenant):
        coordinator.initiate(bad)
    assert len(nonce_store) == 0
    assert db.query(Tenant).count() == 0


# --- complete ---


def test_complete_success_stores_background_credential(coordinator, session_store):
    start = coordinator.initiate("shop-a")
    result = coordinator.complete("shop-a", start.nonce, "code-1", start.carrier_token)
    assert result.state == HandshakeState.SUCCEEDED
    assert result.used_fallback is False
    cred = session_store.get("shop-a", KIND_BACKGROUND)
    assert cred is not None
    assert cred.token == "shpat_token-shop-a"
    assert cred.kind == KIND_BACKGROUND
    assert cred.expires_at is None


def test_complete_marks_tenant_installed(coordinator, db):
    start = coordinator.initiate("shop-a")
    coordinator.complete("shop-a", start.nonce, "code-1", start.carrier_token)
    assert db.get(Tenant, "shop-a").installed_at is not None


def test_second_initiate_invalidates_first(coordinator):
    first = coordinator.initiate("shop-a")
    coordinator.initiate("shop-a")
    with pytest.raises((HandshakeNotFound, StateMismatch)):
        coordinator.complete("shop-a", first.nonce, "code-1", first.carrier_token)


def test_orphaned_carrier_rejected_after_mismatch_consumed_second(coordinator, exchanger, session_store):
    first = coordinator.initiate("shop-a")
    coordinator.initiate("shop-a")
    with pytest.raises(StateMismatch):
        coordinator.complete("shop-a", first.nonce, "code-1", first.carrier_token)
    with pytest.raises(HandshakeNotFound):
        coordinator.complete("shop-a", first.nonce, "code-1", first.carrier_token)
    assert exchanger.calls == []
    assert session_store.get("shop-a", KIND_BACKGROUND) is None


def test_orphaned_carrier_rejected_after_second_completes(coordinator, exchanger):
    first = coordinator.initiate("shop-a")
    second = coordinator.initiate("shop-a")
    coordinator.complete("shop-a", second.nonce, "code-2", second.carrier_token)
    with pytest.raises(HandshakeNotFound):
        coordinator.complete("shop-a", first.nonce, "code-1", first.carrier_token)
    assert exchanger.calls == [("shop-a", "code-2")]


def test_complete_succeeds_at_most_once(coordinator):
    start = coordinator.initiate("shop-a")
    coordinator.complete("shop-a", start.nonce, "code-1", start.carrier_token)
    with pytest.raises(HandshakeNotFound):
        coordinator.complete("shop-a", start.nonce, "code-1", start.carrier_token)


def test_replay_without_carrier_is_not_found(coordinator):
    start = coordinator.initiate("shop-a")
    coordinator.complete("shop-a", start.nonce, "code-1", start.carrier_token)
    with pytest.raises(HandshakeNotFound):
        coordinator.complete("shop-a", start.nonce, "code-1", None)


def test_complete_after_ttl_fails_even_with_carrier(coordinator, clock):
    start = coordinator.initiate("shop-a")
    clock.advance(601)
    with pytest.raises(HandshakeNotFound):
        coordinator.complete("shop-a", start.nonce, "code-1", start.carrier_token)


def test_complete_after_restart_uses_carrier(coordinator, nonce_store, session_store):
    start = coordinator.initiate("shop-a")
    nonce_store.clear()
    result = coordinator.complete("shop-a", start.nonce, "code-1", start.carrier_token)
    assert result.used_fallback is True
    assert session_store.get("shop-a", KIND_BACKGROUND) is not None


def test_carrier_fallback_is_single_use(coordinator, nonce_store):
    start = coordinator.initiate("shop-a")
    nonce_store.clear()
    coordinator.complete("shop-a", start.nonce, "code-1", start.carrier_token)
    with pytest.raises(HandshakeNotFound):
        coordinator.complete("shop-a", start.nonce, "code-1", start.carrier_token)


def test_complete_after_restart_without_carrier_fails(coordinator, nonce_store):
    start = coordinator.initiate("shop-a")
    nonce_store.clear()
    with pytest.raises(HandshakeNotFound):
        coordinator.complete("shop-a", start.nonce, "code-1", None)


def test_complete_never_initiated_fails(coordinator):
    with pytest.raises(HandshakeNotFound):
        coordinator.complete("shop-a", "made-up", "code-1", None)


def test_cross_tenant_nonce_is_state_mismatch(coordinator, session_store):
    a = coordinator.initiate("shop-a")
    b = coordinator.initiate("shop-b")
    assert coordinator.complete("shop-a", a.nonce, "code-a", a.carrier_token).tenant_id == "shop-a"
    with pytest.raises(StateMismatch):
        coordinator.complete("shop-b", a.nonce, "code-b", b.carrier_token)
    assert session_store.get("shop-b", KIND_BACKGROUND) is None


def test_carrier_for_other_tenant_after_restart_is_not_found(coordinator, nonce_store):
    a = coordinator.initiate("shop-a")
    coordinator.initiate("shop-b")
    nonce_store.clear()
    with pytest.raises(HandshakeNotFound):
        coordinator.complete("shop-b", a.nonce, "code-b", a.carrier_token)


def test_state_mismatch_consumes_pending_handshake(coordinator):
    start = coordinator.initiate("shop-a")
    with pytest.raises(StateMismatch):
        coordinator.complete("shop-a", "wrong-state", "code-1", None)
    with pytest.raises(HandshakeNotFound):
        coordinator.complete("shop-a", start.nonce, "code-1", None)


def test_missing_state_is_mismatch(coordinator):
    coordinator.initiate("shop-a")
    with pytest.raises(StateMismatch):
        coordinator.complete("shop-a", None, "code-1", None)


def test_exchange_failure_is_terminal(coordinator, exchanger, session_store):
    start = coordinator.initiate("shop-a")
    exchanger.fail = True
    with pytest.raises(ExchangeFailed):
        coordinator.complete("shop-a", start.nonce, "code-1", start.carrier_token)
    assert session_store.get("shop-a", KIND_BACKGROUND) is None
    exchanger.fail = False
    with pytest.raises(HandshakeNotFound):
        coordinator.complete("shop-a", start.nonce, "code-1", start.carrier_token)


def test_missing_tenant_row_at_completion_is_exchange_failed(coordinator, db):
    start = coordinator.initiate("shop-a")
    db.query(Tenant).filter(Tenant.tenant_id == "shop-a").delete()
    db.commit()
    with pytest.raises(ExchangeFailed):
        coordinator.complete("shop-a", start.nonce, "code-1", start.carrier_token)
    assert db.query(Credential).count() == 0


def test_exchange_not_called_on_mismatch(coordinator, exchanger):
    coordinator.initiate("shop-a")
    with pytest.raises(StateMismatch):
        coordinator.complete("shop-a", "other", "code-1", None)
    assert exchanger.calls == []


def test_repeat_handshake_replaces_background_credential(coordinator, exchanger, db):
    first = coordinator.initiate("shop-a")
    coordinator.complete("shop-a", first.nonce, "code-1", None)
    exchanger.token = "rotated"
    second = coordinator.initiate("shop-a")
    coordinator.complete("shop-a", second.nonce, "code-2", None)
    rows = db.query(Credential).filter(Credential.tenant_id == "shop-a").all()
    assert len(rows) == 1
    assert rows[0].token == "rotated-shop-a"


def test_complete_normalizes_tenant(coordinator):
    start = coordinator.initiate("shop-a.example.com")
    result = coordinator.complete("https://SHOP-A.example.com/", start.nonce, "code-1", None)
    assert result.tenant_id == "shop-a.example.com"


def test_ttl_mismatch_rejected(nonce_store, exchanger, session_store, clock):
    with pytest.raises(ValueError):
        HandshakeCoordinator(
            primary=nonce_store,
            fallback=HandshakeCarrier(SECRET, ttl_seconds=300, clock=clock),
            exchanger=exchanger,
            session_store=session_store,
            tenants=TenantRegistry(SessionLocal),
            client_id="k",
            scopes="s",
            redirect_uri="https://app.example/cb",
        )


# --- audit ---


def test_audit_records_outcomes_without_secrets(coordinator, db):
    start = coordinator.initiate("shop-a")
    with pytest.raises(StateMismatch):
        coordinator.complete("shop-a", "bogus", "code-1", None)
    with pytest.raises(HandshakeNotFound):
        coordinator.complete("shop-a", start.nonce, "code-1", None)
    events = [e["event_type"] for e in query_audit_logs(db, tenant_id="shop-a")]
    assert "handshake_initiated" in events
    assert "state_mismatch" in events
    assert "handshake_not_found" in events
    for row in db.query(AuditLog).all():
        values = [row.event_type, row.tenant_id or "", row.ip or "", row.outcome]
        assert all(start.nonce not in v for v in values)


# --- helpers ---


def test_states_match_constant_time_helper():
    assert states_match("abc", "abc") is True
    assert states_match("abc", "abd") is False
    assert states_match("abc", None) is False


def test_build_authorize_url():
    url = build_authorize_url(
        tenant_id="store.example.com",
        client_id="key",
        scopes="read_products",
        redirect_uri="https://app.example/auth/callback",
        state="s1",
    )
    assert url.startswith("https://store.example.com/admin/oauth/authorize?")
    assert "state=s1" in url
    assert "client_id=key" in url
    assert "scope=read_products" in url
