"""
Process-wide component wiring. Built lazily on first use (or at app startup); tests call
reset_services() or install their own components with configure().
"""
import logging

from storefront_auth.audit import AuditTrail
from storefront_auth.carrier import HandshakeCarrier
from storefront_auth.config import (
    API_KEY,
    HANDSHAKE_TTL_SECONDS,
    RATE_LIMIT_INITIATE_PER_MINUTE,
    REDIRECT_URI,
    SCOPES,
    SWEEP_INTERVAL_SECONDS,
)
from storefront_auth.database import SessionLocal
from storefront_auth.exchange import HttpCredentialExchanger
from storefront_auth.handshake import HandshakeCoordinator
from storefront_auth.nonce_store import NonceStore
from storefront_auth.rate_limit import SlidingWindowLimiter
from storefront_auth.resolver import SessionResolver
from storefront_auth.session_store import SessionStore
from storefront_auth.tenants import TenantRegistry

logger = logging.getLogger(__name__)

# Module-level state (set at app startup or first use)
_nonce_store: NonceStore | None = None
_coordinator: HandshakeCoordinator | None = None
_session_store: SessionStore | None = None
_resolver: SessionResolver | None = None
_tenants: TenantRegistry | None = None
_initiate_limiter: SlidingWindowLimiter | None = None


def _ensure_built() -> None:
    global _nonce_store, _coordinator, _session_store, _resolver, _tenants, _initiate_limiter
    if _coordinator is not None:
        return
    _nonce_store = NonceStore(ttl_seconds=HANDSHAKE_TTL_SECONDS, sweep_interval=SWEEP_INTERVAL_SECONDS)
    _session_store = SessionStore(SessionLocal)
    _tenants = TenantRegistry(SessionLocal)
    _resolver = SessionResolver(SessionLocal, _session_store)
    _initiate_limiter = SlidingWindowLimiter(RATE_LIMIT_INITIATE_PER_MINUTE)
    _coordinator = HandshakeCoordinator(
        primary=_nonce_store,
        fallback=HandshakeCarrier.from_config(),
        exchanger=HttpCredentialExchanger(),
        session_store=_session_store,
        tenants=_tenants,
        client_id=API_KEY,
        scopes=SCOPES,
        redirect_uri=REDIRECT_URI,
        audit=AuditTrail(SessionLocal),
    )
    logger.info("Storefront auth components initialized (handshake ttl=%ds)", HANDSHAKE_TTL_SECONDS)


def configure(
    *,
    nonce_store: NonceStore | None = None,
    coordinator: HandshakeCoordinator | None = None,
    session_store: SessionStore | None = None,
    resolver: SessionResolver | None = None,
    tenants: TenantRegistry | None = None,
    initiate_limiter: SlidingWindowLimiter | None = None,
) -> None:
    """Replace individual components (tests, alternative deployments). Unset ones are built by default."""
    global _nonce_store, _coordinator, _session_store, _resolver, _tenants, _initiate_limiter
    _ensure_built()
    if nonce_store is not None:
        _nonce_store = nonce_store
    if coordinator is not None:
        _coordinator = coordinator
    if session_store is not None:
        _session_store = session_store
    if resolver is not None:
        _resolver = resolver
    if tenants is not None:
        _tenants = tenants
    if initiate_limiter is not None:
        _initiate_limiter = initiate_limiter


def reset_services() -> None:
    """Stop the sweeper and drop all components; the next getter rebuilds them."""
    global _nonce_store, _coordinator, _session_store, _resolver, _tenants, _initiate_limiter
    if _nonce_store is not None:
        _nonce_store.shutdown()
    _nonce_store = _coordinator = _session_store = _resolver = _tenants = _initiate_limiter = None


def get_nonce_store() -> NonceStore:
    _ensure_built()
    return _nonce_store


def get_coordinator() -> HandshakeCoordinator:
    _ensure_built()
    return _coordinator


def get_session_store() -> SessionStore:
    _ensure_built()
    return _session_store


def get_resolver() -> SessionResolver:
    _ensure_built()
    return _resolver


def get_tenants() -> TenantRegistry:
    _ensure_built()
    return _tenants


def get_initiate_limiter() -> SlidingWindowLimiter:
    _ensure_built()
    return _initiate_limiter
