"""
Handshake endpoints.
GET /auth?shop=...: mint nonce, set carrier cookie, redirect to the shop's authorization page.
GET /auth/callback?shop=...&code=...&state=...&hmac=...: verify the platform signature, validate
state, exchange code, redirect home.
"""
import hashlib
import hmac
import logging
from typing import Iterable
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse

from storefront_auth.audit import get_client_ip
from storefront_auth.config import API_SECRET, APP_HOME_URL, CARRIER_COOKIE_NAME, CARRIER_COOKIE_SECURE
from storefront_auth.errors import RESTART_MESSAGE, HandshakeError, InvalidCallbackSignature
from storefront_auth.handshake import HandshakeCoordinator
from storefront_auth.services import get_coordinator, get_initiate_limiter

logger = logging.getLogger(__name__)
router = APIRouter()

_COOKIE_PATH = "/auth"
_UNSIGNED_PARAMS = ("hmac", "signature")


def compute_callback_hmac(params: Iterable[tuple[str, str]], secret: str) -> str:
    """Hex HMAC-SHA256 over the sorted "key=value" pairs joined by "&", without hmac/signature."""
    message = "&".join(f"{k}={v}" for k, v in sorted(params) if k not in _UNSIGNED_PARAMS)
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_callback_hmac(params: Iterable[tuple[str, str]], secret: str | None = None) -> bool:
    if secret is None:
        secret = API_SECRET
    params = list(params)
    provided = next((v for k, v in params if k == "hmac"), None)
    if not provided or not secret:
        return False
    return hmac.compare_digest(compute_callback_hmac(params, secret), provided.lower())


def _error_response(
    status_code: int, error: str, error_description: str, clear_carrier: bool = True
) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content={"detail": {"error": error, "error_description": error_description}},
    )
    if clear_carrier:
        # Handshake is terminal; the carrier is useless now
        response.delete_cookie(CARRIER_COOKIE_NAME, path=_COOKIE_PATH)
    return response


def _home_url(shop: str, host: str | None) -> str:
    params = {"shop": shop}
    if host:
        params["host"] = host
    sep = "&" if "?" in APP_HOME_URL else "?"
    return f"{APP_HOME_URL}{sep}{urlencode(params)}"


@router.get("/auth")
def initiate(
    request: Request,
    shop: str | None = None,
    coordinator: HandshakeCoordinator = Depends(get_coordinator),
):
    """
    Start a handshake for shop. A repeat call for the same shop orphans the earlier handshake.
    """
    ip = get_client_ip(request)
    allowed, retry_after = get_initiate_limiter().check_and_consume(ip or "unknown")
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail={"error": "rate_limited", "error_description": "Too many authorization attempts"},
            headers={"Retry-After": str(retry_after)},
        )
    try:
        start = coordinator.initiate(shop or "", client_ip=ip)
    except HandshakeError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_detail())

    response = RedirectResponse(url=start.authorize_url, status_code=302)
    response.set_cookie(
        CARRIER_COOKIE_NAME,
        start.carrier_token,
        max_age=coordinator.ttl_seconds,
        path=_COOKIE_PATH,
        secure=CARRIER_COOKIE_SECURE,
        httponly=True,
        samesite="lax",
    )
    return response


@router.get("/auth/callback")
def callback(
    request: Request,
    shop: str | None = None,
    code: str | None = None,
    state: str | None = None,
    host: str | None = None,
    error: str | None = None,
    coordinator: HandshakeCoordinator = Depends(get_coordinator),
):
    """
    Complete the handshake. Success redirects to the app home; failures return a structured
    error telling the user to restart authorization.
    """
    if error:
        logger.info("Authorization declined for %s: %s", shop, error)
        return _error_response(400, "access_denied", RESTART_MESSAGE)

    if not verify_callback_hmac(request.query_params.multi_items()):
        logger.warning("Callback signature check failed for %s", shop)
        e = InvalidCallbackSignature()
        return _error_response(e.http_status, e.error_code, e.user_message, clear_carrier=False)

    carrier_token = request.cookies.get(CARRIER_COOKIE_NAME)
    try:
        result = coordinator.complete(
            shop or "",
            state,
            code,
            carrier_token,
            client_ip=get_client_ip(request),
        )
    except HandshakeError as e:
        return _error_response(e.http_status, e.error_code, e.user_message)

    response = RedirectResponse(url=_home_url(result.tenant_id, host), status_code=302)
    response.delete_cookie(CARRIER_COOKIE_NAME, path=_COOKIE_PATH)
    return response
