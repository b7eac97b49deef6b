"""
Revocation webhook (POST /webhooks). Verifies the platform HMAC over the raw body, then on
app/uninstalled drops the shop's credentials, bindings, and active flag.
Always answers 200 so the platform does not retry; the body reports success.
"""
import base64
import hashlib
import hmac
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from storefront_auth.audit import EVENT_CREDENTIALS_REVOKED, OUTCOME_SUCCESS, get_client_ip, log_audit
from storefront_auth.bindings import unbind_tenant
from storefront_auth.config import API_SECRET
from storefront_auth.database import get_db
from storefront_auth.errors import InvalidTenant
from storefront_auth.services import get_session_store, get_tenants
from storefront_auth.tenants import validate_tenant_id

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])

TOPIC_APP_UNINSTALLED = "app/uninstalled"


def compute_hmac(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_hmac(raw_body: bytes, header_value: str | None, secret: str | None = None) -> bool:
    if secret is None:
        secret = API_SECRET
    if not header_value or not secret:
        return False
    return hmac.compare_digest(compute_hmac(raw_body, secret), header_value.strip())


def _result(success: bool, code: str | None = None, message: str | None = None) -> dict:
    body = {"success": success, "timestamp": datetime.now(timezone.utc).isoformat()}
    if code:
        body["error"] = {"code": code, "message": message}
    return body


def revoke_tenant(db: Session, tenant_id: str, ip: str | None = None) -> int:
    """Delete all credentials and bindings for tenant and deactivate it. Returns credentials removed."""
    removed = get_session_store().delete_all(tenant_id)
    unbind_tenant(db, tenant_id)
    get_tenants().deactivate(tenant_id)
    log_audit(db, EVENT_CREDENTIALS_REVOKED, tenant_id=tenant_id, ip=ip, outcome=OUTCOME_SUCCESS)
    return removed


@router.post("/webhooks")
async def webhooks(request: Request, db: Session = Depends(get_db)):
    raw = await request.body()
    if not verify_webhook_hmac(raw, request.headers.get("x-shopify-hmac-sha256")):
        logger.warning("Webhook HMAC verification failed")
        return _result(False, "INVALID_HMAC", "HMAC verification failed")

    topic = request.headers.get("x-shopify-topic")
    if not topic:
        return _result(False, "MISSING_TOPIC", "Missing topic header")

    try:
        tenant_id = validate_tenant_id(request.headers.get("x-shopify-shop-domain"))
    except InvalidTenant:
        return _result(False, "MISSING_SHOP", "Could not determine shop")

    if topic == TOPIC_APP_UNINSTALLED:
        removed = await run_in_threadpool(revoke_tenant, db, tenant_id, get_client_ip(request))
        logger.info("App uninstalled by %s; removed %d credential(s)", tenant_id, removed)
    else:
        logger.debug("Ignoring webhook topic %s for %s", topic, tenant_id)
    return _result(True)
