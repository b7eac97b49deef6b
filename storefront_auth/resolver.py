"""
Session resolution for downstream callers: external caller id -> tenant -> background credential.

The binding lookup is the tenant-isolation boundary. Nothing here accepts a tenant id from the
caller; a caller only ever reaches the tenant it was provisioned for.
"""
import logging
from typing import Any, Mapping

from storefront_auth.bindings import get_tenant_for_caller
from storefront_auth.errors import NotAuthenticated, UnknownCaller
from storefront_auth.models import KIND_BACKGROUND, Credential
from storefront_auth.session_store import SessionStore
from storefront_auth.tenants import is_active_tenant

logger = logging.getLogger(__name__)

_CALLER_HEADERS = ("x-vapi-assistant-id", "x-assistant-id")


def extract_caller_id(headers: Mapping[str, str], body: Any) -> str | None:
    """Caller id from headers first, then the common body shapes sent by the voice platform."""
    for name in _CALLER_HEADERS:
        value = headers.get(name)
        if value:
            return value
    if not isinstance(body, dict):
        return None
    candidates = [
        body.get("assistantId"),
        body.get("assistant_id"),
        (body.get("assistant") or {}).get("id") if isinstance(body.get("assistant"), dict) else None,
        (body.get("call") or {}).get("assistantId") if isinstance(body.get("call"), dict) else None,
    ]
    message = body.get("message")
    if isinstance(message, dict) and isinstance(message.get("assistant"), dict):
        candidates.append(message["assistant"].get("id"))
    for value in candidates:
        if isinstance(value, str) and value:
            return value
    return None


class SessionResolver:
    def __init__(self, session_factory, session_store: SessionStore):
        self._session_factory = session_factory
        self.session_store = session_store

    def resolve(self, external_caller_id: str | None) -> Credential:
        """
        Raises UnknownCaller if no binding exists, NotAuthenticated if the bound tenant has no
        background credential (or was uninstalled).
        """
        with self._session_factory() as db:
            tenant_id = get_tenant_for_caller(db, external_caller_id or "")
            if tenant_id is None:
                logger.info("No tenant bound to caller %s", external_caller_id)
                raise UnknownCaller()
            active = is_active_tenant(db, tenant_id)
        if not active:
            logger.info("Caller %s bound to inactive tenant %s", external_caller_id, tenant_id)
            raise NotAuthenticated()
        credential = self.session_store.get(tenant_id, KIND_BACKGROUND)
        if credential is None:
            logger.info("Tenant %s has not completed authorization", tenant_id)
            raise NotAuthenticated()
        return credential
