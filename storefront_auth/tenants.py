"""
Tenant identifiers (shop domains): normalization, validation, registration, deactivation.
"""
import logging
import re
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from storefront_auth.config import TENANT_DOMAIN_SUFFIX
from storefront_auth.errors import InvalidTenant
from storefront_auth.models import Tenant

logger = logging.getLogger(__name__)

# One or more DNS labels: letters, digits, inner hyphens; max 63 chars each
_LABEL = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
_DOMAIN_RE = re.compile(rf"^{_LABEL}(?:\.{_LABEL})*$")
_MAX_LENGTH = 255


def normalize_tenant_id(raw: str | None) -> str:
    """Trim, lower-case, strip scheme and path."""
    value = (raw or "").strip().lower()
    value = re.sub(r"^https?://", "", value)
    value = re.sub(r"/.*$", "", value)
    return value


def validate_tenant_id(raw: str | None, suffix: str = TENANT_DOMAIN_SUFFIX) -> str:
    """Return the normalized tenant id or raise InvalidTenant."""
    tenant_id = normalize_tenant_id(raw)
    if not tenant_id or len(tenant_id) > _MAX_LENGTH or not _DOMAIN_RE.match(tenant_id):
        raise InvalidTenant(f"Malformed tenant identifier: {raw!r}")
    if suffix and not (tenant_id.endswith("." + suffix) and len(tenant_id) > len(suffix) + 1):
        raise InvalidTenant(f"Tenant must be a *.{suffix} domain: {raw!r}")
    return tenant_id


def display_name_for(tenant_id: str) -> str:
    if TENANT_DOMAIN_SUFFIX and tenant_id.endswith("." + TENANT_DOMAIN_SUFFIX):
        return tenant_id[: -(len(TENANT_DOMAIN_SUFFIX) + 1)]
    return tenant_id.split(".", 1)[0]


class TenantRegistry:
    """Creates tenants on first initiation; never deletes them, only deactivates."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def ensure(self, tenant_id: str) -> Tenant:
        with self._session_factory() as db:
            tenant = db.get(Tenant, tenant_id)
            if tenant is None:
                tenant = Tenant(tenant_id=tenant_id, display_name=display_name_for(tenant_id), is_active=True)
                db.add(tenant)
                logger.info("Registered tenant %s", tenant_id)
            elif not tenant.is_active:
                tenant.is_active = True
                tenant.uninstalled_at = None
                logger.info("Reactivated tenant %s", tenant_id)
            db.commit()
            return tenant

    def mark_installed(self, tenant_id: str) -> None:
        with self._session_factory() as db:
            tenant = db.get(Tenant, tenant_id)
            if tenant is not None:
                tenant.is_active = True
                tenant.installed_at = datetime.now(timezone.utc)
                tenant.uninstalled_at = None
                db.commit()

    def deactivate(self, tenant_id: str) -> bool:
        with self._session_factory() as db:
            tenant = db.get(Tenant, tenant_id)
            if tenant is None:
                return False
            tenant.is_active = False
            tenant.uninstalled_at = datetime.now(timezone.utc)
            db.commit()
            logger.info("Deactivated tenant %s", tenant_id)
            return True

    def get(self, tenant_id: str) -> Tenant | None:
        with self._session_factory() as db:
            return db.get(Tenant, tenant_id)


def is_active_tenant(db: Session, tenant_id: str) -> bool:
    tenant = db.get(Tenant, tenant_id)
    return tenant is not None and tenant.is_active
