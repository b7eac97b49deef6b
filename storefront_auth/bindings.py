"""
Caller-to-tenant bindings. Provisioning (e.g. attaching a voice assistant to a shop) writes them;
the session resolver only reads them.
"""
import logging

from sqlalchemy import delete
from sqlalchemy.orm import Session

from storefront_auth.errors import UnknownTenantError
from storefront_auth.models import CallerBinding, Tenant

logger = logging.getLogger(__name__)


def bind_caller(db: Session, external_caller_id: str, tenant_id: str) -> CallerBinding:
    """Create or re-point the binding for external_caller_id."""
    if not external_caller_id or not external_caller_id.strip():
        raise ValueError("external_caller_id is required")
    if db.get(Tenant, tenant_id) is None:
        raise UnknownTenantError(f"Tenant does not exist: {tenant_id}")
    caller_id = external_caller_id.strip()
    binding = db.get(CallerBinding, caller_id)
    if binding is None:
        binding = CallerBinding(external_caller_id=caller_id, tenant_id=tenant_id)
        db.add(binding)
    elif binding.tenant_id != tenant_id:
        logger.info("Re-binding caller %s from %s to %s", caller_id, binding.tenant_id, tenant_id)
        binding.tenant_id = tenant_id
    db.commit()
    return binding


def get_tenant_for_caller(db: Session, external_caller_id: str) -> str | None:
    if not external_caller_id:
        return None
    binding = db.get(CallerBinding, external_caller_id.strip())
    return binding.tenant_id if binding else None


def unbind_caller(db: Session, external_caller_id: str) -> bool:
    binding = db.get(CallerBinding, external_caller_id)
    if binding is None:
        return False
    db.delete(binding)
    db.commit()
    return True


def unbind_tenant(db: Session, tenant_id: str) -> int:
    """Remove every binding owned by tenant (on uninstall)."""
    result = db.execute(delete(CallerBinding).where(CallerBinding.tenant_id == tenant_id))
    db.commit()
    return result.rowcount or 0
