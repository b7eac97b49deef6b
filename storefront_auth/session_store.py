"""
Durable credential storage keyed by tenant and kind.

At most one background credential per tenant: its id is always "offline_<tenant>", so put()
replaces rather than duplicates. Interactive credentials are one per end user
("<tenant>_<user>") and expire independently; expired ones are deleted when encountered.
Writes for the same (tenant, kind) are serialized so the last writer wins.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import delete, select

from storefront_auth.errors import UnknownTenantError
from storefront_auth.models import CREDENTIAL_KINDS, KIND_BACKGROUND, KIND_INTERACTIVE, Credential, Tenant

logger = logging.getLogger(__name__)


def background_credential_id(tenant_id: str) -> str:
    return f"offline_{tenant_id}"


def interactive_credential_id(tenant_id: str, user_id: str) -> str:
    return f"{tenant_id}_{user_id}"


@dataclass
class CredentialData:
    """Values for a credential write; the store derives credential_id from tenant, kind and user."""
    tenant_id: str
    kind: str
    token: str
    granted_scopes: list[str] = field(default_factory=list)
    expires_at: datetime | None = None
    associated_user_id: str | None = None

    def credential_id(self) -> str:
        if self.kind == KIND_BACKGROUND:
            return background_credential_id(self.tenant_id)
        if not self.associated_user_id:
            raise ValueError("interactive credential requires associated_user_id")
        return interactive_credential_id(self.tenant_id, self.associated_user_id)


def _check_kind(kind: str) -> None:
    if kind not in CREDENTIAL_KINDS:
        raise ValueError(f"Unknown credential kind: {kind!r}")


class SessionStore:
    """put / get / delete over the credentials table. session_factory yields SQLAlchemy sessions."""

    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._write_locks: dict[tuple[str, str], threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _write_lock(self, tenant_id: str, kind: str) -> threading.Lock:
        key = (tenant_id, kind)
        with self._registry_lock:
            lock = self._write_locks.get(key)
            if lock is None:
                lock = self._write_locks[key] = threading.Lock()
            return lock

    def put(self, data: CredentialData) -> Credential:
        """Insert or replace the credential. Raises UnknownTenantError if the tenant does not exist."""
        _check_kind(data.kind)
        if not data.token:
            raise ValueError("credential token must not be empty")
        credential_id = data.credential_id()
        scopes = " ".join(sorted(set(s for s in data.granted_scopes if s)))
        now = datetime.now(timezone.utc)
        with self._write_lock(data.tenant_id, data.kind):
            with self._session_factory() as db:
                if db.get(Tenant, data.tenant_id) is None:
                    raise UnknownTenantError(f"Tenant does not exist: {data.tenant_id}")
                row = db.get(Credential, credential_id)
                if row is None:
                    row = Credential(
                        credential_id=credential_id,
                        tenant_id=data.tenant_id,
                        kind=data.kind,
                        created_at=now,
                    )
                    db.add(row)
                row.token = data.token
                row.granted_scopes = scopes
                row.expires_at = data.expires_at
                row.associated_user_id = data.associated_user_id
                row.updated_at = now
                db.commit()
                logger.info("Stored %s credential for %s", data.kind, data.tenant_id)
                return row

    def get(self, tenant_id: str, kind: str = KIND_BACKGROUND) -> Credential | None:
        """
        Background: the tenant's single credential. Interactive: the most recently updated
        unexpired one. Expired interactive credentials found on the way are deleted.
        """
        _check_kind(kind)
        with self._session_factory() as db:
            if kind == KIND_BACKGROUND:
                row = db.get(Credential, background_credential_id(tenant_id))
                if row is not None and row.is_expired():
                    self._drop(db, [row])
                    return None
                return row
            rows = db.scalars(
                select(Credential)
                .where(Credential.tenant_id == tenant_id, Credential.kind == KIND_INTERACTIVE)
                .order_by(Credential.updated_at.desc())
            ).all()
            live = [r for r in rows if not r.is_expired()]
            self._drop(db, [r for r in rows if r.is_expired()])
            return live[0] if live else None

    def get_by_id(self, credential_id: str) -> Credential | None:
        with self._session_factory() as db:
            row = db.get(Credential, credential_id)
            if row is not None and row.is_expired():
                self._drop(db, [row])
                return None
            return row

    def find_for_tenant(self, tenant_id: str) -> list[Credential]:
        """All unexpired credentials of any kind for tenant."""
        with self._session_factory() as db:
            rows = db.scalars(select(Credential).where(Credential.tenant_id == tenant_id)).all()
            self._drop(db, [r for r in rows if r.is_expired()])
            return [r for r in rows if not r.is_expired()]

    def delete(self, tenant_id: str, kind: str) -> int:
        """Remove every credential of kind for tenant. Returns number removed."""
        _check_kind(kind)
        with self._write_lock(tenant_id, kind):
            with self._session_factory() as db:
                result = db.execute(
                    delete(Credential).where(Credential.tenant_id == tenant_id, Credential.kind == kind)
                )
                db.commit()
                removed = result.rowcount or 0
        if removed:
            logger.info("Deleted %d %s credential(s) for %s", removed, kind, tenant_id)
        return removed

    def delete_all(self, tenant_id: str) -> int:
        return sum(self.delete(tenant_id, kind) for kind in CREDENTIAL_KINDS)

    @staticmethod
    def _drop(db, rows: list[Credential]) -> None:
        if not rows:
            return
        for row in rows:
            db.delete(row)
        db.commit()
        logger.debug("Dropped %d expired credential(s)", len(rows))
