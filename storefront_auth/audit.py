"""
Audit logging for handshake and revocation events. No tokens, nonces, or codes are recorded.
GET /audit lists recent events.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storefront_auth.database import get_db
from storefront_auth.models import AuditLog

EVENT_HANDSHAKE_INITIATED = "handshake_initiated"
EVENT_HANDSHAKE_COMPLETED = "handshake_completed"
EVENT_HANDSHAKE_NOT_FOUND = "handshake_not_found"
EVENT_STATE_MISMATCH = "state_mismatch"
EVENT_EXCHANGE_FAILED = "exchange_failed"
EVENT_FALLBACK_USED = "carrier_fallback_used"
EVENT_CREDENTIALS_REVOKED = "credentials_revoked"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"


def get_client_ip(request: Request | None) -> str | None:
    """Client IP if available. Forwarding headers are not trusted."""
    if request is None or request.client is None:
        return None
    return getattr(request.client, "host", None)


def log_audit(
    db: Session,
    event_type: str,
    *,
    tenant_id: str | None = None,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
) -> None:
    """Append one audit record."""
    db.add(AuditLog(event_type=event_type, tenant_id=tenant_id, ip=ip, outcome=outcome))
    db.commit()


class AuditTrail:
    """Session-owning wrapper so components outside a request can record events."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def record(
        self,
        event_type: str,
        *,
        tenant_id: str | None = None,
        ip: str | None = None,
        outcome: str = OUTCOME_SUCCESS,
    ) -> None:
        with self._session_factory() as db:
            log_audit(db, event_type, tenant_id=tenant_id, ip=ip, outcome=outcome)


router = APIRouter(tags=["audit"])


def query_audit_logs(
    db: Session,
    *,
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    tenant_id: str | None = None,
) -> list[dict]:
    """Most recent first, optional filters."""
    q = db.query(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if event_type:
        q = q.filter(AuditLog.event_type == event_type)
    if outcome:
        q = q.filter(AuditLog.outcome == outcome)
    if tenant_id:
        q = q.filter(AuditLog.tenant_id == tenant_id)
    rows = q.limit(min(max(1, limit), 500)).all()
    return [
        {
            "created_at": r.created_at.isoformat() if r.created_at else None,
            "event_type": r.event_type,
            "tenant_id": r.tenant_id,
            "ip": r.ip,
            "outcome": r.outcome,
        }
        for r in rows
    ]


@router.get("/audit")
def list_audit_logs(
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    tenant_id: str | None = None,
    db: Session = Depends(get_db),
):
    """List recent audit events. Do not expose without an operator-only gateway in production."""
    return query_audit_logs(db, limit=limit, event_type=event_type, outcome=outcome, tenant_id=tenant_id)
