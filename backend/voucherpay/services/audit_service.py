# Overview: Best-effort compliance trail written outside the financial transaction.

"""
Audit Trail

WHY: Every attempt at a sensitive operation (successful or not) leaves a
record for compliance review.

DESIGN PRINCIPLES:
- Separate channel: events are written through their own Session, after the
  financial transaction has committed or rolled back
- Fire-and-forget: a failed audit write is warn-logged and returns None; it
  never raises into the caller
- Sensitive values (PINs, passwords, tokens) never reach the audit table;
  voucher codes are masked
"""

from __future__ import annotations

from flask import current_app, has_request_context, request
from sqlalchemy.orm import Session

from ..errors import SettlementError
from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow


_SECRET_KEYS = {"pin", "password", "token", "password_hash", "token_hash"}


def mask_code(code: str | None) -> str | None:
    if not code:
        return code
    return "*" * max(len(code) - 2, 0) + code[-2:]


def _scrub(meta: dict | None) -> dict | None:
    if not meta:
        return None
    clean = {}
    for key, value in meta.items():
        if key in _SECRET_KEYS:
            continue
        if key == "code" and isinstance(value, str):
            value = mask_code(value)
        elif isinstance(value, dict):
            value = _scrub(value)
        clean[key] = value
    return clean


def _request_fields() -> dict:
    if not has_request_context():
        return {}
    return {
        "route": request.path,
        "method": request.method,
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }


def _write_event(fields: dict) -> int:
    with Session(db.engine) as session:
        event = AuditEvent(**fields)
        session.add(event)
        session.flush()
        event_id = event.id
        session.commit()
        return event_id


def log_event(
    *,
    event_type: str,
    success: bool,
    ctx=None,
    tenant_id: int | None = None,
    actor_type: str | None = None,
    actor_id: int | None = None,
    actor_role: str | None = None,
    subject: str | None = None,
    reason: str | None = None,
    status_code: int | None = None,
    meta: dict | None = None,
) -> int | None:
    """
    Record one audit event. Returns the event id, or None if it was dropped.

    ctx (a TenantContext) supplies tenant and actor fields not given
    explicitly.
    """
    if ctx is not None:
        tenant_id = tenant_id if tenant_id is not None else ctx.tenant_id
        actor_type = actor_type or ctx.actor_type
        actor_id = actor_id if actor_id is not None else ctx.actor_id
        actor_role = actor_role or ctx.role

    fields = {
        "tenant_id": tenant_id,
        "event_type": event_type,
        "success": success,
        "reason": reason,
        "actor_type": actor_type,
        "actor_id": actor_id,
        "actor_role": actor_role,
        "subject": subject,
        "status_code": status_code,
        "meta": _scrub(meta),
        "occurred_at": utcnow(),
    }
    fields.update(_request_fields())

    try:
        return _write_event(fields)
    except Exception:
        current_app.logger.warning("Dropped audit event %s", event_type, exc_info=True)
        return None


def failure_reason(exc: BaseException) -> str:
    if isinstance(exc, SettlementError):
        return exc.code
    return "UNEXPECTED"


def failure_status(exc: BaseException) -> int:
    if isinstance(exc, SettlementError):
        return exc.status_code
    return 500


def list_audit_events(
    ctx,
    *,
    event_type: str | None = None,
    success: bool | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    """Newest first, limited to the caller's tenant unless global."""
    limit = max(1, min(limit, 500))
    query = db.session.query(AuditEvent)
    if ctx.tenant_id is not None:
        query = query.filter(AuditEvent.tenant_id == ctx.tenant_id)
    if event_type:
        query = query.filter(AuditEvent.event_type == event_type)
    if success is not None:
        query = query.filter(AuditEvent.success.is_(success))
    return query.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).limit(limit).all()
