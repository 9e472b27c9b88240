# Overview: Retention sweeps for the audit trail and dead sessions.

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow


def cleanup_audit_events(*, retention_days: int = 365) -> int:
    """
    Delete audit events older than retention_days.

    Ledger events are never touched; they are the financial record.
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(AuditEvent).filter(
        AuditEvent.occurred_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
