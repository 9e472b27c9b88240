from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditEvent(db.Model):
    """
    Compliance trail of sensitive action attempts, successful or not.

    Never joined into financial totals. Written in its own transaction after
    the financial transaction it documents has committed or rolled back.

    IMMUTABLE: Append-only; only the retention sweep deletes rows.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_tenant_occurred", "tenant_id", "occurred_at"),
        db.Index("ix_audit_events_type_occurred", "event_type", "occurred_at"),
        db.Index("ix_audit_events_subject", "subject"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # No FK: audit rows must be writable even for unknown tenants/actors.
    tenant_id = db.Column(db.Integer, nullable=True)

    event_type = db.Column(db.String(64), nullable=False)  # VOUCHER_ISSUE, STAFF_LOGIN, PERMISSION_DENIED, ...
    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)

    actor_type = db.Column(db.String(16), nullable=True)  # staff | player | system
    actor_id = db.Column(db.Integer, nullable=True)
    actor_role = db.Column(db.String(32), nullable=True)
    subject = db.Column(db.String(128), nullable=True)  # login identifier, voucher id, ...

    route = db.Column(db.String(255), nullable=True)
    method = db.Column(db.String(10), nullable=True)
    status_code = db.Column(db.Integer, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    meta = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_type": self.event_type,
            "success": self.success,
            "reason": self.reason,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "subject": self.subject,
            "route": self.route,
            "method": self.method,
            "status_code": self.status_code,
            "ip_address": self.ip_address,
            "meta": self.meta,
            "occurred_at": to_utc_z(self.occurred_at),
        }
