"""
Login Throttling Service

WHY: Prevent brute-force password attacks by limiting failed login attempts.

- Failed attempts are counted from the audit trail (STAFF_LOGIN / PLAYER_LOGIN
  events with success=False), keyed by login identifier
- MAX_FAILED_ATTEMPTS failures within LOCKOUT_WINDOW lock the identifier
  for LOCKOUT_DURATION after the most recent failure
"""

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import as_utc_naive, utcnow


MAX_FAILED_ATTEMPTS = 10
LOCKOUT_WINDOW = timedelta(minutes=15)
LOCKOUT_DURATION = timedelta(minutes=15)

LOGIN_EVENT_TYPES = ("STAFF_LOGIN", "PLAYER_LOGIN")

# Malformed requests (VALIDATION) are audited but never count toward lockout.
THROTTLED_REASONS = ("INVALID_CREDENTIALS", "ACCOUNT_LOCKED")


def identifier_for(username: str, tenant_id: int | None = None) -> str:
    """Throttle key; player logins are namespaced by tenant."""
    name = (username or "").strip().lower()
    return f"{tenant_id}:{name}" if tenant_id is not None else name


def _failures_query(identifier: str):
    return db.session.query(AuditEvent).filter(
        AuditEvent.event_type.in_(LOGIN_EVENT_TYPES),
        AuditEvent.success.is_(False),
        AuditEvent.reason.in_(THROTTLED_REASONS),
        AuditEvent.subject == identifier,
    )


def get_recent_failed_attempts(identifier: str) -> int:
    cutoff = utcnow() - LOCKOUT_WINDOW
    return _failures_query(identifier).filter(AuditEvent.occurred_at >= cutoff).count()


def is_account_locked(identifier: str) -> tuple[bool, int | None]:
    """(True, seconds_remaining) while locked, else (False, None)."""
    if get_recent_failed_attempts(identifier) < MAX_FAILED_ATTEMPTS:
        return False, None

    most_recent = _failures_query(identifier).order_by(AuditEvent.occurred_at.desc()).first()
    if most_recent is None:
        return False, None

    lockout_end = as_utc_naive(most_recent.occurred_at) + LOCKOUT_DURATION
    now = utcnow()
    if now < lockout_end:
        return True, int((lockout_end - now).total_seconds())
    return False, None


def get_lockout_status(identifier: str) -> dict:
    locked, seconds_remaining = is_account_locked(identifier)
    return {
        "locked": locked,
        "failed_attempts": get_recent_failed_attempts(identifier),
        "max_attempts": MAX_FAILED_ATTEMPTS,
        "seconds_until_unlock": seconds_remaining,
    }
