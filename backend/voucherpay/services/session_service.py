# Overview: Opaque bearer sessions for staff and players.

"""
Session Token Management

WHY: Secure session management with automatic timeout and revocation.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- 24-hour absolute timeout, 2-hour idle timeout
- Revocable on logout; deactivating the account or tenant ends the session
- Role, tenant and permission snapshot are fixed for the session lifetime
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import Player, SessionToken, StaffUser, Tenant
from ..models.auth import SUBJECT_PLAYER, SUBJECT_STAFF
from ..time_utils import as_utc_naive, utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass
class SessionContext:
    session: SessionToken
    subject_type: str
    staff: StaffUser | None
    player: Player | None
    tenant_id: int | None
    role: str
    permissions: list

    @property
    def actor_id(self) -> int:
        return self.staff.id if self.staff is not None else self.player.id


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    *,
    staff: StaffUser | None = None,
    player: Player | None = None,
    permissions: list | None = None,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Create a session for exactly one subject.

    Returns (session_record, plaintext_token); only the hash is stored.
    """
    if (staff is None) == (player is None):
        raise ValueError("Exactly one of staff or player is required")

    plaintext_token = generate_token()
    now = utcnow()

    if staff is not None:
        subject = {
            "subject_type": SUBJECT_STAFF,
            "staff_user_id": staff.id,
            "tenant_id": staff.tenant_id,
            "role": staff.role,
        }
    else:
        subject = {
            "subject_type": SUBJECT_PLAYER,
            "player_id": player.id,
            "tenant_id": player.tenant_id,
            "role": "player",
        }

    session = SessionToken(
        token_hash=hash_token(plaintext_token),
        permissions=list(permissions or []),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
        **subject,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its SessionContext, or None.

    Updates last_used_at on success.
    """
    if not token:
        return None
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if session is None:
        return None

    now = utcnow()
    if as_utc_naive(session.expires_at) < now:
        return None
    if now - as_utc_naive(session.last_used_at) > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout")
        return None

    staff = session.staff_user if session.subject_type == SUBJECT_STAFF else None
    player = session.player if session.subject_type == SUBJECT_PLAYER else None
    subject = staff or player
    if subject is None or not subject.is_active:
        _revoke(session, "Account deactivated")
        return None

    if session.tenant_id is not None:
        tenant = db.session.get(Tenant, session.tenant_id)
        if tenant is None or not tenant.is_active:
            _revoke(session, "Tenant deactivated")
            return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(
        session=session,
        subject_type=session.subject_type,
        staff=staff,
        player=player,
        tenant_id=session.tenant_id,
        role=session.role,
        permissions=list(session.permissions or []),
    )


def revoke_session(token: str, reason: str = "Logout") -> bool:
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if session is None:
        return False
    _revoke(session, reason)
    return True


def revoke_staff_sessions(staff_id: int, reason: str) -> int:
    """Revoke every active session of a staff user (role change, deactivation)."""
    now = utcnow()
    sessions = db.session.query(SessionToken).filter_by(staff_user_id=staff_id, is_revoked=False).all()
    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = reason
    db.session.commit()
    return len(sessions)


def cleanup_expired_sessions(*, older_than_days: int = 30) -> int:
    """Delete expired or revoked sessions created more than older_than_days ago."""
    now = utcnow()
    deleted = db.session.query(SessionToken).filter(
        db.or_(SessionToken.expires_at < now, SessionToken.is_revoked.is_(True)),
        SessionToken.created_at < now - timedelta(days=older_than_days),
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
