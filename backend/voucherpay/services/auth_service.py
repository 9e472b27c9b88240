# Overview: Password hashing and credential verification for staff and players.

"""
Authentication Service

WHY: Every action must be attributable. Uses bcrypt for password hashing and
validates password strength at account creation.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters with upper, lower, digit and special character
- Staff usernames are global; player usernames are unique per tenant
- Inactive accounts, inactive tenants and bad passwords are indistinguishable
  to the caller (INVALID_CREDENTIALS)
- Session tokens are managed separately (see session_service.py)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import bcrypt
from flask import current_app, has_request_context, request

from ..errors import AccountLockedError, InvalidCredentialsError, ValidationError
from ..extensions import db
from ..models import Player, SessionToken, StaffUser, Tenant
from ..time_utils import utcnow
from . import audit_service, login_throttle_service, permission_service, session_service


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")
    if not re.search(r"[!@#$%^&*(),.'\":{}|<>?_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str, *, rounds: int | None = None) -> str:
    """Validate strength, then bcrypt-hash (BCRYPT_ROUNDS work factor unless given)."""
    validate_password_strength(password)
    if rounds is None:
        rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str | None) -> bool:
    """Timing-safe bcrypt comparison; malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def _tenant_is_active(tenant_id: int | None) -> bool:
    if tenant_id is None:
        return True
    tenant = db.session.get(Tenant, tenant_id)
    return bool(tenant and tenant.is_active)


def authenticate_staff(username: str, password: str) -> StaffUser | None:
    """Return the active staff user for valid credentials, else None."""
    staff = db.session.query(StaffUser).filter(
        db.func.lower(StaffUser.username) == (username or "").strip().lower(),
    ).first()

    if staff is None or not staff.is_active or not _tenant_is_active(staff.tenant_id):
        return None
    if not verify_password(password, staff.password_hash):
        return None

    staff.last_login_at = utcnow()
    db.session.commit()
    return staff


def authenticate_player(tenant_id: int, username: str, password: str) -> Player | None:
    """Return the active player for valid credentials in tenant_id, else None."""
    player = db.session.query(Player).filter(
        Player.tenant_id == tenant_id,
        db.func.lower(Player.username) == (username or "").strip().lower(),
    ).first()

    if player is None or not player.is_active or not _tenant_is_active(player.tenant_id):
        return None
    if not verify_password(password, player.password_hash):
        return None

    player.last_login_at = utcnow()
    db.session.commit()
    return player


# =============================================================================
# LOGIN FLOWS
# =============================================================================

@dataclass
class LoginResult:
    token: str
    session: SessionToken
    staff: StaffUser | None = None
    player: Player | None = None
    permissions: list = field(default_factory=list)
    audit_event_id: int | None = None


def _login(event_type: str, identifier: str, tenant_id: int | None, authenticate) -> LoginResult:
    locked, seconds_remaining = login_throttle_service.is_account_locked(identifier)
    if locked:
        db.session.rollback()
        audit_service.log_event(
            event_type=event_type,
            success=False,
            tenant_id=tenant_id,
            subject=identifier,
            reason=AccountLockedError.code,
            status_code=AccountLockedError.status_code,
        )
        raise AccountLockedError(details={"retry_after_seconds": seconds_remaining})

    subject = authenticate()
    if subject is None:
        db.session.rollback()
        audit_service.log_event(
            event_type=event_type,
            success=False,
            tenant_id=tenant_id,
            subject=identifier,
            reason=InvalidCredentialsError.code,
            status_code=InvalidCredentialsError.status_code,
        )
        raise InvalidCredentialsError()

    is_staff = isinstance(subject, StaffUser)
    permissions = sorted(p.value for p in permission_service.get_effective_permissions(subject)) if is_staff else []
    session, token = session_service.create_session(
        staff=subject if is_staff else None,
        player=None if is_staff else subject,
        permissions=permissions,
        user_agent=request.headers.get("User-Agent") if has_request_context() else None,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    audit_id = audit_service.log_event(
        event_type=event_type,
        success=True,
        tenant_id=subject.tenant_id,
        actor_type="staff" if is_staff else "player",
        actor_id=subject.id,
        actor_role=subject.role if is_staff else "player",
        subject=identifier,
    )
    return LoginResult(
        token=token,
        session=session,
        staff=subject if is_staff else None,
        player=None if is_staff else subject,
        permissions=permissions,
        audit_event_id=audit_id,
    )


def _reject_login(event_type: str, username, tenant_id, message: str):
    exc = ValidationError(message)
    audit_service.log_event(
        event_type=event_type,
        success=False,
        tenant_id=tenant_id if isinstance(tenant_id, int) and not isinstance(tenant_id, bool) else None,
        subject=username if isinstance(username, str) else None,
        reason=exc.code,
        status_code=exc.status_code,
    )
    raise exc


def login_staff(username: str, password: str) -> LoginResult:
    """Staff login: (username, password) -> bearer token + profile."""
    if not username or not password:
        _reject_login("STAFF_LOGIN", username, None, "username and password are required")
    identifier = login_throttle_service.identifier_for(username)
    return _login("STAFF_LOGIN", identifier, None, lambda: authenticate_staff(username, password))


def login_player(tenant_id: int, username: str, password: str) -> LoginResult:
    """Player login, scoped to one tenant."""
    if tenant_id is None or not username or not password:
        _reject_login("PLAYER_LOGIN", username, tenant_id, "tenant_id, username and password are required")
    if isinstance(tenant_id, bool) or not isinstance(tenant_id, int):
        _reject_login("PLAYER_LOGIN", username, None, "tenant_id must be an integer")
    identifier = login_throttle_service.identifier_for(username, tenant_id)
    return _login("PLAYER_LOGIN", identifier, tenant_id, lambda: authenticate_player(tenant_id, username, password))
