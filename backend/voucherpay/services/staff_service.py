# Overview: Staff account administration (create, change role/permissions, deactivate).

"""
Staff Management

RULES:
- Every operation requires staff:manage
- Only an owner may create an owner or promote someone to owner, and only an
  owner may modify an owner account
- Non-owners manage staff of their own tenant only (tenant context)
- Explicit permission lists are validated against the Permission enum
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import StaffUser
from ..permissions import Permission, StaffRole
from . import audit_service, permission_service, session_service
from .auth_service import hash_password
from .concurrency import lock_for_update, run_with_retry
from .tenant_service import (
    TenantContext,
    apply_tenant_context,
    require_active_tenant,
    resolve_write_tenant,
    scoped_query,
)


@dataclass
class StaffResult:
    staff: StaffUser
    audit_event_id: int | None = None


def _parse_role(value) -> StaffRole:
    try:
        return StaffRole(value)
    except ValueError:
        raise ValidationError(f"role must be one of {', '.join(r.value for r in StaffRole)}")


def _actor_is_owner(ctx: TenantContext, actor: StaffUser | None) -> bool:
    if ctx.is_system:
        return True
    return actor is not None and actor.role == StaffRole.OWNER.value


def create_staff_user(
    ctx: TenantContext,
    *,
    actor: StaffUser | None,
    username: str,
    password: str,
    role: str,
    tenant_id: int | None = None,
    permissions: list | None = None,
    email: str | None = None,
) -> StaffResult:
    username = (username or "").strip()

    def _op():
        apply_tenant_context(ctx)
        if parsed_role is StaffRole.OWNER and tenant_id is None and ctx.is_global:
            target_tenant = None
        else:
            target_tenant = resolve_write_tenant(ctx, tenant_id)
            require_active_tenant(target_tenant)

        taken = db.session.query(StaffUser.id).filter(
            db.func.lower(StaffUser.username) == username.lower()
        ).first()
        if taken:
            raise ValidationError("Username already exists")

        staff = StaffUser(
            tenant_id=target_tenant,
            username=username,
            email=email,
            password_hash=password_hash,
            role=parsed_role.value,
            permissions=explicit,
            is_active=True,
        )
        db.session.add(staff)
        db.session.commit()
        return StaffResult(staff=staff)

    meta = {"username": username, "role": role, "tenant_id": tenant_id, "permissions": permissions}
    try:
        permission_service.require(ctx, actor, Permission.STAFF_MANAGE)
        if not username:
            raise ValidationError("username is required")
        parsed_role = _parse_role(role)
        if parsed_role is StaffRole.OWNER and not _actor_is_owner(ctx, actor):
            raise ForbiddenError("Only an owner may create an owner")
        explicit = permission_service.normalize_permissions(permissions)
        password_hash = hash_password(password)
        result = run_with_retry(_op)
    except Exception as exc:
        db.session.rollback()
        audit_service.log_event(
            ctx=ctx,
            event_type="STAFF_CREATE",
            success=False,
            reason=audit_service.failure_reason(exc),
            status_code=audit_service.failure_status(exc),
            meta=meta,
        )
        raise

    result.audit_event_id = audit_service.log_event(
        ctx=ctx,
        event_type="STAFF_CREATE",
        success=True,
        tenant_id=result.staff.tenant_id,
        subject=str(result.staff.id),
        meta=meta,
    )
    return result


def update_staff_user(
    ctx: TenantContext,
    *,
    actor: StaffUser | None,
    staff_id: int,
    role: str | None = None,
    permissions: list | None = None,
    is_active: bool | None = None,
) -> StaffResult:
    """Change role, explicit permissions (empty list = role default) or active flag."""
    def _op():
        apply_tenant_context(ctx)
        staff = lock_for_update(scoped_query(StaffUser, ctx).filter(StaffUser.id == staff_id)).first()
        if staff is None:
            raise NotFoundError("Staff user not found")

        actor_is_owner = _actor_is_owner(ctx, actor)
        if staff.role == StaffRole.OWNER.value and not actor_is_owner:
            raise ForbiddenError("Only an owner may modify an owner")
        if new_role is StaffRole.OWNER and not actor_is_owner:
            raise ForbiddenError("Only an owner may promote to owner")
        if is_active is False and actor is not None and actor.id == staff.id:
            raise ValidationError("Staff cannot deactivate themselves")

        if new_role is not None:
            staff.role = new_role.value
        if explicit is not None:
            staff.permissions = explicit
        if is_active is not None:
            staff.is_active = bool(is_active)
        db.session.commit()
        return StaffResult(staff=staff)

    meta = {"staff_id": staff_id, "role": role, "permissions": permissions, "is_active": is_active}
    try:
        permission_service.require(ctx, actor, Permission.STAFF_MANAGE)
        new_role = _parse_role(role) if role is not None else None
        explicit = permission_service.normalize_permissions(permissions) if permissions is not None else None
        if is_active is not None and not isinstance(is_active, bool):
            raise ValidationError("is_active must be a boolean")
        result = run_with_retry(_op)
    except Exception as exc:
        db.session.rollback()
        audit_service.log_event(
            ctx=ctx,
            event_type="STAFF_UPDATE",
            success=False,
            reason=audit_service.failure_reason(exc),
            status_code=audit_service.failure_status(exc),
            meta=meta,
        )
        raise

    if is_active is False:
        session_service.revoke_staff_sessions(staff_id, "Account deactivated")

    result.audit_event_id = audit_service.log_event(
        ctx=ctx,
        event_type="STAFF_UPDATE",
        success=True,
        tenant_id=result.staff.tenant_id,
        subject=str(staff_id),
        meta=meta,
    )
    return result


def list_staff(ctx: TenantContext, *, actor: StaffUser | None, include_inactive: bool = False) -> list[StaffUser]:
    permission_service.require(ctx, actor, Permission.STAFF_MANAGE)

    def _op():
        apply_tenant_context(ctx)
        q = scoped_query(StaffUser, ctx)
        if not include_inactive:
            q = q.filter(StaffUser.is_active.is_(True))
        rows = q.order_by(StaffUser.username).all()
        db.session.commit()
        return rows

    return run_with_retry(_op)
