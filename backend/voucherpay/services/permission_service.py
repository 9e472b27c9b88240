# Overview: Resolves effective staff permissions and authorizes privileged operations.

"""
Staff Permission Authority

WHY: Enforce role-based access control with an explicit per-staff override.

DESIGN PRINCIPLES:
- Fail closed: inactive staff and missing permissions are denied
- Effective set = explicit permission list if non-empty, else role default
- No implicit hierarchy: owner holds what its default row enumerates
- Unknown permission strings are rejected on write and ignored on read
"""

from __future__ import annotations

from flask import current_app

from ..errors import ForbiddenError, ValidationError
from ..models import StaffUser
from ..permissions import DEFAULT_ROLE_PERMISSIONS, Permission, StaffRole
from . import audit_service
from .tenant_service import TenantContext


def get_effective_permissions(staff: StaffUser) -> frozenset[Permission]:
    explicit = staff.permissions or []
    if explicit:
        resolved = set()
        for code in explicit:
            try:
                resolved.add(Permission(code))
            except ValueError:
                current_app.logger.warning("Ignoring unknown permission %r on staff %s", code, staff.id)
        return frozenset(resolved)

    try:
        role = StaffRole(staff.role)
    except ValueError:
        return frozenset()
    return DEFAULT_ROLE_PERMISSIONS[role]


def has_permission(staff: StaffUser, permission: Permission) -> bool:
    return permission in get_effective_permissions(staff)


def authorize(staff: StaffUser | None, *required: Permission) -> None:
    """
    Raise ForbiddenError unless staff is active and holds every permission.

    Does not audit; callers record the attempt.
    """
    if staff is None or not staff.is_active:
        raise ForbiddenError("Inactive or unknown staff account")

    effective = get_effective_permissions(staff)
    missing = [p.value for p in required if p not in effective]
    if missing:
        raise ForbiddenError(f"Missing permission: {', '.join(missing)}", details={"missing": missing})


def require(ctx: TenantContext, actor: StaffUser | None, *required: Permission) -> None:
    """authorize() for service entry points; system jobs bypass staff checks."""
    if ctx.is_system:
        return
    authorize(actor, *required)


def normalize_permissions(codes) -> list[str]:
    """Validate an explicit permission list for storage."""
    if codes is None:
        return []
    if not isinstance(codes, (list, tuple, set, frozenset)):
        raise ValidationError("permissions must be a list")
    normalized = []
    for code in codes:
        try:
            normalized.append(Permission(code).value)
        except ValueError:
            raise ValidationError(f"Unknown permission: {code}")
    return sorted(set(normalized))


def log_permission_denied(
    *,
    staff: StaffUser | None,
    required: list[str],
    tenant_id: int | None = None,
) -> int | None:
    """Record a denied route-level permission check."""
    return audit_service.log_event(
        event_type="PERMISSION_DENIED",
        success=False,
        tenant_id=tenant_id if tenant_id is not None else (staff.tenant_id if staff else None),
        actor_type="staff",
        actor_id=staff.id if staff else None,
        actor_role=staff.role if staff else None,
        reason=ForbiddenError.code,
        status_code=ForbiddenError.status_code,
        meta={"required": required},
    )
