# Overview: Flask API routes for staff administration (create, list, update).

"""
Staff administration routes

SECURITY: staff:manage. Only an owner may create or promote an owner;
non-owners only manage staff inside their own tenant.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import (
    current_tenant_context,
    error_response,
    internal_error,
    log_rejected_request,
    require_permission,
    require_staff,
    requested_tenant_id,
)
from ..errors import SettlementError, ValidationError
from ..permissions import Permission
from ..services import permission_service, staff_service


staff_bp = Blueprint("staff", __name__, url_prefix="/api/staff")


def _staff_payload(staff) -> dict:
    payload = staff.to_dict()
    payload["effective_permissions"] = sorted(p.value for p in permission_service.get_effective_permissions(staff))
    return payload


@staff_bp.get("")
@require_staff
@require_permission(Permission.STAFF_MANAGE)
def list_staff_route():
    try:
        ctx = current_tenant_context(requested_tenant_id())
        include_inactive = request.args.get("include_inactive", "false").lower() == "true"
        users = staff_service.list_staff(ctx, actor=g.current_staff, include_inactive=include_inactive)
        return jsonify({"items": [_staff_payload(u) for u in users], "count": len(users)}), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to list staff")


@staff_bp.post("")
@require_staff
@require_permission(Permission.STAFF_MANAGE)
def create_staff_route():
    """
    Request body:
    {
        "username": "cashier7",
        "password": "...",
        "role": "cashier",
        "tenant_id": 2,              (owners only)
        "permissions": ["voucher:read"],  (optional explicit list)
        "email": "c7@example.com"    (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        try:
            requested = requested_tenant_id()
        except ValidationError as exc:
            log_rejected_request("STAFF_CREATE", exc, meta={"username": data.get("username"), "role": data.get("role")})
            raise
        ctx = current_tenant_context(requested)
        result = staff_service.create_staff_user(
            ctx,
            actor=g.current_staff,
            username=data.get("username"),
            password=data.get("password"),
            role=data.get("role"),
            tenant_id=requested,
            permissions=data.get("permissions"),
            email=data.get("email"),
        )
        payload = _staff_payload(result.staff)
        payload["audit_event_id"] = result.audit_event_id
        return jsonify(payload), 201
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to create staff user")


@staff_bp.patch("/<int:staff_id>")
@require_staff
@require_permission(Permission.STAFF_MANAGE)
def update_staff_route(staff_id: int):
    """Request body: any of {"role", "permissions", "is_active"}."""
    try:
        data = request.get_json(silent=True) or {}
        try:
            requested = requested_tenant_id()
        except ValidationError as exc:
            log_rejected_request("STAFF_UPDATE", exc, meta={"staff_id": staff_id})
            raise
        ctx = current_tenant_context(requested)
        result = staff_service.update_staff_user(
            ctx,
            actor=g.current_staff,
            staff_id=staff_id,
            role=data.get("role"),
            permissions=data.get("permissions"),
            is_active=data.get("is_active"),
        )
        payload = _staff_payload(result.staff)
        payload["audit_event_id"] = result.audit_event_id
        return jsonify(payload), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to update staff user")
