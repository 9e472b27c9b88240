# Overview: Flask API routes for tenant administration.

from flask import Blueprint, jsonify, request

from ..decorators import (
    current_tenant_context,
    error_response,
    internal_error,
    require_permission,
    require_staff,
)
from ..errors import SettlementError
from ..extensions import db
from ..permissions import Permission
from ..services import tenant_service


tenants_bp = Blueprint("tenants", __name__, url_prefix="/api/tenants")


@tenants_bp.get("")
@require_staff
@require_permission(Permission.TENANT_MANAGE)
def list_tenants_route():
    try:
        ctx = current_tenant_context()
        tenants = tenant_service.list_tenants(ctx)
        payload = [t.to_dict() for t in tenants]
        db.session.commit()
        return jsonify({"items": payload, "count": len(payload)}), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to list tenants")


@tenants_bp.post("")
@require_staff
@require_permission(Permission.TENANT_MANAGE)
def create_tenant_route():
    """Request body: {"name": "North Hall", "code": "NORTH"}. Owners only."""
    try:
        data = request.get_json(silent=True) or {}
        ctx = current_tenant_context()
        tenant, audit_event_id = tenant_service.register_tenant(
            ctx,
            name=data.get("name"),
            code=data.get("code"),
        )
        payload = tenant.to_dict()
        payload["audit_event_id"] = audit_event_id
        return jsonify(payload), 201
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to create tenant")
