# Overview: Flask API routes for reading the audit trail.

from flask import Blueprint, jsonify, request

from ..decorators import (
    current_tenant_context,
    error_response,
    internal_error,
    require_permission,
    require_staff,
    requested_tenant_id,
)
from ..errors import SettlementError
from ..permissions import Permission
from ..services import audit_service


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("")
@require_staff
@require_permission(Permission.AUDIT_READ)
def list_audit_events_route():
    """Query params: event_type, success (true|false), limit (<= 500), tenant_id (owners)."""
    try:
        success_raw = request.args.get("success")
        success = None if success_raw is None else success_raw.lower() == "true"
        ctx = current_tenant_context(requested_tenant_id())
        events = audit_service.list_audit_events(
            ctx,
            event_type=request.args.get("event_type"),
            success=success,
            limit=request.args.get("limit", default=100, type=int),
        )
        return jsonify({"items": [e.to_dict() for e in events], "count": len(events)}), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to list audit events")
