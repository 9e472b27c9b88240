# Overview: Flask API routes for reading the append-only ledger event store.

from flask import Blueprint, jsonify, request

from ..decorators import (
    current_tenant_context,
    error_response,
    internal_error,
    require_permission,
    require_staff,
    requested_tenant_id,
)
from ..errors import SettlementError, ValidationError
from ..extensions import db
from ..permissions import Permission
from ..services import ledger_service
from ..services.tenant_service import apply_tenant_context
from ..time_utils import parse_iso_datetime

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start/end filtering is inclusive on both sides.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("")
@require_staff
@require_permission(Permission.LEDGER_READ)
def list_ledger_events_route():
    """
    Query params: event_type, player_id, action_id, start, end, limit (<= 500),
    tenant_id (owners; omitted means all tenants).
    """
    try:
        try:
            start_dt = parse_iso_datetime(request.args.get("start"))
            end_dt = parse_iso_datetime(request.args.get("end"))
        except ValueError:
            raise ValidationError("start and end must be ISO-8601 datetimes")

        event_type = request.args.get("event_type")
        if event_type and event_type not in ledger_service.LEDGER_EVENT_TYPES:
            raise ValidationError(f"Unknown event_type {event_type}")

        ctx = current_tenant_context(requested_tenant_id())
        apply_tenant_context(ctx)
        events = ledger_service.list_ledger_events(
            ctx,
            event_type=event_type,
            player_id=request.args.get("player_id", type=int),
            action_id=request.args.get("action_id"),
            start=start_dt,
            end=end_dt,
            limit=request.args.get("limit", default=100, type=int),
        )
        payload = [e.to_dict() for e in events]
        db.session.commit()
        return jsonify({"items": payload, "count": len(payload)}), 200
    except SettlementError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        return internal_error("Failed to list ledger events")
