# Overview: Flask API routes for player account creation and listing.

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
from ..services import player_service


players_bp = Blueprint("players", __name__, url_prefix="/api/players")


@players_bp.get("")
@require_staff
@require_permission(Permission.PLAYER_READ)
def list_players_route():
    try:
        ctx = current_tenant_context(requested_tenant_id())
        players = player_service.list_players(
            ctx,
            actor=g.current_staff,
            limit=request.args.get("limit", default=100, type=int),
        )
        return jsonify({"items": [p.to_dict() for p in players], "count": len(players)}), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to list players")


@players_bp.post("")
@require_staff
@require_permission(Permission.PLAYER_WRITE)
def create_player_route():
    """Request body: {"username": "...", "password": "...", "display_name": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        try:
            requested = requested_tenant_id()
        except ValidationError as exc:
            log_rejected_request("PLAYER_CREATE", exc, meta={"username": data.get("username")})
            raise
        ctx = current_tenant_context(requested)
        result = player_service.create_player(
            ctx,
            actor=g.current_staff,
            username=data.get("username"),
            password=data.get("password"),
            display_name=data.get("display_name"),
            tenant_id=requested,
        )
        payload = result.player.to_dict()
        payload["audit_event_id"] = result.audit_event_id
        return jsonify(payload), 201
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to create player")
