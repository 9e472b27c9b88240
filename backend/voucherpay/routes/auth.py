# Overview: Flask API routes for staff and player authentication.

"""
Authentication API routes

- Staff login: username + password
- Player login: tenant_id + username + password
- Bearer tokens; logout revokes the session
- Failed attempts are throttled per identifier and always audited
"""

from flask import Blueprint, g, jsonify, request

from ..errors import SettlementError
from ..decorators import current_tenant_context, error_response, internal_error, require_auth
from ..services import auth_service, login_throttle_service, session_service, wallet_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _session_payload(result) -> dict:
    return {
        "token": result.token,
        "session": result.session.to_dict(),
        "tenant_id": result.session.tenant_id,
        "role": result.session.role,
        "permissions": result.permissions,
    }


@auth_bp.post("/staff/login")
def staff_login_route():
    """
    Request body: {"username": "...", "password": "..."}

    Returns the bearer token and the staff profile with its effective
    permission snapshot.
    """
    try:
        data = request.get_json(silent=True) or {}
        result = auth_service.login_staff(data.get("username"), data.get("password"))
        payload = _session_payload(result)
        payload["staff"] = result.staff.to_dict()
        return jsonify(payload), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to login staff user")


@auth_bp.post("/player/login")
def player_login_route():
    """Request body: {"tenant_id": 1, "username": "...", "password": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        result = auth_service.login_player(data.get("tenant_id"), data.get("username"), data.get("password"))
        payload = _session_payload(result)
        payload["player"] = result.player.to_dict()
        return jsonify(payload), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to login player")


@auth_bp.get("/lockout-status/<identifier>")
def lockout_status_route(identifier: str):
    return jsonify(login_throttle_service.get_lockout_status(identifier.lower()))


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        token = request.headers["Authorization"].split(" ", 1)[1].strip()
        session_service.revoke_session(token, reason="Logout")
        return jsonify({"message": "Logout successful"}), 200
    except Exception:
        return internal_error("Failed to logout")


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current profile; players also get their bonus state."""
    try:
        context = g.session_context
        if context.staff is not None:
            return jsonify({
                "staff": context.staff.to_dict(),
                "role": context.role,
                "tenant_id": context.tenant_id,
                "permissions": context.permissions,
            }), 200

        overview = wallet_service.get_wallet_overview(current_tenant_context(), player_id=context.player.id, tx_limit=1)
        return jsonify({
            "player": overview["player"],
            "role": context.role,
            "tenant_id": context.tenant_id,
            "bonus_state": overview["bonus_state"],
        }), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to load profile")
