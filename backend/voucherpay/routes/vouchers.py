# Overview: Flask API routes for voucher issuance, listing and redemption.

"""
Voucher API Routes

Amounts cross this boundary as decimal major-unit strings ("50.00") and are
converted exactly to integer minor units before reaching the services.

SECURITY:
- voucher:write to issue or to redeem on a player's behalf
- voucher:read to list (PINs are never listed)
- Players redeem only into their own wallet
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import (
    current_tenant_context,
    error_response,
    internal_error,
    log_rejected_request,
    require_permission,
    require_player,
    require_staff,
    requested_tenant_id,
)
from ..errors import SettlementError, ValidationError
from ..money import to_minor
from ..permissions import Permission
from ..services import voucher_service


vouchers_bp = Blueprint("vouchers", __name__, url_prefix="/api/vouchers")


def _redeem_payload(result) -> dict:
    return {
        "voucher": result.voucher.to_dict(),
        "wallet": result.wallet.to_dict(),
        "transaction": result.transaction.to_dict(),
        "bonus_state": result.bonus_state,
        "ledger_event_id": result.ledger_event.id,
        "audit_event_id": result.audit_event_id,
    }


@vouchers_bp.post("")
@require_staff
@require_permission(Permission.VOUCHER_WRITE)
def issue_voucher_route():
    """
    Issue a voucher from the tenant pool.

    Request body:
    {
        "amount": "50.00",
        "bonus_amount": "10.00",   (optional)
        "currency": "FUN",          (optional)
        "tenant_id": 2,             (owners only)
        "expires_in_hours": 72      (optional)
    }

    Returns 201 with the voucher, the PIN (shown once), user_code and qr_handle.
    """
    try:
        data = request.get_json(silent=True) or {}
        try:
            amount_minor = to_minor(data.get("amount"), field="amount")
            bonus_raw = data.get("bonus_amount")
            bonus_minor = to_minor(bonus_raw, field="bonus_amount") if bonus_raw is not None else 0
            requested = requested_tenant_id()
        except ValidationError as exc:
            log_rejected_request("VOUCHER_ISSUE", exc, meta={
                "amount": data.get("amount"),
                "bonus_amount": data.get("bonus_amount"),
                "tenant_id": data.get("tenant_id"),
            })
            raise

        ctx = current_tenant_context(requested)
        result = voucher_service.issue_voucher(
            ctx,
            actor=g.current_staff,
            amount_minor=amount_minor,
            bonus_minor=bonus_minor,
            currency=data.get("currency"),
            tenant_id=requested,
            expires_in_hours=data.get("expires_in_hours"),
        )
        return jsonify({
            "voucher": result.voucher.to_dict(),
            "pin": result.pin,
            "user_code": result.user_code,
            "qr_handle": result.qr_handle,
            "ledger_event_id": result.ledger_event.id,
            "audit_event_id": result.audit_event_id,
        }), 201
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to issue voucher")


@vouchers_bp.get("")
@require_staff
@require_permission(Permission.VOUCHER_READ)
def list_vouchers_route():
    """Query params: limit (<= 500), status (NEW|REDEEMED|EXPIRED), tenant_id (owners)."""
    try:
        limit = request.args.get("limit", default=100, type=int)
        ctx = current_tenant_context(requested_tenant_id())
        vouchers = voucher_service.list_vouchers(
            ctx,
            actor=g.current_staff,
            limit=limit,
            status=request.args.get("status"),
        )
        return jsonify({"items": [v.to_dict() for v in vouchers], "count": len(vouchers)}), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to list vouchers")


@vouchers_bp.post("/redeem")
@require_player
def redeem_voucher_route():
    """Player redeem. Request body: {"code": "123456", "pin": "654321"}"""
    try:
        data = request.get_json(silent=True) or {}
        ctx = current_tenant_context()
        result = voucher_service.redeem_voucher(
            ctx,
            code=data.get("code"),
            pin=data.get("pin"),
            player_id=g.current_player.id,
        )
        return jsonify(_redeem_payload(result)), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to redeem voucher")


@vouchers_bp.post("/redeem-for-player")
@require_staff
@require_permission(Permission.VOUCHER_WRITE)
def staff_redeem_voucher_route():
    """Staff-assisted redeem. Request body: {"player_id": 7, "code": "...", "pin": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        player_id = data.get("player_id")
        try:
            if isinstance(player_id, bool) or not isinstance(player_id, int):
                raise ValidationError("player_id must be an integer")
            requested = requested_tenant_id()
        except ValidationError as exc:
            log_rejected_request("VOUCHER_REDEEM", exc, meta={
                "player_id": player_id,
                "code": data.get("code"),
                "staff_assisted": True,
            })
            raise
        ctx = current_tenant_context(requested)
        result = voucher_service.redeem_voucher(
            ctx,
            code=data.get("code"),
            pin=data.get("pin"),
            player_id=player_id,
            actor=g.current_staff,
        )
        return jsonify(_redeem_payload(result)), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to redeem voucher for player")
