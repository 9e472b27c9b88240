# Overview: Flask API routes for player wallets, bonus acknowledgement and staff cash movements.

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
from ..services import wallet_service


wallets_bp = Blueprint("wallets", __name__, url_prefix="/api/wallets")


def _cash_payload(result) -> dict:
    return {
        "wallet": result.wallet.to_dict() if result.wallet else None,
        "transaction": result.transaction.to_dict() if result.transaction else None,
        "ledger_event_id": result.ledger_event.id,
        "replayed": not result.created,
        "released_bonus_ids": [b.id for b in result.released_bonuses],
        "audit_event_id": result.audit_event_id,
    }


@wallets_bp.get("/me")
@require_player
def my_wallet_route():
    try:
        ctx = current_tenant_context()
        overview = wallet_service.get_wallet_overview(
            ctx,
            player_id=g.current_player.id,
            currency=request.args.get("currency"),
        )
        return jsonify(overview), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to load wallet")


@wallets_bp.post("/me/bonus/ack")
@require_player
def acknowledge_bonus_route():
    """Clear the bonus acknowledgement flag. Safe to repeat."""
    try:
        ctx = current_tenant_context()
        result = wallet_service.acknowledge_bonus(ctx, player_id=g.current_player.id)
        return jsonify({
            "acknowledged_minor": result.acknowledged_minor,
            "changed": result.changed,
            "audit_event_id": result.audit_event_id,
        }), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to acknowledge bonus")


@wallets_bp.get("/players/<int:player_id>")
@require_staff
@require_permission(Permission.PLAYER_READ, Permission.FINANCE_READ)
def player_wallet_route(player_id: int):
    try:
        ctx = current_tenant_context(requested_tenant_id())
        overview = wallet_service.get_wallet_overview(
            ctx,
            player_id=player_id,
            currency=request.args.get("currency"),
            tx_limit=request.args.get("limit", default=20, type=int),
        )
        return jsonify(overview), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to load player wallet")


def _cash_route(player_id: int, operation, audit_type: str):
    try:
        data = request.get_json(silent=True) or {}
        try:
            amount_minor = to_minor(data.get("amount"), field="amount")
            requested = requested_tenant_id()
        except ValidationError as exc:
            log_rejected_request(audit_type, exc, meta={
                "player_id": player_id,
                "amount": data.get("amount"),
                "action_id": data.get("action_id"),
            })
            raise
        ctx = current_tenant_context(requested)
        result = operation(
            ctx,
            actor=g.current_staff,
            player_id=player_id,
            amount_minor=amount_minor,
            action_id=data.get("action_id"),
            currency=data.get("currency"),
        )
        return jsonify(_cash_payload(result)), 201 if result.created else 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error(f"Failed to {operation.__name__}")


@wallets_bp.post("/players/<int:player_id>/deposit")
@require_staff
@require_permission(Permission.FINANCE_WRITE)
def deposit_route(player_id: int):
    """Request body: {"amount": "25.00", "action_id": "till-42-0001"}"""
    return _cash_route(player_id, wallet_service.deposit, "WALLET_DEPOSIT")


@wallets_bp.post("/players/<int:player_id>/withdraw")
@require_staff
@require_permission(Permission.FINANCE_WRITE)
def withdraw_route(player_id: int):
    """Request body: {"amount": "25.00", "action_id": "till-42-0002"}"""
    return _cash_route(player_id, wallet_service.withdraw, "WALLET_WITHDRAW")
