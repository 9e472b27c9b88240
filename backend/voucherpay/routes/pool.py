# Overview: Flask API routes for the tenant voucher pool.

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
from ..money import to_minor
from ..permissions import Permission
from ..services import pool_service


pool_bp = Blueprint("pool", __name__, url_prefix="/api/pool")


@pool_bp.get("")
@require_staff
@require_permission(Permission.FINANCE_READ)
def get_pool_route():
    try:
        requested = requested_tenant_id()
        ctx = current_tenant_context(requested)
        pool = pool_service.get_pool(ctx, requested)
        if pool is None:
            return jsonify({"tenant_id": ctx.tenant_id or requested, "balance_minor": 0, "balance": "0.00"}), 200
        return jsonify(pool.to_dict()), 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to load voucher pool")


@pool_bp.post("/fund")
@require_staff
@require_permission(Permission.POOL_FUND)
def fund_pool_route():
    """Request body: {"tenant_id": 2, "amount": "1000.00", "action_id": "wire-2026-10-19"}"""
    try:
        data = request.get_json(silent=True) or {}
        try:
            amount_minor = to_minor(data.get("amount"), field="amount")
            requested = requested_tenant_id()
        except ValidationError as exc:
            log_rejected_request("POOL_FUND", exc, meta={
                "amount": data.get("amount"),
                "action_id": data.get("action_id"),
                "tenant_id": data.get("tenant_id"),
            })
            raise
        ctx = current_tenant_context(requested)
        result = pool_service.fund_pool(
            ctx,
            actor=g.current_staff,
            tenant_id=requested,
            amount_minor=amount_minor,
            action_id=data.get("action_id"),
        )
        return jsonify({
            "pool": result.pool.to_dict(),
            "ledger_event_id": result.ledger_event.id,
            "replayed": not result.created,
            "audit_event_id": result.audit_event_id,
        }), 201 if result.created else 200
    except SettlementError as exc:
        return error_response(exc)
    except Exception:
        return internal_error("Failed to fund voucher pool")
