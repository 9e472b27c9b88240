# Overview: Per-tenant voucher pool; the only funding source for issued vouchers.

from __future__ import annotations

import uuid
from dataclasses import dataclass

from flask import current_app

from ..errors import InsufficientPoolBalanceError, ValidationError
from ..extensions import db
from ..models import LedgerEvent, StaffUser, VoucherPool
from ..permissions import Permission
from . import audit_service, permission_service
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import EVENT_POOL_FUNDED, append_ledger_event
from .tenant_service import (
    TenantContext,
    apply_tenant_context,
    require_active_tenant,
    require_tenant_in_scope,
    resolve_write_tenant,
    scoped_query,
)


@dataclass
class PoolFundResult:
    pool: VoucherPool
    ledger_event: LedgerEvent
    created: bool
    audit_event_id: int | None = None


def _require_positive_minor(amount_minor, field: str = "amount_minor") -> int:
    if isinstance(amount_minor, bool) or not isinstance(amount_minor, int):
        raise ValidationError(f"{field} must be an integer number of minor units")
    if amount_minor <= 0:
        raise ValidationError(f"{field} must be positive")
    return amount_minor


def _locked_pool(ctx: TenantContext, tenant_id: int) -> VoucherPool | None:
    return lock_for_update(
        scoped_query(VoucherPool, ctx).filter(VoucherPool.tenant_id == tenant_id)
    ).first()


def debit_pool(ctx: TenantContext, tenant_id: int, amount_minor: int) -> VoucherPool:
    """
    Decrement a tenant pool under an exclusive row lock.

    Must run inside the issuing transaction; never commits. A tenant without
    a pool row has a balance of zero.
    """
    _require_positive_minor(amount_minor)
    require_tenant_in_scope(ctx, tenant_id)

    pool = _locked_pool(ctx, tenant_id)
    balance = pool.balance_minor if pool is not None else 0
    if pool is None or balance < amount_minor:
        raise InsufficientPoolBalanceError(
            "Voucher pool balance is too low",
            details={"balance_minor": balance, "required_minor": amount_minor},
        )

    pool.balance_minor = balance - amount_minor
    db.session.flush()
    return pool


def get_pool(ctx: TenantContext, tenant_id: int | None = None) -> VoucherPool | None:
    def _op():
        apply_tenant_context(ctx)
        target = resolve_write_tenant(ctx, tenant_id)
        pool = scoped_query(VoucherPool, ctx).filter(VoucherPool.tenant_id == target).first()
        db.session.commit()
        return pool

    return run_with_retry(_op)


def fund_pool(
    ctx: TenantContext,
    *,
    actor: StaffUser | None,
    tenant_id: int | None,
    amount_minor: int,
    action_id: str | None = None,
) -> PoolFundResult:
    """
    Credit a tenant pool and record POOL_FUNDED.

    Idempotent on action_id: replaying the same action returns the stored
    ledger event and leaves the balance alone.
    """
    action_id = action_id or f"fund:{uuid.uuid4().hex}"

    def _op():
        apply_tenant_context(ctx)
        target = resolve_write_tenant(ctx, tenant_id)
        require_active_tenant(target)

        pool = _locked_pool(ctx, target)
        if pool is None:
            pool = VoucherPool(
                tenant_id=target,
                balance_minor=0,
                currency=current_app.config["DEFAULT_CURRENCY"],
            )
            db.session.add(pool)
        pool.balance_minor = pool.balance_minor + amount_minor
        db.session.flush()

        appended = append_ledger_event(
            ctx,
            tenant_id=target,
            event_type=EVENT_POOL_FUNDED,
            action_id=action_id,
            amount_cents=amount_minor,
            balance_cents=pool.balance_minor,
            meta={"funded_by_staff_id": ctx.actor_id},
            allow_existing=True,
        )
        if not appended.created:
            db.session.rollback()
            apply_tenant_context(ctx)
            pool = scoped_query(VoucherPool, ctx).filter(VoucherPool.tenant_id == target).first()
            db.session.commit()
            return PoolFundResult(pool=pool, ledger_event=appended.event, created=False)

        db.session.commit()
        return PoolFundResult(pool=pool, ledger_event=appended.event, created=True)

    meta = {"amount_minor": amount_minor, "action_id": action_id, "tenant_id": tenant_id}
    try:
        permission_service.require(ctx, actor, Permission.POOL_FUND)
        _require_positive_minor(amount_minor)
        result = run_with_retry(_op)
    except Exception as exc:
        db.session.rollback()
        audit_service.log_event(
            ctx=ctx,
            event_type="POOL_FUND",
            success=False,
            reason=audit_service.failure_reason(exc),
            status_code=audit_service.failure_status(exc),
            meta=meta,
        )
        raise

    meta["replayed"] = not result.created
    result.audit_event_id = audit_service.log_event(
        ctx=ctx,
        event_type="POOL_FUND",
        success=True,
        tenant_id=result.ledger_event.tenant_id,
        subject=action_id,
        meta=meta,
    )
    return result
