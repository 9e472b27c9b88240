# Overview: Voucher issuance, redemption and expiry against pool and wallet.

"""
Voucher Lifecycle Manager

WHY: A voucher moves value from a tenant's pool to a player's wallet. Both
legs are single ACID transactions; partial application is never visible.

ISSUE:  pool debit (row lock) + voucher insert + VOUCHER_ISSUED ledger event
REDEEM: conditional NEW -> REDEEMED flip + wallet credit + bonus escrow
        + bonus trigger check + VOUCHER_REDEEMED ledger event
EXPIRE: conditional NEW -> EXPIRED flip + VOUCHER_VOID ledger event, either
        lazily on a redeem attempt or via the sweep job. Expired value is not
        returned to the pool.

DOUBLE-REDEMPTION GUARD: the flip is
    UPDATE vouchers SET status=... WHERE id=:id AND status='NEW'
and only a rowcount of 1 proceeds.

Every attempt (success or failure) produces exactly one audit event,
written after the financial transaction has finished.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import (
    CodeGenerationExhaustedError,
    ForbiddenError,
    ValidationError,
    VoucherAlreadyRedeemedError,
    VoucherExpiredError,
    VoucherNotFoundError,
)
from ..extensions import db
from ..models import Bonus, LedgerEvent, Player, StaffUser, Voucher, Wallet, WalletTransaction
from ..models.vouchers import (
    VOUCHER_STATUSES,
    VOUCHER_STATUS_EXPIRED,
    VOUCHER_STATUS_NEW,
    VOUCHER_STATUS_REDEEMED,
)
from ..models.wallets import TX_VOUCHER_REDEEM
from ..permissions import Permission
from ..time_utils import as_utc_naive, utcnow
from . import audit_service, permission_service, pool_service, wallet_service
from .concurrency import run_with_retry
from .ledger_service import (
    EVENT_VOUCHER_ISSUED,
    EVENT_VOUCHER_REDEEMED,
    EVENT_VOUCHER_VOID,
    append_ledger_event,
)
from .tenant_service import (
    ACTOR_PLAYER,
    TenantContext,
    apply_tenant_context,
    require_active_tenant,
    resolve_write_tenant,
    scoped_query,
)


@dataclass
class IssueResult:
    voucher: Voucher
    pin: str
    user_code: str
    qr_handle: str
    ledger_event: LedgerEvent
    audit_event_id: int | None = None


@dataclass
class RedeemResult:
    voucher: Voucher
    wallet: Wallet
    transaction: WalletTransaction
    bonus: Bonus | None
    released_bonuses: list
    bonus_state: dict
    ledger_event: LedgerEvent
    audit_event_id: int | None = None


# =============================================================================
# CODES
# =============================================================================

def _random_digits(length: int) -> str:
    """Fixed-width numeric string from the OS CSPRNG."""
    return "".join(secrets.choice(string.digits) for _ in range(length))


def generate_code(length: int) -> str:
    return _random_digits(length)


def generate_pin(length: int) -> str:
    return _random_digits(length)


def qr_handle_for(voucher: Voucher) -> str:
    """Opaque reference handed to the external QR renderer."""
    return f"vqr:{voucher.tenant_id}:{voucher.id}"


def _insert_with_unique_code(fields: dict) -> Voucher:
    """
    Insert a voucher, regenerating the code on a (tenant_id, code) collision.

    Bounded: VOUCHER_CODE_MAX_ATTEMPTS tries, then CODE_GENERATION_EXHAUSTED.
    Each try runs in a savepoint so the pool debit survives a collision.
    """
    config = current_app.config
    max_attempts = config["VOUCHER_CODE_MAX_ATTEMPTS"]

    for attempt in range(1, max_attempts + 1):
        voucher = Voucher(
            code=generate_code(config["VOUCHER_CODE_LENGTH"]),
            pin=generate_pin(config["VOUCHER_PIN_LENGTH"]),
            status=VOUCHER_STATUS_NEW,
            **fields,
        )
        try:
            with db.session.begin_nested():
                db.session.add(voucher)
        except IntegrityError:
            current_app.logger.warning(
                "Voucher code collision in tenant %s (attempt %s/%s)",
                fields["tenant_id"], attempt, max_attempts,
            )
            continue
        return voucher

    raise CodeGenerationExhaustedError(
        f"No free voucher code after {max_attempts} attempts",
        details={"attempts": max_attempts},
    )


# =============================================================================
# VALIDATION
# =============================================================================

def _require_minor(value, field: str, *, allow_zero: bool) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer number of minor units")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'non-negative' if allow_zero else 'positive'}")
    return value


def _resolve_expiry(expires_in_hours, now: datetime) -> datetime | None:
    hours = expires_in_hours
    if hours is None:
        hours = current_app.config.get("VOUCHER_EXPIRY_HOURS")
    if hours is None:
        return None
    if isinstance(hours, bool) or not isinstance(hours, (int, float)) or hours <= 0:
        raise ValidationError("expires_in_hours must be a positive number")
    return now + timedelta(hours=hours)


def _normalize_currency(currency: str | None) -> str:
    value = (currency or current_app.config["DEFAULT_CURRENCY"]).strip().upper()
    if not value or len(value) > 8 or not value.isalnum():
        raise ValidationError("currency must be a short alphanumeric code")
    return value


def _status_error(status: str | None):
    if status == VOUCHER_STATUS_REDEEMED:
        return VoucherAlreadyRedeemedError()
    if status == VOUCHER_STATUS_EXPIRED:
        return VoucherExpiredError()
    return VoucherNotFoundError()


def _lost_flip(ctx: TenantContext, voucher_id: int):
    """
    Roll back after a conditional flip matched no row and return the error
    for the status the winning transaction left behind.

    The rollback ends the transaction that carried the tenant binding, so it
    is re-applied before the re-read.
    """
    db.session.rollback()
    apply_tenant_context(ctx)
    current = scoped_query(Voucher, ctx).filter(Voucher.id == voucher_id).first()
    return _status_error(current.status if current is not None else None)


def _transition(voucher_id: int, new_status: str, **values) -> bool:
    """Conditional NEW -> new_status flip. True if this transaction won."""
    stmt = (
        update(Voucher)
        .where(Voucher.id == voucher_id, Voucher.status == VOUCHER_STATUS_NEW)
        .values(status=new_status, **values)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


# =============================================================================
# ISSUE
# =============================================================================

def issue_voucher(
    ctx: TenantContext,
    *,
    actor: StaffUser | None,
    amount_minor: int,
    bonus_minor: int = 0,
    currency: str | None = None,
    tenant_id: int | None = None,
    expires_in_hours: float | None = None,
) -> IssueResult:
    """
    Issue a voucher funded from the tenant pool.

    Returns the voucher with its PIN (shown once), the user-facing code and
    the QR handle.
    """
    def _op():
        apply_tenant_context(ctx)
        target = resolve_write_tenant(ctx, tenant_id)
        require_active_tenant(target)
        now = utcnow()
        total = amount_minor + bonus_minor

        pool_service.debit_pool(ctx, target, total)

        voucher = _insert_with_unique_code({
            "tenant_id": target,
            "amount_minor": amount_minor,
            "bonus_minor": bonus_minor,
            "currency": resolved_currency,
            "created_by_staff_id": ctx.actor_id,
            "expires_at": _resolve_expiry(expires_in_hours, now),
        })

        appended = append_ledger_event(
            ctx,
            tenant_id=target,
            event_type=EVENT_VOUCHER_ISSUED,
            action_id=voucher.id,
            amount_cents=total,
            occurred_at=now,
            meta={
                "code": voucher.code,
                "amount_minor": amount_minor,
                "bonus_minor": bonus_minor,
                "currency": resolved_currency,
                "staff_id": ctx.actor_id,
            },
        )
        pin = voucher.pin
        code = voucher.code
        handle = qr_handle_for(voucher)
        db.session.commit()
        return IssueResult(
            voucher=voucher,
            pin=pin,
            user_code=code,
            qr_handle=handle,
            ledger_event=appended.event,
        )

    meta = {
        "amount_minor": amount_minor,
        "bonus_minor": bonus_minor,
        "currency": currency,
        "tenant_id": tenant_id,
    }
    try:
        permission_service.require(ctx, actor, Permission.VOUCHER_WRITE)
        _require_minor(amount_minor, "amount", allow_zero=False)
        _require_minor(bonus_minor, "bonus_amount", allow_zero=True)
        resolved_currency = _normalize_currency(currency)
        result = run_with_retry(_op)
    except Exception as exc:
        db.session.rollback()
        audit_service.log_event(
            ctx=ctx,
            event_type="VOUCHER_ISSUE",
            success=False,
            reason=audit_service.failure_reason(exc),
            status_code=audit_service.failure_status(exc),
            meta=meta,
        )
        raise

    meta.update({"voucher_id": result.voucher.id, "code": result.user_code})
    result.audit_event_id = audit_service.log_event(
        ctx=ctx,
        event_type="VOUCHER_ISSUE",
        success=True,
        tenant_id=result.voucher.tenant_id,
        subject=str(result.voucher.id),
        meta=meta,
    )
    return result


# =============================================================================
# REDEEM
# =============================================================================

def _expire_locked(ctx: TenantContext, voucher: Voucher, now: datetime, *, source: str) -> bool:
    """Flip an overdue voucher to EXPIRED and record VOUCHER_VOID."""
    if not _transition(voucher.id, VOUCHER_STATUS_EXPIRED, expired_at=now):
        return False
    append_ledger_event(
        ctx,
        tenant_id=voucher.tenant_id,
        event_type=EVENT_VOUCHER_VOID,
        action_id=voucher.id,
        amount_cents=voucher.total_credit_minor,
        occurred_at=now,
        meta={"reason": "expired", "source": source, "code": voucher.code},
        allow_existing=True,
    )
    return True


def redeem_voucher(
    ctx: TenantContext,
    *,
    code: str,
    pin: str,
    player_id: int,
    actor: StaffUser | None = None,
) -> RedeemResult:
    """
    Redeem a voucher into the player's wallet.

    Player-initiated when ctx is a player context; staff-assisted otherwise
    (requires voucher:write).
    """
    staff_assisted = ctx.actor_type != ACTOR_PLAYER

    def _op():
        apply_tenant_context(ctx)
        player = wallet_service.get_player(ctx, player_id)
        tenant_id = resolve_write_tenant(ctx, player.tenant_id)

        voucher = scoped_query(Voucher, ctx).filter(
            Voucher.tenant_id == tenant_id,
            Voucher.code == code,
            Voucher.pin == pin,
            Voucher.status == VOUCHER_STATUS_NEW,
        ).first()
        if voucher is None:
            prior = scoped_query(Voucher, ctx).filter(
                Voucher.tenant_id == tenant_id,
                Voucher.code == code,
                Voucher.pin == pin,
            ).first()
            raise _status_error(prior.status if prior else None)

        voucher_id = voucher.id
        now = utcnow()
        expires_at = as_utc_naive(voucher.expires_at)
        if expires_at is not None and expires_at <= now:
            if _expire_locked(ctx, voucher, now, source="redeem"):
                db.session.commit()
                raise VoucherExpiredError()
            raise _lost_flip(ctx, voucher_id)

        if not _transition(
            voucher_id,
            VOUCHER_STATUS_REDEEMED,
            redeemed_at=now,
            redeemed_by_player_id=player.id,
            redeemed_by_staff_id=ctx.actor_id if staff_assisted else None,
        ):
            # Another transaction flipped it between our read and our write.
            raise _lost_flip(ctx, voucher_id)
        db.session.refresh(voucher)

        wallet = wallet_service.get_or_create_wallet(ctx, player, voucher.currency)
        tx = wallet_service.credit_wallet(
            wallet,
            voucher.amount_minor,
            tx_type=TX_VOUCHER_REDEEM,
            reference=f"voucher:{voucher.code}",
            meta={"voucher_id": voucher.id, "bonus_minor": voucher.bonus_minor},
            staff_id=ctx.actor_id if staff_assisted else None,
        )
        bonus = None
        if voucher.bonus_minor > 0:
            bonus = wallet_service.stage_bonus(wallet, voucher)
        released = wallet_service.apply_pending_bonus_if_eligible(ctx, wallet, player)

        appended = append_ledger_event(
            ctx,
            tenant_id=tenant_id,
            event_type=EVENT_VOUCHER_REDEEMED,
            action_id=voucher.id,
            amount_cents=voucher.total_credit_minor,
            player_id=player.id,
            balance_cents=wallet.balance_minor,
            occurred_at=now,
            meta={
                "code": voucher.code,
                "amount_minor": voucher.amount_minor,
                "bonus_minor": voucher.bonus_minor,
                "transaction_id": tx.id,
                "staff_id": ctx.actor_id if staff_assisted else None,
            },
        )
        bonus_state = wallet_service.build_bonus_state(wallet, player)
        db.session.commit()
        return RedeemResult(
            voucher=voucher,
            wallet=wallet,
            transaction=tx,
            bonus=bonus,
            released_bonuses=released,
            bonus_state=bonus_state,
            ledger_event=appended.event,
        )

    meta = {"player_id": player_id, "code": code, "staff_assisted": staff_assisted}
    try:
        if staff_assisted:
            permission_service.require(ctx, actor, Permission.VOUCHER_WRITE)
        elif ctx.actor_id != player_id:
            raise ForbiddenError("Players may only redeem into their own wallet")
        if not code or not pin:
            raise ValidationError("code and pin are required")
        code = str(code).strip()
        pin = str(pin).strip()
        meta["code"] = code
        result = run_with_retry(_op)
    except Exception as exc:
        db.session.rollback()
        audit_service.log_event(
            ctx=ctx,
            event_type="VOUCHER_REDEEM",
            success=False,
            reason=audit_service.failure_reason(exc),
            status_code=audit_service.failure_status(exc),
            meta=meta,
        )
        raise

    meta.update({"voucher_id": result.voucher.id, "released_bonuses": len(result.released_bonuses)})
    result.audit_event_id = audit_service.log_event(
        ctx=ctx,
        event_type="VOUCHER_REDEEM",
        success=True,
        tenant_id=result.voucher.tenant_id,
        subject=str(result.voucher.id),
        meta=meta,
    )
    return result


# =============================================================================
# LIST / EXPIRE
# =============================================================================

def list_vouchers(
    ctx: TenantContext,
    *,
    actor: StaffUser | None,
    limit: int = 100,
    status: str | None = None,
) -> list[Voucher]:
    """Newest first, at most VOUCHER_LIST_MAX rows."""
    permission_service.require(ctx, actor, Permission.VOUCHER_READ)
    if status is not None and status not in VOUCHER_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(VOUCHER_STATUSES)}")
    limit = max(1, min(int(limit), current_app.config["VOUCHER_LIST_MAX"]))

    def _op():
        apply_tenant_context(ctx)
        q = scoped_query(Voucher, ctx)
        if status:
            q = q.filter(Voucher.status == status)
        rows = q.order_by(Voucher.created_at.desc(), Voucher.id.desc()).limit(limit).all()
        db.session.commit()
        return rows

    return run_with_retry(_op)


def expire_overdue_vouchers(ctx: TenantContext, *, now: datetime | None = None) -> list[int]:
    """
    Sweep NEW vouchers whose expires_at has passed. Returns expired ids.
    """
    now = now or utcnow()

    def _op():
        apply_tenant_context(ctx)
        overdue = scoped_query(Voucher, ctx).filter(
            Voucher.status == VOUCHER_STATUS_NEW,
            Voucher.expires_at.isnot(None),
            Voucher.expires_at <= now,
        ).order_by(Voucher.id).all()

        expired = [v.id for v in overdue if _expire_locked(ctx, v, now, source="sweep")]
        db.session.commit()
        return expired

    try:
        expired_ids = run_with_retry(_op)
    except Exception as exc:
        db.session.rollback()
        audit_service.log_event(
            ctx=ctx,
            event_type="VOUCHER_EXPIRE_SWEEP",
            success=False,
            reason=audit_service.failure_reason(exc),
        )
        raise

    audit_service.log_event(
        ctx=ctx,
        event_type="VOUCHER_EXPIRE_SWEEP",
        success=True,
        meta={"expired_count": len(expired_ids), "voucher_ids": expired_ids[:100]},
    )
    return expired_ids
