# Overview: Player wallets, escrowed bonuses and staff cash movements.

"""
Wallet & Bonus Engine

WHY: Wallet balances are only ever changed here, always together with an
immutable WalletTransaction and/or LedgerEvent in the same transaction.

BONUS LIFECYCLE:
- Redeeming a voucher with a bonus stages the bonus in escrow
  (bonus_pending) and creates a PENDING Bonus row
- Once the spendable balance reaches the bonus trigger threshold the bonus
  is released: pending -> unacked, the amount becomes spendable, and the
  player is flagged to acknowledge it
- TRIGGERED is terminal; later balance changes never re-trigger
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientFundsError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Bonus, LedgerEvent, Player, StaffUser, Voucher, Wallet, WalletTransaction
from ..models.wallets import (
    BONUS_STATUS_PENDING,
    BONUS_STATUS_TRIGGERED,
    TX_BONUS_RELEASE,
    TX_DEPOSIT,
    TX_WITHDRAW,
)
from ..permissions import Permission
from ..time_utils import utcnow
from . import audit_service, permission_service
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import EVENT_DEPOSIT, EVENT_WITHDRAW, append_ledger_event, find_ledger_event
from .tenant_service import (
    TenantContext,
    apply_tenant_context,
    resolve_write_tenant,
    scoped_query,
)


@dataclass
class WalletOpResult:
    wallet: Wallet
    transaction: WalletTransaction | None
    ledger_event: LedgerEvent
    created: bool
    released_bonuses: list = field(default_factory=list)
    audit_event_id: int | None = None


@dataclass
class BonusAckResult:
    player: Player
    acknowledged_minor: int
    changed: bool
    audit_event_id: int | None = None


# =============================================================================
# LOOKUPS
# =============================================================================

def get_player(ctx: TenantContext, player_id: int) -> Player:
    player = scoped_query(Player, ctx).filter(Player.id == player_id).first()
    if player is None or not player.is_active:
        raise NotFoundError("Player not found")
    return player


def _wallet_query(ctx: TenantContext, player: Player, currency: str):
    return scoped_query(Wallet, ctx).filter(
        Wallet.player_id == player.id,
        Wallet.tenant_id == player.tenant_id,
        Wallet.currency == currency,
    )


def get_or_create_wallet(ctx: TenantContext, player: Player, currency: str | None = None) -> Wallet:
    """Fetch the player's wallet for currency under a row lock, creating it if absent."""
    currency = currency or current_app.config["DEFAULT_CURRENCY"]
    wallet = lock_for_update(_wallet_query(ctx, player, currency)).first()
    if wallet is not None:
        return wallet

    wallet = Wallet(
        tenant_id=player.tenant_id,
        player_id=player.id,
        currency=currency,
        balance_minor=0,
        bonus_pending_minor=0,
        bonus_unacked_minor=0,
    )
    try:
        with db.session.begin_nested():
            db.session.add(wallet)
    except IntegrityError:
        # Created concurrently; use theirs.
        wallet = lock_for_update(_wallet_query(ctx, player, currency)).first()
    return wallet


def find_wallet(ctx: TenantContext, player: Player, currency: str | None = None) -> Wallet | None:
    currency = currency or current_app.config["DEFAULT_CURRENCY"]
    return _wallet_query(ctx, player, currency).first()


# =============================================================================
# BALANCE MUTATIONS (inside caller's transaction)
# =============================================================================

def _record(
    wallet: Wallet,
    *,
    tx_type: str,
    delta_minor: int,
    reference: str | None,
    meta: dict | None,
    staff_id: int | None,
) -> WalletTransaction:
    before = wallet.balance_minor
    after = before + delta_minor
    if after < 0:
        raise InsufficientFundsError(
            "Wallet balance is too low",
            details={"balance_minor": before, "required_minor": -delta_minor},
        )
    wallet.balance_minor = after

    tx = WalletTransaction(
        tenant_id=wallet.tenant_id,
        wallet_id=wallet.id,
        type=tx_type,
        amount_minor=abs(delta_minor),
        balance_before_minor=before,
        balance_after_minor=after,
        reference=reference,
        meta=meta,
        created_by_staff_id=staff_id,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def credit_wallet(wallet: Wallet, amount_minor: int, *, tx_type: str, reference: str | None = None,
                  meta: dict | None = None, staff_id: int | None = None) -> WalletTransaction:
    return _record(wallet, tx_type=tx_type, delta_minor=amount_minor, reference=reference, meta=meta, staff_id=staff_id)


def debit_wallet(wallet: Wallet, amount_minor: int, *, tx_type: str, reference: str | None = None,
                 meta: dict | None = None, staff_id: int | None = None) -> WalletTransaction:
    return _record(wallet, tx_type=tx_type, delta_minor=-amount_minor, reference=reference, meta=meta, staff_id=staff_id)


def bonus_trigger_threshold(voucher: Voucher) -> int:
    configured = current_app.config.get("BONUS_TRIGGER_BALANCE_MINOR")
    if configured is not None:
        return configured
    return voucher.total_credit_minor


def stage_bonus(wallet: Wallet, voucher: Voucher) -> Bonus:
    """Escrow a voucher's bonus on the wallet."""
    wallet.bonus_pending_minor = wallet.bonus_pending_minor + voucher.bonus_minor
    bonus = Bonus(
        tenant_id=wallet.tenant_id,
        player_id=wallet.player_id,
        wallet_id=wallet.id,
        source_voucher_id=voucher.id,
        amount_minor=voucher.bonus_minor,
        trigger_balance_minor=bonus_trigger_threshold(voucher),
        status=BONUS_STATUS_PENDING,
    )
    db.session.add(bonus)
    db.session.flush()
    return bonus


def apply_pending_bonus_if_eligible(ctx: TenantContext, wallet: Wallet, player: Player | None = None) -> list[Bonus]:
    """
    Release every PENDING bonus on the wallet whose threshold the spendable
    balance has reached, oldest first. Returns the released bonuses.
    """
    pending = (
        scoped_query(Bonus, ctx)
        .filter(Bonus.wallet_id == wallet.id, Bonus.status == BONUS_STATUS_PENDING)
        .order_by(Bonus.id)
        .all()
    )

    released = []
    now = utcnow()
    for bonus in pending:
        if wallet.balance_minor < bonus.trigger_balance_minor:
            continue

        amount = min(bonus.amount_minor, wallet.bonus_pending_minor)
        wallet.bonus_pending_minor = wallet.bonus_pending_minor - amount
        wallet.bonus_unacked_minor = wallet.bonus_unacked_minor + amount
        _record(
            wallet,
            tx_type=TX_BONUS_RELEASE,
            delta_minor=amount,
            reference=f"bonus:{bonus.id}",
            meta={"source_voucher_id": bonus.source_voucher_id},
            staff_id=None,
        )
        bonus.status = BONUS_STATUS_TRIGGERED
        bonus.triggered_at = now
        released.append(bonus)

    if released:
        player = player or db.session.get(Player, wallet.player_id)
        player.bonus_ack_required = True
        db.session.flush()
    return released


def build_bonus_state(wallet: Wallet | None, player: Player) -> dict:
    return {
        "pending_minor": wallet.bonus_pending_minor if wallet else 0,
        "unacked_minor": wallet.bonus_unacked_minor if wallet else 0,
        "ack_required": bool(player.bonus_ack_required),
    }


# =============================================================================
# STAFF CASH MOVEMENTS
# =============================================================================

def _validate_cash_request(amount_minor, action_id) -> str:
    if isinstance(amount_minor, bool) or not isinstance(amount_minor, int):
        raise ValidationError("amount_minor must be an integer number of minor units")
    if amount_minor <= 0:
        raise ValidationError("amount must be positive")
    if action_id is None or str(action_id).strip() == "":
        raise ValidationError("action_id is required")
    return str(action_id).strip()


def _replay(ctx: TenantContext, player: Player, event: LedgerEvent, currency: str) -> WalletOpResult:
    wallet = find_wallet(ctx, player, currency)
    tx_id = (event.meta or {}).get("transaction_id")
    tx = db.session.get(WalletTransaction, tx_id) if tx_id else None
    return WalletOpResult(wallet=wallet, transaction=tx, ledger_event=event, created=False)


def _cash_movement(
    ctx: TenantContext,
    *,
    actor: StaffUser | None,
    player_id: int,
    amount_minor: int,
    action_id: str,
    currency: str | None,
    event_type: str,
    audit_type: str,
) -> WalletOpResult:
    currency = currency or current_app.config["DEFAULT_CURRENCY"]
    is_deposit = event_type == EVENT_DEPOSIT

    def _op():
        apply_tenant_context(ctx)
        player = get_player(ctx, player_id)
        tenant_id = resolve_write_tenant(ctx, player.tenant_id)

        existing = find_ledger_event(tenant_id, action_id, event_type)
        if existing is not None:
            result = _replay(ctx, player, existing, currency)
            db.session.commit()
            return result

        if is_deposit:
            wallet = get_or_create_wallet(ctx, player, currency)
        else:
            wallet = lock_for_update(_wallet_query(ctx, player, currency)).first()
            if wallet is None:
                raise InsufficientFundsError(
                    "Wallet balance is too low",
                    details={"balance_minor": 0, "required_minor": amount_minor},
                )
        tx_type = TX_DEPOSIT if is_deposit else TX_WITHDRAW
        mutate = credit_wallet if is_deposit else debit_wallet
        tx = mutate(
            wallet,
            amount_minor,
            tx_type=tx_type,
            reference=f"{tx_type}:{action_id}",
            meta={"action_id": action_id},
            staff_id=ctx.actor_id,
        )
        released = apply_pending_bonus_if_eligible(ctx, wallet, player) if is_deposit else []

        appended = append_ledger_event(
            ctx,
            tenant_id=tenant_id,
            event_type=event_type,
            action_id=action_id,
            amount_cents=amount_minor,
            player_id=player.id,
            balance_cents=wallet.balance_minor,
            meta={"transaction_id": tx.id, "staff_id": ctx.actor_id},
            allow_existing=True,
        )
        if not appended.created:
            # Concurrent duplicate won; discard our credit.
            db.session.rollback()
            apply_tenant_context(ctx)
            result = _replay(ctx, get_player(ctx, player_id), appended.event, currency)
            db.session.commit()
            return result

        db.session.commit()
        return WalletOpResult(
            wallet=wallet,
            transaction=tx,
            ledger_event=appended.event,
            created=True,
            released_bonuses=released,
        )

    meta = {"player_id": player_id, "amount_minor": amount_minor, "action_id": action_id}
    try:
        permission_service.require(ctx, actor, Permission.FINANCE_WRITE)
        action_id = _validate_cash_request(amount_minor, action_id)
        result = run_with_retry(_op)
    except Exception as exc:
        db.session.rollback()
        audit_service.log_event(
            ctx=ctx,
            event_type=audit_type,
            success=False,
            reason=audit_service.failure_reason(exc),
            status_code=audit_service.failure_status(exc),
            meta=meta,
        )
        raise

    meta["replayed"] = not result.created
    result.audit_event_id = audit_service.log_event(
        ctx=ctx,
        event_type=audit_type,
        success=True,
        tenant_id=result.ledger_event.tenant_id,
        subject=action_id,
        meta=meta,
    )
    return result


def deposit(ctx: TenantContext, *, actor: StaffUser | None, player_id: int, amount_minor: int,
            action_id: str, currency: str | None = None) -> WalletOpResult:
    """Staff credit to a player wallet. Idempotent on action_id."""
    return _cash_movement(
        ctx,
        actor=actor,
        player_id=player_id,
        amount_minor=amount_minor,
        action_id=action_id,
        currency=currency,
        event_type=EVENT_DEPOSIT,
        audit_type="WALLET_DEPOSIT",
    )


def withdraw(ctx: TenantContext, *, actor: StaffUser | None, player_id: int, amount_minor: int,
             action_id: str, currency: str | None = None) -> WalletOpResult:
    """Staff payout from a player wallet. Never drives the balance negative."""
    return _cash_movement(
        ctx,
        actor=actor,
        player_id=player_id,
        amount_minor=amount_minor,
        action_id=action_id,
        currency=currency,
        event_type=EVENT_WITHDRAW,
        audit_type="WALLET_WITHDRAW",
    )


# =============================================================================
# PLAYER OPERATIONS
# =============================================================================

def acknowledge_bonus(ctx: TenantContext, *, player_id: int) -> BonusAckResult:
    """
    Clear the player's acknowledgement flag and zero bonus_unacked on all of
    their wallets. Acknowledging twice is a no-op.
    """
    def _op():
        apply_tenant_context(ctx)
        player = lock_for_update(scoped_query(Player, ctx).filter(Player.id == player_id)).first()
        if player is None:
            raise NotFoundError("Player not found")

        wallets = lock_for_update(scoped_query(Wallet, ctx).filter(Wallet.player_id == player.id)).all()
        acknowledged = sum(w.bonus_unacked_minor for w in wallets)
        changed = bool(player.bonus_ack_required) or acknowledged > 0

        if changed:
            for wallet in wallets:
                wallet.bonus_unacked_minor = 0
            player.bonus_ack_required = False
            db.session.commit()
        else:
            db.session.rollback()
        return BonusAckResult(player=player, acknowledged_minor=acknowledged, changed=changed)

    try:
        result = run_with_retry(_op)
    except Exception as exc:
        db.session.rollback()
        audit_service.log_event(
            ctx=ctx,
            event_type="BONUS_ACK",
            success=False,
            reason=audit_service.failure_reason(exc),
            status_code=audit_service.failure_status(exc),
            meta={"player_id": player_id},
        )
        raise

    result.audit_event_id = audit_service.log_event(
        ctx=ctx,
        event_type="BONUS_ACK",
        success=True,
        subject=str(player_id),
        meta={"acknowledged_minor": result.acknowledged_minor, "changed": result.changed},
    )
    return result


def get_wallet_overview(ctx: TenantContext, *, player_id: int, currency: str | None = None,
                        tx_limit: int = 20) -> dict:
    """Wallet, bonus state and recent transactions for one player."""
    def _op():
        apply_tenant_context(ctx)
        player = get_player(ctx, player_id)
        wallet = find_wallet(ctx, player, currency)
        transactions = []
        if wallet is not None:
            transactions = (
                scoped_query(WalletTransaction, ctx)
                .filter(WalletTransaction.wallet_id == wallet.id)
                .order_by(WalletTransaction.id.desc())
                .limit(max(1, min(tx_limit, 100)))
                .all()
            )
        overview = {
            "player": player.to_dict(),
            "wallet": wallet.to_dict() if wallet else None,
            "bonus_state": build_bonus_state(wallet, player),
            "transactions": [t.to_dict() for t in transactions],
        }
        db.session.commit()
        return overview

    return run_with_retry(_op)
