# Overview: Append-only financial event store keyed by (tenant, action, event type).

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateLedgerEventError, ValidationError
from ..extensions import db
from ..models import LedgerEvent
from ..time_utils import utcnow
from .tenant_service import TenantContext, require_bound_context, require_tenant_in_scope, scoped_query

"""
Ledger Invariants (authoritative)

- Append-only: no updates or deletes of existing events.
- Events are written inside the same DB transaction as the balance change
  they record; the caller commits.
- (tenant_id, action_id, event_type) is unique. A legitimate retry passes
  allow_existing=True and gets the stored event back; a collision on a fresh
  action is caller misuse and raises DuplicateLedgerEventError.
"""

EVENT_VOUCHER_ISSUED = "VOUCHER_ISSUED"
EVENT_VOUCHER_REDEEMED = "VOUCHER_REDEEMED"
EVENT_VOUCHER_VOID = "VOUCHER_VOID"
EVENT_POOL_FUNDED = "POOL_FUNDED"
EVENT_DEPOSIT = "DEPOSIT"
EVENT_WITHDRAW = "WITHDRAW"

LEDGER_EVENT_TYPES = (
    EVENT_VOUCHER_ISSUED,
    EVENT_VOUCHER_REDEEMED,
    EVENT_VOUCHER_VOID,
    EVENT_POOL_FUNDED,
    EVENT_DEPOSIT,
    EVENT_WITHDRAW,
)


@dataclass
class LedgerAppendResult:
    event: LedgerEvent
    created: bool


def find_ledger_event(tenant_id: int, action_id, event_type: str) -> LedgerEvent | None:
    return db.session.query(LedgerEvent).filter_by(
        tenant_id=tenant_id,
        action_id=str(action_id),
        event_type=event_type,
    ).first()


def append_ledger_event(
    ctx: TenantContext,
    *,
    tenant_id: int,
    event_type: str,
    action_id,
    amount_cents: int | None = None,
    player_id: int | None = None,
    session_id: str | None = None,
    bet_cents: int | None = None,
    win_cents: int | None = None,
    balance_cents: int | None = None,
    meta: dict | None = None,
    occurred_at: datetime | None = None,
    allow_existing: bool = False,
) -> LedgerAppendResult:
    """
    Append one ledger event inside the caller's transaction.

    Returns LedgerAppendResult(created=False) with the stored event when the
    action was already recorded and allow_existing is set.
    """
    require_bound_context(ctx)
    require_tenant_in_scope(ctx, tenant_id)

    if event_type not in LEDGER_EVENT_TYPES:
        raise ValidationError(f"Unknown ledger event type: {event_type}")
    if action_id is None or str(action_id).strip() == "":
        raise ValidationError("action_id is required")
    action_id = str(action_id)

    existing = find_ledger_event(tenant_id, action_id, event_type)
    if existing is not None:
        return _existing_or_raise(existing, allow_existing)

    ev = LedgerEvent(
        tenant_id=tenant_id,
        ts=occurred_at or utcnow(),
        player_id=player_id,
        session_id=session_id,
        event_type=event_type,
        action_id=action_id,
        amount_cents=amount_cents,
        bet_cents=bet_cents,
        win_cents=win_cents,
        balance_cents=balance_cents,
        meta=meta,
    )
    try:
        with db.session.begin_nested():
            db.session.add(ev)
    except IntegrityError:
        # Lost a race with a concurrent append of the same action.
        existing = find_ledger_event(tenant_id, action_id, event_type)
        if existing is None:
            raise
        return _existing_or_raise(existing, allow_existing)

    return LedgerAppendResult(event=ev, created=True)


def _existing_or_raise(existing: LedgerEvent, allow_existing: bool) -> LedgerAppendResult:
    if not allow_existing:
        raise DuplicateLedgerEventError(
            f"{existing.event_type} already recorded for action {existing.action_id}",
            details={"ledger_event_id": existing.id},
        )
    return LedgerAppendResult(event=existing, created=False)


def list_ledger_events(
    ctx: TenantContext,
    *,
    event_type: str | None = None,
    player_id: int | None = None,
    action_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> list[LedgerEvent]:
    """Newest first. Caller must have applied ctx."""
    limit = max(1, min(limit, 500))

    q = scoped_query(LedgerEvent, ctx)
    if event_type:
        q = q.filter(LedgerEvent.event_type == event_type)
    if player_id is not None:
        q = q.filter(LedgerEvent.player_id == player_id)
    if action_id:
        q = q.filter(LedgerEvent.action_id == str(action_id))
    if start is not None:
        q = q.filter(LedgerEvent.ts >= start)
    if end is not None:
        q = q.filter(LedgerEvent.ts <= end)

    return q.order_by(LedgerEvent.ts.desc(), LedgerEvent.id.desc()).limit(limit).all()


def sum_amount_cents(ctx: TenantContext, *, tenant_id: int, event_type: str) -> int:
    """Total amount_cents for one event type in one tenant."""
    require_tenant_in_scope(ctx, tenant_id)
    total = scoped_query(LedgerEvent, ctx).filter(
        LedgerEvent.tenant_id == tenant_id,
        LedgerEvent.event_type == event_type,
    ).with_entities(db.func.coalesce(db.func.sum(LedgerEvent.amount_cents), 0)).scalar()
    return int(total or 0)
