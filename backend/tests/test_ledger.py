# Overview: Pytest coverage for the append-only ledger and its idempotency key.

import pytest

from voucherpay.errors import DuplicateLedgerEventError, TenantContextError, TenantMismatchError, ValidationError
from voucherpay.extensions import db
from voucherpay.models import LedgerEvent
from voucherpay.services.ledger_service import (
    EVENT_DEPOSIT,
    append_ledger_event,
    list_ledger_events,
    sum_amount_cents,
)
from voucherpay.services.tenant_service import apply_tenant_context, system_context


def _append(ctx, tenant_id, action_id, amount, **kwargs):
    apply_tenant_context(ctx)
    result = append_ledger_event(
        ctx, tenant_id=tenant_id, event_type=EVENT_DEPOSIT, action_id=action_id, amount_cents=amount, **kwargs,
    )
    db.session.commit()
    return result


class TestAppendLedgerEvent:

    def test_append_requires_bound_context(self, db_session, tenant_a):
        with pytest.raises(TenantContextError):
            append_ledger_event(
                system_context(tenant_a.id), tenant_id=tenant_a.id, event_type=EVENT_DEPOSIT, action_id="x",
            )

    def test_replay_with_allow_existing_returns_stored_event(self, db_session, tenant_a):
        ctx = system_context(tenant_a.id)
        first = _append(ctx, tenant_a.id, "cash-1", 500)
        replay = _append(ctx, tenant_a.id, "cash-1", 500, allow_existing=True)

        assert first.created is True
        assert replay.created is False
        assert replay.event.id == first.event.id

        apply_tenant_context(ctx)
        assert sum_amount_cents(ctx, tenant_id=tenant_a.id, event_type=EVENT_DEPOSIT) == 500
        db.session.commit()

    def test_fresh_duplicate_is_rejected(self, db_session, tenant_a):
        ctx = system_context(tenant_a.id)
        _append(ctx, tenant_a.id, "cash-1", 500)

        with pytest.raises(DuplicateLedgerEventError) as excinfo:
            _append(ctx, tenant_a.id, "cash-1", 500)
        db.session.rollback()

        assert excinfo.value.status_code == 409
        assert db.session.query(LedgerEvent).count() == 1

    def test_same_action_id_in_other_tenant_is_distinct(self, db_session, tenant_a, tenant_b):
        _append(system_context(tenant_a.id), tenant_a.id, "cash-1", 500)
        result = _append(system_context(tenant_b.id), tenant_b.id, "cash-1", 700)

        assert result.created is True
        assert db.session.query(LedgerEvent).count() == 2

    def test_unknown_event_type_rejected(self, db_session, tenant_a):
        ctx = system_context(tenant_a.id)
        apply_tenant_context(ctx)
        with pytest.raises(ValidationError):
            append_ledger_event(ctx, tenant_id=tenant_a.id, event_type="BET", action_id="x")
        db.session.rollback()

    def test_missing_action_id_rejected(self, db_session, tenant_a):
        ctx = system_context(tenant_a.id)
        apply_tenant_context(ctx)
        with pytest.raises(ValidationError):
            append_ledger_event(ctx, tenant_id=tenant_a.id, event_type=EVENT_DEPOSIT, action_id="  ")
        db.session.rollback()

    def test_pinned_context_cannot_write_other_tenant(self, db_session, tenant_a, tenant_b):
        ctx = system_context(tenant_a.id)
        apply_tenant_context(ctx)
        with pytest.raises(TenantMismatchError):
            append_ledger_event(ctx, tenant_id=tenant_b.id, event_type=EVENT_DEPOSIT, action_id="x")
        db.session.rollback()


class TestListLedgerEvents:

    def test_filters_and_scope(self, db_session, tenant_a, tenant_b, player_a):
        ctx_a = system_context(tenant_a.id)
        _append(ctx_a, tenant_a.id, "cash-1", 100)
        _append(ctx_a, tenant_a.id, "cash-2", 200, player_id=player_a.id)
        _append(system_context(tenant_b.id), tenant_b.id, "cash-1", 300)

        apply_tenant_context(ctx_a)
        events = list_ledger_events(ctx_a)
        by_player = list_ledger_events(ctx_a, player_id=player_a.id)
        by_action = list_ledger_events(ctx_a, action_id="cash-1")
        db.session.commit()

        assert [e.amount_cents for e in events] == [200, 100]
        assert [e.action_id for e in by_player] == ["cash-2"]
        assert [e.amount_cents for e in by_action] == [100]

    def test_global_context_sees_every_tenant(self, db_session, tenant_a, tenant_b):
        _append(system_context(tenant_a.id), tenant_a.id, "cash-1", 100)
        _append(system_context(tenant_b.id), tenant_b.id, "cash-1", 300)

        ctx = system_context()
        apply_tenant_context(ctx)
        assert len(list_ledger_events(ctx)) == 2
        db.session.commit()
