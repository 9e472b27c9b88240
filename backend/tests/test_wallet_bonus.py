# Overview: Pytest coverage for wallet cash movements and the bonus escrow lifecycle.

import pytest

from voucherpay.errors import ForbiddenError, InsufficientFundsError, NotFoundError, ValidationError
from voucherpay.extensions import db
from voucherpay.models import Bonus, LedgerEvent, Player, Wallet, WalletTransaction
from voucherpay.services import voucher_service, wallet_service


@pytest.fixture
def redeemed_with_bonus(db_session, cashier_a, player_a, staff_ctx, player_ctx):
    """player_a holds 5000 spendable with a 1000 bonus in escrow."""
    issued = voucher_service.issue_voucher(
        staff_ctx(cashier_a), actor=cashier_a, amount_minor=5000, bonus_minor=1000,
    )
    return voucher_service.redeem_voucher(
        player_ctx(player_a), code=issued.user_code, pin=issued.pin, player_id=player_a.id,
    )


def _wallet(player):
    return db.session.query(Wallet).filter_by(player_id=player.id).one()


class TestBonusTrigger:

    def test_deposit_reaching_threshold_releases_bonus(
        self, redeemed_with_bonus, cashier_a, player_a, staff_ctx
    ):
        result = wallet_service.deposit(
            staff_ctx(cashier_a), actor=cashier_a, player_id=player_a.id, amount_minor=1000, action_id="dep-1",
        )

        wallet = _wallet(player_a)
        assert wallet.balance_minor == 7000
        assert wallet.bonus_pending_minor == 0
        assert wallet.bonus_unacked_minor == 1000
        assert db.session.get(Player, player_a.id).bonus_ack_required is True

        assert len(result.released_bonuses) == 1
        bonus = db.session.query(Bonus).one()
        assert bonus.status == "TRIGGERED"
        assert bonus.triggered_at is not None

        release = db.session.query(WalletTransaction).filter_by(type="bonus_release").one()
        assert (release.balance_before_minor, release.balance_after_minor) == (6000, 7000)

    def test_below_threshold_keeps_bonus_pending(self, redeemed_with_bonus, cashier_a, player_a, staff_ctx):
        wallet_service.deposit(
            staff_ctx(cashier_a), actor=cashier_a, player_id=player_a.id, amount_minor=999, action_id="dep-1",
        )

        wallet = _wallet(player_a)
        assert wallet.balance_minor == 5999
        assert wallet.bonus_pending_minor == 1000
        assert db.session.query(Bonus).one().status == "PENDING"

    def test_bonus_triggers_only_once(self, redeemed_with_bonus, cashier_a, player_a, staff_ctx):
        ctx = staff_ctx(cashier_a)
        wallet_service.deposit(ctx, actor=cashier_a, player_id=player_a.id, amount_minor=1000, action_id="dep-1")
        wallet_service.withdraw(ctx, actor=cashier_a, player_id=player_a.id, amount_minor=6500, action_id="wd-1")
        later = wallet_service.deposit(
            ctx, actor=cashier_a, player_id=player_a.id, amount_minor=9000, action_id="dep-2",
        )

        assert later.released_bonuses == []
        wallet = _wallet(player_a)
        assert wallet.balance_minor == 9500
        assert wallet.bonus_unacked_minor == 1000
        assert db.session.query(WalletTransaction).filter_by(type="bonus_release").count() == 1

    def test_configured_threshold_releases_on_redeem(
        self, app, db_session, cashier_a, player_a, staff_ctx, player_ctx, monkeypatch
    ):
        monkeypatch.setitem(app.config, "BONUS_TRIGGER_BALANCE_MINOR", 5000)
        issued = voucher_service.issue_voucher(
            staff_ctx(cashier_a), actor=cashier_a, amount_minor=5000, bonus_minor=1000,
        )
        result = voucher_service.redeem_voucher(
            player_ctx(player_a), code=issued.user_code, pin=issued.pin, player_id=player_a.id,
        )

        assert len(result.released_bonuses) == 1
        assert result.bonus_state == {"pending_minor": 0, "unacked_minor": 1000, "ack_required": True}
        assert _wallet(player_a).balance_minor == 6000
        assert db.session.query(Bonus).one().trigger_balance_minor == 5000


class TestBonusAcknowledge:

    def test_ack_clears_unacked_and_is_idempotent(
        self, redeemed_with_bonus, cashier_a, player_a, staff_ctx, player_ctx
    ):
        wallet_service.deposit(
            staff_ctx(cashier_a), actor=cashier_a, player_id=player_a.id, amount_minor=1000, action_id="dep-1",
        )

        first = wallet_service.acknowledge_bonus(player_ctx(player_a), player_id=player_a.id)
        second = wallet_service.acknowledge_bonus(player_ctx(player_a), player_id=player_a.id)

        assert (first.acknowledged_minor, first.changed) == (1000, True)
        assert (second.acknowledged_minor, second.changed) == (0, False)

        wallet = _wallet(player_a)
        assert wallet.bonus_unacked_minor == 0
        assert wallet.balance_minor == 7000
        assert db.session.get(Player, player_a.id).bonus_ack_required is False

    def test_ack_without_wallet_is_noop(self, db_session, player_a, player_ctx):
        result = wallet_service.acknowledge_bonus(player_ctx(player_a), player_id=player_a.id)
        assert result.changed is False
        assert result.acknowledged_minor == 0


class TestCashMovements:

    def test_deposit_creates_wallet_and_ledger_entry(self, db_session, tenant_a, cashier_a, player_a, staff_ctx):
        result = wallet_service.deposit(
            staff_ctx(cashier_a), actor=cashier_a, player_id=player_a.id, amount_minor=2500, action_id="dep-1",
        )

        assert result.created is True
        assert _wallet(player_a).balance_minor == 2500
        event = db.session.query(LedgerEvent).filter_by(event_type="DEPOSIT").one()
        assert event.action_id == "dep-1"
        assert event.balance_cents == 2500
        assert event.player_id == player_a.id

    def test_deposit_is_idempotent_on_action_id(self, db_session, cashier_a, player_a, staff_ctx):
        ctx = staff_ctx(cashier_a)
        first = wallet_service.deposit(ctx, actor=cashier_a, player_id=player_a.id, amount_minor=300, action_id="dep-9")
        again = wallet_service.deposit(ctx, actor=cashier_a, player_id=player_a.id, amount_minor=300, action_id="dep-9")

        assert again.created is False
        assert again.ledger_event.id == first.ledger_event.id
        assert again.transaction.id == first.transaction.id
        assert _wallet(player_a).balance_minor == 300
        assert db.session.query(WalletTransaction).count() == 1

    def test_withdraw_debits_balance(self, db_session, cashier_a, player_a, staff_ctx):
        ctx = staff_ctx(cashier_a)
        wallet_service.deposit(ctx, actor=cashier_a, player_id=player_a.id, amount_minor=1000, action_id="dep-1")
        result = wallet_service.withdraw(ctx, actor=cashier_a, player_id=player_a.id, amount_minor=400, action_id="wd-1")

        assert result.transaction.type == "withdraw"
        assert _wallet(player_a).balance_minor == 600

    def test_withdraw_beyond_balance_is_rejected(self, db_session, cashier_a, player_a, staff_ctx):
        ctx = staff_ctx(cashier_a)
        wallet_service.deposit(ctx, actor=cashier_a, player_id=player_a.id, amount_minor=1000, action_id="dep-1")

        with pytest.raises(InsufficientFundsError):
            wallet_service.withdraw(ctx, actor=cashier_a, player_id=player_a.id, amount_minor=1001, action_id="wd-1")

        assert _wallet(player_a).balance_minor == 1000
        assert db.session.query(LedgerEvent).filter_by(event_type="WITHDRAW").count() == 0

    def test_withdraw_without_wallet_is_insufficient(self, db_session, cashier_a, player_a, staff_ctx):
        with pytest.raises(InsufficientFundsError):
            wallet_service.withdraw(
                staff_ctx(cashier_a), actor=cashier_a, player_id=player_a.id, amount_minor=1, action_id="wd-1",
            )

    def test_bonus_escrow_is_not_spendable(self, redeemed_with_bonus, cashier_a, player_a, staff_ctx):
        with pytest.raises(InsufficientFundsError):
            wallet_service.withdraw(
                staff_ctx(cashier_a), actor=cashier_a, player_id=player_a.id, amount_minor=5500, action_id="wd-1",
            )

    @pytest.mark.parametrize("amount, action_id", [(0, "a"), (-1, "a"), (10, ""), (10, None), (1.5, "a")])
    def test_invalid_requests_rejected(self, db_session, cashier_a, player_a, staff_ctx, amount, action_id):
        with pytest.raises(ValidationError):
            wallet_service.deposit(
                staff_ctx(cashier_a), actor=cashier_a, player_id=player_a.id, amount_minor=amount, action_id=action_id,
            )

    def test_subagent_cannot_move_cash(self, db_session, subagent_a, player_a, staff_ctx):
        with pytest.raises(ForbiddenError):
            wallet_service.deposit(
                staff_ctx(subagent_a), actor=subagent_a, player_id=player_a.id, amount_minor=10, action_id="dep-1",
            )

    def test_foreign_tenant_player_not_found(self, db_session, cashier_b, player_a, staff_ctx):
        with pytest.raises(NotFoundError):
            wallet_service.deposit(
                staff_ctx(cashier_b), actor=cashier_b, player_id=player_a.id, amount_minor=10, action_id="dep-1",
            )


class TestWalletOverview:

    def test_overview_lists_recent_transactions(self, redeemed_with_bonus, cashier_a, player_a, staff_ctx, player_ctx):
        wallet_service.deposit(
            staff_ctx(cashier_a), actor=cashier_a, player_id=player_a.id, amount_minor=200, action_id="dep-1",
        )

        overview = wallet_service.get_wallet_overview(player_ctx(player_a), player_id=player_a.id)

        assert overview["wallet"]["balance_minor"] == 5200
        assert overview["bonus_state"] == {"pending_minor": 1000, "unacked_minor": 0, "ack_required": False}
        assert [t["type"] for t in overview["transactions"]] == ["deposit", "voucher_redeem"]

    def test_overview_without_wallet(self, db_session, player_a, player_ctx):
        overview = wallet_service.get_wallet_overview(player_ctx(player_a), player_id=player_a.id)
        assert overview["wallet"] is None
        assert overview["transactions"] == []
