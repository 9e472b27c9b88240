from __future__ import annotations

from ..extensions import db
from ..money import to_major
from ..time_utils import to_utc_z


TX_VOUCHER_REDEEM = "voucher_redeem"
TX_BONUS_RELEASE = "bonus_release"
TX_DEPOSIT = "deposit"
TX_WITHDRAW = "withdraw"

BONUS_STATUS_PENDING = "PENDING"
BONUS_STATUS_TRIGGERED = "TRIGGERED"
BONUS_STATUS_CANCELLED = "CANCELLED"


class Wallet(db.Model):
    """
    Player balance holder, one per (player, tenant, currency).

    - balance_minor: spendable funds
    - bonus_pending_minor: escrowed bonus, not spendable until triggered
    - bonus_unacked_minor: released bonus the player has not yet acknowledged

    Every mutation writes a WalletTransaction and/or a LedgerEvent in the
    same database transaction.
    """
    __tablename__ = "wallets"
    __table_args__ = (
        db.UniqueConstraint("player_id", "tenant_id", "currency", name="uq_wallets_player_tenant_currency"),
        db.CheckConstraint("balance_minor >= 0", name="ck_wallets_balance_nonneg"),
        db.CheckConstraint("bonus_pending_minor >= 0", name="ck_wallets_bonus_pending_nonneg"),
        db.CheckConstraint("bonus_unacked_minor >= 0", name="ck_wallets_bonus_unacked_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey("players.id"), nullable=False, index=True)
    currency = db.Column(db.String(8), nullable=False, default="FUN")

    balance_minor = db.Column(db.BigInteger, nullable=False, default=0)
    bonus_pending_minor = db.Column(db.BigInteger, nullable=False, default=0)
    bonus_unacked_minor = db.Column(db.BigInteger, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    player = db.relationship("Player", backref=db.backref("wallets", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "player_id": self.player_id,
            "currency": self.currency,
            "balance_minor": self.balance_minor,
            "bonus_pending_minor": self.bonus_pending_minor,
            "bonus_unacked_minor": self.bonus_unacked_minor,
            "balance": to_major(self.balance_minor),
            "bonus_pending": to_major(self.bonus_pending_minor),
            "bonus_unacked": to_major(self.bonus_unacked_minor),
            "updated_at": to_utc_z(self.updated_at),
        }


class WalletTransaction(db.Model):
    """
    Immutable record of one wallet mutation.

    IMMUTABLE: Append-only. balance_before/balance_after snapshot the
    spendable balance around the change.
    """
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.Index("ix_wallet_transactions_wallet_created", "wallet_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey("wallets.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False)  # voucher_redeem, bonus_release, deposit, withdraw
    amount_minor = db.Column(db.BigInteger, nullable=False)
    balance_before_minor = db.Column(db.BigInteger, nullable=False)
    balance_after_minor = db.Column(db.BigInteger, nullable=False)

    reference = db.Column(db.String(128), nullable=True)  # e.g. voucher:123456
    meta = db.Column(db.JSON, nullable=True)

    created_by_staff_id = db.Column(db.Integer, db.ForeignKey("staff_users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    wallet = db.relationship("Wallet", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "type": self.type,
            "amount_minor": self.amount_minor,
            "amount": to_major(self.amount_minor),
            "balance_before_minor": self.balance_before_minor,
            "balance_after_minor": self.balance_after_minor,
            "reference": self.reference,
            "meta": self.meta,
            "created_at": to_utc_z(self.created_at),
        }


class Bonus(db.Model):
    """
    Escrowed bonus attached to a redeemed voucher.

    One bonus per source voucher. PENDING until the wallet's spendable
    balance reaches trigger_balance_minor, then TRIGGERED (terminal).
    """
    __tablename__ = "bonuses"
    __table_args__ = (
        db.Index("ix_bonuses_wallet_status", "wallet_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey("players.id"), nullable=False, index=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey("wallets.id"), nullable=False)
    source_voucher_id = db.Column(db.Integer, db.ForeignKey("vouchers.id"), nullable=False, unique=True)

    amount_minor = db.Column(db.BigInteger, nullable=False)
    trigger_balance_minor = db.Column(db.BigInteger, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=BONUS_STATUS_PENDING)
    triggered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "player_id": self.player_id,
            "wallet_id": self.wallet_id,
            "source_voucher_id": self.source_voucher_id,
            "amount_minor": self.amount_minor,
            "trigger_balance_minor": self.trigger_balance_minor,
            "status": self.status,
            "triggered_at": to_utc_z(self.triggered_at),
            "created_at": to_utc_z(self.created_at),
        }
