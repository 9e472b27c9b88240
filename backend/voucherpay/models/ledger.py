from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class LedgerEvent(db.Model):
    """
    Canonical financial event stream.

    IMMUTABLE: Append-only. (tenant_id, action_id, event_type) is unique so a
    retried action can never be counted twice.
    """
    __tablename__ = "ledger_events"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "action_id", "event_type", name="uq_ledger_events_tenant_action_type"),
        db.Index("ix_ledger_events_tenant_ts", "tenant_id", "ts"),
        db.Index("ix_ledger_events_player", "player_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    ts = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    player_id = db.Column(db.Integer, db.ForeignKey("players.id"), nullable=True)
    session_id = db.Column(db.String(64), nullable=True)

    event_type = db.Column(db.String(32), nullable=False, index=True)
    action_id = db.Column(db.String(64), nullable=False)

    amount_cents = db.Column(db.BigInteger, nullable=True)
    bet_cents = db.Column(db.BigInteger, nullable=True)
    win_cents = db.Column(db.BigInteger, nullable=True)
    balance_cents = db.Column(db.BigInteger, nullable=True)

    meta = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "ts": to_utc_z(self.ts),
            "player_id": self.player_id,
            "session_id": self.session_id,
            "event_type": self.event_type,
            "action_id": self.action_id,
            "amount_cents": self.amount_cents,
            "bet_cents": self.bet_cents,
            "win_cents": self.win_cents,
            "balance_cents": self.balance_cents,
            "meta": self.meta,
        }
