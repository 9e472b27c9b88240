from __future__ import annotations

from ..extensions import db
from ..money import to_major
from ..time_utils import to_utc_z


VOUCHER_STATUS_NEW = "NEW"
VOUCHER_STATUS_REDEEMED = "REDEEMED"
VOUCHER_STATUS_EXPIRED = "EXPIRED"

VOUCHER_STATUSES = (VOUCHER_STATUS_NEW, VOUCHER_STATUS_REDEEMED, VOUCHER_STATUS_EXPIRED)


class Voucher(db.Model):
    """
    Prepaid value code issued by staff and redeemed by a player.

    LIFECYCLE: NEW -> REDEEMED or NEW -> EXPIRED, exactly once. The status flip
    is a conditional UPDATE on status='NEW'; rows that left NEW are never
    changed again except for metadata.
    """
    __tablename__ = "vouchers"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_vouchers_tenant_code"),
        db.CheckConstraint("amount_minor > 0", name="ck_vouchers_amount_positive"),
        db.CheckConstraint("bonus_minor >= 0", name="ck_vouchers_bonus_nonneg"),
        db.Index("ix_vouchers_tenant_status", "tenant_id", "status"),
        db.Index("ix_vouchers_tenant_created", "tenant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    code = db.Column(db.String(16), nullable=False)
    pin = db.Column(db.String(16), nullable=False)

    amount_minor = db.Column(db.Integer, nullable=False)
    bonus_minor = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="FUN")

    status = db.Column(db.String(16), nullable=False, default=VOUCHER_STATUS_NEW)

    created_by_staff_id = db.Column(db.Integer, db.ForeignKey("staff_users.id"), nullable=True)
    redeemed_by_player_id = db.Column(db.Integer, db.ForeignKey("players.id"), nullable=True, index=True)
    redeemed_by_staff_id = db.Column(db.Integer, db.ForeignKey("staff_users.id"), nullable=True)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    meta = db.Column(db.JSON, nullable=True)

    @property
    def total_credit_minor(self) -> int:
        return self.amount_minor + (self.bonus_minor or 0)

    def to_dict(self) -> dict:
        # PIN is only ever returned once, by the issue response.
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "code": self.code,
            "amount_minor": self.amount_minor,
            "bonus_minor": self.bonus_minor,
            "total_credit_minor": self.total_credit_minor,
            "amount": to_major(self.amount_minor),
            "bonus_amount": to_major(self.bonus_minor),
            "total_credit": to_major(self.total_credit_minor),
            "currency": self.currency,
            "status": self.status,
            "created_by_staff_id": self.created_by_staff_id,
            "redeemed_by_player_id": self.redeemed_by_player_id,
            "redeemed_by_staff_id": self.redeemed_by_staff_id,
            "expires_at": to_utc_z(self.expires_at),
            "redeemed_at": to_utc_z(self.redeemed_at),
            "expired_at": to_utc_z(self.expired_at),
            "created_at": to_utc_z(self.created_at),
        }
