from __future__ import annotations

from ..extensions import db
from ..money import to_major
from ..time_utils import to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every voucher, wallet, player and ledger row belongs
    to exactly one tenant.

    DESIGN:
    - Tenants are the isolation boundary
    - Only owner-role staff may act across tenants
    - Deactivated tenants cannot log in or transact
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class VoucherPool(db.Model):
    """
    Per-tenant issuance allowance.

    The pool is the only funding source for a tenant's vouchers. It is
    debited under a row lock in the same transaction that inserts the
    voucher, and can never go negative.
    """
    __tablename__ = "voucher_pools"
    __table_args__ = (
        db.CheckConstraint("balance_minor >= 0", name="ck_voucher_pools_balance_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, unique=True, index=True)

    balance_minor = db.Column(db.BigInteger, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="FUN")

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    tenant = db.relationship("Tenant", backref=db.backref("voucher_pool", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "balance_minor": self.balance_minor,
            "balance": to_major(self.balance_minor),
            "currency": self.currency,
            "updated_at": to_utc_z(self.updated_at),
        }
