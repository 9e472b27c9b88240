# Overview: Pytest coverage for tenant context binding and cross-tenant isolation.

"""
Tenant Context Guard Tests

SECURITY TESTS: prove that
1. Non-owner actors are pinned to their own tenant
2. scoped_query refuses to run without a context bound to the transaction
3. The binding does not survive the transaction it was applied in
4. Reads and writes never cross tenants
"""

import pytest

from voucherpay.errors import (
    NotFoundError,
    TenantContextError,
    TenantMismatchError,
    ValidationError,
    VoucherNotFoundError,
)
from voucherpay.extensions import db
from voucherpay.models import AuditEvent, Voucher
from voucherpay.services import voucher_service
from voucherpay.services.tenant_service import (
    apply_tenant_context,
    bound_tenant_context,
    build_tenant_context,
    resolve_write_tenant,
    scoped_query,
    system_context,
)


class TestBuildTenantContext:

    def test_staff_pinned_to_own_tenant(self, db_session, cashier_a, staff_ctx, tenant_a):
        ctx = staff_ctx(cashier_a)
        assert ctx.tenant_id == tenant_a.id
        assert ctx.role == "cashier"
        assert not ctx.is_global

    def test_staff_requesting_own_tenant_is_allowed(self, db_session, cashier_a, staff_ctx, tenant_a):
        assert staff_ctx(cashier_a, tenant_a.id).tenant_id == tenant_a.id

    def test_staff_requesting_foreign_tenant_is_mismatch(self, db_session, cashier_a, staff_ctx, tenant_b):
        with pytest.raises(TenantMismatchError):
            staff_ctx(cashier_a, tenant_b.id)

    def test_owner_may_pick_any_tenant_or_all(self, db_session, owner, staff_ctx, tenant_b):
        assert staff_ctx(owner, tenant_b.id).tenant_id == tenant_b.id
        assert staff_ctx(owner).is_global

    def test_non_owner_without_tenant_is_rejected(self):
        with pytest.raises(TenantMismatchError):
            build_tenant_context(role="operator", actor_tenant_id=None, actor_id=1)

    def test_player_role_never_gets_owner_scope(self):
        with pytest.raises(TenantMismatchError):
            build_tenant_context(role="owner", actor_tenant_id=None, actor_id=1, actor_type="player")

    def test_context_is_immutable(self, db_session, cashier_a, staff_ctx):
        ctx = staff_ctx(cashier_a)
        with pytest.raises(Exception):
            ctx.tenant_id = 999


class TestTransactionBinding:

    def test_scoped_query_requires_applied_context(self, db_session, cashier_a, staff_ctx):
        with pytest.raises(TenantContextError):
            scoped_query(Voucher, staff_ctx(cashier_a))

    def test_scoped_query_rejects_a_different_context(self, db_session, cashier_a, cashier_b, staff_ctx):
        apply_tenant_context(staff_ctx(cashier_a))
        with pytest.raises(TenantContextError):
            scoped_query(Voucher, staff_ctx(cashier_b))
        db.session.rollback()

    def test_binding_dropped_on_commit(self, db_session, cashier_a, staff_ctx):
        ctx = staff_ctx(cashier_a)
        apply_tenant_context(ctx)
        assert bound_tenant_context() == ctx
        db.session.commit()
        assert bound_tenant_context() is None

    def test_binding_dropped_on_rollback(self, db_session, cashier_a, staff_ctx):
        apply_tenant_context(staff_ctx(cashier_a))
        db.session.rollback()
        assert bound_tenant_context() is None

    def test_binding_survives_savepoint(self, db_session, cashier_a, staff_ctx):
        ctx = staff_ctx(cashier_a)
        apply_tenant_context(ctx)
        with db.session.begin_nested():
            pass
        assert bound_tenant_context() == ctx
        db.session.rollback()


class TestResolveWriteTenant:

    def test_global_owner_must_name_a_tenant(self, db_session, owner, staff_ctx):
        with pytest.raises(ValidationError):
            resolve_write_tenant(staff_ctx(owner), None)

    def test_pinned_context_rejects_foreign_target(self, db_session, cashier_a, staff_ctx, tenant_b):
        with pytest.raises(TenantMismatchError):
            resolve_write_tenant(staff_ctx(cashier_a), tenant_b.id)


class TestCrossTenantIsolation:

    def test_listing_only_shows_own_tenant(self, db_session, cashier_a, cashier_b, staff_ctx):
        voucher_service.issue_voucher(staff_ctx(cashier_a), actor=cashier_a, amount_minor=1000)
        voucher_service.issue_voucher(staff_ctx(cashier_b), actor=cashier_b, amount_minor=2000)

        listed_a = voucher_service.list_vouchers(staff_ctx(cashier_a), actor=cashier_a)
        listed_b = voucher_service.list_vouchers(staff_ctx(cashier_b), actor=cashier_b)

        assert [v.amount_minor for v in listed_a] == [1000]
        assert [v.amount_minor for v in listed_b] == [2000]

    def test_global_owner_listing_sees_all_tenants(self, db_session, owner, cashier_a, cashier_b, staff_ctx):
        voucher_service.issue_voucher(staff_ctx(cashier_a), actor=cashier_a, amount_minor=1000)
        voucher_service.issue_voucher(staff_ctx(cashier_b), actor=cashier_b, amount_minor=2000)

        listed = voucher_service.list_vouchers(staff_ctx(owner), actor=owner)
        assert sorted(v.amount_minor for v in listed) == [1000, 2000]

    def test_player_cannot_redeem_other_tenants_voucher(
        self, db_session, cashier_a, player_b, staff_ctx, player_ctx
    ):
        issued = voucher_service.issue_voucher(staff_ctx(cashier_a), actor=cashier_a, amount_minor=1000)

        with pytest.raises(VoucherNotFoundError):
            voucher_service.redeem_voucher(
                player_ctx(player_b),
                code=issued.user_code,
                pin=issued.pin,
                player_id=player_b.id,
            )
        assert db.session.get(Voucher, issued.voucher.id).status == "NEW"

    def test_staff_cannot_reach_foreign_player(self, db_session, cashier_b, player_a, staff_ctx):
        with pytest.raises(NotFoundError):
            voucher_service.redeem_voucher(
                staff_ctx(cashier_b),
                code="000000",
                pin="000000",
                player_id=player_a.id,
                actor=cashier_b,
            )

    def test_tenant_mismatch_from_route_is_audited(self, db_session, client, cashier_a, tenant_b, staff_headers):
        headers = staff_headers(cashier_a)
        response = client.get(f'/api/vouchers?tenant_id={tenant_b.id}', headers=headers)

        assert response.status_code == 403
        assert response.get_json() == {"error": "TENANT_MISMATCH", "message": "Access denied"}
        assert db.session.query(AuditEvent).filter_by(event_type="TENANT_MISMATCH", success=False).count() == 1

    def test_system_context_is_global(self):
        ctx = system_context()
        assert ctx.is_global
        assert ctx.is_system
