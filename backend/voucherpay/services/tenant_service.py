"""
Tenant Context Guard

WHY: Every read and write against tenant-owned tables must be scoped to one
tenant (or, for owners, explicitly to all tenants). The context is an
immutable value built once per request and passed to every service call.

SECURITY INVARIANTS:
1. Non-owner actors only ever see their own tenant; naming another tenant
   fails with TENANT_MISMATCH
2. The context is bound to ONE database transaction. apply_tenant_context()
   must run at the start of each transaction; the binding is dropped when
   the root transaction ends
3. scoped_query() refuses to run without a bound context
4. On PostgreSQL the same values are set transaction-locally
   (app.tenant_id, app.role, app.user_id) for row-level security policies

USAGE:
    ctx = build_tenant_context(role="cashier", actor_tenant_id=3, actor_id=7)

    def _op():
        apply_tenant_context(ctx)
        vouchers = scoped_query(Voucher, ctx).filter_by(status="NEW").all()
        ...
        db.session.commit()
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import event, text
from sqlalchemy.orm import Session

from ..errors import ForbiddenError, NotFoundError, TenantContextError, TenantMismatchError, ValidationError
from ..extensions import db
from ..models import Tenant
from ..permissions import StaffRole
from . import audit_service


_CONTEXT_KEY = "tenant_context"

ACTOR_STAFF = "staff"
ACTOR_PLAYER = "player"
ACTOR_SYSTEM = "system"

PLAYER_ROLE = "player"


@dataclass(frozen=True)
class TenantContext:
    tenant_id: int | None
    role: str
    actor_id: int | None
    actor_type: str = ACTOR_STAFF

    @property
    def is_global(self) -> bool:
        return self.tenant_id is None

    @property
    def is_system(self) -> bool:
        return self.actor_type == ACTOR_SYSTEM


def build_tenant_context(
    *,
    role: str,
    actor_tenant_id: int | None,
    actor_id: int | None,
    requested_tenant_id: int | None = None,
    actor_type: str = ACTOR_STAFF,
) -> TenantContext:
    """
    Resolve the tenant an actor may operate on.

    Owners may pick any tenant, or None for all tenants. Everyone else is
    pinned to their own assignment.
    """
    if role == StaffRole.OWNER.value and actor_type == ACTOR_STAFF:
        return TenantContext(
            tenant_id=requested_tenant_id,
            role=role,
            actor_id=actor_id,
            actor_type=actor_type,
        )

    if actor_tenant_id is None:
        raise TenantMismatchError("Actor has no tenant assignment")
    if requested_tenant_id is not None and requested_tenant_id != actor_tenant_id:
        raise TenantMismatchError(
            f"Requested tenant {requested_tenant_id} does not match actor tenant {actor_tenant_id}"
        )
    return TenantContext(
        tenant_id=actor_tenant_id,
        role=role,
        actor_id=actor_id,
        actor_type=actor_type,
    )


def system_context(tenant_id: int | None = None) -> TenantContext:
    """Context for CLI and scheduled jobs."""
    return TenantContext(
        tenant_id=tenant_id,
        role=StaffRole.OWNER.value,
        actor_id=None,
        actor_type=ACTOR_SYSTEM,
    )


def apply_tenant_context(ctx: TenantContext) -> None:
    """Bind ctx to the current transaction, beginning one if needed."""
    session = db.session
    connection = session.connection()
    session.info[_CONTEXT_KEY] = ctx

    if connection.dialect.name == "postgresql":
        settings = {
            "app.tenant_id": "" if ctx.tenant_id is None else str(ctx.tenant_id),
            "app.role": ctx.role,
            "app.user_id": "" if ctx.actor_id is None else str(ctx.actor_id),
        }
        for key, value in settings.items():
            session.execute(text("SELECT set_config(:key, :value, true)"), {"key": key, "value": value})


def bound_tenant_context() -> TenantContext | None:
    return db.session.info.get(_CONTEXT_KEY)


@event.listens_for(Session, "after_transaction_end")
def _drop_tenant_context(session, transaction):
    # Savepoints keep the binding; only the root transaction owns it.
    if transaction.parent is None:
        session.info.pop(_CONTEXT_KEY, None)


def require_bound_context(ctx: TenantContext) -> None:
    if bound_tenant_context() != ctx:
        raise TenantContextError("Tenant context not applied in this transaction")


def scoped_query(model, ctx: TenantContext):
    """
    Base query for a tenant-owned model, filtered to ctx.

    Usage:
        wallets = scoped_query(Wallet, ctx).filter_by(player_id=7).all()
    """
    require_bound_context(ctx)
    query = db.session.query(model)
    if ctx.tenant_id is not None:
        query = query.filter(model.tenant_id == ctx.tenant_id)
    return query


def resolve_write_tenant(ctx: TenantContext, requested_tenant_id: int | None = None) -> int:
    """Writes always land in exactly one tenant."""
    if ctx.tenant_id is not None:
        if requested_tenant_id is not None and requested_tenant_id != ctx.tenant_id:
            raise TenantMismatchError(
                f"Tenant {requested_tenant_id} is outside the current context"
            )
        return ctx.tenant_id

    if requested_tenant_id is None:
        raise ValidationError("tenant_id is required")
    return requested_tenant_id


def require_tenant_in_scope(ctx: TenantContext, tenant_id: int) -> None:
    if ctx.tenant_id is not None and ctx.tenant_id != tenant_id:
        raise TenantMismatchError(f"Tenant {tenant_id} is outside the current context")


def require_active_tenant(tenant_id: int) -> Tenant:
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None or not tenant.is_active:
        raise NotFoundError("Tenant not found")
    return tenant


def create_tenant(*, name: str, code: str) -> Tenant:
    """Create a tenant (owner/CLI only)."""
    name = (name or "").strip()
    code = (code or "").strip().upper()
    if not name or not code:
        raise ValidationError("name and code are required")
    if db.session.query(Tenant).filter_by(code=code).first():
        raise ValidationError(f"Tenant code {code} already exists")

    tenant = Tenant(name=name, code=code, is_active=True)
    db.session.add(tenant)
    db.session.commit()
    return tenant


def list_tenants(ctx: TenantContext) -> list[Tenant]:
    query = db.session.query(Tenant)
    if ctx.tenant_id is not None:
        query = query.filter(Tenant.id == ctx.tenant_id)
    return query.order_by(Tenant.id).all()


def register_tenant(ctx: TenantContext, *, name: str, code: str) -> tuple[Tenant, int | None]:
    """
    Create a tenant on behalf of a global (owner or system) context.

    Returns (tenant, audit_event_id).
    """
    meta = {"name": name, "tenant_code": code}
    try:
        if not ctx.is_global:
            raise ForbiddenError("Tenant creation requires an all-tenant context")
        tenant = create_tenant(name=name, code=code)
    except Exception as exc:
        db.session.rollback()
        audit_service.log_event(
            ctx=ctx,
            event_type="TENANT_CREATE",
            success=False,
            reason=audit_service.failure_reason(exc),
            status_code=audit_service.failure_status(exc),
            meta=meta,
        )
        raise

    audit_event_id = audit_service.log_event(
        ctx=ctx,
        event_type="TENANT_CREATE",
        success=True,
        tenant_id=tenant.id,
        subject=tenant.code,
        meta=meta,
    )
    return tenant, audit_event_id
