# Overview: Player account creation and lookup.

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ValidationError
from ..extensions import db
from ..models import Player, StaffUser
from ..permissions import Permission
from . import audit_service, permission_service
from .auth_service import hash_password
from .concurrency import run_with_retry
from .tenant_service import (
    TenantContext,
    apply_tenant_context,
    require_active_tenant,
    resolve_write_tenant,
    scoped_query,
)


@dataclass
class PlayerResult:
    player: Player
    audit_event_id: int | None = None


def create_player(
    ctx: TenantContext,
    *,
    actor: StaffUser | None,
    username: str,
    password: str,
    display_name: str | None = None,
    tenant_id: int | None = None,
) -> PlayerResult:
    """Create a player in one tenant. Usernames are unique per tenant."""
    username = (username or "").strip()

    def _op():
        apply_tenant_context(ctx)
        target = resolve_write_tenant(ctx, tenant_id)
        require_active_tenant(target)

        taken = scoped_query(Player, ctx).filter(
            Player.tenant_id == target,
            db.func.lower(Player.username) == username.lower(),
        ).first()
        if taken:
            raise ValidationError("Username already exists in this tenant")

        player = Player(
            tenant_id=target,
            username=username,
            display_name=display_name,
            password_hash=password_hash,
            created_by_staff_id=ctx.actor_id,
        )
        db.session.add(player)
        db.session.commit()
        return PlayerResult(player=player)

    meta = {"username": username, "tenant_id": tenant_id}
    try:
        permission_service.require(ctx, actor, Permission.PLAYER_WRITE)
        if not username:
            raise ValidationError("username is required")
        password_hash = hash_password(password)
        result = run_with_retry(_op)
    except Exception as exc:
        db.session.rollback()
        audit_service.log_event(
            ctx=ctx,
            event_type="PLAYER_CREATE",
            success=False,
            reason=audit_service.failure_reason(exc),
            status_code=audit_service.failure_status(exc),
            meta=meta,
        )
        raise

    result.audit_event_id = audit_service.log_event(
        ctx=ctx,
        event_type="PLAYER_CREATE",
        success=True,
        tenant_id=result.player.tenant_id,
        subject=str(result.player.id),
        meta=meta,
    )
    return result


def list_players(ctx: TenantContext, *, actor: StaffUser | None, limit: int = 100) -> list[Player]:
    permission_service.require(ctx, actor, Permission.PLAYER_READ)
    limit = max(1, min(limit, 500))

    def _op():
        apply_tenant_context(ctx)
        rows = scoped_query(Player, ctx).order_by(Player.id.desc()).limit(limit).all()
        db.session.commit()
        return rows

    return run_with_retry(_op)
