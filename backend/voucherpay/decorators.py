# Overview: Request authentication, permission decorators and tenant context helpers for API routes.

from __future__ import annotations

from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import SettlementError, TenantMismatchError, ValidationError
from .models.auth import SUBJECT_PLAYER, SUBJECT_STAFF
from .permissions import Permission
from .services import audit_service, permission_service, session_service
from .services.tenant_service import ACTOR_PLAYER, ACTOR_STAFF, TenantContext, build_tenant_context


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def _require_subject(subject_type: str | None):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            token = _bearer_token()
            if token is None:
                return jsonify({"error": "AUTH_REQUIRED", "message": "Authentication required"}), 401

            context = session_service.validate_session(token)
            if context is None:
                return jsonify({"error": "AUTH_REQUIRED", "message": "Invalid or expired token"}), 401

            if subject_type is not None and context.subject_type != subject_type:
                return jsonify({"error": "FORBIDDEN", "message": "Access denied"}), 403

            g.session_context = context
            g.current_staff = context.staff
            g.current_player = context.player
            g.tenant_id = context.tenant_id
            return f(*args, **kwargs)

        return decorated_function
    return decorator


require_auth = _require_subject(None)
require_staff = _require_subject(SUBJECT_STAFF)
require_player = _require_subject(SUBJECT_PLAYER)


def require_permission(*permissions: Permission):
    """
    Require every listed permission on the authenticated staff user.

    Denials are recorded as PERMISSION_DENIED audit events and answered with
    a generic 403.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            staff = getattr(g, "current_staff", None)
            if staff is None:
                return jsonify({"error": "AUTH_REQUIRED", "message": "Authentication required"}), 401

            effective = permission_service.get_effective_permissions(staff)
            missing = [p.value for p in permissions if p not in effective]
            if missing or not staff.is_active:
                permission_service.log_permission_denied(staff=staff, required=[p.value for p in permissions])
                return jsonify({"error": "FORBIDDEN", "message": "Access denied"}), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def requested_tenant_id() -> int | None:
    """tenant_id from the query string or JSON body, if any."""
    raw = request.args.get("tenant_id")
    if raw is None and request.is_json:
        body = request.get_json(silent=True) or {}
        raw = body.get("tenant_id")
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValidationError("tenant_id must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError("tenant_id must be an integer")


def current_tenant_context(requested: int | None = None) -> TenantContext:
    """
    Build the TenantContext for this request from the authenticated session.

    A TENANT_MISMATCH is audited before it propagates.
    """
    context = g.session_context
    is_staff = context.staff is not None
    try:
        return build_tenant_context(
            role=context.role,
            actor_tenant_id=context.tenant_id,
            actor_id=context.actor_id,
            requested_tenant_id=requested,
            actor_type=ACTOR_STAFF if is_staff else ACTOR_PLAYER,
        )
    except TenantMismatchError as exc:
        audit_service.log_event(
            event_type="TENANT_MISMATCH",
            success=False,
            tenant_id=context.tenant_id,
            actor_type=ACTOR_STAFF if is_staff else ACTOR_PLAYER,
            actor_id=context.actor_id,
            actor_role=context.role,
            reason=exc.code,
            status_code=exc.status_code,
            meta={"requested_tenant_id": requested},
        )
        raise


def log_rejected_request(event_type: str, exc: SettlementError, meta: dict | None = None) -> int | None:
    """
    Audit an attempt rejected while parsing the request, before the service
    that normally audits it was reached.
    """
    context = g.session_context
    is_staff = context.staff is not None
    return audit_service.log_event(
        event_type=event_type,
        success=False,
        tenant_id=context.tenant_id,
        actor_type=ACTOR_STAFF if is_staff else ACTOR_PLAYER,
        actor_id=context.actor_id,
        actor_role=context.role,
        reason=audit_service.failure_reason(exc),
        status_code=audit_service.failure_status(exc),
        meta=meta,
    )


def error_response(exc: SettlementError):
    return jsonify(exc.to_dict()), exc.status_code


def internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500
