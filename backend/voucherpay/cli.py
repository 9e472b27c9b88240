# Overview: Flask CLI command groups for bootstrap, funding, sweeps and maintenance.

# backend/voucherpay/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system check-roles
#   Print the default permission set of every staff role.
#
# Tenant management:
# - python -m flask tenants list
#   List all tenants with pool balances.
# - python -m flask tenants create --name "North Hall" --code "NORTH"
#   Create a new tenant.
#
# Voucher pool:
# - python -m flask pool fund --tenant-id 1 --amount 1000.00 --action-id "wire-0001"
#   Credit a tenant pool (idempotent on --action-id).
#
# Staff bootstrap:
# - python -m flask staff create --username owner --password "Password123!" --role owner
#   Create a staff user (owners may omit --tenant-id).
#
# Vouchers:
# - python -m flask vouchers expire [--tenant-id 1]
#   Mark overdue NEW vouchers EXPIRED and record VOUCHER_VOID.
#
# Maintenance:
# - python -m flask maintenance cleanup-audit-events --retention-days 365
#   Delete audit events older than the retention window.
# - python -m flask maintenance cleanup-sessions
#   Delete expired or revoked sessions older than 30 days.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import SettlementError
from .extensions import db
from .models import StaffUser, Tenant, VoucherPool
from .money import to_major, to_minor
from .permissions import DEFAULT_ROLE_PERMISSIONS, StaffRole
from .services import maintenance_service, pool_service, session_service, staff_service, tenant_service, voucher_service
from .services.tenant_service import system_context


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask tenants create' next.")


@system_group.command('check-roles')
@with_appcontext
def check_roles():
    """Print the default permission set of every staff role."""
    for role in StaffRole:
        perms = sorted(p.value for p in DEFAULT_ROLE_PERMISSIONS[role])
        click.echo(f"{role.value:<12} {', '.join(perms)}")


@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants_cli():
    """List all tenants."""
    tenants = tenant_service.list_tenants(system_context())

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Staff':<8} {'Pool'}")
    click.echo("="*80)

    for tenant in tenants:
        staff_count = db.session.query(StaffUser).filter_by(tenant_id=tenant.id).count()
        pool = db.session.query(VoucherPool).filter_by(tenant_id=tenant.id).first()
        balance = to_major(pool.balance_minor) if pool else "-"
        active_str = "Yes" if tenant.is_active else "No"

        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.code:<15} {active_str:<8} {staff_count:<8} {balance}")

    click.echo("="*80 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_tenant_cli(name, code):
    """Create a new tenant."""
    try:
        tenant, _ = tenant_service.register_tenant(system_context(), name=name, code=code)
    except SettlementError as e:
        click.echo(f"FAIL {e.code}: {e.message}")
        return

    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")


@click.group('pool')
def pool_group():
    """Voucher pool commands."""


@pool_group.command('fund')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--amount', required=True, help='Amount in major units, e.g. 1000.00')
@click.option('--action-id', default=None, help='Idempotency key for this funding')
@with_appcontext
def fund_pool_cli(tenant_id, amount, action_id):
    """Credit a tenant's voucher pool."""
    try:
        amount_minor = to_minor(amount)
        result = pool_service.fund_pool(
            system_context(),
            actor=None,
            tenant_id=tenant_id,
            amount_minor=amount_minor,
            action_id=action_id,
        )
    except SettlementError as e:
        click.echo(f"FAIL {e.code}: {e.message}")
        return

    if not result.created:
        click.echo(f"SKIP Action {result.ledger_event.action_id} already applied")
    click.echo(f"PASS Pool for tenant {tenant_id}: {to_major(result.pool.balance_minor)}")


@click.group('staff')
def staff_group():
    """Staff user commands."""


@staff_group.command('create')
@click.option('--tenant-id', type=int, help='Tenant ID (omit for a global owner)')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', default=None, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([r.value for r in StaffRole]), prompt=True, help='Role')
@with_appcontext
def create_staff_cli(tenant_id, username, email, password, role):
    """
    Create a staff user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        result = staff_service.create_staff_user(
            system_context(),
            actor=None,
            username=username,
            password=password,
            role=role,
            tenant_id=tenant_id,
            email=email,
        )
    except SettlementError as e:
        click.echo(f"FAIL {e.code}: {e.message}")
        return

    staff = result.staff
    click.echo(f"PASS Created staff user: {staff.username} with role '{staff.role}'")
    if staff.tenant_id is None:
        click.echo("     Tenant: all (global owner)")
    else:
        tenant = db.session.get(Tenant, staff.tenant_id)
        click.echo(f"     Tenant: {tenant.name} (ID: {tenant.id})")
    click.echo("SECURITY Password securely hashed with bcrypt")


@click.group('vouchers')
def vouchers_group():
    """Voucher lifecycle commands."""


@vouchers_group.command('expire')
@click.option('--tenant-id', type=int, default=None, help='Limit the sweep to one tenant')
@with_appcontext
def expire_vouchers_cli(tenant_id):
    """Expire overdue vouchers. Safe to run from cron."""
    expired = voucher_service.expire_overdue_vouchers(system_context(tenant_id))
    click.echo(f"Expired {len(expired)} voucher(s).")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-audit-events')
@click.option('--retention-days', type=int, default=None, help='Defaults to AUDIT_RETENTION_DAYS')
@with_appcontext
def cleanup_audit_events_cli(retention_days):
    """Cleanup old audit events. Ledger events are never deleted."""
    if retention_days is None:
        retention_days = current_app.config["AUDIT_RETENTION_DAYS"]
    deleted = maintenance_service.cleanup_audit_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} audit events older than {retention_days} days.")


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired or revoked sessions older than 30 days."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} sessions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(pool_group)
    app.cli.add_command(staff_group)
    app.cli.add_command(vouchers_group)
    app.cli.add_command(maintenance_group)
