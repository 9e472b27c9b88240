"""
Staff Permission Constants and Role Defaults

WHY: Centralized permission definitions ensure consistency across the application.
Permission names are a closed enum; role defaults are a fixed table keyed by
StaffRole and checked for exhaustiveness at startup.

DESIGN PRINCIPLES:
- Permissions are granular (one capability per permission)
- Role hierarchy is NOT implicit: a role holds exactly what its row enumerates
- Explicit per-staff permission lists override the role default entirely
"""

from __future__ import annotations

from enum import Enum


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

class Permission(str, Enum):
    TENANT_MANAGE = "tenant:manage"
    STAFF_MANAGE = "staff:manage"
    PLAYER_READ = "player:read"
    PLAYER_WRITE = "player:write"
    FINANCE_READ = "finance:read"
    FINANCE_WRITE = "finance:write"
    VOUCHER_READ = "voucher:read"
    VOUCHER_WRITE = "voucher:write"
    POOL_FUND = "pool:fund"
    LEDGER_READ = "ledger:read"
    AUDIT_READ = "audit:read"


class StaffRole(str, Enum):
    OWNER = "owner"
    OPERATOR = "operator"
    DISTRIBUTOR = "distributor"
    AGENT = "agent"
    SUBAGENT = "subagent"
    CASHIER = "cashier"


PERMISSION_DESCRIPTIONS = {
    Permission.TENANT_MANAGE: "Create and deactivate tenants",
    Permission.STAFF_MANAGE: "Create staff accounts and change roles or permissions",
    Permission.PLAYER_READ: "View players and their wallets",
    Permission.PLAYER_WRITE: "Create and edit player accounts",
    Permission.FINANCE_READ: "View wallet transactions and pool balance",
    Permission.FINANCE_WRITE: "Deposit to and withdraw from player wallets",
    Permission.VOUCHER_READ: "List vouchers",
    Permission.VOUCHER_WRITE: "Issue vouchers and redeem them on behalf of players",
    Permission.POOL_FUND: "Credit a tenant voucher pool",
    Permission.LEDGER_READ: "Read the financial ledger",
    Permission.AUDIT_READ: "Read the audit trail",
}


# =============================================================================
# DEFAULT ROLE -> PERMISSION TABLE
# =============================================================================

_ALL = frozenset(Permission)

DEFAULT_ROLE_PERMISSIONS: dict[StaffRole, frozenset[Permission]] = {
    StaffRole.OWNER: _ALL,
    StaffRole.OPERATOR: _ALL - {Permission.POOL_FUND},
    StaffRole.DISTRIBUTOR: frozenset({
        Permission.STAFF_MANAGE,
        Permission.PLAYER_READ,
        Permission.FINANCE_READ,
        Permission.FINANCE_WRITE,
        Permission.VOUCHER_READ,
        Permission.VOUCHER_WRITE,
        Permission.LEDGER_READ,
    }),
    StaffRole.AGENT: frozenset({
        Permission.PLAYER_READ,
        Permission.PLAYER_WRITE,
        Permission.FINANCE_READ,
        Permission.VOUCHER_READ,
        Permission.VOUCHER_WRITE,
    }),
    StaffRole.SUBAGENT: frozenset({
        Permission.PLAYER_READ,
        Permission.VOUCHER_READ,
        Permission.VOUCHER_WRITE,
    }),
    StaffRole.CASHIER: frozenset({
        Permission.PLAYER_READ,
        Permission.FINANCE_READ,
        Permission.FINANCE_WRITE,
        Permission.VOUCHER_READ,
        Permission.VOUCHER_WRITE,
    }),
}


# =============================================================================
# PERMISSION HELPERS
# =============================================================================

def verify_role_table() -> None:
    """Fail fast if a role has no row in the default table."""
    missing = [role.value for role in StaffRole if role not in DEFAULT_ROLE_PERMISSIONS]
    if missing:
        raise RuntimeError(f"Default permission table missing roles: {', '.join(missing)}")


def parse_permission(code: str) -> Permission:
    """Parse a permission string, raising ValueError for unknown codes."""
    return Permission(code)


def parse_role(value: str) -> StaffRole:
    return StaffRole(value)


def validate_permission_code(code) -> bool:
    """Check if a permission code is valid."""
    try:
        Permission(code)
    except ValueError:
        return False
    return True
