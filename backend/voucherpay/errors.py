"""
Settlement error taxonomy.

Every business failure raised by the service layer carries a stable code
that is surfaced verbatim to the caller, an HTTP-equivalent status, and an
optional details dict. Authorization failures share one generic public
message so the response never reveals which check failed.
"""

from __future__ import annotations


class SettlementError(Exception):
    """Base class for failures surfaced to API callers."""
    code = "INTERNAL_ERROR"
    status_code = 500
    public_message: str | None = None

    def __init__(self, message: str | None = None, *, details: dict | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {
            "error": self.code,
            "message": self.public_message or self.message,
        }
        if self.details and not self.public_message:
            body["details"] = self.details
        return body


# =============================================================================
# VALIDATION (400)
# =============================================================================

class ValidationError(SettlementError):
    """400-level input problem (bad amount, missing fields)."""
    code = "VALIDATION"
    status_code = 400


# =============================================================================
# BUSINESS RULES
# =============================================================================

class InsufficientPoolBalanceError(SettlementError):
    code = "INSUFFICIENT_POOL_BALANCE"
    status_code = 400


class InsufficientFundsError(SettlementError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 400


class VoucherNotFoundError(SettlementError):
    code = "VOUCHER_NOT_FOUND"
    status_code = 404
    public_message = "Voucher not found"


class VoucherExpiredError(SettlementError):
    code = "VOUCHER_EXPIRED"
    status_code = 400
    public_message = "Voucher expired"


class VoucherAlreadyRedeemedError(SettlementError):
    code = "VOUCHER_ALREADY_REDEEMED"
    status_code = 409
    public_message = "Voucher already redeemed"


class NotFoundError(SettlementError):
    code = "NOT_FOUND"
    status_code = 404


class DuplicateLedgerEventError(SettlementError):
    """A fresh action collided with an existing (tenant, action, type) row."""
    code = "DUPLICATE_LEDGER_EVENT"
    status_code = 409


# =============================================================================
# AUTHORIZATION (generic public message)
# =============================================================================

class AuthorizationError(SettlementError):
    status_code = 403
    public_message = "Access denied"


class TenantMismatchError(AuthorizationError):
    code = "TENANT_MISMATCH"


class TenantContextError(AuthorizationError):
    """Tenant context was not established for the current transaction."""
    code = "TENANT_CONTEXT_MISSING"


class ForbiddenError(AuthorizationError):
    code = "FORBIDDEN"


class InvalidCredentialsError(AuthorizationError):
    code = "INVALID_CREDENTIALS"
    status_code = 401
    public_message = "Invalid credentials"


# =============================================================================
# INFRASTRUCTURE
# =============================================================================

class CodeGenerationExhaustedError(SettlementError):
    code = "CODE_GENERATION_EXHAUSTED"
    status_code = 503
    public_message = "Could not allocate a voucher code, please retry"


class AccountLockedError(SettlementError):
    """Too many failed logins for this identifier inside the lockout window."""
    code = "ACCOUNT_LOCKED"
    status_code = 429
    public_message = "Account temporarily locked due to too many failed login attempts"
