from .tenancy import Tenant, VoucherPool
from .auth import StaffUser, Player, SessionToken
from .vouchers import Voucher
from .wallets import Wallet, WalletTransaction, Bonus
from .ledger import LedgerEvent
from .security import AuditEvent

__all__ = [
    'Tenant', 'VoucherPool',
    'StaffUser', 'Player', 'SessionToken',
    'Voucher',
    'Wallet', 'WalletTransaction', 'Bonus',
    'LedgerEvent',
    'AuditEvent',
]
