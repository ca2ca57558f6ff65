"""
Wallet Ledger and Order Settlement for the Home-Services Marketplace

This module provides:
- Per-user wallet accounts with a money balance and loyalty credit points
- An append-only transaction journal that replays to the account snapshot
- Coupon discount math capped at the order subtotal
- Order pricing with platform fee, and wallet / UPI payment settlement
- Order lifecycle: pending → confirmed → in-progress → completed / cancelled
"""

from .config import Settings
from .db import Database
from .discounts import compute_discount, coupon_rejection, round_money
from .errors import (
    AuthorizationError,
    CouponIneligibleError,
    InsufficientFundsError,
    NotFoundError,
    OrderStateError,
    ValidationError,
    WalletServiceError,
)
from .ledger_store import LedgerStore
from .models import (
    Account,
    LedgerTransaction,
    OrderStatus,
    ReferenceType,
    Requester,
    Role,
    TransactionType,
)
from .service import WalletService
from .settlement import SettlementOrchestrator

__all__ = [
    "Settings",
    "Database",
    "compute_discount",
    "coupon_rejection",
    "round_money",
    "WalletServiceError",
    "ValidationError",
    "NotFoundError",
    "AuthorizationError",
    "InsufficientFundsError",
    "CouponIneligibleError",
    "OrderStateError",
    "LedgerStore",
    "Account",
    "LedgerTransaction",
    "OrderStatus",
    "ReferenceType",
    "Requester",
    "Role",
    "TransactionType",
    "WalletService",
    "SettlementOrchestrator",
]
