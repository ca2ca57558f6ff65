import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from .config import Settings
from .discounts import round_money
from .errors import ValidationError
from .ledger_store import LedgerStore
from .models import (
    Account,
    ReferenceType,
    RedemptionResult,
    Requester,
    TransactionHistoryResponse,
    TransactionType,
    WalletPayment,
)
from .settlement import SettlementOrchestrator

log = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class WalletService:
    def __init__(self, ledger: LedgerStore, settlement: SettlementOrchestrator, settings: Optional[Settings] = None):
        self.ledger = ledger
        self.settlement = settlement
        self.settings = settings or ledger.settings

    def get_balance(self, user_id: str) -> Account:
        return self.ledger.ensure_account(user_id)

    def get_history(
        self,
        user_id: str,
        type: Optional[TransactionType] = None,
        page: int = 1,
        limit: int = 20,
    ) -> TransactionHistoryResponse:
        if page < 1:
            raise ValidationError("page must be at least 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        return self.ledger.get_transactions(user_id, type=type, page=page, limit=limit)

    def add_funds(self, user_id: str, amount: Union[Decimal, int, str, None]) -> Account:
        try:
            amount = round_money(amount) if amount is not None else None
        except InvalidOperation:
            amount = None
        if amount is None or amount <= 0:
            raise ValidationError("Valid amount is required")

        return self.ledger.apply_transaction(
            user_id,
            TransactionType.TOP_UP,
            amount_delta=amount,
            description=f"Added ₹{amount} to wallet",
            reference_type=ReferenceType.TOP_UP,
        )

    def redeem_credits(self, user_id: str, points: Optional[int]) -> RedemptionResult:
        if not points or points <= 0:
            raise ValidationError("Valid points amount required")

        with self.ledger.db.transaction() as session:
            account = self.ledger.ensure_account(user_id, session=session)
            if points > account.credit_points:
                raise ValidationError("Insufficient credit points")
            if points < self.settings.min_redeem_points:
                raise ValidationError(f"Minimum {self.settings.min_redeem_points} points required to redeem")

            cash_value = round_money(points * self.settings.credit_point_value)
            account = self.ledger.apply_transaction(
                user_id,
                TransactionType.CREDIT_REDEEMED,
                amount_delta=cash_value,
                points_delta=-points,
                description=f"Redeemed {points} credits for ₹{cash_value}",
                reference_type=ReferenceType.CREDIT_REDEEM,
                session=session,
            )

        log.info("User %s redeemed %d points for %s", user_id, points, cash_value)
        return RedemptionResult(
            account=account,
            points=points,
            cash_value=cash_value,
            message=f"Redeemed {points} points for ₹{cash_value}",
        )

    def pay(self, requester: Requester, order_id: Optional[str], use_credits: bool = False) -> WalletPayment:
        return self.settlement.pay_with_wallet(requester, order_id, use_credits=use_credits)
