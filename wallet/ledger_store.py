import logging
import math
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import Settings
from .db import Database, WalletRow, WalletTransactionRow, utcnow
from .discounts import round_money
from .models import Account, LedgerTransaction, ReferenceType, TransactionHistoryResponse, TransactionType

log = logging.getLogger(__name__)


class LedgerStore:
    """Wallet accounts and their append-only transaction journal.

    ``apply_transaction`` is the only path that changes an account. Every call
    writes the new snapshot and the journal row inside one unit of work, so
    replaying the journal in id order always lands on the stored snapshot.
    """

    def __init__(self, database: Database, settings: Optional[Settings] = None):
        self.db = database
        self.settings = settings or Settings()

    def ensure_account(self, user_id: str, session: Optional[Session] = None) -> Account:
        with self.db.join(session) as s:
            return Account.model_validate(self._ensure_row(s, user_id))

    def apply_transaction(
        self,
        user_id: str,
        type: TransactionType,
        amount_delta: Union[Decimal, int, str] = Decimal("0"),
        points_delta: int = 0,
        description: str = "",
        reference_type: Optional[ReferenceType] = None,
        reference_id: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> Account:
        amount_delta = round_money(amount_delta)
        with self.db.join(session) as s:
            wallet = self._ensure_row(s, user_id, lock=True)
            wallet.balance = round_money(wallet.balance + amount_delta)
            wallet.credit_points = wallet.credit_points + points_delta
            wallet.updated_at = utcnow()
            s.add(self._journal_row(
                wallet, type, amount_delta, points_delta, description, reference_type, reference_id,
            ))
            s.flush()
            log.info(
                "Ledger %s for %s: amount=%s points=%+d -> balance=%s points=%d",
                TransactionType(type).value, user_id, amount_delta, points_delta,
                wallet.balance, wallet.credit_points,
            )
            return Account.model_validate(wallet)

    def get_transactions(
        self,
        user_id: str,
        type: Optional[TransactionType] = None,
        page: int = 1,
        limit: int = 20,
        session: Optional[Session] = None,
    ) -> TransactionHistoryResponse:
        filters = [WalletTransactionRow.user_id == user_id]
        if type is not None:
            filters.append(WalletTransactionRow.type == TransactionType(type).value)

        with self.db.join(session) as s:
            total = s.scalar(select(func.count()).select_from(WalletTransactionRow).where(*filters))
            rows = s.scalars(
                select(WalletTransactionRow)
                .where(*filters)
                .order_by(WalletTransactionRow.created_at.desc(), WalletTransactionRow.id.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            ).all()
            return TransactionHistoryResponse(
                transactions=[LedgerTransaction.model_validate(r) for r in rows],
                total=total,
                page=page,
                total_pages=math.ceil(total / limit),
            )

    def replay(self, user_id: str, session: Optional[Session] = None) -> tuple[Decimal, int]:
        balance, points = Decimal("0.00"), 0
        with self.db.join(session) as s:
            rows = s.scalars(
                select(WalletTransactionRow)
                .where(WalletTransactionRow.user_id == user_id)
                .order_by(WalletTransactionRow.id)
            )
            for row in rows:
                balance += row.amount
                points += row.credit_points
        return round_money(balance), points

    def _ensure_row(self, session: Session, user_id: str, lock: bool = False) -> WalletRow:
        stmt = select(WalletRow).where(WalletRow.user_id == user_id)
        if lock:
            stmt = stmt.with_for_update()
        wallet = session.scalars(stmt).one_or_none()
        if wallet is not None:
            return wallet

        bonus = self.settings.signup_bonus_points
        wallet = WalletRow(user_id=user_id, balance=Decimal("0.00"), credit_points=bonus, updated_at=utcnow())
        session.add(wallet)
        session.add(self._journal_row(
            wallet, TransactionType.CREDIT_EARNED, Decimal("0.00"), bonus,
            "Welcome bonus credit points", ReferenceType.SIGNUP, None,
        ))
        session.flush()
        log.info("Opened wallet for %s with %d welcome points", user_id, bonus)
        return wallet

    @staticmethod
    def _journal_row(
        wallet: WalletRow,
        type: TransactionType,
        amount: Decimal,
        points: int,
        description: str,
        reference_type: Optional[ReferenceType],
        reference_id: Optional[str],
    ) -> WalletTransactionRow:
        return WalletTransactionRow(
            user_id=wallet.user_id,
            type=TransactionType(type).value,
            amount=amount,
            credit_points=points,
            description=description,
            reference_type=ReferenceType(reference_type).value if reference_type else None,
            reference_id=reference_id,
            balance_after=wallet.balance,
            credits_after=wallet.credit_points,
            created_at=utcnow(),
        )
