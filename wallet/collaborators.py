"""
SQL-backed stores for the marketplace entities the ledger core reads and writes
but does not own: services, offers, orders and payments.

Every method takes the caller's ``Session`` so that a settlement can span
several stores inside one unit of work.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from .db import OfferRow, OrderItemRow, OrderRow, PaymentRow, ServiceRow, utcnow
from .discounts import round_money
from .errors import NotFoundError, ValidationError
from .models import (
    CouponTarget,
    Offer,
    OfferCreate,
    OfferUpdate,
    Order,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Service,
)

log = logging.getLogger(__name__)

_REQUIRED_OFFER_FIELDS = {"title", "code", "discount_percent", "discount_flat", "target", "active", "valid_from", "sort_order"}


class ServiceCatalog:
    def get_active_service(self, session: Session, service_id: int) -> Optional[Service]:
        row = session.scalars(
            select(ServiceRow).where(ServiceRow.id == service_id, ServiceRow.active.is_(True))
        ).one_or_none()
        return Service.model_validate(row) if row else None

    def add_service(self, session: Session, name: str, price: Decimal, active: bool = True) -> Service:
        row = ServiceRow(name=name, price=round_money(price), active=active)
        session.add(row)
        session.flush()
        return Service.model_validate(row)

    def set_price(self, session: Session, service_id: int, price: Decimal) -> Service:
        row = session.get(ServiceRow, service_id)
        if row is None:
            raise NotFoundError(f"Service {service_id} not found")
        row.price = round_money(price)
        session.flush()
        return Service.model_validate(row)


class OfferStore:
    def find_coupon_by_code(self, session: Session, code: str) -> Optional[Offer]:
        """Look a code up regardless of whether it is still usable."""
        row = session.scalars(select(OfferRow).where(OfferRow.code == code.strip().upper())).one_or_none()
        return Offer.model_validate(row) if row else None

    def find_active_coupon_by_code(self, session: Session, code: str) -> Optional[Offer]:
        now = datetime.now(timezone.utc)
        row = session.scalars(
            select(OfferRow).where(
                OfferRow.code == code.strip().upper(),
                OfferRow.active.is_(True),
                or_(OfferRow.valid_until.is_(None), OfferRow.valid_until >= now),
            )
        ).one_or_none()
        return Offer.model_validate(row) if row else None

    def list_active_offers(self, session: Session, target: Optional[CouponTarget] = None) -> list[Offer]:
        now = datetime.now(timezone.utc)
        stmt = select(OfferRow).where(
            OfferRow.active.is_(True),
            or_(OfferRow.valid_until.is_(None), OfferRow.valid_until >= now),
        )
        if target is not None:
            stmt = stmt.where(OfferRow.target.in_([CouponTarget(target).value, CouponTarget.BOTH.value]))
        stmt = stmt.order_by(OfferRow.sort_order.asc(), OfferRow.created_at.desc())
        return [Offer.model_validate(r) for r in session.scalars(stmt)]

    def create_offer(self, session: Session, data: OfferCreate) -> Offer:
        code = data.code.strip().upper()
        if session.scalars(select(OfferRow.id).where(OfferRow.code == code)).first() is not None:
            raise ValidationError("This coupon code is already taken")
        values = data.model_dump(exclude={"code"})
        values["target"] = CouponTarget(data.target).value
        if values["valid_from"] is None:
            values["valid_from"] = utcnow()
        row = OfferRow(code=code, **values)
        session.add(row)
        session.flush()
        log.info("Created offer %s (%s)", code, row.id)
        return Offer.model_validate(row)

    def update_offer(self, session: Session, offer_id: int, changes: OfferUpdate) -> Offer:
        row = session.get(OfferRow, offer_id)
        if row is None:
            raise NotFoundError(f"Offer {offer_id} not found")

        for name in changes.model_fields_set:
            value = getattr(changes, name)
            if value is None and name in _REQUIRED_OFFER_FIELDS:
                raise ValidationError(f"{name} cannot be cleared")
            if name == "code":
                value = value.strip().upper()
                clash = session.scalars(
                    select(OfferRow.id).where(OfferRow.code == value, OfferRow.id != offer_id)
                ).first()
                if clash is not None:
                    raise ValidationError("This coupon code is already taken")
            elif name == "target":
                value = CouponTarget(value).value
            setattr(row, name, value)

        row.updated_at = utcnow()
        session.flush()
        return Offer.model_validate(row)


class OrderStore:
    def get_order(self, session: Session, order_id: str, lock: bool = False) -> Optional[Order]:
        row = self._get_row(session, order_id, lock=lock)
        return Order.model_validate(row) if row else None

    def create_order(
        self,
        session: Session,
        customer_id: str,
        subtotal: Decimal,
        platform_fee: Decimal,
        discount_amount: Decimal,
        total: Decimal,
        items: list[tuple[int, int, Decimal]],
        coupon_code: Optional[str] = None,
        address: Optional[str] = None,
        scheduled_date: Optional[str] = None,
        scheduled_time: Optional[str] = None,
    ) -> Order:
        now = utcnow()
        row = OrderRow(
            id=str(uuid.uuid4()),
            customer_id=customer_id,
            status=OrderStatus.PENDING.value,
            subtotal=subtotal,
            platform_fee=platform_fee,
            discount_amount=discount_amount,
            coupon_code=coupon_code,
            total=total,
            address=address,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            created_at=now,
            updated_at=now,
            items=[OrderItemRow(service_id=sid, quantity=qty, price=price) for sid, qty, price in items],
        )
        session.add(row)
        session.flush()
        return Order.model_validate(row)

    def set_order_status(self, session: Session, order_id: str, status: OrderStatus) -> Order:
        row = self._get_row(session, order_id)
        if row is None:
            raise NotFoundError("Order not found")
        row.status = OrderStatus(status).value
        row.updated_at = utcnow()
        session.flush()
        return Order.model_validate(row)

    @staticmethod
    def _get_row(session: Session, order_id: str, lock: bool = False) -> Optional[OrderRow]:
        stmt = select(OrderRow).where(OrderRow.id == order_id)
        if lock:
            stmt = stmt.with_for_update()
        return session.scalars(stmt).one_or_none()


class PaymentStore:
    def get_payment(self, session: Session, payment_id: str) -> Optional[Payment]:
        row = session.get(PaymentRow, payment_id)
        return Payment.model_validate(row) if row else None

    def get_payment_by_order(self, session: Session, order_id: str) -> Optional[Payment]:
        row = self._by_order(session, order_id)
        return Payment.model_validate(row) if row else None

    def create_pending(self, session: Session, order_id: str, amount: Decimal) -> Payment:
        row = PaymentRow(
            id=str(uuid.uuid4()),
            order_id=order_id,
            amount=amount,
            status=PaymentStatus.PENDING.value,
            method=PaymentMethod.UPI.value,
        )
        session.add(row)
        session.flush()
        return Payment.model_validate(row)

    def upsert_payment(
        self,
        session: Session,
        order_id: str,
        amount: Decimal,
        status: PaymentStatus,
        method: PaymentMethod,
        transaction_ref: Optional[str] = None,
        paid_at: Optional[datetime] = None,
    ) -> Payment:
        row = self._by_order(session, order_id)
        if row is None:
            row = PaymentRow(id=str(uuid.uuid4()), order_id=order_id, amount=amount)
            session.add(row)
        row.status = PaymentStatus(status).value
        row.method = PaymentMethod(method).value
        if transaction_ref is not None:
            row.transaction_ref = transaction_ref
        row.paid_at = paid_at
        row.updated_at = utcnow()
        session.flush()
        return Payment.model_validate(row)

    def complete_payment(self, session: Session, payment_id: str, transaction_ref: str) -> Payment:
        row = session.get(PaymentRow, payment_id)
        if row is None:
            raise NotFoundError("Payment not found")
        now = utcnow()
        row.status = PaymentStatus.COMPLETED.value
        row.transaction_ref = transaction_ref
        row.paid_at = now
        row.updated_at = now
        session.flush()
        return Payment.model_validate(row)

    @staticmethod
    def _by_order(session: Session, order_id: str) -> Optional[PaymentRow]:
        return session.scalars(select(PaymentRow).where(PaymentRow.order_id == order_id)).one_or_none()
