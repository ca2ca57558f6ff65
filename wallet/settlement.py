import logging
import math
import time
from decimal import Decimal
from typing import Optional
from urllib.parse import quote

from .collaborators import OfferStore, OrderStore, PaymentStore, ServiceCatalog
from .config import Settings
from .db import Database, utcnow
from .discounts import ZERO, compute_discount, coupon_rejection, round_money
from .errors import (
    AuthorizationError,
    CouponIneligibleError,
    InsufficientFundsError,
    NotFoundError,
    OrderStateError,
    ValidationError,
)
from .ledger_store import LedgerStore
from .models import (
    ORDER_TRANSITIONS,
    CouponQuote,
    CouponTarget,
    CreateOrderRequest,
    Offer,
    Order,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    ReferenceType,
    Requester,
    Role,
    TransactionType,
    UpiPaymentIntent,
    WalletPayment,
)

log = logging.getLogger(__name__)


class SettlementOrchestrator:
    """Prices orders at booking time and settles their payment.

    Booking snapshots the subtotal, the coupon discount actually granted and
    each item's price; payment never re-derives them. A wallet settlement
    writes the ledger debit, the loyalty reward, the order confirmation and
    the payment record in a single unit of work.
    """

    def __init__(
        self,
        database: Database,
        ledger: LedgerStore,
        settings: Optional[Settings] = None,
        orders: Optional[OrderStore] = None,
        services: Optional[ServiceCatalog] = None,
        offers: Optional[OfferStore] = None,
        payments: Optional[PaymentStore] = None,
    ):
        self.db = database
        self.ledger = ledger
        self.settings = settings or Settings()
        self.orders = orders or OrderStore()
        self.services = services or ServiceCatalog()
        self.offers = offers or OfferStore()
        self.payments = payments or PaymentStore()

    def create_order(self, requester: Requester, request: CreateOrderRequest) -> Order:
        if not request.items:
            raise ValidationError("Order must have at least one item")

        with self.db.transaction() as session:
            subtotal = ZERO
            priced = []
            for item in request.items:
                if item.quantity < 1:
                    raise ValidationError(f"Quantity for service {item.service_id} must be at least 1")
                service = self.services.get_active_service(session, item.service_id)
                if service is None:
                    raise NotFoundError(f"Service {item.service_id} not found or unavailable")
                subtotal += service.price * item.quantity
                priced.append((service.id, item.quantity, service.price))
            subtotal = round_money(subtotal)

            # Unknown or ineligible coupons are dropped silently at booking;
            # only apply_coupon reports them.
            discount, coupon_code = ZERO, None
            if request.coupon_code:
                offer = self.offers.find_active_coupon_by_code(session, request.coupon_code)
                if offer is not None and coupon_rejection(offer, requester.role) is None:
                    discount = compute_discount(subtotal, offer, requester.role)
                    coupon_code = offer.code

            discounted = subtotal - discount
            platform_fee = round_money(discounted * self.settings.platform_fee_rate)
            total = round_money(discounted + platform_fee)

            order = self.orders.create_order(
                session,
                customer_id=requester.id,
                subtotal=subtotal,
                platform_fee=platform_fee,
                discount_amount=discount,
                total=total,
                items=priced,
                coupon_code=coupon_code,
                address=request.address,
                scheduled_date=request.scheduled_date,
                scheduled_time=request.scheduled_time,
            )
        log.info("Order %s booked by %s: subtotal=%s discount=%s total=%s", order.id, requester.id, subtotal, discount, total)
        return order

    def list_offers(self, target: Optional[CouponTarget] = None) -> list[Offer]:
        with self.db.transaction() as session:
            return self.offers.list_active_offers(session, target)

    def apply_coupon(self, requester: Requester, code: Optional[str], subtotal: Optional[Decimal]) -> CouponQuote:
        if not code:
            raise ValidationError("Coupon code is required")
        if subtotal is None or subtotal <= 0:
            raise ValidationError("Valid subtotal is required")

        with self.db.transaction() as session:
            offer = self.offers.find_coupon_by_code(session, code)
        if offer is None:
            raise NotFoundError("Invalid coupon code")
        reason = coupon_rejection(offer, requester.role)
        if reason is not None:
            raise CouponIneligibleError(reason)
        return CouponQuote(offer=offer, discount_amount=compute_discount(subtotal, offer, requester.role))

    def get_order(self, requester: Requester, order_id: str) -> Order:
        with self.db.transaction() as session:
            return self._owned_order(session, requester, order_id, allow_admin=True)

    def pay_with_wallet(self, requester: Requester, order_id: Optional[str], use_credits: bool = False) -> WalletPayment:
        if not order_id:
            raise ValidationError("Order ID is required")

        point_value = self.settings.credit_point_value
        with self.db.transaction() as session:
            order = self.orders.get_order(session, order_id, lock=True)
            if order is None:
                raise NotFoundError("Order not found")
            if order.customer_id != requester.id:
                log.warning("User %s tried to pay order %s owned by %s", requester.id, order_id, order.customer_id)
                raise AuthorizationError("Not authorized")
            if order.status != OrderStatus.PENDING:
                raise OrderStateError(f"Order is {order.status.value}; only pending orders can be paid")

            account = self.ledger.ensure_account(requester.id, session=session)
            amount_to_pay = order.total
            credits_used = 0
            if use_credits and account.credit_points > 0:
                credits_used = min(account.credit_points, math.floor(order.total / point_value))
                amount_to_pay = round_money(order.total - credits_used * point_value)

            if account.balance < amount_to_pay:
                log.warning(
                    "Wallet payment for order %s rejected: required=%s available=%s",
                    order_id, amount_to_pay, account.balance,
                )
                raise InsufficientFundsError(required=amount_to_pay, available=account.balance)

            short_id = order_id[:8]
            account = self.ledger.apply_transaction(
                requester.id,
                TransactionType.PAYMENT,
                amount_delta=-amount_to_pay,
                points_delta=-credits_used,
                description=f"Payment for order #{short_id}",
                reference_type=ReferenceType.ORDER,
                reference_id=order_id,
                session=session,
            )

            earned = math.floor(order.total * self.settings.loyalty_reward_rate)
            if earned > 0:
                account = self.ledger.apply_transaction(
                    requester.id,
                    TransactionType.CREDIT_EARNED,
                    points_delta=earned,
                    description=f"Earned {earned} points from order #{short_id}",
                    reference_type=ReferenceType.ORDER_REWARD,
                    reference_id=order_id,
                    session=session,
                )

            order = self.orders.set_order_status(session, order_id, OrderStatus.CONFIRMED)
            payment = self.payments.upsert_payment(
                session,
                order_id,
                amount=order.total,
                status=PaymentStatus.COMPLETED,
                method=PaymentMethod.WALLET,
                paid_at=utcnow(),
            )

        log.info(
            "Order %s settled from wallet: paid=%s credits_used=%d points_earned=%d",
            order_id, amount_to_pay, credits_used, earned,
        )
        return WalletPayment(
            account=account,
            order=order,
            payment=payment,
            amount_paid=amount_to_pay,
            credits_used=credits_used,
            points_earned=earned,
        )

    def update_order_status(self, requester: Requester, order_id: str, status: OrderStatus) -> Order:
        if requester.role not in (Role.PROVIDER, Role.ADMIN):
            raise AuthorizationError("Provider or admin access required")
        status = OrderStatus(status)

        with self.db.transaction() as session:
            order = self.orders.get_order(session, order_id, lock=True)
            if order is None:
                raise NotFoundError("Order not found")
            self._check_transition(order, status)
            order = self.orders.set_order_status(session, order_id, status)
        log.info("Order %s moved to %s by %s", order_id, status.value, requester.id)
        return order

    def initiate_upi_payment(self, requester: Requester, order_id: Optional[str]) -> UpiPaymentIntent:
        if not order_id:
            raise ValidationError("Order ID is required")

        with self.db.transaction() as session:
            order = self._owned_order(session, requester, order_id, allow_admin=True)
            payment = self.payments.get_payment_by_order(session, order_id)
            if payment is not None and payment.status == PaymentStatus.COMPLETED:
                raise ValidationError("Payment already completed for this order")
            if payment is None:
                payment = self.payments.create_pending(session, order_id, order.total)

        merchant_upi = self.settings.merchant_upi_id
        merchant_name = self.settings.merchant_name
        note = f"{merchant_name}-{order_id[:8]}"
        upi_link = (
            f"upi://pay?pa={quote(merchant_upi, safe='')}&pn={quote(merchant_name, safe='')}"
            f"&am={order.total:.2f}&cu=INR&tn={quote(note, safe='')}&tr={payment.id}"
        )
        return UpiPaymentIntent(payment=payment, upi_link=upi_link, merchant_name=merchant_name, merchant_upi=merchant_upi)

    def verify_upi_payment(
        self, requester: Requester, payment_id: Optional[str], transaction_ref: Optional[str] = None
    ) -> Payment:
        if not payment_id:
            raise ValidationError("Payment ID is required")

        with self.db.transaction() as session:
            payment = self.payments.get_payment(session, payment_id)
            if payment is None:
                raise NotFoundError("Payment not found")
            order = self._owned_order(session, requester, payment.order_id, allow_admin=True)
            if payment.status == PaymentStatus.COMPLETED:
                raise ValidationError("Payment already completed for this order")
            self._check_transition(order, OrderStatus.CONFIRMED, paid=True)

            payment = self.payments.complete_payment(
                session, payment_id, transaction_ref or f"TXN-{int(time.time() * 1000)}"
            )
            self.orders.set_order_status(session, order.id, OrderStatus.CONFIRMED)
        log.info("UPI payment %s verified for order %s", payment_id, payment.order_id)
        return payment

    def get_payment_for_order(self, requester: Requester, order_id: str) -> Payment:
        with self.db.transaction() as session:
            payment = self.payments.get_payment_by_order(session, order_id)
            if payment is None:
                raise NotFoundError("No payment found for this order")
            self._owned_order(session, requester, order_id, allow_admin=True)
            return payment

    def _owned_order(self, session, requester: Requester, order_id: str, allow_admin: bool = False) -> Order:
        order = self.orders.get_order(session, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.customer_id != requester.id and not (allow_admin and requester.role == Role.ADMIN):
            raise AuthorizationError("Not authorized")
        return order

    @staticmethod
    def _check_transition(order: Order, status: OrderStatus, paid: bool = False) -> None:
        if status not in ORDER_TRANSITIONS[order.status]:
            raise OrderStateError(f"Cannot move order from {order.status.value} to {status.value}")
        # pending -> confirmed is driven by a successful payment only.
        if status == OrderStatus.CONFIRMED and not paid:
            raise OrderStateError("Orders are confirmed by payment, not by a status update")
