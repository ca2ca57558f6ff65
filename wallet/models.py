from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

_as_number = PlainSerializer(lambda v: float(v), return_type=float, when_used="json")

Money = Annotated[Decimal, _as_number]
Percent = Annotated[Decimal, _as_number]


class Role(str, Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"


class TransactionType(str, Enum):
    TOP_UP = "top_up"
    PAYMENT = "payment"
    CREDIT_EARNED = "credit_earned"
    CREDIT_REDEEMED = "credit_redeemed"


class ReferenceType(str, Enum):
    SIGNUP = "signup"
    TOP_UP = "top_up"
    ORDER = "order"
    ORDER_REWARD = "order_reward"
    CREDIT_REDEEM = "credit_redeem"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class PaymentMethod(str, Enum):
    UPI = "upi"
    WALLET = "wallet"


class CouponTarget(str, Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    BOTH = "both"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


class Requester(BaseModel):
    id: str
    role: Role = Role.CUSTOMER


class Account(BaseModel):
    user_id: str
    balance: Money
    credit_points: int
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerTransaction(BaseModel):
    id: int
    user_id: str
    type: TransactionType
    amount: Money
    credit_points: int
    description: str
    reference_type: Optional[ReferenceType] = None
    reference_id: Optional[str] = None
    balance_after: Money
    credits_after: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionHistoryResponse(BaseModel):
    transactions: list[LedgerTransaction]
    total: int
    page: int
    total_pages: int


class Service(BaseModel):
    id: int
    name: str
    price: Money
    active: bool

    model_config = ConfigDict(from_attributes=True)


class Offer(BaseModel):
    id: int
    provider_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    code: str
    discount_percent: Percent = Decimal("0")
    discount_flat: Money = Decimal("0.00")
    target: CouponTarget = CouponTarget.BOTH
    active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    sort_order: int = 0

    model_config = ConfigDict(from_attributes=True)


class OfferCreate(BaseModel):
    title: str
    code: str
    description: Optional[str] = None
    provider_id: Optional[str] = None
    discount_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    discount_flat: Decimal = Field(default=Decimal("0"), ge=0)
    target: CouponTarget = CouponTarget.BOTH
    active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    sort_order: int = 0


class OfferUpdate(BaseModel):
    """Partial update; only fields present in ``model_fields_set`` are written."""

    title: Optional[str] = None
    description: Optional[str] = None
    code: Optional[str] = None
    discount_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    discount_flat: Optional[Decimal] = Field(default=None, ge=0)
    target: Optional[CouponTarget] = None
    active: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    sort_order: Optional[int] = None


class OrderItem(BaseModel):
    service_id: int
    quantity: int
    price: Money

    model_config = ConfigDict(from_attributes=True)


class Order(BaseModel):
    id: str
    customer_id: str
    status: OrderStatus
    subtotal: Money
    platform_fee: Money
    discount_amount: Money
    coupon_code: Optional[str] = None
    total: Money
    address: Optional[str] = None
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None
    items: list[OrderItem] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Payment(BaseModel):
    id: str
    order_id: str
    amount: Money
    status: PaymentStatus
    method: PaymentMethod
    transaction_ref: Optional[str] = None
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CartItem(BaseModel):
    service_id: int = Field(..., alias="serviceId")
    quantity: int = 1

    model_config = ConfigDict(populate_by_name=True)


class CreateOrderRequest(BaseModel):
    items: list[CartItem] = Field(default_factory=list)
    coupon_code: Optional[str] = Field(default=None, alias="couponCode")
    address: Optional[str] = None
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "items": [{"serviceId": 1, "quantity": 2}],
                "couponCode": "WELCOME20",
                "address": "42 MG Road, Bengaluru",
                "scheduled_date": "2026-11-02",
                "scheduled_time": "10:30",
            }
        },
    )


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus


class ApplyCouponRequest(BaseModel):
    code: Optional[str] = None
    subtotal: Optional[Decimal] = None


class CouponQuote(BaseModel):
    valid: bool = True
    offer: Offer
    discount_amount: Money


class AddFundsRequest(BaseModel):
    amount: Optional[Decimal] = None


class RedeemCreditsRequest(BaseModel):
    points: Optional[int] = None


class PayRequest(BaseModel):
    order_id: Optional[str] = Field(default=None, alias="orderId")
    use_credits: bool = Field(default=False, alias="useCredits")

    model_config = ConfigDict(populate_by_name=True)


class InitiatePaymentRequest(BaseModel):
    order_id: Optional[str] = Field(default=None, alias="orderId")

    model_config = ConfigDict(populate_by_name=True)


class VerifyPaymentRequest(BaseModel):
    payment_id: Optional[str] = Field(default=None, alias="paymentId")
    transaction_ref: Optional[str] = Field(default=None, alias="transactionRef")

    model_config = ConfigDict(populate_by_name=True)


class WalletPayment(BaseModel):
    account: Account
    order: Order
    payment: Payment
    amount_paid: Money
    credits_used: int
    points_earned: int
    message: str = "Payment successful"


class RedemptionResult(BaseModel):
    account: Account
    points: int
    cash_value: Money
    message: str


class UpiPaymentIntent(BaseModel):
    payment: Payment
    upi_link: str
    merchant_name: str
    merchant_upi: str
