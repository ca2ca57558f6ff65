"""Coupon discount math. Pure functions, no storage access."""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from .models import CouponTarget, Offer, Role

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(value: Union[Decimal, int, float, str]) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def coupon_rejection(offer: Offer, requester_role: Role, now: Optional[datetime] = None) -> Optional[str]:
    """Return why ``offer`` can't be used by ``requester_role``, or None if it can."""
    now = now or datetime.now(timezone.utc)
    if not offer.active:
        return "Coupon is no longer active"
    if offer.valid_until is not None and _aware(offer.valid_until) < _aware(now):
        return "Coupon has expired"
    target = CouponTarget(offer.target)
    if target != CouponTarget.BOTH and target.value != Role(requester_role).value:
        return f"This coupon is for {target.value}s only"
    return None


def compute_discount(
    subtotal: Union[Decimal, int, str],
    offer: Offer,
    requester_role: Role,
    now: Optional[datetime] = None,
) -> Decimal:
    subtotal = round_money(subtotal)
    if coupon_rejection(offer, requester_role, now) is not None:
        return ZERO

    discount = ZERO
    if offer.discount_percent > 0:
        discount = round_money(subtotal * Decimal(offer.discount_percent) / 100)
    if offer.discount_flat > 0:
        discount += round_money(offer.discount_flat)
    return min(discount, subtotal)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
