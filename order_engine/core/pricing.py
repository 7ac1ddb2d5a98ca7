"""
Server-side pricing.

``PricingCalculator`` is the single source of truth for what an order costs. Order
intake compares the client's declared shipping cost and total against it, and every
later step that touches a stored order (payment initiation, callback verification)
re-derives the numbers and fails closed on any disagreement.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

import structlog

from .errors import InvalidCouponError, PricingMismatchError, ValidationIssue
from .models import LineItem, Order

logger = structlog.get_logger(__name__)

FREE_SHIPPING_COUPON = "FREESHIPPING"
MINIMUM_TOTAL = Decimal("1")
TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class PricingBreakdown:
    """Result of pricing a set of line items."""

    subtotal: Decimal
    shipping_cost: Decimal
    discount: Decimal
    total: Decimal
    expected_shipping_cost: Decimal
    coupon_code: str = ""


def normalize_coupon_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


class PricingCalculator:
    """
    Computes subtotal, shipping, coupon discount and total.

    Shipping tiers are fixed for the lifetime of the process: orders whose subtotal
    reaches ``free_shipping_threshold`` ship free, everything else pays
    ``standard_shipping_cost``.
    """

    def __init__(
        self,
        free_shipping_threshold: Decimal = Decimal("500"),
        standard_shipping_cost: Decimal = Decimal("50"),
    ):
        self.free_shipping_threshold = Decimal(free_shipping_threshold)
        self.standard_shipping_cost = Decimal(standard_shipping_cost)

    def shipping_for(self, subtotal: Decimal) -> Decimal:
        if subtotal >= self.free_shipping_threshold:
            return Decimal("0")
        return self.standard_shipping_cost

    def compute_pricing(
        self, items: Iterable[LineItem], coupon_code: Optional[str] = None
    ) -> PricingBreakdown:
        """
        Price a list of line items.

        Raises:
            InvalidCouponError: If ``coupon_code`` is non-empty and not recognized
        """
        subtotal = sum((item.price * item.quantity for item in items), Decimal("0"))
        expected_shipping_cost = self.shipping_for(subtotal)
        code = normalize_coupon_code(coupon_code)

        if not code:
            shipping_cost = expected_shipping_cost
            discount = Decimal("0")
        elif code == FREE_SHIPPING_COUPON:
            shipping_cost = Decimal("0")
            discount = expected_shipping_cost
        else:
            raise InvalidCouponError(
                f"Invalid coupon code: {coupon_code}",
                [ValidationIssue("coupon.code", "Unrecognized coupon code")],
            )

        # The coupon discount is the waived shipping, so it offsets the pre-coupon
        # shipping cost rather than the (already zeroed) charged one.
        total = max(MINIMUM_TOTAL, subtotal + expected_shipping_cost - discount)

        return PricingBreakdown(
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            discount=discount,
            total=total,
            expected_shipping_cost=expected_shipping_cost,
            coupon_code=code,
        )

    def check_declared(
        self,
        breakdown: PricingBreakdown,
        declared_shipping_cost: Decimal,
        declared_total: Decimal,
    ) -> None:
        """
        Compare client- or store-declared numbers with a computed breakdown.

        Raises:
            PricingMismatchError: On any shipping or total disagreement
        """
        if abs(declared_shipping_cost - breakdown.shipping_cost) > TOLERANCE:
            if breakdown.coupon_code == FREE_SHIPPING_COUPON:
                message = (
                    f"Invalid shipping cost for {FREE_SHIPPING_COUPON} coupon: "
                    f"expected 0, received {declared_shipping_cost}"
                )
            else:
                message = (
                    f"Invalid shipping cost: expected {breakdown.shipping_cost}, "
                    f"received {declared_shipping_cost}"
                )
            raise PricingMismatchError(message, [ValidationIssue("shippingMethod.cost", message)])

        if abs(declared_total - breakdown.total) > TOLERANCE:
            message = f"Invalid total: expected {breakdown.total}, received {declared_total}"
            raise PricingMismatchError(message, [ValidationIssue("total", message)])

        if breakdown.discount > breakdown.subtotal + breakdown.expected_shipping_cost:
            message = "Coupon discount cannot exceed subtotal plus shipping"
            raise PricingMismatchError(message, [ValidationIssue("coupon.discount", message)])

    def revalidate(self, order: Order) -> PricingBreakdown:
        """
        Re-derive pricing for a stored order and fail closed on any drift.

        Raises:
            InvalidCouponError: If the stored coupon is not recognized
            PricingMismatchError: If stored shipping, discount or total disagree
        """
        breakdown = self.compute_pricing(order.items, order.coupon.code)
        try:
            self.check_declared(breakdown, order.shipping_method.cost, order.total)
            if abs(order.coupon.discount - breakdown.discount) > TOLERANCE:
                message = (
                    f"Invalid coupon discount: expected {breakdown.discount}, "
                    f"stored {order.coupon.discount}"
                )
                raise PricingMismatchError(message, [ValidationIssue("coupon.discount", message)])
        except PricingMismatchError as e:
            logger.warning(
                "stored_pricing_mismatch",
                order_id=order.order_id,
                error=e.message,
                subtotal=str(breakdown.subtotal),
                shipping_cost=str(breakdown.shipping_cost),
                discount=str(breakdown.discount),
            )
            raise
        return breakdown


def amount_in_minor_units(total: Decimal, minimum: int = 100) -> int:
    """Convert a currency amount to gateway minor units (paise), never below ``minimum``."""
    return max(minimum, int((total * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)))
