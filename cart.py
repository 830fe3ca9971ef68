"""
Cart pricing: per-line promotion selection and the checkout summary.

Everything here is pure. Callers pass the promotions snapshot, the cart lines
and the instant to price at; nothing is cached and no input is mutated, so the
storefront preview and the order endpoint get the same numbers from the same
inputs.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from errors import ArithmeticInvariantViolation
from models import (
    BuyXGetYPromotion,
    CartLine,
    CartSummary,
    CouponValidation,
    DiscountResult,
    LineDiscount,
    PricedLine,
    Promotion,
    Reconciliation,
)
from pricing import HUNDRED, ZERO, compute_price, round_half_up, to_decimal
from promotions import eligible_promotions

_NO_START = datetime.min.replace(tzinfo=timezone.utc)


def _selection_key(candidate: Tuple[Promotion, DiscountResult]):
    promotion, result = candidate
    return (result.final_unit_price, promotion.start_date or _NO_START, promotion.id)


def select_promotion(promotions: Iterable[Promotion], base_unit_price) -> Optional[Tuple[Promotion, DiscountResult]]:
    """
    Picks the single promotion giving the lowest unit price.

    Ties go to the earliest start date (no start date first), then the
    smallest id. Returns None when there is nothing to choose from.
    """
    candidates = [(p, compute_price(p, base_unit_price)) for p in promotions]
    if not candidates:
        return None
    return min(candidates, key=_selection_key)


def best_price_for_product(promotions: Iterable[Promotion], product_id: str, base_unit_price,
                           now: datetime) -> Optional[DiscountResult]:
    selected = select_promotion(eligible_promotions(promotions, product_id, now), base_unit_price)
    return selected[1] if selected else None


def _billed_units(promotion: Promotion, quantity: int) -> int:
    if isinstance(promotion, BuyXGetYPromotion):
        groups, remainder = divmod(quantity, promotion.bundle_size)
        return groups * promotion.buy_quantity + remainder
    return quantity


def price_line(line: CartLine, promotions: Iterable[Promotion], now: datetime) -> PricedLine:
    line_subtotal = line.unit_price * line.quantity
    selected = select_promotion(eligible_promotions(promotions, line.product_id, now), line.unit_price)

    if selected is None:
        return PricedLine(
            line=line,
            billed_units=line.quantity,
            line_subtotal=line_subtotal,
            charged_amount=line_subtotal,
            line_discount=ZERO,
        )

    promotion, result = selected
    billed = _billed_units(promotion, line.quantity)
    charged = result.final_unit_price * billed
    return PricedLine(
        line=line,
        discount=result,
        billed_units=billed,
        line_subtotal=line_subtotal,
        charged_amount=charged,
        line_discount=line_subtotal - charged,
    )


def price_lines(lines: Sequence[CartLine], promotions: Sequence[Promotion],
                now: datetime) -> Tuple[List[PricedLine], Decimal]:
    priced = [price_line(line, promotions, now) for line in lines]
    total_discount = sum((p.line_discount for p in priced), ZERO)
    return priced, total_discount


def _describe(priced: PricedLine) -> str:
    result = priced.discount
    if result.kind == "buy_x_get_y":
        free = priced.line.quantity - priced.billed_units
        return f"{result.badge}: {free} free unit{'s' if free != 1 else ''}"
    return f"{result.badge} on {priced.line.product_name or priced.line.product_id}"


def line_discounts(priced_lines: Iterable[PricedLine]) -> List[LineDiscount]:
    return [
        LineDiscount(
            line_id=p.line.line_id,
            product_id=p.line.product_id,
            promotion_id=p.discount.promotion_id,
            promotion_name=p.discount.promotion_name,
            kind=p.discount.kind,
            amount=p.line_discount,
            description=_describe(p),
        )
        for p in priced_lines
        if p.discount is not None and p.line_discount > 0
    ]


def check_summary(summary: CartSummary) -> CartSummary:
    expected = summary.subtotal - summary.total_discount + summary.shipping_cost
    if summary.final_total != expected:
        raise ArithmeticInvariantViolation(
            f"finalTotal {summary.final_total} != subtotal {summary.subtotal} "
            f"- totalDiscount {summary.total_discount} + shipping {summary.shipping_cost}"
        )
    if summary.total_discount > summary.subtotal or summary.total_discount < 0:
        raise ArithmeticInvariantViolation(
            f"totalDiscount {summary.total_discount} outside [0, subtotal {summary.subtotal}]"
        )
    if summary.promotion_discount + summary.coupon_discount != summary.total_discount:
        raise ArithmeticInvariantViolation(
            f"discount layers {summary.promotion_discount} + {summary.coupon_discount} "
            f"do not add up to {summary.total_discount}"
        )
    return summary


def build_summary(lines: Sequence[CartLine], promotions: Sequence[Promotion],
                  coupon: Optional[CouponValidation], shipping_cost, now: datetime) -> CartSummary:
    """
    Builds the checkout summary for a cart.

    Promotions are resolved per line (one per line, never stacked). A valid
    coupon is a second, independent layer computed on the pre-discount
    subtotal and added to the promotion discount. A missing or rejected
    coupon contributes nothing. The combined discount never exceeds the
    subtotal: when the two layers together would go past it, the reported
    coupon_discount is reduced to what remains after the promotion discount,
    so it can be smaller than the coupon percentage of the subtotal.

    Raises:
        ValueError: shipping_cost is negative.
        ArithmeticInvariantViolation: the totals do not add up (a bug).
    """
    shipping_cost = to_decimal(shipping_cost)
    if shipping_cost < 0:
        raise ValueError(f"shipping cost cannot be negative: {shipping_cost}")

    priced, promotion_discount = price_lines(lines, promotions, now)
    subtotal = sum((p.line_subtotal for p in priced), ZERO)
    promotion_discount = min(promotion_discount, subtotal)

    coupon_discount = ZERO
    coupon_code = None
    if coupon is not None and coupon.valid:
        coupon_code = coupon.code
        coupon_discount = round_half_up(subtotal * coupon.discount_percentage / HUNDRED)
        coupon_discount = min(coupon_discount, subtotal - promotion_discount)

    total_discount = min(promotion_discount + coupon_discount, subtotal)

    summary = CartSummary(
        subtotal=subtotal,
        line_discounts=tuple(line_discounts(priced)),
        promotion_discount=promotion_discount,
        coupon_code=coupon_code,
        coupon_discount=coupon_discount,
        total_discount=total_discount,
        shipping_cost=shipping_cost,
        final_total=subtotal - total_discount + shipping_cost,
        item_count=sum(line.quantity for line in lines),
    )
    return check_summary(summary)


def summary_to_wire(summary: CartSummary) -> dict:
    return summary.model_dump(mode="json", by_alias=True)


def reconcile(preview, authoritative: CartSummary) -> Reconciliation:
    """
    Compares what the shopper was shown against what will be charged.

    `preview` may be a CartSummary or just the total the client displayed.
    The authoritative summary is always the one returned for charging.
    """
    if preview is None:
        return Reconciliation(matches=True, difference=ZERO, summary=authoritative)
    shown = preview.final_total if isinstance(preview, CartSummary) else to_decimal(preview)
    difference = authoritative.final_total - shown
    return Reconciliation(matches=difference == 0, difference=difference, summary=authoritative)
