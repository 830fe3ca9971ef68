from decimal import Decimal, ROUND_HALF_UP

from models import (
    BuyXGetYPromotion,
    DiscountResult,
    FixedAmountPromotion,
    PercentagePromotion,
    Promotion,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as 0.1 instead of its binary expansion
    return Decimal(str(value))


def round_half_up(value) -> Decimal:
    """Rounds to the nearest whole currency unit, halves going up."""
    return to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def format_money(value) -> str:
    value = to_decimal(value)
    if value == value.to_integral_value():
        return f"${int(value)}"
    return f"${value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)}"


def _format_number(value) -> str:
    value = to_decimal(value)
    if value == value.to_integral_value():
        return str(int(value))
    return str(value.normalize())


def bundle_badge(buy_quantity: int, get_quantity: int) -> str:
    """
    Retail "take N, pay M" label. Buy 1 get 1 is also take 2 pay 1, so it
    shares "2x1" with buy 2 get 1; the sublabel carries the bundle size and
    tells the two offers apart.
    """
    if buy_quantity == 2 and get_quantity == 1:
        return "2x1"
    return f"{buy_quantity + get_quantity}x{buy_quantity}"


def bundle_unit_price(promotion: BuyXGetYPromotion, base_unit_price) -> Decimal:
    base = to_decimal(base_unit_price)
    return round_half_up(promotion.buy_quantity * base / promotion.bundle_size)


def compute_price(promotion: Promotion, base_unit_price) -> DiscountResult:
    """
    Prices one unit of a product under a single promotion.

    Assumes the promotion already passed ingestion, so parameters are in range.
    """
    base = to_decimal(base_unit_price)

    if isinstance(promotion, PercentagePromotion):
        pct = promotion.discount_percentage
        final = round_half_up(base * (HUNDRED - pct) / HUNDRED)
        return DiscountResult(
            promotion_id=promotion.id,
            promotion_name=promotion.name,
            kind=promotion.kind,
            final_unit_price=final,
            discount_amount=base - final,
            applied_quantity=1,
            badge=f"-{_format_number(pct)}%",
            sublabel=f"{format_money(final)} instead of {format_money(base)}",
        )

    if isinstance(promotion, FixedAmountPromotion):
        final = max(ZERO, base - promotion.discount_amount)
        return DiscountResult(
            promotion_id=promotion.id,
            promotion_name=promotion.name,
            kind=promotion.kind,
            final_unit_price=final,
            discount_amount=base - final,
            applied_quantity=1,
            badge=f"-{format_money(promotion.discount_amount)}",
            sublabel=f"{format_money(final)} instead of {format_money(base)}",
        )

    if isinstance(promotion, BuyXGetYPromotion):
        per_unit = bundle_unit_price(promotion, base)
        return DiscountResult(
            promotion_id=promotion.id,
            promotion_name=promotion.name,
            kind=promotion.kind,
            final_unit_price=base,
            discount_amount=ZERO,
            applied_quantity=promotion.buy_quantity,
            badge=bundle_badge(promotion.buy_quantity, promotion.get_quantity),
            sublabel=(
                f"{format_money(per_unit)} each taking {promotion.bundle_size}, "
                f"pay {promotion.buy_quantity}"
            ),
        )

    raise TypeError(f"Unknown promotion variant: {type(promotion).__name__}")
