from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, FrozenSet, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

from errors import CouponRejected

# Decimal inside the engine, plain JSON number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

RejectionReason = Literal["not_found", "expired", "usage_exceeded", "inactive"]
PromotionKind = Literal["percentage", "fixed_amount", "buy_x_get_y"]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DomainModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ---------- Promotions (closed tagged union on `kind`) ----------

class _PromotionBase(DomainModel):
    id: str = Field(min_length=1)
    name: str = ""
    eligible_product_ids: FrozenSet[str] = frozenset()
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_tz(cls, value):
        return as_utc(value)

    @model_validator(mode="after")
    def _check_window(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate is before startDate")
        return self


class PercentagePromotion(_PromotionBase):
    kind: Literal["percentage"] = "percentage"
    discount_percentage: Money = Field(gt=0, le=100)


class FixedAmountPromotion(_PromotionBase):
    kind: Literal["fixed_amount"] = "fixed_amount"
    discount_amount: Money = Field(ge=0)


class BuyXGetYPromotion(_PromotionBase):
    kind: Literal["buy_x_get_y"] = "buy_x_get_y"
    buy_quantity: int = Field(ge=1)
    get_quantity: int = Field(ge=1)

    @property
    def bundle_size(self) -> int:
        return self.buy_quantity + self.get_quantity


Promotion = Annotated[
    Union[PercentagePromotion, FixedAmountPromotion, BuyXGetYPromotion],
    Field(discriminator="kind"),
]


# ---------- Cart ----------

class CartLine(DomainModel):
    line_id: str
    product_id: str
    product_name: str = ""
    quantity: int = Field(ge=1)
    unit_price: Money = Field(ge=0)
    size: Optional[str] = None
    color: Optional[str] = None

    def with_quantity(self, quantity: int) -> "CartLine":
        # unit_price is a snapshot and is carried over untouched
        return CartLine.model_validate({**self.model_dump(), "quantity": quantity})


class DiscountResult(DomainModel):
    promotion_id: str
    promotion_name: str = ""
    kind: PromotionKind
    final_unit_price: Money
    discount_amount: Money
    applied_quantity: int
    badge: str
    sublabel: str


class PricedLine(DomainModel):
    line: CartLine
    discount: Optional[DiscountResult] = None
    billed_units: int
    line_subtotal: Money
    charged_amount: Money
    line_discount: Money


class LineDiscount(DomainModel):
    line_id: str
    product_id: str
    promotion_id: str
    promotion_name: str = ""
    kind: PromotionKind
    amount: Money
    description: str = ""


class CartSummary(DomainModel):
    subtotal: Money
    line_discounts: Tuple[LineDiscount, ...] = Field(default=(), alias="discounts")
    promotion_discount: Money
    coupon_code: Optional[str] = None
    coupon_discount: Money
    total_discount: Money
    shipping_cost: Money = Field(alias="shipping")
    final_total: Money
    item_count: int = 0


class Reconciliation(DomainModel):
    matches: bool
    difference: Money
    summary: CartSummary


# ---------- Coupons ----------

class CouponValidation(DomainModel):
    valid: bool
    code: Optional[str] = None
    discount_percentage: Optional[Money] = None
    usage_remaining: Optional[int] = None
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None

    @model_validator(mode="after")
    def _check_shape(self):
        if self.valid and self.discount_percentage is None:
            raise ValueError("a valid coupon needs a discountPercentage")
        if self.discount_percentage is not None and not 0 < self.discount_percentage <= 100:
            raise ValueError("discountPercentage must be in (0, 100]")
        if not self.valid and self.reason is None:
            raise ValueError("a rejected coupon needs a reason")
        return self

    @classmethod
    def accepted(cls, code, discount_percentage, usage_remaining=None, message=None):
        return cls(
            valid=True,
            code=code,
            discount_percentage=Decimal(str(discount_percentage)),
            usage_remaining=usage_remaining,
            message=message,
        )

    @classmethod
    def rejected(cls, reason, code=None, message=None):
        return cls(valid=False, code=code, reason=reason, message=message)

    def require_valid(self) -> "CouponValidation":
        if not self.valid:
            raise CouponRejected(self.code, self.reason, self.message)
        return self


# ---------- Shipping ----------

class ShipDimensions(DomainModel):
    length: float = Field(ge=0)
    width: float = Field(ge=0)
    height: float = Field(ge=0)


class ShippingItem(DomainModel):
    product_id: str
    quantity: int = Field(ge=1)
    weight: float = Field(ge=0)
    dimensions: ShipDimensions


class ShippingOption(DomainModel):
    model_config = ConfigDict(extra="ignore")

    service: str
    carrier: str = ""
    name: Optional[str] = None
    cost: Money = Field(ge=0)
    estimated_days: int = Field(default=0, ge=0)
    description: Optional[str] = None


# ---------- HTTP bodies ----------

class MessageResponse(BaseModel):
    message: str


class PromotionCreate(BaseModel):
    name: str
    type: str
    discountPercentage: Optional[float] = None
    discountAmount: Optional[float] = None
    buyQuantity: Optional[int] = None
    getQuantity: Optional[int] = None
    specificProducts: List[str] = []
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    isActive: bool = True


class PromotionPriceRequest(BaseModel):
    productId: str
    basePrice: float = Field(ge=0)


class CouponCreate(BaseModel):
    code: str
    discountPercentage: float = Field(gt=0, le=100)
    uses: Optional[int] = -1
    expiresAt: Optional[str] = None
    isActive: bool = True


class CouponValidateRequest(BaseModel):
    code: str
    sessionId: Optional[str] = None
    userId: Optional[str] = None


class CartItemAdd(BaseModel):
    productId: str
    quantity: int = Field(default=1, ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


class CartItemUpdate(BaseModel):
    quantity: int = Field(ge=1)


class SummaryRequest(BaseModel):
    couponCode: Optional[str] = None
    shippingCost: float = Field(default=0, ge=0)


class OrderCreate(BaseModel):
    sessionId: str
    couponCode: Optional[str] = None
    shippingCost: float = Field(default=0, ge=0)
    shippingMethod: Optional[str] = None
    shippingAddressId: Optional[str] = None
    paymentMethod: str = "cash"
    clientTotal: Optional[float] = None


class OrderResponse(BaseModel):
    orderId: str
    status: str
    summary: CartSummary
    priceChanged: bool = False
    clientTotal: Optional[float] = None
