"""
Client-side pricing session used for instant cart feedback.

The summary it produces is a preview: the order endpoint recomputes it from the
stored cart before charging. Promotions and the cart are fetched concurrently;
coupon checks are ticketed so that only the answer for the code currently in
the field can ever reach the summary.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from pydantic import ValidationError

from backend_client import BackendClient, parse_cart_lines
from cart import best_price_for_product, build_summary
from coupons import CouponValidator, RemoteCouponValidator, normalize_code
from errors import ArithmeticInvariantViolation, NetworkUnavailable, PricingError
from models import CartLine, CartSummary, CouponValidation, DiscountResult, Promotion, ShippingOption
from pricing import to_decimal
from promotions import load_promotions

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


class PricingSession:
    def __init__(self, client: BackendClient, coupon_validator: Optional[CouponValidator] = None,
                 user_id: Optional[str] = None, clock=_utcnow):
        self.client = client
        self.coupon_validator = coupon_validator or RemoteCouponValidator(client)
        self.user_id = user_id
        self.clock = clock

        self.promotions: List[Promotion] = []
        self.lines: Optional[List[CartLine]] = None
        self.shipping_cost = Decimal("0")
        self.notices: List[str] = []

        self._lock = threading.Lock()
        self._coupon_ticket = 0
        self._coupon_code: Optional[str] = None
        self._coupon_result: Optional[CouponValidation] = None

    # ---------- loading ----------

    def load(self) -> None:
        """Fetches active promotions and the cart at the same time."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            promos_future = pool.submit(self.client.active_promotions)
            cart_future = pool.submit(self.client.cart)

        try:
            promotions = load_promotions(promos_future.result())
        except NetworkUnavailable as e:
            logger.warning(f"Promotions unavailable, pricing without them: {e}")
            self._notice("Promotions could not be loaded; prices shown without discounts.")
            promotions = []

        try:
            lines = parse_cart_lines(cart_future.result())
        except (NetworkUnavailable, ValidationError) as e:
            logger.warning(f"Cart unavailable: {e}")
            self._notice("The cart could not be refreshed.")
            lines = None

        with self._lock:
            self.promotions = promotions
            if lines is not None:
                self.lines = lines

    def _notice(self, text: str) -> None:
        with self._lock:
            self.notices.append(text)

    # ---------- cart edits (local snapshot) ----------

    def update_quantity(self, line_id: str, quantity: int) -> None:
        with self._lock:
            self.lines = [l.with_quantity(quantity) if l.line_id == line_id else l for l in self.lines or []]

    def remove_line(self, line_id: str) -> None:
        with self._lock:
            self.lines = [l for l in self.lines or [] if l.line_id != line_id]

    def set_shipping_cost(self, cost) -> None:
        cost = to_decimal(cost)
        if cost < 0:
            raise ValueError(f"shipping cost cannot be negative: {cost}")
        with self._lock:
            self.shipping_cost = cost

    def choose_shipping(self, option: ShippingOption) -> None:
        self.set_shipping_cost(option.cost)

    # ---------- coupons ----------

    @property
    def coupon_pending(self) -> bool:
        return self._coupon_code is not None and self._coupon_result is None

    @property
    def coupon(self) -> Optional[CouponValidation]:
        return self._coupon_result

    def submit_coupon(self, code: Optional[str]) -> int:
        """Registers the code now in the field; every earlier ticket becomes stale."""
        with self._lock:
            self._coupon_ticket += 1
            self._coupon_code = normalize_code(code) or None
            self._coupon_result = None
            return self._coupon_ticket

    def resolve_coupon(self, ticket: int, validation: CouponValidation) -> bool:
        with self._lock:
            if ticket != self._coupon_ticket:
                logger.info(f"Discarding stale coupon result for {validation.code} (ticket {ticket})")
                return False
            self._coupon_result = validation
        if not validation.valid:
            self._notice(validation.message or f"Coupon rejected: {validation.reason}")
        return True

    def apply_coupon(self, code: Optional[str]) -> Optional[CouponValidation]:
        ticket = self.submit_coupon(code)
        code = normalize_code(code)
        if not code:
            return None
        try:
            validation = self.coupon_validator.validate(code, self.user_id)
        except NetworkUnavailable as e:
            logger.warning(f"Coupon {code} could not be validated: {e}")
            validation = CouponValidation.rejected("not_found", code, "The coupon could not be validated right now.")
        except (PricingError, ValueError, TypeError) as e:
            # a malformed answer must still settle the ticket, or the summary stays pending
            logger.warning(f"Coupon {code} got an unusable answer: {e}")
            validation = CouponValidation.rejected("inactive", code, "The coupon could not be applied.")
        self.resolve_coupon(ticket, validation)
        return validation

    # ---------- pricing ----------

    def quick_add(self, product_id: str, base_price, now: Optional[datetime] = None) -> Tuple[Optional[DiscountResult], int]:
        """Best promotion for a product card and the quantity the add button should use."""
        result = best_price_for_product(self.promotions, product_id, base_price, now or self.clock())
        return result, result.applied_quantity if result else 1

    def summary(self, now: Optional[datetime] = None) -> Optional[CartSummary]:
        """
        Preview summary, or None while the cart or the current coupon's answer
        is still missing.
        """
        with self._lock:
            if self.lines is None or self.coupon_pending:
                return None
            lines = list(self.lines)
            promotions = list(self.promotions)
            coupon = self._coupon_result
            shipping = self.shipping_cost
        now = now or self.clock()

        try:
            return build_summary(lines, promotions, coupon, shipping, now)
        except ArithmeticInvariantViolation:
            logger.exception("Summary failed its arithmetic check, falling back to undiscounted pricing")
            self._notice("Discounts could not be applied; showing regular prices.")
            return build_summary(lines, [], None, shipping, now)
