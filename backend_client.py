"""
Thin HTTP client for the storefront REST backend.

Every transport failure (connection errors, timeouts, non-2xx answers, bodies
that are not JSON) surfaces as NetworkUnavailable so callers can degrade
instead of breaking the cart view.
"""
import logging
import os
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

import requests
from dotenv import load_dotenv

from errors import NetworkUnavailable
from models import CartLine

load_dotenv()

logger = logging.getLogger(__name__)

API_BASE = os.getenv("API_BASE", "http://localhost:3001")
API_TIMEOUT = float(os.getenv("API_TIMEOUT", "10"))


def _unwrap(body):
    # backend answers either `{success, data}` or the bare payload
    if isinstance(body, dict) and body.get("success") is True and "data" in body:
        return body["data"]
    return body


class BackendClient:
    def __init__(self, base_url: str = API_BASE, token: Optional[str] = None,
                 timeout: float = API_TIMEOUT, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self):
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def request(self, method: str, path: str, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise NetworkUnavailable(f"{method} {path} failed: {e}") from e

        if not resp.ok:
            logger.warning(f"{method} {path} returned HTTP {resp.status_code}")
            raise NetworkUnavailable(f"{method} {path} returned HTTP {resp.status_code}", resp.status_code)
        try:
            body = resp.json()
        except ValueError as e:
            raise NetworkUnavailable(f"{method} {path} returned a non-JSON body") from e

        if isinstance(body, dict) and body.get("success") is False:
            raise NetworkUnavailable(body.get("message") or f"{method} {path} returned success=false", resp.status_code)
        return _unwrap(body)

    def active_promotions(self):
        return self.request("GET", "/promotions/active")

    def cart(self):
        return self.request("GET", "/cart")

    def validate_coupon(self, code: str, user_id: Optional[str] = None):
        return self.request("POST", "/promotions/validate-coupon", json={"couponCode": code, "userId": user_id})

    def calculate_shipping(self, address_id: str, cart_items: List[dict]):
        return self.request("POST", "/shipping/calculate", json={"addressId": address_id, "cartItems": cart_items})


def _unit_price(item: dict) -> Decimal:
    # line price, then catalogue price, then the line subtotal spread over its units
    quantity = item.get("quantity") or 0
    if isinstance(item.get("price"), (int, float)):
        return Decimal(str(item["price"]))
    product = item.get("product") or {}
    if isinstance(product.get("price"), (int, float)):
        return Decimal(str(product["price"]))
    if isinstance(item.get("subtotal"), (int, float)) and isinstance(quantity, int) and quantity > 0:
        return (Decimal(str(item["subtotal"])) / quantity).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return Decimal("0")


def parse_cart_lines(payload) -> List[CartLine]:
    """Maps a cart payload (`{items: [...]}` or `{cart: {items}}`) onto CartLine snapshots."""
    if isinstance(payload, dict) and isinstance(payload.get("cart"), dict):
        payload = payload["cart"]
    items = payload.get("items", []) if isinstance(payload, dict) else payload or []

    lines = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning(f"Skipping malformed cart item {item!r}")
            continue
        product = item.get("product") or {}
        product_id = str(product.get("_id") or item.get("productId") or "")
        lines.append(CartLine(
            line_id=str(item.get("_id") or item.get("lineId") or product_id),
            product_id=product_id,
            product_name=product.get("name") or item.get("productName") or "",
            quantity=int(item.get("quantity") or 1),
            unit_price=_unit_price(item),
            size=item.get("size"),
            color=item.get("color"),
        ))
    return lines
