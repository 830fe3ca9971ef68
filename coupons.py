import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol

from backend_client import BackendClient
from firebase_util import get_session_usage
from models import CouponValidation, as_utc

logger = logging.getLogger(__name__)


class CouponValidator(Protocol):
    def validate(self, code: str, user_id: Optional[str] = None) -> CouponValidation:
        ...


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _percentage(value) -> Optional[Decimal]:
    try:
        pct = Decimal(str(value))
    except (TypeError, ValueError, InvalidOperation):
        return None
    return pct if pct.is_finite() and 0 < pct <= 100 else None


def _parse_expiry(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        logger.warning(f"Ignoring unparseable coupon expiry {value!r}")
        return None


class FirebaseCouponValidator:
    """Validates codes against `coupons/{CODE}` and `couponUsage/{sessionId}`."""

    def __init__(self, ref):
        self.ref = ref

    def validate(self, code: str, user_id: Optional[str] = None,
                 now: Optional[datetime] = None) -> CouponValidation:
        code = normalize_code(code)
        now = as_utc(now) if now else datetime.now(timezone.utc)
        if not code:
            return CouponValidation.rejected("not_found", code, "Invalid coupon")

        data = self.ref.child("coupons").child(code).get()
        if not data:
            return CouponValidation.rejected("not_found", code, "Invalid coupon")

        if data.get("isActive") is False:
            return CouponValidation.rejected("inactive", code, "Coupon is not active")

        expires_at = _parse_expiry(data.get("expiresAt"))
        if expires_at is not None and now > expires_at:
            return CouponValidation.rejected("expired", code, "Coupon has expired")

        uses_left = int(data.get("usesLeft", -1))
        if uses_left != -1 and uses_left <= 0:
            return CouponValidation.rejected("usage_exceeded", code, "Coupon usage limit reached")

        used = get_session_usage(self.ref, user_id)
        if used and used.get("coupon") == code:
            return CouponValidation.rejected("usage_exceeded", code, "Coupon already used in this session")

        raw_pct = data.get("discountPercentage")
        pct = _percentage(raw_pct)
        if pct is None:
            logger.warning(f"Coupon {code} has an unusable discountPercentage {raw_pct!r}")
            return CouponValidation.rejected("inactive", code, "Coupon is misconfigured")

        return CouponValidation.accepted(
            code,
            pct,
            usage_remaining=None if uses_left == -1 else uses_left,
            message=f"{code} applied: {pct}% off",
        )


def _reason_from_message(text: str) -> str:
    text = (text or "").lower()
    if "expir" in text:
        return "expired"
    if "usage" in text or "limit" in text or "already used" in text:
        return "usage_exceeded"
    if "inactive" in text or "not active" in text:
        return "inactive"
    return "not_found"


def validation_from_payload(code: str, payload) -> CouponValidation:
    """Maps the backend's `{valid, coupon{...}, message}` answer onto CouponValidation."""
    code = normalize_code(code)
    if not isinstance(payload, dict):
        return CouponValidation.rejected("not_found", code, "Unexpected coupon response")

    message = payload.get("message")
    if not payload.get("valid"):
        reason = _reason_from_message(payload.get("error") or message)
        return CouponValidation.rejected(reason, code, message)

    coupon = payload.get("coupon") or {}
    pct = _percentage(coupon.get("discountPercentage", payload.get("discountPercentage")))
    if pct is None:
        logger.warning(f"Backend accepted coupon {code} without a usable percentage")
        return CouponValidation.rejected("inactive", code, message)

    remaining = None
    if coupon.get("usageLimit") is not None:
        remaining = max(0, int(coupon["usageLimit"]) - int(coupon.get("usedCount") or 0))
    return CouponValidation.accepted(normalize_code(coupon.get("code") or code), pct, remaining, message)


class RemoteCouponValidator:
    """Asks the storefront backend. Raises NetworkUnavailable when it cannot."""

    def __init__(self, client: BackendClient):
        self.client = client

    def validate(self, code: str, user_id: Optional[str] = None) -> CouponValidation:
        payload = self.client.validate_coupon(normalize_code(code), user_id)
        return validation_from_payload(code, payload)
