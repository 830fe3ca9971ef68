"""
Promotion ingestion and eligibility.

Backend payloads are loosely typed (`type` plus whichever parameter fields the
admin screen happened to send). They are turned into one of the three closed
promotion variants here, at load time, so nothing downstream ever has to cope
with a missing or malformed parameter.
"""
import logging
from datetime import datetime
from typing import Iterable, List

from pydantic import TypeAdapter, ValidationError

from errors import InvalidPromotionParameters, UnsupportedPromotionType
from models import Promotion, as_utc

logger = logging.getLogger(__name__)

_promotion_adapter = TypeAdapter(Promotion)

_KIND_PARAMS = {
    "percentage": ("discountPercentage",),
    "fixed_amount": ("discountAmount",),
    "buy_x_get_y": ("buyQuantity", "getQuantity"),
}


def _is_active(raw: dict) -> bool:
    if raw.get("isActive") is not None:
        return bool(raw["isActive"])
    if raw.get("status") is not None:
        return str(raw["status"]).lower() == "active"
    return True


def _product_ids(raw: dict) -> List[str]:
    merged = []
    for key in ("specificProducts", "productIds"):
        for pid in raw.get(key) or []:
            pid = str(pid)
            if pid and pid not in merged:
                merged.append(pid)
    return merged


def parse_promotion(raw: dict) -> Promotion:
    """
    Converts one backend promotion record into a validated Promotion.

    Raises:
        UnsupportedPromotionType: `type` is not one of the three known kinds.
        InvalidPromotionParameters: parameters are missing or out of range.
    """
    if not isinstance(raw, dict):
        raise InvalidPromotionParameters(f"Promotion record must be an object, got {type(raw).__name__}")

    promo_id = raw.get("_id") or raw.get("id")
    kind = raw.get("type") or raw.get("kind")
    if kind not in _KIND_PARAMS:
        raise UnsupportedPromotionType(f"Unsupported promotion type: {kind!r}", promo_id)

    data = {
        "id": str(promo_id) if promo_id is not None else "",
        "name": raw.get("name") or "",
        "kind": kind,
        "eligibleProductIds": _product_ids(raw),
        "startDate": raw.get("startDate"),
        "endDate": raw.get("endDate"),
        "isActive": _is_active(raw),
    }
    for param in _KIND_PARAMS[kind]:
        if raw.get(param) is None:
            raise InvalidPromotionParameters(f"{kind} promotion is missing {param}", promo_id)
        data[param] = raw[param]

    try:
        return _promotion_adapter.validate_python(data)
    except ValidationError as e:
        details = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
        raise InvalidPromotionParameters(f"Invalid promotion {promo_id!r}: {details}", promo_id) from e


def _unwrap(payload) -> list:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("data", "promotions"):
            inner = payload.get(key)
            if isinstance(inner, list):
                return inner
            if isinstance(inner, dict):
                return _unwrap(inner)
    return []


def load_promotions(payload) -> List[Promotion]:
    """Parses a whole promotions payload, skipping every record that is rejected."""
    promotions = []
    for raw in _unwrap(payload):
        try:
            promotions.append(parse_promotion(raw))
        except InvalidPromotionParameters as e:
            logger.warning(f"Skipping promotion: {e}")
    return promotions


def is_eligible(promotion: Promotion, product_id: str, now: datetime) -> bool:
    now = as_utc(now)
    if not promotion.is_active:
        return False
    if product_id not in promotion.eligible_product_ids:
        return False
    if promotion.start_date is not None and now < promotion.start_date:
        return False
    if promotion.end_date is not None and now > promotion.end_date:
        return False
    return True


def eligible_promotions(promotions: Iterable[Promotion], product_id: str, now: datetime) -> List[Promotion]:
    return [p for p in promotions if is_eligible(p, product_id, now)]


def active_promotions(promotions: Iterable[Promotion], now: datetime) -> List[Promotion]:
    """Promotions that are switched on and inside their date window, for any product."""
    now = as_utc(now)
    return [
        p for p in promotions
        if p.is_active
        and (p.start_date is None or now >= p.start_date)
        and (p.end_date is None or now <= p.end_date)
    ]
