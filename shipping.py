import logging
from typing import Dict, Iterable, List, Optional, Protocol

from pydantic import ValidationError

from backend_client import BackendClient
from models import CartLine, ShipDimensions, ShippingItem, ShippingOption

logger = logging.getLogger(__name__)

# used when the catalog has no packaging data for a product
DEFAULT_WEIGHT_KG = 0.5
DEFAULT_DIMENSIONS = {"length": 20, "width": 15, "height": 10}


class ShippingEstimator(Protocol):
    def estimate(self, address_id: str, items: List[ShippingItem]) -> List[ShippingOption]:
        ...


def build_shipping_items(lines: Iterable[CartLine], catalog: Optional[Dict[str, dict]] = None) -> List[ShippingItem]:
    catalog = catalog or {}
    items = []
    for line in lines:
        product = catalog.get(line.product_id) or {}
        weight = product.get("weight")
        dims = product.get("dimensions") or product.get("package") or {}
        items.append(ShippingItem(
            product_id=line.product_id,
            quantity=line.quantity,
            weight=weight if isinstance(weight, (int, float)) else DEFAULT_WEIGHT_KG,
            dimensions=ShipDimensions(**{k: float(dims.get(k) or v) for k, v in DEFAULT_DIMENSIONS.items()}),
        ))
    return items


def parse_options(payload) -> List[ShippingOption]:
    raw = payload.get("options", []) if isinstance(payload, dict) else payload or []
    options = []
    for entry in raw:
        # some carriers answer with `price`/`days` instead of `cost`/`estimatedDays`
        entry = dict(entry)
        entry.setdefault("cost", entry.get("price"))
        if "estimatedDays" not in entry and str(entry.get("days", "")).isdigit():
            entry["estimatedDays"] = int(entry["days"])
        try:
            options.append(ShippingOption.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Skipping malformed shipping option {entry.get('service')!r}: {e.error_count()} errors")
    return options


def cheapest_option(options: Iterable[ShippingOption]) -> Optional[ShippingOption]:
    options = list(options)
    if not options:
        return None
    return min(options, key=lambda o: (o.cost, o.estimated_days, o.service))


class RemoteShippingEstimator:
    def __init__(self, client: BackendClient):
        self.client = client

    def estimate(self, address_id: str, items: List[ShippingItem]) -> List[ShippingOption]:
        payload = self.client.calculate_shipping(
            address_id,
            [item.model_dump(mode="json", by_alias=True) for item in items],
        )
        options = parse_options(payload)
        logger.info(f"{len(options)} shipping options for address {address_id}")
        return options
