import copy
import itertools
from datetime import datetime, timezone
from decimal import Decimal

from models import BuyXGetYPromotion, CartLine, FixedAmountPromotion, PercentagePromotion

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def percentage(pct, products=("p1",), promo_id="pct", **kwargs):
    return PercentagePromotion(
        id=promo_id, name=kwargs.pop("name", f"{pct}% off"),
        eligible_product_ids=frozenset(products), discount_percentage=Decimal(str(pct)), **kwargs,
    )


def fixed(amount, products=("p1",), promo_id="fixed", **kwargs):
    return FixedAmountPromotion(
        id=promo_id, name=kwargs.pop("name", f"{amount} off"),
        eligible_product_ids=frozenset(products), discount_amount=Decimal(str(amount)), **kwargs,
    )


def bundle(buy, get, products=("p1",), promo_id="bundle", **kwargs):
    return BuyXGetYPromotion(
        id=promo_id, name=kwargs.pop("name", f"buy {buy} get {get}"),
        eligible_product_ids=frozenset(products), buy_quantity=buy, get_quantity=get, **kwargs,
    )


def line(quantity, unit_price, product_id="p1", line_id=None, **kwargs):
    return CartLine(
        line_id=line_id or f"line-{product_id}",
        product_id=product_id,
        product_name=kwargs.pop("product_name", f"Product {product_id}"),
        quantity=quantity,
        unit_price=Decimal(str(unit_price)),
        **kwargs,
    )


class FakeRef:
    """Mimics the subset of firebase_admin.db.Reference the service uses."""

    _ids = itertools.count(1)

    def __init__(self, store=None, path=()):
        self.store = store if store is not None else {}
        self.path = path

    @property
    def key(self):
        return self.path[-1] if self.path else None

    def child(self, name):
        parts = tuple(p for p in str(name).split("/") if p)
        return FakeRef(self.store, self.path + parts)

    def get(self):
        node = self.store
        for part in self.path:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def set(self, value):
        parent = self.store
        for part in self.path[:-1]:
            parent = parent.setdefault(part, {})
        parent[self.path[-1]] = copy.deepcopy(value)

    def delete(self):
        parent = self.store
        for part in self.path[:-1]:
            if part not in parent:
                return
            parent = parent[part]
        parent.pop(self.path[-1], None)

    def push(self, value=None):
        ref = self.child(f"-N{next(self._ids):06d}")
        if value is not None:
            ref.set(value)
        return ref
