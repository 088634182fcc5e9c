"""
Bundle detail carried by the commerce backend itself.

When the backend keeps custom cart data (a server-side filter is installed)
cart lines carry ``cart_item_data.bundle_items``; placed orders always carry
the bundle as ``meta_data`` entries (``_bundle_items``, ``_box_price``, ...).
These helpers coerce both into StoredBundleItem lists and plain numbers.
"""
from typing import Any, List, Mapping, Optional
import json
import logging

from schemas.bundle_schemas import (
    CartLine,
    StoredBundleData,
    StoredBundleItem,
    normalize_stored_bundle_item,
    to_decimal,
)

logger = logging.getLogger(__name__)

FREE_GIFT_META_KEYS = ("asl_free_gift", "is_free_gift")
TRUTHY_META_VALUES = (True, 1, "1", "yes")


def parse_bundle_items(raw: Any) -> Optional[List[StoredBundleItem]]:
    """List or JSON string of items -> usable items, or None if there are none."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, list) or not raw:
        return None
    items = [item for item in (normalize_stored_bundle_item(i) for i in raw) if item is not None]
    return items or None


def bundle_items_total(items: List[StoredBundleItem]) -> float:
    return sum(item.price_value() * item.effective_quantity for item in items)


def _positive(value: Any) -> Optional[float]:
    parsed = to_decimal(value)
    if parsed is not None and parsed > 0:
        return float(parsed)
    return None


def cart_line_bundle_items(line: CartLine) -> Optional[List[StoredBundleItem]]:
    return parse_bundle_items(line.cart_item_data.get("bundle_items"))


def cart_line_box_price(line: CartLine, stored: Optional[StoredBundleData] = None) -> Optional[float]:
    """Positive box price from the line's own data, else from the cache entry."""
    box_price = _positive(line.cart_item_data.get("box_price"))
    if box_price is not None:
        return box_price
    if stored is not None and stored.box_price is not None and stored.box_price > 0:
        return stored.box_price
    return None


# =============================================================================
# ORDER LINES
# =============================================================================

def _meta_value(order_line: Mapping[str, Any], *names: str) -> Any:
    """Value of the first meta_data entry named ``name`` or ``_name``."""
    meta_data = order_line.get("meta_data")
    if not isinstance(meta_data, list):
        return None
    wanted = set()
    for name in names:
        wanted.add(name)
        wanted.add(f"_{name}")
    for meta in meta_data:
        if isinstance(meta, Mapping) and meta.get("key") in wanted:
            return meta.get("value")
    return None


def _order_total(order_line: Mapping[str, Any]) -> Optional[float]:
    parsed = to_decimal(order_line.get("total"))
    return float(parsed) if parsed is not None else None


def order_bundle_items(order_line: Mapping[str, Any]) -> Optional[List[StoredBundleItem]]:
    return parse_bundle_items(_meta_value(order_line, "bundle_items"))


def order_box_price(order_line: Mapping[str, Any], items_total: Optional[float] = None) -> Optional[float]:
    """
    Box price from meta, else whatever the line total charges above the
    items themselves.
    """
    box_price = _positive(_meta_value(order_line, "box_price"))
    if box_price is not None:
        return box_price

    if items_total is not None and items_total > 0:
        line_total = _order_total(order_line)
        if line_total is not None and line_total > items_total:
            return round(line_total - items_total, 2)
    return None


def order_pricing_mode(order_line: Mapping[str, Any]) -> str:
    value = _meta_value(order_line, "pricing_mode")
    return value if value in ("fixed", "sum") else "sum"


def order_fixed_price(order_line: Mapping[str, Any]) -> Optional[float]:
    return _positive(_meta_value(order_line, "fixed_price"))


def order_bundle_total(order_line: Mapping[str, Any]) -> Optional[float]:
    return _positive(_meta_value(order_line, "bundle_total"))


def is_order_free_gift(order_line: Mapping[str, Any]) -> bool:
    flag = _meta_value(order_line, *FREE_GIFT_META_KEYS)
    if flag is not None:
        return flag in TRUTHY_META_VALUES

    # Gift lines added without meta: zero total and a telling name
    if _order_total(order_line) == 0:
        name = str(order_line.get("name") or "").lower()
        return "free" in name or "gift" in name
    return False


def is_order_bundle_product(order_line: Mapping[str, Any]) -> bool:
    return order_bundle_items(order_line) is not None


def describe_order_line(order_line: Mapping[str, Any]) -> Optional[dict]:
    """Bundle summary for an order history line, None for plain products."""
    items = order_bundle_items(order_line)
    if items is None:
        return None
    items_total = bundle_items_total(items)
    return {
        "bundle_items": [item.to_dict() for item in items],
        "items_total": items_total,
        "pricing_mode": order_pricing_mode(order_line),
        "box_price": order_box_price(order_line, items_total),
        "fixed_price": order_fixed_price(order_line),
        "bundle_total": order_bundle_total(order_line),
    }
