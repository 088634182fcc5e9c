"""
Standardized Bundle Cart Schemas
================================

This module defines the canonical data structures for bundle offers, priced
breakdowns, cached bundle metadata and cart lines. Every untyped JSON payload
(HTTP bodies, the persisted cache, backend cart/order lines) MUST pass through
one of the normalize_* loaders below before internal logic touches it.

PRICING MODES:
--------------
- sum:   customer pays the sum of the selected (non-free) item prices
- fixed: customer pays box_price, which covers included_items_count units;
         units beyond that are charged as extras

CACHE ENTRY (StoredBundleData):
-------------------------------
One entry per cart line, keyed by the bundle product id. The commerce backend
does not keep this data, so the entry is the only place the bundle composition
survives between add-to-cart and cart view. Entries are always written whole.

WIRE FORMAT:
------------
Money is Decimal internally and float on the wire. Optional fields that are
unset are omitted from cached entries rather than written as null.
"""

from typing import List, Dict, Any, Optional, Union, TypedDict, Literal, Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
import json
import math
import logging

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

PRICING_MODES = ("sum", "fixed")
ITEM_ROLES = ("required", "addon")
MAX_ITEM_QUANTITY = 999
CHARGING_METHODS = ("flat_fee", "unit_price")
EXTRAS_ORDERS = ("selection_order", "cheapest_first", "most_expensive_first")
SHIPPING_FEE_OPTIONS = (
    "apply_to_each_bundled_product",
    "apply_once_per_bundle",
    "free_shipping",
    "calculated_at_checkout",
)

LINE_STATES = ("reconciled", "stale", "uncached", "embedded")


# =============================================================================
# TYPE DEFINITIONS (TypedDict for wire shapes)
# =============================================================================

class BundleItemSpecDict(TypedDict, total=False):
    """Selected item inside a bundle."""
    product_id: int
    role: Literal["required", "addon"]
    is_free: bool
    quantity: int
    unit_price: Optional[float]
    name: Optional[str]


class ExtraItemChargingDict(TypedDict, total=False):
    """Overflow charging policy (fixed mode)."""
    method: Literal["flat_fee", "unit_price"]
    flat_fee: Optional[float]
    order: Literal["selection_order", "cheapest_first", "most_expensive_first"]


class BundleConfigurationDict(TypedDict, total=False):
    """Bundle offer as sent by the storefront."""
    product_id: Optional[int]
    title: str
    pricing_mode: Literal["sum", "fixed"]
    box_price: Optional[float]
    included_items_count: int
    extra_item_charging: ExtraItemChargingDict
    shipping_fee_option: str
    show_product_prices: bool
    items: List[BundleItemSpecDict]


class PricingBreakdownDict(TypedDict, total=False):
    """Priced bundle."""
    required_items_total: float
    addon_items_total: float
    box_price: float
    grand_total: float
    covered_items_count: int
    extra_items_count: int
    free_items: List[int]


class StoredBundleItemDict(TypedDict, total=False):
    """Snapshot of one bundle item inside a cache entry."""
    product_id: int
    name: str
    price: Union[float, str]
    quantity: int
    is_addon: bool
    is_free: bool


class StoredBundleDataDict(TypedDict, total=False):
    """Cache entry for one cart line."""
    bundle_items: List[StoredBundleItemDict]
    bundle_total: float
    box_price: float
    products_total: float
    required_items_total: float
    addon_items_total: float
    pricing_mode: Literal["sum", "fixed"]
    fixed_price: float
    quantity: int
    timestamp: int          # epoch milliseconds


class CartLineDict(TypedDict, total=False):
    """Authoritative cart line from the commerce backend."""
    product_id: int
    quantity: int
    charged_total: Union[float, str]
    name: Optional[str]
    item_key: Optional[str]
    cart_item_data: Dict[str, Any]


class RenderableLineDict(TypedDict, total=False):
    """Cart line ready for display."""
    product_id: int
    name: Optional[str]
    item_key: Optional[str]
    quantity: int
    charged_total: float
    state: Literal["reconciled", "stale", "uncached", "embedded"]
    is_bundle: bool
    pricing_mode: Optional[str]
    box_price: Optional[float]
    required_items_total: Optional[float]
    addon_items_total: Optional[float]
    bundle_items: List[StoredBundleItemDict]
    free_items: List[StoredBundleItemDict]
    addon_items: List[StoredBundleItemDict]


# =============================================================================
# DATACLASS DEFINITIONS (for type safety in code)
# =============================================================================

def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


@dataclass
class BundleItemSpec:
    """One selected product in a bundle, in selection order."""
    product_id: int
    role: str = "required"  # "required" | "addon"
    is_free: bool = False
    quantity: int = 1
    unit_price: Optional[Decimal] = None
    name: Optional[str] = None

    @property
    def is_addon(self) -> bool:
        return self.role == "addon"

    def to_dict(self) -> BundleItemSpecDict:
        return {
            "product_id": self.product_id,
            "role": self.role,
            "is_free": self.is_free,
            "quantity": self.quantity,
            "unit_price": _money(self.unit_price),
            "name": self.name,
        }

    def to_stored(self) -> "StoredBundleItem":
        return StoredBundleItem(
            product_id=self.product_id,
            name=self.name,
            price=_money(self.unit_price),
            quantity=self.quantity,
            is_addon=self.is_addon,
            is_free=self.is_free,
        )


@dataclass
class ExtraItemCharging:
    """How units beyond included_items_count are charged."""
    method: str = "flat_fee"  # "flat_fee" | "unit_price"
    flat_fee: Optional[Decimal] = Decimal("0")
    order: str = "selection_order"

    def to_dict(self) -> ExtraItemChargingDict:
        return {
            "method": self.method,
            "flat_fee": _money(self.flat_fee),
            "order": self.order,
        }


@dataclass
class BundleConfiguration:
    """A bundle offer plus the customer's selection."""
    pricing_mode: str
    items: List[BundleItemSpec] = field(default_factory=list)
    box_price: Optional[Decimal] = None
    included_items_count: int = 0
    extra_item_charging: ExtraItemCharging = field(default_factory=ExtraItemCharging)
    shipping_fee_option: str = "apply_to_each_bundled_product"
    show_product_prices: bool = True
    product_id: Optional[int] = None
    title: str = ""

    def to_dict(self) -> BundleConfigurationDict:
        return {
            "product_id": self.product_id,
            "title": self.title,
            "pricing_mode": self.pricing_mode,
            "box_price": _money(self.box_price),
            "included_items_count": self.included_items_count,
            "extra_item_charging": self.extra_item_charging.to_dict(),
            "shipping_fee_option": self.shipping_fee_option,
            "show_product_prices": self.show_product_prices,
            "items": [item.to_dict() for item in self.items],
        }


@dataclass
class PricingBreakdown:
    """Result of PricingEngine.compute_total."""
    required_items_total: Decimal
    addon_items_total: Decimal
    box_price: Decimal
    grand_total: Decimal
    covered_items_count: int = 0
    extra_items_count: int = 0
    free_items: List[int] = field(default_factory=list)

    def to_dict(self) -> PricingBreakdownDict:
        return {
            "required_items_total": float(self.required_items_total),
            "addon_items_total": float(self.addon_items_total),
            "box_price": float(self.box_price),
            "grand_total": float(self.grand_total),
            "covered_items_count": self.covered_items_count,
            "extra_items_count": self.extra_items_count,
            "free_items": list(self.free_items),
        }


@dataclass
class StoredBundleItem:
    """Bundle item as kept in the cache (all fields but product_id optional)."""
    product_id: int
    name: Optional[str] = None
    price: Optional[Union[float, str]] = None
    quantity: Optional[int] = None
    is_addon: Optional[bool] = None
    is_free: Optional[bool] = None

    @property
    def effective_quantity(self) -> int:
        # Missing quantity means one unit
        return self.quantity if self.quantity else 1

    def price_value(self) -> float:
        if self.price is None:
            return 0.0
        if isinstance(self.price, str):
            try:
                value = float(self.price)
            except ValueError:
                return 0.0
            return value if math.isfinite(value) else 0.0
        return float(self.price)

    def to_dict(self) -> StoredBundleItemDict:
        out: StoredBundleItemDict = {"product_id": self.product_id}
        if self.name is not None:
            out["name"] = self.name
        if self.price is not None:
            out["price"] = self.price
        if self.quantity is not None:
            out["quantity"] = self.quantity
        if self.is_addon is not None:
            out["is_addon"] = self.is_addon
        if self.is_free is not None:
            out["is_free"] = self.is_free
        return out


@dataclass
class StoredBundleData:
    """Cache entry for a bundle cart line."""
    bundle_items: List[StoredBundleItem]
    bundle_total: float
    pricing_mode: str = "sum"
    box_price: Optional[float] = None
    products_total: Optional[float] = None
    required_items_total: Optional[float] = None
    addon_items_total: Optional[float] = None
    fixed_price: Optional[float] = None
    quantity: Optional[int] = None
    timestamp: int = 0

    def implied_quantity(self) -> int:
        """Explicit stored line quantity, else the sum of item quantities."""
        if self.quantity is not None:
            return self.quantity
        return sum(item.effective_quantity for item in self.bundle_items)

    def to_dict(self) -> StoredBundleDataDict:
        out: StoredBundleDataDict = {
            "bundle_items": [item.to_dict() for item in self.bundle_items],
            "bundle_total": self.bundle_total,
            "pricing_mode": self.pricing_mode,
            "timestamp": self.timestamp,
        }
        optional = {
            "box_price": self.box_price,
            "products_total": self.products_total,
            "required_items_total": self.required_items_total,
            "addon_items_total": self.addon_items_total,
            "fixed_price": self.fixed_price,
            "quantity": self.quantity,
        }
        for key, value in optional.items():
            if value is not None:
                out[key] = value
        return out


@dataclass
class CartLine:
    """Authoritative cart line (read-only)."""
    product_id: int
    quantity: int
    charged_total: Decimal
    name: Optional[str] = None
    item_key: Optional[str] = None
    cart_item_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RenderableLine:
    """Cart line as handed to the view layer."""
    product_id: int
    quantity: int
    charged_total: Decimal
    state: str
    name: Optional[str] = None
    item_key: Optional[str] = None
    is_bundle: bool = False
    pricing_mode: Optional[str] = None
    box_price: Optional[float] = None
    required_items_total: Optional[float] = None
    addon_items_total: Optional[float] = None
    bundle_items: List[StoredBundleItem] = field(default_factory=list)

    @property
    def enriched(self) -> bool:
        return bool(self.bundle_items)

    @property
    def free_items(self) -> List[StoredBundleItem]:
        return [item for item in self.bundle_items if item.is_free]

    @property
    def addon_items(self) -> List[StoredBundleItem]:
        return [item for item in self.bundle_items if item.is_addon]

    def to_dict(self) -> RenderableLineDict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "item_key": self.item_key,
            "quantity": self.quantity,
            "charged_total": float(self.charged_total),
            "state": self.state,
            "is_bundle": self.is_bundle,
            "pricing_mode": self.pricing_mode,
            "box_price": self.box_price,
            "required_items_total": self.required_items_total,
            "addon_items_total": self.addon_items_total,
            "bundle_items": [item.to_dict() for item in self.bundle_items],
            "free_items": [item.to_dict() for item in self.free_items],
            "addon_items": [item.to_dict() for item in self.addon_items],
        }


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a money-ish value (number or numeric string). None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        value = str(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None
    return None


def to_int(value: Any) -> Optional[int]:
    """Parse an integer id/quantity. Accepts whole floats and digit strings."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            parsed = to_decimal(text)
            # "1e9999999" would otherwise build a ten-million-digit int
            if parsed is not None and parsed.adjusted() <= 18 and parsed == parsed.to_integral_value():
                return int(parsed)
    return None


def to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if value in (1, "1", "yes", "true", "True"):
        return True
    if value in (0, "0", "no", "false", "False", ""):
        return False
    return None


def pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key wins (lets loaders accept snake_case and camelCase)."""
    for key in keys:
        if key in data:
            return data[key]
    return default


def _finite(value: Any) -> bool:
    # json.loads accepts NaN and Infinity
    return not isinstance(value, float) or math.isfinite(value)


def normalize_stored_bundle_item(raw: Any) -> Optional[StoredBundleItem]:
    """
    Coerce a cached or backend-embedded bundle item.
    Items without an integer product_id are unusable and return None.
    """
    if not isinstance(raw, Mapping):
        return None
    product_id = raw.get("product_id")
    if isinstance(product_id, bool) or not isinstance(product_id, int):
        return None

    price = raw.get("price")
    if isinstance(price, bool) or not isinstance(price, (int, float, str)) or not _finite(price):
        price = None
    quantity = raw.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)) or not _finite(quantity):
        quantity = None
    is_addon = raw.get("is_addon")
    is_free = raw.get("is_free")
    name = raw.get("name")

    return StoredBundleItem(
        product_id=product_id,
        name=name if isinstance(name, str) else None,
        price=price,
        quantity=int(quantity) if quantity is not None else None,
        is_addon=is_addon if isinstance(is_addon, bool) else None,
        is_free=is_free if isinstance(is_free, bool) else None,
    )


def _optional_float(value: Any) -> Optional[float]:
    parsed = to_decimal(value)
    return float(parsed) if parsed is not None else None


def normalize_stored_bundle_data(raw: Any) -> Optional[StoredBundleData]:
    """
    Load one cache entry. Returns None when the entry is not a usable
    StoredBundleData (missing timestamp, bundle_items not a list, ...).
    """
    if not isinstance(raw, Mapping):
        return None

    timestamp = raw.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) or not _finite(timestamp):
        return None

    items_raw = raw.get("bundle_items")
    if not isinstance(items_raw, list):
        return None
    items = [item for item in (normalize_stored_bundle_item(i) for i in items_raw) if item is not None]

    pricing_mode = raw.get("pricing_mode")
    if pricing_mode not in PRICING_MODES:
        pricing_mode = "sum"

    quantity = raw.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        quantity = None

    return StoredBundleData(
        bundle_items=items,
        bundle_total=_optional_float(raw.get("bundle_total")) or 0.0,
        pricing_mode=pricing_mode,
        box_price=_optional_float(raw.get("box_price")),
        products_total=_optional_float(raw.get("products_total")),
        required_items_total=_optional_float(raw.get("required_items_total")),
        addon_items_total=_optional_float(raw.get("addon_items_total")),
        fixed_price=_optional_float(raw.get("fixed_price")),
        quantity=quantity,
        timestamp=int(timestamp),
    )


def normalize_cart_line(raw: Any) -> CartLine:
    """
    Load an authoritative cart line. Raises ValueError when the line cannot be
    joined (no product id) or has no usable quantity/total.
    """
    if isinstance(raw, CartLine):
        return raw
    if not isinstance(raw, Mapping):
        raise ValueError(f"Cart line must be an object, got {type(raw).__name__}")

    product_id = to_int(pick(raw, "product_id", "productId", "id"))
    if product_id is None:
        raise ValueError("Cart line is missing an integer product_id")

    quantity_raw = pick(raw, "quantity", "qty")
    if isinstance(quantity_raw, Mapping):
        # CoCart reports {"value": n, "min_purchase": ...}
        quantity_raw = quantity_raw.get("value")
    quantity = to_int(quantity_raw)
    if quantity is None:
        raise ValueError(f"Cart line {product_id} has no usable quantity")

    total_raw = pick(raw, "charged_total", "chargedTotal", "totals", "total", "line_total")
    if isinstance(total_raw, Mapping):
        # CoCart reports {"subtotal": ..., "total": ...}
        total_raw = total_raw.get("total")
    charged_total = to_decimal(total_raw)
    if charged_total is None:
        raise ValueError(f"Cart line {product_id} has no usable charged_total")

    cart_item_data = pick(raw, "cart_item_data", "cartItemData", default={}) or {}
    if not isinstance(cart_item_data, Mapping):
        cart_item_data = {}

    name = raw.get("name")
    item_key = pick(raw, "item_key", "itemKey", "key")
    return CartLine(
        product_id=product_id,
        quantity=quantity,
        charged_total=charged_total,
        name=name if isinstance(name, str) else None,
        item_key=str(item_key) if item_key is not None else None,
        cart_item_data=dict(cart_item_data),
    )


def dump_store_map(entries: Mapping[str, StoredBundleData]) -> str:
    """Serialize the whole keyed map for the persisted store."""
    return json.dumps({key: entry.to_dict() for key, entry in entries.items()}, ensure_ascii=False)
