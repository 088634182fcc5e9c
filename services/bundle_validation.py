"""
Bundle Configuration Model
Loads untyped bundle offers into BundleConfiguration and validates them
"""
from typing import Any, Dict, List, Mapping, Optional
import logging
from decimal import Decimal

from schemas.bundle_schemas import (
    BundleConfiguration,
    BundleItemSpec,
    ExtraItemCharging,
    PRICING_MODES,
    ITEM_ROLES,
    MAX_ITEM_QUANTITY,
    CHARGING_METHODS,
    EXTRAS_ORDERS,
    SHIPPING_FEE_OPTIONS,
    pick,
    to_bool,
    to_decimal,
    to_int,
)
from services.errors import ConfigValidationError

logger = logging.getLogger(__name__)


class BundleConfigurationModel:
    """
    Validation rules, checked in order (first failure wins):
      1. pricing_mode is "sum" or "fixed"
      2. fixed mode: box_price present and >= 0
      3. included_items_count >= 0
      4. sum mode: every non-free item has unit_price >= 0
      5. items is not empty
      6. overflow charging policy is recognised (flat fee present and >= 0)
    """

    def validate(self, config: BundleConfiguration) -> BundleConfiguration:
        """Return the configuration unchanged or raise ConfigValidationError."""
        if config.pricing_mode not in PRICING_MODES:
            raise ConfigValidationError(
                f"Unknown pricing mode: {config.pricing_mode!r}", field="pricing_mode"
            )

        if config.pricing_mode == "fixed":
            if config.box_price is None:
                raise ConfigValidationError("Fixed pricing requires a box price", field="box_price")
            if config.box_price < 0:
                raise ConfigValidationError("Box price must not be negative", field="box_price")

        if config.included_items_count < 0:
            raise ConfigValidationError(
                "Included items count must not be negative", field="included_items_count"
            )

        if config.pricing_mode == "sum":
            for index, item in enumerate(config.items):
                if item.is_free:
                    continue
                if item.unit_price is None or item.unit_price < 0:
                    raise ConfigValidationError(
                        f"Item {item.product_id} needs a non-negative unit price",
                        field=f"items[{index}].unit_price",
                    )

        if not config.items:
            raise ConfigValidationError("Bundle has no items", field="items")

        charging = config.extra_item_charging
        if charging.method not in CHARGING_METHODS:
            raise ConfigValidationError(
                f"Unknown extra item charging method: {charging.method!r}",
                field="extra_item_charging.method",
            )
        if charging.order not in EXTRAS_ORDERS:
            raise ConfigValidationError(
                f"Unknown extra item order: {charging.order!r}",
                field="extra_item_charging.order",
            )
        if charging.method == "flat_fee" and (charging.flat_fee is None or charging.flat_fee < 0):
            raise ConfigValidationError(
                "Flat extra item fee must be present and non-negative",
                field="extra_item_charging.flat_fee",
            )

        return config

    def is_valid(self, config: BundleConfiguration) -> bool:
        try:
            self.validate(config)
            return True
        except ConfigValidationError:
            return False


bundle_configuration_model = BundleConfigurationModel()


def validate(config: BundleConfiguration) -> BundleConfiguration:
    return bundle_configuration_model.validate(config)


# =============================================================================
# BOUNDARY LOADER
# =============================================================================

def _money_field(data: Mapping[str, Any], field_name: str, *keys: str) -> Optional[Decimal]:
    raw = pick(data, *keys)
    if raw is None or raw == "":
        return None
    value = to_decimal(raw)
    if value is None:
        raise ConfigValidationError(f"{field_name} is not a number: {raw!r}", field=field_name)
    return value


def _load_item(raw: Any, index: int) -> BundleItemSpec:
    if not isinstance(raw, Mapping):
        raise ConfigValidationError("Bundle item must be an object", field=f"items[{index}]")

    product_id = to_int(pick(raw, "product_id", "productId", "id"))
    if product_id is None:
        raise ConfigValidationError("Bundle item needs a product id", field=f"items[{index}].product_id")

    role = pick(raw, "role")
    if role is None:
        role = "addon" if to_bool(pick(raw, "is_addon", "isAddon")) else "required"
    if role not in ITEM_ROLES:
        raise ConfigValidationError(f"Unknown item role: {role!r}", field=f"items[{index}].role")

    quantity_raw = pick(raw, "quantity", default=1)
    quantity = to_int(quantity_raw)
    if quantity is None:
        raise ConfigValidationError(
            f"Quantity is not an integer: {quantity_raw!r}", field=f"items[{index}].quantity"
        )
    if quantity > MAX_ITEM_QUANTITY:
        raise ConfigValidationError(
            f"Quantity {quantity} exceeds the limit of {MAX_ITEM_QUANTITY}", field=f"items[{index}].quantity"
        )

    name = pick(raw, "name", "title")
    return BundleItemSpec(
        product_id=product_id,
        role=role,
        is_free=bool(to_bool(pick(raw, "is_free", "isFree", default=False))),
        quantity=quantity,
        unit_price=_money_field(raw, f"items[{index}].unit_price", "unit_price", "unitPrice", "price"),
        name=name if isinstance(name, str) else None,
    )


def _load_charging(raw: Any) -> ExtraItemCharging:
    # Accept a bare method string ("unit_price") as well as the full object
    if isinstance(raw, str):
        return ExtraItemCharging(method=raw, flat_fee=Decimal("0") if raw == "flat_fee" else None)
    if raw is None:
        return ExtraItemCharging()
    if not isinstance(raw, Mapping):
        raise ConfigValidationError("Extra item charging must be an object", field="extra_item_charging")

    charging = ExtraItemCharging(
        method=pick(raw, "method", default="flat_fee"),
        order=pick(raw, "order", default="selection_order"),
    )
    fee = _money_field(raw, "extra_item_charging.flat_fee", "flat_fee", "flatFee", "fee")
    charging.flat_fee = fee if fee is not None else (Decimal("0") if charging.method == "flat_fee" else None)
    return charging


def load_configuration(raw: Any) -> BundleConfiguration:
    """
    Coerce an untyped bundle offer (snake_case or camelCase) into a
    BundleConfiguration. Does not validate business rules; call validate().
    """
    if isinstance(raw, BundleConfiguration):
        return raw
    if not isinstance(raw, Mapping):
        raise ConfigValidationError("Bundle configuration must be an object")

    items_raw = pick(raw, "items", default=[]) or []
    if not isinstance(items_raw, list):
        raise ConfigValidationError("Bundle items must be a list", field="items")
    items: List[BundleItemSpec] = [_load_item(item, index) for index, item in enumerate(items_raw)]

    included_raw = pick(raw, "included_items_count", "includedItemsCount", default=0)
    included = to_int(included_raw)
    if included is None:
        raise ConfigValidationError(
            f"Included items count is not an integer: {included_raw!r}", field="included_items_count"
        )

    shipping = pick(raw, "shipping_fee_option", "shippingFeeOption", "shipping_fee", "shippingFee")
    if shipping not in SHIPPING_FEE_OPTIONS:
        if shipping is not None:
            logger.warning(f"Unknown shipping fee option {shipping!r}, using default")
        shipping = SHIPPING_FEE_OPTIONS[0]

    pricing_mode = pick(raw, "pricing_mode", "pricingMode", default=None)
    charging_raw = pick(raw, "extra_item_charging", "extraItemCharging", "extraItemChargingMethod")
    if pricing_mode == "fixed" and charging_raw is None:
        logger.warning(
            f"Fixed bundle {pick(raw, 'product_id', 'productId')!r} has no extra item charging "
            f"policy; items beyond the included count are charged a flat fee of 0"
        )

    show_prices = to_bool(pick(raw, "show_product_prices", "showProductPrices", default=True))
    title = pick(raw, "title", default="")

    return BundleConfiguration(
        pricing_mode=pricing_mode,
        items=items,
        box_price=_money_field(raw, "box_price", "box_price", "boxPrice"),
        included_items_count=included,
        extra_item_charging=_load_charging(charging_raw),
        shipping_fee_option=shipping,
        show_product_prices=True if show_prices is None else show_prices,
        product_id=to_int(pick(raw, "product_id", "productId")),
        title=title if isinstance(title, str) else "",
    )


def load_and_validate(raw: Any) -> BundleConfiguration:
    return validate(load_configuration(raw))


def describe_configuration(config: BundleConfiguration) -> Dict[str, Any]:
    """Short summary used in log lines."""
    return {
        "product_id": config.product_id,
        "pricing_mode": config.pricing_mode,
        "items": len(config.items),
        "included_items_count": config.included_items_count,
        "charging": config.extra_item_charging.method,
    }
