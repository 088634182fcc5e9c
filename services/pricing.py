"""
Bundle Pricing Engine
Turns a validated bundle configuration plus the selected items into a priced breakdown
"""
from typing import List, Dict, Any, Optional, Sequence, Tuple
import logging
import dataclasses
from decimal import Decimal, ROUND_HALF_UP

from schemas.bundle_schemas import (
    BundleConfiguration,
    BundleItemSpec,
    PricingBreakdown,
    StoredBundleData,
)
from services.bundle_validation import bundle_configuration_model

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


def _round(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _clamp(value: Decimal) -> Decimal:
    # Malformed upstream prices never produce negative subtotals
    return value if value > ZERO else ZERO


class PricingEngine:
    """Pure pricing for "sum" and "fixed" bundles"""

    def __init__(self, model=None):
        self.model = model or bundle_configuration_model

    def compute_total(self, config: BundleConfiguration,
                      items: Optional[Sequence[BundleItemSpec]] = None) -> PricingBreakdown:
        """
        Price a bundle. ``items`` defaults to ``config.items``; when given it
        replaces the selection and is validated together with the config.
        Raises ConfigValidationError before computing anything.
        """
        if items is not None:
            config = dataclasses.replace(config, items=list(items))
        self.model.validate(config)

        active = [item for item in config.items if item.quantity > 0]
        free_items = [item.product_id for item in active if item.is_free]
        charged = [item for item in active if not item.is_free]

        if config.pricing_mode == "sum":
            required_total, addon_total = self._sum_partitions(charged)
            breakdown = PricingBreakdown(
                required_items_total=required_total,
                addon_items_total=addon_total,
                box_price=ZERO,
                grand_total=required_total + addon_total,
                covered_items_count=0,
                extra_items_count=0,
                free_items=free_items,
            )
        else:
            breakdown = self._fixed_breakdown(config, charged, free_items)

        logger.debug(
            f"Priced bundle product={config.product_id} mode={config.pricing_mode} "
            f"grand_total={breakdown.grand_total}"
        )
        return breakdown

    def _sum_partitions(self, charged: List[BundleItemSpec]) -> Tuple[Decimal, Decimal]:
        required_total = ZERO
        addon_total = ZERO
        for item in charged:
            line_total = (item.unit_price or ZERO) * item.quantity
            if item.is_addon:
                addon_total += line_total
            else:
                required_total += line_total
        return _round(_clamp(required_total)), _round(_clamp(addon_total))

    def _ordered_runs(self, config: BundleConfiguration,
                      charged: List[BundleItemSpec]) -> List[BundleItemSpec]:
        """Items in the order their units are counted; the tail holds the extras."""
        runs = list(charged)
        order = config.extra_item_charging.order
        if order == "cheapest_first":
            # cheapest units become the extras, so they go last
            runs.sort(key=lambda item: item.unit_price or ZERO, reverse=True)
        elif order == "most_expensive_first":
            runs.sort(key=lambda item: item.unit_price or ZERO)
        return runs

    def _extra_charge(self, config: BundleConfiguration, unit: BundleItemSpec) -> Decimal:
        charging = config.extra_item_charging
        if charging.method == "flat_fee":
            return charging.flat_fee or ZERO
        if unit.unit_price is None:
            logger.warning(f"Extra item {unit.product_id} has no unit price, charging 0")
            return ZERO
        return unit.unit_price

    def _fixed_breakdown(self, config: BundleConfiguration, charged: List[BundleItemSpec],
                         free_items: List[int]) -> PricingBreakdown:
        box_price = _round(_clamp(config.box_price or ZERO))
        uncovered = config.included_items_count
        covered_count = 0
        extra_count = 0

        required_total = ZERO
        addon_total = ZERO
        for item in self._ordered_runs(config, charged):
            covered = min(uncovered, item.quantity)
            uncovered -= covered
            covered_count += covered
            extras = item.quantity - covered
            if not extras:
                continue
            extra_count += extras
            charge = self._extra_charge(config, item) * extras
            if item.is_addon:
                addon_total += charge
            else:
                required_total += charge

        required_total = _round(_clamp(required_total))
        addon_total = _round(_clamp(addon_total))
        return PricingBreakdown(
            required_items_total=required_total,
            addon_items_total=addon_total,
            box_price=box_price,
            grand_total=box_price + required_total + addon_total,
            covered_items_count=covered_count,
            extra_items_count=extra_count,
            free_items=free_items,
        )


pricing_engine = PricingEngine()


def compute_total(config: BundleConfiguration,
                  items: Optional[Sequence[BundleItemSpec]] = None) -> PricingBreakdown:
    return pricing_engine.compute_total(config, items)


def build_stored_bundle_data(config: BundleConfiguration, breakdown: PricingBreakdown,
                             quantity: Optional[int] = None) -> StoredBundleData:
    """
    Snapshot of the priced bundle for the local cache. ``timestamp`` is left
    at 0; LocalMetadataCache.save stamps it.
    """
    products_total = ZERO
    for item in config.items:
        if item.quantity > 0 and not item.is_free:
            products_total += (item.unit_price or ZERO) * item.quantity

    return StoredBundleData(
        bundle_items=[item.to_stored() for item in config.items if item.quantity > 0],
        bundle_total=float(breakdown.grand_total),
        pricing_mode=config.pricing_mode,
        box_price=float(breakdown.box_price) if config.pricing_mode == "fixed" else None,
        products_total=float(_round(_clamp(products_total))),
        required_items_total=float(breakdown.required_items_total),
        addon_items_total=float(breakdown.addon_items_total),
        fixed_price=float(breakdown.box_price) if config.pricing_mode == "fixed" else None,
        quantity=quantity,
    )


def build_add_to_cart_payload(config: BundleConfiguration, breakdown: PricingBreakdown,
                              quantity: int = 1) -> Tuple[Dict[str, Any], StoredBundleData]:
    """
    Request body for the commerce backend's add-to-cart call, plus the cache
    snapshot for the same line.
    """
    if config.product_id is None:
        raise ValueError("Bundle configuration has no product_id to add to the cart")

    stored = build_stored_bundle_data(config, breakdown, quantity=quantity)
    item_data = stored.to_dict()
    item_data.pop("timestamp", None)
    item_data["shipping_fee_option"] = config.shipping_fee_option
    item_data["show_product_prices"] = config.show_product_prices

    payload = {
        "id": str(config.product_id),
        "quantity": str(quantity),
        "item_data": item_data,
        "breakdown": breakdown.to_dict(),
    }
    return payload, stored
