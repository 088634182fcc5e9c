import sys
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas.bundle_schemas import BundleConfiguration, BundleItemSpec, ExtraItemCharging
from services.errors import ConfigValidationError
from services.pricing import (
    PricingEngine,
    build_add_to_cart_payload,
    build_stored_bundle_data,
    compute_total,
)


def _fixed(items, box="100", included=3, charging=None):
    return BundleConfiguration(
        pricing_mode="fixed",
        items=items,
        box_price=Decimal(box),
        included_items_count=included,
        extra_item_charging=charging or ExtraItemCharging(method="flat_fee", flat_fee=Decimal("10")),
    )


def _units(count, price="5"):
    return [BundleItemSpec(product_id=100 + i, unit_price=Decimal(price)) for i in range(count)]


class TestSumMode:
    def test_worked_example(self):
        config = BundleConfiguration(
            pricing_mode="sum",
            items=[
                BundleItemSpec(product_id=1, unit_price=Decimal("20"), quantity=2),
                BundleItemSpec(product_id=2, unit_price=Decimal("15"), quantity=1, role="addon"),
            ],
        )
        result = compute_total(config)

        assert result.required_items_total == Decimal("40")
        assert result.addon_items_total == Decimal("15")
        assert result.grand_total == Decimal("55")
        assert result.box_price == Decimal("0")

    def test_grand_total_is_sum_of_partitions(self):
        config = BundleConfiguration(
            pricing_mode="sum",
            items=[
                BundleItemSpec(product_id=1, unit_price=Decimal("9.99"), quantity=3),
                BundleItemSpec(product_id=2, unit_price=Decimal("0.50"), quantity=4, role="addon"),
                BundleItemSpec(product_id=3, unit_price=Decimal("7.25"), role="addon"),
            ],
        )
        result = compute_total(config)

        assert result.required_items_total == Decimal("29.97")
        assert result.addon_items_total == Decimal("9.25")
        assert result.grand_total == result.required_items_total + result.addon_items_total

    def test_free_items_listed_but_not_charged(self):
        config = BundleConfiguration(
            pricing_mode="sum",
            items=[
                BundleItemSpec(product_id=1, unit_price=Decimal("20")),
                BundleItemSpec(product_id=2, unit_price=Decimal("99"), is_free=True),
                BundleItemSpec(product_id=3, is_free=True, role="addon"),
            ],
        )
        result = compute_total(config)

        assert result.grand_total == Decimal("20")
        assert result.free_items == [2, 3]

    def test_zero_quantity_items_are_excluded(self):
        config = BundleConfiguration(
            pricing_mode="sum",
            items=[
                BundleItemSpec(product_id=1, unit_price=Decimal("20")),
                BundleItemSpec(product_id=2, unit_price=Decimal("50"), quantity=0),
                BundleItemSpec(product_id=3, is_free=True, quantity=0),
            ],
        )
        result = compute_total(config)

        assert result.grand_total == Decimal("20")
        assert result.free_items == []


class TestFixedMode:
    def test_worked_example_flat_fee(self):
        result = compute_total(_fixed(_units(4)))

        assert result.box_price == Decimal("100")
        assert result.grand_total == Decimal("110")
        assert result.covered_items_count == 3
        assert result.extra_items_count == 1

    def test_within_included_count_equals_box_price(self):
        result = compute_total(_fixed(_units(3)))
        assert result.grand_total == result.box_price
        assert result.extra_items_count == 0

    def test_included_count_larger_than_selection(self):
        result = compute_total(_fixed(_units(2), included=10))
        assert result.grand_total == Decimal("100")
        assert result.covered_items_count == 2

    def test_quantities_expand_into_units(self):
        items = [BundleItemSpec(product_id=1, unit_price=Decimal("5"), quantity=5)]
        result = compute_total(_fixed(items))
        assert result.extra_items_count == 2
        assert result.grand_total == Decimal("120")

    def test_free_items_do_not_count_toward_overflow(self):
        items = _units(3) + [BundleItemSpec(product_id=9, unit_price=Decimal("40"), is_free=True, quantity=2)]
        result = compute_total(_fixed(items))

        assert result.grand_total == Decimal("100")
        assert result.free_items == [9]

    def test_unit_price_charging_uses_each_extra_items_price(self):
        items = [
            BundleItemSpec(product_id=1, unit_price=Decimal("30")),
            BundleItemSpec(product_id=2, unit_price=Decimal("20")),
            BundleItemSpec(product_id=3, unit_price=Decimal("12")),
            BundleItemSpec(product_id=4, unit_price=Decimal("8"), role="addon"),
        ]
        config = _fixed(items, included=2, charging=ExtraItemCharging(method="unit_price", flat_fee=None))
        result = compute_total(config)

        # selection order: items 3 and 4 are the extras
        assert result.required_items_total == Decimal("12")
        assert result.addon_items_total == Decimal("8")
        assert result.grand_total == Decimal("120")

    def test_cheapest_first_makes_cheapest_units_the_extras(self):
        items = [
            BundleItemSpec(product_id=1, unit_price=Decimal("5")),
            BundleItemSpec(product_id=2, unit_price=Decimal("30")),
            BundleItemSpec(product_id=3, unit_price=Decimal("20")),
        ]
        charging = ExtraItemCharging(method="unit_price", flat_fee=None, order="cheapest_first")
        result = compute_total(_fixed(items, included=2, charging=charging))
        assert result.grand_total == Decimal("105")

    def test_most_expensive_first(self):
        items = [
            BundleItemSpec(product_id=1, unit_price=Decimal("5")),
            BundleItemSpec(product_id=2, unit_price=Decimal("30")),
            BundleItemSpec(product_id=3, unit_price=Decimal("20")),
        ]
        charging = ExtraItemCharging(method="unit_price", flat_fee=None, order="most_expensive_first")
        result = compute_total(_fixed(items, included=2, charging=charging))
        assert result.grand_total == Decimal("130")

    def test_grand_total_never_below_box_price(self):
        for count in range(0, 8):
            items = _units(count) or [BundleItemSpec(product_id=1, unit_price=Decimal("5"), quantity=0)]
            result = compute_total(_fixed(items))
            assert result.grand_total >= result.box_price
            assert (result.grand_total == result.box_price) == (count <= 3)

    def test_negative_unit_price_extras_clamped(self):
        items = _units(3) + [BundleItemSpec(product_id=50, unit_price=Decimal("-40"))]
        config = _fixed(items, charging=ExtraItemCharging(method="unit_price", flat_fee=None))
        result = compute_total(config)
        assert result.required_items_total == Decimal("0")
        assert result.grand_total == Decimal("100")


class TestFailures:
    def test_invalid_configuration_raises_before_computing(self):
        engine = PricingEngine()
        config = BundleConfiguration(pricing_mode="fixed", items=_units(2), box_price=None)
        with pytest.raises(ConfigValidationError) as exc:
            engine.compute_total(config)
        assert exc.value.field == "box_price"

    def test_items_override_is_validated(self):
        config = BundleConfiguration(pricing_mode="sum", items=_units(1))
        with pytest.raises(ConfigValidationError) as exc:
            compute_total(config, items=[])
        assert exc.value.field == "items"

    def test_items_override_replaces_selection(self):
        config = BundleConfiguration(pricing_mode="sum", items=_units(1))
        result = compute_total(config, items=_units(3, price="2"))
        assert result.grand_total == Decimal("6")


class TestAddToCartPayload:
    def test_payload_and_cache_snapshot(self):
        config = _fixed(_units(4))
        config.product_id = 777
        config.items.append(BundleItemSpec(product_id=900, is_free=True, name="Card"))
        breakdown = compute_total(config)

        payload, stored = build_add_to_cart_payload(config, breakdown, quantity=1)

        assert payload["id"] == "777"
        assert payload["quantity"] == "1"
        assert payload["item_data"]["bundle_total"] == 110.0
        assert payload["item_data"]["pricing_mode"] == "fixed"
        assert "timestamp" not in payload["item_data"]
        assert stored.quantity == 1
        assert stored.box_price == 100.0
        assert stored.products_total == 20.0
        assert [item.product_id for item in stored.bundle_items] == [100, 101, 102, 103, 900]
        assert stored.bundle_items[-1].is_free is True

    def test_sum_snapshot_has_no_box_price(self):
        config = BundleConfiguration(pricing_mode="sum", items=_units(2))
        stored = build_stored_bundle_data(config, compute_total(config))
        assert stored.box_price is None
        assert stored.bundle_total == 10.0
        assert "box_price" not in stored.to_dict()

    def test_payload_requires_product_id(self):
        config = BundleConfiguration(pricing_mode="sum", items=_units(1))
        with pytest.raises(ValueError):
            build_add_to_cart_payload(config, compute_total(config))


class TestLargeQuantities:
    def test_fixed_mode_cost_does_not_grow_with_quantity(self):
        items = [
            BundleItemSpec(product_id=1, unit_price=Decimal("5"), quantity=3_000_000),
            BundleItemSpec(product_id=2, unit_price=Decimal("2"), quantity=10**12, role="addon"),
        ]
        charging = ExtraItemCharging(method="unit_price", flat_fee=None)
        result = compute_total(_fixed(items, included=3, charging=charging))

        assert result.covered_items_count == 3
        assert result.extra_items_count == 3_000_000 - 3 + 10**12
        assert result.required_items_total == Decimal("14999985")
        assert result.addon_items_total == Decimal("2") * 10**12

    def test_runs_split_across_included_boundary(self):
        items = [
            BundleItemSpec(product_id=1, unit_price=Decimal("30"), quantity=2),
            BundleItemSpec(product_id=2, unit_price=Decimal("5"), quantity=2),
        ]
        charging = ExtraItemCharging(method="unit_price", flat_fee=None, order="cheapest_first")
        result = compute_total(_fixed(items, included=3, charging=charging))

        assert result.covered_items_count == 3
        assert result.extra_items_count == 1
        assert result.grand_total == Decimal("105")
