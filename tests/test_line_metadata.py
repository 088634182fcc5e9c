import json
import sys
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas.bundle_schemas import CartLine, StoredBundleData, StoredBundleItem
from services.line_metadata import (
    bundle_items_total,
    cart_line_box_price,
    describe_order_line,
    is_order_bundle_product,
    is_order_free_gift,
    order_box_price,
    order_bundle_items,
    order_pricing_mode,
    parse_bundle_items,
)

ITEMS = [
    {"product_id": 11, "name": "Rose", "price": "12.50", "quantity": 2},
    {"product_id": 12, "price": 5, "is_addon": True},
]


def _order_line(meta, total="40.00", name="Birthday Box"):
    return {
        "id": 9001,
        "name": name,
        "total": total,
        "meta_data": [{"key": key, "value": value} for key, value in meta.items()],
    }


def test_parse_bundle_items_accepts_list_or_json():
    assert [i.product_id for i in parse_bundle_items(ITEMS)] == [11, 12]
    assert [i.product_id for i in parse_bundle_items(json.dumps(ITEMS))] == [11, 12]


def test_parse_bundle_items_rejects_unusable_input():
    assert parse_bundle_items(None) is None
    assert parse_bundle_items("[") is None
    assert parse_bundle_items([]) is None
    assert parse_bundle_items([{"name": "no id"}]) is None


def test_bundle_items_total_uses_effective_quantity():
    items = parse_bundle_items(ITEMS)
    assert bundle_items_total(items) == 30.0


def test_cart_line_box_price_prefers_line_data():
    line = CartLine(product_id=1, quantity=1, charged_total=Decimal("10"), cart_item_data={"box_price": "8"})
    stored = StoredBundleData(bundle_items=[], bundle_total=10.0, box_price=6.0)
    assert cart_line_box_price(line, stored) == 8.0

    line.cart_item_data = {"box_price": "0"}
    assert cart_line_box_price(line, stored) == 6.0
    assert cart_line_box_price(line) is None


def test_order_meta_keys_with_or_without_underscore():
    hidden = _order_line({"_bundle_items": json.dumps(ITEMS), "_pricing_mode": "fixed"})
    visible = _order_line({"bundle_items": ITEMS})

    assert [i.product_id for i in order_bundle_items(hidden)] == [11, 12]
    assert [i.product_id for i in order_bundle_items(visible)] == [11, 12]
    assert order_pricing_mode(hidden) == "fixed"
    assert order_pricing_mode(visible) == "sum"


def test_order_box_price_from_meta_or_derived():
    assert order_box_price(_order_line({"_box_price": "15"})) == 15.0
    # 40 charged for 30 worth of items
    assert order_box_price(_order_line({}), items_total=30.0) == 10.0
    assert order_box_price(_order_line({}, total="30"), items_total=30.0) is None
    assert order_box_price(_order_line({})) is None


def test_free_gift_detection():
    assert is_order_free_gift(_order_line({"_asl_free_gift": "yes"}))
    assert is_order_free_gift(_order_line({"is_free_gift": 1}))
    assert not is_order_free_gift(_order_line({"asl_free_gift": "no"}, total="0"))
    assert is_order_free_gift(_order_line({}, total="0", name="Free Gift Card"))
    assert not is_order_free_gift(_order_line({}, total="0", name="Sample"))
    assert not is_order_free_gift(_order_line({}, total="5", name="Gift wrap"))


def test_describe_order_line():
    line = _order_line({"_bundle_items": json.dumps(ITEMS), "_bundle_total": "40"})
    summary = describe_order_line(line)

    assert is_order_bundle_product(line)
    assert summary["items_total"] == 30.0
    assert summary["box_price"] == 10.0
    assert summary["bundle_total"] == 40.0
    assert summary["bundle_items"][0] == {"product_id": 11, "name": "Rose", "price": "12.50", "quantity": 2}

    plain = _order_line({})
    assert describe_order_line(plain) is None
    assert not is_order_bundle_product(plain)


def test_stored_item_price_value_tolerates_bad_strings():
    assert StoredBundleItem(product_id=1, price="n/a").price_value() == 0.0
