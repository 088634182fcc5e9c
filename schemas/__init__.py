"""
Bundle Cart Schemas Package
Provides standardized data structures for bundle offers, pricing and cart lines.
"""

from .bundle_schemas import (
    # Offer schemas
    BundleItemSpec,
    BundleItemSpecDict,
    ExtraItemCharging,
    ExtraItemChargingDict,
    BundleConfiguration,
    BundleConfigurationDict,

    # Pricing schemas
    PricingBreakdown,
    PricingBreakdownDict,

    # Cache schemas
    StoredBundleItem,
    StoredBundleItemDict,
    StoredBundleData,
    StoredBundleDataDict,

    # Cart schemas
    CartLine,
    CartLineDict,
    RenderableLine,
    RenderableLineDict,

    # Constants
    PRICING_MODES,
    ITEM_ROLES,
    MAX_ITEM_QUANTITY,
    CHARGING_METHODS,
    EXTRAS_ORDERS,
    SHIPPING_FEE_OPTIONS,
    LINE_STATES,

    # Helper functions
    normalize_stored_bundle_item,
    normalize_stored_bundle_data,
    normalize_cart_line,
    dump_store_map,
)
