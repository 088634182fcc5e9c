"""
Bundle Pricing Router
Prices bundle configurations and prepares add-to-cart requests
"""
from fastapi import APIRouter, Header
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
import logging

from schemas.bundle_schemas import MAX_ITEM_QUANTITY
from services.bundle_storage import cache_for_session
from services.bundle_validation import describe_configuration, load_and_validate
from services.errors import ConfigValidationError
from services.obs.metrics import metrics_collector
from services.pricing import build_add_to_cart_payload, pricing_engine
from settings import resolve_session_id

logger = logging.getLogger(__name__)
router = APIRouter()


class PriceBundleRequest(BaseModel):
    configuration: Dict[str, Any]


class AddToCartRequest(BaseModel):
    configuration: Dict[str, Any]
    quantity: int = Field(default=1, ge=1, le=MAX_ITEM_QUANTITY)


@router.post("/bundles/price")
async def price_bundle(request: PriceBundleRequest):
    """Validate a bundle configuration and return its priced breakdown"""
    try:
        config = load_and_validate(request.configuration)
        breakdown = pricing_engine.compute_total(config)
    except ConfigValidationError as e:
        metrics_collector.record_pricing(False)
        logger.info(f"Rejected bundle configuration: {e.message} (field={e.field})")
        raise

    metrics_collector.record_pricing(True)
    return {
        "success": True,
        "configuration": config.to_dict(),
        "breakdown": breakdown.to_dict(),
    }


@router.post("/bundles/cart")
async def prepare_add_to_cart(
    request: AddToCartRequest,
    x_session_id: Optional[str] = Header(default=None),
):
    """
    Price a bundle, cache its composition for the session and return the
    request body the storefront sends to the commerce backend.
    """
    try:
        config = load_and_validate(request.configuration)
        if config.product_id is None:
            raise ConfigValidationError("Bundle configuration has no product_id", field="product_id")
        breakdown = pricing_engine.compute_total(config)
    except ConfigValidationError as e:
        metrics_collector.record_pricing(False)
        logger.info(f"Rejected add-to-cart configuration: {e.message} (field={e.field})")
        raise

    metrics_collector.record_pricing(True)
    payload, stored = build_add_to_cart_payload(config, breakdown, quantity=request.quantity)

    session_id = resolve_session_id(x_session_id)
    entry = cache_for_session(session_id).save(config.product_id, stored)
    logger.info(f"Cached bundle for add-to-cart session={session_id} {describe_configuration(config)}")

    return {
        "success": True,
        "request": payload,
        "configuration": config.to_dict(),
        "breakdown": breakdown.to_dict(),
        "cached": entry.to_dict(),
    }
