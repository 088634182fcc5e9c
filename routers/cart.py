"""
Cart Router
Reconciles the authoritative cart with cached bundle detail and handles cache maintenance
"""
from fastapi import APIRouter, HTTPException, Header
from pydantic import BaseModel
from typing import Optional, List, Dict, Any
import logging

from services.bundle_storage import cache_for_session
from services.cart_reconciler import cart_reconciler
from services.line_metadata import describe_order_line, is_order_free_gift
from settings import resolve_session_id

logger = logging.getLogger(__name__)
router = APIRouter()


class CartViewRequest(BaseModel):
    lines: List[Dict[str, Any]]


class OrderLinesRequest(BaseModel):
    line_items: List[Dict[str, Any]]


@router.post("/cart/view")
async def view_cart(
    request: CartViewRequest,
    x_session_id: Optional[str] = Header(default=None),
):
    """Merge authoritative cart lines with the session's cached bundle detail"""
    cache = cache_for_session(resolve_session_id(x_session_id))
    try:
        report = cart_reconciler.reconcile_with_report(request.lines, cache)
    except ValueError as e:
        # Malformed authoritative line (no product id, quantity or total)
        raise HTTPException(status_code=422, detail=str(e))

    return {"success": True, **report.to_dict()}


@router.delete("/cart/lines/{product_id}")
async def remove_cart_line(
    product_id: int,
    x_session_id: Optional[str] = Header(default=None),
):
    """Cart-line-removed event: drop the cached bundle detail for the line"""
    session_id = resolve_session_id(x_session_id)
    cache_for_session(session_id).remove(product_id)
    logger.info(f"Evicted bundle cache entry product={product_id} session={session_id}")
    return {"success": True, "productId": product_id}


@router.delete("/cart/bundle-cache")
async def clear_bundle_cache(x_session_id: Optional[str] = Header(default=None)):
    """Drop every cached bundle for the session (cart emptied, logout)"""
    session_id = resolve_session_id(x_session_id)
    cache_for_session(session_id).clear()
    logger.info(f"Cleared bundle cache session={session_id}")
    return {"success": True}


@router.post("/orders/lines")
async def describe_order_lines(request: OrderLinesRequest):
    """Bundle detail and free-gift flags for placed order lines"""
    return {
        "success": True,
        "lines": [
            {
                "id": line.get("id"),
                "name": line.get("name"),
                "is_free_gift": is_order_free_gift(line),
                "bundle": describe_order_line(line),
            }
            for line in request.line_items
        ],
    }
