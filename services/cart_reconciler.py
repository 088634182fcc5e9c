"""
Cart Reconciler
Merges authoritative cart lines from the commerce backend with cached bundle
detail. The backend owns quantity and charged total; the cache only ever adds
display detail, and only when its quantity agrees with the cart line.
"""
from typing import Any, Dict, Iterable, List, Optional
import logging
from dataclasses import dataclass, field
from enum import Enum

from schemas.bundle_schemas import (
    CartLine,
    PRICING_MODES,
    RenderableLine,
    StoredBundleData,
    normalize_cart_line,
    to_decimal,
)
from services.errors import InvalidTransition, StaleReconciliation
from services.line_metadata import cart_line_box_price, cart_line_bundle_items
from services.obs.metrics import metrics_collector

logger = logging.getLogger(__name__)


# =============================================================================
# LIFECYCLE
# =============================================================================

class BundleLineState(str, Enum):
    DRAFT = "draft"
    ADDED = "added"
    RECONCILED = "reconciled"
    STALE = "stale"
    EVICTED = "evicted"


class BundleLineEvent(str, Enum):
    ADD = "add"            # validated, priced, sent to backend, cached
    MATCH = "match"        # cache quantity agrees with cart line
    MISMATCH = "mismatch"  # cache quantity differs from cart line
    EXPIRE = "expire"      # passive age eviction
    REMOVE = "remove"      # explicit cart-line-removed event
    CLEAR = "clear"        # whole store cleared


_EVICTING = {
    BundleLineEvent.EXPIRE: BundleLineState.EVICTED,
    BundleLineEvent.REMOVE: BundleLineState.EVICTED,
    BundleLineEvent.CLEAR: BundleLineState.EVICTED,
}

_LIVE = {
    BundleLineEvent.ADD: BundleLineState.ADDED,
    BundleLineEvent.MATCH: BundleLineState.RECONCILED,
    BundleLineEvent.MISMATCH: BundleLineState.STALE,
    **_EVICTING,
}

TRANSITIONS: Dict[BundleLineState, Dict[BundleLineEvent, BundleLineState]] = {
    BundleLineState.DRAFT: {BundleLineEvent.ADD: BundleLineState.ADDED},
    BundleLineState.ADDED: _LIVE,
    BundleLineState.RECONCILED: _LIVE,
    BundleLineState.STALE: _LIVE,
    BundleLineState.EVICTED: {BundleLineEvent.ADD: BundleLineState.ADDED},
}


def next_state(state: BundleLineState, event: BundleLineEvent) -> BundleLineState:
    """Apply one lifecycle event; raises InvalidTransition if not allowed."""
    state = BundleLineState(state)
    event = BundleLineEvent(event)
    try:
        return TRANSITIONS[state][event]
    except KeyError:
        raise InvalidTransition(f"Cannot apply {event.value!r} to a {state.value!r} bundle line") from None


# =============================================================================
# RECONCILER
# =============================================================================

@dataclass
class ReconciliationReport:
    """Everything one reconcile pass learned. Rebuilt from scratch on each call."""
    lines: List[RenderableLine] = field(default_factory=list)
    stale: List[StaleReconciliation] = field(default_factory=list)
    orphans: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lines": [line.to_dict() for line in self.lines],
            "stale": [
                {
                    "product_id": record.product_id,
                    "cached_quantity": record.cached_quantity,
                    "authoritative_quantity": record.authoritative_quantity,
                }
                for record in self.stale
            ],
            "orphans": list(self.orphans),
        }


def _optional_money(value: Any) -> Optional[float]:
    parsed = to_decimal(value)
    return float(parsed) if parsed is not None else None


class CartReconciler:
    """Read-only with respect to both the cart and the cache"""

    def minimal_line(self, line: CartLine, state: str) -> RenderableLine:
        return RenderableLine(
            product_id=line.product_id,
            quantity=line.quantity,
            charged_total=line.charged_total,
            state=state,
            name=line.name,
            item_key=line.item_key,
        )

    def _embedded_line(self, line: CartLine) -> Optional[RenderableLine]:
        items = cart_line_bundle_items(line)
        if not items:
            return None
        data = line.cart_item_data
        pricing_mode = data.get("pricing_mode")
        enriched = self.minimal_line(line, "embedded")
        enriched.is_bundle = True
        enriched.bundle_items = items
        enriched.pricing_mode = pricing_mode if pricing_mode in PRICING_MODES else None
        enriched.box_price = cart_line_box_price(line)
        enriched.required_items_total = _optional_money(data.get("required_items_total"))
        enriched.addon_items_total = _optional_money(data.get("addon_items_total"))
        return enriched

    def _enriched_line(self, line: CartLine, stored: StoredBundleData) -> RenderableLine:
        enriched = self.minimal_line(line, BundleLineState.RECONCILED.value)
        enriched.is_bundle = True
        enriched.bundle_items = list(stored.bundle_items)
        enriched.pricing_mode = stored.pricing_mode
        enriched.box_price = cart_line_box_price(line, stored)
        enriched.required_items_total = stored.required_items_total
        enriched.addon_items_total = stored.addon_items_total
        return enriched

    def reconcile_line(self, line: CartLine, cache, report: Optional[ReconciliationReport] = None) -> RenderableLine:
        embedded = self._embedded_line(line)
        if embedded is not None:
            return embedded

        stored = cache.get(line.product_id)
        if stored is None:
            return self.minimal_line(line, "uncached")

        cached_quantity = stored.implied_quantity()
        event = BundleLineEvent.MATCH if cached_quantity == line.quantity else BundleLineEvent.MISMATCH
        state = next_state(BundleLineState.ADDED, event)

        if state is BundleLineState.STALE:
            record = StaleReconciliation(
                product_id=line.product_id,
                cached_quantity=cached_quantity,
                authoritative_quantity=line.quantity,
            )
            logger.warning(record.describe())
            if report is not None:
                report.stale.append(record)
            # Cache entry stays; the next save overwrites it or age evicts it
            return self.minimal_line(line, state.value)

        return self._enriched_line(line, stored)

    def reconcile_with_report(self, authoritative_lines: Iterable[Any], cache) -> ReconciliationReport:
        report = ReconciliationReport()
        lines = [normalize_cart_line(raw) for raw in authoritative_lines]
        for line in lines:
            report.lines.append(self.reconcile_line(line, cache, report))
        report.orphans = self.find_orphans(lines, cache)

        metrics_collector.record_reconciliation(
            (line.state for line in report.lines), orphan_count=len(report.orphans)
        )
        return report

    def reconcile(self, authoritative_lines: Iterable[Any], cache) -> List[RenderableLine]:
        """Render-ready lines, one per authoritative line, in cart order."""
        return self.reconcile_with_report(authoritative_lines, cache).lines

    def find_orphans(self, authoritative_lines: Iterable[Any], cache) -> List[int]:
        """Cached product ids with no cart line. Listed, never deleted here."""
        in_cart = {normalize_cart_line(raw).product_id for raw in authoritative_lines}
        return [product_id for product_id in cache.product_ids() if product_id not in in_cart]


cart_reconciler = CartReconciler()


def reconcile(authoritative_lines: Iterable[Any], cache) -> List[RenderableLine]:
    return cart_reconciler.reconcile(authoritative_lines, cache)
