"""
Bundle cart error taxonomy.

Only ConfigValidationError ever reaches a caller. Cache errors are raised by
store backends and swallowed (logged + counted) by LocalMetadataCache, and a
StaleReconciliation is a record, not something the reconciler raises.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class BundleError(Exception):
    """Base class for bundle cart errors"""


class ConfigValidationError(BundleError, ValueError):
    """Bundle configuration rejected; no totals are computed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self):
        return {"error": self.message, "field": self.field}


class CacheError(BundleError):
    """Persisted bundle store could not be used"""


class CacheUnavailable(CacheError):
    """Store missing or inaccessible"""


class CacheCorrupt(CacheError):
    """Store content failed to parse"""


class InvalidTransition(BundleError):
    """Illegal bundle line lifecycle transition"""


@dataclass
class StaleReconciliation:
    """Quantity disagreement between a cached entry and its cart line."""
    product_id: int
    cached_quantity: int
    authoritative_quantity: int

    def describe(self) -> str:
        return (
            f"bundle cache stale for product {self.product_id}: "
            f"cached qty={self.cached_quantity} cart qty={self.authoritative_quantity}"
        )
