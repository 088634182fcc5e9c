"""
Centralized configuration helpers for the bundle cart cache and session scoping.
"""
from __future__ import annotations

import os
from typing import Optional, Any

DEFAULT_SESSION_ID: str = os.getenv("DEFAULT_SESSION_ID") or "anonymous"

# Single key holding the whole product-id -> bundle data map.
BUNDLE_CACHE_STORAGE_KEY: str = os.getenv("BUNDLE_CACHE_STORAGE_KEY") or "asl_bundle_cart_data"
BUNDLE_CACHE_MAX_AGE_DAYS: float = float(os.getenv("BUNDLE_CACHE_MAX_AGE_DAYS", "7"))

# "memory" | "file" | "sql"
BUNDLE_CACHE_BACKEND: str = (os.getenv("BUNDLE_CACHE_BACKEND") or "memory").strip().lower()
BUNDLE_CACHE_PATH: str = os.getenv("BUNDLE_CACHE_PATH") or ".bundle_cache.json"
BUNDLE_CACHE_DATABASE_URL: str = os.getenv("BUNDLE_CACHE_DATABASE_URL") or "sqlite:///./bundle_cache.db"


def max_age_ms(days: Optional[float] = None) -> int:
    """Cache entry lifetime in milliseconds."""
    if days is None:
        days = BUNDLE_CACHE_MAX_AGE_DAYS
    return int(days * 24 * 60 * 60 * 1000)


def sanitize_session_id(value: Optional[Any]) -> Optional[str]:
    """Normalize raw session IDs (strip whitespace, drop separators)."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    text = str(value).strip()
    if not text:
        return None
    # The id becomes part of a store key
    return text.replace(":", "_").replace("/", "_")


def resolve_session_id(*candidates: Optional[Any]) -> str:
    """
    Pick the first usable session identifier from candidates, otherwise fall back to DEFAULT_SESSION_ID.
    """
    for candidate in candidates:
        normalized = sanitize_session_id(candidate)
        if normalized:
            return normalized
    return DEFAULT_SESSION_ID


def session_storage_key(session_id: Optional[str] = None, base_key: Optional[str] = None) -> str:
    """Store key scoped to one browsing session."""
    base = base_key or BUNDLE_CACHE_STORAGE_KEY
    return f"{base}:{resolve_session_id(session_id)}"
