"""Service layer -- cache, store, upstream client, resolution and sync."""

from __future__ import annotations

from src.services.cache import CacheManager, InMemoryCacheBackend, RedisCacheBackend
from src.services.circuit_breaker import CircuitBreaker
from src.services.freshness import FreshnessResolver, TierResult
from src.services.geocoding import GeoDetection, ReverseGeocoder

__all__ = [
    "CacheManager",
    "CircuitBreaker",
    "FreshnessResolver",
    "GeoDetection",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "ReverseGeocoder",
    "TierResult",
]
