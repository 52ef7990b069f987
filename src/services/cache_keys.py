"""Cache key naming and TTL policy.

Keys are colon-delimited and namespaced by entity kind.  The cache client
owns no policy; every caller builds keys and picks TTLs from here.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal

# ---------------------------------------------------------------------------
# TTLs (seconds)
# ---------------------------------------------------------------------------

DISTRICTS_TTL = 24 * 60 * 60
HISTORICAL_TTL = 60 * 60
DISTRICT_METRICS_TTL = 60 * 60
GEOCODE_TTL = 24 * 60 * 60

# Three decimal places is roughly 110 m of latitude.
_GEO_QUANTUM = Decimal("0.001")


def districts_key(state: str) -> str:
    return f"districts:{state}"


def historical_key(state: str, district: str) -> str:
    return f"historical:{state}:{district}"


def district_metrics_key(state: str, district: str, fin_year: str) -> str:
    return f"district:{state}:{district}:{fin_year}"


def truncate_coordinate(value: float) -> str:
    """Truncate *value* toward zero to three decimal places.

    Truncation (not rounding) keeps every point inside the same
    0.001-degree cell on one key.  ``repr``-based conversion avoids
    binary float artefacts such as ``26.8469999...``.
    """
    return str(Decimal(repr(float(value))).quantize(_GEO_QUANTUM, rounding=ROUND_DOWN))


def geocode_key(latitude: float, longitude: float) -> str:
    return f"geo:{truncate_coordinate(latitude)}:{truncate_coordinate(longitude)}"
