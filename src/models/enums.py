from __future__ import annotations

from enum import StrEnum


class DataSource(StrEnum):
    """Tier that produced a district metrics answer."""

    __slots__ = ()

    CACHE = "cache"
    DATABASE = "database"
    DATABASE_STALE = "database-stale"
    API = "api"


class DerivationPolicy(StrEnum):
    """How person-days and total expenditure are derived.

    ``computed`` treats upstream money fields as lakhs of rupees and
    derives person-days from active job cards times average days per
    household.  ``direct`` takes ``Total_Individuals_Worked`` and
    ``Total_Exp`` exactly as reported.
    """

    __slots__ = ()

    COMPUTED = "computed"
    DIRECT = "direct"


class CircuitState(StrEnum):
    __slots__ = ()

    CLOSED = "closed"
    OPEN = "open"


class TierOutcome(StrEnum):
    __slots__ = ()

    HIT = "hit"
    MISS = "miss"
    ERROR = "error"
