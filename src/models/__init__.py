from src.models.enums import CircuitState, DataSource, DerivationPolicy, TierOutcome
from src.models.metrics import (
    FrontendMetrics,
    HistoricalYear,
    Region,
    ResolvedMetrics,
    normalise_name,
)

__all__ = [
    "CircuitState",
    "DataSource",
    "DerivationPolicy",
    "FrontendMetrics",
    "HistoricalYear",
    "Region",
    "ResolvedMetrics",
    "TierOutcome",
    "normalise_name",
]
