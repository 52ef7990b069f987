"""Upstream access and batch sync for MGNREGA district metrics.

Public API::

    from src.services.ingestion import (
        DataGovClient,
        MetricsSyncPipeline,
        SyncResult,
        SyncScheduler,
    )
"""

from __future__ import annotations

from src.services.ingestion.data_gov_client import DataGovClient
from src.services.ingestion.pipeline import MetricsSyncPipeline, SyncResult
from src.services.ingestion.scheduler import SyncScheduler

__all__ = [
    "DataGovClient",
    "MetricsSyncPipeline",
    "SyncResult",
    "SyncScheduler",
]
