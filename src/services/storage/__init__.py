"""Persisted store for MGNREGA district metrics (SQLAlchemy async)."""

from src.services.storage.database import Database
from src.services.storage.models import Base, MetricRecord
from src.services.storage.repository import MetricStore, StoredMetric

__all__ = [
    "Base",
    "Database",
    "MetricRecord",
    "MetricStore",
    "StoredMetric",
]
