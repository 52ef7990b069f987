"""Read and write access to persisted MGNREGA metrics.

Writes raise so the caller (the sync pipeline) decides how failures are
isolated.  Reads are best-effort: errors are logged and reported as "no
data" so the freshness resolver can fall through to the next tier.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite

from src.services.storage.models import UPSERT_KEY, MetricRecord

if TYPE_CHECKING:
    from src.services.storage.database import Database

logger = structlog.get_logger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

_WRITABLE_COLUMNS = frozenset(
    column.key for column in MetricRecord.__table__.columns if column.key != "id"
)
_SNAPSHOT_EXCLUDED = frozenset({"id", "data_payload", "updated_at"})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class StoredMetric:
    """Session-independent snapshot of one :class:`MetricRecord` row."""

    columns: dict[str, Any]
    data_payload: dict[str, Any]
    updated_at: datetime

    def as_record(self) -> dict[str, Any]:
        """Row columns plus ``data_payload``, the shape the normalizer expects."""
        return {**self.columns, "data_payload": self.data_payload}

    @classmethod
    def from_row(cls, row: MetricRecord) -> StoredMetric:
        columns = {
            column.key: getattr(row, column.key)
            for column in MetricRecord.__table__.columns
            if column.key not in _SNAPSHOT_EXCLUDED
        }
        return cls(
            columns=columns,
            data_payload=dict(row.data_payload or {}),
            updated_at=_as_utc(row.updated_at),
        )


class MetricStore:
    """Repository over the ``mgnrega_data`` table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_record(self, row: dict[str, Any]) -> None:
        """Insert *row* or overwrite the row with the same natural key.

        Every non-key column, ``data_payload`` included, is replaced and
        ``updated_at`` is set to the current UTC time.

        Raises
        ------
        ValueError
            If the database dialect has no native upsert support here.
        sqlalchemy.exc.SQLAlchemyError
            On any database failure.
        """
        insert = _INSERT_BY_DIALECT.get(self._db.dialect_name)
        if insert is None:
            raise ValueError(f"Upsert not supported for dialect {self._db.dialect_name!r}")

        values = {key: value for key, value in row.items() if key in _WRITABLE_COLUMNS}
        values["updated_at"] = _utc_now()

        stmt = insert(MetricRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(UPSERT_KEY),
            set_={key: stmt.excluded[key] for key in values if key not in UPSERT_KEY},
        )

        async with self._db.session() as session:
            await session.execute(stmt)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def latest_record(self, state: str, district: str, fin_year: str) -> StoredMetric | None:
        """Most recently updated row for the district and fiscal year."""
        stmt = (
            select(MetricRecord)
            .where(
                MetricRecord.state_name == state,
                MetricRecord.district_name == district,
                MetricRecord.fin_year == fin_year,
            )
            .order_by(MetricRecord.updated_at.desc())
            .limit(1)
        )
        try:
            async with self._db.session() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
                return StoredMetric.from_row(row) if row is not None else None
        except Exception:
            logger.warning(
                "store.read_failed",
                query="latest_record",
                state=state,
                district=district,
                fin_year=fin_year,
                exc_info=True,
            )
            return None

    async def list_districts(self, state: str) -> list[str]:
        """Distinct district names stored for *state*, ascending."""
        stmt = (
            select(MetricRecord.district_name)
            .where(MetricRecord.state_name == state)
            .distinct()
            .order_by(MetricRecord.district_name)
        )
        try:
            async with self._db.session() as session:
                return list((await session.execute(stmt)).scalars().all())
        except Exception:
            logger.warning("store.read_failed", query="list_districts", state=state, exc_info=True)
            return []

    async def historical_aggregates(
        self,
        state: str,
        district: str,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Per-fiscal-year aggregates for a district.

        Stock figures (job cards, workers, works) take the yearly maximum,
        flows (person-days, wages, expenditure) are summed and the wage
        rate is averaged.  The *limit* most recent years are returned,
        oldest first.
        """
        stmt = (
            select(
                MetricRecord.fin_year,
                func.max(MetricRecord.active_job_cards).label("active_job_cards"),
                func.max(MetricRecord.avg_days_employment).label("avg_days_employment"),
                func.max(MetricRecord.active_workers).label("active_workers"),
                func.max(MetricRecord.total_households_worked).label("total_households_worked"),
                func.max(MetricRecord.completed_works).label("completed_works"),
                func.max(MetricRecord.ongoing_works).label("ongoing_works"),
                func.max(MetricRecord.job_cards_issued).label("job_cards_issued"),
                func.sum(MetricRecord.total_individuals_worked).label("total_individuals_worked"),
                func.sum(MetricRecord.women_persondays).label("women_persondays"),
                func.sum(MetricRecord.wages).label("wages"),
                func.sum(MetricRecord.material_and_skilled_wages).label("material_and_skilled_wages"),
                func.sum(MetricRecord.total_expenditure).label("total_expenditure"),
                func.avg(MetricRecord.avg_wage_rate).label("avg_wage_rate"),
            )
            .where(
                MetricRecord.state_name == state,
                MetricRecord.district_name == district,
            )
            .group_by(MetricRecord.fin_year)
            .order_by(MetricRecord.fin_year.desc())
            .limit(limit)
        )
        try:
            async with self._db.session() as session:
                rows = [dict(row._mapping) for row in await session.execute(stmt)]
        except Exception:
            logger.warning(
                "store.read_failed",
                query="historical_aggregates",
                state=state,
                district=district,
                exc_info=True,
            )
            return []

        rows.reverse()
        return rows
