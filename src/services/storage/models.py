"""ORM model for the ``mgnrega_data`` table.

One row per ``(state_name, district_name, fin_year, month)``.  Rows are
written only by the sync pipeline's upsert and never deleted.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

UPSERT_KEY: tuple[str, ...] = ("state_name", "district_name", "fin_year", "month")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(AsyncAttrs, DeclarativeBase):
    pass


class MetricRecord(Base):
    """A district's MGNREGA figures for one month of one fiscal year."""

    __tablename__ = "mgnrega_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # -- identity --------------------------------------------------------------
    fin_year: Mapped[str] = mapped_column(String(20), nullable=False)
    month: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    state_code: Mapped[str] = mapped_column(String(10), default="")
    state_name: Mapped[str] = mapped_column(String(100), nullable=False)
    district_code: Mapped[str] = mapped_column(String(10), default="")
    district_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # -- metrics -----------------------------------------------------------------
    approved_labour_budget: Mapped[float] = mapped_column(Float, default=0.0)
    avg_wage_rate: Mapped[float] = mapped_column(Float, default=0.0)
    avg_days_employment: Mapped[float] = mapped_column(Float, default=0.0)
    diff_abled_persons_worked: Mapped[float] = mapped_column(Float, default=0.0)
    material_and_skilled_wages: Mapped[float] = mapped_column(Float, default=0.0)
    completed_works: Mapped[float] = mapped_column(Float, default=0.0)
    gps_with_nil_exp: Mapped[float] = mapped_column(Float, default=0.0)
    ongoing_works: Mapped[float] = mapped_column(Float, default=0.0)
    central_liability_persondays: Mapped[float] = mapped_column(Float, default=0.0)
    sc_persondays: Mapped[float] = mapped_column(Float, default=0.0)
    sc_workers_active: Mapped[float] = mapped_column(Float, default=0.0)
    st_persondays: Mapped[float] = mapped_column(Float, default=0.0)
    st_workers_active: Mapped[float] = mapped_column(Float, default=0.0)
    total_admin_expenditure: Mapped[float] = mapped_column(Float, default=0.0)
    total_expenditure: Mapped[float] = mapped_column(Float, default=0.0)
    total_households_worked: Mapped[float] = mapped_column(Float, default=0.0)
    total_individuals_worked: Mapped[float] = mapped_column(Float, default=0.0)
    active_job_cards: Mapped[float] = mapped_column(Float, default=0.0)
    active_workers: Mapped[float] = mapped_column(Float, default=0.0)
    hh_completed_100_days: Mapped[float] = mapped_column(Float, default=0.0)
    job_cards_issued: Mapped[float] = mapped_column(Float, default=0.0)
    total_workers: Mapped[float] = mapped_column(Float, default=0.0)
    works_takenup: Mapped[float] = mapped_column(Float, default=0.0)
    wages: Mapped[float] = mapped_column(Float, default=0.0)
    women_persondays: Mapped[float] = mapped_column(Float, default=0.0)
    percent_category_b_works: Mapped[float] = mapped_column(Float, default=0.0)
    percent_agri_allied_works: Mapped[float] = mapped_column(Float, default=0.0)
    percent_nrm_expenditure: Mapped[float] = mapped_column(Float, default=0.0)
    percent_payments_15_days: Mapped[float] = mapped_column(Float, default=0.0)

    remarks: Mapped[str] = mapped_column(Text, default="")
    data_payload: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), default=dict
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(*UPSERT_KEY, name="uq_mgnrega_data_region_period"),
        Index("idx_mgnrega_state_district_year", "state_name", "district_name", "fin_year"),
    )

    def __repr__(self) -> str:
        return (
            f"<MetricRecord(state={self.state_name}, district={self.district_name}, "
            f"fin_year={self.fin_year}, month={self.month})>"
        )
