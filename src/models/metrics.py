from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field, NonNegativeFloat, NonNegativeInt

from src.models.enums import DataSource


class FrontendMetrics(BaseModel):
    """UI-ready district metrics for one fiscal year.

    Averages and percentages are pre-formatted strings; every other
    metric is a finite, non-negative number.
    """

    fin_year: str = ""
    state_name: str = ""
    district_name: str = ""

    job_cards_issued: NonNegativeFloat = 0.0
    active_job_cards: NonNegativeFloat = 0.0
    person_days_generated: NonNegativeInt = 0
    avg_days_per_household: str = "0.00"
    women_participation_percent: str = "0.0"
    women_person_days: NonNegativeInt = 0

    completed_works: NonNegativeFloat = 0.0
    ongoing_works: NonNegativeFloat = 0.0
    total_expenditure: NonNegativeFloat = 0.0
    avg_wage_rate: str = "0.00"

    total_households_worked: NonNegativeFloat = 0.0
    active_workers: NonNegativeFloat = 0.0


class HistoricalYear(BaseModel):
    """Aggregated metrics for one fiscal year of a district's history."""

    year: str
    person_days_generated: NonNegativeInt = 0
    avg_days_per_household: str = "0.00"
    active_job_cards: NonNegativeFloat = 0.0
    active_workers: NonNegativeFloat = 0.0
    total_households_worked: NonNegativeFloat = 0.0
    women_participation_percent: str = "0.0"
    women_person_days: NonNegativeInt = 0
    total_expenditure: NonNegativeFloat = 0.0
    avg_wage_rate: str = "0.00"
    completed_works: NonNegativeFloat = 0.0
    ongoing_works: NonNegativeFloat = 0.0


class Region(BaseModel):
    """A state, or a district within a state.

    Names are normalised to stripped upper-case, matching how the
    upstream dataset spells them (``"UTTAR PRADESH"``, ``"LUCKNOW"``).
    """

    state: str = Field(min_length=1)
    district: str | None = None

    @classmethod
    def of(cls, state: str, district: str | None = None) -> Region:
        return cls(
            state=normalise_name(state),
            district=normalise_name(district) if district is not None else None,
        )


@dataclass(frozen=True)
class ResolvedMetrics:
    """A district lookup answer tagged with the tier that produced it."""

    source: DataSource
    data: dict[str, Any]


def normalise_name(name: str) -> str:
    return " ".join(name.split()).upper()
