"""Field normalisation between upstream records, stored rows and UI metrics.

Three record shapes meet here:

* **upstream** -- flat dicts from data.gov.in keyed by verbose field
  names (``Total_No_of_Active_Job_Cards``, ``Women_Persondays``, ...),
  values frequently numeric strings;
* **stored row** -- :class:`~src.services.storage.models.MetricRecord`
  columns (``active_job_cards``, ``women_persondays``, ...) plus the raw
  upstream record in ``data_payload``;
* **frontend** -- :class:`~src.models.metrics.FrontendMetrics`.

Every function in this module is pure: no I/O, no logging.  Missing or
malformed inputs never raise; they become ``0``.
"""

from __future__ import annotations

import math
from collections import ChainMap
from collections.abc import Mapping
from typing import Any

from src.models.enums import DerivationPolicy
from src.models.metrics import FrontendMetrics, HistoricalYear

# ---------------------------------------------------------------------------
# Field map: storage column -> upstream field name
# ---------------------------------------------------------------------------

FIELD_MAP: dict[str, str] = {
    "approved_labour_budget": "Approved_Labour_Budget",
    "avg_wage_rate": "Average_Wage_rate_per_day_per_person",
    "avg_days_employment": "Average_days_of_employment_provided_per_Household",
    "diff_abled_persons_worked": "Differently_abled_persons_worked",
    "material_and_skilled_wages": "Material_and_skilled_Wages",
    "completed_works": "Number_of_Completed_Works",
    "gps_with_nil_exp": "Number_of_GPs_with_NIL_exp",
    "ongoing_works": "Number_of_Ongoing_Works",
    "central_liability_persondays": "Persondays_of_Central_Liability_so_far",
    "sc_persondays": "SC_persondays",
    "sc_workers_active": "SC_workers_against_active_workers",
    "st_persondays": "ST_persondays",
    "st_workers_active": "ST_workers_against_active_workers",
    "total_admin_expenditure": "Total_Adm_Expenditure",
    "total_expenditure": "Total_Exp",
    "total_households_worked": "Total_Households_Worked",
    "total_individuals_worked": "Total_Individuals_Worked",
    "active_job_cards": "Total_No_of_Active_Job_Cards",
    "active_workers": "Total_No_of_Active_Workers",
    "hh_completed_100_days": "Total_No_of_HHs_completed_100_Days_of_Wage_Employment",
    "job_cards_issued": "Total_No_of_JobCards_issued",
    "total_workers": "Total_No_of_Workers",
    "works_takenup": "Total_No_of_Works_Takenup",
    "wages": "Wages",
    "women_persondays": "Women_Persondays",
    "percent_category_b_works": "percent_of_Category_B_Works",
    "percent_agri_allied_works": "percent_of_Expenditure_on_Agriculture_Allied_Works",
    "percent_nrm_expenditure": "percent_of_NRM_Expenditure",
    "percent_payments_15_days": "percentage_payments_gererated_within_15_days",
}

IDENTITY_FIELDS: tuple[str, ...] = (
    "fin_year",
    "month",
    "state_code",
    "state_name",
    "district_code",
    "district_name",
)

NUMERIC_COLUMNS: tuple[str, ...] = tuple(FIELD_MAP)

# Upstream monetary fields (wages, material costs) are reported in lakhs.
RUPEES_PER_LAKH = 100_000

# Largest integer a float holds exactly.
MAX_EXACT_COUNT = 2**53


# ---------------------------------------------------------------------------
# Primitive helpers
# ---------------------------------------------------------------------------


def to_number(value: Any) -> float:
    """Coerce *value* to a finite float, defaulting to ``0.0``.

    Numeric strings may carry thousands separators (``"1,234.5"``).
    ``None``, blank strings, unparsable values, NaN and infinities all
    yield ``0.0``.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return 0.0
        try:
            result = float(text)
        except ValueError:
            return 0.0
    else:
        try:
            result = float(value)
        except (TypeError, ValueError):
            return 0.0
    return result if math.isfinite(result) else 0.0


def pick(record: Mapping[str, Any], *keys: str) -> Any:
    """Return the first present, non-blank value among alias *keys*."""
    for key in keys:
        value = record.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _metric(record: Mapping[str, Any], column: str) -> float:
    # Verbose upstream name first, then the storage column name.
    return to_number(pick(record, FIELD_MAP[column], column))


def _text(record: Mapping[str, Any], key: str) -> str:
    value = pick(record, key)
    return str(value).strip() if value is not None else ""


def _non_negative(value: float) -> float:
    # Products of finite inputs can still overflow to inf.
    return value if value > 0 and math.isfinite(value) else 0.0


def _whole(value: float) -> int:
    """Round a count; counts past exact float precision are treated as malformed."""
    value = _non_negative(value)
    return round(value) if value <= MAX_EXACT_COUNT else 0


# ---------------------------------------------------------------------------
# Upstream -> storage
# ---------------------------------------------------------------------------


def to_storage_row(record: Mapping[str, Any]) -> dict[str, Any]:
    """Map an upstream record onto ``MetricRecord`` column values.

    Identity fields are copied as stripped strings.  Each numeric column
    goes through :func:`to_number`.  The unmodified input is kept in
    ``data_payload``.
    """
    row: dict[str, Any] = {field: _text(record, field) for field in IDENTITY_FIELDS}
    for column, field in FIELD_MAP.items():
        row[column] = to_number(record.get(field))
    row["remarks"] = _text(record, "Remarks")
    row["data_payload"] = dict(record)
    return row


# ---------------------------------------------------------------------------
# Derivations
# ---------------------------------------------------------------------------


def _derive(source: Mapping[str, Any], policy: DerivationPolicy) -> dict[str, Any]:
    """Compute the derived metrics shared by current and historical views."""
    active_job_cards = _non_negative(_metric(source, "active_job_cards"))
    reported_avg_days = _non_negative(_metric(source, "avg_days_employment"))
    women_person_days = _non_negative(_metric(source, "women_persondays"))

    if policy is DerivationPolicy.COMPUTED:
        person_days = _non_negative(active_job_cards * reported_avg_days)
        avg_days = reported_avg_days
        total_expenditure = (
            _metric(source, "wages") + _metric(source, "material_and_skilled_wages")
        ) * RUPEES_PER_LAKH
    else:
        person_days = _non_negative(_metric(source, "total_individuals_worked"))
        avg_days = reported_avg_days or person_days / max(active_job_cards, 1)
        total_expenditure = _metric(source, "total_expenditure")

    person_days = _whole(person_days)
    avg_days = _non_negative(avg_days)
    women_percent = _non_negative(women_person_days / max(person_days, 1) * 100)

    return {
        "active_job_cards": active_job_cards,
        "person_days_generated": person_days,
        "avg_days_per_household": f"{avg_days:.2f}",
        "women_person_days": _whole(women_person_days),
        "women_participation_percent": f"{women_percent:.1f}",
        "total_expenditure": round(_non_negative(total_expenditure), 2),
        "avg_wage_rate": f"{_non_negative(_metric(source, 'avg_wage_rate')):.2f}",
        "completed_works": _non_negative(_metric(source, "completed_works")),
        "ongoing_works": _non_negative(_metric(source, "ongoing_works")),
        "total_households_worked": _non_negative(_metric(source, "total_households_worked")),
        "active_workers": _non_negative(_metric(source, "active_workers")),
    }


def normalize_record(
    record: Mapping[str, Any],
    policy: DerivationPolicy = DerivationPolicy.COMPUTED,
) -> FrontendMetrics:
    """Build UI-ready metrics from an upstream record or a stored row.

    When *record* carries a ``data_payload`` mapping (a stored row), the
    payload is normalised and the row's own columns serve as fallbacks
    for fields the payload lacks.
    """
    payload = record.get("data_payload")
    source: Mapping[str, Any]
    if isinstance(payload, Mapping) and payload:
        source = ChainMap(dict(payload), dict(record))
    else:
        source = record

    return FrontendMetrics(
        fin_year=_text(source, "fin_year"),
        state_name=_text(source, "state_name"),
        district_name=_text(source, "district_name"),
        job_cards_issued=_non_negative(_metric(source, "job_cards_issued")),
        **_derive(source, policy),
    )


def normalize_history_row(
    row: Mapping[str, Any],
    policy: DerivationPolicy = DerivationPolicy.COMPUTED,
) -> HistoricalYear:
    """Derive one :class:`HistoricalYear` from a per-year aggregate row."""
    return HistoricalYear(
        year=_text(row, "fin_year"),
        **_derive(row, policy),
    )
