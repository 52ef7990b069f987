"""Client for the data.gov.in MGNREGA district-wise dataset.

API documentation: https://data.gov.in/apis
Free API key registration: https://data.gov.in/user/register

The resource endpoint answers ``GET /resource/{resource_id}`` with a JSON
object whose ``records`` array holds flat dicts keyed by verbose field
names (``Total_No_of_Active_Job_Cards``, ``Women_Persondays``, ...).
Filters are passed as ``filters[<field>]=<value>`` query parameters.

Every request goes through the process-wide :class:`CircuitBreaker`, so a
failing upstream is not hammered by the resolver or the sync loop.  Unlike
a best-effort lookup, this client never turns a failure into an empty
result: network errors, timeouts, non-2xx answers and bodies without a
``records`` list all raise :class:`UpstreamError`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog

from src.models.metrics import normalise_name
from src.services.errors import UpstreamError

if TYPE_CHECKING:
    from src.services.circuit_breaker import CircuitBreaker

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BASE_URL = "https://api.data.gov.in"

# District-wise MGNREGA physical and financial progress.
MGNREGA_RESOURCE_ID = "ee03643a-ee4c-48c2-ac30-9f2ff26ab722"

DEFAULT_TIMEOUT_SECONDS = 10.0


# ---------------------------------------------------------------------------
# DataGovClient
# ---------------------------------------------------------------------------


class DataGovClient:
    """Client for the data.gov.in Open Government Data Platform API.

    Parameters
    ----------
    breaker:
        Circuit breaker gating every upstream call.
    api_key:
        OGD platform API key.  Requests are sent without one if ``None``
        (the platform then serves a small sample).
    resource_id:
        Dataset resource identifier.
    base_url:
        API root, without trailing slash.
    timeout:
        Per-request timeout in seconds.
    target_state:
        When set, every request is filtered to this state.
    http_client:
        Pre-built :class:`httpx.AsyncClient` (tests inject one with a
        mock transport).  The client is closed by :meth:`close` only if
        it was created here.
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        api_key: str | None = None,
        *,
        resource_id: str = MGNREGA_RESOURCE_ID,
        base_url: str = BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        target_state: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._breaker = breaker
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/resource/{resource_id}"
        self._timeout = timeout
        self._target_state = normalise_name(target_state) if target_state else None
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout,
            headers={
                "User-Agent": "MGNREGA-Dashboard/1.0 (district metrics proxy)",
                "Accept": "application/json",
            },
            follow_redirects=True,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_params(
        self,
        filters: dict[str, str] | None,
        limit: int,
        offset: int | None,
    ) -> dict[str, str]:
        """Build query parameters, injecting the API key and state filter."""
        params: dict[str, str] = {"format": "json", "limit": str(limit)}
        if self._api_key:
            params["api-key"] = self._api_key
        if offset is not None:
            params["offset"] = str(offset)

        merged = dict(filters or {})
        if self._target_state:
            merged.setdefault("state_name", self._target_state)
        for key, value in merged.items():
            params[f"filters[{key}]"] = str(value)
        return params

    async def _get_records(self, params: dict[str, str]) -> list[dict[str, Any]]:
        try:
            response = await self._client.get(self._url, params=params, timeout=self._timeout)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as exc:
            logger.warning("datagov.timeout", timeout=self._timeout)
            raise UpstreamError("data.gov.in request timed out") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning("datagov.http_error", status=exc.response.status_code)
            raise UpstreamError(
                f"data.gov.in returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("datagov.request_failed", error=str(exc))
            raise UpstreamError(f"data.gov.in request failed: {exc}") from exc
        except ValueError as exc:
            logger.warning("datagov.malformed_body")
            raise UpstreamError("data.gov.in returned a non-JSON body") from exc

        records = body.get("records") if isinstance(body, dict) else None
        if not isinstance(records, list):
            logger.warning("datagov.missing_records")
            raise UpstreamError("data.gov.in response has no records list")

        return [record for record in records if isinstance(record, dict)]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_records(
        self,
        *,
        filters: dict[str, str] | None = None,
        limit: int,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch one page of records.

        Raises
        ------
        CircuitOpenError
            The breaker is open; no request was sent.
        UpstreamError
            The request failed or the body was unusable.
        """
        params = self._build_params(filters, limit, offset)
        records = await self._breaker.call(self._get_records, params)
        logger.debug(
            "datagov.records_fetched",
            count=len(records),
            offset=offset,
            filters=filters,
        )
        return records

    async def fetch_district(
        self,
        state: str,
        district: str,
        fin_year: str,
    ) -> dict[str, Any] | None:
        """Point lookup of one district-year record, or ``None`` if absent."""
        records = await self.fetch_records(
            filters={
                "state_name": state,
                "district_name": district,
                "fin_year": fin_year,
            },
            limit=1,
        )
        return records[0] if records else None
