"""Circuit breaker guarding calls to the data.gov.in API.

States
------
- **CLOSED**: calls pass through; consecutive failures are counted.
- **OPEN**: calls are rejected with :class:`CircuitOpenError` before any
  I/O is attempted.

There is no background timer.  Whether an open breaker may close again is
decided at call time: once more than ``cooldown_seconds`` have passed since
the last failure, the breaker resets to CLOSED with a zero failure count
and lets the call through.

The breaker holds plain attributes and no lock.  Concurrent failures may
race on the counter, which is acceptable for a coarse protective
heuristic.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog

from src.models.enums import CircuitState
from src.services.errors import CircuitOpenError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FAILURE_THRESHOLD = 5
COOLDOWN_SECONDS = 60.0


class CircuitBreaker:
    """Consecutive-failure circuit breaker for a single upstream service.

    Parameters
    ----------
    service_id:
        Name used in log events.
    failure_threshold:
        Consecutive failures after which the breaker opens.
    cooldown_seconds:
        Time since the last failure after which an open breaker lets the
        next call through.
    clock:
        Monotonic time source in seconds.  Injectable for tests.

    Usage::

        breaker = CircuitBreaker("data.gov.in")
        records = await breaker.call(fetch_page, offset=0)
    """

    def __init__(
        self,
        service_id: str = "data.gov.in",
        *,
        failure_threshold: int = FAILURE_THRESHOLD,
        cooldown_seconds: float = COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service_id = service_id
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock

        self.failure_count = 0
        self.is_open = False
        self._last_failure_at: float | None = None
        self._last_failure_wall: datetime | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        return CircuitState.OPEN if self.is_open else CircuitState.CLOSED

    def _elapsed_since_failure(self) -> float:
        if self._last_failure_at is None:
            return float("inf")
        return self._clock() - self._last_failure_at

    def allow_request(self) -> bool:
        """Return whether a call may be attempted now.

        An open breaker whose cooldown has elapsed is reset to CLOSED
        as a side effect, and the call is allowed.
        """
        if not self.is_open:
            return True

        if self._elapsed_since_failure() > self.cooldown_seconds:
            self.is_open = False
            self.failure_count = 0
            logger.info("circuit.reset", service=self.service_id)
            return True

        return False

    def record_success(self) -> None:
        self.failure_count = 0

    def record_failure(self) -> None:
        self.failure_count += 1
        self._last_failure_at = self._clock()
        self._last_failure_wall = datetime.now(timezone.utc)

        if not self.is_open and self.failure_count >= self.failure_threshold:
            self.is_open = True
            logger.warning(
                "circuit.opened",
                service=self.service_id,
                failures=self.failure_count,
            )

    def seconds_until_retry(self) -> float | None:
        """Seconds left before an open breaker admits a call, else ``None``."""
        if not self.is_open:
            return None
        return max(0.0, self.cooldown_seconds - self._elapsed_since_failure())

    # ------------------------------------------------------------------
    # Guarded call
    # ------------------------------------------------------------------

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Invoke *fn* if the breaker allows it and record the outcome.

        Raises
        ------
        CircuitOpenError
            When the breaker is open; *fn* is not called.
        Exception
            Whatever *fn* raised, after the failure has been recorded.
        """
        if not self.allow_request():
            logger.warning("circuit.rejected", service=self.service_id)
            raise CircuitOpenError(self.seconds_until_retry() or 0.0)

        try:
            result = await fn(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def reset(self) -> None:
        """Manually close the breaker."""
        self.is_open = False
        self.failure_count = 0
        self._last_failure_at = None
        self._last_failure_wall = None
        logger.info("circuit.manual_reset", service=self.service_id)

    def get_status(self) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "last_failure": (
                self._last_failure_wall.isoformat() if self._last_failure_wall else None
            ),
            "seconds_until_retry": self.seconds_until_retry(),
        }
