"""
Circuit breaker for intelligence-provider calls.

Counts consecutive failures, opens for a cooldown window once the threshold
is reached, and races every call against a hard timeout so callers never
block on a slow provider. Instances are injected into the generator; the
clock is injectable for tests.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from .config_loader import config
from .exceptions import CircuitOpenError, CircuitTimeoutError
from .logger import logger

T = TypeVar("T")

FAILURE_THRESHOLD = 3
COOLDOWN_MS = 2 * 60 * 1000
DEFAULT_TIMEOUT_MS = 45 * 1000


@dataclass
class BreakerState:
    failure_count: int = 0
    open_until: float = 0.0  # clock seconds, 0 means never opened


class CircuitBreaker:
    """Closed/open breaker; the first call after the cooldown is a trial call."""

    def __init__(
        self,
        name: str = "intelligence",
        failure_threshold: int | None = None,
        cooldown_ms: int | None = None,
        default_timeout_ms: int | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold or int(
            config.get("circuit_breaker.failure_threshold", FAILURE_THRESHOLD)
        )
        self.cooldown_ms = cooldown_ms or int(config.get("circuit_breaker.cooldown_ms", COOLDOWN_MS))
        self.default_timeout_ms = default_timeout_ms or int(
            config.get("circuit_breaker.default_timeout_ms", DEFAULT_TIMEOUT_MS)
        )
        self._clock = clock or time.monotonic
        self.state = BreakerState()

    @property
    def failure_count(self) -> int:
        return self.state.failure_count

    @property
    def open_until(self) -> float:
        return self.state.open_until

    def is_open(self) -> bool:
        return self._clock() < self.state.open_until

    def can_execute(self) -> bool:
        return not self.is_open()

    def record_success(self):
        if self.state.failure_count:
            logger.info(f"[BREAKER] {self.name}: call succeeded, resetting failure count")
        self.state.failure_count = 0

    def record_failure(self):
        self.state.failure_count += 1
        if self.state.failure_count >= self.failure_threshold:
            self.state.open_until = self._clock() + self.cooldown_ms / 1000.0
            logger.warning(
                f"[BREAKER] {self.name}: opened after {self.state.failure_count} consecutive "
                f"failures for {self.cooldown_ms}ms"
            )

    async def execute(
        self, async_fn: Callable[[], Awaitable[T]], timeout_ms: int | None = None
    ) -> T:
        """Run ``async_fn`` under the breaker.

        Raises CircuitOpenError without calling ``async_fn`` while open and
        CircuitTimeoutError when the call exceeds ``timeout_ms``. Any failure
        (timeout included) counts toward opening the breaker.
        """
        if self.is_open():
            raise CircuitOpenError(self.state.open_until, self.state.failure_count)

        timeout_ms = timeout_ms or self.default_timeout_ms
        try:
            result = await asyncio.wait_for(async_fn(), timeout=timeout_ms / 1000.0)
        except asyncio.TimeoutError as e:
            self.record_failure()
            raise CircuitTimeoutError(timeout_ms) from e
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def reset(self):
        self.state = BreakerState()

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "open": self.is_open(),
            "failure_count": self.state.failure_count,
            "open_until": self.state.open_until,
            "failure_threshold": self.failure_threshold,
            "cooldown_ms": self.cooldown_ms,
        }
