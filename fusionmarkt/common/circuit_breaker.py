import asyncio
import time
from enum import Enum
from typing import Callable, Optional
from fusionmarkt.common.logging_setup import get_logger

logger = get_logger("fusionmarkt.breaker")


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(RuntimeError):
    pass


class CircuitBreaker:
    """
    In-process breaker around an outbound dependency.

    ``failure_threshold`` consecutive failures open the circuit. After
    ``recovery_timeout`` seconds calls are let through again; the first
    outcome closes the circuit or opens it for another timeout.
    """

    def __init__(self, name: str, failure_threshold: int = 5, recovery_timeout: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.failure_threshold = max(1, int(failure_threshold))
        self.recovery_timeout = float(recovery_timeout)
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._retry_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> BreakerState:
        return self._state

    def _move(self, state: BreakerState):
        if state is not self._state:
            logger.warning("breaker.state_changed", extra={"breaker": self.name, "from_state": self._state.value,
                                                           "to_state": state.value})
        self._state = state

    async def before_call(self):
        async with self._lock:
            if self._state is BreakerState.OPEN:
                if self._clock() < self._retry_at:
                    raise CircuitOpenError(f"circuit {self.name} is open")
                self._move(BreakerState.HALF_OPEN)

    async def after_call(self, success: bool):
        async with self._lock:
            if success:
                self._failures = 0
                self._retry_at = None
                self._move(BreakerState.CLOSED)
                return

            self._failures += 1
            if self._state is BreakerState.HALF_OPEN or self._failures >= self.failure_threshold:
                self._failures = 0
                self._retry_at = self._clock() + self.recovery_timeout
                self._move(BreakerState.OPEN)
