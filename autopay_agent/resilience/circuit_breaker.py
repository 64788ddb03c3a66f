"""
Autopay Agent - Router Circuit

Health state machine for the external optimization oracle, built on a
pybreaker circuit breaker:

    Healthy      <-> closed
    Degraded     <-> open
    Reconnecting <-> half-open

Transitions are driven explicitly by the router (a failed call or health check trips
the circuit, the health job moves it to half-open before probing) rather than
by pybreaker's own reset timer, so the health job stays the sole driver of
reconnects. The listener logs every transition and emits metrics.
"""

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

import pybreaker

from ..observability import ObservabilityAdapter

logger = logging.getLogger(__name__)

# Recovery is driven by health checks; keep pybreaker's automatic half-open out of the way
_MANUAL_RESET_TIMEOUT = 10**9


class RouterHealth(str, Enum):
    """Health of the external router."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RECONNECTING = "reconnecting"


_STATE_TO_HEALTH = {
    pybreaker.STATE_CLOSED: RouterHealth.HEALTHY,
    pybreaker.STATE_OPEN: RouterHealth.DEGRADED,
    pybreaker.STATE_HALF_OPEN: RouterHealth.RECONNECTING,
}


class RouterCircuit:
    """
    Router health holder.

    Example:
        >>> circuit = RouterCircuit("oracle", observability)
        >>> circuit.trip("timeout")
        >>> circuit.health
        <RouterHealth.DEGRADED: 'degraded'>
    """

    def __init__(
        self,
        name: str,
        observability: ObservabilityAdapter,
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize router circuit.

        Args:
            name: Circuit name used in logs and metric tags
            observability: Metrics adapter
            clock: Time source for last-checked timestamps
        """
        self.name = name
        self._clock = clock or time.time
        self._breaker = pybreaker.CircuitBreaker(
            fail_max=1,
            reset_timeout=_MANUAL_RESET_TIMEOUT,
            name=name,
            listeners=[RouterStateListener(observability, name)],
        )
        self.last_checked: float | None = None
        self.last_error: str | None = None

    @property
    def health(self) -> RouterHealth:
        return _STATE_TO_HEALTH[self._breaker.current_state]

    @property
    def is_healthy(self) -> bool:
        return self.health == RouterHealth.HEALTHY

    def trip(self, reason: str) -> None:
        """Move to Degraded after a failed call, timeout or health check."""
        self.last_error = reason
        self.last_checked = self._clock()
        if self.health != RouterHealth.DEGRADED:
            self._breaker.open()

    def begin_reconnect(self) -> None:
        """Move Degraded -> Reconnecting ahead of a health check."""
        if self.health == RouterHealth.DEGRADED:
            self._breaker.half_open()

    def recover(self) -> None:
        """Move to Healthy after a successful health check."""
        self.last_error = None
        self.last_checked = self._clock()
        if self.health != RouterHealth.HEALTHY:
            self._breaker.close()

    def mark_checked(self) -> None:
        self.last_checked = self._clock()

    def snapshot(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.health.value,
            "last_checked": self.last_checked,
            "last_error": self.last_error,
        }


class RouterStateListener(pybreaker.CircuitBreakerListener):
    """
    Listener for router circuit state transitions.

    Logs state changes and emits observability metrics.
    """

    def __init__(self, observability: ObservabilityAdapter, circuit_name: str):
        """Initialize listener."""
        self.obs = observability
        self.circuit = circuit_name

    def state_change(self, cb: Any, old_state: Any, new_state: Any) -> None:
        """Called when the circuit changes state."""
        old_health = _STATE_TO_HEALTH[old_state.name] if old_state else RouterHealth.HEALTHY
        new_health = _STATE_TO_HEALTH[new_state.name]

        log = logger.warning if new_health == RouterHealth.DEGRADED else logger.info
        log(
            f"Router state change: {old_health.value} -> {new_health.value}",
            extra={
                "router": self.circuit,
                "old_state": old_health.value,
                "new_state": new_health.value,
            },
        )

        self.obs.increment(
            "router.state_change",
            tags={
                "router": self.circuit,
                "old_state": old_health.value,
                "new_state": new_health.value,
            },
        )
