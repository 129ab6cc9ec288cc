"""
================================================================================
⚡ RESILIENCE MODULE - Retry + Per-Adapter Circuit Breakers
================================================================================
Failure isolation for every external adapter call in a generation workflow.

PART 1: Circuit Breaker
- One breaker per adapter identity, held in an explicit registry
- Fails fast while a degraded service cools down
- Survives across sequential requests for the life of the process

PART 2: Retry With Exponential Backoff
- Bounded attempts, doubling delay capped at max_delay
- Only errors classified as retryable are retried

================================================================================
Author: Barrios A2I | Version: 3.0.0 | October 2026
================================================================================
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from prometheus_client import Counter, Gauge

logger = logging.getLogger("genesis.resilience")

T = TypeVar('T')


# =============================================================================
# PROMETHEUS METRICS
# =============================================================================

CIRCUIT_STATE = Gauge(
    'genesis_circuit_state',
    'Circuit breaker state (0=closed, 1=open, 2=half_open)',
    ['service']
)

CIRCUIT_TRIPS = Counter(
    'genesis_circuit_trips_total',
    'Circuit breaker trip count',
    ['service', 'reason']
)

CIRCUIT_RECOVERIES = Counter(
    'genesis_circuit_recoveries_total',
    'Circuit breaker recovery count',
    ['service']
)

CIRCUIT_REJECTIONS = Counter(
    'genesis_circuit_rejections_total',
    'Calls rejected without reaching the adapter',
    ['service']
)

RETRY_ATTEMPTS = Counter(
    'genesis_retry_attempts_total',
    'Retries scheduled after a retryable failure',
    ['service']
)


# =============================================================================
# CIRCUIT BREAKER STATE
# =============================================================================

class CircuitState(Enum):
    """Circuit breaker states"""
    CLOSED = "closed"         # Normal operation - requests flow through
    OPEN = "open"             # Failing - reject all requests
    HALF_OPEN = "half_open"   # Testing - a single trial call


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.OPEN: 1,
    CircuitState.HALF_OPEN: 2,
}


@dataclass
class CircuitMetrics:
    """Metrics for circuit breaker"""
    failures: int = 0
    successes: int = 0
    consecutive_failures: int = 0
    rejected: int = 0
    opened_at: Optional[float] = None
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CircuitConfig:
    """Configuration for circuit breaker"""
    failure_threshold: int = 5          # Consecutive terminal failures before opening
    cool_down_seconds: float = 60.0     # Time in OPEN before a half-open trial


class CircuitOpenError(Exception):
    """Raised when circuit breaker is open"""

    def __init__(self, message: str, service: Optional[str] = None,
                 retry_after: Optional[float] = None):
        super().__init__(message)
        self.service = service
        self.retry_after = retry_after


# =============================================================================
# PART 1: CIRCUIT BREAKER
# =============================================================================

class CircuitBreaker:
    """
    Per-adapter circuit breaker.

    State Machine:
    ┌────────────────────────────────────────────────────────────────┐
    │                                                                │
    │    CLOSED ───(consecutive failures >= threshold)───► OPEN      │
    │      ▲                                                │        │
    │      │                                       (cool-down over)  │
    │      │                                                ▼        │
    │      └────────(trial call succeeds)───────────── HALF_OPEN     │
    │                                                       │        │
    │                                  (trial call fails)   │        │
    │                                                       └─► OPEN │
    └────────────────────────────────────────────────────────────────┘

    Transitions are synchronous (no awaits), so concurrent stages on the
    event loop never observe a half-applied transition.
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[CircuitConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.service = service_name
        self.config = config or CircuitConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self.metrics = CircuitMetrics()
        self._trial_in_flight = False

        CIRCUIT_STATE.labels(service=self.service).set(0)
        logger.debug(f"CircuitBreaker initialized: {service_name}")

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self.metrics.consecutive_failures

    def remaining_cool_down(self) -> float:
        if self._state != CircuitState.OPEN or self.metrics.opened_at is None:
            return 0.0
        elapsed = self._clock() - self.metrics.opened_at
        return max(0.0, self.config.cool_down_seconds - elapsed)

    # -------------------------------------------------------------------------
    # Core Circuit Breaker Methods
    # -------------------------------------------------------------------------

    def before_call(self) -> bool:
        """
        Admit or reject a call.

        Returns True when the admitted call is the half-open trial call.
        Raises CircuitOpenError when the call must fail fast.
        """
        if self._state == CircuitState.CLOSED:
            return False

        if self._state == CircuitState.OPEN:
            if self.remaining_cool_down() > 0:
                self._reject()
            self._transition_to_half_open()

        if self._trial_in_flight:
            self._reject()

        self._trial_in_flight = True
        return True

    def record_success(self) -> None:
        """Record successful call"""
        self.metrics.successes += 1
        self.metrics.consecutive_failures = 0
        self.metrics.last_success_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._transition_to_closed()

    def record_failure(self, error: Optional[str] = None) -> None:
        """Record terminal failure of a call"""
        self.metrics.failures += 1
        self.metrics.consecutive_failures += 1
        self.metrics.last_failure_time = self._clock()
        self.metrics.last_error = error

        if self._state == CircuitState.HALF_OPEN:
            # Single failure in half-open trips the circuit
            self._transition_to_open("half_open_failure")
        elif (self._state == CircuitState.CLOSED
              and self.metrics.consecutive_failures >= self.config.failure_threshold):
            self._transition_to_open("threshold_exceeded")
        else:
            logger.warning(
                f"⚠️ Circuit {self.service}: failure recorded "
                f"(consecutive: {self.metrics.consecutive_failures}, error: {error})"
            )

    def release_trial(self) -> None:
        """Give the trial slot back when the trial call ended without an outcome"""
        self._trial_in_flight = False

    def _reject(self) -> None:
        self.metrics.rejected += 1
        CIRCUIT_REJECTIONS.labels(service=self.service).inc()
        retry_after = self.remaining_cool_down()
        raise CircuitOpenError(
            f"Circuit {self.service} is {self._state.value.upper()} - request rejected",
            service=self.service,
            retry_after=retry_after
        )

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def _transition_to_open(self, reason: str) -> None:
        """Open the circuit"""
        self._state = CircuitState.OPEN
        self._trial_in_flight = False
        self.metrics.opened_at = self._clock()

        CIRCUIT_STATE.labels(service=self.service).set(_STATE_GAUGE_VALUES[CircuitState.OPEN])
        CIRCUIT_TRIPS.labels(service=self.service, reason=reason).inc()

        logger.error(
            f"🔴 CIRCUIT OPENED: {self.service} (reason: {reason}, "
            f"cool-down: {self.config.cool_down_seconds}s)"
        )

    def _transition_to_half_open(self) -> None:
        """Transition to half-open for testing"""
        self._state = CircuitState.HALF_OPEN
        self._trial_in_flight = False

        CIRCUIT_STATE.labels(service=self.service).set(_STATE_GAUGE_VALUES[CircuitState.HALF_OPEN])

        logger.info(f"🟡 Circuit {self.service}: OPEN → HALF_OPEN")

    def _transition_to_closed(self) -> None:
        """Close the circuit - normal operation"""
        self._state = CircuitState.CLOSED
        self._trial_in_flight = False
        self.metrics.consecutive_failures = 0
        self.metrics.opened_at = None

        CIRCUIT_STATE.labels(service=self.service).set(_STATE_GAUGE_VALUES[CircuitState.CLOSED])
        CIRCUIT_RECOVERIES.labels(service=self.service).inc()

        logger.info(f"🟢 Circuit {self.service}: RECOVERED → CLOSED")

    # -------------------------------------------------------------------------
    # Health & Manual Control
    # -------------------------------------------------------------------------

    def health_check(self) -> Dict[str, Any]:
        """Get circuit breaker health status"""
        return {
            "service": self.service,
            "state": self._state.value,
            "metrics": {
                "failures": self.metrics.failures,
                "successes": self.metrics.successes,
                "consecutive_failures": self.metrics.consecutive_failures,
                "rejected": self.metrics.rejected,
                "last_error": self.metrics.last_error,
            },
            "retry_after_seconds": round(self.remaining_cool_down(), 1),
            "config": {
                "failure_threshold": self.config.failure_threshold,
                "cool_down_seconds": self.config.cool_down_seconds,
            },
        }

    def force_open(self, reason: str = "manual") -> None:
        """Manually open the circuit"""
        self._transition_to_open(reason)

    def force_close(self) -> None:
        """Manually close the circuit"""
        self._transition_to_closed()


# =============================================================================
# BREAKER REGISTRY
# =============================================================================

class CircuitBreakerRegistry:
    """
    Process-wide set of breakers keyed by adapter identity.

    Created once and handed to the orchestrator, so breaker state carries
    over between sequential requests. Each key has exactly one breaker and
    each breaker is only written by calls to its own adapter.
    """

    def __init__(
        self,
        config: Optional[CircuitConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config or CircuitConfig()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, service_name: str) -> CircuitBreaker:
        breaker = self._breakers.get(service_name)
        if breaker is None:
            breaker = CircuitBreaker(service_name, self.config, clock=self._clock)
            self._breakers[service_name] = breaker
        return breaker

    def __contains__(self, service_name: str) -> bool:
        return service_name in self._breakers

    def health(self) -> Dict[str, Any]:
        """Get health of every registered breaker"""
        circuits = {name: b.health_check() for name, b in sorted(self._breakers.items())}
        states = [c["state"] for c in circuits.values()]

        if all(s == CircuitState.CLOSED.value for s in states):
            status = "healthy"
        elif any(s == CircuitState.OPEN.value for s in states):
            status = "degraded"
        else:
            status = "warning"

        return {"status": status, "circuits": circuits}


# =============================================================================
# PART 2: RETRY WITH EXPONENTIAL BACKOFF
# =============================================================================

@dataclass
class RetryPolicy:
    """Configuration for retry behavior"""
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 8.0
    jitter: bool = True
    jitter_range: float = 0.25

    def compute_delay(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt"""
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter and delay > 0:
            delay += delay * random.uniform(-self.jitter_range, self.jitter_range)
        return max(0.0, delay)


def never_retry(exc: Exception) -> bool:
    return False


class ResilientCaller:
    """
    Wraps a single adapter call with its breaker and the retry policy.

    Only terminal outcomes reach the breaker: a call that succeeds on its
    second attempt counts as one success, a call that exhausts its attempts
    counts as one failure. A half-open trial gets exactly one attempt.
    """

    def __init__(
        self,
        registry: CircuitBreakerRegistry,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.registry = registry
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def call(
        self,
        service_name: str,
        func: Callable[[], Awaitable[T]],
        is_retryable: Callable[[Exception], bool] = never_retry
    ) -> T:
        breaker = self.registry.get(service_name)
        is_trial = breaker.before_call()
        max_attempts = 1 if is_trial else max(1, self.policy.max_attempts)
        settled = False

        try:
            for attempt in range(1, max_attempts + 1):
                try:
                    result = await func()
                except Exception as e:
                    if attempt < max_attempts and is_retryable(e):
                        delay = self.policy.compute_delay(attempt)
                        RETRY_ATTEMPTS.labels(service=service_name).inc()
                        logger.warning(
                            f"Retry {attempt}/{max_attempts} for {service_name} "
                            f"after {delay:.2f}s: {e}"
                        )
                        await self._sleep(delay)
                        continue

                    breaker.record_failure(str(e))
                    settled = True
                    raise

                breaker.record_success()
                settled = True
                return result
        finally:
            if is_trial and not settled:
                breaker.release_trial()

        # max_attempts >= 1 always returns or raises inside the loop
        raise RuntimeError("unreachable")
