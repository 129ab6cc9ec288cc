"""
GENESIS Stage Executor
===============================================================================
Runs one adapter call for one stage of a generation workflow.

Each call goes through the adapter's circuit breaker and the retry policy;
every attempt is bounded by the per-call timeout and traced. Whatever the
outcome, the stage produces exactly one ProcessingStep, and a terminal
failure additionally produces exactly one ServiceError.

Author: Barrios A2I
Version: 3.0.0
===============================================================================
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from opentelemetry import trace
from prometheus_client import Counter, Histogram

from agents.base import AdapterError
from resilience import CircuitOpenError, ResilientCaller
from schemas.generation_schema import (
    ErrorCode,
    ProcessingStep,
    ServiceError,
    StepHistory,
    StepStatus,
    snippet,
)

logger = logging.getLogger("genesis.stage_executor")
tracer = trace.get_tracer(__name__)


# =============================================================================
# PROMETHEUS METRICS
# =============================================================================

STAGE_CALLS = Counter(
    'genesis_stage_calls_total',
    'Adapter call attempts per stage',
    ['stage', 'adapter', 'outcome']
)

STAGE_LATENCY = Histogram(
    'genesis_stage_latency_seconds',
    'Adapter call attempt latency',
    ['stage'],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0]
)


@dataclass(frozen=True)
class StageResult:
    """Outcome of one stage"""
    ok: bool
    output: Any
    error: Optional[ServiceError]
    attempts: int
    step: ProcessingStep


def describe_output(output: Any) -> str:
    """Text outputs are shown as-is, media outputs by their URL"""
    if isinstance(output, str):
        return output
    url = getattr(output, "url", None)
    if url:
        return url
    return repr(output)


def _is_retryable(exc: Exception) -> bool:
    return isinstance(exc, AdapterError) and exc.retryable


class StageExecutor:
    """
    Stage runner bound to one request's step history.

    The orchestrator creates one executor per workflow; concurrent media
    stages share it and append their steps in completion order.
    """

    def __init__(
        self,
        caller: ResilientCaller,
        history: StepHistory,
        call_timeout_seconds: float,
        request_id: str = ""
    ):
        self.caller = caller
        self.history = history
        self.call_timeout_seconds = call_timeout_seconds
        self.request_id = request_id
        self._attempts: Dict[str, int] = {}

    async def run(
        self,
        stage_name: str,
        adapter_name: str,
        adapter_call: Callable[[], Awaitable[Any]],
        stage_input: str,
        validate_output: Optional[Callable[[Any], Optional[str]]] = None
    ) -> StageResult:
        """
        Execute adapter_call for stage_name.

        validate_output returns a violation message (or None) for a produced
        output; a violation is a non-retryable contract_violation.
        """
        self._attempts[stage_name] = 0
        started = time.monotonic()

        async def attempt() -> Any:
            self._attempts[stage_name] += 1
            number = self._attempts[stage_name]

            with tracer.start_as_current_span(f"stage_{stage_name}") as span:
                span.set_attribute("request_id", self.request_id)
                span.set_attribute("adapter", adapter_name)
                span.set_attribute("attempt", number)
                attempt_started = time.monotonic()

                try:
                    output = await asyncio.wait_for(adapter_call(), timeout=self.call_timeout_seconds)
                except asyncio.TimeoutError as e:
                    STAGE_CALLS.labels(stage=stage_name, adapter=adapter_name, outcome="timeout").inc()
                    span.set_attribute("outcome", "timeout")
                    raise AdapterError(
                        ErrorCode.ADAPTER_TIMEOUT,
                        f"{adapter_name} did not answer within {self.call_timeout_seconds:.1f}s",
                        retryable=True
                    ) from e
                except Exception:
                    STAGE_CALLS.labels(stage=stage_name, adapter=adapter_name, outcome="error").inc()
                    span.set_attribute("outcome", "error")
                    raise
                finally:
                    STAGE_LATENCY.labels(stage=stage_name).observe(time.monotonic() - attempt_started)

                if validate_output is not None:
                    violation = validate_output(output)
                    if violation:
                        STAGE_CALLS.labels(stage=stage_name, adapter=adapter_name, outcome="contract_violation").inc()
                        span.set_attribute("outcome", "contract_violation")
                        raise AdapterError(ErrorCode.CONTRACT_VIOLATION, violation, retryable=False)

                STAGE_CALLS.labels(stage=stage_name, adapter=adapter_name, outcome="success").inc()
                span.set_attribute("outcome", "success")
                return output

        error: Optional[ServiceError] = None
        output: Any = None

        try:
            output = await self.caller.call(adapter_name, attempt, is_retryable=_is_retryable)
        except CircuitOpenError as e:
            logger.warning(f"[{self.request_id}] {stage_name}: {adapter_name} circuit open, failing fast")
            error = ServiceError(
                adapter=adapter_name,
                stage=stage_name,
                message=str(e),
                code=ErrorCode.CIRCUIT_OPEN,
                retryable=False,
            )
        except AdapterError as e:
            logger.error(f"[{self.request_id}] {stage_name} failed via {adapter_name}: {e.code} {e.message}")
            error = ServiceError(
                adapter=adapter_name,
                stage=stage_name,
                message=e.message,
                code=e.code,
                retryable=e.retryable,
            )
        except Exception as e:
            logger.exception(f"[{self.request_id}] {stage_name}: unexpected error from {adapter_name}")
            error = ServiceError(
                adapter=adapter_name,
                stage=stage_name,
                message=f"{type(e).__name__}: {e}",
                code=ErrorCode.INTERNAL_ERROR,
                retryable=False,
            )

        attempts = self._attempts.pop(stage_name, 0)
        duration_ms = (time.monotonic() - started) * 1000

        if error is None:
            status = StepStatus.SUCCEEDED
        elif error.code == ErrorCode.ADAPTER_TIMEOUT:
            status = StepStatus.TIMED_OUT
        else:
            status = StepStatus.FAILED

        step = ProcessingStep(
            stage=stage_name,
            adapter=adapter_name,
            input_snippet=snippet(stage_input),
            output_snippet=snippet(describe_output(output)) if error is None else snippet(error.message),
            status=status,
            attempts=attempts,
            duration_ms=duration_ms,
        )
        self.history.append(step)

        if error is None:
            logger.info(
                f"[{self.request_id}] {stage_name} succeeded via {adapter_name} "
                f"({attempts} attempt(s), {duration_ms:.0f}ms)"
            )
        return StageResult(ok=error is None, output=output, error=error, attempts=attempts, step=step)

    def record_budget_timeout(
        self,
        stage_name: str,
        adapter_name: str,
        stage_input: str,
        started: float,
        message: Optional[str] = None
    ) -> StageResult:
        """Record a stage that was cancelled because the workflow budget ran out"""
        attempts = self._attempts.pop(stage_name, 0)
        error = ServiceError(
            adapter=adapter_name,
            stage=stage_name,
            message=message or f"{stage_name} cancelled: generation time budget exhausted",
            code=ErrorCode.TIMEOUT,
            retryable=False,
        )
        step = ProcessingStep(
            stage=stage_name,
            adapter=adapter_name,
            input_snippet=snippet(stage_input),
            output_snippet=snippet(error.message),
            status=StepStatus.TIMED_OUT,
            attempts=attempts,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        self.history.append(step)
        logger.warning(f"[{self.request_id}] {stage_name} timed out against the workflow budget")
        return StageResult(ok=False, output=None, error=error, attempts=attempts, step=step)
