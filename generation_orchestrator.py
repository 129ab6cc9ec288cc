"""
================================================================================
⚡ GENERATION ORCHESTRATOR - Marketing Content Workflow State Machine
================================================================================
Turns one business message into a caption, a voiceover, a poster image and a
short video.

State machine:
┌────────────────────────────────────────────────────────────────────────────┐
│                                                                            │
│  VALIDATING ──▶ ENHANCING_TEXT ──▶ TRANSLATING ──▶ GENERATING_MEDIA        │
│      │                │           (skipped for      │  audio ┐             │
│      │                │             english)        │  image ├ concurrent  │
│      ▼                ▼                             │  video ┘             │
│    FAILED           FAILED                          ▼                      │
│                                               AGGREGATING                  │
│                                                     │                      │
│                                         COMPLETED / PARTIAL                │
│                                                                            │
└────────────────────────────────────────────────────────────────────────────┘

- Only validation and enhancement can fail the workflow.
- Translation failure falls back to the enhanced caption (partial result).
- The whole workflow shares one wall-clock budget; stages still running
  when it runs out are cancelled and recorded as timeouts.

================================================================================
Author: Barrios A2I | Version: 3.0.0 | October 2026
================================================================================
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from opentelemetry import trace
from prometheus_client import Counter, Gauge, Histogram

from agents.base import AdapterSet
from generation_config import GenerationConfig, build_adapters
from progress_stream import EventType, ProgressReporter, RequestProgress
from resilience import CircuitBreakerRegistry, ResilientCaller
from result_aggregator import ResultAggregator
from schemas.generation_schema import (
    WORKING_LANGUAGE,
    ErrorCode,
    GenerationRequest,
    GenerationResult,
    ProcessedContent,
    ServiceError,
    Stage,
    StepHistory,
    ValidatedRequest,
    ValidationError,
    validate_request,
)
from stage_executor import StageExecutor, StageResult

logger = logging.getLogger("genesis.orchestrator")
tracer = trace.get_tracer(__name__)


# =============================================================================
# PROMETHEUS METRICS
# =============================================================================

GENERATION_REQUESTS = Counter(
    'genesis_generation_requests_total',
    'Generation workflows by terminal status',
    ['status']
)

GENERATION_LATENCY = Histogram(
    'genesis_generation_latency_seconds',
    'Generation workflow latency',
    buckets=[1, 5, 15, 30, 60, 90, 120, 180]
)

GENERATION_ACTIVE = Gauge(
    'genesis_generation_active',
    'Generation workflows currently executing'
)

BUDGET_TIMEOUTS = Counter(
    'genesis_budget_timeouts_total',
    'Stages cancelled because the workflow budget ran out',
    ['stage']
)


# =============================================================================
# STATE
# =============================================================================

class WorkflowState(Enum):
    """Orchestrator states"""
    VALIDATING = "validating"
    ENHANCING_TEXT = "enhancing_text"
    TRANSLATING = "translating"
    GENERATING_MEDIA = "generating_media"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class StageTimeoutError(Exception):
    """A stage was still running when the workflow budget ran out"""

    def __init__(self, stage: str, budget_seconds: float):
        super().__init__(f"{stage} exceeded the {budget_seconds:.0f}s generation budget")
        self.stage = stage
        self.budget_seconds = budget_seconds


ORCHESTRATOR_ADAPTER = "orchestrator"


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class GenerationOrchestrator:
    """
    Runs one generation workflow at a time per call to run().

    The breaker registry is injected so breaker state outlives individual
    requests; the request sequencer guarantees run() is never entered twice
    concurrently.
    """

    def __init__(
        self,
        adapters: AdapterSet,
        registry: Optional[CircuitBreakerRegistry] = None,
        config: Optional[GenerationConfig] = None,
        aggregator: Optional[ResultAggregator] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.adapters = adapters
        self.config = config or GenerationConfig()
        self.registry = registry or CircuitBreakerRegistry(self.config.circuit)
        self.aggregator = aggregator or ResultAggregator()
        self.caller = ResilientCaller(self.registry, self.config.retry, sleep=sleep)
        self._clock = clock

        # Register every breaker up front so health reports all adapters
        for name in self.adapter_names():
            self.registry.get(name)

        logger.info(
            f"⚡ GenerationOrchestrator initialized (budget: {self.config.budget_seconds:.0f}s, "
            f"adapters: {self.adapter_names()})"
        )

    def adapter_names(self) -> List[str]:
        a = self.adapters
        return [a.text_enhancer.name, a.translator.name, a.speech.name, a.image.name, a.video.name]

    # =========================================================================
    # MAIN EXECUTION ENTRY POINT
    # =========================================================================

    async def run(
        self,
        request: GenerationRequest,
        reporter: Optional[ProgressReporter] = None
    ) -> GenerationResult:
        """
        Execute the full workflow for one request.

        Always returns a GenerationResult for completed, partial and failed
        outcomes; only an inconsistent aggregation raises.
        """
        progress = RequestProgress(request.request_id, reporter)
        started = time.monotonic()
        GENERATION_ACTIVE.inc()

        try:
            with tracer.start_as_current_span("generation_workflow") as span:
                span.set_attribute("request_id", request.request_id)
                result = await self._execute(request, progress)
                span.set_attribute("status", result.status.value)
        except Exception as e:
            GENERATION_REQUESTS.labels(status="error").inc()
            logger.exception(f"[{request.request_id}] Workflow aborted")
            progress.emit(
                WorkflowState.FAILED.value,
                f"Generation aborted: {e}",
                EventType.WORKFLOW_ERROR,
                error=str(e),
            )
            raise
        finally:
            GENERATION_ACTIVE.dec()
            GENERATION_LATENCY.observe(time.monotonic() - started)

        GENERATION_REQUESTS.labels(status=result.status.value).inc()
        progress.emit(
            result.status.value,
            f"Generation {result.status.value}",
            EventType.WORKFLOW_COMPLETE,
            status=result.status.value,
            failed_stages=result.failed_stages,
        )
        logger.info(
            f"[{request.request_id}] Workflow {result.status.value} in "
            f"{time.monotonic() - started:.1f}s ({len(result.processing_steps)} steps)"
        )
        return result

    async def _execute(self, request: GenerationRequest, progress: RequestProgress) -> GenerationResult:
        deadline = self._clock() + self.config.budget_seconds
        history = StepHistory()
        executor = StageExecutor(
            self.caller, history, self.config.call_timeout_seconds, request.request_id
        )
        errors: List[ServiceError] = []

        # -----------------------------------------------------------------
        # VALIDATING
        # -----------------------------------------------------------------
        progress.emit(WorkflowState.VALIDATING.value, "Checking your request", EventType.WORKFLOW_START)
        try:
            validated = validate_request(request)
        except ValidationError as e:
            logger.warning(f"[{request.request_id}] Validation failed: {e.message}")
            errors.append(ServiceError(
                adapter=ORCHESTRATOR_ADAPTER,
                stage=Stage.VALIDATION,
                message=e.message,
                code=ErrorCode.VALIDATION_ERROR,
                retryable=False,
            ))
            return self.aggregator.build_failed(request, history.snapshot(), errors)

        # -----------------------------------------------------------------
        # ENHANCING_TEXT
        # -----------------------------------------------------------------
        enhancer = self.adapters.text_enhancer
        progress.emit(WorkflowState.ENHANCING_TEXT.value, "Writing your marketing caption")
        enhancement = await self._run_stage(
            executor, deadline, Stage.ENHANCEMENT, enhancer.name,
            lambda: enhancer.enhance_text(validated.message, validated.category_label),
            validated.message,
            validate_output=self.config.contract.check_caption,
        )
        if not enhancement.ok:
            errors.append(enhancement.error)
            return self.aggregator.build_failed(request, history.snapshot(), errors)

        enhanced = enhancement.output
        progress.emit(Stage.ENHANCEMENT, "Caption ready", EventType.STAGE_COMPLETE, ok=True)

        # -----------------------------------------------------------------
        # TRANSLATING
        # -----------------------------------------------------------------
        translated: Optional[str] = None
        caption_language = WORKING_LANGUAGE
        if validated.needs_translation:
            translator = self.adapters.translator
            language = validated.target_language.value
            progress.emit(WorkflowState.TRANSLATING.value, f"Translating into {language.title()}")
            translation = await self._run_stage(
                executor, deadline, Stage.TRANSLATION, translator.name,
                lambda: translator.translate(enhanced, language),
                enhanced,
                validate_output=self.config.contract.check_caption,
            )
            if translation.ok:
                translated = translation.output
                caption_language = validated.target_language
                progress.emit(Stage.TRANSLATION, "Translation ready", EventType.STAGE_COMPLETE, ok=True)
            else:
                errors.append(translation.error)
                logger.warning(
                    f"[{request.request_id}] Translation failed ({translation.error.code}), "
                    f"continuing with the English caption"
                )
                progress.emit(
                    Stage.TRANSLATION,
                    "Translation unavailable, using the English caption",
                    EventType.STAGE_COMPLETE,
                    ok=False,
                )

        final_caption = translated if translated is not None else enhanced

        # -----------------------------------------------------------------
        # GENERATING_MEDIA
        # -----------------------------------------------------------------
        progress.emit(WorkflowState.GENERATING_MEDIA.value, "Creating audio, image and video")
        media_outputs = await self._generate_media(
            executor, progress, deadline, validated, final_caption, caption_language.value, errors
        )

        # -----------------------------------------------------------------
        # AGGREGATING
        # -----------------------------------------------------------------
        progress.emit(WorkflowState.AGGREGATING.value, "Packaging your content")
        content = ProcessedContent(
            original_message=request.raw_message,
            enhanced_message=enhanced,
            translated_message=translated,
            final_caption=final_caption,
        )
        return self.aggregator.build(request, history.snapshot(), media_outputs, errors, content)

    # =========================================================================
    # STAGE HELPERS
    # =========================================================================

    def _remaining(self, deadline: float) -> float:
        return deadline - self._clock()

    async def _run_stage(
        self,
        executor: StageExecutor,
        deadline: float,
        stage: str,
        adapter_name: str,
        call: Callable[[], Awaitable[Any]],
        stage_input: str,
        validate_output: Optional[Callable[[Any], Optional[str]]] = None
    ) -> StageResult:
        """Run a sequential stage bounded by the remaining budget"""
        started = time.monotonic()
        remaining = self._remaining(deadline)
        if remaining <= 0:
            return self._budget_timeout(executor, stage, adapter_name, stage_input, started)

        task = asyncio.create_task(
            executor.run(stage, adapter_name, call, stage_input, validate_output=validate_output)
        )
        done, _ = await asyncio.wait({task}, timeout=remaining)
        if task in done:
            return task.result()

        settled = await self._cancel([task])
        if task in settled:
            return settled[task]
        return self._budget_timeout(executor, stage, adapter_name, stage_input, started)

    async def _generate_media(
        self,
        executor: StageExecutor,
        progress: RequestProgress,
        deadline: float,
        validated: ValidatedRequest,
        caption: str,
        caption_language: str,
        errors: List[ServiceError]
    ) -> Dict[str, Any]:
        """Run audio, image and video concurrently against the final caption"""
        a = self.adapters
        contract = self.config.contract
        category = validated.category_label

        specs = {
            Stage.AUDIO: (a.speech.name, lambda: a.speech.synthesize_audio(caption, caption_language), contract.check_audio),
            Stage.IMAGE: (a.image.name, lambda: a.image.generate_image(caption, category), contract.check_image),
            Stage.VIDEO: (a.video.name, lambda: a.video.generate_video(caption, category), contract.check_video),
        }

        started = time.monotonic()
        outputs: Dict[str, Any] = {stage: None for stage in Stage.MEDIA}
        tasks = {
            asyncio.create_task(
                executor.run(stage, adapter_name, call, caption, validate_output=check)
            ): stage
            for stage, (adapter_name, call, check) in specs.items()
        }

        def settle(stage: str, result: StageResult) -> None:
            if result.ok:
                outputs[stage] = result.output
                progress.emit(stage, f"{stage.title()} ready", EventType.STAGE_COMPLETE, ok=True)
            else:
                errors.append(result.error)
                progress.emit(
                    stage, f"{stage.title()} failed: {result.error.code}",
                    EventType.STAGE_COMPLETE, ok=False, code=result.error.code,
                )

        pending = set(tasks)
        while pending:
            remaining = self._remaining(deadline)
            if remaining <= 0:
                break
            done, pending = await asyncio.wait(
                pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
            # Settle in Stage.MEDIA order when several finish together
            for task in sorted(done, key=lambda t: Stage.MEDIA.index(tasks[t])):
                settle(tasks[task], task.result())

        if pending:
            settled = await self._cancel(pending)
            for task in sorted(pending, key=lambda t: Stage.MEDIA.index(tasks[t])):
                stage = tasks[task]
                if task in settled:
                    settle(stage, settled[task])
                    continue
                settle(stage, self._budget_timeout(executor, stage, specs[stage][0], caption, started))

        return outputs

    def _budget_timeout(
        self,
        executor: StageExecutor,
        stage: str,
        adapter_name: str,
        stage_input: str,
        started: float
    ) -> StageResult:
        BUDGET_TIMEOUTS.labels(stage=stage).inc()
        reason = StageTimeoutError(stage, self.config.budget_seconds)
        return executor.record_budget_timeout(stage, adapter_name, stage_input, started, message=str(reason))

    @staticmethod
    async def _cancel(tasks) -> Dict[asyncio.Task, StageResult]:
        """
        Cancel still-running stage tasks and wait for them to unwind.

        Returns the tasks that managed to finish before the cancellation
        landed, with their results.
        """
        tasks = list(tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        finished = {}
        for task in tasks:
            if task.cancelled():
                continue
            if task.exception() is not None:
                raise task.exception()
            finished[task] = task.result()
        return finished

    # =========================================================================
    # HEALTH
    # =========================================================================

    def get_health(self) -> Dict[str, Any]:
        """Breaker health for every adapter this orchestrator drives"""
        return self.registry.health()


# =============================================================================
# FACTORY FUNCTION
# =============================================================================

def create_generation_orchestrator(
    config: Optional[GenerationConfig] = None,
    adapters: Optional[AdapterSet] = None,
    registry: Optional[CircuitBreakerRegistry] = None
) -> GenerationOrchestrator:
    """Factory function to create GenerationOrchestrator."""
    config = config or GenerationConfig.from_env()
    adapters = adapters or build_adapters(config)
    registry = registry or CircuitBreakerRegistry(config.circuit)
    return GenerationOrchestrator(adapters, registry=registry, config=config)
