"""
Tests for stage_executor: one step per stage, error classification, per-call
timeout and output contract checks.
"""

import asyncio

import pytest

from agents.base import AdapterError, VideoOutput
from generation_config import MediaContract
from resilience import CircuitBreakerRegistry, CircuitConfig, ResilientCaller, RetryPolicy
from schemas.generation_schema import ErrorCode, StepHistory, StepStatus
from stage_executor import StageExecutor, describe_output


class Calls:
    """Adapter call factory that plays back outcomes in order"""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.count = 0

    def __call__(self):
        return self._next()

    async def _next(self):
        self.count += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, float):
            await asyncio.sleep(outcome)
            return "late"
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def registry():
    return CircuitBreakerRegistry(CircuitConfig(failure_threshold=5, cool_down_seconds=60.0))


@pytest.fixture
def history():
    return StepHistory()


@pytest.fixture
def executor(registry, history):
    caller = ResilientCaller(registry, RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False), sleep=no_sleep)
    return StageExecutor(caller, history, call_timeout_seconds=0.1, request_id="gen-test")


class TestSuccess:

    @pytest.mark.asyncio
    async def test_success_records_one_step(self, executor, history):
        result = await executor.run("enhancement", "fake_enhancer", Calls("Fresh bread daily!"), "bread")

        assert result.ok
        assert result.output == "Fresh bread daily!"
        assert result.error is None
        assert result.attempts == 1
        assert len(history) == 1
        step = history.snapshot()[0]
        assert step.status == StepStatus.SUCCEEDED
        assert step.adapter == "fake_enhancer"
        assert step.input_snippet == "bread"
        assert step.output_snippet == "Fresh bread daily!"

    @pytest.mark.asyncio
    async def test_long_input_is_snipped(self, executor, history):
        await executor.run("enhancement", "fake_enhancer", Calls("ok"), "word " * 100)

        snippet = history.snapshot()[0].input_snippet
        assert len(snippet) <= 120
        assert snippet.endswith("...")


class TestFailures:

    @pytest.mark.asyncio
    async def test_retryable_failures_count_attempts(self, executor, history):
        calls = Calls(
            AdapterError(ErrorCode.RATE_LIMITED, "slow down", retryable=True),
            AdapterError(ErrorCode.RATE_LIMITED, "slow down", retryable=True),
            "done",
        )

        result = await executor.run("translation", "fake_translator", calls, "hello")

        assert result.ok
        assert calls.count == 3
        assert history.snapshot()[0].attempts == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_give_one_error(self, executor, history):
        calls = Calls(AdapterError(ErrorCode.UPSTREAM_UNAVAILABLE, "503", retryable=True))

        result = await executor.run("audio", "fake_tts", calls, "caption")

        assert not result.ok
        assert calls.count == 3
        assert result.error.code == ErrorCode.UPSTREAM_UNAVAILABLE
        assert result.error.retryable is True
        assert result.error.stage == "audio"
        assert result.error.adapter == "fake_tts"
        assert len(history) == 1
        assert history.snapshot()[0].status == StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_per_call_timeout_is_retryable_and_marks_step_timed_out(self, executor, history):
        calls = Calls(1.0)

        result = await executor.run("enhancement", "fake_enhancer", calls, "chai")

        assert not result.ok
        assert calls.count == 3
        assert result.error.code == ErrorCode.ADAPTER_TIMEOUT
        step = history.snapshot()[0]
        assert step.status == StepStatus.TIMED_OUT
        assert step.attempts == 3

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_internal_error(self, executor):
        calls = Calls(KeyError("url"))

        result = await executor.run("image", "fake_image", calls, "caption")

        assert result.error.code == ErrorCode.INTERNAL_ERROR
        assert result.error.retryable is False
        assert result.error.message.startswith("KeyError")
        assert calls.count == 1

    @pytest.mark.asyncio
    async def test_contract_violation_is_not_retried(self, executor, registry):
        bad_clip = VideoOutput(url="https://cdn.test/long.mp4", duration_seconds=30.0, format="mp4")
        calls = Calls(bad_clip)

        result = await executor.run(
            "video", "fake_video", calls, "caption", validate_output=MediaContract().check_video
        )

        assert result.error.code == ErrorCode.CONTRACT_VIOLATION
        assert "30.0s" in result.error.message
        assert calls.count == 1
        assert registry.get("fake_video").consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_open_circuit_is_reported_without_calling(self, executor, registry, history):
        registry.get("fake_image").force_open()
        calls = Calls("never")

        result = await executor.run("image", "fake_image", calls, "caption")

        assert result.error.code == ErrorCode.CIRCUIT_OPEN
        assert calls.count == 0
        assert history.snapshot()[0].attempts == 0
        assert history.snapshot()[0].status == StepStatus.FAILED


class TestBudgetTimeout:

    def test_record_budget_timeout(self, executor, history):
        result = executor.record_budget_timeout("video", "fake_video", "caption", started=0.0)

        assert not result.ok
        assert result.error.code == ErrorCode.TIMEOUT
        assert result.error.retryable is False
        assert history.snapshot()[0].status == StepStatus.TIMED_OUT


class TestDescribeOutput:

    def test_text_and_media(self):
        clip = VideoOutput(url="https://cdn.test/a.mp4", duration_seconds=8.0, format="mp4")

        assert describe_output("caption") == "caption"
        assert describe_output(clip) == "https://cdn.test/a.mp4"
