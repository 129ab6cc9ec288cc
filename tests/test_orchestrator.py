"""
Tests for generation_orchestrator: the workflow state machine end to end
against scripted adapters.
"""

import time
from unittest.mock import MagicMock

import pytest

from generation_orchestrator import GenerationOrchestrator
from progress_stream import EventType, ProgressReporter
from resilience import CircuitState
from result_aggregator import AggregationError
from schemas.generation_schema import (
    ErrorCode,
    GenerationRequest,
    GenerationStatus,
    MediaKind,
    Stage,
    StepStatus,
)
from tests.conftest import DEFAULT_AUDIO, ENHANCED_CAPTION, Delay, fatal, retryable
from agents.base import AudioOutput, ImageOutput


class RecordingReporter(ProgressReporter):
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


class TestHappyPath:
    """Every adapter succeeds"""

    @pytest.mark.asyncio
    async def test_tea_stall_hindi_completes_with_three_assets(self, orchestrator, tea_stall_request):
        result = await orchestrator.run(tea_stall_request)

        assert result.status == GenerationStatus.COMPLETED
        assert result.errors == ()
        assert [a.kind for a in result.media_assets] == [MediaKind.AUDIO, MediaKind.IMAGE, MediaKind.VIDEO]

        audio = result.asset(MediaKind.AUDIO)
        image = result.asset(MediaKind.IMAGE)
        video = result.asset(MediaKind.VIDEO)
        assert 10 <= audio.duration_seconds <= 20
        assert image.width_px == image.height_px
        assert 5 <= video.duration_seconds <= 10

        content = result.processed_content
        assert content.original_message == tea_stall_request.raw_message
        assert content.enhanced_message == ENHANCED_CAPTION
        assert content.translated_message
        assert content.final_caption == content.translated_message

    @pytest.mark.asyncio
    async def test_steps_follow_stage_order(self, orchestrator, tea_stall_request):
        result = await orchestrator.run(tea_stall_request)

        stages = [s.stage for s in result.processing_steps]
        assert stages[:2] == [Stage.ENHANCEMENT, Stage.TRANSLATION]
        assert sorted(stages[2:]) == sorted(Stage.MEDIA)
        assert all(s.status == StepStatus.SUCCEEDED for s in result.processing_steps)

        timestamps = [s.timestamp for s in result.processing_steps]
        assert timestamps == sorted(timestamps)
        assert result.completed_at >= timestamps[-1]

    @pytest.mark.asyncio
    async def test_media_uses_translated_caption_and_category(self, orchestrator, fakes, tea_stall_request):
        result = await orchestrator.run(tea_stall_request)
        caption = result.processed_content.final_caption

        assert fakes.speech.script.inputs == [(caption, "hindi")]
        assert fakes.image.script.inputs == [(caption, "tea-stall")]
        assert fakes.video.script.inputs == [(caption, "tea-stall")]
        assert fakes.translator.script.inputs == [(ENHANCED_CAPTION, "hindi")]

    @pytest.mark.asyncio
    async def test_english_skips_translation(self, orchestrator, fakes, english_request):
        result = await orchestrator.run(english_request)

        assert result.status == GenerationStatus.COMPLETED
        assert fakes.translator.script.calls == 0
        assert Stage.TRANSLATION not in [s.stage for s in result.processing_steps]
        assert result.processed_content.translated_message is None
        assert result.processed_content.final_caption == ENHANCED_CAPTION

    @pytest.mark.asyncio
    async def test_custom_category_label_reaches_adapters(self, orchestrator, fakes):
        request = GenerationRequest(
            category="other",
            custom_category="Flower shop",
            raw_message="roses 50 rs a bunch",
            target_language="english",
        )
        result = await orchestrator.run(request)

        assert result.status == GenerationStatus.COMPLETED
        assert fakes.text_enhancer.script.inputs == [("roses 50 rs a bunch", "Flower shop")]

    @pytest.mark.asyncio
    async def test_media_stages_run_concurrently(self, orchestrator, fakes, english_request):
        fakes.speech.script.push(Delay(0.3))
        fakes.image.script.push(Delay(0.3))
        fakes.video.script.push(Delay(0.3))

        started = time.monotonic()
        result = await orchestrator.run(english_request)

        assert result.status == GenerationStatus.COMPLETED
        assert time.monotonic() - started < 0.8

    @pytest.mark.asyncio
    async def test_media_steps_land_in_completion_order(self, orchestrator, fakes, english_request):
        fakes.speech.script.push(Delay(0.3))
        fakes.video.script.push(Delay(0.15))

        result = await orchestrator.run(english_request)

        stages = [s.stage for s in result.processing_steps]
        assert stages == [Stage.ENHANCEMENT, Stage.IMAGE, Stage.VIDEO, Stage.AUDIO]
        # Assets are still reported in a fixed order
        assert [a.kind for a in result.media_assets] == [MediaKind.AUDIO, MediaKind.IMAGE, MediaKind.VIDEO]


class TestValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides, field_name", [
        ({"category": "spaceship"}, "category"),
        ({"raw_message": "   "}, "raw_message"),
        ({"target_language": "klingon"}, "target_language"),
        ({"category": "other"}, "custom_category"),
    ])
    async def test_invalid_request_fails_without_running_stages(self, orchestrator, fakes, overrides, field_name):
        fields = {"category": "grocery", "raw_message": "rice 40 rs/kg", "target_language": "tamil"}
        fields.update(overrides)

        result = await orchestrator.run(GenerationRequest(**fields))

        assert result.status == GenerationStatus.FAILED
        assert result.processing_steps == ()
        assert result.media_assets == ()
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.code == ErrorCode.VALIDATION_ERROR
        assert error.stage == Stage.VALIDATION
        assert error.adapter == "orchestrator"
        assert error.retryable is False
        assert field_name.split("_")[-1] in error.message
        assert fakes.text_enhancer.script.calls == 0


class TestEnhancementFailure:

    @pytest.mark.asyncio
    async def test_blank_caption_fails_workflow(self, orchestrator, fakes, registry, english_request):
        fakes.text_enhancer.script.push("   ")

        result = await orchestrator.run(english_request)

        assert result.status == GenerationStatus.FAILED
        assert fakes.text_enhancer.script.calls == 1
        assert fakes.speech.script.calls == 0
        assert fakes.video.script.calls == 0
        assert [e.code for e in result.errors] == [ErrorCode.CONTRACT_VIOLATION]
        assert result.errors[0].retryable is False
        assert result.processing_steps[0].status == StepStatus.FAILED
        assert registry.get("fake_enhancer").consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_enhancement_timing_out_three_times_fails_workflow(self, fakes, registry, config, tea_stall_request):
        config.call_timeout_seconds = 0.05
        orchestrator = GenerationOrchestrator(fakes, registry=registry, config=config)
        fakes.text_enhancer.script.push(Delay(2), Delay(2), Delay(2))

        result = await orchestrator.run(tea_stall_request)

        assert result.status == GenerationStatus.FAILED
        assert result.media_assets == ()
        assert result.processed_content.enhanced_message is None
        assert fakes.text_enhancer.script.calls == 3
        assert fakes.speech.script.calls == 0
        assert fakes.image.script.calls == 0
        assert fakes.video.script.calls == 0

        assert len(result.processing_steps) == 1
        step = result.processing_steps[0]
        assert step.stage == Stage.ENHANCEMENT
        assert step.status == StepStatus.TIMED_OUT
        assert step.attempts == 3
        assert [e.code for e in result.errors] == [ErrorCode.ADAPTER_TIMEOUT]

    @pytest.mark.asyncio
    async def test_non_retryable_enhancement_error_is_not_retried(self, orchestrator, fakes, english_request):
        fakes.text_enhancer.script.push(fatal())

        result = await orchestrator.run(english_request)

        assert result.status == GenerationStatus.FAILED
        assert fakes.text_enhancer.script.calls == 1
        assert result.errors[0].code == ErrorCode.BAD_REQUEST
        assert result.errors[0].stage == Stage.ENHANCEMENT


class TestTranslationFailure:

    @pytest.mark.asyncio
    async def test_falls_back_to_enhanced_caption(self, orchestrator, fakes, tea_stall_request):
        fakes.translator.script.push(fatal())

        result = await orchestrator.run(tea_stall_request)

        assert result.status == GenerationStatus.PARTIAL
        assert len(result.media_assets) == 3
        assert result.processed_content.translated_message is None
        assert result.processed_content.final_caption == ENHANCED_CAPTION
        assert [e.stage for e in result.errors] == [Stage.TRANSLATION]
        # Voiceover is spoken in the caption's actual language
        assert fakes.speech.script.inputs == [(ENHANCED_CAPTION, "english")]

    @pytest.mark.asyncio
    async def test_empty_translation_falls_back_to_enhanced_caption(self, orchestrator, fakes, tea_stall_request):
        fakes.translator.script.push("")

        result = await orchestrator.run(tea_stall_request)

        assert result.status == GenerationStatus.PARTIAL
        assert fakes.translator.script.calls == 1
        assert result.processed_content.translated_message is None
        assert result.processed_content.final_caption == ENHANCED_CAPTION
        assert [(e.stage, e.code) for e in result.errors] == [(Stage.TRANSLATION, ErrorCode.CONTRACT_VIOLATION)]
        assert fakes.image.script.inputs[0][0] == ENHANCED_CAPTION


class TestMediaFailure:

    @pytest.mark.asyncio
    async def test_image_failure_gives_partial_result(self, orchestrator, fakes, tea_stall_request):
        fakes.image.script.push(fatal())

        result = await orchestrator.run(tea_stall_request)

        assert result.status == GenerationStatus.PARTIAL
        assert [a.kind for a in result.media_assets] == [MediaKind.AUDIO, MediaKind.VIDEO]
        assert len(result.errors) == 1
        assert result.errors[0].stage == Stage.IMAGE
        assert result.errors[0].adapter == "fake_image"
        assert fakes.image.script.calls == 1

        image_steps = [s for s in result.processing_steps if s.stage == Stage.IMAGE]
        assert len(image_steps) == 1
        assert image_steps[0].status == StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_retryable_error_recovers_within_three_attempts(self, orchestrator, fakes, english_request):
        fakes.speech.script.push(retryable(), retryable(ErrorCode.RATE_LIMITED))

        result = await orchestrator.run(english_request)

        assert result.status == GenerationStatus.COMPLETED
        assert fakes.speech.script.calls == 3
        audio_step = next(s for s in result.processing_steps if s.stage == Stage.AUDIO)
        assert audio_step.attempts == 3

    @pytest.mark.asyncio
    async def test_retryable_error_stops_after_three_attempts(self, orchestrator, fakes, english_request):
        fakes.speech.script.push(retryable(), retryable(), retryable(), retryable())

        result = await orchestrator.run(english_request)

        assert result.status == GenerationStatus.PARTIAL
        assert fakes.speech.script.calls == 3
        assert result.errors[0].code == ErrorCode.UPSTREAM_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_contract_violation_is_recorded_and_not_retried(self, orchestrator, fakes, english_request):
        fakes.speech.script.push(AudioOutput(url=DEFAULT_AUDIO.url, duration_seconds=45.0, format="mp3"))
        fakes.image.script.push(ImageOutput(url="https://cdn.test/wide.png", width_px=1920, height_px=1080, format="png"))

        result = await orchestrator.run(english_request)

        assert result.status == GenerationStatus.PARTIAL
        assert {e.stage: e.code for e in result.errors} == {
            Stage.AUDIO: ErrorCode.CONTRACT_VIOLATION,
            Stage.IMAGE: ErrorCode.CONTRACT_VIOLATION,
        }
        assert fakes.speech.script.calls == 1
        assert fakes.image.script.calls == 1
        assert [a.kind for a in result.media_assets] == [MediaKind.VIDEO]

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_internal_error(self, orchestrator, fakes, english_request):
        fakes.video.script.push(RuntimeError("boom"))

        result = await orchestrator.run(english_request)

        assert result.status == GenerationStatus.PARTIAL
        error = result.errors_for(Stage.VIDEO)[0]
        assert error.code == ErrorCode.INTERNAL_ERROR
        assert error.retryable is False
        assert "boom" in error.message
        assert fakes.video.script.calls == 1

    @pytest.mark.asyncio
    async def test_every_media_stage_failing_is_still_partial(self, orchestrator, fakes, english_request):
        fakes.speech.script.push(fatal())
        fakes.image.script.push(fatal())
        fakes.video.script.push(fatal())

        result = await orchestrator.run(english_request)

        assert result.status == GenerationStatus.PARTIAL
        assert result.media_assets == ()
        assert result.failed_stages == sorted(Stage.MEDIA)


class TestCircuitBreaking:

    @pytest.mark.asyncio
    async def test_breaker_opens_after_five_failures_and_fails_fast(self, orchestrator, fakes, registry, english_request):
        for _ in range(5):
            fakes.video.script.push(fatal())
            result = await orchestrator.run(english_request)
            assert result.errors_for(Stage.VIDEO)[0].code == ErrorCode.BAD_REQUEST

        assert registry.get("fake_video").state == CircuitState.OPEN
        assert fakes.video.script.calls == 5

        result = await orchestrator.run(english_request)

        assert fakes.video.script.calls == 5
        error = result.errors_for(Stage.VIDEO)[0]
        assert error.code == ErrorCode.CIRCUIT_OPEN
        assert error.retryable is False
        assert result.status == GenerationStatus.PARTIAL
        # Other adapters keep their own breakers
        assert registry.get("fake_image").state == CircuitState.CLOSED
        assert result.asset(MediaKind.IMAGE) is not None

    @pytest.mark.asyncio
    async def test_open_enhancer_breaker_fails_workflow(self, orchestrator, fakes, registry, english_request):
        registry.get("fake_enhancer").force_open()

        result = await orchestrator.run(english_request)

        assert result.status == GenerationStatus.FAILED
        assert result.errors[0].code == ErrorCode.CIRCUIT_OPEN
        assert fakes.text_enhancer.script.calls == 0
        assert len(result.processing_steps) == 1


class TestTimeBudget:

    @pytest.mark.asyncio
    async def test_running_media_stage_is_cancelled_when_budget_runs_out(self, fakes, registry, config, english_request):
        config.budget_seconds = 0.3
        orchestrator = GenerationOrchestrator(fakes, registry=registry, config=config)
        fakes.video.script.push(Delay(3))

        started = time.monotonic()
        result = await orchestrator.run(english_request)

        assert time.monotonic() - started < 1.0
        assert result.status == GenerationStatus.PARTIAL
        assert [a.kind for a in result.media_assets] == [MediaKind.AUDIO, MediaKind.IMAGE]

        error = result.errors_for(Stage.VIDEO)[0]
        assert error.code == ErrorCode.TIMEOUT
        assert error.retryable is False

        video_step = next(s for s in result.processing_steps if s.stage == Stage.VIDEO)
        assert video_step.status == StepStatus.TIMED_OUT
        assert video_step.attempts == 1
        # A budget timeout is not an adapter failure
        assert registry.get("fake_video").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_budget_exhausted_during_enhancement_fails(self, fakes, registry, config, english_request):
        config.budget_seconds = 0.2
        orchestrator = GenerationOrchestrator(fakes, registry=registry, config=config)
        fakes.text_enhancer.script.push(Delay(3))

        result = await orchestrator.run(english_request)

        assert result.status == GenerationStatus.FAILED
        assert result.errors[0].code == ErrorCode.TIMEOUT
        assert result.processing_steps[0].status == StepStatus.TIMED_OUT
        assert fakes.speech.script.calls == 0

    @pytest.mark.asyncio
    async def test_budget_exhausted_during_translation_degrades(self, fakes, registry, config, tea_stall_request):
        config.budget_seconds = 0.3
        orchestrator = GenerationOrchestrator(fakes, registry=registry, config=config)
        fakes.translator.script.push(Delay(3))

        result = await orchestrator.run(tea_stall_request)

        assert result.status == GenerationStatus.PARTIAL
        assert result.processed_content.final_caption == ENHANCED_CAPTION
        error = result.errors_for(Stage.TRANSLATION)[0]
        assert error.code == ErrorCode.TIMEOUT
        assert error.retryable is False
        translation_step = next(s for s in result.processing_steps if s.stage == Stage.TRANSLATION)
        assert translation_step.status == StepStatus.TIMED_OUT
        assert registry.get("fake_translator").consecutive_failures == 0


class TestProgressEvents:

    @pytest.mark.asyncio
    async def test_events_cover_every_transition(self, orchestrator, tea_stall_request):
        reporter = RecordingReporter()

        result = await orchestrator.run(tea_stall_request, reporter)

        events = reporter.events
        assert [e.sequence for e in events] == list(range(1, len(events) + 1))
        assert all(e.request_id == tea_stall_request.request_id for e in events)
        assert events[0].event_type == EventType.WORKFLOW_START.value
        assert events[-1].event_type == EventType.WORKFLOW_COMPLETE.value
        assert events[-1].data["status"] == result.status.value

        started = [e.stage for e in events if e.event_type == EventType.STAGE_START.value]
        assert started == ["enhancing_text", "translating", "generating_media", "aggregating"]

        media_done = {e.stage for e in events if e.event_type == EventType.STAGE_COMPLETE.value} & set(Stage.MEDIA)
        assert media_done == set(Stage.MEDIA)

    @pytest.mark.asyncio
    async def test_failing_reporter_does_not_break_workflow(self, orchestrator, english_request):
        reporter = MagicMock(spec=ProgressReporter)
        reporter.publish.side_effect = RuntimeError("sink down")

        result = await orchestrator.run(english_request, reporter)

        assert result.status == GenerationStatus.COMPLETED
        assert reporter.publish.call_count > 0

    @pytest.mark.asyncio
    async def test_aggregation_error_propagates_with_error_event(self, orchestrator, english_request):
        orchestrator.aggregator = MagicMock()
        orchestrator.aggregator.build.side_effect = AggregationError("inconsistent")
        reporter = RecordingReporter()

        with pytest.raises(AggregationError):
            await orchestrator.run(english_request, reporter)

        assert reporter.events[-1].event_type == EventType.WORKFLOW_ERROR.value


class TestHealth:

    def test_health_lists_every_adapter(self, orchestrator):
        health = orchestrator.get_health()

        assert health["status"] == "healthy"
        assert set(health["circuits"]) == {
            "fake_enhancer", "fake_translator", "fake_tts", "fake_image", "fake_video"
        }
