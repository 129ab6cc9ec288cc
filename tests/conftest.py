"""
Shared fixtures: scripted fake adapters and a fast configuration.

Each fake adapter pops its next outcome from a script. An outcome is either a
value to return, an exception to raise, or a Delay wrapping one of those.
When the script is empty the adapter returns its default output.
"""

import asyncio
from typing import Any, List

import pytest

from agents.base import (
    AdapterError,
    AdapterSet,
    AudioOutput,
    ImageGenerator,
    ImageOutput,
    SpeechSynthesizer,
    TextEnhancer,
    Translator,
    VideoGenerator,
    VideoOutput,
)
from generation_config import GenerationConfig
from generation_orchestrator import GenerationOrchestrator
from resilience import CircuitBreakerRegistry, CircuitConfig, RetryPolicy
from schemas.generation_schema import ErrorCode, GenerationRequest


class Delay:
    def __init__(self, seconds: float, then: Any = None):
        self.seconds = seconds
        self.then = then


class Script:
    def __init__(self, default: Any):
        self.default = default
        self.outcomes: List[Any] = []
        self.calls = 0
        self.inputs: List[tuple] = []

    def push(self, *outcomes: Any) -> "Script":
        self.outcomes.extend(outcomes)
        return self

    async def next(self, *inputs: Any) -> Any:
        self.calls += 1
        self.inputs.append(inputs)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Delay):
            await asyncio.sleep(outcome.seconds)
            outcome = outcome.then if outcome.then is not None else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


ENHANCED_CAPTION = "Hot masala chai served fresh from 6 am to 10 pm every day. Stop by for a warm cup!"

DEFAULT_AUDIO = AudioOutput(
    url="https://cdn.test/generations/voice.mp3", duration_seconds=15.0, format="mp3", size_bytes=240000
)
DEFAULT_IMAGE = ImageOutput(
    url="https://cdn.test/generations/poster.png", width_px=1024, height_px=1024, format="png", size_bytes=512000
)
DEFAULT_VIDEO = VideoOutput(
    url="https://cdn.test/generations/promo.mp4", duration_seconds=8.0, format="mp4", size_bytes=4000000
)


class FakeEnhancer(TextEnhancer):
    name = "fake_enhancer"

    def __init__(self):
        self.script = Script(ENHANCED_CAPTION)

    async def enhance_text(self, raw_message: str, category: str) -> str:
        return await self.script.next(raw_message, category)


class FakeTranslator(Translator):
    name = "fake_translator"

    def __init__(self):
        self.script = Script("गरम मसाला चाय सुबह 6 बजे से रात 10 बजे तक")

    async def translate(self, text: str, target_language: str) -> str:
        return await self.script.next(text, target_language)


class FakeSpeech(SpeechSynthesizer):
    name = "fake_tts"

    def __init__(self):
        self.script = Script(DEFAULT_AUDIO)

    async def synthesize_audio(self, text: str, language: str) -> AudioOutput:
        return await self.script.next(text, language)


class FakeImage(ImageGenerator):
    name = "fake_image"

    def __init__(self):
        self.script = Script(DEFAULT_IMAGE)

    async def generate_image(self, caption: str, category: str) -> ImageOutput:
        return await self.script.next(caption, category)


class FakeVideo(VideoGenerator):
    name = "fake_video"

    def __init__(self):
        self.script = Script(DEFAULT_VIDEO)

    async def generate_video(self, caption: str, category: str) -> VideoOutput:
        return await self.script.next(caption, category)


def retryable(code: str = ErrorCode.UPSTREAM_UNAVAILABLE) -> AdapterError:
    return AdapterError(code, f"transient {code}", retryable=True)


def fatal(code: str = ErrorCode.BAD_REQUEST) -> AdapterError:
    return AdapterError(code, f"permanent {code}", retryable=False)


@pytest.fixture
def fakes():
    return AdapterSet(
        text_enhancer=FakeEnhancer(),
        translator=FakeTranslator(),
        speech=FakeSpeech(),
        image=FakeImage(),
        video=FakeVideo(),
    )


@pytest.fixture
def config():
    return GenerationConfig(
        budget_seconds=5.0,
        call_timeout_seconds=1.0,
        max_queue_depth=2,
        retry=RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False),
        circuit=CircuitConfig(failure_threshold=5, cool_down_seconds=60.0),
    )


@pytest.fixture
def registry(config):
    return CircuitBreakerRegistry(config.circuit)


@pytest.fixture
def orchestrator(fakes, registry, config):
    return GenerationOrchestrator(fakes, registry=registry, config=config)


@pytest.fixture
def tea_stall_request():
    return GenerationRequest(
        category="tea-stall",
        raw_message="chai garam milta hai subah 6 se raat 10 tak",
        target_language="hindi",
    )


@pytest.fixture
def english_request():
    return GenerationRequest(
        category="bakery",
        raw_message="fresh bread and cakes daily, 20% off on birthdays",
        target_language="english",
    )
