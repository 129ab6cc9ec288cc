"""
GENESIS Generation Config
===============================================================================
Tunables for one orchestrator instance: time budget, retry policy, breaker
thresholds, sequencer capacity and the media contracts adapters must honor.

GenerationConfig.from_env() reads GENESIS_* variables (and a .env file when
present); build_adapters() wires real or offline agents.

Author: Barrios A2I
Version: 3.0.0
===============================================================================
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from agents.base import AdapterSet, AudioOutput, ImageOutput, ObjectStore, VideoOutput
from resilience import CircuitConfig, RetryPolicy

logger = logging.getLogger("genesis.config")


# =============================================================================
# MEDIA CONTRACTS
# =============================================================================

@dataclass
class MediaContract:
    """Bounds every adapter output must satisfy"""
    audio_formats: Tuple[str, ...] = ("mp3",)
    audio_min_seconds: float = 10.0
    audio_max_seconds: float = 20.0
    image_require_square: bool = True
    video_formats: Tuple[str, ...] = ("mp4",)
    video_min_seconds: float = 5.0
    video_max_seconds: float = 10.0

    def check_caption(self, text: str) -> Optional[str]:
        """Return a violation message, or None when the output is acceptable"""
        if not isinstance(text, str) or not text.strip():
            return "caption is empty"
        return None

    def check_audio(self, output: AudioOutput) -> Optional[str]:
        if not output.url:
            return "audio output has no url"
        if output.format.lower() not in self.audio_formats:
            return f"audio format '{output.format}' not in {list(self.audio_formats)}"
        if not self.audio_min_seconds <= output.duration_seconds <= self.audio_max_seconds:
            return (
                f"audio duration {output.duration_seconds:.1f}s outside "
                f"{self.audio_min_seconds:.0f}-{self.audio_max_seconds:.0f}s"
            )
        return None

    def check_image(self, output: ImageOutput) -> Optional[str]:
        if not output.url:
            return "image output has no url"
        if output.width_px <= 0 or output.height_px <= 0:
            return f"image has invalid dimensions {output.width_px}x{output.height_px}"
        if self.image_require_square and output.width_px != output.height_px:
            return f"image is not square ({output.width_px}x{output.height_px})"
        return None

    def check_video(self, output: VideoOutput) -> Optional[str]:
        if not output.url:
            return "video output has no url"
        if output.format.lower() not in self.video_formats:
            return f"video format '{output.format}' not in {list(self.video_formats)}"
        if not self.video_min_seconds <= output.duration_seconds <= self.video_max_seconds:
            return (
                f"video duration {output.duration_seconds:.1f}s outside "
                f"{self.video_min_seconds:.0f}-{self.video_max_seconds:.0f}s"
            )
        return None


# =============================================================================
# CONFIG
# =============================================================================

def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"[Config] {name}={raw!r} is not a number, using {default}")
        return default


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    return int(_env_float(env, name, default))


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class GenerationConfig:
    budget_seconds: float = 110.0           # Wall clock for one whole workflow
    call_timeout_seconds: float = 100.0     # Per adapter attempt
    max_queue_depth: int = 8                # Requests allowed to wait for the slot
    max_tracked_requests: int = 100         # Progress logs kept for replay
    use_mock_adapters: bool = False
    log_level: str = "INFO"
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    circuit: CircuitConfig = field(default_factory=CircuitConfig)
    contract: MediaContract = field(default_factory=MediaContract)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None,
                 dotenv_path: Optional[str] = None) -> "GenerationConfig":
        """Build config from environment variables"""
        if env is None:
            load_dotenv(dotenv_path)
            env = os.environ

        defaults = cls()
        retry = RetryPolicy(
            max_attempts=_env_int(env, "GENESIS_RETRY_MAX_ATTEMPTS", defaults.retry.max_attempts),
            base_delay=_env_float(env, "GENESIS_RETRY_BASE_DELAY", defaults.retry.base_delay),
            max_delay=_env_float(env, "GENESIS_RETRY_MAX_DELAY", defaults.retry.max_delay),
        )
        circuit = CircuitConfig(
            failure_threshold=_env_int(
                env, "GENESIS_CIRCUIT_FAILURE_THRESHOLD", defaults.circuit.failure_threshold
            ),
            cool_down_seconds=_env_float(
                env, "GENESIS_CIRCUIT_COOL_DOWN_SECONDS", defaults.circuit.cool_down_seconds
            ),
        )

        config = cls(
            budget_seconds=_env_float(env, "GENESIS_BUDGET_SECONDS", defaults.budget_seconds),
            call_timeout_seconds=_env_float(
                env, "GENESIS_CALL_TIMEOUT_SECONDS", defaults.call_timeout_seconds
            ),
            max_queue_depth=_env_int(env, "GENESIS_MAX_QUEUE_DEPTH", defaults.max_queue_depth),
            use_mock_adapters=_env_bool(env, "GENESIS_USE_MOCK_ADAPTERS", defaults.use_mock_adapters),
            log_level=env.get("GENESIS_LOG_LEVEL", defaults.log_level).upper(),
            retry=retry,
            circuit=circuit,
        )
        config.validate()
        return config

    def validate(self) -> None:
        if self.budget_seconds <= 0:
            raise ValueError("budget_seconds must be positive")
        if self.call_timeout_seconds <= 0:
            raise ValueError("call_timeout_seconds must be positive")
        if self.max_queue_depth < 0:
            raise ValueError("max_queue_depth must not be negative")
        if self.retry.max_attempts < 1:
            raise ValueError("retry.max_attempts must be at least 1")
        if self.circuit.failure_threshold < 1:
            raise ValueError("circuit.failure_threshold must be at least 1")

    def summary(self) -> dict:
        return {
            "budget_seconds": self.budget_seconds,
            "call_timeout_seconds": self.call_timeout_seconds,
            "max_queue_depth": self.max_queue_depth,
            "retry_max_attempts": self.retry.max_attempts,
            "circuit_failure_threshold": self.circuit.failure_threshold,
            "circuit_cool_down_seconds": self.circuit.cool_down_seconds,
            "use_mock_adapters": self.use_mock_adapters,
        }


# =============================================================================
# ADAPTER WIRING
# =============================================================================

def build_adapters(config: GenerationConfig,
                   object_store: Optional[ObjectStore] = None) -> AdapterSet:
    """Create the adapter set for this deployment"""
    if config.use_mock_adapters:
        from agents.mock_agents import (
            InMemoryObjectStore,
            MockImageGenerator,
            MockSpeechSynthesizer,
            MockTextEnhancer,
            MockTranslator,
            MockVideoGenerator,
        )

        store = object_store or InMemoryObjectStore()
        logger.info("[Config] Using offline mock adapters")
        return AdapterSet(
            text_enhancer=MockTextEnhancer(),
            translator=MockTranslator(),
            speech=MockSpeechSynthesizer(store),
            image=MockImageGenerator(store),
            video=MockVideoGenerator(store),
        )

    from agents.image_generator_agent import KieImageGenerator
    from agents.text_agents import ClaudeTextEnhancer, ClaudeTranslator
    from agents.video_generator_agent import KieVideoGenerator
    from agents.voiceover_agent import ElevenLabsVoiceover
    from storage.r2_storage import R2ObjectStore

    store = object_store or R2ObjectStore()
    return AdapterSet(
        text_enhancer=ClaudeTextEnhancer(),
        translator=ClaudeTranslator(),
        speech=ElevenLabsVoiceover(store),
        image=KieImageGenerator(store),
        video=KieVideoGenerator(store),
    )
