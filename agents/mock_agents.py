"""
GENESIS Offline Agents
===============================================================================
Deterministic stand-ins for every external capability. Used when
GENESIS_USE_MOCK_ADAPTERS=1 (local development, demos) and by the tests.

Outputs are derived from the inputs only, so the same request always yields
the same caption and asset metadata.

Author: Barrios A2I
Version: 3.0.0
===============================================================================
"""

import asyncio
import hashlib
import logging
from typing import Dict

from agents.base import (
    AudioOutput,
    ImageGenerator,
    ImageOutput,
    ObjectStore,
    SpeechSynthesizer,
    TextEnhancer,
    Translator,
    VideoGenerator,
    VideoOutput,
    extension_for,
    filename_from_url,
)

logger = logging.getLogger("genesis.mock_agents")


def _digest(*parts: str) -> str:
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:16]


class InMemoryObjectStore(ObjectStore):
    """Keeps uploaded bytes in a dict keyed by URL"""

    name = "memory_storage"

    def __init__(self, base_url: str = "memory://genesis-assets"):
        self.base_url = base_url.rstrip("/")
        self.objects: Dict[str, bytes] = {}

    async def store(self, data: bytes, content_type: str) -> str:
        key = hashlib.sha256(data).hexdigest()[:24] + extension_for(content_type)
        url = f"{self.base_url}/{key}"
        self.objects[url] = data
        return url


class MockTextEnhancer(TextEnhancer):
    name = "mock_enhancer"

    async def enhance_text(self, raw_message: str, category: str) -> str:
        await asyncio.sleep(0)
        return f"Visit our {category}! {raw_message.strip()} Come today and enjoy the best in town."


class MockTranslator(Translator):
    name = "mock_translator"

    async def translate(self, text: str, target_language: str) -> str:
        await asyncio.sleep(0)
        return f"[{target_language}] {text}"


class MockSpeechSynthesizer(SpeechSynthesizer):
    name = "mock_tts"

    def __init__(self, object_store: ObjectStore, duration_seconds: float = 15.0):
        self.object_store = object_store
        self.duration_seconds = duration_seconds

    async def synthesize_audio(self, text: str, language: str) -> AudioOutput:
        data = f"ID3-mock-audio-{_digest(text, language)}".encode("utf-8")
        url = await self.object_store.store(data, "audio/mpeg")
        return AudioOutput(
            url=url,
            duration_seconds=self.duration_seconds,
            format="mp3",
            size_bytes=len(data),
            filename=filename_from_url(url, "voiceover.mp3"),
        )


class MockImageGenerator(ImageGenerator):
    name = "mock_image"

    def __init__(self, object_store: ObjectStore, size_px: int = 1024):
        self.object_store = object_store
        self.size_px = size_px

    async def generate_image(self, caption: str, category: str) -> ImageOutput:
        data = f"PNG-mock-image-{_digest(caption, category)}".encode("utf-8")
        url = await self.object_store.store(data, "image/png")
        return ImageOutput(
            url=url,
            width_px=self.size_px,
            height_px=self.size_px,
            format="png",
            size_bytes=len(data),
            filename=filename_from_url(url, "poster.png"),
        )


class MockVideoGenerator(VideoGenerator):
    name = "mock_video"

    def __init__(self, object_store: ObjectStore, duration_seconds: float = 8.0):
        self.object_store = object_store
        self.duration_seconds = duration_seconds

    async def generate_video(self, caption: str, category: str) -> VideoOutput:
        data = f"MP4-mock-video-{_digest(caption, category)}".encode("utf-8")
        url = await self.object_store.store(data, "video/mp4")
        return VideoOutput(
            url=url,
            duration_seconds=self.duration_seconds,
            format="mp4",
            size_bytes=len(data),
            filename=filename_from_url(url, "promo.mp4"),
            width_px=1280,
            height_px=720,
        )
