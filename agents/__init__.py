"""
================================================================================
GENESIS - Agent Module
================================================================================
Service adapters driven by the generation orchestrator: caption enhancement,
translation, voiceover, image and video generation, plus offline stand-ins.

Author: Barrios A2I | Version: 3.0.0
================================================================================
"""

from .base import (
    AdapterError,
    AdapterSet,
    AudioOutput,
    ImageGenerator,
    ImageOutput,
    ObjectStore,
    SpeechSynthesizer,
    TextEnhancer,
    Translator,
    VideoGenerator,
    VideoOutput,
)
from .text_agents import ClaudeTextEnhancer, ClaudeTranslator
from .voiceover_agent import ElevenLabsVoiceover
from .image_generator_agent import KieImageGenerator, create_image_generator
from .video_generator_agent import KieVideoGenerator, create_video_generator
from .mock_agents import (
    InMemoryObjectStore,
    MockImageGenerator,
    MockSpeechSynthesizer,
    MockTextEnhancer,
    MockTranslator,
    MockVideoGenerator,
)

__all__ = [
    "AdapterError",
    "AdapterSet",
    "AudioOutput",
    "ImageGenerator",
    "ImageOutput",
    "ObjectStore",
    "SpeechSynthesizer",
    "TextEnhancer",
    "Translator",
    "VideoGenerator",
    "VideoOutput",
    "ClaudeTextEnhancer",
    "ClaudeTranslator",
    "ElevenLabsVoiceover",
    "KieImageGenerator",
    "KieVideoGenerator",
    "create_image_generator",
    "create_video_generator",
    "InMemoryObjectStore",
    "MockImageGenerator",
    "MockSpeechSynthesizer",
    "MockTextEnhancer",
    "MockTranslator",
    "MockVideoGenerator",
]
