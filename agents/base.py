"""
GENESIS Adapter Contracts
===============================================================================
Narrow interfaces to the external capabilities a generation workflow drives:
text enhancement, translation, speech, image, video and object storage.

Every adapter exposes one async operation. Success returns the typed output;
failure raises AdapterError carrying a machine code and a retryable flag.

Author: Barrios A2I
Version: 3.0.0
===============================================================================
"""

import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx

from schemas.generation_schema import ErrorCode


# =============================================================================
# ERRORS
# =============================================================================

class AdapterError(Exception):
    """Uniform failure raised by every adapter"""

    def __init__(self, code: str, message: str, retryable: bool = False,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"AdapterError(code={self.code!r}, retryable={self.retryable}, message={self.message!r})"


RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


def error_from_status(service: str, status_code: int, body: str = "") -> AdapterError:
    """Map an upstream HTTP status to an AdapterError"""
    detail = f"{service} returned {status_code}"
    if body:
        detail = f"{detail}: {body[:200]}"

    if status_code == 429:
        return AdapterError(ErrorCode.RATE_LIMITED, detail, retryable=True, status_code=status_code)
    if status_code in RETRYABLE_STATUS_CODES:
        return AdapterError(ErrorCode.UPSTREAM_UNAVAILABLE, detail, retryable=True, status_code=status_code)
    return AdapterError(ErrorCode.BAD_REQUEST, detail, retryable=False, status_code=status_code)


def error_from_httpx(service: str, exc: httpx.HTTPError) -> AdapterError:
    """Map an httpx exception to an AdapterError"""
    if isinstance(exc, httpx.HTTPStatusError):
        return error_from_status(service, exc.response.status_code, exc.response.text)
    if isinstance(exc, httpx.TimeoutException):
        return AdapterError(ErrorCode.ADAPTER_TIMEOUT, f"{service} timed out: {exc}", retryable=True)
    if isinstance(exc, httpx.TransportError):
        return AdapterError(ErrorCode.UPSTREAM_UNAVAILABLE, f"{service} unreachable: {exc}", retryable=True)
    return AdapterError(ErrorCode.ADAPTER_ERROR, f"{service} request failed: {exc}", retryable=False)


def filename_from_url(url: str, default: str = "asset") -> str:
    path = urlparse(url).path
    name = path.rsplit("/", 1)[-1] if path else ""
    return name or default


_EXTENSIONS = {
    "audio/mpeg": ".mp3",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
}


def extension_for(content_type: str) -> str:
    return _EXTENSIONS.get(content_type) or mimetypes.guess_extension(content_type) or ".bin"


# =============================================================================
# OUTPUTS
# =============================================================================

@dataclass(frozen=True)
class AudioOutput:
    url: str
    duration_seconds: float
    format: str
    size_bytes: int = 0
    filename: Optional[str] = None


@dataclass(frozen=True)
class ImageOutput:
    url: str
    width_px: int
    height_px: int
    format: str
    size_bytes: int = 0
    filename: Optional[str] = None


@dataclass(frozen=True)
class VideoOutput:
    url: str
    duration_seconds: float
    format: str
    size_bytes: int = 0
    filename: Optional[str] = None
    width_px: Optional[int] = None
    height_px: Optional[int] = None


# =============================================================================
# CONTRACTS
# =============================================================================

class TextEnhancer(ABC):
    name = "text_enhancer"

    @abstractmethod
    async def enhance_text(self, raw_message: str, category: str) -> str:
        """Rewrite a raw business message into a marketing caption"""


class Translator(ABC):
    name = "translator"

    @abstractmethod
    async def translate(self, text: str, target_language: str) -> str:
        """Translate caption text into the target language"""


class SpeechSynthesizer(ABC):
    name = "speech"

    @abstractmethod
    async def synthesize_audio(self, text: str, language: str) -> AudioOutput:
        """Produce a spoken version of the caption"""


class ImageGenerator(ABC):
    name = "image"

    @abstractmethod
    async def generate_image(self, caption: str, category: str) -> ImageOutput:
        """Produce a square promotional image"""


class VideoGenerator(ABC):
    name = "video"

    @abstractmethod
    async def generate_video(self, caption: str, category: str) -> VideoOutput:
        """Produce a short promotional clip"""


class ObjectStore(ABC):
    name = "object_store"

    @abstractmethod
    async def store(self, data: bytes, content_type: str) -> str:
        """Persist bytes and return a publicly resolvable URL"""

    def health(self) -> Dict[str, Any]:
        """Whether stored objects are actually retrievable"""
        return {"backend": self.name, "configured": True}


@dataclass
class AdapterSet:
    """The adapters one orchestrator drives"""
    text_enhancer: TextEnhancer
    translator: Translator
    speech: SpeechSynthesizer
    image: ImageGenerator
    video: VideoGenerator
