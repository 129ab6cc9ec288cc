"""
================================================================================
GENERATION SCHEMA - Data Models for Marketing Content Generation
================================================================================
Records that flow through one generation workflow: the caller's request, the
per-stage history, adapter failures, produced media and the terminal result.

Author: Barrios A2I | 2026-10-18
================================================================================
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


SNIPPET_LENGTH = 120
MAX_MESSAGE_LENGTH = 2000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def snippet(text: Optional[str], limit: int = SNIPPET_LENGTH) -> str:
    """Shorten text for step history entries"""
    if not text:
        return ""
    text = " ".join(str(text).split())
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


# =============================================================================
# ENUMS
# =============================================================================

class BusinessCategory(Enum):
    """Business verticals accepted by the intake form"""
    TEA_STALL = "tea-stall"
    GROCERY = "grocery"
    RESTAURANT = "restaurant"
    BAKERY = "bakery"
    SALON = "salon"
    TAILOR = "tailor"
    MOBILE_REPAIR = "mobile-repair"
    CLOTHING = "clothing"
    PHARMACY = "pharmacy"
    OTHER = "other"       # Requires custom_category text


class TargetLanguage(Enum):
    """Languages the caption can be delivered in"""
    ENGLISH = "english"
    HINDI = "hindi"
    BENGALI = "bengali"
    TAMIL = "tamil"
    TELUGU = "telugu"
    MARATHI = "marathi"
    GUJARATI = "gujarati"
    KANNADA = "kannada"
    MALAYALAM = "malayalam"
    PUNJABI = "punjabi"


# Enhanced text is always produced in this language
WORKING_LANGUAGE = TargetLanguage.ENGLISH


class MediaKind(Enum):
    AUDIO = "audio"
    IMAGE = "image"
    VIDEO = "video"


class StepStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class GenerationStatus(Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class Stage:
    """Stage names used in steps, errors and progress events"""
    VALIDATION = "validation"
    ENHANCEMENT = "enhancement"
    TRANSLATION = "translation"
    AUDIO = "audio"
    IMAGE = "image"
    VIDEO = "video"

    MEDIA = (AUDIO, IMAGE, VIDEO)


MEDIA_STAGE_KINDS = {
    Stage.AUDIO: MediaKind.AUDIO,
    Stage.IMAGE: MediaKind.IMAGE,
    Stage.VIDEO: MediaKind.VIDEO,
}


class ErrorCode:
    """Machine codes carried by ServiceError"""
    VALIDATION_ERROR = "validation_error"
    ADAPTER_ERROR = "adapter_error"
    ADAPTER_TIMEOUT = "adapter_timeout"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    BAD_REQUEST = "bad_request"
    EMPTY_OUTPUT = "empty_output"
    CONTRACT_VIOLATION = "contract_violation"
    CIRCUIT_OPEN = "circuit_open"
    TIMEOUT = "timeout"
    INTERNAL_ERROR = "internal_error"
    CAPACITY = "capacity"


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(Exception):
    """Raised when a request is missing or has an invalid required field"""

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field_name = field_name


@dataclass(frozen=True)
class GenerationRequest:
    """
    One submission from the intake form.

    Values are kept exactly as the caller sent them; the orchestrator's
    validating state turns them into a ValidatedRequest.
    """
    category: str
    raw_message: str
    target_language: str
    custom_category: Optional[str] = None
    request_id: str = field(default_factory=lambda: f"gen-{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "category": self.category,
            "custom_category": self.custom_category,
            "raw_message": self.raw_message,
            "target_language": self.target_language,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ValidatedRequest:
    request: GenerationRequest
    category: BusinessCategory
    target_language: TargetLanguage
    message: str
    category_label: str

    @property
    def needs_translation(self) -> bool:
        return self.target_language != WORKING_LANGUAGE


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower().replace("_", "-")


def validate_request(request: GenerationRequest) -> ValidatedRequest:
    """Check required fields and enumerated values; raises ValidationError"""
    message = (request.raw_message or "").strip()
    if not message:
        raise ValidationError("raw_message must not be empty", "raw_message")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"raw_message exceeds {MAX_MESSAGE_LENGTH} characters", "raw_message"
        )

    try:
        category = BusinessCategory(_normalize(request.category))
    except ValueError:
        allowed = ", ".join(c.value for c in BusinessCategory)
        raise ValidationError(
            f"Unknown category '{request.category}' (expected one of: {allowed})",
            "category",
        ) from None

    category_label = category.value
    if category == BusinessCategory.OTHER:
        custom = (request.custom_category or "").strip()
        if not custom:
            raise ValidationError(
                "custom_category is required when category is 'other'", "custom_category"
            )
        category_label = custom

    try:
        language = TargetLanguage((request.target_language or "").strip().lower())
    except ValueError:
        allowed = ", ".join(lang.value for lang in TargetLanguage)
        raise ValidationError(
            f"Unknown target_language '{request.target_language}' (expected one of: {allowed})",
            "target_language",
        ) from None

    return ValidatedRequest(
        request=request,
        category=category,
        target_language=language,
        message=message,
        category_label=category_label,
    )


# =============================================================================
# STAGE RECORDS
# =============================================================================

@dataclass(frozen=True)
class ProcessingStep:
    """Append-only record of one stage execution"""
    stage: str
    adapter: str
    input_snippet: str
    output_snippet: str
    status: StepStatus
    attempts: int = 1
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "adapter": self.adapter,
            "input_snippet": self.input_snippet,
            "output_snippet": self.output_snippet,
            "status": self.status.value,
            "attempts": self.attempts,
            "duration_ms": round(self.duration_ms, 1),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ServiceError:
    """Terminal failure of one stage, tagged with stage and adapter"""
    adapter: str
    stage: str
    message: str
    code: str
    retryable: bool
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "adapter": self.adapter,
            "stage": self.stage,
            "message": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
        }


class StepHistory:
    """
    Ordered step sequence owned by the orchestrator for one request.

    Steps are appended as stages finish; concurrent media stages land in
    completion order. Nothing is ever removed.
    """

    def __init__(self):
        self._steps: List[ProcessingStep] = []

    def append(self, step: ProcessingStep) -> None:
        if self._steps and step.timestamp < self._steps[-1].timestamp:
            # Wall clock stepped backwards; keep the sequence non-decreasing
            step = ProcessingStep(
                stage=step.stage,
                adapter=step.adapter,
                input_snippet=step.input_snippet,
                output_snippet=step.output_snippet,
                status=step.status,
                attempts=step.attempts,
                duration_ms=step.duration_ms,
                timestamp=self._steps[-1].timestamp,
            )
        self._steps.append(step)

    def snapshot(self) -> Tuple[ProcessingStep, ...]:
        return tuple(self._steps)

    def __len__(self) -> int:
        return len(self._steps)


# =============================================================================
# RESULT RECORDS
# =============================================================================

@dataclass(frozen=True)
class MediaAsset:
    kind: MediaKind
    url: str
    filename: str
    size_bytes: int
    format: str
    duration_seconds: Optional[float] = None
    width_px: Optional[int] = None
    height_px: Optional[int] = None
    generated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "url": self.url,
            "filename": self.filename,
            "size_bytes": self.size_bytes,
            "format": self.format,
            "duration_seconds": self.duration_seconds,
            "width_px": self.width_px,
            "height_px": self.height_px,
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass(frozen=True)
class ProcessedContent:
    original_message: str
    enhanced_message: Optional[str] = None
    translated_message: Optional[str] = None
    final_caption: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_message": self.original_message,
            "enhanced_message": self.enhanced_message,
            "translated_message": self.translated_message,
            "final_caption": self.final_caption,
        }


@dataclass(frozen=True)
class GenerationResult:
    """Terminal artifact for one request; same shape for every outcome"""
    request: GenerationRequest
    processed_content: ProcessedContent
    media_assets: Tuple[MediaAsset, ...]
    processing_steps: Tuple[ProcessingStep, ...]
    status: GenerationStatus
    errors: Tuple[ServiceError, ...]
    created_at: datetime
    completed_at: datetime

    def asset(self, kind: MediaKind) -> Optional[MediaAsset]:
        for asset in self.media_assets:
            if asset.kind == kind:
                return asset
        return None

    def errors_for(self, stage: str) -> List[ServiceError]:
        return [e for e in self.errors if e.stage == stage]

    @property
    def failed_stages(self) -> List[str]:
        return sorted({e.stage for e in self.errors})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request.request_id,
            "request": self.request.to_dict(),
            "status": self.status.value,
            "processed_content": self.processed_content.to_dict(),
            "media_assets": [a.to_dict() for a in self.media_assets],
            "processing_steps": [s.to_dict() for s in self.processing_steps],
            "errors": [e.to_dict() for e in self.errors],
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": round(
                (self.completed_at - self.created_at).total_seconds(), 3
            ),
        }
