from .generation_schema import (
    BusinessCategory,
    ErrorCode,
    GenerationRequest,
    GenerationResult,
    GenerationStatus,
    MediaAsset,
    MediaKind,
    ProcessedContent,
    ProcessingStep,
    ServiceError,
    Stage,
    StepHistory,
    StepStatus,
    TargetLanguage,
    ValidatedRequest,
    ValidationError,
    validate_request,
)

__all__ = [
    "BusinessCategory",
    "ErrorCode",
    "GenerationRequest",
    "GenerationResult",
    "GenerationStatus",
    "MediaAsset",
    "MediaKind",
    "ProcessedContent",
    "ProcessingStep",
    "ServiceError",
    "Stage",
    "StepHistory",
    "StepStatus",
    "TargetLanguage",
    "ValidatedRequest",
    "ValidationError",
    "validate_request",
]
