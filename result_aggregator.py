"""
GENESIS Result Aggregator
===============================================================================
Folds stage outcomes into the terminal GenerationResult.

Status rule:
    completed  enhancement ok, translation ok or skipped, audio+image+video ok
    failed     validation or enhancement failed
    partial    everything else

Author: Barrios A2I
Version: 3.0.0
===============================================================================
"""

import logging
from typing import Any, Iterable, Mapping, Optional, Tuple

from agents.base import filename_from_url
from schemas.generation_schema import (
    MEDIA_STAGE_KINDS,
    GenerationRequest,
    GenerationResult,
    GenerationStatus,
    MediaAsset,
    MediaKind,
    ProcessedContent,
    ProcessingStep,
    ServiceError,
    Stage,
    utc_now,
)

logger = logging.getLogger("genesis.aggregator")

_KIND_ORDER = {MediaKind.AUDIO: 0, MediaKind.IMAGE: 1, MediaKind.VIDEO: 2}

_DEFAULT_FILENAMES = {
    MediaKind.AUDIO: "voiceover.mp3",
    MediaKind.IMAGE: "poster.png",
    MediaKind.VIDEO: "promo.mp4",
}


class AggregationError(Exception):
    """Stage outcomes cannot form a consistent result"""


def _filename(kind: MediaKind, output: Any) -> str:
    name = getattr(output, "filename", None)
    if name:
        return name
    return filename_from_url(output.url or "", _DEFAULT_FILENAMES[kind])


def media_asset(kind: MediaKind, output: Any) -> MediaAsset:
    """Build the public asset record from an adapter output"""
    return MediaAsset(
        kind=kind,
        url=output.url,
        filename=_filename(kind, output),
        size_bytes=getattr(output, "size_bytes", 0) or 0,
        format=output.format,
        duration_seconds=getattr(output, "duration_seconds", None),
        width_px=getattr(output, "width_px", None),
        height_px=getattr(output, "height_px", None),
    )


class ResultAggregator:
    """Stateless; one instance can serve every request"""

    def build(
        self,
        request: GenerationRequest,
        steps: Iterable[ProcessingStep],
        media_outcomes: Mapping[str, Optional[Any]],
        errors: Iterable[ServiceError],
        processed_text: ProcessedContent
    ) -> GenerationResult:
        """
        Build a completed or partial result.

        media_outcomes maps each media stage name to its adapter output, or
        None when the stage did not succeed.
        """
        if not processed_text.enhanced_message:
            raise AggregationError(
                f"Request {request.request_id}: cannot build a non-failed result without enhanced text"
            )

        errors = tuple(errors)
        unknown = set(media_outcomes) - set(MEDIA_STAGE_KINDS)
        if unknown:
            raise AggregationError(f"Unknown media stages: {sorted(unknown)}")

        assets = []
        for stage_name, output in media_outcomes.items():
            if output is None:
                continue
            assets.append(media_asset(MEDIA_STAGE_KINDS[stage_name], output))
        assets.sort(key=lambda a: _KIND_ORDER[a.kind])

        produced = {a.kind for a in assets}
        translation_failed = any(e.stage == Stage.TRANSLATION for e in errors)
        media_failed = any(e.stage in Stage.MEDIA for e in errors)

        if produced == set(MediaKind) and not translation_failed and not media_failed:
            status = GenerationStatus.COMPLETED
        else:
            status = GenerationStatus.PARTIAL

        result = self._assemble(request, processed_text, tuple(assets), tuple(steps), status, errors)
        logger.info(
            f"[Aggregator] {request.request_id}: {status.value} "
            f"({len(assets)} assets, {len(errors)} errors)"
        )
        return result

    def build_failed(
        self,
        request: GenerationRequest,
        steps: Iterable[ProcessingStep],
        errors: Iterable[ServiceError]
    ) -> GenerationResult:
        """Build the failed shape: no media, no enhanced text"""
        errors = tuple(errors)
        if not errors:
            raise AggregationError(f"Request {request.request_id}: failed result needs at least one error")

        content = ProcessedContent(original_message=request.raw_message)
        result = self._assemble(request, content, (), tuple(steps), GenerationStatus.FAILED, errors)
        logger.info(f"[Aggregator] {request.request_id}: failed ({errors[0].code})")
        return result

    @staticmethod
    def _assemble(
        request: GenerationRequest,
        content: ProcessedContent,
        assets: Tuple[MediaAsset, ...],
        steps: Tuple[ProcessingStep, ...],
        status: GenerationStatus,
        errors: Tuple[ServiceError, ...]
    ) -> GenerationResult:
        completed_at = utc_now()
        if steps and steps[-1].timestamp > completed_at:
            completed_at = steps[-1].timestamp
        return GenerationResult(
            request=request,
            processed_content=content,
            media_assets=assets,
            processing_steps=steps,
            status=status,
            errors=errors,
            created_at=request.created_at,
            completed_at=completed_at,
        )
