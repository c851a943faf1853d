"""End-to-end lab report processing: upload, read, extract, reconcile."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional, Tuple

from labsync import config
from labsync.schemas.upload import (
    TrackedFile,
    UploadConstraints,
    UploadError,
    UploadErrorCode,
    UploadSource,
)
from labsync.services.marker_extraction import MarkerExtractionClient
from labsync.services.reconciler import ReconciledExtraction, reconcile
from labsync.services.text_extraction import extract_text_from_bytes
from labsync.services.upload_engine import ChunkedUploadEngine
from labsync.utils.errors import classify_error

logger = logging.getLogger("labsync")

TextExtractor = Callable[[bytes, str, str], Tuple[str, str]]


def report_constraints() -> UploadConstraints:
    return UploadConstraints(
        max_file_size=config.PDF_MAX_FILE_MB * 1024 * 1024,
        allowed_types=["application/pdf", "image/*"],
    )


@dataclass
class PipelineResult:
    """Either ``extraction`` (ok) or ``error`` (not ok), never both."""

    ok: bool
    extraction: Optional[ReconciledExtraction] = None
    error: Optional[UploadError] = None
    file: Optional[TrackedFile] = None
    text_source: Optional[str] = None
    warnings: List[UploadError] = field(default_factory=list)

    @classmethod
    def failure(cls, error: UploadError, file: Optional[TrackedFile] = None) -> "PipelineResult":
        return cls(ok=False, error=error, file=file)


class LabReportPipeline:
    def __init__(
        self,
        engine: ChunkedUploadEngine,
        extractor: MarkerExtractionClient,
        text_extractor: TextExtractor = extract_text_from_bytes,
    ):
        self.engine = engine
        self.extractor = extractor
        self._text_extractor = text_extractor

    async def process(
        self,
        source: UploadSource,
        hint: Optional[str] = None,
        today: Optional[date] = None,
    ) -> PipelineResult:
        tracked = await self.engine.upload(source)
        if tracked is None:
            error = self.engine.state.error or UploadError(
                code=UploadErrorCode.VALIDATION_FAILED, message="File validation failed"
            )
            return PipelineResult.failure(error)
        if tracked.status != "completed":
            error = self.engine.state.error or UploadError(
                code=UploadErrorCode.UPLOAD_FAILED, message=tracked.error or "Upload failed"
            )
            return PipelineResult.failure(error, tracked)

        try:
            text, text_source = await asyncio.to_thread(
                self._text_extractor, source.data, source.name, source.type
            )
            extraction = await self.extractor.extract(text)
        except Exception as exc:
            error = classify_error(exc, default=UploadErrorCode.MARKER_EXTRACTION_FAILED)
            logger.error({
                "function": "process_report",
                "status": "extraction_failed",
                "file_id": tracked.id,
                "code": error.code.value,
                "error": error.message,
            })
            return PipelineResult.failure(error, tracked)

        date_hint = hint or extraction.test_date
        if not date_hint and len(extraction.date_groups) == 1:
            date_hint = extraction.date_groups[0].test_date
        reconciled = reconcile(extraction.markers, extraction.date_groups, date_hint, today)
        logger.info({
            "function": "process_report",
            "status": "ready_for_review",
            "file_id": tracked.id,
            "source": text_source,
            "groups": len(reconciled),
            "has_multiple_dates": reconciled.has_multiple_dates,
        })
        return PipelineResult(
            ok=True,
            extraction=reconciled,
            file=tracked,
            text_source=text_source,
            warnings=list(reconciled.warnings),
        )


__all__ = ["LabReportPipeline", "PipelineResult", "report_constraints"]
