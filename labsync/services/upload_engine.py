"""Chunked file upload with per-chunk retry, progress tracking and cancellation.

The engine owns the TrackedFile registry: records are created, mutated and
dropped only through the public operations below, and readers always get
copies.
"""
from __future__ import annotations

import logging
import math
import uuid
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from labsync import config
from labsync.schemas.upload import (
    TrackedFile,
    UploadConstraints,
    UploadError,
    UploadErrorCode,
    UploadProgress,
    UploadSource,
    UploadState,
    ValidationResult,
)
from labsync.services import retry as retry_policy
from labsync.services.chunker import split
from labsync.services.retry import CancelToken
from labsync.services.transport import ChunkTransport
from labsync.utils.errors import UploadCancelled, classify_error

logger = logging.getLogger("labsync")

CANCELLED_MESSAGE = "Upload cancelled"

ProgressCallback = Callable[[str, UploadProgress], None]
ErrorCallback = Callable[[UploadError], None]
CompleteCallback = Callable[[TrackedFile], None]
StateCallback = Callable[[TrackedFile], None]


def default_constraints() -> UploadConstraints:
    return UploadConstraints(
        max_file_size=config.UPLOAD_MAX_FILE_MB * 1024 * 1024,
        allowed_types=list(config.UPLOAD_ALLOWED_TYPES),
    )


def _type_allowed(media_type: str, allowed: List[str]) -> bool:
    if "*/*" in allowed:
        return True
    for pattern in allowed:
        if pattern.endswith("/*"):
            if media_type.startswith(pattern[:-1]):
                return True
        elif media_type == pattern:
            return True
    return False


def validate_file(source: UploadSource, constraints: UploadConstraints) -> ValidationResult:
    if source.size > constraints.max_file_size:
        limit_mb = round(constraints.max_file_size / 1024 / 1024)
        return ValidationResult(
            valid=False,
            reason=f"File size exceeds maximum allowed size of {limit_mb}MB",
        )
    media_type = (source.type or "").lower()
    if not _type_allowed(media_type, [t.lower() for t in constraints.allowed_types]):
        return ValidationResult(
            valid=False,
            reason=(
                f"File type {source.type or 'unknown'} is not allowed. "
                f"Allowed types: {', '.join(constraints.allowed_types)}"
            ),
        )
    return ValidationResult(valid=True)


def percentage(loaded: int, total: int) -> int:
    if total <= 0:
        return 100
    # round half up
    return min(100, int(math.floor(loaded * 100 / total + 0.5)))


class ChunkedUploadEngine:
    def __init__(
        self,
        transport: Optional[ChunkTransport] = None,
        *,
        chunk_size: int = config.UPLOAD_CHUNK_SIZE,
        max_attempts: int = config.UPLOAD_MAX_ATTEMPTS,
        base_delay: float = config.UPLOAD_RETRY_BASE_DELAY,
        constraints: Optional[UploadConstraints] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_state_change: Optional[StateCallback] = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._transport = transport or ChunkTransport()
        self.chunk_size = chunk_size
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.constraints = constraints or default_constraints()
        self._sleep = sleep
        self._on_progress = on_progress
        self._on_error = on_error
        self._on_complete = on_complete
        self._on_state_change = on_state_change

        self._files: Dict[str, TrackedFile] = {}
        self._sources: Dict[str, UploadSource] = {}
        self._tokens: Dict[str, CancelToken] = {}
        self._state = UploadState()

    # ---- read access ----
    @property
    def files(self) -> List[TrackedFile]:
        return [f.model_copy() for f in self._files.values()]

    def get(self, file_id: str) -> Optional[TrackedFile]:
        f = self._files.get(file_id)
        return f.model_copy() if f else None

    @property
    def state(self) -> UploadState:
        snapshot = self._state.model_copy(deep=True)
        snapshot.files = self.files
        return snapshot

    # ---- operations ----
    def validate(self, source: UploadSource, constraints: Optional[UploadConstraints] = None) -> ValidationResult:
        return validate_file(source, constraints or self.constraints)

    async def upload(self, source: UploadSource) -> Optional[TrackedFile]:
        """Validate, register and transmit ``source``; returns its final record.

        A file that fails validation is reported once through ``on_error`` and
        never registered; ``None`` is returned.
        """
        validation = self.validate(source)
        if not validation.valid:
            error = UploadError(
                code=UploadErrorCode.VALIDATION_FAILED,
                message=validation.reason or "File validation failed",
            )
            logger.info({
                "function": "upload",
                "status": "rejected",
                "file": source.name,
                "reason": error.message,
            })
            self._state.error = error
            self._emit_error(error)
            return None

        file_id = uuid.uuid4().hex
        self._files[file_id] = TrackedFile(
            id=file_id,
            name=source.name,
            size=source.size,
            type=source.type,
        )
        self._sources[file_id] = source
        self._emit_state(file_id)
        await self._run(file_id)
        return self.get(file_id)

    async def upload_many(self, sources: Iterable[UploadSource]) -> List[Optional[TrackedFile]]:
        results = []
        for source in sources:
            results.append(await self.upload(source))
        return results

    def cancel(self, file_id: str) -> bool:
        if file_id not in self._files:
            return False
        token = self._tokens.get(file_id)
        if token is not None:
            token.cancel()
        self._update(file_id, status="error", error=CANCELLED_MESSAGE)
        logger.info({"function": "cancel_upload", "file_id": file_id})
        return True

    async def retry(self, file_id: str) -> Optional[TrackedFile]:
        """Start the file over from chunk 0."""
        if file_id not in self._files:
            return None
        self._update(file_id, status="pending", progress=0, error=None)
        await self._run(file_id)
        return self.get(file_id)

    def clear(self) -> None:
        for token in self._tokens.values():
            token.cancel()
        self._files.clear()
        self._sources.clear()
        self._tokens.clear()
        self._state = UploadState()

    # ---- internals ----
    async def _run(self, file_id: str) -> None:
        source = self._sources[file_id]
        plan = split(file_id, source.data, self.chunk_size)
        token = CancelToken()
        self._tokens[file_id] = token

        self._update(file_id, status="uploading", error=None)
        self._state.status = "uploading"
        self._state.current_file_id = file_id
        self._state.error = None
        logger.info({
            "function": "upload",
            "status": "started",
            "file_id": file_id,
            "file": source.name,
            "size": plan.file_size,
            "chunks": plan.total_chunks,
        })

        try:
            for chunk in plan:
                await retry_policy.execute(
                    lambda c=chunk: self._transport.send(c, source.name),
                    self.max_attempts,
                    self.base_delay,
                    cancel=token,
                    sleep=self._sleep,
                )
                loaded = min(chunk.offset + self.chunk_size, plan.file_size)
                self._set_progress(
                    file_id,
                    UploadProgress(
                        loaded=loaded,
                        total=plan.file_size,
                        percentage=percentage(loaded, plan.file_size),
                    ),
                    final=chunk.is_last,
                )
        except UploadCancelled:
            if self._files.get(file_id) is not None:
                self._update(file_id, status="error", error=CANCELLED_MESSAGE)
            self._state.status = "error"
            return
        except Exception as exc:
            error = classify_error(exc)
            logger.error({
                "function": "upload",
                "status": "failed",
                "file_id": file_id,
                "code": error.code.value,
                "error": error.message,
            })
            self._fail(file_id, error)
            return
        finally:
            if self._tokens.get(file_id) is token:
                del self._tokens[file_id]

        self._complete(file_id)

    def _update(self, file_id: str, **changes: Any) -> None:
        current = self._files.get(file_id)
        if current is None:
            return
        self._files[file_id] = current.model_copy(update=changes)
        self._emit_state(file_id)

    def _set_progress(self, file_id: str, progress: UploadProgress, final: bool = False) -> None:
        status = "processing" if final else "uploading"
        self._update(file_id, progress=progress.percentage, status=status)
        self._state.progress = progress
        if final:
            self._state.status = "processing"
        if self._on_progress is not None:
            self._on_progress(file_id, progress)

    def _fail(self, file_id: str, error: UploadError) -> None:
        self._update(file_id, status="error", error=error.message)
        self._state.status = "error"
        self._state.error = error
        self._emit_error(error)

    def _complete(self, file_id: str) -> None:
        self._update(file_id, status="completed", progress=100)
        if all(f.status == "completed" for f in self._files.values()):
            self._state.status = "completed"
        logger.info({"function": "upload", "status": "completed", "file_id": file_id})
        if self._on_complete is not None:
            self._on_complete(self._files[file_id].model_copy())

    def _emit_error(self, error: UploadError) -> None:
        if self._on_error is not None:
            self._on_error(error)

    def _emit_state(self, file_id: str) -> None:
        if self._on_state_change is not None:
            self._on_state_change(self._files[file_id].model_copy())

    async def aclose(self) -> None:
        await self._transport.aclose()


__all__ = ["ChunkedUploadEngine", "validate_file", "percentage", "default_constraints"]
