"""Error kinds for the upload/extraction/save paths and their classification.

Fallible operations raise a ``LabSyncError`` subclass (or let an ``httpx``
error escape); callers turn any of those into an ``UploadError`` value with
``classify_error`` and pick user-facing copy with ``user_message``. Both are
pure functions over the error kind.
"""
from __future__ import annotations

import socket
from typing import Any, Optional

import httpx

from labsync.schemas.upload import UploadError, UploadErrorCode


class LabSyncError(Exception):
    code: UploadErrorCode = UploadErrorCode.UPLOAD_FAILED

    def __init__(self, message: str, *, details: Any = None, code: Optional[UploadErrorCode] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code

    def to_error(self) -> UploadError:
        return UploadError(code=self.code, message=self.message, details=self.details)


class ChunkTransmissionError(LabSyncError):
    """A chunk request came back non-2xx."""

    def __init__(self, message: str, *, status_code: int, chunk_index: int, details: Any = None):
        super().__init__(message, details=details)
        self.status_code = status_code
        self.chunk_index = chunk_index

    @property
    def retryable(self) -> bool:
        # resending an oversized chunk cannot succeed
        return self.status_code != 413


class UploadCancelled(LabSyncError):
    def __init__(self, message: str = "Upload cancelled"):
        super().__init__(message, details={"cancelled": True})


class TextExtractionError(LabSyncError):
    code = UploadErrorCode.MARKER_EXTRACTION_FAILED


class MarkerExtractionError(LabSyncError):
    code = UploadErrorCode.MARKER_EXTRACTION_FAILED


class SessionExpiredError(MarkerExtractionError):
    def __init__(self, message: str = "Session expired. Please sign in again."):
        super().__init__(message, details={"session_expired": True})


def _is_dns_failure(exc: BaseException) -> bool:
    seen = set()
    cur: Optional[BaseException] = exc
    while cur is not None and id(cur) not in seen:
        if isinstance(cur, socket.gaierror):
            return True
        seen.add(id(cur))
        cur = cur.__cause__ or cur.__context__
    return False


def classify_error(exc: BaseException, default: UploadErrorCode = UploadErrorCode.UPLOAD_FAILED) -> UploadError:
    """Map any exception raised on the upload path to an ``UploadError``."""
    if isinstance(exc, LabSyncError):
        return exc.to_error()
    if isinstance(exc, httpx.ConnectError) and _is_dns_failure(exc):
        return UploadError(code=UploadErrorCode.OFFLINE, message="You are currently offline", details=str(exc))
    if isinstance(exc, httpx.TransportError):
        return UploadError(code=UploadErrorCode.NETWORK_ERROR, message="Network connection failed", details=str(exc))
    message = str(exc) or exc.__class__.__name__
    return UploadError(code=default, message=message, details=exc.__class__.__name__)


ERROR_TITLES = {
    UploadErrorCode.VALIDATION_FAILED: "Invalid File",
    UploadErrorCode.UPLOAD_FAILED: "Upload Failed",
    UploadErrorCode.NETWORK_ERROR: "Network Error",
    UploadErrorCode.OFFLINE: "You're Offline",
    UploadErrorCode.MARKER_EXTRACTION_FAILED: "Processing Failed",
    UploadErrorCode.INVALID_DATE: "Unrecognized Date",
}


def error_title(code: UploadErrorCode) -> str:
    return ERROR_TITLES.get(code, "Upload Error")


def user_message(error: UploadError) -> str:
    code = error.code
    if code == UploadErrorCode.VALIDATION_FAILED:
        return error.message or "This file can't be uploaded."
    if code == UploadErrorCode.OFFLINE:
        return "You are offline. Reconnect and try the upload again."
    if code == UploadErrorCode.NETWORK_ERROR:
        return "We couldn't reach the server. Check your connection and retry."
    if code == UploadErrorCode.MARKER_EXTRACTION_FAILED:
        if isinstance(error.details, dict) and error.details.get("session_expired"):
            return error.message
        return f"We couldn't read markers from this report: {error.message}"
    if code == UploadErrorCode.INVALID_DATE:
        return f"{error.message} Today's date was used instead; adjust it before saving."
    return f"Upload failed: {error.message}"


def is_retryable(error: UploadError) -> bool:
    return error.code != UploadErrorCode.VALIDATION_FAILED


def offers_reconnect(error: UploadError) -> bool:
    return error.code in (UploadErrorCode.NETWORK_ERROR, UploadErrorCode.OFFLINE)


__all__ = [
    "LabSyncError",
    "ChunkTransmissionError",
    "UploadCancelled",
    "TextExtractionError",
    "MarkerExtractionError",
    "SessionExpiredError",
    "classify_error",
    "error_title",
    "user_message",
    "is_retryable",
    "offers_reconnect",
]
