# labsync/schemas/upload.py
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field

FileStatus = Literal["pending", "uploading", "processing", "completed", "error"]
SessionStatus = Literal["idle", "uploading", "processing", "completed", "error"]


class UploadErrorCode(str, Enum):
    VALIDATION_FAILED = "VALIDATION_FAILED"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    OFFLINE = "OFFLINE"
    MARKER_EXTRACTION_FAILED = "MARKER_EXTRACTION_FAILED"
    INVALID_DATE = "INVALID_DATE"


class UploadError(BaseModel):
    """A classified failure, attached to a TrackedFile or surfaced on its own."""

    code: UploadErrorCode
    message: str
    details: Optional[Any] = None


class UploadProgress(BaseModel):
    loaded: int = 0
    total: int = 0
    percentage: int = Field(0, ge=0, le=100)


class UploadSource(BaseModel):
    """A file handed to the upload engine: name, declared media type and bytes."""

    name: str
    type: str = ""
    data: bytes = b""

    @property
    def size(self) -> int:
        return len(self.data)


class TrackedFile(BaseModel):
    id: str
    name: str
    size: int
    type: str = ""
    progress: int = Field(0, ge=0, le=100)
    status: FileStatus = "pending"
    error: Optional[str] = None


class UploadConstraints(BaseModel):
    max_file_size: int = Field(..., description="Size ceiling in bytes.")
    allowed_types: List[str] = Field(default_factory=lambda: ["*/*"])


class ValidationResult(BaseModel):
    valid: bool
    reason: Optional[str] = None


class UploadState(BaseModel):
    status: SessionStatus = "idle"
    files: List[TrackedFile] = Field(default_factory=list)
    current_file_id: Optional[str] = None
    progress: UploadProgress = Field(default_factory=UploadProgress)
    error: Optional[UploadError] = None


class ChunkReceipt(BaseModel):
    success: bool
    message: str
    isComplete: bool = False
    totalChunks: Optional[int] = None
    fileName: Optional[str] = None
    url: Optional[str] = None


class AssembleRequest(BaseModel):
    fileName: str = Field(..., min_length=1)
    totalChunks: int = Field(..., ge=1)


class AssembleResponse(BaseModel):
    success: bool
    message: str
    url: Optional[str] = None
    size: Optional[int] = None
