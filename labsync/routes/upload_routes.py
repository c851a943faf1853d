# labsync/routes/upload_routes.py
import logging
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile

from labsync import config
from labsync.middleware.ratelimit import limiter
from labsync.schemas.upload import AssembleRequest, AssembleResponse, ChunkReceipt
from labsync.services import storage

router = APIRouter(prefix="/api", tags=["upload"])
logger = logging.getLogger("labsync")


def _parse_int(raw: Optional[str]) -> Optional[int]:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


@router.post("/upload-chunk", response_model=ChunkReceipt)
@limiter.limit(config.CHUNK_RATE_LIMIT)
async def upload_chunk(
    request: Request,
    chunk: Optional[UploadFile] = File(None),
    chunkNumber: Optional[str] = Form(None),
    totalChunks: Optional[str] = Form(None),
    isLastChunk: Optional[str] = Form(None),
    fileName: Optional[str] = Form(None),
):
    """Store one chunk under ``temp/<fileName>.chunk<N>``; resending an index overwrites it."""
    if chunk is None:
        raise HTTPException(status_code=400, detail="No chunk provided")
    if not (fileName or "").strip():
        raise HTTPException(status_code=400, detail="No fileName provided")
    number = _parse_int(chunkNumber)
    total = _parse_int(totalChunks)
    if number is None or total is None or number < 0 or total < 1:
        raise HTTPException(status_code=400, detail="Invalid chunk number or total chunks")

    data = await chunk.read()
    try:
        path = storage.store_chunk(fileName, number, data)
    except OSError as e:
        logger.error({"function": "upload_chunk", "file": fileName, "chunk": number, "error": str(e)})
        raise HTTPException(status_code=500, detail="Error processing chunk upload")

    url = f"/uploads/temp/{path.name}"
    logger.info({
        "function": "upload_chunk",
        "file": fileName,
        "chunk": number,
        "total": total,
        "size": len(data),
    })
    if (isLastChunk or "").strip().lower() == "true":
        return ChunkReceipt(
            success=True,
            message="File upload completed",
            isComplete=True,
            totalChunks=total,
            fileName=fileName,
            url=url,
        )
    return ChunkReceipt(
        success=True,
        message=f"Chunk {number} of {total} uploaded successfully",
        isComplete=False,
        url=url,
    )


@router.post("/assemble-chunks", response_model=AssembleResponse)
def assemble_chunks(payload: AssembleRequest):
    try:
        path, size = storage.assemble_chunks(payload.fileName, payload.totalChunks)
    except storage.MissingChunksError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OSError as e:
        logger.error({"function": "assemble_chunks", "file": payload.fileName, "error": str(e)})
        raise HTTPException(status_code=500, detail="Error assembling chunks")
    return AssembleResponse(
        success=True,
        message="File assembled successfully",
        url=f"/uploads/{path.name}",
        size=size,
    )
