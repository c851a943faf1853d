"""HTTP transmission of one chunk to the chunk receiver."""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from labsync import config
from labsync.services.chunker import Chunk
from labsync.utils.errors import ChunkTransmissionError

logger = logging.getLogger("labsync")

UPLOAD_CHUNK_PATH = "/api/upload-chunk"


def _error_from_response(response: httpx.Response, chunk: Chunk) -> ChunkTransmissionError:
    fallback = f"Failed to upload chunk {chunk.index} (HTTP {response.status_code})"
    try:
        body = response.json()
    except ValueError:
        body = None
    message = fallback
    if isinstance(body, dict):
        message = body.get("error") or body.get("details") or fallback
    return ChunkTransmissionError(
        str(message),
        status_code=response.status_code,
        chunk_index=chunk.index,
        details=body,
    )


class ChunkTransport:
    """Posts chunks as multipart forms; any non-2xx answer raises."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, base_url: Optional[str] = None):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_S)
        self._url = f"{(base_url if base_url is not None else config.API_BASE_URL).rstrip('/')}{UPLOAD_CHUNK_PATH}"

    async def send(self, chunk: Chunk, file_name: str) -> None:
        data = {
            "chunkNumber": str(chunk.index),
            "totalChunks": str(chunk.total_chunks),
            "isLastChunk": "true" if chunk.is_last else "false",
            "fileName": file_name,
        }
        files = {"chunk": (file_name, chunk.data, "application/octet-stream")}
        response = await self._client.post(self._url, data=data, files=files)
        if not response.is_success:
            err = _error_from_response(response, chunk)
            logger.warning({
                "function": "send_chunk",
                "status": "http_error",
                "chunk": chunk.index,
                "http_status": response.status_code,
                "error": err.message,
            })
            raise err

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["ChunkTransport", "UPLOAD_CHUNK_PATH"]
