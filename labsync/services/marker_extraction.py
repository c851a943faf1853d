"""Client for the external marker-extraction service."""
from __future__ import annotations

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from labsync import config
from labsync.schemas.markers import ExtractionRequest, ExtractionResponse
from labsync.utils.errors import MarkerExtractionError, SessionExpiredError

logger = logging.getLogger("labsync")


class MarkerExtractionClient:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, url: Optional[str] = None):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_S)
        self.url = url or config.MARKER_EXTRACTION_URL

    async def extract(self, text: str) -> ExtractionResponse:
        """Send report text, return the parsed extraction.

        401 raises ``SessionExpiredError``; any other non-2xx answer, a
        ``success: false`` body or a body that does not match the response
        schema raises ``MarkerExtractionError``.
        """
        payload = ExtractionRequest(text=text).model_dump()
        response = await self._client.post(self.url, json=payload)

        if response.status_code == 401:
            raise SessionExpiredError()

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success:
            message = (body or {}).get("error") if isinstance(body, dict) else None
            raise MarkerExtractionError(
                message or f"Upload failed with status {response.status_code}",
                details={"status": response.status_code},
            )
        if not isinstance(body, dict):
            raise MarkerExtractionError("Extraction service returned a non-JSON response")
        if not body.get("success"):
            raise MarkerExtractionError(body.get("error") or "Failed to process blood test")

        try:
            result = ExtractionResponse.model_validate(body)
        except ValidationError as exc:
            raise MarkerExtractionError("Malformed extraction response", details=exc.errors()) from exc

        logger.info({
            "function": "extract_markers",
            "markers": len(result.markers),
            "date_groups": len(result.date_groups),
            "has_multiple_dates": result.has_multiple_dates,
        })
        return result

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["MarkerExtractionClient"]
