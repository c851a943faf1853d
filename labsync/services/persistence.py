"""Client for the per-group blood-marker storage endpoint."""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from labsync import config
from labsync.schemas.markers import DateGroup, GroupSaveRequest

logger = logging.getLogger("labsync")

BLOOD_MARKERS_PATH = "/api/blood-markers"


class GroupPersistenceClient:
    """Saves one date group per request.

    ``save`` returns False for a non-2xx answer or ``success: false``;
    connectivity errors from httpx propagate to the caller.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        user_id: Optional[str] = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_S)
        self._url = f"{(base_url if base_url is not None else config.API_BASE_URL).rstrip('/')}{BLOOD_MARKERS_PATH}"
        self._headers = {"X-User-Id": user_id} if user_id else {}

    async def save(self, group: DateGroup) -> bool:
        payload = GroupSaveRequest(markers=group.markers, date=group.date).model_dump(mode="json")
        response = await self._client.post(self._url, json=payload, headers=self._headers)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if not response.is_success or not body.get("success"):
            logger.error({
                "function": "save_group",
                "status": "failed",
                "date": group.date,
                "http_status": response.status_code,
                "error": body.get("error") or f"Failed to save with status {response.status_code}",
            })
            return False

        logger.info({
            "function": "save_group",
            "status": "saved",
            "date": group.date,
            "markers": len(group.markers),
        })
        return True

    async def __call__(self, group: DateGroup) -> bool:
        return await self.save(group)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["GroupPersistenceClient", "BLOOD_MARKERS_PATH"]
