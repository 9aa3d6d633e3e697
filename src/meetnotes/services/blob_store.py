"""HTTP blob storage collaborator (download by URL, best-effort delete)."""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from meetnotes.core.errors import FetchError
from meetnotes.pipelines.interfaces import BlobStream

logger = logging.getLogger(__name__)


class HttpBlobStore:
    """Fetches recordings from their public URL and deletes them via the storage API."""

    def __init__(self, client: httpx.AsyncClient, *, token: str | None = None) -> None:
        self._client = client
        self._token = token

    @asynccontextmanager
    async def open(self, locator: str) -> AsyncIterator[BlobStream]:
        async with self._client.stream("GET", locator) as response:
            if not response.is_success:
                raise FetchError(locator, response.status_code, response.reason_phrase)
            content_length = response.headers.get("content-length")
            yield BlobStream(
                locator=locator,
                content_length=int(content_length) if content_length and content_length.isdigit() else None,
                content_type=response.headers.get("content-type"),
                chunks=response.aiter_bytes(),
            )

    async def delete(self, locator: str) -> None:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        response = await self._client.delete(locator, headers=headers)
        if response.status_code != 404:
            response.raise_for_status()
        logger.info(f"Deleted recording blob {locator}")
