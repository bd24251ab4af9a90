from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from director.errors import ProviderError, ProviderErrorKind, ProviderTimeout, classify_http_error

PROVIDER = "Pika"


class FalVideoClient:
    """Text-to-video through the fal.ai queue API.

    A request is submitted once and then polled until it reports
    ``COMPLETED`` or ``FAILED``. Polling stops at a wall-clock deadline
    of ``generation_timeout`` seconds rather than after a fixed number of
    polls, so slow providers and slow networks are bounded the same way.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "fal-ai/pika/v2.2/text-to-video",
        base_url: str = "https://queue.fal.run",
        request_timeout: float = 30.0,
        generation_timeout: float = 180.0,
        poll_interval: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model.strip("/")
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.generation_timeout = generation_timeout
        self.poll_interval = poll_interval
        self._transport = transport
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }

    async def generate(self, prompt: str, aspect_ratio: str = "16:9") -> str:
        """Submit ``prompt`` and return the URL of the generated clip."""
        if not self.enabled():
            raise ProviderError(PROVIDER, ProviderErrorKind.AUTH, "API key is not configured")
        deadline = time.monotonic() + self.generation_timeout
        async with httpx.AsyncClient(timeout=self.request_timeout, transport=self._transport) as client:
            request_id = await self._submit(client, prompt, aspect_ratio)
            while True:
                status = await self._status(client, request_id)
                state = str(status.get("status") or "").upper()
                if state == "COMPLETED":
                    result = await self._result(client, request_id, status)
                    url = self._extract_video_url(result)
                    self.log.info("video generation completed", extra={"request_id": request_id})
                    return url
                if state == "FAILED":
                    detail = status.get("error") or "generation failed"
                    raise ProviderError(PROVIDER, ProviderErrorKind.TRANSIENT, str(detail))
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ProviderTimeout(PROVIDER, self.generation_timeout)
                await asyncio.sleep(min(self.poll_interval, remaining))

    async def _submit(self, client: httpx.AsyncClient, prompt: str, aspect_ratio: str) -> str:
        url = f"{self.base_url}/{self.model}"
        payload = {"prompt": prompt, "aspect_ratio": aspect_ratio}
        body = await self._call(client, "POST", url, json=payload)
        request_id = body.get("request_id")
        if not request_id:
            raise ProviderError(PROVIDER, ProviderErrorKind.UNKNOWN, "submission returned no request_id")
        self.log.info("video generation submitted", extra={"request_id": request_id, "model": self.model})
        return str(request_id)

    async def _status(self, client: httpx.AsyncClient, request_id: str) -> dict[str, Any]:
        url = f"{self.base_url}/{self.model}/requests/{request_id}/status"
        return await self._call(client, "GET", url)

    async def _result(self, client: httpx.AsyncClient, request_id: str, status: dict[str, Any]) -> dict[str, Any]:
        if status.get("output") or status.get("video"):
            return status
        url = f"{self.base_url}/{self.model}/requests/{request_id}"
        return await self._call(client, "GET", url)

    async def _call(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await client.request(method, url, headers=self._headers(), **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(PROVIDER, self.request_timeout) from exc
        except httpx.HTTPError as exc:
            raise classify_http_error(PROVIDER, exc) from exc
        return response.json()

    def _extract_video_url(self, payload: dict[str, Any]) -> str:
        output = payload.get("output") if isinstance(payload.get("output"), dict) else payload
        video = output.get("video") if output else None
        if video is None:
            video = payload.get("video")
        if isinstance(video, dict):
            video = video.get("url")
        if not video:
            raise ProviderError(PROVIDER, ProviderErrorKind.UNKNOWN, "result contains no video url")
        return str(video)
