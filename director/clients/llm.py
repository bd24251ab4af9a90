from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from director.errors import ProviderError, ProviderErrorKind, ProviderTimeout, classify_http_error

PROVIDER = "OpenAI"


class ChatCompletionClient:
    """OpenAI-compatible chat completions client used for script planning."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4-turbo-preview",
        base_url: str = "https://api.openai.com",
        temperature: float = 0.7,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.timeout = timeout
        self._transport = transport
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key)

    async def complete_json(self, system_prompt: str, user_prompt: str) -> str:
        if not self.enabled():
            raise ProviderError(PROVIDER, ProviderErrorKind.AUTH, "API key is not configured")
        try:
            return await asyncio.wait_for(self._request(system_prompt, user_prompt), self.timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout(PROVIDER, self.timeout) from exc

    async def _request(self, system_prompt: str, user_prompt: str) -> str:
        url = f"{self.base_url}/v1/chat/completions"
        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(url, headers=headers, json=payload)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                error = classify_http_error(PROVIDER, exc)
                self.log.error(
                    "chat completion failed",
                    extra={"status": error.status_code, "kind": error.kind.value, "model": self.model},
                )
                raise error from exc
            body = response.json()
        self.log.info("chat completion received", extra={"model": self.model, "usage": body.get("usage")})
        return self._extract_text(body)

    def _extract_text(self, payload: dict[str, Any]) -> str:
        choices = payload.get("choices") or []
        if not choices:
            raise ProviderError(PROVIDER, ProviderErrorKind.UNKNOWN, "response missing choices")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not content:
            raise ProviderError(PROVIDER, ProviderErrorKind.UNKNOWN, "response missing message content")
        return content
