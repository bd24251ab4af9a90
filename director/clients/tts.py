from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from director.errors import ProviderError, ProviderErrorKind, ProviderTimeout, classify_http_error

PROVIDER = "ElevenLabs"


class ElevenLabsClient:
    def __init__(
        self,
        api_key: str | None,
        model_id: str = "eleven_multilingual_v2",
        base_url: str = "https://api.elevenlabs.io",
        timeout: float = 45.0,
        voice_catalog: list[dict[str, str]] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model_id = model_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._voices = {
            entry["alias"]: entry["voice_id"]
            for entry in (voice_catalog or [])
            if entry.get("alias") and entry.get("voice_id")
        }
        self._transport = transport
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key)

    def resolve_voice(self, voice: str) -> str:
        """Map a catalog alias to the provider's voice id; raw ids pass through."""
        return self._voices.get(voice, voice)

    async def synthesize(self, text: str, voice: str) -> bytes:
        if not self.enabled():
            raise ProviderError(PROVIDER, ProviderErrorKind.AUTH, "API key is not configured")
        try:
            return await asyncio.wait_for(self._request(text, voice), self.timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout(PROVIDER, self.timeout) from exc

    async def _request(self, text: str, voice: str) -> bytes:
        voice_id = self.resolve_voice(voice)
        url = f"{self.base_url}/v1/text-to-speech/{voice_id}"
        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.75,
                "style": 0.5,
                "use_speaker_boost": True,
            },
        }
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise classify_http_error(PROVIDER, exc) from exc
            audio = response.content
        self.log.info(
            "elevenlabs synthesis completed",
            extra={
                "voice_id": voice_id,
                "model_id": self.model_id,
                "content_length": len(audio),
            },
        )
        return audio
