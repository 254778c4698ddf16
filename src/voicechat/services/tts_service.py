import logging
import re
from typing import Any, Optional

import httpx
from fastapi import status

from voicechat.config import Settings

logger = logging.getLogger(__name__)

_AUDIO_PATH_PATTERN = re.compile(r"/media/[^\"\s]+\.wav")


class TTSError(Exception):
    """Synthesis failed or returned no playable audio."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class TTSService:
    """
    Service for Text-to-Speech generation.

    Sends one sentence per request to the synthesis endpoint and returns a
    locator for the generated audio file. The endpoint answers with a body
    that mentions the generated file as ``/media/<name>.wav``; the locator is
    that path joined to the configured base URL, immediately playable.

    Uses a singleton httpx.AsyncClient for connection pooling across requests.
    """

    # Singleton HTTP client for connection pooling
    _http_client: Optional[httpx.AsyncClient] = None

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._client_override = http_client
        self.base_url = str(settings.tts_base_url).rstrip("/")
        self.endpoint = f"{self.base_url}/v1/chat/completions"
        self.api_key = (
            settings.tts_api_key.get_secret_value() if settings.tts_api_key else None
        )

    @classmethod
    def get_http_client(cls, timeout: float = 30.0) -> httpx.AsyncClient:
        """Get singleton HTTP client for connection pooling."""
        if cls._http_client is None:
            cls._http_client = httpx.AsyncClient(timeout=timeout)
            logger.info("Created singleton httpx.AsyncClient for TTS")
        return cls._http_client

    @classmethod
    async def close_http_client(cls) -> None:
        """Close the singleton HTTP client. Call on app shutdown."""
        if cls._http_client is not None:
            await cls._http_client.aclose()
            cls._http_client = None
            logger.info("Closed TTS HTTP client")

    def _client(self) -> httpx.AsyncClient:
        if self._client_override is not None:
            return self._client_override
        return self.get_http_client(self._settings.tts_timeout)

    async def synthesize(
        self,
        text: str,
        *,
        voice: Optional[str] = None,
        emotion: Optional[str] = None,
    ) -> str:
        """
        Synthesize one sentence and return the URL of the generated audio.

        Raises:
            TTSError: on transport failure, HTTP error status, or a response
                      without an audio path.
        """
        voice = voice or self._settings.default_voice
        emotion = emotion or self._settings.default_emotion

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {
            "model": self._settings.tts_model,
            "messages": [{"role": "user", "content": text}],
            "voice": voice,
            "emotion": emotion,
        }

        try:
            response = await self._client().post(
                self.endpoint,
                headers=headers,
                json=payload,
                timeout=self._settings.tts_timeout,
            )
        except httpx.HTTPError as exc:
            raise TTSError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            raise TTSError(
                response.status_code,
                f"TTS endpoint returned HTTP {response.status_code}",
            )

        audio_url = self.extract_audio_url(response.text)
        if audio_url is None:
            raise TTSError(
                status.HTTP_502_BAD_GATEWAY, "No audio path found in response"
            )

        logger.info(
            "Synthesized %d chars (voice=%s, emotion=%s): %s",
            len(text),
            voice,
            emotion,
            audio_url,
        )
        return audio_url

    def extract_audio_url(self, body: str) -> Optional[str]:
        """Return the absolute URL of the first ``/media/*.wav`` path in ``body``."""
        match = _AUDIO_PATH_PATTERN.search(body)
        if not match:
            return None
        return f"{self.base_url}{match.group(0)}"


__all__ = ["TTSError", "TTSService"]
