"""Chat-completion client for an OpenAI-compatible endpoint (SSE streaming)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Iterable, Optional

import httpx
from fastapi import status

from .config import Settings
from .schemas.chat import ChatCompletionRequest

logger = logging.getLogger(__name__)


class ChatClientError(Exception):
    """Transport or API failure while talking to the chat endpoint."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


@dataclass
class ServerSentEvent:
    """One event from the completions stream."""

    data: str
    event: str = "message"

    def asdict(self) -> dict[str, str]:
        return {"event": self.event, "data": self.data}


class ChatClient:
    """Sends chat completions, streamed or whole.

    Clients without an injected ``http_client`` share one pooled
    ``httpx.AsyncClient`` per base URL, closed by ``aclose_shared()``.
    """

    _shared_clients: dict[str, httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._http_client = http_client
        self._base_url = str(settings.chat_base_url).rstrip("/")
        self._endpoint = f"{self._base_url}/chat/completions"

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        client = self._shared_clients.get(self._base_url)
        if client is None:
            client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.request_timeout, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                http2=True,
            )
            self._shared_clients[self._base_url] = client
            logger.info("Created pooled chat client for %s", self._base_url)
        return client

    @property
    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._settings.chat_api_key is not None:
            token = self._settings.chat_api_key.get_secret_value()
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def stream_chat(
        self, request: ChatCompletionRequest
    ) -> AsyncGenerator[dict[str, str], None]:
        """Yield each stream event as ``{"event", "data"}``.

        Raises ``ChatClientError`` for HTTP error statuses and transport
        failures, including ones that happen mid-stream.
        """
        payload = request.to_payload(self._settings.chat_model)
        payload["stream"] = True

        try:
            async with self._client().stream(
                "POST", self._endpoint, headers=self._headers, json=payload
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise ChatClientError(
                        response.status_code, self._extract_error_detail(body)
                    )

                lines: list[str] = []
                async for line in response.aiter_lines():
                    if line:
                        if not line.startswith(":"):
                            lines.append(line)
                        continue
                    if lines:
                        yield self._parse_event(lines).asdict()
                        lines = []
                if lines:
                    yield self._parse_event(lines).asdict()
        except httpx.HTTPError as exc:
            raise ChatClientError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def complete(self, request: ChatCompletionRequest) -> dict[str, Any]:
        """Request a single, non-streamed completion."""

        payload = request.to_payload(self._settings.chat_model)
        payload["stream"] = False
        headers = {**self._headers, "Accept": "application/json"}

        try:
            response = await self._client().post(
                self._endpoint, headers=headers, json=payload
            )
        except httpx.HTTPError as exc:
            raise ChatClientError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            raise ChatClientError(
                response.status_code, self._extract_error_detail(response.content)
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ChatClientError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    @classmethod
    async def aclose_shared(cls) -> None:
        clients = list(cls._shared_clients.values())
        cls._shared_clients.clear()
        for client in clients:
            await client.aclose()

    @staticmethod
    def _parse_event(lines: Iterable[str]) -> ServerSentEvent:
        event_name = "message"
        data_lines: list[str] = []

        for line in lines:
            field, _, value = line.partition(":")
            value = value.lstrip(" ")
            if field == "event" and value:
                event_name = value
            elif field == "data":
                data_lines.append(value)

        return ServerSentEvent(data="\n".join(data_lines), event=event_name)

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "Chat endpoint returned an empty error response."
        text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload
        return payload


__all__ = ["ChatClient", "ChatClientError", "ServerSentEvent"]
