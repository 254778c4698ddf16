"""Voice chat service: prompt construction and token-delta extraction."""

import json
import logging
from contextlib import aclosing
from typing import AsyncGenerator, Optional

from voicechat.chat_client import ChatClient
from voicechat.config import Settings
from voicechat.schemas.chat import ChatCompletionRequest, ChatMessage

logger = logging.getLogger(__name__)

END_OF_STREAM = "[DONE]"


class VoiceChatService:
    """Chat service for voice interactions against the chat endpoint."""

    def __init__(self, client: ChatClient, settings: Settings):
        self._client = client
        self._settings = settings

    def build_request(self, user_message: str, *, stream: bool) -> ChatCompletionRequest:
        """System prompt plus the single user turn."""
        messages = [ChatMessage(role="user", content=user_message)]
        if self._settings.system_prompt:
            messages.insert(
                0, ChatMessage(role="system", content=self._settings.system_prompt)
            )
        return ChatCompletionRequest(
            model=self._settings.chat_model,
            messages=messages,
            stream=stream,
        )

    async def generate_deltas(self, user_message: str) -> AsyncGenerator[str, None]:
        """Yield the reply as text deltas.

        Streams from the chat endpoint when streaming is enabled; otherwise the
        whole reply is yielded as a single delta. Malformed payloads are
        skipped. Transport failures propagate as ``ChatClientError``.
        """
        if not self._settings.chat_streaming:
            yield await self.generate_reply(user_message)
            return

        request = self.build_request(user_message, stream=True)
        logger.info("Streaming chat request: model=%s", request.model)

        async with aclosing(self._client.stream_chat(request)) as events:
            async for event in events:
                if event.get("event") != "message":
                    continue
                data = event.get("data")
                if not data:
                    continue
                if data.strip() == END_OF_STREAM:
                    logger.debug("Chat stream end marker received")
                    return

                content = _extract_delta_content(data)
                if content:
                    yield content

    async def generate_reply(self, user_message: str) -> str:
        """Fetch one complete reply, falling back to a canned line when empty."""
        request = self.build_request(user_message, stream=False)
        logger.info("Chat completion request: model=%s", request.model)
        body = await self._client.complete(request)

        content: Optional[str] = None
        choices = body.get("choices") if isinstance(body, dict) else None
        if isinstance(choices, list) and choices:
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                content = message["content"]

        if not content or not content.strip():
            logger.warning("Chat completion returned no content, using fallback reply")
            return self._settings.fallback_reply
        return content


def _extract_delta_content(data: str) -> Optional[str]:
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed stream payload: %s", data[:80])
        return None

    if not isinstance(chunk, dict):
        logger.warning("Skipping unexpected stream payload: %s", data[:80])
        return None

    fragments: list[str] = []
    for choice in chunk.get("choices") or []:
        if not isinstance(choice, dict):
            continue
        delta = choice.get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        if isinstance(content, str) and content:
            fragments.append(content)
    return "".join(fragments) or None


__all__ = ["END_OF_STREAM", "VoiceChatService"]
