"""Pydantic models for chat completion requests."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel


class ChatMessage(BaseModel):
    """Represents a single chat message."""

    role: Literal["system", "user", "assistant"]
    content: str


class ChatCompletionRequest(BaseModel):
    """Chat completion request sent to the language-model endpoint."""

    model: Optional[str] = None
    messages: List[ChatMessage]
    stream: bool = True

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Return the JSON body for the completions endpoint."""

        payload = self.model_dump(exclude_none=True)
        payload["model"] = self.model or default_model
        return payload


__all__ = ["ChatCompletionRequest", "ChatMessage"]
