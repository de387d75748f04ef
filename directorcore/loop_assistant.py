"""Loop assistant: free-form continuity coaching over a chat history.

Unlike the image-prompt conversation there is no stage machine and no
token; the client sends the whole user/assistant history on every call
and gets one reply back.
"""
from __future__ import annotations

import logging
from typing import Any, List, Literal

from pydantic import BaseModel, ConfigDict, StrictStr, ValidationError

from .errors import ProviderError, RequestValidationError
from .prompts import LOOP_ASSISTANT_OPENING, LOOP_ASSISTANT_SYSTEM_PROMPT
from .validation import format_errors

log = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant"]
    content: StrictStr


class LoopAssistantRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    messages: List[ChatMessage] = []


def parse_assistant_request(body: Any) -> list[ChatMessage]:
    """Validate ``{messages: [...]}`` (``history`` is accepted as an alias)."""
    if not isinstance(body, dict):
        raise RequestValidationError(["body: must be a JSON object"])
    messages = body.get("messages")
    if messages is None:
        messages = body.get("history")
    if messages is None:
        return []
    try:
        return LoopAssistantRequest.model_validate({"messages": messages}).messages
    except ValidationError as e:
        raise RequestValidationError(format_errors(e)) from e


class LoopAssistant:
    def __init__(self, provider, system_prompt: str = LOOP_ASSISTANT_SYSTEM_PROMPT):
        self.provider = provider
        self.system_prompt = system_prompt

    async def reply(self, messages: list[ChatMessage], api_key: str) -> str:
        history = [m.model_dump() for m in messages]
        if not history:
            # Empty history asks the assistant to open the conversation
            history = [{"role": "user", "content": LOOP_ASSISTANT_OPENING}]

        payload = await self.provider.chat(self.system_prompt, history, api_key)
        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str) or not text.strip():
            log.error("Loop assistant reply had no text")
            raise ProviderError(
                f"{self.provider.name} did not return any text in the response",
                provider=self.provider.name,
            )
        return text.strip()
