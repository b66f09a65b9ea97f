"""Chat completion client for the local Ollama runtime.

Ollama serves an OpenAI-compatible API under ``/v1``, so the official
``openai`` SDK is used with a custom base URL. Ollama's ``think`` flag rides
along in the request body.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional, Sequence

import openai

from app.core.config import settings

logger = logging.getLogger(__name__)

Message = Dict[str, str]


class ChatCompletionError(RuntimeError):
    """The language model could not produce a response."""


class ChatClient:
    """Thin wrapper exposing ``complete`` and ``stream`` over chat messages."""

    def __init__(self, client: Any, model: str):
        self._client = client
        self.model = model

    def complete(self, messages: Sequence[Message], system_prompt: str, thinking_enabled: bool = False) -> str:
        """Return the full assistant reply."""
        try:
            completion = self._client.chat.completions.create(
                model=self.model,
                messages=_with_system(messages, system_prompt),
                extra_body={"think": thinking_enabled},
            )
        except openai.OpenAIError as exc:
            logger.error("Chat completion failed: %s", exc)
            raise ChatCompletionError(str(exc)) from exc
        return completion.choices[0].message.content or ""

    def stream(
        self, messages: Sequence[Message], system_prompt: str, thinking_enabled: bool = False
    ) -> Iterator[str]:
        """Yield reply fragments as the model produces them.

        The caller owns accumulation of the full text.
        """
        try:
            chunks = self._client.chat.completions.create(
                model=self.model,
                messages=_with_system(messages, system_prompt),
                stream=True,
                extra_body={"think": thinking_enabled},
            )
            for chunk in chunks:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except openai.OpenAIError as exc:
            logger.error("Chat stream failed: %s", exc)
            raise ChatCompletionError(str(exc)) from exc


def build_chat_client(base_url: Optional[str] = None, model: Optional[str] = None) -> ChatClient:
    client = openai.OpenAI(
        base_url=f"{(base_url or settings.ollama_base_url).rstrip('/')}/v1",
        # Ollama ignores the key but the SDK requires one.
        api_key="ollama",
        timeout=settings.llm_timeout_seconds,
    )
    return ChatClient(client, model or settings.ollama_model)


@lru_cache
def get_chat_client() -> ChatClient:
    """FastAPI dependency returning the process-wide chat client."""
    return build_chat_client()


def _with_system(messages: Sequence[Message], system_prompt: str) -> List[Message]:
    return [{"role": "system", "content": system_prompt}, *messages]
