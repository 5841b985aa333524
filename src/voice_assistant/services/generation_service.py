"""Reply generation via OpenAI, normalized to a single delta type."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Literal, Optional

import httpx
import openai

from voice_assistant.config import Settings
from voice_assistant.errors import GenerationError
from voice_assistant.services.conversation_state import (
    ConversationContext,
    HistoryContext,
    TokenContext,
)
from voice_assistant.services.openai_client import call_with_model_fallback

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplyDelta:
    """An incremental fragment of the reply.

    ``response_id`` is only set on the closing delta of a Responses API call
    and carries the continuation token for the next turn.
    """

    text: str = ""
    response_id: Optional[str] = None


class GenerationClient:
    """
    Generate a reply for the running conversation.

    Chat Completions and the Responses API both end up as an ordered stream of
    ``ReplyDelta``; block (non-streaming) mode yields one delta holding the whole
    reply. Callers never see which protocol or mode answered.
    """

    def __init__(
        self,
        client: openai.AsyncOpenAI,
        model: str,
        fallback_model: Optional[str] = None,
        api: Literal["chat", "responses"] = "chat",
        stream: bool = True,
        system_prompt: Optional[str] = None,
    ):
        self._client = client
        self.model = model
        self.fallback_model = fallback_model
        self.api = api
        self.stream = stream
        self.system_prompt = system_prompt

    @classmethod
    def from_settings(
        cls, settings: Settings, client: openai.AsyncOpenAI
    ) -> "GenerationClient":
        return cls(
            client,
            model=settings.generation_model,
            fallback_model=settings.generation_fallback_model,
            api=settings.generation_api,
            stream=settings.stream_replies,
            system_prompt=settings.system_prompt,
        )

    async def stream_reply(
        self, context: ConversationContext, user_text: str
    ) -> AsyncIterator[ReplyDelta]:
        """
        Yield the reply to ``user_text`` given the prior ``context``.

        The context is read, never modified; committing the finished turn is
        the caller's job.

        Raises:
            GenerationError: empty prompt, unsupported context/protocol pair, or
                a service failure (after the one model fallback).
        """
        text = user_text.strip() if user_text else ""
        if not text:
            raise GenerationError("empty prompt")

        logger.info(
            f"Requesting reply ({self.api}, model={self.model}, stream={self.stream})"
        )

        if self.api == "responses":
            deltas = self._responses_reply(context, text)
        else:
            deltas = self._chat_reply(context, text)

        try:
            async for delta in deltas:
                yield delta
        except (openai.OpenAIError, httpx.HTTPError) as exc:
            raise GenerationError(str(exc), model=self.model) from exc

    async def _chat_reply(
        self, context: ConversationContext, text: str
    ) -> AsyncIterator[ReplyDelta]:
        if not isinstance(context, HistoryContext):
            raise GenerationError("chat completions need a message history context")

        messages: list[dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(m.to_openai() for m in context.build_messages(text))
        logger.debug(f"Chat request with {len(messages)} messages in context")

        async def _request(model: str):
            return await self._client.chat.completions.create(
                model=model,
                messages=messages,
                stream=self.stream,
            )

        result = await call_with_model_fallback(
            _request, self.model, self.fallback_model, label="LLM"
        )

        if not self.stream:
            content = result.choices[0].message.content if result.choices else None
            if content and content.strip():
                yield ReplyDelta(text=content.strip())
            return

        async for chunk in result:
            for choice in chunk.choices or []:
                content = choice.delta.content if choice.delta else None
                if isinstance(content, str) and content:
                    yield ReplyDelta(text=content)

    async def _responses_reply(
        self, context: ConversationContext, text: str
    ) -> AsyncIterator[ReplyDelta]:
        kwargs: dict[str, Any] = {"stream": self.stream}
        if self.system_prompt:
            kwargs["instructions"] = self.system_prompt

        if isinstance(context, TokenContext):
            kwargs["input"] = text
            if context.response_id:
                kwargs["previous_response_id"] = context.response_id
        else:
            kwargs["input"] = [m.to_openai() for m in context.build_messages(text)]

        async def _request(model: str):
            return await self._client.responses.create(model=model, **kwargs)

        result = await call_with_model_fallback(
            _request, self.model, self.fallback_model, label="LLM"
        )

        if not self.stream:
            output_text = (getattr(result, "output_text", None) or "").strip()
            yield ReplyDelta(text=output_text, response_id=getattr(result, "id", None))
            return

        response_id: Optional[str] = None
        async for event in result:
            event_type = getattr(event, "type", "")
            if event_type == "response.output_text.delta":
                if event.delta:
                    yield ReplyDelta(text=event.delta)
            elif event_type == "response.created":
                response_id = event.response.id
            elif event_type == "response.completed":
                response_id = event.response.id
            elif event_type in ("response.failed", "error"):
                raise GenerationError(_describe_failure(event), model=self.model)

        if response_id:
            yield ReplyDelta(response_id=response_id)


def _describe_failure(event: Any) -> str:
    message = getattr(event, "message", None)
    if message:
        return str(message)
    response = getattr(event, "response", None)
    error = getattr(response, "error", None)
    return str(getattr(error, "message", None) or "response failed")


__all__ = ["GenerationClient", "ReplyDelta"]
