"""Streaming generator: ranking graph + chat model → typed event stream.

Event order for one request::

    status*  sources  status  content*  (done | error)

Exactly one terminal event closes every stream.  Cancellation is
cooperative: callers pass an :class:`asyncio.Event` and set it when the
consumer goes away; the generator checks it between events and closes the
model stream.  Closing the async iterator itself (``aclose()``) also closes
the underlying model stream.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from pydantic import BaseModel

from ragstream.cache.base import CacheStore, cache_key
from ragstream.chat.events import StreamEvent
from ragstream.chat.llm import LlmFactory
from ragstream.chat.prompts import PROMPT_VERSION, build_messages
from ragstream.errors import ProviderTimeoutError, UpstreamError, ValidationError
from ragstream.retrieval.models import SourceCitation

logger = logging.getLogger(__name__)

# Progress text emitted once the named node has finished.
_NEXT_STATUS = {
    "embed_query": "Searching documents...",
    "retrieve": "Processing results...",
    "window": "Reranking results...",
}
_ROLES = ("user", "assistant")


class ChatMetadata(BaseModel):
    model: str
    retrieved_count: int
    final_count: int
    duration: float
    cached: bool = False


class ChatResult(BaseModel):
    response: str
    sources: list[SourceCitation]
    metadata: ChatMetadata


class StreamingGenerator:
    """Drive the ranking graph and the chat model for one conversation turn.

    Parameters
    ----------
    graph:
        Compiled ranking graph (see :func:`~ragstream.chat.graph.build_ranking_graph`).
    llm_factory:
        Returns a chat model for a provider model id.
    cache:
        Optional answer cache used by :meth:`chat`.
    model_aliases:
        Public model names accepted from callers → provider model ids.
    max_history_turns:
        History is capped to this many user/assistant exchanges.
    max_message_chars, max_history_messages:
        Request validation limits.
    answer_ttl:
        TTL for cached answers.
    """

    def __init__(
        self,
        graph: Any,
        llm_factory: LlmFactory,
        *,
        cache: CacheStore | None = None,
        model_aliases: dict[str, str] | None = None,
        max_history_turns: int = 8,
        max_message_chars: int = 4000,
        max_history_messages: int = 20,
        answer_ttl: int | None = None,
    ) -> None:
        self._graph = graph
        self._llm_factory = llm_factory
        self._cache = cache
        self.model_aliases = model_aliases or {"chatgpt": "gpt-4o-mini"}
        self.max_history_turns = max_history_turns
        self.max_message_chars = max_message_chars
        self.max_history_messages = max_history_messages
        self._answer_ttl = answer_ttl

    # -- request handling -----------------------------------------------------

    def validate_request(
        self, message: str, model: str, history: list[dict[str, Any]] | None = None
    ) -> list[dict[str, str]]:
        """Check a chat request and return the normalised history.

        Raises
        ------
        ValidationError
            Empty or oversized message, too much history, malformed turns,
            or an unknown model name.
        """
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message is required")
        if len(message) > self.max_message_chars:
            raise ValidationError(f"Message too long (max {self.max_message_chars} characters)")
        if model not in self.model_aliases:
            allowed = ", ".join(sorted(self.model_aliases))
            raise ValidationError(f"Invalid model. Must be one of: {allowed}")

        history = history or []
        if len(history) > self.max_history_messages:
            raise ValidationError(f"History too long (max {self.max_history_messages} messages)")
        normalised: list[dict[str, str]] = []
        for turn in history:
            if not isinstance(turn, dict) or turn.get("role") not in _ROLES:
                raise ValidationError("History items need a role of 'user' or 'assistant'")
            normalised.append({"role": turn["role"], "content": str(turn.get("content") or "")})
        return normalised

    def compact_history(self, history: list[dict[str, str]]) -> list[dict[str, str]]:
        """Keep the most recent ``max_history_turns`` exchanges."""
        limit = 2 * self.max_history_turns
        if len(history) <= limit:
            return history
        return history[-limit:] if limit else []

    def resolve_model(self, model: str) -> str:
        return self.model_aliases[model]

    # -- streaming ------------------------------------------------------------

    async def stream(
        self,
        message: str,
        model: str = "chatgpt",
        history: list[dict[str, Any]] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield the event sequence for one chat turn.

        Failures never escape as exceptions: they end the stream with an
        ``error`` event instead.
        """
        start = time.monotonic()

        def cancelled() -> bool:
            return cancel is not None and cancel.is_set()

        try:
            turns = self.compact_history(self.validate_request(message, model, history))
            logger.info("Starting streaming chat with model: %s", model)

            yield StreamEvent.status("Embedding query...")
            ranked: dict[str, Any] = {}
            async with aclosing(self._graph.astream({"query": message}, stream_mode="updates")) as updates:
                async for update in updates:
                    for node, values in update.items():
                        ranked.update(values or {})
                        if node in _NEXT_STATUS:
                            yield StreamEvent.status(_NEXT_STATUS[node])
                    if cancelled():
                        yield self._cancelled_event()
                        return

            sources: list[SourceCitation] = ranked.get("sources", [])
            source_data = [s.model_dump() for s in sources]
            yield StreamEvent(type="sources", data=source_data)
            yield StreamEvent.status("Generating response...")

            llm = self._llm_factory(self.resolve_model(model))
            messages = build_messages(message, ranked.get("context", ""), turns)
            async with aclosing(llm.astream(messages)) as chunks:
                async for chunk in chunks:
                    if cancelled():
                        yield self._cancelled_event()
                        return
                    text = chunk.content if isinstance(chunk.content, str) else ""
                    if text:
                        yield StreamEvent.content(text)

            duration = round(time.monotonic() - start, 3)
            logger.info("Streaming chat completed in %.3fs with %d sources", duration, len(sources))
            yield StreamEvent(type="done", data={"duration": duration, "sources": source_data})
        except Exception as exc:
            logger.error("Streaming chat failed: %s", exc)
            yield StreamEvent.error(_describe(exc))

    # -- synchronous ----------------------------------------------------------

    async def chat(
        self,
        message: str,
        model: str = "chatgpt",
        history: list[dict[str, Any]] | None = None,
        *,
        use_cache: bool = True,
    ) -> ChatResult:
        """Run the whole turn and return the complete answer.

        Raises
        ------
        ValidationError
            For malformed requests.
        ProviderTimeoutError
            When the chat model exceeded its deadline.
        UpstreamError
            For any other provider or index failure.
        """
        start = time.monotonic()
        turns = self.compact_history(self.validate_request(message, model, history))
        provider_model = self.resolve_model(model)
        logger.info("Starting chat with model: %s", model)

        try:
            ranked = await self._graph.ainvoke({"query": message})
        except UpstreamError:
            raise
        except Exception as exc:
            raise UpstreamError(f"Ranking failed: {exc}") from exc

        context = ranked.get("context", "")
        sources = ranked.get("sources", [])
        key = _answer_key(provider_model, message, turns, context)

        response = None
        if use_cache and self._cache is not None:
            response = await self._cache.get(key)
        cached = response is not None
        if not cached:
            response = await self._generate(provider_model, build_messages(message, context, turns))
            if use_cache and self._cache is not None:
                await self._cache.set(key, response, self._answer_ttl)

        duration = round(time.monotonic() - start, 3)
        logger.info("Chat completed in %.3fs with %d sources", duration, len(sources))
        return ChatResult(
            response=response,
            sources=sources,
            metadata=ChatMetadata(
                model=model,
                retrieved_count=len(ranked.get("retrieved", [])),
                final_count=len(ranked.get("reranked", [])),
                duration=duration,
                cached=cached,
            ),
        )

    # -- internals ------------------------------------------------------------

    async def _generate(self, provider_model: str, messages: list) -> str:
        llm = self._llm_factory(provider_model)
        try:
            result = await llm.ainvoke(messages)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError("Chat request timed out") from exc
        except Exception as exc:
            if "timeout" in type(exc).__name__.lower():
                raise ProviderTimeoutError("Chat request timed out") from exc
            raise UpstreamError(f"Chat generation failed: {exc}") from exc
        return result.content if isinstance(result.content, str) else str(result.content)

    @staticmethod
    def _cancelled_event() -> StreamEvent:
        logger.info("Streaming chat cancelled by the client")
        return StreamEvent.error("Request cancelled")


def _answer_key(model: str, message: str, history: list[dict[str, str]], context: str) -> str:
    # History changes the answer, so it is folded into the message digest.
    prompt = message if not history else message + "\n" + json.dumps(history, sort_keys=True)
    return cache_key("answer", model, prompt, context, PROMPT_VERSION)


def _describe(exc: Exception) -> str:
    if isinstance(exc, asyncio.TimeoutError) or "timeout" in type(exc).__name__.lower():
        return "Chat request timed out"
    return str(exc) or type(exc).__name__
