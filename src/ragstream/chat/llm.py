"""LLM initialisation: single place to swap chat providers.

Supports two modes:

1. **OpenAI cloud** (default): set ``OPENAI_API_KEY``.
2. **OpenAI-compatible endpoint** (vLLM, LiteLLM gateway, ...): set
   ``LLM_BASE_URL``.  The endpoint exposes ``/v1/chat/completions``, so
   ``ChatOpenAI`` works unchanged.
"""

from __future__ import annotations

import logging
from typing import Callable

from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI

logger = logging.getLogger(__name__)

LlmFactory = Callable[[str], BaseChatModel]


def get_llm(
    model_name: str,
    *,
    api_key: str = "",
    base_url: str = "",
    temperature: float = 0.7,
    max_tokens: int = 2000,
    timeout: float | None = 30.0,
) -> ChatOpenAI:
    """Return a streaming-capable chat model for *model_name*.

    When *base_url* is set the client is pointed at that endpoint instead
    of the OpenAI cloud API; a dummy key (``"EMPTY"``) is used when none is
    configured because self-hosted servers usually skip authentication.
    """
    kwargs: dict = {
        "model": model_name,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "timeout": timeout,
    }

    if base_url:
        logger.info("Using OpenAI-compatible endpoint: %s", base_url)
        kwargs["base_url"] = base_url
        # LangChain requires a non-empty key.
        kwargs["api_key"] = api_key or "EMPTY"
    else:
        kwargs["api_key"] = api_key or None

    return ChatOpenAI(**kwargs)
