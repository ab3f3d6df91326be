"""Prompt templates for grounded answers with bracket citations."""

from __future__ import annotations

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

PROMPT_VERSION = "v1"

SYSTEM_PROMPT = """\
You are a retrieval-augmented assistant that answers from the provided context.
Cite the supporting passage for every claim in the bracket format [title p.page].
If the context is insufficient, say that your answer is an estimate and state
what additional information would be needed.
Avoid unnecessary verbosity and prefer itemised answers.
"""


def build_user_turn(message: str, context: str) -> str:
    return f"Question: {message}\n\nSearch context:\n{context}"


def build_messages(
    message: str,
    context: str,
    history: list[dict[str, str]] | None = None,
) -> list[BaseMessage]:
    """Assemble system prompt, prior turns and the grounded user turn.

    Parameters
    ----------
    message:
        The user's question.
    context:
        Citation lines produced by the context assembler.
    history:
        Prior turns as ``{"role": "user" | "assistant", "content": ...}``
        dicts, already capped by the caller.
    """
    messages: list[BaseMessage] = [SystemMessage(content=SYSTEM_PROMPT)]
    for turn in history or []:
        if turn["role"] == "user":
            messages.append(HumanMessage(content=turn["content"]))
        else:
            messages.append(AIMessage(content=turn["content"]))
    messages.append(HumanMessage(content=build_user_turn(message, context)))
    return messages
