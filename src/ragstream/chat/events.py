"""Typed events emitted by the streaming generator."""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel

EventType = Literal["status", "sources", "content", "done", "error"]
TERMINAL_EVENTS = ("done", "error")


class StreamEvent(BaseModel):
    """One event of a chat stream.

    ``status`` carries progress text, ``sources`` the citation list,
    ``content`` an answer fragment, ``done`` ``{duration, sources}`` and
    ``error`` ``{message}``.
    """

    type: EventType
    data: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    @classmethod
    def status(cls, text: str) -> StreamEvent:
        return cls(type="status", data=text)

    @classmethod
    def content(cls, text: str) -> StreamEvent:
        return cls(type="content", data=text)

    @classmethod
    def error(cls, message: str) -> StreamEvent:
        return cls(type="error", data={"message": message})

    def to_sse(self) -> str:
        """Server-sent-events frame for this event."""
        payload = self.model_dump(mode="json")["data"]
        return f"event: {self.type}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"
