"""
Chat: the query-time ranking graph and the streaming generator.

Public API
----------
- :func:`build_ranking_graph`: compile the ranking chain.
- :class:`StreamingGenerator`: event stream and synchronous answers.
- :class:`StreamEvent`: one typed stream event.
"""

from ragstream.chat.events import StreamEvent
from ragstream.chat.generator import ChatMetadata, ChatResult, StreamingGenerator
from ragstream.chat.graph import build_ranking_graph

__all__ = [
    "ChatMetadata",
    "ChatResult",
    "StreamEvent",
    "StreamingGenerator",
    "build_ranking_graph",
]
