"""Error taxonomy shared by the ingestion and query pipelines.

* :class:`ValidationError`: bad caller input; never retried.
* :class:`UpstreamError`: embedding / index / model provider failure.
  Retried only by the ingestion queue; at query time it becomes the
  terminal ``error`` event.
* :class:`ProviderTimeoutError`: a provider exceeded its deadline.  It is
  an :class:`UpstreamError`, so ingestion retries it like any other
  provider failure.
* :class:`RerankError`: always caught by the reranker and replaced by the
  fallback ranking.
"""

from __future__ import annotations


class RagError(Exception):
    """Base class for all ragstream errors."""

    code = "INTERNAL_SERVER_ERROR"


class ValidationError(RagError):
    code = "INVALID_INPUT"


class NotFoundError(RagError):
    code = "NOT_FOUND"


class UpstreamError(RagError):
    code = "UPSTREAM_UNAVAILABLE"


class ProviderTimeoutError(UpstreamError):
    code = "TIMEOUT"


class RerankError(RagError):
    code = "RERANK_FAILED"
