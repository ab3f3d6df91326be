"""
ragstream: retrieval-augmented question answering over uploaded documents.

Two pipelines share one chunk data model and a cache layer:

- :mod:`ragstream.ingestion`: parse → embed → upsert, staged through
  durable job queues with retries.
- :mod:`ragstream.retrieval` + :mod:`ragstream.chat`: embed the query,
  search, diversify, deduplicate, window, rerank, assemble context and
  stream the model's answer as typed events.

Components are constructed once (see :mod:`ragstream.container`) and
passed by reference, so every stage can be exercised with fakes.
"""

__version__ = "0.1.0"
