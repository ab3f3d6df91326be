"""
Ingestion: parsing, chunking and embedding uploads into the vector index.

Three stages (parse, embed, upsert) run as retryable jobs connected by
queues; see :mod:`ragstream.ingestion.pipeline`.
"""
