"""Staged ingestion: parse → embed → upsert, connected by job queues.

Each stage is a queue worker.  A stage enqueues the next one only after its
own work succeeded, so for one document the stages always run in order;
failures are retried by the queue and, once attempts are exhausted, the
document lands in the ``failed`` state with the error as detail.

Usage::

    pipeline = IngestionPipeline(queue, store, embedder)
    await queue.start()
    result = await pipeline.ingest_upload(data, "guide.md", "text/markdown")
    status = await pipeline.get_status(result["doc_id"])
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any
from uuid import uuid4

from ragstream.errors import NotFoundError, UpstreamError, ValidationError
from ragstream.ingestion.chunker import chunk_document
from ragstream.ingestion.embedder import CachedEmbedder
from ragstream.ingestion.loader import is_supported, parse_file, save_upload
from ragstream.ingestion.models import Document, DocumentState, IndexPoint
from ragstream.ingestion.queue import DocumentStatus, Job, JobQueue
from ragstream.retrieval.base import VectorStoreBase
from ragstream.retrieval.models import MetadataFilter
from ragstream.retry import RetryPolicy

logger = logging.getLogger(__name__)

PARSE_QUEUE = "parse"
EMBED_QUEUE = "embed"
UPSERT_QUEUE = "upsert"
STAGES = (PARSE_QUEUE, EMBED_QUEUE, UPSERT_QUEUE)


class IngestionPipeline:
    """Owns the three ingestion stages and the document operations.

    Parameters
    ----------
    queue:
        Job queue the stages run on.  Workers are registered here; they
        only run in processes that call ``queue.start()``.
    store:
        Vector index receiving the points.
    embedder:
        Cached embedder used by the embed stage.
    chunk_size, chunk_overlap:
        Chunker parameters.
    policy:
        Retry policy for stage jobs and for direct index deletes.
    parse_concurrency, embed_concurrency, upsert_concurrency:
        Worker pool size per stage.
    storage_dir:
        Where :meth:`ingest_upload` writes uploaded files.
    """

    def __init__(
        self,
        queue: JobQueue,
        store: VectorStoreBase,
        embedder: CachedEmbedder,
        *,
        chunk_size: int = 1200,
        chunk_overlap: int = 180,
        policy: RetryPolicy | None = None,
        parse_concurrency: int = 4,
        embed_concurrency: int = 4,
        upsert_concurrency: int = 2,
        storage_dir: str | Path = "./storage",
    ) -> None:
        self._queue = queue
        self._store = store
        self._embedder = embedder
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.policy = policy or queue.default_policy
        self.storage_dir = Path(storage_dir)

        queue.register_worker(
            PARSE_QUEUE, self._parse_stage, concurrency=parse_concurrency, on_failed=self._on_failed
        )
        queue.register_worker(
            EMBED_QUEUE, self._embed_stage, concurrency=embed_concurrency, on_failed=self._on_failed
        )
        queue.register_worker(
            UPSERT_QUEUE, self._upsert_stage, concurrency=upsert_concurrency, on_failed=self._on_failed
        )

    # -- document operations --------------------------------------------------

    async def ingest_upload(self, data: bytes, filename: str, mime_type: str) -> dict[str, Any]:
        """Store uploaded bytes under ``storage_dir`` and queue them for indexing."""
        if not is_supported(filename):
            raise ValidationError(f"Unsupported file type: {filename!r}")
        if not data:
            raise ValidationError("Uploaded file is empty")
        path = await asyncio.to_thread(save_upload, data, filename, self.storage_dir)
        return await self.index_document(path, filename, mime_type)

    async def index_document(
        self,
        file_path: str | Path,
        filename: str,
        mime_type: str,
        *,
        doc_id: str | None = None,
    ) -> dict[str, Any]:
        """Queue a stored file for parsing under a new (or the given) id."""
        if not is_supported(filename):
            raise ValidationError(f"Unsupported file type: {filename!r}")
        doc_id = doc_id or uuid4().hex
        await self._queue.set_document_state(
            doc_id,
            DocumentState.QUEUED_PARSE,
            file_path=str(file_path),
            filename=filename,
            mime_type=mime_type,
        )
        await self._queue.enqueue(
            PARSE_QUEUE,
            doc_id,
            {"file_path": str(file_path), "filename": filename, "mime_type": mime_type},
            self.policy,
        )
        logger.info("Document queued for indexing: %s (%s)", filename, doc_id)
        return {"doc_id": doc_id, "queued": True}

    async def reindex_document(
        self,
        doc_id: str,
        file_path: str | Path | None = None,
        filename: str | None = None,
        mime_type: str | None = None,
    ) -> dict[str, Any]:
        """Drop every point of *doc_id* and run the pipeline again under the same id.

        Without explicit file details the ones recorded at upload are used.
        """
        status = await self._queue.get_document_state(doc_id)
        if file_path is None:
            if status is None or not status.file_path:
                raise NotFoundError(f"Unknown document: {doc_id}")
            file_path = status.file_path
        filename = filename or (status.filename if status else "") or Path(file_path).name
        mime_type = mime_type or (status.mime_type if status else "") or "text/plain"

        await self.policy.call(self._delete_points, doc_id)
        logger.info("Removed existing points for document %s before reindex", doc_id)
        return await self.index_document(file_path, filename, mime_type, doc_id=doc_id)

    async def delete_document(self, doc_id: str) -> dict[str, Any]:
        """Remove the document's points, pipeline state and stored file."""
        status = await self._queue.get_document_state(doc_id)
        if status is None:
            raise NotFoundError(f"Unknown document: {doc_id}")
        await self.policy.call(self._delete_points, doc_id)
        await self._queue.clear_document_state(doc_id)
        if status.file_path:
            Path(status.file_path).unlink(missing_ok=True)
        logger.info("Document deleted: %s", doc_id)
        return {"doc_id": doc_id, "deleted": True}

    async def get_status(self, doc_id: str) -> DocumentStatus:
        status = await self._queue.get_document_state(doc_id)
        if status is None:
            raise NotFoundError(f"Unknown document: {doc_id}")
        return status

    async def stats(self) -> dict[str, Any]:
        """Per-stage queue counters plus the index point count."""
        queues = {name: (await self._queue.stats(name)).model_dump() for name in STAGES}
        try:
            collection = await asyncio.to_thread(self._store.collection_info)
        except Exception as exc:
            raise UpstreamError(f"Failed to read collection info: {exc}") from exc
        return {"queues": queues, "collection": collection}

    # -- stages ---------------------------------------------------------------

    async def _parse_stage(self, job: Job) -> None:
        payload = job.payload
        await self._queue.set_document_state(job.doc_id, DocumentState.PARSING)
        if not Path(payload["file_path"]).is_file():
            raise ValidationError(f"Stored file is missing: {payload['file_path']}")
        document = await asyncio.to_thread(
            parse_file, payload["file_path"], payload["filename"], payload["mime_type"], doc_id=job.doc_id
        )
        await self._queue.set_document_state(job.doc_id, DocumentState.QUEUED_EMBED)
        await self._queue.enqueue(
            EMBED_QUEUE, job.doc_id, {"document": document.model_dump(mode="json")}, self.policy
        )

    async def _embed_stage(self, job: Job) -> None:
        await self._queue.set_document_state(job.doc_id, DocumentState.EMBEDDING)
        document = Document.model_validate(job.payload["document"])
        chunks = chunk_document(document, self.chunk_size, self.chunk_overlap)
        if not chunks:
            raise ValidationError(f"No text could be extracted from {document.filename}")
        logger.info("Created %d chunks for %s", len(chunks), document.filename)

        embedded = await self._embedder.embed_chunks(chunks)
        points = [IndexPoint.from_embedded_chunk(c).model_dump(mode="json") for c in embedded]
        await self._queue.set_document_state(job.doc_id, DocumentState.QUEUED_UPSERT)
        await self._queue.enqueue(UPSERT_QUEUE, job.doc_id, {"points": points}, self.policy)

    async def _upsert_stage(self, job: Job) -> None:
        await self._queue.set_document_state(job.doc_id, DocumentState.UPSERTING)
        points = [IndexPoint.model_validate(p) for p in job.payload["points"]]
        try:
            count = await asyncio.to_thread(self._store.upsert, points)
        except Exception as exc:
            raise UpstreamError(f"Vector upsert failed: {exc}") from exc
        await self._queue.set_document_state(job.doc_id, DocumentState.DONE, f"{count} points indexed")
        logger.info("Indexed %d points for document %s", count, job.doc_id)

    async def _on_failed(self, job: Job, exc: BaseException) -> None:
        await self._queue.set_document_state(
            job.doc_id, DocumentState.FAILED, f"{job.queue} stage failed: {exc}"
        )

    # -- internals ------------------------------------------------------------

    async def _delete_points(self, doc_id: str) -> None:
        try:
            await asyncio.to_thread(self._store.delete_by_filter, [MetadataFilter.for_document(doc_id)])
        except Exception as exc:
            raise UpstreamError(f"Failed to delete points for {doc_id}: {exc}") from exc
