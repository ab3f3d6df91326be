"""FastAPI application exposing chat and document ingestion over HTTP."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing, asynccontextmanager
from typing import Any, AsyncIterator
from uuid import uuid4

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from ragstream import __version__
from ragstream.config import settings
from ragstream.container import RagComponents, build_components
from ragstream.errors import (
    NotFoundError,
    ProviderTimeoutError,
    RagError,
    UpstreamError,
    ValidationError,
)
from ragstream.ingestion.queue import InMemoryJobQueue

logger = logging.getLogger(__name__)

_STATUS_CODES: dict[type[RagError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    ProviderTimeoutError: 408,
    UpstreamError: 502,
}

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# ── Request / Response schemas ────────────────────────────────────────
class ChatRequest(BaseModel):
    """Incoming chat turn."""

    message: str
    model: str = "chatgpt"
    history: list[dict[str, Any]] = Field(default_factory=list)


class IngestResponse(BaseModel):
    doc_id: str
    queued: bool = True


# ── Helpers ───────────────────────────────────────────────────────────
def get_components(request: Request) -> RagComponents:
    return request.app.state.components


def _error_response(code: str, message: str, status_code: int) -> JSONResponse:
    trace_id = uuid4().hex[:12]
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "trace_id": trace_id}},
    )


def _status_for(exc: RagError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_CODES:
            return _STATUS_CODES[cls]
    return 500


# ── Application factory ───────────────────────────────────────────────
def create_app(components: RagComponents | None = None, *, run_workers: bool | None = None) -> FastAPI:
    """Build the API.

    Parameters
    ----------
    components:
        Pre-built components (tests).  When omitted they are built from
        the environment inside the lifespan, so importing this module
        never connects to anything.
    run_workers:
        Start the ingestion workers inside this process.  Defaults to
        ``True`` only for the in-memory queue; with Redis the separate
        ``ragstream-worker`` process does the work.
    """

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        owned = components is None
        if owned:
            logging.basicConfig(level=(settings.log_level or "INFO"))
        comps = components or build_components(settings)
        application.state.components = comps

        start_workers = run_workers if run_workers is not None else isinstance(comps.queue, InMemoryJobQueue)
        if start_workers:
            await comps.queue.start()
        logger.info("API started (version %s, in-process workers: %s)", __version__, start_workers)

        yield

        if owned:
            await comps.aclose()
        elif start_workers:
            await comps.queue.close()
        logger.info("API stopped")

    app = FastAPI(
        title="ragstream API",
        version=__version__,
        description="Streaming retrieval-augmented chat over uploaded documents.",
        lifespan=lifespan,
    )

    # ── Error mapping ─────────────────────────────────────────────────
    @app.exception_handler(RagError)
    async def handle_rag_error(request: Request, exc: RagError) -> JSONResponse:
        status_code = _status_for(exc)
        log = logger.warning if status_code < 500 else logger.error
        log("%s %s failed with %s: %s", request.method, request.url.path, exc.code, exc)
        return _error_response(exc.code, str(exc), status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(ValidationError.code, str(exc.errors()), 400)

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    async def health(comps: RagComponents = Depends(get_components)) -> dict[str, str]:
        """Liveness probe plus a vector index heartbeat."""
        index_up = await asyncio.to_thread(comps.store.health_check)
        return {"status": "ok", "index": "up" if index_up else "down"}

    @app.post("/chat")
    async def chat_stream(
        body: ChatRequest, request: Request, comps: RagComponents = Depends(get_components)
    ) -> StreamingResponse:
        """Stream one chat turn as server-sent events."""
        generator = comps.generator
        # Reject bad input with a 400 before the stream opens.
        generator.validate_request(body.message, body.model, body.history)
        cancel = asyncio.Event()

        async def event_source() -> AsyncIterator[str]:
            try:
                async with aclosing(
                    generator.stream(body.message, body.model, body.history, cancel)
                ) as events:
                    async for event in events:
                        if await request.is_disconnected():
                            cancel.set()
                        yield event.to_sse()
            finally:
                cancel.set()

        return StreamingResponse(event_source(), media_type="text/event-stream", headers=_SSE_HEADERS)

    @app.post("/chat/sync")
    async def chat_sync(body: ChatRequest, comps: RagComponents = Depends(get_components)) -> dict[str, Any]:
        """Run one chat turn and return the complete answer."""
        result = await comps.generator.chat(body.message, body.model, body.history)
        return result.model_dump(mode="json")

    @app.post("/documents", status_code=202, response_model=IngestResponse)
    async def upload_document(
        file: UploadFile = File(...), comps: RagComponents = Depends(get_components)
    ) -> dict[str, Any]:
        """Store an uploaded file and queue it for indexing."""
        if not file.filename:
            raise ValidationError("No file uploaded")
        data = await file.read()
        return await comps.pipeline.ingest_upload(
            data, file.filename, file.content_type or "application/octet-stream"
        )

    @app.post("/documents/{doc_id}/reindex", status_code=202, response_model=IngestResponse)
    async def reindex_document(doc_id: str, comps: RagComponents = Depends(get_components)) -> dict[str, Any]:
        return await comps.pipeline.reindex_document(doc_id)

    @app.delete("/documents/{doc_id}")
    async def delete_document(doc_id: str, comps: RagComponents = Depends(get_components)) -> dict[str, Any]:
        return await comps.pipeline.delete_document(doc_id)

    @app.get("/documents/{doc_id}/status")
    async def document_status(doc_id: str, comps: RagComponents = Depends(get_components)) -> dict[str, Any]:
        status = await comps.pipeline.get_status(doc_id)
        return status.model_dump(mode="json", exclude={"file_path"})

    @app.get("/stats")
    async def stats(comps: RagComponents = Depends(get_components)) -> dict[str, Any]:
        """Queue counters, index size and embedding cache counters."""
        data = await comps.pipeline.stats()
        data["embedding_cache"] = comps.embedder.stats
        return data

    return app


app = create_app()
