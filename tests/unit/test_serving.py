"""Unit tests for the serving layer."""

from __future__ import annotations

import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ragstream.config import Settings
from ragstream.container import RagComponents, build_components
from ragstream.ingestion.models import IndexPoint, PointPayload
from ragstream.serving.app import create_app

from conftest import DEFAULT_REPLY, FakeEmbeddings, FakeLlmFactory, InMemoryVectorStore

PASSAGE = "Employees accrue twenty vacation days of paid leave per year."


@pytest.fixture()
def components(tmp_path: Path) -> RagComponents:
    embeddings = FakeEmbeddings()
    store = InMemoryVectorStore()
    store.upsert(
        [
            IndexPoint(
                id="p-1",
                vector=embeddings._vector(PASSAGE),
                payload=PointPayload(
                    doc_id="handbook", chunk_id="handbook_p1_c0", title="handbook.txt", page=1, text=PASSAGE
                ),
            )
        ]
    )
    settings = Settings(
        cache_backend="memory",
        queue_backend="memory",
        storage_dir=str(tmp_path),
        job_backoff_seconds=0.01,
        embed_batch_delay_seconds=0,
        score_threshold=0.05,
    )
    return build_components(settings, store=store, embeddings=embeddings, llm_factory=FakeLlmFactory())


@pytest.fixture()
def client(components: RagComponents):  # noqa: ANN201
    with TestClient(create_app(components, run_workers=False)) as test_client:
        yield test_client


def _wait_for_state(client: TestClient, doc_id: str, state: str, timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/documents/{doc_id}/status").json()
        if body["state"] == state:
            return body
        time.sleep(0.05)
    raise AssertionError(f"document {doc_id} never reached {state}")


# ── Health / stats ──────────────────────────────────────────────────────


def test_health_endpoint(client: TestClient) -> None:
    """GET /health should return 200 with status ok."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "index": "up"}


def test_stats_endpoint(client: TestClient) -> None:
    body = client.get("/stats").json()
    assert set(body["queues"]) == {"parse", "embed", "upsert"}
    assert body["collection"]["points_count"] == 1
    assert body["embedding_cache"] == {"cache_hits": 0, "cache_misses": 0}


# ── Chat ────────────────────────────────────────────────────────────────


class TestChatEndpoints:
    def test_sync_chat(self, client: TestClient) -> None:
        response = client.post("/chat/sync", json={"message": "How many vacation days?"})

        assert response.status_code == 200
        body = response.json()
        assert body["response"] == DEFAULT_REPLY
        assert body["sources"][0]["citation"] == "[handbook.txt p.1]"
        assert body["metadata"]["model"] == "chatgpt"

    def test_stream_chat_is_sse(self, client: TestClient) -> None:
        response = client.post("/chat", json={"message": "How many vacation days?", "history": []})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert "event: status\ndata: \"Embedding query...\"" in response.text
        assert "event: sources" in response.text
        assert "event: content" in response.text
        assert response.text.rstrip().split("\n\n")[-1].startswith("event: done")

    def test_empty_message_is_400(self, client: TestClient) -> None:
        response = client.post("/chat", json={"message": "  "})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_INPUT"
        assert error["message"] == "Message is required"
        assert error["trace_id"]

    def test_unknown_model_is_400(self, client: TestClient) -> None:
        response = client.post("/chat/sync", json={"message": "hi", "model": "gpt-99"})
        assert response.status_code == 400
        assert "Invalid model" in response.json()["error"]["message"]

    def test_malformed_body_is_400(self, client: TestClient) -> None:
        response = client.post("/chat/sync", json={"history": []})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    def test_index_failure_is_502(self, client: TestClient, components: RagComponents) -> None:
        components.store.fail_search = True
        response = client.post("/chat/sync", json={"message": "anything"})
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "UPSTREAM_UNAVAILABLE"


# ── Documents ───────────────────────────────────────────────────────────


class TestDocumentEndpoints:
    def test_upload_is_queued(self, client: TestClient) -> None:
        response = client.post(
            "/documents", files={"file": ("notes.txt", b"Short notes about the handbook.", "text/plain")}
        )

        assert response.status_code == 202
        body = response.json()
        assert body["queued"] is True

        status = client.get(f"/documents/{body['doc_id']}/status").json()
        assert status["state"] == "queued_parse"
        assert status["filename"] == "notes.txt"
        assert "file_path" not in status

    def test_unsupported_upload_is_400(self, client: TestClient) -> None:
        response = client.post("/documents", files={"file": ("photo.png", b"\x89PNG", "image/png")})
        assert response.status_code == 400

    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("get", "/documents/missing/status"),
            ("delete", "/documents/missing"),
            ("post", "/documents/missing/reindex"),
        ],
    )
    def test_unknown_document_is_404(self, client: TestClient, method: str, path: str) -> None:
        response = getattr(client, method)(path)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


def test_upload_is_indexed_by_in_process_workers(components: RagComponents) -> None:
    with TestClient(create_app(components)) as client:
        response = client.post(
            "/documents", files={"file": ("policy.md", b"Remote work needs manager approval.", "text/markdown")}
        )
        doc_id = response.json()["doc_id"]

        status = _wait_for_state(client, doc_id, "done")
        assert status["detail"] == "1 points indexed"
        assert len(components.store.points_for(doc_id)) == 1

        assert client.delete(f"/documents/{doc_id}").json() == {"doc_id": doc_id, "deleted": True}
        assert components.store.points_for(doc_id) == []
