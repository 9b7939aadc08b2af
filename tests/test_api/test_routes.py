from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import FakeEmbedder, FakeGateway, static_cache
from nexus.api.dependencies import get_document_embedder, get_model_gateway
from nexus.core.exceptions import UpstreamError
from nexus.database import get_db
from nexus.guardrails.policy import GuardrailPolicy
from nexus.main import app

HEADERS = {"X-User-Id": "user-1", "X-User-Role": "member"}


@pytest.fixture
def gateway():
    return FakeGateway(reply="hello from model")


@pytest.fixture
def client(db_session, gateway):
    def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_model_gateway] = lambda: gateway
    app.dependency_overrides[get_document_embedder] = lambda: FakeEmbedder()
    app.state.policy_cache = static_cache(GuardrailPolicy.fail_closed())
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        app.state.policy_cache = None


def test_missing_identity_is_rejected(client):
    response = client.post("/api/v1/chat/message", json={"message": "hi", "model_id": "fast"})
    assert response.status_code == 400
    assert "X-User-Id" in response.json()["detail"]


def test_chat_message_returns_redaction_details(client, catalog, gateway):
    response = client.post("/api/v1/chat/message", json={"message": "mail a@b.com", "model_id": "fast"}, headers=HEADERS)
    body = response.json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["content"] == "hello from model"
    assert body["pii_types"] == ["email"]
    assert gateway.calls[0]["messages"][-1]["content"] == "mail [EMAIL REDACTED]"


def test_unknown_model_is_not_found(client, catalog):
    response = client.post("/api/v1/chat/message", json={"message": "hi", "model_id": "nope"}, headers=HEADERS)
    assert response.status_code == 404


def test_blocked_request_maps_to_forbidden(client, catalog):
    app.state.policy_cache = static_cache(GuardrailPolicy.from_record(True, ["ssn"], "block", []))

    response = client.post("/api/v1/chat/message", json={"message": "ssn 123-45-6789", "model_id": "fast"}, headers=HEADERS)
    assert response.status_code == 403
    assert response.json()["action"] == "blocked"
    assert response.json()["pii_types"] == ["ssn"]


def test_guardrail_update_invalidates_cache(client):
    assert client.get("/api/v1/guardrails/").json()["stored"] is False

    cache = app.state.policy_cache
    cache.get()
    response = client.put(
        "/api/v1/guardrails/",
        json={"enabled": True, "categories": ["email"], "action": "warn", "allowlist_patterns": ["corp"]},
    )
    assert response.status_code == 200
    assert cache._entry is None

    stored = client.get("/api/v1/guardrails/").json()
    assert stored["stored"] is True
    assert stored["action"] == "warn"
    assert stored["categories"] == ["email"]


def test_compare_reports_each_model(client, catalog, gateway):
    gateway.failures["slow"] = UpstreamError("Rate limit exceeded.", 429)
    response = client.post("/api/v1/chat/compare", json={"message": "hi", "model_ids": ["fast", "slow"]}, headers=HEADERS)
    body = response.json()
    assert response.status_code == 200
    assert [r["success"] for r in body["results"]] == [True, False]
    assert body["total_tokens"] == 15


def test_document_lifecycle(client):
    upload = client.post(
        "/api/v1/documents/upload",
        files={"file": ("cats.txt", b"cats are great", "text/plain")},
        headers=HEADERS,
    )
    assert upload.status_code == 201
    document = upload.json()
    assert document["status"] == "completed"

    listed = client.get("/api/v1/documents/", headers=HEADERS).json()
    assert [d["id"] for d in listed] == [document["id"]]

    query = client.post("/api/v1/rag/query", json={"query": "cat"}, headers=HEADERS).json()
    assert query["count"] == 1

    assert client.delete(f"/api/v1/documents/{document['id']}", headers=HEADERS).status_code == 204
    assert client.get("/api/v1/documents/", headers=HEADERS).json() == []


def test_agent_failure_returns_partial_trace(client, catalog, gateway):
    gateway.failures["vendor/fast-1"] = UpstreamError("Rate limit exceeded.", 429)
    workflow = {
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "ask", "type": "llm", "data": {"model": "fast", "prompt": "hi"}},
            {"id": "end", "type": "end"},
        ],
        "edges": [{"source": "start", "target": "ask"}, {"source": "ask", "target": "end"}],
    }
    agent = client.post("/api/v1/agents/", json={"name": "Greeter", "workflow_config": workflow}, headers=HEADERS).json()

    response = client.post("/api/v1/agents/execute", json={"agent_id": agent["id"], "input": {}}, headers=HEADERS)
    body = response.json()
    assert response.status_code == 500
    assert body["node_id"] == "ask"
    assert [e["node_id"] for e in body["trace"]] == ["start", "ask"]


def test_invalid_agent_definition_is_bad_request(client):
    response = client.post(
        "/api/v1/agents/",
        json={"name": "Bad", "workflow_config": {"nodes": [{"id": "s", "type": "start"}], "edges": []}},
        headers=HEADERS,
    )
    assert response.status_code == 400
