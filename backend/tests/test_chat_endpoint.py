"""
Integration tests for the chat and task endpoints.

The orchestrator dependency is overridden with one wired to in-memory
backend stubs, so no real HTTP calls are made.
"""
import time

import pytest
from fastapi.testclient import TestClient

from dispatcher.core import config as config_module
from dispatcher.core.config import Settings
from dispatcher.main import app
from dispatcher.services.errors import DispatchError, ErrorKind
from dispatcher.services.orchestration import FALLBACK_NOTICE, get_orchestrator

AGENTIC_PROMPT = "Build me a 5-year financial model with sensitivity analysis"


@pytest.fixture
def client(orchestrator):
    """Test client whose routes use the stub-backed orchestrator."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def poll_task(client, task_id, attempts: int = 200):
    for _ in range(attempts):
        response = client.get(f"/api/task/{task_id}")
        assert response.status_code == 200
        body = response.json()
        if body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.01)
    raise AssertionError(f"task {task_id} never finished")


class TestSynchronousChat:
    def test_greeting(self, client):
        response = client.post("/api/chat", json={"prompt": "hi"})

        assert response.status_code == 200
        body = response.json()
        assert body["response"] == "fast answer"
        assert body["backend"] == "fast"
        assert body["routing"] == {
            "backend": "fast",
            "confidence": 20,
            "scores": {"fast": 20, "agentic": 0},
        }

    def test_agentic_prompt(self, client):
        response = client.post("/api/chat", json={"prompt": AGENTIC_PROMPT, "async": False})

        assert response.status_code == 200
        assert response.json()["backend"] == "agentic"
        assert response.json()["routing"]["backend"] == "agentic"

    def test_credits_fallback(self, client, agentic_stub):
        agentic_stub.error = DispatchError(ErrorKind.CREDITS_EXCEEDED)

        response = client.post("/api/chat", json={"prompt": AGENTIC_PROMPT})

        assert response.status_code == 200
        body = response.json()
        assert body["response"].startswith(FALLBACK_NOTICE)
        assert body["backend"] == "fast"
        assert body["routing"]["backend"] == "agentic"

    def test_trace_id_echoed(self, client):
        response = client.post(
            "/api/chat",
            json={"prompt": "hi"},
            headers={"X-Trace-ID": "trace-123"},
        )

        assert response.headers["X-Trace-ID"] == "trace-123"
        assert response.headers["X-Request-ID"]


class TestErrors:
    @pytest.mark.parametrize(
        "body",
        [{}, {"prompt": ""}, {"prompt": "   "}, {"prompt": 42}, {"prompt": None}],
    )
    def test_invalid_prompt(self, client, body, fast_stub):
        response = client.post("/api/chat", json=body)

        assert response.status_code == 400
        payload = response.json()
        assert payload["detail"] == "Prompt must be a non-empty string."
        assert payload["error"] == "validation"
        assert payload["status_code"] == 400
        assert fast_stub.calls == []

    def test_prompt_too_long(self, client, orchestrator, isolated_settings):
        orchestrator.settings = Settings(max_prompt_chars=20)

        response = client.post("/api/chat", json={"prompt": "x" * 21})

        assert response.status_code == 400
        assert response.json()["error"] == "validation"
        assert response.json()["detail"] == "Prompt must be at most 20 characters."

    @pytest.mark.parametrize(
        "kind,status",
        [
            (ErrorKind.QUOTA_EXCEEDED, 503),
            (ErrorKind.NOT_CONFIGURED, 503),
            (ErrorKind.KEY_REVOKED, 403),
            (ErrorKind.ALL_CANDIDATES_FAILED, 502),
            (ErrorKind.TIMEOUT, 504),
        ],
    )
    def test_backend_errors_map_to_status(self, client, fast_stub, kind, status):
        fast_stub.error = DispatchError(kind, "raw upstream detail, do not leak")

        response = client.post("/api/chat", json={"prompt": "hi"})

        assert response.status_code == status
        payload = response.json()
        assert payload["error"] == kind.value
        assert payload["status_code"] == status
        assert "raw upstream detail" not in payload["detail"]

    def test_both_exhausted(self, client, fast_stub, agentic_stub):
        agentic_stub.error = DispatchError(ErrorKind.CREDITS_EXCEEDED)
        fast_stub.error = DispatchError(ErrorKind.QUOTA_EXCEEDED)

        response = client.post("/api/chat", json={"prompt": AGENTIC_PROMPT})

        assert response.status_code == 503
        assert response.json()["error"] == "both_exhausted"


class TestAsyncChat:
    def test_async_task_lifecycle(self, client):
        response = client.post("/api/chat", json={"prompt": AGENTIC_PROMPT, "async": True})

        assert response.status_code == 202
        accepted = response.json()
        assert accepted["status"] == "pending"
        assert accepted["check_status_url"] == f"/api/task/{accepted['task_id']}"
        assert accepted["message"]

        task = poll_task(client, accepted["task_id"])
        assert task["id"] == accepted["task_id"]
        assert task["status"] == "completed"
        assert task["result"] == "agentic answer"
        assert task["backend"] == "agentic"
        assert task["error"] is None
        assert task["updated_at"] >= task["created_at"]

    def test_async_task_failure(self, client, agentic_stub):
        agentic_stub.error = DispatchError(ErrorKind.TASK_FAILED, "remote said no")

        accepted = client.post("/api/chat", json={"prompt": AGENTIC_PROMPT, "async": True}).json()
        task = poll_task(client, accepted["task_id"])

        assert task["status"] == "failed"
        assert task["error"] == "The automation service could not complete your task."
        assert task["result"] is None

    def test_async_rejects_blank_prompt(self, client):
        response = client.post("/api/chat", json={"prompt": " ", "async": True})
        assert response.status_code == 400

    def test_unknown_task(self, client):
        response = client.get("/api/task/not-a-task")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestAuthentication:
    @pytest.fixture(autouse=True)
    def require_key(self, monkeypatch):
        monkeypatch.setattr(config_module, "_settings", Settings(api_key="secret"))

    def test_missing_key(self, client):
        response = client.post("/api/chat", json={"prompt": "hi"})
        assert response.status_code == 401

    def test_wrong_key(self, client):
        response = client.post("/api/chat", json={"prompt": "hi"}, headers={"X-API-Key": "nope"})
        assert response.status_code == 403

    def test_correct_key(self, client):
        response = client.post("/api/chat", json={"prompt": "hi"}, headers={"X-API-Key": "secret"})
        assert response.status_code == 200

    def test_task_endpoint_is_protected(self, client):
        assert client.get("/api/task/anything").status_code == 401

    def test_health_is_public(self, client):
        assert client.get("/health/").status_code == 200


class TestOpenAPI:
    def test_error_responses_are_documented(self, client):
        schema = client.get("/openapi.json").json()

        chat_responses = schema["paths"]["/api/chat"]["post"]["responses"]
        task_responses = schema["paths"]["/api/task/{task_id}"]["get"]["responses"]
        error_ref = "#/components/schemas/ErrorResponse"

        for status in ("400", "429", "502", "503", "504"):
            assert chat_responses[status]["content"]["application/json"]["schema"]["$ref"] == error_ref
        assert task_responses["404"]["content"]["application/json"]["schema"]["$ref"] == error_ref
        assert "retry_after" in schema["components"]["schemas"]["ErrorResponse"]["properties"]
