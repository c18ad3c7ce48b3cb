"""
Tests for the health and session admin endpoints.

The service is injected prebuilt, without a bus transport, so startup does
not touch Redis or NATS.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedCompletionClient
from intent_agent.application.api.health_server import create_app
from intent_agent.application.bus.dispatcher import RequestDispatcher
from intent_agent.application.service import IntentService
from intent_agent.domain.intent.pipeline import IntentPipeline
from intent_agent.domain.memory.memory_manager import ConversationMemoryManager
from intent_agent.domain.memory.session_store import InMemorySessionStore


class UnreachableStore(InMemorySessionStore):
    async def ping(self) -> bool:
        return False


def build_service(store=None) -> IntentService:
    memory = ConversationMemoryManager(store or InMemorySessionStore())
    completion = ScriptedCompletionClient()
    pipeline = IntentPipeline(memory, completion, model="claude-test")
    return IntentService(
        memory=memory,
        client=completion,
        pipeline=pipeline,
        dispatcher=RequestDispatcher(pipeline),
    )


@pytest.fixture
def service():
    return build_service()


@pytest.fixture
def client(service):
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


class TestHealth:
    """GET /health"""

    def test_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["store"] == "ok"
        assert body["bus"] == "disabled"
        assert body["active_sessions"] == 0
        assert body["cache"]["capacity"] == 1000
        assert "timestamp" in body

    def test_degraded_when_store_unreachable(self):
        with TestClient(create_app(service=build_service(UnreachableStore()))) as test_client:
            body = test_client.get("/health").json()

        assert body["status"] == "degraded"
        assert body["store"] == "unreachable"


class TestSessions:
    """Session admin endpoints"""

    def test_unknown_session(self, client):
        body = client.get("/sessions/ghost").json()

        assert body == {"session_id": "ghost", "exists": False, "message_count": 0, "messages": []}

    def test_existing_session(self, client, service):
        # TestClient runs the app on its own loop thread
        client.portal.call(service.memory.append_user_turn, "s1", "user_s1", "I need a CDN")

        body = client.get("/sessions/s1").json()

        assert body["exists"] is True
        assert body["message_count"] == 1
        assert body["messages"][0]["role"] == "user"
        assert body["messages"][0]["content"] == "I need a CDN"

    def test_delete_is_idempotent(self, client, service):
        client.portal.call(service.memory.append_user_turn, "s1", "user_s1", "hello")

        assert client.delete("/sessions/s1").json() == {"session_id": "s1", "cleared": True}
        assert client.delete("/sessions/s1").status_code == 200
        assert client.get("/sessions/s1").json()["exists"] is False


def test_shutdown_closes_service(service):
    with TestClient(create_app(service=service)):
        pass

    assert service.client.closed is True


def test_requests_before_startup_are_rejected():
    app = create_app(service=None)
    # no context manager: startup never runs
    client = TestClient(app)

    assert client.get("/health").status_code == 503
