"""
HTTP API tests against an app wired with in-memory services.
"""

import asyncio
import json
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import AGENT_IDENTITY, FAST_RETRY, FakeRpc, ScriptedProvider, make_instruction, text
from sion.auth import Actor, ActorKind, AuthService, get_auth_service
from sion.config import Settings
from sion.core.chat import ChatService
from sion.core.errors import ErrorTracker
from sion.core.orchestrator import TurnOrchestrator
from sion.core.tools import ToolRegistry
from sion.core.transactions import ConfirmationTracker, ProtectionConfig, ProtectionStrategy, TransactionPipeline
from sion.db import InMemoryConversationStore
from sion.dependencies import AppServices
from sion.main import create_app
from sion.providers.llm import ModelUnavailableError
from sion.services import MarketUpdateHub, PriceUpdate

SECRET = "api-test-secret-with-enough-bytes!!"


def unavailable_model(**kwargs):
    raise ModelUnavailableError("No API key configured for provider: anthropic")


def build_services(provider_factory=None) -> AppServices:
    settings = Settings(_env_file=None, admin_token="op-token", anthropic_api_key="")
    tracker = ErrorTracker()
    rpc = FakeRpc()
    pipeline = TransactionPipeline(
        rpc=rpc,
        confirmation=ConfirmationTracker(rpc, timeout_ms=50, poll_interval_ms=10, read_retry=FAST_RETRY),
        config=ProtectionConfig(enabled=False, strategy=ProtectionStrategy.NONE, max_priority_fee=0),
        error_tracker=tracker,
        simulation_retry=FAST_RETRY,
    )
    store = InMemoryConversationStore()
    registry = ToolRegistry(error_tracker=tracker, read_retry=FAST_RETRY)
    agent = MagicMock()
    agent.identity = AGENT_IDENTITY
    orchestrator = TurnOrchestrator(registry, store, tracker)
    chat = ChatService(
        orchestrator=orchestrator,
        store=store,
        agent=agent,
        pipeline=pipeline,
        allowed_tools=frozenset(),
        error_tracker=tracker,
        settings=settings,
        provider_factory=provider_factory or (lambda **kwargs: ScriptedProvider([[text("Hello"), text(" there")]])),
    )
    return AppServices(
        settings=settings,
        store=store,
        agent=agent,
        pipeline=pipeline,
        registry=registry,
        chat=chat,
        error_tracker=tracker,
        allowed_tools=frozenset(),
        hub=MarketUpdateHub(),
    )


@pytest.fixture
def services():
    return build_services()


@pytest.fixture
def client(services):
    app = create_app(services=services)
    auth = AuthService(SECRET)
    app.dependency_overrides[get_auth_service] = lambda: auth
    with TestClient(app) as test_client:
        yield test_client


def auth_headers(user_id: str) -> Dict[str, str]:
    token = AuthService(SECRET).issue_token(Actor(id=user_id, kind=ActorKind.USER))
    return {"Authorization": f"Bearer {token}"}


def chat_body(conversation_id: str = "conv-1", content: Any = "hi") -> Dict[str, Any]:
    return {"conversationId": conversation_id, "messages": [{"role": "user", "content": content}]}


def sse_payloads(body: str) -> List[Any]:
    frames = [line[len("data: "):] for line in body.splitlines() if line.startswith("data: ")]
    return [frame if frame == "[DONE]" else json.loads(frame) for frame in frames]


class TestChat:

    def test_requires_authentication(self, client):
        response = client.post("/chat", json=chat_body())
        assert response.status_code == 401

    def test_stream_ends_with_done(self, client):
        response = client.post("/chat", json=chat_body(), headers=auth_headers("user-1"))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        payloads = sse_payloads(response.text)
        assert payloads[-1] == "[DONE]"
        assert payloads[0]["type"] == "message-id"
        assert [p["textDelta"] for p in payloads[:-1] if p["type"] == "text-delta"] == ["Hello", " there"]
        assert payloads[-2]["type"] == "finish"

    def test_structured_content_parts_are_read(self, client):
        body = chat_body(content=[{"type": "text", "text": "what is"}, {"type": "text", "text": " SOL?"}])

        client.post("/chat", json=body, headers=auth_headers("user-1"))
        conversation = client.get("/conversations/conv-1", headers=auth_headers("user-1")).json()

        assert conversation["messages"][0]["content"] == "what is SOL?"
        assert conversation["title"] == "what is SOL?"

    def test_empty_user_message_is_rejected(self, client):
        response = client.post("/chat", json=chat_body(content="   "), headers=auth_headers("user-1"))
        assert response.status_code == 422

    def test_other_users_conversation_is_401(self, client):
        client.post("/chat", json=chat_body(), headers=auth_headers("user-1"))

        response = client.post("/chat", json=chat_body(), headers=auth_headers("user-2"))

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "unauthorized"

    def test_unavailable_model_is_503(self):
        app = create_app(services=build_services(provider_factory=unavailable_model))
        app.dependency_overrides[get_auth_service] = lambda: AuthService(SECRET)
        with TestClient(app) as test_client:
            response = test_client.post("/chat", json=chat_body(), headers=auth_headers("user-1"))
        assert response.status_code == 503


class TestConversations:

    def test_history_is_owner_scoped(self, client):
        client.post("/chat", json=chat_body("conv-1"), headers=auth_headers("user-1"))
        client.post("/chat", json=chat_body("conv-2"), headers=auth_headers("user-2"))

        listed = client.get("/conversations", headers=auth_headers("user-1")).json()

        assert [c["id"] for c in listed] == ["conv-1"]
        assert listed[0]["messageCount"] == 2

    def test_missing_conversation_is_404(self, client):
        response = client.get("/conversations/nope", headers=auth_headers("user-1"))
        assert response.status_code == 404

    def test_non_owner_delete_leaves_conversation_intact(self, client):
        client.post("/chat", json=chat_body(), headers=auth_headers("user-1"))

        denied = client.delete("/chat", params={"id": "conv-1"}, headers=auth_headers("user-2"))
        kept = client.get("/conversations/conv-1", headers=auth_headers("user-1"))

        assert denied.status_code == 401
        assert kept.status_code == 200
        assert len(kept.json()["messages"]) == 2

    def test_owner_delete(self, client):
        client.post("/chat", json=chat_body(), headers=auth_headers("user-1"))

        deleted = client.delete("/conversations/conv-1", headers=auth_headers("user-1"))

        assert deleted.json() == {"id": "conv-1", "deleted": True}
        assert client.get("/conversations/conv-1", headers=auth_headers("user-1")).status_code == 404


class TestTransactions:

    def simulated(self, services, owner_id: str) -> str:
        pipeline = services.pipeline
        pending = asyncio.run(pipeline.simulate(pipeline.protect(make_instruction()), owner_id=owner_id))
        return pending.id

    def test_transaction_lookup_is_owner_scoped(self, services, client):
        tx_id = self.simulated(services, "user-1")

        mine = client.get(f"/transactions/{tx_id}", headers=auth_headers("user-1"))
        theirs = client.get(f"/transactions/{tx_id}", headers=auth_headers("user-2"))

        assert mine.json()["status"] == "simulated-ok"
        assert theirs.status_code == 404

    def test_list_filters_by_status(self, services, client):
        self.simulated(services, "user-1")

        ok = client.get("/transactions", params={"status": "simulated-ok"}, headers=auth_headers("user-1"))
        confirmed = client.get("/transactions", params={"status": "confirmed"}, headers=auth_headers("user-1"))

        assert len(ok.json()) == 1
        assert confirmed.json() == []

    def test_protection_change_needs_operator_token(self, services, client):
        body = {"enabled": True, "strategy": "bundle", "maxPriorityFee": 2000, "bundleSize": 4}

        missing = client.put("/transactions/protection", json=body)
        wrong = client.put("/transactions/protection", json=body, headers={"X-Admin-Token": "nope"})
        ok = client.put("/transactions/protection", json=body, headers={"X-Admin-Token": "op-token"})

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert ok.json()["previous"]["enabled"] is False
        assert ok.json()["current"]["bundleSize"] == 4
        assert services.pipeline.config.strategy == ProtectionStrategy.BUNDLE

    def test_protection_change_disabled_without_admin_token(self, services, client):
        services.settings.admin_token = ""

        response = client.put(
            "/transactions/protection",
            json={"enabled": False, "strategy": "none", "maxPriorityFee": 0},
            headers={"X-Admin-Token": "anything"},
        )

        assert response.status_code == 403

    def test_inconsistent_protection_is_422(self, client):
        response = client.put(
            "/transactions/protection",
            json={"enabled": True, "strategy": "none", "maxPriorityFee": 0},
            headers={"X-Admin-Token": "op-token"},
        )
        assert response.status_code == 422


class TestMarketAndHealth:

    def test_latest_prices(self, services, client):
        services.hub.publish(PriceUpdate(address="So11111111111111111111111111111111111111112", price=150.0, unix_time=1700000000))

        latest = client.get("/market/latest").json()

        assert latest[0]["price"] == 150.0

    def test_health_reports_degraded_without_model_or_rpc(self, client):
        health = client.get("/healthz").json()

        assert health["status"] == "degraded"
        assert health["llm"]["anthropic"]["status"] == "unconfigured"
        assert health["agent"]["identity"] == AGENT_IDENTITY
        assert health["protection"]["strategy"] == "none"

    def test_request_id_is_echoed(self, client):
        response = client.get("/healthz", headers={"x-request-id": "req-42"})
        assert response.headers["x-request-id"] == "req-42"
