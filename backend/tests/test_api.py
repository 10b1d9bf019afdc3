"""
API tests for the session and provider endpoints.
Runs the routers against a temporary store and a scripted provider.
"""

import asyncio
import json

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi import FastAPI
from fastapi.testclient import TestClient

from parley.api import providers_router, sessions_router
from parley.api.deps import get_controller, get_store
from parley.engine.session_controller import SessionController
from parley.llm.base import ContentDelta
from parley.main import app as main_app
from parley.storage.local_storage import LocalStorage
from parley.storage.session_store import SessionStore
from parley.tools.executor import ToolExecutor
from parley.tools.registry import ToolRegistry


@pytest.fixture
def store(tmp_path):
    return SessionStore(LocalStorage(str(tmp_path)))


@pytest.fixture
def llm(make_scripted):
    return make_scripted()


def _build_app(store, llm, clock):
    controller = SessionController(
        store=store,
        tool_executor=ToolExecutor(ToolRegistry()),
        provider_factory=lambda provider: llm,
        autogen_title=False,
        clock=clock,
    )
    app = FastAPI()
    app.include_router(sessions_router)
    app.include_router(providers_router)
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_controller] = lambda: controller
    return app


@pytest.fixture
def client(store, llm, clock):
    with TestClient(_build_app(store, llm, clock)) as test_client:
        test_client.post("/providers", json={"type": "openai", "api_key": "sk-test"})
        yield test_client


@pytest.fixture
def session_id(client):
    return client.post("/sessions", json={"title": "API chat"}).json()["id"]


def _send(client, session_id, content, **params):
    return client.post(f"/sessions/{session_id}/messages", json={"content": content}, params=params)


class TestSessionEndpoints:
    """Tests for session lifecycle and generation endpoints."""

    def test_create_and_get(self, client, session_id):
        response = client.get(f"/sessions/{session_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "API chat"
        assert data["groups"] == []
        assert data["model_code"] == "gpt-4o-mini"
        assert data["is_streaming"] is False

    def test_unknown_session_is_404(self, client):
        assert client.get("/sessions/nope").status_code == 404
        assert _send(client, "nope", "hi").status_code == 404

    def test_send_message(self, client, session_id, llm):
        llm.turns = [[ContentDelta("Hi"), ContentDelta(" there")]]

        response = _send(client, session_id, "Hello")

        assert response.status_code == 200
        groups = response.json()["groups"]
        assert [g["role"] for g in groups] == ["user", "assistant"]
        assert groups[1]["conversations"][0]["content"] == "Hi there"
        assert groups[1]["conversations"][0]["is_replying"] is False

    def test_send_with_attachment(self, client, session_id, llm):
        response = client.post(
            f"/sessions/{session_id}/messages",
            json={
                "content": "what is this",
                "data_files": [{"file_name": "a.txt", "mime_type": "text/plain", "data": "aGVsbG8="}],
            },
        )
        files = response.json()["groups"][0]["conversations"][0]["data_files"]
        assert files == [{"file_name": "a.txt", "mime_type": "text/plain", "size": 5}]
        assert llm.stream_requests[0][0].data_files[0].data == b"hello"

    def test_send_streaming(self, client, session_id, llm):
        llm.turns = [[ContentDelta("Hi"), ContentDelta(" there")]]

        response = _send(client, session_id, "Hello", stream=True)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = [
            json.loads(line[len("data: "):])
            for line in response.text.splitlines()
            if line.startswith("data: ")
        ]
        assert events[0]["type"] == "content"
        assert events[0]["content"] == "Hi there"
        assert events[-1]["type"] == "done"
        assert events[-1]["state"] == "finalized"

    def test_provider_error_reported_on_session(self, client, session_id, llm):
        from parley.core.errors import ProviderError
        llm.turns = [[ProviderError("openai", "quota exceeded", status_code=429)]]

        data = _send(client, session_id, "Hello").json()

        assert data["error_message"] == "openai error (429): quota exceeded"
        assert [g["role"] for g in data["groups"]] == ["user"]

    def test_regenerate_without_body(self, client, session_id, llm):
        llm.turns = [[ContentDelta("first")], [ContentDelta("second")]]
        _send(client, session_id, "Hello")

        response = client.post(f"/sessions/{session_id}/regenerate")

        assert response.status_code == 200
        reply = response.json()["groups"][1]
        assert [c["content"] for c in reply["conversations"]] == ["first", "second"]
        assert reply["active_index"] == 1

    def test_regenerate_user_group_conflicts(self, client, session_id):
        groups = _send(client, session_id, "Hello").json()["groups"]
        response = client.post(f"/sessions/{session_id}/regenerate", json={"group_id": groups[0]["id"]})
        assert response.status_code == 409

    def test_edit_truncates(self, client, session_id, llm):
        _send(client, session_id, "q1")
        groups = _send(client, session_id, "q2").json()["groups"]

        response = client.post(
            f"/sessions/{session_id}/groups/{groups[0]['id']}/edit",
            json={"content": "q1 again"},
        )

        contents = [g["conversations"][g["active_index"]]["content"] for g in response.json()["groups"]]
        assert contents == ["q1 again", "ok"]

    def test_edit_assistant_conflicts(self, client, session_id):
        groups = _send(client, session_id, "q").json()["groups"]
        response = client.post(
            f"/sessions/{session_id}/groups/{groups[1]['id']}/edit",
            json={"content": "x"},
        )
        assert response.status_code == 409
        assert client.get(f"/sessions/{session_id}").json()["editing_index"] is None

    def test_stop_when_idle(self, client, session_id):
        response = client.post(f"/sessions/{session_id}/stop")
        assert response.status_code == 200
        assert response.json()["is_streaming"] is False

    @pytest.mark.asyncio
    async def test_stop_answers_pending_send(self, store, llm, clock):
        gate = asyncio.Event()
        llm.turns = [[gate]]
        transport = httpx.ASGITransport(app=_build_app(store, llm, clock))

        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            await client.post("/providers", json={"type": "openai", "api_key": "sk-test"})
            session_id = (await client.post("/sessions", json={"title": "Busy"})).json()["id"]

            sending = asyncio.create_task(
                client.post(f"/sessions/{session_id}/messages", json={"content": "Hello"})
            )
            for _ in range(200):
                if llm.stream_requests:
                    break
                await asyncio.sleep(0)
            stopped = await client.post(f"/sessions/{session_id}/stop")
            sent = await sending

        assert stopped.status_code == 200
        assert sent.status_code == 200
        data = sent.json()
        assert data["is_streaming"] is False
        assert [g["role"] for g in data["groups"]] == ["user"]


class TestTreeEndpoints:
    """Tests for forking, reset markers, deletion and variants."""

    def test_fork(self, client, session_id):
        _send(client, session_id, "q1")
        groups = _send(client, session_id, "q2").json()["groups"]

        response = client.post(f"/sessions/{session_id}/fork", json={"group_id": groups[1]["id"]})

        assert response.status_code == 201
        forked = response.json()
        assert forked["title"] == "(fork) API chat"
        assert len(forked["groups"]) == 2
        listed = client.get("/sessions").json()
        assert [s["id"] for s in listed] == [forked["id"], session_id]

    def test_quick_fork_hidden_from_default_list(self, client, session_id):
        client.post(f"/sessions/{session_id}/fork", json={"purpose": "quick"})
        assert len(client.get("/sessions").json()) == 1
        assert len(client.get("/sessions", params={"include_quick": True}).json()) == 2

    def test_reset_context_toggles(self, client, session_id):
        groups = _send(client, session_id, "q").json()["groups"]
        url = f"/sessions/{session_id}/groups/{groups[0]['id']}/reset-context"

        assert client.post(url).json()["reset_marker"] == 0
        assert client.post(url).json()["reset_marker"] is None

    def test_delete_group(self, client, session_id):
        groups = _send(client, session_id, "q").json()["groups"]
        response = client.delete(f"/sessions/{session_id}/groups/{groups[1]['id']}")
        assert [g["role"] for g in response.json()["groups"]] == ["user"]
        assert client.delete(f"/sessions/{session_id}/groups/missing").status_code == 404

    def test_select_variant_out_of_range(self, client, session_id):
        groups = _send(client, session_id, "q").json()["groups"]
        response = client.put(
            f"/sessions/{session_id}/groups/{groups[1]['id']}/active",
            json={"index": 5},
        )
        assert response.status_code == 422

    def test_delete_all_conversations(self, client, session_id):
        _send(client, session_id, "q")
        response = client.delete(f"/sessions/{session_id}/conversations")
        assert response.json()["groups"] == []

    def test_delete_session(self, client, session_id, store):
        assert client.delete(f"/sessions/{session_id}").status_code == 204
        assert store.get(session_id) is None


class TestConfigEndpoint:

    def test_update_config(self, client, session_id):
        response = client.patch(
            f"/sessions/{session_id}/config",
            json={"temperature": 0.3, "model_code": "gpt-4o", "tools": []},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["model_code"] == "gpt-4o"
        assert data["tools"] == []

    def test_invalid_values(self, client, session_id):
        assert client.patch(f"/sessions/{session_id}/config", json={"temperature": 9}).status_code == 422
        assert client.patch(f"/sessions/{session_id}/config", json={"model_code": "nope"}).status_code == 404


class TestBackupEndpoints:

    def test_export_then_import(self, client, session_id, store):
        _send(client, session_id, "remember me")
        exported = client.get("/sessions/backup/export")
        assert exported.status_code == 200
        records = exported.json()
        assert records[0]["groups"][0]["conversation"]["content"] == "remember me"

        store._sessions.clear()
        response = client.post("/sessions/backup/import", content=exported.content)

        assert response.status_code == 200
        assert [s["id"] for s in response.json()] == [session_id]
        assert store.get(session_id).title == "API chat"

    def test_import_rejects_garbage(self, client):
        response = client.post("/sessions/backup/import", content=b"{broken")
        assert response.status_code == 400


class TestProviderEndpoints:
    """Tests for provider configuration endpoints."""

    def test_list_and_get(self, client):
        providers = client.get("/providers").json()
        assert len(providers) == 1
        assert providers[0]["type"] == "openai"
        assert client.get(f"/providers/{providers[0]['id']}").status_code == 200
        assert client.get("/providers/missing").status_code == 404

    def test_create_anthropic(self, client):
        response = client.post("/providers", json={"type": "anthropic", "name": "Work", "api_key": "k"})
        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Work"
        assert data["chat_model"] == "claude-3-5-haiku-latest"

    def test_refresh_models(self, client):
        provider_id = client.get("/providers").json()[0]["id"]
        with patch("parley.api.providers.refresh_provider_models", new=AsyncMock(return_value=0)) as refresh:
            response = client.post(f"/providers/{provider_id}/refresh-models")
        assert response.status_code == 200
        refresh.assert_awaited_once()

    def test_model_check(self, client):
        provider_id = client.get("/providers").json()[0]["id"]
        adapter = MagicMock()
        adapter.test_model = AsyncMock(return_value=True)
        with patch("parley.api.providers.create_llm_provider", return_value=adapter):
            response = client.post(f"/providers/{provider_id}/test", json={"model_code": "gpt-4o"})
        assert response.json() == {"provider_id": provider_id, "model": "gpt-4o", "ok": True}

        missing = client.post(f"/providers/{provider_id}/test", json={"model_code": "nope"})
        assert missing.status_code == 404


class TestAppEndpoints:

    def test_root_and_health(self):
        client = TestClient(main_app)
        assert client.get("/").json()["status"] == "running"
        assert client.get("/health").json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_default_provider_seeded_once(self, store):
        from parley.main import ensure_default_provider

        await ensure_default_provider(store)
        await ensure_default_provider(store)

        assert len(store.providers) == 1
        assert store.providers[0].type.value == "openai"
