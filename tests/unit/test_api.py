"""API tests through the ASGI app: prompt streaming, sessions, auth and errors."""

import json

import pytest
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

from ai_jup.api.auth import create_jwt_token
from ai_jup.api.main import API_PREFIX, _get_allowed_origins, create_app
from ai_jup.api.rate_limit import MAX_REQUEST_BODY_BYTES, limiter
from ai_jup.client.consumer import PromptClient
from ai_jup.streaming.decoder import parse_event_data
from ai_jup.streaming.events import (
    DoneEvent,
    StopReason,
    TextEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from tests.helpers.doubles import (
    RecordingBackend,
    ScriptedChatModel,
    make_adapter,
    make_tool_call_chunk,
    text_chunk,
)

ADD_CONTEXT = {
    "variables": {"x": {"repr": "2"}},
    "functions": {
        "add": {
            "signature": "add(a, b)",
            "docstring": "Add two numbers.",
            "parameters": {"a": {"type": "int"}, "b": {"type": "int"}},
        }
    },
}


@pytest.fixture(autouse=True)
def _reset_limiter():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def backend():
    return RecordingBackend({"add": lambda a, b: a + b})


@pytest.fixture
def script():
    """Model turns for the next prompt; one ScriptedChatModel per prompt."""
    return []


@pytest.fixture
def models():
    return []


@pytest.fixture
def app(mock_settings, backend, script, models):
    def adapter_factory(model_name):
        model = ScriptedChatModel(script)
        models.append((model_name, model))
        return make_adapter(model)

    return create_app(mock_settings, backend=backend, adapter_factory=adapter_factory)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=f"http://test{API_PREFIX}") as ac:
        yield ac


def _events(body: str):
    frames = [line[len("data: ") :] for line in body.split("\n") if line.startswith("data: ")]
    return [parse_event_data(frame) for frame in frames]


async def _claim(client, session_id: str, headers=None):
    response = await client.post("/sessions", json={"session_id": session_id}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestPromptStream:
    @pytest.mark.asyncio
    async def test_plain_answer(self, client, script, models):
        script.append([text_chunk("Hello"), text_chunk(" there")])

        response = await client.post("/prompt", json={"prompt": "Say hi"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert _events(response.text) == [
            TextEvent(delta="Hello"),
            TextEvent(delta=" there"),
            DoneEvent(),
        ]
        assert models[0][0] == "test-model"

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, client, backend, script, models):
        backend.add_session("k1")
        await _claim(client, "k1")
        script.extend(
            [
                [make_tool_call_chunk("add", '{"a": 2, "b": 3}', "call_1")],
                [text_chunk("It is 5.")],
            ]
        )

        response = await client.post(
            "/prompt",
            json={
                "prompt": "**AI Prompt:** Add $x and 3 using &add",
                "session_id": "k1",
                "model": "other-model",
                "context": ADD_CONTEXT,
            },
        )

        events = _events(response.text)
        assert events[0] == ToolCallEvent(id="call_1", name="add")
        assert ToolResultEvent(id="call_1", success=True, result=5) in events
        assert events[-2:] == [TextEvent(delta="It is 5."), DoneEvent()]
        assert backend.calls == [("k1", "add", {"a": 2, "b": 3})]
        model_name, model = models[0]
        assert model_name == "other-model"
        assert model.calls[0][1].content == "Add 2 and 3 using"

    @pytest.mark.asyncio
    async def test_kernel_id_alias(self, client, backend, script):
        backend.add_session("k1")
        await _claim(client, "k1")
        script.append([text_chunk("ok")])

        response = await client.post("/prompt", json={"prompt": "hi", "kernel_id": "k1"})

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_zero_steps(self, client, backend, script):
        script.append([make_tool_call_chunk("add", '{"a": 1, "b": 1}', "call_1")])

        response = await client.post(
            "/prompt", json={"prompt": "What is $x?", "max_steps": 0, "context": ADD_CONTEXT}
        )

        events = _events(response.text)
        assert events[-1] == DoneEvent(reason=StopReason.STEP_BOUND, steps=0)
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_upstream_failure_is_in_band(self, client, script):
        script.extend([[RuntimeError("boom")]] * 3)

        response = await client.post("/prompt", json={"prompt": "hi"})

        assert response.status_code == 200
        [event] = _events(response.text)
        assert event.error_type == "UpstreamTransportFailure"
        assert "boom" not in event.message

    @pytest.mark.asyncio
    async def test_prompt_client_against_api_root(self, app, script):
        script.append([text_chunk("Hello"), text_chunk(" there")])
        prompt_client = PromptClient(f"http://test{API_PREFIX}", transport=ASGITransport(app=app))

        text = await prompt_client.ask("Say hi")

        assert text == "Hello there"


class TestPromptRejections:
    @pytest.mark.parametrize(
        ("payload", "field"),
        [
            ({}, "prompt"),
            ({"prompt": 5}, "prompt"),
            ({"prompt": "   "}, "prompt"),
            ({"prompt": "hi", "max_steps": -1}, "max_steps"),
            ({"prompt": "hi", "max_steps": "3"}, "max_steps"),
            (
                {"prompt": "hi", "context": {"variables": {"x": {"repr": 1}}}},
                "context.variables.x.repr",
            ),
            ([1, 2], "body"),
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_fields(self, client, payload, field, models):
        response = await client.post("/prompt", json=payload)

        assert response.status_code == 400
        body = response.json()
        assert body["type"] == "InvalidRequest"
        assert body["field"] == field
        assert body["error"]
        assert models == []

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        response = await client.post(
            "/prompt", content=b"{nope", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["field"] == "body"

    @pytest.mark.asyncio
    async def test_body_too_large(self, client):
        response = await client.post(
            "/prompt",
            content=b"x" * (MAX_REQUEST_BODY_BYTES + 1),
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 413

    @pytest.mark.asyncio
    async def test_unclaimed_session(self, client, backend, models):
        backend.add_session("k1")

        response = await client.post("/prompt", json={"prompt": "hi", "session_id": "k1"})

        assert response.status_code == 403
        assert response.json()["type"] == "Unauthorized"
        assert models == []

    @pytest.mark.asyncio
    async def test_dead_session(self, client, backend, models):
        backend.add_session("k1")
        await _claim(client, "k1")
        backend.sessions.discard("k1")

        response = await client.post("/prompt", json={"prompt": "hi", "session_id": "k1"})

        assert response.status_code == 503
        assert response.json()["type"] == "ExecutionBackendUnavailable"
        assert models == []

    @pytest.mark.asyncio
    async def test_rate_limit(self, client, mock_settings, script):
        mock_settings.prompt_rate_limit = "2/minute"
        script.extend([[text_chunk("a")], [text_chunk("b")]])

        codes = [
            (await client.post("/prompt", json={"prompt": "hi"})).status_code for _ in range(3)
        ]

        assert codes == [200, 200, 429]


class TestSessions:
    @pytest.mark.asyncio
    async def test_create_list_delete(self, client, backend):
        created = (await client.post("/sessions")).json()
        assert created == {"session_id": "session-1", "backend": "recording", "created": True}

        listed = await client.get("/sessions")
        assert listed.json() == {"sessions": ["session-1"]}

        deleted = await client.delete("/sessions/session-1")
        assert deleted.status_code == 204
        assert backend.closed_sessions == ["session-1"]
        assert (await client.get("/sessions")).json() == {"sessions": []}

    @pytest.mark.asyncio
    async def test_claimed_session_is_released_not_closed(self, client, backend):
        backend.add_session("k1")
        assert (await _claim(client, "k1"))["created"] is False

        await client.delete("/sessions/k1")

        assert backend.closed_sessions == []
        assert "k1" in backend.sessions

    @pytest.mark.asyncio
    async def test_claim_missing_session(self, client):
        response = await client.post("/sessions", json={"session_id": "ghost"})
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_claim_rejects_empty_id(self, client):
        response = await client.post("/sessions", json={"session_id": ""})
        assert response.status_code == 400
        assert response.json()["field"] == "session_id"

    @pytest.mark.asyncio
    async def test_functions(self, client, backend):
        backend.add_session("k1")
        await _claim(client, "k1")

        response = await client.get("/sessions/k1/functions")

        assert response.status_code == 200
        assert list(response.json()) == ["add"]

    @pytest.mark.asyncio
    async def test_functions_of_unowned_session(self, client, backend):
        backend.add_session("k1")
        response = await client.get("/sessions/k1/functions")
        assert response.status_code == 403


class TestAuth:
    @pytest.fixture
    def secured(self, mock_settings):
        mock_settings.api_key = SecretStr("the-key")
        mock_settings.jwt_secret = SecretStr("s" * 32)
        return mock_settings

    @pytest.mark.asyncio
    async def test_missing_credentials(self, client, secured):
        response = await client.post("/prompt", json={"prompt": "hi"})
        assert response.status_code == 401
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_wrong_api_key(self, client, secured):
        response = await client.get("/sessions", headers={"X-API-Key": "nope"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_api_key(self, client, secured):
        response = await client.get("/sessions", headers={"X-API-Key": "the-key"})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_invalid_bearer(self, client, secured):
        response = await client.get("/sessions", headers={"Authorization": "Bearer junk"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_sessions_are_per_principal(self, client, backend, secured):
        alice = {"Authorization": f"Bearer {create_jwt_token('alice', secured)}"}
        bob = {"Authorization": f"Bearer {create_jwt_token('bob', secured)}"}
        backend.add_session("k1")
        await _claim(client, "k1", headers=alice)

        stolen = await client.post("/sessions", json={"session_id": "k1"}, headers=bob)
        prompt = await client.post(
            "/prompt", json={"prompt": "hi", "session_id": "k1"}, headers=bob
        )
        listed = await client.get("/sessions", headers=bob)

        assert stolen.status_code == 403
        assert prompt.status_code == 403
        assert listed.json() == {"sessions": []}

    @pytest.mark.asyncio
    async def test_production_without_auth_fails_closed(self, client, mock_settings):
        mock_settings.environment = "production"
        response = await client.get("/sessions")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_health_needs_no_auth(self, client, secured):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["execution_backend"] == "recording"


class TestPlumbing:
    @pytest.mark.asyncio
    async def test_correlation_id_is_echoed(self, client):
        response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"

    @pytest.mark.asyncio
    async def test_correlation_id_in_error_body(self, client):
        response = await client.post(
            "/prompt", json={"prompt": 1}, headers={"X-Correlation-ID": "abc-123"}
        )
        assert response.json()["correlation_id"] == "abc-123"

    def test_allowed_origins(self, test_settings):
        assert _get_allowed_origins(test_settings) == ["*"]
        test_settings.environment = "production"
        assert _get_allowed_origins(test_settings) == [
            "http://localhost:8888",
            "http://127.0.0.1:8888",
        ]
        test_settings.allowed_origins = "http://a.test, http://b.test,"
        assert _get_allowed_origins(test_settings) == ["http://a.test", "http://b.test"]


def test_events_helper_ignores_other_lines():
    body = 'data: {"text": "a"}\n\n: ping\n\ndata: ' + json.dumps({"done": True}) + "\n\n"
    assert _events(body) == [TextEvent(delta="a"), DoneEvent()]
