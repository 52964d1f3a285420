from __future__ import annotations

import httpx
import pytest

from tests.dify_test_utils import (
    TEST_KEY,
    RecordingLogStore,
    app_row,
    build_gateway,
    build_test_client,
    parse_sse,
    sse_response,
)

AUTH = {"Authorization": f"Bearer {TEST_KEY}"}
BODY = {"model": "gpt-4o", "messages": [{"role": "user", "content": "hi"}]}


def _unused(request: httpx.Request) -> httpx.Response:
    raise AssertionError("backend should not be called")


@pytest.mark.asyncio
async def test_models_requires_bearer_token() -> None:
    async with build_test_client(build_gateway(_unused)) as client:
        resp = await client.get("/v1/models")

    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}


@pytest.mark.asyncio
async def test_models_lists_app_model_name() -> None:
    async with build_test_client(build_gateway(_unused)) as client:
        resp = await client.get("/v1/models", headers=AUTH)

    assert resp.status_code == 200
    assert resp.json() == {
        "object": "list",
        "data": [
            {"id": "support-model", "object": "model", "owned_by": "dify", "permission": None}
        ],
    }


@pytest.mark.asyncio
async def test_models_rejects_disabled_app() -> None:
    gateway = build_gateway(_unused, rows=[app_row(is_enabled=0)])
    async with build_test_client(gateway) as client:
        resp = await client.get("/v1/models", headers=AUTH)

    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_chat_requires_bearer_token() -> None:
    async with build_test_client(build_gateway(_unused)) as client:
        resp = await client.post("/v1/chat/completions", json=BODY)

    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_chat_unknown_key_is_401() -> None:
    async with build_test_client(build_gateway(_unused)) as client:
        resp = await client.post(
            "/v1/chat/completions",
            json=BODY,
            headers={"Authorization": "Bearer sk-unknown"},
        )

    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}


@pytest.mark.asyncio
async def test_chat_invalid_body_is_400() -> None:
    async with build_test_client(build_gateway(_unused)) as client:
        resp = await client.post("/v1/chat/completions", json={"model": "x"}, headers=AUTH)

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_chat_blocking_response() -> None:
    gateway = build_gateway(lambda request: httpx.Response(200, json={"answer": "hello"}))
    async with build_test_client(gateway) as client:
        resp = await client.post("/v1/chat/completions", json=BODY, headers=AUTH)

    assert resp.status_code == 200
    data = resp.json()
    assert data["choices"][0]["message"]["content"] == "hello"
    assert data["choices"][0]["finish_reason"] == "stop"


@pytest.mark.asyncio
async def test_chat_upstream_error_propagates_status_and_message() -> None:
    gateway = build_gateway(lambda request: httpx.Response(404, json={"message": "App not published"}))
    async with build_test_client(gateway) as client:
        resp = await client.post("/v1/chat/completions", json=BODY, headers=AUTH)

    assert resp.status_code == 404
    assert resp.json() == {"error": "App not published"}


@pytest.mark.asyncio
async def test_chat_invalid_bot_type_is_500() -> None:
    gateway = build_gateway(_unused, rows=[app_row(bot_type="Agent")])
    async with build_test_client(gateway) as client:
        resp = await client.post("/v1/chat/completions", json=BODY, headers=AUTH)

    assert resp.status_code == 500
    assert "Invalid bot type" in resp.json()["error"]


@pytest.mark.asyncio
async def test_chat_streaming_response() -> None:
    log_store = RecordingLogStore()
    gateway = build_gateway(
        lambda request: sse_response(
            {"event": "agent_message", "answer": "Hi"},
            {"event": "agent_thought", "thought": "hidden"},
            {"event": "agent_message", "answer": " there"},
            {"event": "message_end"},
        ),
        log_store=log_store,
    )
    async with build_test_client(gateway) as client:
        resp = await client.post("/v1/chat/completions", json={**BODY, "stream": True}, headers=AUTH)

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache"

    payloads = parse_sse(resp.text)
    assert [p["choices"][0]["delta"].get("content") for p in payloads[:-1]] == ["Hi", " there", None]
    assert sum(1 for p in payloads[:-1] if p["choices"][0]["finish_reason"] == "stop") == 1
    assert payloads[-1] == "[DONE]"
    assert payloads.count("[DONE]") == 1
    assert log_store.entries[0]["response_body"] == "Hi there"


@pytest.mark.asyncio
async def test_chat_stream_immediate_error_is_500_sse() -> None:
    gateway = build_gateway(lambda request: sse_response({"event": "error", "message": "bad input"}))
    async with build_test_client(gateway) as client:
        resp = await client.post("/v1/chat/completions", json={**BODY, "stream": True}, headers=AUTH)

    assert resp.status_code == 500
    assert parse_sse(resp.text) == [{"error": "bad input"}, "[DONE]"]


@pytest.mark.asyncio
async def test_chat_stream_without_terminal_event_still_ends() -> None:
    gateway = build_gateway(lambda request: sse_response({"event": "message", "answer": "cut off"}))
    async with build_test_client(gateway) as client:
        resp = await client.post("/v1/chat/completions", json={**BODY, "stream": True}, headers=AUTH)

    payloads = parse_sse(resp.text)
    assert payloads[0]["choices"][0]["delta"] == {"content": "cut off"}
    assert payloads[-1] == "[DONE]"
    assert len(payloads) == 2


@pytest.mark.asyncio
async def test_chat_malformed_backend_url_is_json_500() -> None:
    log_store = RecordingLogStore()
    gateway = build_gateway(
        _unused,
        rows=[app_row(dify_api_url="http://[::1")],
        log_store=log_store,
    )
    async with build_test_client(gateway) as client:
        resp = await client.post("/v1/chat/completions", json=BODY, headers=AUTH)

    assert resp.status_code == 500
    assert resp.json()["error"]
    assert log_store.entries[0]["status_code"] == 500


@pytest.mark.asyncio
async def test_chat_malformed_backend_url_streaming_is_json_500() -> None:
    gateway = build_gateway(_unused, rows=[app_row(dify_api_url="http://[::1")])
    async with build_test_client(gateway) as client:
        resp = await client.post(
            "/v1/chat/completions",
            json={**BODY, "stream": True},
            headers=AUTH,
        )

    assert resp.status_code == 500
    assert resp.headers["content-type"].startswith("application/json")
    assert resp.json()["error"]


class _ExplodingGateway:
    async def list_models(self, api_key):
        raise RuntimeError("store offline")

    async def chat_completions(self, api_key, body):
        raise RuntimeError("store offline")


@pytest.mark.asyncio
async def test_unexpected_failures_become_json_errors() -> None:
    async with build_test_client(_ExplodingGateway()) as client:
        chat = await client.post("/v1/chat/completions", json=BODY, headers=AUTH)
        models = await client.get("/v1/models", headers=AUTH)

    assert chat.status_code == 500
    assert chat.json() == {"error": "store offline"}
    assert models.status_code == 500
    assert models.json() == {"error": "store offline"}
