import asyncio
import json

import httpx
import pytest

from conftest import make_client, make_settings, parse_frame
from tgbridge.server import create_app
from tgbridge.transport.sse import SseChannel


def build(fake_telegram, **overrides):
    settings = make_settings(**overrides)
    app = create_app(settings, client=make_client(fake_telegram))
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://bridge.test")
    return app, http


async def next_event(frames):
    return parse_frame(await asyncio.wait_for(frames.__anext__(), timeout=1))


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthz(self, fake_telegram):
        app, http = build(fake_telegram, version="1.2.3")
        async with http:
            resp = await http.get("/healthz")
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["version"] == "1.2.3"
        assert body["uptimeSec"] >= 0

    @pytest.mark.asyncio
    async def test_healthz_needs_no_auth(self, fake_telegram):
        app, http = build(fake_telegram, auth_bearer="secret")
        async with http:
            resp = await http.get("/healthz")
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, fake_telegram):
        app, http = build(fake_telegram)
        async with http:
            given = await http.get("/healthz", headers={"x-request-id": "req-123"})
            generated = await http.get("/healthz")
        assert given.headers["x-request-id"] == "req-123"
        assert generated.headers["x-request-id"]


class TestAuth:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "Basic secret"}])
    async def test_rejects_missing_or_wrong_token(self, fake_telegram, headers):
        app, http = build(fake_telegram, auth_bearer="secret")
        async with http:
            sse = await http.get("/sse", headers=headers)
            post = await http.post("/messages?sessionId=x", json={}, headers=headers)
        for resp in (sse, post):
            assert resp.status_code == 401
            assert resp.json()["kind"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_accepts_correct_token(self, fake_telegram):
        app, http = build(fake_telegram, auth_bearer="secret")
        async with http:
            resp = await http.post(
                "/messages?sessionId=missing", json={}, headers={"Authorization": "Bearer secret"}
            )
        assert resp.status_code == 404


class TestMessages:
    @pytest.mark.asyncio
    async def test_session_id_is_required(self, fake_telegram):
        app, http = build(fake_telegram)
        async with http:
            resp = await http.post("/messages", json={"jsonrpc": "2.0", "id": 1, "method": "ping"})
        assert resp.status_code == 400
        assert resp.json()["kind"] == "bad_request"

    @pytest.mark.asyncio
    async def test_unknown_session(self, fake_telegram):
        app, http = build(fake_telegram)
        async with http:
            resp = await http.post("/messages?sessionId=nope", json={"jsonrpc": "2.0", "id": 1, "method": "ping"})
        assert resp.status_code == 404
        body = resp.json()
        assert body == {
            "ok": False,
            "status": 404,
            "kind": "session_not_found",
            "message": "Session not found",
            "details": {"sessionId": "nope"},
        }

    @pytest.mark.asyncio
    async def test_accepts_and_delivers_over_channel(self, fake_telegram):
        app, http = build(fake_telegram)
        registry = app.state.registry
        channel = SseChannel()
        session = registry.open(channel)
        frames = channel.frames()
        await next_event(frames)

        async with http:
            resp = await http.post(
                f"/messages?sessionId={session.id}",
                json={"jsonrpc": "2.0", "id": "h1", "method": "call_tool", "params": {"name": "system.health"}},
            )
        assert resp.status_code == 202
        assert resp.text == "Accepted"

        event, data = await next_event(frames)
        assert event == "message"
        body = json.loads(data)
        assert body["id"] == "h1"
        assert json.loads(body["result"]["content"][0]["text"])["ok"] is True
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_session_header_fallback(self, fake_telegram):
        app, http = build(fake_telegram)
        registry = app.state.registry
        channel = SseChannel()
        session = registry.open(channel)
        frames = channel.frames()
        await next_event(frames)

        async with http:
            resp = await http.post(
                "/messages",
                json={"tool": "system.health"},
                headers={"x-session-id": session.id},
            )
        assert resp.status_code == 202

        event, data = await next_event(frames)
        assert event == "message"
        assert "result" in json.loads(data)
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_malformed_body(self, fake_telegram):
        app, http = build(fake_telegram)
        registry = app.state.registry
        session = registry.open(SseChannel())

        async with http:
            resp = await http.post(
                f"/messages?sessionId={session.id}",
                content=b"{not json",
                headers={"content-type": "application/json"},
            )
        assert resp.status_code == 400
        assert resp.json()["kind"] == "malformed_payload"
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_legacy_body_disabled(self, fake_telegram):
        app, http = build(fake_telegram, allow_legacy_body=False)
        registry = app.state.registry
        session = registry.open(SseChannel())

        async with http:
            resp = await http.post(f"/messages?sessionId={session.id}", json={"tool": "system.health"})
        assert resp.status_code == 400
        assert resp.json()["kind"] == "legacy_dialect_disabled"
        await registry.aclose()


    @pytest.mark.asyncio
    async def test_oversized_body_is_rejected(self, fake_telegram):
        app, http = build(fake_telegram, max_body_bytes=64)
        registry = app.state.registry
        session = registry.open(SseChannel())
        big = {"jsonrpc": "2.0", "id": 1, "method": "ping", "params": {"pad": "x" * 512}}

        async with http:
            resp = await http.post(f"/messages?sessionId={session.id}", json=big)
        assert resp.status_code == 413
        assert resp.json()["kind"] == "too_large"
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_oversized_chunked_body_is_rejected(self, fake_telegram):
        app, http = build(fake_telegram, max_body_bytes=64)
        registry = app.state.registry
        session = registry.open(SseChannel())

        async def chunks():
            yield b'{"jsonrpc": "2.0", "id": 1, "method": "ping", "params": {"pad": "'
            for _ in range(16):
                yield b"x" * 32
            yield b'"}}'

        async with http:
            resp = await http.post(f"/messages?sessionId={session.id}", content=chunks())
        assert resp.status_code == 413
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_body_within_limit_is_accepted(self, fake_telegram):
        app, http = build(fake_telegram, max_body_bytes=256)
        registry = app.state.registry
        session = registry.open(SseChannel())

        async with http:
            resp = await http.post(f"/messages?sessionId={session.id}", json={"jsonrpc": "2.0", "id": 1, "method": "ping"})
        assert resp.status_code == 202
        await registry.aclose()


class TestDiagnostics:
    @pytest.mark.asyncio
    async def test_sessions_and_tools(self, fake_telegram):
        app, http = build(fake_telegram)
        registry = app.state.registry
        session = registry.open(SseChannel())

        async with http:
            sessions = await http.get("/sessions")
            tools = await http.get("/tools")

        assert [s["sessionId"] for s in sessions.json()["sessions"]] == [session.id]
        names = [t["name"] for t in tools.json()["tools"]]
        assert "telegram.send_message" in names
        assert "inputSchema" not in tools.json()["tools"][0]
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_hidden_in_production(self, fake_telegram):
        app, http = build(fake_telegram, app_env="production")
        async with http:
            sessions = await http.get("/sessions")
            tools = await http.get("/tools")
        assert sessions.status_code == 404
        assert tools.status_code == 404
