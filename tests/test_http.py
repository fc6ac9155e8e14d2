import asyncio

import httpx
import pytest
from starlette.testclient import TestClient

from browsermux.dispatch import Dispatcher
from browsermux.tools import build_default_registry
from browsermux.transports.http import create_http_app

from conftest import FakeLauncher, make_session


@pytest.fixture
def app(dispatcher):
    return create_http_app(dispatcher, protocol="http")


def client_for(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.asyncio
async def test_health_reports_session_and_breaker(app):
    async with client_for(app) as client:
        response = await client.get("/health")
    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "ok"
    assert body["timestamp"]
    assert body["protocol"] == "http"
    assert body["session"]["state"] == "uninitialized"
    assert body["session"]["circuit_breaker"]["state"] == "closed"
    assert body["workflow_phase"] == "NotReady"


@pytest.mark.asyncio
async def test_info_lists_transports(app):
    async with client_for(app) as client:
        body = (await client.get("/info")).json()
    assert body["name"] == "browsermux"
    assert body["transports"] == ["http", "websocket"]


@pytest.mark.asyncio
async def test_tools_listing(app):
    async with client_for(app) as client:
        tools = (await client.get("/tools")).json()
    names = [tool["name"] for tool in tools]
    assert names[:2] == ["browser_init", "browser_close"]
    assert "navigate" in names
    navigate = next(tool for tool in tools if tool["name"] == "navigate")
    assert navigate["schema"]["required"] == ["url"]


@pytest.mark.asyncio
async def test_navigate_before_init_returns_conflict(app):
    async with client_for(app) as client:
        response = await client.post(
            "/tools/navigate", json={"url": "https://example.com"}, headers={"X-Request-Id": "r1"}
        )
    assert response.status_code == 409
    assert response.json() == {
        "id": "r1",
        "success": False,
        "error": {
            "kind": "BrowserNotInitializedError",
            "message": "Browser not initialized. Call browser_init before 'navigate'.",
            "details": {"tool": "navigate", "expected_phase": "Ready", "actual_phase": "NotReady"},
        },
    }


@pytest.mark.asyncio
async def test_alias_routes_drive_the_session(app, launcher):
    async with client_for(app) as client:
        init = await client.post("/browser/init")
        nav = await client.post("/browser/navigate", json={"url": "https://example.com"})
        content = await client.post("/browser/get-content", json={"type": "text"})
        close = await client.post("/browser/close")
    assert init.status_code == 200
    assert init.json()["result"] == {"state": "ready"}
    assert nav.json()["result"]["final_url"] == "https://example.com"
    assert content.json()["result"]["content"] == "Hello"
    assert close.json()["result"] == {"state": "closed"}
    assert launcher.attempts == 1


@pytest.mark.asyncio
async def test_error_status_codes(app):
    async with client_for(app) as client:
        unknown = await client.post("/tools/teleport", json={})
        bad_json = await client.post("/tools/navigate", content=b"{not json")
        not_object = await client.post("/tools/navigate", json=[1, 2])
        close = await client.post("/tools/browser_close")
    assert unknown.status_code == 404
    assert unknown.json()["error"]["kind"] == "UnknownToolError"
    assert bad_json.status_code == 400
    assert bad_json.json()["error"]["kind"] == "TransportError"
    assert not_object.status_code == 400
    assert close.status_code == 409
    assert close.json()["error"]["kind"] == "WorkflowViolationError"


@pytest.mark.asyncio
async def test_launch_failure_maps_to_bad_gateway(app, launcher):
    launcher.fail_forever = ConnectionRefusedError("connection refused")
    async with client_for(app) as client:
        response = await client.post("/tools/browser_init")
    assert response.status_code == 502
    assert response.json()["error"]["details"] == {"fatal": False, "attempts": 1}


@pytest.mark.asyncio
async def test_concurrent_posts_are_serialized(app, launcher):
    async with client_for(app) as client:
        await client.post("/tools/browser_init")
        responses = await asyncio.gather(
            client.post("/tools/navigate", json={"url": "https://a.test"}),
            client.post("/tools/navigate", json={"url": "https://b.test"}),
        )
    page = launcher.handles[0].page
    assert [response.status_code for response in responses] == [200, 200]
    assert sorted(page.visits) == ["https://a.test", "https://b.test"]
    assert page.url == page.visits[-1]


def test_websocket_frames(dispatcher):
    client = TestClient(create_http_app(dispatcher))
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "1", "tool": "navigate", "args": {"url": "https://example.com"}})
        rejected = ws.receive_json()
        assert rejected["id"] == "1"
        assert rejected["error"]["kind"] == "BrowserNotInitializedError"

        ws.send_json({"id": "2", "tool": "browser_init"})
        assert ws.receive_json() == {"id": "2", "success": True, "result": {"state": "ready"}}

        ws.send_json({"id": "3", "tool": "navigate", "args": {"url": "https://example.com"}})
        navigated = ws.receive_json()
        assert navigated["id"] == "3"
        assert navigated["result"]["final_url"] == "https://example.com"

        ws.send_text("not json")
        malformed = ws.receive_json()
        assert malformed["success"] is False
        assert malformed["error"]["kind"] == "TransportError"

        ws.send_json({"id": "4", "args": {}})
        missing_tool = ws.receive_json()
        assert missing_tool["id"] == "4"
        assert missing_tool["error"]["kind"] == "TransportError"


def test_websocket_multiplexes_frames_on_one_socket():
    launcher = FakeLauncher(page_delay=0.2)
    dispatcher = Dispatcher(make_session(launcher), build_default_registry(), default_timeout=5.0)
    client = TestClient(create_http_app(dispatcher))
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"id": "init", "tool": "browser_init"})
        assert ws.receive_json()["success"] is True

        ws.send_json({"id": "a", "tool": "navigate", "args": {"url": "https://a.test"}})
        ws.send_json({"id": "b", "tool": "navigate", "args": {"url": "https://b.test"}})
        ws.send_json({"id": "c", "tool": "teleport"})
        replies = [ws.receive_json() for _ in range(3)]

    by_id = {reply["id"]: reply for reply in replies}
    assert [reply["id"] for reply in replies] == ["c", "a", "b"]
    assert by_id["a"]["result"]["final_url"] == "https://a.test"
    assert by_id["b"]["result"]["final_url"] == "https://b.test"
    assert by_id["c"]["error"]["kind"] == "UnknownToolError"
    assert launcher.handles[0].page.visits == ["https://a.test", "https://b.test"]


def test_websocket_can_be_disabled(dispatcher):
    client = TestClient(create_http_app(dispatcher, websocket=False))
    assert client.get("/info").json()["transports"] == ["http"]
    with pytest.raises(Exception):
        with client.websocket_connect("/ws"):
            pass


def test_cors_headers(dispatcher):
    client = TestClient(create_http_app(dispatcher))
    response = client.get("/health", headers={"Origin": "http://dashboard.local"})
    assert response.headers["access-control-allow-origin"] == "*"
