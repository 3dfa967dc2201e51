"""End-to-end tests against the FastAPI app with fake Gemini backends."""

import base64

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from apsara import __version__
from apsara.main import SERVICE_NAME, create_app

from fakes import VALID_HTML, FakeAdapter, FakeGenaiClient, text_interaction


def _client(responses=None, adapters=None):
    adapters = adapters if adapters is not None else []

    def factory(session_config):
        adapter = FakeAdapter(session_config)
        adapters.append(adapter)
        return adapter

    genai_client = FakeGenaiClient(responses or [])
    app = create_app(client=genai_client, adapter_factory=factory)
    return TestClient(app), app, genai_client


# ── HTTP ─────────────────────────────────────────────────────────


class TestHealthAndConfig:
    def test_health(self):
        client, _, _ = _client()
        with client:
            body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["service"] == SERVICE_NAME
        assert body["version"] == __version__
        assert {"calculate", "apsara_canvas", "run_code", "url_summary"} <= set(body["tools"])
        assert body["connections"] == {"live": 0, "interactions": 0}

    def test_config(self):
        client, _, _ = _client()
        body = client.get("/config").json()
        assert "Kore" in body["voices"]
        assert body["defaults"]["responseModalities"] == ["AUDIO"]

    def test_cors(self):
        client, _, _ = _client()
        resp = client.options(
            "/health",
            headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "GET"},
        )
        assert resp.headers["access-control-allow-origin"] in ("*", "http://localhost:5173")


class TestCanvasRoutes:
    def test_create_list_render_delete(self):
        client, _, _ = _client([text_interaction(VALID_HTML, "int-1")])

        created = client.post("/api/canvas/create", json={"prompt": "a counter"}).json()
        assert created["success"] is True
        app_id = created["app"]["id"]
        assert created["app"]["status"] == "ready"
        assert created["app"]["html_length"] == len(VALID_HTML)

        apps = client.get("/api/canvas").json()["apps"]
        assert [a["id"] for a in apps] == [app_id]

        detail = client.get(f"/api/canvas/{app_id}").json()["app"]
        assert detail["interaction_id"] == "int-1"

        render = client.get(f"/api/canvas/{app_id}/render")
        assert render.status_code == 200
        assert render.headers["content-security-policy"] == "frame-ancestors *"
        assert 'name="viewport"' in render.text

        assert client.delete(f"/api/canvas/{app_id}").json()["success"] is True
        assert client.get(f"/api/canvas/{app_id}").status_code == 404

    def test_validation_errors(self):
        client, _, _ = _client()
        resp = client.post("/api/canvas/create", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": True, "message": "prompt is required"}

        resp = client.post("/api/canvas/create", content=b"{not json", headers={"content-type": "application/json"})
        assert resp.status_code == 400

    def test_not_found(self):
        client, _, _ = _client()
        assert client.get("/api/canvas/missing/render").status_code == 404
        assert client.delete("/api/canvas/missing").status_code == 404

    def test_canvas_config(self):
        client, _, _ = _client()
        body = client.get("/api/canvas/config").json()
        assert body["thinking_levels"] == ["minimal", "low", "medium", "high"]
        assert body["defaults"]["max_attempts"] == 3


class TestInterpreterRoutes:
    def test_run_and_fetch(self):
        client, _, _ = _client(
            [
                {
                    "id": "int-1",
                    "outputs": [
                        {"type": "code_execution_call", "arguments": {"code": "print(1)"}},
                        {"type": "code_execution_result", "result": "1"},
                    ],
                }
            ]
        )
        session = client.post("/api/interpreter", json={"prompt": "print one"}).json()
        assert session["status"] == "completed"
        assert session["output"] == "1"

        listing = client.get("/api/interpreter").json()
        assert listing["count"] == 1
        assert client.get(f"/api/interpreter/{session['id']}").json()["code"] == "print(1)"

    def test_images(self):
        client, app, _ = _client()
        store = app.state.interpreter_store
        session = store.create(title="chart")
        png = b"\x89PNG\r\n"
        store.update(
            session.id,
            images=[
                {"data": base64.b64encode(png).decode(), "mime_type": "image/png"},
                {"data": "A", "mime_type": "image/png"},
            ],
        )

        index = client.get(f"/api/interpreter/{session.id}/images").json()
        assert index["count"] == 2
        assert index["images"][0]["url"] == f"/api/interpreter/{session.id}/images/0"

        image = client.get(f"/api/interpreter/{session.id}/images/0")
        assert image.content == png
        assert image.headers["content-type"] == "image/png"

        assert client.get(f"/api/interpreter/{session.id}/images/1").status_code == 500
        assert client.get(f"/api/interpreter/{session.id}/images/9").status_code == 404
        assert client.get(f"/api/interpreter/{session.id}/images/x").status_code == 404

    def test_missing_prompt_and_session(self):
        client, _, _ = _client()
        assert client.post("/api/interpreter", json={"title": "x"}).status_code == 400
        assert client.get("/api/interpreter/missing").status_code == 404
        assert client.delete("/api/interpreter/missing").status_code == 404


class TestInteractionsRoutes:
    def test_create_and_continue(self):
        client, _, genai_client = _client(
            [text_interaction("Hi!", "int-1"), text_interaction("Again!", "int-2")]
        )
        first = client.post("/api/interactions", json={"input": "hello"}).json()
        assert first["text"] == "Hi!"

        second = client.post("/api/interactions/int-1/continue", json={"input": "more"}).json()
        assert second["id"] == "int-2"
        assert genai_client.interactions.requests[1]["previous_interaction_id"] == "int-1"

        assert client.get("/api/interactions/int-2").json()["text"] == "Again!"

    def test_errors(self):
        client, _, _ = _client([RuntimeError("model overloaded")])
        resp = client.post("/api/interactions", json={})
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_REQUEST"

        resp = client.post("/api/interactions", json={"input": "x"})
        assert resp.status_code == 500
        assert resp.json() == {"error": True, "message": "model overloaded", "code": "INTERACTION_ERROR"}

        resp = client.get("/api/interactions/unknown")
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"

    def test_config(self):
        client, _, _ = _client()
        body = client.get("/api/interactions/config").json()
        assert {f["name"] for f in body["available_tools"]["functions"]} == {"get_current_time", "get_weather"}


# ── WebSockets ───────────────────────────────────────────────────


class TestSocketRouting:
    @pytest.mark.parametrize("path", ["/", "/nope", "/live/extra", "/interaction"])
    def test_unknown_paths_are_rejected(self, path):
        client, _, _ = _client()
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(path):
                pass

    @pytest.mark.parametrize("path", ["/live", "/interactions"])
    def test_known_paths_are_accepted(self, path):
        client, _, _ = _client()
        with client.websocket_connect(path) as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}


class TestLiveSocket:
    def test_badly_typed_config_keeps_socket_open(self):
        adapters = []
        client, _, _ = _client(adapters=adapters)
        with client.websocket_connect("/live") as ws:
            ws.send_json({"type": "connect", "config": {"temperature": {"hot": True}}})
            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert reply["message"].startswith("Invalid config: ")

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
        assert adapters == []

    def test_connect_ping_disconnect(self):
        adapters = []
        client, _, _ = _client(adapters=adapters)
        with client.websocket_connect("/live") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_json({"type": "connect", "config": {"voice": "Puck"}})
            assert ws.receive_json() == {"type": "connected"}

            ws.send_json({"type": "get_state"})
            state = ws.receive_json()
            assert state["state"] == "active"
            assert state["voice"] == "Puck"

            ws.send_json({"type": "text", "text": "hello"})
            ws.send_json({"type": "disconnect"})
            assert ws.receive_json() == {"type": "disconnected", "reason": "client_requested"}

        assert adapters[0].sent == [("text", "hello")]
        assert adapters[0].disconnect_calls == 1

    def test_protocol_errors(self):
        client, _, _ = _client()
        with client.websocket_connect("/live") as ws:
            ws.send_text("{broken")
            assert ws.receive_json() == {"type": "error", "message": "Invalid JSON"}

            ws.send_json({"type": "bogus"})
            assert ws.receive_json() == {"type": "error", "message": "Unknown message type: bogus"}

            ws.send_json({"type": "text", "text": "early"})
            assert ws.receive_json()["message"] == 'Not connected — send "connect" first'

    def test_get_tools(self):
        client, _, _ = _client()
        with client.websocket_connect("/live") as ws:
            ws.send_json({"type": "get_tools"})
            tools = {t["name"]: t for t in ws.receive_json()["tools"]}
        assert tools["apsara_canvas"]["longRunning"] is True
        assert tools["apsara_canvas"]["family"] == "canvas"
        assert tools["calculate"]["longRunning"] is False


class TestInteractionsSocket:
    def test_chat(self):
        client, _, _ = _client([text_interaction("Hello from chat", "int-1")])
        with client.websocket_connect("/interactions") as ws:
            ws.send_json({"type": "chat", "input": "hi"})
            reply = ws.receive_json()
            assert reply["type"] == "response"
            assert reply["text"] == "Hello from chat"

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
