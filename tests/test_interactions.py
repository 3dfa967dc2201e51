"""Tests for the Interactions text chat — request building, tool rounds, WS session."""

import json

import pytest

from apsara.core.config import InteractionsConfig
from apsara.interactions.service import (
    InteractionsService,
    build_generation_config,
    build_tools,
    format_response,
)
from apsara.interactions.session import InteractionsSession
from apsara.interactions.tools import execute_function, function_names

from fakes import FakeGenaiClient, text_interaction


def _function_call(name, args=None, call_id="call-1", interaction_id="int-1"):
    return {
        "id": interaction_id,
        "outputs": [{"type": "function_call", "name": name, "id": call_id, "arguments": args or {}}],
    }


class TestChatTools:
    def test_names(self):
        assert function_names() == ["get_current_time", "get_weather"]

    def test_current_time(self):
        result = json.loads(execute_function("get_current_time"))
        assert result["success"] is True
        assert "server_time" in result

    def test_weather_mock(self):
        result = json.loads(execute_function("get_weather", {"location": "Paris"}))
        assert result["location"] == "Paris"

    def test_unknown(self):
        assert json.loads(execute_function("nope")) == {"success": False, "error": "Unknown function: nope"}


class TestRequestBuilding:
    def test_default_tools_are_functions(self):
        assert [t["name"] for t in build_tools(None)] == function_names()

    def test_builtins_and_filter(self):
        tools = build_tools({"googleSearch": True, "enabledFunctions": ["get_weather"]})
        assert tools[0] == {"type": "google_search"}
        assert [t.get("name") for t in tools[1:]] == ["get_weather"]

    def test_function_calling_off(self):
        assert build_tools({"functionCalling": False, "urlContext": True}) == [{"type": "url_context"}]

    def test_custom_tools(self):
        custom = {"type": "function", "name": "lookup"}
        assert build_tools({"functionCalling": False, "customTools": [custom]}) == [custom]

    def test_generation_config_drops_unknown_and_none(self):
        gen = build_generation_config({"temperature": 0.7, "thinking_level": "high"}, {"temperature": 0.1, "seed": 4, "thinking_level": None})
        assert gen == {"temperature": 0.1}

    def test_format_response(self):
        formatted = format_response(
            {
                "id": "int-1",
                "status": "completed",
                "outputs": [
                    {"type": "thought", "summary": "hmm", "signature": "sig"},
                    {"type": "text", "text": "first"},
                    {"type": "text", "text": "final"},
                    {"type": "image", "data": "QUJD", "mime_type": "image/png"},
                ],
            }
        )
        assert formatted["text"] == "final"
        assert formatted["thoughts"] == [{"summary": "hmm", "signature": "sig"}]
        assert formatted["images"] == [{"data": "QUJD", "mime_type": "image/png"}]
        assert "functionCalls" not in formatted


class TestInteractionsService:
    @pytest.mark.asyncio
    async def test_simple_interaction(self):
        client = FakeGenaiClient([text_interaction("Hello!")])
        service = InteractionsService(client, InteractionsConfig())
        result = await service.create_interaction("hi")

        assert result["text"] == "Hello!"
        request = client.interactions.requests[0]
        assert request["input"] == "hi"
        assert "previous_interaction_id" not in request
        assert request["system_instruction"]

    @pytest.mark.asyncio
    async def test_function_round(self):
        client = FakeGenaiClient(
            [
                _function_call("get_weather", {"location": "Pune"}),
                text_interaction("It is 22°C in Pune.", "int-2"),
            ]
        )
        service = InteractionsService(client, InteractionsConfig())
        result = await service.create_interaction("weather in Pune?", system_instruction="Be brief")

        assert result["id"] == "int-2"
        assert result["text"] == "It is 22°C in Pune."
        follow_up = client.interactions.requests[1]
        assert follow_up["previous_interaction_id"] == "int-1"
        assert follow_up["system_instruction"] == "Be brief"
        assert follow_up["tools"] == client.interactions.requests[0]["tools"]
        [fn_result] = follow_up["input"]
        assert fn_result["type"] == "function_result"
        assert fn_result["call_id"] == "call-1"
        assert json.loads(fn_result["result"])["location"] == "Pune"

    @pytest.mark.asyncio
    async def test_rounds_are_bounded(self):
        client = FakeGenaiClient(
            [
                _function_call("get_current_time", interaction_id="int-1"),
                _function_call("get_current_time", interaction_id="int-2"),
                _function_call("get_current_time", interaction_id="int-3"),
            ]
        )
        service = InteractionsService(client, InteractionsConfig(max_tool_rounds=2))
        result = await service.create_interaction("loop")

        assert len(client.interactions.requests) == 3
        assert result["functionCalls"][0]["name"] == "get_current_time"

    @pytest.mark.asyncio
    async def test_auto_execute_off(self):
        client = FakeGenaiClient([_function_call("get_weather", {"location": "Oslo"})])
        service = InteractionsService(client, InteractionsConfig())
        result = await service.create_interaction("weather?", auto_execute_tools=False)
        assert len(client.interactions.requests) == 1
        assert result["functionCalls"][0]["arguments"] == {"location": "Oslo"}

    @pytest.mark.asyncio
    async def test_get_interaction(self):
        client = FakeGenaiClient([text_interaction("stored", "int-7")])
        service = InteractionsService(client, InteractionsConfig())
        await service.create_interaction("remember")
        assert (await service.get_interaction("int-7"))["text"] == "stored"

    def test_config_options(self):
        options = InteractionsService(None, InteractionsConfig()).config_options()
        assert "google_search" in options["available_tools"]["builtin"]
        assert options["defaults"]["model"] == InteractionsConfig().model


class _Recorder:
    def __init__(self):
        self.sent = []

    async def __call__(self, msg):
        self.sent.append(msg)


class TestInteractionsSession:
    def _session(self, responses):
        client = FakeGenaiClient(responses)
        send = _Recorder()
        session = InteractionsSession(InteractionsService(client, InteractionsConfig()), send, "s1")
        return session, send, client

    @pytest.mark.asyncio
    async def test_chat_and_continue(self):
        session, send, client = self._session(
            [text_interaction("one", "int-1"), text_interaction("two", "int-2")]
        )
        await session.handle({"type": "chat", "input": "hello"})
        await session.handle({"type": "continue", "input": "more"})

        assert [m["text"] for m in send.sent] == ["one", "two"]
        assert all(m["type"] == "response" for m in send.sent)
        assert client.interactions.requests[1]["previous_interaction_id"] == "int-1"

        await session.handle({"type": "get_history"})
        assert send.sent[-1] == {"type": "history", "interactions": ["int-1", "int-2"], "lastInteractionId": "int-2"}

    @pytest.mark.asyncio
    async def test_chat_starts_fresh_unless_asked(self):
        session, _, client = self._session(
            [text_interaction("one", "int-1"), text_interaction("two", "int-2"), text_interaction("three", "int-3")]
        )
        await session.handle({"type": "chat", "input": "a"})
        await session.handle({"type": "chat", "input": "b"})
        await session.handle({"type": "chat", "input": "c", "continuePrevious": True})

        assert "previous_interaction_id" not in client.interactions.requests[1]
        assert client.interactions.requests[2]["previous_interaction_id"] == "int-2"

    @pytest.mark.asyncio
    async def test_continue_without_history(self):
        session, send, _ = self._session([])
        await session.handle({"type": "continue", "input": "x"})
        assert send.sent[0]["type"] == "error"
        assert "No previous interaction" in send.sent[0]["message"]

    @pytest.mark.asyncio
    async def test_input_required(self):
        session, send, _ = self._session([])
        await session.handle({"type": "chat"})
        assert send.sent == [{"type": "error", "message": "input is required"}]

    @pytest.mark.asyncio
    async def test_api_error_is_reported(self):
        session, send, _ = self._session([RuntimeError("rate limited")])
        await session.handle({"type": "chat", "input": "x"})
        assert send.sent == [{"type": "error", "message": "rate limited"}]

    @pytest.mark.asyncio
    async def test_set_config_merges(self):
        session, send, client = self._session([text_interaction("ok")])
        await session.handle({"type": "set_config", "config": {"generation_config": {"temperature": 0.1}, "tools": {"googleSearch": True}}})

        cfg = send.sent[0]["config"]
        assert cfg["generation_config"]["temperature"] == 0.1
        assert cfg["generation_config"]["thinking_level"] == InteractionsConfig().thinking_level
        assert cfg["tools"] == {"functionCalling": True, "googleSearch": True}

        await session.handle({"type": "chat", "input": "search"})
        assert {"type": "google_search"} in client.interactions.requests[0]["tools"]

    @pytest.mark.asyncio
    async def test_reset_ping_unknown(self):
        session, send, _ = self._session([text_interaction("one")])
        await session.handle({"type": "chat", "input": "a"})
        await session.handle({"type": "reset"})
        await session.handle({"type": "ping"})
        await session.handle({"type": "bogus"})

        assert session.last_interaction_id is None
        assert session.history == []
        assert send.sent[1:] == [
            {"type": "reset_done"},
            {"type": "pong"},
            {"type": "error", "message": "Unknown message type: bogus"},
        ]
