"""Tests for the code interpreter — output extraction, sessions, tools."""

import base64
from types import SimpleNamespace

import pytest

from apsara.core.errors import ArtifactNotFound
from apsara.interpreter.service import (
    InterpreterService,
    dedupe_images,
    extract_results,
    generate_title,
)
from apsara.interpreter.store import CodeStatus, InterpreterStore
from apsara.tools.interpreter import MAX_OUTPUT_CHARS, EditCodeTool, RunCodeTool

from fakes import FakeGenaiClient

PNG = base64.b64encode(b"\x89PNG" + bytes(range(200))).decode()


def _code_interaction(code="print(2 + 2)", output="4", interaction_id="int-1", **extra):
    outputs = [
        {"type": "thought", "summary": "planning"},
        {"type": "code_execution_call", "arguments": {"code": code}},
        {"type": "code_execution_result", "result": output, **extra},
        {"type": "text", "text": "The answer is 4."},
    ]
    return {"id": interaction_id, "outputs": outputs}


def _service(responses):
    store = InterpreterStore()
    return InterpreterService(store, FakeGenaiClient(responses)), store


class TestExtractResults:
    def test_code_output_and_text(self):
        result = extract_results(_code_interaction())
        assert result.code == "print(2 + 2)"
        assert result.output == "4"
        assert result.text == "The answer is 4."
        assert result.error is None

    def test_multiple_runs_are_joined(self):
        interaction = {
            "outputs": [
                {"type": "code_execution_call", "arguments": {"code": "a = 1"}},
                {"type": "code_execution_result", "result": "ok"},
                {"type": "code_execution_call", "arguments": {"code": "print(a)"}},
                {"type": "code_execution_result", "result": "1"},
            ]
        }
        result = extract_results(interaction)
        assert result.code == "a = 1\n\nprint(a)"
        assert result.output == "ok\n1"

    def test_error_result(self):
        result = extract_results(_code_interaction(output="NameError: x", is_error=True))
        assert result.error == "NameError: x"

    def test_text_only_answer_becomes_output(self):
        result = extract_results({"outputs": [{"type": "text", "text": "No code needed."}]})
        assert result.code == ""
        assert result.output == "No code needed."

    def test_images_from_bytes_and_objects(self):
        interaction = SimpleNamespace(
            outputs=[
                SimpleNamespace(type="image", data=b"\x89PNGabc", mime_type="image/png"),
                {"type": "inline_data", "inline_data": {"data": "QUJD", "mime_type": "image/jpeg"}},
            ]
        )
        result = extract_results(interaction)
        assert result.images[0] == {
            "data": base64.b64encode(b"\x89PNGabc").decode(),
            "mime_type": "image/png",
        }
        assert result.images[1] == {"data": "QUJD", "mime_type": "image/jpeg"}


class TestDedupe:
    def test_identical_prefix_is_duplicate(self):
        assert len(dedupe_images([{"data": PNG}, {"data": PNG}])) == 1

    def test_near_identical_render_is_duplicate(self):
        other = PNG[:200] + "X" + PNG[201:]
        assert len(dedupe_images([{"data": PNG}, {"data": other}])) == 1

    def test_different_images_are_kept(self):
        second = base64.b64encode(b"GIF89a" + bytes(range(50, 250))).decode()
        assert len(dedupe_images([{"data": PNG}, {"data": second}])) == 2


class TestTitle:
    def test_six_words(self):
        assert generate_title("plot a sine wave from zero to two pi") == "plot a sine wave from zero..."

    def test_short(self):
        assert generate_title("add numbers") == "add numbers"
        assert generate_title("   ") == "Untitled Code"


class TestInterpreterService:
    @pytest.mark.asyncio
    async def test_run_code(self):
        service, store = _service([_code_interaction()])
        seen = []

        async def on_progress(status, message):
            seen.append(status)

        session = await service.run_code("add two and two", on_progress=on_progress)
        assert session.status == CodeStatus.COMPLETED.value
        assert session.code == "print(2 + 2)"
        assert session.output == "4"
        assert seen[-1] == "completed"
        assert [e["step"] for e in session.execution_log] == ["created", "completed"]

        request = service.client.interactions.requests[0]
        assert request["tools"] == [{"type": "code_execution"}]
        assert request["input"] == "add two and two"

    @pytest.mark.asyncio
    async def test_run_code_error_output(self):
        service, _ = _service([_code_interaction(output="ZeroDivisionError", is_error=True)])
        session = await service.run_code("divide by zero")
        assert session.status == CodeStatus.ERROR.value
        assert session.error == "ZeroDivisionError"

    @pytest.mark.asyncio
    async def test_run_code_api_failure(self):
        service, _ = _service([RuntimeError("quota exceeded")])
        session = await service.run_code("anything")
        assert session.status == CodeStatus.ERROR.value
        assert session.error == "quota exceeded"

    @pytest.mark.asyncio
    async def test_edit_code(self):
        service, _ = _service(
            [_code_interaction(), _code_interaction(code="print(3 + 3)", output="6", interaction_id="int-2")]
        )
        session = await service.run_code("add two and two")
        edited = await service.edit_code(session.id, "use three instead")

        assert edited.id == session.id
        assert edited.code == "print(3 + 3)"
        assert edited.previous_code == "print(2 + 2)"
        assert edited.previous_output == "4"
        assert edited.edit_count == 1
        prompt = service.client.interactions.requests[1]["input"]
        assert "print(2 + 2)" in prompt
        assert "use three instead" in prompt

    @pytest.mark.asyncio
    async def test_edit_unknown_session(self):
        service, _ = _service([])
        with pytest.raises(ArtifactNotFound):
            await service.edit_code("missing", "x")


class TestInterpreterTools:
    @pytest.mark.asyncio
    async def test_run_code_payload(self):
        service, _ = _service([_code_interaction()])
        payload = (await RunCodeTool(service).safe_execute({"prompt": "add"})).to_payload()
        assert payload["success"] is True
        assert payload["output"] == "4"
        assert payload["image_count"] == 0
        assert payload["status"] == "completed"

    @pytest.mark.asyncio
    async def test_long_output_is_truncated(self):
        service, _ = _service([_code_interaction(output="x" * (MAX_OUTPUT_CHARS + 50))])
        payload = (await RunCodeTool(service).safe_execute({"prompt": "spam"})).to_payload()
        assert payload["output"].endswith("... (truncated)")
        assert len(payload["output"]) < MAX_OUTPUT_CHARS + 50

    @pytest.mark.asyncio
    async def test_failed_run_payload(self):
        service, _ = _service([RuntimeError("boom")])
        payload = (await RunCodeTool(service).safe_execute({"prompt": "x"})).to_payload()
        assert payload["success"] is False
        assert payload["error"] == "boom"

    @pytest.mark.asyncio
    async def test_edit_unknown_session(self):
        service, _ = _service([])
        payload = (
            await EditCodeTool(service).safe_execute({"session_id": "nope", "instructions": "x"})
        ).to_payload()
        assert payload["success"] is False
        assert "not found" in payload["error"]
