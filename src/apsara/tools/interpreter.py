"""Interpreter tools — run and rework Python code from voice requests."""

from __future__ import annotations

from typing import TYPE_CHECKING

from apsara.core.errors import ArtifactNotFound
from apsara.interpreter.store import CodeSession, CodeStatus
from apsara.tools.base import ApsaraTool, ProgressCallback, ToolParam, ToolResult

if TYPE_CHECKING:
    from apsara.interpreter.service import InterpreterService

MAX_OUTPUT_CHARS = 2000


def _session_result(session: CodeSession) -> ToolResult:
    output = session.output or ""
    if len(output) > MAX_OUTPUT_CHARS:
        output = output[:MAX_OUTPUT_CHARS] + "\n... (truncated)"
    fields = {
        "session_id": session.id,
        "title": session.title,
        "status": session.status,
        "output": output,
        "code": session.code,
        "image_count": len(session.images),
    }
    if session.status == CodeStatus.ERROR.value:
        return ToolResult.fail(session.error or "Code execution failed", **fields)
    return ToolResult.success(**fields)


class RunCodeTool(ApsaraTool):
    name = "run_code"
    description = (
        "Writes and executes Python code in a sandbox to compute, analyze data or "
        "draw charts. Returns the code, its printed output and how many images it made."
    )
    parameters = [
        ToolParam(
            name="prompt",
            type="string",
            description="What to compute, analyze or visualize.",
        ),
        ToolParam(
            name="title",
            type="string",
            description="Short title for the code session.",
            required=False,
        ),
    ]
    long_running = True
    family = "interpreter"

    def __init__(self, service: "InterpreterService"):
        self.service = service

    async def execute(
        self, prompt: str, on_progress: ProgressCallback, title: str | None = None, **_
    ) -> ToolResult:
        session = await self.service.run_code(prompt, title=title, on_progress=on_progress)
        return _session_result(session)


class EditCodeTool(ApsaraTool):
    name = "edit_code"
    description = (
        "Modifies the code of an earlier run_code session and runs it again. "
        "Needs the session_id returned by run_code."
    )
    parameters = [
        ToolParam(
            name="session_id",
            type="string",
            description="The session_id returned by run_code.",
        ),
        ToolParam(
            name="instructions",
            type="string",
            description="How to change the code.",
        ),
    ]
    long_running = True
    family = "interpreter"

    def __init__(self, service: "InterpreterService"):
        self.service = service

    async def execute(
        self, session_id: str, instructions: str, on_progress: ProgressCallback, **_
    ) -> ToolResult:
        try:
            session = await self.service.edit_code(
                session_id, instructions, on_progress=on_progress
            )
        except ArtifactNotFound as e:
            return ToolResult.fail(str(e), session_id=session_id)
        return _session_result(session)
