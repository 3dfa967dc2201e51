"""
Interpreter Service — Python through Gemini's hosted code execution.

The Interactions API runs the model's code server-side when the
``code_execution`` tool is enabled and returns the code, its stdout/stderr
and any rendered images as separate outputs. This module turns those
outputs into a CodeSession.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any

from apsara.core.config import InterpreterConfig, config
from apsara.core.errors import ArtifactNotFound
from apsara.core.gemini import attr, outputs_of
from apsara.interpreter.store import CodeSession, CodeStatus, InterpreterStore
from apsara.tools.base import ProgressCallback

logger = logging.getLogger(__name__)

INTERPRETER_SYSTEM_INSTRUCTION = """You are Apsara Interpreter, a Python code execution assistant.

Write and execute Python code to solve problems, create visualizations, process data, and demonstrate programming concepts.

Rules:
1. Write clean, commented Python code.
2. Use the code_execution tool to run your code. Never just show code in text.
3. For visualizations use matplotlib: create the plot, then plt.savefig('output.png', dpi=150, bbox_inches='tight') and plt.show().
4. Use pandas, numpy and scipy for data analysis; sympy or scipy for math.
5. If code fails, explain why and fix it.
6. Print results clearly with labels.
7. After executing code, summarize the results.

Available libraries: numpy, pandas, scipy, sympy, matplotlib, PIL/Pillow, and the standard library."""


@dataclass
class ExecutionResult:
    code: str = ""
    output: str = ""
    text: str = ""
    images: list[dict] = field(default_factory=list)
    error: str | None = None


def _b64(data: Any) -> str:
    if isinstance(data, (bytes, bytearray)):
        return base64.b64encode(data).decode("ascii")
    return data or ""


def _is_duplicate_image(data: str, prev: str) -> bool:
    # savefig + show renders the same chart twice, sometimes at slightly
    # different quality
    if data[:200] == prev[:200]:
        return True
    if data and prev:
        ratio = len(data) / len(prev)
        if 0.95 < ratio < 1.05:
            a = int(len(data) * 0.4)
            b = int(len(prev) * 0.4)
            return data[a : a + 100] == prev[b : b + 100]
    return False


def dedupe_images(images: list[dict]) -> list[dict]:
    kept: list[dict] = []
    for img in images:
        if not any(_is_duplicate_image(img["data"], k["data"]) for k in kept):
            kept.append(img)
    return kept


def extract_results(interaction: Any) -> ExecutionResult:
    """Collect code, output, text and images from interaction outputs."""
    result = ExecutionResult()

    for output in outputs_of(interaction):
        kind = attr(output, "type")
        if kind == "code_execution_call":
            args = attr(output, "arguments")
            code = attr(args, "code", "") if args is not None else ""
            result.code += ("\n\n" if result.code else "") + (code or "")
        elif kind == "executable_code":
            code = attr(output, "code") or attr(output, "text") or ""
            result.code += ("\n\n" if result.code else "") + code
        elif kind == "code_execution_result":
            text = attr(output, "result") or attr(output, "output") or attr(output, "text") or ""
            result.output += ("\n" if result.output else "") + text
            if attr(output, "is_error"):
                result.error = text or "Code execution error"
        elif kind == "text":
            result.text += ("\n" if result.text else "") + (attr(output, "text") or "")
        elif kind in ("image", "inline_data"):
            source = attr(output, "inline_data") or output
            data = _b64(attr(source, "data"))
            if data:
                result.images.append(
                    {
                        "data": data,
                        "mime_type": attr(source, "mime_type") or "image/png",
                    }
                )
        elif kind == "thought":
            continue
        else:
            logger.debug("Unknown interpreter output type: %s", kind)

    # Answered without executing anything
    if not result.code and result.text:
        result.output = result.text

    result.images = dedupe_images(result.images)
    return result


def generate_title(prompt: str) -> str:
    """First six words of the prompt."""
    words = prompt.split()
    title = " ".join(words[:6])
    if len(words) > 6:
        title += "..."
    return title or "Untitled Code"


class InterpreterService:
    def __init__(
        self, store: InterpreterStore, client: Any, settings: InterpreterConfig | None = None
    ):
        self.store = store
        self.client = client
        self.settings = settings or config.interpreter

    async def run_code(
        self,
        prompt: str,
        title: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> CodeSession:
        title = title or generate_title(prompt)
        session = self.store.create(title=title, prompt=prompt)
        if on_progress:
            await on_progress("running", f'Executing code for "{title}"...')
        return await self._execute(session, prompt, on_progress)

    async def edit_code(
        self,
        session_id: str,
        instructions: str,
        on_progress: ProgressCallback | None = None,
    ) -> CodeSession:
        """Rewrite and rerun a session's code. Raises ArtifactNotFound."""
        session = self.store.get(session_id)
        if session is None:
            raise ArtifactNotFound(f"Code session not found: {session_id}")

        self.store.update(
            session_id,
            previous_code=session.code,
            previous_output=session.output,
            edit_instructions=instructions,
            edit_count=session.edit_count + 1,
            status=CodeStatus.RUNNING.value,
            error=None,
        )
        if on_progress:
            await on_progress("running", f'Editing "{session.title}"...')

        prompt = (
            f'Original request: "{session.original_prompt}"\n\n'
            f"Here is the current code:\n```python\n{session.previous_code or ''}\n```\n\n"
            f"Its output was:\n```\n{session.previous_output or ''}\n```\n\n"
            f"Modify the code as follows and execute it again:\n{instructions}"
        )
        return await self._execute(session, prompt, on_progress)

    async def _execute(
        self,
        session: CodeSession,
        prompt: str,
        on_progress: ProgressCallback | None,
    ) -> CodeSession:
        s = self.settings
        request = {
            "model": s.model,
            "input": prompt,
            "system_instruction": INTERPRETER_SYSTEM_INSTRUCTION,
            "tools": [{"type": "code_execution"}],
            "generation_config": {
                "temperature": s.temperature,
                "max_output_tokens": s.max_output_tokens,
                "thinking_level": s.thinking_level,
                "thinking_summaries": s.thinking_summaries,
            },
        }
        logger.info("Running code for session %s: %s", session.id, prompt[:100])

        try:
            if on_progress:
                await on_progress("running", "Generating and executing code...")
            interaction = await self.client.aio.interactions.create(**request)
            result = extract_results(interaction)
        except Exception as e:
            logger.error("Interpreter error: %s", e, exc_info=True)
            self.store.update(session.id, status=CodeStatus.ERROR.value, error=str(e))
            if on_progress:
                await on_progress("error", str(e))
            return session

        status = CodeStatus.ERROR if result.error else CodeStatus.COMPLETED
        self.store.update(
            session.id,
            code=result.code,
            output=result.output,
            images=result.images,
            status=status.value,
            error=result.error,
        )
        if on_progress:
            if result.error:
                await on_progress("error", f"Error: {result.error}")
            else:
                await on_progress("completed", "Code executed successfully")
        return session
