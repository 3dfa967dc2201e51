#!/usr/bin/env python3
"""
Apsara TUI — terminal console for the /live relay.

Typed lines go upstream as text turns. The model answers in audio, so what
you read is the output transcription (plus thoughts, when the session has
them on). Tool calls show up as panels that tick while they run and settle
on their result.

Commands: /state, /tools, /quit

Usage: python apsara_tui.py [--host localhost] [--port 3000] [--voice Kore]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from dataclasses import dataclass, field
from typing import Any

import websockets
from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.styles import Style
from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

FRAMES = "⠁⠂⠄⡀⢀⠠⠐⠈"
PREVIEW_CHARS = 160
QUIT_COMMANDS = {"/quit", "/exit", "/q"}


@dataclass
class ToolCall:
    """One tool call as seen by the console."""

    call_id: str
    name: str
    started: float = field(default_factory=time.monotonic)
    done: bool = False
    error: bool = False
    output: str = ""
    progress: str = ""

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def finish(self, response: dict) -> None:
        self.done = True
        self.error = not response.get("success", False)
        self.output = str(response.get("error") or response.get("message") or json.dumps(response))


def _preview(body: str) -> str:
    flat = " ".join(body.split())
    return flat if len(flat) <= PREVIEW_CHARS else flat[:PREVIEW_CHARS] + " …"


class ApsaraTUI:
    def __init__(self, host: str = "localhost", port: int = 3000, voice: str | None = None):
        self.host = host
        self.port = port
        self.voice = voice
        self.console = Console()
        self.ws: Any = None

        self.messages: list[dict[str, str]] = []
        self.current_response = ""
        self.current_thought = ""
        self.status_text = ""
        self.is_waiting = False
        self.connected = False
        self.last_error = ""
        self.relay_state: dict[str, Any] = {}

        self.tool_calls: dict[str, ToolCall] = {}
        self.tool_order: list[str] = []

        self._frame = 0
        self._connected = asyncio.Event()
        self._response_done = asyncio.Event()
        self._live: Live | None = None

    @property
    def uri(self) -> str:
        return f"ws://{self.host}:{self.port}/live"

    def connect_message(self) -> dict:
        cfg: dict[str, Any] = {"outputAudioTranscription": True}
        if self.voice:
            cfg["voice"] = self.voice
        return {"type": "connect", "config": cfg}

    # ── Display ──────────────────────────────────────────────────────

    def _tool_panel(self, tc: ToolCall) -> Panel:
        if not tc.done:
            mark, color = FRAMES[self._frame % len(FRAMES)], "cyan"
        elif tc.error:
            mark, color = "✗", "red"
        else:
            mark, color = "✓", "green"
        body = _preview(tc.output if tc.done else tc.progress)
        return Panel(
            Text(body, style="dim"),
            title=f"[{color}]{mark}[/{color}] {escape(tc.name)} [dim]{tc.elapsed:.1f}s[/dim]",
            title_align="left",
            border_style=color,
            padding=(0, 1),
        )

    def _turn_view(self) -> Group:
        rows: list[Any] = [self._tool_panel(self.tool_calls[cid]) for cid in self.tool_order]
        if self.is_waiting:
            if self.current_thought:
                rows.append(Text(self.current_thought, style="dim italic"))
            if self.current_response:
                rows.append(Text(self.current_response, style="cyan"))
            if self.status_text:
                rows.append(Text(f"{FRAMES[self._frame % len(FRAMES)]} {self.status_text}", style="magenta"))
        return Group(*rows)

    def _refresh(self) -> None:
        if self._live:
            self._live.update(self._turn_view())

    def _show_state(self, state: dict) -> None:
        table = Table(show_header=False, box=None, padding=(0, 2))
        for key in ("state", "connected", "model", "voice", "hasResumptionHandle"):
            if key in state:
                table.add_row(f"[dim]{key}[/dim]", escape(str(state[key])))
        self.console.print(Panel(table, title="relay", title_align="left", border_style="dim"))

    def _show_tools(self, tools: list[dict]) -> None:
        table = Table("tool", "family", "mode", box=None, header_style="dim")
        for tool in tools:
            table.add_row(tool["name"], tool.get("family", ""), "long" if tool.get("longRunning") else "instant")
        self.console.print(table)

    # ── Relay messages ───────────────────────────────────────────────

    def handle(self, msg: dict) -> None:
        """Fold one relay message into the console state."""
        kind = msg.get("type")

        if kind == "connected":
            self.connected = True
            self._connected.set()
        elif kind == "disconnected":
            self.connected = False
            self.status_text = f"disconnected ({msg.get('reason') or 'unknown'})"
        elif kind in ("output_transcription", "text"):
            self.current_response += msg.get("text", "")
        elif kind == "thought":
            self.current_thought += msg.get("text", "")
        elif kind == "input_transcription":
            self.messages.append({"role": "user", "content": msg.get("text", "")})
        elif kind == "tool_call":
            for call in msg.get("calls", []):
                cid = call.get("id") or f"tc-{time.monotonic()}"
                self.tool_calls[cid] = ToolCall(cid, call.get("name", "?"))
                self.tool_order.append(cid)
            self.status_text = "running tools..."
        elif kind == "tool_results":
            for result in msg.get("results", []):
                tc = self.tool_calls.get(result.get("id", ""))
                if tc:
                    tc.finish(result.get("response") or {})
        elif isinstance(kind, str) and kind.endswith("_progress"):
            tc = self.tool_calls.get(msg.get("tool_call_id", ""))
            if tc:
                tc.progress = msg.get("message", "")
        elif kind == "go_away":
            self.status_text = f"server going away ({msg.get('timeLeft')}), reconnecting..."
        elif kind == "interrupted":
            self.status_text = "interrupted"
        elif kind == "turn_complete":
            if self.current_response:
                self.messages.append({"role": "assistant", "content": self.current_response})
            self.current_response = ""
            self.current_thought = ""
            self.status_text = ""
            self.is_waiting = False
            self._response_done.set()
        elif kind == "state":
            self.relay_state = msg
            self._show_state(msg)
        elif kind == "tools":
            self._show_tools(msg.get("tools", []))
        elif kind == "error":
            self.last_error = msg.get("message", "")
            self.console.print(f"[bold red]Error:[/bold red] {escape(self.last_error)}")
            # Without a session no turn will ever complete
            if not self.connected:
                self._connected.set()
                self._response_done.set()

        self._refresh()

    async def _receive(self) -> None:
        try:
            async for raw in self.ws:
                self.handle(json.loads(raw))
        except websockets.ConnectionClosed:
            self.console.print("[bold red]Relay closed the connection.[/bold red]")
            self.connected = False
            self._connected.set()
            self._response_done.set()

    async def _animate(self) -> None:
        while True:
            await asyncio.sleep(0.1)
            self._frame += 1
            if self.is_waiting:
                self._refresh()

    # ── Session ──────────────────────────────────────────────────────

    async def _send(self, msg: dict) -> None:
        await self.ws.send(json.dumps(msg))

    async def _ask(self, text: str) -> None:
        self.messages.append({"role": "user", "content": text})
        self.current_response = ""
        self.tool_calls.clear()
        self.tool_order.clear()
        self.status_text = "thinking..."
        self.is_waiting = True
        self._response_done.clear()

        await self._send({"type": "text", "text": text})
        self._live = Live(self._turn_view(), console=self.console, refresh_per_second=10, transient=True)
        with self._live:
            await self._response_done.wait()
        self._live = None

        for cid in self.tool_order:
            self.console.print(self._tool_panel(self.tool_calls[cid]))
        if self.messages[-1]["role"] == "assistant":
            self.console.print(Text(self.messages[-1]["content"], style="cyan"), end="\n\n")

    async def run(self) -> None:
        try:
            self.ws = await websockets.connect(self.uri, max_size=None)
        except (OSError, websockets.InvalidHandshake) as e:
            self.console.print(f"[bold red]Cannot reach {self.uri}:[/bold red] {e}")
            sys.exit(1)

        self.console.print(
            Panel(
                f"[bold cyan]Apsara[/bold cyan] live console · {self.uri}\n"
                "[dim]/state  /tools  /quit[/dim]",
                border_style="dim",
            )
        )

        receiver = asyncio.create_task(self._receive())
        animator = asyncio.create_task(self._animate())
        prompt: PromptSession = PromptSession(history=InMemoryHistory())
        style = Style.from_dict({"prompt": "#7f7f7f"})

        try:
            await self._send(self.connect_message())
            with self.console.status("Opening Gemini Live session..."):
                await self._connected.wait()

            while self.connected:
                try:
                    with patch_stdout():
                        line = (await prompt.prompt_async([("class:prompt", "› ")], style=style)).strip()
                except (EOFError, KeyboardInterrupt):
                    break

                if not line:
                    continue
                if line in QUIT_COMMANDS:
                    break
                if line == "/state":
                    await self._send({"type": "get_state"})
                elif line == "/tools":
                    await self._send({"type": "get_tools"})
                else:
                    await self._ask(line)
        finally:
            animator.cancel()
            receiver.cancel()
            try:
                await self._send({"type": "disconnect"})
            except websockets.ConnectionClosed:
                pass
            await self.ws.close()
            self.console.print("[dim]bye[/dim]")


def main():
    parser = argparse.ArgumentParser(description="Terminal console for the Apsara live relay")
    parser.add_argument("--host", default="localhost")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--voice", default=None, help="Live voice, e.g. Kore or Puck")
    args = parser.parse_args()

    try:
        asyncio.run(ApsaraTUI(host=args.host, port=args.port, voice=args.voice).run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
