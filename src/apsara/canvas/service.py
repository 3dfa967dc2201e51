"""
Canvas Service — build single-file web apps with the Interactions API.

Flow:
1. A tool call (or POST /api/canvas/create) asks for an app
2. The model generates one complete HTML file
3. The HTML is checked for structure and obviously broken scripts
4. On problems, the numbered error list goes back to the model, chained to
   the previous interaction, until it validates or max_attempts is reached
5. After the ceiling the last output is served anyway with a warning

Edits chain to the app's last interaction when one exists and fall back to
resending the full current code when it does not.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Mapping

from apsara.canvas.store import CanvasApp, CanvasStatus, CanvasStore
from apsara.core.config import CanvasConfig, config
from apsara.core.errors import ArtifactNotFound
from apsara.core.gemini import attr, output_text
from apsara.tools.base import ProgressCallback

logger = logging.getLogger(__name__)

CANVAS_SYSTEM_INSTRUCTION = """You are Apsara Canvas, a world-class web app builder.

Generate complete, self-contained, single-file web applications using HTML, CSS, and JavaScript.

Rules:
1. Always output a SINGLE, complete HTML file that works standalone in any browser.
2. All CSS goes inside a <style> tag in the <head>.
3. All JavaScript goes inside a <script> tag before </body>.
4. Use modern HTML5, CSS3, and ES6+ JavaScript.
5. Make the UI polished and responsive: gradients, shadows, smooth transitions, clean typography.
6. Dark theme by default.
7. Use inline SVGs for icons. Do NOT use external CDN links unless the user asks for a library.
8. If the user asks for React, load React and ReactDOM from unpkg, use Babel standalone for JSX, and render into a root div.
9. The app must be fully functional, with no placeholder text.
10. Handle errors in JavaScript.
11. Output ONLY the HTML code. No markdown, no backticks, no explanation. Start with <!DOCTYPE html> and end with </html>.

Mobile first:
- Always include <meta name="viewport" content="width=device-width, initial-scale=1.0"> in <head>.
- The app must work on 360px wide phones and on desktops.
- Stack multi-panel layouts vertically on mobile and side by side from 768px.
- Use percentage widths, Grid or Flexbox instead of fixed pixel widths.
- Minimum 14px text, 44x44px touch targets.
- Use `* { box-sizing: border-box; }` and `body { margin: 0; overflow-x: hidden; }`.

Style:
- Background #0D0D0D to #1A1A1A, accent #B388FF unless the user picks one.
- Text #E8E8E8 primary, #9E9E9E secondary.
- 12-16px radius for cards, 8px for buttons. Font: system-ui, -apple-system, sans-serif.

You have the URL Context tool. If the user references a URL, fetch it and use its layout, colors and content to inform the design."""

CANVAS_MODELS = [
    {"id": "gemini-3-flash-preview", "name": "Gemini 3 Flash Preview"},
    {"id": "gemini-3-pro-preview", "name": "Gemini 3 Pro Preview"},
    {"id": "gemini-2.5-flash", "name": "Gemini 2.5 Flash"},
    {"id": "gemini-2.5-pro", "name": "Gemini 2.5 Pro"},
]

THINKING_LEVELS = ["minimal", "low", "medium", "high"]

_SCRIPT_RE = re.compile(r"<script(\s[^>]*)?>(.*?)</script>", re.IGNORECASE | re.DOTALL)
_TITLE_TAG_RE = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)
_EDIT_TITLE_PATTERNS = [
    re.compile(
        r"(?:make|turn|convert|change|transform)\s+(?:it|this)\s+(?:into|to|into a|to a)\s+(?:a\s+)?(.+?)(?:\s+app)?$",
        re.IGNORECASE,
    ),
    re.compile(r"(?:make|create|build)\s+(?:it|this)\s+a\s+(.+?)(?:\s+app)?$", re.IGNORECASE),
    re.compile(r"(?:rename|retitle)\s+(?:it|this)?\s*(?:to|as)\s+[\"']?(.+?)[\"']?$", re.IGNORECASE),
]
_PAIRS = {")": "(", "]": "[", "}": "{"}


# ─── Pure helpers ────────────────────────────────────────────────


def clean_html(html: str | None) -> str:
    """Strip markdown fences the model sometimes wraps around its output."""
    if not html:
        return ""
    html = re.sub(r"^```(?:html)?\s*\n?", "", html.strip(), flags=re.IGNORECASE)
    html = re.sub(r"\n?```\s*$", "", html)
    return html.strip()


def _unbalanced_bracket(js: str) -> str | None:
    """First bracket mismatch in a script, ignoring strings and comments."""
    stack: list[str] = []
    i, n = 0, len(js)
    while i < n:
        ch = js[i]
        if ch in "\"'`":
            i += 1
            while i < n and js[i] != ch:
                i += 2 if js[i] == "\\" else 1
        elif js.startswith("//", i):
            end = js.find("\n", i)
            i = n if end == -1 else end
        elif js.startswith("/*", i):
            end = js.find("*/", i + 2)
            i = n if end == -1 else end + 1
        elif ch in "([{":
            stack.append(ch)
        elif ch in ")]}":
            if not stack or stack[-1] != _PAIRS[ch]:
                return f"unexpected '{ch}'"
            stack.pop()
        i += 1
    if stack:
        return f"unclosed '{stack[-1]}'"
    return None


def validate_html(html: str | None) -> list[str]:
    """Structural checks plus a bracket scan of each inline script."""
    if not html or not html.strip():
        return ["Empty HTML output"]

    errors = []
    lower = html.lower()
    if "<!doctype html>" not in lower:
        errors.append("Missing <!DOCTYPE html> declaration")
    if "<html" not in lower:
        errors.append("Missing <html> tag")
    if "<head>" not in lower and "<head " not in lower:
        errors.append("Missing <head> section")
    if "<body>" not in lower and "<body " not in lower:
        errors.append("Missing <body> section")
    if "</html>" not in lower:
        errors.append("Missing closing </html> tag")

    opened = len(re.findall(r"<script[\s>]", lower))
    closed = lower.count("</script>")
    if opened != closed:
        errors.append(f"Unbalanced <script> tags ({opened} opened, {closed} closed)")

    for match in _SCRIPT_RE.finditer(html):
        attrs = (match.group(1) or "").lower()
        body = match.group(2).strip()
        # External and Babel/JSX scripts are not plain JavaScript
        if "src=" in attrs or "text/babel" in attrs or not body:
            continue
        problem = _unbalanced_bracket(body)
        if problem:
            errors.append(f"JavaScript syntax error: {problem}")

    return errors


def generate_title(prompt: str | None) -> str:
    """First 40 characters, cut at a word boundary, capitalized."""
    if not prompt:
        return "Untitled App"
    prompt = prompt.strip()
    if len(prompt) > 40:
        prompt = re.sub(r"\s+\S*$", "", prompt[:40]) + "…"
    return prompt[:1].upper() + prompt[1:]


def generate_edit_title(existing_title: str, instructions: str | None) -> str:
    """Title after an edit: explicit renames win, otherwise derive from the edit."""
    if not instructions:
        return existing_title

    for pattern in _EDIT_TITLE_PATTERNS:
        match = pattern.search(instructions.strip())
        if match and match.group(1):
            titled = re.sub(r"\b\w", lambda m: m.group(0).upper(), match.group(1).strip())
            return titled if titled.endswith("App") else f"{titled} App"

    title = generate_title(instructions)
    if len(title) < 15 and existing_title:
        return f"{existing_title} (edited)"
    return title


def _html_title(html: str) -> str | None:
    match = _TITLE_TAG_RE.search(html)
    if not match:
        return None
    title = match.group(1).strip()
    if len(title) > 2 and title.lower() not in ("app", "document"):
        return title
    return None


async def _report(on_progress: ProgressCallback | None, status: str, message: str) -> None:
    if on_progress is not None:
        await on_progress(status, message)


# ─── Service ─────────────────────────────────────────────────────


class CanvasService:
    """Generates, repairs and edits canvas apps."""

    def __init__(self, store: CanvasStore, client: Any, settings: CanvasConfig | None = None):
        self.store = store
        self.client = client
        self.settings = settings or config.canvas

    def _settings_for(self, overrides: Mapping[str, Any] | None) -> CanvasConfig:
        if not overrides:
            return self.settings
        known = {k: v for k, v in overrides.items() if k in CanvasConfig.__dataclass_fields__}
        return replace(self.settings, **known)

    async def generate_app(
        self,
        prompt: str,
        title: str | None = None,
        overrides: Mapping[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> CanvasApp:
        settings = self._settings_for(overrides)
        title = title or generate_title(prompt)
        app = self.store.create(title=title, description=prompt, prompt=prompt)
        self.store.update(app.id, config_used=settings.as_dict())
        await _report(on_progress, "generating", f'Creating "{title}"...')

        try:
            html, interaction_id = await self._generate(prompt, settings)
            self.store.update(
                app.id,
                html=html,
                status=CanvasStatus.TESTING.value,
                attempts=1,
                interaction_id=interaction_id,
            )
            await _report(on_progress, "testing", "Validating code...")
            return await self._validate_and_fix(
                app,
                html,
                interaction_id,
                fix_prompt=prompt,
                settings=settings,
                on_progress=on_progress,
                base_attempts=0,
                done_message=f'"{title}" is ready!',
                warning_prefix="Validation warnings (served anyway)",
            )
        except Exception as e:
            logger.error("Canvas generation failed: %s", e, exc_info=True)
            self.store.update(app.id, status=CanvasStatus.ERROR.value, error=str(e))
            await _report(on_progress, "error", f"Failed: {e}")
            return app

    async def edit_app(
        self,
        canvas_id: str,
        instructions: str,
        overrides: Mapping[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> CanvasApp:
        """Apply edit instructions to an existing app. Raises ArtifactNotFound."""
        app = self.store.get(canvas_id)
        if app is None:
            raise ArtifactNotFound(f"Canvas not found: {canvas_id}")

        settings = self._settings_for(overrides)
        now = datetime.now(timezone.utc).isoformat()
        await _report(on_progress, "generating", f'Editing "{app.title}"...')

        if app.html and app.status == CanvasStatus.READY.value:
            app.versions.append(
                {
                    "version": len(app.versions) + 1,
                    "title": app.title,
                    "html": app.html,
                    "html_length": len(app.html),
                    "timestamp": now,
                }
            )
        app.edit_history.append(
            {
                "instructions": instructions,
                "timestamp": now,
                "previous_interaction_id": app.interaction_id,
                "config_used": settings.as_dict(),
            }
        )
        new_title = generate_edit_title(app.title, instructions)
        previous_id = app.interaction_id
        self.store.update(
            canvas_id,
            status=CanvasStatus.GENERATING.value,
            title=new_title,
            config_used=settings.as_dict(),
        )
        logger.info(
            "Canvas edit %s (%s)",
            canvas_id,
            f"chaining from {previous_id}" if previous_id else "single-turn",
        )

        try:
            if previous_id:
                prompt = (
                    f"The user wants the following changes to the app:\n{instructions}\n\n"
                    "Apply the requested changes. Keep everything that works well, and only "
                    "change/add/remove what's needed. Output the COMPLETE updated HTML file, "
                    "no partial code, no placeholders. Start with <!DOCTYPE html> and end with </html>."
                )
            else:
                prompt = self._edit_prompt(app, instructions)
            html, interaction_id = await self._generate(prompt, settings, previous_id)

            html_title = _html_title(html)
            if html_title:
                self.store.update(canvas_id, title=html_title)

            self.store.update(
                canvas_id,
                html=html,
                status=CanvasStatus.TESTING.value,
                attempts=app.attempts + 1,
                interaction_id=interaction_id,
            )
            await _report(on_progress, "testing", "Validating edited code...")
            return await self._validate_and_fix(
                app,
                html,
                interaction_id,
                fix_prompt=f"{app.original_prompt or app.prompt}\n\nEdit: {instructions}",
                settings=settings,
                on_progress=on_progress,
                base_attempts=app.attempts - 1,
                done_message=f'"{app.title}" has been updated!',
                warning_prefix="Validation warnings after edit (served anyway)",
            )
        except Exception as e:
            logger.error("Canvas edit failed: %s", e, exc_info=True)
            changes: dict[str, Any] = {"status": CanvasStatus.ERROR.value, "error": str(e)}
            if previous_id:
                # The chain may have expired; the next edit resends the full code
                changes["interaction_id"] = None
            self.store.update(canvas_id, **changes)
            await _report(on_progress, "error", f"Edit failed: {e}")
            return app

    async def _validate_and_fix(
        self,
        app: CanvasApp,
        html: str,
        interaction_id: str | None,
        *,
        fix_prompt: str,
        settings: CanvasConfig,
        on_progress: ProgressCallback | None,
        base_attempts: int,
        done_message: str,
        warning_prefix: str,
    ) -> CanvasApp:
        max_attempts = max(1, settings.max_attempts)
        attempt = 1
        while True:
            errors = validate_html(html)
            if not errors:
                self.store.update(
                    app.id,
                    html=html,
                    status=CanvasStatus.READY.value,
                    error=None,
                    interaction_id=interaction_id,
                )
                await _report(on_progress, "ready", done_message)
                return app

            if attempt >= max_attempts:
                self.store.update(
                    app.id,
                    html=html,
                    status=CanvasStatus.READY.value,
                    error=f"{warning_prefix}: {'; '.join(errors)}",
                    interaction_id=interaction_id,
                )
                await _report(on_progress, "ready", f"{done_message[:-1]} (with minor warnings)")
                return app

            attempt += 1
            self.store.update(
                app.id,
                status=CanvasStatus.FIXING.value,
                attempts=base_attempts + attempt,
            )
            await _report(
                on_progress, "fixing", f"Fixing issues (attempt {attempt}/{max_attempts})..."
            )
            logger.info("Canvas %s fixing %d issue(s): %s", app.id, len(errors), errors)
            html, new_id = await self._fix(html, errors, fix_prompt, settings, interaction_id)
            interaction_id = new_id or interaction_id
            self.store.update(app.id, html=html, interaction_id=interaction_id)

    async def _generate(
        self, prompt: str, settings: CanvasConfig, previous_id: str | None = None
    ) -> tuple[str, str | None]:
        logger.info("Generating canvas app for prompt: %s", prompt[:100])
        request: dict[str, Any] = {
            "model": settings.model,
            "input": prompt,
            "system_instruction": CANVAS_SYSTEM_INSTRUCTION,
            "generation_config": {
                "temperature": settings.temperature,
                "max_output_tokens": settings.max_output_tokens,
                "thinking_level": settings.thinking_level,
                "thinking_summaries": settings.thinking_summaries,
            },
            "tools": [{"type": "url_context"}],
        }
        if previous_id:
            request["previous_interaction_id"] = previous_id
        interaction = await self.client.aio.interactions.create(**request)
        return clean_html(output_text(interaction)), attr(interaction, "id")

    async def _fix(
        self,
        html: str,
        errors: list[str],
        original_prompt: str,
        settings: CanvasConfig,
        previous_id: str | None,
    ) -> tuple[str, str | None]:
        numbered = "\n".join(f"{i}. {e}" for i, e in enumerate(errors, start=1))
        prompt = (
            f'The following HTML app was generated for this request: "{original_prompt}"\n\n'
            f"However, it has these issues:\n{numbered}\n\n"
            f"Here is the current code:\n```html\n{html}\n```\n\n"
            "Fix ALL the issues and output the COMPLETE corrected HTML file. "
            "Remember: output ONLY the HTML code, no markdown, no explanation."
        )
        request: dict[str, Any] = {
            "model": settings.model,
            "input": prompt,
            "system_instruction": CANVAS_SYSTEM_INSTRUCTION,
            "generation_config": {
                "temperature": settings.fix_temperature,
                "max_output_tokens": settings.max_output_tokens,
                "thinking_level": settings.thinking_level,
            },
            "tools": [{"type": "url_context"}],
        }
        if previous_id:
            request["previous_interaction_id"] = previous_id
        interaction = await self.client.aio.interactions.create(**request)
        return clean_html(output_text(interaction)), attr(interaction, "id")

    @staticmethod
    def _edit_prompt(app: CanvasApp, instructions: str) -> str:
        parts = [f'You previously built this web app titled "{app.title}".']
        if app.prompt:
            parts.append(f'\nOriginal request: "{app.prompt}"')
        if app.html:
            parts.append(
                f"\nHere is the CURRENT complete code of the app:\n```html\n{app.html}\n```"
            )
        parts.append(f"\nThe user wants the following changes:\n{instructions}")
        parts.append(
            "\nApply the requested changes to the existing code. Keep everything that "
            "works well, and only change/add/remove what's needed. If the edit changes "
            "the app's purpose, update the <title> tag. Output the COMPLETE updated HTML "
            "file, no partial code, no placeholders. Start with <!DOCTYPE html> and end "
            "with </html>."
        )
        return "\n".join(parts)
