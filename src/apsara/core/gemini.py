"""
Shared google-genai client and Interactions API helpers.

Canvas, interpreter, URL summary and the text chat all talk to the
Interactions API through one client built here. Interaction outputs are
read with getattr so both SDK objects and plain test doubles work.
"""

from __future__ import annotations

from typing import Any

from google import genai

from apsara.core.config import config


def create_client(api_key: str | None = None) -> genai.Client:
    return genai.Client(
        api_key=api_key or config.gemini.api_key,
        http_options={"api_version": config.gemini.api_version},
    )


def outputs_of(interaction: Any) -> list[Any]:
    return list(attr(interaction, "outputs") or [])


def output_text(interaction: Any) -> str:
    """Concatenate every text output of an interaction."""
    return "".join(
        attr(o, "text") or ""
        for o in outputs_of(interaction)
        if attr(o, "type") == "text"
    )


def attr(item: Any, name: str, default: Any = None) -> Any:
    """Read a field from an SDK object or a dict."""
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)
