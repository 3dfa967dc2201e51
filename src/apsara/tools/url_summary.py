"""URL summary tool."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from apsara.tools.base import ApsaraTool, ProgressCallback, ToolParam, ToolResult

if TYPE_CHECKING:
    from apsara.web.summarizer import UrlSummarizer


class UrlSummaryTool(ApsaraTool):
    name = "url_summary"
    description = (
        "Fetches a web page and summarizes it. Use when the user shares a link "
        "or asks what a page says."
    )
    parameters = [
        ToolParam(name="url", type="string", description="Full http(s) URL."),
        ToolParam(
            name="focus",
            type="string",
            description="Optional aspect of the page to focus on.",
            required=False,
        ),
    ]
    long_running = True
    family = "url_summary"

    def __init__(self, summarizer: "UrlSummarizer"):
        self.summarizer = summarizer

    async def execute(
        self, url: str, on_progress: ProgressCallback, focus: str | None = None, **_
    ) -> ToolResult:
        try:
            page = await self.summarizer.summarize(url, focus=focus, on_progress=on_progress)
        except httpx.HTTPStatusError as e:
            return ToolResult.fail(f"Fetch failed: HTTP {e.response.status_code}", url=url)
        except httpx.HTTPError as e:
            return ToolResult.fail(f"Fetch failed: {e}", url=url)
        except ValueError as e:
            return ToolResult.fail(str(e), url=url)
        return ToolResult.success(url=page.url, title=page.title, summary=page.summary)
