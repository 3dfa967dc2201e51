"""
URL Summarizer — fetch a page with httpx and summarize it with Gemini.

Pages are reduced to visible text (scripts, styles and markup dropped)
and truncated before being sent to the model.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any

import httpx

from apsara.core.config import InteractionsConfig, config
from apsara.core.gemini import output_text
from apsara.tools.base import ProgressCallback

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; ApsaraBot/1.0)"

_SKIP_TAGS = {"script", "style", "noscript", "svg", "template", "head"}
_BLOCK_TAGS = {"p", "div", "br", "li", "h1", "h2", "h3", "h4", "h5", "h6", "tr", "section", "article"}


class _TextExtractor(HTMLParser):
    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.title = ""
        self._in_title = False
        self._skip_depth = 0
        self._chunks: list[str] = []

    def handle_starttag(self, tag, attrs):
        if tag == "title":
            self._in_title = True
        elif tag in _SKIP_TAGS:
            self._skip_depth += 1
        elif tag in _BLOCK_TAGS:
            self._chunks.append("\n")

    def handle_endtag(self, tag):
        if tag == "title":
            self._in_title = False
        elif tag in _SKIP_TAGS and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data):
        if self._in_title:
            self.title += data
        elif not self._skip_depth:
            self._chunks.append(data)

    @property
    def text(self) -> str:
        raw = "".join(self._chunks)
        raw = re.sub(r"[ \t\r\f\v]+", " ", raw)
        return re.sub(r"\n\s*\n+", "\n\n", raw).strip()


def html_to_text(html: str) -> tuple[str, str]:
    """Return (title, visible text) for an HTML document."""
    parser = _TextExtractor()
    parser.feed(html)
    parser.close()
    return parser.title.strip(), parser.text


@dataclass
class PageSummary:
    url: str
    title: str
    summary: str


class UrlSummarizer:
    def __init__(
        self,
        client: Any,
        settings: InteractionsConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.client = client
        self.settings = settings or config.interactions
        self._http = http_client

    async def fetch(self, url: str) -> tuple[str, str]:
        """Fetch a page and return (title, text). Raises httpx errors."""
        headers = {"User-Agent": USER_AGENT}
        if self._http is not None:
            resp = await self._http.get(url, headers=headers, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=self.settings.fetch_timeout) as client:
                resp = await client.get(url, headers=headers, follow_redirects=True)
        resp.raise_for_status()

        content_type = resp.headers.get("content-type", "")
        if "html" in content_type or not content_type:
            title, text = html_to_text(resp.text)
        else:
            title, text = "", resp.text
        return title or url, text[: self.settings.fetch_max_chars]

    async def summarize(
        self,
        url: str,
        focus: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> PageSummary:
        if not re.match(r"^https?://", url, re.IGNORECASE):
            raise ValueError(f"Only http(s) URLs can be summarized: {url}")

        if on_progress:
            await on_progress("fetching", f"Fetching {url}...")
        title, text = await self.fetch(url)
        if not text:
            raise ValueError(f"No readable text at {url}")

        if on_progress:
            await on_progress("summarizing", f'Summarizing "{title}"...')
        instruction = (
            "Summarize the following web page for someone who will hear the summary "
            "read aloud. Be concise: a short overview, then the key points."
        )
        if focus:
            instruction += f" Focus on: {focus}."
        interaction = await self.client.aio.interactions.create(
            model=self.settings.summary_model,
            input=f"{instruction}\n\nURL: {url}\nTitle: {title}\n\n{text}",
        )
        summary = output_text(interaction).strip()
        logger.info("Summarized %s (%d chars -> %d)", url, len(text), len(summary))

        if on_progress:
            await on_progress("done", f'Summary of "{title}" ready')
        return PageSummary(url=url, title=title, summary=summary)
