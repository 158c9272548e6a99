"""Capture page HTML for AI locator discovery."""

from __future__ import annotations

from typing import Any

from playwright.sync_api import Error as PlaywrightError
from pydantic import Field

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.integrations.browser import BrowserDriver
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.util.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_HTML_CHARS = 50_000


class CapturePageHtmlInput(ToolInput):
    page_url: str = Field(description="URL to open")
    selector: str | None = Field(default=None, description="Only capture this element's outer HTML")
    wait_for_network_idle: bool = True


class CapturePageHtmlTool(AgentTool):
    action_type = AgentActionType.CAPTURE_PAGE_HTML
    name = "Page HTML Capturer"
    description = "Opens a page in a browser and returns its (truncated) HTML."
    category = ToolCategory.BROWSER
    input_schema = CapturePageHtmlInput

    def __init__(self, driver: BrowserDriver, max_chars: int = DEFAULT_MAX_HTML_CHARS) -> None:
        self.driver = driver
        self.max_chars = max_chars

    def run(self, payload: CapturePageHtmlInput, cancel: CancellationToken) -> dict[str, Any]:
        if cancel.cancelled:
            return failure("Cancelled before capturing page")
        try:
            with self.driver.open_page() as page:
                page.goto(payload.page_url)
                if payload.wait_for_network_idle:
                    page.wait_for_load_state("networkidle")
                html = page.content()
                relevant = html
                if payload.selector:
                    fragment = page.eval_on_selector(payload.selector, "el => el.outerHTML")
                    relevant = fragment or html
                title = page.title()
        except PlaywrightError as exc:
            logger.warning("Could not capture %s: %s", payload.page_url, exc)
            return failure(f"Page capture failed: {exc}")
        truncated = len(relevant) > self.max_chars
        if truncated:
            relevant = relevant[: self.max_chars]
        logger.info("Captured %d chars of HTML from %s", len(relevant), payload.page_url)
        return success(
            pageUrl=payload.page_url,
            pageTitle=title,
            relevantHtml=relevant,
            fullHtmlLength=len(html),
            truncated=truncated,
        )
