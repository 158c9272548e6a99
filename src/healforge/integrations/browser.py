"""Browser access for capturing pages and replaying test steps."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
import re
from typing import Any, Iterator
from urllib.parse import urljoin

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import expect, sync_playwright

from healforge.content.locators import parse_locator
from healforge.content.test_content import TestStep
from healforge.errors import StepFailure
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class BrowserDriver(ABC):
    """Hands out a fresh page; everything it opened is closed when the block exits."""

    @abstractmethod
    def open_page(self) -> Any:
        """Return a context manager yielding a page object."""
        raise NotImplementedError


class PlaywrightBrowserDriver(BrowserDriver):
    def __init__(self, headless: bool = True, timeout_ms: int = 30_000) -> None:
        self.headless = headless
        self.timeout_ms = timeout_ms

    @contextmanager
    def open_page(self) -> Iterator[Any]:
        with sync_playwright() as playwright:
            browser = playwright.chromium.launch(headless=self.headless)
            try:
                context = browser.new_context()
                try:
                    page = context.new_page()
                    page.set_default_timeout(self.timeout_ms)
                    yield page
                finally:
                    context.close()
            finally:
                browser.close()


def locate(page: Any, locator: str) -> Any:
    """Resolve a ``strategy=value`` locator to a Playwright locator."""
    strategy, value = parse_locator(locator)
    if strategy == "role":
        match = re.fullmatch(r"(\w+)\[name=['\"](.+)['\"]\]", value)
        if match:
            return page.get_by_role(match.group(1), name=match.group(2))
        return page.get_by_role(value)
    if strategy == "testid":
        if value.startswith("["):
            return page.locator(value)
        return page.get_by_test_id(value)
    if strategy == "text":
        return page.get_by_text(value)
    if strategy == "label":
        return page.get_by_label(value)
    if strategy == "placeholder":
        return page.get_by_placeholder(value)
    if strategy == "xpath":
        return page.locator(f"xpath={value.removeprefix('xpath=')}")
    return page.locator(value)


class StepExecutor(ABC):
    @abstractmethod
    def execute(self, page: Any, step: TestStep, index: int, base_url: str | None) -> None:
        """Perform one step; raise StepFailure when it fails."""
        raise NotImplementedError


class PlaywrightStepExecutor(StepExecutor):
    def execute(self, page: Any, step: TestStep, index: int, base_url: str | None) -> None:
        try:
            self._dispatch(page, step, base_url)
        except StepFailure as exc:
            if exc.step_index is None:
                exc.step_index = index
            raise
        except (PlaywrightError, AssertionError) as exc:
            raise StepFailure(str(exc), step_index=index, locator=step.locator) from exc

    def _dispatch(self, page: Any, step: TestStep, base_url: str | None) -> None:
        action = step.action_key
        timeout = step.timeout
        kwargs = {"timeout": timeout} if timeout else {}
        if action == "NAVIGATE":
            url = step.value or base_url or ""
            if base_url and not re.match(r"https?://", url):
                url = urljoin(base_url.rstrip("/") + "/", url.lstrip("/"))
            page.goto(url, **kwargs)
            return
        if action == "WAIT_FOR_LOAD_STATE":
            page.wait_for_load_state(step.value or "load", **kwargs)
            return
        if action == "WAIT" and not step.locator:
            page.wait_for_timeout(float(step.value or 1000))
            return
        if action == "ASSERT_URL":
            expect(page).to_have_url(re.compile(step.value or ".*"), **kwargs)
            return
        if not step.locator:
            raise StepFailure(f"Step {step.action} requires a locator", locator=None)
        target = locate(page, step.locator)
        if action == "CLICK":
            target.click(**kwargs)
        elif action in {"TYPE", "FILL"}:
            target.fill(step.value or "", **kwargs)
        elif action == "CLEAR":
            target.clear(**kwargs)
        elif action == "SELECT":
            target.select_option(step.value, **kwargs)
        elif action == "CHECK":
            target.check(**kwargs)
        elif action == "UNCHECK":
            target.uncheck(**kwargs)
        elif action == "WAIT":
            target.wait_for(**kwargs)
        elif action == "ASSERT_TEXT":
            expect(target).to_contain_text(step.value or "", **kwargs)
        elif action == "ASSERT_VISIBLE":
            expect(target).to_be_visible(**kwargs)
        else:
            raise StepFailure(f"Unsupported step action: {step.action}", locator=step.locator)
