"""Render test content as a Python Playwright pytest module."""

from __future__ import annotations

import json
import re

from healforge.content.locators import to_playwright_code
from healforge.content.test_content import TestStep, base_url, get_steps


def module_name_for(test_name: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]+", "_", test_name).strip("_").lower()
    return f"test_{slug or 'healed'}"


def _render_step(step: TestStep, default_timeout: int | None) -> list[str]:
    action = step.action_key
    timeout = step.timeout or default_timeout
    timeout_kw = f", timeout={timeout}" if timeout else ""
    target = to_playwright_code(step.locator) if step.locator else None
    value = json.dumps(step.value or "")
    if action == "NAVIGATE":
        return [f"page.goto({value})"]
    if action == "WAIT_FOR_LOAD_STATE":
        state = json.dumps(step.value or "load")
        return [f"page.wait_for_load_state({state}{timeout_kw})"]
    if action == "WAIT":
        if target:
            return [f"{target}.wait_for({'timeout=' + str(timeout) if timeout else ''})"]
        return [f"page.wait_for_timeout({int(float(step.value or 1000))})"]
    if action == "ASSERT_URL":
        return [f"expect(page).to_have_url(re.compile({value}){timeout_kw})"]
    if target is None:
        return [f"# unsupported step without locator: {step.action}"]
    if action == "CLICK":
        return [f"{target}.click({timeout_kw.lstrip(', ')})"]
    if action in {"TYPE", "FILL"}:
        return [f"{target}.fill({value}{timeout_kw})"]
    if action == "CLEAR":
        return [f"{target}.clear({timeout_kw.lstrip(', ')})"]
    if action == "SELECT":
        return [f"{target}.select_option({value}{timeout_kw})"]
    if action == "CHECK":
        return [f"{target}.check({timeout_kw.lstrip(', ')})"]
    if action == "UNCHECK":
        return [f"{target}.uncheck({timeout_kw.lstrip(', ')})"]
    if action == "ASSERT_TEXT":
        return [f"expect({target}).to_contain_text({value}{timeout_kw})"]
    if action == "ASSERT_VISIBLE":
        return [f"expect({target}).to_be_visible({timeout_kw.lstrip(', ')})"]
    return [f"# unsupported action: {step.action}"]


def render_pytest_module(test_name: str, content: str, default_timeout: int | None = None) -> str:
    """Return the source of a pytest module reproducing the test's steps."""
    steps = get_steps(content)
    function_name = module_name_for(test_name)
    lines = [
        f'"""{test_name} (generated by healforge)."""',
        "",
        "import re",
        "",
        "from playwright.sync_api import Page, expect",
        "",
        "",
        f"def {function_name}(page: Page) -> None:",
    ]
    url = base_url(content)
    if url and not any(step.action_key == "NAVIGATE" for step in steps):
        lines.append(f"    page.goto({json.dumps(url)})")
    body = [line for step in steps for line in _render_step(step, default_timeout)]
    if not body and not url:
        body = ["pass"]
    lines.extend(f"    {line}" for line in body)
    return "\n".join(lines) + "\n"
