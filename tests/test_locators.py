from __future__ import annotations

import pytest

from healforge.content.locators import (
    extract_locator_from_error,
    infer_element_purpose,
    infer_page_from_url,
    infer_page_from_url_pattern,
    locators_match,
    parse_locator,
    selector_rejection_reason,
    strategy_priority,
    strip_locator_prefix,
    to_playwright_code,
)


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ('Timeout 30000ms exceeded.\n  - waiting for locator(".foo")', ".foo"),
        ("waiting for locator(\"[data-test='login-button']\")", "[data-test='login-button']"),
        ('waiting for get_by_test_id("submit")', "testid=submit"),
        ("Element not found: #checkout", "#checkout"),
        ("No element matches selector .cart_list", ".cart_list"),
        ("net::ERR_CONNECTION_RESET", None),
        ("", None),
    ],
)
def test_extract_locator_from_error(message, expected):
    assert extract_locator_from_error(message) == expected


def test_strip_prefix_leaves_attribute_selectors_alone():
    assert strip_locator_prefix("css=#login") == "#login"
    assert strip_locator_prefix("xpath=//div") == "//div"
    assert strip_locator_prefix("[data-test='x']") == "[data-test='x']"
    assert strip_locator_prefix("button[name=go]") == "button[name=go]"
    assert locators_match("css=.item", ".item")
    assert not locators_match(".item", None)


def test_parse_locator_strategies():
    assert parse_locator("id=login") == ("css", "#login")
    assert parse_locator("//form/input") == ("xpath", "//form/input")
    assert parse_locator("[data-testid='cart']").strategy == "testid"
    assert parse_locator("role=button[name='Pay']") == ("role", "button[name='Pay']")
    assert parse_locator(".inventory_item").strategy == "css"


@pytest.mark.parametrize(
    "locator",
    [
        "#new-id",
        ".item",
        "//div[@id='x']",
        "button[type='submit']",
        "button.pay",
        "input#email",
        "form .submit",
        "role=button[name='Submit']",
        "text=Checkout",
    ],
)
def test_selectors_are_accepted(locator):
    assert selector_rejection_reason(locator) is None


@pytest.mark.parametrize(
    ("locator", "reason"),
    [
        ("page.locator('#x')", "contains code call 'page.'"),
        ("getByRole(AriaRole.BUTTON)", "contains code call 'AriaRole'"),
        ("  ", "empty locator"),
        (None, "empty locator"),
    ],
)
def test_code_and_blank_locators_are_rejected(locator, reason):
    assert selector_rejection_reason(locator) == reason


def test_strategy_priority_prefers_semantic_locators():
    ordered = sorted(["css", "xpath", "role", "testid", "bogus"], key=strategy_priority)
    assert ordered == ["role", "testid", "css", "xpath", "bogus"]


def test_page_and_purpose_inference():
    assert infer_page_from_url("https://shop.example.com/") == "LoginPage"
    assert infer_page_from_url("https://shop.example.com/checkout-step-one.html") == "CheckoutPage"
    assert infer_page_from_url("https://shop.example.com/settings/billing.html") == "BillingPage"
    assert infer_page_from_url(None) == "unknown"
    assert infer_page_from_url_pattern(".*cart.*") == "CartPage"
    assert infer_element_purpose("CLICK", "#user-name") == "username input"
    assert infer_element_purpose("CLICK", "#old-id") == "CLICK element (ID)"


def test_to_playwright_code():
    assert to_playwright_code("[data-test='submit']") == 'page.get_by_test_id("submit")'
    assert to_playwright_code("role=button[name='Pay']") == 'page.get_by_role("button", name="Pay")'
    assert to_playwright_code("text=Checkout") == 'page.get_by_text("Checkout")'
    assert to_playwright_code("#pay") == 'page.locator("#pay")'
