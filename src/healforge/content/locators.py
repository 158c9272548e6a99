"""Locator parsing, matching and heuristics about the element behind a locator."""

from __future__ import annotations

import json
import re
from typing import NamedTuple

UNKNOWN_LOCATOR = "UNKNOWN"
UNKNOWN = "unknown"

LOCATOR_PREFIXES = frozenset(
    {"css", "xpath", "testid", "role", "text", "id", "name", "class", "label", "placeholder"}
)

# Most stable first.
STRATEGY_PRIORITY = ("role", "label", "testid", "placeholder", "text", "css", "xpath")

_CODE_INDICATORS = (
    "page.",
    "AriaRole",
    "new Page.",
    "Page.Get",
    ".setName(",
    "locator(",
    "getBy",
    "get_by_",
    ".click(",
    "Options()",
    "exact=True",
)

_GET_BY_STRATEGIES = {
    "test_id": "testid",
    "role": "role",
    "text": "text",
    "label": "label",
    "placeholder": "placeholder",
}

_ERROR_PATTERNS = [
    re.compile(r"waiting for locator\((\"|')(.+?)\1\)", re.DOTALL),
    re.compile(r"waiting for locator\([\"']?([^\"')]+)[\"']?\)", re.DOTALL),
    re.compile(r"Timeout.*?waiting for selector [\"']?([^\"'\s]+)[\"']?", re.DOTALL),
    re.compile(r"Element not found: ([^\s\n]+)", re.DOTALL),
    re.compile(r"Cannot find element with locator: ([^\s\n]+)", re.DOTALL),
    re.compile(r"Locator.*?['\"]([^'\"]+)['\"].*?not found", re.DOTALL),
    re.compile(r"No element matches selector ([^\s\n]+)", re.DOTALL),
]

_GET_BY_ERROR_RE = re.compile(
    r"waiting for get_by_(test_id|role|text|label|placeholder)\((\"|')(.+?)\2", re.DOTALL
)


class ParsedLocator(NamedTuple):
    strategy: str
    value: str


def strip_locator_prefix(locator: str | None) -> str:
    """Drop a recognized ``strategy=`` prefix.

    Only the first 1-11 characters before ``=`` are considered, so attribute
    selectors such as ``[data-test='x']`` are left intact.
    """
    if not locator:
        return ""
    eq = locator.find("=")
    if 0 < eq < 12 and locator[:eq].lower() in LOCATOR_PREFIXES:
        return locator[eq + 1 :]
    return locator


def locators_match(candidate: str | None, target: str | None) -> bool:
    if not candidate or not target:
        return False
    if candidate == target:
        return True
    return strip_locator_prefix(candidate) == strip_locator_prefix(target)


def parse_locator(locator: str) -> ParsedLocator:
    eq = locator.find("=")
    if 0 < eq < 12 and locator[:eq].lower() in LOCATOR_PREFIXES:
        prefix = locator[:eq].lower()
        value = locator[eq + 1 :]
        if prefix in {"id", "name", "class"}:
            return ParsedLocator("css", _css_for(prefix, value))
        return ParsedLocator(prefix, value)
    if locator.startswith(("//", "(//")):
        return ParsedLocator("xpath", locator)
    if "data-testid" in locator or "data-test=" in locator or "data-test-id" in locator:
        return ParsedLocator("testid", locator)
    return ParsedLocator("css", locator)


def _css_for(prefix: str, value: str) -> str:
    if prefix == "id":
        return f"#{value}"
    if prefix == "class":
        return f".{value}"
    return f'[name="{value}"]'


def selector_rejection_reason(locator: str | None) -> str | None:
    """Why ``locator`` cannot be written into test content, or ``None``."""
    if not locator or not locator.strip():
        return "empty locator"
    for indicator in _CODE_INDICATORS:
        if indicator in locator:
            return f"contains code call {indicator!r}"
    return None


def extract_locator_from_error(message: str | None) -> str | None:
    """Apply the error-pattern cascade; ``None`` when nothing matches."""
    if not message:
        return None
    match = _GET_BY_ERROR_RE.search(message)
    if match:
        return f"{_GET_BY_STRATEGIES[match.group(1)]}={match.group(3)}"
    for pattern in _ERROR_PATTERNS:
        match = pattern.search(message)
        if match:
            locator = match.group(match.lastindex or 1)
            if pattern is _ERROR_PATTERNS[0]:
                return locator.strip()
            return re.sub(r"['\"]", "", locator).strip() or None
    return None


def infer_page_from_url(url: str | None) -> str:
    if not url or not url.strip():
        return UNKNOWN
    if re.fullmatch(r"https?://[^/]+(/?|/index\.html?)", url):
        return "LoginPage"
    for keyword, page in (
        ("/inventory", "InventoryPage"),
        ("/cart", "CartPage"),
        ("/checkout", "CheckoutPage"),
        ("/login", "LoginPage"),
        ("/dashboard", "DashboardPage"),
        ("/profile", "ProfilePage"),
        ("/order", "OrderPage"),
    ):
        if keyword in url:
            return page
    path = re.sub(r"^https?://[^/]+", "", url).split("?")[0]
    for part in reversed(path.split("/")):
        part = re.sub(r"\.html?$", "", part)
        if len(part) > 1:
            return part[0].upper() + part[1:] + "Page"
    return UNKNOWN


def infer_page_from_url_pattern(pattern: str | None) -> str:
    """Page name from an assertUrl value, which is usually a regex like ``.*cart.*``."""
    if not pattern or not pattern.strip():
        return UNKNOWN
    for keyword, page in (
        ("inventory", "InventoryPage"),
        ("cart", "CartPage"),
        ("checkout", "CheckoutPage"),
        ("login", "LoginPage"),
        ("dashboard", "DashboardPage"),
        ("profile", "ProfilePage"),
        ("order", "OrderPage"),
        ("complete", "OrderConfirmationPage"),
    ):
        if keyword in pattern:
            return page
    return UNKNOWN


_PURPOSE_RULES: list[tuple[tuple[str, ...], str]] = [
    (("login-button", "login_button", "submit", "sign-in"), "login/submit button"),
    (("username", "user-name", "user_name", "email"), "username input"),
    (("password",), "password input"),
    (("add-to-cart", "add_to_cart", "btn_inventory", "btn-inventory"), "add to cart button"),
    (("inventory_item_name", "item_name"), "product name"),
    (("inventory_item_price", "item_price"), "product price"),
    (("inventory_item", "inventory-item"), "inventory/product item"),
    (("inventory_list", "inventory-list"), "products list"),
    (("shopping_cart", "shopping-cart", "cart_link"), "cart icon/link"),
    (("cart_badge", "cart-badge"), "cart item count badge"),
    (("cart_list", "cart-list"), "cart items list"),
]

_PURPOSE_RULES_AFTER_REMOVE: list[tuple[tuple[str, ...], str]] = [
    (("checkout_button", "checkout-button"), "checkout button"),
    (("checkout_info", "checkout-info"), "checkout info form"),
    (("checkout_summary", "checkout-summary"), "checkout order summary"),
    (("firstname", "first-name", "first_name"), "first name input"),
    (("lastname", "last-name", "last_name"), "last name input"),
    (("postalcode", "postal-code", "zip"), "postal code input"),
    (("btn_action", "btn-action"), "primary action button"),
    (("btn_primary", "btn-primary"), "primary button"),
    (("complete-header", "complete_header"), "order confirmation header"),
    (("complete", "confirmation"), "order confirmation element"),
    (("search",), "search input"),
]


def infer_element_purpose(action: str | None, locator: str | None) -> str:
    if not locator:
        return action or UNKNOWN
    lower = locator.lower()
    for keywords, purpose in _PURPOSE_RULES:
        if any(keyword in lower for keyword in keywords):
            return purpose
    if "remove" in lower and "cart" in lower:
        return "remove from cart button"
    for keywords, purpose in _PURPOSE_RULES_AFTER_REMOVE:
        if any(keyword in lower for keyword in keywords):
            return purpose
    if lower.startswith("testid="):
        hint = "element (testid)"
    elif lower.startswith("css="):
        hint = "element (CSS)"
    elif lower.startswith("xpath="):
        hint = "element (XPath)"
    elif lower.startswith("#"):
        hint = "element (ID)"
    else:
        hint = "element"
    return f"{action} {hint}" if action else hint


def strategy_priority(strategy: str | None) -> int:
    try:
        return STRATEGY_PRIORITY.index((strategy or "").lower())
    except ValueError:
        return 999


def to_playwright_code(locator: str) -> str:
    """Render a locator as a Python Playwright expression on ``page``."""
    strategy, value = parse_locator(locator)
    quoted = json.dumps(value)
    if strategy == "testid":
        match = re.fullmatch(r"\[data-test(?:id|-id)?=['\"]?([^'\"\]]+)['\"]?\]", value)
        if match:
            return f"page.get_by_test_id({json.dumps(match.group(1))})"
        if not value.startswith("["):
            return f"page.get_by_test_id({quoted})"
        return f"page.locator({quoted})"
    if strategy == "role":
        role_match = re.fullmatch(r"(\w+)\[name=['\"](.+)['\"]\]", value)
        if role_match:
            return (
                f"page.get_by_role({json.dumps(role_match.group(1))}, "
                f"name={json.dumps(role_match.group(2))})"
            )
        return f"page.get_by_role({quoted})"
    if strategy in {"text", "label", "placeholder"}:
        return f"page.get_by_{strategy}({quoted})"
    if strategy == "xpath":
        return f"page.locator({json.dumps('xpath=' + value.removeprefix('xpath='))})"
    return f"page.locator({quoted})"
