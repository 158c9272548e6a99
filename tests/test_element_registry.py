from __future__ import annotations

import json

from healforge.core.actions import AgentActionType
from healforge.integrations.element_registry import ElementRegistry, healed_element_name
from healforge.tools.builtins.query_registry import QueryElementRegistryTool
from healforge.tools.builtins.update_registry import UpdateElementRegistryTool

PAGES = {
    "pages": [
        {
            "name": "LoginPage",
            "url": "https://shop.example.com/",
            "elements": [
                {"name": "login_button_css", "primarySelector": "#login-button"},
                {"name": "login_button_testid", "primarySelector": "[data-test='login-button']"},
                {"name": "login_button_role", "primarySelector": "role=button[name='Login']"},
                {"name": "username_input", "primarySelector": "#user-name"},
            ],
        },
        {
            "name": "InventoryPage",
            "elements": [
                {
                    "name": "add_backpack",
                    "primarySelector": "xpath=//button[text()='Add']",
                    "description": "Add backpack to cart button",
                }
            ],
        },
    ]
}


def _registry(tmp_path) -> ElementRegistry:
    path = tmp_path / "element-registry.json"
    path.write_text(json.dumps(PAGES), encoding="utf-8")
    return ElementRegistry(path)


def test_query_orders_by_strategy_and_excludes_broken(tmp_path):
    tool = QueryElementRegistryTool(_registry(tmp_path))
    result = tool.execute(
        {"pageName": "LoginPage", "elementPurpose": "login button", "brokenLocator": "css=#login-button"}
    )
    assert result["success"] is True
    assert [item["locator"] for item in result["alternatives"]] == [
        "role=button[name='Login']",
        "[data-test='login-button']",
    ]
    assert result["primaryRecommendation"]["strategy"] == "role"
    assert result["totalFound"] == 2


def test_query_falls_back_to_keyword_search_across_pages(tmp_path):
    tool = QueryElementRegistryTool(_registry(tmp_path))
    result = tool.execute({"pageName": "unknown", "elementPurpose": "backpack in cart"})
    assert [item["elementName"] for item in result["alternatives"]] == ["add_backpack"]
    assert result["alternatives"][0]["pageName"] == "InventoryPage"


def test_query_with_missing_registry_file_finds_nothing(tmp_path):
    tool = QueryElementRegistryTool(ElementRegistry(tmp_path / "missing.json"))
    result = tool.execute({"pageName": "LoginPage", "elementPurpose": "login button"})
    assert result["success"] is True
    assert result["alternatives"] == []
    assert result["primaryRecommendation"] is None


def test_bare_array_registry_is_read_as_pages(tmp_path):
    path = tmp_path / "element-registry.json"
    path.write_text(json.dumps(PAGES["pages"]), encoding="utf-8")
    tool = QueryElementRegistryTool(ElementRegistry(path))
    result = tool.execute(
        {"pageName": "LoginPage", "elementPurpose": "login button", "brokenLocator": "#login-button"}
    )
    assert result["success"] is True
    assert result["totalFound"] == 2


def test_legacy_name_keyed_registry_is_read_and_saved_as_list(tmp_path):
    path = tmp_path / "element-registry.json"
    legacy = {
        "pages": {
            "LoginPage": {"url": "https://shop.example.com/", "elements": PAGES["pages"][0]["elements"]},
            "InventoryPage": PAGES["pages"][1]["elements"],
        }
    }
    path.write_text(json.dumps(legacy), encoding="utf-8")
    registry = ElementRegistry(path)

    assert [page.name for page in registry.load().pages] == ["LoginPage", "InventoryPage"]
    assert registry.find_page("InventoryPage").elements[0].name == "add_backpack"

    UpdateElementRegistryTool(registry).execute(
        {"pageName": "LoginPage", "workingLocator": "button.login", "brokenLocator": "#login-button"}
    )
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert isinstance(saved["pages"], list)
    assert len(saved["pages"][0]["elements"]) == 5


def test_unreadable_registry_fails_the_query(tmp_path):
    path = tmp_path / "element-registry.json"
    tool = QueryElementRegistryTool(ElementRegistry(path))
    for text in ("{not json", json.dumps({"pages": "LoginPage"})):
        path.write_text(text, encoding="utf-8")
        result = tool.execute({"pageName": "LoginPage", "elementPurpose": "login button"})
        assert result["success"] is False
        assert result["error"].startswith("Element registry unreadable")


def test_update_adds_once_and_skips_duplicate_mapping(tmp_path):
    registry = _registry(tmp_path)
    tool = UpdateElementRegistryTool(registry)
    params = {
        "pageName": "CheckoutPage",
        "workingLocator": "[data-test='continue']",
        "brokenLocator": "#continue-old",
        "discoveredBy": "SelfHealingAgent (ai)",
    }

    first = tool.execute(params)
    second = tool.execute({**params, "workingLocator": "css=[data-test='continue']"})

    assert first["updated"] is True
    assert second["updated"] is False
    assert first["elementName"] == second["elementName"] == "data_test_continue_healed"
    page = registry.find_page("checkoutpage")
    assert page is not None
    (element,) = page.elements
    assert element.replaced_locator == "#continue-old"
    assert element.fallbacks == ["#continue-old"]
    assert element.playwright_code == 'page.get_by_test_id("continue")'
    saved = json.loads(registry.path.read_text(encoding="utf-8"))
    assert "lastUpdated" in saved
    assert saved["pages"][-1]["elements"][0]["primarySelector"] == "[data-test='continue']"


def test_update_rejects_missing_locators(tmp_path):
    tool = UpdateElementRegistryTool(_registry(tmp_path))
    result = tool.execute({"pageName": "LoginPage"})
    assert result["success"] is False
    assert result["error"].startswith("Invalid parameters")
    assert tool.action_type == AgentActionType.UPDATE_ELEMENT_REGISTRY


def test_healed_element_name():
    assert healed_element_name("css=#pay-now") == "pay_now_healed"
    assert healed_element_name("role=button[name='Go']") == "button_name_go_healed"
