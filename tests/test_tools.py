from __future__ import annotations

from contextlib import contextmanager
import json

from playwright.sync_api import Error as PlaywrightError

from conftest import FakeDriver, FakeGit, ScriptedRunner
from healforge.ai.mock import MockAIGateway
from healforge.integrations.approvals import (
    ApprovalRequest,
    ApprovalRequestType,
    SqliteApprovalService,
)
from healforge.integrations.browser import BrowserDriver
from healforge.integrations.git import GitConfig
from healforge.integrations.tests_repo import InMemoryTestRepository, TestRecord
from healforge.tools.builtins.capture_html import CapturePageHtmlTool
from healforge.tools.builtins.discover_locator import DiscoverLocatorTool, parse_suggestions
from healforge.tools.builtins.extract_locator import ExtractBrokenLocatorTool
from healforge.tools.builtins.generate_fix import dedupe_steps, normalize_fixed_code, strategy_guidance
from healforge.tools.builtins.analyze_failure import FlakyRootCause
from healforge.tools.builtins.git_tools import (
    NO_GIT_CONFIG,
    CommitChangesTool,
    CreateBranchTool,
    CreatePullRequestTool,
)
from healforge.tools.builtins.record_pattern import error_signature
from healforge.tools.builtins.stability import StabilityAnalysisResult, compute_flakiness
from healforge.tools.builtins.verify_fix import VerifyFixTool
from healforge.tools.builtins.write_file import WriteTestFileTool

CONTENT = json.dumps(
    {
        "steps": [
            {"action": "navigate", "value": "https://shop.example.com/"},
            {"action": "assertUrl", "value": ".*cart.*"},
            {"action": "click", "locator": "css=#checkout"},
        ]
    }
)


def test_extract_uses_known_locator_and_infers_context():
    tool = ExtractBrokenLocatorTool()
    result = tool.execute(
        {"errorMessage": "boom", "testContent": CONTENT, "knownBrokenLocator": "#checkout"}
    )
    assert result["brokenLocator"] == "#checkout"
    assert result["pageName"] == "CartPage"
    assert result["elementPurpose"] == "CLICK element (CSS)"
    assert result["actionType"] == "CLICK"


def test_extract_unknown_locator_and_unparseable_content():
    tool = ExtractBrokenLocatorTool()
    result = tool.execute({"errorMessage": "net::ERR_FAILED", "testContent": CONTENT})
    assert result["success"] is True
    assert result["brokenLocator"] == "UNKNOWN"
    assert result["pageName"] == "unknown"

    degraded = tool.execute(
        {"errorMessage": "Element not found: #x", "testContent": '{"steps": [1, '}
    )
    assert degraded["success"] is True
    assert degraded["brokenLocator"] == "#x"
    assert degraded["pageName"] == "unknown"
    assert degraded["error"]


def test_extract_reads_numeric_and_boolean_step_values():
    content = json.dumps(
        {
            "steps": [
                {"action": "assertUrl", "value": ".*cart.*"},
                {"action": "wait", "value": 500},
                {"action": "check", "locator": "#terms", "value": True},
                {"action": "click", "locator": "#checkout"},
            ]
        }
    )
    result = ExtractBrokenLocatorTool().execute(
        {"errorMessage": "Element not found: #checkout", "testContent": content}
    )
    assert result["brokenLocator"] == "#checkout"
    assert result["pageName"] == "CartPage"
    assert result["actionType"] == "CLICK"
    assert "error" not in result


def test_discover_parses_suggestions_and_survives_prose():
    assert parse_suggestions('{"suggestions": ["#a", {"locator": " .b "}, {"nope": 1}]}') == [
        {"locator": "#a"},
        {"locator": ".b"},
    ]
    assert parse_suggestions('{"recommended_fixes": [{"locator": "#c"}]}') == [{"locator": "#c"}]

    gateway = MockAIGateway(["I am not sure, sorry."])
    result = DiscoverLocatorTool(gateway).execute(
        {"brokenLocator": "#old", "pageHtml": "<button id='new'>Go</button>"}
    )
    assert result["success"] is True
    assert result["suggestions"] == []
    assert gateway.requests[0].operation == "LOCATOR_DISCOVERY"
    assert "<button id='new'>Go</button>" in gateway.requests[0].content


def test_capture_truncates_and_reports_failures():
    driver = FakeDriver(html="<html>" + "x" * 100 + "</html>")
    tool = CapturePageHtmlTool(driver, max_chars=50)
    result = tool.execute({"pageUrl": "https://shop.example.com/cart.html"})
    assert result["success"] is True
    assert result["truncated"] is True
    assert len(result["relevantHtml"]) == 50
    assert result["fullHtmlLength"] == 113
    assert result["pageTitle"] == "Checkout"
    assert driver.pages[0].visited == ["https://shop.example.com/cart.html"]

    class BrokenDriver(BrowserDriver):
        @contextmanager
        def open_page(self):
            raise PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
            yield

    failed = CapturePageHtmlTool(BrokenDriver()).execute({"pageUrl": "https://nowhere.invalid"})
    assert failed["success"] is False
    assert "ERR_NAME_NOT_RESOLVED" in failed["error"]


def test_write_file_rejects_paths_and_writes_drafts(tmp_path):
    tool = WriteTestFileTool(tmp_path / "drafts")
    written = tool.execute({"testCode": "def test_x():\n    pass\n", "fileName": "test_x.py"})
    assert written["success"] is True
    assert (tmp_path / "drafts" / "test_x.py").read_text() == "def test_x():\n    pass\n"
    assert written["status"] == "DRAFT"
    assert tool.execute({"testCode": "x", "fileName": "../escape.py"})["success"] is False
    assert tool.execute({"testCode": "  ", "fileName": "test_y.py"})["success"] is False


def test_git_tools_without_configuration(tmp_path):
    git = FakeGit()

    def no_config():
        return None

    assert CreateBranchTool(git, no_config).execute({"storyKey": "LOCATOR-1"})["error"] == NO_GIT_CONFIG
    commit = CommitChangesTool(git, no_config).execute(
        {"storyKey": "S", "branchName": "b", "commitMessage": "m", "filePaths": ["a.py"]}
    )
    assert commit["error"] == NO_GIT_CONFIG
    assert git.calls == []


def test_git_tools_link_pull_request_to_approval(tmp_path):
    git = FakeGit()
    config = GitConfig(repo_path=str(tmp_path))
    approvals = SqliteApprovalService(tmp_path / "approvals.db")
    request = approvals.create(
        ApprovalRequest(request_type=ApprovalRequestType.FLAKY_FIX, test_name="Checkout")
    )

    branch = CreateBranchTool(git, lambda: config).execute({"storyKey": "FLAKY-1"})
    assert branch["branchName"] == "feature/FLAKY-1"
    empty_commit = CommitChangesTool(git, lambda: config).execute(
        {"storyKey": "FLAKY-1", "branchName": "feature/FLAKY-1", "commitMessage": "m", "filePaths": []}
    )
    assert empty_commit["success"] is False
    pr = CreatePullRequestTool(git, lambda: config, approvals).execute(
        {
            "storyKey": "FLAKY-1",
            "branchName": "feature/FLAKY-1",
            "title": "Fix flaky test: Checkout",
            "approvalRequestId": request.id,
            "commitSha": "abc1234",
        }
    )
    assert pr["pullRequestNumber"] == 7
    linked = approvals.get(request.id)
    assert linked.git_pr_url == "https://github.com/acme/ui-tests/pull/7"
    assert linked.git_branch == "feature/FLAKY-1"
    assert linked.git_commit_sha == "abc1234"

    git.fail_on = "pr"
    failed = CreatePullRequestTool(git, lambda: config).execute(
        {"storyKey": "S", "branchName": "b", "title": "t"}
    )
    assert failed["success"] is False
    assert failed["operationType"] == "CREATE_PR"


def test_verify_requires_every_run_to_pass():
    tests = InMemoryTestRepository([TestRecord(id="t1", name="Login", content=CONTENT)])
    runner = ScriptedRunner(lambda test, number: (number != 2, "Element not found: #checkout"))
    result = VerifyFixTool(tests, runner).execute({"testId": "t1", "runCount": 3})
    assert result["isStable"] is False
    assert result["pattern"] == "PFP"
    assert result["errorMessages"] == ["Run 2: Element not found: #checkout"]
    assert VerifyFixTool(tests, runner).execute({"testId": "missing"})["success"] is False


def test_flakiness_score_and_signature():
    assert compute_flakiness(5, 0) == (False, 0.0)
    assert compute_flakiness(0, 5) == (False, 0.0)
    assert compute_flakiness(3, 2) == (True, 0.96)
    assert compute_flakiness(1, 1) == (True, 1.0)

    def result(error: str) -> StabilityAnalysisResult:
        return StabilityAnalysisResult(
            test_id="t1",
            test_name="Login",
            total_runs=5,
            passed_runs=3,
            failed_runs=2,
            pattern="PFPFP",
            is_flaky=True,
            flakiness_score=0.96,
            error_messages=[error],
            root_cause="TIMING_ISSUE",
        )

    first = error_signature(result('Run 2: Timeout 30000ms waiting for "#a"'))
    second = error_signature(result('Run 4: Timeout 15000ms waiting for "#b"'))
    assert first == second
    assert first.startswith("TIMING_ISSUE_PFPFP_")
    assert len(first.rsplit("_", 1)[1]) == 12
    assert json.loads(result("x").to_json())["flakinessScore"] == 0.96


def test_fix_strategy_changes_per_attempt():
    first = strategy_guidance(FlakyRootCause.TIMING_ISSUE, 1)
    second = strategy_guidance(FlakyRootCause.TIMING_ISSUE, 2)
    assert first != second
    assert strategy_guidance(FlakyRootCause.TIMING_ISSUE, 7) == strategy_guidance(
        FlakyRootCause.TIMING_ISSUE, 3
    )
    assert "UNKNOWN ROOT CAUSE" in strategy_guidance(FlakyRootCause.UNKNOWN, 1)
    assert FlakyRootCause.parse("timing_issue") == FlakyRootCause.TIMING_ISSUE
    assert FlakyRootCause.parse(None) == FlakyRootCause.UNKNOWN


def test_dedupe_and_normalize_fixed_code():
    steps = [
        {"action": "wait", "locator": ".badge"},
        {"action": "assertVisible", "locator": ".badge"},
        {"action": "click", "locator": "#go"},
        {"action": "CLICK", "locator": "#go"},
        {"action": "click", "locator": "#stop"},
    ]
    assert dedupe_steps(steps) == [
        {"action": "assertVisible", "locator": ".badge"},
        {"action": "click", "locator": "#go"},
        {"action": "click", "locator": "#stop"},
    ]
    normalized = normalize_fixed_code({"scenarios": [{"steps": steps}]})
    assert len(json.loads(normalized)["scenarios"][0]["steps"]) == 3
    untouched = '{"steps": [{"action": "click", "locator": "#go"}]}'
    assert normalize_fixed_code(untouched) == untouched
    assert normalize_fixed_code("not json") == "not json"
    assert normalize_fixed_code(None) is None
