from __future__ import annotations

from contextlib import contextmanager
import json
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

from healforge.ai.base import AIGateway
from healforge.ai.mock import MockAIGateway
from healforge.config import Settings
from healforge.core.store import SqliteExecutionStore
from healforge.errors import GitOperationError
from healforge.factory import build_registry
from healforge.integrations.approvals import SqliteApprovalService
from healforge.integrations.browser import BrowserDriver
from healforge.integrations.git import GitConfig, GitOperations, PullRequestInfo
from healforge.integrations.runner import TestRunner, TestRunOutcome
from healforge.integrations.tests_repo import InMemoryTestRepository, TestRecord
from healforge.tools.registry import ToolRegistry


class ScriptedRunner(TestRunner):
    """Decides each run with ``decide(test, run_number) -> (passed, error)``."""

    def __init__(self, decide: Callable[[TestRecord, int], tuple[bool, str | None]]) -> None:
        self.decide = decide
        self.runs: list[str] = []

    def run(self, test: TestRecord) -> TestRunOutcome:
        self.runs.append(test.content)
        passed, error = self.decide(test, len(self.runs))
        return TestRunOutcome(
            execution_id=f"run-{len(self.runs)}",
            passed=passed,
            error_message=None if passed else error,
        )


class FakeGit(GitOperations):
    def __init__(self, fail_on: str | None = None) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.fail_on = fail_on

    def _check(self, operation: str) -> None:
        if self.fail_on == operation:
            raise GitOperationError(f"{operation} rejected by remote")

    def create_branch(self, config: GitConfig, branch_name: str) -> str:
        self._check("branch")
        self.calls.append(("branch", branch_name))
        return branch_name

    def commit(self, config: GitConfig, branch_name: str, file_paths: list[str], message: str) -> str:
        self._check("commit")
        self.calls.append(("commit", (branch_name, list(file_paths), message)))
        return "abc1234"

    def create_pull_request(
        self, config: GitConfig, branch_name: str, title: str, body: str
    ) -> PullRequestInfo:
        self._check("pr")
        self.calls.append(("pr", (branch_name, title)))
        return PullRequestInfo(url="https://github.com/acme/ui-tests/pull/7", number=7)


class FakePage:
    def __init__(self, html: str) -> None:
        self.html = html
        self.visited: list[str] = []

    def goto(self, url: str) -> None:
        self.visited.append(url)

    def wait_for_load_state(self, state: str) -> None:
        return None

    def content(self) -> str:
        return self.html

    def eval_on_selector(self, selector: str, script: str) -> str:
        return self.html

    def title(self) -> str:
        return "Checkout"


class FakeDriver(BrowserDriver):
    def __init__(self, html: str = "<html><body><button id='new-id'>Pay</button></body></html>") -> None:
        self.html = html
        self.pages: list[FakePage] = []

    @contextmanager
    def open_page(self) -> Iterator[FakePage]:
        page = FakePage(self.html)
        self.pages.append(page)
        yield page


class Env:
    """Everything an agent needs, wired against a temporary workspace."""

    def __init__(self, tmp_path: Path, tests: list[TestRecord]) -> None:
        self.tmp_path = tmp_path
        self.settings = Settings(
            workspace_dir=str(tmp_path / "ws"),
            git_repo_path=str(tmp_path / "repo"),
            default_base_url="https://shop.example.com",
        )
        self.settings.workspace_path.mkdir(parents=True, exist_ok=True)
        self.tests = InMemoryTestRepository(tests)
        self.store = SqliteExecutionStore(self.settings.db_path)
        self.approvals = SqliteApprovalService(self.settings.db_path)
        self.git = FakeGit()
        self.driver = FakeDriver()
        self.runner = ScriptedRunner(lambda test, number: (True, None))
        self.gateway: AIGateway = MockAIGateway()
        self.delegated: list[Any] = []

    def write_registry(self, pages: list[dict[str, Any]]) -> None:
        self.settings.registry_path.write_text(json.dumps({"pages": pages}), encoding="utf-8")

    def registry(self) -> ToolRegistry:
        def starter(goal, triggered_by):
            self.delegated.append((goal, triggered_by))
            return "delegated-1"

        return build_registry(
            self.settings,
            tests=self.tests,
            gateway=self.gateway,
            runner=self.runner,
            driver=self.driver,
            git=self.git,
            approvals=self.approvals,
            starter=starter,
        )


@pytest.fixture
def make_env(tmp_path: Path) -> Callable[..., Env]:
    def factory(*tests: TestRecord) -> Env:
        return Env(tmp_path, list(tests))

    return factory
