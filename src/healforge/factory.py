"""Shared construction helpers for gateways, tools, agents and the orchestrator."""

from __future__ import annotations

import json

from healforge.agents.flaky import FlakyTestAgent, FlakyTestConfig
from healforge.agents.self_healing import SelfHealingAgent
from healforge.ai.base import AIGateway
from healforge.ai.mock import MockAIGateway
from healforge.ai.openai_compat import OpenAICompatGateway
from healforge.config import Settings
from healforge.core.models import AgentConfig
from healforge.core.store import SqliteExecutionStore
from healforge.integrations.approvals import ApprovalService, SqliteApprovalService
from healforge.integrations.browser import (
    BrowserDriver,
    PlaywrightBrowserDriver,
    PlaywrightStepExecutor,
)
from healforge.integrations.element_registry import ElementRegistry
from healforge.integrations.failure_patterns import SqliteFailurePatternStore
from healforge.integrations.git import GitCliOperations, GitConfig, GitConfigProvider, GitOperations
from healforge.integrations.runner import BrowserTestRunner, TestRunner
from healforge.integrations.tests_repo import SqliteTestRepository, TestRepository
from healforge.orchestrator import AgentOrchestrator
from healforge.runtime.audit import AuditLogger
from healforge.tools.builtins.analyze_failure import AnalyzeFailureTool
from healforge.tools.builtins.approval import CreateApprovalRequestTool
from healforge.tools.builtins.capture_html import CapturePageHtmlTool
from healforge.tools.builtins.delegate import DelegateSelfHealingTool, SelfHealingStarter
from healforge.tools.builtins.discover_locator import DiscoverLocatorTool
from healforge.tools.builtins.extract_locator import ExtractBrokenLocatorTool
from healforge.tools.builtins.generate_fix import GenerateFixTool
from healforge.tools.builtins.git_tools import (
    CommitChangesTool,
    CreateBranchTool,
    CreatePullRequestTool,
)
from healforge.tools.builtins.modify_test import ApplyFixTool
from healforge.tools.builtins.query_registry import QueryElementRegistryTool
from healforge.tools.builtins.record_pattern import RecordFailurePatternTool
from healforge.tools.builtins.stability import AnalyzeTestStabilityTool
from healforge.tools.builtins.update_registry import UpdateElementRegistryTool
from healforge.tools.builtins.verify_fix import VerifyFixTool
from healforge.tools.builtins.write_file import WriteTestFileTool
from healforge.tools.registry import ToolRegistry


def build_gateway(settings: Settings, use_mock: bool = False) -> AIGateway:
    if use_mock or not settings.openai_api_key:
        return MockAIGateway()
    extra_headers = None
    if settings.openai_extra_headers:
        extra_headers = json.loads(settings.openai_extra_headers)
    return OpenAICompatGateway(
        base_url=settings.openai_base_url,
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout_seconds=settings.openai_timeout_seconds,
        extra_headers=extra_headers,
        cost_per_1k_tokens=settings.ai_cost_per_1k_tokens,
    )


def build_git_config_provider(settings: Settings) -> GitConfigProvider:
    def provider() -> GitConfig | None:
        if not settings.git_repo_path:
            return None
        return GitConfig(
            repo_path=settings.git_repo_path,
            remote=settings.git_remote,
            base_branch=settings.git_base_branch,
            github_repository=settings.github_repository,
            github_token=settings.github_token,
            github_api_url=settings.github_api_url,
        )

    return provider


def build_agent_config(settings: Settings) -> AgentConfig:
    return AgentConfig(
        max_iterations=settings.agent_max_iterations,
        max_ai_cost=settings.agent_max_ai_cost,
        approval_timeout_seconds=settings.agent_approval_timeout_seconds,
    )


def build_registry(
    settings: Settings,
    *,
    tests: TestRepository,
    gateway: AIGateway,
    runner: TestRunner,
    driver: BrowserDriver,
    git: GitOperations,
    approvals: ApprovalService,
    starter: SelfHealingStarter,
) -> ToolRegistry:
    element_registry = ElementRegistry(settings.registry_path)
    git_config = build_git_config_provider(settings)
    registry = ToolRegistry()
    registry.register(ExtractBrokenLocatorTool())
    registry.register(QueryElementRegistryTool(element_registry))
    registry.register(CapturePageHtmlTool(driver, max_chars=settings.heal_page_html_max_chars))
    registry.register(DiscoverLocatorTool(gateway))
    registry.register(UpdateElementRegistryTool(element_registry))
    registry.register(ApplyFixTool(tests))
    registry.register(WriteTestFileTool(settings.drafts_path))
    registry.register(VerifyFixTool(tests, runner))
    registry.register(AnalyzeTestStabilityTool(tests, runner))
    registry.register(AnalyzeFailureTool(gateway))
    registry.register(RecordFailurePatternTool(SqliteFailurePatternStore(settings.db_path)))
    registry.register(GenerateFixTool(gateway))
    registry.register(DelegateSelfHealingTool(starter))
    registry.register(CreateBranchTool(git, git_config))
    registry.register(CommitChangesTool(git, git_config))
    registry.register(CreateApprovalRequestTool(approvals))
    registry.register(CreatePullRequestTool(git, git_config, approvals))
    return registry


def build_orchestrator(
    settings: Settings,
    *,
    tests: TestRepository | None = None,
    gateway: AIGateway | None = None,
    runner: TestRunner | None = None,
    driver: BrowserDriver | None = None,
    git: GitOperations | None = None,
    use_mock: bool = False,
) -> AgentOrchestrator:
    """Wire stores, tools and both agents against one workspace."""
    workspace = settings.workspace_path
    workspace.mkdir(parents=True, exist_ok=True)
    store = SqliteExecutionStore(settings.db_path)
    approvals = SqliteApprovalService(settings.db_path)
    tests = tests or SqliteTestRepository(settings.db_path)
    driver = driver or PlaywrightBrowserDriver(
        headless=settings.browser_headless, timeout_ms=settings.browser_timeout_ms
    )
    runner = runner or BrowserTestRunner(driver, PlaywrightStepExecutor(), settings.default_base_url)
    orchestrator = AgentOrchestrator(
        store, default_config=build_agent_config(settings), max_workers=settings.agent_max_workers
    )
    registry = build_registry(
        settings,
        tests=tests,
        gateway=gateway or build_gateway(settings, use_mock=use_mock),
        runner=runner,
        driver=driver,
        git=git or GitCliOperations(),
        approvals=approvals,
        starter=orchestrator.start_self_healing,
    )
    audit = AuditLogger(workspace / "audit")
    metrics_dir = workspace / "metrics"
    orchestrator.register_agent(
        SelfHealingAgent(
            registry,
            store,
            tests,
            approvals=approvals,
            audit=audit,
            metrics_dir=metrics_dir,
            approval_poll_seconds=settings.agent_approval_poll_seconds,
            verification_runs=settings.heal_verification_runs,
            default_base_url=settings.default_base_url,
        )
    )
    orchestrator.register_agent(
        FlakyTestAgent(
            registry,
            store,
            tests,
            approvals=approvals,
            audit=audit,
            metrics_dir=metrics_dir,
            approval_poll_seconds=settings.agent_approval_poll_seconds,
            config=FlakyTestConfig(
                stability_check_runs=settings.flaky_stability_check_runs,
                verification_runs=settings.flaky_verification_runs,
                max_fix_attempts=settings.flaky_max_fix_attempts,
                flakiness_threshold=settings.flaky_threshold,
            ),
        )
    )
    return orchestrator
