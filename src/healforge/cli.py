"""Command-line interface."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any
from uuid import uuid4

from healforge.config import Settings
from healforge.core.models import AgentGoal, AgentResult, AgentStatus, AgentType
from healforge.errors import ExecutionNotFoundError
from healforge.factory import build_orchestrator
from healforge.integrations.tests_repo import SqliteTestRepository, TestRecord
from healforge.orchestrator import AgentOrchestrator
from healforge.util.logging import configure_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="healforge: self-healing UI test agents")
    parser.add_argument("--base-url", dest="base_url")
    parser.add_argument("--api-key", dest="api_key")
    parser.add_argument("--model", dest="model")
    parser.add_argument("--workspace", dest="workspace")
    parser.add_argument("--registry", dest="registry", help="Element registry JSON file")
    parser.add_argument("--git-repo", dest="git_repo")
    parser.add_argument("--max-iterations", type=int, dest="max_iterations")
    parser.add_argument("--max-ai-cost", type=float, dest="max_ai_cost")
    parser.add_argument("--headed", action="store_true", dest="headed")
    parser.add_argument("--mock-ai", action="store_true", dest="mock_ai")
    parser.add_argument("--log-level", dest="log_level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add-test", help="Store a test so agents can work on it")
    add.add_argument("name")
    add.add_argument("--file", dest="file", required=True, help="Test content JSON")
    add.add_argument("--id", dest="test_id")
    add.add_argument("--error", dest="error", help="Last execution error")
    add.add_argument("--jira-key", dest="jira_key")

    heal = sub.add_parser("heal", help="Repair broken locators")
    heal.add_argument("test_ids", nargs="+")
    heal.add_argument("--error-message", dest="error_message")
    heal.add_argument("--locator", dest="known_locator", help="Locator known to be broken")
    heal.add_argument("--page-url", dest="page_url")
    heal.add_argument("--verification-runs", type=int, dest="verification_runs")

    stabilize = sub.add_parser("stabilize", help="Stabilize flaky tests")
    stabilize.add_argument("test_ids", nargs="+")
    stabilize.add_argument("--runs", type=int, dest="runs", help="Stability check runs")
    stabilize.add_argument("--max-fix-attempts", type=int, dest="max_fix_attempts")

    status = sub.add_parser("status", help="Show one execution")
    status.add_argument("execution_id")

    listing = sub.add_parser("list", help="List executions")
    listing.add_argument(
        "--status", dest="status", choices=[item.value for item in AgentStatus]
    )

    sub.add_parser("tools", help="Show the tool catalog")
    sub.add_parser("cleanup", help="Mark executions orphaned by a restart as STOPPED")
    return parser.parse_args(argv)


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    data: dict[str, Any] = settings.model_dump()
    if args.base_url:
        data["openai_base_url"] = args.base_url
    if args.api_key:
        data["openai_api_key"] = args.api_key
    if args.model:
        data["openai_model"] = args.model
    if args.workspace:
        data["workspace_dir"] = args.workspace
    if args.registry:
        data["element_registry_path"] = args.registry
    if args.git_repo:
        data["git_repo_path"] = args.git_repo
    if args.max_iterations:
        data["agent_max_iterations"] = args.max_iterations
    if args.max_ai_cost:
        data["agent_max_ai_cost"] = args.max_ai_cost
    if args.headed:
        data["browser_headless"] = False
    if getattr(args, "verification_runs", None):
        data["heal_verification_runs"] = args.verification_runs
    if getattr(args, "runs", None):
        data["flaky_stability_check_runs"] = args.runs
    if getattr(args, "max_fix_attempts", None):
        data["flaky_max_fix_attempts"] = args.max_fix_attempts
    return Settings(**data)


def _print_result(result: AgentResult) -> None:
    print("Execution:", result.execution_id)
    print("Status:", result.status.value)
    print("Iterations:", result.iterations_completed)
    print(f"AI cost: {result.total_ai_cost:.4f}")
    if result.error_message:
        print("Error:", result.error_message)
    print("Outputs:\n", json.dumps(result.outputs, indent=2, default=str))


def _run_and_wait(orchestrator: AgentOrchestrator, agent_type: AgentType, goal: AgentGoal) -> int:
    execution = orchestrator.start(agent_type, goal, triggered_by="cli")
    result = orchestrator.wait(execution.id)
    # delegated executions keep running after the parent finishes
    for execution_id in orchestrator.list_running():
        orchestrator.wait(execution_id)
    if result is None:
        print("Execution", execution.id, "did not finish")
        return 1
    _print_result(result)
    return 0 if result.succeeded else 1


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    settings = apply_overrides(Settings(), args)

    if args.command == "add-test":
        tests = SqliteTestRepository(settings.db_path)
        test = TestRecord(
            id=args.test_id or str(uuid4()),
            name=args.name,
            content=Path(args.file).read_text(encoding="utf-8"),
            last_execution_error=args.error,
            jira_key=args.jira_key,
        )
        tests.save(test)
        print("Stored test", test.id)
        return 0

    orchestrator = build_orchestrator(settings, use_mock=args.mock_ai)
    try:
        if args.command == "heal":
            parameters: dict[str, Any] = {"testIds": args.test_ids}
            if len(args.test_ids) == 1:
                parameters = {"testId": args.test_ids[0]}
            if args.error_message:
                parameters["errorMessage"] = args.error_message
            if args.known_locator:
                parameters["knownBrokenLocator"] = args.known_locator
            if args.page_url:
                parameters["pageUrl"] = args.page_url
            goal = AgentGoal(
                goal_type="FIX_BROKEN_LOCATOR",
                parameters=parameters,
                success_criteria="Broken locator replaced and verified",
            )
            return _run_and_wait(orchestrator, AgentType.SELF_HEALING_TEST_FIXER, goal)
        if args.command == "stabilize":
            goal = AgentGoal(
                goal_type="FIX_FLAKY_TEST",
                parameters={"testIds": args.test_ids},
                success_criteria="Test passes every verification run",
            )
            return _run_and_wait(orchestrator, AgentType.FLAKY_TEST_FIXER, goal)
        if args.command == "status":
            try:
                execution = orchestrator.get_status(args.execution_id)
            except ExecutionNotFoundError as exc:
                print(exc)
                return 1
            print(execution.model_dump_json(indent=2))
            return 0
        if args.command == "list":
            statuses = [AgentStatus(args.status)] if args.status else None
            for execution in orchestrator.list_executions(statuses):
                print(
                    f"{execution.id}  {execution.agent_type.value:<24} {execution.status.value:<21} "
                    f"iter={execution.current_iteration} started={execution.started_at.isoformat()}"
                )
            return 0
        if args.command == "tools":
            agent = orchestrator.get_agent(AgentType.SELF_HEALING_TEST_FIXER)
            print(agent.tools.catalog())
            return 0
        if args.command == "cleanup":
            print("Stopped", orchestrator.cleanup_orphaned_executions(), "orphaned execution(s)")
            return 0
    finally:
        orchestrator.shutdown()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
