"""Agent that repairs tests whose element locators broke."""

from __future__ import annotations

from pathlib import Path
import re
from typing import Any
from urllib.parse import urljoin

from healforge.agents.common import (
    OUTCOMES_KEY,
    branch_slug,
    escalation_failure,
    goal_test_ids,
    landing_failure,
    record_outcome,
    restore_content,
)
from healforge.content.locators import UNKNOWN, UNKNOWN_LOCATOR, locators_match
from healforge.content.renderer import module_name_for, render_pytest_module
from healforge.content.test_content import base_url, build_fixed_content, get_steps
from healforge.core.actions import AgentActionType
from healforge.core.agent import BaseAgent
from healforge.core.context import AgentContext
from healforge.core.models import ActionResult, AgentPlan, AgentType
from healforge.core.store import ExecutionStore
from healforge.integrations.approvals import ApprovalRequestType, ApprovalService
from healforge.integrations.tests_repo import TestRecord, TestRepository
from healforge.runtime.audit import AuditLogger
from healforge.tools.registry import ToolRegistry
from healforge.util.logging import get_logger

logger = get_logger(__name__)

TESTS = "heal.testsToFix"
TEST_INDEX = "heal.currentTestIndex"
TEST_START = "heal.currentTestStartIteration"
FAILURE_ANALYSIS = "heal.currentFailureAnalysis"
ALTERNATIVES = "heal.availableAlternatives"
ALT_INDEX = "heal.currentAltIndex"
AI_SUGGESTIONS = "heal.aiSuggestions"
AI_INDEX = "heal.currentAiSuggestionIdx"
FIX_VERIFIED = "heal.fixVerified"
ORIGINAL_CONTENT = "heal.originalTestContent"
LAST_APPLIED_FIX = "heal.lastAppliedFix"
FIXED_COUNT = "heal.successfullyFixedCount"
RENDERED_FILE = "heal.renderedFilePath"

PER_TEST_STATE = (
    FAILURE_ANALYSIS,
    ALTERNATIVES,
    ALT_INDEX,
    AI_SUGGESTIONS,
    AI_INDEX,
    FIX_VERIFIED,
    ORIGINAL_CONTENT,
    LAST_APPLIED_FIX,
    RENDERED_FILE,
)
PER_TEST_WORK_PRODUCTS = (
    "pageHtml",
    "failedStepIndex",
    "failedStepLocator",
    "failedErrorMessage",
    "branchName",
    "commitSha",
    "approvalRequestId",
)

REGISTRY = "registry"
AI = "ai"
_INDEX_KEYS = {REGISTRY: ALT_INDEX, AI: AI_INDEX}

DEFAULT_ERROR_MESSAGE = "Element not found"


class SelfHealingAgent(BaseAgent):
    """Finds, verifies and lands a replacement for each test's broken locator.

    Work proceeds one test at a time. Which phase a test is in is read from
    the action history recorded since the test started
    (``heal.currentTestStartIteration``) plus a handful of state keys, so
    :meth:`plan` never mutates anything and replays identically after a
    restart. Per test:

    1. extract the broken locator and the page/purpose of its element
    2. query the element registry, then try each alternative in priority order
    3. once the registry is exhausted, capture the page HTML and try AI suggestions
    4. with a fix verified: update the registry, render the test module,
       branch, commit, request approval and open a pull request
    5. with nothing verified: roll back and file a manual-review request
    """

    agent_type = AgentType.SELF_HEALING_TEST_FIXER

    def __init__(
        self,
        tools: ToolRegistry,
        store: ExecutionStore,
        tests: TestRepository,
        approvals: ApprovalService | None = None,
        audit: AuditLogger | None = None,
        metrics_dir: Path | None = None,
        approval_poll_seconds: float = 5.0,
        verification_runs: int = 3,
        default_base_url: str | None = None,
    ) -> None:
        super().__init__(tools, store, approvals, audit, metrics_dir, approval_poll_seconds)
        self.tests = tests
        self.verification_runs = verification_runs
        self.default_base_url = default_base_url

    # -- lifecycle ---------------------------------------------------------

    def initialize_context(self, context: AgentContext) -> None:
        test_ids = goal_test_ids(context.goal.parameters)
        if not test_ids:
            raise ValueError("Goal needs a testId or testIds parameter")
        context.put_state(TESTS, test_ids)
        context.put_state(TEST_INDEX, 0)
        context.put_state(TEST_START, 0)
        context.put_state(FIXED_COUNT, 0)
        context.put_work_product("totalTests", len(test_ids))
        context.put_work_product("successfullyFixed", 0)
        context.put_work_product(OUTCOMES_KEY, [])
        logger.info("Self-healing %d test(s): %s", len(test_ids), ", ".join(test_ids))

    def is_goal_achieved(self, context: AgentContext) -> bool:
        test_ids = context.get_state(TESTS) or []
        return bool(test_ids) and context.get_state(TEST_INDEX, 0) >= len(test_ids)

    def build_outputs(self, context: AgentContext) -> dict[str, Any]:
        outputs = {key: value for key, value in context.work_products.items() if key != "pageHtml"}
        outputs["successfullyFixed"] = context.get_state(FIXED_COUNT, 0)
        return outputs

    # -- planning ----------------------------------------------------------

    def plan(self, context: AgentContext) -> AgentPlan:
        test_ids = context.get_state(TESTS) or []
        index = context.get_state(TEST_INDEX, 0)
        if index >= len(test_ids):
            return AgentPlan(next_action=AgentActionType.COMPLETE, reasoning="All tests processed")
        test = self.tests.get(test_ids[index])
        start = context.get_state(TEST_START, 0)
        escalation = escalation_failure(context, start)
        if escalation:
            return AgentPlan(
                next_action=AgentActionType.ABORT,
                reasoning=f"Could not escalate {test.name} for manual review: {escalation}",
            )

        analysis = context.get_state(FAILURE_ANALYSIS)
        if analysis is None:
            return self._plan_extract(context, test)
        broken = analysis.get("brokenLocator") or UNKNOWN_LOCATOR

        if not context.get_state(FIX_VERIFIED, False):
            if broken == UNKNOWN_LOCATOR:
                return self._plan_manual_review(
                    context, test, "The broken locator could not be identified from the failure"
                )
            alternatives = context.get_state(ALTERNATIVES)
            if alternatives is None:
                return self._plan_query_registry(analysis, broken)
            if self._awaiting_verification(context, start):
                return self._plan_verify(context, test)
            candidate = self._plan_next_candidate(context, test, broken, REGISTRY)
            if candidate is not None:
                return candidate
            if not any(
                entry.action_type == AgentActionType.CAPTURE_PAGE_HTML
                for entry in context.history_since(start)
            ):
                return self._plan_capture(context, test, broken)
            if context.get_state(AI_SUGGESTIONS) is None:
                return self._plan_discover(context, analysis, broken)
            candidate = self._plan_next_candidate(context, test, broken, AI)
            if candidate is not None:
                return candidate
            return self._plan_manual_review(
                context, test, "Registry alternatives and AI suggestions are exhausted"
            )

        failure = landing_failure(context, start)
        if failure:
            return self._plan_manual_review(context, test, f"Verified fix could not be landed: {failure}")
        if not context.has_succeeded_since(AgentActionType.UPDATE_ELEMENT_REGISTRY, start):
            return self._plan_update_registry(context, analysis, broken)
        if not context.has_succeeded_since(AgentActionType.WRITE_FILE, start):
            return self._plan_write_file(test)
        if not context.has_succeeded_since(AgentActionType.CREATE_BRANCH, start):
            return self._plan_create_branch(test)
        if not context.has_succeeded_since(AgentActionType.COMMIT_CHANGES, start):
            return self._plan_commit(context, test)
        if not context.has_succeeded_since(AgentActionType.REQUEST_APPROVAL, start):
            return self._plan_fix_approval(context, test, broken)
        return self._plan_pull_request(context, test, broken)

    @staticmethod
    def _awaiting_verification(context: AgentContext, start: int) -> bool:
        last = context.last_action
        return (
            last is not None
            and last.iteration >= start
            and last.action_type == AgentActionType.MODIFY_FILE
            and last.success
        )

    def _error_message(self, context: AgentContext, test: TestRecord) -> str:
        params = context.goal.parameters
        if params.get("errorMessage") and params.get("testId") == test.id:
            return str(params["errorMessage"])
        return test.last_execution_error or params.get("errorMessage") or DEFAULT_ERROR_MESSAGE

    def _plan_extract(self, context: AgentContext, test: TestRecord) -> AgentPlan:
        params: dict[str, Any] = {
            "testContent": test.content,
            "errorMessage": self._error_message(context, test),
        }
        goal = context.goal.parameters
        if goal.get("testId") == test.id:
            if goal.get("knownBrokenLocator"):
                params["knownBrokenLocator"] = goal["knownBrokenLocator"]
            if goal.get("failedStepIndex") is not None:
                params["failedStepIndex"] = goal["failedStepIndex"]
        return AgentPlan(
            next_action=AgentActionType.EXTRACT_BROKEN_LOCATOR,
            action_params=params,
            reasoning=f"Identify the broken locator in {test.name}",
        )

    def _plan_query_registry(self, analysis: dict[str, Any], broken: str) -> AgentPlan:
        return AgentPlan(
            next_action=AgentActionType.QUERY_ELEMENT_REGISTRY,
            action_params={
                "pageName": analysis.get("pageName") or UNKNOWN,
                "elementPurpose": analysis.get("elementPurpose") or UNKNOWN,
                "brokenLocator": broken,
            },
            reasoning=f"Look up known alternatives for {broken}",
        )

    def _plan_next_candidate(
        self, context: AgentContext, test: TestRecord, broken: str, source: str
    ) -> AgentPlan | None:
        candidates = context.get_state(ALTERNATIVES if source == REGISTRY else AI_SUGGESTIONS) or []
        start_index = context.get_state(_INDEX_KEYS[source], 0)
        base = context.get_state(ORIGINAL_CONTENT) or test.content
        for position in range(start_index, len(candidates)):
            candidate = candidates[position]
            locator = candidate.get("locator") if isinstance(candidate, dict) else None
            if not locator or locators_match(locator, broken):
                continue
            fixed = build_fixed_content(base, broken, locator)
            if fixed is None:
                continue
            confidence = 0.8 if source == REGISTRY else _bounded(candidate.get("confidence"), 0.6)
            return AgentPlan(
                next_action=AgentActionType.MODIFY_FILE,
                action_params={
                    "testId": test.id,
                    "fixedTestCode": fixed,
                    "candidateIndex": position,
                    "source": source,
                    "newLocator": locator,
                },
                reasoning=(
                    f"Try {source} candidate {position + 1}/{len(candidates)}: "
                    f"{broken} -> {locator}"
                ),
                confidence=confidence,
            )
        return None

    def _plan_verify(self, context: AgentContext, test: TestRecord) -> AgentPlan:
        fix = context.get_state(LAST_APPLIED_FIX) or {}
        return AgentPlan(
            next_action=AgentActionType.EXECUTE_TEST,
            action_params={"testId": test.id, "runCount": self.verification_runs},
            reasoning=f"Verify {fix.get('locator')} with {self.verification_runs} runs",
        )

    def _page_url(self, context: AgentContext, test: TestRecord, broken: str) -> str | None:
        explicit = context.goal.parameters.get("pageUrl")
        if explicit:
            return str(explicit)
        content = context.get_state(ORIGINAL_CONTENT) or test.content
        root = base_url(content) or self.default_base_url
        steps = get_steps(content)
        failed_at = next(
            (index for index, step in enumerate(steps) if locators_match(step.locator, broken)),
            None,
        )
        navigates = [
            step.value
            for step in (steps[:failed_at] if failed_at is not None else steps)
            if step.action_key == "NAVIGATE" and step.value
        ]
        if navigates:
            url = navigates[-1] if failed_at is not None else navigates[0]
            if root and not re.match(r"https?://", url):
                return urljoin(root.rstrip("/") + "/", url.lstrip("/"))
            return url
        return root

    def _plan_capture(self, context: AgentContext, test: TestRecord, broken: str) -> AgentPlan:
        url = self._page_url(context, test, broken)
        return AgentPlan(
            next_action=AgentActionType.CAPTURE_PAGE_HTML,
            action_params={"pageUrl": url},
            reasoning=f"Registry exhausted, capture {url} for AI discovery",
        )

    def _plan_discover(
        self, context: AgentContext, analysis: dict[str, Any], broken: str
    ) -> AgentPlan:
        return AgentPlan(
            next_action=AgentActionType.DISCOVER_LOCATOR,
            action_params={
                "pageHtml": context.get_work_product("pageHtml", ""),
                "brokenLocator": broken,
                "elementPurpose": analysis.get("elementPurpose") or UNKNOWN,
                "pageName": analysis.get("pageName") or UNKNOWN,
                "actionType": analysis.get("actionType"),
            },
            reasoning="Ask the AI for replacement locators",
            confidence=0.6,
        )

    def _plan_manual_review(self, context: AgentContext, test: TestRecord, reason: str) -> AgentPlan:
        analysis = context.get_state(FAILURE_ANALYSIS) or {}
        return AgentPlan(
            next_action=AgentActionType.REQUEST_APPROVAL,
            action_params={
                "requestType": ApprovalRequestType.SELF_HEALING_MANUAL.value,
                "testName": f"{test.name} [NEEDS MANUAL REVIEW]",
                "testCode": context.get_state(ORIGINAL_CONTENT) or test.content,
                "jiraKey": f"LOCATOR-MANUAL-{test.id[:8]}",
                "requestedBy": "SelfHealingAgent",
                "agentExecutionId": context.execution_id,
                "metadata": {
                    "testId": test.id,
                    "reason": reason,
                    "brokenLocator": analysis.get("brokenLocator"),
                    "registryCandidates": len(context.get_state(ALTERNATIVES) or []),
                    "aiSuggestions": len(context.get_state(AI_SUGGESTIONS) or []),
                },
            },
            reasoning=f"Escalate {test.name} to manual review: {reason}",
        )

    def _plan_update_registry(
        self, context: AgentContext, analysis: dict[str, Any], broken: str
    ) -> AgentPlan:
        fix = context.get_state(LAST_APPLIED_FIX) or {}
        return AgentPlan(
            next_action=AgentActionType.UPDATE_ELEMENT_REGISTRY,
            action_params={
                "pageName": analysis.get("pageName") or UNKNOWN,
                "workingLocator": fix.get("locator"),
                "brokenLocator": broken,
                "discoveredBy": f"SelfHealingAgent ({fix.get('source', AI)})",
            },
            reasoning="Record the verified locator in the element registry",
        )

    def _plan_write_file(self, test: TestRecord) -> AgentPlan:
        return AgentPlan(
            next_action=AgentActionType.WRITE_FILE,
            action_params={
                "testCode": render_pytest_module(test.name, test.content),
                "fileName": f"{module_name_for(test.name)}.py",
            },
            reasoning="Render the fixed test as a pytest module",
        )

    @staticmethod
    def _story_key(test: TestRecord) -> str:
        return f"LOCATOR-{test.id[:8]}"

    def _plan_create_branch(self, test: TestRecord) -> AgentPlan:
        return AgentPlan(
            next_action=AgentActionType.CREATE_BRANCH,
            action_params={
                "storyKey": self._story_key(test),
                "branchName": f"fix/locator-{branch_slug(test.name)}",
            },
            reasoning="Create a branch for the fix",
        )

    def _plan_commit(self, context: AgentContext, test: TestRecord) -> AgentPlan:
        return AgentPlan(
            next_action=AgentActionType.COMMIT_CHANGES,
            action_params={
                "storyKey": self._story_key(test),
                "branchName": context.get_work_product("branchName"),
                "commitMessage": f"Fix broken locator in test: {test.name}",
                "filePaths": [context.get_state(RENDERED_FILE)],
            },
            reasoning="Commit the rendered test module",
        )

    def _plan_fix_approval(self, context: AgentContext, test: TestRecord, broken: str) -> AgentPlan:
        fix = context.get_state(LAST_APPLIED_FIX) or {}
        return AgentPlan(
            next_action=AgentActionType.REQUEST_APPROVAL,
            action_params={
                "requestType": ApprovalRequestType.SELF_HEALING_FIX.value,
                "testName": test.name,
                "testCode": test.content,
                "jiraKey": test.jira_key or self._story_key(test),
                "requestedBy": "SelfHealingAgent",
                "agentExecutionId": context.execution_id,
                "metadata": {
                    "testId": test.id,
                    "brokenLocator": broken,
                    "workingLocator": fix.get("locator"),
                    "source": fix.get("source"),
                    "branchName": context.get_work_product("branchName"),
                    "commitSha": context.get_work_product("commitSha"),
                    "renderedFile": context.get_state(RENDERED_FILE),
                },
            },
            reasoning="Request human approval for the verified fix",
        )

    def _plan_pull_request(self, context: AgentContext, test: TestRecord, broken: str) -> AgentPlan:
        fix = context.get_state(LAST_APPLIED_FIX) or {}
        body = (
            f"Self-healing replaced the broken locator in **{test.name}**.\n\n"
            f"- Broken locator: `{broken}`\n"
            f"- Working locator: `{fix.get('locator')}` (from {fix.get('source')})\n"
            f"- Verified with {self.verification_runs} consecutive passing runs\n"
        )
        return AgentPlan(
            next_action=AgentActionType.CREATE_PULL_REQUEST,
            action_params={
                "storyKey": self._story_key(test),
                "branchName": context.get_work_product("branchName"),
                "title": f"Fix broken locator: {test.name}",
                "description": body,
                "approvalRequestId": context.get_work_product("approvalRequestId"),
                "commitSha": context.get_work_product("commitSha"),
            },
            reasoning="Open a pull request for the fix",
        )

    # -- state updates -----------------------------------------------------

    def update_state_from_result(
        self, context: AgentContext, plan: AgentPlan, result: ActionResult
    ) -> None:
        action = plan.next_action
        output = result.output
        params = plan.action_params

        if action == AgentActionType.EXTRACT_BROKEN_LOCATOR:
            context.put_state(
                FAILURE_ANALYSIS,
                {
                    "brokenLocator": output.get("brokenLocator") or UNKNOWN_LOCATOR,
                    "locatorStrategy": output.get("locatorStrategy"),
                    "pageName": output.get("pageName") or UNKNOWN,
                    "elementPurpose": output.get("elementPurpose") or UNKNOWN,
                    "actionType": output.get("actionType") or UNKNOWN,
                },
            )
        elif action == AgentActionType.QUERY_ELEMENT_REGISTRY:
            context.put_state(ALTERNATIVES, list(output.get("alternatives") or []))
            context.put_state(ALT_INDEX, 0)
        elif action == AgentActionType.CAPTURE_PAGE_HTML:
            if result.success:
                context.put_work_product("pageHtml", output.get("relevantHtml", ""))
        elif action == AgentActionType.DISCOVER_LOCATOR:
            context.put_state(AI_SUGGESTIONS, list(output.get("suggestions") or []))
            context.put_state(AI_INDEX, 0)
        elif action == AgentActionType.MODIFY_FILE:
            self._after_modify(context, params, result)
        elif action == AgentActionType.EXECUTE_TEST:
            self._after_verify(context, result)
        elif action == AgentActionType.WRITE_FILE and result.success:
            context.put_state(RENDERED_FILE, output.get("filePath"))
        elif action == AgentActionType.CREATE_BRANCH and result.success:
            context.put_work_product("branchName", output.get("branchName"))
        elif action == AgentActionType.COMMIT_CHANGES and result.success:
            context.put_work_product("commitSha", output.get("commitSha"))
        elif action == AgentActionType.REQUEST_APPROVAL and result.success:
            if params.get("requestType") == ApprovalRequestType.SELF_HEALING_MANUAL.value:
                self._finish_test(context, "MANUAL_REVIEW", approvalRequestId=output.get("approvalRequestId"))
            else:
                context.put_work_product("approvalRequestId", output.get("approvalRequestId"))
        elif action == AgentActionType.CREATE_PULL_REQUEST and result.success:
            fixed = context.get_state(FIXED_COUNT, 0) + 1
            context.put_state(FIXED_COUNT, fixed)
            context.put_work_product("successfullyFixed", fixed)
            context.put_work_product("pullRequestUrl", output.get("pullRequestUrl"))
            self._finish_test(
                context,
                "FIXED",
                pullRequestUrl=output.get("pullRequestUrl"),
                branchName=context.get_work_product("branchName"),
            )

    def _after_modify(self, context: AgentContext, params: dict[str, Any], result: ActionResult) -> None:
        source = params.get("source", REGISTRY)
        position = int(params.get("candidateIndex", 0))
        index_key = _INDEX_KEYS.get(source, ALT_INDEX)
        if not result.success:
            logger.warning("Could not apply %s candidate %d: %s", source, position, result.error)
            context.put_state(index_key, position + 1)
            return
        if context.get_state(ORIGINAL_CONTENT) is None:
            context.put_state(ORIGINAL_CONTENT, result.output.get("previousContent"))
        context.put_state(index_key, position)
        context.put_state(
            LAST_APPLIED_FIX,
            {"source": source, "index": position, "locator": params.get("newLocator")},
        )

    def _after_verify(self, context: AgentContext, result: ActionResult) -> None:
        output = result.output
        for key in ("failedStepIndex", "failedStepLocator"):
            context.put_work_product(key, output.get(key))
        context.put_work_product("failedErrorMessage", output.get("firstErrorMessage"))
        stable = result.success and output.get("isStable") is True
        context.put_state(FIX_VERIFIED, stable)
        fix = context.get_state(LAST_APPLIED_FIX) or {}
        if stable:
            logger.info("Fix verified: %s (%s)", fix.get("locator"), output.get("pattern"))
            return
        if output.get("cancelled"):
            return
        index_key = _INDEX_KEYS.get(fix.get("source", REGISTRY), ALT_INDEX)
        context.put_state(index_key, int(fix.get("index", 0)) + 1)
        logger.info(
            "Candidate %s not stable (%s), moving on", fix.get("locator"), output.get("pattern")
        )

    def _finish_test(self, context: AgentContext, outcome: str, **details: Any) -> None:
        test_ids = context.get_state(TESTS) or []
        index = context.get_state(TEST_INDEX, 0)
        test_id = test_ids[index]
        verified = bool(context.get_state(FIX_VERIFIED, False))
        if not verified:
            restore_content(self.tests, test_id, context.get_state(ORIGINAL_CONTENT))
        fix = context.get_state(LAST_APPLIED_FIX) or {}
        analysis = context.get_state(FAILURE_ANALYSIS) or {}
        record_outcome(
            context,
            {
                "testId": test_id,
                "outcome": outcome,
                "brokenLocator": analysis.get("brokenLocator"),
                "workingLocator": fix.get("locator") if verified else None,
                **details,
            },
        )
        for key in PER_TEST_STATE:
            context.remove_state(key)
        for key in PER_TEST_WORK_PRODUCTS:
            context.remove_work_product(key)
        context.put_state(TEST_INDEX, index + 1)
        context.put_state(TEST_START, context.current_iteration + 1)
        logger.info("Test %s finished: %s", test_id, outcome)


def _bounded(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return min(max(number, 0.0), 1.0)
