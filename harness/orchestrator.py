"""Policy test orchestration — one transient resource per test case.

Per case:
  1. validate the definition JSON locally
  2. create a resource expected to violate (or satisfy) the policy
  3. Deny cases: creation itself must fail with RequestDisallowedByPolicy
  4. trigger a compliance scan and poll until a terminal state or timeout
  5. compare expected vs actual compliance
  6. delete the resource (failure → warning only)

Every failure is terminal for that case alone; the suite carries on.
"""
from __future__ import annotations

import logging
import time
from typing import Callable

import requests
from azure.core.exceptions import AzureError

from collectors.policy import trigger_compliance_scan
from harness.assertions import ComplianceAssertionError, assert_compliance
from harness.cases import PolicyTestCase
from harness.environment import TestEnvironment
from harness.polling import wait_for_compliance_evaluation
from harness.resources import PolicyDeniedError, new_test_resource, remove_test_resource
from policy_store.validator import validate_definition_file
from schemas.domain import PolicyDefinition, TestResult, TestStatus

_log = logging.getLogger(__name__)

# Failures that end one case without stopping the suite.
CASE_ERRORS = (requests.RequestException, AzureError, ValueError)


def _result(case: PolicyTestCase, status: TestStatus, message: str, start_ns: int, **kw) -> TestResult:
    return TestResult(
        case_name=case.name,
        policy_name=case.policy,
        status=status,
        expected_state=case.expected_compliance,
        message=message,
        duration_ms=(time.perf_counter_ns() - start_ns) // 1_000_000,
        **kw,
    )


def run_policy_test(
    env: TestEnvironment,
    case: PolicyTestCase,
    definitions: dict[str, PolicyDefinition],
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> TestResult:
    start = time.perf_counter_ns()

    # ── 1. Local validation (runs even without an Azure session) ──
    definition = definitions.get(case.policy)
    if definition is None:
        return _result(case, TestStatus.FAILED, f"Policy '{case.policy}' not found in the policy store", start)
    if definition.source_path is not None:
        validation = validate_definition_file(definition.source_path)
        if not validation.ok:
            return _result(case, TestStatus.FAILED,
                           f"Definition invalid: {'; '.join(validation.errors)}", start)

    if env.skipped:
        return _result(case, TestStatus.SKIPPED, env.skip_reason, start)

    # ── 2/3. Create the resource ──────────────────────────────────
    try:
        resource = new_test_resource(env, case.resource)
    except PolicyDeniedError as e:
        if case.expect_denied:
            return _result(case, TestStatus.PASSED, "Creation denied by policy as expected", start,
                           actual_state="Denied", resource_id=e.resource_id)
        return _result(case, TestStatus.FAILED, str(e), start,
                       actual_state="Denied", resource_id=e.resource_id)
    except CASE_ERRORS as e:
        return _result(case, TestStatus.FAILED, f"Resource creation failed: {type(e).__name__}: {e}", start)

    try:
        if case.expect_denied:
            return _result(case, TestStatus.FAILED,
                           "Resource was created but the policy should have denied it", start,
                           actual_state="Created", resource_id=resource.resource_id)

        # ── 4. Scan + poll ────────────────────────────────────────
        cfg = env.config
        if cfg.trigger_scan:
            trigger_compliance_scan(env.client, env.resource_group_scope)
        poll = wait_for_compliance_evaluation(
            env.client,
            resource.resource_id,
            cfg.evaluation_timeout_seconds,
            cfg.poll_interval_seconds,
            policy_definition_name=definition.name,
            clock=clock,
            sleep=sleep,
        )
        if poll.timed_out:
            return _result(case, TestStatus.FAILED,
                           f"No compliance state within {cfg.evaluation_timeout_seconds}s", start,
                           resource_id=resource.resource_id, poll_attempts=poll.attempts)

        # ── 5. Assert ─────────────────────────────────────────────
        try:
            assert_compliance(case.expected_compliance, poll.compliance_state)
        except ComplianceAssertionError as e:
            return _result(case, TestStatus.FAILED, str(e), start, actual_state=poll.compliance_state or "",
                           resource_id=resource.resource_id, poll_attempts=poll.attempts)
        return _result(case, TestStatus.PASSED, "Compliance state matched", start,
                       actual_state=poll.compliance_state or "",
                       resource_id=resource.resource_id, poll_attempts=poll.attempts)

    except CASE_ERRORS as e:
        return _result(case, TestStatus.FAILED, f"Azure API error: {type(e).__name__}: {e}", start,
                       resource_id=resource.resource_id)
    finally:
        # ── 6. Teardown ───────────────────────────────────────────
        remove_test_resource(env, resource)


def run_suite(
    env: TestEnvironment,
    cases: list[PolicyTestCase],
    definitions: dict[str, PolicyDefinition],
    *,
    verbose: bool = False,
    **kwargs,
) -> list[TestResult]:
    """Run *cases* one after another."""
    results: list[TestResult] = []
    for case in cases:
        if verbose:
            print(f"    Testing {case.name} …", end=" ", flush=True)
        result = run_policy_test(env, case, definitions, **kwargs)
        results.append(result)
        if verbose:
            icon = {"Passed": "✓", "Failed": "✗", "Skipped": "–"}[result.status.value]
            print(f"{icon}  ({result.duration_ms}ms) {result.message}")
        _log.info("Case %s: %s", case.name, result.status.value)
    return results
