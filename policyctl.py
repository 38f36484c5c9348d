#!/usr/bin/env python3
"""policyctl — validate, deploy, test and report on Azure Policy definitions.

    policyctl validate
    policyctl deploy --assign --effect Audit
    policyctl test --resource-group rg-azure-policy-testing --junit
    policyctl compliance --resource-group rg-azure-policy-testing
    policyctl report --output-format html --output-format csv
    policyctl preflight
    policyctl login
    policyctl install-modules --max-retries 3 --retry-delay 5
    policyctl cleanup
    policyctl terraform plan

Exit code 0 on success, 1 on any hard error or failed policy test.
Non-compliant resources found by ``compliance``/``report`` do not change
the exit code.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

import requests
from azure.core.exceptions import AzureError, ClientAuthenticationError

from collectors.auth import get_subscription_id
from collectors.azure_client import AzureClient, arm_error_message, build_client
from collectors.policy import (
    collect_policy_state_summary,
    delete_policy_assignment,
    delete_policy_definition,
    query_policy_states,
)
from collectors.resource_graph import find_test_resources
from collectors.resources import delete_resource
from deployment.deployer import assign_policy, build_assignment, deploy_definitions
from deployment.terraform import MODULE_DIR, TerraformError, TerraformRunner, render_tfvars
from harness.cases import TestCaseError, load_cases
from harness.config import ConfigurationError, HarnessConfig, load_config
from harness.environment import ResourceGroupNotFoundError, initialize_test_environment
from harness.orchestrator import run_suite
from policy_store.loader import PolicyDefinitionError, load_definitions
from policy_store.validator import print_validation_report, validate_directory
from preflight.analyzer import print_preflight_report, run_preflight
from preflight.cli_login import LoginError, azure_cli_login, configure_terraform_credentials
from reporting.junit import render_junit
from reporting.render import (
    COMPLIANCE_COLUMNS,
    FORMATS,
    RESULT_COLUMNS,
    compliance_rows,
    render_rows,
    result_rows,
    summarize,
)
from reporting.report_store import save_report
from schemas.domain import ComplianceStatus, TestStatus
from tooling.module_installer import (
    DEFAULT_REQUIREMENTS_SPEC,
    ModuleInstallError,
    ModuleRequirement,
    install_modules,
    print_install_summary,
)

_log = logging.getLogger("policyctl")

HARD_ERRORS = (
    ConfigurationError,
    ResourceGroupNotFoundError,
    PolicyDefinitionError,
    TestCaseError,
    TerraformError,
    ModuleInstallError,
    LoginError,
    ClientAuthenticationError,
    FileNotFoundError,
    ValueError,
)


# ── Shared helpers ────────────────────────────────────────────────

def _config(args: argparse.Namespace) -> HarnessConfig:
    overrides = {
        "subscription_id": getattr(args, "subscription_id", None),
        "resource_group": getattr(args, "resource_group", None),
        "location": getattr(args, "location", None),
        "evaluation_timeout_seconds": getattr(args, "timeout", None),
        "poll_interval_seconds": getattr(args, "poll_interval", None),
        "report_dir": getattr(args, "report_dir", None),
    }
    if getattr(args, "no_trigger_scan", False):
        overrides["trigger_scan"] = False
    if getattr(args, "fail_if_no_context", False):
        overrides["skip_if_no_context"] = False
    return load_config(overrides)


def _client(config: HarnessConfig) -> tuple[AzureClient, str]:
    subscription_id = config.subscription_id or get_subscription_id()
    if not subscription_id:
        raise ConfigurationError("No subscription id: set ARM_SUBSCRIPTION_ID or pass --subscription-id")
    return build_client(subscription_id, max_attempts=config.api_max_attempts), subscription_id


def _scope(subscription_id: str, resource_group: str | None, scope: str | None = None) -> str:
    if scope:
        return scope
    if resource_group:
        return f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"
    return f"/subscriptions/{subscription_id}"


def _parameters(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        params = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"--parameters is not valid JSON: {e}") from e
    if not isinstance(params, dict):
        raise ValueError("--parameters must be a JSON object")
    return params


def _select(definitions: dict, names: list[str] | None) -> list:
    if not names:
        return list(definitions.values())
    unknown = [n for n in names if n not in definitions]
    if unknown:
        raise ValueError(f"Unknown policy name(s): {', '.join(unknown)}")
    return [definitions[n] for n in names]


# ── Subcommands ───────────────────────────────────────────────────

def cmd_validate(args: argparse.Namespace) -> int:
    print(f"\n  ── Validating {args.policy_path or 'policy_store/definitions'} ──")
    report = validate_directory(args.policy_path)
    print_validation_report(report)
    return 0 if report.ok else 1


def cmd_deploy(args: argparse.Namespace) -> int:
    config = _config(args)
    report = validate_directory(args.policy_path)
    if not report.ok:
        print_validation_report(report)
        return 1
    definitions = _select(load_definitions(args.policy_path), args.policy)

    client, subscription_id = _client(config)
    print(f"\n  ── Deploying {len(definitions)} definition(s) to {subscription_id} ──")
    deploy_definitions(client, definitions, subscription_id, dry_run=args.dry_run)

    if args.assign:
        scope = _scope(subscription_id, args.resource_group, args.scope)
        print(f"\n  ── Assigning at {scope} ──")
        for d in definitions:
            effect = args.effect if d.effect_parameter else None
            assignment = build_assignment(d, subscription_id, scope, effect=effect, location=config.location)
            assign_policy(client, assignment, dry_run=args.dry_run)
    return 0


def cmd_assign(args: argparse.Namespace) -> int:
    config = _config(args)
    definitions = load_definitions(args.policy_path)
    if args.policy not in definitions:
        raise ValueError(f"Unknown policy '{args.policy}'")
    client, subscription_id = _client(config)
    scope = _scope(subscription_id, args.resource_group, args.scope)
    assignment = build_assignment(
        definitions[args.policy],
        subscription_id,
        scope,
        parameters=_parameters(args.parameters),
        effect=args.effect,
        name=args.name,
        location=config.location,
    )
    assign_policy(client, assignment, dry_run=args.dry_run)
    return 0


def cmd_test(args: argparse.Namespace) -> int:
    config = _config(args)
    definitions = load_definitions(args.policy_path)
    cases = load_cases(args.cases, policies=args.policy)
    env = initialize_test_environment(config)

    if env.skipped:
        print(f"  – No Azure context, {len(cases)} test(s) skipped: {env.skip_reason}")
    else:
        print(f"\n  ── Running {len(cases)} policy test(s) in {env.resource_group_scope} ──")
    results = run_suite(env, cases, definitions, verbose=True)

    rows = result_rows(results)
    rendered = render_rows(rows, RESULT_COLUMNS, args.output_format, title="Policy test results", summary_key="status")
    print()
    print(rendered)
    if args.save:
        path = save_report(config.report_dir, "policy-tests", args.output_format, rendered)
        print(f"  Saved {path}")
    if args.junit:
        path = save_report(config.report_dir, "policy-tests", "junit", render_junit(results))
        print(f"  Saved {path}")
    for w in env.warnings:
        print(f"  ⚠ {w}")

    counts = summarize(rows, "status")
    print(f"\n  Passed: {counts.get('Passed', 0)}  Failed: {counts.get('Failed', 0)}  "
          f"Skipped: {counts.get('Skipped', 0)}")
    return 1 if any(r.status == TestStatus.FAILED for r in results) else 0


def _states(args: argparse.Namespace, config: HarnessConfig):
    client, subscription_id = _client(config)
    scope = _scope(subscription_id, args.resource_group, args.scope)
    filter_expr = f"policyDefinitionName eq '{args.policy}'" if args.policy else None
    return client, scope, query_policy_states(client, scope, filter_expr=filter_expr)


def cmd_compliance(args: argparse.Namespace) -> int:
    config = _config(args)
    client, scope, states = _states(args, config)
    if args.non_compliant:
        states = [s for s in states if s.compliance_state == ComplianceStatus.NON_COMPLIANT.value]
    rows = compliance_rows(states)
    print(render_rows(rows, COMPLIANCE_COLUMNS, args.output_format,
                      title=f"Policy compliance — {scope}", summary_key="compliance_state"), end="")
    if args.summary:
        s = collect_policy_state_summary(client, scope)
        if s["status"] == "OK":
            print(f"\n  {s['compliant_resources']}/{s['total_resources']} resource(s) compliant "
                  f"({s['compliance_percent']}%)")
        else:
            print(f"\n  – {s['reason']}")
    return 0


def cmd_report(args: argparse.Namespace) -> int:
    config = _config(args)
    _, scope, states = _states(args, config)
    rows = compliance_rows(states)
    formats = args.output_format or ["html"]
    if "all" in formats:
        formats = FORMATS
    for fmt in dict.fromkeys(formats):
        content = render_rows(rows, COMPLIANCE_COLUMNS, fmt,
                              title=f"Policy compliance — {scope}", summary_key="compliance_state")
        path = save_report(config.report_dir, "compliance", fmt, content)
        print(f"  ✓ {fmt:<5s} {path}")
    counts = summarize(rows, "compliance_state")
    print(f"\n  {len(rows)} state(s): " + (", ".join(f"{k}={v}" for k, v in counts.items()) or "none"))
    return 0


def cmd_preflight(args: argparse.Namespace) -> int:
    result = run_preflight(verbose=args.verbose)
    if args.json:
        print(json.dumps(result, indent=2, default=str))
    else:
        print_preflight_report(result)
    return 0 if result["ok"] else 1


def cmd_login(args: argparse.Namespace) -> int:
    both = not (args.azure or args.terraform)
    if args.azure or both:
        r = azure_cli_login()
        print(f"  Azure CLI: {r.status} {r.detail}")
    if args.terraform or both:
        r = configure_terraform_credentials()
        print(f"  Terraform: {r.status} {r.detail}")
    return 0


def cmd_install_modules(args: argparse.Namespace) -> int:
    specs = args.module or DEFAULT_REQUIREMENTS_SPEC
    requirements = [ModuleRequirement.parse(s) for s in specs]
    print(f"\n  ── Installing {len(requirements)} module(s) "
          f"(max {args.max_retries} attempt(s), {args.retry_delay}s apart) ──")
    outcomes = install_modules(requirements, args.max_retries, args.retry_delay, raise_on_failure=False)
    print_install_summary(outcomes)
    failures = [o for o in outcomes if not o.installed]
    if failures:
        raise ModuleInstallError(failures)
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    config = _config(args)
    client, subscription_id = _client(config)
    api_versions = {c.resource.type.lower(): c.resource.api_version for c in load_cases(args.cases)}

    leftovers = find_test_resources(subscription_id, config.resource_group, config.resource_name_prefix)
    print(f"\n  ── {len(leftovers)} leftover test resource(s) in {config.resource_group} ──")
    failed = 0
    for res in leftovers:
        api_version = api_versions.get(str(res.get("type", "")).lower())
        if not api_version:
            print(f"    – {res['name']}: no api-version known for {res.get('type')}, skipped")
            continue
        if args.dry_run:
            print(f"    [dry-run] would delete {res['id']}")
            continue
        try:
            delete_resource(client, res["id"], api_version)
            print(f"    ✓ deleted {res['name']}")
        except requests.RequestException as e:
            failed += 1
            print(f"    ✗ {res['name']}: {arm_error_message(e)}")

    if args.policies:
        scope = _scope(subscription_id, args.resource_group, args.scope)
        for d in load_definitions(args.policy_path).values():
            if args.dry_run:
                print(f"    [dry-run] would remove {d.name} and its assignment")
                continue
            delete_policy_assignment(client, scope, f"{d.name}-assignment")
            delete_policy_definition(client, subscription_id, d.name)
            print(f"    ✓ removed {d.name}")
    return 1 if failed else 0


def cmd_terraform(args: argparse.Namespace) -> int:
    runner = TerraformRunner(args.workdir)
    if args.action != "render" and not runner.available():
        raise ConfigurationError("terraform not found on PATH")

    if args.action in ("render", "plan", "apply"):
        config = _config(args)
        subscription_id = config.subscription_id or get_subscription_id()
        if not subscription_id:
            raise ConfigurationError("No subscription id: set ARM_SUBSCRIPTION_ID or pass --subscription-id")
        definitions = _select(load_definitions(args.policy_path), args.policy)
        path = render_tfvars(definitions, subscription_id, args.workdir, assign=not args.no_assign, effect=args.effect)
        print(f"  ✓ wrote {path}")
        if args.action == "render":
            return 0

    runner.init()
    if args.action == "plan":
        print(runner.plan())
    elif args.action == "apply":
        print(runner.plan())
        print(runner.apply())
    elif args.action == "destroy":
        print(runner.destroy())
    return 0


# ── Argument parsing ──────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="policyctl", description="Azure Policy governance-as-code toolkit.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--policy-path", help="Definitions directory or single JSON file")
    common.add_argument("--subscription-id", help="Target subscription (default: ARM_SUBSCRIPTION_ID)")
    common.add_argument("--resource-group", help="Resource group (scope for assign/compliance, home of test resources)")

    scoped = argparse.ArgumentParser(add_help=False)
    scoped.add_argument("--scope", help="Explicit ARM scope, overrides --resource-group")

    p = sub.add_parser("validate", help="Validate policy JSON locally", parents=[common])
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("deploy", help="PUT policy definitions (and optionally assignments)", parents=[common, scoped])
    p.add_argument("--policy", action="append", help="Only this definition (repeatable)")
    p.add_argument("--assign", action="store_true", help="Also assign each definition")
    p.add_argument("--effect", help="Effect for assignments of parameterized definitions")
    p.add_argument("--location", help="Location for managed identities")
    p.add_argument("--dry-run", action="store_true")
    p.set_defaults(func=cmd_deploy)

    p = sub.add_parser("assign", help="Assign one definition", parents=[common, scoped])
    p.add_argument("--policy", required=True)
    p.add_argument("--name", help="Assignment name (default: <policy>-assignment)")
    p.add_argument("--effect")
    p.add_argument("--parameters", help="Assignment parameters as a JSON object")
    p.add_argument("--location")
    p.add_argument("--dry-run", action="store_true")
    p.set_defaults(func=cmd_assign)

    p = sub.add_parser("test", help="Run policy test cases against Azure", parents=[common])
    p.add_argument("--cases", help="Test case manifest (default: policy_store/test_cases.json)")
    p.add_argument("--policy", action="append", help="Only cases for this policy (repeatable)")
    p.add_argument("--location")
    p.add_argument("--timeout", type=int, help="Evaluation timeout in seconds")
    p.add_argument("--poll-interval", type=int, help="Seconds between policy state polls")
    p.add_argument("--no-trigger-scan", action="store_true")
    p.add_argument("--fail-if-no-context", action="store_true", help="Fail instead of skip without an Azure session")
    p.add_argument("--output-format", choices=FORMATS, default="table")
    p.add_argument("--save", action="store_true", help="Save the rendered results under --report-dir")
    p.add_argument("--junit", action="store_true", help="Save JUnit XML under --report-dir")
    p.add_argument("--report-dir")
    p.set_defaults(func=cmd_test)

    p = sub.add_parser("compliance", help="Show current policy states", parents=[common, scoped])
    p.add_argument("--policy", help="Only states for this definition name")
    p.add_argument("--non-compliant", action="store_true", help="Only NonCompliant states")
    p.add_argument("--summary", action="store_true", help="Also print the Policy Insights summary for the scope")
    p.add_argument("--output-format", choices=FORMATS, default="table")
    p.set_defaults(func=cmd_compliance)

    p = sub.add_parser("report", help="Write compliance report files", parents=[common, scoped])
    p.add_argument("--policy", help="Only states for this definition name")
    p.add_argument("--output-format", action="append", choices=(*FORMATS, "all"), default=None)
    p.add_argument("--report-dir")
    p.set_defaults(func=cmd_report)

    p = sub.add_parser("preflight", help="Check tools, credentials and access")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_preflight)

    p = sub.add_parser("login", help="Log in the Azure CLI and/or Terraform CLI from environment secrets")
    p.add_argument("--azure", action="store_true")
    p.add_argument("--terraform", action="store_true")
    p.set_defaults(func=cmd_login)

    p = sub.add_parser("install-modules", help="Install CLI extensions / packages with fixed retries")
    p.add_argument("--module", action="append", help="[az-extension:|pip:]name[==version] (repeatable)")
    p.add_argument("--max-retries", type=int, default=3)
    p.add_argument("--retry-delay", type=float, default=5)
    p.set_defaults(func=cmd_install_modules)

    p = sub.add_parser("cleanup", help="Delete leftover test resources", parents=[common, scoped])
    p.add_argument("--cases", help="Test case manifest (for resource api-versions)")
    p.add_argument("--policies", action="store_true", help="Also delete deployed definitions and assignments")
    p.add_argument("--dry-run", action="store_true")
    p.set_defaults(func=cmd_cleanup)

    p = sub.add_parser("terraform", help="Deploy through the bundled Terraform module", parents=[common])
    p.add_argument("action", choices=("render", "plan", "apply", "destroy"))
    p.add_argument("--workdir", default=str(MODULE_DIR))
    p.add_argument("--policy", action="append")
    p.add_argument("--effect")
    p.add_argument("--no-assign", action="store_true")
    p.set_defaults(func=cmd_terraform)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # azure-identity / urllib3 are chatty at DEBUG
    for noisy in ("azure", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    try:
        return args.func(args)
    except HARD_ERRORS as e:
        message = str(e)
    except requests.RequestException as e:
        message = f"Azure request failed: {arm_error_message(e)}"
    except AzureError as e:
        message = f"{type(e).__name__}: {e}"
    except KeyboardInterrupt:
        return 130
    _log.debug("Command %s failed: %s", args.command, message)
    print(f"✗ {message}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
