"""Preflight — checks tooling, credentials and ARM access before a run.

Usage:
    from preflight.analyzer import run_preflight
    result = run_preflight()
    # result["checks"]              -> {probe_name: bool}
    # result["warnings"]            -> [str]
    # result["recommended_actions"] -> [str]
"""
from __future__ import annotations

import os
import shutil
import stat
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, TypedDict

import requests
from azure.core.credentials import TokenCredential

from collectors.auth import ARM_SCOPE, az_account_show, get_credential, missing_service_principal_vars

ARM = "https://management.azure.com"
DEFAULT_TF_HOSTNAME = "app.terraform.io"
PROBE_TIMEOUT = 5


# ── Types ─────────────────────────────────────────────────────────

class ProbeResult(TypedDict):
    ok: bool
    detail: str
    duration_ms: int


class PreflightResult(TypedDict):
    ok: bool
    timestamp: str
    subscription_id: str
    checks: dict[str, bool]
    probe_details: dict[str, ProbeResult]
    warnings: list[str]
    recommended_actions: list[str]


def tf_credentials_path() -> Path:
    return Path.home() / ".terraform.d" / "credentials.tfrc.json"


@dataclass
class PreflightContext:
    """What the probes need: an ARM credential, the target subscription and Terraform settings."""
    subscription_id: str | None = None
    credential: TokenCredential | None = None
    tf_hostname: str = DEFAULT_TF_HOSTNAME
    tf_token: str | None = None
    tf_credentials_file: Path = field(default_factory=tf_credentials_path)
    _token: str | None = None
    _token_expires: float = 0.0

    def token(self) -> str:
        now = time.time()
        if self._token and now < self._token_expires - 60:
            return self._token
        if self.credential is None:
            self.credential = get_credential()
        access = self.credential.get_token(ARM_SCOPE)
        self._token = access.token
        self._token_expires = access.expires_on
        return self._token

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token()}"}


def _elapsed_ms(start: int) -> int:
    return (time.perf_counter_ns() - start) // 1_000_000


def _http_result(r: requests.Response, start: int, ok_detail: str) -> ProbeResult:
    if r.status_code == 200:
        return {"ok": True, "detail": ok_detail, "duration_ms": _elapsed_ms(start)}
    return {"ok": False, "detail": f"HTTP {r.status_code}: {r.reason}", "duration_ms": _elapsed_ms(start)}


# ── Probe definitions ─────────────────────────────────────────────

def _probe_az_cli(ctx: PreflightContext) -> ProbeResult:
    path = shutil.which("az")
    return {"ok": path is not None, "detail": path or "az not found on PATH", "duration_ms": 0}


def _probe_arm_env(ctx: PreflightContext) -> ProbeResult:
    missing = missing_service_principal_vars()
    if missing:
        return {"ok": False, "detail": f"Missing: {', '.join(missing)}", "duration_ms": 0}
    return {"ok": True, "detail": "ARM_* variables set", "duration_ms": 0}


def _probe_cli_login(ctx: PreflightContext) -> ProbeResult:
    start = time.perf_counter_ns()
    account = az_account_show()
    if not account:
        return {"ok": False, "detail": "Not logged in (az account show failed)", "duration_ms": _elapsed_ms(start)}
    return {
        "ok": True,
        "detail": f"{account.get('name', '?')} ({account.get('id', '?')})",
        "duration_ms": _elapsed_ms(start),
    }


def _probe_subscription_match(ctx: PreflightContext) -> ProbeResult:
    """Does the CLI's active subscription match ARM_SUBSCRIPTION_ID?"""
    start = time.perf_counter_ns()
    expected = os.getenv("ARM_SUBSCRIPTION_ID")
    if not expected:
        return {"ok": False, "detail": "ARM_SUBSCRIPTION_ID not set", "duration_ms": 0}
    account = az_account_show()
    current = account.get("id") if account else None
    if current == expected:
        return {"ok": True, "detail": f"Active subscription {current}", "duration_ms": _elapsed_ms(start)}
    return {
        "ok": False,
        "detail": f"CLI is on {current or '(none)'}, expected {expected}",
        "duration_ms": _elapsed_ms(start),
    }


def _probe_resource_groups(ctx: PreflightContext) -> ProbeResult:
    """Can we list resource groups in the target subscription?"""
    start = time.perf_counter_ns()
    if not ctx.subscription_id:
        return {"ok": False, "detail": "No subscription in scope", "duration_ms": 0}
    try:
        r = requests.get(
            f"{ARM}/subscriptions/{ctx.subscription_id}/resourcegroups",
            headers=ctx.headers(),
            params={"api-version": "2021-04-01", "$top": "1"},
            timeout=PROBE_TIMEOUT,
        )
        return _http_result(r, start, "Resource groups readable")
    except Exception as e:
        return {"ok": False, "detail": str(e)[:200], "duration_ms": _elapsed_ms(start)}


def _probe_policy_insights(ctx: PreflightContext) -> ProbeResult:
    """Can we read the Policy Insights summary?"""
    start = time.perf_counter_ns()
    if not ctx.subscription_id:
        return {"ok": False, "detail": "No subscription in scope", "duration_ms": 0}
    try:
        r = requests.post(
            f"{ARM}/subscriptions/{ctx.subscription_id}"
            "/providers/Microsoft.PolicyInsights/policyStates/latest/summarize",
            headers={**ctx.headers(), "Content-Type": "application/json"},
            params={"api-version": "2019-10-01"},
            json={},
            timeout=PROBE_TIMEOUT,
        )
        return _http_result(r, start, "Policy Insights accessible")
    except Exception as e:
        return {"ok": False, "detail": str(e)[:200], "duration_ms": _elapsed_ms(start)}


def _probe_terraform(ctx: PreflightContext) -> ProbeResult:
    path = shutil.which("terraform")
    return {"ok": path is not None, "detail": path or "terraform not found on PATH", "duration_ms": 0}


def _probe_tf_credentials(ctx: PreflightContext) -> ProbeResult:
    """Is the Terraform CLI credentials file present and private (600)?"""
    path = ctx.tf_credentials_file
    if not path.is_file():
        return {"ok": False, "detail": f"{path} not found", "duration_ms": 0}
    mode = stat.S_IMODE(path.stat().st_mode)
    if mode != 0o600:
        return {"ok": False, "detail": f"{path} has mode {mode:o} (should be 600)", "duration_ms": 0}
    return {"ok": True, "detail": f"{path} (600)", "duration_ms": 0}


def _probe_terraform_cloud(ctx: PreflightContext) -> ProbeResult:
    """Does TF_API_TOKEN authenticate against the Terraform Cloud API?"""
    start = time.perf_counter_ns()
    if not ctx.tf_token:
        return {"ok": False, "detail": "TF_API_TOKEN not set", "duration_ms": 0}
    try:
        r = requests.get(
            f"https://{ctx.tf_hostname}/api/v2/account/details",
            headers={
                "Authorization": f"Bearer {ctx.tf_token}",
                "Content-Type": "application/vnd.api+json",
            },
            timeout=PROBE_TIMEOUT,
        )
        if r.status_code == 200:
            user = ((r.json().get("data") or {}).get("attributes") or {}).get("username") or "unknown"
            return {"ok": True, "detail": f"Authenticated as {user}", "duration_ms": _elapsed_ms(start)}
        return _http_result(r, start, "")
    except Exception as e:
        return {"ok": False, "detail": str(e)[:200], "duration_ms": _elapsed_ms(start)}


# ── Probe registry ────────────────────────────────────────────────

# severity "error" fails the preflight; "warning" is reported only.
PROBES: dict[str, tuple[Callable[[PreflightContext], ProbeResult], dict[str, str]]] = {
    "az_cli_installed": (
        _probe_az_cli,
        {"severity": "error", "action": "Install the Azure CLI: https://learn.microsoft.com/cli/azure/install-azure-cli"},
    ),
    "arm_environment": (
        _probe_arm_env,
        {"severity": "warning", "action": "Export ARM_CLIENT_ID, ARM_CLIENT_SECRET, ARM_TENANT_ID, ARM_SUBSCRIPTION_ID"},
    ),
    "cli_logged_in": (
        _probe_cli_login,
        {"severity": "error", "action": "Run `policyctl login` or `az login`"},
    ),
    "subscription_match": (
        _probe_subscription_match,
        {"severity": "warning", "action": "Run `az account set --subscription $ARM_SUBSCRIPTION_ID`"},
    ),
    "resource_groups_read": (
        _probe_resource_groups,
        {"severity": "error", "action": "Grant Reader on the target subscription"},
    ),
    "policy_insights_read": (
        _probe_policy_insights,
        {"severity": "error", "action": "Grant Policy Insights Data Reader (or Reader) on the subscription"},
    ),
    "terraform_installed": (
        _probe_terraform,
        {"severity": "warning", "action": "Install Terraform to use `policyctl terraform`"},
    ),
    "terraform_credentials": (
        _probe_tf_credentials,
        {"severity": "warning", "action": "Run `policyctl login --terraform` with TF_API_TOKEN set"},
    ),
    "terraform_cloud": (
        _probe_terraform_cloud,
        {"severity": "warning", "action": "Create a token at https://app.terraform.io/app/settings/tokens and export TF_API_TOKEN"},
    ),
}


# ── Context builder ───────────────────────────────────────────────

def build_preflight_context(
    *,
    subscription_id: str | None = None,
    credential: TokenCredential | None = None,
) -> PreflightContext:
    if subscription_id is None:
        subscription_id = os.getenv("ARM_SUBSCRIPTION_ID")
        if not subscription_id:
            account = az_account_show()
            subscription_id = account.get("id") if account else None
    return PreflightContext(
        subscription_id=subscription_id,
        credential=credential,
        tf_hostname=os.getenv("TF_HOSTNAME") or DEFAULT_TF_HOSTNAME,
        tf_token=os.getenv("TF_API_TOKEN"),
    )


# ── Main entry point ──────────────────────────────────────────────

def run_preflight(
    ctx: PreflightContext | None = None,
    *,
    probes: dict[str, tuple[Callable[[PreflightContext], ProbeResult], dict[str, str]]] | None = None,
    verbose: bool = False,
) -> PreflightResult:
    """Run every probe independently; a failing probe never stops the others."""
    if ctx is None:
        ctx = build_preflight_context()
    probes = PROBES if probes is None else probes

    checks: dict[str, bool] = {}
    details: dict[str, ProbeResult] = {}
    warnings: list[str] = []
    actions: list[str] = []
    ok = True

    for name, (probe_fn, meta) in probes.items():
        if verbose:
            print(f"    Probing {name} …", end=" ", flush=True)
        result = probe_fn(ctx)
        checks[name] = result["ok"]
        details[name] = result
        if verbose:
            print(f"{'✓' if result['ok'] else '✗'}  ({result['duration_ms']}ms) {result['detail']}")

        if not result["ok"]:
            actions.append(meta["action"])
            if meta.get("severity") == "error":
                ok = False
            else:
                warnings.append(f"{name}: {result['detail']}")

    return PreflightResult(
        ok=ok,
        timestamp=datetime.now(timezone.utc).isoformat(),
        subscription_id=ctx.subscription_id or "(unknown)",
        checks=checks,
        probe_details=details,
        warnings=warnings,
        recommended_actions=actions,
    )


def print_preflight_report(result: PreflightResult) -> None:
    print("\n╔══════════════════════════════════════════════╗")
    print("║            Azure Policy Preflight            ║")
    print("╚══════════════════════════════════════════════╝")
    print(f"  Subscription: {result['subscription_id']}")
    print(f"  Time:         {result['timestamp']}")
    passed = sum(1 for v in result["checks"].values() if v)
    print(f"  Checks:       {passed}/{len(result['checks'])} passed")

    print("\n  ── Checks ─────────────────────────────────")
    for name, ok in result["checks"].items():
        d: Any = result["probe_details"].get(name, {})
        icon = "✓" if ok else "✗"
        print(f"    {icon} {name:<24s} {d.get('duration_ms', 0):>4d}ms  {d.get('detail', '')}")

    if result["warnings"]:
        print("\n  ── Warnings ───────────────────────────────")
        for w in result["warnings"]:
            print(f"    ⚠ {w}")

    if result["recommended_actions"]:
        print("\n  ── Recommended Actions ────────────────────")
        for i, action in enumerate(result["recommended_actions"], 1):
            print(f"    {i}. {action}")

    if result["ok"]:
        print("\n  ✓ Ready to deploy and test policies.")
    else:
        print("\n  ✗ Preflight failed — fix the errors above before running tests.")
    print()
