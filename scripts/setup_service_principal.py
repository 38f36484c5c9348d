#!/usr/bin/env python3
"""Create a CI service principal that can deploy and test policies.

Grants ``Policy Contributor`` and ``Resource Policy Contributor`` on the
active subscription and prints the ARM_* values to store as CI secrets.
"""
import argparse
import json
import subprocess
import sys
import time

ROLES = ("Policy Contributor", "Resource Policy Contributor")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create a service principal with policy deployment rights on the current subscription."
    )
    parser.add_argument("--name", help="Service principal name (default: sp-azure-policy-<epoch>)")
    parser.add_argument("--subscription", help="Subscription ID (default: az account show)")
    parser.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    return parser.parse_args(argv)


def _az(*args: str, runner=None) -> str:
    runner = runner or subprocess.run
    proc = runner(["az", *args, "--output", "json"], capture_output=True, text=True)
    if proc.returncode != 0:
        raise RuntimeError(f"az {' '.join(args[:3])} failed: {(proc.stderr or '').strip()[:300]}")
    return proc.stdout


def _confirm(prompt: str) -> bool:
    try:
        return input(prompt).strip().lower() in ("y", "yes")
    except EOFError:
        return False


def create_service_principal(name: str, subscription_id: str, runner=None) -> dict:
    scope = f"/subscriptions/{subscription_id}"
    creds = json.loads(_az("ad", "sp", "create-for-rbac",
                           "--name", name, "--role", ROLES[0], "--scopes", scope, runner=runner))
    sp = json.loads(_az("ad", "sp", "show", "--id", creds["appId"], runner=runner))
    for role in ROLES[1:]:
        _az("role", "assignment", "create",
            "--assignee-object-id", sp["id"],
            "--assignee-principal-type", "ServicePrincipal",
            "--role", role, "--scope", scope, runner=runner)
    return {
        "ARM_CLIENT_ID": creds["appId"],
        "ARM_CLIENT_SECRET": creds["password"],
        "ARM_TENANT_ID": creds["tenant"],
        "ARM_SUBSCRIPTION_ID": subscription_id,
    }


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        account = json.loads(_az("account", "show"))
    except (OSError, RuntimeError) as e:
        print(f"✗ Azure CLI not available or not logged in: {e}", file=sys.stderr)
        return 1

    subscription_id = args.subscription or account["id"]
    print(f"Subscription: {account.get('name', '?')} ({subscription_id})")
    if not args.yes and not _confirm("Continue with this subscription? (y/N): "):
        print("Cancelled.")
        return 1

    name = args.name or f"sp-azure-policy-{int(time.time())}"
    print(f"Creating service principal {name} …")
    try:
        secrets = create_service_principal(name, subscription_id)
    except RuntimeError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    print(f"✓ {name} created with roles: {', '.join(ROLES)}")
    print("\nStore these as CI secrets (the client secret is shown once):\n")
    for key, value in secrets.items():
        print(f"  {key}={value}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
