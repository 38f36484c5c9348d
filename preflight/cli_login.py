"""Non-interactive logins for CI and dev containers.

``azure_cli_login`` signs the Azure CLI in as the service principal in the
``ARM_*`` variables; ``configure_terraform_credentials`` writes the
Terraform CLI credentials file from ``TF_API_TOKEN``.  Missing secrets are
a soft skip, not an error: a developer may log in by hand instead.
"""
from __future__ import annotations

import json
import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from collectors.auth import az_account_show, missing_service_principal_vars
from preflight.analyzer import DEFAULT_TF_HOSTNAME, tf_credentials_path

_log = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


class LoginError(Exception):
    pass


@dataclass
class LoginResult:
    status: str  # "logged_in" | "already" | "skipped"
    detail: str = ""

    @property
    def changed(self) -> bool:
        return self.status == "logged_in"


def azure_cli_login(
    *,
    runner: Runner = subprocess.run,
    account_show: Callable[[], dict | None] = az_account_show,
) -> LoginResult:
    missing = missing_service_principal_vars()
    if missing:
        _log.warning("Azure credentials not found in environment (%s); skipping az login", ", ".join(missing))
        return LoginResult("skipped", f"missing {', '.join(missing)}")

    subscription = os.environ["ARM_SUBSCRIPTION_ID"]
    current = account_show()
    if current and current.get("id") == subscription:
        return LoginResult("already", f"{current.get('name', subscription)} ({subscription})")
    if current:
        _log.warning("Logged into subscription %s, re-authenticating for %s", current.get("id"), subscription)

    proc = runner(
        ["az", "login", "--service-principal",
         "--username", os.environ["ARM_CLIENT_ID"],
         "--password", os.environ["ARM_CLIENT_SECRET"],
         "--tenant", os.environ["ARM_TENANT_ID"],
         "--output", "none"],
        capture_output=True, text=True,
    )
    if proc.returncode != 0:
        raise LoginError(f"az login failed: {(proc.stderr or '').strip()[:300]}")

    proc = runner(
        ["az", "account", "set", "--subscription", subscription, "--output", "none"],
        capture_output=True, text=True,
    )
    if proc.returncode != 0:
        raise LoginError(f"az account set failed: {(proc.stderr or '').strip()[:300]}")

    _log.info("Azure CLI logged in as %s on %s", os.environ["ARM_CLIENT_ID"], subscription)
    return LoginResult("logged_in", subscription)


def configure_terraform_credentials(
    *,
    token: str | None = None,
    hostname: str | None = None,
    path: Path | None = None,
) -> LoginResult:
    token = token or os.getenv("TF_API_TOKEN")
    if not token:
        _log.warning("TF_API_TOKEN not set; Terraform Cloud credentials not configured")
        return LoginResult("skipped", "TF_API_TOKEN not set")
    hostname = hostname or os.getenv("TF_HOSTNAME") or DEFAULT_TF_HOSTNAME
    path = Path(path) if path else tf_credentials_path()

    doc = {"credentials": {hostname: {"token": token}}}
    if path.is_file():
        try:
            with open(path, encoding="utf-8") as f:
                existing = json.load(f)
        except (OSError, json.JSONDecodeError):
            existing = None
        if existing == doc:
            os.chmod(path, 0o600)
            return LoginResult("already", str(path))
        _log.info("Updating existing Terraform credentials file %s", path)

    path.parent.mkdir(parents=True, exist_ok=True)
    # created 0600, never briefly world-readable
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(doc, f, indent=2)
    os.chmod(path, 0o600)
    _log.info("Wrote Terraform credentials for %s to %s", hostname, path)
    return LoginResult("logged_in", str(path))
