"""Credential selection for ARM calls.

A service principal in ``ARM_CLIENT_ID`` / ``ARM_CLIENT_SECRET`` /
``ARM_TENANT_ID`` (the variables Terraform's azurerm provider reads) wins;
otherwise the active Azure CLI login is used.
"""
from __future__ import annotations

import json
import os
import subprocess

from azure.core.credentials import TokenCredential
from azure.identity import AzureCliCredential, ClientSecretCredential

ARM_SCOPE = "https://management.azure.com/.default"

SERVICE_PRINCIPAL_VARS = ("ARM_CLIENT_ID", "ARM_CLIENT_SECRET", "ARM_TENANT_ID", "ARM_SUBSCRIPTION_ID")
SECRET_VARS = ("ARM_CLIENT_SECRET",)

_credential: TokenCredential | None = None

def check_service_principal_env() -> dict[str, str | None]:
    """Map each ARM_* variable to a display value, or None when unset.

    Secret values are masked.
    """
    out: dict[str, str | None] = {}
    for var in SERVICE_PRINCIPAL_VARS:
        val = os.getenv(var)
        if not val:
            out[var] = None
        elif var in SECRET_VARS:
            out[var] = "[HIDDEN]"
        else:
            out[var] = val
    return out

def missing_service_principal_vars() -> list[str]:
    return [k for k, v in check_service_principal_env().items() if v is None]

def get_credential() -> TokenCredential:
    global _credential
    if _credential is None:
        client_id = os.getenv("ARM_CLIENT_ID")
        secret = os.getenv("ARM_CLIENT_SECRET")
        tenant = os.getenv("ARM_TENANT_ID")
        if client_id and secret and tenant:
            _credential = ClientSecretCredential(tenant_id=tenant, client_id=client_id, client_secret=secret)
        else:
            _credential = AzureCliCredential(process_timeout=30)
    return _credential

def reset_credential() -> None:
    global _credential
    _credential = None

def az_account_show() -> dict | None:
    """Return ``az account show`` as a dict, or None if not logged in."""
    try:
        output = subprocess.check_output(
            ["az", "account", "show", "--output", "json"],
            stderr=subprocess.DEVNULL,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return json.loads(output)

def get_subscription_id() -> str | None:
    sub = os.getenv("ARM_SUBSCRIPTION_ID") or os.getenv("AZURE_SUBSCRIPTION_ID")
    if sub:
        return sub
    account = az_account_show()
    return account.get("id") if account else None
