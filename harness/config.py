"""Harness configuration — environment variables and ``.env`` files.

Every setting has a ``POLICY_TEST_*`` environment variable; the subscription
also falls back to ``ARM_SUBSCRIPTION_ID`` / ``AZURE_SUBSCRIPTION_ID`` so
the same secrets Terraform uses drive the tests.  Explicit overrides (CLI
flags) win over the environment.
"""
from __future__ import annotations

import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError


class ConfigurationError(Exception):
    """Raised for missing or invalid harness configuration."""
    pass


class HarnessConfig(BaseModel):
    subscription_id: str | None = Field(default=None, description="Target subscription GUID")
    resource_group: str = Field(default="rg-azure-policy-testing", description="Resource group for transient test resources")
    location: str = Field(default="eastus")
    evaluation_timeout_seconds: int = Field(default=900, ge=1, description="Max wait for a compliance state")
    poll_interval_seconds: int = Field(default=30, ge=1)
    skip_if_no_context: bool = Field(default=True, description="Skip (not fail) tests when no Azure session exists")
    trigger_scan: bool = Field(default=True, description="POST triggerEvaluation before polling")
    resource_name_prefix: str = Field(default="aptest", pattern=r"^[a-z0-9]{1,12}$")
    report_dir: str = Field(default="reports")
    api_max_attempts: int = Field(default=1, ge=1, description="Attempts for read calls; 1 disables throttle retry")


# env var → field
_ENV_MAP: dict[str, str] = {
    "POLICY_TEST_SUBSCRIPTION_ID": "subscription_id",
    "POLICY_TEST_RESOURCE_GROUP": "resource_group",
    "POLICY_TEST_LOCATION": "location",
    "POLICY_TEST_TIMEOUT_SECONDS": "evaluation_timeout_seconds",
    "POLICY_TEST_POLL_INTERVAL_SECONDS": "poll_interval_seconds",
    "POLICY_TEST_SKIP_IF_NO_CONTEXT": "skip_if_no_context",
    "POLICY_TEST_TRIGGER_SCAN": "trigger_scan",
    "POLICY_TEST_NAME_PREFIX": "resource_name_prefix",
    "POLICY_TEST_REPORT_DIR": "report_dir",
    "POLICY_TEST_API_MAX_ATTEMPTS": "api_max_attempts",
}


def load_config(overrides: dict[str, Any] | None = None, *, dotenv: bool = True) -> HarnessConfig:
    """Build a HarnessConfig from ``.env`` + environment + *overrides*."""
    if dotenv:
        load_dotenv()

    values: dict[str, Any] = {}
    sub = os.getenv("ARM_SUBSCRIPTION_ID") or os.getenv("AZURE_SUBSCRIPTION_ID")
    if sub:
        values["subscription_id"] = sub
    for env_name, field_name in _ENV_MAP.items():
        raw = os.getenv(env_name)
        if raw is not None and raw.strip() != "":
            values[field_name] = raw.strip()

    for k, v in (overrides or {}).items():
        if v is not None:
            values[k] = v

    try:
        return HarnessConfig(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid harness configuration — {problems}") from e
