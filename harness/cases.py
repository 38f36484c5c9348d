"""Policy test cases — which resource to create and what Azure should say.

Cases live in a JSON manifest (``policy_store/test_cases.json`` by default):

    {"cases": [{"name": "storage-http-denied",
                "policy": "deny-storage-http",
                "expected_compliance": "NonCompliant",
                "expect_denied": true,
                "resource": {"type": "Microsoft.Storage/storageAccounts",
                             "api_version": "2023-01-01",
                             "name_prefix": "sthttp",
                             "body": {...}}}]}
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

DEFAULT_MANIFEST = Path(__file__).resolve().parent.parent / "policy_store" / "test_cases.json"


class ResourceSpec(BaseModel):
    type: str = Field(pattern=r"^[^/]+/.+$", description="ARM resource type, e.g. Microsoft.Storage/storageAccounts")
    api_version: str
    name_prefix: str = Field(default="", pattern=r"^[a-z0-9]*$")
    body: dict[str, Any] = Field(default_factory=dict)


class PolicyTestCase(BaseModel):
    name: str
    policy: str = Field(description="Definition name in the policy store")
    resource: ResourceSpec
    expected_compliance: Literal["Compliant", "NonCompliant"] = "NonCompliant"
    expect_denied: bool = Field(
        default=False,
        description="True → creation must fail with RequestDisallowedByPolicy",
    )

    @model_validator(mode="after")
    def _denied_means_noncompliant(self) -> "PolicyTestCase":
        if self.expect_denied and self.expected_compliance != "NonCompliant":
            raise ValueError("expect_denied cases must expect NonCompliant")
        return self


class TestCaseError(Exception):
    __test__ = False


def load_cases(path: str | Path | None = None, *, policies: list[str] | None = None) -> list[PolicyTestCase]:
    """Load the manifest, optionally keeping only cases for *policies*."""
    manifest = Path(path) if path else DEFAULT_MANIFEST
    try:
        with open(manifest, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise TestCaseError(f"{manifest}: {e}") from e

    cases: list[PolicyTestCase] = []
    for i, raw in enumerate(data.get("cases", [])):
        try:
            cases.append(PolicyTestCase.model_validate(raw))
        except ValidationError as e:
            raise TestCaseError(f"{manifest}: case #{i} invalid: {e}") from e

    names = [c.name for c in cases]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise TestCaseError(f"{manifest}: duplicate case names {dupes}")

    if policies:
        wanted = set(policies)
        cases = [c for c in cases if c.policy in wanted]
    return cases
