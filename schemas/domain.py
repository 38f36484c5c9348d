"""Core domain types — shared shapes for definitions, assignments and results.

Definitions and assignments mirror the ARM resource bodies so they can be
deployed verbatim.  Compliance states are read-only: Azure Policy produces
them and this codebase only observes them by polling.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


# ── Status vocabularies ──────────────────────────────────────────

class ComplianceStatus(str, Enum):
    COMPLIANT = "Compliant"
    NON_COMPLIANT = "NonCompliant"
    UNKNOWN = "Unknown"
    NOT_STARTED = "NotStarted"
    EXEMPT = "Exempt"
    CONFLICTING = "Conflicting"


class TestStatus(str, Enum):
    __test__ = False

    PASSED = "Passed"
    FAILED = "Failed"
    SKIPPED = "Skipped"


KNOWN_EFFECTS = (
    "Audit",
    "AuditIfNotExists",
    "Deny",
    "DenyAction",
    "DeployIfNotExists",
    "Modify",
    "Append",
    "Disabled",
    "Manual",
)

_PARAM_REF = re.compile(r"^\[parameters\('([^']+)'\)\]$")


def parameter_reference(value: Any) -> str | None:
    """Return the parameter name for ``"[parameters('x')]"``, else None."""
    if not isinstance(value, str):
        return None
    m = _PARAM_REF.match(value.strip())
    return m.group(1) if m else None


# ── Policy definition ────────────────────────────────────────────

@dataclass(frozen=True)
class PolicyDefinition:
    """A hand-authored policy definition, deployed verbatim to Azure."""
    name: str
    display_name: str
    policy_rule: Dict[str, Any]
    description: str = ""
    policy_type: str = "Custom"
    mode: str = "All"
    parameters: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    source_path: Optional[Path] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any], source_path: Path | None = None) -> "PolicyDefinition":
        props = doc.get("properties", {}) or {}
        return cls(
            name=doc["name"],
            display_name=props.get("displayName", ""),
            description=props.get("description", ""),
            policy_type=props.get("policyType", "Custom"),
            mode=props.get("mode", "All"),
            parameters=props.get("parameters", {}) or {},
            policy_rule=props.get("policyRule", {}) or {},
            metadata=props.get("metadata", {}) or {},
            source_path=source_path,
        )

    @property
    def effect(self) -> str | None:
        """Effective ``then.effect``, resolving a parameter's defaultValue."""
        raw = self._then().get("effect")
        ref = parameter_reference(raw)
        if ref is None:
            return raw
        param = self.parameters.get(ref)
        return param.get("defaultValue") if isinstance(param, dict) else None

    @property
    def effect_parameter(self) -> str | None:
        """Name of the parameter that drives the effect, if any."""
        return parameter_reference(self._then().get("effect"))

    def _then(self) -> Dict[str, Any]:
        then = self.policy_rule.get("then")
        return then if isinstance(then, dict) else {}

    @property
    def category(self) -> str:
        return str(self.metadata.get("category", ""))

    def to_arm_body(self) -> Dict[str, Any]:
        return {
            "properties": {
                "displayName": self.display_name,
                "description": self.description,
                "policyType": self.policy_type,
                "mode": self.mode,
                "metadata": self.metadata,
                "parameters": self.parameters,
                "policyRule": self.policy_rule,
            }
        }


# ── Policy assignment ────────────────────────────────────────────

@dataclass
class PolicyAssignment:
    """Binds a definition (with parameter values) to a scope."""
    name: str
    policy_definition_id: str
    scope: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    display_name: str = ""
    identity: bool = False
    location: Optional[str] = None

    def to_arm_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "properties": {
                "displayName": self.display_name or self.name,
                "policyDefinitionId": self.policy_definition_id,
                "parameters": {k: {"value": v} for k, v in self.parameters.items()},
            }
        }
        if self.identity:
            if not self.location:
                raise ValueError(f"Assignment '{self.name}' requests a managed identity but has no location")
            body["identity"] = {"type": "SystemAssigned"}
            body["location"] = self.location
        return body


# ── Compliance state — produced by Azure, polled here ────────────

@dataclass(frozen=True)
class ComplianceState:
    resource_id: str
    policy_definition_name: str
    policy_assignment_name: str
    compliance_state: str
    timestamp: str = ""

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ComplianceState":
        # Older records only carry the boolean isCompliant
        state = record.get("complianceState")
        if not state and "isCompliant" in record:
            state = ComplianceStatus.COMPLIANT.value if record["isCompliant"] else ComplianceStatus.NON_COMPLIANT.value
        return cls(
            resource_id=record.get("resourceId", ""),
            policy_definition_name=record.get("policyDefinitionName", ""),
            policy_assignment_name=record.get("policyAssignmentName", ""),
            compliance_state=state or ComplianceStatus.UNKNOWN.value,
            timestamp=str(record.get("timestamp", "")),
        )


# ── Test + validation outcomes ───────────────────────────────────

@dataclass
class TestResult:
    """Ephemeral outcome of one policy test case."""
    case_name: str
    policy_name: str
    status: TestStatus
    expected_state: str = ""
    actual_state: str = ""
    message: str = ""
    resource_id: str = ""
    duration_ms: int = 0
    poll_attempts: int = 0

    __test__ = False  # keep pytest from collecting this class

    @property
    def passed(self) -> bool:
        return self.status == TestStatus.PASSED


@dataclass
class ValidationResult:
    path: Path
    ok: bool
    errors: List[str] = field(default_factory=list)
