# collectors/policy.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from collectors.azure_client import AzureClient
from schemas.domain import ComplianceState, PolicyAssignment, PolicyDefinition

DEFINITION_API = "2021-06-01"
ASSIGN_API = "2022-06-01"
STATE_API = "2019-10-01"

_log = logging.getLogger(__name__)


def definition_id(subscription_id: str, name: str) -> str:
    return f"/subscriptions/{subscription_id}/providers/Microsoft.Authorization/policyDefinitions/{name}"


def assignment_id(scope: str, name: str) -> str:
    return f"{scope}/providers/Microsoft.Authorization/policyAssignments/{name}"


# ── Definitions + assignments ─────────────────────────────────────

def put_policy_definition(client: AzureClient, subscription_id: str, definition: PolicyDefinition) -> Dict[str, Any]:
    """Create or replace a custom definition at subscription scope."""
    path = definition_id(subscription_id, definition.name)
    _log.info("PUT policy definition %s", definition.name)
    return client.put(path, api_version=DEFINITION_API, body=definition.to_arm_body())


def delete_policy_definition(client: AzureClient, subscription_id: str, name: str) -> int:
    return client.delete(definition_id(subscription_id, name), api_version=DEFINITION_API)


def put_policy_assignment(client: AzureClient, assignment: PolicyAssignment) -> Dict[str, Any]:
    path = assignment_id(assignment.scope, assignment.name)
    _log.info("PUT policy assignment %s at %s", assignment.name, assignment.scope)
    return client.put(path, api_version=ASSIGN_API, body=assignment.to_arm_body())


def delete_policy_assignment(client: AzureClient, scope: str, name: str) -> int:
    return client.delete(assignment_id(scope, name), api_version=ASSIGN_API)


# ── Policy Insights ───────────────────────────────────────────────

def trigger_compliance_scan(client: AzureClient, scope: str) -> None:
    """Ask Azure Policy to re-evaluate *scope* (subscription or resource group).

    The service answers 202 Accepted and runs the scan asynchronously;
    results show up in policy states some minutes later.
    """
    _log.info("Triggering compliance scan at %s", scope)
    client.post(f"{scope}/providers/Microsoft.PolicyInsights/policyStates/latest/triggerEvaluation",
                api_version=STATE_API, retry=False)


def query_policy_states(
    client: AzureClient,
    scope: str,
    *,
    filter_expr: Optional[str] = None,
    top: Optional[int] = None,
) -> List[ComplianceState]:
    """Latest policy states under *scope*.

    *scope* may be a subscription, resource group or a single resource id.
    """
    params: Dict[str, Any] = {}
    if filter_expr:
        params["$filter"] = filter_expr
    if top:
        params["$top"] = top
    data = client.post(f"{scope}/providers/Microsoft.PolicyInsights/policyStates/latest/queryResults",
                       api_version=STATE_API, params=params)
    records = data.get("value", []) or []
    return [ComplianceState.from_record(r) for r in records]


def collect_policy_state_summary(client: AzureClient, scope: str) -> Dict[str, Any]:
    """Compliant / non-compliant resource counts for *scope* from ``summarize``.

    Returns ``status="NotAvailable"`` with a reason when nothing has been
    evaluated yet (fresh assignments, or Policy Insights not registered).
    """
    data = client.post(f"{scope}/providers/Microsoft.PolicyInsights/policyStates/latest/summarize",
                       api_version=STATE_API)
    value = data.get("value") or []
    results = (value[0].get("results") or {}) if value and isinstance(value[0], dict) else {}

    noncompliant = results.get("nonCompliantResources") or 0
    # some api-versions omit totalResources
    total = results.get("totalResources") or noncompliant
    compliant = max(0, total - noncompliant)

    summary: Dict[str, Any] = {
        "scope": scope,
        "status": "OK" if total else "NotAvailable",
        "reason": None,
        "compliant_resources": compliant,
        "noncompliant_resources": noncompliant,
        "total_resources": total,
        "compliance_percent": round(compliant / total * 100.0, 1) if total else None,
    }
    if not total:
        summary["reason"] = ("No policy states to summarize" if not value
                             else "No evaluated resources in scope") + f" at {scope}"
    return summary
