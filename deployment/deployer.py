"""Deployment invoker — push definitions and assignments through ARM.

Single pass, no retry: the first failing PUT raises ``requests.HTTPError``
and stops the run, so a partially applied set is visible in the log.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable

from collectors.azure_client import AzureClient
from collectors.policy import definition_id, put_policy_assignment, put_policy_definition
from schemas.domain import PolicyAssignment, PolicyDefinition

_log = logging.getLogger(__name__)

# Assignment names are capped at 64 chars (24 at management-group scope).
MAX_ASSIGNMENT_NAME = 64


def deploy_definitions(
    client: AzureClient,
    definitions: Iterable[PolicyDefinition],
    subscription_id: str,
    *,
    dry_run: bool = False,
) -> list[dict[str, Any]]:
    deployed: list[dict[str, Any]] = []
    for d in definitions:
        target = definition_id(subscription_id, d.name)
        if dry_run:
            print(f"    [dry-run] would deploy {d.name} → {target}")
            deployed.append({"name": d.name, "id": target, "dry_run": True})
            continue
        resp = put_policy_definition(client, subscription_id, d)
        print(f"    ✓ deployed {d.name}")
        deployed.append({"name": d.name, "id": resp.get("id", target), "dry_run": False})
    _log.info("Deployed %d definition(s)%s", len(deployed), " (dry run)" if dry_run else "")
    return deployed


def build_assignment(
    definition: PolicyDefinition,
    subscription_id: str,
    scope: str,
    *,
    parameters: dict[str, Any] | None = None,
    effect: str | None = None,
    name: str | None = None,
    location: str | None = None,
) -> PolicyAssignment:
    """Assignment for *definition* at *scope*.

    *effect* overrides the definition's effect parameter; definitions with a
    hard-coded effect reject the override.
    """
    params = dict(parameters or {})
    if effect:
        pname = definition.effect_parameter
        if pname is None:
            raise ValueError(f"Definition '{definition.name}' has a fixed effect; cannot override to '{effect}'")
        allowed = (definition.parameters.get(pname) or {}).get("allowedValues")
        if allowed and effect not in allowed:
            raise ValueError(f"Effect '{effect}' not in allowed values {allowed} for '{definition.name}'")
        params[pname] = effect

    # Modify / DeployIfNotExists need a managed identity to remediate
    needs_identity = (effect or definition.effect or "").lower() in ("modify", "deployifnotexists")
    return PolicyAssignment(
        name=(name or f"{definition.name}-assignment")[:MAX_ASSIGNMENT_NAME],
        policy_definition_id=definition_id(subscription_id, definition.name),
        scope=scope,
        parameters=params,
        display_name=definition.display_name,
        identity=needs_identity,
        location=location if needs_identity else None,
    )


def assign_policy(
    client: AzureClient,
    assignment: PolicyAssignment,
    *,
    dry_run: bool = False,
) -> dict[str, Any]:
    if dry_run:
        print(f"    [dry-run] would assign {assignment.name} at {assignment.scope}")
        return {"name": assignment.name, "dry_run": True, "body": assignment.to_arm_body()}
    resp = put_policy_assignment(client, assignment)
    print(f"    ✓ assigned {assignment.name} at {assignment.scope}")
    return resp
