"""Bounded polling for a resource's compliance state.

Two states only: *pending* (no policy state yet, or ``NotStarted``) and
*terminal* (anything else).  The loop always ends by the deadline.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from collectors.azure_client import AzureClient
from collectors.policy import query_policy_states
from schemas.domain import ComplianceState, ComplianceStatus

_log = logging.getLogger(__name__)

PENDING_STATES = frozenset({ComplianceStatus.NOT_STARTED.value})


@dataclass
class PollResult:
    state: ComplianceState | None
    attempts: int
    elapsed_seconds: float
    timed_out: bool

    @property
    def compliance_state(self) -> str | None:
        return self.state.compliance_state if self.state else None


def _filter_for(policy_definition_name: str | None) -> str | None:
    if not policy_definition_name:
        return None
    return f"policyDefinitionName eq '{policy_definition_name}'"


def _terminal(states: list[ComplianceState]) -> ComplianceState | None:
    for s in states:
        if s.compliance_state not in PENDING_STATES:
            return s
    return None


def wait_for_compliance_evaluation(
    client: AzureClient,
    resource_id: str,
    timeout_seconds: float,
    poll_interval_seconds: float,
    *,
    policy_definition_name: str | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> PollResult:
    """Poll policy states for *resource_id* until terminal or *timeout_seconds*.

    Query errors are not swallowed; they propagate to the calling test.
    """
    start = clock()
    deadline = start + timeout_seconds
    attempts = 0
    filter_expr = _filter_for(policy_definition_name)

    while True:
        attempts += 1
        states = query_policy_states(client, resource_id, filter_expr=filter_expr)
        found = _terminal(states)
        now = clock()
        if found is not None:
            _log.info("Compliance for %s: %s after %d poll(s)", resource_id, found.compliance_state, attempts)
            return PollResult(state=found, attempts=attempts, elapsed_seconds=now - start, timed_out=False)

        remaining = deadline - now
        if remaining <= 0:
            _log.warning("Timed out after %.0fs waiting for compliance of %s", now - start, resource_id)
            return PollResult(state=None, attempts=attempts, elapsed_seconds=now - start, timed_out=True)

        _log.debug("No terminal state for %s yet (poll %d), sleeping", resource_id, attempts)
        sleep(min(poll_interval_seconds, remaining))
