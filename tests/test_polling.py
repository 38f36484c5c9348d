"""Tests for harness.polling — bounded compliance polling with an injected clock.

Verifies:
  - A terminal state on the first poll returns without sleeping
  - No record / NotStarted are pending; anything else is terminal
  - The loop always ends by the deadline, never sleeping past it
  - The policy definition filter is sent to Policy Insights
  - Query errors propagate instead of being retried
"""
from __future__ import annotations

import pytest
import requests

from harness.polling import PENDING_STATES, wait_for_compliance_evaluation

from conftest import http_error, state_record

RID = "/subscriptions/s/resourceGroups/rg/providers/Microsoft.Storage/storageAccounts/aptest01"


def _wait(client, clock, timeout=60, interval=10, **kw):
    return wait_for_compliance_evaluation(client, RID, timeout, interval, clock=clock, sleep=clock.sleep, **kw)


def test_terminal_on_first_poll(fake_client, fake_clock):
    fake_client.state_batches = [[state_record(RID, "NonCompliant")]]
    result = _wait(fake_client, fake_clock)
    assert not result.timed_out
    assert result.compliance_state == "NonCompliant"
    assert result.attempts == 1
    assert fake_clock.sleeps == []


def test_pending_until_terminal(fake_client, fake_clock):
    fake_client.state_batches = [
        [],
        [state_record(RID, "NotStarted")],
        [state_record(RID, "Compliant")],
    ]
    result = _wait(fake_client, fake_clock)
    assert result.compliance_state == "Compliant"
    assert result.attempts == 3
    assert fake_clock.sleeps == [10, 10]
    assert result.elapsed_seconds == 20


@pytest.mark.parametrize("state", ["Unknown", "Exempt", "Conflicting"])
def test_other_states_are_terminal(fake_client, fake_clock, state):
    assert state not in PENDING_STATES
    fake_client.state_batches = [[state_record(RID, state)]]
    assert _wait(fake_client, fake_clock).compliance_state == state


def test_times_out_at_deadline(fake_client, fake_clock):
    start = fake_clock.now
    result = _wait(fake_client, fake_clock, timeout=60, interval=10)
    assert result.timed_out
    assert result.state is None and result.compliance_state is None
    assert result.attempts == 7
    assert fake_clock.now - start == 60
    assert result.elapsed_seconds == 60


def test_last_sleep_is_clipped_to_deadline(fake_client, fake_clock):
    start = fake_clock.now
    result = _wait(fake_client, fake_clock, timeout=25, interval=10)
    assert result.timed_out
    assert fake_clock.sleeps == [10, 10, 5]
    assert fake_clock.now - start == 25


def test_filter_by_policy_definition(fake_client, fake_clock):
    fake_client.state_batches = [[state_record(RID, "Compliant")]]
    _wait(fake_client, fake_clock, policy_definition_name="deny-storage-http")
    method, path, params = fake_client.calls[0]
    assert method == "POST"
    assert path == f"{RID}/providers/Microsoft.PolicyInsights/policyStates/latest/queryResults"
    assert params == {"$filter": "policyDefinitionName eq 'deny-storage-http'"}


def test_query_error_propagates(fake_client, fake_clock):
    fake_client.post_error = http_error(503, "ServiceUnavailable")
    with pytest.raises(requests.HTTPError):
        _wait(fake_client, fake_clock)
    assert len(fake_client.calls) == 1
