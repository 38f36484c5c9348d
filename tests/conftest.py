"""Shared fakes — an in-memory ARM client, a controllable clock, HTTP errors.

No test touches Azure: everything that would hit ARM goes through
``FakeArmClient``.
"""
from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import pytest
import requests

# Ensure project root is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from collectors import auth  # noqa: E402
from harness.config import HarnessConfig  # noqa: E402
from harness.environment import TestEnvironment  # noqa: E402

SUBSCRIPTION = "00000000-0000-0000-0000-000000000000"


def http_error(status: int, code: str | None = None, message: str = "", details: list | None = None) -> requests.HTTPError:
    """An HTTPError carrying an ARM-shaped error body."""
    r = requests.Response()
    r.status_code = status
    r._content = json.dumps({"error": {"code": code, "message": message, "details": details or []}}).encode()
    r.headers["Content-Type"] = "application/json"
    r.encoding = "utf-8"
    return requests.HTTPError(f"{status} Client Error", response=r)


def state_record(resource_id: str, state: str, policy: str = "deny-storage-http") -> dict:
    return {
        "resourceId": resource_id,
        "policyDefinitionName": policy,
        "policyAssignmentName": f"{policy}-assignment",
        "complianceState": state,
        "timestamp": "2026-01-01T00:00:00Z",
    }


class FakeArmClient:
    """Records every call; answers policy-state queries from ``state_batches``.

    Each ``queryResults`` POST consumes one batch; the last batch repeats.
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.state_batches: list[list[dict]] = []
        self.put_error: Exception | None = None
        self.delete_error: Exception | None = None
        self.post_error: Exception | None = None
        self.head_status = 200

    def _calls(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]

    def get(self, path, api_version, params=None):
        self.calls.append(("GET", path, params))
        return {"value": []}

    def post(self, path, api_version, body=None, params=None, *, retry=True):
        self.calls.append(("POST", path, params))
        if self.post_error is not None:
            raise self.post_error
        if path.endswith("/queryResults"):
            if not self.state_batches:
                return {"value": []}
            batch = self.state_batches.pop(0) if len(self.state_batches) > 1 else self.state_batches[0]
            return {"value": batch}
        return {}

    def put(self, path, api_version, body):
        self.calls.append(("PUT", path, body))
        if self.put_error is not None:
            raise self.put_error
        return {"id": path}

    def delete(self, path, api_version):
        self.calls.append(("DELETE", path, None))
        if self.delete_error is not None:
            raise self.delete_error
        return 200

    def head(self, path, api_version):
        self.calls.append(("HEAD", path, None))
        return self.head_status


class FakeClock:
    """``clock`` + ``sleep`` pair where sleeping advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ── Fixtures ──────────────────────────────────────────────────────

@pytest.fixture
def fake_client():
    return FakeArmClient()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def config():
    return HarnessConfig(
        subscription_id=SUBSCRIPTION,
        resource_group="rg-policy-tests",
        evaluation_timeout_seconds=60,
        poll_interval_seconds=10,
    )


@pytest.fixture
def env(config, fake_client):
    return TestEnvironment(config=config, client=fake_client, subscription_id=SUBSCRIPTION)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Strip ARM_*/POLICY_TEST_*/TF_* from the environment for every test."""
    for var in list(os.environ):
        if var.startswith(("ARM_", "AZURE_", "POLICY_TEST_", "TF_")):
            monkeypatch.delenv(var, raising=False)
    auth.reset_credential()
    yield
    auth.reset_credential()
