"""Transient test resources — create, and best-effort teardown."""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

import requests
from azure.core.exceptions import AzureError

from collectors.azure_client import arm_error_code, arm_error_message
from collectors.resources import delete_resource, put_resource, resource_path
from harness.cases import ResourceSpec
from harness.environment import TestEnvironment

_log = logging.getLogger(__name__)

# Storage account names are the tightest constraint we create: 3-24 lowercase alphanumerics.
MAX_NAME_LENGTH = 24
SUFFIX_BYTES = 4


class PolicyDeniedError(Exception):
    """Resource creation was rejected with RequestDisallowedByPolicy."""

    def __init__(self, resource_id: str, message: str):
        self.resource_id = resource_id
        super().__init__(f"RequestDisallowedByPolicy for {resource_id}: {message}")


@dataclass
class TestResource:
    resource_id: str
    name: str
    api_version: str

    __test__ = False


def random_resource_name(global_prefix: str, name_prefix: str = "") -> str:
    """Randomly suffixed name; keeps concurrent CI jobs from colliding."""
    suffix = secrets.token_hex(SUFFIX_BYTES)
    head = f"{global_prefix}{name_prefix}"[: MAX_NAME_LENGTH - len(suffix)]
    return f"{head}{suffix}"


def new_test_resource(env: TestEnvironment, spec: ResourceSpec) -> TestResource:
    """Create the resource described by *spec* in the test resource group.

    No retry: throttling and transient errors propagate as-is.
    """
    name = random_resource_name(env.config.resource_name_prefix, spec.name_prefix)
    rid = resource_path(env.subscription_id, env.config.resource_group, spec.type, name)
    body = {"location": env.config.location, **spec.body}

    _log.info("Creating test resource %s", rid)
    try:
        put_resource(env.client, rid, spec.api_version, body)
    except requests.HTTPError as e:
        if arm_error_code(e) == "RequestDisallowedByPolicy":
            raise PolicyDeniedError(rid, arm_error_message(e)) from e
        raise
    return TestResource(resource_id=rid, name=name, api_version=spec.api_version)


def remove_test_resource(env: TestEnvironment, resource: TestResource) -> bool:
    """Delete *resource*.  A failure is logged as a warning, never retried."""
    try:
        delete_resource(env.client, resource.resource_id, resource.api_version)
    except (requests.RequestException, AzureError) as e:
        msg = f"Failed to delete test resource {resource.resource_id}: {e}"
        _log.warning(msg)
        env.warnings.append(msg)
        return False
    _log.info("Deleted test resource %s", resource.resource_id)
    return True
