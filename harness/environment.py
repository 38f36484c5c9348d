"""Test environment bootstrap — establish or validate the Azure session.

``initialize_test_environment`` is the single gate every live test goes
through.  With no usable session it either marks the environment skipped
(``skip_if_no_context``) or raises ``ConfigurationError``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from azure.core.credentials import TokenCredential
from azure.core.exceptions import ClientAuthenticationError

from collectors.auth import ARM_SCOPE, get_credential, get_subscription_id
from collectors.azure_client import AzureClient, build_client
from collectors.resources import resource_group_exists
from harness.config import ConfigurationError, HarnessConfig

_log = logging.getLogger(__name__)


class ResourceGroupNotFoundError(Exception):
    def __init__(self, resource_group: str, subscription_id: str, location: str):
        self.resource_group = resource_group
        self.subscription_id = subscription_id
        super().__init__(
            f"Resource group '{resource_group}' not found in subscription {subscription_id}. "
            f"Create it with: az group create --name {resource_group} --location {location} "
            f"--subscription {subscription_id}"
        )


@dataclass
class TestEnvironment:
    config: HarnessConfig
    client: AzureClient | None = None
    subscription_id: str | None = None
    skipped: bool = False
    skip_reason: str = ""
    warnings: list[str] = field(default_factory=list)

    __test__ = False

    @property
    def resource_group_scope(self) -> str:
        return f"/subscriptions/{self.subscription_id}/resourceGroups/{self.config.resource_group}"


def _no_context(config: HarnessConfig, reason: str) -> TestEnvironment:
    if config.skip_if_no_context:
        _log.warning("No Azure context, policy tests will be skipped: %s", reason)
        return TestEnvironment(config=config, skipped=True, skip_reason=reason)
    raise ConfigurationError(f"No Azure context: {reason}. Run 'az login' or set ARM_* variables.")


def initialize_test_environment(
    config: HarnessConfig,
    *,
    credential_factory: Callable[[], TokenCredential] = get_credential,
    client_factory: Callable[..., AzureClient] = build_client,
) -> TestEnvironment:
    subscription_id = config.subscription_id or get_subscription_id()
    if not subscription_id:
        return _no_context(config, "no subscription id (set ARM_SUBSCRIPTION_ID or POLICY_TEST_SUBSCRIPTION_ID)")

    try:
        credential = credential_factory()
        credential.get_token(ARM_SCOPE)
    except ClientAuthenticationError as e:
        first_line = (str(e).splitlines() or [type(e).__name__])[0]
        return _no_context(config, f"credential could not acquire an ARM token ({first_line})")

    client = client_factory(subscription_id=subscription_id, credential=credential,
                            max_attempts=config.api_max_attempts)

    if not resource_group_exists(client, subscription_id, config.resource_group):
        raise ResourceGroupNotFoundError(config.resource_group, subscription_id, config.location)

    _log.info("Test environment ready: subscription=%s resource_group=%s", subscription_id, config.resource_group)
    return TestEnvironment(config=config, client=client, subscription_id=subscription_id)
