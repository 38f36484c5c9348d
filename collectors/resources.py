"""Generic ARM resource operations used by the test harness."""
from __future__ import annotations

from typing import Any, Dict

import requests

from collectors.azure_client import AzureClient

RESOURCE_GROUP_API = "2021-04-01"


def resource_group_path(subscription_id: str, resource_group: str) -> str:
    return f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"


def resource_path(subscription_id: str, resource_group: str, resource_type: str, name: str) -> str:
    """``Microsoft.Storage/storageAccounts`` + name → full resource id."""
    provider, _, type_name = resource_type.partition("/")
    if not provider or not type_name:
        raise ValueError(f"Resource type must look like 'Namespace/type', got '{resource_type}'")
    return f"{resource_group_path(subscription_id, resource_group)}/providers/{provider}/{type_name}/{name}"


def resource_group_exists(client: AzureClient, subscription_id: str, resource_group: str) -> bool:
    try:
        status = client.head(resource_group_path(subscription_id, resource_group), api_version=RESOURCE_GROUP_API)
    except requests.HTTPError as e:
        # 403 on HEAD means we cannot see it, which for our purposes is "missing"
        if e.response is not None and e.response.status_code == 403:
            return False
        raise
    return status != 404


def put_resource(client: AzureClient, resource_id: str, api_version: str, body: Dict[str, Any]) -> Dict[str, Any]:
    return client.put(resource_id, api_version=api_version, body=body)


def delete_resource(client: AzureClient, resource_id: str, api_version: str) -> int:
    return client.delete(resource_id, api_version=api_version)
