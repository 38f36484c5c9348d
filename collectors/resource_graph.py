from __future__ import annotations

import logging
from typing import Any

from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.resourcegraph.models import QueryRequest, QueryRequestOptions

from collectors.auth import get_credential

_log = logging.getLogger(__name__)


def query_resource_graph(query: str, subscriptions: list[str], *, top: int = 1000) -> list[dict[str, Any]]:
    """Run a Resource Graph query, following skip tokens."""
    client = ResourceGraphClient(get_credential())
    rows: list[dict[str, Any]] = []
    skip_token: str | None = None

    while True:
        options = QueryRequestOptions(result_format="objectArray", top=top)
        if skip_token:
            options.skip_token = skip_token
        response = client.resources(QueryRequest(subscriptions=subscriptions, query=query, options=options))
        page = response.data if isinstance(response.data, list) else []
        rows.extend(page)
        skip_token = getattr(response, "skip_token", None)
        if not skip_token or not page:
            break
    return rows


def find_test_resources(subscription_id: str, resource_group: str, name_prefix: str) -> list[dict[str, Any]]:
    """Leftover harness resources: those whose name starts with *name_prefix*.

    Teardown never retries, so a failed delete can strand a resource;
    this is how ``policyctl cleanup`` finds them again.
    """
    prefix = name_prefix.replace("'", "")
    rg = resource_group.replace("'", "")
    query = f"""
    Resources
    | where resourceGroup =~ '{rg}'
    | where name startswith '{prefix}'
    | project id, name, type, location, resourceGroup
    """
    rows = query_resource_graph(query, [subscription_id])
    _log.debug("Resource Graph found %d candidate test resource(s)", len(rows))
    return rows
