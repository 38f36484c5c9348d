# collectors/azure_client.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from azure.core.credentials import TokenCredential

from collectors.auth import get_credential

ARM = "https://management.azure.com"

THROTTLE_CODES = (429, 500, 502, 503, 504)

_log = logging.getLogger(__name__)


def _json_or_empty(r: requests.Response) -> Dict[str, Any]:
    # triggerEvaluation, deletes and async PUTs answer 202/204 with no body
    if not r.content:
        return {}
    try:
        return r.json()
    except ValueError:
        return {}


def arm_error_code(exc: BaseException) -> str | None:
    """Extract the ARM ``error.code`` from an HTTPError, if present.

    Policy denials arrive either as the top-level code or nested in
    ``error.details`` (e.g. behind an ``InvalidTemplateDeployment``).
    """
    response = getattr(exc, "response", None)
    if response is None:
        return None
    try:
        body = response.json()
    except ValueError:
        return None
    err = (body or {}).get("error") or {}
    code = err.get("code")
    for detail in err.get("details", []) or []:
        if detail.get("code") == "RequestDisallowedByPolicy":
            return "RequestDisallowedByPolicy"
    return code


def arm_error_message(exc: BaseException) -> str:
    response = getattr(exc, "response", None)
    if response is not None:
        try:
            err = (response.json() or {}).get("error") or {}
            if err.get("message"):
                return str(err["message"])
        except ValueError:
            pass
    return str(exc)


@dataclass
class AzureClient:
    credential: TokenCredential
    subscription_id: Optional[str] = None
    max_attempts: int = 5
    timeout: int = 60
    _token: Optional[str] = None
    _token_expires: float = 0.0

    def token(self) -> str:
        now = time.time()
        if self._token and now < self._token_expires - 60:
            return self._token
        access_token = self.credential.get_token(f"{ARM}/.default")
        self._token = access_token.token
        self._token_expires = access_token.expires_on
        return self._token

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token()}", "Content-Type": "application/json"}

    def _read(self, method: str, path: str, api_version: str,
              params: Optional[Dict[str, Any]] = None, body: Optional[Dict[str, Any]] = None,
              retry: bool = True) -> requests.Response:
        url = f"{ARM}{path}"
        qp = {"api-version": api_version}
        if params:
            qp.update(params)

        # simple retry for throttles, reads only
        attempts = max(1, self.max_attempts) if retry else 1
        for attempt in range(attempts):
            r = requests.request(method, url, headers=self._headers(), params=qp, json=body, timeout=self.timeout)
            if r.status_code in THROTTLE_CODES and attempt < attempts - 1:
                _log.debug("%s %s throttled (HTTP %s), attempt %d", method, path, r.status_code, attempt + 1)
                time.sleep(1.5 * (attempt + 1))
                continue
            break
        r.raise_for_status()
        return r

    def get(self, path: str, api_version: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return _json_or_empty(self._read("GET", path, api_version, params=params))

    def post(self, path: str, api_version: str, body: Optional[Dict[str, Any]] = None,
             params: Optional[Dict[str, Any]] = None, *, retry: bool = True) -> Dict[str, Any]:
        """POST; *retry*=False for actions that must not be repeated (triggerEvaluation)."""
        return _json_or_empty(self._read("POST", path, api_version, params=params, body=body or {}, retry=retry))

    def head(self, path: str, api_version: str) -> int:
        """Status code of a HEAD request; 404 is not raised."""
        r = requests.head(f"{ARM}{path}", headers=self._headers(),
                          params={"api-version": api_version}, timeout=self.timeout)
        if r.status_code != 404:
            r.raise_for_status()
        return r.status_code

    # Mutations are single-shot: a throttled or failed write surfaces to the caller.

    def put(self, path: str, api_version: str, body: Dict[str, Any]) -> Dict[str, Any]:
        r = requests.put(f"{ARM}{path}", headers=self._headers(),
                         params={"api-version": api_version}, json=body, timeout=self.timeout)
        r.raise_for_status()
        return _json_or_empty(r)

    def delete(self, path: str, api_version: str) -> int:
        r = requests.delete(f"{ARM}{path}", headers=self._headers(),
                            params={"api-version": api_version}, timeout=self.timeout)
        r.raise_for_status()
        return r.status_code


def build_client(subscription_id: Optional[str] = None, credential: Optional[TokenCredential] = None,
                 *, max_attempts: int = 5) -> AzureClient:
    cred = credential or get_credential()
    return AzureClient(credential=cred, subscription_id=subscription_id, max_attempts=max_attempts)
