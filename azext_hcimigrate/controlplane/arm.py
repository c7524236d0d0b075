"""Azure Resource Manager control plane.

Talks to ``management.azure.com`` with ``requests``.  The bearer token comes
from the Azure CLI the extension is running under
(``az account get-access-token``), so no separate login is needed.

HTTP failures are mapped onto the extension's error taxonomy:

- 401 → one retry with a fresh token, then :class:`MigrateError`
- 404 → :class:`NotFoundError`
- 400 / 409 / 422 → :class:`ValidationError`
- 408 / 429 / 5xx, timeouts and connection errors → :class:`TransientError`

PUT and DELETE follow ``Azure-AsyncOperation`` / ``Location`` headers and
poll until the operation settles or the poll budget runs out.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import sys
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

import requests

from azext_hcimigrate import resource_ids
from azext_hcimigrate.controlplane.base import ControlPlane
from azext_hcimigrate.errors import MigrateError, NotFoundError, TransientError, ValidationError

logger = logging.getLogger(__name__)

ARM_ENDPOINT = "https://management.azure.com"
ARM_RESOURCE = "https://management.azure.com/"

API_VERSIONS = {
    resource_ids.DATA_REPLICATION.lower(): "2021-02-16-preview",
    resource_ids.MIGRATE.lower(): "2020-05-01",
    resource_ids.STORAGE.lower(): "2023-01-01",
}
DEFAULT_API_VERSION = "2021-04-01"

_TERMINAL_STATES = ("succeeded", "failed", "canceled", "cancelled")
_VALIDATION_STATUSES = (400, 409, 422)
_TRANSIENT_STATUSES = (408, 429)

# tokens this close to expiry are refreshed before use
TOKEN_REFRESH_SKEW = timedelta(minutes=5)


# ======================================================================
# Azure CLI helpers
# ======================================================================

def _find_az() -> str:
    """Resolve the ``az`` CLI executable path.

    The subprocess PATH inside an extension may not include the directory
    ``az`` was installed into, so fall back to the interpreter's ``bin/``
    directory before trying the bare name.
    """
    found = shutil.which("az")
    if found:
        return found

    bin_dir = os.path.dirname(sys.executable)
    candidate = os.path.join(bin_dir, "az")
    if os.path.isfile(candidate):
        return candidate
    # Windows variant
    if os.path.isfile(candidate + ".cmd"):
        return candidate + ".cmd"

    return "az"


_AZ: str | None = None


def _az() -> str:
    """Return the cached az CLI path."""
    global _AZ
    if _AZ is None:
        _AZ = _find_az()
    return _AZ


def get_current_subscription() -> str:
    """Get the currently active Azure subscription ID."""
    try:
        result = subprocess.run(
            [_az(), "account", "show", "--query", "id", "-o", "tsv"],
            capture_output=True, text=True, check=True,
        )
        return result.stdout.strip()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return ""


def get_access_token(subscription_id: str | None = None) -> tuple[str, datetime | None]:
    """Fetch an ARM access token from the Azure CLI.

    Returns ``(token, expires_on)``.
    """
    cmd = [_az(), "account", "get-access-token", "--resource", ARM_RESOURCE, "-o", "json"]
    if subscription_id:
        cmd += ["--subscription", subscription_id]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except FileNotFoundError:
        raise MigrateError(
            "Azure CLI (az) not found on PATH.\n"
            "Install it from https://aka.ms/installazurecli and run 'az login'."
        ) from None
    if result.returncode != 0:
        raise MigrateError(
            f"Could not get an Azure access token: {result.stderr.strip() or 'az exited non-zero'}\n"
            "Run 'az login' and try again."
        )
    try:
        data = json.loads(result.stdout)
    except ValueError as exc:
        raise MigrateError("Azure CLI returned an unreadable access token response.") from exc

    expires_on = None
    if data.get("expires_on"):
        expires_on = datetime.fromtimestamp(int(data["expires_on"]), tz=timezone.utc)
    return data["accessToken"], expires_on


def api_version_for(resource_id: str) -> str:
    """Pick the api-version from the last provider namespace in *resource_id*."""
    parts = resource_id.strip("/").split("/")
    lowered = [p.lower() for p in parts]
    if "providers" not in lowered:
        return DEFAULT_API_VERSION
    at = len(lowered) - 1 - lowered[::-1].index("providers")
    namespace = lowered[at + 1] if at + 1 < len(lowered) else ""
    return API_VERSIONS.get(namespace, DEFAULT_API_VERSION)


def _error_message(resp: requests.Response) -> str:
    try:
        error = resp.json().get("error", {})
        code, message = error.get("code", ""), error.get("message", "")
        if code or message:
            return f"{code}: {message}" if code else message
    except ValueError:
        pass
    return (resp.text or "")[:500]


# ======================================================================
# Control plane
# ======================================================================


class ArmControlPlane(ControlPlane):
    """ARM REST adapter.

    Args:
        session: Optional :class:`requests.Session` (tests pass a mock).
        token_provider: Callable returning ``(token, expires_on)``.
        timeout: Per-request timeout in seconds.
        poll_interval: Seconds between long-running-operation polls.
        max_polls: Poll budget before giving up with :class:`TransientError`.
    """

    name = "arm"

    def __init__(
        self,
        session: requests.Session | None = None,
        token_provider: Callable[[], tuple[str, datetime | None]] | None = None,
        timeout: int = 60,
        poll_interval: float = 10.0,
        max_polls: int = 60,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session = session or requests.Session()
        self._token_provider = token_provider or get_access_token
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._sleep = sleep
        self._token: str | None = None
        self._expires_on: datetime | None = None

    # ------------------------------------------------------------------
    # ControlPlane interface
    # ------------------------------------------------------------------

    def get(self, resource_id: str) -> dict:
        resource_id = resource_ids.validate_resource_id(resource_id)
        resp = self._request("GET", self._url(resource_id), resource_id=resource_id)
        return resp.json()

    def put(self, resource_id: str, body: dict) -> dict:
        resource_id = resource_ids.validate_resource_id(resource_id)
        resp = self._request("PUT", self._url(resource_id), json=body, resource_id=resource_id)
        if resp.status_code in (201, 202) or self._provisioning(resp) not in ("", "succeeded"):
            self._wait(resp, resource_id)
            return self.get(resource_id)
        return resp.json() if resp.content else self.get(resource_id)

    def delete(self, resource_id: str) -> None:
        resource_id = resource_ids.validate_resource_id(resource_id)
        try:
            resp = self._request("DELETE", self._url(resource_id), resource_id=resource_id)
        except NotFoundError:
            logger.debug("Delete of %s: already gone", resource_id)
            return
        if resp.status_code == 202:
            self._wait(resp, resource_id)

    def list(self, collection_id: str) -> list[dict]:
        collection_id = resource_ids.validate_resource_id(collection_id, "Collection")
        url = self._url(collection_id)
        items: list[dict] = []
        while url:
            resp = self._request("GET", url, resource_id=collection_id)
            page = resp.json()
            items.extend(page.get("value", []))
            url = page.get("nextLink")
        return items

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _url(self, resource_id: str) -> str:
        return f"{ARM_ENDPOINT}{resource_id}?api-version={api_version_for(resource_id)}"

    def _headers(self) -> dict:
        now = datetime.now(timezone.utc)
        if not self._token or (self._expires_on and self._expires_on - TOKEN_REFRESH_SKEW <= now):
            self._token, self._expires_on = self._token_provider()
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _send(self, method: str, url: str, resource_id: str, **kwargs) -> requests.Response:
        logger.debug("ARM %s %s", method, url)
        try:
            return self._session.request(method, url, headers=self._headers(), timeout=self._timeout, **kwargs)
        except requests.Timeout:
            raise TransientError(f"ARM request timed out after {self._timeout}s: {method} {resource_id}") from None
        except requests.ConnectionError as exc:
            raise TransientError(f"Failed to reach Azure Resource Manager: {exc}") from exc

    def _request(self, method: str, url: str, resource_id: str = "", **kwargs) -> requests.Response:
        resp = self._send(method, url, resource_id, **kwargs)
        if resp.status_code == 401:
            logger.debug("ARM rejected the access token; fetching a new one")
            self._token = None
            resp = self._send(method, url, resource_id, **kwargs)

        status = resp.status_code
        if status < 400:
            return resp
        message = _error_message(resp)
        if status == 401:
            raise MigrateError(
                f"Azure rejected the access token for {method} {resource_id}: {message}\n"
                "Run 'az login' and try again."
            )
        if status == 404:
            raise NotFoundError(resource_ids.kind_of(resource_id) if resource_id else "Resource",
                                resource_id or url, message)
        if status in _VALIDATION_STATUSES:
            raise ValidationError(f"Azure rejected {method} {resource_id} (HTTP {status}): {message}")
        if status in _TRANSIENT_STATUSES or status >= 500:
            raise TransientError(f"Azure returned HTTP {status} for {method} {resource_id}: {message}")
        raise MigrateError(f"Azure returned HTTP {status} for {method} {resource_id}: {message}")

    @staticmethod
    def _provisioning(resp: requests.Response) -> str:
        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            return ""
        return str((body.get("properties") or {}).get("provisioningState", "")).lower()

    def _retry_after(self, resp: requests.Response) -> float:
        """Seconds from a numeric ``Retry-After``; anything else (e.g. an HTTP-date) uses the poll interval."""
        try:
            return max(0.0, float(resp.headers.get("Retry-After", self._poll_interval)))
        except (TypeError, ValueError):
            return self._poll_interval

    def _wait(self, resp: requests.Response, resource_id: str) -> None:
        """Poll a long-running operation until it reaches a terminal state."""
        monitor = resp.headers.get("Azure-AsyncOperation") or resp.headers.get("Location")
        last = resp
        for _ in range(self._max_polls):
            self._sleep(self._retry_after(last))
            if monitor:
                poll = last = self._request("GET", monitor, resource_id=resource_id)
                if poll.status_code == 202:
                    continue
                body = poll.json() if poll.content else {}
                status = str(body.get("status") or "succeeded").lower()
            else:
                try:
                    status = str(self.get(resource_id).get("properties", {}).get("provisioningState", "")).lower()
                except NotFoundError:
                    status = "succeeded"
                body = {}
            if status in _TERMINAL_STATES:
                if status != "succeeded":
                    error = body.get("error", {}).get("message", "") if isinstance(body.get("error"), dict) else ""
                    raise MigrateError(f"Operation on {resource_id} finished with status '{status}'. {error}".strip())
                return
        raise TransientError(f"timeout while waiting for operation on {resource_id} to complete.")
