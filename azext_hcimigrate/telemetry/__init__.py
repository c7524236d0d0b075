"""Command usage events sent to Application Insights.

One ``hcimigrate_command`` event is posted per command with its name,
outcome, duration and a redacted copy of its parameters.  Nothing is
sent when:

* the Azure CLI telemetry switch is off (``az config set
  core.disable_telemetry=true``, the legacy ``core.collect_telemetry=no``,
  or ``AZURE_CORE_COLLECT_TELEMETRY=no``), or
* no connection string is available.  ``APPINSIGHTS_CONNECTION_STRING``
  wins over the one baked in at build time.

Sending is best effort: failures are logged at debug level and dropped.
"""

import configparser
import json
import logging
import os
import time
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import NamedTuple

import requests

logger = logging.getLogger(__name__)

EVENT_NAME = "hcimigrate_command"
SEND_TIMEOUT = 5
MAX_ERROR_LENGTH = 1024

_BUILTIN_CONNECTION_STRING = ""

# Parameters that carry subscription, resource or secret values.
REDACTED_PARAMETERS = frozenset({
    "subscription_id",
    "hci_subscription_id",
    "machine_id",
    "protected_item_id",
    "replication_vault_id",
    "target_hci_cluster_id",
    "target_resource_group_id",
    "target_storage_path_id",
    "disks",
    "nics",
    "value",
})

_FALSE_WORDS = ("no", "false", "0", "off")


class Ingestion(NamedTuple):
    endpoint: str
    instrumentation_key: str


_cache: dict = {}


def reset() -> None:
    """Forget cached opt-out and ingestion settings."""
    _cache.clear()


# ---------------------------------------------------------------
# Settings
# ---------------------------------------------------------------


def _cli_collects_telemetry() -> bool:
    value = os.environ.get("AZURE_CORE_COLLECT_TELEMETRY")
    if value is not None:
        return value.lower() not in _FALSE_WORDS

    try:
        from azure.cli.core._environment import get_config_dir
    except ImportError:
        return True

    parser = configparser.ConfigParser()
    try:
        parser.read(os.path.join(get_config_dir(), "config"))
        if parser.has_option("core", "disable_telemetry"):
            return not parser.getboolean("core", "disable_telemetry")
        if parser.has_option("core", "collect_telemetry"):
            return parser.getboolean("core", "collect_telemetry")
    except (configparser.Error, ValueError):
        logger.debug("Unreadable az config; leaving telemetry on", exc_info=True)
    return True


def parse_connection_string(value: str) -> Ingestion:
    """Split ``InstrumentationKey=...;IngestionEndpoint=...`` into an :class:`Ingestion`.

    Both keys are required; anything else yields empty fields.
    """
    fields = {}
    for part in (value or "").split(";"):
        key, sep, val = part.partition("=")
        if sep:
            fields[key.strip()] = val.strip()
    ikey = fields.get("InstrumentationKey", "")
    endpoint = fields.get("IngestionEndpoint", "").rstrip("/")
    if not (ikey and endpoint):
        return Ingestion("", "")
    return Ingestion(f"{endpoint}/v2/track", ikey)


def ingestion() -> Ingestion:
    if "ingestion" not in _cache:
        value = os.environ.get("APPINSIGHTS_CONNECTION_STRING") or _BUILTIN_CONNECTION_STRING
        _cache["ingestion"] = parse_connection_string(value)
    return _cache["ingestion"]


def is_enabled() -> bool:
    if "enabled" not in _cache:
        _cache["enabled"] = bool(ingestion().endpoint) and _cli_collects_telemetry()
    return _cache["enabled"]


# ---------------------------------------------------------------
# Event contents
# ---------------------------------------------------------------


def extension_version() -> str:
    try:
        from importlib.metadata import PackageNotFoundError, version

        return version("az-hcimigrate")
    except PackageNotFoundError:
        pass
    metadata = Path(__file__).resolve().parent.parent / "azext_metadata.json"
    try:
        return json.loads(metadata.read_text(encoding="utf-8")).get("version", "unknown")
    except (OSError, ValueError):
        return "unknown"


def _tenant_of(cmd) -> str:
    try:
        from azure.cli.core._profile import Profile

        return Profile(cli_ctx=cmd.cli_ctx).get_subscription().get("tenantId", "")
    except Exception:  # not logged in, no azure-cli-core, mocked cmd
        return ""


def redact(parameters: dict) -> dict:
    """Copy *parameters* keeping only scalars, with resource IDs masked."""
    result = {}
    for name, value in parameters.items():
        if name.startswith("_"):
            continue
        if name in REDACTED_PARAMETERS:
            result[name] = "***" if value not in (None, "") else value
        elif value is None or isinstance(value, (bool, int, float, str)):
            result[name] = value
        else:
            result[name] = type(value).__name__
    return result


def build_event(command_name: str, ikey: str, dimensions: dict) -> dict:
    """Wrap *dimensions* in an Application Insights EventData envelope."""
    now = datetime.now(timezone.utc).isoformat()
    return {
        "name": "Microsoft.ApplicationInsights.Event",
        "time": now,
        "iKey": ikey,
        "tags": {"ai.cloud.role": "az-hcimigrate"},
        "data": {
            "baseType": "EventData",
            "baseData": {
                "ver": 2,
                "name": EVENT_NAME,
                "properties": {"commandName": command_name, **dimensions},
            },
        },
    }


def _post(event: dict, endpoint: str) -> bool:
    try:
        resp = requests.post(endpoint, json=[event], timeout=SEND_TIMEOUT)
    except (requests.RequestException, OSError):
        logger.debug("Telemetry post failed", exc_info=True)
        return False
    return resp.status_code == 200


# ---------------------------------------------------------------
# Public API
# ---------------------------------------------------------------


def track_command(
    command_name: str,
    *,
    cmd=None,
    success: bool = True,
    error: str = "",
    parameters: dict | None = None,
    duration_ms: int | None = None,
    tenant_id: str = "",
) -> bool:
    """Send one command event.  Returns whether it was accepted."""
    if not is_enabled():
        return False

    parameters = parameters or {}
    dimensions = {
        "success": "true" if success else "false",
        "extensionVersion": extension_version(),
        "tenantId": tenant_id or (_tenant_of(cmd) if cmd is not None else ""),
        "instanceType": str(parameters.get("instance_type") or ""),
        "location": str(parameters.get("location") or ""),
        "parameters": json.dumps(redact(parameters), sort_keys=True),
    }
    if duration_ms is not None:
        dimensions["durationMs"] = str(duration_ms)
    if error:
        dimensions["error"] = error[:MAX_ERROR_LENGTH]

    settings = ingestion()
    return _post(build_event(command_name, settings.instrumentation_key, dimensions), settings.endpoint)


def track(command_name: str):
    """Decorate an ``hcimigrate_*`` handler so every call is reported.

    The handler's exception, if any, is re-raised unchanged after the
    event is recorded.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(cmd, *args, **kwargs):
            started = time.monotonic()
            error = ""
            try:
                return func(cmd, *args, **kwargs)
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
                raise
            finally:
                try:
                    track_command(
                        command_name,
                        cmd=cmd,
                        success=not error,
                        error=error,
                        parameters=kwargs,
                        duration_ms=int((time.monotonic() - started) * 1000),
                    )
                except Exception:  # telemetry must never fail a command
                    logger.debug("Telemetry dropped for %s", command_name, exc_info=True)

        return wrapper

    return decorator
