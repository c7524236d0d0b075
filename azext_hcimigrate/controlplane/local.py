"""In-process control plane for rehearsal and tests.

Stores resources in a dict keyed by lower-cased resource ID, optionally
persisted to a YAML file so ``az hcimigrate`` invocations with
``controlplane.backend = local`` share state.  With a state file every
operation holds a file lock next to it and re-reads the file first, so
concurrent processes see each other's writes; the file is replaced
atomically.

The store mimics the parts of service behaviour the workflow depends on:

- PUT of a child resource requires its parent to exist.
- A new protected item starts in ``InitialReplicationInProgress`` with
  ``Normal`` health; :meth:`advance_replication` and :meth:`set_health`
  move it along the replication lifecycle.
- ``provisioningState`` is always ``Succeeded`` (no long-running operations).
"""

from __future__ import annotations

import copy
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

import yaml
from filelock import FileLock

from azext_hcimigrate import resource_ids
from azext_hcimigrate.controlplane.base import ControlPlane
from azext_hcimigrate.errors import NotFoundError, ValidationError
from azext_hcimigrate.state_machine import (
    ReplicationHealth,
    ReplicationLifecycle,
    ReplicationState,
    derive_state,
    parse_health,
)

logger = logging.getLogger(__name__)

_PROTECTED_ITEMS = "/protecteditems/"


class LocalControlPlane(ControlPlane):
    """Thread-safe dict-backed control plane.

    Args:
        state_path: Optional YAML file shared with other processes.  It is
            re-read before and rewritten after every operation.
    """

    name = "local"

    def __init__(self, state_path: str | Path | None = None):
        self._lock = threading.Lock()
        self._resources: dict[str, dict] = {}
        self._state_path = Path(state_path) if state_path else None
        self._file_lock = None
        if self._state_path:
            self._state_path.parent.mkdir(parents=True, exist_ok=True)
            self._file_lock = FileLock(f"{self._state_path}.lock")
            with self._file_lock:
                self._load()

    # ------------------------------------------------------------------
    # ControlPlane interface
    # ------------------------------------------------------------------

    def get(self, resource_id: str) -> dict:
        key = resource_ids.validate_resource_id(resource_id).lower()
        with self._locked():
            resource = self._resources.get(key)
            if resource is None:
                raise NotFoundError(resource_ids.kind_of(resource_id), resource_id)
            return copy.deepcopy(resource)

    def put(self, resource_id: str, body: dict) -> dict:
        resource_id = resource_ids.validate_resource_id(resource_id)
        key = resource_id.lower()
        parent = resource_ids.parent_id(resource_id)
        with self._locked():
            if parent and parent.lower() not in self._resources:
                raise NotFoundError(resource_ids.kind_of(parent), parent)

            existing = self._resources.get(key)
            properties = copy.deepcopy(body.get("properties") or {})
            properties["provisioningState"] = "Succeeded"

            if _PROTECTED_ITEMS in key:
                properties = self._protected_item_properties(existing, properties)

            resource = {
                "id": resource_id,
                "name": resource_ids.name_from_id(resource_id),
                "type": resource_ids.resource_type(resource_id),
                "properties": properties,
            }
            if body.get("location"):
                resource["location"] = body["location"]
            if body.get("tags"):
                resource["tags"] = dict(body["tags"])
            if body.get("kind"):
                resource["kind"] = body["kind"]

            self._resources[key] = resource
            self._save()
            logger.debug("%s %s", "Updated" if existing else "Created", resource_id)
            return copy.deepcopy(resource)

    def delete(self, resource_id: str) -> None:
        key = resource_ids.validate_resource_id(resource_id).lower()
        with self._locked():
            doomed = [k for k in self._resources if k == key or k.startswith(key + "/")]
            for k in doomed:
                del self._resources[k]
            if doomed:
                self._save()
                logger.debug("Deleted %s (%d resources)", resource_id, len(doomed))

    def list(self, collection_id: str) -> list[dict]:
        collection = collection_id.rstrip("/").lower()
        with self._locked():
            return [
                copy.deepcopy(resource)
                for key, resource in sorted(self._resources.items())
                if key.rsplit("/", 1)[0] == collection
            ]

    # ------------------------------------------------------------------
    # Seeding helpers (stand-ins for what the appliances discover)
    # ------------------------------------------------------------------

    def seed_project(self, subscription_id: str, resource_group: str, project_name: str,
                     location: str = "eastus") -> dict:
        project_id = resource_ids.migrate_project_id(subscription_id, resource_group, project_name)
        return self.put(project_id, {"location": location, "properties": {}})

    def seed_machine(self, project_id: str, machine_name: str, discovery_record: dict | None = None) -> dict:
        """Add a discovered machine to *project_id*."""
        record = {
            "machineId": resource_ids.machine_id(project_id, machine_name),
            "machineName": machine_name,
            "osType": "windowsguest",
            "osName": "Microsoft Windows Server 2019 (64-bit)",
            "ipAddresses": [],
            "bootType": "BIOS",
            "disks": [],
            "nics": [],
        }
        record.update(discovery_record or {})
        return self.put(
            resource_ids.machine_id(project_id, machine_name),
            {"properties": {"discoveryData": [record]}},
        )

    # ------------------------------------------------------------------
    # Replication simulation
    # ------------------------------------------------------------------

    def advance_replication(self, item_id: str, direct_to_protected: bool = False) -> ReplicationState:
        """Move a protected item one step along the replication lifecycle."""
        with self._locked():
            resource = self._protected_item(item_id)
            props = resource["properties"]
            lifecycle = self._lifecycle(props)
            if lifecycle.state == ReplicationState.INITIAL_REPLICATION_IN_PROGRESS:
                state = lifecycle.complete_initial_replication(direct_to_protected)
            else:
                state = lifecycle.confirm_protected()
            props["protectionState"] = state.value
            self._save()
            return state

    def set_health(self, item_id: str, health: ReplicationHealth | str, errors: list[dict] | None = None) -> ReplicationState:
        """Record a health reading; Protected and ProtectedCritical follow it."""
        with self._locked():
            resource = self._protected_item(item_id)
            props = resource["properties"]
            lifecycle = self._lifecycle(props)
            health = health if isinstance(health, ReplicationHealth) else parse_health(health)
            state = lifecycle.update_health(health, errors)
            props["protectionState"] = state.value
            props["replicationHealth"] = health.value
            props["healthErrors"] = lifecycle.health_errors
            self._save()
            return state

    def fail_replication(self, item_id: str, message: str = "Initial replication failed.") -> None:
        """Put a protected item into a failed protection state."""
        with self._locked():
            props = self._protected_item(item_id)["properties"]
            props["protectionState"] = "EnablingFailed"
            props["replicationHealth"] = ReplicationHealth.CRITICAL.value
            props["healthErrors"] = [{"errorCode": "ReplicationFailed", "message": message}]
            self._save()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _protected_item_properties(existing: dict | None, properties: dict) -> dict:
        if existing:
            # Service-owned fields survive a re-PUT.
            for field in ("protectionState", "replicationHealth", "healthErrors",
                          "lastSuccessfulPlannedFailoverTime", "lastSuccessfulTestFailoverTime"):
                if field in existing["properties"]:
                    properties[field] = existing["properties"][field]
            return properties
        properties["protectionState"] = ReplicationState.INITIAL_REPLICATION_IN_PROGRESS.value
        properties["replicationHealth"] = ReplicationHealth.NORMAL.value
        properties["healthErrors"] = []
        properties.setdefault("createdTime", datetime.now(timezone.utc).isoformat())
        return properties

    def _protected_item(self, item_id: str) -> dict:
        resource_ids.parse_protected_item_id(item_id)
        resource = self._resources.get(item_id.rstrip("/").lower())
        if resource is None:
            raise NotFoundError("Protected item", item_id)
        return resource

    @staticmethod
    def _lifecycle(props: dict) -> ReplicationLifecycle:
        health = parse_health(props.get("replicationHealth"))
        return ReplicationLifecycle(
            state=derive_state(props.get("protectionState"), health),
            health=health,
            health_errors=props.get("healthErrors"),
        )

    @contextmanager
    def _locked(self):
        """Hold the thread lock and, with a state file, the file lock over a fresh read."""
        with self._lock:
            if self._file_lock is None:
                yield
                return
            with self._file_lock:
                self._load()
                yield

    def _load(self) -> None:
        if not self._state_path.exists():
            self._resources = {}
            return
        try:
            with open(self._state_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ValidationError(f"Could not read local control-plane state {self._state_path}: {exc}") from exc
        self._resources = {r["id"].lower(): r for r in data.get("resources", [])}
        logger.debug("Loaded %d local resources from %s", len(self._resources), self._state_path)

    def _save(self) -> None:
        if not self._state_path:
            return
        data = {"resources": [self._resources[k] for k in sorted(self._resources)]}
        fd, tmp_path = tempfile.mkstemp(dir=self._state_path.parent, prefix=f".{self._state_path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, self._state_path)
        except Exception:
            Path(tmp_path).unlink(missing_ok=True)
            raise
