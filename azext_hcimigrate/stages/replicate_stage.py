"""Replicate stage — protect a discovered machine into AzStackHCI.

Steps:

1. validate the typed configuration (nothing is created on failure)
2. resolve the source machine
3. resolve the replication vault, explicitly or through the project's
   server-migration solution
4. find the policy and extension ``az hcimigrate init`` created, or the
   ones named explicitly
5. create the protected item, or leave it alone when an identical one
   already exists
6. wait until the service reports a first protection state
"""

import logging

from azext_hcimigrate import resource_ids
from azext_hcimigrate.controlplane.base import ControlPlane
from azext_hcimigrate.errors import NotFoundError, ReplicationFailedError, TransientError, ValidationError
from azext_hcimigrate.models import InstanceType, ReplicateConfig
from azext_hcimigrate.retry import RetryPolicy, call_with_retry
from azext_hcimigrate.stages.base import BaseStage, StageGuard
from azext_hcimigrate.stages.guards import stage_guards
from azext_hcimigrate.stages.init_stage import is_subset
from azext_hcimigrate.state_machine import ReplicationState, derive_state, is_failed_state

logger = logging.getLogger(__name__)

_INIT_HINT = "Run 'az hcimigrate init' for this project first."


def recorded_vault_id(control_plane: ControlPlane, project_id: str, retry: RetryPolicy | None = None) -> str:
    """The vault ``init`` recorded on the project's migration solution, or ``""``."""
    solution_id = resource_ids.solution_id(project_id)
    solution = call_with_retry(lambda: control_plane.find(solution_id), retry, "Solution lookup")
    return (
        ((solution or {}).get("properties") or {})
        .get("details", {})
        .get("extendedDetails", {})
        .get("vaultId", "")
    )


def resolve_vault_id(control_plane: ControlPlane, project_id: str, retry: RetryPolicy | None = None) -> str:
    """Return the replication vault recorded on the project's migration solution."""
    vault_id = recorded_vault_id(control_plane, project_id, retry)
    if not vault_id:
        raise NotFoundError(
            "Replication vault", f"for project {resource_ids.name_from_id(project_id)}", _INIT_HINT,
        )
    return vault_id


def raise_if_failed(item_id: str, properties: dict) -> None:
    """Raise :class:`ReplicationFailedError` when *properties* report a failed protection state."""
    raw = properties.get("protectionState")
    if not is_failed_state(raw):
        return
    errors = "; ".join(e.get("message", "") for e in properties.get("healthErrors") or [])
    raise ReplicationFailedError(
        f"Replication of '{resource_ids.name_from_id(item_id)}' failed ({raw})."
        + (f" {errors}" if errors else "")
        + "\nRemove the protected item, fix the cause and replicate again."
    )


def _find_for_instance_type(resources: list[dict], instance_type: InstanceType) -> dict | None:
    for resource in resources:
        custom = (resource.get("properties") or {}).get("customProperties") or {}
        if str(custom.get("instanceType", "")).lower() == instance_type.value.lower():
            return resource
    return None


def build_protected_item(config: ReplicateConfig, machine: dict, policy_name: str, extension_name: str) -> dict:
    """ARM body for a protected item."""
    vm = config.target_vm
    record = ((machine.get("properties") or {}).get("discoveryData") or [{}])[0]
    custom = {
        "instanceType": config.instance_type.value,
        "fabricDiscoveryMachineId": machine.get("id") or config.machine_resource_id,
        "sourceMachineName": record.get("machineName") or machine.get("name", ""),
        "targetHciClusterId": config.target_hci_cluster_id,
        "targetResourceGroupId": config.target_resource_group_id,
        "storageContainerId": config.target_storage_path_id,
        "targetVmName": vm.name,
        "hyperVGeneration": vm.hyperv_generation,
        "targetCpuCores": int(vm.cpu_cores),
        "targetMemoryInMegaBytes": int(vm.ram_mb),
        "isDynamicRam": bool(vm.is_dynamic_memory_enabled),
        "disksToInclude": [d.to_arm() for d in config.disks],
        "nicsToInclude": [n.to_arm() for n in config.nics],
    }
    if vm.is_dynamic_memory_enabled and vm.dynamic_memory:
        custom["dynamicMemoryConfig"] = vm.dynamic_memory.to_arm()
    return {
        "properties": {
            "policyName": policy_name,
            "replicationExtensionName": extension_name,
            "customProperties": custom,
        },
    }


class ReplicateStage(BaseStage):
    """Create (or confirm) the protected item for one machine."""

    def __init__(self, project_dir: str = ".", backend: str = "arm", retry: RetryPolicy | None = None):
        super().__init__(
            name="replicate",
            description="Start replication of a discovered machine to AzStackHCI",
        )
        self.project_dir = project_dir
        self.backend = backend
        self.retry = retry or RetryPolicy()
        self.created = False

    def get_guards(self) -> list[StageGuard]:
        return stage_guards(self.name, self.project_dir, self.backend)

    def execute(self, control_plane: ControlPlane, config: ReplicateConfig, **kwargs) -> dict:
        """Return ``protected_item_id``, ``replication_state`` and ``target_vm_name``."""
        config.validate()
        self.created = False

        machine = self._resolve_machine(control_plane, config)
        vault_id = self._resolve_vault(control_plane, config)

        policy = self._resolve_child(
            control_plane, vault_id, "replicationPolicies", "Replication policy", config.policy_name, config,
        )
        extension = self._resolve_child(
            control_plane, vault_id, "replicationExtensions", "Replication extension",
            config.replication_extension_name, config,
        )

        item_name = resource_ids.name_from_id(machine.get("id") or config.machine_resource_id)
        item_id = resource_ids.protected_item_id(vault_id, item_name)
        body = build_protected_item(config, machine, policy["name"], extension["name"])

        existing = call_with_retry(lambda: control_plane.find(item_id), self.retry, "Protected item lookup")
        if existing is not None:
            props = existing.get("properties") or {}
            if not is_subset(body["properties"]["customProperties"], props.get("customProperties") or {}):
                raise ValidationError(
                    f"Protected item '{item_name}' already exists with a different configuration.\n"
                    f"Remove it with 'az hcimigrate remove --protected-item-id {item_id}' and replicate again."
                )
            raise_if_failed(item_id, props)
            logger.info("No changes: protected item %s already exists.", item_name)
            state = derive_state(props.get("protectionState"), props.get("replicationHealth"))
        else:
            logger.info("Creating protected item %s", item_id)
            call_with_retry(lambda: control_plane.put(item_id, body), self.retry, "Protected item create")
            self.created = True
            state = self._wait_for_state(control_plane, item_id)

        return {
            "protected_item_id": item_id,
            "replication_state": state.value,
            "target_vm_name": config.target_vm.name,
        }

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _resolve_machine(self, control_plane: ControlPlane, config: ReplicateConfig) -> dict:
        machine_id = config.machine_resource_id
        try:
            return call_with_retry(lambda: control_plane.get(machine_id), self.retry, "Machine lookup")
        except NotFoundError:
            raise NotFoundError(
                "Machine", config.machine.describe(),
                "Run 'az hcimigrate discover' to list the machines the project has found.",
            ) from None

    def _resolve_vault(self, control_plane: ControlPlane, config: ReplicateConfig) -> str:
        if not config.replication_vault_id:
            vault_id = resolve_vault_id(control_plane, config.project_id, self.retry)
        else:
            vault_id = config.replication_vault_id
            recorded = recorded_vault_id(control_plane, config.project_id, self.retry)
            if recorded and not resource_ids.same_id(recorded, vault_id):
                raise ValidationError(
                    f"Replication vault {vault_id} does not belong to project "
                    f"'{resource_ids.name_from_id(config.project_id)}', which replicates into {recorded}."
                )
        try:
            call_with_retry(lambda: control_plane.get(vault_id), self.retry, "Vault lookup")
        except NotFoundError:
            raise NotFoundError("Replication vault", vault_id, _INIT_HINT) from None
        return vault_id

    def _resolve_child(self, control_plane: ControlPlane, vault_id: str, collection: str, label: str,
                       name: str, config: ReplicateConfig) -> dict:
        """Find a policy or extension by explicit *name*, else by instance type."""
        if not name:
            resources = call_with_retry(
                lambda: control_plane.list(f"{vault_id}/{collection}"), self.retry, f"{label} lookup",
            )
            resource = _find_for_instance_type(resources, config.instance_type)
            if resource is None:
                raise NotFoundError(label, f"{config.instance_type.value} in {vault_id}", _INIT_HINT)
            return resource

        resource_id = f"{vault_id}/{collection}/{name}"
        try:
            resource = call_with_retry(lambda: control_plane.get(resource_id), self.retry, f"{label} lookup")
        except NotFoundError:
            raise NotFoundError(label, resource_id, _INIT_HINT) from None
        if _find_for_instance_type([resource], config.instance_type) is None:
            raise ValidationError(f"{label} '{name}' is not for instance type {config.instance_type.value}.")
        return resource

    def _wait_for_state(self, control_plane: ControlPlane, item_id: str) -> ReplicationState:
        """Poll until the item reports a protection state.

        A failed state raises :class:`ReplicationFailedError`; no state after
        the retry budget raises :class:`TransientError`.
        """
        def poll() -> ReplicationState:
            props = control_plane.get(item_id).get("properties") or {}
            raise_if_failed(item_id, props)
            raw = props.get("protectionState")
            if not raw:
                raise TransientError(f"timeout while waiting for protection state of {item_id}")
            return derive_state(raw, props.get("replicationHealth"))

        return call_with_retry(poll, self.retry, "Protection state poll")


def remove_protected_item(control_plane: ControlPlane, item_id: str, retry: RetryPolicy | None = None) -> dict:
    """Stop replication and delete the protected item.

    Removal is terminal; the item has to be replicated again from scratch.
    Returns the item as it was before deletion.
    """
    resource_ids.parse_protected_item_id(item_id)
    item = call_with_retry(lambda: control_plane.get(item_id), retry, "Protected item lookup")
    logger.info("Removing protected item %s", item_id)
    call_with_retry(lambda: control_plane.delete(item_id), retry, "Protected item delete")
    return item
