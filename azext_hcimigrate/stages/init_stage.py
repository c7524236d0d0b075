"""Initialize stage — provision replication infrastructure for a project.

Converges, in order:

1. replication vault
2. cache storage account
3. replication policy (immutable once created)
4. source fabric (project subscription) and target fabric (HCI subscription)
5. source and target DRAs
6. replication extension
7. the vault ID on the project's server-migration solution

Each resource is compared with what exists: missing resources are created,
drifted ones are updated, matching ones are left alone.  With ``dry_run``
the same comparison runs but nothing is written.
"""

import logging

from azext_hcimigrate import resource_ids
from azext_hcimigrate.controlplane.base import ControlPlane
from azext_hcimigrate.errors import NotFoundError, ValidationError
from azext_hcimigrate.models import InitializeConfig
from azext_hcimigrate.naming import MigrationNaming, check_name_length
from azext_hcimigrate.retry import RetryPolicy, call_with_retry
from azext_hcimigrate.stages.base import BaseStage, StageGuard
from azext_hcimigrate.stages.guards import stage_guards

logger = logging.getLogger(__name__)

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_NOOP = "no-op"


def is_subset(desired, observed) -> bool:
    """True when every value in *desired* is present and equal in *observed*."""
    if isinstance(desired, dict):
        if not isinstance(observed, dict):
            return False
        lowered = {str(k).lower(): v for k, v in observed.items()}
        return all(is_subset(v, lowered.get(str(k).lower())) for k, v in desired.items())
    if isinstance(desired, str) and isinstance(observed, str):
        if desired.lower().startswith("/subscriptions/"):
            return resource_ids.same_id(desired, observed)
        return desired == observed
    return desired == observed


class InitStage(BaseStage):
    """Provision the vault, policy, fabrics, DRAs and extension."""

    def __init__(self, project_dir: str = ".", backend: str = "arm", retry: RetryPolicy | None = None,
                 naming_overrides: dict | None = None):
        super().__init__(
            name="initialize",
            description="Provision replication infrastructure for a migrate project",
        )
        self.project_dir = project_dir
        self.backend = backend
        self.retry = retry or RetryPolicy()
        self.naming_overrides = naming_overrides or {}
        self.plan: list[dict] = []

    def get_guards(self) -> list[StageGuard]:
        return stage_guards(self.name, self.project_dir, self.backend)

    @property
    def changed(self) -> bool:
        return any(step["action"] != ACTION_NOOP for step in self.plan)

    def execute(self, control_plane: ControlPlane, config: InitializeConfig, dry_run: bool = False, **kwargs) -> dict:
        """Converge the replication infrastructure and return its resource IDs."""
        config.validate()
        self.plan = []

        project_id = config.project_id
        if not call_with_retry(lambda: control_plane.exists(project_id), self.retry, "Project lookup"):
            raise NotFoundError(
                "Migrate project", config.project_name,
                f"Create it in resource group '{config.resource_group_name}' and run discovery first.",
            )

        naming = MigrationNaming(project_id, config.project_name, self.naming_overrides)
        instance_type = config.instance_type
        source_type = instance_type.source_fabric_type
        target_type = instance_type.target_fabric_type
        solution = resource_ids.solution_id(project_id)
        tags = dict(config.tags)

        # 1. vault
        vault_name = check_name_length("replication_vault", naming.vault())
        vault_id = resource_ids.vault_id(config.subscription_id, config.resource_group_name, vault_name)
        self._ensure(control_plane, "Replication vault", vault_id, {
            "location": config.location,
            "tags": tags,
            "properties": {"vaultType": "Migrate"},
        }, dry_run)

        # 2. storage account
        storage_name = check_name_length("storage_account", naming.storage_account())
        storage_id = resource_ids.storage_account_id(config.subscription_id, config.resource_group_name, storage_name)
        self._ensure(control_plane, "Storage account", storage_id, {
            "location": config.location,
            "kind": "StorageV2",
            "sku": {"name": "Standard_LRS"},
            "tags": tags,
            "properties": {"allowBlobPublicAccess": False, "minimumTlsVersion": "TLS1_2"},
        }, dry_run)

        # 3. policy
        policy_name = naming.policy(vault_name, instance_type.value)
        policy_id = resource_ids.policy_id(vault_id, policy_name)
        self._ensure(control_plane, "Replication policy", policy_id, {
            "properties": {"customProperties": config.policy.to_arm(instance_type)},
        }, dry_run, immutable=True)

        # 4. fabrics
        source_fabric_name = naming.fabric(config.source_appliance_name, source_type)
        source_fabric_id = resource_ids.fabric_id(
            config.subscription_id, config.resource_group_name, source_fabric_name,
        )
        self._ensure(control_plane, "Source fabric", source_fabric_id, {
            "location": config.location,
            "tags": tags,
            "properties": {"customProperties": {
                "instanceType": f"{source_type}Migrate",
                "migrationSolutionId": solution,
                "applianceName": config.source_appliance_name,
            }},
        }, dry_run)

        target_fabric_name = naming.fabric(config.target_appliance_name, target_type)
        target_fabric_id = resource_ids.fabric_id(
            config.target_subscription_id, config.target_resource_group_name, target_fabric_name,
        )
        if config.target_subscription_id != config.subscription_id:
            logger.info("Target fabric goes to HCI subscription %s", config.target_subscription_id)
        self._ensure(control_plane, "Target fabric", target_fabric_id, {
            "location": config.location,
            "tags": tags,
            "properties": {"customProperties": {
                "instanceType": target_type,
                "migrationSolutionId": solution,
                "applianceName": config.target_appliance_name,
            }},
        }, dry_run)

        # 5. DRAs
        source_dra_id = resource_ids.dra_id(source_fabric_id, naming.dra(config.source_appliance_name))
        self._ensure(control_plane, "Source DRA", source_dra_id, {
            "properties": {
                "machineName": config.source_appliance_name,
                "customProperties": {"instanceType": f"{source_type}Migrate"},
            },
        }, dry_run)
        target_dra_id = resource_ids.dra_id(target_fabric_id, naming.dra(config.target_appliance_name))
        self._ensure(control_plane, "Target DRA", target_dra_id, {
            "properties": {
                "machineName": config.target_appliance_name,
                "customProperties": {"instanceType": target_type},
            },
        }, dry_run)

        # 6. extension
        extension_name = naming.extension(source_fabric_name, target_fabric_name)
        extension_id = resource_ids.extension_id(vault_id, extension_name)
        self._ensure(control_plane, "Replication extension", extension_id, {
            "properties": {"customProperties": {
                "instanceType": instance_type.value,
                f"{source_type[0].lower()}{source_type[1:]}FabricArmId": source_fabric_id,
                "azStackHciFabricArmId": target_fabric_id,
                "storageAccountId": storage_id,
            }},
        }, dry_run)

        # 7. record the vault on the project
        self._record_vault(control_plane, solution, vault_id, dry_run)

        if not self.changed:
            logger.info("No changes: replication infrastructure already up to date.")

        return {
            "replication_vault_id": vault_id,
            "storage_account_id": storage_id,
            "replication_policy_id": policy_id,
            "source_fabric_id": source_fabric_id,
            "target_fabric_id": target_fabric_id,
            "source_dra_id": source_dra_id,
            "target_dra_id": target_dra_id,
            "replication_extension_id": extension_id,
        }

    # ------------------------------------------------------------------
    # Convergence
    # ------------------------------------------------------------------

    def _ensure(self, control_plane: ControlPlane, label: str, resource_id: str, body: dict,
                dry_run: bool, immutable: bool = False) -> str:
        existing = call_with_retry(lambda: control_plane.find(resource_id), self.retry, f"{label} lookup")

        if existing is None:
            action = ACTION_CREATE
        elif self._matches(existing, body):
            action = ACTION_NOOP
        elif immutable:
            raise ValidationError(
                f"{label} '{resource_ids.name_from_id(resource_id)}' already exists with different settings "
                "and cannot be changed.\nRemove it or keep the existing settings."
            )
        else:
            action = ACTION_UPDATE

        self.plan.append({"action": action, "resource": label, "id": resource_id})
        if action != ACTION_NOOP and not dry_run:
            logger.info("%s %s", "Creating" if action == ACTION_CREATE else "Updating", resource_id)
            call_with_retry(lambda: control_plane.put(resource_id, body), self.retry, f"{label} {action}")
        return resource_id

    @staticmethod
    def _matches(existing: dict, body: dict) -> bool:
        if body.get("location") and str(existing.get("location", "")).lower() != body["location"].lower():
            return False
        if body.get("tags") and not is_subset(body["tags"], existing.get("tags") or {}):
            return False
        return is_subset(body.get("properties", {}), existing.get("properties") or {})

    def _record_vault(self, control_plane: ControlPlane, solution_id: str, vault_id: str, dry_run: bool) -> None:
        solution = call_with_retry(lambda: control_plane.find(solution_id), self.retry, "Solution lookup")
        properties = dict((solution or {}).get("properties") or {})
        details = dict(properties.get("details") or {})
        extended = dict(details.get("extendedDetails") or {})

        if resource_ids.same_id(extended.get("vaultId", ""), vault_id):
            self.plan.append({"action": ACTION_NOOP, "resource": "Migration solution", "id": solution_id})
            return

        extended["vaultId"] = vault_id
        details["extendedDetails"] = extended
        properties.update({"tool": "ServerMigration_DataReplication", "purpose": "Migration", "details": details})
        action = ACTION_UPDATE if solution else ACTION_CREATE
        self.plan.append({"action": action, "resource": "Migration solution", "id": solution_id})
        if not dry_run:
            call_with_retry(
                lambda: control_plane.put(solution_id, {"properties": properties}),
                self.retry, "Solution update",
            )
