"""Query layer — read-only views of protected items.

``get_protected_item`` resolves one item by ID, by name within a project,
or by name within a vault.  ``list_protected_items`` enumerates a vault
and groups the result by state and health.  Both return dicts keyed by the
``protected_item*`` / ``protected_items*`` output names.
"""

import logging
from collections import defaultdict

from azext_hcimigrate import resource_ids
from azext_hcimigrate.controlplane.base import ControlPlane
from azext_hcimigrate.errors import NotFoundError, ValidationError
from azext_hcimigrate.models import InstanceType, parse_instance_type
from azext_hcimigrate.retry import RetryPolicy, call_with_retry
from azext_hcimigrate.stages.replicate_stage import resolve_vault_id
from azext_hcimigrate.state_machine import derive_state, is_failed_state, parse_health

logger = logging.getLogger(__name__)


# ======================================================================
# Projections
# ======================================================================


def summarize(item: dict) -> dict:
    """Short status view of one protected item.

    ``failed`` is set when the service reports a failed protection attempt;
    ``service_state`` keeps the raw value it reported.
    """
    props = item.get("properties") or {}
    health = parse_health(props.get("replicationHealth"))
    raw_state = props.get("protectionState")
    return {
        "name": item.get("name", ""),
        "protection_state": derive_state(raw_state, health).value,
        "service_state": raw_state or "",
        "failed": is_failed_state(raw_state),
        "replication_health": health.value,
        "last_successful_failover_time": (
            props.get("lastSuccessfulPlannedFailoverTime")
            or props.get("lastSuccessfulUnplannedFailoverTime")
            or ""
        ),
        "last_successful_test_failover_time": props.get("lastSuccessfulTestFailoverTime") or "",
    }


def health_errors(item: dict) -> list[dict]:
    return list((item.get("properties") or {}).get("healthErrors") or [])


def custom_properties(item: dict) -> dict:
    """Instance-type specific properties, with the common fields first."""
    custom = (item.get("properties") or {}).get("customProperties") or {}
    result = {
        "instanceType": custom.get("instanceType", ""),
        "sourceMachineName": custom.get("sourceMachineName", ""),
        "targetVmName": custom.get("targetVmName", ""),
        "targetResourceGroupId": custom.get("targetResourceGroupId", ""),
        "targetHCIClusterId": custom.get("targetHciClusterId", ""),
    }
    for key in ("targetCpuCores", "targetMemoryInMegaBytes", "isDynamicRam", "storageContainerId"):
        if key in custom:
            result[key] = custom[key]
    if str(custom.get("instanceType", "")).lower() == InstanceType.HYPERV_TO_AZSTACKHCI.value.lower():
        result["hyperVGeneration"] = custom.get("hyperVGeneration", "")
    else:
        result["fabricDiscoveryMachineId"] = custom.get("fabricDiscoveryMachineId", "")
    return result


# ======================================================================
# Get
# ======================================================================


def resolve_protected_item_id(
    control_plane: ControlPlane,
    protected_item_id: str | None = None,
    protected_item_name: str | None = None,
    replication_vault_id: str | None = None,
    project_name: str | None = None,
    subscription_id: str | None = None,
    resource_group_name: str | None = None,
    retry: RetryPolicy | None = None,
) -> str:
    """Turn any of the three ways of naming an item into its resource ID."""
    if protected_item_id:
        try:
            resource_ids.parse_protected_item_id(protected_item_id)
        except ValidationError:
            raise NotFoundError(
                "Protected item", protected_item_id,
                "Expected /subscriptions/{sub}/resourceGroups/{rg}/providers/"
                "Microsoft.DataReplication/replicationVaults/{vault}/protectedItems/{item}",
            ) from None
        return protected_item_id.rstrip("/")

    if not protected_item_name:
        raise ValidationError("Provide --protected-item-id, or --name with --vault-id or --project-name.")

    if replication_vault_id:
        resource_ids.parse_vault_id(replication_vault_id)
        return resource_ids.protected_item_id(replication_vault_id.rstrip("/"), protected_item_name)

    vault_id = _vault_for_project(control_plane, project_name, subscription_id, resource_group_name, retry)
    return resource_ids.protected_item_id(vault_id, protected_item_name)


def get_protected_item(control_plane: ControlPlane, retry: RetryPolicy | None = None, **reference) -> dict:
    """Return the ``protected_item*`` outputs for one item.

    Raises:
        NotFoundError: The item (or the vault/project it lives in) does not exist.
    """
    item_id = resolve_protected_item_id(control_plane, retry=retry, **reference)
    try:
        item = call_with_retry(lambda: control_plane.get(item_id), retry, "Protected item lookup")
    except NotFoundError:
        raise NotFoundError("Protected item", item_id) from None

    return {
        "protected_item": item,
        "protected_item_summary": summarize(item),
        "protected_item_health_errors": health_errors(item),
        "protected_item_custom_properties": custom_properties(item),
    }


# ======================================================================
# List
# ======================================================================


def list_protected_items(
    control_plane: ControlPlane,
    replication_vault_id: str | None = None,
    project_name: str | None = None,
    subscription_id: str | None = None,
    resource_group_name: str | None = None,
    instance_type: str | None = None,
    retry: RetryPolicy | None = None,
) -> dict:
    """Return the ``protected_items*`` outputs for a vault.

    An empty vault yields an empty list and a count of 0.
    """
    if replication_vault_id:
        resource_ids.parse_vault_id(replication_vault_id)
        vault_id = replication_vault_id.rstrip("/")
    else:
        vault_id = _vault_for_project(control_plane, project_name, subscription_id, resource_group_name, retry)

    if not call_with_retry(lambda: control_plane.exists(vault_id), retry, "Vault lookup"):
        raise NotFoundError("Replication vault", vault_id)

    items = call_with_retry(lambda: control_plane.list(f"{vault_id}/protectedItems"), retry, "Protected item listing")
    if instance_type:
        wanted = parse_instance_type(instance_type).value.lower()
        items = [
            i for i in items
            if str(((i.get("properties") or {}).get("customProperties") or {}).get("instanceType", "")).lower() == wanted
        ]

    summaries = [summarize(i) for i in items]
    by_state: dict[str, list[str]] = defaultdict(list)
    by_health: dict[str, list[str]] = defaultdict(list)
    for summary in summaries:
        by_state[summary["protection_state"]].append(summary["name"])
        by_health[summary["replication_health"]].append(summary["name"])

    with_errors = [
        {"name": i.get("name", ""), "health_errors": health_errors(i)}
        for i in items if health_errors(i)
    ]
    logger.debug("Listed %d protected items in %s", len(items), vault_id)

    return {
        "protected_items_list": items,
        "protected_items_count": len(items),
        "protected_items_summary": summaries,
        "protected_items_by_state": dict(by_state),
        "protected_items_by_health": dict(by_health),
        "protected_items_with_errors": with_errors,
    }


def _vault_for_project(control_plane, project_name, subscription_id, resource_group_name, retry) -> str:
    if not (project_name and subscription_id and resource_group_name):
        raise ValidationError(
            "--project-name needs --subscription-id and --resource-group (or a replication vault ID)."
        )
    project_id = resource_ids.migrate_project_id(subscription_id, resource_group_name, project_name)
    return resolve_vault_id(control_plane, project_id, retry)
