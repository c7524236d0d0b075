"""Tests for azext_hcimigrate.query — get and list of protected items."""

import pytest

from azext_hcimigrate import resource_ids
from azext_hcimigrate.errors import NotFoundError, ValidationError
from azext_hcimigrate.models import DiskInput, InitializeConfig, MachineByName, ReplicateConfig, TargetVmSpec
from azext_hcimigrate.query import custom_properties, get_protected_item, list_protected_items, summarize
from azext_hcimigrate.stages.init_stage import InitStage
from azext_hcimigrate.stages.outputs import GET_OUTPUTS, LIST_OUTPUTS
from azext_hcimigrate.stages.replicate_stage import ReplicateStage

from conftest import LOCATION, PROJECT, RG, SUB

CLUSTER_ID = f"/subscriptions/{SUB}/resourceGroups/hci-rg/providers/Microsoft.AzureStackHCI/clusters/hci01"
STORAGE_PATH_ID = (
    f"/subscriptions/{SUB}/resourceGroups/hci-rg/providers/Microsoft.AzureStackHCI/storageContainers/sc01"
)


@pytest.fixture
def vault_id(control_plane, retry, tmp_project):
    config = InitializeConfig(
        subscription_id=SUB, resource_group_name=RG, location=LOCATION, project_name=PROJECT,
        source_appliance_name="vmw-appliance", target_appliance_name="hci-appliance",
    )
    outputs = InitStage(project_dir=str(tmp_project), backend="local", retry=retry).run(control_plane, config)
    return outputs["replication_vault_id"]


def _replicate(control_plane, retry, tmp_project, machine, vm_name):
    config = ReplicateConfig(
        subscription_id=SUB,
        resource_group_name=RG,
        machine=MachineByName(machine, PROJECT),
        target_vm=TargetVmSpec(name=vm_name),
        disks=[DiskInput(f"{machine}-os", 64, is_os_disk=True)],
        target_hci_cluster_id=CLUSTER_ID,
        target_resource_group_id=f"/subscriptions/{SUB}/resourceGroups/vms-rg",
        target_storage_path_id=STORAGE_PATH_ID,
    )
    stage = ReplicateStage(project_dir=str(tmp_project), backend="local", retry=retry)
    return stage.run(control_plane, config)["protected_item_id"]


@pytest.fixture
def items(control_plane, retry, tmp_project, vault_id):
    first = _replicate(control_plane, retry, tmp_project, "test-machine-001", "web01-hci")
    second = _replicate(control_plane, retry, tmp_project, "test-machine-002", "db01-hci")
    control_plane.advance_replication(second, direct_to_protected=True)
    control_plane.set_health(second, "Critical", [{"errorCode": "HighChurn", "message": "Churn too high"}])
    return first, second


class TestGetProtectedItem:

    def test_by_id(self, control_plane, items, retry):
        result = get_protected_item(control_plane, retry=retry, protected_item_id=items[0])
        assert tuple(result) == GET_OUTPUTS
        assert result["protected_item"]["id"] == items[0]
        assert result["protected_item_summary"]["protection_state"] == "InitialReplicationInProgress"
        assert result["protected_item_health_errors"] == []

    def test_by_id_equals_by_name_in_vault(self, control_plane, items, vault_id, retry):
        by_id = get_protected_item(control_plane, retry=retry, protected_item_id=items[1])
        by_name = get_protected_item(
            control_plane, retry=retry, protected_item_name="test-machine-002", replication_vault_id=vault_id,
        )
        assert by_id["protected_item_summary"] == by_name["protected_item_summary"]

    def test_by_id_equals_by_name_in_project(self, control_plane, items, retry):
        by_id = get_protected_item(control_plane, retry=retry, protected_item_id=items[1])
        by_name = get_protected_item(
            control_plane, retry=retry, protected_item_name="test-machine-002",
            project_name=PROJECT, subscription_id=SUB, resource_group_name=RG,
        )
        assert by_id["protected_item_summary"] == by_name["protected_item_summary"]
        assert by_name["protected_item_summary"]["protection_state"] == "ProtectedCritical"
        assert by_name["protected_item_health_errors"][0]["errorCode"] == "HighChurn"

    def test_custom_properties(self, control_plane, items, retry):
        custom = get_protected_item(control_plane, retry=retry, protected_item_id=items[0])[
            "protected_item_custom_properties"
        ]
        assert custom["instanceType"] == "VMwareToAzStackHCI"
        assert custom["targetVmName"] == "web01-hci"
        assert custom["targetHCIClusterId"] == CLUSTER_ID
        assert "fabricDiscoveryMachineId" in custom
        assert "hyperVGeneration" not in custom

    def test_invalid_id_is_not_found(self, control_plane, retry):
        with pytest.raises(NotFoundError, match="not found"):
            get_protected_item(control_plane, retry=retry, protected_item_id="/subscriptions/x/bogus")

    def test_missing_item(self, control_plane, vault_id, retry):
        with pytest.raises(NotFoundError, match="Protected item"):
            get_protected_item(control_plane, retry=retry,
                               protected_item_id=resource_ids.protected_item_id(vault_id, "ghost"))

    def test_name_without_scope(self, control_plane, retry):
        with pytest.raises(ValidationError, match="--project-name needs"):
            get_protected_item(control_plane, retry=retry, protected_item_name="x")

    def test_nothing_given(self, control_plane, retry):
        with pytest.raises(ValidationError, match="Provide --protected-item-id"):
            get_protected_item(control_plane, retry=retry)


class TestListProtectedItems:

    def test_empty_vault(self, control_plane, vault_id, retry):
        result = list_protected_items(control_plane, replication_vault_id=vault_id, retry=retry)
        assert result["protected_items_list"] == []
        assert tuple(result) == LIST_OUTPUTS
        assert result["protected_items_count"] == 0
        assert result["protected_items_by_state"] == {}
        assert result["protected_items_with_errors"] == []

    def test_count_and_grouping(self, control_plane, items, vault_id, retry):
        result = list_protected_items(control_plane, replication_vault_id=vault_id, retry=retry)
        assert result["protected_items_count"] == 2
        assert len(result["protected_items_summary"]) == 2
        assert result["protected_items_by_state"] == {
            "InitialReplicationInProgress": ["test-machine-001"],
            "ProtectedCritical": ["test-machine-002"],
        }
        assert result["protected_items_by_health"] == {
            "Normal": ["test-machine-001"],
            "Critical": ["test-machine-002"],
        }
        assert [e["name"] for e in result["protected_items_with_errors"]] == ["test-machine-002"]

    def test_by_project(self, control_plane, items, retry):
        result = list_protected_items(
            control_plane, project_name=PROJECT, subscription_id=SUB, resource_group_name=RG, retry=retry,
        )
        assert result["protected_items_count"] == 2

    def test_instance_type_filter(self, control_plane, items, vault_id, retry):
        result = list_protected_items(
            control_plane, replication_vault_id=vault_id, instance_type="HyperVToAzStackHCI", retry=retry,
        )
        assert result["protected_items_count"] == 0

    def test_missing_vault(self, control_plane, retry):
        with pytest.raises(NotFoundError, match="Replication vault"):
            list_protected_items(control_plane, replication_vault_id=resource_ids.vault_id(SUB, RG, "nope"),
                                 retry=retry)

    def test_project_without_init(self, control_plane, retry):
        with pytest.raises(NotFoundError, match="az hcimigrate init"):
            list_protected_items(
                control_plane, project_name=PROJECT, subscription_id=SUB, resource_group_name=RG, retry=retry,
            )


class TestProjections:

    def test_summarize_unknown_state(self):
        summary = summarize({"name": "x", "properties": {"protectionState": "Resyncing"}})
        assert summary["protection_state"] == "Replicating"
        assert summary["replication_health"] == "None"
        assert summary["failed"] is False

    def test_summarize_failed_state(self):
        summary = summarize({"name": "x", "properties": {
            "protectionState": "EnablingFailed",
            "replicationHealth": "Critical",
        }})
        assert summary["failed"] is True
        assert summary["service_state"] == "EnablingFailed"
        assert summary["protection_state"] == "InitialReplicationInProgress"

    def test_summarize_failover_times(self):
        summary = summarize({"name": "x", "properties": {
            "protectionState": "Protected",
            "replicationHealth": "Normal",
            "lastSuccessfulTestFailoverTime": "2024-01-01T00:00:00Z",
        }})
        assert summary["protection_state"] == "Protected"
        assert summary["last_successful_test_failover_time"] == "2024-01-01T00:00:00Z"
        assert summary["last_successful_failover_time"] == ""

    def test_hyperv_custom_properties(self):
        custom = custom_properties({"properties": {"customProperties": {
            "instanceType": "HyperVToAzStackHCI", "hyperVGeneration": "2",
        }}})
        assert custom["hyperVGeneration"] == "2"
        assert "fabricDiscoveryMachineId" not in custom
