"""Tests for azext_hcimigrate.models — typed configuration and validation."""

import dataclasses

import pytest

from azext_hcimigrate import resource_ids
from azext_hcimigrate.errors import ValidationError
from azext_hcimigrate.models import (
    DiscoveredMachine,
    DiskInput,
    DynamicMemoryConfig,
    InitializeConfig,
    InstanceType,
    MachineById,
    MachineByName,
    NicInput,
    OperationMode,
    PolicySettings,
    ReplicateConfig,
    TargetVmSpec,
    machine_reference,
    parse_hyperv_generation,
    parse_instance_type,
    parse_operation_mode,
    validate_disks,
)

SUB = "00000000-0000-0000-0000-000000000001"
PROJECT_ID = resource_ids.migrate_project_id(SUB, "rg1", "proj")
MACHINE_ID = resource_ids.machine_id(PROJECT_ID, "test-machine-001")
CLUSTER_ID = f"/subscriptions/{SUB}/resourceGroups/hci/providers/Microsoft.AzureStackHCI/clusters/c1"


def _disk(disk_id="d0", os_disk=True, **kwargs):
    return DiskInput(disk_id=disk_id, disk_size_gb=64, is_os_disk=os_disk, **kwargs)


def _replicate_config(**overrides):
    values = {
        "subscription_id": SUB,
        "resource_group_name": "rg1",
        "machine": MachineById(MACHINE_ID),
        "target_vm": TargetVmSpec(name="web01-hci"),
        "disks": [_disk()],
        "nics": [NicInput(nic_id="n0", target_network_id="/subscriptions/x/ln1")],
        "target_hci_cluster_id": CLUSTER_ID,
        "target_resource_group_id": f"/subscriptions/{SUB}/resourceGroups/vms",
        "target_storage_path_id": f"{CLUSTER_ID}/storageContainers/sc1",
    }
    values.update(overrides)
    return ReplicateConfig(**values)


class TestParsers:

    def test_operation_mode(self):
        assert parse_operation_mode("Initialize") == OperationMode.INITIALIZE

    def test_invalid_operation_mode(self):
        with pytest.raises(ValidationError, match="Invalid operation mode"):
            parse_operation_mode("migrate")

    def test_instance_type(self):
        assert parse_instance_type("hypervtoazstackhci") == InstanceType.HYPERV_TO_AZSTACKHCI
        assert InstanceType.HYPERV_TO_AZSTACKHCI.source_fabric_type == "HyperV"
        assert InstanceType.VMWARE_TO_AZSTACKHCI.source_fabric_type == "VMware"
        assert InstanceType.VMWARE_TO_AZSTACKHCI.target_fabric_type == "AzStackHCI"

    def test_invalid_instance_type(self):
        with pytest.raises(ValidationError, match="Invalid instance type"):
            parse_instance_type("VMwareToAzure")

    @pytest.mark.parametrize("value", ["1", "2", 2])
    def test_hyperv_generation(self, value):
        assert parse_hyperv_generation(value) == str(value)

    @pytest.mark.parametrize("value", ["3", "0", "", None, "gen2"])
    def test_invalid_hyperv_generation(self, value):
        with pytest.raises(ValidationError, match='Must be "1" or "2"'):
            parse_hyperv_generation(value)


class TestMachineReference:

    def test_by_id(self):
        ref = machine_reference(machine_id=MACHINE_ID)
        assert isinstance(ref, MachineById)

    def test_by_name(self):
        ref = machine_reference(machine_name="test-machine-001", project_name="proj")
        assert ref == MachineByName("test-machine-001", "proj")
        assert "proj" in ref.describe()

    def test_both_rejected(self):
        with pytest.raises(ValidationError, match="not both"):
            machine_reference(machine_id=MACHINE_ID, machine_name="m")

    def test_neither_rejected(self):
        with pytest.raises(ValidationError, match="must be provided"):
            machine_reference()

    def test_name_without_project_rejected(self):
        with pytest.raises(ValidationError, match="--project-name"):
            machine_reference(machine_name="m")

    def test_malformed_id_rejected(self):
        with pytest.raises(ValidationError, match="Invalid machine ID"):
            machine_reference(machine_id="/subscriptions/x/machines/m")


class TestDisksAndNics:

    def test_disk_from_dict(self):
        disk = DiskInput.from_dict({"disk_id": "d0", "disk_size_gb": "128", "is_os_disk": True})
        assert disk.disk_size_gb == 128
        assert disk.disk_file_format == "VHDX"
        assert disk.to_arm()["isOsDisk"] is True

    def test_disk_requires_id(self):
        with pytest.raises(ValidationError, match="disk_id is required"):
            DiskInput.from_dict({"disk_size_gb": 10})

    def test_exactly_one_os_disk(self):
        validate_disks([_disk("d0"), _disk("d1", os_disk=False)])

    def test_no_os_disk_rejected(self):
        with pytest.raises(ValidationError, match="Exactly one disk must have is_os_disk = true; found 0"):
            validate_disks([_disk("d0", os_disk=False)])

    def test_two_os_disks_rejected(self):
        with pytest.raises(ValidationError, match="found 2"):
            validate_disks([_disk("d0"), _disk("d1")])

    def test_no_disks_rejected(self):
        with pytest.raises(ValidationError, match="At least one disk"):
            validate_disks([])

    def test_duplicate_disk_ids_rejected(self):
        with pytest.raises(ValidationError, match="Duplicate disk_id"):
            validate_disks([_disk("d0"), _disk("d0", os_disk=False)])

    def test_invalid_disk_format(self):
        with pytest.raises(ValidationError, match="disk_file_format"):
            _disk(disk_file_format="VMDK").validate()

    def test_nic_to_arm_defaults_test_network(self):
        nic = NicInput.from_dict({"nic_id": "n0", "target_network_id": "ln1"})
        assert nic.to_arm() == {
            "nicId": "n0",
            "targetNetworkId": "ln1",
            "testNetworkId": "ln1",
            "selectionTypeForFailover": "SelectedByUser",
        }

    def test_nic_requires_target_network(self):
        with pytest.raises(ValidationError, match="target_network_id"):
            NicInput.from_dict({"nic_id": "n0"})


class TestTargetVmSpec:

    def test_defaults_validate(self):
        TargetVmSpec(name="vm1").validate()

    def test_name_required(self):
        with pytest.raises(ValidationError, match="--target-vm-name"):
            TargetVmSpec(name="").validate()

    def test_name_too_long(self):
        with pytest.raises(ValidationError, match="maximum length of 64"):
            TargetVmSpec(name="v" * 65).validate()

    def test_minimum_ram(self):
        with pytest.raises(ValidationError, match="at least 512"):
            TargetVmSpec(name="vm1", ram_mb=256).validate()

    def test_dynamic_memory_default_bounds(self):
        spec = TargetVmSpec(name="vm1", ram_mb=2048, is_dynamic_memory_enabled=True)
        spec.validate()
        assert spec.dynamic_memory == DynamicMemoryConfig(maximum_memory_mb=2048, minimum_memory_mb=512)

    def test_dynamic_memory_ram_outside_bounds(self):
        spec = TargetVmSpec(
            name="vm1", ram_mb=16384, is_dynamic_memory_enabled=True,
            dynamic_memory=DynamicMemoryConfig(maximum_memory_mb=8192, minimum_memory_mb=1024),
        )
        with pytest.raises(ValidationError, match="between the minimum"):
            spec.validate()


class TestPolicySettings:

    def test_defaults(self):
        policy = PolicySettings()
        policy.validate()
        assert policy.to_arm(InstanceType.VMWARE_TO_AZSTACKHCI) == {
            "instanceType": "VMwareToAzStackHCI",
            "recoveryPointHistoryInMinutes": 4320,
            "crashConsistentFrequencyInMinutes": 60,
            "appConsistentFrequencyInMinutes": 240,
        }

    def test_negative_rejected(self):
        with pytest.raises(ValidationError, match="non-negative"):
            PolicySettings(recovery_point_history_in_minutes=-1).validate()

    def test_app_consistent_below_crash_consistent_rejected(self):
        with pytest.raises(ValidationError, match="app_consistent"):
            PolicySettings(crash_consistent_frequency_in_minutes=60, app_consistent_frequency_in_minutes=30).validate()


class TestInitializeConfig:

    def _config(self, **overrides):
        values = dict(
            subscription_id=SUB, resource_group_name="rg1", location="eastus", project_name="proj",
            source_appliance_name="src", target_appliance_name="tgt",
        )
        values.update(overrides)
        return InitializeConfig(**values)

    def test_target_defaults_to_project_scope(self):
        config = self._config()
        config.validate()
        assert config.target_subscription_id == SUB
        assert config.target_resource_group_name == "rg1"

    def test_cross_subscription_target(self):
        config = self._config(hci_subscription_id="hci-sub", hci_resource_group_name="hci-rg")
        assert config.target_subscription_id == "hci-sub"
        assert config.target_resource_group_name == "hci-rg"

    @pytest.mark.parametrize("field,option", [
        ("resource_group_name", "--resource-group"),
        ("location", "--location"),
        ("project_name", "--project-name"),
        ("source_appliance_name", "--source-appliance-name"),
        ("target_appliance_name", "--target-appliance-name"),
    ])
    def test_required_fields(self, field, option):
        with pytest.raises(ValidationError, match=option):
            self._config(**{field: ""}).validate()

    def test_instance_type_string_is_parsed(self):
        config = self._config(instance_type="HyperVToAzStackHCI")
        config.validate()
        assert config.instance_type is InstanceType.HYPERV_TO_AZSTACKHCI


class TestReplicateConfig:

    def test_valid(self):
        config = _replicate_config()
        config.validate()
        assert config.project_id == PROJECT_ID
        assert config.machine_resource_id == MACHINE_ID

    def test_by_name_resolves_machine_id(self):
        config = _replicate_config(machine=MachineByName("test-machine-001", "proj"))
        assert config.machine_resource_id == MACHINE_ID
        assert config.project_name == "proj"

    def test_generation_three_rejected(self):
        with pytest.raises(ValidationError, match="Hyper-V generation"):
            _replicate_config(target_vm=TargetVmSpec(name="vm1", hyperv_generation="3")).validate()

    @pytest.mark.parametrize("field,option", [
        ("target_hci_cluster_id", "--target-hci-cluster-id"),
        ("target_resource_group_id", "--target-resource-group-id"),
        ("target_storage_path_id", "--target-storage-path-id"),
    ])
    def test_target_ids_required(self, field, option):
        with pytest.raises(ValidationError, match=option):
            _replicate_config(**{field: ""}).validate()

    def test_invalid_vault_id_rejected(self):
        with pytest.raises(ValidationError, match="Invalid replication vault ID"):
            _replicate_config(replication_vault_id="/subscriptions/x/vault").validate()


class TestDiscoveredMachine:

    def _machine(self, **record):
        base = {
            "machineName": "web01",
            "osType": "windowsguest",
            "osName": "Windows Server 2022",
            "ipAddresses": ["10.0.0.4", "10.0.0.5"],
            "bootType": "EFI",
            "fabricType": "HyperV",
            "disks": [{"diskId": "d1", "isOsDisk": False}, {"diskId": "d0", "isOsDisk": True}],
        }
        base.update(record)
        return DiscoveredMachine.from_arm({
            "id": MACHINE_ID, "name": "test-machine-001",
            "properties": {"discoveryData": [base]},
        })

    def test_from_arm_defaults_type(self):
        assert self._machine().type == "Microsoft.Migrate/MigrateProjects/Machines"

    def test_filtered_projection(self):
        assert self._machine().to_filtered(0) == {
            "index": 0,
            "machine_name": "web01",
            "ip_address": "10.0.0.4",
            "os_name": "Windows Server 2022",
            "boot_type": "EFI",
            "os_disk_id": "d0",
        }

    def test_source_machine_type(self):
        assert self._machine().source_machine_type == "HyperV"
        assert self._machine(fabricType="VMware").source_machine_type == "VMware"

    def test_missing_discovery_data(self):
        machine = DiscoveredMachine.from_arm({"id": MACHINE_ID, "name": "m1"})
        assert machine.machine_name == "m1"
        assert machine.to_filtered(3)["ip_address"] == ""

    def test_is_immutable(self):
        machine = self._machine()
        with pytest.raises(dataclasses.FrozenInstanceError):
            machine.name = "other"
