"""Typed inputs and records for the migration workflow.

Each operation mode gets its own configuration dataclass with explicit
required/optional fields (``DiscoverConfig``, ``InitializeConfig``,
``ReplicateConfig``).  ``validate()`` on each raises
:class:`~azext_hcimigrate.errors.ValidationError` before anything touches
Azure.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Union

from azext_hcimigrate import resource_ids
from azext_hcimigrate.errors import ValidationError
from azext_hcimigrate.naming import check_name_length

MACHINE_RESOURCE_TYPE = "Microsoft.Migrate/MigrateProjects/Machines"


class OperationMode(str, Enum):
    """Stages that produce captured outputs."""

    DISCOVER = "discover"
    INITIALIZE = "initialize"
    REPLICATE = "replicate"


class InstanceType(str, Enum):
    """Source/target technology pairing."""

    VMWARE_TO_AZSTACKHCI = "VMwareToAzStackHCI"
    HYPERV_TO_AZSTACKHCI = "HyperVToAzStackHCI"

    @property
    def source_fabric_type(self) -> str:
        return "VMware" if self is InstanceType.VMWARE_TO_AZSTACKHCI else "HyperV"

    @property
    def target_fabric_type(self) -> str:
        return "AzStackHCI"


HYPERV_GENERATIONS = ("1", "2")
DISK_FILE_FORMATS = ("VHD", "VHDX")
NIC_SELECTION_TYPES = ("SelectedByUser", "NotSelected")
MIN_RAM_MB = 512


def parse_operation_mode(value: str | None) -> OperationMode:
    try:
        return OperationMode(str(value).lower())
    except ValueError:
        raise ValidationError(
            f"Invalid operation mode: '{value}'.\n"
            f"Supported modes: {', '.join(m.value for m in OperationMode)}"
        ) from None


def parse_instance_type(value: str | InstanceType | None) -> InstanceType:
    if isinstance(value, InstanceType):
        return value
    for instance_type in InstanceType:
        if instance_type.value.lower() == str(value or "").lower():
            return instance_type
    raise ValidationError(
        f"Invalid instance type: '{value}'.\n"
        f"Supported instance types: {', '.join(t.value for t in InstanceType)}"
    )


def parse_hyperv_generation(value: str | int | None) -> str:
    generation = str(value).strip() if value is not None else ""
    if generation not in HYPERV_GENERATIONS:
        raise ValidationError(f"Invalid Hyper-V generation: '{value}'. Must be \"1\" or \"2\".")
    return generation


def _require(value: Any, option: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{option} is required.")


# ======================================================================
# Machine reference: exactly one of (id) or (name + project)
# ======================================================================


@dataclass(frozen=True)
class MachineById:
    machine_id: str

    def describe(self) -> str:
        return self.machine_id


@dataclass(frozen=True)
class MachineByName:
    machine_name: str
    project_name: str

    def describe(self) -> str:
        return f"{self.machine_name} (project {self.project_name})"


MachineReference = Union[MachineById, MachineByName]


def machine_reference(
    machine_id: str | None = None,
    machine_name: str | None = None,
    project_name: str | None = None,
) -> MachineReference:
    """Build the machine reference, rejecting both-or-neither identifiers."""
    if machine_id and machine_name:
        raise ValidationError("Specify either --machine-id or --machine-name, not both.")
    if machine_id:
        resource_ids.parse_machine_id(machine_id)
        return MachineById(machine_id.rstrip("/"))
    if machine_name:
        if not project_name:
            raise ValidationError("--project-name is required when --machine-name is used.")
        return MachineByName(machine_name, project_name)
    raise ValidationError("Either --machine-id or --machine-name must be provided.")


# ======================================================================
# Disks and NICs
# ======================================================================


@dataclass(frozen=True)
class DiskInput:
    """A source disk to replicate."""

    disk_id: str
    disk_size_gb: int
    disk_file_format: str = "VHDX"
    is_os_disk: bool = False
    is_dynamic: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> DiskInput:
        if not isinstance(data, dict):
            raise ValidationError(f"Disk entry must be an object, got: {data!r}")
        _require(data.get("disk_id"), "disk_id")
        try:
            size = int(data.get("disk_size_gb", 0))
        except (TypeError, ValueError):
            raise ValidationError(f"disk_size_gb must be an integer for disk '{data.get('disk_id')}'.") from None
        return cls(
            disk_id=str(data["disk_id"]),
            disk_size_gb=size,
            disk_file_format=str(data.get("disk_file_format", "VHDX")),
            is_os_disk=bool(data.get("is_os_disk", False)),
            is_dynamic=bool(data.get("is_dynamic", False)),
        )

    def validate(self) -> None:
        if self.disk_size_gb <= 0:
            raise ValidationError(f"disk_size_gb must be positive for disk '{self.disk_id}'.")
        if self.disk_file_format not in DISK_FILE_FORMATS:
            raise ValidationError(
                f"Invalid disk_file_format '{self.disk_file_format}' for disk '{self.disk_id}'. "
                f"Supported: {', '.join(DISK_FILE_FORMATS)}"
            )

    def to_arm(self) -> dict:
        return {
            "diskId": self.disk_id,
            "diskSizeGB": self.disk_size_gb,
            "diskFileFormat": self.disk_file_format,
            "isOsDisk": self.is_os_disk,
            "isDynamic": self.is_dynamic,
        }


@dataclass(frozen=True)
class NicInput:
    """A source NIC and the logical network it maps to on the target."""

    nic_id: str
    target_network_id: str
    selection_type_for_failover: str = "SelectedByUser"
    test_network_id: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> NicInput:
        if not isinstance(data, dict):
            raise ValidationError(f"NIC entry must be an object, got: {data!r}")
        _require(data.get("nic_id"), "nic_id")
        _require(data.get("target_network_id"), f"target_network_id for NIC '{data.get('nic_id')}'")
        return cls(
            nic_id=str(data["nic_id"]),
            target_network_id=str(data["target_network_id"]),
            selection_type_for_failover=str(data.get("selection_type_for_failover", "SelectedByUser")),
            test_network_id=str(data.get("test_network_id") or ""),
        )

    def validate(self) -> None:
        if self.selection_type_for_failover not in NIC_SELECTION_TYPES:
            raise ValidationError(
                f"Invalid selection_type_for_failover '{self.selection_type_for_failover}' "
                f"for NIC '{self.nic_id}'. Supported: {', '.join(NIC_SELECTION_TYPES)}"
            )

    def to_arm(self) -> dict:
        return {
            "nicId": self.nic_id,
            "targetNetworkId": self.target_network_id,
            "testNetworkId": self.test_network_id or self.target_network_id,
            "selectionTypeForFailover": self.selection_type_for_failover,
        }


def validate_disks(disks: list[DiskInput]) -> None:
    """At least one disk, unique IDs, and exactly one OS disk."""
    if not disks:
        raise ValidationError("At least one disk must be included for replication.")
    for disk in disks:
        disk.validate()
    ids = [d.disk_id for d in disks]
    if len(set(ids)) != len(ids):
        raise ValidationError(f"Duplicate disk_id in disks to include: {ids}")
    os_disks = [d.disk_id for d in disks if d.is_os_disk]
    if len(os_disks) != 1:
        raise ValidationError(
            f"Exactly one disk must have is_os_disk = true; found {len(os_disks)}"
            + (f" ({', '.join(os_disks)})." if os_disks else ".")
        )


def validate_nics(nics: list[NicInput]) -> None:
    for nic in nics:
        nic.validate()
    ids = [n.nic_id for n in nics]
    if len(set(ids)) != len(ids):
        raise ValidationError(f"Duplicate nic_id in NICs to include: {ids}")


# ======================================================================
# Target VM and policy
# ======================================================================


@dataclass(frozen=True)
class DynamicMemoryConfig:
    maximum_memory_mb: int
    minimum_memory_mb: int
    target_memory_buffer_percentage: int = 20

    def to_arm(self) -> dict:
        return {
            "maximumMemoryInMegaBytes": self.maximum_memory_mb,
            "minimumMemoryInMegaBytes": self.minimum_memory_mb,
            "targetMemoryBufferPercentage": self.target_memory_buffer_percentage,
        }


@dataclass
class TargetVmSpec:
    name: str
    cpu_cores: int = 4
    ram_mb: int = 4096
    hyperv_generation: str = "1"
    is_dynamic_memory_enabled: bool = False
    dynamic_memory: DynamicMemoryConfig | None = None

    def validate(self) -> None:
        _require(self.name, "--target-vm-name")
        check_name_length("virtual_machine", self.name)
        self.hyperv_generation = parse_hyperv_generation(self.hyperv_generation)
        if int(self.cpu_cores) < 1:
            raise ValidationError("--target-vm-cpu-cores must be at least 1.")
        if int(self.ram_mb) < MIN_RAM_MB:
            raise ValidationError(f"--target-vm-ram-mb must be at least {MIN_RAM_MB}.")
        if self.is_dynamic_memory_enabled:
            if self.dynamic_memory is None:
                self.dynamic_memory = DynamicMemoryConfig(
                    maximum_memory_mb=int(self.ram_mb),
                    minimum_memory_mb=MIN_RAM_MB,
                )
            dm = self.dynamic_memory
            if not dm.minimum_memory_mb <= int(self.ram_mb) <= dm.maximum_memory_mb:
                raise ValidationError(
                    "With dynamic memory, --target-vm-ram-mb must lie between the minimum "
                    f"({dm.minimum_memory_mb}) and maximum ({dm.maximum_memory_mb}) memory."
                )
            if not 5 <= dm.target_memory_buffer_percentage <= 2000:
                raise ValidationError("Dynamic memory buffer percentage must be between 5 and 2000.")


@dataclass
class PolicySettings:
    """Replication policy cadence, all values in minutes."""

    recovery_point_history_in_minutes: int = 4320
    crash_consistent_frequency_in_minutes: int = 60
    app_consistent_frequency_in_minutes: int = 240

    def validate(self) -> None:
        for name, value in asdict(self).items():
            if not isinstance(value, int) or value < 0:
                raise ValidationError(f"Policy setting {name} must be a non-negative integer, got {value!r}.")
        if self.crash_consistent_frequency_in_minutes == 0:
            raise ValidationError("crash_consistent_frequency_in_minutes must be greater than 0.")
        if (self.app_consistent_frequency_in_minutes
                and self.app_consistent_frequency_in_minutes < self.crash_consistent_frequency_in_minutes):
            raise ValidationError(
                "app_consistent_frequency_in_minutes must be 0 or at least crash_consistent_frequency_in_minutes."
            )

    def to_arm(self, instance_type: InstanceType) -> dict:
        return {
            "instanceType": instance_type.value,
            "recoveryPointHistoryInMinutes": self.recovery_point_history_in_minutes,
            "crashConsistentFrequencyInMinutes": self.crash_consistent_frequency_in_minutes,
            "appConsistentFrequencyInMinutes": self.app_consistent_frequency_in_minutes,
        }


# ======================================================================
# Per-mode configurations
# ======================================================================


@dataclass
class DiscoverConfig:
    subscription_id: str
    resource_group_name: str
    project_name: str
    source_machine_type: str | None = None
    name_filter: str | None = None
    os_type: str | None = None

    def validate(self) -> None:
        _require(self.subscription_id, "--subscription-id")
        _require(self.resource_group_name, "--resource-group")
        check_name_length("resource_group", self.resource_group_name)
        _require(self.project_name, "--project-name")
        if self.source_machine_type and self.source_machine_type not in ("VMware", "HyperV"):
            raise ValidationError(
                f"Invalid source machine type '{self.source_machine_type}'. Supported: VMware, HyperV"
            )

    @property
    def project_id(self) -> str:
        return resource_ids.migrate_project_id(self.subscription_id, self.resource_group_name, self.project_name)


@dataclass
class InitializeConfig:
    subscription_id: str
    resource_group_name: str
    location: str
    project_name: str
    source_appliance_name: str
    target_appliance_name: str
    instance_type: InstanceType = InstanceType.VMWARE_TO_AZSTACKHCI
    hci_subscription_id: str = ""
    hci_resource_group_name: str = ""
    policy: PolicySettings = field(default_factory=PolicySettings)
    tags: dict = field(default_factory=dict)

    def validate(self) -> None:
        _require(self.subscription_id, "--subscription-id")
        _require(self.resource_group_name, "--resource-group")
        check_name_length("resource_group", self.resource_group_name)
        _require(self.location, "--location")
        _require(self.project_name, "--project-name")
        _require(self.source_appliance_name, "--source-appliance-name")
        _require(self.target_appliance_name, "--target-appliance-name")
        self.instance_type = parse_instance_type(self.instance_type)
        if self.hci_resource_group_name:
            check_name_length("resource_group", self.hci_resource_group_name)
        self.policy.validate()

    @property
    def target_subscription_id(self) -> str:
        return self.hci_subscription_id or self.subscription_id

    @property
    def target_resource_group_name(self) -> str:
        return self.hci_resource_group_name or self.resource_group_name

    @property
    def project_id(self) -> str:
        return resource_ids.migrate_project_id(self.subscription_id, self.resource_group_name, self.project_name)


@dataclass
class ReplicateConfig:
    subscription_id: str
    resource_group_name: str
    machine: MachineReference
    target_vm: TargetVmSpec
    disks: list[DiskInput]
    nics: list[NicInput] = field(default_factory=list)
    instance_type: InstanceType = InstanceType.VMWARE_TO_AZSTACKHCI
    target_hci_cluster_id: str = ""
    target_resource_group_id: str = ""
    target_storage_path_id: str = ""
    replication_vault_id: str = ""
    policy_name: str = ""
    replication_extension_name: str = ""

    def validate(self) -> None:
        _require(self.subscription_id, "--subscription-id")
        _require(self.resource_group_name, "--resource-group")
        check_name_length("resource_group", self.resource_group_name)
        self.instance_type = parse_instance_type(self.instance_type)
        self.target_vm.validate()
        validate_disks(self.disks)
        validate_nics(self.nics)
        _require(self.target_hci_cluster_id, "--target-hci-cluster-id")
        resource_ids.validate_resource_id(self.target_hci_cluster_id, "Target HCI cluster")
        _require(self.target_resource_group_id, "--target-resource-group-id")
        resource_ids.validate_resource_id(self.target_resource_group_id, "Target resource group")
        _require(self.target_storage_path_id, "--target-storage-path-id")
        resource_ids.validate_resource_id(self.target_storage_path_id, "Target storage path")
        if self.replication_vault_id:
            resource_ids.parse_vault_id(self.replication_vault_id)

    @property
    def project_name(self) -> str:
        if isinstance(self.machine, MachineByName):
            return self.machine.project_name
        return resource_ids.parse_machine_id(self.machine.machine_id)[2]

    @property
    def project_id(self) -> str:
        if isinstance(self.machine, MachineById):
            sub, rg, project, _ = resource_ids.parse_machine_id(self.machine.machine_id)
            return resource_ids.migrate_project_id(sub, rg, project)
        return resource_ids.migrate_project_id(self.subscription_id, self.resource_group_name, self.project_name)

    @property
    def machine_resource_id(self) -> str:
        if isinstance(self.machine, MachineById):
            return self.machine.machine_id
        return resource_ids.machine_id(self.project_id, self.machine.machine_name)


# ======================================================================
# Discovered machines
# ======================================================================


@dataclass(frozen=True)
class DiscoveredMachine:
    """Immutable snapshot of a machine from a discovery scan."""

    id: str
    name: str
    type: str
    properties: dict

    @classmethod
    def from_arm(cls, data: dict) -> DiscoveredMachine:
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            type=data.get("type") or MACHINE_RESOURCE_TYPE,
            properties=dict(data.get("properties") or {}),
        )

    @property
    def discovery_data(self) -> list[dict]:
        return list(self.properties.get("discoveryData") or [])

    @property
    def primary_record(self) -> dict:
        records = self.discovery_data
        return records[0] if records else {}

    @property
    def machine_name(self) -> str:
        return self.primary_record.get("machineName") or self.name

    @property
    def os_type(self) -> str:
        return self.primary_record.get("osType", "")

    @property
    def source_machine_type(self) -> str:
        """VMware or HyperV, from the site that discovered the machine."""
        record = self.primary_record
        site = str(record.get("fabricType") or record.get("machineId") or "").lower()
        if "hyperv" in site:
            return "HyperV"
        if "vmware" in site:
            return "VMware"
        return ""

    @property
    def os_disk_id(self) -> str:
        for disk in self.primary_record.get("disks") or []:
            if disk.get("isOsDisk"):
                return disk.get("diskId", "")
        return ""

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "type": self.type, "properties": self.properties}

    def to_filtered(self, index: int) -> dict:
        record = self.primary_record
        ips = record.get("ipAddresses") or []
        return {
            "index": index,
            "machine_name": self.machine_name,
            "ip_address": ips[0] if ips else "",
            "os_name": record.get("osName", ""),
            "boot_type": record.get("bootType", ""),
            "os_disk_id": self.os_disk_id,
        }
