"""CLI parameter definitions for az hcimigrate."""

from azure.cli.core.commands.parameters import get_enum_type, tags_type

_INSTANCE_TYPES = ["VMwareToAzStackHCI", "HyperVToAzStackHCI"]


def load_arguments(self, _):
    """Register CLI parameters for all commands."""

    # --- global: --json and the project coordinates on every hcimigrate command ---
    with self.argument_context("hcimigrate") as c:
        c.argument(
            "json_output",
            options_list=["--json", "-j"],
            help="Output machine-readable JSON instead of formatted display.",
            action="store_true",
            default=False,
        )
        # NOTE: --subscription is a built-in Azure CLI global parameter;
        # the project subscription is registered separately as --subscription-id.
        c.argument(
            "subscription_id",
            options_list=["--subscription-id"],
            help="Subscription of the Azure Migrate project (default: project.subscription_id or the current az account).",
        )
        c.argument(
            "resource_group",
            options_list=["--resource-group", "-g"],
            help="Resource group of the Azure Migrate project (default: project.resource_group).",
        )
        c.argument(
            "project_name",
            options_list=["--project-name"],
            help="Name of the Azure Migrate project (default: project.name).",
        )
        c.argument(
            "instance_type",
            arg_type=get_enum_type(_INSTANCE_TYPES),
            help="Migration scenario (default: replication.instance_type).",
        )
        c.argument(
            "replication_vault_id",
            options_list=["--replication-vault-id"],
            help="Full ARM ID of the replication vault. Resolved from the project when omitted.",
        )

    # --- az hcimigrate discover ---
    with self.argument_context("hcimigrate discover") as c:
        c.argument(
            "source_machine_type",
            arg_type=get_enum_type(["VMware", "HyperV"]),
            help="Only list machines discovered from this source type.",
        )
        c.argument(
            "name_filter",
            options_list=["--name-filter"],
            help="Case-insensitive substring that machine names must contain.",
        )
        c.argument(
            "os_type",
            options_list=["--os-type"],
            help="Only list machines whose OS type matches (e.g. windowsguest, linuxguest).",
        )

    # --- az hcimigrate init ---
    with self.argument_context("hcimigrate init") as c:
        c.argument("location", options_list=["--location", "-l"], help="Azure region for the replication resources.")
        c.argument("source_appliance_name", help="Name of the source (VMware or Hyper-V) appliance.")
        c.argument("target_appliance_name", help="Name of the target AzStackHCI appliance.")
        c.argument(
            "hci_subscription_id",
            help="Subscription holding the AzStackHCI cluster (default: the project subscription).",
        )
        c.argument(
            "hci_resource_group",
            help="Resource group holding the AzStackHCI cluster (default: the project resource group).",
        )
        c.argument(
            "recovery_point_history",
            type=int,
            options_list=["--recovery-point-history"],
            help="Recovery point history in minutes for the replication policy (default: 4320).",
        )
        c.argument(
            "crash_consistent_frequency",
            type=int,
            options_list=["--crash-consistent-frequency"],
            help="Crash-consistent snapshot frequency in minutes (default: 60).",
        )
        c.argument(
            "app_consistent_frequency",
            type=int,
            options_list=["--app-consistent-frequency"],
            help="App-consistent snapshot frequency in minutes (default: 240).",
        )
        c.argument("tags", arg_type=tags_type, help="Space-separated tags in key=value format for the resources init creates.")
        c.argument(
            "dry_run",
            help="Show the create/update plan without changing anything.",
            action="store_true",
            default=False,
        )

    # --- az hcimigrate replicate ---
    with self.argument_context("hcimigrate replicate") as c:
        c.argument("machine_id", help="Full ARM ID of the discovered machine to replicate.")
        c.argument(
            "machine_name",
            help="Resource name of the discovered machine (requires --project-name or project.name).",
        )
        c.argument("target_vm_name", help="Name of the VM to create on AzStackHCI.")
        c.argument("target_vm_cpu_cores", type=int, help="Number of vCPUs for the target VM.", default=4)
        c.argument("target_vm_ram_mb", type=int, help="Memory in MB for the target VM (minimum 512).", default=4096)
        c.argument(
            "hyperv_generation",
            arg_type=get_enum_type(["1", "2"]),
            help="Hyper-V generation of the target VM.",
            default="1",
        )
        c.argument(
            "dynamic_memory",
            help="Enable dynamic memory on the target VM.",
            action="store_true",
            default=False,
        )
        c.argument(
            "dynamic_memory_config",
            help=(
                "Dynamic memory settings as JSON: "
                '{"maximum_memory_mb": 8192, "minimum_memory_mb": 1024, "target_memory_buffer_percentage": 20}.'
            ),
        )
        c.argument(
            "disks",
            help=(
                "Disks to replicate as a JSON array (or @file). Each entry has disk_id, disk_size_gb "
                "and optionally disk_file_format, is_os_disk, is_dynamic. Exactly one OS disk is required."
            ),
        )
        c.argument(
            "nics",
            help=(
                "NICs to replicate as a JSON array (or @file). Each entry has nic_id, target_network_id "
                "and optionally test_network_id and selection_type_for_failover."
            ),
        )
        c.argument("target_hci_cluster_id", help="ARM ID of the target AzStackHCI cluster (default: hci.cluster_id).")
        c.argument(
            "target_resource_group_id",
            help="ARM ID of the resource group for the migrated VM (default: hci.target_resource_group_id).",
        )
        c.argument(
            "target_storage_path_id",
            help="ARM ID of the AzStackHCI storage container (default: hci.storage_path_id).",
        )
        c.argument(
            "policy_name",
            options_list=["--policy-name"],
            help="Replication policy in the vault to use. Found by instance type when omitted.",
        )
        c.argument(
            "replication_extension_name",
            options_list=["--replication-extension-name"],
            help="Replication extension in the vault to use. Found by instance type when omitted.",
        )

    # --- az hcimigrate get ---
    with self.argument_context("hcimigrate get") as c:
        c.argument("protected_item_id", options_list=["--protected-item-id", "--id"], help="Full ARM ID of the protected item.")
        c.argument("name", options_list=["--name", "-n"], help="Name of the protected item (requires a vault or project).")

    # --- az hcimigrate remove ---
    with self.argument_context("hcimigrate remove") as c:
        c.argument("protected_item_id", options_list=["--protected-item-id", "--id"], help="Full ARM ID of the protected item.")
        c.argument(
            "yes",
            options_list=["--yes", "-y"],
            help="Do not prompt for confirmation.",
            action="store_true",
            default=False,
        )

    # --- az hcimigrate outputs ---
    with self.argument_context("hcimigrate outputs") as c:
        c.argument(
            "mode",
            arg_type=get_enum_type(["discover", "initialize", "replicate"]),
            help="Show only the outputs of one operation mode.",
        )

    # --- az hcimigrate config ---
    with self.argument_context("hcimigrate config get") as c:
        c.argument("key", help="Dot-separated config key (e.g., replication.instance_type).")

    with self.argument_context("hcimigrate config set") as c:
        c.argument("key", help="Dot-separated config key (e.g., project.location).")
        c.argument("value", help="Value to set. JSON values are parsed.")
