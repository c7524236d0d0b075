"""Custom command implementations for az hcimigrate.

These functions are the entry points called by the Azure CLI framework.
Each one maps to a registered command in commands.py.

Command-line options win over ``hcimigrate.yaml``; the config file only
supplies defaults.
"""

import json
import logging
from pathlib import Path

from knack.util import CLIError

from azext_hcimigrate.errors import ValidationError
from azext_hcimigrate.telemetry import track

logger = logging.getLogger(__name__)


# ======================================================================
# Helpers
# ======================================================================

def _get_project_dir() -> str:
    """Resolve the current project directory."""
    return str(Path.cwd().resolve())


def _load_config(project_dir: str | None = None, required: bool = False):
    """Load project configuration (defaults when no hcimigrate.yaml exists)."""
    from azext_hcimigrate.config import MigrateConfig

    project_dir = project_dir or _get_project_dir()
    config = MigrateConfig(project_dir)
    config.load(required=required)
    return config


def _get_control_plane(config, project_dir: str):
    from azext_hcimigrate.controlplane import get_control_plane

    return get_control_plane(config, project_dir)


def _backend(config) -> str:
    return str(config.get("controlplane.backend", "arm")).lower()


def _retry_policy(config):
    from azext_hcimigrate.retry import RetryPolicy

    return RetryPolicy.from_config(config)


def _pick(value, config, key: str, default=None):
    """Return the CLI *value* if given, else the config value at *key*."""
    if value is not None and value != "":
        return value
    configured = config.get(key)
    if configured is not None and configured != "":
        return configured
    return default


def _subscription(value, config, key: str = "project.subscription_id") -> str:
    subscription = _pick(value, config, key)
    if not subscription and _backend(config) == "arm":
        from azext_hcimigrate.controlplane.arm import get_current_subscription

        subscription = get_current_subscription()
    if not subscription:
        raise ValidationError("--subscription-id is required (or set project.subscription_id).")
    return subscription


def _parse_json_arg(value, option: str):
    """Parse a JSON-valued option.  ``@file`` is expanded by the Azure CLI."""
    if value is None or isinstance(value, (list, dict)):
        return value
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError) as e:
        raise ValidationError(f"{option} must be valid JSON: {e}") from None


def _captured(project_dir: str, key: str) -> str:
    from azext_hcimigrate.stages.outputs import OutputCapture

    return OutputCapture(project_dir).get(key, "") or ""


def _capture(project_dir: str, mode, outputs: dict):
    from azext_hcimigrate.stages.outputs import OutputCapture

    return OutputCapture(project_dir).capture(mode, outputs)


def _configured_vault(project_dir: str, config, replicate_config) -> str:
    """The vault ``init`` set up in this directory, if it serves the machine's project."""
    from azext_hcimigrate import resource_ids

    vault_id = config.get("replication.vault_id") or _captured(project_dir, "replication_vault_id")
    if not vault_id:
        return ""
    configured_project = resource_ids.migrate_project_id(
        config.get("project.subscription_id") or replicate_config.subscription_id,
        config.get("project.resource_group") or replicate_config.resource_group_name,
        config.get("project.name") or "",
    )
    try:
        project_id = replicate_config.project_id
    except ValidationError:
        # a malformed --machine-id is reported by validation
        return ""
    if not resource_ids.same_id(project_id, configured_project):
        logger.debug("Ignoring vault %s of %s for a machine in %s", vault_id, configured_project, project_id)
        return ""
    return vault_id


def _mark_completed(config, stage: str):
    # Only track stages in a config file the user created.
    if config.exists():
        config.mark_stage_completed(stage)


# ======================================================================
# Stage Commands
# ======================================================================

@track("hcimigrate discover")
def hcimigrate_discover(
    cmd,
    project_name=None,
    resource_group=None,
    subscription_id=None,
    source_machine_type=None,
    name_filter=None,
    os_type=None,
    json_output=False,
):
    """List machines discovered by an Azure Migrate project."""
    from azext_hcimigrate.models import DiscoverConfig, OperationMode
    from azext_hcimigrate.stages.discover_stage import DiscoverStage
    from azext_hcimigrate.ui.console import console

    project_dir = _get_project_dir()
    config = _load_config(project_dir)

    discover_config = DiscoverConfig(
        subscription_id=_subscription(subscription_id, config),
        resource_group_name=_pick(resource_group, config, "project.resource_group", ""),
        project_name=_pick(project_name, config, "project.name", ""),
        source_machine_type=source_machine_type,
        name_filter=name_filter,
        os_type=os_type,
    )
    stage = DiscoverStage(project_dir, _backend(config), _retry_policy(config))
    control_plane = _get_control_plane(config, project_dir)

    if json_output:
        outputs = stage.run(control_plane, discover_config)
    else:
        with console.spinner(f"Listing machines in {discover_config.project_name}"):
            outputs = stage.run(control_plane, discover_config)

    _capture(project_dir, OperationMode.DISCOVER, outputs)
    _mark_completed(config, "discover")

    if json_output:
        return outputs

    filtered = outputs["filtered_discovered_machines"]
    console.print_table(
        f"Discovered machines ({len(filtered)} of {len(outputs['discovered_machines'])})",
        ["#", "Machine", "IP address", "OS", "Boot"],
        [[m["index"], m["machine_name"], m["ip_address"], m["os_name"], m["boot_type"]] for m in filtered],
    )
    return {"status": "displayed", "count": len(filtered)}


@track("hcimigrate init")
def hcimigrate_init(
    cmd,
    project_name=None,
    resource_group=None,
    location=None,
    source_appliance_name=None,
    target_appliance_name=None,
    subscription_id=None,
    instance_type=None,
    hci_subscription_id=None,
    hci_resource_group=None,
    recovery_point_history=None,
    crash_consistent_frequency=None,
    app_consistent_frequency=None,
    tags=None,
    dry_run=False,
):
    """Provision the replication infrastructure for a migrate project."""
    from azext_hcimigrate.models import InitializeConfig, OperationMode, PolicySettings
    from azext_hcimigrate.stages.init_stage import InitStage
    from azext_hcimigrate.ui.console import console

    project_dir = _get_project_dir()
    config = _load_config(project_dir)

    policy = PolicySettings(
        recovery_point_history_in_minutes=int(_pick(
            recovery_point_history, config, "replication.policy.recovery_point_history_in_minutes", 4320)),
        crash_consistent_frequency_in_minutes=int(_pick(
            crash_consistent_frequency, config, "replication.policy.crash_consistent_frequency_in_minutes", 60)),
        app_consistent_frequency_in_minutes=int(_pick(
            app_consistent_frequency, config, "replication.policy.app_consistent_frequency_in_minutes", 240)),
    )
    subscription = _subscription(subscription_id, config)
    init_config = InitializeConfig(
        subscription_id=subscription,
        resource_group_name=_pick(resource_group, config, "project.resource_group", ""),
        location=_pick(location, config, "project.location", ""),
        project_name=_pick(project_name, config, "project.name", ""),
        source_appliance_name=_pick(source_appliance_name, config, "appliances.source", ""),
        target_appliance_name=_pick(target_appliance_name, config, "appliances.target", ""),
        instance_type=_pick(instance_type, config, "replication.instance_type", "VMwareToAzStackHCI"),
        hci_subscription_id=_pick(hci_subscription_id, config, "hci.subscription_id", ""),
        hci_resource_group_name=_pick(hci_resource_group, config, "hci.resource_group", ""),
        policy=policy,
        tags={**(config.get("tags") or {}), **(tags or {})},
    )

    stage = InitStage(
        project_dir, _backend(config), _retry_policy(config),
        naming_overrides=config.get("naming.overrides") or {},
    )
    control_plane = _get_control_plane(config, project_dir)

    console.print_header("Replication infrastructure" + (" (plan)" if dry_run else ""))
    with console.spinner("Checking replication infrastructure" if dry_run else "Provisioning replication infrastructure"):
        outputs = stage.run(control_plane, init_config, dry_run=dry_run)
    console.print_plan(stage.plan)

    if dry_run:
        return {"status": "planned" if stage.changed else "no_changes", "plan": stage.plan}

    _capture(project_dir, OperationMode.INITIALIZE, outputs)
    _mark_completed(config, "initialize")
    if config.exists() and not config.get("replication.vault_id"):
        config.set("replication.vault_id", outputs["replication_vault_id"])

    console.print_success(
        "Replication infrastructure is ready." if stage.changed else "No changes: replication infrastructure already up to date."
    )
    return outputs


@track("hcimigrate replicate")
def hcimigrate_replicate(
    cmd,
    machine_id=None,
    machine_name=None,
    project_name=None,
    resource_group=None,
    subscription_id=None,
    target_vm_name=None,
    target_vm_cpu_cores=4,
    target_vm_ram_mb=4096,
    hyperv_generation="1",
    dynamic_memory=False,
    dynamic_memory_config=None,
    disks=None,
    nics=None,
    target_hci_cluster_id=None,
    target_resource_group_id=None,
    target_storage_path_id=None,
    replication_vault_id=None,
    instance_type=None,
    policy_name=None,
    replication_extension_name=None,
):
    """Start replicating a discovered machine to AzStackHCI."""
    from azext_hcimigrate.models import (
        DiskInput,
        DynamicMemoryConfig,
        NicInput,
        OperationMode,
        ReplicateConfig,
        TargetVmSpec,
        machine_reference,
    )
    from azext_hcimigrate.stages.replicate_stage import ReplicateStage
    from azext_hcimigrate.ui.console import console

    project_dir = _get_project_dir()
    config = _load_config(project_dir)

    disk_data = _parse_json_arg(disks, "--disks") or []
    nic_data = _parse_json_arg(nics, "--nics") or []
    if not isinstance(disk_data, list) or not isinstance(nic_data, list):
        raise ValidationError("--disks and --nics must be JSON arrays.")

    dm_data = _parse_json_arg(dynamic_memory_config, "--dynamic-memory-config")
    dm = None
    if dm_data:
        try:
            dm = DynamicMemoryConfig(
                maximum_memory_mb=int(dm_data["maximum_memory_mb"]),
                minimum_memory_mb=int(dm_data["minimum_memory_mb"]),
                target_memory_buffer_percentage=int(dm_data.get("target_memory_buffer_percentage", 20)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid --dynamic-memory-config: {e}") from None

    try:
        cpu_cores = int(target_vm_cpu_cores)
        ram_mb = int(target_vm_ram_mb)
    except (TypeError, ValueError):
        raise ValidationError("--target-vm-cpu-cores and --target-vm-ram-mb must be integers.") from None

    machine = machine_reference(
        machine_id=machine_id,
        machine_name=machine_name,
        project_name=_pick(project_name, config, "project.name") if machine_name else None,
    )
    replicate_config = ReplicateConfig(
        subscription_id=_subscription(subscription_id, config),
        resource_group_name=_pick(resource_group, config, "project.resource_group", ""),
        machine=machine,
        target_vm=TargetVmSpec(
            name=target_vm_name or "",
            cpu_cores=cpu_cores,
            ram_mb=ram_mb,
            hyperv_generation=hyperv_generation,
            is_dynamic_memory_enabled=bool(dynamic_memory or dm),
            dynamic_memory=dm,
        ),
        disks=[DiskInput.from_dict(d) for d in disk_data],
        nics=[NicInput.from_dict(n) for n in nic_data],
        instance_type=_pick(instance_type, config, "replication.instance_type", "VMwareToAzStackHCI"),
        target_hci_cluster_id=_pick(target_hci_cluster_id, config, "hci.cluster_id", ""),
        target_resource_group_id=_pick(target_resource_group_id, config, "hci.target_resource_group_id", ""),
        target_storage_path_id=_pick(target_storage_path_id, config, "hci.storage_path_id", ""),
        replication_vault_id=replication_vault_id or "",
        policy_name=policy_name or "",
        replication_extension_name=replication_extension_name or "",
    )
    if not replicate_config.replication_vault_id:
        replicate_config.replication_vault_id = _configured_vault(project_dir, config, replicate_config)

    stage = ReplicateStage(project_dir, _backend(config), _retry_policy(config))
    control_plane = _get_control_plane(config, project_dir)

    with console.spinner(f"Replicating {machine.describe()}"):
        outputs = stage.run(control_plane, replicate_config)

    _capture(project_dir, OperationMode.REPLICATE, outputs)
    _mark_completed(config, "replicate")

    if stage.created:
        console.print_success(f"Protected item created: {outputs['protected_item_id']}")
    else:
        console.print_info("No changes: protected item already exists.")
    console.print(f"  State: {console.styled_state(outputs['replication_state'])}")
    return outputs


# ======================================================================
# Query Commands
# ======================================================================

@track("hcimigrate get")
def hcimigrate_get(
    cmd,
    protected_item_id=None,
    name=None,
    project_name=None,
    replication_vault_id=None,
    resource_group=None,
    subscription_id=None,
    json_output=False,
):
    """Show one protected item with its summary, health errors and custom properties."""
    from azext_hcimigrate.query import get_protected_item
    from azext_hcimigrate.ui.console import console

    project_dir = _get_project_dir()
    config = _load_config(project_dir)
    control_plane = _get_control_plane(config, project_dir)

    reference = {"protected_item_id": protected_item_id}
    if not protected_item_id:
        reference.update(
            protected_item_name=name,
            replication_vault_id=replication_vault_id,
            project_name=None if replication_vault_id else _pick(project_name, config, "project.name"),
            subscription_id=None if replication_vault_id else _subscription(subscription_id, config),
            resource_group_name=_pick(resource_group, config, "project.resource_group"),
        )

    result = get_protected_item(control_plane, retry=_retry_policy(config), **reference)
    if json_output:
        return result

    summary = result["protected_item_summary"]
    console.print_header(f"Protected item {summary['name']}")
    console.print(f"  State:  {console.styled_state(summary['protection_state'])}")
    if summary["failed"]:
        console.print_warning(f"Replication failed ({summary['service_state']}). Remove the item and replicate again.")
    console.print(f"  Health: {console.styled_state(summary['replication_health'])}")
    for key, value in result["protected_item_custom_properties"].items():
        console.print_dim(f"  {key}: {value}")
    for error in result["protected_item_health_errors"]:
        console.print_warning(f"{error.get('errorCode', '')} {error.get('message', '')}".strip())
    return {"status": "displayed"}


@track("hcimigrate list")
def hcimigrate_list(
    cmd,
    project_name=None,
    replication_vault_id=None,
    resource_group=None,
    subscription_id=None,
    instance_type=None,
    json_output=False,
):
    """List protected items in a vault with groupings by state and health."""
    from azext_hcimigrate.query import list_protected_items
    from azext_hcimigrate.ui.console import console

    project_dir = _get_project_dir()
    config = _load_config(project_dir)
    control_plane = _get_control_plane(config, project_dir)

    vault_id = replication_vault_id
    if not vault_id and not project_name:
        vault_id = config.get("replication.vault_id") or _captured(project_dir, "replication_vault_id")

    if vault_id:
        result = list_protected_items(
            control_plane, replication_vault_id=vault_id, instance_type=instance_type,
            retry=_retry_policy(config),
        )
    else:
        result = list_protected_items(
            control_plane,
            project_name=_pick(project_name, config, "project.name"),
            subscription_id=_subscription(subscription_id, config),
            resource_group_name=_pick(resource_group, config, "project.resource_group"),
            instance_type=instance_type,
            retry=_retry_policy(config),
        )

    if json_output:
        return result

    console.print_table(
        f"Protected items ({result['protected_items_count']})",
        ["Name", "State", "Health", "Last failover"],
        [
            [
                s["name"],
                f"{s['protection_state']} ({s['service_state']})" if s["failed"] else s["protection_state"],
                s["replication_health"],
                s["last_successful_failover_time"] or "-",
            ]
            for s in result["protected_items_summary"]
        ],
    )
    failed = [s["name"] for s in result["protected_items_summary"] if s["failed"]]
    if failed:
        console.print_warning(f"Replication failed for: {', '.join(failed)}")
    if result["protected_items_with_errors"]:
        console.print_warning(f"{len(result['protected_items_with_errors'])} item(s) report health errors.")
    return {"status": "displayed", "count": result["protected_items_count"]}


@track("hcimigrate remove")
def hcimigrate_remove(cmd, protected_item_id=None, yes=False):
    """Stop replication and delete a protected item."""
    from azext_hcimigrate.stages.replicate_stage import remove_protected_item
    from azext_hcimigrate.ui.console import console

    if not protected_item_id:
        raise CLIError("--protected-item-id is required.")

    project_dir = _get_project_dir()
    config = _load_config(project_dir)

    if not yes and not console.confirm(f"Remove protected item {protected_item_id}? Replication will stop."):
        return {"status": "cancelled"}

    control_plane = _get_control_plane(config, project_dir)
    remove_protected_item(control_plane, protected_item_id, _retry_policy(config))
    console.print_success("Protected item removed.")
    return {"status": "removed", "protected_item_id": protected_item_id}


@track("hcimigrate outputs")
def hcimigrate_outputs(cmd, mode=None):
    """Show outputs captured by discover, init and replicate."""
    from azext_hcimigrate.stages.outputs import OutputCapture
    from azext_hcimigrate.ui.console import console

    capture = OutputCapture(_get_project_dir())
    outputs = capture.get_mode(mode) if mode else capture.get_all()
    if not outputs:
        console.print_warning("No outputs captured yet.")
        console.print_dim("Run 'az hcimigrate discover', 'init' or 'replicate' first.")
        return {"status": "empty"}
    return outputs


@track("hcimigrate status")
def hcimigrate_status(cmd, json_output=False):
    """Show configuration, stage completion and prerequisites."""
    from azext_hcimigrate.stages.guards import STAGE_NAMES, check_prerequisites
    from azext_hcimigrate.stages.outputs import OutputCapture
    from azext_hcimigrate.ui.console import console

    project_dir = _get_project_dir()
    config = _load_config(project_dir)
    backend = _backend(config)
    captured = OutputCapture(project_dir).get_all()

    status = {
        "project": config.get("project.name") or "",
        "resource_group": config.get("project.resource_group") or "",
        "location": config.get("project.location") or "",
        "instance_type": config.get("replication.instance_type") or "",
        "backend": backend,
        "config_file": config.exists(),
        "stages": {},
    }
    for stage_name in STAGE_NAMES:
        ok, failures = check_prerequisites(stage_name, project_dir, backend)
        status["stages"][stage_name] = {
            "completed": bool(config.get(f"stages.{stage_name}.completed")),
            "timestamp": config.get(f"stages.{stage_name}.timestamp"),
            "outputs_captured": stage_name in captured,
            "ready": ok,
            "blockers": failures,
        }

    if json_output:
        return status

    console.print_header(f"hcimigrate: {status['project'] or '(no project configured)'}")
    console.print_dim(f"  Backend: {backend}   Instance type: {status['instance_type']}")
    if not status["config_file"]:
        console.print_dim("  No hcimigrate.yaml; run 'az hcimigrate config init' to create one.")
    for stage_name, info in status["stages"].items():
        if info["completed"] or info["outputs_captured"]:
            console.print_success(f"{stage_name}")
        elif info["ready"]:
            console.print_info(f"{stage_name}: not run")
        else:
            console.print_warning(f"{stage_name}: " + "; ".join(info["blockers"]))
    return {"status": "displayed"}


# ======================================================================
# Config Commands
# ======================================================================

@track("hcimigrate config show")
def hcimigrate_config_show(cmd):
    """Display current configuration.

    Subscription IDs stored in ``hcimigrate.secrets.yaml`` are masked as
    ``***`` in the output.
    """
    from azext_hcimigrate.config import SECRET_KEY_PREFIXES

    config = _load_config(required=True)
    result = config.to_dict()

    for prefix in SECRET_KEY_PREFIXES:
        section, _, leaf = prefix.partition(".")
        node = result.get(section)
        if isinstance(node, dict) and node.get(leaf):
            node[leaf] = "***"

    return result


@track("hcimigrate config get")
def hcimigrate_config_get(cmd, key=None):
    """Get a single configuration value by dot-separated key."""
    from azext_hcimigrate.config import MigrateConfig

    if not key:
        raise CLIError("--key is required.")

    config = _load_config(required=True)
    value = config.get(key)
    if value is None:
        raise CLIError(f"Key '{key}' not found in configuration.")

    if MigrateConfig._is_secret_key(key) and value:
        return {"key": key, "value": "***"}

    return {"key": key, "value": value}


@track("hcimigrate config set")
def hcimigrate_config_set(cmd, key=None, value=None):
    """Set a configuration value."""
    if not key:
        raise CLIError("--key is required.")
    if value is None:
        raise CLIError("--value is required.")

    config = _load_config(required=True)

    # Try to parse value as JSON for structured values
    try:
        parsed = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        parsed = value
    config.set(key, parsed)

    return {"key": key, "value": config.get(key), "status": "updated"}


def _prompt_project(console) -> dict:
    console.print_header("Azure Migrate project")
    name = input("Migrate project name: ").strip()
    resource_group = input("Resource group: ").strip()
    location = input("Azure region [eastus]: ").strip() or "eastus"
    subscription = input("Subscription ID (blank = current az account): ").strip()
    return {"name": name, "resource_group": resource_group, "location": location, "subscription_id": subscription}


def _prompt_replication(console) -> dict:
    console.print_header("Replication")
    instance_type = ""
    while instance_type not in ("VMwareToAzStackHCI", "HyperVToAzStackHCI"):
        choice = input("Source (vmware/hyperv) [vmware]: ").strip().lower() or "vmware"
        instance_type = {"vmware": "VMwareToAzStackHCI", "hyperv": "HyperVToAzStackHCI"}.get(choice, "")
        if not instance_type:
            console.print_warning("Please choose 'vmware' or 'hyperv'.")
    source = input("Source appliance name: ").strip()
    target = input("Target (AzStackHCI) appliance name: ").strip()
    return {"instance_type": instance_type, "source": source, "target": target}


def _prompt_hci(console) -> dict:
    console.print_header("AzStackHCI target")
    console.print_dim("  Leave blank to use the project subscription and resource group.")
    subscription = input("HCI subscription ID: ").strip()
    resource_group = input("HCI resource group: ").strip()
    return {"subscription_id": subscription, "resource_group": resource_group}


@track("hcimigrate config init")
def hcimigrate_config_init(cmd):
    """Interactive questionnaire to create hcimigrate.yaml.

    The config file is optional; every value can also be passed on the
    command line.  Creating one saves typing on later commands.
    """
    from azext_hcimigrate.config import MigrateConfig
    from azext_hcimigrate.ui.console import console

    project_dir = _get_project_dir()
    config = MigrateConfig(project_dir)

    if config.exists():
        console.print_warning("hcimigrate.yaml already exists in this directory.")
        if not console.confirm("Overwrite?"):
            return {"status": "cancelled", "message": "Existing configuration preserved."}

    console.panel(
        "Answer the following questions to create your\n"
        "hcimigrate.yaml. Press Enter to accept defaults.",
        title="hcimigrate Configuration Setup",
    )

    project = _prompt_project(console)
    replication = _prompt_replication(console)
    hci = _prompt_hci(console)

    config.create_default({
        "project": project,
        "appliances": {"source": replication["source"], "target": replication["target"]},
        "replication": {"instance_type": replication["instance_type"]},
        "hci": hci,
    })

    console.print_success("Configuration saved")
    created = ["hcimigrate.yaml"]
    if config.secrets_path.exists():
        created.append("hcimigrate.secrets.yaml (git-ignored)")
    for name in created:
        console.print(f"    [success]✓[/success] [path]{name}[/path]")
    console.print_dim("  You can edit it directly or use 'az hcimigrate config set'.")

    result: dict = {"status": "created", "file": str(config.config_path)}
    if config.secrets_path.exists():
        result["secrets_file"] = str(config.secrets_path)
    return result
