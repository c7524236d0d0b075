"""Help text for az hcimigrate commands."""

from knack.help_files import helps

helps["hcimigrate"] = """
type: group
short-summary: Migrate VMware and Hyper-V machines to Azure Stack HCI.
long-summary: |
    The az hcimigrate extension drives Azure Migrate server migration to
    AzStackHCI through the Microsoft.DataReplication resource provider.

    Workflow: discover → init → replicate → get / list

    Every command is idempotent: running it again with the same inputs
    leaves the same resources behind.  Values not given on the command line
    are read from hcimigrate.yaml when one exists in the current directory.
"""

helps["hcimigrate discover"] = """
type: command
short-summary: List machines discovered by an Azure Migrate project.
long-summary: |
    Read-only.  Returns every discovered machine plus a filtered, indexed
    projection (machine name, IP address, OS, boot type, OS disk) that can
    be used to pick machines to replicate.
examples:
    - name: List all discovered machines
      text: az hcimigrate discover --project-name my-project -g my-rg
    - name: Only Windows machines whose name contains "web"
      text: az hcimigrate discover --project-name my-project -g my-rg --name-filter web --os-type windows
    - name: Machine-readable output
      text: az hcimigrate discover --project-name my-project -g my-rg --json
"""

helps["hcimigrate init"] = """
type: command
short-summary: Provision the replication infrastructure for a migrate project.
long-summary: |
    Ensures the replication vault, cache storage account, replication policy,
    source and target fabrics, their data replication agents and the
    replication extension exist.  Resources that already match are left
    alone; use --dry-run to see the plan first.

    The AzStackHCI cluster may live in a different subscription and resource
    group (--hci-subscription-id / --hci-resource-group).
examples:
    - name: Initialize for VMware sources
      text: >
        az hcimigrate init --project-name my-project -g my-rg -l eastus
        --source-appliance-name vmw-app --target-appliance-name hci-app
    - name: Hyper-V sources with the cluster in another subscription
      text: >
        az hcimigrate init --project-name my-project -g my-rg -l eastus
        --instance-type HyperVToAzStackHCI --source-appliance-name hv-app
        --target-appliance-name hci-app --hci-subscription-id 00000000-0000-0000-0000-000000000000
        --hci-resource-group hci-rg
    - name: Preview the changes
      text: az hcimigrate init --dry-run
"""

helps["hcimigrate replicate"] = """
type: command
short-summary: Start replicating a discovered machine to AzStackHCI.
long-summary: |
    Creates a protected item for the machine and waits until initial
    replication is under way.  Requires 'az hcimigrate init' to have run
    for the project.

    Identify the machine either by --machine-id or by --machine-name with a
    project.  Exactly one disk must be marked as the OS disk.

    Re-running with identical settings is a no-op.  To change settings,
    remove the protected item and replicate again.

    The policy and extension created by init are found by instance type;
    pass --policy-name and --replication-extension-name to use others.
examples:
    - name: Replicate a machine by name
      text: >
        az hcimigrate replicate --machine-name 1b2c3d-machine --project-name my-project -g my-rg
        --target-vm-name web01-hci --disks @disks.json --nics @nics.json
        --target-hci-cluster-id <cluster-id> --target-resource-group-id <rg-id>
        --target-storage-path-id <storage-container-id>
    - name: Generation 2 VM with dynamic memory
      text: >
        az hcimigrate replicate --machine-id <machine-id> --target-vm-name web01-hci
        --hyperv-generation 2 --dynamic-memory-config '{"maximum_memory_mb": 8192, "minimum_memory_mb": 1024}'
        --disks @disks.json --nics @nics.json
"""

helps["hcimigrate get"] = """
type: command
short-summary: Show one protected item.
long-summary: |
    Returns the raw protected item plus a summary (protection state,
    replication health, last failover times), its health errors and its
    scenario-specific custom properties.
examples:
    - name: Get a protected item by ID
      text: az hcimigrate get --protected-item-id <protected-item-id>
    - name: Get a protected item by name within the project's vault
      text: az hcimigrate get --name 1b2c3d-machine --project-name my-project -g my-rg
"""

helps["hcimigrate list"] = """
type: command
short-summary: List protected items in a replication vault.
long-summary: |
    Returns the items with counts and groupings by protection state and
    replication health, plus the items reporting health errors.  An empty
    vault yields an empty list.
examples:
    - name: List protected items for the configured project
      text: az hcimigrate list
    - name: List only Hyper-V protected items in a given vault
      text: az hcimigrate list --replication-vault-id <vault-id> --instance-type HyperVToAzStackHCI
"""

helps["hcimigrate remove"] = """
type: command
short-summary: Stop replication and delete a protected item.
examples:
    - name: Remove without prompting
      text: az hcimigrate remove --protected-item-id <protected-item-id> --yes
"""

helps["hcimigrate outputs"] = """
type: command
short-summary: Show outputs captured by discover, init and replicate.
long-summary: |
    Outputs are stored in .hcimigrate/state/outputs.json with stable key
    order, so identical runs produce identical files.
examples:
    - name: Show all captured outputs
      text: az hcimigrate outputs
    - name: Show the IDs created by init
      text: az hcimigrate outputs --mode initialize
"""

helps["hcimigrate status"] = """
type: command
short-summary: Show configuration, stage completion and prerequisites.
examples:
    - name: Show status
      text: az hcimigrate status
    - name: Machine-readable status
      text: az hcimigrate status --json
"""

helps["hcimigrate config"] = """
type: group
short-summary: Manage hcimigrate.yaml configuration.
"""

helps["hcimigrate config init"] = """
type: command
short-summary: Create hcimigrate.yaml interactively.
long-summary: |
    Asks for the migrate project, the appliances and the AzStackHCI target.
    Subscription IDs are written to hcimigrate.secrets.yaml, which should
    be git-ignored.
examples:
    - name: Start the questionnaire
      text: az hcimigrate config init
"""

helps["hcimigrate config show"] = """
type: command
short-summary: Show the current configuration with subscription IDs masked.
examples:
    - name: Show configuration
      text: az hcimigrate config show
"""

helps["hcimigrate config get"] = """
type: command
short-summary: Get a single configuration value.
examples:
    - name: Get the instance type
      text: az hcimigrate config get --key replication.instance_type
"""

helps["hcimigrate config set"] = """
type: command
short-summary: Set a configuration value.
examples:
    - name: Switch to Hyper-V sources
      text: az hcimigrate config set --key replication.instance_type --value HyperVToAzStackHCI
    - name: Use the local control plane
      text: az hcimigrate config set --key controlplane.backend --value local
    - name: Retry transient failures up to five times
      text: az hcimigrate config set --key retry.max_retries --value 5
"""
