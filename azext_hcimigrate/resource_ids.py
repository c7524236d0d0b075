"""Azure resource ID construction and validation.

All resources touched by the migration workflow are addressed by ARM
resource IDs.  This module is the only place that knows their layout::

    /subscriptions/{sub}/resourceGroups/{rg}/providers/Microsoft.DataReplication/
        replicationVaults/{vault}[/protectedItems/{item}]

Comparisons are case-insensitive, as they are in ARM.
"""

import re

from azext_hcimigrate.errors import ValidationError

DATA_REPLICATION = "Microsoft.DataReplication"
MIGRATE = "Microsoft.Migrate"
STORAGE = "Microsoft.Storage"

SERVER_MIGRATION_SOLUTION = "Servers-Migration-ServerMigration_DataReplication"

_VAULT_ID_RE = re.compile(
    r"^/subscriptions/(?P<subscription>[^/]+)"
    r"/resourceGroups/(?P<resource_group>[^/]+)"
    r"/providers/Microsoft\.DataReplication"
    r"/replicationVaults/(?P<vault>[^/]+)"
    r"(?:/protectedItems/(?P<item>[^/]+))?/?$",
    re.IGNORECASE,
)

_MACHINE_ID_RE = re.compile(
    r"^/subscriptions/(?P<subscription>[^/]+)"
    r"/resourceGroups/(?P<resource_group>[^/]+)"
    r"/providers/Microsoft\.Migrate"
    r"/migrateProjects/(?P<project>[^/]+)"
    r"/machines/(?P<machine>[^/]+)/?$",
    re.IGNORECASE,
)


def validate_resource_id(resource_id: str, kind: str = "Resource") -> str:
    """Return *resource_id* stripped of a trailing slash, or raise ValidationError."""
    if not resource_id:
        raise ValidationError(f"{kind} ID cannot be empty.")
    if not resource_id.lower().startswith("/subscriptions/") or len(resource_id) <= len("/subscriptions/"):
        raise ValidationError(f"Invalid Azure resource ID format for {kind}: {resource_id}")
    return resource_id.rstrip("/")


def parse_vault_id(vault_id: str) -> tuple[str, str, str]:
    """Split a replication vault ID into ``(subscription, resource_group, vault)``."""
    match = _VAULT_ID_RE.match(vault_id or "")
    if not match or match.group("item"):
        raise ValidationError(
            f"Invalid replication vault ID: {vault_id}\n"
            "Expected: /subscriptions/{sub}/resourceGroups/{rg}/providers/"
            "Microsoft.DataReplication/replicationVaults/{vault}"
        )
    return match.group("subscription"), match.group("resource_group"), match.group("vault")


def parse_protected_item_id(item_id: str) -> tuple[str, str, str, str]:
    """Split a protected item ID into ``(subscription, resource_group, vault, item)``."""
    match = _VAULT_ID_RE.match(item_id or "")
    if not match or not match.group("item"):
        raise ValidationError(
            f"Invalid protected item ID: {item_id}\n"
            "Expected: /subscriptions/{sub}/resourceGroups/{rg}/providers/"
            "Microsoft.DataReplication/replicationVaults/{vault}/protectedItems/{item}"
        )
    return (
        match.group("subscription"),
        match.group("resource_group"),
        match.group("vault"),
        match.group("item"),
    )


def parse_machine_id(machine_id: str) -> tuple[str, str, str, str]:
    """Split a migrate-project machine ID into ``(subscription, resource_group, project, machine)``."""
    match = _MACHINE_ID_RE.match(machine_id or "")
    if not match:
        raise ValidationError(
            f"Invalid machine ID: {machine_id}\n"
            "Expected: /subscriptions/{sub}/resourceGroups/{rg}/providers/"
            "Microsoft.Migrate/migrateProjects/{project}/machines/{machine}"
        )
    return (
        match.group("subscription"),
        match.group("resource_group"),
        match.group("project"),
        match.group("machine"),
    )


def name_from_id(resource_id: str) -> str:
    """Return the last segment (the resource name) of *resource_id*."""
    return resource_id.rstrip("/").rsplit("/", 1)[-1]


def parent_id(resource_id: str) -> str:
    """Return the ID of the parent resource (drops the last type/name pair).

    Returns an empty string for top-level resources.
    """
    parts = resource_id.rstrip("/").split("/")
    try:
        providers_at = [p.lower() for p in parts].index("providers")
    except ValueError:
        return ""
    # top-level: .../providers/{namespace}/{type}/{name}
    if len(parts) <= providers_at + 4:
        return ""
    return "/".join(parts[:-2])


def subscription_of(resource_id: str) -> str:
    """Return the subscription segment of *resource_id*."""
    parts = resource_id.split("/")
    return parts[2] if len(parts) > 2 else ""


def same_id(left: str, right: str) -> bool:
    """Case-insensitive resource ID comparison."""
    return (left or "").rstrip("/").lower() == (right or "").rstrip("/").lower()


# --- Builders ---


def resource_group_id(subscription: str, resource_group: str) -> str:
    return f"/subscriptions/{subscription}/resourceGroups/{resource_group}"


def migrate_project_id(subscription: str, resource_group: str, project: str) -> str:
    return f"{resource_group_id(subscription, resource_group)}/providers/{MIGRATE}/migrateProjects/{project}"


def machine_id(project_id: str, machine: str) -> str:
    return f"{project_id}/machines/{machine}"


def solution_id(project_id: str) -> str:
    return f"{project_id}/solutions/{SERVER_MIGRATION_SOLUTION}"


def vault_id(subscription: str, resource_group: str, vault: str) -> str:
    return f"{resource_group_id(subscription, resource_group)}/providers/{DATA_REPLICATION}/replicationVaults/{vault}"


def storage_account_id(subscription: str, resource_group: str, account: str) -> str:
    return f"{resource_group_id(subscription, resource_group)}/providers/{STORAGE}/storageAccounts/{account}"


def policy_id(vault: str, policy: str) -> str:
    return f"{vault}/replicationPolicies/{policy}"


def extension_id(vault: str, extension: str) -> str:
    return f"{vault}/replicationExtensions/{extension}"


def protected_item_id(vault: str, item: str) -> str:
    return f"{vault}/protectedItems/{item}"


def fabric_id(subscription: str, resource_group: str, fabric: str) -> str:
    return f"{resource_group_id(subscription, resource_group)}/providers/{DATA_REPLICATION}/replicationFabrics/{fabric}"


def dra_id(fabric: str, dra: str) -> str:
    return f"{fabric}/dras/{dra}"


def resource_type(resource_id: str) -> str:
    """Return the ARM type of *resource_id*, e.g. ``Microsoft.DataReplication/replicationVaults/protectedItems``."""
    parts = resource_id.strip("/").split("/")
    lowered = [p.lower() for p in parts]
    if "providers" not in lowered:
        return "Microsoft.Resources/resourceGroups"
    at = len(lowered) - 1 - lowered[::-1].index("providers")
    tail = parts[at + 1:]
    if not tail:
        return ""
    return "/".join([tail[0]] + tail[1:][0::2])


def kind_of(resource_id: str) -> str:
    """Short resource kind for messages, e.g. ``protectedItems``."""
    return resource_type(resource_id).rsplit("/", 1)[-1] or "Resource"
