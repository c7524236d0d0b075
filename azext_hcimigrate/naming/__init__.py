"""Resource naming for replication infrastructure.

Names are derived deterministically from the migrate project and the
appliances so that re-running ``az hcimigrate init`` converges on the same
resources instead of creating new ones.  Per-resource overrides can be set
under ``naming.overrides`` in ``hcimigrate.yaml``.
"""

import hashlib
import re

from azext_hcimigrate.errors import ValidationError

# Azure naming constraints per resource type
RESOURCE_CONSTRAINTS = {
    "replication_vault": {"max_length": 80, "allow_hyphens": True, "lowercase": False},
    "storage_account": {"max_length": 24, "allow_hyphens": False, "lowercase": True},
    "virtual_machine": {"max_length": 64, "allow_hyphens": True, "lowercase": False},
    "resource_group": {"max_length": 90, "allow_hyphens": True, "lowercase": False},
    "replication_policy": {"max_length": 80, "allow_hyphens": True, "lowercase": False},
    "replication_extension": {"max_length": 80, "allow_hyphens": True, "lowercase": False},
    "fabric": {"max_length": 80, "allow_hyphens": True, "lowercase": False},
    "dra": {"max_length": 80, "allow_hyphens": True, "lowercase": False},
}

MAX_VAULT_NAME_LENGTH = RESOURCE_CONSTRAINTS["replication_vault"]["max_length"]
MAX_STORAGE_ACCOUNT_NAME_LENGTH = RESOURCE_CONSTRAINTS["storage_account"]["max_length"]
MAX_VM_NAME_LENGTH = RESOURCE_CONSTRAINTS["virtual_machine"]["max_length"]
MAX_RESOURCE_GROUP_NAME_LENGTH = RESOURCE_CONSTRAINTS["resource_group"]["max_length"]

STORAGE_ACCOUNT_PREFIX = "migratersa"

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9\-]")


def check_name_length(resource_type: str, name: str) -> str:
    """Raise ValidationError if *name* is empty or longer than the type allows."""
    if not name:
        raise ValidationError(f"{resource_type.replace('_', ' ')} name cannot be empty.")
    max_length = RESOURCE_CONSTRAINTS.get(resource_type, {}).get("max_length")
    if max_length and len(name) > max_length:
        raise ValidationError(
            f"{resource_type.replace('_', ' ')} name exceeds maximum length of {max_length}: {name}"
        )
    return name


def _digest(value: str, length: int) -> str:
    """Stable hex digest of *value*, case-insensitive."""
    return hashlib.sha256(value.lower().encode("utf-8")).hexdigest()[:length]


class MigrationNaming:
    """Derive infrastructure names for one migrate project.

    Generated names are ``<stem><suffix>``.  When one is too long the stem
    is shortened and tagged with a digest of the full name; the suffix,
    which tells e.g. the VMware and Hyper-V policies apart, is kept.

    Args:
        project_id: ARM ID of the migrate project (drives the hash suffix).
        project_name: Display name of the project.
        overrides: Optional ``{resource_type: name}`` map from config.
    """

    def __init__(self, project_id: str, project_name: str, overrides: dict | None = None):
        self.project_id = project_id
        self.project_name = project_name
        self.overrides: dict = overrides or {}

    def vault(self) -> str:
        return self.resolve(
            "replication_vault", self.project_name, suffix=f"{_digest(self.project_id, 4)}replicationvault",
        )

    def storage_account(self) -> str:
        suffix_len = MAX_STORAGE_ACCOUNT_NAME_LENGTH - len(STORAGE_ACCOUNT_PREFIX)
        return self.resolve("storage_account", STORAGE_ACCOUNT_PREFIX + _digest(self.project_id, suffix_len))

    def policy(self, vault_name: str, instance_type: str) -> str:
        return self.resolve("replication_policy", vault_name, suffix=f"{instance_type}policy")

    def fabric(self, appliance_name: str, fabric_type: str) -> str:
        return self.resolve(f"fabric:{fabric_type}", appliance_name, "fabric", suffix=f"-{fabric_type.lower()}-fabric")

    def dra(self, appliance_name: str) -> str:
        return self.resolve(f"dra:{appliance_name}", appliance_name, "dra", suffix="-dra")

    def extension(self, source_fabric: str, target_fabric: str) -> str:
        return self.resolve("replication_extension", f"{source_fabric}-{target_fabric}", suffix="-MigReplicationExtn")

    def resolve(self, key: str, stem: str, resource_type: str | None = None, suffix: str = "") -> str:
        """Return the override for *key*, or ``stem + suffix`` fitted to the type's limits."""
        resource_type = resource_type or key
        override = self.overrides.get(key)
        if override:
            return self._fit(override, "", resource_type)
        return self._fit(stem, suffix, resource_type)

    @staticmethod
    def _clean(name: str, resource_type: str) -> str:
        constraints = RESOURCE_CONSTRAINTS.get(resource_type, {})
        name = _INVALID_CHARS.sub("", name)
        if constraints.get("lowercase", False):
            name = name.lower()
        if not constraints.get("allow_hyphens", True):
            name = name.replace("-", "")
        return name

    @classmethod
    def _fit(cls, stem: str, suffix: str, resource_type: str) -> str:
        """Apply the Azure naming constraints, shortening only *stem*."""
        stem, suffix = cls._clean(stem, resource_type), cls._clean(suffix, resource_type)
        max_length = RESOURCE_CONSTRAINTS.get(resource_type, {}).get("max_length")
        if not max_length or len(stem) + len(suffix) <= max_length:
            return stem + suffix
        if not suffix:
            return stem[:max_length].rstrip("-")
        tag = _digest(stem + suffix, 6)
        return stem[:max_length - len(suffix) - len(tag)].rstrip("-") + tag + suffix
