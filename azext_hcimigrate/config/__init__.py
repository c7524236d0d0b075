"""hcimigrate.yaml: the optional, layered configuration of a migration project."""

import copy
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from knack.util import CLIError

logger = logging.getLogger(__name__)


def _sanitize_for_yaml(data: Any) -> Any:
    """Turn str/int/float subclasses into their plain types.

    Azure CLI wraps parameter defaults in ``knack.validators.DefaultStr``
    (a *str* subclass), which ``yaml.safe_dump`` refuses to represent.
    """
    if isinstance(data, dict):
        return {str(k): _sanitize_for_yaml(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_sanitize_for_yaml(item) for item in data]
    # bool before int
    if isinstance(data, bool):
        return bool(data)
    if isinstance(data, int):
        return int(data)
    if isinstance(data, float):
        return float(data)
    if isinstance(data, str):
        return str(data)
    return data


# --- Set-time validation helpers ---

_GUID_PATTERN = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")

_ALLOWED_INSTANCE_TYPES = frozenset({"VMwareToAzStackHCI", "HyperVToAzStackHCI"})

_ALLOWED_BACKENDS = frozenset({"arm", "local"})

_POLICY_KEYS = frozenset({
    "replication.policy.recovery_point_history_in_minutes",
    "replication.policy.crash_consistent_frequency_in_minutes",
    "replication.policy.app_consistent_frequency_in_minutes",
})

# Regions where Azure Migrate projects and AzStackHCI replication are offered.
_KNOWN_AZURE_REGIONS = frozenset(
    {
        "eastus",
        "eastus2",
        "westus",
        "westus2",
        "westus3",
        "centralus",
        "northcentralus",
        "southcentralus",
        "westcentralus",
        "canadacentral",
        "canadaeast",
        "brazilsouth",
        "northeurope",
        "westeurope",
        "uksouth",
        "ukwest",
        "francecentral",
        "germanywestcentral",
        "norwayeast",
        "swedencentral",
        "switzerlandnorth",
        "australiaeast",
        "australiasoutheast",
        "eastasia",
        "southeastasia",
        "japaneast",
        "japanwest",
        "koreacentral",
        "centralindia",
        "southindia",
        "southafricanorth",
        "uaenorth",
    }
)

# Keys whose values belong in the secrets file.
# Matched by prefix.
SECRET_KEY_PREFIXES = (
    "project.subscription_id",
    "hci.subscription_id",
)

DEFAULT_CONFIG = {
    "project": {
        "name": "",
        "subscription_id": "",
        "resource_group": "",
        "location": "eastus",
        "created": "",
    },
    "appliances": {
        "source": "",
        "target": "",
    },
    "hci": {
        "subscription_id": "",
        "resource_group": "",
        "cluster_id": "",
        "storage_path_id": "",
        "target_resource_group_id": "",
    },
    "replication": {
        "instance_type": "VMwareToAzStackHCI",
        "vault_id": "",
        "policy": {
            "recovery_point_history_in_minutes": 4320,
            "crash_consistent_frequency_in_minutes": 60,
            "app_consistent_frequency_in_minutes": 240,
        },
    },
    "naming": {
        "overrides": {},
    },
    "tags": {},
    "controlplane": {
        "backend": "arm",
        "local_state_path": ".hcimigrate/state/controlplane.yaml",
        "timeout": 60,
    },
    "retry": {
        "max_retries": 3,
        "delay_seconds": 5,
    },
    "stages": {
        "discover": {"completed": False, "timestamp": None},
        "initialize": {"completed": False, "timestamp": None},
        "replicate": {"completed": False, "timestamp": None},
    },
}


class MigrateConfig:
    """Manages hcimigrate.yaml configuration.

    Values are read and written with dotted keys such as
    ``replication.policy.recovery_point_history_in_minutes``.

    Subscription IDs are stored in a separate ``hcimigrate.secrets.yaml``
    that should be git-ignored.  Everything else stays in
    ``hcimigrate.yaml`` for version control.

    Unlike most commands' inputs, the file is optional: with no
    ``hcimigrate.yaml`` present the defaults apply and every value comes
    from command-line options.
    """

    CONFIG_FILENAME = "hcimigrate.yaml"
    SECRETS_FILENAME = "hcimigrate.secrets.yaml"

    def __init__(self, project_dir: str):
        self.project_dir = Path(project_dir)
        self.config_path = self.project_dir / self.CONFIG_FILENAME
        self.secrets_path = self.project_dir / self.SECRETS_FILENAME
        self._config: dict = copy.deepcopy(DEFAULT_CONFIG)
        self._secrets: dict = {}

    # ------------------------------------------------------------------ #
    #  Persistence                                                        #
    # ------------------------------------------------------------------ #

    def load(self, required: bool = False) -> dict:
        """Load configuration from hcimigrate.yaml (and secrets if present).

        Values in the file are layered over ``DEFAULT_CONFIG``.

        Returns:
            The config with the secrets file layered on top.

        Raises:
            CLIError if *required* and the config file is missing, or the
            file is not valid YAML.
        """
        self._config = copy.deepcopy(DEFAULT_CONFIG)
        self._secrets = {}

        if not self.config_path.exists():
            if required:
                raise CLIError(
                    f"Configuration file not found: {self.config_path}\n"
                    "Run 'az hcimigrate config init' to create one."
                )
            return self._config

        self._merge(self._config, self._read(self.config_path))

        if self.secrets_path.exists():
            self._secrets = self._read(self.secrets_path)
            # secrets win over the main file
            self._merge(self._config, self._secrets)

        # Subscription IDs typed straight into hcimigrate.yaml move to the
        # secrets file on the next save.
        for key in SECRET_KEY_PREFIXES:
            value = self.get(key)
            if value:
                self._set_nested(self._secrets, key, value)

        return self._config

    def save(self):
        """Persist current configuration to hcimigrate.yaml."""
        self.project_dir.mkdir(parents=True, exist_ok=True)

        # subscription IDs only go to the secrets file
        clean_config = self._strip_secrets(self._config)
        self._write(self.config_path, clean_config)
        logger.debug("Configuration saved to %s", self.config_path)

    def save_secrets(self):
        """Persist current secrets to hcimigrate.secrets.yaml."""
        if not self._secrets:
            return
        self.project_dir.mkdir(parents=True, exist_ok=True)
        self._write(self.secrets_path, self._secrets)
        logger.debug("Secrets saved to %s", self.secrets_path)

    def create_default(self, overrides: dict | None = None) -> dict:
        """Write a fresh hcimigrate.yaml from ``DEFAULT_CONFIG`` and *overrides*.

        Args:
            overrides: Nested values applied over the defaults.

        Returns:
            The new config dict.
        """
        self._config = copy.deepcopy(DEFAULT_CONFIG)
        self._config["project"]["created"] = datetime.now(timezone.utc).isoformat()
        self._secrets = {}

        for key, value in self._flatten(overrides or {}):
            self._validate_config_value(key, value)
            self._set_nested(self._config, key, value)
            if self._is_secret_key(key) and value:
                self._set_nested(self._secrets, key, value)

        self.save()
        self.save_secrets()
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a dotted *key*, returning *default* when any part is missing.

        Examples:
            config.get("project.name")
            config.get("replication.instance_type")
            config.get("retry.max_retries")
        """
        parts = key.split(".")
        current = self._config

        for part in parts:
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default

        return current

    def set(self, key: str, value: Any):
        """Validate, store and persist one dotted *key*.

        Missing parents are created.  Subscription IDs are also written to
        hcimigrate.secrets.yaml and blanked in hcimigrate.yaml.
        """
        value = self._coerce(key, value)
        self._validate_config_value(key, value)
        self._set_nested(self._config, key, value)
        if self._is_secret_key(key):
            self._set_nested(self._secrets, key, value)
        self.save()
        self.save_secrets()

    def mark_stage_completed(self, stage: str):
        """Record that *stage* ran to completion."""
        self.set(f"stages.{stage}", {
            "completed": True,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def to_dict(self) -> dict:
        """Deep copy of the effective config, secrets included."""
        return copy.deepcopy(self._config)

    def exists(self) -> bool:
        """Whether hcimigrate.yaml is on disk."""
        return self.config_path.exists()

    # ------------------------------------------------------------------ #
    #  Validation                                                         #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _coerce(key: str, value: Any) -> Any:
        """Turn CLI strings into the types numeric keys expect."""
        if key in _POLICY_KEYS or key in ("retry.max_retries", "controlplane.timeout"):
            try:
                return int(value)
            except (TypeError, ValueError):
                raise CLIError(f"'{key}' must be an integer, got: {value!r}") from None
        if key == "retry.delay_seconds":
            try:
                return float(value)
            except (TypeError, ValueError):
                raise CLIError(f"'{key}' must be a number, got: {value!r}") from None
        return value

    @staticmethod
    def _validate_config_value(key: str, value: Any):
        """Reject values the workflow could not use.

        Rules:
          - project.location must be a known Azure region.
          - replication.instance_type must be VMwareToAzStackHCI or HyperVToAzStackHCI.
          - controlplane.backend must be arm or local.
          - subscription IDs must be GUIDs.
          - retry bounds and policy minutes must be non-negative.
        """
        if key == "project.location" and value:
            region = str(value).lower().strip()
            if region not in _KNOWN_AZURE_REGIONS:
                raise CLIError(
                    f"Unknown Azure region: '{value}'.\n"
                    "Use 'az account list-locations -o table' to see available regions."
                )

        if key == "replication.instance_type":
            if str(value) not in _ALLOWED_INSTANCE_TYPES:
                raise CLIError(
                    f"Unknown instance type: '{value}'.\n"
                    f"Supported instance types: {', '.join(sorted(_ALLOWED_INSTANCE_TYPES))}"
                )

        if key == "controlplane.backend":
            if str(value).lower() not in _ALLOWED_BACKENDS:
                raise CLIError(
                    f"Unknown control plane backend: '{value}'.\n"
                    f"Supported backends: {', '.join(sorted(_ALLOWED_BACKENDS))}"
                )

        if key in SECRET_KEY_PREFIXES and value:
            if not _GUID_PATTERN.match(str(value)):
                raise CLIError(f"'{key}' must be a subscription GUID, got: {value}")

        if key in _POLICY_KEYS or key in ("retry.max_retries", "retry.delay_seconds"):
            if value < 0:
                raise CLIError(f"'{key}' cannot be negative.")

        if key == "retry.max_retries" and value > 20:
            raise CLIError("'retry.max_retries' cannot exceed 20.")

    # ------------------------------------------------------------------ #
    #  Internals                                                          #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _read(path: Path) -> dict:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise CLIError(f"Could not parse {path}: {e}") from e
        if not isinstance(data, dict):
            raise CLIError(f"{path} must contain a YAML mapping.")
        return data

    @staticmethod
    def _write(path: Path, data: dict):
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                _sanitize_for_yaml(data),
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )

    @staticmethod
    def _merge(base: dict, overlay: dict):
        """Deep-merge *overlay* into *base* in place."""
        for key, value in overlay.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                MigrateConfig._merge(base[key], value)
            else:
                base[key] = value

    @classmethod
    def _flatten(cls, data: dict, prefix: str = ""):
        """Yield ``(dotted_key, value)`` for every leaf of *data*.

        ``naming.overrides`` and ``tags`` are user-keyed maps, kept whole.
        """
        for key, value in data.items():
            dotted = f"{prefix}{key}"
            if isinstance(value, dict) and value and dotted not in ("naming.overrides", "tags"):
                yield from cls._flatten(value, f"{dotted}.")
            else:
                yield dotted, value

    @staticmethod
    def _set_nested(target: dict, key: str, value: Any):
        """Assign *value* at dotted *key* inside *target*."""
        *parents, leaf = key.split(".")
        node = target
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value

    @staticmethod
    def _is_secret_key(key: str) -> bool:
        """Whether *key* lives in hcimigrate.secrets.yaml."""
        return key.startswith(SECRET_KEY_PREFIXES)

    @staticmethod
    def _strip_secrets(config: dict) -> dict:
        """Copy of *config* with every subscription ID blanked."""
        clean = copy.deepcopy(config)
        for key in SECRET_KEY_PREFIXES:
            section, leaf = key.split(".")
            if isinstance(clean.get(section), dict) and leaf in clean[section]:
                clean[section][leaf] = ""
        return clean
