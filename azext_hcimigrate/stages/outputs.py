"""Stage outputs — the named values each operation mode produces.

Output names are a stable contract shared with anything that consumes
``.hcimigrate/state/outputs.json``:

- discover: ``discovered_machines``, ``filtered_discovered_machines``
- initialize: ``replication_vault_id``, ``storage_account_id``,
  ``replication_policy_id``, ``source_fabric_id``, ``target_fabric_id``,
  ``source_dra_id``, ``target_dra_id``, ``replication_extension_id``
- replicate: ``protected_item_id``, ``replication_state``, ``target_vm_name``
- get / list: ``protected_item*`` and ``protected_items*``
"""

import json
import logging
from pathlib import Path
from typing import Any

from azext_hcimigrate.models import OperationMode, parse_operation_mode

logger = logging.getLogger(__name__)

DISCOVER_OUTPUTS = ("discovered_machines", "filtered_discovered_machines")
INITIALIZE_OUTPUTS = (
    "replication_vault_id",
    "storage_account_id",
    "replication_policy_id",
    "source_fabric_id",
    "target_fabric_id",
    "source_dra_id",
    "target_dra_id",
    "replication_extension_id",
)
REPLICATE_OUTPUTS = ("protected_item_id", "replication_state", "target_vm_name")
GET_OUTPUTS = (
    "protected_item",
    "protected_item_summary",
    "protected_item_health_errors",
    "protected_item_custom_properties",
)
LIST_OUTPUTS = (
    "protected_items_list",
    "protected_items_count",
    "protected_items_summary",
    "protected_items_by_state",
    "protected_items_by_health",
    "protected_items_with_errors",
)

MODE_OUTPUTS = {
    OperationMode.DISCOVER: DISCOVER_OUTPUTS,
    OperationMode.INITIALIZE: INITIALIZE_OUTPUTS,
    OperationMode.REPLICATE: REPLICATE_OUTPUTS,
}


class OutputCapture:
    """Persist stage outputs per operation mode.

    Outputs are written with sorted keys and no timestamps so that two
    identical applies produce byte-identical files.
    """

    OUTPUT_FILE = ".hcimigrate/state/outputs.json"

    def __init__(self, project_dir: str):
        self.project_dir = Path(project_dir)
        self._outputs: dict = self._load()

    def capture(self, mode: OperationMode | str, outputs: dict) -> dict:
        """Record *outputs* for *mode*, replacing what was captured before."""
        mode = parse_operation_mode(mode) if not isinstance(mode, OperationMode) else mode
        known = set(MODE_OUTPUTS[mode])
        unknown = sorted(set(outputs) - known)
        if unknown:
            logger.debug("Ignoring non-contract outputs for %s: %s", mode.value, unknown)
        captured = {k: v for k, v in outputs.items() if k in known}
        if captured == self._outputs.get(mode.value):
            logger.debug("Outputs for %s unchanged.", mode.value)
            return captured
        self._outputs[mode.value] = captured
        self._save()
        logger.info("Captured %d %s outputs.", len(captured), mode.value)
        return captured

    # --- Accessors ---

    def get(self, key: str, default: Any = None) -> Any:
        """Get a captured output value by name, searching every mode."""
        for mode in OperationMode:
            mode_outputs = self._outputs.get(mode.value, {})
            if key in mode_outputs:
                return mode_outputs[key]
        return default

    def get_mode(self, mode: OperationMode | str) -> dict:
        mode = parse_operation_mode(mode) if not isinstance(mode, OperationMode) else mode
        return dict(self._outputs.get(mode.value, {}))

    def get_all(self) -> dict:
        """Return all captured outputs."""
        return {k: dict(v) for k, v in self._outputs.items()}

    # --- Persistence ---

    def _load(self) -> dict:
        path = self.project_dir / self.OUTPUT_FILE
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning("Could not read %s: %s", path, e)
        return {}

    def _save(self):
        path = self.project_dir / self.OUTPUT_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self._outputs, f, indent=2, sort_keys=True)
            f.write("\n")
