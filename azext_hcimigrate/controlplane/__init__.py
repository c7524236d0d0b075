"""Control-plane adapters — ARM REST and the in-process local store."""

import logging
from pathlib import Path

from azext_hcimigrate.controlplane.arm import ArmControlPlane
from azext_hcimigrate.controlplane.base import ControlPlane
from azext_hcimigrate.controlplane.local import LocalControlPlane
from azext_hcimigrate.errors import ValidationError

logger = logging.getLogger(__name__)

BACKENDS = ("arm", "local")
DEFAULT_LOCAL_STATE = ".hcimigrate/state/controlplane.yaml"


def get_control_plane(config, project_dir: str) -> ControlPlane:
    """Build the control plane selected by ``controlplane.backend``."""
    backend = str(config.get("controlplane.backend", "arm")).lower()
    if backend == "local":
        state_path = Path(project_dir) / config.get("controlplane.local_state_path", DEFAULT_LOCAL_STATE)
        logger.debug("Using local control plane at %s", state_path)
        return LocalControlPlane(state_path)
    if backend == "arm":
        return ArmControlPlane(timeout=int(config.get("controlplane.timeout", 60)))
    raise ValidationError(f"Unknown control plane backend '{backend}'. Supported: {', '.join(BACKENDS)}")


__all__ = [
    "ArmControlPlane",
    "BACKENDS",
    "ControlPlane",
    "LocalControlPlane",
    "get_control_plane",
]
