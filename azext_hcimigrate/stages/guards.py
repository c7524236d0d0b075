"""Prerequisite guards for the migration stages."""

import logging
import subprocess
from pathlib import Path

from azext_hcimigrate.controlplane.arm import _az
from azext_hcimigrate.stages.base import StageGuard, evaluate_guards

logger = logging.getLogger(__name__)

STAGE_NAMES = ("discover", "initialize", "replicate")


def stage_guards(stage_name: str, project_dir: str, backend: str = "arm") -> list[StageGuard]:
    """Guards for *stage_name*; the ARM backend also needs an ``az login``."""
    guards = [
        StageGuard(
            name="project_dir",
            description="Working directory exists",
            check_fn=Path(project_dir).is_dir,
            error_message=f"Project directory not found: {project_dir}.",
        ),
    ]
    if backend == "arm":
        guards.append(StageGuard(
            name="az_logged_in",
            description=f"Azure CLI session for {stage_name}",
            check_fn=_check_az_logged_in,
            error_message="Not logged into Azure CLI. Run 'az login' first.",
        ))
    return guards


def check_prerequisites(stage_name: str, project_dir: str, backend: str = "arm") -> tuple[bool, list[str]]:
    """Evaluate the guards of *stage_name* without running it.

    Returns:
        ``(all_passed, failure_messages)``
    """
    failures = evaluate_guards(stage_guards(stage_name, project_dir, backend))
    if failures:
        logger.debug("%s blocked: %s", stage_name, failures)
    return not failures, failures


def _check_az_logged_in() -> bool:
    try:
        result = subprocess.run([_az(), "account", "show"], capture_output=True, text=True, check=False)
    except FileNotFoundError:
        return False
    return result.returncode == 0
