"""Discover stage — enumerate machines an Azure Migrate project has found.

Read-only: nothing on the control plane is created or modified.
"""

import logging

from azext_hcimigrate import resource_ids
from azext_hcimigrate.controlplane.base import ControlPlane
from azext_hcimigrate.errors import NotFoundError
from azext_hcimigrate.models import DiscoverConfig, DiscoveredMachine
from azext_hcimigrate.retry import RetryPolicy, call_with_retry
from azext_hcimigrate.stages.base import BaseStage, StageGuard
from azext_hcimigrate.stages.guards import stage_guards

logger = logging.getLogger(__name__)


def filter_machines(machines: list[DiscoveredMachine], config: DiscoverConfig) -> list[DiscoveredMachine]:
    """Apply the name / OS type / source type filters from *config*."""
    selected = []
    for machine in machines:
        if config.name_filter and config.name_filter.lower() not in machine.machine_name.lower():
            continue
        if config.os_type and config.os_type.lower() not in machine.os_type.lower():
            continue
        if config.source_machine_type and machine.source_machine_type != config.source_machine_type:
            continue
        selected.append(machine)
    return selected


class DiscoverStage(BaseStage):
    """List the discovered machines of one migrate project."""

    def __init__(self, project_dir: str = ".", backend: str = "arm", retry: RetryPolicy | None = None):
        super().__init__(
            name="discover",
            description="List machines discovered by an Azure Migrate project",
        )
        self.project_dir = project_dir
        self.backend = backend
        self.retry = retry or RetryPolicy()

    def get_guards(self) -> list[StageGuard]:
        return stage_guards(self.name, self.project_dir, self.backend)

    def execute(self, control_plane: ControlPlane, config: DiscoverConfig, **kwargs) -> dict:
        """Return ``discovered_machines`` and ``filtered_discovered_machines``.

        ``filtered_discovered_machines`` is the reduced projection of the
        machines that pass the filters, indexed from 0 in listing order.
        """
        config.validate()
        project_id = config.project_id

        if not call_with_retry(lambda: control_plane.exists(project_id), self.retry, "Project lookup"):
            raise NotFoundError(
                "Migrate project", config.project_name,
                f"Check that it exists in resource group '{config.resource_group_name}'.",
            )

        raw = call_with_retry(
            lambda: control_plane.list(f"{project_id}/machines"), self.retry, "Machine listing",
        )
        machines = [DiscoveredMachine.from_arm(m) for m in raw]
        selected = filter_machines(machines, config)
        logger.info(
            "Discovered %d machines in %s (%d after filters)",
            len(machines), resource_ids.name_from_id(project_id), len(selected),
        )

        return {
            "discovered_machines": [m.to_dict() for m in machines],
            "filtered_discovered_machines": [m.to_filtered(i) for i, m in enumerate(selected)],
        }
