"""Migration stages: discover, initialize and replicate."""

from azext_hcimigrate.stages.base import BaseStage, StageGuard, StageState, evaluate_guards
from azext_hcimigrate.stages.discover_stage import DiscoverStage
from azext_hcimigrate.stages.guards import check_prerequisites
from azext_hcimigrate.stages.init_stage import InitStage
from azext_hcimigrate.stages.replicate_stage import ReplicateStage

__all__ = [
    "BaseStage",
    "DiscoverStage",
    "InitStage",
    "ReplicateStage",
    "StageGuard",
    "StageState",
    "check_prerequisites",
    "evaluate_guards",
]
