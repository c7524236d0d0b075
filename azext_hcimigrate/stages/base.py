"""Stage framework shared by discover, initialize and replicate."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from azext_hcimigrate.controlplane.base import ControlPlane
from azext_hcimigrate.errors import MigrateError


class StageState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StageGuard:
    """A prerequisite that must hold before a stage touches the control plane."""

    name: str
    description: str
    check_fn: Callable[[], bool]
    error_message: str


def evaluate_guards(guards: list[StageGuard]) -> list[str]:
    """Return one ``[name] message`` line per failing guard.

    A guard whose check raises counts as failed.
    """
    failures = []
    for guard in guards:
        try:
            passed = guard.check_fn()
        except Exception as e:  # a broken check must not abort the others
            failures.append(f"[{guard.name}] Check error: {e}")
            continue
        if not passed:
            failures.append(f"[{guard.name}] {guard.error_message}")
    return failures


class BaseStage(ABC):
    """One step of the migration workflow.

    Subclasses converge the control plane towards their typed
    configuration and return the captured outputs of their operation
    mode.  Running a stage twice with the same input must leave the same
    resources behind.
    """

    def __init__(self, name: str, description: str):
        self.name = name
        self.description = description
        self._state = StageState.NOT_STARTED
        self.transitions: list[tuple[StageState, str]] = []

    @property
    def state(self) -> StageState:
        return self._state

    def _enter(self, state: StageState):
        self._state = state
        self.transitions.append((state, datetime.now(timezone.utc).isoformat()))

    @abstractmethod
    def get_guards(self) -> list[StageGuard]:
        """Prerequisites checked by :meth:`run` before :meth:`execute`."""

    @abstractmethod
    def execute(self, control_plane: ControlPlane, config: Any, **kwargs) -> dict:
        """Do the stage's work and return its outputs."""

    def run(self, control_plane: ControlPlane, config: Any, **kwargs) -> dict:
        """Check guards, then execute while tracking the stage state.

        Raises:
            MigrateError: A guard failed; nothing was executed.
        """
        failures = evaluate_guards(self.get_guards())
        if failures:
            raise MigrateError(f"Cannot run '{self.name}':\n  " + "\n  ".join(failures))

        self._enter(StageState.IN_PROGRESS)
        try:
            result = self.execute(control_plane, config, **kwargs)
        except Exception:
            self._enter(StageState.FAILED)
            raise
        self._enter(StageState.COMPLETED)
        return result
