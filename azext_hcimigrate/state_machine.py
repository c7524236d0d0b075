"""Replication lifecycle of a protected item.

Two orthogonal dimensions describe a protected item:

* **state** — coarse progress of the replication::

      InitialReplicationInProgress ──► Replicating ──► Protected ◄──► ProtectedCritical
                    │                                     ▲
                    └─────────────────────────────────────┘

* **health** — ``Normal`` / ``Warning`` / ``Critical`` / ``None`` plus a list
  of health errors, updated continuously by the service.

``ProtectedCritical`` is not an independent milestone: it is ``Protected``
observed with ``Critical`` health, so the pair is always re-derived from
health rather than stored.
"""

from __future__ import annotations

import logging
from enum import Enum

from azext_hcimigrate.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class ReplicationState(str, Enum):
    """Coarse replication state of a protected item."""

    INITIAL_REPLICATION_IN_PROGRESS = "InitialReplicationInProgress"
    REPLICATING = "Replicating"
    PROTECTED = "Protected"
    PROTECTED_CRITICAL = "ProtectedCritical"


class ReplicationHealth(str, Enum):
    """Replication health reported by the service."""

    NORMAL = "Normal"
    WARNING = "Warning"
    CRITICAL = "Critical"
    NONE = "None"


VALID_STATES = tuple(s.value for s in ReplicationState)

# Raw ``protectionState`` values the service reports, mapped onto the
# four coarse states.
_STATE_ALIASES: dict[str, ReplicationState] = {
    "enablingprotection": ReplicationState.INITIAL_REPLICATION_IN_PROGRESS,
    "initialreplicationinprogress": ReplicationState.INITIAL_REPLICATION_IN_PROGRESS,
    "initialreplicationstarted": ReplicationState.INITIAL_REPLICATION_IN_PROGRESS,
    "initialreplicationcompletedonprimary": ReplicationState.REPLICATING,
    "initialreplicationcompletedonrecovery": ReplicationState.REPLICATING,
    "replicating": ReplicationState.REPLICATING,
    "protected": ReplicationState.PROTECTED,
    "protectedcritical": ReplicationState.PROTECTED_CRITICAL,
}

_ALLOWED_TRANSITIONS: dict[ReplicationState, frozenset[ReplicationState]] = {
    ReplicationState.INITIAL_REPLICATION_IN_PROGRESS: frozenset({
        ReplicationState.INITIAL_REPLICATION_IN_PROGRESS,
        ReplicationState.REPLICATING,
        ReplicationState.PROTECTED,
        ReplicationState.PROTECTED_CRITICAL,
    }),
    ReplicationState.REPLICATING: frozenset({
        ReplicationState.REPLICATING,
        ReplicationState.PROTECTED,
        ReplicationState.PROTECTED_CRITICAL,
    }),
    ReplicationState.PROTECTED: frozenset({
        ReplicationState.PROTECTED,
        ReplicationState.PROTECTED_CRITICAL,
    }),
    ReplicationState.PROTECTED_CRITICAL: frozenset({
        ReplicationState.PROTECTED,
        ReplicationState.PROTECTED_CRITICAL,
    }),
}


def parse_health(raw: str | None) -> ReplicationHealth:
    """Map a raw ``replicationHealth`` value onto :class:`ReplicationHealth`."""
    if not raw:
        return ReplicationHealth.NONE
    for health in ReplicationHealth:
        if health.value.lower() == str(raw).lower():
            return health
    logger.warning("Unrecognised replication health '%s'; treating as None.", raw)
    return ReplicationHealth.NONE


def is_failed_state(raw: str | None) -> bool:
    """True when the service reports a failed protection attempt."""
    return bool(raw) and str(raw).lower().endswith("failed")


def derive_state(raw_state: str | None, health: ReplicationHealth | str | None = None) -> ReplicationState:
    """Normalise a raw service state and fold health into Protected/ProtectedCritical."""
    if not isinstance(health, ReplicationHealth):
        health = parse_health(health)

    if not raw_state:
        state = ReplicationState.INITIAL_REPLICATION_IN_PROGRESS
    elif is_failed_state(raw_state):
        # callers report the failure itself; only the progress is derived here
        failed_early = str(raw_state).lower().startswith(("enabling", "initialreplication"))
        state = ReplicationState.INITIAL_REPLICATION_IN_PROGRESS if failed_early else ReplicationState.REPLICATING
    else:
        state = _STATE_ALIASES.get(str(raw_state).lower())
        if state is None:
            logger.warning("Unrecognised protection state '%s'; reporting as Replicating.", raw_state)
            state = ReplicationState.REPLICATING

    if state in (ReplicationState.PROTECTED, ReplicationState.PROTECTED_CRITICAL):
        if health == ReplicationHealth.CRITICAL:
            return ReplicationState.PROTECTED_CRITICAL
        if health in (ReplicationHealth.NORMAL, ReplicationHealth.WARNING):
            return ReplicationState.PROTECTED
    return state


def can_transition(current: ReplicationState, target: ReplicationState) -> bool:
    return target in _ALLOWED_TRANSITIONS[current]


def transition(current: ReplicationState, target: ReplicationState) -> ReplicationState:
    """Validate and return *target*; raise InvalidTransitionError otherwise."""
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move a protected item from '{current.value}' to '{target.value}'."
        )
    return target


class ReplicationLifecycle:
    """Tracks one protected item's state and health across observations.

    Used by the local control plane to advance simulated items along the
    allowed transitions.
    """

    def __init__(
        self,
        state: ReplicationState = ReplicationState.INITIAL_REPLICATION_IN_PROGRESS,
        health: ReplicationHealth = ReplicationHealth.NORMAL,
        health_errors: list[dict] | None = None,
    ):
        self.state = state
        self.health = health
        self.health_errors: list[dict] = list(health_errors or [])

    def complete_initial_replication(self, direct_to_protected: bool = False) -> ReplicationState:
        """First full copy finished; move to Replicating (or straight to Protected)."""
        target = ReplicationState.PROTECTED if direct_to_protected else ReplicationState.REPLICATING
        return self._move(target)

    def confirm_protected(self) -> ReplicationState:
        """Incremental sync caught up; the item is protected."""
        return self._move(ReplicationState.PROTECTED)

    def update_health(self, health: ReplicationHealth, errors: list[dict] | None = None) -> ReplicationState:
        """Record a new health reading and re-derive Protected/ProtectedCritical."""
        self.health = health
        self.health_errors = list(errors or [])
        if self.state in (ReplicationState.PROTECTED, ReplicationState.PROTECTED_CRITICAL):
            return self._move(derive_state(ReplicationState.PROTECTED.value, health))
        return self.state

    def observe(self, raw_state: str | None, raw_health: str | None) -> ReplicationState:
        """Fold an observed service reading into the lifecycle.

        Backward moves are logged, not raised: the service is authoritative.
        """
        health = parse_health(raw_health)
        observed = derive_state(raw_state, health)
        if not can_transition(self.state, observed):
            logger.warning(
                "Protected item moved from %s to %s; accepting service state.",
                self.state.value, observed.value,
            )
        self.state = observed
        self.health = health
        return observed

    def _move(self, target: ReplicationState) -> ReplicationState:
        if target == ReplicationState.PROTECTED and self.health == ReplicationHealth.CRITICAL:
            target = ReplicationState.PROTECTED_CRITICAL
        self.state = transition(self.state, target)
        return self.state

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "health": self.health.value,
            "health_errors": list(self.health_errors),
        }
