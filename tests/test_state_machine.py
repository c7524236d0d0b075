"""Tests for azext_hcimigrate.state_machine — replication lifecycle."""

import pytest

from azext_hcimigrate.errors import InvalidTransitionError, ValidationError
from azext_hcimigrate.state_machine import (
    VALID_STATES,
    ReplicationHealth,
    ReplicationLifecycle,
    ReplicationState,
    can_transition,
    derive_state,
    is_failed_state,
    parse_health,
    transition,
)


class TestDeriveState:

    @pytest.mark.parametrize("raw,expected", [
        ("InitialReplicationInProgress", ReplicationState.INITIAL_REPLICATION_IN_PROGRESS),
        ("EnablingProtection", ReplicationState.INITIAL_REPLICATION_IN_PROGRESS),
        ("InitialReplicationCompletedOnPrimary", ReplicationState.REPLICATING),
        ("Replicating", ReplicationState.REPLICATING),
        ("protected", ReplicationState.PROTECTED),
        (None, ReplicationState.INITIAL_REPLICATION_IN_PROGRESS),
    ])
    def test_aliases(self, raw, expected):
        assert derive_state(raw, "Normal") == expected

    def test_unknown_state_reports_replicating(self):
        assert derive_state("SomethingNew") == ReplicationState.REPLICATING

    def test_critical_health_makes_protected_critical(self):
        assert derive_state("Protected", "Critical") == ReplicationState.PROTECTED_CRITICAL

    def test_recovered_health_makes_protected(self):
        assert derive_state("ProtectedCritical", ReplicationHealth.NORMAL) == ReplicationState.PROTECTED

    def test_critical_health_does_not_change_initial(self):
        assert derive_state("InitialReplicationInProgress", "Critical") == (
            ReplicationState.INITIAL_REPLICATION_IN_PROGRESS
        )

    def test_failed_states_keep_their_progress(self):
        assert derive_state("EnablingFailed", "Critical") == ReplicationState.INITIAL_REPLICATION_IN_PROGRESS
        assert derive_state("ResynchronizationFailed", "Critical") == ReplicationState.REPLICATING

    def test_every_derived_state_is_valid(self):
        for raw in ("Replicating", "Protected", "ProtectedCritical", "Unknown", ""):
            for health in ("Normal", "Warning", "Critical", "None", None):
                assert derive_state(raw, health).value in VALID_STATES


class TestHealth:

    def test_parse_health(self):
        assert parse_health("critical") == ReplicationHealth.CRITICAL
        assert parse_health(None) == ReplicationHealth.NONE
        assert parse_health("bogus") == ReplicationHealth.NONE

    def test_is_failed_state(self):
        assert is_failed_state("EnablingFailed")
        assert not is_failed_state("Protected")
        assert not is_failed_state(None)


class TestTransitions:

    def test_no_backward_transition_to_initial(self):
        assert not can_transition(ReplicationState.PROTECTED, ReplicationState.INITIAL_REPLICATION_IN_PROGRESS)
        assert not can_transition(ReplicationState.REPLICATING, ReplicationState.INITIAL_REPLICATION_IN_PROGRESS)

    def test_protected_critical_round_trip(self):
        assert can_transition(ReplicationState.PROTECTED, ReplicationState.PROTECTED_CRITICAL)
        assert can_transition(ReplicationState.PROTECTED_CRITICAL, ReplicationState.PROTECTED)

    def test_invalid_transition_raises(self):
        with pytest.raises(InvalidTransitionError):
            transition(ReplicationState.PROTECTED, ReplicationState.REPLICATING)

    def test_invalid_transition_is_validation_error(self):
        assert issubclass(InvalidTransitionError, ValidationError)


class TestReplicationLifecycle:

    def test_created_in_initial_replication(self):
        lifecycle = ReplicationLifecycle()
        assert lifecycle.state == ReplicationState.INITIAL_REPLICATION_IN_PROGRESS
        assert lifecycle.health == ReplicationHealth.NORMAL

    def test_full_progression(self):
        lifecycle = ReplicationLifecycle()
        assert lifecycle.complete_initial_replication() == ReplicationState.REPLICATING
        assert lifecycle.confirm_protected() == ReplicationState.PROTECTED

    def test_direct_to_protected(self):
        lifecycle = ReplicationLifecycle()
        assert lifecycle.complete_initial_replication(direct_to_protected=True) == ReplicationState.PROTECTED

    def test_health_drives_protected_critical(self):
        lifecycle = ReplicationLifecycle(state=ReplicationState.PROTECTED)
        errors = [{"errorCode": "DiskLatency", "message": "High churn"}]
        assert lifecycle.update_health(ReplicationHealth.CRITICAL, errors) == ReplicationState.PROTECTED_CRITICAL
        assert lifecycle.health_errors == errors
        assert lifecycle.update_health(ReplicationHealth.NORMAL) == ReplicationState.PROTECTED
        assert lifecycle.health_errors == []

    def test_health_is_orthogonal_before_protection(self):
        lifecycle = ReplicationLifecycle()
        assert lifecycle.update_health(ReplicationHealth.WARNING) == (
            ReplicationState.INITIAL_REPLICATION_IN_PROGRESS
        )
        assert lifecycle.health == ReplicationHealth.WARNING

    def test_confirm_protected_from_initial(self):
        lifecycle = ReplicationLifecycle()
        lifecycle.confirm_protected()
        assert lifecycle.state == ReplicationState.PROTECTED

    def test_observe_accepts_service_state(self):
        lifecycle = ReplicationLifecycle(state=ReplicationState.PROTECTED)
        assert lifecycle.observe("Replicating", "Normal") == ReplicationState.REPLICATING

    def test_to_dict(self):
        result = ReplicationLifecycle().to_dict()
        assert result == {"state": "InitialReplicationInProgress", "health": "Normal", "health_errors": []}
