"""
Tests for the migration transition table.
"""
import pytest

from pool_orchestrator.core.state_machine import MigrationStateMachine
from pool_orchestrator.models.migration import MigrationState, MigrationStatus


@pytest.mark.parametrize(
    "from_state,to_state",
    [
        (MigrationState.VALIDATING, MigrationState.PREPARING),
        (MigrationState.VALIDATING, MigrationState.VALIDATED_ONLY),
        (MigrationState.PREPARING, MigrationState.MOVING),
        (MigrationState.MOVING, MigrationState.POLLING),
        (MigrationState.POLLING, MigrationState.SUCCEEDED),
        (MigrationState.POLLING, MigrationState.TIMED_OUT),
        (MigrationState.MOVING, MigrationState.FAILED),
    ],
)
def test_allowed_transitions(from_state, to_state):
    assert MigrationStateMachine.can_transition(from_state, to_state)
    MigrationStateMachine.validate_transition(from_state, to_state)


@pytest.mark.parametrize(
    "from_state,to_state",
    [
        (MigrationState.VALIDATING, MigrationState.MOVING),
        (MigrationState.POLLING, MigrationState.MOVING),
        (MigrationState.SUCCEEDED, MigrationState.POLLING),
        (MigrationState.FAILED, MigrationState.VALIDATING),
    ],
)
def test_rejected_transitions(from_state, to_state):
    assert not MigrationStateMachine.can_transition(from_state, to_state)
    with pytest.raises(ValueError, match="for database rg/srv/db"):
        MigrationStateMachine.validate_transition(from_state, to_state, database_id="rg/srv/db")


def test_terminal_states_map_to_statuses():
    assert MigrationStateMachine.is_terminal(MigrationState.TIMED_OUT)
    assert not MigrationStateMachine.is_terminal(MigrationState.POLLING)
    assert MigrationStateMachine.status_for(MigrationState.SUCCEEDED) == MigrationStatus.SUCCEEDED
    assert MigrationStateMachine.status_for(MigrationState.VALIDATED_ONLY) == MigrationStatus.VALIDATED_ONLY

    with pytest.raises(ValueError):
        MigrationStateMachine.status_for(MigrationState.MOVING)
