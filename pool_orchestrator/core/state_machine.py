"""
Migration State Machine transition table.

States:
- VALIDATING: precondition checks, no mutation
- VALIDATED_ONLY: validate-only run stopped after checks
- PREPARING: best-effort backup acknowledgement
- MOVING: the single mutation call is issued
- POLLING: waiting for the database to settle in its new placement
- SUCCEEDED: online in the target placement
- TIMED_OUT: deadline passed; the move may still complete later
- FAILED: any state can fail

Usage:
    >>> from pool_orchestrator.core.state_machine import MigrationStateMachine
    >>> from pool_orchestrator.models.migration import MigrationState
    >>>
    >>> MigrationStateMachine.can_transition(
    ...     MigrationState.VALIDATING,
    ...     MigrationState.PREPARING
    ... )
    True
    >>> MigrationStateMachine.can_transition(
    ...     MigrationState.POLLING,
    ...     MigrationState.MOVING
    ... )
    False
"""

from typing import Dict, Optional, Set

from pool_orchestrator.config.logging import get_logger
from pool_orchestrator.models.migration import MigrationState, MigrationStatus

logger = get_logger(__name__)


class MigrationStateMachine:
    """
    Transition rules for a migration run.

    The migration driver consults this table on every state change so an
    out-of-order step is caught as a programming error.
    """

    TRANSITIONS: Dict[MigrationState, Set[MigrationState]] = {
        MigrationState.VALIDATING: {
            MigrationState.VALIDATED_ONLY,  # validate_only requested
            MigrationState.PREPARING,       # checks passed
            MigrationState.FAILED,          # precondition failed
        },
        MigrationState.PREPARING: {
            MigrationState.MOVING,
            MigrationState.FAILED,
        },
        MigrationState.MOVING: {
            MigrationState.POLLING,
            MigrationState.FAILED,          # provider rejected the move
        },
        MigrationState.POLLING: {
            MigrationState.SUCCEEDED,
            MigrationState.TIMED_OUT,
            MigrationState.FAILED,
        },
        MigrationState.VALIDATED_ONLY: set(),
        MigrationState.SUCCEEDED: set(),
        MigrationState.TIMED_OUT: set(),
        MigrationState.FAILED: set(),
    }

    TERMINAL_STATUS: Dict[MigrationState, MigrationStatus] = {
        MigrationState.VALIDATED_ONLY: MigrationStatus.VALIDATED_ONLY,
        MigrationState.SUCCEEDED: MigrationStatus.SUCCEEDED,
        MigrationState.TIMED_OUT: MigrationStatus.TIMED_OUT,
        MigrationState.FAILED: MigrationStatus.FAILED,
    }

    @classmethod
    def can_transition(cls, from_state: MigrationState, to_state: MigrationState) -> bool:
        """
        Check if state transition is valid.

        Args:
            from_state: Current state
            to_state: Target state

        Returns:
            True if transition is allowed, False otherwise
        """
        return to_state in cls.TRANSITIONS.get(from_state, set())

    @classmethod
    def validate_transition(
        cls,
        from_state: MigrationState,
        to_state: MigrationState,
        database_id: Optional[str] = None,
    ) -> None:
        """
        Validate state transition and raise exception if invalid.

        Args:
            from_state: Current state
            to_state: Target state
            database_id: Optional database ID for logging

        Raises:
            ValueError: If transition is not allowed
        """
        if not cls.can_transition(from_state, to_state):
            error_msg = (
                f"Invalid migration transition from {from_state.value} "
                f"to {to_state.value}"
            )
            if database_id:
                error_msg += f" for database {database_id}"

            logger.error(
                "invalid_migration_transition",
                database_id=database_id,
                from_state=from_state.value,
                to_state=to_state.value,
                allowed_states=[s.value for s in cls.TRANSITIONS.get(from_state, set())],
            )
            raise ValueError(error_msg)

    @classmethod
    def is_terminal(cls, state: MigrationState) -> bool:
        return state in cls.TERMINAL_STATUS

    @classmethod
    def status_for(cls, state: MigrationState) -> MigrationStatus:
        """
        Map a terminal state to the outcome status.

        Raises:
            ValueError: If the state is not terminal
        """
        try:
            return cls.TERMINAL_STATUS[state]
        except KeyError:
            raise ValueError(f"State {state.value} is not terminal") from None
