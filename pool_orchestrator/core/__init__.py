"""
Core building blocks of the orchestrator.

- Run-scoped context and severity-guarded steps
- Collaborator protocols and the injectable clock
- Migration state transition table
- Typed statement builder
- Per-database migration locks
"""

# Import lazily to avoid circular dependencies at module load time
# Users should import directly from submodules:
# from pool_orchestrator.core.context import RunContext
# from pool_orchestrator.core.state_machine import MigrationStateMachine
# from pool_orchestrator.core.locks import MigrationLockRegistry
