"""
Per-database migration locks.

The migration driver does not serialize runs itself; callers that can start
migrations concurrently (the API, the command layer) take a lock here first
so two moves of the same database never race each other.

Usage:
    >>> locks = MigrationLockRegistry()
    >>> async with locks.hold("rg/server/db", owner="run-abc"):
    ...     await engine.migrate(request, ctx)
"""
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from pool_orchestrator.config.logging import get_logger
from pool_orchestrator.exceptions import MigrationLockedError

logger = get_logger(__name__)


class MigrationLockRegistry:
    """
    In-process registry of databases with a migration in flight.

    Safe to share between threads and event loops: the table is guarded by a
    plain mutex and no await happens while it is held.
    """

    def __init__(self):
        self._holders: Dict[str, Dict[str, Any]] = {}
        self._mutex = threading.Lock()

    def acquire_lock(self, database_id: str, owner: str) -> bool:
        """
        Acquire the lock for a database.

        Args:
            database_id: Database id to lock
            owner: Run id of the caller

        Returns:
            True if acquired, False if another run holds it
        """
        with self._mutex:
            holder = self._holders.get(database_id)
            if holder is not None:
                logger.warning(
                    "migration_lock_busy",
                    database_id=database_id,
                    requested_by=owner,
                    held_by=holder["owner"],
                )
                return False
            self._holders[database_id] = {
                "owner": owner,
                "acquired_at": datetime.now(timezone.utc).isoformat(),
            }

        logger.info("migration_lock_acquired", database_id=database_id, owner=owner)
        return True

    def release_lock(self, database_id: str, owner: str) -> bool:
        """
        Release a lock held by ``owner``.

        Returns:
            True if released, False if the lock was not held by owner
        """
        with self._mutex:
            holder = self._holders.get(database_id)
            if holder is None or holder["owner"] != owner:
                logger.warning(
                    "migration_lock_release_not_owner",
                    database_id=database_id,
                    owner=owner,
                    held_by=holder["owner"] if holder else None,
                )
                return False
            del self._holders[database_id]

        logger.info("migration_lock_released", database_id=database_id, owner=owner)
        return True

    def is_locked(self, database_id: str) -> bool:
        with self._mutex:
            return database_id in self._holders

    def get_lock_info(self, database_id: str) -> Optional[Dict[str, Any]]:
        with self._mutex:
            holder = self._holders.get(database_id)
            return dict(holder) if holder else None

    @asynccontextmanager
    async def hold(self, database_id: str, owner: str) -> AsyncIterator[None]:
        """
        Hold the lock for the duration of the block.

        Raises:
            MigrationLockedError: If another run is already migrating the database
        """
        if not self.acquire_lock(database_id, owner):
            raise MigrationLockedError(database_id, held_by=self.get_lock_info(database_id))
        try:
            yield
        finally:
            self.release_lock(database_id, owner)


# Shared by the API and CLI entry points of this process
migration_locks = MigrationLockRegistry()
