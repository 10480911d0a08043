"""
Resource existence probe.
Basis for idempotent provisioning: every create is preceded by a probe.
"""
from typing import Any, Dict, Optional

from pool_orchestrator.config.logging import get_logger
from pool_orchestrator.core.protocols import ResourceStore
from pool_orchestrator.exceptions import ResourceNotFoundError
from pool_orchestrator.models.placement import ResourceKind

logger = get_logger(__name__)


class ResourceProbe:
    """Existence checks against the resource store."""

    def __init__(self, store: ResourceStore):
        self.store = store

    async def exists(self, kind: ResourceKind, resource_id: str) -> bool:
        """
        Check whether an object exists.

        Provider failures propagate as ProviderError; a failed probe is never
        read as "absent".
        """
        found = await self.store.exists(kind, resource_id)
        logger.debug("resource_probed", kind=kind.value, resource_id=resource_id, exists=found)
        return found

    async def get_or_none(self, kind: ResourceKind, resource_id: str) -> Optional[Dict[str, Any]]:
        """Return the object's snapshot, or None if it does not exist."""
        if not await self.exists(kind, resource_id):
            return None
        try:
            return await self.store.get(kind, resource_id)
        except ResourceNotFoundError:
            # Deleted between the probe and the read
            return None
