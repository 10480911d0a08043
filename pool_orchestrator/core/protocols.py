"""
Interfaces of the external collaborators the orchestrator drives.

Concrete bindings live in ``pool_orchestrator.providers``. Time is injected
through ``Clock`` and ``Sleeper`` so polling can be driven by a fake clock.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from pool_orchestrator.models.placement import ResourceKind


@runtime_checkable
class ResourceStore(Protocol):
    """Create/read/update access to provider resources."""

    async def exists(self, kind: ResourceKind, resource_id: str) -> bool: ...

    async def create(
        self, kind: ResourceKind, resource_id: str, spec: Mapping[str, Any]
    ) -> Dict[str, Any]: ...

    async def get(self, kind: ResourceKind, resource_id: str) -> Dict[str, Any]: ...

    async def update(
        self, kind: ResourceKind, resource_id: str, delta: Mapping[str, Any]
    ) -> Dict[str, Any]: ...


@runtime_checkable
class DeletableResourceStore(ResourceStore, Protocol):
    """Resource store that also supports the caller-invoked cleanup."""

    async def delete(self, kind: ResourceKind, resource_id: str) -> bool: ...


@runtime_checkable
class QueryChannel(Protocol):
    """Runs one statement against one database and returns its rows."""

    async def execute(
        self,
        server_address: str,
        database_name: str,
        statement: str,
        credential_token: Optional[str],
        timeout: float,
    ) -> List[Dict[str, Any]]: ...


@runtime_checkable
class NotificationSink(Protocol):
    """Fire-and-forget delivery of a message to a channel."""

    async def send(self, channel_config: str, message: str) -> None: ...


@runtime_checkable
class Clock(Protocol):
    def now(self) -> datetime: ...


@runtime_checkable
class Sleeper(Protocol):
    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class AsyncioSleeper:
    """Sleeps on the running event loop; cancellation propagates to the caller."""

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
