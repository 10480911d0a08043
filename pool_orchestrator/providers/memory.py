"""
In-process sandbox bindings.

Used for local development, dry runs and tests. The resource store keeps
every object in a dict keyed by (kind, id), records every call, and can be
told to fail a given operation or to delay database moves so polling can be
exercised.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pool_orchestrator.config.logging import get_logger
from pool_orchestrator.exceptions import ConflictError, ProviderError, ResourceNotFoundError
from pool_orchestrator.models.placement import DATABASE_ONLINE, ResourceKind

logger = get_logger(__name__)

MUTATING_OPERATIONS = ("create", "update", "delete")
PLACEMENT_FIELDS = ("pool_name", "edition", "service_objective")

Key = Tuple[ResourceKind, str]


class InMemoryResourceStore:
    """
    Resource store backed by a dict.

    Args:
        settle_after_reads: Reads of a moved database before the new placement
            shows up. 0 applies moves at once; None never applies them.
        moving_status: Status reported while a move is pending (default: unchanged)
        domain_suffix: Suffix of generated server addresses
    """

    def __init__(
        self,
        settle_after_reads: Optional[int] = 0,
        moving_status: Optional[str] = None,
        domain_suffix: str = "database.example.net",
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.settle_after_reads = settle_after_reads
        self.moving_status = moving_status
        self.domain_suffix = domain_suffix
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._resources: Dict[Key, Dict[str, Any]] = {}
        self._pending: Dict[Key, List[Any]] = {}
        self._failures: Dict[Tuple[str, Optional[ResourceKind], Optional[str]], Exception] = {}
        self.calls: List[Tuple[str, ResourceKind, str]] = []

    # Test helpers

    def fail(
        self,
        operation: str,
        kind: Optional[ResourceKind] = None,
        resource_id: Optional[str] = None,
        error: Optional[Exception] = None,
    ) -> None:
        """Make ``operation`` raise ``error`` (default: ProviderError) for matching objects."""
        self._failures[(operation, kind, resource_id)] = error or ProviderError(
            f"injected {operation} failure", details={"operation": operation}
        )

    def seed(self, kind: ResourceKind, resource_id: str, properties: Mapping[str, Any]) -> None:
        """Place an object in the store without recording a call."""
        self._resources[(kind, resource_id)] = self._materialize(kind, resource_id, properties)

    @property
    def mutations(self) -> List[Tuple[str, ResourceKind, str]]:
        return [call for call in self.calls if call[0] in MUTATING_OPERATIONS]

    def ids(self, kind: ResourceKind) -> List[str]:
        return sorted(resource_id for (k, resource_id) in self._resources if k == kind)

    # ResourceStore

    def _record(self, operation: str, kind: ResourceKind, resource_id: str) -> None:
        self.calls.append((operation, kind, resource_id))
        for key in ((operation, kind, resource_id), (operation, kind, None), (operation, None, None)):
            if key in self._failures:
                logger.debug("injected_failure", operation=operation, kind=kind.value, resource_id=resource_id)
                raise self._failures[key]

    def _materialize(self, kind: ResourceKind, resource_id: str, properties: Mapping[str, Any]) -> Dict[str, Any]:
        snapshot = {"id": resource_id, "kind": kind.value, **dict(properties)}
        if kind == ResourceKind.SERVER:
            snapshot.setdefault("fully_qualified_domain_name", f"{snapshot.get('name', resource_id)}.{self.domain_suffix}")
            snapshot.setdefault("state", "Ready")
        elif kind == ResourceKind.ELASTIC_POOL:
            snapshot.setdefault("state", "Ready")
        elif kind == ResourceKind.DATABASE:
            snapshot.setdefault("status", DATABASE_ONLINE)
            snapshot.setdefault(
                "earliest_restore_point", (self._now() - timedelta(minutes=10)).isoformat()
            )
        return snapshot

    def _check_parent(self, kind: ResourceKind, resource_id: str, properties: Mapping[str, Any]) -> None:
        parent, _, _ = resource_id.rpartition("/")
        if parent and not any(key_id == parent for (_, key_id) in self._resources):
            raise ProviderError(
                f"parent '{parent}' of {kind.value} '{resource_id}' does not exist",
                details={"resource_id": resource_id},
            )
        pool_name = properties.get("pool_name")
        if kind == ResourceKind.DATABASE and pool_name:
            if (ResourceKind.ELASTIC_POOL, f"{parent}/{pool_name}") not in self._resources:
                raise ProviderError(
                    f"elastic pool '{pool_name}' does not exist on '{parent}'",
                    details={"resource_id": resource_id},
                )

    async def exists(self, kind: ResourceKind, resource_id: str) -> bool:
        self._record("exists", kind, resource_id)
        return (kind, resource_id) in self._resources

    async def create(self, kind: ResourceKind, resource_id: str, spec: Mapping[str, Any]) -> Dict[str, Any]:
        self._record("create", kind, resource_id)
        key = (kind, resource_id)
        if key in self._resources:
            raise ConflictError(f"{kind.value} '{resource_id}' already exists", details={"resource_id": resource_id})
        self._check_parent(kind, resource_id, spec)
        self._resources[key] = self._materialize(kind, resource_id, spec)
        logger.debug("sandbox_resource_created", kind=kind.value, resource_id=resource_id)
        return dict(self._resources[key])

    async def get(self, kind: ResourceKind, resource_id: str) -> Dict[str, Any]:
        self._record("get", kind, resource_id)
        key = (kind, resource_id)
        if key not in self._resources:
            raise ResourceNotFoundError(kind.value, resource_id)

        pending = self._pending.get(key)
        if pending is not None and pending[1] is not None:
            pending[1] -= 1
            if pending[1] <= 0:
                self._apply(key, pending[0])
                del self._pending[key]
        return dict(self._resources[key])

    def _apply(self, key: Key, delta: Mapping[str, Any]) -> None:
        snapshot = self._resources[key]
        snapshot.update(delta)
        if key[0] == ResourceKind.DATABASE and "status" not in delta:
            snapshot["status"] = snapshot.pop("_settled_status", snapshot.get("status"))

    async def update(self, kind: ResourceKind, resource_id: str, delta: Mapping[str, Any]) -> Dict[str, Any]:
        self._record("update", kind, resource_id)
        key = (kind, resource_id)
        if key not in self._resources:
            raise ResourceNotFoundError(kind.value, resource_id)

        delta = dict(delta)
        if kind == ResourceKind.DATABASE and any(field in delta for field in PLACEMENT_FIELDS):
            self._check_parent(kind, resource_id, {"pool_name": delta.get("pool_name")})
            if self.settle_after_reads != 0:
                snapshot = self._resources[key]
                if self.moving_status is not None:
                    snapshot["_settled_status"] = snapshot.get("status")
                    snapshot["status"] = self.moving_status
                self._pending[key] = [delta, self.settle_after_reads]
                return dict(snapshot)

        self._apply(key, delta)
        return dict(self._resources[key])

    async def delete(self, kind: ResourceKind, resource_id: str) -> bool:
        """Delete an object and everything below it."""
        self._record("delete", kind, resource_id)
        if (kind, resource_id) not in self._resources:
            return False
        prefix = f"{resource_id}/"
        doomed = [
            key for key in self._resources
            if key == (kind, resource_id) or key[1].startswith(prefix)
        ]
        for key in doomed:
            del self._resources[key]
            self._pending.pop(key, None)
        logger.debug("sandbox_resources_deleted", root=resource_id, count=len(doomed))
        return True


class InMemoryQueryChannel:
    """
    Query channel answering from canned responses.

    Responses are matched by substring of the statement; the first match wins.
    Every executed statement is recorded in ``statements``.
    """

    def __init__(self, responses: Optional[List[Tuple[str, Any]]] = None):
        self.responses: List[Tuple[str, Any]] = list(responses or [])
        self.statements: List[Tuple[str, str]] = []

    def respond(self, fragment: str, result: Any) -> None:
        """Answer statements containing ``fragment`` with rows, or raise ``result`` if it is an exception."""
        self.responses.append((fragment, result))

    async def execute(
        self,
        server_address: str,
        database_name: str,
        statement: str,
        credential_token: Optional[str],
        timeout: float,
    ) -> List[Dict[str, Any]]:
        self.statements.append((database_name, statement))
        for fragment, result in self.responses:
            if fragment in statement:
                if isinstance(result, Exception):
                    raise result
                return [dict(row) for row in result]
        return []


class InMemoryNotificationSink:
    """Collects sent messages."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.sent: List[Tuple[str, str]] = []

    async def send(self, channel_config: str, message: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((channel_config, message))
