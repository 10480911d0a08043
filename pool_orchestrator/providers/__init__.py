"""
Bindings of the collaborator protocols.

- memory: in-process sandbox (development, dry runs, tests)
- http: REST control plane
"""
from pool_orchestrator.providers.http import HttpQueryChannel, HttpResourceStore, WebhookNotificationSink
from pool_orchestrator.providers.memory import (
    InMemoryNotificationSink,
    InMemoryQueryChannel,
    InMemoryResourceStore,
)

__all__ = [
    "HttpQueryChannel",
    "HttpResourceStore",
    "WebhookNotificationSink",
    "InMemoryNotificationSink",
    "InMemoryQueryChannel",
    "InMemoryResourceStore",
]
