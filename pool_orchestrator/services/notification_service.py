"""
Notification service.
Fire-and-forget delivery; a failed send is a warning, never an error.
"""
from typing import Optional

from pool_orchestrator.config.settings import settings
from pool_orchestrator.core.context import RunContext
from pool_orchestrator.core.protocols import NotificationSink
from pool_orchestrator.models.pipeline import Severity


class NotificationService:
    """Sends run summaries and alerts to the configured channel."""

    def __init__(self, sink: Optional[NotificationSink] = None, default_channel: Optional[str] = None):
        self.sink = sink
        self.default_channel = default_channel or settings.notification_channel

    async def _send(self, channel: str, message: str) -> bool:
        await self.sink.send(channel, message)
        return True

    async def notify(self, ctx: RunContext, message: str, channel: Optional[str] = None) -> bool:
        """
        Send a message.

        Returns:
            True if delivered, False if skipped or failed
        """
        target = channel or self.default_channel
        if self.sink is None or not target:
            ctx.logger.debug("notification_skipped", reason="no sink or channel configured")
            return False

        delivered = await ctx.guard("notification", Severity.BEST_EFFORT, self._send, target, message)
        if delivered:
            ctx.logger.info("notification_sent", channel=target)
        return bool(delivered)
