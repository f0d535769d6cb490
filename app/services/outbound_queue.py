"""Queue outbound replies for delivery by the `send_message_task` worker."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Protocol, Tuple

from kombu.exceptions import KombuError

from app.schemas.messages import Channel, UnifiedOutboundMessage

logger = logging.getLogger(__name__)


class OutboundQueue(Protocol):
    async def enqueue(
        self, channel: Channel, account_id: str, outbound: UnifiedOutboundMessage
    ) -> bool: ...


class CeleryOutboundQueue:
    async def enqueue(
        self, channel: Channel, account_id: str, outbound: UnifiedOutboundMessage
    ) -> bool:
        """
        Returns False when the broker refused the job; the failure is logged.
        Publishing happens in a worker thread without broker retries.
        """
        from app.tasks.send_message_task import send_message_task

        try:
            await asyncio.to_thread(
                send_message_task.apply_async,
                args=(channel.value, account_id, outbound.model_dump(mode="json")),
                retry=False,
            )
        except (KombuError, OSError):
            logger.exception(
                "Failed to enqueue reply to %s/%s", channel.value, account_id
            )
            return False
        return True


class InMemoryOutboundQueue:
    def __init__(self) -> None:
        self.sent: List[Tuple[Channel, str, UnifiedOutboundMessage]] = []

    async def enqueue(
        self, channel: Channel, account_id: str, outbound: UnifiedOutboundMessage
    ) -> bool:
        self.sent.append((channel, account_id, outbound))
        return True
