"""
Command to send an outbound message to a chat platform.

Resolves the adapter through the channel registry and sends synchronously.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException

from app.core.registry import ChannelRegistry
from app.schemas.messages import OutboundRequest, SendResult

logger = logging.getLogger(__name__)


class SendOutboundCommand:
    """
    Command to send an outbound message to the specified channel.
    """

    def __init__(self, registry: ChannelRegistry) -> None:
        self.registry = registry

    async def execute(self, body: OutboundRequest) -> dict[str, Any]:
        """
        Send the outbound message via the channel adapter.

        Args:
            body: Sending account and the normalized outbound message.

        Returns:
            dict: {"data": {"success": True, "message_id": ...}} on success.

        Raises:
            HTTPException: 400 if no adapter is registered for the channel,
                502 if the platform API failed to send.
        """
        channel = body.message.channel_type
        if self.registry.get_adapter(channel) is None:
            raise HTTPException(
                status_code=400,
                detail=f"Channel {channel.value} is not supported",
            )
        result: SendResult = await self.registry.send_message(
            channel, body.account_id, body.message
        )
        if not result.success:
            logger.warning(
                "Outbound send to %s/%s failed: %s", channel.value, body.account_id, result.error
            )
            raise HTTPException(
                status_code=502,
                detail="Platform API failed to send message",
            )
        return {"data": {"success": True, "message_id": result.message_id}}
