"""Conversation key derivation from an inbound message."""

from __future__ import annotations

from app.schemas.messages import UnifiedInboundMessage


def build_conversation_key(msg: UnifiedInboundMessage) -> str:
    """
    Deterministic key for the conversation a message belongs to:
    {channel}:{account_id}:{user_id}. One customer talking to two accounts
    of the same tenant has two conversations.
    """
    return f"{msg.channel_type.value}:{msg.channel_account_id}:{msg.channel_user_id}"
