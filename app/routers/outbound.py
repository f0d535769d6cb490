"""
Outbound API: send messages to chat platforms.

Internal consumers POST a unified outbound message and the sending account;
the registry picks the adapter. Returns {"data": {...}}.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from app.commands.outbound.send_outbound_command import SendOutboundCommand
from app.core.app_state import AppState, get_app_state
from app.schemas.messages import OutboundRequest

router = APIRouter(prefix="/outbound", tags=["outbound"])


@router.post("", response_model=dict[str, Any])
async def send_outbound(
    body: OutboundRequest,
    state: AppState = Depends(get_app_state),
) -> dict[str, Any]:
    """
    Send an outbound message to the specified channel.
    Return {"data": {success, message_id?}}; 502 when the platform refused it.
    """
    return await SendOutboundCommand(state.registry).execute(body)
