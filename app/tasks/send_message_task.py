"""Celery task delivering one outbound message through the channel registry."""

from __future__ import annotations

import asyncio
from typing import Dict

from pydantic import ValidationError

from app.core.credentials import SqlCredentialStore
from app.core.registry import build_registry_from_env
from app.infra.celery_app import celery_app
from app.infra.logging_config import get_logger
from app.schemas.messages import SendResult, UnifiedOutboundMessage

logger = get_logger("send_message_task")

MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 5


async def _send(channel: str, account_id: str, outbound: UnifiedOutboundMessage) -> SendResult:
    registry = build_registry_from_env(store=SqlCredentialStore())
    try:
        return await registry.send_message(channel, account_id, outbound)
    finally:
        await registry.aclose()


@celery_app.task(
    bind=True,
    name="app.tasks.send_message_task.send_message_task",
    max_retries=MAX_RETRIES,
    default_retry_delay=RETRY_DELAY_SECONDS,
)
def send_message_task(self, channel: str, account_id: str, outbound: Dict) -> Dict:
    """
    Send `outbound` to `channel` as `account_id`.

    Network failures are retried; platform rejections are returned as-is.
    """
    try:
        message = UnifiedOutboundMessage.model_validate(outbound)
    except ValidationError as e:
        logger.warning("Invalid outbound message for %s: %s", channel, e)
        return SendResult(success=False, error="Invalid outbound message").model_dump()

    result = asyncio.run(_send(channel, account_id, message))
    if not result.success:
        logger.warning(
            "Send to %s/%s failed: %s", channel, account_id, result.error
        )
        if result.retryable and self.request.retries < MAX_RETRIES:
            raise self.retry()
    return result.model_dump()
