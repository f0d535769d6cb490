"""
Command to answer one inbound message.

Resolves the owning tenant, runs the response pipeline, then either queues
the localized reply or leaves the conversation for a human agent.
"""

from __future__ import annotations

import logging
from typing import Optional

from app.core.conversation_key import build_conversation_key
from app.core.tenants import TenantDirectory
from app.schemas.messages import ContentType, UnifiedInboundMessage, UnifiedOutboundMessage
from app.schemas.rag import RAGInput, RAGOutput
from app.services.outbound_queue import OutboundQueue
from app.services.rag_pipeline import ResponseOrchestrator
from app.services.translation_service import LATIN_FALLBACK_LANGUAGE, detect_language


class ProcessInboundCommand:
    """
    Command to process a normalized inbound message.
    Non-text messages and messages for unknown accounts are never auto-answered.
    """

    def __init__(
        self,
        tenants: TenantDirectory,
        orchestrator: ResponseOrchestrator,
        outbound_queue: OutboundQueue,
    ) -> None:
        self.tenants = tenants
        self.orchestrator = orchestrator
        self.outbound_queue = outbound_queue
        self.logger = logging.getLogger(__name__)

    async def execute(self, message: UnifiedInboundMessage) -> Optional[RAGOutput]:
        """
        Run the response pipeline for `message`.

        Args:
            message: Normalized inbound message from a channel adapter.

        Returns:
            Optional[RAGOutput]: The pipeline result, or None when the message
                was not eligible for an automatic answer.
        """
        if message.content_type != ContentType.TEXT or not (message.text or "").strip():
            self.logger.info(
                "Skipping %s message %s: only text is auto-answered",
                message.content_type.value,
                message.message_id,
            )
            return None

        account = await self.tenants.resolve_account(
            message.channel_type, message.channel_account_id
        )
        if account is None:
            self.logger.warning(
                "No tenant for %s account %s; message %s left unanswered",
                message.channel_type.value,
                message.channel_account_id,
                message.message_id,
            )
            return None

        language = detect_language(message.text)
        # Script detection cannot tell Latin-script languages apart.
        if language == LATIN_FALLBACK_LANGUAGE and account.default_language:
            language = account.default_language.upper()
        output = await self.orchestrator.process(
            RAGInput(
                query=message.text,
                tenant_id=account.tenant_id,
                conversation_id=build_conversation_key(message),
                message_id=message.message_id,
                customer_language=language,
            ),
            channel=message.channel_type,
        )

        if output.should_escalate or not output.reply_text:
            return output

        await self.outbound_queue.enqueue(
            message.channel_type,
            message.channel_account_id,
            UnifiedOutboundMessage(
                channel_type=message.channel_type,
                channel_user_id=message.channel_user_id,
                text=output.reply_text,
            ),
        )
        return output
