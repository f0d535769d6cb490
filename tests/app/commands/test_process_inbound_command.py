"""Tests for ProcessInboundCommand."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.commands.inbound.process_inbound_command import ProcessInboundCommand
from app.core.tenants import InMemoryTenantDirectory
from app.schemas.messages import Channel, ContentType, Sticker, UnifiedInboundMessage
from app.schemas.rag import Priority, RAGOutput
from app.services.outbound_queue import InMemoryOutboundQueue


def inbound(text="진료시간이 어떻게 되나요?", **overrides):
    values = dict(
        channel_type=Channel.LINE,
        channel_account_id="U-bot",
        channel_user_id="U-customer",
        message_id="m1",
        content_type=ContentType.TEXT,
        text=text,
        timestamp=datetime.now(timezone.utc),
    )
    values.update(overrides)
    return UnifiedInboundMessage(**values)


def output(escalate=False, response="평일 10시부터 진료합니다.", translated=None):
    return RAGOutput(
        response=response,
        translated_response=translated,
        confidence=0.2 if escalate else 0.9,
        model="fast",
        should_escalate=escalate,
        escalation_reason="신뢰도 미달" if escalate else None,
        escalation_priority=Priority.HIGH if escalate else None,
        processing_time_ms=12,
    )


@pytest.fixture
def tenants():
    directory = InMemoryTenantDirectory()
    directory.add_account(Channel.LINE, "U-bot", "tenant-1", default_language="ja")
    return directory


def make_command(tenants, result):
    orchestrator = MagicMock()
    orchestrator.process = AsyncMock(return_value=result)
    queue = InMemoryOutboundQueue()
    return ProcessInboundCommand(tenants, orchestrator, queue), orchestrator, queue


@pytest.mark.asyncio
async def test_answer_is_queued_for_the_sender(tenants):
    command, orchestrator, queue = make_command(tenants, output())
    result = await command.execute(inbound())

    assert result.should_escalate is False
    rag_input = orchestrator.process.await_args.args[0]
    assert rag_input.tenant_id == "tenant-1"
    assert rag_input.conversation_id == "line:U-bot:U-customer"
    assert rag_input.message_id == "m1"
    assert rag_input.customer_language == "KO"
    assert orchestrator.process.await_args.kwargs["channel"] == Channel.LINE

    ((channel, account_id, outbound),) = queue.sent
    assert channel == Channel.LINE
    assert account_id == "U-bot"
    assert outbound.channel_user_id == "U-customer"
    assert outbound.text == "평일 10시부터 진료합니다."


@pytest.mark.asyncio
async def test_translated_reply_is_sent(tenants):
    command, _, queue = make_command(tenants, output(translated="平日10時から診療します。"))
    await command.execute(inbound("診療時間は?"))
    assert queue.sent[0][2].text == "平日10時から診療します。"


@pytest.mark.asyncio
async def test_latin_text_uses_account_default_language(tenants):
    """Script detection cannot tell French from English; the account default decides."""
    command, orchestrator, _ = make_command(tenants, output())
    await command.execute(inbound("Bonjour, quels sont vos horaires?"))
    assert orchestrator.process.await_args.args[0].customer_language == "JA"


@pytest.mark.asyncio
async def test_escalated_conversation_gets_no_auto_reply(tenants):
    command, _, queue = make_command(tenants, output(escalate=True))
    result = await command.execute(inbound())
    assert result.should_escalate is True
    assert queue.sent == []


@pytest.mark.asyncio
async def test_unknown_account_is_left_unanswered(tenants):
    command, orchestrator, queue = make_command(tenants, output())
    assert await command.execute(inbound(channel_account_id="other-bot")) is None
    orchestrator.process.assert_not_awaited()
    assert queue.sent == []


@pytest.mark.asyncio
async def test_non_text_messages_are_skipped(tenants):
    command, orchestrator, _ = make_command(tenants, output())
    sticker = inbound(
        text=None, content_type=ContentType.STICKER, sticker=Sticker(package_id="1", sticker_id="2")
    )
    assert await command.execute(sticker) is None
    assert await command.execute(inbound(text="   ")) is None
    orchestrator.process.assert_not_awaited()
