"""
Webhook routes for inbound chat platform events.

Platforms POST raw events here. The signature is checked against the raw
body before anything else; only then is the body parsed and each message
handed to the inbound command as a background task, so the platform gets its
200 without waiting for retrieval or generation.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse

from app.adapters.base import BasePlatformAdapter
from app.adapters.kakao import KakaoAdapter
from app.adapters.meta import MetaGraphAdapter
from app.adapters.wechat import WeChatAdapter
from app.core.app_state import AppState, get_app_state
from app.exceptions import WebhookParseError
from app.infra.logging_config import get_audit_logger
from app.schemas.messages import Channel, UnifiedInboundMessage

logger = logging.getLogger(__name__)
audit = get_audit_logger()

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

KAKAO_ACK_TEXT = "메시지를 확인했습니다. 잠시만 기다려주세요."
WECHAT_ACK = "success"

META_OBJECT_CHANNELS = {
    "page": Channel.FACEBOOK,
    "instagram": Channel.INSTAGRAM,
    "whatsapp_business_account": Channel.WHATSAPP,
}


def _reject(
    request: Request, channel: str, status_code: int, reason: str
) -> HTTPException:
    audit.warning(
        "Rejected %s webhook from %s: %s",
        channel,
        request.client.host if request.client else "unknown",
        reason,
    )
    return HTTPException(status_code=status_code, detail=reason)


def _require_adapter(
    state: AppState, request: Request, channel: str
) -> BasePlatformAdapter:
    adapter = state.registry.get_adapter(channel)
    if adapter is None:
        raise _reject(request, channel, 404, "Unknown channel")
    return adapter


def _signature_input(
    adapter: BasePlatformAdapter, request: Request, raw_body: bytes
) -> tuple[bytes | str, str]:
    """(signed payload, provided signature) for the adapter's signing scheme."""
    if isinstance(adapter, WeChatAdapter):
        params = request.query_params
        return (
            adapter.signature_payload(params.get("timestamp", ""), params.get("nonce", "")),
            params.get("signature", ""),
        )
    return raw_body, request.headers.get(adapter.SIGNATURE_HEADER, "")


async def _authenticate(
    state: AppState,
    adapter: BasePlatformAdapter,
    request: Request,
    raw_body: bytes,
    account_id: Optional[str],
) -> None:
    channel = adapter.channel_type.value
    secret = await state.credentials.webhook_secret(adapter.channel_type, account_id)
    if not secret:
        raise _reject(request, channel, 401, "Webhook secret not configured")
    payload, signature = _signature_input(adapter, request, raw_body)
    if not signature:
        raise _reject(request, channel, 401, "Missing signature")
    if not adapter.validate_signature(payload, signature, secret):
        raise _reject(request, channel, 401, "Invalid signature")


def _decode_json(request: Request, channel: str, raw_body: bytes) -> dict[str, Any]:
    try:
        body = json.loads(raw_body)
    except ValueError as e:
        raise _reject(request, channel, 400, "Invalid JSON body") from e
    if not isinstance(body, dict):
        raise _reject(request, channel, 400, "Body must be a JSON object")
    return body


def _parse(
    adapter: BasePlatformAdapter, request: Request, payload: Any
) -> list[UnifiedInboundMessage]:
    try:
        return adapter.parse_webhook(payload)
    except (WebhookParseError, ValueError, KeyError, TypeError) as e:
        logger.warning("%s webhook parse error: %s", adapter.channel_type.value, e)
        raise _reject(
            request, adapter.channel_type.value, 400, "Malformed webhook payload"
        ) from e


def _dispatch(
    state: AppState,
    background_tasks: BackgroundTasks,
    messages: list[UnifiedInboundMessage],
) -> None:
    for message in messages:
        background_tasks.add_task(state.inbound.execute, message)
    if messages:
        logger.info(
            "Queued %d %s message(s)", len(messages), messages[0].channel_type.value
        )


def _acknowledge(adapter: BasePlatformAdapter) -> Any:
    if isinstance(adapter, KakaoAdapter):
        return adapter.simple_text_response(KAKAO_ACK_TEXT)
    if isinstance(adapter, WeChatAdapter):
        return PlainTextResponse(WECHAT_ACK)
    return {"status": "ok"}


@router.get("/meta")
async def meta_verify(
    request: Request,
    state: AppState = Depends(get_app_state),
) -> PlainTextResponse:
    """Graph API subscription handshake: echo hub.challenge for the right token."""
    params = request.query_params
    challenge = MetaGraphAdapter.verify_webhook(
        params.get("hub.mode"),
        params.get("hub.verify_token"),
        params.get("hub.challenge"),
        state.settings.meta_verify_token,
    )
    if challenge is None:
        raise _reject(request, "meta", 403, "Verification failed")
    return PlainTextResponse(challenge)


@router.post("/meta")
async def meta_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    state: AppState = Depends(get_app_state),
) -> Any:
    """One endpoint for every Meta product; `object` picks the adapter."""
    raw_body = await request.body()
    body = _decode_json(request, "meta", raw_body)
    channel = META_OBJECT_CHANNELS.get(body.get("object"))
    if channel is None:
        raise _reject(request, "meta", 400, "Unsupported object type")
    adapter = _require_adapter(state, request, channel.value)
    await _authenticate(state, adapter, request, raw_body, None)
    _dispatch(state, background_tasks, _parse(adapter, request, body))
    return {"status": "ok"}


@router.get("/wechat")
async def wechat_verify(
    request: Request,
    state: AppState = Depends(get_app_state),
) -> PlainTextResponse:
    """WeChat server URL verification: echo echostr for a valid signature."""
    params = request.query_params
    token = await state.credentials.webhook_secret(Channel.WECHAT)
    adapter = _require_adapter(state, request, Channel.WECHAT.value)
    echostr = None
    if token and isinstance(adapter, WeChatAdapter):
        echostr = adapter.verify_url(
            params.get("signature", ""),
            params.get("timestamp", ""),
            params.get("nonce", ""),
            params.get("echostr", ""),
            token,
        )
    if echostr is None:
        raise _reject(request, Channel.WECHAT.value, 403, "Verification failed")
    return PlainTextResponse(echostr)


async def _handle(
    channel: str,
    account_id: Optional[str],
    request: Request,
    background_tasks: BackgroundTasks,
    state: AppState,
) -> Any:
    adapter = _require_adapter(state, request, channel)
    raw_body = await request.body()
    await _authenticate(state, adapter, request, raw_body, account_id)
    if isinstance(adapter, WeChatAdapter):
        payload: Any = raw_body
    else:
        payload = _decode_json(request, adapter.channel_type.value, raw_body)
    _dispatch(state, background_tasks, _parse(adapter, request, payload))
    return _acknowledge(adapter)


@router.post("/{channel}")
async def channel_webhook(
    channel: str,
    request: Request,
    background_tasks: BackgroundTasks,
    state: AppState = Depends(get_app_state),
) -> Any:
    """
    Receive a platform webhook, verified with the channel's default secret.
    401 on a bad signature, 400 on a malformed body, 404 for unknown channels.
    """
    return await _handle(channel, None, request, background_tasks, state)


@router.post("/{channel}/{account_id}")
async def account_webhook(
    channel: str,
    account_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    state: AppState = Depends(get_app_state),
) -> Any:
    """Same as channel_webhook, verified with that account's stored secret."""
    return await _handle(channel, account_id, request, background_tasks, state)
