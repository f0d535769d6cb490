"""
Unified message contracts shared by every channel adapter.

Inbound webhook events are converted into `UnifiedInboundMessage`; replies
are expressed as `UnifiedOutboundMessage` and serialized back by the adapter
of the target channel.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Channel(str, Enum):
    """Supported chat channels."""

    LINE = "line"
    KAKAO = "kakao"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    WHATSAPP = "whatsapp"
    WECHAT = "wechat"


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    LOCATION = "location"
    STICKER = "sticker"


MEDIA_CONTENT_TYPES = frozenset(
    {ContentType.IMAGE, ContentType.VIDEO, ContentType.AUDIO, ContentType.FILE}
)


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    address: Optional[str] = None


class Sticker(BaseModel):
    model_config = ConfigDict(frozen=True)

    package_id: Optional[str] = None
    sticker_id: str


class UnifiedInboundMessage(BaseModel):
    """
    One received message, normalized (adapter -> core).

    Immutable once built. `raw_payload` is kept for audits only and is never
    parsed downstream.
    """

    model_config = ConfigDict(frozen=True)

    channel_type: Channel
    channel_account_id: str
    channel_user_id: str
    channel_username: Optional[str] = None
    message_id: str
    content_type: ContentType
    text: Optional[str] = None
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    location: Optional[Location] = None
    sticker: Optional[Sticker] = None
    timestamp: datetime
    raw_payload: Any = Field(default=None, repr=False)

    @model_validator(mode="after")
    def check_content_consistency(self) -> "UnifiedInboundMessage":
        if self.content_type == ContentType.TEXT and self.text is None:
            raise ValueError("text message requires text")
        if self.content_type == ContentType.LOCATION and self.location is None:
            raise ValueError("location message requires coordinates")
        if self.content_type == ContentType.STICKER and self.sticker is None:
            raise ValueError("sticker message requires a sticker reference")
        if self.location is not None and self.content_type != ContentType.LOCATION:
            raise ValueError("location is only valid on location messages")
        if self.sticker is not None and self.content_type != ContentType.STICKER:
            raise ValueError("sticker is only valid on sticker messages")
        return self


class QuickReplyAction(str, Enum):
    MESSAGE = "message"
    URL = "url"


class QuickReply(BaseModel):
    label: str
    action: QuickReplyAction = QuickReplyAction.MESSAGE
    value: str


class TemplateType(str, Enum):
    CAROUSEL = "carousel"
    BUTTONS = "buttons"
    CONFIRM = "confirm"
    IMAGE = "image"


class TemplateActionType(str, Enum):
    MESSAGE = "message"
    URI = "uri"
    POSTBACK = "postback"


class TemplateAction(BaseModel):
    type: TemplateActionType
    label: str
    data: Optional[str] = None
    uri: Optional[str] = None
    text: Optional[str] = None


class MessageTemplate(BaseModel):
    type: TemplateType
    title: Optional[str] = None
    text: Optional[str] = None
    thumbnail_url: Optional[str] = None
    actions: list[TemplateAction] = Field(default_factory=list)


class UnifiedOutboundMessage(BaseModel):
    """
    Normalized outbound message (core -> adapter).

    Text messages carry `text` (and optionally a template and quick replies);
    media messages carry `media_url` only.
    """

    channel_type: Channel
    channel_user_id: str
    content_type: ContentType = ContentType.TEXT
    text: Optional[str] = None
    media_url: Optional[str] = None
    quick_replies: list[QuickReply] = Field(default_factory=list)
    template: Optional[MessageTemplate] = None

    @model_validator(mode="after")
    def check_single_representation(self) -> "UnifiedOutboundMessage":
        if self.content_type == ContentType.TEXT:
            if self.text is None and self.template is None:
                raise ValueError("text message requires text or a template")
            if self.media_url is not None:
                raise ValueError("text message must not carry media_url")
        elif self.content_type in MEDIA_CONTENT_TYPES:
            if not self.media_url:
                raise ValueError(f"{self.content_type.value} message requires media_url")
            if self.text is not None or self.template is not None:
                raise ValueError("media message must not carry text or template")
        else:
            raise ValueError(
                f"{self.content_type.value} messages cannot be sent outbound"
            )
        return self


class SendResult(BaseModel):
    """Result of sending an outbound message."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    # Set for network failures worth retrying; API rejections are final.
    retryable: bool = False


class UserProfile(BaseModel):
    """Profile fields a channel may expose. Empty when the channel has none."""

    display_name: Optional[str] = None
    picture_url: Optional[str] = None
    status_message: Optional[str] = None


class OutboundRequest(BaseModel):
    """Body of `POST /outbound`: which account sends, and what."""

    account_id: str
    message: UnifiedOutboundMessage
