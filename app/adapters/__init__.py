"""Platform adapters for chat integrations."""

from app.adapters.base import BasePlatformAdapter
from app.adapters.facebook import FacebookAdapter
from app.adapters.instagram import InstagramAdapter
from app.adapters.kakao import KakaoAdapter
from app.adapters.line import LineAdapter
from app.adapters.wechat import WeChatAdapter
from app.adapters.whatsapp import WhatsAppAdapter

__all__ = [
    "BasePlatformAdapter",
    "FacebookAdapter",
    "InstagramAdapter",
    "KakaoAdapter",
    "LineAdapter",
    "WeChatAdapter",
    "WhatsAppAdapter",
]
