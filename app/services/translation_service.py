"""Translation via DeepL with a shared result cache."""

from __future__ import annotations

import asyncio
import hashlib
import re
from typing import Optional

import httpx
from pydantic import BaseModel

from app.config import Settings, get_settings
from app.exceptions import TranslationError, TranslationTimeoutError
from app.infra.cache import TRANSLATION_TTL_SECONDS, Cache, InMemoryCache, translation_key
from app.infra.logging_config import get_logger

logger = get_logger("translation")

DEEPL_FREE_BASE = "https://api-free.deepl.com/v2"
DEEPL_PRO_BASE = "https://api.deepl.com/v2"
LATIN_FALLBACK_LANGUAGE = "EN"

_SCRIPT_PATTERNS = (
    (re.compile(r"[가-힯]"), "KO"),
    (re.compile(r"[぀-ゟ゠-ヿ]"), "JA"),
    (re.compile(r"[一-鿿]"), "ZH"),
    (re.compile(r"[฀-๿]"), "TH"),
    (re.compile(r"[؀-ۿ]"), "AR"),
    (re.compile(r"[Ѐ-ӿ]"), "RU"),
)


def detect_language(text: str) -> str:
    """Script-based language guess; Latin text defaults to English."""
    for pattern, language in _SCRIPT_PATTERNS:
        if pattern.search(text or ""):
            return language
    return LATIN_FALLBACK_LANGUAGE


def cache_digest(text: str, target_lang: str) -> str:
    return hashlib.md5(f"{text}:{target_lang}".encode()).hexdigest()


class TranslationResult(BaseModel):
    text: str
    detected_source_lang: Optional[str] = None
    cached: bool = False


class TranslationService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        cache: Optional[Cache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key or ""
        self._base_url = DEEPL_FREE_BASE if self._api_key.endswith(":fx") else DEEPL_PRO_BASE
        self._cache = cache if cache is not None else InMemoryCache()
        self._client = http_client
        self._timeout = timeout

    @classmethod
    def from_settings(
        cls, cache: Optional[Cache] = None, settings: Optional[Settings] = None
    ) -> "TranslationService":
        settings = settings or get_settings()
        return cls(
            api_key=settings.deepl_api_key,
            cache=cache,
            timeout=settings.translation_timeout_seconds,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _call_deepl(
        self, texts: list[str], target_lang: str, source_lang: Optional[str]
    ) -> list[TranslationResult]:
        if not self._api_key:
            raise TranslationError("DEEPL_API_KEY is not set")
        body: dict = {"text": texts, "target_lang": target_lang}
        if source_lang:
            body["source_lang"] = source_lang
        try:
            response = await self._get_client().post(
                f"{self._base_url}/translate",
                json=body,
                headers={"Authorization": f"DeepL-Auth-Key {self._api_key}"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise TranslationTimeoutError(
                f"DeepL did not answer within {self._timeout}s"
            ) from e
        except httpx.HTTPError as e:
            raise TranslationError(f"DeepL request failed: {e}") from e
        if response.is_error:
            raise TranslationError(
                f"DeepL API error: {response.status_code} - {response.text}"
            )
        try:
            translations = response.json().get("translations") or []
            results = [
                TranslationResult(
                    text=item.get("text", ""),
                    detected_source_lang=item.get("detected_source_language"),
                )
                for item in translations
            ]
        except (ValueError, AttributeError, TypeError) as e:
            raise TranslationError(f"Unexpected DeepL response: {e}") from e
        if len(results) != len(texts):
            raise TranslationError(
                f"DeepL returned {len(results)} translations for {len(texts)} texts"
            )
        return results

    async def translate(
        self, text: str, target_lang: str, source_lang: Optional[str] = None
    ) -> TranslationResult:
        key = translation_key(cache_digest(text, target_lang))
        cached = await self._cache.get(key)
        if cached is not None:
            return TranslationResult.model_validate({**cached, "cached": True})

        result = (await self._call_deepl([text], target_lang, source_lang))[0]
        await self._cache.set(key, result.model_dump(), TRANSLATION_TTL_SECONDS)
        return result

    async def translate_batch(
        self, texts: list[str], target_lang: str, source_lang: Optional[str] = None
    ) -> list[TranslationResult]:
        """Translate many texts in input order; only cache misses reach DeepL."""
        keys = [translation_key(cache_digest(text, target_lang)) for text in texts]
        cached = await asyncio.gather(*(self._cache.get(key) for key in keys))
        results: list[Optional[TranslationResult]] = [
            TranslationResult.model_validate({**hit, "cached": True}) if hit is not None else None
            for hit in cached
        ]

        missing = [i for i, result in enumerate(results) if result is None]
        if missing:
            fresh = await self._call_deepl([texts[i] for i in missing], target_lang, source_lang)
            for index, result in zip(missing, fresh):
                results[index] = result
                await self._cache.set(keys[index], result.model_dump(), TRANSLATION_TTL_SECONDS)
        return [result for result in results if result is not None]

    def detect_language(self, text: str) -> str:
        return detect_language(text)
