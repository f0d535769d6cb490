from __future__ import annotations

import asyncio
import re
from typing import Any, Dict, List, Optional, Sequence

import httpx
from openai import OpenAIError
from pydantic import BaseModel
from pydantic_ai import Agent
from pydantic_ai.exceptions import AgentRunError, UserError
from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.litellm import LiteLLMProvider

from app.config import Settings, get_settings
from app.constants.default_system_prompt import DefaultSystemPrompt
from app.exceptions import GenerationError, GenerationTimeoutError
from app.infra.logging_config import get_logger
from app.schemas.rag import HistoryTurn, RetrievedDocument
from app.schemas.tenant import TenantAIPolicy

logger = get_logger("llm")

NO_CONTEXT_TEXT = "관련 정보가 없습니다."
UNKNOWN_TEXT = "정보 없음"

COMPLEX_QUERY_LENGTH = 200
COMPLEX_DOCUMENT_COUNT = 5
COMPLEX_TERMS = re.compile(r"의료|수술|합병증|부작용")

RESPONSE_GUIDELINES = """## 응답 가이드라인
1. 반드시 참고 자료에 기반하여 답변하세요.
2. 확실하지 않은 정보는 "담당자에게 확인 후 안내드리겠습니다"라고 말하세요.
3. 의료적 진단이나 조언은 직접 제공하지 말고, 상담 예약을 권유하세요.
4. 친절하고 전문적인 톤을 유지하세요.
5. 가격 정보는 정확한 경우에만 안내하세요."""


class GenerationResult(BaseModel):
    text: str
    tokens_used: int = 0
    model: str


def build_context(documents: Sequence[RetrievedDocument]) -> str:
    """Numbered reference block injected into the system prompt."""
    if not documents:
        return NO_CONTEXT_TEXT
    return "\n\n".join(
        f"[문서 {i}] {doc.title}\n{doc.chunk_text}\n(유사도: {doc.similarity * 100:.1f}%)"
        for i, doc in enumerate(documents, start=1)
    )


def build_system_prompt(
    policy: Optional[TenantAIPolicy], documents: Sequence[RetrievedDocument]
) -> str:
    base = (policy.system_prompt if policy else None) or DefaultSystemPrompt.CONTENT.strip()
    organization = (policy.organization_name if policy else None) or UNKNOWN_TEXT
    specialty = (policy.specialty if policy else None) or UNKNOWN_TEXT
    return (
        f"{base}\n\n"
        f"## 병원 정보\n- 병원명: {organization}\n- 전문 분야: {specialty}\n\n"
        f"## 참고 자료\n{build_context(documents)}\n\n"
        f"{RESPONSE_GUIDELINES}"
    )


def select_model(
    query: str,
    document_count: int,
    policy: Optional[TenantAIPolicy] = None,
    settings: Optional[Settings] = None,
) -> str:
    """Tenant model if set; otherwise the advanced model for complex queries."""
    if policy is not None and policy.model:
        return policy.model
    settings = settings or get_settings()
    is_complex = (
        len(query) > COMPLEX_QUERY_LENGTH
        or document_count > COMPLEX_DOCUMENT_COUNT
        or COMPLEX_TERMS.search(query) is not None
    )
    return settings.llm_advanced_model if is_complex else settings.llm_model


def history_to_messages(history: Sequence[HistoryTurn]) -> List[Any]:
    """Convert conversation turns to pydantic_ai message_history entries."""
    out: List[Any] = []
    for turn in history:
        content = (turn.content or "").strip()
        if not content:
            continue
        if turn.role == "user":
            out.append(ModelRequest(parts=[UserPromptPart(content=content)]))
        else:
            out.append(ModelResponse(parts=[TextPart(content=content)]))
    return out


class GenerationClient:
    """
    LLM generation through LiteLLM-routed models.

    One pydantic_ai Agent is kept per model name. Every call is bounded by
    `timeout` seconds and raises GenerationTimeoutError when it runs over.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: float = 30.0,
        temperature: float = 0.7,
        default_max_tokens: int = 1000,
    ) -> None:
        self._provider = LiteLLMProvider(api_key=api_key, api_base=api_base)
        self._timeout = timeout
        self._temperature = temperature
        self._default_max_tokens = default_max_tokens
        self._agents: Dict[str, Agent] = {}

    def _agent_for(self, model_name: str) -> Agent:
        agent = self._agents.get(model_name)
        if agent is None:
            logger.info("Initializing LLM agent with model %s", model_name)
            agent = Agent(OpenAIChatModel(model_name, provider=self._provider))
            self._agents[model_name] = agent
        return agent

    async def generate(
        self,
        system_prompt: str,
        user_query: str,
        model: str,
        max_tokens: Optional[int] = None,
        history: Optional[Sequence[HistoryTurn]] = None,
    ) -> GenerationResult:
        # System prompt first, then prior turns.
        # https://ai.pydantic.dev/agent/#system-prompts
        message_history = [
            ModelRequest(parts=[SystemPromptPart(content=system_prompt)])
        ] + history_to_messages(history or [])
        try:
            result = await asyncio.wait_for(
                self._agent_for(model).run(
                    user_query,
                    message_history=message_history,
                    model_settings={
                        "max_tokens": max_tokens or self._default_max_tokens,
                        "temperature": self._temperature,
                    },
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise GenerationTimeoutError(
                f"Generation with {model} exceeded {self._timeout}s"
            ) from e
        except (AgentRunError, UserError, OpenAIError, httpx.HTTPError) as e:
            raise GenerationError(f"Generation with {model} failed: {e}") from e
        # `usage` is a method on older pydantic_ai releases, an attribute on newer ones.
        usage = result.usage() if callable(result.usage) else result.usage
        return GenerationResult(
            text=str(result.output),
            tokens_used=usage.total_tokens or 0,
            model=model,
        )


def build_generation_client_from_env(settings: Optional[Settings] = None) -> GenerationClient:
    settings = settings or get_settings()
    logger.info(
        "LLM config: model=%s, advanced=%s, api_key=%s, api_base=%s",
        settings.llm_model,
        settings.llm_advanced_model,
        "set" if settings.litellm_api_key else "not set",
        settings.litellm_api_base or "(default)",
    )
    if not settings.litellm_api_key:
        logger.warning(
            "LITELLM_API_KEY is not set; set it to a valid OpenAI or LiteLLM API key to avoid 401 errors."
        )
    return GenerationClient(
        api_key=settings.litellm_api_key,
        api_base=settings.litellm_api_base,
        timeout=settings.llm_timeout_seconds,
        temperature=settings.llm_temperature,
        default_max_tokens=settings.llm_max_tokens,
    )
