"""Long-lived collaborators shared by request handlers and background work."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from app.commands.inbound.process_inbound_command import ProcessInboundCommand
from app.config import Settings, get_settings
from app.core.credentials import CredentialResolver, SqlCredentialStore
from app.core.registry import ChannelRegistry, build_registry_from_env
from app.core.tenants import SqlTenantDirectory, TenantDirectory
from app.infra.cache import Cache, build_cache_from_env
from app.retrieval.embeddings import OpenAIEmbedder
from app.retrieval.hybrid_retriever import HybridRetriever
from app.retrieval.search_backend import SqlSearchBackend
from app.services.exchange_log_service import CeleryExchangeLogger
from app.services.outbound_queue import CeleryOutboundQueue
from app.services.rag_pipeline import ResponseOrchestrator
from app.services.suggestion_service import SuggestionService
from app.services.translation_service import TranslationService
from app.workers.llm import build_generation_client_from_env


@dataclass
class AppState:
    settings: Settings
    cache: Cache
    credentials: CredentialResolver
    registry: ChannelRegistry
    tenants: TenantDirectory
    translator: TranslationService
    orchestrator: ResponseOrchestrator
    suggestions: SuggestionService
    inbound: ProcessInboundCommand

    async def aclose(self) -> None:
        await self.registry.aclose()
        await self.translator.aclose()


def build_app_state(settings: Optional[Settings] = None) -> AppState:
    settings = settings or get_settings()
    cache = build_cache_from_env()
    store = SqlCredentialStore()
    tenants = SqlTenantDirectory(cache=cache)
    retriever = HybridRetriever(
        OpenAIEmbedder(settings=settings),
        SqlSearchBackend(text_search_config=settings.text_search_config),
        rrf_k=settings.rrf_k,
        top_k=settings.retrieval_top_k,
        similarity_threshold=settings.retrieval_similarity_threshold,
    )
    generator = build_generation_client_from_env(settings)
    translator = TranslationService.from_settings(cache=cache, settings=settings)
    orchestrator = ResponseOrchestrator(
        tenants=tenants,
        retriever=retriever,
        generator=generator,
        exchange_logger=CeleryExchangeLogger(),
        translator=translator,
        settings=settings,
    )
    return AppState(
        settings=settings,
        cache=cache,
        credentials=CredentialResolver(store=store, settings=settings),
        registry=build_registry_from_env(settings=settings, store=store),
        tenants=tenants,
        translator=translator,
        orchestrator=orchestrator,
        suggestions=SuggestionService(
            retriever, generator, settings.llm_advanced_model, cache=cache
        ),
        inbound=ProcessInboundCommand(tenants, orchestrator, CeleryOutboundQueue()),
    )


def get_app_state(request: Request) -> AppState:
    """FastAPI dependency returning the state built at startup."""
    return request.app.state.services
