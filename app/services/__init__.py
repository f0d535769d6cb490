from app.services.rag_pipeline import ResponseOrchestrator
from app.services.suggestion_service import SuggestionService
from app.services.translation_service import TranslationService

__all__ = [
    "ResponseOrchestrator",
    "SuggestionService",
    "TranslationService",
]
