"""Agent assist: reply suggestions for conversations a human is handling."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from app.core.app_state import AppState, get_app_state
from app.exceptions import GenerationError
from app.schemas.rag import SuggestionRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assist", tags=["assist"])


@router.post("/suggestions", response_model=dict[str, Any])
async def suggest_reply(
    body: SuggestionRequest,
    state: AppState = Depends(get_app_state),
) -> dict[str, Any]:
    try:
        suggestion = await state.suggestions.suggest(body.tenant_id, body.query, body.history)
    except GenerationError as e:
        logger.warning("Suggestion failed for tenant %s: %s", body.tenant_id, e)
        raise HTTPException(status_code=502, detail="Suggestion generation failed") from e
    return {"data": {"suggestion": suggestion}}
