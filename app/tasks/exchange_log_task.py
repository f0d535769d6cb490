"""Celery task writing one pipeline exchange to `ai_response_logs`."""

from __future__ import annotations

import json
from typing import Dict, Optional

from pydantic import ValidationError
from sqlalchemy import text

from app.db import db_manager
from app.infra.celery_app import celery_app
from app.infra.logging_config import get_logger
from app.schemas.rag import ExchangeRecord

logger = get_logger("exchange_log_task")

INSERT_EXCHANGE = text(
    "INSERT INTO ai_response_logs (tenant_id, conversation_id, message_id, channel, "
    "query, response, model, confidence, retrieved_docs, escalated, "
    "escalation_reason, processing_time_ms) "
    "VALUES (:tenant_id, :conversation_id, :message_id, :channel, :query, :response, "
    ":model, :confidence, CAST(:retrieved_docs AS jsonb), :escalated, "
    ":escalation_reason, :processing_time_ms)"
)


def _insert_exchange(record: ExchangeRecord) -> None:
    params = record.model_dump(mode="json")
    params["message_id"] = params.get("message_id") or ""
    params["retrieved_docs"] = json.dumps(params["retrieved_docs"], ensure_ascii=False)
    with db_manager.db_session() as db:
        db.execute(INSERT_EXCHANGE, params)


@celery_app.task(name="app.tasks.exchange_log_task.log_exchange_task")
def log_exchange_task(record: Dict) -> Optional[str]:
    """
    Persist an exchange record for later learning.

    Args:
        record: ExchangeRecord as a JSON-compatible dict.

    Returns:
        Optional[str]: The tenant id, or None when the record is invalid.
    """
    try:
        exchange = ExchangeRecord.model_validate(record)
    except ValidationError as e:
        logger.warning("Invalid exchange record: %s", e)
        return None

    _insert_exchange(exchange)
    logger.info(
        "Logged exchange tenant=%s escalated=%s confidence=%.3f",
        exchange.tenant_id,
        exchange.escalated,
        exchange.confidence,
    )
    return exchange.tenant_id
