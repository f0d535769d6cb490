"""Fire-and-forget exchange logging for the response pipeline."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Protocol

from kombu.exceptions import KombuError

from app.schemas.rag import ExchangeRecord

logger = logging.getLogger(__name__)


class ExchangeLogger(Protocol):
    async def log_exchange(self, record: ExchangeRecord) -> None: ...


class CeleryExchangeLogger:
    """
    Queues each record on `log_exchange_task`; never raises.

    The broker publish runs in a worker thread with retries disabled, so a
    slow or unreachable broker never stalls the event loop.
    """

    async def log_exchange(self, record: ExchangeRecord) -> None:
        from app.tasks.exchange_log_task import log_exchange_task

        try:
            await asyncio.to_thread(
                log_exchange_task.apply_async,
                args=(record.model_dump(mode="json"),),
                retry=False,
            )
        except (KombuError, OSError):
            logger.exception(
                "Failed to enqueue exchange log for tenant %s", record.tenant_id
            )


class InMemoryExchangeLogger:
    def __init__(self) -> None:
        self.records: List[ExchangeRecord] = []

    async def log_exchange(self, record: ExchangeRecord) -> None:
        self.records.append(record)
