# Import celery app first
from app.infra.celery_app import celery_app

# Initialize logging configuration for Celery workers
from app.infra.logging_config import LoggingConfig
from app.tasks.exchange_log_task import log_exchange_task
from app.tasks.send_message_task import send_message_task

LoggingConfig()  # Initialize logging

__all__ = [
    "celery_app",
    "log_exchange_task",
    "send_message_task",
]
