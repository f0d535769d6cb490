from celery import Celery

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "cs_automation",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.tasks.exchange_log_task", "app.tasks.send_message_task"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_always_eager=settings.is_test,
)
