from celery import Celery
from celery.signals import setup_logging, worker_process_init

from app import db
from app.logging_config import configure_logging
from app.settings import settings

celery_app = Celery(
    "capstone",
    broker=settings.redis_url,
    include=["app.jobs.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_default_queue=settings.queue_name,
    task_ignore_result=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=settings.task_time_limit_seconds,
    worker_prefetch_multiplier=1,
    worker_hijack_root_logger=False,
    broker_connection_retry_on_startup=True,
    broker_transport_options={"visibility_timeout": settings.queue_visibility_timeout_seconds},
)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging(log_level=settings.log_level, environment=settings.environment)


@worker_process_init.connect
def _reset_db_pool(**kwargs) -> None:
    # Forked children must not share the parent's pooled connections.
    db.engine.dispose(close=False)
