"""Celery tasks run by ``capstone-worker``."""

from __future__ import annotations

from app.jobs.celery_app import celery_app
from app.jobs.queue import ORIGINALITY_TASK, Job
from app.jobs.worker import OriginalityWorker
from app.notifications import get_notifier
from app.storage_provider import get_storage_provider


@celery_app.task(name=ORIGINALITY_TASK, acks_late=True, reject_on_worker_lost=True)
def check_originality(payload: dict) -> bool:
    """Run one originality check; redelivered copies of a finished job are skipped."""
    job = Job.from_payload(payload)
    worker = OriginalityWorker(get_storage_provider(), notifier=get_notifier())
    return worker.process(job)
