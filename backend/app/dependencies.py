"""FastAPI providers shared by the routers."""

from __future__ import annotations

from fastapi import Depends
from sqlmodel import Session

from app.db import get_session
from app.jobs.queue import JobQueue, get_job_queue
from app.notifications import NotificationEmitter, get_notifier
from app.storage_provider import StorageProvider, get_storage_provider
from app.submission_store import SubmissionStore


def get_store(
    session: Session = Depends(get_session),
    storage: StorageProvider = Depends(get_storage_provider),
    job_queue: JobQueue = Depends(get_job_queue),
    notifier: NotificationEmitter = Depends(get_notifier),
) -> SubmissionStore:
    return SubmissionStore(session, storage=storage, job_queue=job_queue, notifier=notifier)
