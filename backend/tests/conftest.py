from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _reset_singletons() -> None:
    from app.jobs.queue import reset_job_queue
    from app.notifications import reset_notifier
    from app.settings import settings
    from app.storage_provider import reset_storage_provider

    settings.queue_backend = "memory"
    reset_storage_provider()
    reset_job_queue()
    reset_notifier()
    yield
    reset_storage_provider()
    reset_job_queue()
    reset_notifier()


@pytest.fixture
def isolated_db(tmp_path):
    """Point settings and the engine at a throwaway data dir and database."""
    from sqlmodel import SQLModel, create_engine

    from app import db
    from app.settings import settings

    settings.data_dir = str(tmp_path / "data")
    settings.sqlite_path = str(tmp_path / "test.db")

    db.engine = create_engine(settings.sqlite_url, connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(db.engine)
    return db.engine


@pytest.fixture
def flaky_queue_cls():
    """In-memory queue whose broker availability the test controls."""
    from app.errors import QueueUnavailable
    from app.jobs.queue import InMemoryJobQueue

    class FlakyQueue(InMemoryJobQueue):
        def __init__(self, available: bool = True, fail_enqueue: bool = False) -> None:
            super().__init__()
            self.available = available
            self.fail_enqueue = fail_enqueue
            self.probes = 0

        def is_available(self) -> bool:
            return self.available

        def probe(self) -> bool:
            self.probes += 1
            return self.available

        def enqueue(self, job):
            if not self.available or self.fail_enqueue:
                raise QueueUnavailable("broker down")
            return super().enqueue(job)

    return FlakyQueue
