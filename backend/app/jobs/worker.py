"""Originality check body: extract, score and write back one job."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from sqlmodel import Session

from app import db
from app.errors import CapstoneError
from app.jobs.queue import Job
from app.notifications import NotificationEmitter
from app.pipeline.extract import DocumentFormat, extract_text
from app.pipeline.originality import OriginalityScorer
from app.pipeline.similarity import Weights
from app.settings import settings
from app.storage_provider import StorageProvider
from app.submission_store import OriginalityOutcome, SubmissionStore

logger = logging.getLogger(__name__)


def default_scorer() -> OriginalityScorer:
    return OriginalityScorer(
        weights=Weights(string=settings.title_weight, keyword=settings.keyword_weight),
        shingle_size=settings.originality_shingle_size,
        max_tokens=settings.originality_max_tokens,
        min_match_percentage=settings.originality_min_match_percentage,
        max_matches=settings.originality_max_matches,
    )


class OriginalityWorker:
    """Processes originality jobs. Failures are recorded on the submission, never retried.

    A job may be delivered more than once; the processing mark and the result
    write both go through the store's guarded transition, so repeats are harmless.
    """

    def __init__(
        self,
        storage: StorageProvider,
        notifier: NotificationEmitter | None = None,
        scorer: OriginalityScorer | None = None,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        self.storage = storage
        self.notifier = notifier
        self.scorer = scorer or default_scorer()
        self.session_factory = session_factory or db.new_session

    def _store(self, session: Session) -> SubmissionStore:
        return SubmissionStore(session, storage=self.storage, notifier=self.notifier)

    def process(self, job: Job) -> bool:
        """Run one job to a terminal state; returns True when a result was applied."""
        started = time.monotonic()
        log_extra = {"job_id": job.job_id, "submission_id": job.submission_id}

        with self.session_factory() as session:
            store = self._store(session)
            if not store.apply_originality_result(job.submission_id, OriginalityOutcome.processing(job)):
                logger.info("job skipped; submission no longer expects it", extra=log_extra)
                return False
            logger.info("originality job started", extra=log_extra)

            try:
                outcome = self._evaluate(store, job)
            except CapstoneError as exc:
                logger.warning("originality job failed", extra={**log_extra, "code": exc.code, "error": exc.message})
                outcome = OriginalityOutcome.failed(job, f"{exc.code}: {exc.message}")
            except Exception as exc:  # noqa: BLE001
                logger.exception("originality job crashed", extra=log_extra)
                outcome = OriginalityOutcome.failed(job, f"INTERNAL_ERROR: {exc}")

            applied = store.apply_originality_result(job.submission_id, outcome)

        elapsed = time.monotonic() - started
        log_extra["elapsed_ms"] = int(elapsed * 1000)
        if elapsed > settings.slow_job_seconds:
            logger.warning("slow originality job", extra=log_extra)
        logger.info("originality job finished", extra={**log_extra, "state": outcome.state.value, "applied": applied})
        return applied

    def _evaluate(self, store: SubmissionStore, job: Job) -> OriginalityOutcome:
        data = self.storage.get(job.storage_key)
        text = extract_text(data, DocumentFormat.from_mime(job.declared_mime)).strip()

        if len(text) < settings.originality_min_text_chars:
            return OriginalityOutcome.completed(job, score=100, matches=[], extracted_text=text)

        submission = store.get(job.submission_id)
        corpus = store.build_corpus(submission)
        report = self.scorer.score(text, corpus)
        logger.debug("document scored", extra={"job_id": job.job_id, "corpus_size": len(corpus), "score": report.score})
        return OriginalityOutcome.completed(job, score=report.score, matches=report.matches, extracted_text=text)

