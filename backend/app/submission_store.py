"""Submission lineages, the review state machine and originality result application."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy.orm import aliased
from sqlmodel import Session, col, delete, exists, select, update

from app.errors import (
    AnnotationNotFound,
    ChaptersNotLocked,
    Forbidden,
    InvalidUpload,
    LateRemarksRequired,
    LineageLocked,
    LineageRejected,
    NotApproved,
    NotLocked,
    NotReviewable,
    ProjectNotFound,
    QueueUnavailable,
    RecheckNotAllowed,
    SubmissionNotFound,
    ValidationFailed,
)
from app.jobs.queue import Job, JobQueue
from app.models import (
    ELEVATED_ROLES,
    REVIEWABLE_STATUSES,
    TERMINAL_ORIGINALITY,
    DocumentType,
    OriginalityMatch,
    OriginalityStatus,
    Project,
    ReviewDecision,
    Role,
    Submission,
    SubmissionAnnotation,
    SubmissionEvent,
    SubmissionStatus,
    as_utc,
    lineage_slot,
    utcnow,
)
from app.notifications import NotificationEmitter, send
from app.pipeline.originality import CorpusDocument, SourceMatch
from app.settings import settings
from app.storage_provider import StorageProvider

logger = logging.getLogger(__name__)

_DECISION_STATUS = {
    ReviewDecision.APPROVE: SubmissionStatus.APPROVED,
    ReviewDecision.REQUEST_REVISIONS: SubmissionStatus.REVISIONS_REQUIRED,
    ReviewDecision.REJECT: SubmissionStatus.REJECTED,
}
_PROPOSAL_PREREQUISITES = (1, 2, 3)

_IN_FLIGHT_ORIGINALITY = (OriginalityStatus.QUEUED, OriginalityStatus.PROCESSING)
_CATCH_UP_ORIGINALITY = (OriginalityStatus.UNCHECKED, *_IN_FLIGHT_ORIGINALITY)

_LOCK_STRIPES = 64
_locks = tuple(threading.RLock() for _ in range(_LOCK_STRIPES))


@contextmanager
def lineage_lock(project_id: int, slot: str) -> Iterator[None]:
    """Serialize read-then-write sequences on one lineage within this process.

    Lineages share a fixed set of striped locks, so callers must never hold two
    lineage locks at once.
    """
    with _locks[hash((project_id, slot)) % _LOCK_STRIPES]:
        yield


@dataclass
class UploadMetadata:
    document_type: DocumentType
    original_filename: str
    content_type: str
    submitted_by: str
    chapter: int | None = None
    remarks: str | None = None


@dataclass
class OriginalityOutcome:
    """A state transition reported by the worker for one queued check."""

    job_id: str
    version: int
    state: OriginalityStatus
    score: int | None = None
    matches: list[SourceMatch] = field(default_factory=list)
    error: str | None = None
    extracted_text: str | None = None

    @classmethod
    def processing(cls, job: Job) -> "OriginalityOutcome":
        return cls(job_id=job.job_id, version=job.version, state=OriginalityStatus.PROCESSING)

    @classmethod
    def completed(cls, job: Job, score: int, matches: list[SourceMatch], extracted_text: str | None) -> "OriginalityOutcome":
        return cls(
            job_id=job.job_id,
            version=job.version,
            state=OriginalityStatus.COMPLETED,
            score=score,
            matches=matches,
            extracted_text=extracted_text,
        )

    @classmethod
    def failed(cls, job: Job, error: str) -> "OriginalityOutcome":
        return cls(job_id=job.job_id, version=job.version, state=OriginalityStatus.FAILED, error=error)


class SubmissionStore:
    """Owns Submission rows and every transition on them.

    Each public mutation runs inside the lineage lock and re-reads the rows it
    depends on, so the latest-version check and the write form one unit.
    """

    def __init__(
        self,
        session: Session,
        storage: StorageProvider | None = None,
        job_queue: JobQueue | None = None,
        notifier: NotificationEmitter | None = None,
    ) -> None:
        self.session = session
        self.storage = storage
        self.job_queue = job_queue
        self.notifier = notifier

    # Reads

    def get(self, submission_id: int, *, refresh: bool = False) -> Submission:
        submission = self.session.get(Submission, submission_id, populate_existing=refresh)
        if submission is None:
            raise SubmissionNotFound(submission_id)
        return submission

    def get_project(self, project_id: int) -> Project:
        project = self.session.get(Project, project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        return project

    def latest(self, project_id: int, slot: str) -> Submission | None:
        statement = (
            select(Submission)
            .where(Submission.project_id == project_id, Submission.slot == slot)
            .order_by(col(Submission.version).desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self.session.exec(statement).first()

    def is_latest(self, submission: Submission) -> bool:
        latest = self.latest(submission.project_id, submission.slot)
        return latest is not None and latest.id == submission.id

    def lineage(self, project_id: int, slot: str) -> list[Submission]:
        statement = (
            select(Submission)
            .where(Submission.project_id == project_id, Submission.slot == slot)
            .order_by(col(Submission.version).desc())
        )
        return list(self.session.exec(statement).all())

    def worklist(self, status: SubmissionStatus | None = None, project_id: int | None = None) -> list[Submission]:
        statement = select(Submission)
        if status is not None:
            statement = statement.where(Submission.status == status)
        if project_id is not None:
            statement = statement.where(Submission.project_id == project_id)
        statement = statement.order_by(col(Submission.created_at).asc(), col(Submission.id).asc())
        return list(self.session.exec(statement).all())

    def events(self, submission_id: int) -> list[SubmissionEvent]:
        self.get(submission_id)
        statement = (
            select(SubmissionEvent)
            .where(SubmissionEvent.submission_id == submission_id)
            .order_by(col(SubmissionEvent.created_at).asc(), col(SubmissionEvent.id).asc())
        )
        return list(self.session.exec(statement).all())

    def annotations(self, submission_id: int) -> list[SubmissionAnnotation]:
        statement = (
            select(SubmissionAnnotation)
            .where(SubmissionAnnotation.submission_id == submission_id)
            .order_by(col(SubmissionAnnotation.created_at).asc(), col(SubmissionAnnotation.id).asc())
        )
        return list(self.session.exec(statement).all())

    def matches(self, submission_id: int) -> list[OriginalityMatch]:
        statement = (
            select(OriginalityMatch)
            .where(OriginalityMatch.submission_id == submission_id)
            .order_by(col(OriginalityMatch.rank).asc())
        )
        return list(self.session.exec(statement).all())

    def build_corpus(self, submission: Submission, limit: int | None = None) -> list[CorpusDocument]:
        """Checked documents from other projects, newest version of each lineage only."""
        limit = settings.originality_corpus_limit if limit is None else limit
        statement = (
            select(Submission, Project)
            .join(Project, col(Project.id) == col(Submission.project_id))
            .where(
                Submission.project_id != submission.project_id,
                Submission.originality_status == OriginalityStatus.COMPLETED,
                col(Submission.extracted_text).is_not(None),
            )
            .order_by(col(Submission.created_at).desc(), col(Submission.version).desc())
        )

        corpus: list[CorpusDocument] = []
        seen: set[tuple[int, str]] = set()
        for source, project in self.session.exec(statement):
            lineage_key = (source.project_id, source.slot)
            if lineage_key in seen:
                continue
            seen.add(lineage_key)
            corpus.append(CorpusDocument(source_id=source.id, title=f"{project.title} ({source.slot})", text=source.extracted_text or ""))
            if len(corpus) >= limit:
                break
        return corpus

    # Uploads

    def _check_proposal_gate(self, project_id: int) -> None:
        missing = []
        for chapter in _PROPOSAL_PREREQUISITES:
            latest = self.latest(project_id, lineage_slot(DocumentType.CHAPTER, chapter))
            if latest is None or latest.status != SubmissionStatus.LOCKED:
                missing.append(chapter)
        if missing:
            raise ChaptersNotLocked(f"Chapters {', '.join(str(c) for c in missing)} must be locked before the proposal is submitted")

    def upload(self, project_id: int, data: bytes, metadata: UploadMetadata) -> Submission:
        """Store the bytes, record the next version in the lineage and try to queue its check."""
        project = self.get_project(project_id)
        try:
            slot = lineage_slot(metadata.document_type, metadata.chapter)
        except ValueError as exc:
            raise InvalidUpload(str(exc)) from exc

        now = utcnow()
        deadline = project.deadline_for(metadata.document_type, metadata.chapter)
        is_late = deadline is not None and now > as_utc(deadline)
        remarks = (metadata.remarks or "").strip() or None
        if is_late and not remarks:
            raise LateRemarksRequired("Remarks are required for late submissions")

        if metadata.document_type == DocumentType.PROPOSAL:
            self._check_proposal_gate(project_id)

        if self.storage is None:
            raise RuntimeError("SubmissionStore.upload needs a storage provider")

        with lineage_lock(project_id, slot):
            latest = self.latest(project_id, slot)
            if latest is not None and latest.status == SubmissionStatus.LOCKED:
                raise LineageLocked(f"{slot} is locked; ask your adviser to unlock it before uploading")
            if latest is not None and latest.status == SubmissionStatus.REJECTED:
                raise LineageRejected(f"{slot} was rejected; uploads into this lineage are closed")

            storage_key = self.storage.put(data, metadata.content_type, metadata.original_filename)
            submission = Submission(
                project_id=project_id,
                slot=slot,
                document_type=metadata.document_type,
                chapter=metadata.chapter,
                version=(latest.version + 1) if latest is not None else 1,
                original_filename=metadata.original_filename,
                storage_key=storage_key,
                content_type=metadata.content_type,
                size_bytes=len(data),
                submitted_by=metadata.submitted_by,
                is_late=is_late,
                remarks=remarks,
                created_at=now,
                updated_at=now,
            )
            self.session.add(submission)
            self.session.flush()
            self._record(submission.id, "uploaded", metadata.submitted_by, f"version {submission.version}")
            self.session.commit()
            self.session.refresh(submission)

        logger.info(
            "submission uploaded",
            extra={"submission_id": submission.id, "slot": slot, "version": submission.version, "is_late": is_late},
        )
        self._enqueue(submission)
        self._notify(
            project.adviser_id,
            "submission_uploaded",
            {"submission_id": submission.id, "project_id": project_id, "slot": slot, "version": submission.version},
        )
        return self.get(submission.id, refresh=True)

    # Review state machine

    def mark_under_review(self, submission_id: int, reviewer_id: str) -> Submission:
        submission = self.get(submission_id)
        with lineage_lock(submission.project_id, submission.slot):
            submission = self.get(submission_id, refresh=True)
            if not self.is_latest(submission) or submission.status not in REVIEWABLE_STATUSES:
                raise NotReviewable(f"Submission {submission_id} cannot be opened for review")
            if submission.status == SubmissionStatus.PENDING:
                submission.status = SubmissionStatus.UNDER_REVIEW
                submission.reviewed_by = reviewer_id
                self._touch(submission)
                self._record(submission_id, "review_opened", reviewer_id)
                self.session.commit()
        return self.get(submission_id, refresh=True)

    def review(self, submission_id: int, decision: ReviewDecision, reviewer_id: str, note: str | None = None) -> Submission:
        submission = self.get(submission_id)
        with lineage_lock(submission.project_id, submission.slot):
            submission = self.get(submission_id, refresh=True)
            if not self.is_latest(submission):
                raise NotReviewable("Only the latest version of a lineage can be reviewed")
            if submission.status not in REVIEWABLE_STATUSES:
                raise NotReviewable(f"Submission is {submission.status.value}; only pending submissions can be reviewed")

            submission.status = _DECISION_STATUS[decision]
            submission.reviewed_by = reviewer_id
            submission.review_note = (note or "").strip() or None
            self._touch(submission)
            self._record(submission_id, f"review:{decision.value}", reviewer_id, submission.review_note)
            self.session.commit()

        logger.info("submission reviewed", extra={"submission_id": submission_id, "decision": decision.value})
        self._notify(
            submission.submitted_by,
            "review_decision",
            {"submission_id": submission_id, "decision": decision.value, "status": submission.status.value},
        )
        return self.get(submission_id, refresh=True)

    def lock(self, submission_id: int, actor_id: str) -> Submission:
        submission = self.get(submission_id)
        with lineage_lock(submission.project_id, submission.slot):
            submission = self.get(submission_id, refresh=True)
            if submission.status != SubmissionStatus.APPROVED or not self.is_latest(submission):
                raise NotApproved("Only the approved latest version can be locked")
            submission.status = SubmissionStatus.LOCKED
            self._touch(submission)
            self._record(submission_id, "locked", actor_id)
            self.session.commit()
        logger.info("lineage locked", extra={"submission_id": submission_id, "slot": submission.slot})
        return self.get(submission_id, refresh=True)

    def unlock(self, submission_id: int, actor_id: str, reason: str) -> Submission:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationFailed("An unlock reason is required")

        submission = self.get(submission_id)
        with lineage_lock(submission.project_id, submission.slot):
            submission = self.get(submission_id, refresh=True)
            if submission.status != SubmissionStatus.LOCKED:
                raise NotLocked(f"Submission is {submission.status.value}; only locked submissions can be unlocked")
            submission.status = SubmissionStatus.REVISIONS_REQUIRED
            self._touch(submission)
            self._record(submission_id, "unlocked", actor_id, reason)
            self.session.commit()

        logger.info("lineage unlocked", extra={"submission_id": submission_id, "slot": submission.slot})
        self._notify(submission.submitted_by, "submission_unlocked", {"submission_id": submission_id, "reason": reason})
        return self.get(submission_id, refresh=True)

    # Annotations

    def annotate(self, submission_id: int, author_id: str, page: int, content: str) -> SubmissionAnnotation:
        content = (content or "").strip()
        if not content:
            raise ValidationFailed("Annotation content is required")
        if page < 1:
            raise ValidationFailed("Annotation page must be 1 or greater")

        submission = self.get(submission_id)
        annotation = SubmissionAnnotation(submission_id=submission_id, author_id=author_id, page=page, content=content)
        self.session.add(annotation)
        self.session.flush()
        self._record(submission_id, "annotation_added", author_id, f"annotation {annotation.id} on page {page}")
        self.session.commit()
        self.session.refresh(annotation)

        if author_id != submission.submitted_by:
            self._notify(
                submission.submitted_by,
                "annotation_added",
                {"submission_id": submission_id, "annotation_id": annotation.id, "page": page},
            )
        return annotation

    def remove_annotation(self, submission_id: int, annotation_id: int, requester_id: str, requester_role: Role) -> None:
        annotation = self.session.get(SubmissionAnnotation, annotation_id)
        if annotation is None or annotation.submission_id != submission_id:
            raise AnnotationNotFound(f"Annotation {annotation_id} not found on submission {submission_id}")
        if annotation.author_id != requester_id and requester_role not in ELEVATED_ROLES:
            raise Forbidden("Only the author or an instructor can remove this annotation")

        self.session.delete(annotation)
        self._record(submission_id, "annotation_removed", requester_id, f"annotation {annotation_id}")
        self.session.commit()

    # Originality

    def requeue(self, submission_id: int, actor_id: str) -> Submission:
        """Start a fresh check attempt; results from earlier attempts become stale."""
        submission = self.get(submission_id)
        with lineage_lock(submission.project_id, submission.slot):
            submission = self.get(submission_id, refresh=True)
            if not self.is_latest(submission):
                raise RecheckNotAllowed("Only the latest version of a lineage can be re-checked")
            self._restart_check(submission, actor_id)

        self._enqueue(submission)
        return self.get(submission_id, refresh=True)

    def enqueue_deferred(self, stale_after: float | None = None) -> int:
        """Queue checks left unchecked while the broker was down.

        Checks still queued or processing after ``stale_after`` seconds belong
        to a job the broker lost; they restart under a new attempt.
        """
        if self.job_queue is None or not self.job_queue.is_available():
            return 0

        stale_after = settings.originality_stale_after_seconds if stale_after is None else stale_after
        cutoff = utcnow() - timedelta(seconds=stale_after)
        statement = (
            select(Submission)
            .where(col(Submission.originality_status).in_(_CATCH_UP_ORIGINALITY))
            .order_by(col(Submission.created_at).asc())
        )
        queued = 0
        for submission in list(self.session.exec(statement).all()):
            if not self.is_latest(submission):
                continue
            if submission.originality_status in _IN_FLIGHT_ORIGINALITY:
                if as_utc(submission.updated_at) >= cutoff:
                    continue
                with lineage_lock(submission.project_id, submission.slot):
                    current = self.get(submission.id, refresh=True)
                    if current.originality_status not in _IN_FLIGHT_ORIGINALITY or as_utc(current.updated_at) >= cutoff:
                        continue
                    logger.warning(
                        "stale originality job restarted",
                        extra={"submission_id": current.id, "job_id": current.originality_job_id},
                    )
                    self._restart_check(current, None)
            if self._enqueue(submission):
                queued += 1
            elif not self.job_queue.is_available():
                break
        if queued:
            logger.info("deferred originality checks queued", extra={"count": queued})
        return queued

    def _restart_check(self, submission: Submission, actor_id: str | None) -> None:
        """Reset the check under a new attempt; the caller holds the lineage lock."""
        submission.originality_attempt += 1
        submission.originality_status = OriginalityStatus.UNCHECKED
        submission.originality_job_id = None
        submission.originality_score = None
        submission.originality_error = None
        submission.originality_checked_at = None
        self.session.exec(delete(OriginalityMatch).where(OriginalityMatch.submission_id == submission.id))
        self._touch(submission)
        self._record(submission.id, "originality_requeued", actor_id, f"attempt {submission.originality_attempt}")
        self.session.commit()

    def _enqueue(self, submission: Submission) -> bool:
        """Best effort; leaves the submission unchecked when the broker is down."""
        submission_id = submission.id
        if self.job_queue is None or not self.job_queue.is_available():
            logger.warning("originality check deferred; job broker unavailable", extra={"submission_id": submission_id})
            return False

        with lineage_lock(submission.project_id, submission.slot):
            current = self.get(submission_id, refresh=True)
            if current.originality_status != OriginalityStatus.UNCHECKED:
                return False
            job = Job(
                submission_id=submission_id,
                version=current.version,
                attempt=current.originality_attempt,
                storage_key=current.storage_key,
                declared_mime=current.content_type,
            )
            current.originality_status = OriginalityStatus.QUEUED
            current.originality_job_id = job.job_id
            self._touch(current)
            self.session.commit()

        try:
            handle = self.job_queue.enqueue(job)
        except QueueUnavailable as exc:
            with lineage_lock(submission.project_id, submission.slot):
                current = self.get(submission_id, refresh=True)
                if current.originality_job_id == job.job_id and current.originality_status == OriginalityStatus.QUEUED:
                    current.originality_status = OriginalityStatus.UNCHECKED
                    current.originality_job_id = None
                    self._touch(current)
                    self.session.commit()
            logger.warning("originality check deferred", extra={"submission_id": submission_id, "error": exc.message})
            return False

        logger.info(
            "originality check queued",
            extra={"submission_id": submission_id, "job_id": handle.job_id, "duplicate": handle.duplicate},
        )
        return True

    def apply_originality_result(self, submission_id: int, outcome: OriginalityOutcome) -> bool:
        """Apply a worker transition; returns False when it was stale or already applied.

        A processing mark is accepted again for the same job so a redelivered
        job can restart after its first worker died.
        """
        submission = self.session.get(Submission, submission_id)
        if submission is None:
            logger.info("originality result for unknown submission ignored", extra={"submission_id": submission_id})
            return False

        now = utcnow()
        if outcome.state == OriginalityStatus.PROCESSING:
            values: dict[str, Any] = {"originality_status": OriginalityStatus.PROCESSING}
        elif outcome.state == OriginalityStatus.COMPLETED:
            values = {
                "originality_status": OriginalityStatus.COMPLETED,
                "originality_score": outcome.score,
                "originality_error": None,
                "originality_checked_at": now,
                "extracted_text": outcome.extracted_text,
            }
        elif outcome.state == OriginalityStatus.FAILED:
            values = {
                "originality_status": OriginalityStatus.FAILED,
                "originality_score": None,
                "originality_error": outcome.error or "Originality check failed",
                "originality_checked_at": now,
            }
        else:
            raise ValueError(f"Cannot apply originality state {outcome.state.value}")
        values["updated_at"] = now

        with lineage_lock(submission.project_id, submission.slot):
            submission = self.get(submission_id, refresh=True)
            if outcome.version != submission.version or outcome.job_id != submission.originality_job_id:
                logger.info("stale originality result ignored", extra={"submission_id": submission_id, "job_id": outcome.job_id})
                return False
            if submission.originality_status not in _IN_FLIGHT_ORIGINALITY:
                return False

            if not self._write_if_latest(submission_id, outcome, values):
                self.session.rollback()
                logger.info("originality result for superseded version ignored", extra={"submission_id": submission_id, "job_id": outcome.job_id})
                return False

            if outcome.state == OriginalityStatus.COMPLETED:
                self.session.exec(delete(OriginalityMatch).where(OriginalityMatch.submission_id == submission_id))
                for rank, match in enumerate(outcome.matches, 1):
                    self.session.add(
                        OriginalityMatch(
                            submission_id=submission_id,
                            rank=rank,
                            source_submission_id=match.source_id,
                            title=match.title,
                            match_percentage=match.match_percentage,
                        )
                    )
            self._record(submission_id, f"originality_{outcome.state.value}", None, outcome.error)
            self.session.commit()

        if outcome.state in TERMINAL_ORIGINALITY:
            self._notify(
                submission.submitted_by,
                f"originality_{outcome.state.value}",
                {"submission_id": submission_id, "score": outcome.score},
            )
        return True

    def _write_if_latest(self, submission_id: int, outcome: OriginalityOutcome, values: dict[str, Any]) -> bool:
        """Check-and-set in one statement: no newer version exists and the job is still current."""
        newer = aliased(Submission)
        newer_version_exists = exists().where(
            newer.project_id == Submission.project_id,
            newer.slot == Submission.slot,
            newer.version > Submission.version,
        )
        statement = (
            update(Submission)
            .where(
                col(Submission.id) == submission_id,
                col(Submission.version) == outcome.version,
                col(Submission.originality_job_id) == outcome.job_id,
                col(Submission.originality_status).in_(_IN_FLIGHT_ORIGINALITY),
                ~newer_version_exists,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self.session.exec(statement).rowcount == 1

    # Helpers

    def _touch(self, submission: Submission) -> None:
        submission.updated_at = utcnow()
        self.session.add(submission)

    def _record(self, submission_id: int | None, kind: str, actor_id: str | None, detail: str | None = None) -> None:
        self.session.add(SubmissionEvent(submission_id=submission_id, kind=kind, actor_id=actor_id, detail=detail))

    def _notify(self, user_id: str | None, event: str, payload: dict) -> None:
        if self.notifier is not None:
            send(self.notifier, user_id, event, payload)
