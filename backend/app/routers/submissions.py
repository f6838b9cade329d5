"""Submission review, originality and annotation endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.auth import Actor, get_actor, require_faculty
from app.dependencies import get_store
from app.errors import CapstoneError
from app.models import OriginalityStatus, Submission, SubmissionAnnotation, SubmissionStatus
from app.schemas import (
    AnnotationCreate,
    AnnotationRead,
    MatchedSourceRead,
    OriginalityRead,
    ReviewRequest,
    SubmissionEventRead,
    SubmissionRead,
    SubmissionSummary,
    UnlockRequest,
)
from app.submission_store import SubmissionStore

router = APIRouter(prefix="/submissions", tags=["submissions"])


def _http_error(exc: CapstoneError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def to_annotation_read(annotation: SubmissionAnnotation) -> AnnotationRead:
    return AnnotationRead(
        id=annotation.id,
        author_id=annotation.author_id,
        page=annotation.page,
        content=annotation.content,
        created_at=annotation.created_at,
    )


def to_originality_read(store: SubmissionStore, submission: Submission) -> OriginalityRead:
    state = submission.originality_status
    if state == OriginalityStatus.COMPLETED:
        return OriginalityRead(
            status=state,
            score=submission.originality_score,
            matches=[
                MatchedSourceRead(source_id=m.source_submission_id, title=m.title, match_percentage=m.match_percentage)
                for m in store.matches(submission.id)
            ],
            checked_at=submission.originality_checked_at,
        )
    if state == OriginalityStatus.FAILED:
        return OriginalityRead(status=state, error=submission.originality_error, checked_at=submission.originality_checked_at)
    return OriginalityRead(status=state)


def to_submission_read(store: SubmissionStore, submission: Submission) -> SubmissionRead:
    return SubmissionRead(
        id=submission.id,
        project_id=submission.project_id,
        slot=submission.slot,
        document_type=submission.document_type,
        chapter=submission.chapter,
        version=submission.version,
        original_filename=submission.original_filename,
        content_type=submission.content_type,
        size_bytes=submission.size_bytes,
        status=submission.status,
        submitted_by=submission.submitted_by,
        reviewed_by=submission.reviewed_by,
        is_late=submission.is_late,
        remarks=submission.remarks,
        review_note=submission.review_note,
        originality=to_originality_read(store, submission),
        annotations=[to_annotation_read(a) for a in store.annotations(submission.id)],
        created_at=submission.created_at,
        updated_at=submission.updated_at,
    )


def to_summary(submission: Submission) -> SubmissionSummary:
    return SubmissionSummary(
        id=submission.id,
        project_id=submission.project_id,
        slot=submission.slot,
        version=submission.version,
        status=submission.status,
        originality_status=submission.originality_status,
        is_late=submission.is_late,
        created_at=submission.created_at,
    )


@router.get("", response_model=list[SubmissionSummary])
def list_submissions(
    status_filter: SubmissionStatus | None = Query(default=None, alias="status"),
    project_id: int | None = Query(default=None),
    actor: Actor = Depends(require_faculty),
    store: SubmissionStore = Depends(get_store),
) -> list[SubmissionSummary]:
    del actor
    return [to_summary(s) for s in store.worklist(status=status_filter, project_id=project_id)]


@router.get("/{submission_id}", response_model=SubmissionRead)
def get_submission(
    submission_id: int,
    actor: Actor = Depends(get_actor),
    store: SubmissionStore = Depends(get_store),
) -> SubmissionRead:
    del actor
    try:
        submission = store.get(submission_id)
    except CapstoneError as exc:
        raise _http_error(exc) from exc
    return to_submission_read(store, submission)


@router.get("/{submission_id}/originality", response_model=OriginalityRead, response_model_exclude_none=True)
def get_originality(
    submission_id: int,
    actor: Actor = Depends(get_actor),
    store: SubmissionStore = Depends(get_store),
) -> OriginalityRead:
    del actor
    try:
        submission = store.get(submission_id)
    except CapstoneError as exc:
        raise _http_error(exc) from exc
    return to_originality_read(store, submission)


@router.get("/{submission_id}/history", response_model=list[SubmissionEventRead])
def get_history(
    submission_id: int,
    actor: Actor = Depends(get_actor),
    store: SubmissionStore = Depends(get_store),
) -> list[SubmissionEventRead]:
    del actor
    try:
        events = store.events(submission_id)
    except CapstoneError as exc:
        raise _http_error(exc) from exc
    return [
        SubmissionEventRead(id=e.id, kind=e.kind, actor_id=e.actor_id, detail=e.detail, created_at=e.created_at)
        for e in events
    ]


@router.post("/{submission_id}/open-review", response_model=SubmissionRead)
def open_review(
    submission_id: int,
    actor: Actor = Depends(require_faculty),
    store: SubmissionStore = Depends(get_store),
) -> SubmissionRead:
    try:
        submission = store.mark_under_review(submission_id, actor.user_id)
    except CapstoneError as exc:
        raise _http_error(exc) from exc
    return to_submission_read(store, submission)


@router.post("/{submission_id}/review", response_model=SubmissionRead)
def review_submission(
    submission_id: int,
    payload: ReviewRequest,
    actor: Actor = Depends(require_faculty),
    store: SubmissionStore = Depends(get_store),
) -> SubmissionRead:
    try:
        submission = store.review(submission_id, payload.decision, actor.user_id, payload.review_note)
    except CapstoneError as exc:
        raise _http_error(exc) from exc
    return to_submission_read(store, submission)


@router.post("/{submission_id}/lock", response_model=SubmissionRead)
def lock_submission(
    submission_id: int,
    actor: Actor = Depends(require_faculty),
    store: SubmissionStore = Depends(get_store),
) -> SubmissionRead:
    try:
        submission = store.lock(submission_id, actor.user_id)
    except CapstoneError as exc:
        raise _http_error(exc) from exc
    return to_submission_read(store, submission)


@router.post("/{submission_id}/unlock", response_model=SubmissionRead)
def unlock_submission(
    submission_id: int,
    payload: UnlockRequest,
    actor: Actor = Depends(require_faculty),
    store: SubmissionStore = Depends(get_store),
) -> SubmissionRead:
    try:
        submission = store.unlock(submission_id, actor.user_id, payload.reason)
    except CapstoneError as exc:
        raise _http_error(exc) from exc
    return to_submission_read(store, submission)


@router.post("/{submission_id}/originality/recheck", response_model=SubmissionRead)
def recheck_originality(
    submission_id: int,
    actor: Actor = Depends(require_faculty),
    store: SubmissionStore = Depends(get_store),
) -> SubmissionRead:
    try:
        submission = store.requeue(submission_id, actor.user_id)
    except CapstoneError as exc:
        raise _http_error(exc) from exc
    return to_submission_read(store, submission)


@router.post("/{submission_id}/annotations", response_model=AnnotationRead, status_code=status.HTTP_201_CREATED)
def add_annotation(
    submission_id: int,
    payload: AnnotationCreate,
    actor: Actor = Depends(get_actor),
    store: SubmissionStore = Depends(get_store),
) -> AnnotationRead:
    try:
        annotation = store.annotate(submission_id, actor.user_id, payload.page, payload.content)
    except CapstoneError as exc:
        raise _http_error(exc) from exc
    return to_annotation_read(annotation)


@router.delete("/{submission_id}/annotations/{annotation_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_annotation(
    submission_id: int,
    annotation_id: int,
    actor: Actor = Depends(get_actor),
    store: SubmissionStore = Depends(get_store),
) -> Response:
    try:
        store.remove_annotation(submission_id, annotation_id, actor.user_id, actor.role)
    except CapstoneError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
