"""Project registration, title-duplicate checks and document uploads."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlmodel import Session, col, select

from app.auth import Actor, get_actor, require_student
from app.db import get_session
from app.dependencies import get_store
from app.errors import CapstoneError, UploadTooLarge
from app.models import DocumentType, Project
from app.pipeline.extract import detect_format
from app.pipeline.similarity import TitleCandidate, Weights, find_similar_titles, normalize_keywords
from app.routers.submissions import to_submission_read, to_summary
from app.schemas import ProjectCreate, ProjectCreated, ProjectRead, SubmissionRead, SubmissionSummary, TitleCheckRequest, TitleMatchRead
from app.settings import settings
from app.submission_store import SubmissionStore, UploadMetadata

router = APIRouter(prefix="/projects", tags=["projects"])
logger = logging.getLogger(__name__)


def _project_keywords(project: Project) -> list[str]:
    try:
        keywords = json.loads(project.keywords_json or "[]")
    except json.JSONDecodeError:
        return []
    return [str(k) for k in keywords] if isinstance(keywords, list) else []


def _to_project_read(project: Project) -> ProjectRead:
    return ProjectRead(
        id=project.id,
        title=project.title,
        keywords=_project_keywords(project),
        adviser_id=project.adviser_id,
        chapter1_deadline=project.chapter1_deadline,
        chapter2_deadline=project.chapter2_deadline,
        chapter3_deadline=project.chapter3_deadline,
        proposal_deadline=project.proposal_deadline,
        defense_deadline=project.defense_deadline,
        created_at=project.created_at,
    )


def check_title(session: Session, title: str, keywords: list[str]) -> list[TitleMatchRead]:
    existing = session.exec(select(Project).order_by(col(Project.id).asc())).all()
    candidates = [TitleCandidate(id=p.id, title=p.title, keywords=_project_keywords(p)) for p in existing]
    matches = find_similar_titles(
        title,
        keywords,
        candidates,
        threshold=settings.title_similarity_threshold,
        weights=Weights(string=settings.title_weight, keyword=settings.keyword_weight),
    )
    return [TitleMatchRead(id=m.id, title=m.title, score=m.score) for m in matches]


@router.post("/title-check", response_model=list[TitleMatchRead])
def title_check(payload: TitleCheckRequest, session: Session = Depends(get_session)) -> list[TitleMatchRead]:
    return check_title(session, payload.title, payload.keywords)


@router.post("", response_model=ProjectCreated, status_code=status.HTTP_201_CREATED)
def create_project(
    payload: ProjectCreate,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
) -> ProjectCreated:
    title = payload.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Project title is required")

    similar = check_title(session, title, payload.keywords)
    if similar:
        logger.info("possible duplicate project title", extra={"title": title, "matches": len(similar), "actor": actor.user_id})

    project = Project(
        title=title,
        keywords_json=json.dumps(sorted(normalize_keywords(payload.keywords))),
        adviser_id=payload.adviser_id,
        chapter1_deadline=payload.chapter1_deadline,
        chapter2_deadline=payload.chapter2_deadline,
        chapter3_deadline=payload.chapter3_deadline,
        proposal_deadline=payload.proposal_deadline,
        defense_deadline=payload.defense_deadline,
    )
    session.add(project)
    session.commit()
    session.refresh(project)
    return ProjectCreated(**_to_project_read(project).model_dump(), similar_titles=similar)


@router.get("/{project_id}", response_model=ProjectRead)
def get_project(project_id: int, session: Session = Depends(get_session)) -> ProjectRead:
    project = session.get(Project, project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return _to_project_read(project)


@router.post("/{project_id}/submissions", response_model=SubmissionRead, status_code=status.HTTP_201_CREATED)
def upload_submission(
    project_id: int,
    document_type: DocumentType = Form(...),
    chapter: int | None = Form(default=None),
    remarks: str | None = Form(default=None),
    file: UploadFile = File(...),
    actor: Actor = Depends(require_student),
    store: SubmissionStore = Depends(get_store),
) -> SubmissionRead:
    file.file.seek(0, 2)
    size = file.file.tell()
    file.file.seek(0)
    filename = Path(file.filename or "upload").name
    try:
        if size > settings.max_upload_bytes:
            raise UploadTooLarge(f"File exceeds {settings.max_upload_mb}MB")
        data = file.file.read()
        document_format = detect_format(data, filename)
        submission = store.upload(
            project_id,
            data,
            UploadMetadata(
                document_type=document_type,
                chapter=chapter,
                original_filename=filename,
                content_type=document_format.value,
                submitted_by=actor.user_id,
                remarks=remarks,
            ),
        )
    except CapstoneError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    return to_submission_read(store, submission)


@router.get("/{project_id}/lineages/{slot}", response_model=list[SubmissionSummary])
def get_lineage(
    project_id: int,
    slot: str,
    actor: Actor = Depends(get_actor),
    store: SubmissionStore = Depends(get_store),
) -> list[SubmissionSummary]:
    del actor
    try:
        store.get_project(project_id)
    except CapstoneError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    return [to_summary(s) for s in store.lineage(project_id, slot)]
