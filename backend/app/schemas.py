"""Request and response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field

from app.models import DocumentType, OriginalityStatus, ReviewDecision, SubmissionStatus


class TitleCheckRequest(BaseModel):
    title: str = Field(min_length=1)
    keywords: list[str] = Field(default_factory=list)


class TitleMatchRead(BaseModel):
    id: int | None
    title: str
    score: float


class ProjectCreate(BaseModel):
    title: str = Field(min_length=1)
    keywords: list[str] = Field(default_factory=list)
    adviser_id: str | None = None
    chapter1_deadline: datetime | None = None
    chapter2_deadline: datetime | None = None
    chapter3_deadline: datetime | None = None
    proposal_deadline: datetime | None = None
    defense_deadline: datetime | None = None


class ProjectRead(BaseModel):
    id: int
    title: str
    keywords: list[str]
    adviser_id: str | None
    chapter1_deadline: datetime | None
    chapter2_deadline: datetime | None
    chapter3_deadline: datetime | None
    proposal_deadline: datetime | None
    defense_deadline: datetime | None
    created_at: datetime


class ProjectCreated(ProjectRead):
    similar_titles: list[TitleMatchRead] = Field(default_factory=list)


class AnnotationCreate(BaseModel):
    page: int = Field(default=1, ge=1)
    content: str = Field(min_length=1)


class AnnotationRead(BaseModel):
    id: int
    author_id: str
    page: int
    content: str
    created_at: datetime


class MatchedSourceRead(BaseModel):
    source_id: int | None
    title: str
    match_percentage: int


class OriginalityRead(BaseModel):
    """Score and matches are only present once the check has completed."""

    status: OriginalityStatus
    score: int | None = None
    matches: list[MatchedSourceRead] | None = None
    checked_at: datetime | None = None
    error: str | None = None


class SubmissionRead(BaseModel):
    id: int
    project_id: int
    slot: str
    document_type: DocumentType
    chapter: int | None
    version: int
    original_filename: str
    content_type: str
    size_bytes: int
    status: SubmissionStatus
    submitted_by: str
    reviewed_by: str | None
    is_late: bool
    remarks: str | None
    review_note: str | None
    originality: OriginalityRead
    annotations: list[AnnotationRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class SubmissionSummary(BaseModel):
    id: int
    project_id: int
    slot: str
    version: int
    status: SubmissionStatus
    originality_status: OriginalityStatus
    is_late: bool
    created_at: datetime


class SubmissionEventRead(BaseModel):
    id: int
    kind: str
    actor_id: str | None
    detail: str | None
    created_at: datetime


class ReviewRequest(BaseModel):
    decision: ReviewDecision
    review_note: str | None = Field(default=None, validation_alias=AliasChoices("reviewNote", "review_note"))


class UnlockRequest(BaseModel):
    reason: str = ""
