"""SQLModel ORM models for capstone document submissions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Return timezone-aware UTC now timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo; treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REVISIONS_REQUIRED = "revisions_required"
    REJECTED = "rejected"
    LOCKED = "locked"


class OriginalityStatus(str, Enum):
    UNCHECKED = "unchecked"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DocumentType(str, Enum):
    CHAPTER = "chapter"
    PROPOSAL = "proposal"
    FINAL_ACADEMIC = "final_academic"
    FINAL_JOURNAL = "final_journal"


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REQUEST_REVISIONS = "request_revisions"
    REJECT = "reject"


class Role(str, Enum):
    STUDENT = "student"
    ADVISER = "adviser"
    PANELIST = "panelist"
    INSTRUCTOR = "instructor"


FACULTY_ROLES = frozenset({Role.ADVISER, Role.PANELIST, Role.INSTRUCTOR})
ELEVATED_ROLES = frozenset({Role.INSTRUCTOR})

REVIEWABLE_STATUSES = frozenset({SubmissionStatus.PENDING, SubmissionStatus.UNDER_REVIEW})
TERMINAL_ORIGINALITY = frozenset({OriginalityStatus.COMPLETED, OriginalityStatus.FAILED})

CHAPTER_RANGE = range(1, 6)


def lineage_slot(document_type: DocumentType, chapter: int | None = None) -> str:
    """Return the slot key that identifies a lineage within a project."""
    if document_type == DocumentType.CHAPTER:
        if chapter not in CHAPTER_RANGE:
            raise ValueError("Chapter must be between 1 and 5")
        return f"chapter-{chapter}"
    if chapter is not None:
        raise ValueError("Only chapter uploads take a chapter number")
    return document_type.value.replace("_", "-")


class Project(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    keywords_json: str = "[]"
    adviser_id: Optional[str] = None
    chapter1_deadline: Optional[datetime] = None
    chapter2_deadline: Optional[datetime] = None
    chapter3_deadline: Optional[datetime] = None
    proposal_deadline: Optional[datetime] = None
    defense_deadline: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    def deadline_for(self, document_type: DocumentType, chapter: int | None) -> datetime | None:
        if document_type == DocumentType.CHAPTER:
            if chapter == 1:
                return self.chapter1_deadline
            if chapter == 2:
                return self.chapter2_deadline
            if chapter == 3:
                return self.chapter3_deadline
            return self.proposal_deadline
        if document_type == DocumentType.PROPOSAL:
            return self.proposal_deadline
        return self.defense_deadline


class Submission(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("project_id", "slot", "version", name="uq_submission_lineage_version"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", index=True)
    slot: str = Field(index=True)
    document_type: DocumentType
    chapter: Optional[int] = None
    version: int = Field(ge=1)

    original_filename: str
    storage_key: str
    content_type: str
    size_bytes: int = 0

    status: SubmissionStatus = Field(default=SubmissionStatus.PENDING, index=True)
    submitted_by: str
    reviewed_by: Optional[str] = None
    is_late: bool = False
    remarks: Optional[str] = None
    review_note: Optional[str] = None

    originality_status: OriginalityStatus = Field(default=OriginalityStatus.UNCHECKED, index=True)
    originality_score: Optional[int] = None
    originality_checked_at: Optional[datetime] = None
    originality_error: Optional[str] = None
    originality_job_id: Optional[str] = None
    originality_attempt: int = 0
    extracted_text: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SubmissionAnnotation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    submission_id: int = Field(foreign_key="submission.id", index=True)
    author_id: str
    page: int = Field(default=1, ge=1)
    content: str
    created_at: datetime = Field(default_factory=utcnow)


class OriginalityMatch(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    submission_id: int = Field(foreign_key="submission.id", index=True)
    rank: int
    source_submission_id: Optional[int] = None
    title: str
    match_percentage: int


class SubmissionEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    submission_id: int = Field(foreign_key="submission.id", index=True)
    kind: str
    actor_id: Optional[str] = None
    detail: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
