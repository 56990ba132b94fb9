"""Core data models for the hiring pipeline.

Field names are snake_case in Python and camelCase on the wire, matching the
JSON shapes the simulated backend speaks.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class JobStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class CandidateStage(str, Enum):
    APPLIED = "applied"
    SCREEN = "screen"
    TECH = "tech"
    OFFER = "offer"
    HIRED = "hired"
    REJECTED = "rejected"


# Pipeline order used when seeding stage histories.
STAGE_SEQUENCE: tuple[CandidateStage, ...] = tuple(CandidateStage)


class TimelineEventType(str, Enum):
    STAGE_CHANGE = "stage_change"
    NOTE = "note"
    ASSESSMENT_COMPLETED = "assessment_completed"


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single-choice"
    MULTI_CHOICE = "multi-choice"
    SHORT_TEXT = "short-text"
    LONG_TEXT = "long-text"
    NUMERIC = "numeric"
    FILE_UPLOAD = "file-upload"


class WireModel(BaseModel):
    """Base for every record: camelCase aliases, accepts either spelling."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Job(WireModel):
    id: str = Field(default_factory=new_id)
    title: str = Field(min_length=1)
    slug: str
    status: JobStatus = JobStatus.ACTIVE
    tags: list[str] = Field(default_factory=list)
    description: str | None = None
    order: int = Field(ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Candidate(WireModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    email: str
    stage: CandidateStage = CandidateStage.APPLIED
    job_id: str
    applied_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    avatar: str | None = None


class TimelineEvent(WireModel):
    id: str = Field(default_factory=new_id)
    candidate_id: str
    type: TimelineEventType
    content: str
    from_stage: CandidateStage | None = None
    to_stage: CandidateStage | None = None
    created_at: datetime = Field(default_factory=utc_now)
    created_by: str | None = None


class Note(WireModel):
    id: str = Field(default_factory=new_id)
    candidate_id: str
    content: str = Field(min_length=1)
    mentions: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    created_by: str | None = None


class QuestionValidation(WireModel):
    min: float | None = None
    max: float | None = None
    max_length: int | None = Field(default=None, ge=1)


class ShowIf(WireModel):
    question_id: str
    answer: str | list[str]


class ConditionalLogic(WireModel):
    show_if: ShowIf


class AssessmentQuestion(WireModel):
    id: str = Field(default_factory=new_id)
    type: QuestionType
    text: str
    required: bool = False
    options: list[str] | None = None
    validation: QuestionValidation | None = None
    conditional_logic: ConditionalLogic | None = None


class AssessmentSection(WireModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: str | None = None
    questions: list[AssessmentQuestion] = Field(default_factory=list)
    order: int = 0


class Assessment(WireModel):
    id: str = Field(default_factory=new_id)
    job_id: str
    title: str = Field(min_length=1)
    description: str | None = None
    sections: list[AssessmentSection] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class AssessmentResponse(WireModel):
    id: str = Field(default_factory=new_id)
    assessment_id: str
    candidate_id: str
    answers: dict[str, Any] = Field(default_factory=dict)
    submitted_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None


class Page(WireModel):
    """Shape of every list response: ``{data, total, page, pageSize}``."""

    data: list[dict[str, Any]]
    total: int
    page: int = 1
    page_size: int = 20


_MENTION_RE = re.compile(r"@(\w+)")


def extract_mentions(text: str) -> list[str]:
    """Return the handles mentioned as ``@name`` in note text, in order."""
    return _MENTION_RE.findall(text)


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug or "job"
