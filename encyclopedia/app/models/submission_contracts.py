from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from encyclopedia.app.repositories.submission_repository import Submission, SubmissionVersion
from encyclopedia.app.services.submission_service import Completeness, SubmissionPreview, SubmissionStats
from encyclopedia.app.services.submission_states import ReviewAction


class CreateSubmissionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    verbete_type: str = Field(alias="verbeteType", min_length=1, max_length=64)
    fields: dict[str, Any] = Field(default_factory=dict)


class UpdateSubmissionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fields: dict[str, Any]


class ReviewRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: ReviewAction
    note: str | None = Field(default=None, max_length=4000)

    @field_validator("note", mode="before")
    @classmethod
    def _normalize_note(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class CompletenessSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_complete: bool
    missing_fields: list[str]
    percentage: int

    @classmethod
    def from_report(cls, report: Completeness) -> CompletenessSummary:
        return cls(
            is_complete=report.is_complete,
            missing_fields=list(report.missing_fields),
            percentage=report.percentage,
        )


class SubmissionSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    owner_id: str
    verbete_type: str
    status: str
    title: str | None = None
    content: str | None = None
    content_html: str
    metadata: dict[str, Any]
    tags: list[int]
    categories: list[int]
    authors: list[str]
    created_at: str
    updated_at: str
    submitted_at: str | None = None
    reviewed_at: str | None = None
    reviewer_id: str | None = None
    review_note: str | None = None
    article_id: str | None = None

    @classmethod
    def from_submission(cls, submission: Submission) -> SubmissionSummary:
        return cls(
            id=submission.submission_id,
            owner_id=submission.owner_id,
            verbete_type=submission.verbete_type,
            status=submission.status,
            title=submission.title,
            content=submission.content,
            content_html=submission.content_html,
            metadata=dict(submission.metadata),
            tags=list(submission.tag_ids),
            categories=list(submission.category_ids),
            authors=list(submission.author_names),
            created_at=submission.created_at.isoformat(),
            updated_at=submission.updated_at.isoformat(),
            submitted_at=_isoformat(submission.submitted_at),
            reviewed_at=_isoformat(submission.reviewed_at),
            reviewer_id=submission.reviewer_id,
            review_note=submission.review_note,
            article_id=submission.article_id,
        )


class SubmissionDetail(BaseModel):
    model_config = ConfigDict(extra="forbid")

    submission: SubmissionSummary
    completeness: CompletenessSummary
    can_edit: bool
    can_submit: bool


class SubmissionPreviewSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    title: str | None = None
    slug: str
    verbete_type: str
    content_html: str
    excerpt: str
    metadata: dict[str, Any]
    tags: list[int]
    categories: list[int]
    authors: list[str]
    generated_at: str

    @classmethod
    def from_preview(cls, preview: SubmissionPreview) -> SubmissionPreviewSummary:
        return cls(
            id=preview.submission_id,
            title=preview.title,
            slug=preview.slug,
            verbete_type=preview.verbete_type,
            content_html=preview.content_html,
            excerpt=preview.excerpt,
            metadata=dict(preview.metadata),
            tags=list(preview.tag_ids),
            categories=list(preview.category_ids),
            authors=list(preview.author_names),
            generated_at=preview.generated_at.isoformat(),
        )


class SubmissionStatsSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    status: str
    version_count: int
    title_length: int
    content_length: int
    tag_count: int
    category_count: int
    author_count: int
    days_since_creation: int
    completeness: CompletenessSummary

    @classmethod
    def from_stats(cls, stats: SubmissionStats) -> SubmissionStatsSummary:
        return cls(
            id=stats.submission_id,
            status=stats.status,
            version_count=stats.version_count,
            title_length=stats.title_length,
            content_length=stats.content_length,
            tag_count=stats.tag_count,
            category_count=stats.category_count,
            author_count=stats.author_count,
            days_since_creation=stats.days_since_creation,
            completeness=CompletenessSummary.from_report(stats.completeness),
        )


class SubmissionVersionSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int
    title: str | None = None
    content: str | None = None
    metadata: dict[str, Any]
    created_by: str
    change_summary: str
    created_at: str

    @classmethod
    def from_version(cls, version: SubmissionVersion) -> SubmissionVersionSummary:
        return cls(
            version=version.version_number,
            title=version.title,
            content=version.content,
            metadata=dict(version.metadata),
            created_by=version.created_by,
            change_summary=version.change_summary,
            created_at=version.created_at.isoformat(),
        )


def _isoformat(value: Any) -> str | None:
    return value.isoformat() if value is not None else None
