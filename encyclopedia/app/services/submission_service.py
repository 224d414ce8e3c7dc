from __future__ import annotations

import logging
import re
import sqlite3
import unicodedata
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, Protocol

from encyclopedia.app.errors import (
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from encyclopedia.app.models.verbete_types import (
    MAX_TEXT_FIELD_LENGTH,
    VerbeteType,
    get_verbete_type,
    validate_metadata,
)
from encyclopedia.app.repositories.article_repository import Article
from encyclopedia.app.repositories.submission_repository import (
    Submission,
    SubmissionVersion,
    VersionStamp,
    new_submission_id,
)
from encyclopedia.app.repositories.taxonomy_repository import TaxonomyKind
from encyclopedia.app.services.content_normalizer import normalize, plain_text
from encyclopedia.app.services.query_filters import MAX_INTEGER, MIN_INTEGER, ArticleFilter, PageRequest
from encyclopedia.app.services.submission_states import (
    REVIEW_TRANSITIONS,
    SUBMIT_TRANSITION,
    ReviewAction,
    SubmissionStatus,
    apply_transition,
)
from encyclopedia.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("encyclopedia.submissions")

MAX_TITLE_LENGTH = 200
MAX_CONTENT_LENGTH = 200_000
CORE_FIELDS: frozenset[str] = frozenset({"title", "content", "tags", "categories", "authors"})
# Set by the workflow itself, never through `fields`.
PROTECTED_FIELDS: frozenset[str] = frozenset(
    {"id", "owner", "owner_id", "status", "verbete_type", "verbeteType", "content_html"}
)
# Changing any of these records a new version snapshot.
SIGNIFICANT_FIELDS: tuple[str, ...] = ("title", "content", "categories")
PREVIEW_EXCERPT_LENGTH = 280


class SubmissionStore(Protocol):
    def save(self, submission: Submission, *, version: VersionStamp | None = None) -> Submission: ...

    def find_one(self, submission_id: str) -> Submission | None: ...

    def find_by_owner(self, owner_id: str) -> list[Submission]: ...

    def find_many(
        self,
        entry_filter: ArticleFilter | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Submission]: ...

    def count(self, entry_filter: ArticleFilter | None = None) -> int: ...

    def find_versions(self, submission_id: str) -> list[SubmissionVersion]: ...

    def delete(self, submission_id: str) -> bool: ...


class PublishedArticleStore(Protocol):
    def create(
        self,
        *,
        submission_id: str | None,
        verbete_type: str,
        title: str,
        content: str | None,
        content_html: str,
        metadata: dict[str, Any],
        tag_ids: Sequence[int] = (),
        category_ids: Sequence[int] = (),
        author_names: Sequence[str] = (),
    ) -> Article: ...

    def find_by_submission(self, submission_id: str) -> Article | None: ...


class TaxonomyLookup(Protocol):
    def missing_ids(self, kind: TaxonomyKind, term_ids: Sequence[int]) -> list[int]: ...


@dataclass(frozen=True)
class Actor:
    user_id: str
    is_reviewer: bool = False


@dataclass(frozen=True)
class Completeness:
    is_complete: bool
    missing_fields: tuple[str, ...]
    percentage: int


@dataclass(frozen=True)
class SubmissionPage:
    items: list[Submission]
    total: int
    page: int
    limit: int


@dataclass(frozen=True)
class SubmissionPreview:
    submission_id: str
    title: str | None
    slug: str
    verbete_type: str
    content_html: str
    excerpt: str
    metadata: dict[str, Any]
    tag_ids: tuple[int, ...]
    category_ids: tuple[int, ...]
    author_names: tuple[str, ...]
    generated_at: datetime


@dataclass(frozen=True)
class SubmissionStats:
    submission_id: str
    status: str
    version_count: int
    title_length: int
    content_length: int
    tag_count: int
    category_count: int
    author_count: int
    completeness: Completeness
    days_since_creation: int


class SubmissionService:
    def __init__(
        self,
        *,
        submission_repository: SubmissionStore,
        article_repository: PublishedArticleStore,
        taxonomy_repository: TaxonomyLookup,
        telemetry: TelemetryClient | None = None,
        normalizer: Callable[[str | None], str] = normalize,
    ) -> None:
        self._submissions = submission_repository
        self._articles = article_repository
        self._taxonomy = taxonomy_repository
        self._telemetry = telemetry or TelemetryClient.disabled()
        self._normalize = normalizer

    def create_draft(self, owner: Actor, verbete_type: object, fields: object) -> Submission:
        _require_user(owner)
        verbete = get_verbete_type(verbete_type)
        if verbete is None:
            raise ValidationError(
                f"Unknown verbete type: {verbete_type!r}",
                errors=[f"verbete_type must be one of the recognized types, got {verbete_type!r}"],
            )
        with _storage("create submission"):
            changes = self._parse_fields(verbete, fields)
            metadata = _merge_metadata({}, changes)
            _raise_for_errors(validate_metadata(verbete, metadata))

            now = _utc_now()
            content = changes.get("content")
            submission = Submission(
                submission_id=new_submission_id(),
                owner_id=owner.user_id,
                verbete_type=verbete.key,
                status=SubmissionStatus.DRAFT.value,
                title=changes.get("title"),
                content=content,
                content_html=self._normalize(content),
                metadata=metadata,
                created_at=now,
                updated_at=now,
                tag_ids=tuple(changes.get("tags", ())),
                category_ids=tuple(changes.get("categories", ())),
                author_names=tuple(changes.get("authors", ())),
            )
            saved = self._submissions.save(
                submission,
                version=VersionStamp(created_by=owner.user_id, change_summary="Initial version"),
            )

        LOGGER.info(
            "submission draft created submission_id=%s owner_id=%s verbete_type=%s",
            saved.submission_id,
            saved.owner_id,
            saved.verbete_type,
        )
        self._telemetry.emit(
            "submission.created",
            submission_id=saved.submission_id,
            verbete_type=saved.verbete_type,
        )
        return saved

    def update(self, submission_id: str, actor: Actor, fields: object) -> Submission:
        _require_user(actor)
        with _storage("update submission"):
            existing = self._require(submission_id)
            if actor.user_id != existing.owner_id:
                raise ForbiddenError("Only the owner can edit this submission")
            if existing.status != SubmissionStatus.DRAFT.value:
                raise ForbiddenError(
                    f"Submission is {existing.status} and can no longer be edited",
                    details={"current_status": existing.status},
                )

            verbete = _verbete_of(existing)
            changes = self._parse_fields(verbete, fields)
            cleared = sorted(
                name
                for name in ("title", "content", *verbete.required_fields)
                if name in changes and changes[name] is None
            )
            if cleared:
                raise ValidationError(
                    "Required fields cannot be cleared",
                    errors=[f"Field '{name}' is required" for name in cleared],
                )
            metadata = _merge_metadata(existing.metadata, changes)
            _raise_for_errors(validate_metadata(verbete, metadata))

            content = changes["content"] if "content" in changes else existing.content
            updated = replace(
                existing,
                title=changes["title"] if "title" in changes else existing.title,
                content=content,
                content_html=self._normalize(content),
                metadata=metadata,
                tag_ids=tuple(changes["tags"]) if "tags" in changes else existing.tag_ids,
                category_ids=(
                    tuple(changes["categories"]) if "categories" in changes else existing.category_ids
                ),
                author_names=(
                    tuple(changes["authors"]) if "authors" in changes else existing.author_names
                ),
                updated_at=_utc_now(),
            )
            significant = _changed_fields(existing, updated)
            saved = self._submissions.save(
                updated,
                version=(
                    VersionStamp(created_by=actor.user_id, change_summary="Updated by author")
                    if significant
                    else None
                ),
            )

        LOGGER.info(
            "submission updated submission_id=%s changed_fields=%s new_version=%s",
            saved.submission_id,
            ",".join(sorted(changes)),
            bool(significant),
        )
        self._telemetry.emit(
            "submission.updated",
            submission_id=saved.submission_id,
            changed_count=len(changes),
        )
        return saved

    def submit(self, submission_id: str, actor: Actor) -> Submission:
        _require_user(actor)
        with _storage("submit submission"):
            existing = self._require(submission_id)
            if actor.user_id != existing.owner_id:
                raise ForbiddenError("Only the owner can submit this submission")
            target = apply_transition(
                SUBMIT_TRANSITION,
                SubmissionStatus(existing.status),
                is_reviewer=False,
            )
            report = self.completeness(existing)
            if not report.is_complete:
                raise ValidationError(
                    "Submission is incomplete",
                    errors=list(report.missing_fields),
                )

            now = _utc_now()
            submitted = replace(
                existing,
                status=target.value,
                content_html=self._normalize(existing.content),
                submitted_at=now,
                updated_at=now,
            )
            saved = self._submissions.save(
                submitted,
                version=VersionStamp(created_by=actor.user_id, change_summary="Submitted for review"),
            )

        LOGGER.info("submission submitted submission_id=%s", saved.submission_id)
        self._telemetry.emit(
            "submission.submitted",
            submission_id=saved.submission_id,
            verbete_type=saved.verbete_type,
        )
        return saved

    def review(
        self,
        submission_id: str,
        reviewer: Actor,
        action: str | ReviewAction,
        note: str | None = None,
    ) -> Submission:
        _require_user(reviewer)
        if not reviewer.is_reviewer:
            raise ForbiddenError("Reviewer role required")
        try:
            review_action = ReviewAction(action)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown review action: {action!r}",
                errors=[f"action must be one of: {', '.join(item.value for item in ReviewAction)}"],
            ) from exc

        with _storage("review submission"):
            existing = self._require(submission_id)
            target = apply_transition(
                REVIEW_TRANSITIONS[review_action],
                SubmissionStatus(existing.status),
                is_reviewer=True,
            )
            article_id = existing.article_id
            if target is SubmissionStatus.PUBLISHED:
                article_id = self._materialize(existing).article_id

            now = _utc_now()
            reviewed = replace(
                existing,
                status=target.value,
                reviewer_id=reviewer.user_id,
                reviewed_at=now,
                review_note=_clean_note(note),
                article_id=article_id,
                submitted_at=None if target is SubmissionStatus.DRAFT else existing.submitted_at,
                updated_at=now,
            )
            saved = self._submissions.save(reviewed)

        LOGGER.info(
            "submission reviewed submission_id=%s action=%s status=%s reviewer_id=%s",
            saved.submission_id,
            review_action.value,
            saved.status,
            reviewer.user_id,
        )
        self._telemetry.emit(
            "submission.reviewed",
            submission_id=saved.submission_id,
            action=review_action.value,
            status=saved.status,
            has_note=saved.review_note is not None,
        )
        return saved

    def delete(self, submission_id: str, actor: Actor) -> None:
        _require_user(actor)
        with _storage("delete submission"):
            existing = self._require(submission_id)
            if actor.user_id != existing.owner_id and not actor.is_reviewer:
                raise ForbiddenError("Only the owner or a reviewer can delete this submission")
            if existing.status == SubmissionStatus.PUBLISHED.value:
                raise ConflictError(
                    "Published submissions cannot be deleted",
                    current_status=existing.status,
                )
            self._submissions.delete(submission_id)
        LOGGER.info("submission deleted submission_id=%s actor=%s", submission_id, actor.user_id)
        self._telemetry.emit("submission.deleted", submission_id=submission_id)

    def find_one(self, submission_id: str) -> Submission:
        with _storage("find submission"):
            return self._require(submission_id)

    def find_by_user(self, user_id: str, entry_filter: ArticleFilter | None = None) -> Iterator[Submission]:
        """Snapshot of the user's submissions, most recently updated first.

        ``entry_filter`` narrows the snapshot in memory, with the same meaning it
        has for the SQL-backed listings.
        """
        with _storage("find submissions by user"):
            snapshot = self._submissions.find_by_owner(user_id)
        if entry_filter is not None and not entry_filter.is_empty:
            snapshot = [
                submission
                for submission in snapshot
                if entry_filter.matches(
                    title=submission.title,
                    category_ids=submission.category_ids,
                    tag_ids=submission.tag_ids,
                    verbete_type=submission.verbete_type,
                    status=submission.status,
                )
            ]
        return iter(snapshot)

    def list_submissions(self, entry_filter: ArticleFilter, page: PageRequest) -> SubmissionPage:
        with _storage("list submissions"):
            total = self._submissions.count(entry_filter)
            items = self._submissions.find_many(entry_filter, limit=page.limit, offset=page.offset)
        return SubmissionPage(items=items, total=total, page=page.page, limit=page.limit)

    def preview(self, submission_id: str, actor: Actor) -> SubmissionPreview:
        """How the entry would read once published."""
        _require_user(actor)
        with _storage("preview submission"):
            submission = self._require(submission_id)
        _require_viewer(submission, actor)
        content_html = self._normalize(submission.content)
        return SubmissionPreview(
            submission_id=submission.submission_id,
            title=submission.title,
            slug=_slugify(submission.title or ""),
            verbete_type=submission.verbete_type,
            content_html=content_html,
            excerpt=_excerpt(plain_text(content_html)),
            metadata=dict(submission.metadata),
            tag_ids=submission.tag_ids,
            category_ids=submission.category_ids,
            author_names=submission.author_names,
            generated_at=_utc_now(),
        )

    def stats(self, submission_id: str, actor: Actor) -> SubmissionStats:
        _require_user(actor)
        with _storage("submission stats"):
            submission = self._require(submission_id)
            _require_viewer(submission, actor)
            version_count = len(self._submissions.find_versions(submission_id))
        return SubmissionStats(
            submission_id=submission.submission_id,
            status=submission.status,
            version_count=version_count,
            title_length=len(submission.title or ""),
            content_length=len(submission.content or ""),
            tag_count=len(submission.tag_ids),
            category_count=len(submission.category_ids),
            author_count=len(submission.author_names),
            completeness=self.completeness(submission),
            days_since_creation=max(0, (_utc_now() - submission.created_at).days),
        )

    def versions(self, submission_id: str, actor: Actor) -> list[SubmissionVersion]:
        """Snapshots recorded on creation, on significant edits and on submit, oldest first."""
        _require_user(actor)
        with _storage("list submission versions"):
            submission = self._require(submission_id)
            _require_viewer(submission, actor)
            return self._submissions.find_versions(submission_id)

    def completeness(self, submission: Submission) -> Completeness:
        verbete = _verbete_of(submission)
        checked: list[tuple[str, object]] = [
            ("title", submission.title),
            ("content", submission.content),
            *((name, submission.metadata.get(name)) for name in verbete.required_fields),
        ]
        missing = tuple(name for name, value in checked if not _has_value(value))
        completed = len(checked) - len(missing)
        return Completeness(
            is_complete=not missing,
            missing_fields=missing,
            percentage=round(completed / len(checked) * 100),
        )

    def can_edit(self, submission: Submission, actor: Actor | None) -> bool:
        return (
            actor is not None
            and actor.user_id == submission.owner_id
            and submission.status == SubmissionStatus.DRAFT.value
        )

    def can_submit(self, submission: Submission, actor: Actor | None) -> bool:
        return self.can_edit(submission, actor) and self.completeness(submission).is_complete

    def _require(self, submission_id: str) -> Submission:
        submission = self._submissions.find_one(submission_id)
        if submission is None:
            raise NotFoundError(f"Submission not found: {submission_id}")
        return submission

    def _materialize(self, submission: Submission) -> Article:
        existing = self._articles.find_by_submission(submission.submission_id)
        if existing is not None:
            return existing
        if submission.title is None:
            raise ValidationError("Submission is incomplete", errors=["title"])
        article = self._articles.create(
            submission_id=submission.submission_id,
            verbete_type=submission.verbete_type,
            title=submission.title,
            content=submission.content,
            content_html=self._normalize(submission.content),
            metadata=dict(submission.metadata),
            tag_ids=submission.tag_ids,
            category_ids=submission.category_ids,
            author_names=submission.author_names,
        )
        LOGGER.info(
            "article published article_id=%s submission_id=%s",
            article.article_id,
            submission.submission_id,
        )
        return article

    def _parse_fields(self, verbete: VerbeteType, fields: object) -> dict[str, Any]:
        if fields is None:
            return {}
        if not isinstance(fields, Mapping):
            raise ValidationError("fields must be an object", errors=["fields must be an object"])

        errors: list[str] = []
        changes: dict[str, Any] = {}
        for raw_key, value in fields.items():
            key = str(raw_key)
            if key in PROTECTED_FIELDS:
                errors.append(f"Field '{key}' cannot be set")
            elif key == "title":
                changes[key] = _parse_text(key, value, MAX_TITLE_LENGTH, errors)
            elif key == "content":
                changes[key] = _parse_body(value, errors)
            elif key in {"tags", "categories"}:
                changes[key] = _parse_id_list(key, value, errors)
            elif key == "authors":
                changes[key] = _parse_author_names(value, errors)
            elif key in verbete.field_names:
                changes[key] = _blank_to_none(value)
            else:
                errors.append(f"Unknown field '{key}' for verbete type '{verbete.key}'")

        for kind in ("tags", "categories"):
            ids = changes.get(kind)
            if ids:
                missing = self._taxonomy.missing_ids(kind, ids)
                if missing:
                    errors.append(f"Unknown {kind} ids: {', '.join(str(item) for item in missing)}")
        _raise_for_errors(errors)
        return changes


@contextmanager
def _storage(operation: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        LOGGER.exception("storage failure operation=%s", operation)
        raise InternalError.wrap(operation, exc) from exc


def _require_user(actor: Actor) -> None:
    if not actor.user_id.strip():
        raise UnauthorizedError()


def _require_viewer(submission: Submission, actor: Actor) -> None:
    if actor.user_id != submission.owner_id and not actor.is_reviewer:
        raise ForbiddenError("Only the owner or a reviewer can view this submission")


def _verbete_of(submission: Submission) -> VerbeteType:
    verbete = get_verbete_type(submission.verbete_type)
    if verbete is None:
        raise InternalError(f"Stored submission has unknown verbete type: {submission.verbete_type}")
    return verbete


def _merge_metadata(current: Mapping[str, Any], changes: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(current)
    for key, value in changes.items():
        if key in CORE_FIELDS:
            continue
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def _changed_fields(before: Submission, after: Submission) -> list[str]:
    values = {
        "title": (before.title, after.title),
        "content": (before.content, after.content),
        "categories": (before.category_ids, after.category_ids),
    }
    return [name for name in SIGNIFICANT_FIELDS if values[name][0] != values[name][1]]


def _raise_for_errors(errors: list[str]) -> None:
    if errors:
        raise ValidationError("Invalid submission fields", errors=errors)


def _has_value(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _blank_to_none(value: object) -> object:
    if isinstance(value, str) and not value.strip():
        return None
    if isinstance(value, str):
        return value.strip()
    return value


def _parse_text(key: str, value: object, max_length: int, errors: list[str]) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        errors.append(f"Field '{key}' must be text")
        return None
    stripped = value.strip()
    if len(stripped) > max_length:
        errors.append(f"Field '{key}' must be at most {max_length} characters")
    return stripped or None


def _parse_body(value: object, errors: list[str]) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        errors.append("Field 'content' must be text")
        return None
    if len(value) > MAX_CONTENT_LENGTH:
        errors.append(f"Field 'content' must be at most {MAX_CONTENT_LENGTH} characters")
    return value if value.strip() else None


def _parse_id_list(key: str, value: object, errors: list[str]) -> list[int]:
    if value is None:
        return []
    if not isinstance(value, list | tuple):
        errors.append(f"Field '{key}' must be a list of ids")
        return []
    ids: list[int] = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int):
            errors.append(f"Field '{key}' must contain only integer ids")
            return []
        if not MIN_INTEGER <= item <= MAX_INTEGER:
            errors.append(f"Field '{key}' ids must fit in a signed 64-bit integer")
            return []
        if item not in ids:
            ids.append(item)
    return ids


def _parse_author_names(value: object, errors: list[str]) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list | tuple):
        errors.append("Field 'authors' must be a list of names")
        return []
    names: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            errors.append("Field 'authors' must contain only non-empty names")
            return []
        name = " ".join(item.split())
        if len(name) > MAX_TEXT_FIELD_LENGTH:
            errors.append(f"Author names must be at most {MAX_TEXT_FIELD_LENGTH} characters")
            return []
        if name not in names:
            names.append(name)
    return names


def _clean_note(note: str | None) -> str | None:
    if note is None:
        return None
    stripped = note.strip()
    return stripped or None


def _slugify(value: str) -> str:
    ascii_text = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    normalized = re.sub(r"[^a-zA-Z0-9]+", "-", ascii_text.lower()).strip("-")
    if normalized:
        return normalized[:60].rstrip("-")
    return "untitled"


def _excerpt(text: str) -> str:
    if len(text) <= PREVIEW_EXCERPT_LENGTH:
        return text
    return text[:PREVIEW_EXCERPT_LENGTH].rstrip() + "..."


def _utc_now() -> datetime:
    return datetime.now(UTC)
