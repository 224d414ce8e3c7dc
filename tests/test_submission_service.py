from __future__ import annotations

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest

from encyclopedia.app.errors import (
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from encyclopedia.app.repositories.article_repository import ArticleRepository
from encyclopedia.app.repositories.database import Database
from encyclopedia.app.repositories.submission_repository import Submission, SubmissionRepository
from encyclopedia.app.repositories.taxonomy_repository import TaxonomyRepository
from encyclopedia.app.services.query_filters import ArticleFilter
from encyclopedia.app.services.submission_service import Actor, SubmissionService
from tests.conftest import OTHER_USER, OWNER, REVIEWER, SeededContent


def _complete_person_fields(seeded: SeededContent) -> dict[str, Any]:
    return {
        "title": "Gilberto Freyre",
        "content": "Sociólogo pernambucano.\n\nAutor de Casa-Grande & Senzala.",
        "birth_date": "1900-03-15",
        "death_date": "1987-07-18",
        "tags": [seeded.tag_ids["Brasil"]],
        "categories": [seeded.category_ids["História"]],
        "authors": ["Ana Souza", " Ana   Souza "],
    }


def _submitted(service: SubmissionService, seeded: SeededContent) -> Submission:
    draft = service.create_draft(OWNER, "person", _complete_person_fields(seeded))
    return service.submit(draft.submission_id, OWNER)


def _under_review(service: SubmissionService, seeded: SeededContent) -> Submission:
    submitted = _submitted(service, seeded)
    return service.review(submitted.submission_id, REVIEWER, "start_review")


NON_DRAFT_STATUSES = ("submitted", "under_review", "published", "rejected")


def _in_status(service: SubmissionService, seeded: SeededContent, status: str) -> Submission:
    if status == "submitted":
        return _submitted(service, seeded)
    under_review = _under_review(service, seeded)
    if status == "under_review":
        return under_review
    action = {"published": "publish", "rejected": "reject"}[status]
    return service.review(under_review.submission_id, REVIEWER, action)


def test_create_draft_persists_fields_and_normalized_html(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    draft = submission_service.create_draft(OWNER, "Person", _complete_person_fields(seeded))

    assert draft.status == "draft"
    assert draft.owner_id == OWNER.user_id
    assert draft.verbete_type == "person"
    assert draft.metadata == {"birth_date": "1900-03-15", "death_date": "1987-07-18"}
    assert draft.tag_ids == (seeded.tag_ids["Brasil"],)
    assert draft.category_ids == (seeded.category_ids["História"],)
    assert draft.author_names == ("Ana Souza",)
    assert draft.content_html == (
        "<p>Sociólogo pernambucano.</p>\n<p>Autor de Casa-Grande &amp; Senzala.</p>"
    )
    assert submission_service.find_one(draft.submission_id) == draft


def test_create_draft_allows_partial_fields(submission_service: SubmissionService) -> None:
    draft = submission_service.create_draft(OWNER, "concept", {"title": "Antropofagia"})

    assert draft.content is None
    assert draft.content_html == ""
    report = submission_service.completeness(draft)
    assert report.is_complete is False
    assert report.missing_fields == ("content",)
    assert report.percentage == 50


def test_create_draft_rejects_unknown_verbete_type(submission_service: SubmissionService) -> None:
    with pytest.raises(ValidationError, match="Unknown verbete type"):
        submission_service.create_draft(OWNER, "planet", {"title": "Marte"})


def test_create_draft_rejects_unknown_and_protected_fields(
    submission_service: SubmissionService,
) -> None:
    with pytest.raises(ValidationError) as exc_info:
        submission_service.create_draft(
            OWNER,
            "person",
            {"title": "X", "status": "published", "favourite_colour": "blue"},
        )

    assert "Field 'status' cannot be set" in exc_info.value.errors
    assert "Unknown field 'favourite_colour' for verbete type 'person'" in exc_info.value.errors


def test_create_draft_rejects_malformed_dates(submission_service: SubmissionService) -> None:
    with pytest.raises(ValidationError) as exc_info:
        submission_service.create_draft(OWNER, "person", {"birth_date": "1900-13-01"})

    assert exc_info.value.errors == [
        "Field 'birth_date' must be a date (YYYY, YYYY-MM or YYYY-MM-DD)"
    ]


def test_create_draft_rejects_out_of_order_dates(submission_service: SubmissionService) -> None:
    with pytest.raises(ValidationError) as exc_info:
        submission_service.create_draft(
            OWNER,
            "person",
            {"birth_date": "1950", "death_date": "1949-12-31"},
        )

    assert exc_info.value.errors == ["Field 'death_date' must not be earlier than 'birth_date'"]


def test_partial_dates_compare_at_shared_precision(submission_service: SubmissionService) -> None:
    draft = submission_service.create_draft(
        OWNER,
        "event",
        {"start_date": "1922-02", "end_date": "1922"},
    )

    assert draft.metadata == {"start_date": "1922-02", "end_date": "1922"}


def test_create_draft_rejects_unknown_taxonomy_ids(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    with pytest.raises(ValidationError) as exc_info:
        submission_service.create_draft(OWNER, "person", {"tags": [seeded.tag_ids["Brasil"], 999]})

    assert exc_info.value.errors == ["Unknown tags ids: 999"]


@pytest.mark.parametrize("huge_id", [2**63, -(2**63) - 1, 10**20])
def test_taxonomy_ids_outside_64_bits_are_validation_errors(
    submission_service: SubmissionService,
    huge_id: int,
) -> None:
    with pytest.raises(ValidationError) as exc_info:
        submission_service.create_draft(OWNER, "person", {"tags": [1, huge_id]})

    assert exc_info.value.errors == ["Field 'tags' ids must fit in a signed 64-bit integer"]


def test_blank_user_is_unauthorized(submission_service: SubmissionService) -> None:
    with pytest.raises(UnauthorizedError):
        submission_service.create_draft(Actor(user_id="  "), "person", {})


def test_update_merges_fields_and_recomputes_html(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    draft = submission_service.create_draft(OWNER, "person", _complete_person_fields(seeded))

    updated = submission_service.update(
        draft.submission_id,
        OWNER,
        {"content": "Novo <b>texto", "death_date": "", "nationality": "brasileira"},
    )

    assert updated.title == "Gilberto Freyre"
    assert updated.content == "Novo <b>texto"
    assert updated.content_html == "<p>Novo <b>texto</b></p>"
    assert updated.metadata == {"birth_date": "1900-03-15", "nationality": "brasileira"}
    assert updated.tag_ids == draft.tag_ids
    assert updated.updated_at >= draft.updated_at


def test_update_cannot_clear_required_fields(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    draft = submission_service.create_draft(OWNER, "person", _complete_person_fields(seeded))

    with pytest.raises(ValidationError) as exc_info:
        submission_service.update(draft.submission_id, OWNER, {"title": " ", "birth_date": ""})

    assert exc_info.value.errors == [
        "Field 'birth_date' is required",
        "Field 'title' is required",
    ]


def test_update_by_non_owner_is_forbidden(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    draft = submission_service.create_draft(OWNER, "person", _complete_person_fields(seeded))

    with pytest.raises(ForbiddenError):
        submission_service.update(draft.submission_id, OTHER_USER, {"title": "Outro"})
    with pytest.raises(ForbiddenError):
        submission_service.update(draft.submission_id, REVIEWER, {"title": "Outro"})


@pytest.mark.parametrize("status", NON_DRAFT_STATUSES)
def test_update_by_non_owner_is_forbidden_in_any_status(
    submission_service: SubmissionService,
    seeded: SeededContent,
    status: str,
) -> None:
    existing = _in_status(submission_service, seeded, status)

    for actor in (OTHER_USER, REVIEWER):
        with pytest.raises(ForbiddenError) as exc_info:
            submission_service.update(existing.submission_id, actor, {"title": "Outro"})
        assert exc_info.value.message == "Only the owner can edit this submission"
    assert submission_service.find_one(existing.submission_id).title == "Gilberto Freyre"


def test_update_after_submit_is_forbidden(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    submitted = _submitted(submission_service, seeded)

    with pytest.raises(ForbiddenError) as exc_info:
        submission_service.update(submitted.submission_id, OWNER, {"title": "Outro"})

    assert exc_info.value.details == {"current_status": "submitted"}


def test_update_missing_submission_is_not_found(submission_service: SubmissionService) -> None:
    with pytest.raises(NotFoundError):
        submission_service.update("sub_missing", OWNER, {"title": "x"})


def test_submit_moves_complete_draft_to_submitted(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    submitted = _submitted(submission_service, seeded)

    assert submitted.status == "submitted"
    assert submitted.submitted_at is not None


def test_submit_incomplete_draft_reports_missing_fields(
    submission_service: SubmissionService,
) -> None:
    draft = submission_service.create_draft(OWNER, "person", {"title": "Sem data"})

    with pytest.raises(ValidationError) as exc_info:
        submission_service.submit(draft.submission_id, OWNER)

    assert exc_info.value.message == "Submission is incomplete"
    assert exc_info.value.errors == ["content", "birth_date"]
    assert submission_service.find_one(draft.submission_id).status == "draft"


@pytest.mark.parametrize("status", NON_DRAFT_STATUSES)
def test_submit_conflicts_unless_draft(
    submission_service: SubmissionService,
    seeded: SeededContent,
    status: str,
) -> None:
    existing = _in_status(submission_service, seeded, status)

    with pytest.raises(ConflictError) as exc_info:
        submission_service.submit(existing.submission_id, OWNER)

    assert exc_info.value.current_status == status
    assert exc_info.value.details["allowed_statuses"] == ["draft"]
    assert submission_service.find_one(existing.submission_id).status == status


def test_submit_by_non_owner_is_forbidden(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    draft = submission_service.create_draft(OWNER, "person", _complete_person_fields(seeded))

    with pytest.raises(ForbiddenError):
        submission_service.submit(draft.submission_id, OTHER_USER)


def test_review_flow_publishes_article(
    submission_service: SubmissionService,
    seeded: SeededContent,
    database: Database,
) -> None:
    under_review = _under_review(submission_service, seeded)
    assert under_review.status == "under_review"

    published = submission_service.review(
        under_review.submission_id,
        REVIEWER,
        "publish",
        note="  Aprovado  ",
    )

    assert published.status == "published"
    assert published.reviewer_id == REVIEWER.user_id
    assert published.review_note == "Aprovado"
    assert published.article_id is not None

    article = ArticleRepository(database).find_one(published.article_id)
    assert article is not None
    assert article.submission_id == published.submission_id
    assert article.title == "Gilberto Freyre"
    assert article.content_html == published.content_html
    assert [term.name for term in article.tags or ()] == ["Brasil"]
    assert [term.name for term in article.authors or ()] == ["Ana Souza"]


def test_review_requires_reviewer_role(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    submitted = _submitted(submission_service, seeded)

    with pytest.raises(ForbiddenError):
        submission_service.review(submitted.submission_id, OWNER, "start_review")


def test_review_rejects_unknown_action(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    submitted = _submitted(submission_service, seeded)

    with pytest.raises(ValidationError, match="Unknown review action"):
        submission_service.review(submitted.submission_id, REVIEWER, "archive")


def test_review_cannot_publish_without_starting_review(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    submitted = _submitted(submission_service, seeded)

    with pytest.raises(ConflictError) as exc_info:
        submission_service.review(submitted.submission_id, REVIEWER, "publish")

    assert exc_info.value.details == {
        "current_status": "submitted",
        "allowed_statuses": ["under_review"],
    }


def test_request_changes_returns_submission_to_owner(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    under_review = _under_review(submission_service, seeded)

    returned = submission_service.review(
        under_review.submission_id,
        REVIEWER,
        "request_changes",
        note="Cite fontes",
    )

    assert returned.status == "draft"
    assert returned.submitted_at is None
    assert returned.review_note == "Cite fontes"
    edited = submission_service.update(returned.submission_id, OWNER, {"title": "Gilberto de Mello Freyre"})
    assert edited.title == "Gilberto de Mello Freyre"


def test_rejected_submission_is_terminal(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    under_review = _under_review(submission_service, seeded)
    rejected = submission_service.review(under_review.submission_id, REVIEWER, "reject")

    assert rejected.status == "rejected"
    assert rejected.article_id is None
    with pytest.raises(ConflictError) as exc_info:
        submission_service.review(rejected.submission_id, REVIEWER, "start_review")
    assert exc_info.value.message == "Submission is rejected and can no longer change status"
    assert exc_info.value.details == {"current_status": "rejected", "allowed_statuses": ["submitted"]}


def test_delete_rules(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    draft = submission_service.create_draft(OWNER, "concept", {"title": "Modernismo"})
    with pytest.raises(ForbiddenError):
        submission_service.delete(draft.submission_id, OTHER_USER)

    submission_service.delete(draft.submission_id, OWNER)
    with pytest.raises(NotFoundError):
        submission_service.find_one(draft.submission_id)

    other_draft = submission_service.create_draft(OWNER, "concept", {"title": "Tropicalismo"})
    submission_service.delete(other_draft.submission_id, REVIEWER)

    under_review = _under_review(submission_service, seeded)
    published = submission_service.review(under_review.submission_id, REVIEWER, "publish")
    with pytest.raises(ConflictError):
        submission_service.delete(published.submission_id, REVIEWER)


def test_find_by_user_lists_most_recently_updated_first(
    submission_service: SubmissionService,
) -> None:
    first = submission_service.create_draft(OWNER, "concept", {"title": "Primeiro"})
    second = submission_service.create_draft(OWNER, "concept", {"title": "Segundo"})
    submission_service.create_draft(OTHER_USER, "concept", {"title": "De outra pessoa"})
    submission_service.update(first.submission_id, OWNER, {"content": "Editado"})

    ids = [submission.submission_id for submission in submission_service.find_by_user(OWNER.user_id)]

    assert ids == [first.submission_id, second.submission_id]
    assert list(submission_service.find_by_user("nobody")) == []


def test_can_edit_and_can_submit(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    incomplete = submission_service.create_draft(OWNER, "person", {"title": "Rascunho"})
    complete = submission_service.create_draft(OWNER, "person", _complete_person_fields(seeded))

    assert submission_service.can_edit(incomplete, OWNER)
    assert not submission_service.can_submit(incomplete, OWNER)
    assert submission_service.can_submit(complete, OWNER)
    assert not submission_service.can_edit(complete, OTHER_USER)
    assert not submission_service.can_edit(complete, None)


def test_concurrent_updates_leave_one_consistent_winner(
    submission_service: SubmissionService,
) -> None:
    draft = submission_service.create_draft(OWNER, "concept", {"title": "Inicial"})
    titles = [f"Título {index}" for index in range(8)]

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(
            pool.map(
                lambda title: submission_service.update(
                    draft.submission_id,
                    OWNER,
                    {"title": title, "content": title},
                ),
                titles,
            )
        )

    assert len(results) == len(titles)
    final = submission_service.find_one(draft.submission_id)
    assert final.title in titles
    assert final.content == final.title
    assert final.content_html == f"<p>{final.title}</p>"



def test_versions_track_creation_significant_edits_and_submit(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    draft = submission_service.create_draft(OWNER, "person", _complete_person_fields(seeded))
    submission_service.update(draft.submission_id, OWNER, {"death_date": "1987-07-19"})
    submission_service.update(draft.submission_id, OWNER, {"tags": []})
    submission_service.update(draft.submission_id, OWNER, {"title": "Gilberto de Mello Freyre"})
    submission_service.update(draft.submission_id, OWNER, {"categories": []})
    submission_service.submit(draft.submission_id, OWNER)

    versions = submission_service.versions(draft.submission_id, REVIEWER)

    assert [version.version_number for version in versions] == [1, 2, 3, 4]
    assert [version.change_summary for version in versions] == [
        "Initial version",
        "Updated by author",
        "Updated by author",
        "Submitted for review",
    ]
    assert {version.created_by for version in versions} == {OWNER.user_id}
    assert versions[0].title == "Gilberto Freyre"
    assert versions[0].metadata == {"birth_date": "1900-03-15", "death_date": "1987-07-18"}
    assert versions[1].title == "Gilberto de Mello Freyre"
    assert versions[-1].metadata["death_date"] == "1987-07-19"
    with pytest.raises(ForbiddenError):
        submission_service.versions(draft.submission_id, OTHER_USER)


def test_concurrent_significant_updates_each_record_a_version(
    submission_service: SubmissionService,
) -> None:
    draft = submission_service.create_draft(OWNER, "concept", {"title": "Inicial"})

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(
            pool.map(
                lambda index: submission_service.update(
                    draft.submission_id, OWNER, {"title": f"Título {index}"}
                ),
                range(6),
            )
        )

    versions = submission_service.versions(draft.submission_id, OWNER)
    assert [version.version_number for version in versions] == list(range(1, 8))


def test_preview_renders_entry_without_saving(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    draft = submission_service.create_draft(OWNER, "person", _complete_person_fields(seeded))

    preview = submission_service.preview(draft.submission_id, REVIEWER)

    assert preview.slug == "gilberto-freyre"
    assert preview.content_html == draft.content_html
    assert preview.excerpt == "Sociólogo pernambucano. Autor de Casa-Grande & Senzala."
    assert preview.metadata == draft.metadata
    assert preview.author_names == ("Ana Souza",)
    assert submission_service.find_one(draft.submission_id) == draft
    with pytest.raises(ForbiddenError):
        submission_service.preview(draft.submission_id, OTHER_USER)


@pytest.mark.parametrize(
    ("title", "slug"),
    [
        (None, "untitled"),
        ("!!!", "untitled"),
        ("São Paulo: 1922", "sao-paulo-1922"),
        ("a" * 59 + " bc", "a" * 59),
    ],
)
def test_preview_slug(submission_service: SubmissionService, title: str | None, slug: str) -> None:
    draft = submission_service.create_draft(OWNER, "concept", {"title": title})

    assert submission_service.preview(draft.submission_id, OWNER).slug == slug


def test_preview_excerpt_is_truncated(submission_service: SubmissionService) -> None:
    draft = submission_service.create_draft(OWNER, "concept", {"content": "palavra " * 100})

    excerpt = submission_service.preview(draft.submission_id, OWNER).excerpt

    assert excerpt.endswith("...")
    assert len(excerpt) <= 283


def test_stats_summarize_submission(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    incomplete = submission_service.create_draft(OWNER, "person", {"title": "Rascunho"})
    complete = submission_service.create_draft(OWNER, "person", _complete_person_fields(seeded))
    submission_service.update(complete.submission_id, OWNER, {"content": "Outro texto"})

    stats = submission_service.stats(complete.submission_id, OWNER)
    partial = submission_service.stats(incomplete.submission_id, REVIEWER)

    assert stats.status == "draft"
    assert stats.version_count == 2
    assert stats.title_length == len("Gilberto Freyre")
    assert stats.content_length == len("Outro texto")
    assert (stats.tag_count, stats.category_count, stats.author_count) == (1, 1, 1)
    assert stats.completeness.is_complete
    assert stats.days_since_creation == 0
    assert partial.version_count == 1
    assert not partial.completeness.is_complete
    assert "content" in partial.completeness.missing_fields
    with pytest.raises(ForbiddenError):
        submission_service.stats(complete.submission_id, OTHER_USER)


def test_find_by_user_applies_entry_filter(
    submission_service: SubmissionService,
    seeded: SeededContent,
) -> None:
    person = submission_service.create_draft(OWNER, "person", _complete_person_fields(seeded))
    concept = submission_service.create_draft(OWNER, "concept", {"title": "Antropofagia"})
    submission_service.submit(person.submission_id, OWNER)

    def ids(entry_filter: ArticleFilter) -> list[str]:
        return [item.submission_id for item in submission_service.find_by_user(OWNER.user_id, entry_filter)]

    assert ids(ArticleFilter(title_contains="GILBERTO")) == [person.submission_id]
    assert ids(ArticleFilter(verbete_type="concept")) == [concept.submission_id]
    assert ids(ArticleFilter(status="submitted")) == [person.submission_id]
    assert ids(ArticleFilter(category_id=seeded.category_ids["História"])) == [person.submission_id]
    assert ids(ArticleFilter(tag_ids=frozenset({999}))) == []
    assert len(ids(ArticleFilter())) == 2


class _FailingSubmissionStore(SubmissionRepository):
    def find_one(self, submission_id: str) -> Submission | None:
        raise sqlite3.OperationalError("database is locked")


def test_storage_failures_become_internal_errors(database: Database) -> None:
    service = SubmissionService(
        submission_repository=_FailingSubmissionStore(database),
        article_repository=ArticleRepository(database),
        taxonomy_repository=TaxonomyRepository(database),
    )

    with pytest.raises(InternalError) as exc_info:
        service.find_one("sub_any")

    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "find submission: database is locked"
