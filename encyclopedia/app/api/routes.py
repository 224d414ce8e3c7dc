from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from encyclopedia.app.api import responses
from encyclopedia.app.dependencies import (
    get_article_service,
    get_content_fixer,
    get_submission_rate_limiter,
    get_submission_service,
)
from encyclopedia.app.errors import ForbiddenError, UnauthorizedError
from encyclopedia.app.models.article_contracts import ArticleSummary, TaxonomyTermSummary
from encyclopedia.app.models.submission_contracts import (
    CompletenessSummary,
    CreateSubmissionRequest,
    ReviewRequest,
    SubmissionDetail,
    SubmissionPreviewSummary,
    SubmissionStatsSummary,
    SubmissionSummary,
    SubmissionVersionSummary,
    UpdateSubmissionRequest,
)
from encyclopedia.app.models.verbete_types import VERBETE_TYPES
from encyclopedia.app.repositories.submission_repository import Submission
from encyclopedia.app.services.article_service import PERSON_VERBETE_TYPE, ArticleService
from encyclopedia.app.services.content_html_fixer import ContentHtmlFixer
from encyclopedia.app.services.query_filters import build_filter, build_page_request
from encyclopedia.app.services.rate_limiter import SlidingWindowRateLimiter
from encyclopedia.app.services.submission_service import Actor, SubmissionService

REVIEWER_ROLE = "reviewer"

router = APIRouter()


def get_optional_actor(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
    x_user_role: Annotated[str | None, Header(alias="X-User-Role")] = None,
) -> Actor | None:
    if x_user_id is None or not x_user_id.strip():
        return None
    is_reviewer = x_user_role is not None and x_user_role.strip().lower() == REVIEWER_ROLE
    return Actor(user_id=x_user_id.strip(), is_reviewer=is_reviewer)


def require_actor(actor: Annotated[Actor | None, Depends(get_optional_actor)]) -> Actor:
    if actor is None:
        raise UnauthorizedError("X-User-Id header is required")
    return actor


def _require_reviewer(actor: Actor) -> None:
    if not actor.is_reviewer:
        raise ForbiddenError("Reviewer role required")


def _query_params(request: Request) -> dict[str, list[str]]:
    return {key: request.query_params.getlist(key) for key in request.query_params.keys()}


def _detail(service: SubmissionService, submission: Submission, actor: Actor | None) -> SubmissionDetail:
    return SubmissionDetail(
        submission=SubmissionSummary.from_submission(submission),
        completeness=CompletenessSummary.from_report(service.completeness(submission)),
        can_edit=service.can_edit(submission, actor),
        can_submit=service.can_submit(submission, actor),
    )


@router.get("/person-articles", tags=["articles"], operation_id="list_person_articles")
def list_person_articles(
    request: Request,
    service: Annotated[ArticleService, Depends(get_article_service)],
) -> JSONResponse:
    articles = service.list_person_articles(build_filter(_query_params(request)))
    return responses.success(
        [ArticleSummary.from_article(article) for article in articles],
        "Person articles retrieved",
    )


@router.get("/person-articles/{article_id}", tags=["articles"], operation_id="get_person_article")
def get_person_article(
    article_id: str,
    service: Annotated[ArticleService, Depends(get_article_service)],
) -> JSONResponse:
    article = service.find_one(article_id, verbete_type=PERSON_VERBETE_TYPE)
    return responses.success(ArticleSummary.from_article(article), "Person article retrieved")


@router.get("/articles", tags=["articles"], operation_id="list_articles")
def list_articles(
    request: Request,
    service: Annotated[ArticleService, Depends(get_article_service)],
) -> JSONResponse:
    params = _query_params(request)
    page = build_page_request(params)
    articles, total = service.list_articles(build_filter(params), page=page)
    return responses.paginated(
        [ArticleSummary.from_article(article) for article in articles],
        page=page.page,
        limit=page.limit,
        total=total,
        message="Articles retrieved",
    )


@router.get("/articles/{article_id}", tags=["articles"], operation_id="get_article")
def get_article(
    article_id: str,
    service: Annotated[ArticleService, Depends(get_article_service)],
) -> JSONResponse:
    return responses.success(
        ArticleSummary.from_article(service.find_one(article_id)),
        "Article retrieved",
    )


@router.get("/tags", tags=["taxonomy"], operation_id="list_tags")
def list_tags(service: Annotated[ArticleService, Depends(get_article_service)]) -> JSONResponse:
    terms = service.list_terms("tags")
    return responses.success([TaxonomyTermSummary.from_term(term) for term in terms], "Tags retrieved")


@router.get("/categories", tags=["taxonomy"], operation_id="list_categories")
def list_categories(service: Annotated[ArticleService, Depends(get_article_service)]) -> JSONResponse:
    terms = service.list_terms("categories")
    return responses.success(
        [TaxonomyTermSummary.from_term(term) for term in terms],
        "Categories retrieved",
    )


@router.get("/submissions/verbete-types", tags=["submissions"], operation_id="list_verbete_types")
def list_verbete_types() -> JSONResponse:
    return responses.success(
        [verbete.to_dict() for verbete in VERBETE_TYPES.values()],
        "Verbete types retrieved",
    )


@router.get("/submissions", tags=["submissions"], operation_id="list_submissions")
def list_submissions(
    request: Request,
    service: Annotated[SubmissionService, Depends(get_submission_service)],
) -> JSONResponse:
    params = _query_params(request)
    result = service.list_submissions(build_filter(params), build_page_request(params))
    return responses.paginated(
        [SubmissionSummary.from_submission(item) for item in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
        message="Submissions retrieved",
    )


@router.post("/submissions", tags=["submissions"], operation_id="create_submission")
def create_submission(
    payload: CreateSubmissionRequest,
    actor: Annotated[Actor, Depends(require_actor)],
    service: Annotated[SubmissionService, Depends(get_submission_service)],
    rate_limiter: Annotated[SlidingWindowRateLimiter, Depends(get_submission_rate_limiter)],
) -> JSONResponse:
    rate_limiter.enforce(actor.user_id)
    submission = service.create_draft(actor, payload.verbete_type, payload.fields)
    return responses.created(_detail(service, submission, actor), "Draft created")


@router.get("/submissions/user/{user_id}", tags=["submissions"], operation_id="list_user_submissions")
def list_user_submissions(
    user_id: str,
    request: Request,
    actor: Annotated[Actor | None, Depends(get_optional_actor)],
    service: Annotated[SubmissionService, Depends(get_submission_service)],
) -> JSONResponse:
    entry_filter = build_filter(_query_params(request))
    items = [
        _detail(service, submission, actor)
        for submission in service.find_by_user(user_id, entry_filter)
    ]
    return responses.success(items, "Submissions retrieved")


@router.get("/submissions/{submission_id}", tags=["submissions"], operation_id="get_submission")
def get_submission(
    submission_id: str,
    actor: Annotated[Actor | None, Depends(get_optional_actor)],
    service: Annotated[SubmissionService, Depends(get_submission_service)],
) -> JSONResponse:
    submission = service.find_one(submission_id)
    return responses.success(_detail(service, submission, actor), "Submission retrieved")


@router.get(
    "/submissions/{submission_id}/preview",
    tags=["submissions"],
    operation_id="preview_submission",
)
def preview_submission(
    submission_id: str,
    actor: Annotated[Actor, Depends(require_actor)],
    service: Annotated[SubmissionService, Depends(get_submission_service)],
) -> JSONResponse:
    preview = service.preview(submission_id, actor)
    return responses.success(SubmissionPreviewSummary.from_preview(preview), "Preview generated")


@router.get(
    "/submissions/{submission_id}/stats",
    tags=["submissions"],
    operation_id="get_submission_stats",
)
def get_submission_stats(
    submission_id: str,
    actor: Annotated[Actor, Depends(require_actor)],
    service: Annotated[SubmissionService, Depends(get_submission_service)],
) -> JSONResponse:
    stats = service.stats(submission_id, actor)
    return responses.success(SubmissionStatsSummary.from_stats(stats), "Submission stats retrieved")


@router.get(
    "/submissions/{submission_id}/versions",
    tags=["submissions"],
    operation_id="list_submission_versions",
)
def list_submission_versions(
    submission_id: str,
    actor: Annotated[Actor, Depends(require_actor)],
    service: Annotated[SubmissionService, Depends(get_submission_service)],
) -> JSONResponse:
    versions = service.versions(submission_id, actor)
    return responses.success(
        [SubmissionVersionSummary.from_version(version) for version in versions],
        "Submission versions retrieved",
    )


@router.put("/submissions/{submission_id}", tags=["submissions"], operation_id="update_submission")
def update_submission(
    submission_id: str,
    payload: UpdateSubmissionRequest,
    actor: Annotated[Actor, Depends(require_actor)],
    service: Annotated[SubmissionService, Depends(get_submission_service)],
) -> JSONResponse:
    submission = service.update(submission_id, actor, payload.fields)
    return responses.updated(_detail(service, submission, actor), "Submission updated")


@router.delete("/submissions/{submission_id}", tags=["submissions"], operation_id="delete_submission")
def delete_submission(
    submission_id: str,
    actor: Annotated[Actor, Depends(require_actor)],
    service: Annotated[SubmissionService, Depends(get_submission_service)],
) -> JSONResponse:
    service.delete(submission_id, actor)
    return responses.deleted("Submission deleted")


@router.post(
    "/submissions/{submission_id}/submit",
    tags=["submissions"],
    operation_id="submit_submission",
)
def submit_submission(
    submission_id: str,
    actor: Annotated[Actor, Depends(require_actor)],
    service: Annotated[SubmissionService, Depends(get_submission_service)],
) -> JSONResponse:
    submission = service.submit(submission_id, actor)
    return responses.success(_detail(service, submission, actor), "Submission sent for review")


@router.post(
    "/submissions/{submission_id}/review",
    tags=["submissions"],
    operation_id="review_submission",
)
def review_submission(
    submission_id: str,
    payload: ReviewRequest,
    actor: Annotated[Actor, Depends(require_actor)],
    service: Annotated[SubmissionService, Depends(get_submission_service)],
) -> JSONResponse:
    context_tokens = bind_contextvars(review_action=payload.action.value, submission_id=submission_id)
    try:
        submission = service.review(submission_id, actor, payload.action, payload.note)
    finally:
        reset_contextvars(**context_tokens)
    return responses.success(_detail(service, submission, actor), "Review recorded")


@router.post("/admin/content-html/fix", tags=["admin"], operation_id="fix_content_html")
def fix_content_html(
    actor: Annotated[Actor, Depends(require_actor)],
    fixer: Annotated[ContentHtmlFixer, Depends(get_content_fixer)],
    dry_run: bool = False,
) -> JSONResponse:
    _require_reviewer(actor)
    report = fixer.fix_all(dry_run=dry_run)
    data: dict[str, Any] = report.to_dict()
    return responses.success(data, "content_html repair finished")


@router.get(
    "/admin/content-html/{record_id}/preview",
    tags=["admin"],
    operation_id="preview_content_html_fix",
)
def preview_content_html_fix(
    record_id: str,
    actor: Annotated[Actor, Depends(require_actor)],
    fixer: Annotated[ContentHtmlFixer, Depends(get_content_fixer)],
) -> JSONResponse:
    _require_reviewer(actor)
    return responses.success(fixer.preview(record_id).to_dict(), "content_html preview generated")


@router.get(
    "/admin/content-html/{record_id}/verify",
    tags=["admin"],
    operation_id="verify_content_html",
)
def verify_content_html(
    record_id: str,
    actor: Annotated[Actor, Depends(require_actor)],
    fixer: Annotated[ContentHtmlFixer, Depends(get_content_fixer)],
) -> JSONResponse:
    _require_reviewer(actor)
    return responses.success(fixer.verify(record_id).to_dict(), "content_html verified")
