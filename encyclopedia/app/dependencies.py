from __future__ import annotations

from functools import lru_cache

from encyclopedia.app.config import AppSettings, load_settings
from encyclopedia.app.repositories.article_repository import ArticleRepository
from encyclopedia.app.repositories.database import Database
from encyclopedia.app.repositories.submission_repository import SubmissionRepository
from encyclopedia.app.repositories.taxonomy_repository import TaxonomyRepository
from encyclopedia.app.services.article_service import ArticleService
from encyclopedia.app.services.content_html_fixer import ContentHtmlFixer
from encyclopedia.app.services.rate_limiter import SlidingWindowRateLimiter
from encyclopedia.app.services.submission_service import SubmissionService
from encyclopedia.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_submission_service() -> SubmissionService:
    database = get_database()
    return SubmissionService(
        submission_repository=SubmissionRepository(database),
        article_repository=ArticleRepository(database),
        taxonomy_repository=TaxonomyRepository(database),
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_article_service() -> ArticleService:
    database = get_database()
    return ArticleService(
        article_repository=ArticleRepository(database),
        taxonomy_repository=TaxonomyRepository(database),
    )


@lru_cache(maxsize=1)
def get_content_fixer() -> ContentHtmlFixer:
    settings = get_settings()
    database = get_database()
    return ContentHtmlFixer(
        submission_repository=SubmissionRepository(database),
        article_repository=ArticleRepository(database),
        telemetry=get_telemetry(),
        concurrency=settings.content_fix_concurrency,
        item_timeout_seconds=settings.content_fix_item_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_submission_rate_limiter() -> SlidingWindowRateLimiter:
    settings = get_settings()
    return SlidingWindowRateLimiter(
        max_requests=settings.submission_rate_limit_max_requests,
        window_seconds=settings.submission_rate_limit_window_seconds,
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_content_fixer.cache_clear()
    get_article_service.cache_clear()
    get_submission_service.cache_clear()
    get_submission_rate_limiter.cache_clear()
    get_database.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
