from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from time import monotonic
from typing import Any, Literal

from encyclopedia.app.errors import NotFoundError
from encyclopedia.app.repositories.article_repository import ArticleRelations, ArticleRepository
from encyclopedia.app.repositories.submission_repository import SubmissionRepository
from encyclopedia.app.services.content_normalizer import normalize_strict
from encyclopedia.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("encyclopedia.content_html")

RecordKind = Literal["submission", "article"]


@dataclass(frozen=True)
class FixReport:
    total: int
    updated: int
    failed: int
    errors: list[dict[str, str]] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "updated": self.updated,
            "failed": self.failed,
            "errors": list(self.errors),
            "dry_run": self.dry_run,
        }


@dataclass(frozen=True)
class FixPreview:
    record_id: str
    kind: RecordKind
    title: str | None
    content: str | None
    stored_html: str
    generated_html: str | None
    error: str | None = None

    @property
    def would_change(self) -> bool:
        return self.generated_html is not None and self.generated_html != self.stored_html

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.record_id,
            "kind": self.kind,
            "title": self.title,
            "content": self.content,
            "stored_html": self.stored_html,
            "generated_html": self.generated_html,
            "would_change": self.would_change,
            "error": self.error,
        }


@dataclass(frozen=True)
class FixVerification:
    record_id: str
    kind: RecordKind
    has_content: bool
    has_content_html: bool
    content_length: int
    html_length: int
    up_to_date: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.record_id,
            "kind": self.kind,
            "has_content": self.has_content,
            "has_content_html": self.has_content_html,
            "content_length": self.content_length,
            "html_length": self.html_length,
            "up_to_date": self.up_to_date,
            "error": self.error,
        }


class _ItemFailure(Exception):
    pass


@dataclass(frozen=True)
class _FixTarget:
    record_id: str
    kind: RecordKind
    title: str | None
    content: str | None
    stored_html: str


class ContentHtmlFixer:
    """Re-normalizes every stored body and persists only what changed.

    A failing or slow record is reported and skipped; it never stops the run.
    Records are normalized in batches of ``concurrency``, each batch on its own
    pool with one worker per record, so an item's timeout starts when it starts
    running and a record that never finishes only ties up its own worker.
    """

    def __init__(
        self,
        *,
        submission_repository: SubmissionRepository,
        article_repository: ArticleRepository,
        telemetry: TelemetryClient | None = None,
        concurrency: int = 4,
        item_timeout_seconds: float = 10.0,
        normalizer: Callable[[object], str] = normalize_strict,
    ) -> None:
        self._submissions = submission_repository
        self._articles = article_repository
        self._telemetry = telemetry or TelemetryClient.disabled()
        self._concurrency = max(1, concurrency)
        self._item_timeout_seconds = item_timeout_seconds
        self._normalize = normalizer

    def fix_all(self, *, dry_run: bool = False) -> FixReport:
        targets = list(self._iter_targets())
        updated = 0
        errors: list[dict[str, str]] = []

        for batch in _batched(targets, self._concurrency):
            for target, outcome in zip(batch, self._normalize_batch(batch), strict=True):
                failure = outcome if isinstance(outcome, _ItemFailure) else None
                if failure is None:
                    try:
                        if self._apply(target, str(outcome), dry_run=dry_run):
                            updated += 1
                    except _ItemFailure as exc:
                        failure = exc
                if failure is not None:
                    LOGGER.warning(
                        "content_html fix failed kind=%s id=%s error=%s",
                        target.kind,
                        target.record_id,
                        failure,
                    )
                    errors.append({"id": target.record_id, "error": str(failure)})

        report = FixReport(
            total=len(targets),
            updated=updated,
            failed=len(errors),
            errors=errors,
            dry_run=dry_run,
        )
        LOGGER.info(
            "content_html fix finished total=%s updated=%s failed=%s dry_run=%s",
            report.total,
            report.updated,
            report.failed,
            dry_run,
        )
        self._telemetry.emit(
            "content_html.fix.finished",
            total=report.total,
            updated=report.updated,
            failed=report.failed,
            dry_run=dry_run,
        )
        return report

    def preview(self, record_id: str) -> FixPreview:
        """What `fix_all` would store for one record, without writing it."""
        target = self._find_target(record_id)
        outcome = self._normalize_batch([target])[0]
        if isinstance(outcome, _ItemFailure):
            return FixPreview(
                record_id=target.record_id,
                kind=target.kind,
                title=target.title,
                content=target.content,
                stored_html=target.stored_html,
                generated_html=None,
                error=str(outcome),
            )
        return FixPreview(
            record_id=target.record_id,
            kind=target.kind,
            title=target.title,
            content=target.content,
            stored_html=target.stored_html,
            generated_html=outcome,
        )

    def verify(self, record_id: str) -> FixVerification:
        """Check that a record's stored HTML matches what normalization produces today."""
        preview = self.preview(record_id)
        return FixVerification(
            record_id=preview.record_id,
            kind=preview.kind,
            has_content=bool(preview.content and preview.content.strip()),
            has_content_html=bool(preview.stored_html),
            content_length=len(preview.content or ""),
            html_length=len(preview.stored_html),
            up_to_date=preview.error is None and not preview.would_change,
            error=preview.error,
        )

    def _normalize_batch(self, batch: Sequence[_FixTarget]) -> list[str | _ItemFailure]:
        executor = ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="content-html-fix")
        stuck = False
        outcomes: list[str | _ItemFailure] = []
        try:
            futures = [executor.submit(self._normalize, target.content) for target in batch]
            deadline = monotonic() + self._item_timeout_seconds
            for future in futures:
                try:
                    outcomes.append(future.result(timeout=max(0.0, deadline - monotonic())))
                except FutureTimeoutError:
                    stuck = True
                    outcomes.append(_ItemFailure(f"timed out after {self._item_timeout_seconds:g}s"))
                except Exception as exc:
                    outcomes.append(_ItemFailure(str(exc) or type(exc).__name__))
        finally:
            # A running normalization cannot be interrupted; a stuck worker is left
            # behind with its pool and later batches never wait for it.
            executor.shutdown(wait=not stuck, cancel_futures=True)
        return outcomes

    def _apply(self, target: _FixTarget, normalized: str, *, dry_run: bool) -> bool:
        """Persist the normalized body if it changed; returns whether it did (or would)."""
        if normalized == target.stored_html:
            return False
        if dry_run:
            return True
        try:
            if target.kind == "submission":
                self._submissions.save_content_html(target.record_id, normalized)
            else:
                self._articles.save_content_html(target.record_id, normalized)
        except sqlite3.Error as exc:
            raise _ItemFailure(f"save failed: {exc}") from exc
        return True

    def _find_target(self, record_id: str) -> _FixTarget:
        submission = self._submissions.find_one(record_id)
        if submission is not None:
            return _FixTarget(
                record_id=submission.submission_id,
                kind="submission",
                title=submission.title,
                content=submission.content,
                stored_html=submission.content_html,
            )
        article = self._articles.find_one(record_id, relations=ArticleRelations.NONE)
        if article is not None:
            return _FixTarget(
                record_id=article.article_id,
                kind="article",
                title=article.title,
                content=article.content,
                stored_html=article.content_html,
            )
        raise NotFoundError(f"No submission or article with id {record_id}")

    def _iter_targets(self) -> Iterator[_FixTarget]:
        for submission in self._submissions.find_many():
            yield _FixTarget(
                record_id=submission.submission_id,
                kind="submission",
                title=submission.title,
                content=submission.content,
                stored_html=submission.content_html,
            )
        for article in self._articles.find_many(relations=ArticleRelations.NONE):
            yield _FixTarget(
                record_id=article.article_id,
                kind="article",
                title=article.title,
                content=article.content,
                stored_html=article.content_html,
            )


def _batched(items: Sequence[_FixTarget], size: int) -> Iterator[Sequence[_FixTarget]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]
