from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from sqlite3 import Connection, Row
from typing import Any, cast
from uuid import uuid4

from encyclopedia.app.repositories.common import (
    normalize_optional_text,
    parse_iso_datetime,
    parse_iso_datetime_optional,
)
from encyclopedia.app.repositories.database import Database
from encyclopedia.app.repositories.filter_sql import SUBMISSION_TABLES, where_clause
from encyclopedia.app.services.query_filters import ArticleFilter


@dataclass(frozen=True)
class Submission:
    submission_id: str
    owner_id: str
    verbete_type: str
    status: str
    title: str | None
    content: str | None
    content_html: str
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    tag_ids: tuple[int, ...] = ()
    category_ids: tuple[int, ...] = ()
    author_names: tuple[str, ...] = ()
    submitted_at: datetime | None = None
    reviewed_at: datetime | None = None
    reviewer_id: str | None = None
    review_note: str | None = None
    article_id: str | None = None


@dataclass(frozen=True)
class SubmissionVersion:
    submission_id: str
    version_number: int
    title: str | None
    content: str | None
    metadata: dict[str, Any]
    created_by: str
    change_summary: str
    created_at: datetime


@dataclass(frozen=True)
class VersionStamp:
    """Who caused a snapshot and why; passed to `save` to record one."""

    created_by: str
    change_summary: str


def new_submission_id() -> str:
    return f"sub_{uuid4().hex}"


class SubmissionRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def save(self, submission: Submission, *, version: VersionStamp | None = None) -> Submission:
        """Insert or replace the record and its relations in one transaction.

        With ``version``, a numbered snapshot of the saved fields is recorded in
        the same transaction.
        """
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO submissions (
                    id,
                    owner_id,
                    verbete_type,
                    status,
                    title,
                    content,
                    content_html,
                    metadata_json,
                    author_names_json,
                    created_at,
                    updated_at,
                    submitted_at,
                    reviewed_at,
                    reviewer_id,
                    review_note,
                    article_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    title = excluded.title,
                    content = excluded.content,
                    content_html = excluded.content_html,
                    metadata_json = excluded.metadata_json,
                    author_names_json = excluded.author_names_json,
                    updated_at = excluded.updated_at,
                    submitted_at = excluded.submitted_at,
                    reviewed_at = excluded.reviewed_at,
                    reviewer_id = excluded.reviewer_id,
                    review_note = excluded.review_note,
                    article_id = excluded.article_id
                """,
                (
                    submission.submission_id,
                    submission.owner_id,
                    submission.verbete_type,
                    submission.status,
                    submission.title,
                    submission.content,
                    submission.content_html,
                    _dump_json(submission.metadata),
                    json.dumps(list(submission.author_names), ensure_ascii=True),
                    submission.created_at.isoformat(),
                    submission.updated_at.isoformat(),
                    _isoformat_optional(submission.submitted_at),
                    _isoformat_optional(submission.reviewed_at),
                    submission.reviewer_id,
                    submission.review_note,
                    submission.article_id,
                ),
            )
            _replace_links(conn, "submission_tags", "tag_id", submission)
            _replace_links(conn, "submission_categories", "category_id", submission)
            if version is not None:
                _insert_version(conn, submission, version)
            saved = _get_submission_with_conn(conn, submission.submission_id)
        if saved is None:
            raise RuntimeError("Submission was not found after save")
        return saved

    def save_content_html(self, submission_id: str, content_html: str) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "UPDATE submissions SET content_html = ? WHERE id = ?",
                (content_html, submission_id),
            )
        return cursor.rowcount > 0

    def find_one(self, submission_id: str) -> Submission | None:
        with self._db.connection() as conn:
            return _get_submission_with_conn(conn, submission_id)

    def find_by_owner(self, owner_id: str) -> list[Submission]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM submissions
                WHERE owner_id = ?
                ORDER BY updated_at DESC, id ASC
                """,
                (owner_id,),
            ).fetchall()
            return [_hydrate(conn, row) for row in rows]

    def find_many(
        self,
        entry_filter: ArticleFilter | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Submission]:
        where_sql, params = where_clause(entry_filter or ArticleFilter(), SUBMISSION_TABLES)
        paging_sql = ""
        if limit is not None:
            paging_sql = "LIMIT ? OFFSET ?"
            params = [*params, limit, offset]
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT submissions.*
                FROM submissions
                {where_sql}
                ORDER BY submissions.updated_at DESC, submissions.id ASC
                {paging_sql}
                """,
                params,
            ).fetchall()
            return [_hydrate(conn, row) for row in rows]

    def count(self, entry_filter: ArticleFilter | None = None) -> int:
        where_sql, params = where_clause(entry_filter or ArticleFilter(), SUBMISSION_TABLES)
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS total FROM submissions {where_sql}",
                params,
            ).fetchone()
        return int(row["total"]) if row is not None else 0

    def find_versions(self, submission_id: str) -> list[SubmissionVersion]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM submission_versions
                WHERE submission_id = ?
                ORDER BY version_number ASC
                """,
                (submission_id,),
            ).fetchall()
        return [_row_to_version(row) for row in rows]

    def delete(self, submission_id: str) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute("DELETE FROM submissions WHERE id = ?", (submission_id,))
        return cursor.rowcount > 0


def _replace_links(conn: Connection, table_name: str, column_name: str, submission: Submission) -> None:
    ids = submission.tag_ids if column_name == "tag_id" else submission.category_ids
    conn.execute(f"DELETE FROM {table_name} WHERE submission_id = ?", (submission.submission_id,))
    conn.executemany(
        f"INSERT OR IGNORE INTO {table_name} (submission_id, {column_name}) VALUES (?, ?)",
        [(submission.submission_id, linked_id) for linked_id in ids],
    )


def _insert_version(conn: Connection, submission: Submission, stamp: VersionStamp) -> None:
    row = conn.execute(
        "SELECT COALESCE(MAX(version_number), 0) + 1 AS next_version FROM submission_versions "
        "WHERE submission_id = ?",
        (submission.submission_id,),
    ).fetchone()
    conn.execute(
        """
        INSERT INTO submission_versions (
            submission_id,
            version_number,
            title,
            content,
            metadata_json,
            created_by,
            change_summary,
            created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            submission.submission_id,
            int(row["next_version"]),
            submission.title,
            submission.content,
            _dump_json(submission.metadata),
            stamp.created_by,
            stamp.change_summary,
            submission.updated_at.isoformat(),
        ),
    )


def _get_submission_with_conn(conn: Connection, submission_id: str) -> Submission | None:
    row = conn.execute(
        """
        SELECT *
        FROM submissions
        WHERE id = ?
        LIMIT 1
        """,
        (submission_id,),
    ).fetchone()
    if row is None:
        return None
    return _hydrate(conn, row)


def _hydrate(conn: Connection, row: Row) -> Submission:
    submission_id = str(row["id"])
    tag_ids = tuple(
        int(link["tag_id"])
        for link in conn.execute(
            "SELECT tag_id FROM submission_tags WHERE submission_id = ? ORDER BY tag_id",
            (submission_id,),
        ).fetchall()
    )
    category_ids = tuple(
        int(link["category_id"])
        for link in conn.execute(
            "SELECT category_id FROM submission_categories WHERE submission_id = ? ORDER BY category_id",
            (submission_id,),
        ).fetchall()
    )
    return _row_to_submission(row, tag_ids=tag_ids, category_ids=category_ids)


def _row_to_submission(
    row: Row,
    *,
    tag_ids: tuple[int, ...],
    category_ids: tuple[int, ...],
) -> Submission:
    return Submission(
        submission_id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        verbete_type=str(row["verbete_type"]),
        status=str(row["status"]),
        title=normalize_optional_text(row["title"]),
        content=row["content"] if isinstance(row["content"], str) else None,
        content_html=str(row["content_html"] or ""),
        metadata=_load_object_dict(row["metadata_json"]),
        created_at=parse_iso_datetime(str(row["created_at"])),
        updated_at=parse_iso_datetime(str(row["updated_at"])),
        tag_ids=tag_ids,
        category_ids=category_ids,
        author_names=tuple(_load_str_list(row["author_names_json"])),
        submitted_at=parse_iso_datetime_optional(row["submitted_at"]),
        reviewed_at=parse_iso_datetime_optional(row["reviewed_at"]),
        reviewer_id=normalize_optional_text(row["reviewer_id"]),
        review_note=normalize_optional_text(row["review_note"]),
        article_id=normalize_optional_text(row["article_id"]),
    )


def _row_to_version(row: Row) -> SubmissionVersion:
    return SubmissionVersion(
        submission_id=str(row["submission_id"]),
        version_number=int(row["version_number"]),
        title=normalize_optional_text(row["title"]),
        content=row["content"] if isinstance(row["content"], str) else None,
        metadata=_load_object_dict(row["metadata_json"]),
        created_by=str(row["created_by"]),
        change_summary=str(row["change_summary"]),
        created_at=parse_iso_datetime(str(row["created_at"])),
    )


def _isoformat_optional(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dump_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), sort_keys=True)


def _load_object_dict(value: object) -> dict[str, Any]:
    if not isinstance(value, str):
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    raw = cast(dict[object, object], parsed)
    return {str(key): item_value for key, item_value in raw.items()}


def _load_str_list(value: object) -> list[str]:
    if not isinstance(value, str):
        return []
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return []
    if not isinstance(parsed, list):
        return []
    return [item for item in cast(list[object], parsed) if isinstance(item, str)]
