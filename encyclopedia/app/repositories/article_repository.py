from __future__ import annotations

import enum
import json
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from sqlite3 import Connection, Row
from typing import Any, cast
from uuid import uuid4

from encyclopedia.app.repositories.common import (
    normalize_optional_text,
    parse_iso_datetime,
    utc_now_iso,
)
from encyclopedia.app.repositories.database import Database
from encyclopedia.app.repositories.filter_sql import ARTICLE_TABLES, where_clause
from encyclopedia.app.repositories.taxonomy_repository import TaxonomyTerm
from encyclopedia.app.services.query_filters import ArticleFilter


class ArticleRelations(enum.Flag):
    """Relations hydrated alongside an article row."""

    NONE = 0
    TAGS = enum.auto()
    CATEGORIES = enum.auto()
    AUTHORS = enum.auto()
    ALL = TAGS | CATEGORIES | AUTHORS


@dataclass(frozen=True)
class Article:
    article_id: str
    submission_id: str | None
    verbete_type: str
    title: str
    content: str | None
    content_html: str
    metadata: dict[str, Any]
    published_at: datetime
    updated_at: datetime
    # None when the relation was not requested.
    tags: tuple[TaxonomyTerm, ...] | None = None
    categories: tuple[TaxonomyTerm, ...] | None = None
    authors: tuple[TaxonomyTerm, ...] | None = None


class ArticleRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

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
    ) -> Article:
        now_iso = utc_now_iso()
        article_id = f"article_{uuid4().hex}"
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO articles (
                    id,
                    submission_id,
                    verbete_type,
                    title,
                    content,
                    content_html,
                    metadata_json,
                    published_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    article_id,
                    submission_id,
                    verbete_type,
                    title,
                    content,
                    content_html,
                    _dump_json(metadata),
                    now_iso,
                    now_iso,
                ),
            )
            conn.executemany(
                "INSERT OR IGNORE INTO article_tags (article_id, tag_id) VALUES (?, ?)",
                [(article_id, tag_id) for tag_id in tag_ids],
            )
            conn.executemany(
                "INSERT OR IGNORE INTO article_categories (article_id, category_id) VALUES (?, ?)",
                [(article_id, category_id) for category_id in category_ids],
            )
            for author_name in author_names:
                conn.execute("INSERT OR IGNORE INTO authors (name) VALUES (?)", (author_name,))
                conn.execute(
                    """
                    INSERT OR IGNORE INTO article_authors (article_id, author_id)
                    SELECT ?, id FROM authors WHERE name = ?
                    """,
                    (article_id, author_name),
                )
            created = _get_article_with_conn(conn, article_id, ArticleRelations.ALL)
        if created is None:
            raise RuntimeError("Article was not found after insert")
        return created

    def find_one(
        self,
        article_id: str,
        *,
        relations: ArticleRelations = ArticleRelations.ALL,
    ) -> Article | None:
        with self._db.connection() as conn:
            return _get_article_with_conn(conn, article_id, relations)

    def find_by_submission(self, submission_id: str) -> Article | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT id FROM articles WHERE submission_id = ? LIMIT 1",
                (submission_id,),
            ).fetchone()
            if row is None:
                return None
            return _get_article_with_conn(conn, str(row["id"]), ArticleRelations.ALL)

    def find_many(
        self,
        entry_filter: ArticleFilter | None = None,
        *,
        relations: ArticleRelations = ArticleRelations.ALL,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Article]:
        where_sql, params = where_clause(entry_filter or ArticleFilter(), ARTICLE_TABLES)
        paging_sql = ""
        if limit is not None:
            paging_sql = "LIMIT ? OFFSET ?"
            params = [*params, limit, offset]
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT articles.*
                FROM articles
                {where_sql}
                ORDER BY articles.published_at DESC, articles.id ASC
                {paging_sql}
                """,
                params,
            ).fetchall()
            return [_hydrate(conn, row, relations) for row in rows]

    def count(self, entry_filter: ArticleFilter | None = None) -> int:
        where_sql, params = where_clause(entry_filter or ArticleFilter(), ARTICLE_TABLES)
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS total FROM articles {where_sql}",
                params,
            ).fetchone()
        return int(row["total"]) if row is not None else 0

    def save_content_html(self, article_id: str, content_html: str) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "UPDATE articles SET content_html = ?, updated_at = ? WHERE id = ?",
                (content_html, utc_now_iso(), article_id),
            )
        return cursor.rowcount > 0


def _get_article_with_conn(
    conn: Connection,
    article_id: str,
    relations: ArticleRelations,
) -> Article | None:
    row = conn.execute(
        """
        SELECT *
        FROM articles
        WHERE id = ?
        LIMIT 1
        """,
        (article_id,),
    ).fetchone()
    if row is None:
        return None
    return _hydrate(conn, row, relations)


def _hydrate(conn: Connection, row: Row, relations: ArticleRelations) -> Article:
    article_id = str(row["id"])
    tags = categories = authors = None
    if ArticleRelations.TAGS in relations:
        tags = _load_terms(conn, article_id, link_table="article_tags", term_table="tags", column="tag_id")
    if ArticleRelations.CATEGORIES in relations:
        categories = _load_terms(
            conn,
            article_id,
            link_table="article_categories",
            term_table="categories",
            column="category_id",
        )
    if ArticleRelations.AUTHORS in relations:
        authors = _load_terms(
            conn,
            article_id,
            link_table="article_authors",
            term_table="authors",
            column="author_id",
        )
    return Article(
        article_id=article_id,
        submission_id=normalize_optional_text(row["submission_id"]),
        verbete_type=str(row["verbete_type"]),
        title=str(row["title"]),
        content=row["content"] if isinstance(row["content"], str) else None,
        content_html=str(row["content_html"] or ""),
        metadata=_load_object_dict(row["metadata_json"]),
        published_at=parse_iso_datetime(str(row["published_at"])),
        updated_at=parse_iso_datetime(str(row["updated_at"])),
        tags=tags,
        categories=categories,
        authors=authors,
    )


def _load_terms(
    conn: Connection,
    article_id: str,
    *,
    link_table: str,
    term_table: str,
    column: str,
) -> tuple[TaxonomyTerm, ...]:
    rows = conn.execute(
        f"""
        SELECT term.id AS id, term.name AS name
        FROM {link_table} AS link
        JOIN {term_table} AS term ON term.id = link.{column}
        WHERE link.article_id = ?
        ORDER BY term.name ASC, term.id ASC
        """,
        (article_id,),
    ).fetchall()
    return tuple(TaxonomyTerm(term_id=int(item["id"]), name=str(item["name"])) for item in rows)


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
