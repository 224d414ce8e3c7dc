from __future__ import annotations

from dataclasses import dataclass

from encyclopedia.app.repositories.common import escape_like
from encyclopedia.app.services.query_filters import ArticleFilter


@dataclass(frozen=True)
class FilterTables:
    table: str
    tag_table: str
    category_table: str
    foreign_key: str


ARTICLE_TABLES = FilterTables(
    table="articles",
    tag_table="article_tags",
    category_table="article_categories",
    foreign_key="article_id",
)
SUBMISSION_TABLES = FilterTables(
    table="submissions",
    tag_table="submission_tags",
    category_table="submission_categories",
    foreign_key="submission_id",
)


def where_clause(entry_filter: ArticleFilter, tables: FilterTables) -> tuple[str, list[object]]:
    """Translate a filter into a SQL ``WHERE`` fragment and its parameters.

    Returns an empty fragment when the filter has no constraints.
    """
    if entry_filter.is_empty:
        return "", []
    clauses: list[str] = []
    params: list[object] = []
    table = tables.table

    if entry_filter.title_contains is not None:
        # SQLite LIKE is case-insensitive for ASCII.
        clauses.append(f"{table}.title LIKE ? ESCAPE '\\'")
        params.append(f"%{escape_like(entry_filter.title_contains)}%")
    if entry_filter.category_id is not None:
        clauses.append(
            f"EXISTS (SELECT 1 FROM {tables.category_table} AS fc "
            f"WHERE fc.{tables.foreign_key} = {table}.id AND fc.category_id = ?)"
        )
        params.append(entry_filter.category_id)
    if entry_filter.tag_ids is not None:
        ordered_ids = sorted(entry_filter.tag_ids)
        placeholders = ", ".join("?" for _ in ordered_ids)
        clauses.append(
            f"EXISTS (SELECT 1 FROM {tables.tag_table} AS ft "
            f"WHERE ft.{tables.foreign_key} = {table}.id AND ft.tag_id IN ({placeholders}))"
        )
        params.extend(ordered_ids)
    if entry_filter.verbete_type is not None:
        clauses.append(f"{table}.verbete_type = ?")
        params.append(entry_filter.verbete_type)
    if entry_filter.status is not None and table == SUBMISSION_TABLES.table:
        clauses.append(f"{table}.status = ?")
        params.append(entry_filter.status)

    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params
