from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS authors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS submissions (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    verbete_type TEXT NOT NULL,
    status TEXT NOT NULL,
    title TEXT NULL,
    content TEXT NULL,
    content_html TEXT NOT NULL DEFAULT '',
    metadata_json TEXT NOT NULL,
    author_names_json TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    submitted_at TEXT NULL,
    reviewed_at TEXT NULL,
    reviewer_id TEXT NULL,
    review_note TEXT NULL,
    article_id TEXT NULL
);

CREATE INDEX IF NOT EXISTS idx_submissions_owner_updated
ON submissions(owner_id, updated_at DESC);

CREATE INDEX IF NOT EXISTS idx_submissions_status_updated
ON submissions(status, updated_at DESC);

CREATE TABLE IF NOT EXISTS submission_tags (
    submission_id TEXT NOT NULL,
    tag_id INTEGER NOT NULL,
    PRIMARY KEY (submission_id, tag_id),
    FOREIGN KEY(submission_id) REFERENCES submissions(id) ON DELETE CASCADE,
    FOREIGN KEY(tag_id) REFERENCES tags(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS submission_categories (
    submission_id TEXT NOT NULL,
    category_id INTEGER NOT NULL,
    PRIMARY KEY (submission_id, category_id),
    FOREIGN KEY(submission_id) REFERENCES submissions(id) ON DELETE CASCADE,
    FOREIGN KEY(category_id) REFERENCES categories(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS submission_versions (
    submission_id TEXT NOT NULL,
    version_number INTEGER NOT NULL,
    title TEXT NULL,
    content TEXT NULL,
    metadata_json TEXT NOT NULL,
    created_by TEXT NOT NULL,
    change_summary TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (submission_id, version_number),
    FOREIGN KEY(submission_id) REFERENCES submissions(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS articles (
    id TEXT PRIMARY KEY,
    submission_id TEXT NULL UNIQUE,
    verbete_type TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NULL,
    content_html TEXT NOT NULL DEFAULT '',
    metadata_json TEXT NOT NULL,
    published_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_articles_type_published
ON articles(verbete_type, published_at DESC);

CREATE TABLE IF NOT EXISTS article_tags (
    article_id TEXT NOT NULL,
    tag_id INTEGER NOT NULL,
    PRIMARY KEY (article_id, tag_id),
    FOREIGN KEY(article_id) REFERENCES articles(id) ON DELETE CASCADE,
    FOREIGN KEY(tag_id) REFERENCES tags(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS article_categories (
    article_id TEXT NOT NULL,
    category_id INTEGER NOT NULL,
    PRIMARY KEY (article_id, category_id),
    FOREIGN KEY(article_id) REFERENCES articles(id) ON DELETE CASCADE,
    FOREIGN KEY(category_id) REFERENCES categories(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS article_authors (
    article_id TEXT NOT NULL,
    author_id INTEGER NOT NULL,
    PRIMARY KEY (article_id, author_id),
    FOREIGN KEY(article_id) REFERENCES articles(id) ON DELETE CASCADE,
    FOREIGN KEY(author_id) REFERENCES authors(id) ON DELETE CASCADE
);
"""

# Columns added after the first schema; older databases get them on startup.
_ADDED_COLUMNS: tuple[tuple[str, str, str], ...] = (
    ("submissions", "content_html", "TEXT NOT NULL DEFAULT ''"),
    ("articles", "content_html", "TEXT NOT NULL DEFAULT ''"),
)


class Database:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA_SQL)
            _add_missing_columns(conn)


def _add_missing_columns(conn: sqlite3.Connection) -> None:
    for table_name, column_name, column_sql in _ADDED_COLUMNS:
        columns = _table_columns(conn, table_name)
        if columns and column_name not in columns:
            conn.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_sql}")


def _table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {str(row["name"]) for row in rows}
