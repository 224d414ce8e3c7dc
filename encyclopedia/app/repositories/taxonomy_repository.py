from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from encyclopedia.app.repositories.database import Database

TaxonomyKind = Literal["tags", "categories", "authors"]


@dataclass(frozen=True)
class TaxonomyTerm:
    term_id: int
    name: str


class TaxonomyRepository:
    """Tags, categories and authors: named entities with unique names per kind."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def list_terms(self, kind: TaxonomyKind) -> list[TaxonomyTerm]:
        with self._db.connection() as conn:
            rows = conn.execute(f"SELECT id, name FROM {kind} ORDER BY name ASC, id ASC").fetchall()
        return [TaxonomyTerm(term_id=int(row["id"]), name=str(row["name"])) for row in rows]

    def get_or_create(self, kind: TaxonomyKind, name: str) -> TaxonomyTerm:
        normalized = " ".join(name.split())
        if not normalized:
            raise ValueError(f"{kind} name must not be blank")
        with self._db.connection() as conn:
            conn.execute(f"INSERT OR IGNORE INTO {kind} (name) VALUES (?)", (normalized,))
            row = conn.execute(
                f"SELECT id, name FROM {kind} WHERE name = ? LIMIT 1",
                (normalized,),
            ).fetchone()
        if row is None:
            raise RuntimeError(f"{kind} term was not found after insert")
        return TaxonomyTerm(term_id=int(row["id"]), name=str(row["name"]))

    def missing_ids(self, kind: TaxonomyKind, term_ids: Iterable[int]) -> list[int]:
        """Return the ids from ``term_ids`` that do not exist, sorted."""
        wanted = sorted(set(term_ids))
        if not wanted:
            return []
        placeholders = ", ".join("?" for _ in wanted)
        with self._db.connection() as conn:
            rows = conn.execute(
                f"SELECT id FROM {kind} WHERE id IN ({placeholders})",
                wanted,
            ).fetchall()
        found = {int(row["id"]) for row in rows}
        return [term_id for term_id in wanted if term_id not in found]
