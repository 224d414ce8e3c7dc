from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, cast

from encyclopedia.app.errors import ValidationError
from encyclopedia.app.models.verbete_types import get_verbete_type, validate_metadata
from encyclopedia.app.repositories.article_repository import ArticleRepository
from encyclopedia.app.repositories.taxonomy_repository import TaxonomyKind, TaxonomyRepository
from encyclopedia.app.services.content_normalizer import normalize
from encyclopedia.app.services.query_filters import ArticleFilter

LOGGER = logging.getLogger("encyclopedia.seed")


@dataclass(frozen=True)
class SeedReport:
    tags: int
    categories: int
    articles_created: int
    articles_skipped: int


class SeedService:
    """Loads fixture data (tags, categories and published articles).

    Articles whose title already exists for the same verbete type are skipped,
    so seeding the same fixture twice is harmless.
    """

    def __init__(
        self,
        *,
        article_repository: ArticleRepository,
        taxonomy_repository: TaxonomyRepository,
    ) -> None:
        self._articles = article_repository
        self._taxonomy = taxonomy_repository

    def seed(self, data: Mapping[str, Any]) -> SeedReport:
        tag_ids = self._seed_terms("tags", data.get("tags"))
        category_ids = self._seed_terms("categories", data.get("categories"))

        created = 0
        skipped = 0
        for raw_article in _as_list(data.get("articles")):
            if not isinstance(raw_article, Mapping):
                raise ValidationError("Each seeded article must be a mapping")
            entry = cast(Mapping[str, Any], raw_article)
            if self._create_article(entry, tag_ids=tag_ids, category_ids=category_ids):
                created += 1
            else:
                skipped += 1

        report = SeedReport(
            tags=len(tag_ids),
            categories=len(category_ids),
            articles_created=created,
            articles_skipped=skipped,
        )
        LOGGER.info(
            "seed finished tags=%s categories=%s articles_created=%s articles_skipped=%s",
            report.tags,
            report.categories,
            report.articles_created,
            report.articles_skipped,
        )
        return report

    def _seed_terms(self, kind: TaxonomyKind, raw_terms: object) -> dict[str, int]:
        ids: dict[str, int] = {}
        for raw_term in _as_list(raw_terms):
            name = raw_term.get("name") if isinstance(raw_term, Mapping) else raw_term
            if not isinstance(name, str) or not name.strip():
                raise ValidationError(f"Seeded {kind} need a non-empty name")
            term = self._taxonomy.get_or_create(kind, name)
            ids[term.name] = term.term_id
        return ids

    def _create_article(
        self,
        entry: Mapping[str, Any],
        *,
        tag_ids: dict[str, int],
        category_ids: dict[str, int],
    ) -> bool:
        title = entry.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Seeded articles need a title")
        verbete = get_verbete_type(entry.get("verbete_type", "person"))
        if verbete is None:
            raise ValidationError(f"Unknown verbete type for seeded article {title!r}")
        metadata = dict(cast(Mapping[str, Any], entry.get("metadata") or {}))
        errors = validate_metadata(verbete, metadata)
        if errors:
            raise ValidationError(f"Invalid metadata for seeded article {title!r}", errors=errors)

        existing = self._articles.find_many(
            ArticleFilter(title_contains=title.strip(), verbete_type=verbete.key)
        )
        if any(article.title == title.strip() for article in existing):
            return False

        content = entry.get("content")
        self._articles.create(
            submission_id=None,
            verbete_type=verbete.key,
            title=title.strip(),
            content=content if isinstance(content, str) else None,
            content_html=normalize(content if isinstance(content, str) else None),
            metadata=metadata,
            tag_ids=_lookup_ids("tags", entry.get("tags"), tag_ids),
            category_ids=_lookup_ids("categories", entry.get("categories"), category_ids),
            author_names=[str(name) for name in _as_list(entry.get("authors"))],
        )
        return True


def _as_list(value: object) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    raise ValidationError(f"Expected a list in seed data, got {type(value).__name__}")


def _lookup_ids(kind: str, raw_names: object, known: dict[str, int]) -> list[int]:
    ids: list[int] = []
    for name in _as_list(raw_names):
        if name not in known:
            raise ValidationError(f"Seeded article references unknown {kind} {name!r}")
        ids.append(known[name])
    return ids
