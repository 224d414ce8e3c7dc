from __future__ import annotations

import logging
import sqlite3

from encyclopedia.app.errors import InternalError, NotFoundError
from encyclopedia.app.repositories.article_repository import (
    Article,
    ArticleRelations,
    ArticleRepository,
)
from encyclopedia.app.repositories.taxonomy_repository import (
    TaxonomyKind,
    TaxonomyRepository,
    TaxonomyTerm,
)
from encyclopedia.app.services.query_filters import ArticleFilter, PageRequest

LOGGER = logging.getLogger("encyclopedia.articles")

PERSON_VERBETE_TYPE = "person"


class ArticleService:
    """Read side for published articles and their taxonomy."""

    def __init__(
        self,
        *,
        article_repository: ArticleRepository,
        taxonomy_repository: TaxonomyRepository,
    ) -> None:
        self._articles = article_repository
        self._taxonomy = taxonomy_repository

    def list_articles(
        self,
        entry_filter: ArticleFilter,
        *,
        page: PageRequest | None = None,
        relations: ArticleRelations = ArticleRelations.ALL,
    ) -> tuple[list[Article], int]:
        try:
            total = self._articles.count(entry_filter)
            items = self._articles.find_many(
                entry_filter,
                relations=relations,
                limit=page.limit if page is not None else None,
                offset=page.offset if page is not None else 0,
            )
        except sqlite3.Error as exc:
            LOGGER.exception("article listing failed")
            raise InternalError.wrap("list articles", exc) from exc
        return items, total

    def list_person_articles(self, entry_filter: ArticleFilter) -> list[Article]:
        items, _ = self.list_articles(entry_filter.scoped(verbete_type=PERSON_VERBETE_TYPE))
        return items

    def find_one(
        self,
        article_id: str,
        *,
        verbete_type: str | None = None,
        relations: ArticleRelations = ArticleRelations.ALL,
    ) -> Article:
        try:
            article = self._articles.find_one(article_id, relations=relations)
        except sqlite3.Error as exc:
            LOGGER.exception("article lookup failed article_id=%s", article_id)
            raise InternalError.wrap("find article", exc) from exc
        if article is None or (verbete_type is not None and article.verbete_type != verbete_type):
            raise NotFoundError(f"Article not found: {article_id}")
        return article

    def list_terms(self, kind: TaxonomyKind) -> list[TaxonomyTerm]:
        try:
            return self._taxonomy.list_terms(kind)
        except sqlite3.Error as exc:
            LOGGER.exception("taxonomy listing failed kind=%s", kind)
            raise InternalError.wrap(f"list {kind}", exc) from exc
