from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from encyclopedia.app.repositories.article_repository import Article
from encyclopedia.app.repositories.taxonomy_repository import TaxonomyTerm


class TaxonomyTermSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    name: str

    @classmethod
    def from_term(cls, term: TaxonomyTerm) -> TaxonomyTermSummary:
        return cls(id=term.term_id, name=term.name)


class ArticleSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    submission_id: str | None = None
    verbete_type: str
    title: str
    content_html: str
    metadata: dict[str, Any]
    tags: list[TaxonomyTermSummary] | None = None
    categories: list[TaxonomyTermSummary] | None = None
    authors: list[TaxonomyTermSummary] | None = None
    published_at: str
    updated_at: str

    @classmethod
    def from_article(cls, article: Article) -> ArticleSummary:
        return cls(
            id=article.article_id,
            submission_id=article.submission_id,
            verbete_type=article.verbete_type,
            title=article.title,
            content_html=article.content_html,
            metadata=dict(article.metadata),
            tags=_terms(article.tags),
            categories=_terms(article.categories),
            authors=_terms(article.authors),
            published_at=article.published_at.isoformat(),
            updated_at=article.updated_at.isoformat(),
        )


def _terms(terms: tuple[TaxonomyTerm, ...] | None) -> list[TaxonomyTermSummary] | None:
    if terms is None:
        return None
    return [TaxonomyTermSummary.from_term(term) for term in terms]
