"""Query-string filters shared by the article and submission listings.

Front-ends send CMS-style parameters (``title_contains``, ``categories.id``,
``tags.id_in``). Parsing is permissive: unknown or malformed parameters are
ignored so older query strings keep working.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

TITLE_CONTAINS_PARAM = "title_contains"
CATEGORY_ID_PARAM = "categories.id"
TAG_IDS_PARAM = "tags.id_in"
VERBETE_TYPE_PARAM = "verbete_type"
STATUS_PARAM = "status"

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
# SQLite stores integers as signed 64-bit values.
MIN_INTEGER = -(2**63)
MAX_INTEGER = 2**63 - 1
MAX_PAGE = MAX_INTEGER // MAX_LIMIT

_INTEGER = re.compile(r"[+-]?[0-9]+\Z")


@dataclass(frozen=True)
class ArticleFilter:
    title_contains: str | None = None
    category_id: int | None = None
    tag_ids: frozenset[int] | None = None
    verbete_type: str | None = None
    status: str | None = None

    @property
    def is_empty(self) -> bool:
        return self == ArticleFilter()

    def scoped(self, **overrides: Any) -> ArticleFilter:
        """Return a copy narrowed by an endpoint (for example to one verbete type)."""
        return replace(self, **overrides)

    def matches(
        self,
        *,
        title: str | None,
        category_ids: Iterable[int],
        tag_ids: Iterable[int],
        verbete_type: str | None = None,
        status: str | None = None,
    ) -> bool:
        if self.title_contains is not None:
            if title is None or self.title_contains.casefold() not in title.casefold():
                return False
        if self.category_id is not None and self.category_id not in set(category_ids):
            return False
        if self.tag_ids is not None and not self.tag_ids.intersection(tag_ids):
            return False
        if self.verbete_type is not None and verbete_type != self.verbete_type:
            return False
        if self.status is not None and status != self.status:
            return False
        return True


@dataclass(frozen=True)
class PageRequest:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def build_filter(raw_query_params: Mapping[str, Any]) -> ArticleFilter:
    title = _first_text(raw_query_params.get(TITLE_CONTAINS_PARAM))
    category_id = _parse_int(_first_text(raw_query_params.get(CATEGORY_ID_PARAM)))
    tag_ids = _parse_int_set(_first_text(raw_query_params.get(TAG_IDS_PARAM)))
    verbete_type = _first_text(raw_query_params.get(VERBETE_TYPE_PARAM))
    status = _first_text(raw_query_params.get(STATUS_PARAM))
    return ArticleFilter(
        title_contains=title,
        category_id=category_id,
        tag_ids=tag_ids,
        verbete_type=verbete_type.lower() if verbete_type else None,
        status=status.lower() if status else None,
    )


def build_page_request(raw_query_params: Mapping[str, Any]) -> PageRequest:
    page = _parse_int(_first_text(raw_query_params.get("page")))
    limit = _parse_int(_first_text(raw_query_params.get("limit")))
    return PageRequest(
        page=min(page, MAX_PAGE) if page is not None and page >= 1 else DEFAULT_PAGE,
        limit=min(limit, MAX_LIMIT) if limit is not None and limit >= 1 else DEFAULT_LIMIT,
    )


def _first_text(value: Any) -> str | None:
    if isinstance(value, list | tuple):
        value = value[0] if value else None
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _parse_int(value: str | None) -> int | None:
    if value is None or _INTEGER.match(value) is None:
        return None
    number = int(value)
    if not MIN_INTEGER <= number <= MAX_INTEGER:
        return None
    return number


def _parse_int_set(value: str | None) -> frozenset[int] | None:
    if value is None:
        return None
    parsed = {
        number
        for number in (_parse_int(part.strip()) for part in value.split(","))
        if number is not None
    }
    return frozenset(parsed) or None
