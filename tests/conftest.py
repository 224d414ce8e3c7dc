from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from encyclopedia.app.dependencies import reset_cached_dependencies
from encyclopedia.app.main import create_app
from encyclopedia.app.repositories.article_repository import ArticleRepository
from encyclopedia.app.repositories.database import Database
from encyclopedia.app.repositories.submission_repository import SubmissionRepository
from encyclopedia.app.repositories.taxonomy_repository import TaxonomyRepository
from encyclopedia.app.services.content_normalizer import normalize
from encyclopedia.app.services.submission_service import Actor, SubmissionService

OWNER = Actor(user_id="user-ana")
OTHER_USER = Actor(user_id="user-bruno")
REVIEWER = Actor(user_id="reviewer-carla", is_reviewer=True)

CATEGORY_NAMES = ("Arte", "Ciência", "Cultura", "Educação", "História")
TAG_NAMES = ("Brasil", "França", "Século XX", "Intelectuais")


@dataclass(frozen=True)
class SeededContent:
    category_ids: dict[str, int]
    tag_ids: dict[str, int]
    article_ids: dict[str, str]


def seed_content(database: Database) -> SeededContent:
    taxonomy = TaxonomyRepository(database)
    articles = ArticleRepository(database)
    category_ids = {name: taxonomy.get_or_create("categories", name).term_id for name in CATEGORY_NAMES}
    tag_ids = {name: taxonomy.get_or_create("tags", name).term_id for name in TAG_NAMES}

    fixtures = (
        (
            "Claude Lévi-Strauss",
            "person",
            ["Ciência", "Cultura"],
            ["França", "Brasil", "Século XX", "Intelectuais"],
            {"birth_date": "1908-11-28", "death_date": "2009-10-30"},
        ),
        (
            "Mário de Andrade",
            "person",
            ["Arte", "História"],
            ["Brasil", "Século XX"],
            {"birth_date": "1893-10-09", "death_date": "1945-02-25"},
        ),
        (
            "Roger Bastide",
            "person",
            ["História"],
            ["França"],
            {"birth_date": "1898"},
        ),
        (
            "Universidade de São Paulo",
            "institution",
            ["Educação", "História"],
            ["Brasil"],
            {"opening_date": "1934-01-25"},
        ),
    )
    article_ids: dict[str, str] = {}
    for title, verbete_type, categories, tags, metadata in fixtures:
        content = f"{title} is part of the seeded corpus.\n\nSecond paragraph."
        article = articles.create(
            submission_id=None,
            verbete_type=verbete_type,
            title=title,
            content=content,
            content_html=normalize(content),
            metadata=metadata,
            tag_ids=[tag_ids[name] for name in tags],
            category_ids=[category_ids[name] for name in categories],
            author_names=["Equipe Editorial"],
        )
        article_ids[title] = article.article_id
    return SeededContent(category_ids=category_ids, tag_ids=tag_ids, article_ids=article_ids)


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "content.db")
    db.initialize()
    return db


@pytest.fixture
def seeded(database: Database) -> SeededContent:
    return seed_content(database)


@pytest.fixture
def submission_service(database: Database) -> SubmissionService:
    return SubmissionService(
        submission_repository=SubmissionRepository(database),
        article_repository=ArticleRepository(database),
        taxonomy_repository=TaxonomyRepository(database),
    )


@pytest.fixture
def runtime_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("ENCYCLOPEDIA_DATA_DIR", str(data_dir))
    monkeypatch.setenv("ENCYCLOPEDIA_TELEMETRY_ENABLED", "0")
    monkeypatch.delenv("ENCYCLOPEDIA_DB_PATH", raising=False)
    monkeypatch.delenv("ENCYCLOPEDIA_LOG_DIR", raising=False)
    reset_cached_dependencies()
    yield data_dir
    reset_cached_dependencies()


@pytest.fixture
def api_content(runtime_data_dir: Path) -> SeededContent:
    db = Database(runtime_data_dir / "content.db")
    db.initialize()
    return seed_content(db)


@pytest.fixture
def client(runtime_data_dir: Path, api_content: SeededContent) -> Iterator[TestClient]:
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
