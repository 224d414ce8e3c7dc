from __future__ import annotations

from pathlib import Path

from click.testing import CliRunner

from encyclopedia.app.dependencies import get_database, get_submission_service
from encyclopedia.app.repositories.article_repository import ArticleRepository
from encyclopedia.app.repositories.submission_repository import SubmissionRepository
from encyclopedia.app.services.query_filters import ArticleFilter
from encyclopedia.app.services.submission_service import Actor
from encyclopedia.cli.main import main

SEED_FIXTURE = Path(__file__).parent / "fixtures" / "seed.yaml"


def test_seed_loads_fixture_once(runtime_data_dir: Path) -> None:
    runner = CliRunner()

    first = runner.invoke(main, ["seed", str(SEED_FIXTURE)])
    second = runner.invoke(main, ["seed", str(SEED_FIXTURE)])

    assert first.exit_code == 0, first.output
    assert "2 created" in first.output
    assert second.exit_code == 0, second.output
    assert "2 already present" in second.output

    articles = ArticleRepository(get_database()).find_many(ArticleFilter(verbete_type="person"))
    assert [article.title for article in articles] == ["Oswald de Andrade"]
    assert articles[0].content_html == (
        "<p>Poeta e dramaturgo paulista.</p>\n<p>Autor do Manifesto Antropófago.</p>"
    )


def test_seed_rejects_unknown_taxonomy_names(runtime_data_dir: Path, tmp_path: Path) -> None:
    fixture = tmp_path / "bad.yaml"
    fixture.write_text(
        "articles:\n  - title: Sem categoria\n    verbete_type: concept\n    categories: [Inexistente]\n",
        encoding="utf-8",
    )

    result = CliRunner().invoke(main, ["seed", str(fixture)])

    assert result.exit_code == 1
    assert "unknown categories 'Inexistente'" in result.output


def test_fix_content_html_reports_and_updates(runtime_data_dir: Path) -> None:
    service = get_submission_service()
    draft = service.create_draft(Actor(user_id="user-ana"), "concept", {"content": "Corpo"})
    SubmissionRepository(get_database()).save_content_html(draft.submission_id, "stale")

    dry_run = CliRunner().invoke(main, ["fix-content-html", "--dry-run"])
    applied = CliRunner().invoke(main, ["fix-content-html", "--concurrency", "2"])

    assert dry_run.exit_code == 0, dry_run.output
    assert "1 would update" in dry_run.output
    assert applied.exit_code == 0, applied.output
    assert "1 updated" in applied.output
    assert service.find_one(draft.submission_id).content_html == "<p>Corpo</p>"


def test_fix_content_html_exits_non_zero_on_failures(runtime_data_dir: Path) -> None:
    service = get_submission_service()
    draft = service.create_draft(Actor(user_id="user-ana"), "concept", {"content": "ok"})
    with get_database().connection() as conn:
        conn.execute(
            "UPDATE submissions SET content = ? WHERE id = ?",
            ("broken \x01", draft.submission_id),
        )

    result = CliRunner().invoke(main, ["fix-content-html"])

    assert result.exit_code == 1
    assert "1 failed" in result.output


def test_verbete_types_lists_every_type(runtime_data_dir: Path) -> None:
    result = CliRunner().invoke(main, ["verbete-types"])

    assert result.exit_code == 0
    for key in ("person", "work", "event", "institution", "company", "group", "concept"):
        assert key in result.output


def test_review_command_applies_action(runtime_data_dir: Path) -> None:
    owner = Actor(user_id="user-ana")
    service = get_submission_service()
    draft = service.create_draft(owner, "concept", {"title": "Antropofagia", "content": "Corpo"})
    service.submit(draft.submission_id, owner)
    runner = CliRunner()

    started = runner.invoke(main, ["review", draft.submission_id, "start_review", "-r", "reviewer-carla"])
    published = runner.invoke(
        main,
        ["review", draft.submission_id, "publish", "--reviewer", "reviewer-carla", "--note", "ok"],
    )
    again = runner.invoke(main, ["review", draft.submission_id, "publish", "-r", "reviewer-carla"])

    assert started.exit_code == 0, started.output
    assert "under_review" in started.output
    assert published.exit_code == 0, published.output
    assert "Published as article" in published.output
    assert again.exit_code == 1
    assert "(409)" in again.output


def test_preview_and_verify_content_html(runtime_data_dir: Path) -> None:
    draft = get_submission_service().create_draft(
        Actor(user_id="user-ana"), "concept", {"title": "Antropofagia", "content": "Corpo"}
    )
    SubmissionRepository(get_database()).save_content_html(draft.submission_id, "stale")
    runner = CliRunner()

    preview = runner.invoke(main, ["preview-content-html", draft.submission_id])
    stale = runner.invoke(main, ["verify-content-html", draft.submission_id])
    runner.invoke(main, ["fix-content-html"])
    fresh = runner.invoke(main, ["verify-content-html", draft.submission_id])

    assert preview.exit_code == 0, preview.output
    assert "<p>Corpo</p>" in preview.output
    assert "would change" in preview.output
    assert stale.exit_code == 1
    assert fresh.exit_code == 0, fresh.output
    assert "True" in fresh.output


def test_preview_content_html_unknown_record(runtime_data_dir: Path) -> None:
    result = CliRunner().invoke(main, ["preview-content-html", "sub_missing"])

    assert result.exit_code == 1
    assert "No submission or article with id sub_missing" in result.output
