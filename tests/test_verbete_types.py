from __future__ import annotations

import pytest

from encyclopedia.app.models.verbete_types import parse_partial_date


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1908", (1908,)),
        ("1908-11", (1908, 11)),
        (" 1908-11-28 ", (1908, 11, 28)),
        ("0001-01-01", (1, 1, 1)),
    ],
)
def test_partial_dates_parse_at_their_precision(raw: str, expected: tuple[int, ...]) -> None:
    assert parse_partial_date(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "0000",
        "0000-01-01",
        "1908-13",
        "1908-02-30",
        "08-11-28",
        "١٩٢٢",
        "１９２２-０２",
        "1922-2-13",
        "",
    ],
)
def test_malformed_partial_dates_are_rejected(raw: str) -> None:
    assert parse_partial_date(raw) is None


def test_non_text_dates_are_rejected() -> None:
    assert parse_partial_date(1908) is None
    assert parse_partial_date(None) is None
