from __future__ import annotations

import json

from encyclopedia.app.api import responses


def _body(response: object) -> dict[str, object]:
    return json.loads(getattr(response, "body"))


def test_pagination_rounds_pages_up() -> None:
    assert responses.pagination_meta(page=1, limit=10, total=25) == {
        "page": 1,
        "limit": 10,
        "total": 25,
        "pages": 3,
    }


def test_pagination_defaults_when_absent() -> None:
    assert responses.pagination_meta(page=None, limit=None, total=None) == {
        "page": 1,
        "limit": 10,
        "total": 0,
        "pages": 0,
    }


def test_success_envelope_omits_missing_data() -> None:
    body = responses.success_body(message="Removed")

    assert body["success"] is True
    assert body["message"] == "Removed"
    assert "data" not in body
    assert isinstance(body["timestamp"], str)


def test_error_envelope_carries_details_only_when_present() -> None:
    assert "details" not in responses.error_body("Nope")
    assert responses.error_body("Bad", ["title"])["details"] == ["title"]


def test_helpers_map_to_fixed_status_codes() -> None:
    assert responses.created({"id": 1}).status_code == 201
    assert responses.bad_request().status_code == 400
    assert responses.unauthorized().status_code == 401
    assert responses.forbidden().status_code == 403
    assert responses.not_found().status_code == 404
    assert responses.conflict().status_code == 409
    assert responses.too_many_requests().status_code == 429
    assert responses.error().status_code == 500


def test_paginated_response_wraps_items() -> None:
    body = _body(responses.paginated([{"id": "a"}], page=2, limit=1, total=3))

    assert body["success"] is True
    assert body["data"] == {
        "items": [{"id": "a"}],
        "pagination": {"page": 2, "limit": 1, "total": 3, "pages": 3},
    }


def test_too_many_requests_sets_retry_after() -> None:
    response = responses.too_many_requests(retry_after_seconds=42)

    assert response.headers["retry-after"] == "42"
    assert _body(response)["success"] is False


def test_named_error_helpers_carry_details() -> None:
    body = _body(responses.forbidden("Locked", {"current_status": "submitted"}))
    limited = responses.too_many_requests("Slow down", 5, {"retry_after_seconds": 5})

    assert body["error"] == "Locked"
    assert body["details"] == {"current_status": "submitted"}
    assert _body(responses.conflict("Taken", ["id"]))["details"] == ["id"]
    assert _body(limited)["details"] == {"retry_after_seconds": 5}
    assert limited.headers["retry-after"] == "5"
