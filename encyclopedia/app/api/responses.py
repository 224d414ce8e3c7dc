"""Uniform JSON envelopes for every API response.

Success: ``{success: true, message, timestamp, data?}``
Error:   ``{success: false, error, timestamp, details?}``
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10


def _timestamp() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def success_body(data: Any = None, message: str = "Success") -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "message": message, "timestamp": _timestamp()}
    if data is not None:
        body["data"] = jsonable_encoder(data)
    return body


def error_body(message: str, details: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "error": message, "timestamp": _timestamp()}
    if details:
        body["details"] = jsonable_encoder(details)
    return body


def pagination_meta(*, page: int | None, limit: int | None, total: int | None) -> dict[str, int]:
    page = page or DEFAULT_PAGE
    limit = limit or DEFAULT_LIMIT
    total = total or 0
    return {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)}


def success(
    data: Any = None,
    message: str = "Success",
    status_code: int = 200,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(success_body(data, message), status_code=status_code, headers=headers)


def created(data: Any, message: str = "Created") -> JSONResponse:
    return success(data, message, status_code=201)


def updated(data: Any, message: str = "Updated") -> JSONResponse:
    return success(data, message)


def deleted(message: str = "Deleted") -> JSONResponse:
    return success(None, message)


def paginated(
    items: list[Any],
    *,
    page: int | None,
    limit: int | None,
    total: int | None,
    message: str = "Data retrieved",
) -> JSONResponse:
    return success(
        {"items": items, "pagination": pagination_meta(page=page, limit=limit, total=total)},
        message,
    )


def error(
    message: str = "Internal server error",
    status_code: int = 500,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(error_body(message, details), status_code=status_code, headers=headers)


def bad_request(message: str = "Invalid request", details: Any = None) -> JSONResponse:
    return error(message, 400, details)


def unauthorized(message: str = "Not authorized", details: Any = None) -> JSONResponse:
    return error(message, 401, details)


def forbidden(message: str = "Access denied", details: Any = None) -> JSONResponse:
    return error(message, 403, details)


def not_found(message: str = "Resource not found", details: Any = None) -> JSONResponse:
    return error(message, 404, details)


def conflict(message: str = "Conflicting data", details: Any = None) -> JSONResponse:
    return error(message, 409, details)


def too_many_requests(
    message: str = "Too many requests",
    retry_after_seconds: int | None = None,
    details: Any = None,
) -> JSONResponse:
    headers = {"Retry-After": str(retry_after_seconds)} if retry_after_seconds else None
    return error(message, 429, details, headers=headers)
