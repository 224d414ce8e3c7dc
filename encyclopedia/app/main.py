from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from encyclopedia.app.api import responses
from encyclopedia.app.api.routes import router
from encyclopedia.app.dependencies import get_database, get_settings, get_telemetry
from encyclopedia.app.errors import DomainError, TooManyRequestsError
from encyclopedia.app.logging_config import configure_application_logging

LOGGER = logging.getLogger("encyclopedia.api")

_ERROR_RESPONSES: dict[int, Callable[[str, Any], JSONResponse]] = {
    400: responses.bad_request,
    401: responses.unauthorized,
    403: responses.forbidden,
    404: responses.not_found,
    409: responses.conflict,
}


def health_check() -> JSONResponse:
    return responses.success({"status": "ok"}, "Service healthy")


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    get_database()
    LOGGER.info("encyclopedia api started db_path=%s", settings.db_path)
    yield


async def domain_error_handler(_: Request, exc: Exception) -> JSONResponse:
    error = cast(DomainError, exc)
    if isinstance(error, TooManyRequestsError):
        return responses.too_many_requests(error.message, error.retry_after_seconds, error.details)
    build_response = _ERROR_RESPONSES.get(error.status_code)
    if build_response is not None:
        return build_response(error.message, error.details)
    if error.status_code >= 500:
        LOGGER.error("request failed error_code=%s message=%s", error.error_code, error.message)
    return responses.error(error.message, error.status_code, error.details)


async def request_validation_error_handler(_: Request, exc: Exception) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": str(error.get("msg", "")),
        }
        for error in cast(RequestValidationError, exc).errors()
    ]
    return responses.bad_request("Invalid request", details)


async def unhandled_error_handler(_: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("unhandled error error_type=%s", type(exc).__name__)
    return responses.error()


def create_app() -> FastAPI:
    app = FastAPI(title="Encyclopedia API", version="0.1.0", lifespan=app_lifespan)
    settings = get_settings()

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit(
            "http.request.start",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit(
                "http.request.error",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        else:
            response.headers["X-Request-ID"] = request_id
            telemetry.emit(
                "http.request.finish",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                status_code=response.status_code,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    return app


app = create_app()
