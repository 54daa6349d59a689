from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from app.api.router import api_router
from app.core.config import get_settings
from app.core.errors import JobBoardError
from app.core.telemetry import TelemetryRuntime, configure_api_logging, setup_api_telemetry, shutdown_api_telemetry
from app.schemas.common import ErrorEnvelope
from app.services.repository import get_repository

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)

_HTTP_ERROR_KINDS = {
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "invalid_input",
    409: "conflict",
    422: "invalid_input",
    503: "upstream",
}


@asynccontextmanager
async def lifespan(_: FastAPI):
    try:
        yield
    finally:
        if _telemetry_runtime is not None:
            shutdown_api_telemetry(app, _telemetry_runtime)
        # Ensure asyncpg pool shuts down on app teardown.
        await get_repository().close()
        get_repository.cache_clear()


configure_api_logging()
app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_api_telemetry(app, settings)


def _error_response(status_code: int, error_kind: str, message: str, reason: str | None = None) -> JSONResponse:
    body = ErrorEnvelope(error_kind=error_kind, message=message, reason=reason)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(JobBoardError)
async def job_board_error_handler(request: Request, exc: JobBoardError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("request failed path=%s kind=%s message=%s", request.url.path, exc.error_kind, exc.message)
    return _error_response(exc.status_code, exc.error_kind, exc.message, exc.reason)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    error_kind = _HTTP_ERROR_KINDS.get(exc.status_code, "internal" if exc.status_code >= 500 else "invalid_input")
    return _error_response(exc.status_code, error_kind, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    message = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()) if part != 'body')}: {error.get('msg')}"
        for error in errors
    )
    return _error_response(422, "invalid_input", message or "invalid request")


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
