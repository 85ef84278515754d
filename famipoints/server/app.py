"""
FastAPI application serving the famipoints REST contract from the embedded store.
"""

from __future__ import annotations

import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from famipoints.config import Settings, get_settings, is_configured
from famipoints.db import DatabaseClient
from famipoints.errors import (
    BackendError,
    ConfigurationError,
    InvalidCredentialsError,
    NotFoundError,
    PermissionDeniedError,
)
from famipoints.server.routes import router

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"data": None, "error": message, "message": message},
    )


def _status_for(exc: BackendError) -> int:
    if isinstance(exc, InvalidCredentialsError):
        return 401
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, PermissionDeniedError):
        return 403
    return 400


async def _backend_error_handler(request: Request, exc: BackendError) -> JSONResponse:
    logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return _error_response(_status_for(exc), str(exc))


async def _database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("%s %s failed", request.method, request.url.path)
    message = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    return _error_response(400, message)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    )
    return _error_response(422, problems or "Invalid request")


def create_app(
    settings: Optional[Settings] = None, database: Optional[DatabaseClient] = None
) -> FastAPI:
    settings = settings or get_settings()
    if database is None:
        if not is_configured(settings.database_url):
            raise ConfigurationError("FAMIPOINTS_DATABASE_URL is required to run the server")
        database = DatabaseClient(settings.database_url)

    app = FastAPI(title="famipoints API", version="0.1.0")
    app.state.settings = settings
    app.state.database = database
    app.add_exception_handler(BackendError, _backend_error_handler)
    app.add_exception_handler(SQLAlchemyError, _database_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.include_router(router, prefix=settings.api_prefix)
    return app


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
