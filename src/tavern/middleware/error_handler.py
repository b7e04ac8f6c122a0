"""Global error handlers: domain errors and HTTP errors as consistent JSON."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tavern.errors import PersistenceError, TavernError

logger = structlog.get_logger()


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers.

    Domain errors map to status codes by kind: validation 422, not found 404,
    duplicate 409, persistence 503. The body carries the message plus the
    error's structured fields.
    """

    @app.exception_handler(TavernError)
    async def tavern_error_handler(request: Request, exc: TavernError) -> JSONResponse:
        if isinstance(exc, PersistenceError):
            logger.error("persistence_error_response", path=request.url.path, operation=exc.operation)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": str(exc), **exc.to_dict()},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "error": "validation_error", "errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions: always JSON, never a traceback."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
