"""
FastAPI application entry point for the homework backend.
"""

from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from backend.config import get_settings, parse_cors_origins
from backend.dependencies import close_db_client, get_db_client
from backend.errors import HomeworkError, Unauthenticated, ValidationError
from backend.routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    get_db_client()
    if not settings.google_client_id:
        logger.warning("GOOGLE_CLIENT_ID is not set; Google Sign-In will not work")
    logger.info("Homework backend ready, API under %s", settings.api_prefix)
    try:
        yield
    finally:
        logger.info("Shutting down, closing database")
        close_db_client()


async def homework_error_handler(request: Request, exc: HomeworkError):
    if exc.status_code < 500:
        logger.warning(
            "%s %s rejected: %s", request.method, request.url.path, exc.message
        )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(
        status_code=exc.status_code, content=exc.to_dict(), headers=headers
    )


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
):
    """Report unparseable request bodies in the same shape as store validation errors."""
    errors = exc.errors()
    error = errors[0] if errors else {}
    # JSON decode errors carry a character offset in loc; keep only names.
    location = [
        part for part in error.get("loc", ()) if isinstance(part, str) and part != "body"
    ]
    field = ".".join(location) or "body"
    message = f"Malformed request: {error.get('msg', 'invalid body')}"
    return await homework_error_handler(request, ValidationError(message, field=field))


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Homework Tracker Backend", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_cors_origins(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(HomeworkError, homework_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.include_router(router, prefix=settings.api_prefix)
    if settings.static_dir:
        # Mounted last so the API routes take precedence.
        app.mount(
            "/", StaticFiles(directory=settings.static_dir, html=True), name="static"
        )
    return app


app = create_app()


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Homework tracker backend")
    parser.add_argument("--host", type=str, default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument(
        "--log-level",
        type=str,
        default=settings.log_level,
        help="Python logging level name",
    )
    parser.add_argument(
        "--reload", action="store_true", help="Restart on code changes"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )
    logger.info("Starting server at http://%s:%d", args.host, args.port)
    uvicorn.run(
        "backend.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
