"""
FastAPI application factory.

The ReviewService and its store are created in the lifespan and kept on
``app.state``; nothing is held at module level. Tests pass a ready-made
service to create_app() instead.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from codelens_core.config import DEFAULT_CONFIG
from codelens_core.errors import ValidationError
from codelens_core.providers import get_provider
from codelens_core.service import ReviewService
from codelens_store.base import BaseStore
from codelens_store.errors import InvalidTransitionError, ReviewNotFoundError
from codelens_store.memory import MemoryStore
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from codelens_api.routers import health, repair, reviews

logger = logging.getLogger(__name__)


def _build_store(config: dict) -> BaseStore:
    """Instantiate the configured store from .codelens.yml settings.

    Store selection:
      store: redis  → RedisStore  (redis_url, or CODELENS_REDIS_URL)
      store: sqlite → SQLiteStore (store_path, default .codelens.db)
      (default)     → MemoryStore (single process only)

    This factory lives in the API package so neither codelens_core nor
    codelens_store know about the config format.
    """
    store_type = config.get("store", "memory")
    ttl = config.get("ttl_seconds", DEFAULT_CONFIG["ttl_seconds"])

    if store_type == "redis":
        from codelens_store.redis import RedisStore

        return RedisStore(url=config.get("redis_url", DEFAULT_CONFIG["redis_url"]), ttl_seconds=ttl)

    if store_type == "sqlite":
        from codelens_store.sqlite import SQLiteStore

        return SQLiteStore(db_path=config.get("store_path", ".codelens.db"), ttl_seconds=ttl)

    if store_type != "memory":
        logger.warning("Unknown store %r, falling back to the in-memory store", store_type)
    return MemoryStore(ttl_seconds=ttl)


def create_app(config: dict | None = None, service: ReviewService | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = {**DEFAULT_CONFIG, **(config or {})}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if service is not None:
            app.state.service = service
            yield
            return

        logger.info("Initializing review service (model=%s, store=%s)", config["model"], config["store"])
        store = _build_store(config)
        app.state.service = ReviewService(get_provider(config), store, config)
        logger.info("Review service ready")
        try:
            yield
        finally:
            logger.info("Shutting down review service")
            await store.close()

    app = FastAPI(title="codelens", lifespan=lifespan)

    app.include_router(health.router)
    app.include_router(reviews.router)
    app.include_router(repair.router)

    _register_error_handlers(app)
    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        # Malformed bodies (missing or non-string code) are client errors like any other.
        messages = [f"{'.'.join(str(p) for p in e['loc'][1:])}: {e['msg']}" for e in exc.errors()]
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "; ".join(messages)})

    @app.exception_handler(ReviewNotFoundError)
    async def not_found(request: Request, exc: ReviewNotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition(request: Request, exc: InvalidTransitionError):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"error": str(exc)})
