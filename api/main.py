"""
FastAPI main application for the Authors & Books API.
"""

from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.config import APIConfig, config
from api.database import MongoStore
from api.error_handlers import register_error_handlers
from api.routes import authors_router, books_router, health_router
from api.services import build_services
from utilities.logger import setup_logging

logger = structlog.get_logger(__name__)

StoreFactory = Callable[[APIConfig], Awaitable[MongoStore]]


async def connect_store(settings: APIConfig) -> MongoStore:
    return await MongoStore.connect(settings.database_uri, settings.mongodb_database)


def create_app(settings: APIConfig = config, store_factory: Optional[StoreFactory] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration to run with
        store_factory: Coroutine producing the document store; defaults to
            connecting to ``settings.database_uri``
    """
    connect = store_factory or connect_store

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        setup_logging(log_level=settings.log_level, log_format=settings.log_format)
        logger.info("Starting Authors & Books API", env=settings.node_env, prefix=settings.api_prefix)

        store = await connect(settings)
        try:
            await store.ensure_indexes()
            app.state.authors, app.state.books = build_services(store)
            yield
        finally:
            logger.info("Shutting down Authors & Books API")
            store.close()

    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    prefix = f"/{settings.api_prefix}" if settings.api_prefix else ""
    app.include_router(health_router, prefix=prefix)
    app.include_router(authors_router, prefix=prefix)
    app.include_router(books_router, prefix=prefix)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=config.host,
        port=config.port,
        reload=not config.is_production,
        log_level=config.log_level.lower(),
    )
