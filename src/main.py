"""Document numbering FastAPI application."""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import DBAPIError

from src.core.config import settings
from src.core.database.session import engine
from src.core.documents.router import router as document_numbers_router
from src.core.exceptions import AppException
from src.core.exceptions.handlers import (
    app_exception_handler,
    http_exception_handler,
    sqlalchemy_db_error_handler,
    validation_exception_handler,
)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting document numbering service (%s)", settings.app_env)
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="Document Numbering",
        description="Gapless yearly numbers for invoices, contracts and HR documents",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(DBAPIError, sqlalchemy_db_error_handler)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    app.include_router(document_numbers_router, prefix="/api/v1")

    return app


app = create_app()


def run() -> None:
    """Serve the app with uvicorn (console script `docnumbers`)."""
    uvicorn.run("src.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
