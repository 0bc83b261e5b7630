"""FastAPI server for ERP sales documents.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import (
    health,
    documents,
    templates,
    connections,
)
from connectors.connection_store import init_connection_db
from core.observability.logging import configure_from_settings, get_logger
from documents.db import init_document_db
from sales_engine.db import init_template_db

logger = get_logger(__name__)


def init_databases() -> None:
    """Create every table the API reads or writes."""
    init_template_db()
    init_document_db()
    init_connection_db()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_from_settings()
    init_databases()
    logger.info("Sales document API starting up...")

    yield

    # Shutdown
    logger.info("Sales document API shutting down...")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="ERP Sales Document API",
        description="Generates ERP sales documents from marketplace orders and sends them to the ERP",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(documents.router, prefix="/erp/documents", tags=["ERP Documents"])
    app.include_router(templates.router, prefix="/erp-config", tags=["ERP Sales Templates"])
    app.include_router(connections.router, prefix="/erp-config", tags=["ERP Connections"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
