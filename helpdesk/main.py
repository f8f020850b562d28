"""
Helpdesk AI - Main Application
==============================

AI ticket pipeline for a multi-tenant support desk.

Modules:
- Pipeline: moderation, embeddings, routing, resolution and knowledge-base
  maintenance for support tickets

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Orchestrator, services and DTOs
- Domain: Entities, output schemas, prompts and chunking
- Infrastructure: Database, LLM, vector store
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from helpdesk.config import settings
from helpdesk.core import ApplicationException
from helpdesk.infrastructure.database import close_database, create_tables, init_database
from helpdesk.infrastructure.llm import create_llm_client
from helpdesk.infrastructure.vectorstore import create_knowledge_base_store
from helpdesk.pipeline.infrastructure import build_pipeline
from helpdesk.pipeline.interfaces import pipeline_router
from helpdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    MetricsMiddleware,
    register_exception_handlers,
)
from helpdesk.shared.infrastructure.grafana import GrafanaOTLPExporter
from helpdesk.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Initialize Grafana OTLP exporter
    4. Initialize LLM client and knowledge-base store
    5. Assemble the ticket pipeline

    SHUTDOWN:
    1. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk AI", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Tables are created for development; production uses migrations
    logger.info("Creating database tables")
    try:
        await create_tables()
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    metrics = GrafanaOTLPExporter(
        host=settings.grafana_host,
        api_key=settings.grafana_api_key,
        instance_id=settings.grafana_instance_id,
        service_name=settings.app_name,
        service_version=settings.app_version,
        environment=settings.environment
    )
    app.state.metrics = metrics

    logger.info("Initializing LLM client", extra={"provider": settings.llm_provider})
    try:
        llm_client = create_llm_client(settings, metrics=metrics)
    except ApplicationException as e:
        logger.warning(f"LLM client initialization failed: {e.message}")
        llm_client = None

    logger.info("Initializing knowledge base store", extra={"backend": settings.vector_store})
    knowledge_store = create_knowledge_base_store(settings)
    try:
        await knowledge_store.initialize()
    except ApplicationException as e:
        logger.warning(f"Knowledge base store not available: {e.message}")
    app.state.knowledge_store = knowledge_store

    if llm_client is not None:
        app.state.pipeline = build_pipeline(llm_client, knowledge_store, settings, metrics=metrics)
    else:
        app.state.pipeline = None
        logger.warning("Ticket pipeline not available - no LLM client")

    logger.info("Helpdesk AI started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Helpdesk AI")
    await close_database()
    logger.info("Helpdesk AI shutdown complete")


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware and routes."""
    app = FastAPI(
        title="Helpdesk AI API",
        description="""
        ## AI Ticket Pipeline

        **Endpoints:**
        - `POST /tickets/{id}/process` - Moderate, embed and route a new ticket
        - `POST /tickets/{id}/resolve` - Resolve a ticket and update the knowledge base
        - `POST /tickets/{id}/messages/{message_id}/process` - Answer a customer message (background)
        - `POST /tickets/{id}/preview` - Draft an AI reply without posting it
        - `PUT /knowledge/{source_type}/{source_id}` - Replace a knowledge source
        """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    app.add_middleware(CorrelationIDMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)
    register_exception_handlers(app)

    # === Include Module Routers ===
    app.include_router(pipeline_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Reports pipeline availability and the knowledge-base chunk count.
        """
        checks = {
            "pipeline": "available" if getattr(request.app.state, "pipeline", None) else "not_configured",
            "knowledge_base": "initializing"
        }

        store = getattr(request.app.state, "knowledge_store", None)
        if store is not None:
            try:
                count = await store.get_document_count()
                checks["knowledge_base"] = f"available ({count} chunks)"
            except ApplicationException as e:
                checks["knowledge_base"] = f"error: {e.message}"

        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "Helpdesk AI",
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health"
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
