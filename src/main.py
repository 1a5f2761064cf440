"""
Message Grouping Service - Main Application
============================================

Turns chat messages into tickets: classify each message, group actionable
ones by topic, and stream ticket changes to dashboards.

Clean Architecture Layers:
- Interfaces: FastAPI controllers and websocket
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, LLM, live-update publisher
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from src.config import settings
from src.core import ApplicationException

# Infrastructure
from src.infrastructure.database import (
    init_database, close_database, create_tables, is_initialized
)
from src.infrastructure.llm import create_llm_client

# Grouping module
from src.grouping.infrastructure import LLMClientAdapter, BroadcastTicketEventPublisher
from src.grouping.interfaces import grouping_routers

# Shared
from src.shared.infrastructure.logging import setup_logging, get_logger
from src.shared.infrastructure.grafana import init_grafana_exporter
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    ResponseTimeMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Initialize LLM client (or fall back to heuristics)
    4. Initialize Grafana exporter
    5. Create live-update publisher

    SHUTDOWN:
    1. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Message Grouping Service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use migrations in production)
    # If the database is down the server still starts; storage endpoints fail
    app.state.database_ready = False
    try:
        await create_tables()
        app.state.database_ready = True
    except Exception as e:
        logger.warning(
            "Database not available - running in degraded mode",
            extra={"error": str(e)}
        )

    logger.info("Initializing LLM client", extra={"provider": settings.llm_provider})
    llm_client = create_llm_client()
    app.state.llm_client = LLMClientAdapter(llm_client) if llm_client else None

    if settings.grafana_host and settings.grafana_api_key and settings.grafana_instance_id:
        init_grafana_exporter(
            host=settings.grafana_host,
            api_key=settings.grafana_api_key,
            instance_id=settings.grafana_instance_id
        )

    app.state.publisher = BroadcastTicketEventPublisher()

    logger.info("Message Grouping Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Message Grouping Service")
    await close_database()
    logger.info("Message Grouping Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Message Grouping API",
    description="""
    ## Chat Message Grouping Service

    Classifies chat messages and groups actionable ones into tickets.

    ---

    ### Intake

    - `POST /slack/events` - Slack Events API webhook (processed in the background)
    - `POST /grouping/messages` - Process one message synchronously
    - `POST /grouping/classify` - Classify without storing

    **Categories:** support, bug, feature_request, question, irrelevant

    ### Tickets

    - `GET /tickets` - Tickets with message counts
    - `GET /tickets/{id}/messages` - Messages of a ticket
    - `PATCH /tickets/{id}` - Update status / is_fixed
    - `DELETE /tickets/{id}` - Delete ticket and its messages

    ### Live updates

    - `WS /ws/tickets` - created, message_added, status_changed, deleted

    ---

    ### Grouping

    A message joins the first open ticket found by:
    1. exact group key
    2. group-key similarity (token overlap and topic families)
    3. full-text search over ticket summaries

    Otherwise a new ticket is created. If grouping fails the message is
    still stored, without a ticket.
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
app.add_middleware(ResponseTimeMiddleware)
app.add_middleware(LoggingMiddleware)
# Added last so it runs first and LoggingMiddleware sees the correlation id
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
for router in grouping_routers:
    app.include_router(router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "llm_client": "available",
                        "live_listeners": 2
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports "degraded" when the database could not be reached at startup.
    """
    database_ready = is_initialized() and getattr(request.app.state, "database_ready", False)
    publisher = getattr(request.app.state, "publisher", None)

    checks = {
        "database": "connected" if database_ready else "unavailable",
        "llm_client": "available" if getattr(request.app.state, "llm_client", None) else "fallback",
        "live_listeners": publisher.subscriber_count if publisher else 0
    }

    return {
        "status": "healthy" if database_ready else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "grouping": {
                "intake": ["/slack/events", "/grouping/messages", "/grouping/classify"],
                "tickets": "/tickets",
                "live_updates": "/ws/tickets"
            }
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
