"""
Main FastAPI application for the Luvia product assistant.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import get_settings
from database.session import close_db, init_db

from .middleware.metrics import MetricsMiddleware, metrics_endpoint
from .routes import chat, handoff
from .services import Services, get_services, initialize_services

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Luvia assistant starting up...")

    # Initialize database (if configured)
    session_factory = None
    if settings.database_url:
        try:
            session_factory = await init_db(
                settings.database_url,
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
            )
            logger.info("Database initialized")
        except Exception as e:
            logger.warning(f"Database init failed (running without DB): {e}")

    initialize_services(session_factory)
    logger.info("Luvia assistant ready")
    yield
    logger.info("Luvia assistant shutting down...")

    if session_factory is not None:
        await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.api_title,
        description="Product assistant for infoproduct sales and support with "
                    "product disambiguation, guardrails and human escalation.",
        version=settings.api_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics middleware
    app.add_middleware(MetricsMiddleware)

    app.include_router(chat.router, prefix="/api/v1", tags=["Chat"])
    app.include_router(handoff.router, prefix="/api/v1", tags=["Handoff"])

    # --- Prometheus metrics endpoint ---
    app.get("/metrics", tags=["Monitoring"])(metrics_endpoint)

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "service": "Luvia Product Assistant",
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
        }

    # Health check
    @app.get("/health")
    async def health(services: Services = Depends(get_services)):
        return {
            "status": "healthy" if services.is_ready and services.search is not None else "degraded",
            "services": services.health(),
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
