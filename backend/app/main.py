# app/main.py
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.clock import Clock, tenant_clock
from app.core.config import configure_logging, get_settings
from app.core.database import dispose_engine, get_db, get_session_factory

#Import Routers
from app.api.v1 import tenants
from app.api.v1 import tools
from app.tools.executor import ToolExecutor
from app.tools.tool_definitions import build_default_catalog
from app.tools.tool_router import ToolRouter

logger = logging.getLogger(__name__)


def create_app(
    session_factory: Optional[async_sessionmaker] = None,
    clock_factory: Callable[[str], Clock] = tenant_clock,
) -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        factory = session_factory
        if factory is None and settings.database_url:
            factory = get_session_factory()

        catalog = build_default_catalog()
        executor = ToolExecutor(
            catalog,
            default_timeout=settings.tool_timeout_seconds,
            log_session_factory=factory,
            log_executions=settings.tool_execution_logging,
        )
        app.state.tool_catalog = catalog
        app.state.tool_executor = executor
        app.state.tool_router = ToolRouter(executor, session_factory=factory, clock_factory=clock_factory)
        logger.info("Tool catalog ready: %s", catalog.stats())
        try:
            yield
        finally:
            await executor.aclose()
            await dispose_engine()

    # Create FastAPI app
    app = FastAPI(
        title="Secure Booking Tools API",
        description="Tool execution and slot holds for voice assistants",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    #Include routers
    app.include_router(tools.router, prefix="/api/v1", tags=["tools"])
    app.include_router(tenants.router, prefix="/api/v1/tenants", tags=["tenants"])

    if session_factory is not None:
        async def _get_db():
            async with session_factory() as session:
                yield session

        app.dependency_overrides[get_db] = _get_db

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "Secure Booking Tools API",
            "version": "1.0.0",
            "status": "running"
        }

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "environment": settings.app_env
        }

    return app


app = create_app()
