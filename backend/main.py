# backend/main.py
"""
Sales Order Management - Main API Entry Point
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, HTTPException

from config.database import SessionLocal, check_database_health, init_database
from config.logging import get_logger, setup_logging
from config.settings import get_settings
from core.exceptions import custom_exception_handler, unhandled_exception_handler
from core.middleware import register_middleware
from api.v1.endpoints import notifications, orders, realtime, teams
from services.change_feed import ChangeFeedWatcher, OrderChangeFeed
from services.realtime import RealtimeHub

settings = get_settings()
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.VERSION}...")
    init_database()

    app.state.hub = RealtimeHub()
    app.state.change_feed = OrderChangeFeed(SessionLocal)
    app.state.change_feed.install()
    app.state.watcher = ChangeFeedWatcher(app.state.change_feed, app.state.hub, settings)
    app.state.watcher.start()

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    await app.state.watcher.stop()
    app.state.change_feed.uninstall()
    await app.state.hub.close()


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Sales order workflow, visibility scoping and realtime fan-out",
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

register_middleware(app)

app.add_exception_handler(HTTPException, custom_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(
    orders.router,
    prefix="/api/orders",
    tags=["Orders"]
)
app.include_router(
    notifications.router,
    prefix="/api/notifications",
    tags=["Notifications"]
)
app.include_router(
    teams.router,
    prefix="/api/teams",
    tags=["Teams"]
)
app.include_router(
    realtime.router,
    tags=["Realtime"]
)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": f"{settings.APP_NAME} API",
        "version": settings.VERSION,
        "status": "operational"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    database_ok = check_database_health()
    watcher = getattr(app.state, "watcher", None)
    return {
        "status": "healthy" if database_ok else "degraded",
        "database": "connected" if database_ok else "unavailable",
        "change_feed": "running" if watcher is not None and watcher.running else "stopped",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.VERSION
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG
    )
