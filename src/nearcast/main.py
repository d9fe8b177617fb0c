"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from nearcast.config import get_settings
from nearcast.database import close_db, get_session_factory, init_db
from nearcast.geo.nearby import NearbyResolver
from nearcast.health.router import router as health_router
from nearcast.middleware import setup_middleware
from nearcast.notifications.analytics import RedisAnalyticsSink
from nearcast.notifications.coordinator import FanoutCoordinator
from nearcast.notifications.router import router as notifications_router
from nearcast.notifications.store import SqlNotificationStore
from nearcast.push.dispatcher import PushDispatcher
from nearcast.push.providers import create_gateways
from nearcast.push.router import router as push_router
from nearcast.safety.router import router as safety_router
from nearcast.ws.manager import ConnectionManager
from nearcast.ws.router import router as ws_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)

    store = SqlNotificationStore(get_session_factory())
    connections = ConnectionManager()
    http_client = httpx.AsyncClient(http2=True, timeout=settings.push_timeout_seconds)
    analytics = RedisAnalyticsSink.from_url(
        settings.redis_url,
        stream=settings.analytics_stream,
        maxlen=settings.analytics_stream_maxlen,
        max_connections=settings.analytics_redis_max_connections,
    )
    dispatcher = PushDispatcher(store, create_gateways(settings, http_client), analytics)
    resolver = NearbyResolver(store)

    app.state.store = store
    app.state.connections = connections
    app.state.analytics = analytics
    app.state.resolver = resolver
    app.state.coordinator = FanoutCoordinator(store, connections, dispatcher, resolver)

    yield

    await http_client.aclose()
    await analytics.aclose()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Nearcast API",
        description="Proximity-aware notification fan-out: live events, push delivery and safety alerts",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(notifications_router)
    app.include_router(push_router)
    app.include_router(safety_router)
    app.include_router(ws_router)

    return app


app = create_app()
