"""Shared FastAPI dependencies.

Collaborators are built once by the app lifespan and kept on ``app.state``;
these accessors hand them to routes (HTTP and WebSocket alike) and are the
seam tests override.
"""

from starlette.requests import HTTPConnection

from nearcast.geo.nearby import NearbyResolver
from nearcast.notifications.analytics import AnalyticsSink
from nearcast.notifications.coordinator import FanoutCoordinator
from nearcast.notifications.store import NotificationStore
from nearcast.ws.manager import ConnectionManager


def get_store(conn: HTTPConnection) -> NotificationStore:
    return conn.app.state.store


def get_coordinator(conn: HTTPConnection) -> FanoutCoordinator:
    return conn.app.state.coordinator


def get_resolver(conn: HTTPConnection) -> NearbyResolver:
    return conn.app.state.resolver


def get_connection_manager(conn: HTTPConnection) -> ConnectionManager:
    return conn.app.state.connections


def get_analytics(conn: HTTPConnection) -> AnalyticsSink:
    return conn.app.state.analytics
