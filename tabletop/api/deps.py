"""Dependencies resolving the per-application services from ``app.state``."""
from starlette.requests import HTTPConnection

from tabletop.config import Settings
from tabletop.game.notifications import NotificationDispatcher


def get_dispatcher(conn: HTTPConnection) -> NotificationDispatcher:
    return conn.app.state.dispatcher


def get_app_settings(conn: HTTPConnection) -> Settings:
    return conn.app.state.settings
