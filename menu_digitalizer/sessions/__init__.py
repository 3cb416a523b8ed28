from menu_digitalizer.core.config import settings
from menu_digitalizer.sessions.base import MenuSessionAdapter, MenuSessionRecord
from menu_digitalizer.sessions.memory import InMemoryMenuSessions
from menu_digitalizer.sessions.postgres import PostgresMenuSessions


def create_session_adapter() -> MenuSessionAdapter:
    if settings.session_backend == "memory":
        return InMemoryMenuSessions()
    return PostgresMenuSessions()


__all__ = [
    "InMemoryMenuSessions",
    "MenuSessionAdapter",
    "MenuSessionRecord",
    "PostgresMenuSessions",
    "create_session_adapter",
]
