from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Any

from menu_digitalizer.sessions.base import MenuSessionAdapter, MenuSessionRecord


class InMemoryMenuSessions(MenuSessionAdapter):
    """Process-local session storage for local development and tests."""

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(
        self,
        user_id: str,
        menu_data: dict[str, Any],
        restaurant_name: str | None,
        image_url: str | None = None,
    ) -> MenuSessionRecord:
        now = datetime.now(timezone.utc)
        row = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "restaurant_name": restaurant_name,
            "menu_data": copy.deepcopy(menu_data),
            "image_urls": [image_url] if image_url else [],
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self._rows[row["id"]] = row
        return MenuSessionRecord(**copy.deepcopy(row))

    def list(self, user_id: str) -> list[MenuSessionRecord]:
        with self._lock:
            # insertion order is creation order
            rows = [
                copy.deepcopy(row)
                for row in reversed(self._rows.values())
                if row["user_id"] == user_id
            ]
        return [MenuSessionRecord(**row) for row in rows]

    def get(self, user_id: str, session_id: str) -> MenuSessionRecord | None:
        with self._lock:
            row = self._rows.get(session_id)
            if row is None or row["user_id"] != user_id:
                return None
            return MenuSessionRecord(**copy.deepcopy(row))

    def update(
        self,
        user_id: str,
        session_id: str,
        *,
        menu_data: dict[str, Any] | None = None,
        restaurant_name: str | None = None,
    ) -> MenuSessionRecord | None:
        with self._lock:
            row = self._rows.get(session_id)
            if row is None or row["user_id"] != user_id:
                return None
            if menu_data is not None:
                row["menu_data"] = copy.deepcopy(menu_data)
            if restaurant_name is not None:
                row["restaurant_name"] = restaurant_name
            row["updated_at"] = datetime.now(timezone.utc)
            return MenuSessionRecord(**copy.deepcopy(row))

    def delete(self, user_id: str, session_id: str) -> bool:
        with self._lock:
            row = self._rows.get(session_id)
            if row is None or row["user_id"] != user_id:
                return False
            del self._rows[session_id]
            return True
