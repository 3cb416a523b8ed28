from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class MenuSessionRecord(BaseModel):
    id: str
    user_id: str
    restaurant_name: str | None = None
    menu_data: dict[str, Any]
    image_urls: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class MenuSessionAdapter(ABC):
    """Saved menu sessions, always scoped to the owning user id."""

    @abstractmethod
    def save(
        self,
        user_id: str,
        menu_data: dict[str, Any],
        restaurant_name: str | None,
        image_url: str | None = None,
    ) -> MenuSessionRecord:
        raise NotImplementedError

    @abstractmethod
    def list(self, user_id: str) -> list[MenuSessionRecord]:
        raise NotImplementedError

    @abstractmethod
    def get(self, user_id: str, session_id: str) -> MenuSessionRecord | None:
        raise NotImplementedError

    @abstractmethod
    def update(
        self,
        user_id: str,
        session_id: str,
        *,
        menu_data: dict[str, Any] | None = None,
        restaurant_name: str | None = None,
    ) -> MenuSessionRecord | None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, user_id: str, session_id: str) -> bool:
        raise NotImplementedError
