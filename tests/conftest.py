from __future__ import annotations

import io
import os

os.environ.setdefault("SESSION_BACKEND", "memory")
os.environ.setdefault("ANALYZE_RATE_LIMIT", "1000/minute")
os.environ.setdefault("SENTRY_DSN", "")

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from menu_digitalizer import main
from menu_digitalizer.auth import AuthUser, get_auth_client
from menu_digitalizer.core.config import settings
from menu_digitalizer.core.errors import AuthError
from menu_digitalizer.sessions import InMemoryMenuSessions

TOKENS = {
    "token-alice": AuthUser(id="user-alice", email="alice@example.com"),
    "token-bob": AuthUser(id="user-bob", email="bob@example.com"),
}


class FakeAuthClient:
    def get_user(self, access_token: str) -> AuthUser:
        try:
            return TOKENS[access_token]
        except KeyError:
            raise AuthError("invalid JWT", status_code=401) from None


def make_image_bytes(size: tuple[int, int] = (400, 300), fmt: str = "PNG", mode: str = "RGB") -> bytes:
    color = (200, 120, 40) if mode == "RGB" else 128
    image = Image.new(mode, size, color=color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture()
def session_store() -> InMemoryMenuSessions:
    return InMemoryMenuSessions()


@pytest.fixture()
def client(session_store: InMemoryMenuSessions, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "storage_dir", str(tmp_path / "images"))
    main.app.dependency_overrides[main.get_sessions] = lambda: session_store
    main.app.dependency_overrides[get_auth_client] = FakeAuthClient
    main.sessions = session_store
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
    main.sessions = None


@pytest.fixture()
def alice_headers() -> dict[str, str]:
    return {"Authorization": "Bearer token-alice"}


@pytest.fixture()
def bob_headers() -> dict[str, str]:
    return {"Authorization": "Bearer token-bob"}


@pytest.fixture()
def sample_menu() -> dict:
    return {
        "restaurant_name": "Cafe X",
        "items": [
            {
                "name": "Tea",
                "price": "$2",
                "description": "Black tea",
                "category": "Beverages",
                "ingredients": ["tea leaves", "water"],
                "allergens": [],
                "dietary": ["vegan"],
            },
            {
                "name": "Cheesecake",
                "price": "$6",
                "description": None,
                "category": "Desserts",
                "ingredients": ["cream cheese", "biscuit"],
                "allergens": ["dairy", "gluten"],
                "dietary": ["vegetarian"],
            },
            {
                "name": "Soup of the day",
                "price": None,
                "description": "Ask your server",
                "category": None,
                "ingredients": None,
                "allergens": None,
                "dietary": None,
            },
        ],
    }


@pytest.fixture()
def nested_menu() -> dict:
    return {
        "restaurant_name": "Bistro",
        "items": [
            {
                "category_name": "Starters",
                "items": [
                    {"name": "Bruschetta", "price": "$7"},
                    {"name": "Olives", "price": "$4"},
                ],
            },
            {
                "category_name": "Mains",
                "items": [{"name": "Steak", "price": "$28"}],
            },
            {
                "category_name": "Desserts",
                "items": [{"name": "Tiramisu", "price": "$8"}],
            },
        ],
    }
