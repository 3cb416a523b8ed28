from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from pydantic import ValidationError

from menu_digitalizer.core.errors import ExtractionInProgressError, MenuParseError
from menu_digitalizer.llm.vision import request_menu_extraction
from menu_digitalizer.menu.models import Menu
from menu_digitalizer.menu.parser import parse_menu_reply

logger = structlog.get_logger(__name__)


def extract_menu(image_b64: str, media_type: str) -> dict[str, Any]:
    """
    Run one extraction: send the image to the model and parse its reply.

    The decoded object is returned unchanged once it is known to load as a
    Menu, so callers can hand it straight to a MenuStore.

    Raises:
        MenuParseError: If the reply has no JSON object or the object does
            not have the shape of a menu
    """
    logger.info("menu_extraction_started", media_type=media_type)
    reply = request_menu_extraction(image_b64, media_type)
    menu = parse_menu_reply(reply)
    try:
        Menu.model_validate(menu)
    except ValidationError as exc:
        logger.warning("menu_reply_invalid_shape", error_count=exc.error_count())
        raise MenuParseError(f"Model reply is not a menu: {exc}", raw_text=reply) from exc
    items = menu.get("items")
    logger.info(
        "menu_extraction_finished",
        restaurant_name=menu.get("restaurant_name"),
        item_count=len(items) if isinstance(items, list) else 0,
    )
    return menu


class ExtractionGuard:
    """Allows at most one pending extraction per key."""

    def __init__(self) -> None:
        self._pending: set[str] = set()
        self._lock = threading.Lock()

    def acquire(self, key: str) -> None:
        with self._lock:
            if key in self._pending:
                raise ExtractionInProgressError(key)
            self._pending.add(key)

    def release(self, key: str) -> None:
        with self._lock:
            self._pending.discard(key)

    def is_pending(self, key: str) -> bool:
        with self._lock:
            return key in self._pending

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        self.acquire(key)
        try:
            yield
        finally:
            self.release(key)
