from __future__ import annotations

import re
from typing import Any

import structlog

from menu_digitalizer.core.errors import ItemNotFoundError, MenuEditError
from menu_digitalizer.menu.models import (
    LIST_FIELDS,
    TEXT_FIELDS,
    Menu,
    MenuItem,
    new_item_id,
)

logger = structlog.get_logger(__name__)

CURRENCY_RE = re.compile(r"[$€£¥₹₩₽₺₫฿¢]|\b(?:USD|EUR|GBP|JPY|CHF|CAD|AUD|CZK|PLN|UAH)\b")

ItemRef = int | str


def split_list_value(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def normalize_price(value: str, currency_symbol: str | None) -> str:
    price = value.strip()
    if price and currency_symbol and not CURRENCY_RE.search(price):
        price = f"{currency_symbol}{price}"
    return price


class MenuStore:
    """
    The menu currently being edited.

    Each mutation replaces the held Menu with a modified deep copy, so a value
    obtained from ``menu`` never changes afterwards.
    """

    def __init__(
        self,
        menu: Menu | dict[str, Any] | None = None,
        *,
        currency_symbol: str | None = None,
    ) -> None:
        self.currency_symbol = currency_symbol
        self._menu: Menu | None = None
        if menu is not None:
            self.load(menu)

    @property
    def menu(self) -> Menu | None:
        return self._menu

    def load(self, menu: Menu | dict[str, Any]) -> Menu:
        loaded = menu.model_copy(deep=True) if isinstance(menu, Menu) else Menu.model_validate(menu)
        for _, item in loaded.iter_items():
            if not item.id:
                item.id = new_item_id()
        self._menu = loaded
        return loaded

    def clear(self) -> None:
        self._menu = None

    def rename(self, restaurant_name: str | None) -> Menu:
        menu = self._copy()
        name = restaurant_name.strip() if restaurant_name else None
        menu.restaurant_name = name or None
        self._menu = menu
        return menu

    def set_field(self, item_ref: ItemRef, field: str, value: str) -> Menu:
        if field not in LIST_FIELDS and field not in TEXT_FIELDS:
            raise MenuEditError(f"Field {field!r} cannot be edited")

        menu = self._copy()
        item = self._locate(menu, item_ref)
        if field in LIST_FIELDS:
            setattr(item, field, split_list_value(value))
        elif field == "price":
            item.price = normalize_price(value, self.currency_symbol)
        else:
            setattr(item, field, value.strip())

        self._menu = menu
        logger.debug("menu_item_updated", item_id=item.id, field=field)
        return menu

    def delete_item(self, item_ref: ItemRef) -> Menu:
        menu = self._copy()
        item = self._locate(menu, item_ref)

        if menu.is_nested:
            groups = []
            for group in menu.items:
                group.items = [entry for entry in group.items if entry is not item]
                if group.items:
                    groups.append(group)
            menu.items = groups
        else:
            menu.items = [entry for entry in menu.items if entry is not item]

        self._menu = menu
        logger.debug("menu_item_deleted", item_id=item.id)
        return menu

    def group_by_category(self) -> dict[str, list[MenuItem]]:
        grouped: dict[str, list[MenuItem]] = {}
        if self._menu is None:
            return grouped
        for category, item in self._menu.iter_items():
            grouped.setdefault(category, []).append(item)
        return grouped

    def category_counts(self) -> dict[str, int]:
        return {category: len(items) for category, items in self.group_by_category().items()}

    @property
    def item_count(self) -> int:
        if self._menu is None:
            return 0
        return sum(1 for _ in self._menu.iter_items())

    def _copy(self) -> Menu:
        if self._menu is None:
            raise MenuEditError("No menu loaded")
        return self._menu.model_copy(deep=True)

    @staticmethod
    def _locate(menu: Menu, item_ref: ItemRef) -> MenuItem:
        if isinstance(item_ref, str):
            for _, item in menu.iter_items():
                if item.id == item_ref:
                    return item
            raise ItemNotFoundError(item_ref)

        if item_ref < 0:
            raise ItemNotFoundError(item_ref)
        if not menu.is_nested:
            if item_ref >= len(menu.items):
                raise ItemNotFoundError(item_ref)
            return menu.items[item_ref]

        offset = 0
        for group in menu.items:
            if item_ref < offset + len(group.items):
                return group.items[item_ref - offset]
            offset += len(group.items)
        raise ItemNotFoundError(item_ref)
