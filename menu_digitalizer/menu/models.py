from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNCATEGORIZED = "Uncategorized"
LIST_FIELDS = ("ingredients", "allergens", "dietary")
TEXT_FIELDS = ("name", "price", "description", "category")


def new_item_id() -> str:
    return uuid.uuid4().hex


def _scalar_to_str(value: Any) -> Any:
    # Models sometimes return numbers or booleans where text is expected.
    if isinstance(value, (int, float, bool)):
        return str(value)
    return value


def _is_category_group(entry: Any) -> bool:
    return isinstance(entry, dict) and "category_name" in entry and isinstance(entry.get("items"), list)


def _group_mixed_entries(entries: list[Any]) -> list[Any]:
    """
    Fold a list mixing category groups and bare items into groups only.

    A bare item joins the group named after its category, or a new group
    when none exists yet. Group order follows first appearance.
    """
    groups: dict[str, dict[str, Any]] = {}
    for entry in entries:
        if _is_category_group(entry):
            name = entry.get("category_name")
            name = UNCATEGORIZED if name is None else str(name)
            group = groups.setdefault(name, {"category_name": name, "items": []})
            group["items"].extend(entry["items"])
        else:
            name = entry.get("category") if isinstance(entry, dict) else None
            name = str(name) if name else UNCATEGORIZED
            groups.setdefault(name, {"category_name": name, "items": []})["items"].append(entry)
    return list(groups.values())


class MenuItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    name: str = ""
    price: str | None = None
    description: str | None = None
    category: str | None = None
    ingredients: list[str] = Field(default_factory=list)
    allergens: list[str] = Field(default_factory=list)
    dietary: list[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def coerce_name(cls, value: Any) -> Any:
        return "" if value is None else _scalar_to_str(value)

    @field_validator("price", "description", "category", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        return _scalar_to_str(value)

    @field_validator("ingredients", "allergens", "dietary", mode="before")
    @classmethod
    def coerce_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, list):
            return [_scalar_to_str(entry) for entry in value if entry is not None]
        return value

    @property
    def category_label(self) -> str:
        return self.category or UNCATEGORIZED


class MenuCategory(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category_name: str
    items: list[MenuItem]

    @field_validator("category_name", mode="before")
    @classmethod
    def coerce_category_name(cls, value: Any) -> Any:
        return UNCATEGORIZED if value is None else _scalar_to_str(value)


class Menu(BaseModel):
    model_config = ConfigDict(extra="ignore")

    restaurant_name: str | None = None
    items: list[MenuCategory] | list[MenuItem] = Field(
        default_factory=list, union_mode="left_to_right"
    )

    @field_validator("restaurant_name", mode="before")
    @classmethod
    def coerce_restaurant_name(cls, value: Any) -> Any:
        return _scalar_to_str(value)

    @field_validator("items", mode="before")
    @classmethod
    def coerce_items(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        if any(_is_category_group(entry) for entry in value) and not all(
            _is_category_group(entry) for entry in value
        ):
            return _group_mixed_entries(value)
        return value

    @property
    def is_nested(self) -> bool:
        return bool(self.items) and isinstance(self.items[0], MenuCategory)

    def iter_items(self):
        """Yield (category label, item) pairs in logical order."""
        for entry in self.items:
            if isinstance(entry, MenuCategory):
                for item in entry.items:
                    yield entry.category_name, item
            else:
                yield entry.category_label, entry

    def export_dict(self) -> dict[str, Any]:
        """Plain dict of the menu without internal item ids."""
        item_fields = {"id"}
        if self.is_nested:
            exclude: dict[str, Any] = {"items": {"__all__": {"items": {"__all__": item_fields}}}}
        else:
            exclude = {"items": {"__all__": item_fields}}
        return self.model_dump(mode="json", exclude=exclude)
