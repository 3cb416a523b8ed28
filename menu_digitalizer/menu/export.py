from __future__ import annotations

import csv
import io
import json
import re
from typing import Literal

from menu_digitalizer.menu.models import Menu, MenuCategory

ExportFormat = Literal["json", "csv"]

CSV_HEADERS = [
    "Category",
    "Item Name",
    "Price",
    "Description",
    "Ingredients",
    "Allergens",
    "Dietary Tags",
]
LIST_SEPARATOR = "; "
FALLBACK_NAME = "menu"

MEDIA_TYPES: dict[str, str] = {
    "json": "application/json",
    "csv": "text/csv",
}

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def to_json(menu: Menu) -> str:
    return json.dumps(menu.export_dict(), indent=2, ensure_ascii=False)


def to_csv(menu: Menu) -> str:
    buffer = io.StringIO()
    buffer.write(",".join(CSV_HEADERS) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for entry in menu.items:
        group = entry.category_name if isinstance(entry, MenuCategory) else None
        items = entry.items if isinstance(entry, MenuCategory) else [entry]
        for item in items:
            writer.writerow(
                [
                    item.category or group or "",
                    item.name or "",
                    item.price or "",
                    item.description or "",
                    LIST_SEPARATOR.join(item.ingredients),
                    LIST_SEPARATOR.join(item.allergens),
                    LIST_SEPARATOR.join(item.dietary),
                ]
            )
    return buffer.getvalue()


def export_filename(menu: Menu, fmt: ExportFormat) -> str:
    base = _UNSAFE_FILENAME_CHARS.sub("_", menu.restaurant_name or "").strip() or FALLBACK_NAME
    return f"{base}_data.{fmt}"


def render(menu: Menu, fmt: ExportFormat) -> str:
    if fmt == "json":
        return to_json(menu)
    if fmt == "csv":
        return to_csv(menu)
    raise ValueError(f"Unsupported export format: {fmt}")
