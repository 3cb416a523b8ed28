from __future__ import annotations

import json
from typing import Any

import structlog

from menu_digitalizer.core.errors import MenuParseError

logger = structlog.get_logger(__name__)


def find_json_object(text: str) -> str | None:
    """
    Return the first balanced top-level ``{...}`` span in ``text``.

    Braces inside JSON string literals are ignored. Returns None when there is
    no opening brace or the first object never closes.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def parse_menu_reply(text: str) -> dict[str, Any]:
    """
    Extract the menu JSON object from a model reply.

    Surrounding prose and markdown fences are tolerated; malformed JSON inside
    the object is not repaired.

    Raises:
        MenuParseError: If no object is found or it fails to decode. The
            error keeps the full reply in ``raw_text``.
    """
    span = find_json_object(text)
    if span is None:
        logger.warning("menu_reply_without_json", reply_length=len(text))
        raise MenuParseError("No JSON object found in model reply", raw_text=text)

    try:
        data = json.loads(span)
    except json.JSONDecodeError as exc:
        logger.warning("menu_reply_invalid_json", reply_length=len(text), error=str(exc))
        raise MenuParseError(f"Invalid JSON in model reply: {exc}", raw_text=text) from exc

    return data
