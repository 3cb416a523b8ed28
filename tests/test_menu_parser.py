from __future__ import annotations

import pytest

from menu_digitalizer.core.errors import MenuParseError
from menu_digitalizer.menu.parser import find_json_object, parse_menu_reply


def test_plain_json_reply_is_returned_unchanged() -> None:
    reply = '{"restaurant_name": "Cafe X", "items": [{"name": "Tea", "price": "$2"}]}'

    assert parse_menu_reply(reply) == {
        "restaurant_name": "Cafe X",
        "items": [{"name": "Tea", "price": "$2"}],
    }


def test_prose_and_markdown_fences_are_tolerated() -> None:
    reply = (
        "Here is the menu:\n```json\n"
        '{"restaurant_name":"Cafe X","items":[{"name":"Tea","price":"$2"}]}\n'
        "```\nLet me know if you need anything else."
    )

    assert parse_menu_reply(reply) == {
        "restaurant_name": "Cafe X",
        "items": [{"name": "Tea", "price": "$2"}],
    }


def test_braces_inside_strings_do_not_end_the_object() -> None:
    reply = 'Result: {"restaurant_name": "The {Curly} Cafe", "items": [{"name": "Say \\"}\\""}]} done'

    data = parse_menu_reply(reply)

    assert data["restaurant_name"] == "The {Curly} Cafe"
    assert data["items"][0]["name"] == 'Say "}"'


def test_first_balanced_object_wins() -> None:
    reply = '{"restaurant_name": "First", "items": []} and later {"restaurant_name": "Second"}'

    assert parse_menu_reply(reply)["restaurant_name"] == "First"


def test_reply_without_braces_keeps_raw_text() -> None:
    reply = "Sorry, I could not read this menu."

    with pytest.raises(MenuParseError) as excinfo:
        parse_menu_reply(reply)

    assert excinfo.value.raw_text == reply


def test_malformed_json_is_not_repaired() -> None:
    reply = 'Here you go: {"restaurant_name": "Cafe X", "items": [,]}'

    with pytest.raises(MenuParseError) as excinfo:
        parse_menu_reply(reply)

    assert excinfo.value.raw_text == reply


def test_unbalanced_object_is_a_format_error() -> None:
    reply = '{"restaurant_name": "Cafe X", "items": ['

    assert find_json_object(reply) is None
    with pytest.raises(MenuParseError):
        parse_menu_reply(reply)
