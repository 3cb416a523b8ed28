from __future__ import annotations

from unittest.mock import patch

from conftest import make_image_bytes
from menu_digitalizer import main
from menu_digitalizer.core.errors import PersistenceError

MODEL_REPLY = '{"restaurant_name": "Cafe X", "items": [{"name": "Tea", "price": "$2", "category": "Drinks"}]}'


def _upload(client, headers=None, data: bytes | None = None):
    payload = data if data is not None else make_image_bytes((2400, 1200), "JPEG")
    return client.post(
        "/api/menus/upload",
        files={"file": ("menu.jpg", payload, "image/jpeg")},
        headers=headers or {},
    )


def test_anonymous_upload_returns_menu_without_saving(client, session_store) -> None:
    with patch(
        "menu_digitalizer.extraction.request_menu_extraction",
        return_value=MODEL_REPLY,
    ) as request_extraction:
        response = _upload(client)

    assert response.status_code == 200
    body = response.json()
    assert body["session_id"] is None
    assert body["menu"]["restaurant_name"] == "Cafe X"
    item = body["menu"]["items"][0]
    assert item["name"] == "Tea"
    assert item["id"]

    image_b64, media_type = request_extraction.call_args.args
    assert media_type == "image/jpeg"
    assert image_b64

    image = client.get(body["image_url"])
    assert image.status_code == 200
    assert image.headers["content-type"] == "image/jpeg"


def test_signed_in_upload_is_auto_saved(client, session_store, alice_headers) -> None:
    with patch(
        "menu_digitalizer.extraction.request_menu_extraction",
        return_value=MODEL_REPLY,
    ):
        response = _upload(client, alice_headers)

    assert response.status_code == 200
    body = response.json()
    saved = session_store.list("user-alice")
    assert [record.id for record in saved] == [body["session_id"]]
    assert saved[0].restaurant_name == "Cafe X"
    assert saved[0].image_urls == [body["image_url"]]
    assert saved[0].menu_data["items"][0]["id"] == body["menu"]["items"][0]["id"]


def test_auto_save_failure_does_not_block_menu(client, session_store, alice_headers) -> None:
    with (
        patch(
            "menu_digitalizer.extraction.request_menu_extraction",
            return_value=MODEL_REPLY,
        ),
        patch.object(session_store, "save", side_effect=PersistenceError("db down")),
    ):
        response = _upload(client, alice_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["session_id"] is None
    assert body["menu"]["items"][0]["name"] == "Tea"


def test_unreadable_upload_is_rejected_before_any_request(client) -> None:
    with patch("menu_digitalizer.extraction.request_menu_extraction") as request_extraction:
        response = _upload(client, data=b"not an image at all")

    assert response.status_code == 400
    assert response.json() == {"error": "Could not read image"}
    request_extraction.assert_not_called()
    assert not main.guard.is_pending("addr:testclient")


def test_second_upload_while_pending_is_rejected(client, alice_headers) -> None:
    main.guard.acquire("user-alice")
    try:
        with patch("menu_digitalizer.extraction.request_menu_extraction") as request_extraction:
            response = _upload(client, alice_headers)
    finally:
        main.guard.release("user-alice")

    assert response.status_code == 409
    assert response.json() == {"error": "An extraction is already in progress"}
    request_extraction.assert_not_called()


def test_failed_extraction_releases_guard(client, alice_headers) -> None:
    with patch(
        "menu_digitalizer.extraction.request_menu_extraction",
        return_value="no menu here",
    ):
        response = _upload(client, alice_headers)

    assert response.status_code == 500
    assert response.json()["details"] == "no menu here"
    assert not main.guard.is_pending("user-alice")


def test_image_route_rejects_unknown_names(client) -> None:
    assert client.get("/api/images/..%2Fsecret.txt").status_code == 404
    assert client.get(f"/api/images/{'0' * 32}.jpg").status_code == 404


def test_upload_normalizes_loose_scalar_fields(client) -> None:
    reply = '{"restaurant_name": "X", "items": [{"name": 42, "price": 3, "description": 7, "ingredients": ["a", null]}]}'

    with patch("menu_digitalizer.extraction.request_menu_extraction", return_value=reply):
        response = _upload(client)

    assert response.status_code == 200
    item = response.json()["menu"]["items"][0]
    assert item["name"] == "42"
    assert item["price"] == "3"
    assert item["description"] == "7"
    assert item["ingredients"] == ["a"]


def test_upload_with_non_menu_shape_returns_raw_reply(client) -> None:
    reply = '{"restaurant_name": "X", "items": "soup of the day"}'

    with patch("menu_digitalizer.extraction.request_menu_extraction", return_value=reply):
        response = _upload(client)

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to parse menu data", "details": reply}
