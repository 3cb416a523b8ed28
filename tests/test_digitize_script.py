from __future__ import annotations

import csv
import importlib.util
import io
import json
from pathlib import Path
from unittest.mock import patch

from conftest import make_image_bytes

SCRIPT_PATH = Path(__file__).resolve().parents[1] / "scripts" / "digitize_menu.py"
MODEL_REPLY = '```json\n{"restaurant_name": "Cafe X", "items": [{"name": "Tea", "price": "$2", "dietary": ["vegan"]}]}\n```'


def _load_script():
    spec = importlib.util.spec_from_file_location("digitize_menu", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_script_writes_json_and_csv(tmp_path, capsys) -> None:
    script = _load_script()
    photo = tmp_path / "menu.png"
    photo.write_bytes(make_image_bytes((3000, 1500), "PNG"))
    out_dir = tmp_path / "out"

    with patch(
        "menu_digitalizer.extraction.request_menu_extraction",
        return_value=MODEL_REPLY,
    ) as request_extraction:
        exit_code = script.main([str(photo), "--out", str(out_dir), "--max-dimension", "1200"])

    assert exit_code == 0
    assert request_extraction.call_args.args[1] == "image/png"

    data = json.loads((out_dir / "Cafe X_data.json").read_text(encoding="utf-8"))
    assert data["items"][0] == {
        "name": "Tea",
        "price": "$2",
        "description": None,
        "category": None,
        "ingredients": [],
        "allergens": [],
        "dietary": ["vegan"],
    }
    rows = list(csv.reader(io.StringIO((out_dir / "Cafe X_data.csv").read_text(encoding="utf-8"))))
    assert rows[1] == ["", "Tea", "$2", "", "", "", "vegan"]
    assert "Cafe X_data.json" in capsys.readouterr().out


def test_script_reports_unreadable_image(tmp_path, capsys) -> None:
    script = _load_script()
    photo = tmp_path / "menu.png"
    photo.write_bytes(b"garbage")

    with patch("menu_digitalizer.extraction.request_menu_extraction") as request_extraction:
        exit_code = script.main([str(photo), "--out", str(tmp_path)])

    assert exit_code == 1
    assert "Could not read image" in capsys.readouterr().err
    request_extraction.assert_not_called()


def test_script_reports_raw_reply_on_parse_failure(tmp_path, capsys) -> None:
    script = _load_script()
    photo = tmp_path / "menu.png"
    photo.write_bytes(make_image_bytes())

    with patch(
        "menu_digitalizer.extraction.request_menu_extraction",
        return_value="I see a cat, not a menu.",
    ):
        exit_code = script.main([str(photo), "--out", str(tmp_path)])

    assert exit_code == 1
    assert "I see a cat, not a menu." in capsys.readouterr().err


def test_script_reports_raw_reply_on_non_menu_shape(tmp_path, capsys) -> None:
    script = _load_script()
    photo = tmp_path / "menu.png"
    photo.write_bytes(make_image_bytes())
    reply = '{"restaurant_name": "X", "items": "soup of the day"}'

    with patch("menu_digitalizer.extraction.request_menu_extraction", return_value=reply):
        exit_code = script.main([str(photo), "--out", str(tmp_path)])

    assert exit_code == 1
    assert reply in capsys.readouterr().err
