from __future__ import annotations

import base64
import io

import pytest
from PIL import Image

from conftest import make_image_bytes
from menu_digitalizer.core.errors import ImageReadError
from menu_digitalizer.imaging.prepare import prepare_image, scaled_size


def _open(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


@pytest.mark.parametrize(
    ("size", "max_dimension"),
    [((4000, 3000), 1920), ((3000, 4000), 1920), ((2500, 1000), 1200), ((1999, 1201), 1200)],
)
def test_longer_side_is_bounded_and_aspect_ratio_kept(size, max_dimension) -> None:
    prepared = prepare_image(make_image_bytes(size, "JPEG"), max_dimension=max_dimension)

    assert max(prepared.width, prepared.height) == max_dimension
    original_ratio = size[0] / size[1]
    assert prepared.width / prepared.height == pytest.approx(original_ratio, rel=0.01)

    with _open(prepared.data) as decoded:
        assert decoded.size == (prepared.width, prepared.height)


def test_small_images_are_not_upscaled() -> None:
    prepared = prepare_image(make_image_bytes((640, 480), "PNG"), max_dimension=1920)

    assert (prepared.width, prepared.height) == (640, 480)
    assert prepared.media_type == "image/png"


def test_jpeg_keeps_format_and_lower_quality_shrinks_payload() -> None:
    image = Image.effect_noise((800, 600), 64).convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=100)
    raw = buffer.getvalue()

    high = prepare_image(raw, quality=0.9)
    low = prepare_image(raw, quality=0.3)

    assert high.media_type == "image/jpeg"
    assert len(low.data) < len(high.data)


def test_unsupported_formats_are_converted_to_jpeg() -> None:
    prepared = prepare_image(make_image_bytes((300, 200), "BMP"))

    assert prepared.media_type == "image/jpeg"
    with _open(prepared.data) as decoded:
        assert decoded.format == "JPEG"


def test_rgba_tiff_is_flattened_for_jpeg() -> None:
    image = Image.new("RGBA", (120, 80), (10, 20, 30, 128))
    buffer = io.BytesIO()
    image.save(buffer, format="TIFF")

    prepared = prepare_image(buffer.getvalue())

    assert prepared.media_type == "image/jpeg"
    with _open(prepared.data) as decoded:
        assert decoded.mode == "RGB"


def test_exif_orientation_is_applied_before_scaling() -> None:
    image = Image.new("RGB", (400, 200), (255, 0, 0))
    exif = image.getexif()
    exif[0x0112] = 6  # rotated 90 degrees clockwise
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", exif=exif)

    prepared = prepare_image(buffer.getvalue(), max_dimension=100)

    assert (prepared.width, prepared.height) == (50, 100)


def test_to_base64_round_trips_bytes() -> None:
    prepared = prepare_image(make_image_bytes((50, 50), "PNG"))

    assert base64.b64decode(prepared.to_base64()) == prepared.data


def test_undecodable_bytes_raise_image_read_error() -> None:
    with pytest.raises(ImageReadError, match="Could not read image"):
        prepare_image(b"definitely not an image")


def test_invalid_quality_is_rejected() -> None:
    with pytest.raises(ValueError):
        prepare_image(make_image_bytes(), quality=1.5)


def test_scaled_size_never_drops_below_one_pixel() -> None:
    assert scaled_size(10000, 2, 1000) == (1000, 1)
    assert scaled_size(100, 50, 1920) == (100, 50)


def test_oversized_image_raises_image_read_error(monkeypatch) -> None:
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    with pytest.raises(ImageReadError, match="Could not read image"):
        prepare_image(make_image_bytes((100, 100), "PNG"))
