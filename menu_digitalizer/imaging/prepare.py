from __future__ import annotations

import base64
import io
from dataclasses import dataclass

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError

from menu_digitalizer.core.config import settings
from menu_digitalizer.core.errors import ImageReadError

logger = structlog.get_logger(__name__)

# Formats the vision API accepts as-is; anything else is re-encoded as JPEG.
_PASSTHROUGH_FORMATS = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


@dataclass(frozen=True)
class PreparedImage:
    data: bytes
    media_type: str
    width: int
    height: int

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def extension(self) -> str:
        return self.media_type.split("/", 1)[1].replace("jpeg", "jpg")


def scaled_size(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Return (width, height) with the longer side bounded by ``max_dimension``."""
    longer = max(width, height)
    if longer <= max_dimension:
        return width, height
    ratio = max_dimension / longer
    return max(1, round(width * ratio)), max(1, round(height * ratio))


def prepare_image(
    raw: bytes,
    *,
    max_dimension: int | None = None,
    quality: float | None = None,
) -> PreparedImage:
    """
    Downsize and re-encode an uploaded photo before it is sent to the model.

    Args:
        raw: The uploaded file contents
        max_dimension: Bound for the longer side (default: settings.image_max_dimension)
        quality: Encoder quality in (0, 1] (default: settings.image_quality)

    Raises:
        ImageReadError: If the bytes cannot be decoded as an image
    """
    max_dimension = max_dimension or settings.image_max_dimension
    quality = quality if quality is not None else settings.image_quality
    if max_dimension < 1:
        raise ValueError("max_dimension must be positive")
    if not 0 < quality <= 1:
        raise ValueError("quality must be in (0, 1]")

    try:
        with Image.open(io.BytesIO(raw)) as source:
            source_format = source.format
            source.load()
            image = ImageOps.exif_transpose(source)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        logger.warning("image_decode_failed", size=len(raw), error=str(exc))
        raise ImageReadError() from exc

    target_format = source_format if source_format in _PASSTHROUGH_FORMATS else "JPEG"
    width, height = scaled_size(image.width, image.height, max_dimension)
    if (width, height) != image.size:
        image = image.resize((width, height), Image.Resampling.LANCZOS)

    if target_format == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")

    buffer = io.BytesIO()
    save_kwargs: dict[str, object] = {}
    if target_format in ("JPEG", "WEBP"):
        save_kwargs["quality"] = max(1, min(100, round(quality * 100)))
    if target_format == "PNG":
        save_kwargs["optimize"] = True
    image.save(buffer, format=target_format, **save_kwargs)
    data = buffer.getvalue()

    logger.info(
        "image_prepared",
        source_format=source_format,
        target_format=target_format,
        width=width,
        height=height,
        original_bytes=len(raw),
        prepared_bytes=len(data),
    )
    return PreparedImage(
        data=data,
        media_type=_PASSTHROUGH_FORMATS[target_format],
        width=width,
        height=height,
    )
