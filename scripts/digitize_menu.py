from __future__ import annotations

import argparse
import sys
from pathlib import Path

import structlog

from menu_digitalizer.core.config import settings
from menu_digitalizer.core.errors import ExternalAPIError, ImageReadError, MenuParseError
from menu_digitalizer.core.logging import configure_logging
from menu_digitalizer.extraction import extract_menu
from menu_digitalizer.imaging.prepare import prepare_image
from menu_digitalizer.menu.export import export_filename, render
from menu_digitalizer.menu.store import MenuStore

logger = structlog.get_logger(__name__)


def digitize_menu(
    photo: Path,
    out_dir: Path,
    *,
    max_dimension: int | None = None,
    quality: float | None = None,
) -> list[Path]:
    prepared = prepare_image(photo.read_bytes(), max_dimension=max_dimension, quality=quality)
    extracted = extract_menu(prepared.to_base64(), prepared.media_type)
    store = MenuStore(extracted, currency_symbol=settings.price_currency_symbol)

    out_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for fmt in ("json", "csv"):
        path = out_dir / export_filename(store.menu, fmt)
        path.write_text(render(store.menu, fmt), encoding="utf-8")
        written.append(path)
    logger.info("menu_exported", item_count=store.item_count, files=[str(p) for p in written])
    return written


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Extract a restaurant menu from a photo.")
    parser.add_argument("photo", type=Path, help="menu photo to analyze")
    parser.add_argument("--out", type=Path, default=Path("."), help="output directory")
    parser.add_argument("--max-dimension", type=int, default=None)
    parser.add_argument("--quality", type=float, default=None)
    args = parser.parse_args(argv)

    configure_logging(settings.log_level)
    try:
        written = digitize_menu(
            args.photo,
            args.out,
            max_dimension=args.max_dimension,
            quality=args.quality,
        )
    except (OSError, ImageReadError) as exc:
        print(f"Could not read image: {exc}", file=sys.stderr)
        return 1
    except MenuParseError as exc:
        print(f"Failed to parse menu data:\n{exc.raw_text}", file=sys.stderr)
        return 1
    except (ExternalAPIError, RuntimeError) as exc:
        print(f"Failed to analyze menu: {exc}", file=sys.stderr)
        return 1

    for path in written:
        print(path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
