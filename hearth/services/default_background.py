import logging
import os
from pathlib import Path
from typing import Optional

from PIL import Image, ImageDraw

logger = logging.getLogger(__name__)

DEFAULT_BACKGROUND_NAME = "background-default.jpg"
SIZE = (1920, 1080)
TOP_COLOR = (30, 41, 59)
BOTTOM_COLOR = (100, 116, 139)


def generate_default_background(output_path: Path):
    """Render the fallback wallpaper: a vertical slate gradient."""
    width, height = SIZE
    image = Image.new("RGB", SIZE, TOP_COLOR)
    draw = ImageDraw.Draw(image)
    for y in range(height):
        t = y / (height - 1)
        color = tuple(int(a + (b - a) * t) for a, b in zip(TOP_COLOR, BOTTOM_COLOR))
        draw.line([(0, y), (width, y)], fill=color)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = output_path.with_name(output_path.name + ".tmp")
    image.save(tmp_path, format="JPEG", quality=85)
    os.replace(tmp_path, output_path)


def ensure_default_background(cache_dir: Path) -> Optional[Path]:
    """Path of the bundled default background, rendering it on first use.

    Returns None when it cannot be produced.
    """
    path = Path(cache_dir) / DEFAULT_BACKGROUND_NAME
    if path.is_file() and path.stat().st_size > 0:
        return path
    try:
        generate_default_background(path)
    except OSError as e:
        logger.error(f"Failed to generate default background at {path}: {e}")
        return None
    logger.info(f"Default background generated at {path}")
    return path
