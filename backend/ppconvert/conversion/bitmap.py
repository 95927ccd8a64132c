"""Bitmap metadata for conversion stats."""
import logging
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from ppconvert.conversion.models import ImageInfo

logger = logging.getLogger("ppconvert.bitmap")


def describe_bitmap(path: Path) -> Optional[ImageInfo]:
    """Read dimensions from the file header. None if Pillow cannot identify it."""
    try:
        with Image.open(path) as img:
            return ImageInfo(width=img.width, height=img.height, mode=img.mode)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug("No image metadata for %s: %s", Path(path).name, e)
        return None
