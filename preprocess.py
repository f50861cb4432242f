from __future__ import annotations

import io
from typing import Optional, Tuple

from PIL import Image, ImageOps

try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
except Exception:
    pass

from utils import ImageAsset, asset_bytes


def fix_orientation(pil_image: Image.Image) -> Image.Image:
    """Correct EXIF-based orientation; return image unchanged on failure."""
    try:
        return ImageOps.exif_transpose(pil_image)
    except Exception:
        return pil_image


def open_image(image: ImageAsset) -> Image.Image:
    pil = Image.open(io.BytesIO(asset_bytes(image)))
    return fix_orientation(pil)


def image_size(image: ImageAsset) -> Tuple[int, int]:
    return open_image(image).size


def aspect_ratio(image: Optional[ImageAsset]) -> Optional[str]:
    """CSS-style ratio of the displayed image, e.g. ``"800 / 600"``."""
    if image is None:
        return None
    width, height = image_size(image)
    return f"{width} / {height}"


def make_preview(image: ImageAsset, max_side: int = 1024) -> Image.Image:
    pil = open_image(image)
    if pil.mode not in ("RGB", "RGBA"):
        pil = pil.convert("RGB")
    if max(pil.size) > max_side:
        pil = pil.copy()
        pil.thumbnail((max_side, max_side), Image.LANCZOS)
    return pil
