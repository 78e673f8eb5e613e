"""
Image helpers for the object-holding workflow.

Decodes inline data URLs and composes a person image and an object image
side by side so a vision model can describe them together.
"""

import base64
import binascii
import io
import re
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[^;,]*)(?P<params>(;[^;,]*)*),(?P<data>.*)$", re.DOTALL)

TILE_SIZE = (400, 400)
CANVAS_SIZE = (800, 400)
JPEG_QUALITY = 90

# Checked from the header, before any pixel data is decoded
MAX_TILE_PIXELS = 40_000_000


class InvalidDataUrl(ValueError):
    """The string is not a decodable data URL."""


class ImageMergeError(ValueError):
    """One of the inputs could not be read as an image."""


def is_data_url(value: str) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def decode_data_url(data_url: str, max_bytes: Optional[int] = None) -> Tuple[bytes, str]:
    """
    Decode a base64 data URL.

    Args:
        data_url: The data URL
        max_bytes: Reject decoded content larger than this

    Returns:
        Tuple of (content, mime type); mime defaults to image/png
    """
    match = DATA_URL_PATTERN.match(data_url or "")
    if not match or ";base64" not in match.group("params"):
        raise InvalidDataUrl("Invalid base64 data URL")

    try:
        content = base64.b64decode(match.group("data"), validate=False)
    except (binascii.Error, ValueError):
        raise InvalidDataUrl("Invalid base64 data URL")
    if not content:
        raise InvalidDataUrl("Empty data URL")
    if max_bytes is not None and len(content) > max_bytes:
        raise InvalidDataUrl(f"Image data exceeds {max_bytes} bytes")

    return content, match.group("mime") or "image/png"


def extension_for(mime: str) -> str:
    """File extension for an image mime type, e.g. image/jpeg -> jpeg."""
    subtype = mime.split("/", 1)[1] if "/" in mime else ""
    return subtype.split("+")[0] or "png"


def _load_tile(content: bytes, max_pixels: int) -> Image.Image:
    try:
        with Image.open(io.BytesIO(content)) as img:
            width, height = img.size
            if width * height > max_pixels:
                raise ImageMergeError(f"Image too large: {width}x{height} pixels")
            img = ImageOps.exif_transpose(img).convert("RGB")
            return ImageOps.fit(img, TILE_SIZE, method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))
    except Image.DecompressionBombError as e:
        raise ImageMergeError(f"Image too large: {e}")
    except (UnidentifiedImageError, OSError) as e:
        raise ImageMergeError(f"Unreadable image: {e}")


def merge_side_by_side(left: bytes, right: bytes, max_pixels: int = MAX_TILE_PIXELS) -> bytes:
    """
    Compose two images on an 800x400 white canvas.

    Each input is scaled to cover a 400x400 tile and centre-cropped.

    Raises:
        ImageMergeError: If an input is unreadable or has more than
            max_pixels pixels

    Returns:
        JPEG bytes
    """
    canvas = Image.new("RGB", CANVAS_SIZE, (255, 255, 255))
    canvas.paste(_load_tile(left, max_pixels), (0, 0))
    canvas.paste(_load_tile(right, max_pixels), (TILE_SIZE[0], 0))

    out = io.BytesIO()
    canvas.save(out, format="JPEG", quality=JPEG_QUALITY)
    return out.getvalue()
