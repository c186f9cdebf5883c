"""Decode a CAPTCHA image source into an RGBA pixel buffer.

Accepted sources:
  - raw encoded bytes (PNG, JPEG, anything OpenCV can decode)
  - a filesystem path (str or Path)
  - a data URL: "data:image/png;base64,...."
  - bare base64 text
"""

import asyncio
import base64
import binascii
import logging
import os
from pathlib import Path

import cv2
import numpy as np

from errors import ImageDecodeError

logger = logging.getLogger(__name__)


def _source_bytes(source) -> bytes:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)

    if isinstance(source, Path):
        return source.read_bytes()

    if isinstance(source, str):
        if source.startswith("data:"):
            header, _, payload = source.partition(",")
            if not header.endswith(";base64"):
                raise ImageDecodeError(f"Unsupported data URL encoding: {header[:40]}")
            return base64.b64decode(payload, validate=True)

        if os.path.isfile(source):
            return Path(source).read_bytes()

        return base64.b64decode(source, validate=True)

    raise ImageDecodeError(f"Unsupported image source type: {type(source).__name__}")


def _to_rgba(img: np.ndarray) -> np.ndarray:
    if img.dtype == np.uint16:
        img = (img >> 8).astype(np.uint8)
    elif img.dtype != np.uint8:
        raise ImageDecodeError(f"Unsupported pixel type: {img.dtype}")

    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
    if img.shape[2] == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)
    if img.shape[2] == 4:
        rgba = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
        # Composited onto a canvas, fully transparent pixels read back as black
        rgba[rgba[..., 3] == 0, :3] = 0
        return rgba
    raise ImageDecodeError(f"Unsupported channel count: {img.shape[2]}")


def decode_image(source) -> np.ndarray:
    """
    Decode `source` at its natural size.

    Returns:
        uint8 array (H, W, 4) in RGBA order.
    Raises:
        ImageDecodeError if the source cannot be read or decoded.
    """
    try:
        data = _source_bytes(source)
    except (OSError, binascii.Error, ValueError) as exc:
        raise ImageDecodeError(f"Could not read image source: {exc}") from exc

    if not data:
        raise ImageDecodeError("Image source is empty")

    img = cv2.imdecode(np.frombuffer(data, np.uint8), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise ImageDecodeError(f"Could not decode image ({len(data)} bytes)")

    pixels = _to_rgba(img)
    logger.debug("Decoded image: %dx%d", pixels.shape[1], pixels.shape[0])
    return pixels


async def decode_image_async(source) -> np.ndarray:
    """decode_image() run in a worker thread."""
    return await asyncio.to_thread(decode_image, source)
