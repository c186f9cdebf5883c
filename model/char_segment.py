"""
Character segmentation: split a cleaned CAPTCHA mask into glyph tiles.

Strategy:
  1. Find the bounding box of all foreground (0) pixels in the mask
  2. Cut it into NUM_CHARS equal-width bands (floating-point width,
     boundaries floored independently, so bands may differ by one pixel)
  3. Re-crop each band to its own ink bounding box
  4. Nearest-neighbour scale the crop to fit FIT_SIZE x FIT_SIZE, keeping
     the aspect ratio, and centre it on a TILE_SIZE x TILE_SIZE canvas
  5. Normalise: ink = 1.0, background = 0.0

A band with no ink gives an all-zero tile; an empty mask gives no tiles.
"""

import math

import numpy as np

NUM_CHARS = 6
TILE_SIZE = 28  # CNN input size
FIT_SIZE = 22   # glyph box inside the tile

FOREGROUND = 0
BACKGROUND = 255


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# Bounding boxes
# ---------------------------------------------------------------------------

def find_text_bbox(mask: np.ndarray) -> tuple[int, int, int, int] | None:
    """
    Tightest box around the foreground pixels of a mask.
    Returns inclusive (left, top, right, bottom), or None when there is no ink.
    """
    ys, xs = np.nonzero(mask == FOREGROUND)
    if xs.size == 0:
        return None
    return int(xs.min()), int(ys.min()), int(xs.max()), int(ys.max())


# ---------------------------------------------------------------------------
# Tile construction
# ---------------------------------------------------------------------------

def scale_crop(crop: np.ndarray, target: int = FIT_SIZE) -> np.ndarray:
    """Nearest-neighbour resize so the larger side of `crop` becomes `target`."""
    crop_h, crop_w = crop.shape
    scale = min(target / crop_w, target / crop_h)
    new_w = max(1, _round_half_up(crop_w * scale))
    new_h = max(1, _round_half_up(crop_h * scale))

    src_x = np.minimum(np.floor(np.arange(new_w) / scale).astype(np.intp), crop_w - 1)
    src_y = np.minimum(np.floor(np.arange(new_h) / scale).astype(np.intp), crop_h - 1)
    return crop[np.ix_(src_y, src_x)]


def glyph_tile(crop: np.ndarray, size: int = TILE_SIZE, fit: int = FIT_SIZE) -> np.ndarray:
    """
    Scale a mask crop into the fit box, centre it on a background canvas and
    normalise. Returns float32 (size, size): ink = 1.0, background = 0.0.
    """
    resized = scale_crop(crop, fit)
    new_h, new_w = resized.shape

    canvas = np.full((size, size), BACKGROUND, dtype=np.uint8)
    x_off = (size - new_w) // 2
    y_off = (size - new_h) // 2
    canvas[y_off:y_off + new_h, x_off:x_off + new_w] = resized

    return 1.0 - canvas.astype(np.float32) / 255.0


# ---------------------------------------------------------------------------
# Main segmentation entry point
# ---------------------------------------------------------------------------

def segment_characters(mask: np.ndarray, num_chars: int = NUM_CHARS) -> list[np.ndarray]:
    """
    Segment a binary mask into `num_chars` glyph tiles, left to right.

    Args:
        mask:      uint8 (H, W), 0 = foreground, 255 = background.
        num_chars: Number of equal-width bands to cut the text box into.

    Returns:
        List of (TILE_SIZE, TILE_SIZE) float32 arrays, or [] if the mask
        has no foreground at all.
    """
    bbox = find_text_bbox(mask)
    if bbox is None:
        return []

    left, top, right, bottom = bbox
    char_width = (right - left + 1) / num_chars
    text_rows = mask[top:bottom + 1]

    tiles = []
    for i in range(num_chars):
        x_start = math.floor(left + char_width * i)
        x_end = math.floor(left + char_width * (i + 1))
        band = text_rows[:, x_start:x_end]

        local = find_text_bbox(band)
        if local is None:
            tiles.append(np.zeros((TILE_SIZE, TILE_SIZE), dtype=np.float32))
            continue

        cx1, cy1, cx2, cy2 = local
        tiles.append(glyph_tile(band[cy1:cy2 + 1, cx1:cx2 + 1]))

    return tiles
