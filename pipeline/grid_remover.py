"""Grid and noise removal: RGBA CAPTCHA pixels -> binary ink mask.

A pixel is foreground (0) when any one of these holds:
  - red grid line:  hue within 15 of red, saturation > 40, value > 40
  - coloured noise: saturation > 50, whatever the hue
  - dark ink:       perceptual gray < 60
Everything else is background (255). Fully isolated foreground pixels are
then reverted to background; clusters of two or more pixels are kept.
"""

import numpy as np

FOREGROUND = 0
BACKGROUND = 255

# Hue uses the 0-180 scale; saturation and value use 0-255
RED_HUE_LOW = 15
RED_HUE_HIGH = 165
RED_MIN_SATURATION = 40
RED_MIN_VALUE = 40
SATURATION_THRESHOLD = 50
DARK_GRAY_THRESHOLD = 60

MIN_NEIGHBORS = 1


def rgb_to_hsv(rgb: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Convert uint8 RGB (..., 3) to float64 hue [0, 180), saturation and value [0, 255]."""
    rgb = rgb.astype(np.float64) / 255.0
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    max_c = rgb.max(axis=-1)
    min_c = rgb.min(axis=-1)
    delta = max_c - min_c

    s = np.divide(delta, max_c, out=np.zeros_like(max_c), where=max_c != 0)

    with np.errstate(divide="ignore", invalid="ignore"):
        h = np.select(
            [delta == 0, max_c == r, max_c == g],
            [
                0.0,
                ((g - b) / delta + np.where(g < b, 6.0, 0.0)) / 6.0,
                ((b - r) / delta + 2.0) / 6.0,
            ],
            default=((r - g) / delta + 4.0) / 6.0,
        )

    return h * 180.0, s * 255.0, max_c * 255.0


def ink_mask(pixels: np.ndarray) -> np.ndarray:
    """Classify every pixel of an RGBA (or RGB) image without denoising."""
    rgb = pixels[..., :3]
    h, s, v = rgb_to_hsv(rgb)
    r, g, b = (rgb[..., i].astype(np.float64) for i in range(3))
    gray = 0.299 * r + 0.587 * g + 0.114 * b

    is_red = ((h <= RED_HUE_LOW) | (h >= RED_HUE_HIGH)) & (s > RED_MIN_SATURATION) & (v > RED_MIN_VALUE)
    is_saturated = s > SATURATION_THRESHOLD
    is_dark = gray < DARK_GRAY_THRESHOLD

    mask = np.full(rgb.shape[:2], BACKGROUND, dtype=np.uint8)
    mask[is_red | is_saturated | is_dark] = FOREGROUND
    return mask


def denoise(mask: np.ndarray, min_neighbors: int = MIN_NEIGHBORS) -> np.ndarray:
    """Drop interior foreground pixels with fewer than `min_neighbors` ink 8-neighbours.

    The 1-pixel image border is left untouched. Neighbours are counted on the
    input mask, not on the partially cleaned result.
    """
    height, width = mask.shape
    cleaned = mask.copy()
    if height < 3 or width < 3:
        return cleaned

    fg = (mask == FOREGROUND).astype(np.uint8)
    neighbors = np.zeros((height - 2, width - 2), dtype=np.uint8)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dy == 0 and dx == 0:
                continue
            neighbors += fg[1 + dy:height - 1 + dy, 1 + dx:width - 1 + dx]

    isolated = (fg[1:-1, 1:-1] == 1) & (neighbors < min_neighbors)
    cleaned[1:-1, 1:-1][isolated] = BACKGROUND
    return cleaned


def remove_grid(pixels: np.ndarray) -> np.ndarray:
    """RGBA pixel buffer (H, W, 4) -> uint8 mask (H, W): 0 = ink, 255 = background."""
    return denoise(ink_mask(pixels))
