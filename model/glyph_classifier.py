"""
Fixed CNN forward pass for one 28x28 glyph tile.

Classes: A-Z then 0-9 (36 total).
Input:   (28, 28) float32 tile, ink=1 background=0.
Output:  one character; the classifier never abstains.
"""

import numpy as np

from model.tensor_ops import conv2d_valid, dense, max_pool2d

CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
NUM_CLASSES = len(CHARS)
CHAR_TO_IDX = {c: i for i, c in enumerate(CHARS)}
IDX_TO_CHAR = {i: c for i, c in enumerate(CHARS)}

IMG_SIZE = 28


def forward(tile: np.ndarray, model) -> np.ndarray:
    """Return the 36 output logits for a tile. `model` maps layer name -> layer."""
    x = np.asarray(tile, dtype=np.float32).reshape(-1)

    # conv1: 28x28x1 -> 26x26x32, pool -> 13x13x32
    x, h, w = conv2d_valid(x, IMG_SIZE, IMG_SIZE, 1, model["conv1"])
    x, h, w = max_pool2d(x, h, w, 32)
    # conv2: 13x13x32 -> 11x11x64, pool -> 5x5x64 (floor of 11/2)
    x, h, w = conv2d_valid(x, h, w, 32, model["conv2"])
    x, h, w = max_pool2d(x, h, w, 64)

    # Already flat: 5*5*64 = 1600
    x = dense(x, model["dense1"], relu=True)
    return dense(x, model["output"], relu=False)


def classify_char(tile: np.ndarray, model) -> str:
    """Predict the character in a tile. Ties go to the lowest class index."""
    logits = forward(tile, model)
    return IDX_TO_CHAR[int(np.argmax(logits))]
