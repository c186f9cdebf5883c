"""
Flat-buffer CNN primitives used by the glyph classifier.

Buffers are 1-D float32 arrays in row-major (row, col, channel) order with
their dimensions passed alongside, the same layout the parameter file uses.
Dimension mismatches are programming or model errors and trip an assert.
"""

import numpy as np


def conv2d_valid(
    x: np.ndarray, h: int, w: int, c: int, layer
) -> tuple[np.ndarray, int, int]:
    """
    Valid (unpadded) stride-1 convolution followed by bias and ReLU.

    Returns (output, out_h, out_w); output is flat (out_h, out_w, cout).
    """
    assert x.size == h * w * c, f"input has {x.size} values, expected {h}x{w}x{c}"
    assert c == layer.cin, f"{layer.name}: expected {layer.cin} channels, got {c}"
    assert h >= layer.kh and w >= layer.kw, f"{layer.name}: input {h}x{w} smaller than kernel"

    out_h = h - layer.kh + 1
    out_w = w - layer.kw + 1
    img = x.reshape(h, w, c)
    kernel = layer.kernel.reshape(layer.kh, layer.kw, layer.cin, layer.cout)

    # Channels that are exactly zero everywhere contribute nothing
    active = np.flatnonzero(np.any(img != 0, axis=(0, 1)))

    out = np.zeros((out_h, out_w, layer.cout), dtype=np.float32)
    if active.size:
        img = img[:, :, active]
        for ky in range(layer.kh):
            for kx in range(layer.kw):
                window = img[ky:ky + out_h, kx:kx + out_w]       # (out_h, out_w, n_active)
                out += window @ kernel[ky, kx, active]            # (n_active, cout)

    out += layer.bias
    np.maximum(out, 0.0, out=out)
    return out.reshape(-1), out_h, out_w


def max_pool2d(x: np.ndarray, h: int, w: int, c: int) -> tuple[np.ndarray, int, int]:
    """2x2 max pooling, stride 2. A trailing odd row/column is dropped."""
    assert x.size == h * w * c, f"input has {x.size} values, expected {h}x{w}x{c}"

    out_h, out_w = h // 2, w // 2
    img = x.reshape(h, w, c)[: out_h * 2, : out_w * 2]
    out = img.reshape(out_h, 2, out_w, 2, c).max(axis=(1, 3))
    return out.reshape(-1), out_h, out_w


def dense(x: np.ndarray, layer, relu: bool) -> np.ndarray:
    """Fully-connected layer: x @ kernel + bias, optionally ReLU'd."""
    assert x.size == layer.cin, f"{layer.name}: expected {layer.cin} inputs, got {x.size}"

    kernel = layer.kernel.reshape(layer.cin, layer.cout)
    active = np.flatnonzero(x)   # exact zeros only
    out = x[active] @ kernel[active] + layer.bias
    out = out.astype(np.float32, copy=False)
    if relu:
        np.maximum(out, 0.0, out=out)
    return out
