import json

import cv2
import numpy as np
import pytest

from model.char_segment import segment_characters
from model.glyph_classifier import CHAR_TO_IDX, forward
from model.model_store import LAYER_SPECS, parse_model

# Solid rectangles (width, height); every one scales to a different tile
GLYPH_SIZES = [(30, 30), (19, 30), (14, 30), (8, 30), (3, 30), (30, 8)]
GLYPH_LABEL = "K7Q2ZA"
CELL_WIDTH = 30
MARGIN_X = 20
IMAGE_HEIGHT = 60
FEATURES = 25  # 5x5 pooled cells of conv2 channel 0


def layer_entry(name, kernel, bias):
    layer_type, shape = LAYER_SPECS[name]
    return {
        "name": name,
        "type": layer_type,
        "kernel_shape": list(shape),
        "kernel": np.asarray(kernel, dtype=np.float32).reshape(-1).tolist(),
        "bias": np.asarray(bias, dtype=np.float32).reshape(-1).tolist(),
    }


def random_model_data(seed=0, scale=0.1):
    rng = np.random.default_rng(seed)
    layers = []
    for name, (_, shape) in LAYER_SPECS.items():
        layers.append(layer_entry(name, rng.normal(0, scale, size=shape), rng.normal(0, scale, size=shape[-1])))
    return {"layers": layers}


def write_model(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def draw_glyphs(sizes, cell=CELL_WIDTH):
    """White RGB image with one black rectangle per cell, left to right."""
    width = 2 * MARGIN_X + cell * len(sizes)
    img = np.full((IMAGE_HEIGHT, width, 3), 255, dtype=np.uint8)
    for i, (gw, gh) in enumerate(sizes):
        x0 = MARGIN_X + i * cell + (cell - gw) // 2
        y0 = (IMAGE_HEIGHT - gh) // 2
        img[y0:y0 + gh, x0:x0 + gw] = 0
    return img


def to_mask(img):
    return np.where(img[..., 0] == 0, 0, 255).astype(np.uint8)


def encode_png(img):
    ok, buf = cv2.imencode(".png", img)
    assert ok
    return buf.tobytes()


def _feature_layers():
    """conv1/conv2 pass channel 0 through; dense1 copies the 25 pooled cells."""
    conv1 = np.zeros(LAYER_SPECS["conv1"][1], dtype=np.float32)
    conv1[1, 1, 0, 0] = 1.0
    conv2 = np.zeros(LAYER_SPECS["conv2"][1], dtype=np.float32)
    conv2[1, 1, 0, 0] = 1.0
    dense1 = np.zeros(LAYER_SPECS["dense1"][1], dtype=np.float32)
    for cell in range(FEATURES):
        dense1[cell * 64, cell] = 1.0
    return [
        layer_entry("conv1", conv1, np.zeros(32)),
        layer_entry("conv2", conv2, np.zeros(64)),
        layer_entry("dense1", dense1, np.zeros(128)),
    ]


def template_model_data(sizes=GLYPH_SIZES, label=GLYPH_LABEL):
    """
    A model that recognises each rectangle in `sizes` as the matching
    character of `label`: the output layer scores every class by
    t.f - |t|^2/2, i.e. nearest template wins.
    """
    probe_output = np.zeros(LAYER_SPECS["output"][1], dtype=np.float32)
    probe_output[:FEATURES, :FEATURES] = np.eye(FEATURES)
    probe = parse_model({"layers": _feature_layers() + [layer_entry("output", probe_output, np.zeros(36))]})

    output = np.zeros(LAYER_SPECS["output"][1], dtype=np.float32)
    bias = np.zeros(36, dtype=np.float32)
    templates = []
    for size, char in zip(sizes, label):
        # Segmenting a lone glyph as one band gives the same tile as its band in the full image
        (tile,) = segment_characters(to_mask(draw_glyphs([size])), num_chars=1)
        template = forward(tile, probe)[:FEATURES]
        templates.append(template)
        output[:FEATURES, CHAR_TO_IDX[char]] = template
        bias[CHAR_TO_IDX[char]] = -0.5 * float(template @ template)

    for i in range(len(templates)):
        for j in range(i + 1, len(templates)):
            assert not np.array_equal(templates[i], templates[j]), "glyph features must differ"

    return {"layers": _feature_layers() + [layer_entry("output", output, bias)]}


@pytest.fixture
def model_data():
    return random_model_data()


@pytest.fixture
def model_file(tmp_path, model_data):
    return write_model(tmp_path / "model_weights.json", model_data)


@pytest.fixture
def template_model_file(tmp_path):
    return write_model(tmp_path / "template_weights.json", template_model_data())


@pytest.fixture
def glyph_captcha_png():
    return encode_png(draw_glyphs(GLYPH_SIZES))
