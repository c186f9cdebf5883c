"""
Model parameter loading for the glyph classifier.

The parameter file is JSON holding an ordered list of layer descriptors:

    {"layers": [
        {"name": "conv1", "type": "Conv2D", "kernel_shape": [3, 3, 1, 32],
         "kernel": [...], "bias": [...]},
        ...
    ]}

Kernels are flattened row-major: (kh, kw, cin, cout) for Conv2D and
(cin, cout) for Dense. Weightless descriptors (pooling, flatten) are ignored.

Usage:
  store = ModelStore("model/model_weights.json")
  await store.wait_ready()
  store["conv1"].kernel
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import requests

from errors import ModelLoadError

logger = logging.getLogger(__name__)

MODEL_PATH = Path(__file__).resolve().parent / "model_weights.json"
FETCH_TIMEOUT = 30  # seconds, http(s) sources only

# name -> (type tag, shape) of the fixed architecture
LAYER_SPECS = {
    "conv1": ("Conv2D", (3, 3, 1, 32)),
    "conv2": ("Conv2D", (3, 3, 32, 64)),
    "dense1": ("Dense", (1600, 128)),
    "output": ("Dense", (128, 36)),
}


@dataclass(frozen=True)
class ConvLayer:
    name: str
    kernel: np.ndarray
    bias: np.ndarray
    kh: int
    kw: int
    cin: int
    cout: int

    @property
    def shape(self) -> tuple[int, int, int, int]:
        return self.kh, self.kw, self.cin, self.cout


@dataclass(frozen=True)
class DenseLayer:
    name: str
    kernel: np.ndarray
    bias: np.ndarray
    cin: int
    cout: int

    @property
    def shape(self) -> tuple[int, int]:
        return self.cin, self.cout


def _frozen_array(values, what: str) -> np.ndarray:
    try:
        arr = np.asarray(values, dtype=np.float32)
    except (TypeError, ValueError) as exc:
        raise ModelLoadError(f"{what} is not a numeric array") from exc
    if arr.ndim != 1:
        raise ModelLoadError(f"{what} must be a flat array, got shape {arr.shape}")
    arr.flags.writeable = False
    return arr


def _parse_layer(desc: dict):
    name = desc.get("name")
    layer_type = desc.get("type")

    if name not in LAYER_SPECS:
        raise ModelLoadError(f"Unexpected weighted layer {name!r} ({layer_type})")

    expected_type, expected_shape = LAYER_SPECS[name]
    if layer_type != expected_type:
        raise ModelLoadError(f"Layer {name} must be {expected_type}, got {layer_type}")

    try:
        shape = tuple(int(d) for d in desc["kernel_shape"])
        kernel = _frozen_array(desc["kernel"], f"{name}.kernel")
        bias = _frozen_array(desc["bias"], f"{name}.bias")
    except KeyError as exc:
        raise ModelLoadError(f"Layer {name} is missing field {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise ModelLoadError(f"Layer {name} has an invalid kernel_shape") from exc

    if shape != expected_shape:
        raise ModelLoadError(f"Layer {name}: shape {list(shape)} != expected {list(expected_shape)}")
    if kernel.size != int(np.prod(shape)):
        raise ModelLoadError(f"Layer {name}: kernel has {kernel.size} values, shape needs {int(np.prod(shape))}")
    if bias.size != shape[-1]:
        raise ModelLoadError(f"Layer {name}: bias has {bias.size} values, expected {shape[-1]}")

    if layer_type == "Conv2D":
        kh, kw, cin, cout = shape
        return ConvLayer(name, kernel, bias, kh, kw, cin, cout)
    cin, cout = shape
    return DenseLayer(name, kernel, bias, cin, cout)


def parse_model(data: dict) -> dict:
    """
    Validate a decoded parameter record and build the layer mapping.

    Returns {name: ConvLayer | DenseLayer} holding exactly the four layers of
    the fixed architecture. Raises ModelLoadError on any inconsistency.
    """
    if not isinstance(data, dict) or not isinstance(data.get("layers"), list):
        raise ModelLoadError("Parameter file must be an object with a 'layers' list")

    layers = {}
    for desc in data["layers"]:
        if not isinstance(desc, dict):
            raise ModelLoadError(f"Layer descriptor must be an object, got {type(desc).__name__}")
        if desc.get("type") not in ("Conv2D", "Dense"):
            logger.debug("Skipping weightless layer %s (%s)", desc.get("name"), desc.get("type"))
            continue

        layer = _parse_layer(desc)
        if layer.name in layers:
            raise ModelLoadError(f"Duplicate layer {layer.name}")
        layers[layer.name] = layer
        logger.debug("  Layer %s: shape=%s kernel_len=%d bias_len=%d",
                     layer.name, list(layer.shape), layer.kernel.size, layer.bias.size)

    missing = [name for name in LAYER_SPECS if name not in layers]
    if missing:
        raise ModelLoadError(f"Parameter file is missing layers: {missing}")
    return layers


def _fetch(source) -> bytes:
    source = str(source)
    if source.startswith(("http://", "https://")):
        response = requests.get(source, timeout=FETCH_TIMEOUT)
        response.raise_for_status()
        return response.content
    return Path(source).read_bytes()


def load_model_file(source=MODEL_PATH) -> dict:
    """Fetch and parse a parameter file. All failures raise ModelLoadError."""
    try:
        raw = _fetch(source)
        data = json.loads(raw)
    except (OSError, requests.RequestException) as exc:
        raise ModelLoadError(f"Could not fetch model parameters from {source}: {exc}") from exc
    except ValueError as exc:
        raise ModelLoadError(f"Malformed model parameter file {source}: {exc}") from exc
    return parse_model(data)


class ModelStore:
    """Holds the classifier layers; loads them at most once.

    Concurrent callers of wait_ready() share one in-flight load. A failed load
    is remembered and re-raised to every later caller.
    """

    def __init__(self, source=MODEL_PATH):
        self.source = source
        self._layers: dict | None = None
        self._error: ModelLoadError | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_ready(self) -> bool:
        return self._layers is not None

    @property
    def failed(self) -> bool:
        return self._error is not None

    def start_loading(self) -> asyncio.Task:
        """Schedule the single load attempt on the running loop (idempotent)."""
        if self._task is None:
            self._task = asyncio.ensure_future(self._load())
        return self._task

    async def _load(self) -> None:
        logger.info("Loading model weights from %s", self.source)
        try:
            layers = await asyncio.to_thread(load_model_file, self.source)
        except ModelLoadError as exc:
            logger.error("Model load error: %s", exc)
            self._error = exc
            return
        except asyncio.CancelledError:
            logger.error("Model load cancelled: %s", self.source)
            self._error = ModelLoadError(f"Loading model parameters from {self.source} was cancelled")
            return
        self._layers = layers
        logger.info("Model loaded: %s", ", ".join(layers))

    async def wait_ready(self) -> "ModelStore":
        if self._layers is None and self._error is None:
            if self._task is None:
                logger.info("Waiting for model to load...")
            task = self.start_loading()
            try:
                # A waiter that gives up must not cancel the shared load
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
                # Cancelled before _load() got to run
                self._error = ModelLoadError(f"Loading model parameters from {self.source} was cancelled")
        if self._error is not None:
            raise self._error
        return self

    def layer(self, name: str):
        if self._layers is None:
            raise ModelLoadError("Model is not loaded")
        return self._layers[name]

    __getitem__ = layer

    def names(self) -> list[str]:
        return list(self._layers or ())
