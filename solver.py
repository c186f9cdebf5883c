"""End-to-end CAPTCHA solving: image -> grid removal -> segmentation -> CNN -> label.

Usage (library):
  store = ModelStore("model/model_weights.json")
  solver = CaptchaSolver(store)
  label = await solver.solve("captcha.png")

  # or with the process-wide solver built from config/solver.yaml
  label = await solve("captcha.png")
"""

import logging
import time

import numpy as np

from config import load_config, resolve_model_source
from errors import CaptchaError, ModelLoadError, ModelUnavailableError, NoCharactersFoundError
from model.char_segment import NUM_CHARS, segment_characters
from model.glyph_classifier import classify_char
from model.model_store import ModelStore
from pipeline.grid_remover import remove_grid
from pipeline.image_decode import decode_image_async

logger = logging.getLogger(__name__)

_solver = None


class CaptchaSolver:
    def __init__(self, store: ModelStore, num_chars: int = NUM_CHARS, broadcaster=None):
        self.store = store
        self.num_chars = num_chars
        self.broadcaster = broadcaster

    async def solve(self, source) -> str:
        """
        Solve one CAPTCHA.

        Args:
            source: Encoded image bytes, a file path, a data URL or base64 text.

        Returns:
            The predicted label, `num_chars` characters long.

        Raises:
            ModelUnavailableError, ImageDecodeError, NoCharactersFoundError.
        """
        try:
            label = await self._solve(source)
        except CaptchaError as exc:
            self._publish({"type": "result", "success": False, "message": str(exc)})
            raise
        self._publish({"type": "result", "success": True, "text": label})
        return label

    async def _solve(self, source) -> str:
        if not self.store.is_ready:
            try:
                await self.store.wait_ready()
            except ModelLoadError as exc:
                raise ModelUnavailableError(f"Model failed to load: {exc}") from exc

        pixels = await decode_image_async(source)

        t0 = time.perf_counter()
        label = self.solve_pixels(pixels)
        logger.info("Solved in %.0fms: %s", (time.perf_counter() - t0) * 1000, label)
        return label

    def solve_pixels(self, pixels: np.ndarray) -> str:
        """Synchronous core on an already decoded RGBA buffer. The model must be ready."""
        height, width = pixels.shape[:2]
        mask = remove_grid(pixels)
        logger.debug("Image: %dx%d, grid removed", width, height)

        tiles = segment_characters(mask, self.num_chars)
        if not tiles:
            raise NoCharactersFoundError("No characters found")
        logger.debug("Segmented %d characters", len(tiles))

        return "".join(classify_char(tile, self.store) for tile in tiles)

    def _publish(self, message: dict) -> None:
        if self.broadcaster is not None:
            self.broadcaster.publish(message)


def get_solver(model_source=None, config: dict | None = None) -> CaptchaSolver:
    """Return the cached process-wide solver, creating it on first use."""
    global _solver
    if _solver is not None:
        return _solver

    if config is None:
        config = load_config()
    if model_source is None:
        model_source = resolve_model_source(config)
    _solver = CaptchaSolver(ModelStore(model_source), num_chars=config["solver"]["num_chars"])
    return _solver


async def solve(source) -> str:
    """Solve with the process-wide solver."""
    return await get_solver().solve(source)
