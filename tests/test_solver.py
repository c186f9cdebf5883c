import asyncio
import time

import numpy as np
import pytest

import solver as solver_module
from conftest import GLYPH_LABEL, encode_png
from errors import ImageDecodeError, ModelUnavailableError, NoCharactersFoundError
from model.model_store import ModelStore
from relay import ResultBroadcaster
from solver import CaptchaSolver, get_solver


def make_solver(model_path, broadcaster=None):
    return CaptchaSolver(ModelStore(model_path), broadcaster=broadcaster)


def collect(broadcaster):
    messages = []
    broadcaster.subscribe(messages.append)
    return messages


def test_solves_synthetic_captcha(template_model_file, glyph_captcha_png):
    label = asyncio.run(make_solver(template_model_file).solve(glyph_captcha_png))
    assert label == GLYPH_LABEL


def test_success_is_broadcast(template_model_file, glyph_captcha_png):
    broadcaster = ResultBroadcaster()
    messages = collect(broadcaster)

    asyncio.run(make_solver(template_model_file, broadcaster).solve(glyph_captcha_png))

    assert messages == [{"type": "result", "success": True, "text": GLYPH_LABEL}]


def test_blank_image_has_no_characters(model_file):
    broadcaster = ResultBroadcaster()
    messages = collect(broadcaster)
    png = encode_png(np.full((40, 120, 3), 255, dtype=np.uint8))

    with pytest.raises(NoCharactersFoundError):
        asyncio.run(make_solver(model_file, broadcaster).solve(png))

    assert messages == [{"type": "result", "success": False, "message": "No characters found"}]


def test_missing_model_is_unavailable(tmp_path, glyph_captcha_png):
    broadcaster = ResultBroadcaster()
    messages = collect(broadcaster)
    solver = make_solver(tmp_path / "absent.json", broadcaster)

    async def run():
        for _ in range(2):
            with pytest.raises(ModelUnavailableError):
                await solver.solve(glyph_captcha_png)

    asyncio.run(run())

    assert len(messages) == 2
    assert all(m["success"] is False for m in messages)
    assert solver.store.failed


def test_undecodable_image(model_file):
    with pytest.raises(ImageDecodeError):
        asyncio.run(make_solver(model_file).solve(b"\x89PNG broken"))


def test_solve_pixels_returns_one_char_per_band(model_file):
    solver = make_solver(model_file)
    asyncio.run(solver.store.wait_ready())

    pixels = np.full((30, 90, 4), 255, dtype=np.uint8)
    pixels[10:20, 5:85, :3] = 0

    label = solver.solve_pixels(pixels)
    assert len(label) == 6


def test_solver_respects_num_chars(model_file):
    solver = CaptchaSolver(ModelStore(model_file), num_chars=4)
    asyncio.run(solver.store.wait_ready())

    pixels = np.full((30, 90, 4), 255, dtype=np.uint8)
    pixels[10:20, 5:85, :3] = 0
    assert len(solver.solve_pixels(pixels)) == 4


def test_concurrent_solves_share_one_load(monkeypatch, template_model_file, glyph_captcha_png):
    import model.model_store as model_store

    calls = []
    real = model_store.load_model_file

    def loader(source):
        calls.append(source)
        return real(source)

    monkeypatch.setattr(model_store, "load_model_file", loader)
    solver = make_solver(template_model_file)

    async def run():
        return await asyncio.gather(*(solver.solve(glyph_captcha_png) for _ in range(3)))

    assert asyncio.run(run()) == [GLYPH_LABEL] * 3
    assert calls == [template_model_file]


def test_get_solver_is_cached(monkeypatch, template_model_file, glyph_captcha_png):
    monkeypatch.setattr(solver_module, "_solver", None)
    config = {"model": {"path": str(template_model_file)}, "solver": {"num_chars": 6}}

    first = get_solver(config=config)
    assert get_solver() is first
    assert first.store.source == str(template_model_file)
    assert asyncio.run(solver_module.solve(glyph_captcha_png)) == GLYPH_LABEL


def test_caller_timeout_leaves_shared_load_intact(monkeypatch, template_model_file, glyph_captcha_png):
    import model.model_store as model_store

    real = model_store.load_model_file

    def slow_loader(source):
        time.sleep(0.3)
        return real(source)

    monkeypatch.setattr(model_store, "load_model_file", slow_loader)
    solver = make_solver(template_model_file)

    async def run():
        patient = asyncio.ensure_future(solver.solve(glyph_captcha_png))
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(solver.solve(glyph_captcha_png), timeout=0.05)
        later = await solver.solve(glyph_captcha_png)
        return await patient, later

    assert asyncio.run(run()) == (GLYPH_LABEL, GLYPH_LABEL)
    assert solver.store.is_ready
