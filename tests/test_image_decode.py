import asyncio
import base64

import cv2
import numpy as np
import pytest

from conftest import encode_png
from errors import ImageDecodeError
from pipeline.image_decode import decode_image, decode_image_async


@pytest.fixture
def bgr_image():
    img = np.zeros((4, 5, 3), dtype=np.uint8)
    img[0, 0] = (255, 0, 0)    # blue in BGR
    img[1, 2] = (0, 0, 255)    # red in BGR
    img[3, 4] = (10, 20, 30)
    return img


def check_rgba(pixels):
    assert pixels.shape == (4, 5, 4)
    assert pixels.dtype == np.uint8
    assert tuple(pixels[0, 0]) == (0, 0, 255, 255)
    assert tuple(pixels[1, 2]) == (255, 0, 0, 255)
    assert tuple(pixels[3, 4]) == (30, 20, 10, 255)


def test_decode_bytes(bgr_image):
    check_rgba(decode_image(encode_png(bgr_image)))


def test_decode_path_and_str_path(tmp_path, bgr_image):
    path = tmp_path / "captcha.png"
    path.write_bytes(encode_png(bgr_image))
    check_rgba(decode_image(path))
    check_rgba(decode_image(str(path)))


def test_decode_data_url(bgr_image):
    payload = base64.b64encode(encode_png(bgr_image)).decode("ascii")
    check_rgba(decode_image(f"data:image/png;base64,{payload}"))


def test_decode_bare_base64(bgr_image):
    check_rgba(decode_image(base64.b64encode(encode_png(bgr_image)).decode("ascii")))


def test_decode_grayscale_png():
    gray = np.array([[0, 128], [200, 255]], dtype=np.uint8)
    pixels = decode_image(encode_png(gray))
    assert pixels.shape == (2, 2, 4)
    assert tuple(pixels[0, 1]) == (128, 128, 128, 255)
    assert tuple(pixels[1, 0]) == (200, 200, 200, 255)


def test_decode_transparent_pixels_read_as_black():
    bgra = np.full((2, 2, 4), 255, dtype=np.uint8)
    bgra[0, 0] = (255, 255, 255, 0)
    bgra[1, 1] = (0, 0, 255, 128)
    pixels = decode_image(encode_png(bgra))

    assert tuple(pixels[0, 0]) == (0, 0, 0, 0)
    assert tuple(pixels[0, 1]) == (255, 255, 255, 255)
    assert tuple(pixels[1, 1]) == (255, 0, 0, 128)


def test_decode_16_bit_png():
    img = np.full((2, 2, 3), 0xFFFF, dtype=np.uint16)
    img[0, 0] = (0, 0x8000, 0x0100)
    pixels = decode_image(encode_png(img))

    assert pixels.dtype == np.uint8
    assert tuple(pixels[0, 0]) == (1, 128, 0, 255)
    assert tuple(pixels[1, 1]) == (255, 255, 255, 255)


@pytest.mark.parametrize("source", [
    b"definitely not an image",
    b"",
    "",
    "data:image/png,rawpayload",
    "data:image/png;base64,@@@not base64@@@",
    "missing-file.png",
    12345,
])
def test_decode_rejects_bad_sources(source):
    with pytest.raises(ImageDecodeError):
        decode_image(source)


def test_decode_missing_path_object(tmp_path):
    with pytest.raises(ImageDecodeError) as excinfo:
        decode_image(tmp_path / "gone.png")
    assert isinstance(excinfo.value.__cause__, OSError)


def test_decode_async(bgr_image):
    check_rgba(asyncio.run(decode_image_async(encode_png(bgr_image))))


def test_jpeg_is_accepted():
    img = np.full((16, 16, 3), 255, dtype=np.uint8)
    ok, buf = cv2.imencode(".jpg", img)
    assert ok
    pixels = decode_image(buf.tobytes())
    assert pixels.shape == (16, 16, 4)
    assert (pixels[..., 3] == 255).all()
