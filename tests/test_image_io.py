from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from mvsundistort.core.image_io import read_image, write_image
from mvsundistort.errors import ImageReadError


def test_write_and_read_gray_png(tmp_path: Path) -> None:
    arr = (np.arange(64, dtype=np.uint8).reshape(8, 8) * 4) % 255
    path = write_image(tmp_path / "nested" / "a.png", arr)
    back = read_image(path)
    assert back.dtype == np.uint8
    assert np.array_equal(back, arr)


def test_read_converts_to_rgb(tmp_path: Path) -> None:
    rgba = np.zeros((4, 5, 4), dtype=np.uint8)
    rgba[..., 0] = 200
    rgba[..., 3] = 255
    Image.fromarray(rgba).save(tmp_path / "a.png")
    back = read_image(tmp_path / "a.png")
    assert back.shape == (4, 5, 3)
    assert np.all(back[..., 0] == 200)


def test_write_jpeg_and_clip_float_input(tmp_path: Path) -> None:
    arr = np.full((6, 7, 3), 300.0)
    path = write_image(tmp_path / "a.jpg", arr)
    back = read_image(path)
    assert back.shape == (6, 7, 3)
    assert back.min() >= 250


def test_missing_image_raises(tmp_path: Path) -> None:
    with pytest.raises(ImageReadError) as excinfo:
        read_image(tmp_path / "nope.png")
    assert str(excinfo.value).startswith("Cannot read image at path")
    assert excinfo.value.path == tmp_path / "nope.png"
    assert isinstance(excinfo.value, OSError)


def test_corrupt_image_raises(tmp_path: Path) -> None:
    path = tmp_path / "broken.png"
    path.write_bytes(b"not an image")
    with pytest.raises(ImageReadError):
        read_image(path)
