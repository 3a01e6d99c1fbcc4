from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from mvsundistort.errors import ImageReadError


def read_image(path: str | Path) -> np.ndarray:
    """
    Load an image as uint8, (H,W) for grayscale or (H,W,3) for color.

    Missing or undecodable files raise `ImageReadError`, which batch jobs treat
    as a per-image skip.
    """
    p = Path(path)
    if not p.is_file():
        raise ImageReadError(p, "no such file")
    try:
        with Image.open(p) as im:
            if im.mode not in ("L", "RGB"):
                im = im.convert("RGB")
            arr = np.asarray(im, dtype=np.uint8).copy()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageReadError(p, str(e)) from e
    return arr


def write_image(path: str | Path, image: np.ndarray) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    arr = np.asarray(image)
    if arr.dtype != np.uint8:
        arr = np.clip(np.rint(arr), 0, 255).astype(np.uint8)
    img = Image.fromarray(arr)
    if p.suffix.lower() in (".jpg", ".jpeg"):
        img.save(p, quality=95)
    else:
        img.save(p)
    return p
