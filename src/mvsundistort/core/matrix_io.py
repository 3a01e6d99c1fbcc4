"""
Plain-text matrix files: one row per line, space-separated entries, with an
optional header line.
"""

from __future__ import annotations

from pathlib import Path
from typing import IO

import numpy as np

from mvsundistort.core.camera import Camera
from mvsundistort.core.camera_models import PINHOLE
from mvsundistort.core.reconstruction import Image
from mvsundistort.errors import PreconditionError


def format_matrix(matrix: np.ndarray) -> str:
    M = np.atleast_2d(np.asarray(matrix, dtype=np.float64))
    return "".join(" ".join(repr(float(v)) for v in row) + "\n" for row in M)


def write_matrix(target: str | Path | IO[str], matrix: np.ndarray, header: str | None = None) -> None:
    text = format_matrix(matrix)
    if header:
        text = f"{header}\n{text}"
    if hasattr(target, "write"):
        target.write(text)  # type: ignore[union-attr]
        return
    p = Path(target)  # type: ignore[arg-type]
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")


def read_matrix(path: str | Path) -> tuple[np.ndarray, str | None]:
    """Returns (matrix, header). A first line that does not parse as numbers is the header."""
    lines = [ln for ln in Path(path).read_text(encoding="utf-8").splitlines() if ln.strip()]
    header = None
    if lines:
        try:
            [float(v) for v in lines[0].split()]
        except ValueError:
            header = lines[0]
            lines = lines[1:]
    rows = [[float(v) for v in ln.split()] for ln in lines]
    return np.asarray(rows, dtype=np.float64), header


def projection_matrix(camera: Camera, image: Image) -> np.ndarray:
    """P = K [R | t] for an undistorted PINHOLE camera."""
    if camera.model_id != PINHOLE.model_id:
        raise PreconditionError(f"projection matrix requires a PINHOLE camera, got {camera.model_name}")
    return camera.calibration_matrix() @ image.projection_matrix()


def write_projection_matrix(path: str | Path, camera: Camera, image: Image, header: str | None = None) -> None:
    write_matrix(path, projection_matrix(camera, image), header=header)
