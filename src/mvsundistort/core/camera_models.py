"""
Closed family of camera projection models.

Every model maps pixels to normalized camera coordinates (x=X/Z, y=Y/Z) and
back. Distorting models add a displacement (du, dv) to the ideal normalized
coordinates; the inverse is found iteratively.

Pixel convention: the centre of the top-left pixel is (0.5, 0.5).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from mvsundistort.errors import PreconditionError

DistortionFn = Callable[[np.ndarray, np.ndarray, np.ndarray], "tuple[np.ndarray, np.ndarray]"]

_EPS = float(np.finfo(np.float64).eps)


def _radial_polynomial(extra: np.ndarray, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    r2 = u * u + v * v
    radial = np.zeros_like(r2)
    r2k = np.ones_like(r2)
    for k in extra:
        r2k = r2k * r2
        radial = radial + float(k) * r2k
    return u * radial, v * radial


def _opencv(extra: np.ndarray, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    k1, k2, p1, p2 = (float(p) for p in extra)
    u2 = u * u
    v2 = v * v
    uv = u * v
    r2 = u2 + v2
    radial = k1 * r2 + k2 * r2 * r2
    du = u * radial + 2.0 * p1 * uv + p2 * (r2 + 2.0 * u2)
    dv = v * radial + 2.0 * p2 * uv + p1 * (r2 + 2.0 * v2)
    return du, dv


def _full_opencv(extra: np.ndarray, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    k1, k2, p1, p2, k3, k4, k5, k6 = (float(p) for p in extra)
    u2 = u * u
    v2 = v * v
    uv = u * v
    r2 = u2 + v2
    r4 = r2 * r2
    r6 = r4 * r2
    radial = (1.0 + k1 * r2 + k2 * r4 + k3 * r6) / (1.0 + k4 * r2 + k5 * r4 + k6 * r6)
    du = u * radial + 2.0 * p1 * uv + p2 * (r2 + 2.0 * u2) - u
    dv = v * radial + 2.0 * p2 * uv + p1 * (r2 + 2.0 * v2) - v
    return du, dv


def _fisheye_polynomial(extra: np.ndarray, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    r = np.sqrt(u * u + v * v)
    theta = np.arctan(r)
    theta2 = theta * theta
    poly = np.ones_like(theta)
    theta2k = np.ones_like(theta)
    for k in extra:
        theta2k = theta2k * theta2
        poly = poly + float(k) * theta2k
    thetad = theta * poly
    ok = r > _EPS
    ratio = np.divide(thetad, r, out=np.ones_like(r), where=ok)
    du = np.where(ok, u * ratio - u, 0.0)
    dv = np.where(ok, v * ratio - v, 0.0)
    return du, dv


@dataclass(frozen=True)
class CameraModel:
    model_id: int
    model_name: str
    param_names: tuple[str, ...]
    focal_length_idxs: tuple[int, ...]
    principal_point_idxs: tuple[int, int]
    distortion: Optional[DistortionFn] = None

    @property
    def num_params(self) -> int:
        return len(self.param_names)

    @property
    def extra_params_idxs(self) -> tuple[int, ...]:
        used = set(self.focal_length_idxs) | set(self.principal_point_idxs)
        return tuple(i for i in range(self.num_params) if i not in used)

    @property
    def is_pinhole(self) -> bool:
        return self.distortion is None

    def params_info(self) -> str:
        return ", ".join(self.param_names)

    def world_to_image(self, params: np.ndarray, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        params = np.asarray(params, dtype=np.float64)
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        if self.distortion is not None:
            du, dv = self.distortion(params[list(self.extra_params_idxs)], x, y)
            x = x + du
            y = y + dv
        fx, fy = self._focal_xy(params)
        cx, cy = (float(params[i]) for i in self.principal_point_idxs)
        return fx * x + cx, fy * y + cy

    def image_to_world(self, params: np.ndarray, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        params = np.asarray(params, dtype=np.float64)
        fx, fy = self._focal_xy(params)
        cx, cy = (float(params[i]) for i in self.principal_point_idxs)
        x = (np.asarray(u, dtype=np.float64) - cx) / fx
        y = (np.asarray(v, dtype=np.float64) - cy) / fy
        if self.distortion is None:
            return x, y
        return iterative_undistortion(self.distortion, params[list(self.extra_params_idxs)], x, y)

    def _focal_xy(self, params: np.ndarray) -> tuple[float, float]:
        if len(self.focal_length_idxs) == 1:
            f = float(params[self.focal_length_idxs[0]])
            return f, f
        return float(params[self.focal_length_idxs[0]]), float(params[self.focal_length_idxs[1]])


def iterative_undistortion(
    distortion: DistortionFn,
    extra: np.ndarray,
    xd: np.ndarray,
    yd: np.ndarray,
    max_iterations: int = 100,
    max_step_sq: float = 1e-10,
    rel_step_size: float = 1e-6,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Invert ``x + distortion(x) = xd`` with Newton steps on a central
    finite-difference Jacobian. Vectorized over all points.

    Points without a preimage (e.g. beyond the fold of a barrel distortion)
    come back as NaN.
    """
    xd = np.asarray(xd, dtype=np.float64)
    yd = np.asarray(yd, dtype=np.float64)
    x = xd.copy()
    y = yd.copy()
    active = np.ones(x.shape, dtype=bool)
    with np.errstate(divide="ignore", invalid="ignore"):
        for _ in range(int(max_iterations)):
            sx = np.maximum(_EPS, rel_step_size * np.abs(x))
            sy = np.maximum(_EPS, rel_step_size * np.abs(y))

            du, dv = distortion(extra, x, y)
            du_xp, dv_xp = distortion(extra, x + sx, y)
            du_xm, dv_xm = distortion(extra, x - sx, y)
            du_yp, dv_yp = distortion(extra, x, y + sy)
            du_ym, dv_ym = distortion(extra, x, y - sy)

            j00 = 1.0 + (du_xp - du_xm) / (2.0 * sx)
            j01 = (du_yp - du_ym) / (2.0 * sy)
            j10 = (dv_xp - dv_xm) / (2.0 * sx)
            j11 = 1.0 + (dv_yp - dv_ym) / (2.0 * sy)

            rx = x + du - xd
            ry = y + dv - yd
            det = j00 * j11 - j01 * j10
            good = active & np.isfinite(det) & (np.abs(det) > _EPS)
            step_x = np.where(good, (j11 * rx - j01 * ry) / det, 0.0)
            step_y = np.where(good, (j00 * ry - j10 * rx) / det, 0.0)
            x = x - step_x
            y = y - step_y

            active = good & (step_x * step_x + step_y * step_y >= max_step_sq)
            if not np.any(active):
                break

        du, dv = distortion(extra, x, y)
        rx = x + du - xd
        ry = y + dv - yd
        failed = ~(rx * rx + ry * ry < max_step_sq)
    x = np.where(failed, np.nan, x)
    y = np.where(failed, np.nan, y)
    return x, y


SIMPLE_PINHOLE = CameraModel(0, "SIMPLE_PINHOLE", ("f", "cx", "cy"), (0,), (1, 2))
PINHOLE = CameraModel(1, "PINHOLE", ("fx", "fy", "cx", "cy"), (0, 1), (2, 3))
SIMPLE_RADIAL = CameraModel(2, "SIMPLE_RADIAL", ("f", "cx", "cy", "k"), (0,), (1, 2), _radial_polynomial)
RADIAL = CameraModel(3, "RADIAL", ("f", "cx", "cy", "k1", "k2"), (0,), (1, 2), _radial_polynomial)
OPENCV = CameraModel(
    4, "OPENCV", ("fx", "fy", "cx", "cy", "k1", "k2", "p1", "p2"), (0, 1), (2, 3), _opencv
)
OPENCV_FISHEYE = CameraModel(
    5, "OPENCV_FISHEYE", ("fx", "fy", "cx", "cy", "k1", "k2", "k3", "k4"), (0, 1), (2, 3), _fisheye_polynomial
)
FULL_OPENCV = CameraModel(
    6,
    "FULL_OPENCV",
    ("fx", "fy", "cx", "cy", "k1", "k2", "p1", "p2", "k3", "k4", "k5", "k6"),
    (0, 1),
    (2, 3),
    _full_opencv,
)
SIMPLE_RADIAL_FISHEYE = CameraModel(
    8, "SIMPLE_RADIAL_FISHEYE", ("f", "cx", "cy", "k"), (0,), (1, 2), _fisheye_polynomial
)
RADIAL_FISHEYE = CameraModel(
    9, "RADIAL_FISHEYE", ("f", "cx", "cy", "k1", "k2"), (0,), (1, 2), _fisheye_polynomial
)

CAMERA_MODELS: tuple[CameraModel, ...] = (
    SIMPLE_PINHOLE,
    PINHOLE,
    SIMPLE_RADIAL,
    RADIAL,
    OPENCV,
    OPENCV_FISHEYE,
    FULL_OPENCV,
    SIMPLE_RADIAL_FISHEYE,
    RADIAL_FISHEYE,
)
CAMERA_MODEL_IDS: dict[int, CameraModel] = {m.model_id: m for m in CAMERA_MODELS}
CAMERA_MODEL_NAMES: dict[str, CameraModel] = {m.model_name: m for m in CAMERA_MODELS}
PINHOLE_MODEL_IDS = frozenset({SIMPLE_PINHOLE.model_id, PINHOLE.model_id})


def camera_model_from_id(model_id: int) -> CameraModel:
    try:
        return CAMERA_MODEL_IDS[int(model_id)]
    except KeyError as e:
        raise PreconditionError(f"unknown camera model id: {model_id}") from e


def camera_model_from_name(name: str) -> CameraModel:
    try:
        return CAMERA_MODEL_NAMES[str(name).strip().upper()]
    except KeyError as e:
        raise PreconditionError(f"unknown camera model: {name}") from e
