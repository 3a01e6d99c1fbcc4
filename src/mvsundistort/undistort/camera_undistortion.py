"""
Derive a distortion-free PINHOLE camera from an arbitrary camera model.

The undistorted camera keeps as much of the original field of view as the
options allow. Sampling is restricted to the region around the principal point
where the ray angle grows monotonically with the image radius; beyond it the
distortion model is not reliably invertible.

Limitation: the bisection helpers assume the ray angle is monotonic along each
sampled segment. For models that fold back inside that region (extreme
fisheye coefficients) the border estimate is an approximation.
"""

from __future__ import annotations

import logging
import math
from typing import Callable

import numpy as np

from mvsundistort.core.camera import Camera, pinhole_camera
from mvsundistort.errors import PreconditionError
from mvsundistort.options import UndistortCameraOptions

logger = logging.getLogger(__name__)

NUM_BISECTION_ITERATIONS = 32


def _ray_angles(world: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """(full, horizontal, vertical) angles from the optical axis; NaN for invalid rays."""
    full = np.arctan(np.linalg.norm(world, axis=-1))
    horizontal = np.arctan(np.abs(world[..., 0]))
    vertical = np.arctan(np.abs(world[..., 1]))
    return full, horizontal, vertical


def select_points_on_rays(
    camera: Camera,
    origin: np.ndarray,
    targets: np.ndarray,
    max_length: float,
    max_angle: float,
    max_horizontal_angle: float,
    max_vertical_angle: float,
) -> np.ndarray:
    """
    For each segment origin->target (clipped to `max_length`), find by bisection
    the farthest point whose ray stays within all three half-angle bounds.

    Vectorized over targets (N,2); returns (N,2) pixel positions.
    """
    origin = np.asarray(origin, dtype=np.float64).reshape(2)
    targets = np.asarray(targets, dtype=np.float64).reshape(-1, 2)
    diff = targets - origin
    length = np.linalg.norm(diff, axis=1)
    direction = np.divide(diff, length[:, None], out=np.zeros_like(diff), where=length[:, None] > 0.0)

    lo = np.zeros_like(length)
    hi = np.minimum(float(max_length), length)
    for _ in range(NUM_BISECTION_ITERATIONS):
        mid = 0.5 * (lo + hi)
        world = camera.image_to_world(origin + direction * mid[:, None])
        full, horizontal, vertical = _ray_angles(world)
        with np.errstate(invalid="ignore"):
            valid = (vertical < max_vertical_angle) & (horizontal < max_horizontal_angle) & (full < max_angle)
        lo = np.where(valid, mid, lo)
        hi = np.where(valid, hi, mid)
    return origin + direction * lo[:, None]


def select_point_on_ray(
    camera: Camera,
    origin: np.ndarray,
    target: np.ndarray,
    max_length: float,
    max_angle: float,
    max_horizontal_angle: float,
    max_vertical_angle: float,
) -> np.ndarray:
    return select_points_on_rays(
        camera, origin, np.asarray(target, dtype=np.float64).reshape(1, 2), max_length, max_angle,
        max_horizontal_angle, max_vertical_angle,
    )[0]


def image_corners(camera: Camera) -> np.ndarray:
    w, h = float(camera.width), float(camera.height)
    return np.array([[0.0, 0.0], [w, 0.0], [w, h], [0.0, h]], dtype=np.float64)


def estimate_max_valid_radius(camera: Camera, max_fov: float) -> tuple[float, float]:
    """
    Walk from the principal point toward the farthest corner in 1 px steps while
    the ray angle strictly increases and stays within ``max_fov / 2`` (radians).

    Returns (max_valid_radius, max_valid_fov_half). If not even the first step
    is valid, the image diagonal and ``max_fov / 2`` are returned.
    """
    principal_point = np.array([camera.principal_point_x, camera.principal_point_y], dtype=np.float64)
    max_valid_radius = float(math.hypot(camera.width, camera.height))
    max_valid_fov_half = max_fov / 2.0

    diffs = image_corners(camera) - principal_point
    norms = np.linalg.norm(diffs, axis=1)
    k = int(np.argmax(norms))
    max_radius = float(norms[k])
    if max_radius <= 1.0:
        return max_valid_radius, max_valid_fov_half
    corner_dir = diffs[k] / max_radius

    steps = np.arange(1, int(math.ceil(max_radius)), dtype=np.float64)
    world = camera.image_to_world(principal_point + steps[:, None] * corner_dir)
    phi = np.arctan(np.linalg.norm(world, axis=1))

    prev = np.concatenate([[0.0], phi[:-1]])
    with np.errstate(invalid="ignore"):
        valid = np.isfinite(phi) & (phi > prev) & (2.0 * phi <= max_fov)
    n_valid = int(np.argmin(valid)) if not np.all(valid) else int(valid.size)
    if n_valid == 0:
        logger.debug("No valid radius for %s; keeping the full diagonal", camera.model_name)
        return max_valid_radius, max_valid_fov_half
    return float(steps[n_valid - 1]), float(phi[n_valid - 1])


def _focal_from_fov(extent_px: float, fov: float) -> float:
    if not np.isfinite(fov) or fov <= 0.0:
        return 0.0
    return extent_px / 2.0 / math.tan(fov / 2.0)


def _estimate_focal_length_from_fov(
    camera: Camera,
    principal_point: np.ndarray,
    max_valid_radius: float,
    max_valid_fov_half: float,
    max_horizontal_fov: float,
    max_vertical_fov: float,
) -> float:
    w, h = float(camera.width), float(camera.height)
    diagonal = math.hypot(w, h)
    half_h = max_horizontal_fov / 2.0
    half_v = max_vertical_fov / 2.0

    # Diagonal field of view, one estimate per corner pair.
    focal_diagonal = _focal_from_fov(diagonal, 2.0 * max_valid_fov_half)
    corners = image_corners(camera)
    selected = select_points_on_rays(
        camera, principal_point, corners, max_valid_radius, max_valid_fov_half, half_h, half_v
    )
    angles = np.arctan(np.linalg.norm(camera.image_to_world(selected), axis=1))
    for i in range(2):
        focal_diagonal = max(focal_diagonal, _focal_from_fov(diagonal, float(angles[i] + angles[i + 2])))

    # Horizontal and vertical field of view through the border midpoints.
    cx, cy = float(principal_point[0]), float(principal_point[1])
    borders = np.array([[0.0, cy], [w, cy], [cx, 0.0], [cx, h]], dtype=np.float64)
    selected = select_points_on_rays(
        camera, principal_point, borders, max_valid_radius, max_valid_fov_half, half_h, half_v
    )
    world = camera.image_to_world(selected)
    horizontal_fov = float(np.arctan(abs(world[0, 0])) + np.arctan(abs(world[1, 0])))
    vertical_fov = float(np.arctan(abs(world[2, 1])) + np.arctan(abs(world[3, 1])))
    focal_horizontal = _focal_from_fov(w, min(max_horizontal_fov, horizontal_fov))
    focal_vertical = _focal_from_fov(h, min(max_vertical_fov, vertical_fov))

    focal = max(focal_diagonal, focal_horizontal, focal_vertical)
    if focal <= 0.0:
        raise PreconditionError(f"cannot estimate a focal length from the field of view of {camera.model_name}")
    return focal


def _border_samples(camera: Camera) -> dict[str, np.ndarray]:
    w, h = float(camera.width), float(camera.height)
    ys = np.arange(camera.height, dtype=np.float64) + 0.5
    xs = np.arange(camera.width, dtype=np.float64) + 0.5
    return {
        "left": np.stack([np.full_like(ys, 0.5), ys], axis=1),
        "right": np.stack([np.full_like(ys, w - 0.5), ys], axis=1),
        "top": np.stack([xs, np.full_like(xs, 0.5)], axis=1),
        "bottom": np.stack([xs, np.full_like(xs, h - 0.5)], axis=1),
    }


def _fit_canvas(
    options: UndistortCameraOptions,
    distorted: Camera,
    undistorted: Camera,
    principal_point: np.ndarray,
    max_valid_radius: float,
    max_valid_fov_half: float,
    max_horizontal_fov: float,
    max_vertical_fov: float,
) -> Camera:
    """Scale the canvas so that the undistorted border trades blank pixels against cropping."""
    extent: dict[str, tuple[float, float]] = {}
    for side, targets in _border_samples(distorted).items():
        points = select_points_on_rays(
            distorted,
            principal_point,
            targets,
            max_valid_radius,
            max_valid_fov_half,
            max_horizontal_fov / 2.0,
            max_vertical_fov / 2.0,
        )
        projected = undistorted.world_to_image(distorted.image_to_world(points))
        axis = 0 if side in ("left", "right") else 1
        values = projected[:, axis]
        values = values[np.isfinite(values)]
        if values.size == 0:
            raise PreconditionError(f"{side} border of {distorted.model_name} camera does not map to valid rays")
        extent[side] = (float(values.min()), float(values.max()))

    cx = undistorted.principal_point_x
    cy = undistorted.principal_point_y
    w = float(distorted.width)
    h = float(distorted.height)
    left_min_x, left_max_x = extent["left"]
    right_min_x, right_max_x = extent["right"]
    top_min_y, top_max_y = extent["top"]
    bottom_min_y, bottom_max_y = extent["bottom"]

    with np.errstate(divide="ignore", invalid="ignore"):
        # Undistorted image contains all pixels of the distorted image.
        min_scale_x = min(cx / (cx - left_min_x), (w - 0.5 - cx) / (right_max_x - cx))
        min_scale_y = min(cy / (cy - top_min_y), (h - 0.5 - cy) / (bottom_max_y - cy))
        # Undistorted image contains no blank pixels.
        max_scale_x = max(cx / (cx - left_max_x), (w - 0.5 - cx) / (right_min_x - cx))
        max_scale_y = max(cy / (cy - top_max_y), (h - 0.5 - cy) / (bottom_min_y - cy))

        b = float(options.blank_pixels)
        scale_x = 1.0 / (min_scale_x * b + max_scale_x * (1.0 - b))
        scale_y = 1.0 / (min_scale_y * b + max_scale_y * (1.0 - b))

    if not (np.isfinite(scale_x) and np.isfinite(scale_y)):
        raise PreconditionError(f"degenerate canvas scale ({scale_x}, {scale_y}) for {distorted.model_name}")
    scale_x = float(np.clip(scale_x, options.min_scale, options.max_scale))
    scale_y = float(np.clip(scale_y, options.min_scale, options.max_scale))

    width = int(max(1.0, scale_x * undistorted.width))
    height = int(max(1.0, scale_y * undistorted.height))
    logger.debug(
        "Canvas scale for %s: (%.4f, %.4f) -> %dx%d", distorted.model_name, scale_x, scale_y, width, height
    )
    return pinhole_camera(
        width,
        height,
        undistorted.focal_length_x,
        undistorted.focal_length_y,
        cx * width / float(distorted.width),
        cy * height / float(distorted.height),
    )


def undistort_camera(options: UndistortCameraOptions, camera: Camera) -> Camera:
    """
    Compute the PINHOLE camera that replaces `camera` in the undistorted images.

    Raises `PreconditionError` for invalid options or camera parameters.
    """
    options.validate()
    camera.check()

    if options.camera_model_override:
        return Camera.from_params_string(
            options.camera_model_override, camera.width, camera.height, options.camera_model_override_params
        )

    max_fov = math.radians(options.max_fov)
    max_horizontal_fov = math.radians(options.max_horizontal_fov)
    max_vertical_fov = math.radians(options.max_vertical_fov)

    principal_point = np.array([camera.principal_point_x, camera.principal_point_y], dtype=np.float64)
    max_valid_radius, max_valid_fov_half = estimate_max_valid_radius(camera, max_fov)

    if options.estimate_focal_length_from_fov:
        focal = _estimate_focal_length_from_fov(
            camera, principal_point, max_valid_radius, max_valid_fov_half, max_horizontal_fov, max_vertical_fov
        )
        fx = fy = focal
    else:
        if len(camera.focal_length_idxs) > 2:
            raise PreconditionError("Not more than two focal length parameters supported.")
        fx, fy = camera.focal_length_x, camera.focal_length_y

    undistorted = pinhole_camera(
        camera.width, camera.height, fx, fy, camera.principal_point_x, camera.principal_point_y
    )

    if not camera.is_pinhole:
        undistorted = _fit_canvas(
            options,
            camera,
            undistorted,
            principal_point,
            max_valid_radius,
            max_valid_fov_half,
            max_horizontal_fov,
            max_vertical_fov,
        )

    if options.max_image_size > 0:
        max_image_scale = min(
            options.max_image_size / float(undistorted.width),
            options.max_image_size / float(undistorted.height),
        )
        if max_image_scale < 1.0:
            undistorted = undistorted.rescale(max_image_scale)

    return undistorted


def undistort_image(
    options: UndistortCameraOptions,
    distorted_image: np.ndarray,
    distorted_camera: Camera,
    warp: Callable[[Camera, Camera, np.ndarray], np.ndarray] | None = None,
) -> tuple[np.ndarray, Camera]:
    """Returns (undistorted_image, undistorted_camera)."""
    if warp is None:
        from mvsundistort.undistort.warp import warp_image_between_cameras as warp

    h, w = np.asarray(distorted_image).shape[:2]
    if (w, h) != (distorted_camera.width, distorted_camera.height):
        raise PreconditionError(
            f"image size {w}x{h} does not match camera size {distorted_camera.width}x{distorted_camera.height}"
        )
    undistorted_camera = undistort_camera(options, distorted_camera)
    return warp(distorted_camera, undistorted_camera, distorted_image), undistorted_camera
