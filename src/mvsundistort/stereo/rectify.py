"""
Stereo rectification of two pinhole cameras with a known relative pose.

Both cameras are rotated half-way toward each other and then about a common
axis so that the baseline becomes the x axis: epipolar lines turn into
horizontal scanlines.
"""

from __future__ import annotations

import logging
from typing import Callable

import numpy as np

from mvsundistort.core.camera import Camera
from mvsundistort.core.pose import scaled_rotation
from mvsundistort.errors import PreconditionError
from mvsundistort.options import UndistortCameraOptions
from mvsundistort.undistort.camera_undistortion import undistort_camera

logger = logging.getLogger(__name__)

_EPS = float(np.finfo(np.float64).eps)


def _axis_angle_matrix(axis: np.ndarray, angle: float) -> np.ndarray:
    from scipy.spatial.transform import Rotation as Rot  # type: ignore

    return Rot.from_rotvec(float(angle) * np.asarray(axis, dtype=np.float64).reshape(3)).as_matrix()


def baseline_alignment(t: np.ndarray) -> np.ndarray:
    """Rotation that brings `t` onto the (signed) x axis; identity if already aligned."""
    t = np.asarray(t, dtype=np.float64).reshape(3)
    x_unit = np.array([1.0, 0.0, 0.0], dtype=np.float64)
    if float(t @ x_unit) < 0.0:
        x_unit = -x_unit
    axis = np.cross(t, x_unit)
    axis_norm = float(np.linalg.norm(axis))
    if axis_norm < _EPS:
        return np.eye(3, dtype=np.float64)
    cos_angle = abs(float(t @ x_unit)) / float(np.linalg.norm(t))
    angle = float(np.arccos(np.clip(cos_angle, -1.0, 1.0)))
    return _axis_angle_matrix(axis / axis_norm, angle)


def rectify_stereo_cameras(
    camera1: Camera, camera2: Camera, qvec: np.ndarray, tvec: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Rectifying homographies (H1, H2) and the disparity-to-depth matrix Q.

    `qvec`/`tvec` is the pose of camera 2 relative to camera 1 (X_2 = R X_1 + t).
    Q follows ``[x, y, disparity, 1] @ Q = w * [X, Y, Z, 1]``.
    """
    for camera in (camera1, camera2):
        if not camera.is_pinhole:
            raise PreconditionError(
                f"stereo rectification requires SIMPLE_PINHOLE or PINHOLE cameras, got {camera.model_name}"
            )

    # Split the relative rotation evenly between both cameras.
    R2 = scaled_rotation(qvec, -0.5)
    R1 = R2.T

    t = R2 @ np.asarray(tvec, dtype=np.float64).reshape(3)
    R_x = baseline_alignment(t)
    R1 = R_x @ R1
    R2 = R_x @ R2
    t = R_x @ t

    K = np.eye(3, dtype=np.float64)
    K[0, 0] = min(camera1.mean_focal_length, camera2.mean_focal_length)
    K[1, 1] = K[0, 0]
    K[0, 2] = camera1.principal_point_x
    K[1, 2] = (camera1.principal_point_y + camera2.principal_point_y) / 2.0

    H1 = K @ R1 @ np.linalg.inv(camera1.calibration_matrix())
    H2 = K @ R2 @ np.linalg.inv(camera2.calibration_matrix())

    if abs(float(t[0])) < _EPS:
        raise PreconditionError("stereo baseline is zero; cannot build a disparity-to-depth matrix")
    Q = np.eye(4, dtype=np.float64)
    Q[3, 0] = -K[0, 2]
    Q[3, 1] = -K[1, 2]
    Q[2, 2] = 0.0
    Q[3, 2] = K[0, 0]
    Q[2, 3] = -1.0 / float(t[0])
    Q[3, 3] = 0.0
    return H1, H2, Q


def rectify_and_undistort_stereo_images(
    options: UndistortCameraOptions,
    distorted_image1: np.ndarray,
    distorted_image2: np.ndarray,
    distorted_camera1: Camera,
    distorted_camera2: Camera,
    qvec: np.ndarray,
    tvec: np.ndarray,
    warp: Callable[[np.ndarray, Camera, Camera, np.ndarray], np.ndarray] | None = None,
) -> tuple[np.ndarray, np.ndarray, Camera, np.ndarray]:
    """
    Undistort and rectify an image pair onto one shared pinhole canvas.

    The undistorted camera is derived from camera 1 alone and used for both
    views. Returns (rectified_image1, rectified_image2, undistorted_camera, Q).
    """
    if warp is None:
        from mvsundistort.undistort.warp import warp_image_with_homography_between_cameras as warp

    for image, camera in ((distorted_image1, distorted_camera1), (distorted_image2, distorted_camera2)):
        h, w = np.asarray(image).shape[:2]
        if (w, h) != (camera.width, camera.height):
            raise PreconditionError(
                f"image size {w}x{h} does not match camera size {camera.width}x{camera.height}"
            )

    undistorted_camera = undistort_camera(options, distorted_camera1)
    H1, H2, Q = rectify_stereo_cameras(undistorted_camera, undistorted_camera, qvec, tvec)

    rectified1 = warp(np.linalg.inv(H1), distorted_camera1, undistorted_camera, distorted_image1)
    rectified2 = warp(np.linalg.inv(H2), distorted_camera2, undistorted_camera, distorted_image2)
    return rectified1, rectified2, undistorted_camera, Q
