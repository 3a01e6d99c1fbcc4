"""
Image warping between camera models, backed by OpenCV remap.

For every destination pixel centre the source position is found by inverse
mapping: (optional homography) -> destination camera ray -> source camera
pixel. Pixels whose ray has no valid source position are left black.
"""

from __future__ import annotations

import cv2
import numpy as np

from mvsundistort.core.camera import Camera
from mvsundistort.errors import PreconditionError


def _pixel_centers(width: int, height: int) -> np.ndarray:
    yy, xx = np.meshgrid(
        np.arange(height, dtype=np.float64) + 0.5, np.arange(width, dtype=np.float64) + 0.5, indexing="ij"
    )
    return np.stack([xx, yy], axis=-1)


def _apply_homography(H: np.ndarray, points: np.ndarray) -> np.ndarray:
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    ph = points @ H[:, :2].T + H[:, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        return ph[..., :2] / ph[..., 2:3]


def build_remap(
    src_camera: Camera, dst_camera: Camera, homography: np.ndarray | None = None
) -> tuple[np.ndarray, np.ndarray]:
    """
    Remap LUTs (mapx, mapy) of shape (dst.height, dst.width), float32, in OpenCV
    pixel coordinates of the source image.
    """
    points = _pixel_centers(dst_camera.width, dst_camera.height)
    if homography is not None:
        points = _apply_homography(homography, points)
    src = src_camera.world_to_image(dst_camera.image_to_world(points)) - 0.5
    src = np.where(np.isfinite(src), src, -1.0)
    return src[..., 0].astype(np.float32), src[..., 1].astype(np.float32)


def _remap(image: np.ndarray, mapx: np.ndarray, mapy: np.ndarray) -> np.ndarray:
    return cv2.remap(
        np.ascontiguousarray(image),
        mapx,
        mapy,
        interpolation=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0,
    )


def _check_size(camera: Camera, image: np.ndarray) -> None:
    h, w = np.asarray(image).shape[:2]
    if (w, h) != (camera.width, camera.height):
        raise PreconditionError(f"image size {w}x{h} does not match camera size {camera.width}x{camera.height}")


def warp_image_between_cameras(src_camera: Camera, dst_camera: Camera, image: np.ndarray) -> np.ndarray:
    _check_size(src_camera, image)
    mapx, mapy = build_remap(src_camera, dst_camera)
    return _remap(image, mapx, mapy)


def warp_image_with_homography_between_cameras(
    homography: np.ndarray, src_camera: Camera, dst_camera: Camera, image: np.ndarray
) -> np.ndarray:
    """
    `homography` maps destination pixels into the image plane of `dst_camera`
    before the camera-to-camera mapping (pass the inverse of a rectifying homography).
    """
    _check_size(src_camera, image)
    mapx, mapy = build_remap(src_camera, dst_camera, homography)
    return _remap(image, mapx, mapy)
