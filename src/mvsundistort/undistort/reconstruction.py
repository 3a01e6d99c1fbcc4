from __future__ import annotations

import logging

from mvsundistort.core.reconstruction import Reconstruction
from mvsundistort.options import UndistortCameraOptions
from mvsundistort.undistort.camera_undistortion import undistort_camera

logger = logging.getLogger(__name__)


def undistort_reconstruction_inplace(options: UndistortCameraOptions, reconstruction: Reconstruction) -> None:
    """
    Replace every camera by its undistorted PINHOLE counterpart and move every
    2D observation accordingly. Tracks and 3D points are left as they are.
    """
    distorted_cameras = dict(reconstruction.cameras)
    for camera_id, camera in distorted_cameras.items():
        reconstruction.cameras[camera_id] = undistort_camera(options, camera)

    for image in reconstruction.images.values():
        if not image.points2D:
            continue
        distorted = distorted_cameras[image.camera_id]
        undistorted = reconstruction.cameras[image.camera_id]
        xy = [p.xy for p in image.points2D]
        moved = undistorted.world_to_image(distorted.image_to_world(xy))
        for point2D, new_xy in zip(image.points2D, moved):
            point2D.xy = new_xy.copy()

    logger.debug(
        "Undistorted %d cameras and %d images", len(reconstruction.cameras), len(reconstruction.images)
    )


def undistort_reconstruction(options: UndistortCameraOptions, reconstruction: Reconstruction) -> Reconstruction:
    """Undistorted copy of `reconstruction`; the input is not modified."""
    undistorted = reconstruction.copy()
    undistort_reconstruction_inplace(options, undistorted)
    return undistorted
