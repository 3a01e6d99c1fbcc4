from mvsundistort.batch import (
    BatchResult,
    CMPMVSUndistorter,
    ColmapUndistorter,
    ParallelBatchRunner,
    PMVSUndistorter,
    StereoImageRectifier,
)
from mvsundistort.core.camera import Camera
from mvsundistort.core.reconstruction import Image, Point2D, Point3D, Reconstruction, TrackElement
from mvsundistort.errors import ImageReadError, PreconditionError, UndistortionError
from mvsundistort.log_config import setup_logging
from mvsundistort.options import UndistortCameraOptions
from mvsundistort.stereo import rectify_and_undistort_stereo_images, rectify_stereo_cameras
from mvsundistort.undistort import (
    undistort_camera,
    undistort_image,
    undistort_reconstruction,
    undistort_reconstruction_inplace,
)

__all__ = [
    "BatchResult",
    "Camera",
    "CMPMVSUndistorter",
    "ColmapUndistorter",
    "Image",
    "ImageReadError",
    "ParallelBatchRunner",
    "PMVSUndistorter",
    "Point2D",
    "Point3D",
    "PreconditionError",
    "Reconstruction",
    "StereoImageRectifier",
    "TrackElement",
    "UndistortCameraOptions",
    "UndistortionError",
    "rectify_and_undistort_stereo_images",
    "rectify_stereo_cameras",
    "setup_logging",
    "undistort_camera",
    "undistort_image",
    "undistort_reconstruction",
    "undistort_reconstruction_inplace",
]
