from mvsundistort.undistort.camera_undistortion import (
    estimate_max_valid_radius,
    select_point_on_ray,
    select_points_on_rays,
    undistort_camera,
    undistort_image,
)
from mvsundistort.undistort.reconstruction import undistort_reconstruction, undistort_reconstruction_inplace

__all__ = [
    "estimate_max_valid_radius",
    "select_point_on_ray",
    "select_points_on_rays",
    "undistort_camera",
    "undistort_image",
    "undistort_reconstruction",
    "undistort_reconstruction_inplace",
]
