from mvsundistort.stereo.rectify import rectify_and_undistort_stereo_images, rectify_stereo_cameras

__all__ = ["rectify_stereo_cameras", "rectify_and_undistort_stereo_images"]
