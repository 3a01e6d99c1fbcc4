from mvsundistort.batch.runner import BatchResult, ParallelBatchRunner
from mvsundistort.batch.undistorters import (
    CMPMVSUndistorter,
    ColmapUndistorter,
    PMVSUndistorter,
    StereoImageRectifier,
)

__all__ = [
    "BatchResult",
    "ParallelBatchRunner",
    "ColmapUndistorter",
    "PMVSUndistorter",
    "CMPMVSUndistorter",
    "StereoImageRectifier",
]
