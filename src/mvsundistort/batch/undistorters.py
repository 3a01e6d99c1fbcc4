"""
Batch undistortion / rectification of every registered image or image pair.

Each class fans out one job per image (or pair) through `ParallelBatchRunner`.
Jobs only read the shared reconstruction; the undistorted reconstruction copy
is produced afterwards on the calling thread.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from functools import partial
from pathlib import Path
from typing import Callable, Sequence

import numpy as np

from mvsundistort.batch.runner import BatchResult, ParallelBatchRunner
from mvsundistort.core.camera import Camera
from mvsundistort.core.image_io import read_image, write_image
from mvsundistort.core.matrix_io import write_matrix, write_projection_matrix
from mvsundistort.core.pose import compute_relative_pose
from mvsundistort.core.reconstruction import Reconstruction
from mvsundistort.core.reconstruction_io import write_text_model
from mvsundistort.options import UndistortCameraOptions
from mvsundistort.stereo.rectify import rectify_and_undistort_stereo_images
from mvsundistort.undistort.camera_undistortion import undistort_image
from mvsundistort.undistort.reconstruction import undistort_reconstruction

logger = logging.getLogger(__name__)

CameraWarp = Callable[[Camera, Camera, np.ndarray], np.ndarray]
HomographyWarp = Callable[[np.ndarray, Camera, Camera, np.ndarray], np.ndarray]

PROJECTION_MATRIX_HEADER = "CONTOUR"


class _ImageBatch(ABC):
    progress_message = "Undistorting image [%d/%d]"
    halt_on_stop = False

    def __init__(
        self,
        options: UndistortCameraOptions,
        reconstruction: Reconstruction,
        image_path: Path,
        output_path: Path,
        runner: ParallelBatchRunner | None = None,
        warp: CameraWarp | None = None,
    ) -> None:
        options.validate()
        self.options = options
        self.reconstruction = reconstruction
        self.image_path = Path(image_path)
        self.output_path = Path(output_path)
        self.runner = runner if runner is not None else ParallelBatchRunner(halt_on_stop=self.halt_on_stop)
        self.warp = warp
        self.undistorted_reconstruction: Reconstruction | None = None

    def _undistort(self, image_id: int) -> tuple[np.ndarray, Camera]:
        image = self.reconstruction.images[image_id]
        distorted = read_image(self.image_path / image.name)
        return undistort_image(self.options, distorted, self.reconstruction.camera_of(image_id), warp=self.warp)

    def _jobs(self) -> list[Callable[[], object]]:
        return [partial(self.undistort, idx, image_id) for idx, image_id in enumerate(self.reconstruction.reg_image_ids())]

    @abstractmethod
    def undistort(self, reg_image_idx: int, image_id: int) -> Path:
        """Undistort one registered image and write its outputs."""

    def run(self) -> BatchResult:
        self.output_path.mkdir(parents=True, exist_ok=True)
        result = self.runner.run(self._jobs(), self.progress_message)
        self._finish(result)
        return result

    def _finish(self, result: BatchResult) -> None:
        pass


class ColmapUndistorter(_ImageBatch):
    """
    Undistorted images under ``images/`` (same relative names) and the
    undistorted sparse model under ``sparse/``.
    """

    def undistort(self, reg_image_idx: int, image_id: int) -> Path:
        undistorted, _camera = self._undistort(image_id)
        name = self.reconstruction.images[image_id].name
        return write_image(self.output_path / "images" / name, undistorted)

    def _finish(self, result: BatchResult) -> None:
        logger.info("Writing reconstruction...")
        self.undistorted_reconstruction = undistort_reconstruction(self.options, self.reconstruction)
        write_text_model(self.undistorted_reconstruction, self.output_path / "sparse")


class PMVSUndistorter(_ImageBatch):
    """
    ``%08d.jpg`` images with ``%08d.txt`` projection matrices, indexed by
    registration order. Stopping discards images that have not started.
    """

    halt_on_stop = True

    def undistort(self, reg_image_idx: int, image_id: int) -> Path:
        undistorted, camera = self._undistort(image_id)
        image = self.reconstruction.images[image_id]
        image_path = write_image(self.output_path / f"{reg_image_idx:08d}.jpg", undistorted)
        write_projection_matrix(
            self.output_path / f"{reg_image_idx:08d}.txt", camera, image, header=PROJECTION_MATRIX_HEADER
        )
        return image_path

    def _finish(self, result: BatchResult) -> None:
        if result.stopped:
            logger.warning(
                "Stopped the undistortion process. Image point locations and camera parameters "
                "for not yet processed images are probably wrong."
            )
        logger.info("Undistorting reconstruction...")
        self.undistorted_reconstruction = undistort_reconstruction(self.options, self.reconstruction)


class CMPMVSUndistorter(_ImageBatch):
    """``%05d.jpg`` images with ``%05d_P.txt`` projection matrices, 1-based."""

    def undistort(self, reg_image_idx: int, image_id: int) -> Path:
        undistorted, camera = self._undistort(image_id)
        image = self.reconstruction.images[image_id]
        stem = f"{reg_image_idx + 1:05d}"
        image_path = write_image(self.output_path / f"{stem}.jpg", undistorted)
        write_projection_matrix(
            self.output_path / f"{stem}_P.txt", camera, image, header=PROJECTION_MATRIX_HEADER
        )
        return image_path


def stereo_pair_name(name1: str, name2: str) -> str:
    return f"{name1.replace('/', '-')}-{name2.replace('/', '-')}"


class StereoImageRectifier:
    """
    For every (image_id1, image_id2) pair, a directory holding both rectified
    undistorted images and the disparity-to-depth matrix ``Q.txt``.
    """

    progress_message = "Rectifying image pair [%d/%d]"

    def __init__(
        self,
        options: UndistortCameraOptions,
        reconstruction: Reconstruction,
        image_path: Path,
        output_path: Path,
        stereo_pairs: Sequence[tuple[int, int]],
        runner: ParallelBatchRunner | None = None,
        warp: HomographyWarp | None = None,
    ) -> None:
        options.validate()
        self.options = options
        self.reconstruction = reconstruction
        self.image_path = Path(image_path)
        self.output_path = Path(output_path)
        self.stereo_pairs = [(int(a), int(b)) for a, b in stereo_pairs]
        self.runner = runner if runner is not None else ParallelBatchRunner()
        self.warp = warp

    def run(self) -> BatchResult:
        self.output_path.mkdir(parents=True, exist_ok=True)
        jobs = [partial(self.rectify, image_id1, image_id2) for image_id1, image_id2 in self.stereo_pairs]
        return self.runner.run(jobs, self.progress_message)

    def rectify(self, image_id1: int, image_id2: int) -> Path:
        image1 = self.reconstruction.images[image_id1]
        image2 = self.reconstruction.images[image_id2]
        camera1 = self.reconstruction.cameras[image1.camera_id]
        camera2 = self.reconstruction.cameras[image2.camera_id]

        name1 = image1.name.replace("/", "-")
        name2 = image2.name.replace("/", "-")
        pair_dir = self.output_path / stereo_pair_name(image1.name, image2.name)

        # Both inputs must be readable before anything is written.
        distorted1 = read_image(self.image_path / image1.name)
        distorted2 = read_image(self.image_path / image2.name)

        qvec, tvec = compute_relative_pose(image1.qvec, image1.tvec, image2.qvec, image2.tvec)
        rectified1, rectified2, _camera, Q = rectify_and_undistort_stereo_images(
            self.options, distorted1, distorted2, camera1, camera2, qvec, tvec, warp=self.warp
        )

        pair_dir.mkdir(parents=True, exist_ok=True)
        write_image(pair_dir / name1, rectified1)
        write_image(pair_dir / name2, rectified2)
        write_matrix(pair_dir / "Q.txt", Q)
        return pair_dir
