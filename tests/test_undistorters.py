from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pytest

from mvsundistort.batch import (
    CMPMVSUndistorter,
    ColmapUndistorter,
    ParallelBatchRunner,
    PMVSUndistorter,
    StereoImageRectifier,
)
from mvsundistort.batch.undistorters import _ImageBatch
from mvsundistort.core.camera import Camera
from mvsundistort.core.camera_models import PINHOLE
from mvsundistort.core.image_io import read_image, write_image
from mvsundistort.core.matrix_io import projection_matrix, read_matrix
from mvsundistort.core.reconstruction import Image, Point2D, Point3D, Reconstruction, TrackElement
from mvsundistort.core.reconstruction_io import read_text_model
from mvsundistort.errors import PreconditionError
from mvsundistort.options import UndistortCameraOptions
from mvsundistort.undistort import undistort_camera

pytestmark = pytest.mark.integration

_NAMES = {1: "a.png", 2: "sub/b.png", 3: "c.png"}


def _camera() -> Camera:
    return Camera.create("SIMPLE_RADIAL", 64, 48, [50.0, 32.0, 24.0, -0.03])


def _scene(tmp_path: Path, missing: tuple[int, ...] = ()) -> tuple[Reconstruction, Path]:
    pytest.importorskip("cv2")
    camera = _camera()
    rec = Reconstruction()
    rec.add_camera(1, camera)
    for image_id, name in _NAMES.items():
        rec.add_image(
            Image(
                image_id=image_id,
                name=name,
                camera_id=1,
                tvec=(-0.5 * (image_id - 1), 0.0, 0.0),
                points2D=[Point2D(camera.world_to_image(np.array([0.1, -0.05])))],
            )
        )
    rec.add_point3D(
        1, Point3D(xyz=(0.1, -0.05, 1.0), track=[TrackElement(image_id, 0) for image_id in _NAMES])
    )

    image_dir = tmp_path / "images_in"
    yy, xx = np.mgrid[0:48, 0:64]
    pattern = ((xx // 8 + yy // 8) % 2 * 200 + 20).astype(np.uint8)
    for image_id, name in _NAMES.items():
        if image_id not in missing:
            write_image(image_dir / name, pattern)
    return rec, image_dir


def test_colmap_undistorter_writes_images_and_model(tmp_path: Path) -> None:
    rec, image_dir = _scene(tmp_path)
    out = tmp_path / "out"

    undistorter = ColmapUndistorter(
        UndistortCameraOptions(), rec, image_dir, out, runner=ParallelBatchRunner(num_workers=2)
    )
    result = undistorter.run()

    assert result.completed == [0, 1, 2]
    undistorted_camera = undistort_camera(UndistortCameraOptions(), _camera())
    for name in _NAMES.values():
        img = read_image(out / "images" / name)
        assert img.shape == (undistorted_camera.height, undistorted_camera.width)

    model = read_text_model(out / "sparse")
    assert model.cameras[1].model_id == PINHOLE.model_id
    assert np.allclose(model.cameras[1].params, undistorted_camera.params)
    assert sorted(model.images) == [1, 2, 3]
    assert undistorter.undistorted_reconstruction is not None
    # The caller's reconstruction keeps its distorted camera.
    assert rec.cameras[1].model_name == "SIMPLE_RADIAL"


def test_missing_image_is_skipped(tmp_path: Path, caplog) -> None:
    caplog.set_level(logging.INFO, logger="mvsundistort")
    rec, image_dir = _scene(tmp_path, missing=(2,))
    out = tmp_path / "out"

    result = ColmapUndistorter(UndistortCameraOptions(), rec, image_dir, out).run()

    assert result.completed == [0, 2]
    assert result.skipped == [1]
    assert not (out / "images" / "sub" / "b.png").exists()
    assert any("Cannot read image at path" in r.getMessage() for r in caplog.records)
    assert any(r.getMessage() == "Writing reconstruction..." for r in caplog.records)
    progress = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Undistorting image")]
    assert progress == ["Undistorting image [1/3]", "Undistorting image [2/3]", "Undistorting image [3/3]"]


def test_pmvs_undistorter_writes_projection_matrices(tmp_path: Path) -> None:
    rec, image_dir = _scene(tmp_path)
    out = tmp_path / "pmvs"

    undistorter = PMVSUndistorter(UndistortCameraOptions(), rec, image_dir, out)
    result = undistorter.run()

    assert result.num_completed == 3
    assert undistorter.runner.halt_on_stop
    undistorted_camera = undistort_camera(UndistortCameraOptions(), _camera())
    for idx, image_id in enumerate(rec.reg_image_ids()):
        assert (out / f"{idx:08d}.jpg").is_file()
        P, header = read_matrix(out / f"{idx:08d}.txt")
        assert header == "CONTOUR"
        assert np.allclose(P, projection_matrix(undistorted_camera, rec.images[image_id]))
    assert undistorter.undistorted_reconstruction.cameras[1].model_id == PINHOLE.model_id


def test_pmvs_undistorter_logs_warning_when_stopped(tmp_path: Path, caplog) -> None:
    caplog.set_level(logging.INFO, logger="mvsundistort")
    rec, image_dir = _scene(tmp_path)
    runner = ParallelBatchRunner(num_workers=1, halt_on_stop=True)
    runner.stop()

    result = PMVSUndistorter(UndistortCameraOptions(), rec, image_dir, tmp_path / "pmvs", runner=runner).run()

    assert result.stopped
    assert any(r.levelno == logging.WARNING and "Stopped" in r.getMessage() for r in caplog.records)


def test_projection_writers_require_pinhole(tmp_path: Path) -> None:
    rec, image_dir = _scene(tmp_path)
    options = UndistortCameraOptions(camera_model_override="SIMPLE_PINHOLE", camera_model_override_params="50, 32, 24")
    with pytest.raises(PreconditionError):
        CMPMVSUndistorter(options, rec, image_dir, tmp_path / "cmpmvs").run()


def test_cmpmvs_undistorter_uses_one_based_names(tmp_path: Path) -> None:
    rec, image_dir = _scene(tmp_path)
    out = tmp_path / "cmpmvs"

    result = CMPMVSUndistorter(UndistortCameraOptions(), rec, image_dir, out).run()

    assert result.num_completed == 3
    for i in range(1, 4):
        assert (out / f"{i:05d}.jpg").is_file()
        P, header = read_matrix(out / f"{i:05d}_P.txt")
        assert P.shape == (3, 4)
        assert header == "CONTOUR"
    assert not (out / "00000.jpg").exists()


def test_stereo_image_rectifier_writes_pairs(tmp_path: Path, caplog) -> None:
    caplog.set_level(logging.INFO, logger="mvsundistort")
    rec, image_dir = _scene(tmp_path)
    out = tmp_path / "stereo"

    result = StereoImageRectifier(UndistortCameraOptions(), rec, image_dir, out, stereo_pairs=[(1, 2), (2, 3)]).run()

    assert result.completed == [0, 1]
    pair_dir = out / "a.png-sub-b.png"
    assert (pair_dir / "a.png").is_file()
    assert (pair_dir / "sub-b.png").is_file()
    Q, header = read_matrix(pair_dir / "Q.txt")
    assert header is None
    assert Q.shape == (4, 4)
    undistorted_camera = undistort_camera(UndistortCameraOptions(), _camera())
    assert Q[3, 2] == pytest.approx(undistorted_camera.focal_length_x)
    assert (out / "sub-b.png-c.png" / "Q.txt").is_file()
    progress = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Rectifying image pair")]
    assert progress == ["Rectifying image pair [1/2]", "Rectifying image pair [2/2]"]


def test_stereo_image_rectifier_skips_unreadable_pair(tmp_path: Path) -> None:
    rec, image_dir = _scene(tmp_path, missing=(3,))
    out = tmp_path / "stereo"

    result = StereoImageRectifier(UndistortCameraOptions(), rec, image_dir, out, stereo_pairs=[(1, 2), (2, 3)]).run()

    assert result.completed == [0]
    assert result.skipped == [1]
    assert not (out / "sub-b.png-c.png").exists()


def test_image_batch_requires_an_undistort_step(tmp_path: Path) -> None:
    class NoOutput(_ImageBatch):
        pass

    with pytest.raises(TypeError):
        NoOutput(UndistortCameraOptions(), Reconstruction(), tmp_path, tmp_path)
    with pytest.raises(TypeError):
        _ImageBatch(UndistortCameraOptions(), Reconstruction(), tmp_path, tmp_path)
