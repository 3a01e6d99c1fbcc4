from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from mvsundistort.core.camera import Camera
from mvsundistort.core.reconstruction import Image, Point2D, Point3D, Reconstruction, TrackElement
from mvsundistort.core.reconstruction_io import read_text_model, write_text_model
from mvsundistort.errors import ModelFormatError


def _reconstruction() -> Reconstruction:
    rec = Reconstruction()
    rec.add_camera(1, Camera.create("OPENCV", 640, 480, [500.0, 505.0, 320.0, 240.0, 0.1, -0.01, 0.001, 0.002]))
    rec.add_camera(2, Camera.create("SIMPLE_PINHOLE", 320, 240, [250.0, 160.0, 120.0]))
    rec.add_image(
        Image(
            image_id=1,
            name="seq/frame 001.png",
            camera_id=1,
            qvec=(0.9, 0.1, -0.2, 0.3),
            tvec=(0.5, -1.0, 2.0),
            points2D=[Point2D((10.5, 20.25)), Point2D((100.0, 50.0))],
        )
    )
    rec.add_image(Image(image_id=2, name="b.png", camera_id=2, points2D=[Point2D((1.0, 2.0))]))
    rec.add_image(Image(image_id=3, name="empty.png", camera_id=2))
    rec.add_point3D(5, Point3D(xyz=(1.0, 2.0, 3.0), rgb=(255, 128, 0), error=0.5, track=[TrackElement(1, 1), TrackElement(2, 0)]))
    return rec


def test_text_model_roundtrip(tmp_path: Path):
    rec = _reconstruction()
    write_text_model(rec, tmp_path / "sparse")
    back = read_text_model(tmp_path / "sparse")

    assert sorted(back.cameras) == [1, 2]
    assert back.cameras[1].model_name == "OPENCV"
    assert np.array_equal(back.cameras[1].params, rec.cameras[1].params)
    assert back.images[1].name == "seq/frame 001.png"
    assert np.allclose(back.images[1].qvec, rec.images[1].qvec)
    assert np.allclose(back.images[1].tvec, rec.images[1].tvec)
    assert [p.point3D_id for p in back.images[1].points2D] == [-1, 5]
    assert np.allclose(back.images[1].points2D[0].xy, [10.5, 20.25])
    assert back.images[3].points2D == []
    assert back.points3D[5].rgb == (255, 128, 0)
    assert back.points3D[5].error == 0.5
    assert back.points3D[5].track == [TrackElement(1, 1), TrackElement(2, 0)]


def test_unregistered_images_are_not_written(tmp_path: Path):
    rec = _reconstruction()
    rec.images[3].registered = False
    write_text_model(rec, tmp_path)
    assert sorted(read_text_model(tmp_path).images) == [1, 2]


def test_malformed_model_raises(tmp_path: Path):
    write_text_model(_reconstruction(), tmp_path)
    (tmp_path / "cameras.txt").write_text("1 PINHOLE 640 480 500 500\n", encoding="utf-8")
    with pytest.raises(ModelFormatError):
        read_text_model(tmp_path)


def test_broken_track_raises(tmp_path: Path):
    write_text_model(_reconstruction(), tmp_path)
    (tmp_path / "points3D.txt").write_text("5 1 2 3 255 128 0 0.5 1 0\n", encoding="utf-8")
    with pytest.raises(ModelFormatError):
        read_text_model(tmp_path)


def test_missing_file_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        read_text_model(tmp_path)
