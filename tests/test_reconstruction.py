from __future__ import annotations

import numpy as np
import pytest

from mvsundistort.core.camera import pinhole_camera
from mvsundistort.core.reconstruction import Image, Point2D, Point3D, Reconstruction, TrackElement
from mvsundistort.errors import PreconditionError


def _small_reconstruction() -> Reconstruction:
    rec = Reconstruction()
    rec.add_camera(1, pinhole_camera(64, 48, 50.0, 50.0, 32.0, 24.0))
    rec.add_image(Image(image_id=3, name="c.png", camera_id=1, points2D=[Point2D((1.0, 2.0))]))
    rec.add_image(Image(image_id=1, name="a.png", camera_id=1, points2D=[Point2D((3.0, 4.0)), Point2D((5.0, 6.0))]))
    rec.add_image(Image(image_id=2, name="b.png", camera_id=1, registered=False))
    rec.add_point3D(7, Point3D(xyz=(0.0, 0.0, 1.0), track=[TrackElement(1, 1), TrackElement(3, 0)]))
    return rec


def test_add_point3D_links_observations():
    rec = _small_reconstruction()
    assert rec.images[1].points2D[1].point3D_id == 7
    assert rec.images[3].points2D[0].point3D_id == 7
    assert not rec.images[1].points2D[0].has_point3D
    rec.check_tracks()


def test_registered_images_are_sorted():
    rec = _small_reconstruction()
    assert rec.reg_image_ids() == [1, 3]
    assert rec.num_reg_images == 2
    assert rec.find_image_with_name("b.png").image_id == 2
    assert rec.find_image_with_name("missing.png") is None


def test_rejects_inconsistent_input():
    rec = _small_reconstruction()
    with pytest.raises(PreconditionError):
        rec.add_camera(1, pinhole_camera(64, 48, 50.0, 50.0, 32.0, 24.0))
    with pytest.raises(PreconditionError):
        rec.add_image(Image(image_id=9, name="x.png", camera_id=5))
    with pytest.raises(PreconditionError):
        rec.add_point3D(8, Point3D(xyz=(0.0, 0.0, 1.0), track=[TrackElement(1, 5)]))

    rec.images[1].points2D[0].point3D_id = 7
    with pytest.raises(PreconditionError):
        rec.check_tracks()


def test_copy_is_deep():
    rec = _small_reconstruction()
    dup = rec.copy()
    dup.images[1].points2D[0].xy[0] = 99.0
    assert rec.images[1].points2D[0].xy[0] == 3.0


def test_image_qvec_is_normalized_and_projection_center():
    image = Image(image_id=1, name="a.png", camera_id=1, qvec=(2.0, 0.0, 0.0, 0.0), tvec=(1.0, 2.0, 3.0))
    assert np.allclose(image.qvec, [1.0, 0.0, 0.0, 0.0])
    assert np.allclose(image.projection_center(), [-1.0, -2.0, -3.0])
    assert image.projection_matrix().shape == (3, 4)


def test_copy_keeps_camera_params_read_only():
    rec = _small_reconstruction()
    dup = rec.copy()
    params = dup.cameras[1].params
    assert not params.flags.writeable
    assert params is not rec.cameras[1].params
    assert np.array_equal(params, rec.cameras[1].params)
    with pytest.raises(ValueError):
        params[0] = 1.0
