from __future__ import annotations

import numpy as np

from mvsundistort.core.pose import (
    compute_relative_pose,
    concatenate_qvecs,
    invert_qvec,
    normalize_qvec,
    pose_matrix,
    projection_center,
    qvec_to_rotmat,
    rotmat_to_qvec,
    scaled_rotation,
)

_Q1 = normalize_qvec(np.array([0.9, 0.1, -0.2, 0.3]))
_Q2 = normalize_qvec(np.array([0.7, -0.3, 0.4, 0.1]))


def test_rotmat_roundtrip():
    assert np.allclose(qvec_to_rotmat([1.0, 0.0, 0.0, 0.0]), np.eye(3))
    R = qvec_to_rotmat(_Q1)
    assert np.allclose(R @ R.T, np.eye(3))
    assert np.allclose(rotmat_to_qvec(R), _Q1)
    # Sign is canonicalized to a non-negative scalar part.
    assert np.allclose(rotmat_to_qvec(qvec_to_rotmat(-_Q1)), _Q1)


def test_concatenate_and_invert():
    q = concatenate_qvecs(_Q1, _Q2)
    assert np.allclose(qvec_to_rotmat(q), qvec_to_rotmat(_Q2) @ qvec_to_rotmat(_Q1))
    assert np.allclose(qvec_to_rotmat(invert_qvec(_Q1)), qvec_to_rotmat(_Q1).T)


def test_relative_pose_maps_camera1_to_camera2():
    t1 = np.array([0.3, -1.0, 2.0])
    t2 = np.array([-0.5, 0.2, 1.0])
    qvec, tvec = compute_relative_pose(_Q1, t1, _Q2, t2)
    R = qvec_to_rotmat(qvec)

    X = np.array([1.0, 2.0, 5.0])
    X1 = qvec_to_rotmat(_Q1) @ X + t1
    X2 = qvec_to_rotmat(_Q2) @ X + t2
    assert np.allclose(R @ X1 + tvec, X2)


def test_scaled_rotation_halves_the_angle():
    R = qvec_to_rotmat(_Q1)
    half_back = scaled_rotation(_Q1, -0.5)
    assert np.allclose(half_back.T @ half_back.T, R)
    assert np.allclose(scaled_rotation(_Q1, 1.0), R)


def test_pose_matrix_and_projection_center():
    t = np.array([0.3, -1.0, 2.0])
    P = pose_matrix(_Q1, t)
    C = projection_center(_Q1, t)
    assert P.shape == (3, 4)
    assert np.allclose(P @ np.append(C, 1.0), 0.0)
