"""
Rigid pose helpers.

Poses map world to camera coordinates: X_cam = R(qvec) X_world + tvec, with
quaternions stored scalar-first as (w, x, y, z).
"""

from __future__ import annotations

import numpy as np


def _to_scipy_quat(qvec: np.ndarray) -> np.ndarray:
    q = np.asarray(qvec, dtype=np.float64).reshape(4)
    return np.array([q[1], q[2], q[3], q[0]], dtype=np.float64)


def _from_scipy_quat(q: np.ndarray) -> np.ndarray:
    q = np.asarray(q, dtype=np.float64).reshape(4)
    out = np.array([q[3], q[0], q[1], q[2]], dtype=np.float64)
    # Canonical sign: non-negative scalar part.
    return out if out[0] >= 0.0 else -out


def normalize_qvec(qvec: np.ndarray) -> np.ndarray:
    q = np.asarray(qvec, dtype=np.float64).reshape(4)
    n = float(np.linalg.norm(q))
    if n < 1e-15:
        return np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64)
    return q / n


def qvec_to_rotmat(qvec: np.ndarray) -> np.ndarray:
    from scipy.spatial.transform import Rotation as Rot  # type: ignore

    return Rot.from_quat(_to_scipy_quat(normalize_qvec(qvec))).as_matrix()


def rotmat_to_qvec(R: np.ndarray) -> np.ndarray:
    from scipy.spatial.transform import Rotation as Rot  # type: ignore

    return _from_scipy_quat(Rot.from_matrix(np.asarray(R, dtype=np.float64).reshape(3, 3)).as_quat())


def invert_qvec(qvec: np.ndarray) -> np.ndarray:
    q = normalize_qvec(qvec)
    return np.array([q[0], -q[1], -q[2], -q[3]], dtype=np.float64)


def concatenate_qvecs(qvec1: np.ndarray, qvec2: np.ndarray) -> np.ndarray:
    """Rotation that applies `qvec1` first, then `qvec2`."""
    from scipy.spatial.transform import Rotation as Rot  # type: ignore

    r1 = Rot.from_quat(_to_scipy_quat(normalize_qvec(qvec1)))
    r2 = Rot.from_quat(_to_scipy_quat(normalize_qvec(qvec2)))
    return _from_scipy_quat((r2 * r1).as_quat())


def scaled_rotation(qvec: np.ndarray, factor: float) -> np.ndarray:
    """Rotation matrix about the same axis as `qvec` with its angle multiplied by `factor`."""
    from scipy.spatial.transform import Rotation as Rot  # type: ignore

    rotvec = Rot.from_quat(_to_scipy_quat(normalize_qvec(qvec))).as_rotvec()
    return Rot.from_rotvec(float(factor) * rotvec).as_matrix()


def compute_relative_pose(
    qvec1: np.ndarray, tvec1: np.ndarray, qvec2: np.ndarray, tvec2: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """
    Pose of camera 2 relative to camera 1: X_2 = R X_1 + t.
    """
    qvec = concatenate_qvecs(invert_qvec(qvec1), qvec2)
    tvec = np.asarray(tvec2, dtype=np.float64).reshape(3) - qvec_to_rotmat(qvec) @ np.asarray(
        tvec1, dtype=np.float64
    ).reshape(3)
    return qvec, tvec


def pose_matrix(qvec: np.ndarray, tvec: np.ndarray) -> np.ndarray:
    """[R | t] as a (3,4) matrix."""
    P = np.zeros((3, 4), dtype=np.float64)
    P[:, :3] = qvec_to_rotmat(qvec)
    P[:, 3] = np.asarray(tvec, dtype=np.float64).reshape(3)
    return P


def projection_center(qvec: np.ndarray, tvec: np.ndarray) -> np.ndarray:
    return -qvec_to_rotmat(qvec).T @ np.asarray(tvec, dtype=np.float64).reshape(3)
