from __future__ import annotations

import copy
from dataclasses import dataclass, field

import numpy as np

from mvsundistort.core.camera import Camera
from mvsundistort.core.pose import normalize_qvec, pose_matrix, projection_center
from mvsundistort.errors import PreconditionError

INVALID_POINT3D_ID = -1


@dataclass
class Point2D:
    xy: np.ndarray
    point3D_id: int = INVALID_POINT3D_ID

    def __post_init__(self) -> None:
        self.xy = np.asarray(self.xy, dtype=np.float64).reshape(2)
        self.point3D_id = int(self.point3D_id)

    @property
    def has_point3D(self) -> bool:
        return self.point3D_id != INVALID_POINT3D_ID


@dataclass(frozen=True)
class TrackElement:
    image_id: int
    point2D_idx: int


@dataclass
class Point3D:
    xyz: np.ndarray
    track: list[TrackElement] = field(default_factory=list)
    rgb: tuple[int, int, int] = (0, 0, 0)
    error: float = -1.0

    def __post_init__(self) -> None:
        self.xyz = np.asarray(self.xyz, dtype=np.float64).reshape(3)


@dataclass
class Image:
    """
    A posed image. The pose maps world to camera: X_cam = R(qvec) X + tvec.
    """

    image_id: int
    name: str
    camera_id: int
    qvec: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0]))
    tvec: np.ndarray = field(default_factory=lambda: np.zeros(3))
    points2D: list[Point2D] = field(default_factory=list)
    registered: bool = True

    def __post_init__(self) -> None:
        self.qvec = normalize_qvec(self.qvec)
        self.tvec = np.asarray(self.tvec, dtype=np.float64).reshape(3)

    @property
    def num_points2D(self) -> int:
        return len(self.points2D)

    def projection_matrix(self) -> np.ndarray:
        return pose_matrix(self.qvec, self.tvec)

    def projection_center(self) -> np.ndarray:
        return projection_center(self.qvec, self.tvec)


@dataclass
class Reconstruction:
    cameras: dict[int, Camera] = field(default_factory=dict)
    images: dict[int, Image] = field(default_factory=dict)
    points3D: dict[int, Point3D] = field(default_factory=dict)

    def add_camera(self, camera_id: int, camera: Camera) -> None:
        if camera_id in self.cameras:
            raise PreconditionError(f"duplicate camera id {camera_id}")
        self.cameras[int(camera_id)] = camera

    def add_image(self, image: Image) -> None:
        if image.image_id in self.images:
            raise PreconditionError(f"duplicate image id {image.image_id}")
        if image.camera_id not in self.cameras:
            raise PreconditionError(f"image {image.name} references unknown camera {image.camera_id}")
        self.images[int(image.image_id)] = image

    def add_point3D(self, point3D_id: int, point: Point3D) -> None:
        """Add a 3D point and link the observations listed in its track."""
        point3D_id = int(point3D_id)
        if point3D_id in self.points3D:
            raise PreconditionError(f"duplicate point3D id {point3D_id}")
        for el in point.track:
            image = self.images.get(el.image_id)
            if image is None or not (0 <= el.point2D_idx < image.num_points2D):
                raise PreconditionError(f"track of point3D {point3D_id} references missing observation {el}")
            image.points2D[el.point2D_idx].point3D_id = point3D_id
        self.points3D[point3D_id] = point

    def camera_of(self, image_id: int) -> Camera:
        return self.cameras[self.images[image_id].camera_id]

    def reg_image_ids(self) -> list[int]:
        return sorted(image_id for image_id, image in self.images.items() if image.registered)

    @property
    def num_reg_images(self) -> int:
        return len(self.reg_image_ids())

    def find_image_with_name(self, name: str) -> Image | None:
        for image in self.images.values():
            if image.name == name:
                return image
        return None

    def check_tracks(self) -> None:
        """Verify that observations and tracks reference each other."""
        for point3D_id, point in self.points3D.items():
            for el in point.track:
                image = self.images.get(el.image_id)
                if image is None or el.point2D_idx >= image.num_points2D:
                    raise PreconditionError(f"point3D {point3D_id} track references missing observation {el}")
                if image.points2D[el.point2D_idx].point3D_id != point3D_id:
                    raise PreconditionError(f"observation {el} does not link back to point3D {point3D_id}")
        for image_id, image in self.images.items():
            for idx, p in enumerate(image.points2D):
                if not p.has_point3D:
                    continue
                point = self.points3D.get(p.point3D_id)
                if point is None or TrackElement(image_id, idx) not in point.track:
                    raise PreconditionError(
                        f"observation ({image_id}, {idx}) links to point3D {p.point3D_id} without a track entry"
                    )

    def copy(self) -> "Reconstruction":
        return copy.deepcopy(self)
