from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from mvsundistort.core.camera_models import (
    PINHOLE,
    PINHOLE_MODEL_IDS,
    CameraModel,
    camera_model_from_id,
    camera_model_from_name,
)
from mvsundistort.errors import PreconditionError


@dataclass(frozen=True, eq=False)
class Camera:
    """
    Intrinsic calibration of one physical camera.

    `params` is laid out as declared by the model (see `CameraModel.param_names`).
    Instances are immutable; `rescale` and `rescale_to` return new cameras.
    """

    model_id: int
    width: int
    height: int
    params: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "model_id", int(self.model_id))
        object.__setattr__(self, "width", int(self.width))
        object.__setattr__(self, "height", int(self.height))
        params = np.array(self.params, dtype=np.float64).reshape(-1)
        params.setflags(write=False)
        object.__setattr__(self, "params", params)

    def __deepcopy__(self, memo) -> "Camera":
        return Camera(model_id=self.model_id, width=self.width, height=self.height, params=self.params)

    @classmethod
    def create(cls, model: str | int | CameraModel, width: int, height: int, params) -> "Camera":
        """Build and verify a camera; raises `PreconditionError` if the parameters do not fit the model."""
        if isinstance(model, CameraModel):
            model_id = model.model_id
        elif isinstance(model, str):
            model_id = camera_model_from_name(model).model_id
        else:
            model_id = camera_model_from_id(model).model_id
        cam = cls(model_id=model_id, width=width, height=height, params=params)
        cam.check()
        return cam

    @classmethod
    def from_params_string(cls, model: str, width: int, height: int, params_str: str) -> "Camera":
        try:
            values = [float(s) for s in params_str.replace(",", " ").split()]
        except ValueError as e:
            raise PreconditionError(f"invalid camera parameter string: {params_str!r}") from e
        return cls.create(model, width, height, values)

    @property
    def model(self) -> CameraModel:
        return camera_model_from_id(self.model_id)

    @property
    def model_name(self) -> str:
        return self.model.model_name

    @property
    def is_pinhole(self) -> bool:
        return self.model_id in PINHOLE_MODEL_IDS

    def verify_params(self) -> bool:
        model = self.model
        if self.params.size != model.num_params:
            return False
        if not np.all(np.isfinite(self.params)):
            return False
        return all(self.params[i] > 0.0 for i in model.focal_length_idxs)

    def check(self) -> None:
        model = self.model
        if self.width <= 0 or self.height <= 0:
            raise PreconditionError(f"camera size must be > 0, got {self.width}x{self.height}")
        if self.params.size != model.num_params:
            raise PreconditionError(
                f"{model.model_name} expects {model.num_params} params ({model.params_info()}), got {self.params.size}"
            )
        if not self.verify_params():
            raise PreconditionError(f"invalid {model.model_name} params: {self.params_to_string()}")

    def params_to_string(self) -> str:
        return ", ".join(repr(float(p)) for p in self.params)

    # Intrinsics accessors.

    @property
    def focal_length_idxs(self) -> tuple[int, ...]:
        return self.model.focal_length_idxs

    @property
    def principal_point_idxs(self) -> tuple[int, int]:
        return self.model.principal_point_idxs

    @property
    def focal_length(self) -> float:
        return float(self.params[self.focal_length_idxs[0]])

    @property
    def focal_length_x(self) -> float:
        return float(self.params[self.focal_length_idxs[0]])

    @property
    def focal_length_y(self) -> float:
        return float(self.params[self.focal_length_idxs[-1]])

    @property
    def mean_focal_length(self) -> float:
        return float(np.mean(self.params[list(self.focal_length_idxs)]))

    @property
    def principal_point_x(self) -> float:
        return float(self.params[self.principal_point_idxs[0]])

    @property
    def principal_point_y(self) -> float:
        return float(self.params[self.principal_point_idxs[1]])

    def calibration_matrix(self) -> np.ndarray:
        return np.array(
            [
                [self.focal_length_x, 0.0, self.principal_point_x],
                [0.0, self.focal_length_y, self.principal_point_y],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    # Projection.

    def image_to_world(self, xy: np.ndarray) -> np.ndarray:
        """Pixel(s) (...,2) -> normalized camera coordinates (...,2)."""
        xy = np.asarray(xy, dtype=np.float64)
        x, y = self.model.image_to_world(self.params, xy[..., 0], xy[..., 1])
        return np.stack([x, y], axis=-1)

    def world_to_image(self, xy: np.ndarray) -> np.ndarray:
        """Normalized camera coordinates (...,2) -> pixel(s) (...,2)."""
        xy = np.asarray(xy, dtype=np.float64)
        u, v = self.model.world_to_image(self.params, xy[..., 0], xy[..., 1])
        return np.stack([u, v], axis=-1)

    # Derived cameras.

    def rescale(self, scale: float) -> "Camera":
        """
        Uniformly rescale the image; per-axis factors follow the rounded new size.
        """
        width = int(round(float(scale) * self.width))
        height = int(round(float(scale) * self.height))
        return self.rescale_to(width, height)

    def rescale_to(self, width: int, height: int) -> "Camera":
        scale_x = width / float(self.width)
        scale_y = height / float(self.height)
        params = self.params.copy()
        cx_idx, cy_idx = self.principal_point_idxs
        params[cx_idx] *= scale_x
        params[cy_idx] *= scale_y
        if len(self.focal_length_idxs) == 1:
            params[self.focal_length_idxs[0]] *= (scale_x + scale_y) / 2.0
        else:
            params[self.focal_length_idxs[0]] *= scale_x
            params[self.focal_length_idxs[1]] *= scale_y
        return Camera(model_id=self.model_id, width=int(width), height=int(height), params=params)


def pinhole_camera(width: int, height: int, fx: float, fy: float, cx: float, cy: float) -> Camera:
    return Camera(model_id=PINHOLE.model_id, width=width, height=height, params=[fx, fy, cx, cy])
