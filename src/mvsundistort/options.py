from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from mvsundistort.errors import OptionsValidationError, PreconditionError

SCHEMA_VERSION = "mvsundistort.options.v0"


@dataclass(frozen=True)
class UndistortCameraOptions:
    # Fraction of blank pixels allowed in the undistorted image:
    # 0 keeps no blank border (crops content), 1 keeps all content (adds blank border).
    blank_pixels: float = 0.0

    # Bounds of the per-axis canvas scale relative to the distorted image.
    min_scale: float = 0.2
    max_scale: float = 2.0

    # Longest side of the undistorted image; <= 0 disables downscaling.
    max_image_size: int = 0

    # Field-of-view limits in degrees.
    max_fov: float = 179.0
    max_horizontal_fov: float = 179.0
    max_vertical_fov: float = 179.0

    estimate_focal_length_from_fov: bool = False

    # Replace the computed camera by an explicit model, e.g. ("PINHOLE", "500, 500, 320, 240").
    camera_model_override: str = ""
    camera_model_override_params: str = ""

    def validate(self) -> None:
        """Raises `PreconditionError` if any option is out of range."""
        _check(0.0 <= self.blank_pixels <= 1.0, "blank_pixels must be in [0, 1]")
        _check(self.min_scale > 0.0, "min_scale must be > 0")
        _check(self.min_scale <= self.max_scale, "min_scale must be <= max_scale")
        _check(0.0 < self.max_fov < 180.0, "max_fov must be in (0, 180)")
        _check(0.0 < self.max_horizontal_fov <= 180.0, "max_horizontal_fov must be in (0, 180]")
        _check(0.0 < self.max_vertical_fov <= 180.0, "max_vertical_fov must be in (0, 180]")
        _check(
            bool(self.camera_model_override) or not self.camera_model_override_params,
            "camera_model_override_params given without camera_model_override",
        )


def _check(cond: bool, msg: str) -> None:
    if not cond:
        raise PreconditionError(msg)


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise OptionsValidationError(msg)


def _float(data: dict[str, Any], key: str, default: float) -> float:
    raw = data.get(key, default)
    try:
        return float(raw)
    except (TypeError, ValueError) as e:
        raise OptionsValidationError(f"{key} must be a number, got {raw!r}") from e


def parse_undistort_options(data: dict[str, Any]) -> UndistortCameraOptions:
    _require(isinstance(data, dict), "options must be an object")
    schema_version = data.get("schema_version", SCHEMA_VERSION)
    _require(schema_version == SCHEMA_VERSION, f"schema_version must be {SCHEMA_VERSION}")

    defaults = UndistortCameraOptions()
    known = set(asdict(defaults)) | {"schema_version"}
    unknown = sorted(set(data) - known)
    _require(not unknown, f"unknown option(s): {', '.join(unknown)}")

    max_image_size_raw = data.get("max_image_size", defaults.max_image_size)
    _require(
        isinstance(max_image_size_raw, int) and not isinstance(max_image_size_raw, bool),
        "max_image_size must be an integer",
    )
    estimate = data.get("estimate_focal_length_from_fov", defaults.estimate_focal_length_from_fov)
    _require(isinstance(estimate, bool), "estimate_focal_length_from_fov must be a boolean")

    override = data.get("camera_model_override", defaults.camera_model_override)
    override_params = data.get("camera_model_override_params", defaults.camera_model_override_params)
    _require(isinstance(override, str), "camera_model_override must be a string")
    _require(isinstance(override_params, str), "camera_model_override_params must be a string")

    options = UndistortCameraOptions(
        blank_pixels=_float(data, "blank_pixels", defaults.blank_pixels),
        min_scale=_float(data, "min_scale", defaults.min_scale),
        max_scale=_float(data, "max_scale", defaults.max_scale),
        max_image_size=int(max_image_size_raw),
        max_fov=_float(data, "max_fov", defaults.max_fov),
        max_horizontal_fov=_float(data, "max_horizontal_fov", defaults.max_horizontal_fov),
        max_vertical_fov=_float(data, "max_vertical_fov", defaults.max_vertical_fov),
        estimate_focal_length_from_fov=estimate,
        camera_model_override=override,
        camera_model_override_params=override_params,
    )
    try:
        options.validate()
    except PreconditionError as e:
        raise OptionsValidationError(str(e)) from e
    return options


def load_undistort_options(path: Path) -> UndistortCameraOptions:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_undistort_options(data)


def options_to_dict(options: UndistortCameraOptions) -> dict[str, Any]:
    return {"schema_version": SCHEMA_VERSION, **asdict(options)}


def save_undistort_options(path: Path, options: UndistortCameraOptions) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(options_to_dict(options), indent=2, sort_keys=True), encoding="utf-8")
    return path
