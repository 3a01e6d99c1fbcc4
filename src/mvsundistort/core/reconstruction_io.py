"""
Sparse model text format: cameras.txt, images.txt, points3D.txt.

cameras.txt   CAMERA_ID MODEL WIDTH HEIGHT PARAMS...
images.txt    IMAGE_ID QW QX QY QZ TX TY TZ CAMERA_ID NAME
              X Y POINT3D_ID ...            (one line of observations per image)
points3D.txt  POINT3D_ID X Y Z R G B ERROR (IMAGE_ID POINT2D_IDX)...
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from mvsundistort.core.camera import Camera
from mvsundistort.core.reconstruction import Image, Point2D, Point3D, Reconstruction, TrackElement
from mvsundistort.errors import ModelFormatError, PreconditionError

logger = logging.getLogger(__name__)


def _data_lines(path: Path) -> list[str]:
    if not path.exists():
        raise FileNotFoundError(f"Missing {path}")
    return [ln.strip() for ln in path.read_text(encoding="utf-8").splitlines() if ln.strip() and not ln.startswith("#")]


def read_text_model(model_dir: Path) -> Reconstruction:
    model_dir = Path(model_dir)
    rec = Reconstruction()

    for ln in _data_lines(model_dir / "cameras.txt"):
        parts = ln.split()
        if len(parts) < 5:
            raise ModelFormatError(f"cameras.txt: malformed line: {ln!r}")
        try:
            camera = Camera.create(parts[1], int(parts[2]), int(parts[3]), [float(v) for v in parts[4:]])
        except (ValueError, PreconditionError) as e:
            raise ModelFormatError(f"cameras.txt: {e}") from e
        rec.add_camera(int(parts[0]), camera)

    image_lines = [ln for ln in _split_lines_keep_empty(model_dir / "images.txt")]
    if len(image_lines) % 2 != 0:
        raise ModelFormatError("images.txt: expected two lines per image")
    for header, obs in zip(image_lines[0::2], image_lines[1::2]):
        parts = header.split()
        if len(parts) < 10:
            raise ModelFormatError(f"images.txt: malformed line: {header!r}")
        values = obs.split()
        if len(values) % 3 != 0:
            raise ModelFormatError(f"images.txt: observations of image {parts[0]} are not (X, Y, POINT3D_ID) triples")
        points2D = [
            Point2D(xy=(float(values[i]), float(values[i + 1])), point3D_id=int(values[i + 2]))
            for i in range(0, len(values), 3)
        ]
        rec.add_image(
            Image(
                image_id=int(parts[0]),
                qvec=np.array([float(v) for v in parts[1:5]]),
                tvec=np.array([float(v) for v in parts[5:8]]),
                camera_id=int(parts[8]),
                name=" ".join(parts[9:]),
                points2D=points2D,
            )
        )

    for ln in _data_lines(model_dir / "points3D.txt"):
        parts = ln.split()
        if len(parts) < 8 or (len(parts) - 8) % 2 != 0:
            raise ModelFormatError(f"points3D.txt: malformed line: {ln!r}")
        track = [TrackElement(int(parts[i]), int(parts[i + 1])) for i in range(8, len(parts), 2)]
        rec.points3D[int(parts[0])] = Point3D(
            xyz=np.array([float(v) for v in parts[1:4]]),
            rgb=(int(parts[4]), int(parts[5]), int(parts[6])),
            error=float(parts[7]),
            track=track,
        )

    try:
        rec.check_tracks()
    except PreconditionError as e:
        raise ModelFormatError(f"{model_dir}: {e}") from e

    logger.debug(
        "Read model %s: %d cameras, %d images, %d points",
        model_dir,
        len(rec.cameras),
        len(rec.images),
        len(rec.points3D),
    )
    return rec


def _split_lines_keep_empty(path: Path) -> list[str]:
    # Image observation lines may legitimately be empty.
    if not path.exists():
        raise FileNotFoundError(f"Missing {path}")
    return [ln.rstrip("\n") for ln in path.read_text(encoding="utf-8").splitlines() if not ln.startswith("#")]


def write_text_model(rec: Reconstruction, model_dir: Path) -> Path:
    model_dir = Path(model_dir)
    model_dir.mkdir(parents=True, exist_ok=True)

    lines = ["# Camera list with one line of data per camera:", "#   CAMERA_ID, MODEL, WIDTH, HEIGHT, PARAMS[]"]
    for camera_id in sorted(rec.cameras):
        cam = rec.cameras[camera_id]
        params = " ".join(repr(float(p)) for p in cam.params)
        lines.append(f"{camera_id} {cam.model_name} {cam.width} {cam.height} {params}")
    (model_dir / "cameras.txt").write_text("\n".join(lines) + "\n", encoding="utf-8")

    lines = [
        "# Image list with two lines of data per image:",
        "#   IMAGE_ID, QW, QX, QY, QZ, TX, TY, TZ, CAMERA_ID, NAME",
        "#   POINTS2D[] as (X, Y, POINT3D_ID)",
    ]
    for image_id in rec.reg_image_ids():
        im = rec.images[image_id]
        pose = " ".join(repr(float(v)) for v in (*im.qvec, *im.tvec))
        lines.append(f"{image_id} {pose} {im.camera_id} {im.name}")
        lines.append(" ".join(f"{float(p.xy[0])!r} {float(p.xy[1])!r} {p.point3D_id}" for p in im.points2D))
    (model_dir / "images.txt").write_text("\n".join(lines) + "\n", encoding="utf-8")

    lines = [
        "# 3D point list with one line of data per point:",
        "#   POINT3D_ID, X, Y, Z, R, G, B, ERROR, TRACK[] as (IMAGE_ID, POINT2D_IDX)",
    ]
    for point3D_id in sorted(rec.points3D):
        pt = rec.points3D[point3D_id]
        xyz = " ".join(repr(float(v)) for v in pt.xyz)
        rgb = " ".join(str(int(c)) for c in pt.rgb)
        track = " ".join(f"{el.image_id} {el.point2D_idx}" for el in pt.track)
        lines.append(f"{point3D_id} {xyz} {rgb} {float(pt.error)!r} {track}".rstrip())
    (model_dir / "points3D.txt").write_text("\n".join(lines) + "\n", encoding="utf-8")

    return model_dir
