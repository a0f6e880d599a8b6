"""Loader for RGB-D sequences described by a TUM association file."""

from __future__ import annotations

from pathlib import Path


def load_tum_rgbd(association_path) -> tuple[list[str], list[str], list[float]]:
    """Read an association file.

    Each non-empty line holds ``timestamp rgb_file timestamp depth_file``;
    returns the colour image names, the depth image names and the colour
    timestamps.
    """
    rgb: list[str] = []
    depth: list[str] = []
    timestamps: list[float] = []
    for line in Path(association_path).read_text().splitlines():
        fields = line.split()
        if not fields:
            continue
        if len(fields) < 4:
            raise ValueError(f"association line needs four fields: {line!r}")
        try:
            timestamp = float(fields[0])
        except ValueError as exc:
            raise ValueError(f"bad timestamp in line {line!r}") from exc
        timestamps.append(timestamp)
        rgb.append(fields[1])
        depth.append(fields[3])
    return rgb, depth, timestamps