"""Augmented-reality helpers: plane detection among map points and virtual-object poses."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

EPS = 1e-4

RED = (255, 0, 0)
GREEN = (0, 255, 0)

_MIN_PLANE_POINTS = 50
_MIN_OBSERVATIONS = 5
_UP = np.array([0.0, 1.0, 0.0])


def exp_so3(v) -> np.ndarray:
    """Rotation matrix of a rotation vector (exponential map of so(3))."""
    x, y, z = np.asarray(v, dtype=np.float64).reshape(3)
    identity = np.eye(3)
    w = np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])
    d2 = x * x + y * y + z * z
    d = math.sqrt(d2)
    if d < EPS:
        return identity + w + 0.5 * (w @ w)
    return identity + w * math.sin(d) / d + (w @ w) * (1.0 - math.cos(d)) / d2


def gl_matrix(transform) -> list[float]:
    """Column-major 16-element form of a 4x4 rigid transform, bottom row set to 0 0 0 1."""
    m = np.asarray(transform, dtype=np.float64)
    if m.shape != (4, 4):
        raise ValueError(f"transform must be a 4x4 matrix, got {m.shape}")
    values: list[float] = []
    for col in range(4):
        values.extend(float(m[row, col]) for row in range(3))
        values.append(1.0 if col == 3 else 0.0)
    return values


def status_message(status, localization_mode) -> tuple[str, tuple[int, int, int]] | None:
    """Text and RGB colour shown for a tracking status, or None for other states."""
    status = int(status)
    if status == 1:
        return "SLAM NOT INITIALIZED", RED
    prefix = "LOCALIZATION" if localization_mode else "SLAM"
    if status == 2:
        return f"{prefix} ON", GREEN
    if status == 3:
        return f"{prefix} LOST", RED
    return None


def _random_angle(rng: random.Random) -> float:
    return -3.14 / 2 + rng.random() * 3.14


def _plane_rotation(normal: np.ndarray, rang: float) -> np.ndarray:
    v = np.cross(_UP, normal)
    sa = float(np.linalg.norm(v))
    ca = float(_UP @ normal)
    angle = math.atan2(sa, ca)
    if sa > 1e-12:
        axis = v * angle / sa
    elif ca >= 0:
        axis = np.zeros(3)
    else:
        axis = np.array([math.pi, 0.0, 0.0])
    return exp_so3(axis) @ exp_so3(_UP * rang)


def _plane_pose(normal: np.ndarray, origin: np.ndarray, rang: float) -> np.ndarray:
    tpw = np.eye(4)
    tpw[:3, :3] = _plane_rotation(normal, rang)
    tpw[:3, 3] = origin
    return tpw


@dataclass
class Plane:
    """A plane with a frame on it: y along the normal, origin at the points' centroid.

    ``tpw`` is the plane-to-world transform. ``tcw`` is the camera pose when
    the plane was first seen and fixes which side the normal points to.
    ``point_indices`` names the map points that define the plane.
    """

    normal: np.ndarray
    origin: np.ndarray
    rang: float
    tpw: np.ndarray
    tcw: np.ndarray | None = None
    xc: np.ndarray | None = None
    point_indices: list[int] = field(default_factory=list)

    @property
    def gl_tpw(self) -> list[float]:
        return gl_matrix(self.tpw)

    @classmethod
    def from_points(cls, points, tcw, rng=None) -> Plane:
        """Fit a plane to world points seen from camera pose ``tcw``."""
        rng = rng or random.Random()
        pose = np.array(tcw, dtype=np.float64)
        if pose.shape != (4, 4):
            raise ValueError(f"pose must be a 4x4 matrix, got {pose.shape}")
        plane = cls(
            normal=np.zeros(3),
            origin=np.zeros(3),
            rang=_random_angle(rng),
            tpw=np.eye(4),
            tcw=pose,
        )
        plane.recompute(points)
        return plane

    @classmethod
    def from_normal(cls, normal, origin, rng=None) -> Plane:
        """Plane through ``origin`` with the given normal and a random spin about it."""
        rng = rng or random.Random()
        n = np.asarray(normal, dtype=np.float64).reshape(3).copy()
        o = np.asarray(origin, dtype=np.float64).reshape(3).copy()
        rang = _random_angle(rng)
        return cls(normal=n, origin=o, rang=rang, tpw=_plane_pose(n, o, rang))

    def recompute(self, points) -> None:
        """Refit the plane to the current positions of its points; None marks a bad point."""
        if self.tcw is None:
            raise ValueError("the plane has no camera pose to orient its normal")
        valid = [np.asarray(p, dtype=np.float64).reshape(3) for p in points if p is not None]
        if len(valid) < 3:
            raise ValueError(f"at least 3 points are needed to fit a plane, got {len(valid)}")
        positions = np.array(valid)
        system = np.column_stack((positions, np.ones(len(positions))))
        _, _, vt = np.linalg.svd(system, full_matrices=True)
        abc = vt[3, :3].copy()

        self.origin = positions.mean(axis=0)
        f = 1.0 / math.sqrt(float(abc @ abc))

        if self.xc is None:
            rotation = self.tcw[:3, :3]
            translation = self.tcw[:3, 3]
            camera_centre = -rotation.T @ translation
            self.xc = camera_centre - self.origin

        if float(self.xc @ abc) > 0:
            abc = -abc

        self.normal = abc * f
        self.tpw = _plane_pose(self.normal, self.origin, self.rang)


def detect_plane(tcw, points: Sequence, observations: Sequence[int], iterations=50, rng=None) -> Plane | None:
    """Find the dominant plane among tracked map points by RANSAC.

    ``points[i]`` is the world position of the map point tracked at keypoint i
    (None if there is none) and ``observations[i]`` the number of keyframes
    observing it. Only points seen more than five times take part; with fewer
    than 50 of them no plane is returned. The plane's ``point_indices`` refer
    to positions in ``points``.
    """
    if len(points) != len(observations):
        raise ValueError(f"{len(points)} points but {len(observations)} observation counts")
    if iterations < 1:
        raise ValueError("at least one RANSAC iteration is needed")

    selected = [
        (index, np.asarray(p, dtype=np.float64).reshape(3))
        for index, (p, count) in enumerate(zip(points, observations))
        if p is not None and count > _MIN_OBSERVATIONS
    ]
    n = len(selected)
    if n < _MIN_PLANE_POINTS:
        return None

    rng = rng or random.Random()
    positions = np.array([p for _, p in selected])
    nth = max(int(0.2 * n), 20)

    best_dist = 1e10
    best_distances: np.ndarray | None = None
    for _ in range(iterations):
        available = list(range(n))
        chosen = []
        for _ in range(3):
            pick = rng.randint(0, len(available) - 1)
            chosen.append(available[pick])
            available[pick] = available[-1]
            available.pop()

        system = np.column_stack((positions[chosen], np.ones(3)))
        _, _, vt = np.linalg.svd(system, full_matrices=True)
        a, b, c, d = vt[3]
        f = 1.0 / math.sqrt(a * a + b * b + c * c + d * d)
        distances = np.abs(positions @ np.array([a, b, c]) + d) * f

        median = float(np.sort(distances)[nth])
        if median < best_dist:
            best_dist = median
            best_distances = distances

    if best_distances is None:
        return None
    threshold = 1.4 * best_dist
    inliers = [i for i in range(n) if best_distances[i] < threshold]
    if len(inliers) < 3:
        return None

    plane = Plane.from_points(positions[inliers], tcw, rng)
    plane.point_indices = [selected[i][0] for i in inliers]
    return plane