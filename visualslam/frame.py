"""Image frames: keypoints, undistortion, the feature grid and camera pose."""

from __future__ import annotations

import copy as _copy
import itertools
import math
from dataclasses import dataclass

import numpy as np

GRID_COLS = 64
GRID_ROWS = 48

_UNDISTORT_ITERATIONS = 5


@dataclass(frozen=True)
class KeyPoint:
    """A detected image feature: its position and its pyramid level."""

    x: float
    y: float
    octave: int = 0


def _camera_intrinsics(k) -> tuple[float, float, float, float]:
    matrix = np.asarray(k, dtype=np.float64)
    if matrix.shape != (3, 3):
        raise ValueError(f"calibration matrix must be 3x3, got {matrix.shape}")
    return matrix[0, 0], matrix[1, 1], matrix[0, 2], matrix[1, 2]


def _distortion_coefficients(dist_coef) -> np.ndarray:
    values = np.asarray(dist_coef, dtype=np.float64).ravel()
    if values.size not in (4, 5, 8):
        raise ValueError(f"expected 4, 5 or 8 distortion coefficients, got {values.size}")
    coefficients = np.zeros(8, dtype=np.float64)
    coefficients[: values.size] = values
    return coefficients


def undistort_points(points, k, dist_coef) -> np.ndarray:
    """Remove lens distortion from pixel points, keeping the same calibration.

    ``points`` is an (N, 2) array of pixel coordinates; the distortion model
    is the radial-tangential one with coefficients k1, k2, p1, p2[, k3[, k4, k5, k6]].
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    fx, fy, cx, cy = _camera_intrinsics(k)
    k1, k2, p1, p2, k3, k4, k5, k6 = _distortion_coefficients(dist_coef)

    x0 = (pts[:, 0] - cx) / fx
    y0 = (pts[:, 1] - cy) / fy
    x = x0.copy()
    y = y0.copy()
    for _ in range(_UNDISTORT_ITERATIONS):
        r2 = x * x + y * y
        icdist = (1.0 + ((k6 * r2 + k5) * r2 + k4) * r2) / (1.0 + ((k3 * r2 + k2) * r2 + k1) * r2)
        delta_x = 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x * x)
        delta_y = p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * x * y
        x = (x0 - delta_x) * icdist
        y = (y0 - delta_y) * icdist

    return np.column_stack((x * fx + cx, y * fy + cy))


def compute_image_bounds(width, height, k, dist_coef) -> tuple[float, float, float, float]:
    """Return (min_x, max_x, min_y, max_y) of the undistorted image."""
    coefficients = np.asarray(dist_coef, dtype=np.float64).ravel()
    if coefficients.size == 0 or coefficients[0] == 0.0:
        return 0.0, float(width), 0.0, float(height)
    corners = np.array(
        [[0.0, 0.0], [width, 0.0], [0.0, height], [width, height]],
        dtype=np.float64,
    )
    undistorted = undistort_points(corners, k, dist_coef)
    min_x = min(undistorted[0, 0], undistorted[2, 0])
    max_x = max(undistorted[1, 0], undistorted[3, 0])
    min_y = min(undistorted[0, 1], undistorted[1, 1])
    max_y = max(undistorted[2, 1], undistorted[3, 1])
    return float(min_x), float(max_x), float(min_y), float(max_y)


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


class Frame:
    """One processed image with its features, depth data and pose."""

    _ids = itertools.count()

    def __init__(
        self,
        keypoints,
        descriptors,
        timestamp,
        k,
        dist_coef,
        bf,
        th_depth,
        image_size,
        depth_map=None,
    ):
        self.keys: list[KeyPoint] = list(keypoints)
        self.descriptors = np.asarray(descriptors)
        if self.keys and (self.descriptors.ndim != 2 or len(self.descriptors) != len(self.keys)):
            raise ValueError("there must be one descriptor row for each keypoint")

        self.id = next(Frame._ids)
        self.timestamp = float(timestamp)
        self.k = np.array(k, dtype=np.float64)
        self.dist_coef = np.array(dist_coef, dtype=np.float64).ravel()
        self.bf = float(bf)
        self.th_depth = float(th_depth)

        self.fx, self.fy, self.cx, self.cy = (float(v) for v in _camera_intrinsics(self.k))
        self.invfx = 1.0 / self.fx
        self.invfy = 1.0 / self.fy
        self.b = self.bf / self.fx

        width, height = image_size
        self.min_x, self.max_x, self.min_y, self.max_y = compute_image_bounds(
            width, height, self.k, self.dist_coef
        )
        self.grid_element_width_inv = GRID_COLS / (self.max_x - self.min_x)
        self.grid_element_height_inv = GRID_ROWS / (self.max_y - self.min_y)

        self.n = len(self.keys)
        self.keys_un = self._undistort_keypoints()

        if depth_map is None:
            self.u_right = [-1.0] * self.n
            self.depth = [-1.0] * self.n
        else:
            self.u_right, self.depth = self._stereo_from_depth(np.asarray(depth_map))

        self.map_points: list = [None] * self.n
        self.outliers = [False] * self.n

        self.tcw: np.ndarray | None = None
        self.rcw: np.ndarray | None = None
        self.rwc: np.ndarray | None = None
        self.t_cw: np.ndarray | None = None
        self.ow: np.ndarray | None = None

        self.grid: list[list[list[int]]] = [[[] for _ in range(GRID_ROWS)] for _ in range(GRID_COLS)]
        self._assign_features_to_grid()

    def _undistort_keypoints(self) -> list[KeyPoint]:
        if not self.keys or self.dist_coef.size == 0 or self.dist_coef[0] == 0.0:
            return list(self.keys)
        points = np.array([(kp.x, kp.y) for kp in self.keys], dtype=np.float64)
        undistorted = undistort_points(points, self.k, self.dist_coef)
        return [
            KeyPoint(float(u), float(v), kp.octave)
            for kp, (u, v) in zip(self.keys, undistorted)
        ]

    def _stereo_from_depth(self, depth_map: np.ndarray) -> tuple[list[float], list[float]]:
        u_right = [-1.0] * self.n
        depth = [-1.0] * self.n
        rows, cols = depth_map.shape[:2]
        for i, (kp, kp_un) in enumerate(zip(self.keys, self.keys_un)):
            row, col = int(kp.y), int(kp.x)
            if not (0 <= row < rows and 0 <= col < cols):
                continue
            d = float(depth_map[row, col])
            if d > 0:
                depth[i] = d
                u_right[i] = kp_un.x - self.bf / d
        return u_right, depth

    def _assign_features_to_grid(self) -> None:
        for index, kp in enumerate(self.keys_un):
            cell = self.pos_in_grid(kp)
            if cell is not None:
                col, row = cell
                self.grid[col][row].append(index)

    @property
    def has_pose(self) -> bool:
        return self.tcw is not None

    def set_pose(self, tcw) -> None:
        """Set the world-to-camera transform and the matrices derived from it."""
        matrix = np.array(tcw, dtype=np.float64)
        if matrix.shape != (4, 4):
            raise ValueError(f"pose must be a 4x4 matrix, got {matrix.shape}")
        self.tcw = matrix
        self.rcw = matrix[:3, :3].copy()
        self.rwc = self.rcw.T
        self.t_cw = matrix[:3, 3].copy()
        self.ow = -self.rcw.T @ self.t_cw

    def pos_in_grid(self, kp: KeyPoint) -> tuple[int, int] | None:
        """Return the (column, row) grid cell of a keypoint, or None if outside."""
        pos_x = _round_half_away((kp.x - self.min_x) * self.grid_element_width_inv)
        pos_y = _round_half_away((kp.y - self.min_y) * self.grid_element_height_inv)
        if pos_x < 0 or pos_x >= GRID_COLS or pos_y < 0 or pos_y >= GRID_ROWS:
            return None
        return pos_x, pos_y

    def features_in_area(self, x, y, r, min_level=-1, max_level=-1) -> list[int]:
        """Indices of undistorted keypoints within a square of half-side r around (x, y).

        A positive ``min_level`` or a non-negative ``max_level`` restricts the
        pyramid levels accepted.
        """
        min_cell_x = max(0, math.floor((x - self.min_x - r) * self.grid_element_width_inv))
        if min_cell_x >= GRID_COLS:
            return []
        max_cell_x = min(GRID_COLS - 1, math.ceil((x - self.min_x + r) * self.grid_element_width_inv))
        if max_cell_x < 0:
            return []
        min_cell_y = max(0, math.floor((y - self.min_y - r) * self.grid_element_height_inv))
        if min_cell_y >= GRID_ROWS:
            return []
        max_cell_y = min(GRID_ROWS - 1, math.ceil((y - self.min_y + r) * self.grid_element_height_inv))
        if max_cell_y < 0:
            return []

        check_levels = min_level > 0 or max_level >= 0
        found: list[int] = []
        cells = itertools.product(range(min_cell_x, max_cell_x + 1), range(min_cell_y, max_cell_y + 1))
        for ix, iy in cells:
            for index in self.grid[ix][iy]:
                kp = self.keys_un[index]
                if check_levels:
                    if kp.octave < min_level:
                        continue
                    if max_level >= 0 and kp.octave > max_level:
                        continue
                if abs(kp.x - x) < r and abs(kp.y - y) < r:
                    found.append(index)
        return found

    def unproject_stereo(self, i) -> np.ndarray | None:
        """World coordinates of keypoint i from its depth, or None without depth."""
        z = self.depth[i]
        if z <= 0:
            return None
        if not self.has_pose:
            raise ValueError("the frame has no pose")
        kp = self.keys_un[i]
        x = (kp.x - self.cx) * z * self.invfx
        y = (kp.y - self.cy) * z * self.invfy
        return self.rwc @ np.array([x, y, z], dtype=np.float64) + self.ow

    def copy(self) -> Frame:
        """Return a copy sharing no mutable state with this frame; the id is kept."""
        clone = _copy.copy(self)
        clone.k = self.k.copy()
        clone.dist_coef = self.dist_coef.copy()
        clone.descriptors = self.descriptors.copy()
        clone.keys = list(self.keys)
        clone.keys_un = list(self.keys_un)
        clone.u_right = list(self.u_right)
        clone.depth = list(self.depth)
        clone.map_points = list(self.map_points)
        clone.outliers = list(self.outliers)
        clone.grid = [[list(cell) for cell in column] for column in self.grid]
        if self.tcw is not None:
            clone.set_pose(self.tcw)
        return clone