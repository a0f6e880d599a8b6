import math
import random

import numpy as np
import pytest

from visualslam.ar import (
    Plane,
    detect_plane,
    exp_so3,
    gl_matrix,
    status_message,
)


def _is_rotation(r):
    return np.allclose(r @ r.T, np.eye(3), atol=1e-9) and math.isclose(np.linalg.det(r), 1.0, abs_tol=1e-9)


def test_exp_so3_zero_is_identity():
    assert np.allclose(exp_so3([0.0, 0.0, 0.0]), np.eye(3))


def test_exp_so3_quarter_turn_about_z():
    r = exp_so3([0.0, 0.0, math.pi / 2])
    assert np.allclose(r @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0])
    assert _is_rotation(r)


@pytest.mark.parametrize("v", [[0.3, -0.2, 1.1], [2.0, 0.5, -0.7], [1e-5, 0.0, 2e-5]])
def test_exp_so3_gives_rotations(v):
    r = exp_so3(v)
    assert np.allclose(r @ r.T, np.eye(3), atol=1e-8)
    # the rotation axis is fixed
    assert np.allclose(r @ np.asarray(v), np.asarray(v))


def test_gl_matrix_is_column_major():
    transform = np.arange(16, dtype=np.float64).reshape(4, 4)
    m = gl_matrix(transform)
    assert len(m) == 16
    assert m[0:3] == [transform[0, 0], transform[1, 0], transform[2, 0]]
    assert m[12:15] == [transform[0, 3], transform[1, 3], transform[2, 3]]
    assert [m[3], m[7], m[11], m[15]] == [0.0, 0.0, 0.0, 1.0]


def test_gl_matrix_rejects_bad_shape():
    with pytest.raises(ValueError):
        gl_matrix(np.eye(3))


def test_status_messages():
    assert status_message(1, False) == ("SLAM NOT INITIALIZED", (255, 0, 0))
    assert status_message(1, True) == ("SLAM NOT INITIALIZED", (255, 0, 0))
    assert status_message(2, False) == ("SLAM ON", (0, 255, 0))
    assert status_message(2, True) == ("LOCALIZATION ON", (0, 255, 0))
    assert status_message(3, False) == ("SLAM LOST", (255, 0, 0))
    assert status_message(3, True) == ("LOCALIZATION LOST", (255, 0, 0))
    assert status_message(0, False) is None


@pytest.mark.parametrize("normal", [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, -1.0, 0.0], [0.6, 0.0, 0.8]])
def test_from_normal_aligns_up_with_normal(normal):
    plane = Plane.from_normal(normal, [1.0, 2.0, 3.0], random.Random(1))
    rotation = plane.tpw[:3, :3]
    assert _is_rotation(rotation)
    assert np.allclose(rotation @ np.array([0.0, 1.0, 0.0]), normal, atol=1e-9)
    assert np.allclose(plane.tpw[:3, 3], [1.0, 2.0, 3.0])
    assert np.allclose(plane.gl_tpw[12:15], [1.0, 2.0, 3.0])


def test_random_spin_within_range():
    rng = random.Random(7)
    for _ in range(20):
        plane = Plane.from_normal([0.0, 1.0, 0.0], [0.0, 0.0, 0.0], rng)
        assert -3.14 / 2 <= plane.rang <= 3.14 / 2


def _grid_on_z(z):
    return [[x, y, z] for x in np.linspace(-1, 1, 4) for y in np.linspace(-1, 1, 4)]


def test_from_points_fits_plane_facing_away_from_camera():
    points = _grid_on_z(5.0)
    plane = Plane.from_points(points, np.eye(4), random.Random(0))
    assert np.allclose(plane.normal, [0.0, 0.0, 1.0], atol=1e-9)
    assert np.allclose(plane.origin, np.mean(points, axis=0))
    assert np.allclose(plane.tpw[:3, :3] @ np.array([0.0, 1.0, 0.0]), plane.normal)


def test_recompute_ignores_bad_points_and_keeps_side():
    points = _grid_on_z(5.0)
    plane = Plane.from_points(points, np.eye(4), random.Random(0))
    moved = [None if i % 3 == 0 else [p[0], p[1], p[2] + 1.0] for i, p in enumerate(points)]
    plane.recompute(moved)
    kept = np.array([p for p in moved if p is not None])
    assert np.allclose(plane.origin, kept.mean(axis=0))
    assert np.allclose(plane.normal, [0.0, 0.0, 1.0], atol=1e-9)


def test_recompute_needs_three_points():
    plane = Plane.from_points(_grid_on_z(2.0), np.eye(4), random.Random(0))
    with pytest.raises(ValueError):
        plane.recompute([None, None, [0.0, 0.0, 1.0]])


def test_recompute_needs_camera_pose():
    plane = Plane.from_normal([0.0, 1.0, 0.0], [0.0, 0.0, 0.0], random.Random(0))
    with pytest.raises(ValueError):
        plane.recompute(_grid_on_z(1.0))


def _scene():
    noise = np.random.default_rng(0).normal(0.0, 1e-3, size=64)
    points = [
        [x, 2.0 + noise[i * 8 + j], z]
        for i, x in enumerate(np.linspace(-1, 1, 8))
        for j, z in enumerate(np.linspace(3, 5, 8))
    ]
    outliers = [[0.1 * k, 3.0, 4.0] for k in range(5)]
    return points + outliers, [10] * (len(points) + len(outliers))


def test_detect_plane_finds_floor_and_drops_outliers():
    points, observations = _scene()
    plane = detect_plane(np.eye(4), points, observations, 50, random.Random(3))
    assert plane is not None
    assert len(plane.point_indices) >= 3
    assert all(index < 64 for index in plane.point_indices)
    assert abs(plane.normal[1]) > 0.99
    assert plane.normal[1] > 0
    assert abs(plane.origin[1] - 2.0) < 0.01


def test_detect_plane_needs_enough_observed_points():
    points, observations = _scene()
    few = [3] * len(points)
    assert detect_plane(np.eye(4), points, few, 50, random.Random(0)) is None
    assert detect_plane(np.eye(4), points[:40], observations[:40], 50, random.Random(0)) is None


def test_detect_plane_skips_missing_points():
    points, observations = _scene()
    points = [None if i % 2 else p for i, p in enumerate(points)]
    assert detect_plane(np.eye(4), points, observations, 50, random.Random(0)) is None


def test_detect_plane_rejects_mismatched_lengths():
    points, observations = _scene()
    with pytest.raises(ValueError):
        detect_plane(np.eye(4), points, observations[:-1], 50, random.Random(0))