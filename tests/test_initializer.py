import numpy as np
import pytest

from visualslam.frame import KeyPoint
from visualslam.initializer import Initializer, Reconstruction

K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])


def _rotation_y(angle):
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])


def _project(points):
    h = points @ K.T
    return h[:, :2] / h[:, 2:3]


def _scene(n=120, planar=False, baseline=1.0, seed=7):
    rng = np.random.default_rng(seed)
    x = rng.uniform(-3.0, 3.0, n)
    y = rng.uniform(-2.0, 2.0, n)
    z = 5.0 + 0.2 * x if planar else rng.uniform(4.0, 10.0, n)
    points = np.column_stack((x, y, z))
    rotation = _rotation_y(0.05)
    direction = np.array([1.0, 0.1, 0.05])
    translation = baseline * direction / np.linalg.norm(direction)
    points2 = points @ rotation.T + translation
    return points, _project(points), _project(points2), rotation, translation


def _skew(v):
    return np.array([[0.0, -v[2], v[1]], [v[2], 0.0, -v[0]], [-v[1], v[0], 0.0]])


def test_general_scene_reconstructs_true_motion():
    points, px1, px2, rotation, translation = _scene()
    init = Initializer(K, px1)
    result = init.initialize(px2, list(range(len(px1))))
    assert isinstance(result, Reconstruction)
    np.testing.assert_allclose(result.rotation, rotation, atol=1e-6)
    np.testing.assert_allclose(result.translation, translation, atol=1e-6)
    assert all(result.triangulated)
    np.testing.assert_allclose(result.points3d, points, atol=1e-4)


def test_reference_points_accept_keypoints():
    points, px1, px2, rotation, _ = _scene()
    keys1 = [KeyPoint(float(u), float(v)) for u, v in px1]
    keys2 = [KeyPoint(float(u), float(v)) for u, v in px2]
    result = Initializer(K, keys1).initialize(keys2, list(range(len(keys1))))
    assert result is not None
    np.testing.assert_allclose(result.rotation, rotation, atol=1e-6)


def test_general_scene_prefers_fundamental():
    _, px1, px2, _, _ = _scene()
    init = Initializer(K, px1)
    init.initialize(px2, list(range(len(px1))))
    inliers_h, score_h, _ = init.find_homography()
    inliers_f, score_f, f21 = init.find_fundamental()
    assert score_f > score_h
    assert all(inliers_f)
    assert sum(inliers_h) < len(inliers_h)
    h1 = np.column_stack((px1, np.ones(len(px1))))
    h2 = np.column_stack((px2, np.ones(len(px2))))
    residual = np.abs(np.sum(h2 * (h1 @ f21.T), axis=1))
    assert residual.max() < 1e-6 * np.abs(f21).max() * 1e6


def test_planar_scene_homography_maps_points():
    _, px1, px2, _, _ = _scene(planar=True)
    init = Initializer(K, px1)
    init.initialize(px2, list(range(len(px1))))
    inliers, score, h21 = init.find_homography()
    assert all(inliers)
    assert score > 0
    mapped = np.column_stack((px1, np.ones(len(px1)))) @ h21.T
    mapped = mapped[:, :2] / mapped[:, 2:3]
    np.testing.assert_allclose(mapped, px2, atol=1e-4)


def test_reconstruct_f_with_true_fundamental():
    points, px1, px2, rotation, translation = _scene()
    init = Initializer(K, px1)
    init.initialize(px2, list(range(len(px1))))
    kinv = np.linalg.inv(K)
    f21 = kinv.T @ _skew(translation) @ rotation @ kinv
    result = init.reconstruct_f([True] * len(px1), f21, 1.0, 50)
    assert result is not None
    np.testing.assert_allclose(result.rotation, rotation, atol=1e-6)
    np.testing.assert_allclose(result.translation, translation, atol=1e-6)


def test_reconstruct_h_rejects_identity():
    _, px1, px2, _, _ = _scene()
    init = Initializer(K, px1)
    init.initialize(px2, list(range(len(px1))))
    assert init.reconstruct_h([True] * len(px1), np.eye(3), 1.0, 50) is None


def test_tiny_baseline_is_rejected():
    _, px1, px2, _, _ = _scene(baseline=0.005)
    init = Initializer(K, px1)
    assert init.initialize(px2, list(range(len(px1)))) is None


def test_unmatched_points_are_skipped():
    points, px1, px2, rotation, _ = _scene(n=130)
    matches = list(range(len(px1)))
    matches[0] = -1
    matches[5] = -1
    result = Initializer(K, px1).initialize(px2, matches)
    assert result is not None
    assert result.triangulated[0] is False
    assert result.triangulated[5] is False
    np.testing.assert_allclose(result.rotation, rotation, atol=1e-6)


def test_too_few_matches_raise():
    _, px1, px2, _, _ = _scene()
    matches = [-1] * len(px1)
    matches[:5] = range(5)
    with pytest.raises(ValueError):
        Initializer(K, px1).initialize(px2, matches)


def test_match_beyond_current_view_raises():
    _, px1, px2, _, _ = _scene()
    matches = list(range(len(px1)))
    matches[3] = len(px2) + 10
    with pytest.raises(ValueError):
        Initializer(K, px1).initialize(px2, matches)


def test_search_before_initialize_raises():
    _, px1, _, _, _ = _scene()
    with pytest.raises(RuntimeError):
        Initializer(K, px1).find_homography()


def test_bad_calibration_raises():
    with pytest.raises(ValueError):
        Initializer(np.eye(2), [(0.0, 0.0)])