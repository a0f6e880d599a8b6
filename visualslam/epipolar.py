"""Two-view geometry: homographies, fundamental matrices and triangulation."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

# Chi-square values at 95% for one and two degrees of freedom.
CHI2_ONE_DOF = 3.841
CHI2_TWO_DOF = 5.991

# Below this cosine the rays are parallel enough for a point to count as
# having parallax.
PARALLAX_COS_LIMIT = 0.99998


@dataclass
class RTCheck:
    """Outcome of testing a relative pose against matched points.

    ``points3d`` holds one row per point of the first view, in the first
    camera's coordinates; ``good`` marks points triangulated with parallax.
    ``parallax`` is in degrees.
    """

    n_good: int
    points3d: np.ndarray
    good: list[bool]
    parallax: float


def _as_points(points) -> np.ndarray:
    return np.asarray(points, dtype=np.float64).reshape(-1, 2)


def _as_matches(matches) -> np.ndarray:
    return np.asarray(matches, dtype=np.int64).reshape(-1, 2)


def _check_pairs(p1: np.ndarray, p2: np.ndarray, minimum: int) -> None:
    if len(p1) != len(p2):
        raise ValueError(f"point lists differ in length: {len(p1)} and {len(p2)}")
    if len(p1) < minimum:
        raise ValueError(f"at least {minimum} correspondences are needed, got {len(p1)}")


def normalize(points) -> tuple[np.ndarray, np.ndarray]:
    """Centre points on their mean and scale them to unit mean absolute deviation.

    Returns the normalized points and the 3x3 transform that maps homogeneous
    input points onto them.
    """
    pts = _as_points(points)
    if len(pts) == 0:
        raise ValueError("cannot normalize an empty point set")
    mean = pts.mean(axis=0)
    centred = pts - mean
    deviation = np.abs(centred).mean(axis=0)
    if np.any(deviation == 0.0):
        raise ValueError("points must spread along both coordinates")
    scale = 1.0 / deviation
    normalized = centred * scale

    transform = np.eye(3, dtype=np.float64)
    transform[0, 0] = scale[0]
    transform[1, 1] = scale[1]
    transform[0, 2] = -mean[0] * scale[0]
    transform[1, 2] = -mean[1] * scale[1]
    return normalized, transform


def compute_h21(p1, p2) -> np.ndarray:
    """Homography mapping points of the first view onto the second (DLT)."""
    a_pts = _as_points(p1)
    b_pts = _as_points(p2)
    _check_pairs(a_pts, b_pts, 4)
    u1, v1 = a_pts.T
    u2, v2 = b_pts.T
    zeros = np.zeros_like(u1)
    ones = np.ones_like(u1)

    system = np.empty((2 * len(a_pts), 9), dtype=np.float64)
    system[0::2] = np.column_stack((zeros, zeros, zeros, -u1, -v1, -ones, v2 * u1, v2 * v1, v2))
    system[1::2] = np.column_stack((u1, v1, ones, zeros, zeros, zeros, -u2 * u1, -u2 * v1, -u2))

    _, _, vt = np.linalg.svd(system, full_matrices=True)
    return vt[8].reshape(3, 3)


def compute_f21(p1, p2) -> np.ndarray:
    """Rank-2 fundamental matrix with x2^T F21 x1 = 0 (eight-point method)."""
    a_pts = _as_points(p1)
    b_pts = _as_points(p2)
    _check_pairs(a_pts, b_pts, 8)
    u1, v1 = a_pts.T
    u2, v2 = b_pts.T
    system = np.column_stack(
        (u2 * u1, u2 * v1, u2, v2 * u1, v2 * v1, v2, u1, v1, np.ones_like(u1))
    )
    _, _, vt = np.linalg.svd(system, full_matrices=True)
    f_pre = vt[8].reshape(3, 3)

    u, w, vt = np.linalg.svd(f_pre, full_matrices=True)
    w[2] = 0.0
    return u @ np.diag(w) @ vt


def _homogeneous(points: np.ndarray) -> np.ndarray:
    return np.column_stack((points, np.ones(len(points))))


def _score(chi2: np.ndarray, threshold: float, reward: float) -> tuple[float, np.ndarray]:
    inside = ~(chi2 > threshold)
    return float(np.sum(reward - chi2[inside])), inside


def check_homography(h21, h12, points1, points2, matches, sigma) -> tuple[float, list[bool]]:
    """Score a homography by symmetric transfer error; returns (score, inlier flags)."""
    pairs = _as_matches(matches)
    if len(pairs) == 0:
        return 0.0, []
    forward = np.asarray(h21, dtype=np.float64)
    backward = np.asarray(h12, dtype=np.float64)
    x1 = _as_points(points1)[pairs[:, 0]]
    x2 = _as_points(points2)[pairs[:, 1]]
    inv_sigma2 = 1.0 / (sigma * sigma)

    with np.errstate(divide="ignore", invalid="ignore"):
        in1 = _homogeneous(x2) @ backward.T
        in1 = in1[:, :2] / in1[:, 2:3]
        chi1 = np.sum((x1 - in1) ** 2, axis=1) * inv_sigma2

        in2 = _homogeneous(x1) @ forward.T
        in2 = in2[:, :2] / in2[:, 2:3]
        chi2 = np.sum((x2 - in2) ** 2, axis=1) * inv_sigma2

    score1, ok1 = _score(chi1, CHI2_TWO_DOF, CHI2_TWO_DOF)
    score2, ok2 = _score(chi2, CHI2_TWO_DOF, CHI2_TWO_DOF)
    return score1 + score2, [bool(v) for v in ok1 & ok2]


def check_fundamental(f21, points1, points2, matches, sigma) -> tuple[float, list[bool]]:
    """Score a fundamental matrix by point-to-epipolar-line distances; returns (score, inlier flags)."""
    pairs = _as_matches(matches)
    if len(pairs) == 0:
        return 0.0, []
    fundamental = np.asarray(f21, dtype=np.float64)
    h1 = _homogeneous(_as_points(points1)[pairs[:, 0]])
    h2 = _homogeneous(_as_points(points2)[pairs[:, 1]])
    inv_sigma2 = 1.0 / (sigma * sigma)

    with np.errstate(divide="ignore", invalid="ignore"):
        lines2 = h1 @ fundamental.T
        num2 = np.sum(lines2 * h2, axis=1)
        chi1 = num2 * num2 / (lines2[:, 0] ** 2 + lines2[:, 1] ** 2) * inv_sigma2

        lines1 = h2 @ fundamental
        num1 = np.sum(lines1 * h1, axis=1)
        chi2 = num1 * num1 / (lines1[:, 0] ** 2 + lines1[:, 1] ** 2) * inv_sigma2

    score1, ok1 = _score(chi1, CHI2_ONE_DOF, CHI2_TWO_DOF)
    score2, ok2 = _score(chi2, CHI2_ONE_DOF, CHI2_TWO_DOF)
    return score1 + score2, [bool(v) for v in ok1 & ok2]


def triangulate(pt1, pt2, p1, p2) -> np.ndarray:
    """Linear triangulation of one correspondence from two 3x4 projection matrices."""
    x1, y1 = np.asarray(pt1, dtype=np.float64).ravel()[:2]
    x2, y2 = np.asarray(pt2, dtype=np.float64).ravel()[:2]
    proj1 = np.asarray(p1, dtype=np.float64)
    proj2 = np.asarray(p2, dtype=np.float64)
    system = np.vstack(
        (
            x1 * proj1[2] - proj1[0],
            y1 * proj1[2] - proj1[1],
            x2 * proj2[2] - proj2[0],
            y2 * proj2[2] - proj2[1],
        )
    )
    _, _, vt = np.linalg.svd(system, full_matrices=True)
    solution = vt[3]
    with np.errstate(divide="ignore", invalid="ignore"):
        return solution[:3] / solution[3]


def decompose_e(e) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split an essential matrix into two rotations and a unit translation."""
    essential = np.asarray(e, dtype=np.float64)
    u, _, vt = np.linalg.svd(essential)
    t = u[:, 2] / np.linalg.norm(u[:, 2])

    w = np.zeros((3, 3), dtype=np.float64)
    w[0, 1] = -1.0
    w[1, 0] = 1.0
    w[2, 2] = 1.0

    r1 = u @ w @ vt
    if np.linalg.det(r1) < 0:
        r1 = -r1
    r2 = u @ w.T @ vt
    if np.linalg.det(r2) < 0:
        r2 = -r2
    return r1, r2, t


def check_rt(r, t, points1, points2, matches, inliers, k, th2) -> RTCheck:
    """Triangulate the inlier matches under pose (r, t) and count the consistent ones."""
    rotation = np.asarray(r, dtype=np.float64).reshape(3, 3)
    translation = np.asarray(t, dtype=np.float64).reshape(3)
    calibration = np.asarray(k, dtype=np.float64)
    fx, fy = calibration[0, 0], calibration[1, 1]
    cx, cy = calibration[0, 2], calibration[1, 2]
    pts1 = _as_points(points1)
    pts2 = _as_points(points2)
    pairs = _as_matches(matches)
    flags = list(inliers)
    if len(flags) != len(pairs):
        raise ValueError(f"{len(flags)} inlier flags for {len(pairs)} matches")

    good = [False] * len(pts1)
    points3d = np.zeros((len(pts1), 3), dtype=np.float64)
    cos_parallax: list[float] = []

    proj1 = np.zeros((3, 4), dtype=np.float64)
    proj1[:, :3] = calibration
    proj2 = calibration @ np.column_stack((rotation, translation))
    centre2 = -rotation.T @ translation

    n_good = 0
    with np.errstate(divide="ignore", invalid="ignore"):
        for (i1, i2), is_inlier in zip(pairs, flags):
            if not is_inlier:
                continue
            kp1 = pts1[i1]
            kp2 = pts2[i2]
            x3d = triangulate(kp1, kp2, proj1, proj2)
            if not np.all(np.isfinite(x3d)):
                good[i1] = False
                continue

            normal2 = x3d - centre2
            cosine = float(x3d @ normal2 / (np.linalg.norm(x3d) * np.linalg.norm(normal2)))

            if x3d[2] <= 0 and cosine < PARALLAX_COS_LIMIT:
                continue
            x3d_c2 = rotation @ x3d + translation
            if x3d_c2[2] <= 0 and cosine < PARALLAX_COS_LIMIT:
                continue

            inv_z1 = np.float64(1.0) / x3d[2]
            im1 = np.array([fx * x3d[0] * inv_z1 + cx, fy * x3d[1] * inv_z1 + cy])
            if np.sum((im1 - kp1) ** 2) > th2:
                continue

            inv_z2 = np.float64(1.0) / x3d_c2[2]
            im2 = np.array([fx * x3d_c2[0] * inv_z2 + cx, fy * x3d_c2[1] * inv_z2 + cy])
            if np.sum((im2 - kp2) ** 2) > th2:
                continue

            cos_parallax.append(cosine)
            points3d[i1] = x3d
            n_good += 1
            if cosine < PARALLAX_COS_LIMIT:
                good[i1] = True

    if n_good > 0:
        cos_parallax.sort()
        chosen = cos_parallax[min(50, len(cos_parallax) - 1)]
        parallax = math.degrees(math.acos(max(-1.0, min(1.0, chosen))))
    else:
        parallax = 0.0
    return RTCheck(n_good=n_good, points3d=points3d, good=good, parallax=parallax)