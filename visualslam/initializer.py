"""Map initialization from two views: homography or fundamental matrix, chosen by score."""

from __future__ import annotations

import random
from dataclasses import dataclass

import numpy as np

from visualslam.epipolar import (
    check_fundamental,
    check_homography,
    check_rt,
    compute_f21,
    compute_h21,
    decompose_e,
    normalize,
)

_MIN_SET = 8
_HOMOGRAPHY_RATIO = 0.40


@dataclass
class Reconstruction:
    """Relative pose of the second view and the points triangulated from both.

    ``points3d`` has one row per point of the reference view, in the reference
    camera's coordinates; ``triangulated`` marks rows holding a point seen
    with enough parallax.
    """

    rotation: np.ndarray
    translation: np.ndarray
    points3d: np.ndarray
    triangulated: list[bool]


def _positions(points) -> np.ndarray:
    if isinstance(points, np.ndarray):
        return np.asarray(points, dtype=np.float64).reshape(-1, 2)
    rows = [(p.x, p.y) if hasattr(p, "x") else tuple(p)[:2] for p in points]
    return np.array(rows, dtype=np.float64).reshape(-1, 2)


class Initializer:
    """Recovers the motion between a reference view and a current view.

    Points are undistorted pixel positions, given as (x, y) pairs or objects
    with ``x`` and ``y`` attributes.
    """

    def __init__(self, k, reference_points, sigma=1.0, iterations=200):
        self.k = np.array(k, dtype=np.float64)
        if self.k.shape != (3, 3):
            raise ValueError(f"calibration matrix must be 3x3, got {self.k.shape}")
        if iterations < 1:
            raise ValueError("at least one RANSAC iteration is needed")
        self.keys1 = _positions(reference_points)
        self.sigma = float(sigma)
        self.sigma2 = self.sigma * self.sigma
        self.max_iterations = int(iterations)
        self._rng = random.Random(0)
        self.keys2: np.ndarray | None = None
        self.matches = np.zeros((0, 2), dtype=np.int64)
        self.sets: list[list[int]] = []

    def _prepare(self, current_points, matches12) -> None:
        keys2 = _positions(current_points)
        flags = [int(m) for m in matches12]
        if len(flags) > len(self.keys1):
            raise ValueError(f"{len(flags)} matches for {len(self.keys1)} reference points")
        pairs = [(i, j) for i, j in enumerate(flags) if j >= 0]
        if any(j >= len(keys2) for _, j in pairs):
            raise ValueError("a match refers to a point beyond the current view")
        if len(pairs) < _MIN_SET:
            raise ValueError(f"at least {_MIN_SET} matches are needed, got {len(pairs)}")

        self.keys2 = keys2
        self.matches = np.array(pairs, dtype=np.int64).reshape(-1, 2)

        all_indices = list(range(len(pairs)))
        self.sets = []
        for _ in range(self.max_iterations):
            available = list(all_indices)
            chosen = []
            for _ in range(_MIN_SET):
                pick = self._rng.randint(0, len(available) - 1)
                chosen.append(available[pick])
                available[pick] = available[-1]
                available.pop()
            self.sets.append(chosen)

    def _require_matches(self) -> None:
        if self.keys2 is None or not self.sets:
            raise RuntimeError("no current view: call initialize first")

    def initialize(self, current_points, matches12) -> Reconstruction | None:
        """Try to reconstruct the scene; ``matches12[i]`` is the current index of reference point i or -1."""
        self._prepare(current_points, matches12)
        inliers_h, score_h, h21 = self.find_homography()
        inliers_f, score_f, f21 = self.find_fundamental()

        total = score_h + score_f
        if total > 0 and score_h / total > _HOMOGRAPHY_RATIO:
            return self.reconstruct_h(inliers_h, h21, 1.0, 50)
        if f21 is None:
            return None
        return self.reconstruct_f(inliers_f, f21, 1.0, 50)

    def find_homography(self) -> tuple[list[bool], float, np.ndarray | None]:
        """RANSAC over the minimal sets; returns (inliers, score, H21) of the best homography."""
        self._require_matches()
        n = len(self.matches)
        pn1, t1 = normalize(self.keys1)
        pn2, t2 = normalize(self.keys2)
        t2inv = np.linalg.inv(t2)

        best_score = 0.0
        best_inliers = [False] * n
        best_h: np.ndarray | None = None
        for chosen in self.sets:
            idx = self.matches[chosen]
            hn = compute_h21(pn1[idx[:, 0]], pn2[idx[:, 1]])
            h21 = t2inv @ hn @ t1
            try:
                h12 = np.linalg.inv(h21)
            except np.linalg.LinAlgError:
                continue
            score, inliers = check_homography(h21, h12, self.keys1, self.keys2, self.matches, self.sigma)
            if score > best_score:
                best_h = h21.copy()
                best_inliers = inliers
                best_score = score
        return best_inliers, best_score, best_h

    def find_fundamental(self) -> tuple[list[bool], float, np.ndarray | None]:
        """RANSAC over the minimal sets; returns (inliers, score, F21) of the best fundamental matrix."""
        self._require_matches()
        n = len(self.matches)
        pn1, t1 = normalize(self.keys1)
        pn2, t2 = normalize(self.keys2)
        t2t = t2.T

        best_score = 0.0
        best_inliers = [False] * n
        best_f: np.ndarray | None = None
        for chosen in self.sets:
            idx = self.matches[chosen]
            fn = compute_f21(pn1[idx[:, 0]], pn2[idx[:, 1]])
            f21 = t2t @ fn @ t1
            score, inliers = check_fundamental(f21, self.keys1, self.keys2, self.matches, self.sigma)
            if score > best_score:
                best_f = f21.copy()
                best_inliers = inliers
                best_score = score
        return best_inliers, best_score, best_f

    def _check(self, rotation, translation, flags) -> object:
        return check_rt(
            rotation, translation, self.keys1, self.keys2, self.matches, flags, self.k, 4.0 * self.sigma2
        )

    def reconstruct_f(self, inliers, f21, min_parallax=1.0, min_triangulated=50) -> Reconstruction | None:
        """Pick among the four poses of the essential matrix the one with a clear majority of good points."""
        self._require_matches()
        flags = [bool(v) for v in inliers]
        n = sum(flags)

        e21 = self.k.T @ np.asarray(f21, dtype=np.float64) @ self.k
        r1, r2, t = decompose_e(e21)
        hypotheses = [(r1, t), (r2, t), (r1, -t), (r2, -t)]
        checks = [self._check(r, tt, flags) for r, tt in hypotheses]
        goods = [c.n_good for c in checks]
        max_good = max(goods)
        min_good = max(int(0.9 * n), min_triangulated)
        similar = sum(1 for g in goods if g > 0.7 * max_good)

        if max_good < min_good or similar > 1:
            return None

        best = goods.index(max_good)
        check = checks[best]
        if check.parallax > min_parallax:
            rotation, translation = hypotheses[best]
            return Reconstruction(
                rotation=rotation.copy(),
                translation=translation.copy(),
                points3d=check.points3d,
                triangulated=check.good,
            )
        return None

    def reconstruct_h(self, inliers, h21, min_parallax=1.0, min_triangulated=50) -> Reconstruction | None:
        """Pick among the eight motions of the homography (Faugeras' decomposition) the best one."""
        self._require_matches()
        flags = [bool(v) for v in inliers]
        n = sum(flags)

        a = np.linalg.inv(self.k) @ np.asarray(h21, dtype=np.float64) @ self.k
        u, w, vt = np.linalg.svd(a, full_matrices=True)
        s = np.linalg.det(u) * np.linalg.det(vt)
        d1, d2, d3 = (float(v) for v in w)

        with np.errstate(divide="ignore", invalid="ignore"):
            if d1 / d2 < 1.00001 or d2 / d3 < 1.00001:
                return None

            aux1 = np.sqrt((d1 * d1 - d2 * d2) / (d1 * d1 - d3 * d3))
            aux3 = np.sqrt((d2 * d2 - d3 * d3) / (d1 * d1 - d3 * d3))
            x1 = [aux1, aux1, -aux1, -aux1]
            x3 = [aux3, -aux3, aux3, -aux3]

            rotations: list[np.ndarray] = []
            translations: list[np.ndarray] = []

            aux_stheta = np.sqrt((d1 * d1 - d2 * d2) * (d2 * d2 - d3 * d3)) / ((d1 + d3) * d2)
            ctheta = (d2 * d2 + d1 * d3) / ((d1 + d3) * d2)
            stheta = [aux_stheta, -aux_stheta, -aux_stheta, aux_stheta]
            for a1, a3, st in zip(x1, x3, stheta):
                rp = np.eye(3)
                rp[0, 0] = ctheta
                rp[0, 2] = -st
                rp[2, 0] = st
                rp[2, 2] = ctheta
                rotations.append(s * u @ rp @ vt)
                t = u @ (np.array([a1, 0.0, -a3]) * (d1 - d3))
                translations.append(t / np.linalg.norm(t))

            aux_sphi = np.sqrt((d1 * d1 - d2 * d2) * (d2 * d2 - d3 * d3)) / ((d1 - d3) * d2)
            cphi = (d1 * d3 - d2 * d2) / ((d1 - d3) * d2)
            sphi = [aux_sphi, -aux_sphi, -aux_sphi, aux_sphi]
            for a1, a3, sp in zip(x1, x3, sphi):
                rp = np.eye(3)
                rp[0, 0] = cphi
                rp[0, 2] = sp
                rp[1, 1] = -1.0
                rp[2, 0] = sp
                rp[2, 2] = -cphi
                rotations.append(s * u @ rp @ vt)
                t = u @ (np.array([a1, 0.0, a3]) * (d1 + d3))
                translations.append(t / np.linalg.norm(t))

        best_good = 0
        second_good = 0
        best_index = -1
        best_check = None
        for index, (rotation, translation) in enumerate(zip(rotations, translations)):
            check = self._check(rotation, translation, flags)
            if check.n_good > best_good:
                second_good = best_good
                best_good = check.n_good
                best_index = index
                best_check = check
            elif check.n_good > second_good:
                second_good = check.n_good

        if (
            best_check is not None
            and second_good < 0.75 * best_good
            and best_check.parallax >= min_parallax
            and best_good > min_triangulated
            and best_good > 0.9 * n
        ):
            return Reconstruction(
                rotation=rotations[best_index].copy(),
                translation=translations[best_index].copy(),
                points3d=best_check.points3d,
                triangulated=best_check.good,
            )
        return None