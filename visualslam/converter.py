"""Conversions between descriptor matrices, rigid transforms and quaternions."""

from __future__ import annotations

import math

import numpy as np


def _as_matrix(value, shape: tuple[int, ...], name: str) -> np.ndarray:
    array = np.asarray(value, dtype=np.float64)
    if array.size == math.prod(shape) and array.shape != shape:
        if name == "translation":
            array = array.reshape(shape)
    if array.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {array.shape}")
    return array


def to_descriptor_list(descriptors) -> list[np.ndarray]:
    """Split a descriptor matrix into a list holding one row per keypoint."""
    matrix = np.asarray(descriptors)
    if matrix.ndim != 2:
        raise ValueError(f"descriptors must be a 2-D matrix, got {matrix.ndim} dimensions")
    return list(matrix)


def to_se3(rotation, translation) -> np.ndarray:
    """Build a 4x4 homogeneous transform from a 3x3 rotation and a translation."""
    r = _as_matrix(rotation, (3, 3), "rotation")
    t = _as_matrix(translation, (3,), "translation")
    transform = np.eye(4, dtype=np.float32)
    transform[:3, :3] = r
    transform[:3, 3] = t
    return transform


def split_se3(transform) -> tuple[np.ndarray, np.ndarray]:
    """Return the rotation block and the translation column of a 4x4 transform."""
    matrix = _as_matrix(transform, (4, 4), "transform")
    rotation = matrix[:3, :3].astype(np.float32)
    translation = matrix[:3, 3].astype(np.float32)
    return rotation, translation


def sim3_to_matrix(rotation, translation, scale: float) -> np.ndarray:
    """Build the 4x4 matrix of a similarity: scaled rotation and translation."""
    r = _as_matrix(rotation, (3, 3), "rotation")
    return to_se3(float(scale) * r, translation)


def to_quaternion(rotation) -> list[float]:
    """Return the quaternion of a rotation matrix as [x, y, z, w]."""
    m = _as_matrix(rotation, (3, 3), "rotation")
    q = [0.0, 0.0, 0.0]
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        root = math.sqrt(trace + 1.0)
        w = 0.5 * root
        root = 0.5 / root
        q[0] = (m[2, 1] - m[1, 2]) * root
        q[1] = (m[0, 2] - m[2, 0]) * root
        q[2] = (m[1, 0] - m[0, 1]) * root
    else:
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        root = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        q[i] = 0.5 * root
        root = 0.5 / root
        w = (m[k, j] - m[j, k]) * root
        q[j] = (m[j, i] + m[i, j]) * root
        q[k] = (m[k, i] + m[i, k]) * root
    return [float(np.float32(value)) for value in (*q, w)]