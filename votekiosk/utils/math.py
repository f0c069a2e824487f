from __future__ import annotations

import numpy as np

from votekiosk.errors import DescriptorLengthError, IntegrityViolation


def l2_normalize(vec: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """L2-normalize a vector (or 2D array row-wise) safely."""
    arr = np.asarray(vec, dtype=np.float32)
    if arr.ndim == 1:
        denom = float(np.linalg.norm(arr))
        if denom < eps:
            return arr
        return arr / denom
    if arr.ndim == 2:
        norms = np.linalg.norm(arr, axis=1, keepdims=True)
        norms = np.maximum(norms, eps)
        return arr / norms
    raise ValueError(f"Unsupported ndim={arr.ndim}")


def as_descriptor_matrix(vecs, length: int, where: str = "") -> np.ndarray:
    """Coerce one (D,) or many (K, D) descriptors into a float32 (K, D) matrix.

    Raises DescriptorLengthError when D != length, IntegrityViolation on NaN/inf.
    """
    mat = np.asarray(vecs, dtype=np.float32)
    if mat.ndim == 1:
        mat = mat.reshape(1, -1)
    if mat.ndim != 2:
        raise IntegrityViolation(f"descriptor must be 1-D or 2-D, got ndim={mat.ndim} ({where})")
    if int(mat.shape[1]) != int(length):
        raise DescriptorLengthError(int(length), int(mat.shape[1]), where)
    if not np.all(np.isfinite(mat)):
        raise IntegrityViolation(f"descriptor contains NaN/inf ({where})")
    return mat


def as_descriptor(vec, length: int, where: str = "") -> np.ndarray:
    """Coerce a single descriptor into a validated float32 (D,) vector."""
    arr = np.asarray(vec, dtype=np.float32)
    if arr.ndim != 1:
        raise IntegrityViolation(f"descriptor must be 1-D, got shape={arr.shape} ({where})")
    return as_descriptor_matrix(arr, length, where).reshape(-1)


def euclidean_distances(probe: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Row-wise Euclidean distance from `probe` (D,) to `matrix` (N, D), in float64."""
    p = np.asarray(probe, dtype=np.float64).reshape(-1)
    m = np.asarray(matrix, dtype=np.float64)
    if m.ndim == 1:
        m = m.reshape(1, -1)
    if int(m.shape[1]) != int(p.shape[0]):
        raise DescriptorLengthError(int(m.shape[1]), int(p.shape[0]), "probe vs gallery")
    diff = m - p
    return np.sqrt(np.sum(diff * diff, axis=1))
