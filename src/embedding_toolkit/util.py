"""
Vector helpers shared by the query, quantization and reconstruction code.
"""

import os

import numpy as np


def default_threads() -> int:
    """Default worker count: half of the logical CPUs, at least one."""
    return max(1, (os.cpu_count() or 2) // 2)


def l2_normalize(v: np.ndarray) -> float:
    """Normalize a vector in place and return its original L2 norm."""
    norm = float(np.sqrt(np.dot(v, v)))

    if norm != 0.0:
        v /= norm

    return norm


def l2_normalize_array(matrix: np.ndarray) -> np.ndarray:
    """
    Normalize every row of a matrix in place.

    Rows with a zero norm are left untouched.

    Returns:
        The original row norms, shape (n_rows,)
    """
    norms = np.linalg.norm(matrix, axis=1).astype(np.float32)
    nonzero = norms != 0
    matrix[nonzero] /= norms[nonzero, np.newaxis]
    return norms
