"""
Matching step of the two towers: cosine similarity and top-k selection.
"""

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity as _pairwise_cosine

from ..errors import DimensionMismatchError


def l2_normalize(vec: np.ndarray) -> np.ndarray:
    """Scale to unit length; a zero vector is returned unchanged."""
    norm = float(np.linalg.norm(vec)) or 1.0
    return vec / norm


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """dot(a, b) / (|a| * |b|), 0.0 when either side is a zero vector."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise DimensionMismatchError(f"cannot compare vectors of shape {a.shape} and {b.shape}")
    denom = float(np.linalg.norm(a) * np.linalg.norm(b)) or 1.0
    return float(np.clip(np.dot(a, b) / denom, -1.0, 1.0))


def score_all(user_vec: np.ndarray, item_matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``user_vec`` against every row of ``item_matrix``."""
    item_matrix = np.asarray(item_matrix, dtype=np.float64)
    if item_matrix.ndim != 2 or item_matrix.shape[1] != len(user_vec):
        raise DimensionMismatchError(
            f"user vector has {len(user_vec)} dims, item matrix is {item_matrix.shape}"
        )
    if item_matrix.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)
    # zero rows are left at zero by sklearn's normalization, giving 0 similarity
    scores = _pairwise_cosine(np.asarray(user_vec, dtype=np.float64).reshape(1, -1), item_matrix)[0]
    return np.clip(scores, -1.0, 1.0)


def top_k(scores: np.ndarray, limit: int) -> np.ndarray:
    """
    Indices of the ``limit`` highest scores, best first.

    The sort is stable, so equal scores keep their catalog order.
    """
    if limit <= 0 or len(scores) == 0:
        return np.zeros(0, dtype=np.int64)
    order = np.argsort(-np.asarray(scores, dtype=np.float64), kind="stable")
    return order[:limit]
