"""Vector math for exact cosine scoring."""
from __future__ import annotations

from typing import Sequence

import numpy as np


def as_vector(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


def l2_norm(v: np.ndarray) -> float:
    return float(np.linalg.norm(v))


def cosine_similarity(a: np.ndarray, b: np.ndarray, a_norm: float, b_norm: float) -> float:
    """dot(a, b) / (|a| |b|). Callers must skip zero norms."""
    return float(np.dot(a, b) / (a_norm * b_norm))
