from __future__ import annotations

import math
from collections.abc import Sequence

EPSILON = 1e-8


def dot(a: Sequence[float], b: Sequence[float]) -> float:
    return sum(x * y for x, y in zip(a, b))


def norm(a: Sequence[float]) -> float:
    return math.sqrt(dot(a, a))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    # epsilon keeps zero vectors at a score of 0 instead of dividing by zero
    return dot(a, b) / (norm(a) * norm(b) + EPSILON)
