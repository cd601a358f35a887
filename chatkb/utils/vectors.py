import json
from typing import Any, List

import numpy as np


def to_vec(raw: Any) -> np.ndarray:
    """Coerce a stored embedding into a flat float32 array.

    Accepts native lists/arrays, pgvector text ("[1,2,3]"), JSON strings and
    the legacy {"v": [...]} wrapper.
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        raw = json.loads(raw) if raw.strip() else []
    if isinstance(raw, dict):
        raw = raw.get("v", [])
    if raw is None:
        raw = []
    if hasattr(raw, "to_list"):  # pgvector.Vector
        raw = raw.to_list()
    return np.asarray([float(x) for x in raw], dtype=np.float32).reshape(-1)


def cosine_similarity(a: Any, b: Any) -> float:
    """1 - cosine distance. Zero or mismatched vectors score 0.0."""
    x, y = to_vec(a), to_vec(b)
    if x.size == 0 or x.size != y.size:
        return 0.0
    norm = float(np.linalg.norm(x)) * float(np.linalg.norm(y))
    if norm == 0.0:
        return 0.0
    return float(np.dot(x, y) / norm)


def zero_vector(dimensions: int) -> List[float]:
    return [0.0] * dimensions
