from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class VectorError(ValueError):
    pass


def serialize_embedding(vec: Sequence[float]) -> str:
    return json.dumps([float(x) for x in vec])


def parse_embedding(raw: Any) -> Optional[List[float]]:
    """Decode a stored vector; None for anything that is not a non-empty list of numbers."""
    if raw is None:
        return None
    data = raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(data, (list, tuple)) or not data:
        return None
    out: List[float] = []
    for x in data:
        if isinstance(x, bool) or not isinstance(x, (int, float)):
            return None
        out.append(float(x))
    if not np.all(np.isfinite(out)):
        return None
    return out


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 when either side has zero norm."""
    if len(a) != len(b):
        raise VectorError(f"vector length mismatch: {len(a)} != {len(b)}")
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def similarity_matrix(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Pairwise cosine similarities for equal-length vectors; zero-norm rows score 0."""
    if not len(vectors):
        return np.zeros((0, 0))
    m = np.asarray(vectors, dtype=float)
    norms = np.linalg.norm(m, axis=1)
    safe = np.where(norms == 0.0, 1.0, norms)
    unit = m / safe[:, None]
    unit[norms == 0.0] = 0.0
    return unit @ unit.T
