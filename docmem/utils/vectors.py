"""Vector helpers shared by the SQLite record stores.

Embeddings are persisted as little-endian float32 BLOBs and scored with
numpy cosine similarity.  Zero vectors (degraded embeddings) score 0.0
against every query instead of producing NaN.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

_DTYPE = np.dtype("<f4")


def encode_vector(vector: Sequence[float] | None) -> bytes | None:
    """Serialize a vector to a float32 BLOB (``None`` passes through)."""
    if vector is None:
        return None
    return np.asarray(vector, dtype=_DTYPE).tobytes()


def decode_vector(blob: bytes | None) -> list[float] | None:
    """Deserialize a float32 BLOB back into a Python list."""
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=_DTYPE).astype(float).tolist()


def zero_vector(dimension: int) -> list[float]:
    return [0.0] * dimension


def is_zero_vector(vector: Sequence[float] | None) -> bool:
    if vector is None:
        return True
    return not np.any(np.asarray(vector, dtype=_DTYPE))


def cosine_similarities(query: Sequence[float], blobs: Sequence[bytes]) -> np.ndarray:
    """Return cosine similarity of *query* against each stored BLOB.

    Rows whose dimension differs from the query, and any non-finite score
    (NaN or infinite components on either side), score ``-1.0`` so they
    can never pass a threshold.
    """
    q = np.asarray(query, dtype=np.float64)
    if not np.all(np.isfinite(q)):
        return np.full(len(blobs), -1.0, dtype=np.float64)
    q_norm = np.linalg.norm(q)
    if q_norm == 0.0:
        return np.zeros(len(blobs), dtype=np.float64)

    scores = np.full(len(blobs), -1.0, dtype=np.float64)
    for i, blob in enumerate(blobs):
        row = np.frombuffer(blob, dtype=_DTYPE).astype(np.float64)
        if row.shape != q.shape:
            continue
        row_norm = np.linalg.norm(row)
        scores[i] = 0.0 if row_norm == 0.0 else float(np.dot(q, row) / (q_norm * row_norm))
    scores[~np.isfinite(scores)] = -1.0
    return scores


def rank_by_similarity(
    query: Sequence[float],
    blobs: Sequence[bytes],
    threshold: float,
    limit: int,
) -> list[tuple[int, float]]:
    """Rank stored vectors against *query*.

    Returns ``(row_position, similarity)`` pairs with
    ``similarity >= threshold``, ordered by descending similarity.  Equal
    scores keep the input order (callers pass rows in insertion order), so
    the ranking is deterministic per query.
    """
    if limit <= 0 or not blobs:
        return []
    scores = cosine_similarities(query, blobs)
    order = np.argsort(-scores, kind="stable")
    ranked: list[tuple[int, float]] = []
    for pos in order:
        score = float(scores[pos])
        if not np.isfinite(score) or score < threshold:
            break
        ranked.append((int(pos), score))
        if len(ranked) >= limit:
            break
    return ranked
