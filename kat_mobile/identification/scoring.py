"""Similarity measures used to rank reference spectra."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

ArrayLike = Sequence[float] | np.ndarray


def _as_vector(values: ArrayLike) -> np.ndarray:
    return np.asarray(values, dtype=np.float64).ravel()


def cosine_similarity(a: ArrayLike, b: ArrayLike) -> float:
    """Return ``dot(a, b) / (|a| |b|)``, or 0.0 when either vector has zero norm."""

    va, vb = _as_vector(a), _as_vector(b)
    norms = float(np.dot(va, va)) * float(np.dot(vb, vb))
    if norms <= 0 or not np.isfinite(norms):
        return 0.0
    return float(np.clip(np.dot(va, vb) / np.sqrt(norms), -1.0, 1.0))


def pearson_correlation(a: ArrayLike, b: ArrayLike) -> float:
    """Return the Pearson coefficient, or 0.0 when either vector is constant."""

    va, vb = _as_vector(a), _as_vector(b)
    if va.size == 0:
        return 0.0
    da = va - va.mean()
    db = vb - vb.mean()
    variances = float(np.dot(da, da)) * float(np.dot(db, db))
    if variances <= 0 or not np.isfinite(variances):
        return 0.0
    return float(np.clip(np.dot(da, db) / np.sqrt(variances), -1.0, 1.0))


def combined_score(cosine: float, pearson: float, cosine_weight: float = 0.5) -> float:
    return cosine_weight * cosine + (1.0 - cosine_weight) * pearson


def score_matrix(query: ArrayLike, references: np.ndarray, cosine_weight: float = 0.5) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Score ``query`` against every row of ``references`` at once.

    Returns ``(combined, cosine, pearson)`` arrays aligned with the rows.
    """

    q = _as_vector(query)
    refs = np.atleast_2d(np.asarray(references, dtype=np.float64))
    if refs.shape[0] == 0 or refs.shape[1] != q.size:
        empty = np.zeros(refs.shape[0])
        return empty, empty.copy(), empty.copy()

    q_norm = float(np.dot(q, q))
    ref_norms = np.einsum("ij,ij->i", refs, refs)
    denom = np.sqrt(q_norm * ref_norms)
    dots = refs @ q
    cosine = np.zeros(refs.shape[0])
    ok = denom > 0
    cosine[ok] = np.clip(dots[ok] / denom[ok], -1.0, 1.0)

    qc = q - q.mean()
    rc = refs - refs.mean(axis=1, keepdims=True)
    q_var = float(np.dot(qc, qc))
    ref_vars = np.einsum("ij,ij->i", rc, rc)
    denom = np.sqrt(q_var * ref_vars)
    covs = rc @ qc
    pearson = np.zeros(refs.shape[0])
    ok = denom > 0
    pearson[ok] = np.clip(covs[ok] / denom[ok], -1.0, 1.0)

    combined = cosine_weight * cosine + (1.0 - cosine_weight) * pearson
    return combined, cosine, pearson


__all__ = ["combined_score", "cosine_similarity", "pearson_correlation", "score_matrix"]
