"""Offline spectrum identification."""

from .identifier import DEFAULT_DATASET_PATH, LibrarySyncResult, SpectrumIdentifier, confidence_label
from .scoring import combined_score, cosine_similarity, pearson_correlation, score_matrix

__all__ = [
    "DEFAULT_DATASET_PATH",
    "LibrarySyncResult",
    "SpectrumIdentifier",
    "combined_score",
    "confidence_label",
    "cosine_similarity",
    "pearson_correlation",
    "score_matrix",
]
