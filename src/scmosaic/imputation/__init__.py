"""Imputation of unmeasured features from a joint embedding."""

from .knn import (
    WEIGHTINGS,
    EmbeddingImputer,
    ImputationResult,
    impute_embedding,
    neighbor_weights,
)

__all__ = [
    "EmbeddingImputer",
    "ImputationResult",
    "impute_embedding",
    "neighbor_weights",
    "WEIGHTINGS",
]
