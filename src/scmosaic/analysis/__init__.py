"""Analysis module for batch correction and integration quality metrics."""

from .batch_correction import (
    NeighborBatchCorrector,
    mutual_nearest_neighbors,
    reduced_mnn,
    smoothed_correction,
)
from .integration_metrics import (
    IntegrationMetrics,
    batch_mixing_score,
    compute_integration_metrics,
    label_transfer_accuracy,
    within_between_variance_ratio,
)

__all__ = [
    "NeighborBatchCorrector",
    "mutual_nearest_neighbors",
    "reduced_mnn",
    "smoothed_correction",
    "batch_mixing_score",
    "within_between_variance_ratio",
    "label_transfer_accuracy",
    "compute_integration_metrics",
    "IntegrationMetrics",
]
