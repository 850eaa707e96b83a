"""
Integration quality metrics for joint embeddings.

Each metric takes the same cells embedded at different pipeline stages
(stabilized, reweighted, corrected) and scores how well the datasets mix
while cell types stay apart.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import silhouette_score
from sklearn.neighbors import NearestNeighbors

logger = logging.getLogger(__name__)


def batch_mixing_score(
    embeddings: np.ndarray,
    batch_labels: np.ndarray,
    sample_size: Optional[int] = 10000,
    rng: Optional[np.random.Generator] = None,
) -> float:
    """
    Negative silhouette of the dataset-of-origin labels.

    Datasets that sit in separate regions give a silhouette near 1, so the
    returned score is near -1; well mixed datasets score near 0.

    Parameters
    ----------
    embeddings : np.ndarray
        Cell coordinates, shape (n_cells, n_dims)
    batch_labels : np.ndarray
        Dataset of origin for each cell
    sample_size : int, optional
        Cells to score when there are more; None scores all of them
    rng : np.random.Generator, optional
        Needed whenever ``sample_size`` triggers subsampling

    Returns
    -------
    float
        Higher is better mixed; NaN with fewer than two datasets
    """
    batch_labels = np.asarray(batch_labels)

    if sample_size is not None and len(embeddings) > sample_size:
        if rng is None:
            raise ValueError("rng must be given when subsampling cells")
        keep = np.sort(rng.choice(len(embeddings), sample_size, replace=False))
        embeddings, batch_labels = embeddings[keep], batch_labels[keep]

    if np.unique(batch_labels).size < 2:
        return np.nan
    return -float(silhouette_score(embeddings, batch_labels))


def within_between_variance_ratio(
    embeddings: np.ndarray,
    batch_labels: np.ndarray,
) -> float:
    """
    Size-weighted within-dataset variance over between-dataset variance.

    Datasets with a single cell are left out. A larger ratio means the
    dataset of origin explains less of the spread.
    """
    frame = pd.DataFrame(np.asarray(embeddings, dtype=float))
    groups = frame.groupby(np.asarray(batch_labels), sort=True)

    sizes = groups.size()
    sizes = sizes[sizes > 1]
    if len(sizes) < 2:
        return np.nan

    within = groups.var(ddof=0).loc[sizes.index].mean(axis=1)
    offsets = groups.mean().loc[sizes.index] - frame.mean()
    between = (offsets**2).sum(axis=1) / frame.shape[1]

    within_var = np.average(within, weights=sizes)
    between_var = np.average(between, weights=sizes)
    return float(within_var / (between_var + 1e-10))


def label_transfer_accuracy(
    embeddings: np.ndarray,
    labels: np.ndarray,
    batch_labels: np.ndarray,
    k: int = 10,
) -> float:
    """
    Can a cell's label be recovered from its nearest neighbours in OTHER datasets?

    For each cell, take its k nearest neighbours among cells of other
    datasets and score the fraction sharing its label (e.g. cell type).

    Parameters
    ----------
    embeddings : np.ndarray
        Cell coordinates
    labels : np.ndarray
        Biological label for each cell
    batch_labels : np.ndarray
        Dataset of origin for each cell
    k : int
        Number of cross-dataset neighbours to consider

    Returns
    -------
    float
        Mean fraction of cross-dataset neighbours with the same label
    """
    labels = np.asarray(labels)
    batch_labels = np.asarray(batch_labels)
    unique_batches = np.unique(batch_labels)

    if len(unique_batches) < 2:
        return np.nan

    scores = []
    for batch in unique_batches:
        inside = batch_labels == batch
        others = np.flatnonzero(~inside)
        n_neighbors = min(k, len(others))

        nn = NearestNeighbors(n_neighbors=n_neighbors, metric="euclidean")
        nn.fit(embeddings[others])
        indices = nn.kneighbors(embeddings[inside], return_distance=False)

        same = labels[others][indices] == labels[inside][:, None]
        scores.append(same.mean(axis=1))

    return float(np.concatenate(scores).mean())


@dataclass
class IntegrationMetrics:
    """Scores of one pipeline stage."""

    stage: str
    mixing_score: float
    variance_ratio: float
    transfer_score: float

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "batch_mixing_score": self.mixing_score,
            "variance_ratio": self.variance_ratio,
            "label_transfer": self.transfer_score,
        }


def compute_integration_metrics(
    stages: Dict[str, np.ndarray],
    batch_labels: np.ndarray,
    labels: Optional[np.ndarray] = None,
    sample_size: Optional[int] = 10000,
    rng: Optional[np.random.Generator] = None,
) -> pd.DataFrame:
    """
    Score every stage embedding of the same cells.

    Parameters
    ----------
    stages : dict
        Stage name -> (n_cells, n_dims) array, e.g.
        {'stabilized': ..., 'corrected': ...}
    batch_labels : np.ndarray
        Dataset of origin for each cell
    labels : np.ndarray, optional
        Cell types; the label transfer column is NaN without them
    sample_size : int, optional
        Subsample size for the silhouette
    rng : np.random.Generator, optional
        Generator for subsampling

    Returns
    -------
    pd.DataFrame
        One row per stage
    """
    rows = []
    for stage, embeddings in stages.items():
        logger.info("Scoring %s embedding (%d cells)", stage, len(embeddings))

        transfer = (
            label_transfer_accuracy(embeddings, labels, batch_labels)
            if labels is not None
            else np.nan
        )
        metrics = IntegrationMetrics(
            stage=stage,
            mixing_score=batch_mixing_score(
                embeddings, batch_labels, sample_size=sample_size, rng=rng
            ),
            variance_ratio=within_between_variance_ratio(embeddings, batch_labels),
            transfer_score=transfer,
        )
        rows.append(metrics.to_dict())

    return pd.DataFrame(rows)
