"""
Mutual nearest neighbour batch correction in a joint embedding.

Batches are merged one at a time into a growing anchor set. For each merge,
cells that are mutual nearest neighbours across the two sets give translation
vectors; these are averaged per matched cell and spread to every cell of the
incoming batch with a Gaussian kernel. The first batch is never moved.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Optional

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.spatial.distance import cdist
from sklearn.neighbors import NearestNeighbors
from tqdm import tqdm

from scmosaic.embeddings.base import JointEmbedding
from scmosaic.errors import InsufficientMatchesError, InvalidConfigurationError

logger = logging.getLogger(__name__)


def _knn_indicator(query: np.ndarray, data: np.ndarray, k: int) -> sparse.csr_matrix:
    """Sparse (n_query, n_data) indicator of each query row's k nearest data rows."""
    k = min(k, len(data))
    nn = NearestNeighbors(n_neighbors=k, metric="euclidean")
    nn.fit(data)
    indices = nn.kneighbors(query, return_distance=False)

    rows = np.repeat(np.arange(len(query)), k)
    return sparse.csr_matrix(
        (np.ones(rows.size, dtype=np.int8), (rows, indices.ravel())),
        shape=(len(query), len(data)),
    )


def mutual_nearest_neighbors(
    data1: np.ndarray,
    data2: np.ndarray,
    k: int = 20,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Find mutual nearest neighbour pairs between two sets of cells.

    A pair (i, j) is kept when j is among the k nearest cells of ``data2`` to
    ``data1[i]`` and i is among the k nearest cells of ``data1`` to ``data2[j]``.
    k is clamped to the size of the searched set.

    Parameters
    ----------
    data1 : np.ndarray
        First set, shape (n1, n_dims)
    data2 : np.ndarray
        Second set, shape (n2, n_dims)
    k : int
        Number of neighbours searched in each direction

    Returns
    -------
    idx1, idx2 : np.ndarray
        Row indices into ``data1`` and ``data2``, sorted by (idx1, idx2)
    """
    forward = _knn_indicator(data1, data2, k)
    backward = _knn_indicator(data2, data1, k)

    mutual = forward.multiply(backward.T).tocsr()
    mutual.eliminate_zeros()
    idx1, idx2 = mutual.nonzero()

    order = np.lexsort((idx2, idx1))
    return idx1[order], idx2[order]


def smoothed_correction(
    target: np.ndarray,
    matched: np.ndarray,
    vectors: np.ndarray,
    sigma: float = 0.1,
    batch_size: Optional[int] = 1024,
) -> np.ndarray:
    """
    Spread per-cell correction vectors to every cell of a batch.

    Parameters
    ----------
    target : np.ndarray
        All cells of the batch being corrected, shape (n, n_dims)
    matched : np.ndarray
        Row indices (into ``target``) of cells with a correction vector
    vectors : np.ndarray
        Correction vectors of the matched cells, shape (len(matched), n_dims)
    sigma : float
        Kernel bandwidth relative to the root mean squared distance between
        cells of the batch
    batch_size : int, optional
        Target rows handled per distance block; None handles them all at once

    Returns
    -------
    np.ndarray
        Correction for every cell, shape (n, n_dims)
    """
    # Mean squared pairwise distance = 2 * total variance
    spread = 2.0 * float(target.var(axis=0).sum())
    if spread <= 0:
        spread = 1.0
    bandwidth2 = sigma**2 * spread

    n = len(target)
    if batch_size is None:
        batch_size = max(n, 1)
    elif batch_size <= 0:
        raise InvalidConfigurationError(f"batch_size must be positive, got {batch_size}")

    anchors = target[matched]
    correction = np.empty((n, vectors.shape[1]))
    for start in range(0, n, batch_size):
        stop = min(start + batch_size, n)
        d2 = cdist(target[start:stop], anchors, metric="sqeuclidean")
        # Shift by the row minimum so the closest matched cell always has weight 1
        d2 -= d2.min(axis=1, keepdims=True)
        weights = np.exp(-d2 / (2.0 * bandwidth2))
        weights /= weights.sum(axis=1, keepdims=True)
        correction[start:stop] = weights @ vectors

    return correction


class NeighborBatchCorrector:
    """Align batches of a joint embedding with mutual nearest neighbours.

    Parameters
    ----------
    k : int
        Neighbours searched in each direction when pairing cells
    sigma : float
        Smoothing bandwidth relative to the batch's root mean squared distance
    min_matches : int
        Minimum number of mutual pairs needed to correct a batch
    batch_size : int, optional
        Rows per block when smoothing correction vectors
    show_progress : bool
        Show a progress bar over merge steps
    """

    def __init__(
        self,
        k: int = 20,
        sigma: float = 0.1,
        min_matches: int = 3,
        batch_size: Optional[int] = 1024,
        show_progress: bool = False,
    ):
        if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k <= 0:
            raise InvalidConfigurationError(
                f"Neighbour count k must be a positive integer, got {k!r}"
            )
        if not sigma > 0:
            raise InvalidConfigurationError(f"sigma must be positive, got {sigma}")
        if min_matches < 1:
            raise InvalidConfigurationError(f"min_matches must be at least 1, got {min_matches}")
        if batch_size is not None and batch_size <= 0:
            raise InvalidConfigurationError(f"batch_size must be positive, got {batch_size}")

        self.k = int(k)
        self.sigma = sigma
        self.min_matches = min_matches
        self.batch_size = batch_size
        self.show_progress = show_progress
        self.last_matches_: dict[str, int] = {}

    @staticmethod
    def _merge_order(
        batches: Mapping[str, Iterable],
        order: Optional[Iterable[str]],
    ) -> list[str]:
        names = list(batches)
        if order is None:
            return names

        order = list(order)
        unknown = [name for name in order if name not in batches]
        if unknown:
            raise InvalidConfigurationError(
                f"Anchor order names unknown batches {unknown}. Available: {names}"
            )
        if len(set(order)) != len(order):
            raise InvalidConfigurationError(f"Anchor order lists a batch twice: {order}")
        return order + [name for name in names if name not in order]

    def correct(
        self,
        embedding: JointEmbedding,
        batches: Mapping[str, Iterable],
        order: Optional[Iterable[str]] = None,
    ) -> JointEmbedding:
        """Return a new embedding with all batches aligned to the first.

        Parameters
        ----------
        embedding : JointEmbedding
            Embedding containing every cell of every batch
        batches : dict
            Batch name -> cell ids belonging to it
        order : list of str, optional
            Merge order; the first entry is the fixed anchor. Batches not
            listed follow in mapping order.

        Returns
        -------
        JointEmbedding
            Same cells, columns and blocks. Anchor cells and cells outside
            every batch keep their coordinates.
        """
        merge_order = self._merge_order(batches, order)

        positions = {}
        seen = set()
        for name in merge_order:
            cells = pd.Index(list(batches[name]))
            if len(cells) == 0:
                raise InvalidConfigurationError(f"Batch '{name}' has no cells")
            clash = seen.intersection(cells)
            if clash:
                raise InvalidConfigurationError(
                    f"Cells assigned to more than one batch: {sorted(map(str, clash))[:10]}"
                )
            seen.update(cells)

            idx = embedding.cells.get_indexer(cells)
            if (idx < 0).any():
                raise InvalidConfigurationError(
                    f"Batch '{name}' has cells missing from the embedding: "
                    f"{cells[idx < 0][:10].tolist()}"
                )
            positions[name] = idx

        values = embedding.values.to_numpy(dtype=float, copy=True)
        self.last_matches_ = {}

        anchor_name = merge_order[0]
        anchor = values[positions[anchor_name]]
        logger.info("Batch correction anchored on '%s' (%d cells)", anchor_name, len(anchor))

        steps = merge_order[1:]
        iterator = tqdm(steps, desc="Merging batches") if self.show_progress else steps

        for name in iterator:
            target = values[positions[name]]
            anchor_idx, target_idx = mutual_nearest_neighbors(anchor, target, k=self.k)
            n_pairs = len(anchor_idx)
            self.last_matches_[name] = n_pairs

            if n_pairs < self.min_matches:
                raise InsufficientMatchesError(
                    f"Only {n_pairs} mutual nearest neighbour pairs between batch '{name}' "
                    f"and the anchor set (need at least {self.min_matches}, k={self.k})"
                )

            # Average the pair vectors of each matched target cell
            pair_vectors = anchor[anchor_idx] - target[target_idx]
            matched, inverse, counts = np.unique(
                target_idx, return_inverse=True, return_counts=True
            )
            vectors = np.zeros((len(matched), values.shape[1]))
            np.add.at(vectors, inverse, pair_vectors)
            vectors /= counts[:, None]

            corrected = target + smoothed_correction(
                target, matched, vectors, sigma=self.sigma, batch_size=self.batch_size
            )
            values[positions[name]] = corrected
            anchor = np.vstack([anchor, corrected])

            logger.info(
                "Merged '%s': %d cells, %d MNN pairs (%d matched cells)",
                name,
                len(target),
                n_pairs,
                len(matched),
            )

        return embedding.with_values(values)


def reduced_mnn(
    embedding: JointEmbedding,
    batches: Mapping[str, Iterable],
    order: Optional[Iterable[str]] = None,
    k: int = 20,
    sigma: float = 0.1,
    min_matches: int = 3,
    batch_size: Optional[int] = 1024,
) -> JointEmbedding:
    """Functional form of :class:`NeighborBatchCorrector`."""
    corrector = NeighborBatchCorrector(
        k=k, sigma=sigma, min_matches=min_matches, batch_size=batch_size
    )
    return corrector.correct(embedding, batches, order=order)
