"""Nearest-neighbour imputation of unmeasured features.

A query cell's value for a feature is the average of that feature over its k
nearest reference cells in the joint embedding, read from the reference's own
feature matrix. Either direction works: any dataset holding reference cells can
donate values to any set of query cells.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Literal, Optional

import numpy as np
import pandas as pd
from scipy import sparse
from sklearn.neighbors import NearestNeighbors
from tqdm import tqdm

from scmosaic.embeddings.base import JointEmbedding
from scmosaic.errors import EmptyNeighborhoodError, InvalidConfigurationError

logger = logging.getLogger(__name__)

WEIGHTINGS = ("uniform", "distance")


@dataclass(frozen=True)
class ImputationResult:
    """Imputed values of one donor dataset's features for a set of query cells."""

    reference: str  # donor dataset name
    values: pd.DataFrame  # (n_reference_features, n_query_cells)
    k: int
    weighting: str

    @property
    def features(self) -> pd.Index:
        return self.values.index

    @property
    def cells(self) -> pd.Index:
        return self.values.columns


def neighbor_weights(
    distances: np.ndarray,
    indices: np.ndarray,
    n_reference: int,
    weighting: str = "uniform",
) -> sparse.csr_matrix:
    """Sparse (n_query, n_reference) averaging weights from a kNN result.

    Rows sum to one. With ``"distance"`` weighting each neighbour counts as
    1 / distance; a query with exact matches (distance 0) averages over those
    matches only.
    """
    n_query, k = indices.shape

    if weighting == "uniform":
        weights = np.full((n_query, k), 1.0 / k)
    elif weighting == "distance":
        exact = distances == 0
        with np.errstate(divide="ignore"):
            weights = np.where(exact, 0.0, 1.0 / distances)
        has_exact = exact.any(axis=1)
        weights[has_exact] = exact[has_exact].astype(float)
        weights /= weights.sum(axis=1, keepdims=True)
    else:
        raise InvalidConfigurationError(
            f"Unknown weighting '{weighting}'. Use one of {WEIGHTINGS}"
        )

    rows = np.repeat(np.arange(n_query), k)
    return sparse.csr_matrix(
        (weights.ravel(), (rows, indices.ravel())), shape=(n_query, n_reference)
    )


def _check_cells(embedding: JointEmbedding, reference_cells: pd.Index, query_cells: pd.Index):
    if len(query_cells) == 0:
        raise InvalidConfigurationError("No query cells given")
    for label, cells in (("reference", reference_cells), ("query", query_cells)):
        missing = cells.difference(embedding.cells)
        if len(missing) > 0:
            raise InvalidConfigurationError(
                f"{label.capitalize()} cells missing from the embedding: {missing[:10].tolist()}"
            )


class EmbeddingImputer:
    """Impute features for query cells from their neighbours in a joint embedding.

    Args:
        k: Number of reference neighbours per query cell
        weighting: "uniform" mean or inverse-"distance" weighted mean
        n_jobs: Parallel jobs for the neighbour search (scikit-learn semantics)
        show_progress: Show a progress bar over donor datasets
    """

    def __init__(
        self,
        k: int = 5,
        weighting: Literal["uniform", "distance"] = "uniform",
        n_jobs: Optional[int] = None,
        show_progress: bool = False,
    ):
        if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k <= 0:
            raise InvalidConfigurationError(
                f"Neighbour count k must be a positive integer, got {k!r}"
            )
        if weighting not in WEIGHTINGS:
            raise InvalidConfigurationError(
                f"Unknown weighting '{weighting}'. Use one of {WEIGHTINGS}"
            )
        self.k = int(k)
        self.weighting = weighting
        self.n_jobs = n_jobs
        self.show_progress = show_progress

    def impute_from(
        self,
        name: str,
        matrix: pd.DataFrame,
        embedding: JointEmbedding,
        reference_cells: Iterable,
        query_cells: Iterable,
    ) -> ImputationResult:
        """Impute all features of one donor matrix for ``query_cells``.

        Query cells may include reference cells, in which case a cell can be
        its own neighbour.

        Args:
            name: Donor dataset name
            matrix: Donor features x cells matrix
            embedding: Joint embedding covering reference and query cells
            reference_cells: Donor cells to search for neighbours
            query_cells: Cells to impute

        Returns:
            ImputationResult with the donor's features as rows and the query
            cells as columns

        Raises:
            EmptyNeighborhoodError: Fewer than k reference cells
            InvalidConfigurationError: Reference cells missing from ``matrix`` or
                cells missing from the embedding
        """
        reference_cells = pd.Index(list(reference_cells))
        query_cells = pd.Index(list(query_cells))
        _check_cells(embedding, reference_cells, query_cells)
        unmeasured = reference_cells.difference(matrix.columns)
        if len(unmeasured) > 0:
            raise InvalidConfigurationError(
                f"Reference cells missing from dataset '{name}': {unmeasured[:10].tolist()}"
            )

        if len(reference_cells) < self.k:
            raise EmptyNeighborhoodError(
                f"k={self.k} neighbours requested but dataset '{name}' has only "
                f"{len(reference_cells)} reference cells"
            )

        nn = NearestNeighbors(n_neighbors=self.k, metric="euclidean", n_jobs=self.n_jobs)
        nn.fit(embedding.rows(reference_cells))
        distances, indices = nn.kneighbors(embedding.rows(query_cells))

        weights = neighbor_weights(distances, indices, len(reference_cells), self.weighting)
        donor = matrix.loc[:, reference_cells].to_numpy(dtype=float)
        imputed = np.asarray((weights @ donor.T).T)

        values = pd.DataFrame(imputed, index=matrix.index.copy(), columns=query_cells.copy())
        logger.info(
            "Imputed %d features of '%s' for %d query cells (k=%d, %s)",
            values.shape[0],
            name,
            values.shape[1],
            self.k,
            self.weighting,
        )
        return ImputationResult(reference=name, values=values, k=self.k, weighting=self.weighting)

    def impute(
        self,
        matrices: Mapping[str, pd.DataFrame],
        embedding: JointEmbedding,
        reference_cells: Iterable,
        query_cells: Iterable,
    ) -> dict[str, ImputationResult]:
        """Impute every donor dataset's features for the query cells.

        A donor is any matrix in ``matrices`` holding at least one reference
        cell; its neighbours are searched among those cells only.

        Args:
            matrices: Dataset name -> features x cells matrix
            embedding: Joint (corrected) embedding covering all involved cells
            reference_cells: Cells whose measured values are donated
            query_cells: Cells to impute, disjoint from ``reference_cells``

        Returns:
            Donor dataset name -> ImputationResult

        Raises:
            EmptyNeighborhoodError: A donor has fewer than k reference cells
            InvalidConfigurationError: Overlapping or unknown cells
        """
        reference_cells = pd.Index(list(reference_cells))
        query_cells = pd.Index(list(query_cells))

        _check_cells(embedding, reference_cells, query_cells)
        overlap = reference_cells.intersection(query_cells)
        if len(overlap) > 0:
            raise InvalidConfigurationError(
                f"Query and reference cells must be disjoint; shared: {overlap[:10].tolist()}"
            )

        donors = {}
        for name, matrix in matrices.items():
            held = reference_cells[reference_cells.isin(matrix.columns)]
            if len(held) > 0:
                donors[name] = held

        if not donors:
            raise EmptyNeighborhoodError(
                f"None of the datasets {list(matrices)} contain the reference cells"
            )

        iterator = tqdm(donors.items(), desc="Imputing") if self.show_progress else donors.items()
        return {
            name: self.impute_from(name, matrices[name], embedding, held, query_cells)
            for name, held in iterator
        }


def impute_embedding(
    matrices: Mapping[str, pd.DataFrame],
    embedding: JointEmbedding,
    reference_cells: Iterable,
    query_cells: Iterable,
    k: int = 5,
    weighting: Literal["uniform", "distance"] = "uniform",
) -> dict[str, ImputationResult]:
    """Functional form of :meth:`EmbeddingImputer.impute`."""
    return EmbeddingImputer(k=k, weighting=weighting).impute(
        matrices, embedding, reference_cells, query_cells
    )
