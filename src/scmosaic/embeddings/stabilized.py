"""Stabilized joint embedding of datasets with partially overlapping features.

Each reference dataset contributes one block of the joint embedding:

1. A principal component basis is computed on the reference's full feature
   matrix; the reference's own cells get their component scores.
2. Every other dataset is reached by walking the feature overlap graph from
   the reference. At each hop a least-squares linear map (with intercept) is
   fit from the features shared by the two datasets to the coordinates of the
   dataset already embedded, then applied to the next dataset's cells.
3. Blocks from all references are concatenated column-wise.

Component order is by descending singular value (stable, so ties keep the
decomposition order) and each component's sign is fixed so its largest
absolute loading is positive, the earliest feature winning ties.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy import linalg
from sklearn.linear_model import LinearRegression
from sklearn.preprocessing import StandardScaler

from scmosaic.data.dataset import check_disjoint_cells
from scmosaic.embeddings.base import JointEmbedding, block_columns
from scmosaic.embeddings.topology import FeatureOverlapGraph
from scmosaic.errors import InvalidConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class HopProjection:
    """Linear map carrying one block from ``source`` onto ``target``."""

    source: str
    target: str
    features: list
    coef: np.ndarray  # (n_components, n_shared)
    intercept: np.ndarray  # (n_components,)


@dataclass
class ReferenceModel:
    """Fitted state for one reference block."""

    reference: str
    features: list
    scaler: StandardScaler
    components: np.ndarray  # (n_components, n_features)
    singular_values: np.ndarray
    projections: dict[str, HopProjection] = field(default_factory=dict)

    @property
    def n_components(self) -> int:
        return self.components.shape[0]


def principal_basis(
    features: np.ndarray,
    n_components: int,
    center: bool = True,
    scale: bool = False,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, StandardScaler]:
    """Deterministic principal components of a cells x features matrix.

    Parameters
    ----------
    features : np.ndarray
        Input values (n_cells, n_features)
    n_components : int
        Number of components to keep
    center : bool
        Subtract per-feature means before decomposition
    scale : bool
        Divide by per-feature standard deviations before decomposition

    Returns
    -------
    scores : np.ndarray
        Cell coordinates (n_cells, n_components)
    components : np.ndarray
        Loadings (n_components, n_features)
    singular_values : np.ndarray
        Singular values of the kept components
    scaler : StandardScaler
        Fitted centring/scaling step
    """
    scaler = StandardScaler(with_mean=center, with_std=scale)
    X = scaler.fit_transform(features)

    _, S, Vt = linalg.svd(X, full_matrices=False, lapack_driver="gesvd")

    order = np.argsort(-S, kind="stable")[:n_components]
    S = S[order]
    Vt = Vt[order]

    # Sign convention: largest absolute loading positive (argmax keeps the first on ties)
    pivots = np.argmax(np.abs(Vt), axis=1)
    signs = np.sign(Vt[np.arange(len(pivots)), pivots])
    signs[signs == 0] = 1.0
    Vt = Vt * signs[:, None]

    scores = X @ Vt.T
    return scores, Vt, S, scaler


def project_block(
    source_values: pd.DataFrame,
    source_coords: np.ndarray,
    target_values: pd.DataFrame,
    features: list,
) -> tuple[np.ndarray, LinearRegression]:
    """Fit shared features -> block coordinates on the source, apply to the target.

    Both value tables are features x cells; only ``features`` are used.
    """
    model = LinearRegression(fit_intercept=True)
    model.fit(source_values.loc[features].to_numpy(dtype=float).T, source_coords)
    coords = model.predict(target_values.loc[features].to_numpy(dtype=float).T)
    return np.asarray(coords).reshape(target_values.shape[1], -1), model


def _embed_reference(
    reference: str,
    matrices: Mapping[str, pd.DataFrame],
    topology: FeatureOverlapGraph,
    n_components: int,
    center: bool,
    scale: bool,
) -> tuple[pd.DataFrame, ReferenceModel]:
    ref_values = matrices[reference]
    n_cells, n_features = ref_values.shape[1], ref_values.shape[0]
    if n_components > min(n_cells, n_features):
        raise InvalidConfigurationError(
            f"Rank {n_components} for reference '{reference}' exceeds "
            f"min(n_cells={n_cells}, n_features={n_features})"
        )

    scores, components, singular_values, scaler = principal_basis(
        ref_values.to_numpy(dtype=float).T, n_components, center=center, scale=scale
    )
    model = ReferenceModel(
        reference=reference,
        features=list(ref_values.index),
        scaler=scaler,
        components=components,
        singular_values=singular_values,
    )

    # Resolve every path first so an unreachable dataset fails before any fitting
    paths = {name: topology.path(reference, name) for name in matrices if name != reference}

    coords = {reference: scores}
    for name in sorted(paths, key=lambda n: len(paths[n])):
        source = paths[name][-2]
        shared = topology.shared(source, name)
        coords[name], fitted = project_block(
            matrices[source], coords[source], matrices[name], shared
        )
        model.projections[name] = HopProjection(
            source=source,
            target=name,
            features=shared,
            coef=np.atleast_2d(fitted.coef_),
            intercept=np.atleast_1d(fitted.intercept_),
        )
        logger.debug(
            "Projected '%s' into '%s' block via '%s' (%d shared features)",
            name,
            reference,
            source,
            len(shared),
        )

    columns = block_columns(reference, n_components)
    block = pd.concat(
        [
            pd.DataFrame(coords[name], index=matrices[name].columns, columns=columns)
            for name in matrices
        ]
    )
    return block, model


class StabilizedEmbedder:
    """Joint embedding across datasets that share only some features.

    Parameters
    ----------
    n_components : int or dict
        Rank of each reference block, or a mapping reference name -> rank.
        Must not exceed ``min(n_cells, n_features)`` of the reference.
    center : bool
        Centre reference features before the decomposition
    scale : bool
        Scale reference features to unit variance before the decomposition
    n_jobs : int, optional
        Worker processes for the per-reference work (joblib semantics).
        Output is identical for any value.
    """

    def __init__(
        self,
        n_components: Union[int, Mapping[str, int]] = 50,
        center: bool = True,
        scale: bool = False,
        n_jobs: Optional[int] = None,
    ):
        self.n_components = n_components
        self.center = center
        self.scale = scale
        self.n_jobs = n_jobs
        self.models_: dict[str, ReferenceModel] = {}
        self.topology_: Optional[FeatureOverlapGraph] = None

    def _rank(self, reference: str) -> int:
        if isinstance(self.n_components, Mapping):
            if reference not in self.n_components:
                raise InvalidConfigurationError(f"No rank given for reference '{reference}'")
            rank = self.n_components[reference]
        else:
            rank = self.n_components

        if not isinstance(rank, (int, np.integer)) or isinstance(rank, bool) or rank <= 0:
            raise InvalidConfigurationError(
                f"Rank for reference '{reference}' must be a positive integer, got {rank!r}"
            )
        return int(rank)

    def fit_transform(
        self,
        matrices: Mapping[str, pd.DataFrame],
        reference: Iterable[str],
    ) -> JointEmbedding:
        """Embed all cells of all datasets into one block per reference.

        Parameters
        ----------
        matrices : dict
            Dataset name -> features x cells matrix
        reference : list of str
            Datasets whose feature spaces define the embedding blocks

        Returns
        -------
        JointEmbedding
            One row per cell (datasets in input order), one block per reference

        Raises
        ------
        DuplicateCellError
            A cell id occurs in more than one dataset
        InvalidConfigurationError
            Empty or unknown reference set, or an invalid rank
        DisjointFeaturesError
            A reference shares no features with any other dataset
        UnreachableReferenceError
            Some dataset has no feature chain to a reference
        """
        reference = list(reference)
        if not reference:
            raise InvalidConfigurationError("At least one reference dataset is required")
        if len(set(reference)) != len(reference):
            raise InvalidConfigurationError(f"Reference datasets listed twice: {reference}")
        if not matrices:
            raise InvalidConfigurationError("No datasets supplied")
        for name, matrix in matrices.items():
            if matrix.shape[0] == 0 or matrix.shape[1] == 0:
                raise InvalidConfigurationError(f"Dataset '{name}' has an empty feature matrix")

        check_disjoint_cells(matrices)
        topology = FeatureOverlapGraph.from_matrices(matrices, reference=reference)
        ranks = {ref: self._rank(ref) for ref in reference}

        logger.info(
            "Embedding %d datasets (%d cells) on references %s",
            len(matrices),
            sum(m.shape[1] for m in matrices.values()),
            reference,
        )

        results = Parallel(n_jobs=self.n_jobs)(
            delayed(_embed_reference)(
                ref, matrices, topology, ranks[ref], self.center, self.scale
            )
            for ref in reference
        )

        blocks = {}
        frames = []
        self.models_ = {}
        for ref, (frame, model) in zip(reference, results):
            blocks[ref] = list(frame.columns)
            frames.append(frame)
            self.models_[ref] = model
        self.topology_ = topology

        values = pd.concat(frames, axis=1)
        logger.info("Joint embedding: %d cells x %d dims", *values.shape)
        return JointEmbedding(values=values, blocks=blocks)


def stabilized_embedding(
    matrices: Mapping[str, pd.DataFrame],
    reference: Iterable[str],
    n_components: Union[int, Mapping[str, int]] = 50,
    center: bool = True,
    scale: bool = False,
    n_jobs: Optional[int] = None,
) -> JointEmbedding:
    """Functional form of :class:`StabilizedEmbedder`."""
    embedder = StabilizedEmbedder(
        n_components=n_components, center=center, scale=scale, n_jobs=n_jobs
    )
    return embedder.fit_transform(matrices, reference)
