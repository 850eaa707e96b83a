"""End-to-end mosaic integration.

    datasets -> stabilized embedding -> reweighted -> batch corrected -> imputed

`run_mosaic` wires the stages together from one IntegrationConfig; the
assembly helpers merge observed and imputed values into tables that
downstream clustering and plotting code can consume.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np
import pandas as pd

from scmosaic.analysis.batch_correction import NeighborBatchCorrector
from scmosaic.config import IntegrationConfig, IntegrationSetting
from scmosaic.data.dataset import Dataset, as_matrices
from scmosaic.embeddings.base import JointEmbedding
from scmosaic.embeddings.reweight import EmbeddingReweighter
from scmosaic.embeddings.stabilized import StabilizedEmbedder
from scmosaic.embeddings.topology import FeatureOverlapGraph
from scmosaic.errors import InvalidConfigurationError
from scmosaic.imputation.knn import EmbeddingImputer, ImputationResult

logger = logging.getLogger(__name__)


@dataclass
class MosaicResult:
    """Outputs of one pipeline run."""

    embedding: JointEmbedding  # stabilized
    reweighted: JointEmbedding
    corrected: JointEmbedding
    imputations: dict[tuple[str, str], ImputationResult] = field(default_factory=dict)
    topology: Optional[FeatureOverlapGraph] = None
    dataset_cells: dict[str, pd.Index] = field(default_factory=dict)
    config: Optional[IntegrationConfig] = None

    def batch_labels(self) -> pd.Series:
        """Dataset of origin for every embedded cell."""
        labels = pd.Series(index=self.corrected.cells, dtype=object, name="dataset")
        for name, cells in self.dataset_cells.items():
            labels.loc[cells] = name
        return labels


def default_imputation_pairs(
    dataset_names: Iterable[str], reference_datasets: Iterable[str]
) -> list[tuple[str, str]]:
    """Every (reference, other dataset) pair, references in config order."""
    names = list(dataset_names)
    return [(ref, name) for ref in reference_datasets for name in names if name != ref]


def _resolve_datasets(
    datasets: Union[Iterable[Dataset], Mapping[str, pd.DataFrame]],
) -> dict[str, pd.DataFrame]:
    if isinstance(datasets, Mapping):
        matrices = dict(datasets)
        # Validates ids and values the same way Dataset does
        as_matrices(Dataset(name=name, expression=m) for name, m in matrices.items())
        return matrices
    return as_matrices(datasets)


def run_mosaic(
    datasets: Union[Iterable[Dataset], Mapping[str, pd.DataFrame]],
    config: IntegrationConfig,
    impute: Optional[Iterable[tuple[str, str]]] = None,
) -> MosaicResult:
    """Run embedding, reweighting, batch correction and imputation.

    Args:
        datasets: Datasets, or a mapping dataset name -> features x cells matrix
        config: Integration options; validated against the dataset names
        impute: (donor, query) dataset pairs to impute. Defaults to every
            (reference, other dataset) pair. Pass an empty list to skip.

    Returns:
        MosaicResult with every intermediate embedding and the imputations
    """
    matrices = _resolve_datasets(datasets)
    config.validate(matrices)

    # Stage 1: joint embedding
    embedder = StabilizedEmbedder(
        n_components=config.embedding_rank_per_reference,
        center=config.center,
        scale=config.scale,
        n_jobs=config.n_jobs,
    )
    embedding = embedder.fit_transform(matrices, config.reference_datasets)

    # Stage 2: rebalance reference blocks
    reweighted = EmbeddingReweighter(
        weights=config.reweight_targets, total=config.reweight_total
    ).transform(embedding)

    # Stage 3: align reference datasets on their own cells; other cells keep
    # their reweighted coordinates
    dataset_cells = {name: matrix.columns for name, matrix in matrices.items()}
    references = list(config.reference_datasets)
    if config.batch_correction and len(references) > 1:
        batches = {name: dataset_cells[name] for name in references}
        order = config.batch_correction_anchor_order or references
        corrector = NeighborBatchCorrector(
            k=config.neighbor_count,
            sigma=config.mnn_sigma,
            min_matches=config.min_matches,
            show_progress=config.show_progress,
        )
        corrected = corrector.correct(reweighted, batches, order=order)
    else:
        if config.batch_correction:
            logger.info("Single reference dataset; skipping batch correction")
        corrected = reweighted

    # Stage 4: imputation
    pairs = (
        default_imputation_pairs(matrices, config.reference_datasets)
        if impute is None
        else list(impute)
    )
    imputer = EmbeddingImputer(
        k=config.neighbor_count,
        weighting=config.imputation_weighting,
        n_jobs=config.n_jobs,
    )
    imputations = {}
    for donor, query in pairs:
        for name in (donor, query):
            if name not in matrices:
                raise InvalidConfigurationError(
                    f"Imputation pair ({donor!r}, {query!r}) names unknown dataset '{name}'"
                )
        if donor == query:
            raise InvalidConfigurationError(f"Cannot impute dataset '{donor}' from itself")
        imputations[(donor, query)] = imputer.impute_from(
            donor, matrices[donor], corrected, matrices[donor].columns, matrices[query].columns
        )

    logger.info(
        "Mosaic integration done: %d cells, %d dims, %d imputations",
        corrected.n_cells,
        corrected.n_dims,
        len(imputations),
    )
    return MosaicResult(
        embedding=embedding,
        reweighted=reweighted,
        corrected=corrected,
        imputations=imputations,
        topology=embedder.topology_,
        dataset_cells=dataset_cells,
        config=config,
    )


def run_setting(
    setting: IntegrationSetting,
    assays: Mapping[str, Mapping[str, pd.DataFrame]],
    impute: Optional[Iterable[tuple[str, str]]] = None,
    **options,
) -> MosaicResult:
    """Run the pipeline on the feature matrices picked by ``setting``.

    Args:
        setting: Setting to run; its references become the config references
        assays: Dataset name -> {assay key -> features x cells matrix}; datasets
            outside the setting are ignored
        impute: Passed on to :func:`run_mosaic`
        **options: Remaining IntegrationConfig fields
    """
    logger.info("Running setting '%s'", setting.name)
    return run_mosaic(setting.select_matrices(assays), setting.to_config(**options), impute=impute)


def assemble_joint_matrix(
    matrices: Mapping[str, pd.DataFrame],
    imputations: Iterable[ImputationResult] = (),
) -> pd.DataFrame:
    """Merge observed and imputed values into one features x cells table.

    Observed values always win; imputed values fill features a cell was not
    measured for (the first imputation covering an entry is used). Entries
    with neither stay NaN.

    Args:
        matrices: Dataset name -> observed features x cells matrix
        imputations: Imputation results to fill in

    Returns:
        DataFrame over the union of features (first-seen order) and all cells
    """
    features = pd.Index(
        list(dict.fromkeys(f for matrix in matrices.values() for f in matrix.index))
    )
    cells = pd.Index([c for matrix in matrices.values() for c in matrix.columns])

    joint = pd.DataFrame(np.nan, index=features, columns=cells)
    for matrix in matrices.values():
        joint.loc[matrix.index, matrix.columns] = matrix.to_numpy(dtype=float)

    for result in imputations:
        imputed = result.values.reindex(index=features, columns=cells)
        joint = joint.where(joint.notna(), imputed)

    return joint


def assemble_cell_table(
    datasets: Iterable[Dataset],
    embedding: Optional[JointEmbedding] = None,
) -> pd.DataFrame:
    """One row per cell: dataset of origin, metadata, coordinates and embedding.

    This is the read-only view handed to plotting and clustering code.
    """
    frames = []
    for dataset in datasets:
        table = pd.DataFrame({"dataset": dataset.name}, index=dataset.cells)
        if dataset.metadata is not None:
            table = table.join(dataset.metadata)
        if dataset.coordinates is not None:
            table = table.join(dataset.coordinates)
        frames.append(table)

    cells = pd.concat(frames)
    if embedding is not None:
        cells = cells.join(embedding.values)
    return cells
