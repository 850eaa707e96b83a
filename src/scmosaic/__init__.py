"""scMosaic: mosaic integration of single-cell and spatial transcriptomics."""

__version__ = "0.1.0"

from scmosaic import analysis, data, embeddings, imputation
from scmosaic.config import IntegrationConfig, IntegrationSetting
from scmosaic.data import Dataset
from scmosaic.errors import (
    DisjointFeaturesError,
    DuplicateCellError,
    EmptyNeighborhoodError,
    InsufficientMatchesError,
    InvalidConfigurationError,
    MosaicError,
    UnreachableReferenceError,
    ZeroNormBlockError,
)
from scmosaic.pipeline import (
    MosaicResult,
    assemble_cell_table,
    assemble_joint_matrix,
    run_mosaic,
    run_setting,
)

__all__ = [
    "analysis",
    "data",
    "embeddings",
    "imputation",
    "Dataset",
    "IntegrationConfig",
    "IntegrationSetting",
    "MosaicResult",
    "run_mosaic",
    "run_setting",
    "assemble_joint_matrix",
    "assemble_cell_table",
    "MosaicError",
    "InvalidConfigurationError",
    "DuplicateCellError",
    "DisjointFeaturesError",
    "UnreachableReferenceError",
    "ZeroNormBlockError",
    "InsufficientMatchesError",
    "EmptyNeighborhoodError",
]
