"""Dataset containers and loading utilities for scMosaic."""

from scmosaic.data.dataset import (
    Dataset,
    as_matrices,
    check_disjoint_cells,
    subsample_dataset,
)
from scmosaic.data.loader import (
    COORDINATE_COLS,
    load_dataset,
    load_feature_matrix,
)

__all__ = [
    # Value type
    "Dataset",
    "as_matrices",
    "check_disjoint_cells",
    "subsample_dataset",
    # Loading
    "COORDINATE_COLS",
    "load_dataset",
    "load_feature_matrix",
]
