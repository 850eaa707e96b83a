"""Functions for loading feature matrices and cell metadata from disk.

Matrices are stored features x cells with feature ids in the first column
(CSV/TSV) or in the index (parquet). Metadata tables are stored cells x
columns with cell ids in the first column.

Key features:
- Format detection from the file suffix
- Parquet files without a stored index use their first column as row ids
- Spatial coordinate columns split off into their own slot
"""

import logging
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from scmosaic.data.dataset import Dataset

logger = logging.getLogger(__name__)

# Column names recognised as spatial coordinates when none are given
COORDINATE_COLS = ["x", "y", "z", "x_global", "y_global", "sdimx", "sdimy"]


def _read_table(path: Path) -> pd.DataFrame:
    suffix = "".join(path.suffixes[-2:]).lower()

    if suffix.endswith(".parquet"):
        table = pd.read_parquet(path)
        if isinstance(table.index, pd.RangeIndex):
            table = table.set_index(table.columns[0])
        return table
    if suffix.endswith((".tsv", ".tsv.gz", ".txt", ".txt.gz")):
        return pd.read_csv(path, sep="\t", index_col=0)
    if suffix.endswith((".csv", ".csv.gz")):
        return pd.read_csv(path, index_col=0)

    raise ValueError(f"Unsupported file format: {path.name}. Use .csv, .tsv or .parquet")


def load_feature_matrix(path: Union[str, Path], transpose: bool = False) -> pd.DataFrame:
    """Load a features x cells matrix.

    Args:
        path: CSV, TSV or parquet file
        transpose: Set if the file is stored cells x features

    Returns:
        DataFrame with features as rows and cells as columns
    """
    path = Path(path)
    matrix = _read_table(path)
    if transpose:
        matrix = matrix.T

    matrix.index = matrix.index.astype(str)
    matrix.columns = matrix.columns.astype(str)

    logger.info("Loaded %s: %d features x %d cells", path.name, *matrix.shape)
    return matrix.astype(float)


def load_dataset(
    name: str,
    matrix_path: Union[str, Path],
    metadata_path: Union[str, Path, None] = None,
    coordinate_cols: Optional[list[str]] = None,
    transpose: bool = False,
) -> Dataset:
    """Load a Dataset from a matrix file and an optional metadata table.

    Args:
        name: Dataset name
        matrix_path: Features x cells matrix file
        metadata_path: Cells x annotations table (first column = cell id)
        coordinate_cols: Metadata columns holding spatial coordinates.
            If None, any of COORDINATE_COLS present are used.
        transpose: Set if the matrix is stored cells x features

    Returns:
        Dataset with expression, metadata and coordinates filled in
    """
    expression = load_feature_matrix(matrix_path, transpose=transpose)

    metadata = None
    coordinates = None
    if metadata_path is not None:
        metadata = _read_table(Path(metadata_path))
        metadata.index = metadata.index.astype(str)
        metadata = metadata.loc[metadata.index.intersection(expression.columns, sort=False)]

        if coordinate_cols is None:
            coordinate_cols = [c for c in COORDINATE_COLS if c in metadata.columns]
        else:
            missing = [c for c in coordinate_cols if c not in metadata.columns]
            if missing:
                raise ValueError(f"Coordinate columns not found in {metadata_path}: {missing}")

        if coordinate_cols:
            coordinates = metadata[coordinate_cols].astype(float)
            metadata = metadata.drop(columns=coordinate_cols)

    return Dataset(name=name, expression=expression, metadata=metadata, coordinates=coordinates)
