"""Dataset value type for mosaic integration.

A dataset bundles a features x cells expression matrix with optional per-cell
metadata and spatial coordinates. All slots are explicit; nothing is attached
to the object after construction.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from scmosaic.errors import DuplicateCellError, InvalidConfigurationError


@dataclass(frozen=True)
class Dataset:
    """A single modality measured on its own set of cells.

    Parameters
    ----------
    name : str
        Dataset identifier, e.g. ``"sce"`` or ``"spe"``.
    expression : pd.DataFrame
        Log-normalized values, features as rows and cells as columns.
    metadata : pd.DataFrame, optional
        Per-cell annotations indexed by cell id.
    coordinates : pd.DataFrame, optional
        Spatial coordinates indexed by cell id, one column per axis.
    """

    name: str
    expression: pd.DataFrame
    metadata: Optional[pd.DataFrame] = None
    coordinates: Optional[pd.DataFrame] = None

    def __post_init__(self):
        if not self.name:
            raise InvalidConfigurationError("Dataset name must be a non-empty string")

        expression = self.expression
        if expression.index.has_duplicates:
            dupes = expression.index[expression.index.duplicated()].unique().tolist()
            raise InvalidConfigurationError(
                f"Dataset '{self.name}' has duplicated feature ids: {dupes[:10]}"
            )
        if expression.columns.has_duplicates:
            dupes = expression.columns[expression.columns.duplicated()].unique().tolist()
            raise DuplicateCellError(f"Dataset '{self.name}' has duplicated cell ids: {dupes[:10]}")

        values = expression.to_numpy()
        if not np.issubdtype(values.dtype, np.number):
            raise InvalidConfigurationError(f"Dataset '{self.name}' expression must be numeric")
        if not np.isfinite(values).all():
            raise InvalidConfigurationError(
                f"Dataset '{self.name}' expression contains NaN or infinite values"
            )

        for slot in ("metadata", "coordinates"):
            table = getattr(self, slot)
            if table is None:
                continue
            unknown = table.index.difference(expression.columns)
            if len(unknown) > 0:
                raise InvalidConfigurationError(
                    f"Dataset '{self.name}' {slot} refers to unknown cells: "
                    f"{unknown[:10].tolist()}"
                )

    @property
    def features(self) -> pd.Index:
        return self.expression.index

    @property
    def cells(self) -> pd.Index:
        return self.expression.columns

    @property
    def n_features(self) -> int:
        return self.expression.shape[0]

    @property
    def n_cells(self) -> int:
        return self.expression.shape[1]

    def subset_cells(self, cells: Iterable) -> "Dataset":
        """Return a new dataset restricted to ``cells`` (in the given order)."""
        cells = pd.Index(list(cells))
        missing = cells.difference(self.cells)
        if len(missing) > 0:
            raise InvalidConfigurationError(
                f"Dataset '{self.name}' has no cells {missing[:10].tolist()}"
            )

        def _rows(table):
            if table is None:
                return None
            return table.loc[table.index.intersection(cells, sort=False)]

        return Dataset(
            name=self.name,
            expression=self.expression.loc[:, cells].copy(),
            metadata=_rows(self.metadata),
            coordinates=_rows(self.coordinates),
        )

    def __repr__(self) -> str:
        slots = [s for s in ("metadata", "coordinates") if getattr(self, s) is not None]
        extra = f", slots={slots}" if slots else ""
        return (
            f"Dataset(name={self.name!r}, n_features={self.n_features}, "
            f"n_cells={self.n_cells}{extra})"
        )


def check_disjoint_cells(matrices: Mapping[str, pd.DataFrame]) -> None:
    """Raise DuplicateCellError if any cell id occurs in more than one matrix."""
    owner: dict = {}
    clashes = []
    for name, matrix in matrices.items():
        for cell in matrix.columns:
            if cell in owner:
                clashes.append((cell, owner[cell], name))
            else:
                owner[cell] = name

    if clashes:
        shown = ", ".join(f"'{c}' in '{a}' and '{b}'" for c, a, b in clashes[:5])
        raise DuplicateCellError(
            f"Cell ids must be unique across datasets; found {len(clashes)} shared: {shown}"
        )


def as_matrices(datasets: Iterable[Dataset]) -> dict[str, pd.DataFrame]:
    """Map dataset name to expression matrix, rejecting repeated names and shared cells."""
    matrices = {}
    for dataset in datasets:
        if dataset.name in matrices:
            raise InvalidConfigurationError(f"Dataset name '{dataset.name}' is used twice")
        matrices[dataset.name] = dataset.expression

    check_disjoint_cells(matrices)
    return matrices


def subsample_dataset(
    dataset: Dataset,
    n: int,
    rng: np.random.Generator,
    stratify_col: str | None = None,
) -> Dataset:
    """Subsample cells from a dataset.

    Args:
        dataset: Dataset to subsample
        n: Number of cells to keep
        rng: Random generator; the only source of randomness
        stratify_col: Optional metadata column to sample evenly across

    Returns:
        New Dataset with at most ``n`` cells, in original cell order
    """
    if n <= 0:
        raise InvalidConfigurationError(f"Number of cells to sample must be positive, got {n}")
    if n >= dataset.n_cells:
        return dataset.subset_cells(dataset.cells)

    cells = dataset.cells

    if stratify_col is None:
        idx = rng.choice(len(cells), size=n, replace=False)
        return dataset.subset_cells(cells[np.sort(idx)])

    if dataset.metadata is None or stratify_col not in dataset.metadata.columns:
        raise InvalidConfigurationError(
            f"Dataset '{dataset.name}' has no metadata column '{stratify_col}'"
        )

    labels = dataset.metadata[stratify_col].reindex(cells)
    groups = labels.groupby(labels, sort=True, dropna=False)
    n_per_group = max(1, n // groups.ngroups)

    chosen = []
    for _, group in groups:
        positions = cells.get_indexer(group.index)
        if len(positions) <= n_per_group:
            chosen.extend(positions)
        else:
            chosen.extend(rng.choice(positions, size=n_per_group, replace=False))

    # Top up from the remainder if rounding left us short
    if len(chosen) < n:
        remaining = np.setdiff1d(np.arange(len(cells)), chosen)
        extra = rng.choice(remaining, size=min(n - len(chosen), len(remaining)), replace=False)
        chosen.extend(extra)

    chosen = np.sort(np.asarray(chosen[:n] if len(chosen) > n else chosen, dtype=int))
    return dataset.subset_cells(cells[chosen])
