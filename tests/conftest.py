"""Shared fixtures: small synthetic single-cell / spatial mosaics."""

import numpy as np
import pandas as pd
import pytest

N_GENES = 30
N_PRIVATE = 4
N_SHARED = 8


def simulate_mosaic(
    rng: np.random.Generator,
    n_rna: int = 60,
    n_fish: int = 45,
    n_types: int = 3,
    shift: float = 0.0,
) -> tuple[dict[str, pd.DataFrame], pd.Series]:
    """An RNA-like dataset (30 genes) and a spatial-like panel (8 shared + 4 private genes).

    Cells of both datasets come from the same cell-type means; ``shift`` is a
    constant offset added to the spatial panel.
    """
    genes = [f"g{i}" for i in range(N_GENES)]
    private = [f"p{i}" for i in range(N_PRIVATE)]
    centers = rng.normal(0, 3, size=(n_types, N_GENES + N_PRIVATE))

    def sample(n):
        types = np.arange(n) % n_types
        values = centers[types] + rng.normal(0, 0.5, size=(n, N_GENES + N_PRIVATE))
        return types, values

    rna_types, rna_values = sample(n_rna)
    fish_types, fish_values = sample(n_fish)

    rna_cells = [f"rna{i}" for i in range(n_rna)]
    fish_cells = [f"fish{i}" for i in range(n_fish)]

    rna = pd.DataFrame(rna_values[:, :N_GENES].T, index=genes, columns=rna_cells)

    panel = list(range(N_SHARED)) + list(range(N_GENES, N_GENES + N_PRIVATE))
    fish = pd.DataFrame(
        fish_values[:, panel].T + shift,
        index=genes[:N_SHARED] + private,
        columns=fish_cells,
    )

    labels = pd.Series(
        np.concatenate([rna_types, fish_types]).astype(str),
        index=rna_cells + fish_cells,
        name="cell_type",
    )
    return {"sce": rna, "spe": fish}, labels


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def mosaic(rng):
    matrices, _ = simulate_mosaic(rng)
    return matrices


@pytest.fixture
def mosaic_with_labels(rng):
    return simulate_mosaic(rng)


@pytest.fixture
def small_pair(rng):
    """A: 3 cells x 4 features; B: 3 cells x 3 features sharing 2 with A."""
    a = pd.DataFrame(
        rng.normal(size=(4, 3)),
        index=["f1", "f2", "f3", "f4"],
        columns=["a1", "a2", "a3"],
    )
    b = pd.DataFrame(
        rng.normal(size=(3, 3)),
        index=["f1", "f2", "f5"],
        columns=["b1", "b2", "b3"],
    )
    return {"A": a, "B": b}
