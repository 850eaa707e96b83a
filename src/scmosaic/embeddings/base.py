"""Base classes and utilities for joint embeddings.

This module provides the block-partitioned embedding container shared by the
embedder, reweighter and batch corrector, plus standardized saving/loading.

Standardized output format:
    {output_dir}/
    ├── embeddings.parquet   # (n_cells, n_dims), index = cell ids
    ├── blocks.json          # block name -> column names, in order
    └── manifest.json        # config and file paths
"""

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

import numpy as np
import pandas as pd

from scmosaic.errors import InvalidConfigurationError


def block_columns(block: str, n_components: int) -> list[str]:
    """Column names of a reference block, e.g. ``sce_PC1 .. sce_PC50``."""
    return [f"{block}_PC{i + 1}" for i in range(n_components)]


@dataclass(frozen=True)
class JointEmbedding:
    """Cells x dimensions embedding partitioned into per-reference blocks.

    Every stage of the pipeline returns a new instance; ``values`` is never
    modified in place.
    """

    values: pd.DataFrame  # (n_cells, n_dims), index = cell ids
    blocks: dict[str, list[str]]  # block name -> contiguous column names

    def __post_init__(self):
        if self.values.index.has_duplicates:
            raise InvalidConfigurationError("Embedding has duplicated cell ids")

        expected = [col for cols in self.blocks.values() for col in cols]
        if list(self.values.columns) != expected:
            raise InvalidConfigurationError(
                "Embedding columns must be the concatenation of its blocks in order"
            )

    @property
    def n_cells(self) -> int:
        return self.values.shape[0]

    @property
    def n_dims(self) -> int:
        return self.values.shape[1]

    @property
    def cells(self) -> pd.Index:
        return self.values.index

    @property
    def block_names(self) -> list[str]:
        return list(self.blocks)

    def block(self, name: str) -> pd.DataFrame:
        """Values of one block (all cells)."""
        if name not in self.blocks:
            raise InvalidConfigurationError(
                f"Unknown embedding block '{name}'. Available: {self.block_names}"
            )
        return self.values.loc[:, self.blocks[name]]

    def rows(self, cells) -> np.ndarray:
        """Embedding coordinates for ``cells`` as a float array, in the given order."""
        cells = pd.Index(cells)
        missing = cells.difference(self.values.index)
        if len(missing) > 0:
            raise InvalidConfigurationError(
                f"Cells not present in the embedding: {missing[:10].tolist()}"
            )
        return self.values.loc[cells].to_numpy(dtype=float)

    def with_values(self, values: Union[pd.DataFrame, np.ndarray]) -> "JointEmbedding":
        """New embedding with the same cells, columns and blocks but new values."""
        if isinstance(values, np.ndarray):
            values = pd.DataFrame(values, index=self.values.index, columns=self.values.columns)
        return JointEmbedding(values=values, blocks={k: list(v) for k, v in self.blocks.items()})


def save_embedding(
    output_dir: Union[str, Path],
    embedding: JointEmbedding,
    stage: str,
    config: Optional[dict] = None,
) -> None:
    """Save a joint embedding in standardized format.

    Parameters
    ----------
    output_dir : Path
        Directory to save outputs
    embedding : JointEmbedding
        Embedding to save
    stage : str
        Pipeline stage that produced it ('stabilized', 'reweighted', 'corrected')
    config : dict, optional
        Integration configuration
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    values = embedding.values.copy()
    values.index = values.index.astype(str)
    values.index.name = "cell"
    values.to_parquet(output_dir / "embeddings.parquet")

    with open(output_dir / "blocks.json", "w") as f:
        json.dump(embedding.blocks, f, indent=2)

    manifest = {
        "stage": stage,
        "n_cells": embedding.n_cells,
        "n_dims": embedding.n_dims,
        "blocks": {name: len(cols) for name, cols in embedding.blocks.items()},
        "created": datetime.now().isoformat(),
        "files": {
            "embeddings": "embeddings.parquet",
            "blocks": "blocks.json",
        },
    }

    if config:
        manifest["config"] = config

    with open(output_dir / "manifest.json", "w") as f:
        json.dump(manifest, f, indent=2)


def load_embedding(output_dir: Union[str, Path]) -> tuple[JointEmbedding, dict]:
    """Load a joint embedding from a standardized directory.

    Parameters
    ----------
    output_dir : Path
        Directory containing embeddings.parquet, blocks.json, manifest.json

    Returns
    -------
    embedding : JointEmbedding
        The stored embedding
    manifest : dict
        Manifest contents (empty if missing)
    """
    output_dir = Path(output_dir)

    embeddings_path = output_dir / "embeddings.parquet"
    if not embeddings_path.exists():
        raise FileNotFoundError(f"No embeddings found in {output_dir}")
    values = pd.read_parquet(embeddings_path)

    blocks_path = output_dir / "blocks.json"
    if blocks_path.exists():
        with open(blocks_path) as f:
            blocks = json.load(f)
    else:
        # Recover blocks from the "{block}_PC{i}" column naming
        blocks = {}
        for col in values.columns:
            blocks.setdefault(col.rsplit("_PC", 1)[0], []).append(col)

    manifest_path = output_dir / "manifest.json"
    if manifest_path.exists():
        with open(manifest_path) as f:
            manifest = json.load(f)
    else:
        manifest = {}

    return JointEmbedding(values=values, blocks=blocks), manifest
