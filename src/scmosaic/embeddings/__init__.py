"""Joint embedding of datasets with partially overlapping features.

This module builds the shared coordinate system:

- FeatureOverlapGraph: which datasets share which features
- StabilizedEmbedder: one principal component block per reference dataset,
  with every other dataset projected in along overlapping features
- EmbeddingReweighter: equalizes (or weights) the blocks' absolute totals

Standardized Output Format:
    {output_dir}/
    ├── embeddings.parquet   # (n_cells, n_dims)
    ├── blocks.json          # block name -> columns
    └── manifest.json        # stage and config

Example Usage:
    from scmosaic.embeddings import stabilized_embedding, reweight_embedding
    emb = stabilized_embedding({"sce": rna, "spe": seqfish}, reference=["sce", "spe"])
    emb = reweight_embedding(emb)
"""

from scmosaic.embeddings.base import (
    JointEmbedding,
    block_columns,
    load_embedding,
    save_embedding,
)
from scmosaic.embeddings.reweight import (
    DEFAULT_REFERENCE_TOTAL,
    EmbeddingReweighter,
    block_totals,
    reweight_embedding,
)
from scmosaic.embeddings.stabilized import (
    HopProjection,
    ReferenceModel,
    StabilizedEmbedder,
    principal_basis,
    project_block,
    stabilized_embedding,
)
from scmosaic.embeddings.topology import FeatureOverlapGraph

__all__ = [
    # Base
    "JointEmbedding",
    "block_columns",
    "load_embedding",
    "save_embedding",
    # Topology
    "FeatureOverlapGraph",
    # Stabilized embedding
    "StabilizedEmbedder",
    "ReferenceModel",
    "HopProjection",
    "principal_basis",
    "project_block",
    "stabilized_embedding",
    # Reweighting
    "DEFAULT_REFERENCE_TOTAL",
    "EmbeddingReweighter",
    "block_totals",
    "reweight_embedding",
]
