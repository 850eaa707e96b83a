"""Tests for JointEmbedding and its on-disk format."""

import json

import numpy as np
import pandas as pd
import pytest

from scmosaic.embeddings import JointEmbedding, block_columns, load_embedding, save_embedding
from scmosaic.errors import InvalidConfigurationError


@pytest.fixture
def embedding(rng):
    columns = block_columns("sce", 3) + block_columns("spe", 2)
    values = pd.DataFrame(
        rng.normal(size=(8, 5)), index=[f"c{i}" for i in range(8)], columns=columns
    )
    return JointEmbedding(values=values, blocks={"sce": columns[:3], "spe": columns[3:]})


def test_block_columns():
    assert block_columns("spe", 2) == ["spe_PC1", "spe_PC2"]


def test_block_access(embedding):
    assert embedding.block("spe").shape == (8, 2)
    assert embedding.n_dims == 5
    with pytest.raises(InvalidConfigurationError, match="Unknown embedding block"):
        embedding.block("merfish")


def test_columns_must_match_blocks(embedding):
    with pytest.raises(InvalidConfigurationError, match="concatenation"):
        JointEmbedding(values=embedding.values, blocks={"sce": ["sce_PC1"]})


def test_duplicate_cells_rejected(embedding):
    values = pd.concat([embedding.values, embedding.values.iloc[:1]])
    with pytest.raises(InvalidConfigurationError, match="duplicated"):
        JointEmbedding(values=values, blocks=embedding.blocks)


def test_rows_unknown_cell(embedding):
    with pytest.raises(InvalidConfigurationError, match="not present"):
        embedding.rows(["c0", "nope"])


def test_save_and_load(tmp_path, embedding):
    save_embedding(tmp_path, embedding, "corrected", config={"neighbor_count": 5})

    loaded, manifest = load_embedding(tmp_path)

    pd.testing.assert_frame_equal(loaded.values, embedding.values, check_names=False)
    assert loaded.blocks == embedding.blocks
    assert manifest["stage"] == "corrected"
    assert manifest["blocks"] == {"sce": 3, "spe": 2}
    assert manifest["config"]["neighbor_count"] == 5


def test_load_recovers_blocks_from_columns(tmp_path, embedding):
    save_embedding(tmp_path, embedding, "stabilized")
    (tmp_path / "blocks.json").unlink()

    loaded, _ = load_embedding(tmp_path)
    assert loaded.blocks == embedding.blocks


def test_manifest_is_json(tmp_path, embedding):
    save_embedding(tmp_path, embedding, "reweighted")
    with open(tmp_path / "manifest.json") as f:
        manifest = json.load(f)
    assert manifest["n_cells"] == 8
    assert manifest["files"]["embeddings"] == "embeddings.parquet"


def test_load_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_embedding(tmp_path / "empty")


def test_with_values_keeps_layout(embedding):
    new = embedding.with_values(np.zeros((8, 5)))
    assert list(new.cells) == list(embedding.cells)
    assert new.blocks == embedding.blocks
    assert float(new.values.abs().sum().sum()) == 0.0
