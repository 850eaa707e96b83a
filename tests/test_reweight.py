"""Tests for block reweighting."""

import numpy as np
import pandas as pd
import pytest

from scmosaic.embeddings import (
    DEFAULT_REFERENCE_TOTAL,
    EmbeddingReweighter,
    JointEmbedding,
    block_totals,
    reweight_embedding,
)
from scmosaic.errors import InvalidConfigurationError, ZeroNormBlockError


@pytest.fixture
def embedding(rng):
    columns = ["A_PC1", "A_PC2", "B_PC1"]
    values = pd.DataFrame(
        rng.normal(size=(12, 3)) * np.array([10.0, 5.0, 0.1]),
        index=[f"c{i}" for i in range(12)],
        columns=columns,
    )
    return JointEmbedding(values=values, blocks={"A": columns[:2], "B": columns[2:]})


def test_uniform_blocks_get_equal_totals(embedding):
    before = block_totals(embedding)
    result = reweight_embedding(embedding)
    after = block_totals(result)

    expected = sum(before.values()) / 2
    assert after["A"] == pytest.approx(expected)
    assert after["B"] == pytest.approx(expected)


def test_uniform_is_idempotent(embedding):
    once = reweight_embedding(embedding)
    twice = reweight_embedding(once)

    np.testing.assert_allclose(twice.values.to_numpy(), once.values.to_numpy(), rtol=1e-12)


def test_explicit_weights(embedding):
    result = reweight_embedding(embedding, weights={"A": 3.0, "B": 1.0})
    totals = block_totals(result)

    assert totals["A"] == pytest.approx(0.75 * DEFAULT_REFERENCE_TOTAL)
    assert totals["B"] == pytest.approx(0.25 * DEFAULT_REFERENCE_TOTAL)


def test_explicit_total(embedding):
    result = reweight_embedding(embedding, weights={"A": 1.0, "B": 1.0}, total=10.0)
    assert block_totals(result) == pytest.approx({"A": 5.0, "B": 5.0})


def test_one_factor_per_block(embedding):
    reweighter = EmbeddingReweighter()
    result = reweighter.transform(embedding)

    for name, cols in embedding.blocks.items():
        ratio = result.values[cols].to_numpy() / embedding.values[cols].to_numpy()
        np.testing.assert_allclose(ratio, reweighter.factors_[name])


def test_shape_and_input_preserved(embedding):
    original = embedding.values.copy()
    result = reweight_embedding(embedding)

    assert result.blocks == embedding.blocks
    assert list(result.cells) == list(embedding.cells)
    pd.testing.assert_frame_equal(embedding.values, original)


def test_unknown_block_weight(embedding):
    with pytest.raises(InvalidConfigurationError, match="unknown blocks"):
        reweight_embedding(embedding, weights={"A": 1.0, "B": 1.0, "C": 1.0})


def test_weights_must_cover_every_block(embedding):
    with pytest.raises(InvalidConfigurationError, match="No weight"):
        reweight_embedding(embedding, weights={"A": 1.0})


@pytest.mark.parametrize("weight", [0.0, -1.0, np.inf])
def test_non_positive_weight(embedding, weight):
    with pytest.raises(InvalidConfigurationError, match="positive"):
        reweight_embedding(embedding, weights={"A": 1.0, "B": weight})


def test_zero_block(embedding):
    values = embedding.values.copy()
    values["B_PC1"] = 0.0
    zeroed = embedding.with_values(values)

    with pytest.raises(ZeroNormBlockError, match="'B'"):
        reweight_embedding(zeroed)
