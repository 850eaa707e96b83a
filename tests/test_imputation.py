"""Tests for kNN imputation from a joint embedding."""

import numpy as np
import pandas as pd
import pytest

from scmosaic.embeddings import JointEmbedding
from scmosaic.errors import EmptyNeighborhoodError, InvalidConfigurationError
from scmosaic.imputation import EmbeddingImputer, impute_embedding, neighbor_weights


@pytest.fixture
def line():
    """Five reference cells on a line at 0..4 and two query cells."""
    coords = pd.DataFrame(
        {"R_PC1": [0.0, 1.0, 2.0, 3.0, 4.0, 2.0, 0.4]},
        index=["r0", "r1", "r2", "r3", "r4", "q0", "q1"],
    )
    embedding = JointEmbedding(values=coords, blocks={"R": ["R_PC1"]})
    reference = pd.DataFrame(
        [[0.0, 10.0, 20.0, 30.0, 40.0], [1.0, 1.0, 1.0, 1.0, 5.0]],
        index=["g1", "g2"],
        columns=["r0", "r1", "r2", "r3", "r4"],
    )
    query = pd.DataFrame([[7.0, 8.0]], index=["p1"], columns=["q0", "q1"])
    return embedding, {"ref": reference, "qry": query}


def test_shape_and_no_missing(line):
    embedding, matrices = line
    results = impute_embedding(matrices, embedding, matrices["ref"].columns, ["q0", "q1"], k=3)

    result = results["ref"]
    assert set(results) == {"ref"}
    assert result.values.shape == (2, 2)
    assert list(result.features) == ["g1", "g2"]
    assert list(result.cells) == ["q0", "q1"]
    assert not result.values.isna().any().any()


def test_uniform_average(line):
    embedding, matrices = line
    result = impute_embedding(matrices, embedding, matrices["ref"].columns, ["q0"], k=3)["ref"]

    # q0 sits on r2; its three nearest are r1, r2, r3
    assert result.values.loc["g1", "q0"] == pytest.approx(20.0)
    assert result.values.loc["g2", "q0"] == pytest.approx(1.0)


def test_distance_weighting_exact_match(line):
    embedding, matrices = line
    result = impute_embedding(
        matrices, embedding, matrices["ref"].columns, ["q0"], k=3, weighting="distance"
    )["ref"]

    np.testing.assert_allclose(result.values["q0"], matrices["ref"]["r2"])


def test_distance_weighting_favours_closer(line):
    embedding, matrices = line
    result = impute_embedding(
        matrices, embedding, matrices["ref"].columns, ["q1"], k=2, weighting="distance"
    )["ref"]

    # q1 at 0.4: weights 1/0.4 (r0) and 1/0.6 (r1)
    expected = (0.0 / 0.4 + 10.0 / 0.6) / (1 / 0.4 + 1 / 0.6)
    assert result.values.loc["g1", "q1"] == pytest.approx(expected)


def test_self_query_recovers_values(rng):
    cells = [f"c{i}" for i in range(15)]
    coords = pd.DataFrame(
        rng.normal(size=(15, 3)), index=cells, columns=["R_PC1", "R_PC2", "R_PC3"]
    )
    embedding = JointEmbedding(values=coords, blocks={"R": list(coords.columns)})
    matrix = pd.DataFrame(rng.normal(size=(6, 15)), columns=cells)

    imputer = EmbeddingImputer(k=1)
    result = imputer.impute_from("ref", matrix, embedding, pd.Index(cells), pd.Index(cells))

    np.testing.assert_allclose(result.values.to_numpy(), matrix.to_numpy())


def test_both_directions(line):
    embedding, matrices = line
    results = impute_embedding(matrices, embedding, ["q0", "q1"], ["r0", "r4"], k=1)

    assert set(results) == {"qry"}
    assert results["qry"].values.loc["p1", "r0"] == pytest.approx(8.0)
    assert results["qry"].values.loc["p1", "r4"] == pytest.approx(7.0)


def test_too_few_reference_cells(line):
    embedding, matrices = line
    with pytest.raises(EmptyNeighborhoodError, match="k=10"):
        impute_embedding(matrices, embedding, matrices["ref"].columns, ["q0"], k=10)


def test_overlapping_cells(line):
    embedding, matrices = line
    with pytest.raises(InvalidConfigurationError, match="disjoint"):
        impute_embedding(matrices, embedding, ["r0", "r1", "r2"], ["r2", "q0"], k=1)


def test_unknown_query_cell(line):
    embedding, matrices = line
    with pytest.raises(InvalidConfigurationError, match="missing from the embedding"):
        impute_embedding(matrices, embedding, matrices["ref"].columns, ["nowhere"], k=1)


def test_impute_from_reference_not_in_donor(line):
    embedding, matrices = line
    imputer = EmbeddingImputer(k=1)
    with pytest.raises(InvalidConfigurationError, match="missing from dataset 'ref'"):
        imputer.impute_from("ref", matrices["ref"], embedding, ["r0", "q1"], ["q0"])


def test_impute_from_unknown_query_cell(line):
    embedding, matrices = line
    imputer = EmbeddingImputer(k=1)
    with pytest.raises(InvalidConfigurationError, match="missing from the embedding"):
        imputer.impute_from("ref", matrices["ref"], embedding, ["r0", "r1"], ["nowhere"])


def test_impute_from_no_query_cells(line):
    embedding, matrices = line
    with pytest.raises(InvalidConfigurationError, match="No query cells"):
        EmbeddingImputer(k=1).impute_from("ref", matrices["ref"], embedding, ["r0"], [])


def test_no_donor(line):
    embedding, matrices = line
    with pytest.raises(EmptyNeighborhoodError):
        impute_embedding({"qry": matrices["qry"]}, embedding, ["r0"], ["q0"], k=1)


@pytest.mark.parametrize("k", [0, -1, 2.0])
def test_invalid_k(k):
    with pytest.raises(InvalidConfigurationError):
        EmbeddingImputer(k=k)


def test_invalid_weighting():
    with pytest.raises(InvalidConfigurationError, match="weighting"):
        EmbeddingImputer(weighting="gaussian")


def test_neighbor_weights_rows_sum_to_one(rng):
    distances = np.sort(rng.uniform(0.1, 2.0, size=(4, 3)), axis=1)
    indices = np.array([[0, 1, 2], [1, 2, 3], [4, 0, 1], [2, 3, 4]])

    for weighting in ("uniform", "distance"):
        weights = neighbor_weights(distances, indices, 5, weighting)
        assert weights.shape == (4, 5)
        np.testing.assert_allclose(np.asarray(weights.sum(axis=1)).ravel(), 1.0)
