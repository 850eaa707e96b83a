"""Tests for the stabilized joint embedding."""

import numpy as np
import pandas as pd
import pytest
from sklearn.decomposition import PCA

from scmosaic.embeddings import StabilizedEmbedder, principal_basis, stabilized_embedding
from scmosaic.errors import (
    DuplicateCellError,
    InvalidConfigurationError,
    UnreachableReferenceError,
)


class TestShape:
    def test_six_cells_four_columns(self, small_pair):
        embedding = stabilized_embedding(small_pair, ["A", "B"], n_components=2)

        assert embedding.values.shape == (6, 4)
        assert list(embedding.cells) == ["a1", "a2", "a3", "b1", "b2", "b3"]
        assert embedding.blocks == {
            "A": ["A_PC1", "A_PC2"],
            "B": ["B_PC1", "B_PC2"],
        }
        assert np.isfinite(embedding.values.to_numpy()).all()

    def test_rank_per_reference(self, mosaic):
        embedding = stabilized_embedding(mosaic, ["sce", "spe"], n_components={"sce": 6, "spe": 3})

        n_cells = sum(m.shape[1] for m in mosaic.values())
        assert embedding.values.shape == (n_cells, 9)
        assert len(embedding.block("spe").columns) == 3

    def test_block_order_follows_reference_order(self, mosaic):
        embedding = stabilized_embedding(mosaic, ["spe", "sce"], n_components=2)
        assert embedding.block_names == ["spe", "sce"]
        assert list(embedding.values.columns[:2]) == ["spe_PC1", "spe_PC2"]

    def test_shared_cell_id_fails(self, small_pair):
        small_pair["B"] = small_pair["B"].rename(columns={"b1": "a1"})
        with pytest.raises(DuplicateCellError, match="a1"):
            stabilized_embedding(small_pair, ["A", "B"], n_components=2)


class TestBasis:
    def test_reference_scores_match_pca(self, rng):
        X = rng.normal(size=(40, 8))
        scores, components, singular_values, _ = principal_basis(X, 3)

        expected = PCA(n_components=3, svd_solver="full").fit_transform(X)
        np.testing.assert_allclose(np.abs(scores), np.abs(expected), atol=1e-8)
        assert np.all(np.diff(singular_values) <= 0)

    def test_sign_convention(self, rng):
        X = rng.normal(size=(30, 6))
        _, components, _, _ = principal_basis(X, 4)

        for row in components:
            assert row[np.argmax(np.abs(row))] > 0

    def test_deterministic(self, rng):
        X = rng.normal(size=(25, 5))
        first = principal_basis(X, 3)[0]
        second = principal_basis(X.copy(), 3)[0]
        np.testing.assert_array_equal(first, second)

    def test_reference_block_is_its_own_pca(self, mosaic):
        embedder = StabilizedEmbedder(n_components=4)
        embedding = embedder.fit_transform(mosaic, ["sce"])

        expected, _, _, _ = principal_basis(mosaic["sce"].to_numpy().T, 4)
        np.testing.assert_allclose(embedding.rows(mosaic["sce"].columns), expected)


class TestProjection:
    def test_identical_cells_get_identical_coordinates(self, rng):
        values = rng.normal(size=(5, 20))
        a = pd.DataFrame(values, index=list("vwxyz"), columns=[f"a{i}" for i in range(20)])
        b = pd.DataFrame(values, index=list("vwxyz"), columns=[f"b{i}" for i in range(20)])

        embedding = stabilized_embedding({"A": a, "B": b}, ["A"], n_components=3)

        np.testing.assert_allclose(
            embedding.rows(b.columns), embedding.rows(a.columns), atol=1e-8
        )

    def test_chain_projection_goes_through_intermediate(self, rng):
        a = pd.DataFrame(rng.normal(size=(4, 10)), index=["f1", "f2", "f3", "f4"])
        a.columns = [f"a{i}" for i in range(10)]
        b = pd.DataFrame(rng.normal(size=(3, 8)), index=["f3", "f4", "f5"])
        b.columns = [f"b{i}" for i in range(8)]
        c = pd.DataFrame(rng.normal(size=(2, 6)), index=["f5", "f6"])
        c.columns = [f"c{i}" for i in range(6)]

        embedder = StabilizedEmbedder(n_components=2)
        embedding = embedder.fit_transform({"A": a, "B": b, "C": c}, ["A"])

        model = embedder.models_["A"]
        assert model.projections["B"].source == "A"
        assert model.projections["C"].source == "B"
        assert model.projections["C"].features == ["f5"]
        assert embedding.values.shape == (24, 2)
        assert np.isfinite(embedding.values.to_numpy()).all()

    def test_unreachable_dataset_fails(self, small_pair, rng):
        small_pair["C"] = pd.DataFrame(rng.normal(size=(2, 3)), index=["z1", "z2"])
        small_pair["C"].columns = ["c1", "c2", "c3"]

        with pytest.raises(UnreachableReferenceError, match="'C'"):
            stabilized_embedding(small_pair, ["A"], n_components=2)

    def test_parallel_matches_serial(self, mosaic):
        serial = stabilized_embedding(mosaic, ["sce", "spe"], n_components=3)
        parallel = stabilized_embedding(mosaic, ["sce", "spe"], n_components=3, n_jobs=2)

        pd.testing.assert_frame_equal(serial.values, parallel.values)


class TestValidation:
    def test_rank_exceeding_reference_size(self, small_pair):
        with pytest.raises(InvalidConfigurationError, match="exceeds"):
            stabilized_embedding(small_pair, ["A"], n_components=4)

    @pytest.mark.parametrize("rank", [0, -1, 2.5])
    def test_non_positive_rank(self, small_pair, rank):
        with pytest.raises(InvalidConfigurationError, match="positive integer"):
            stabilized_embedding(small_pair, ["A"], n_components=rank)

    def test_empty_reference(self, small_pair):
        with pytest.raises(InvalidConfigurationError, match="At least one"):
            stabilized_embedding(small_pair, [], n_components=2)

    def test_missing_rank_for_reference(self, small_pair):
        with pytest.raises(InvalidConfigurationError, match="No rank"):
            stabilized_embedding(small_pair, ["A", "B"], n_components={"A": 2})
