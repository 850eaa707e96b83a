"""Rebalance reference blocks of a joint embedding.

Each block is rescaled by one scalar so that its sum of absolute values
matches a target. With the default uniform weights all blocks end up with the
same total, the mean of the input block totals; the result is unchanged by a
second pass. With explicit weights the targets are ``fraction * total`` and a
second pass is not generally a no-op, since ``total`` is fixed rather than
derived from the input.
"""

import logging
from collections.abc import Mapping
from typing import Optional

import numpy as np

from scmosaic.embeddings.base import JointEmbedding
from scmosaic.errors import InvalidConfigurationError, ZeroNormBlockError

logger = logging.getLogger(__name__)

# Total absolute mass shared out among blocks when explicit weights are given
DEFAULT_REFERENCE_TOTAL = 1e6


def block_totals(embedding: JointEmbedding) -> dict[str, float]:
    """Sum of absolute values over all cells and dimensions of each block."""
    return {
        name: float(np.abs(embedding.block(name).to_numpy(dtype=float)).sum())
        for name in embedding.block_names
    }


def _weight_fractions(
    embedding: JointEmbedding, weights: Optional[Mapping[str, float]]
) -> dict[str, float]:
    names = embedding.block_names
    if weights is None:
        return {name: 1.0 / len(names) for name in names}

    unknown = [name for name in weights if name not in embedding.blocks]
    if unknown:
        raise InvalidConfigurationError(
            f"Weights given for unknown blocks {unknown}. Available: {names}"
        )
    missing = [name for name in names if name not in weights]
    if missing:
        raise InvalidConfigurationError(f"No weight given for blocks {missing}")

    for name, weight in weights.items():
        if not np.isfinite(weight) or weight <= 0:
            raise InvalidConfigurationError(
                f"Weight for block '{name}' must be positive, got {weight}"
            )

    norm = float(sum(weights[name] for name in names))
    return {name: float(weights[name]) / norm for name in names}


class EmbeddingReweighter:
    """Rescale embedding blocks to target absolute totals.

    Args:
        weights: Optional block name -> positive weight. Must cover every block.
        total: Absolute mass to distribute among blocks. Defaults to the sum of
            the input block totals for uniform weights, and to
            DEFAULT_REFERENCE_TOTAL when weights are given.
    """

    def __init__(
        self,
        weights: Optional[Mapping[str, float]] = None,
        total: Optional[float] = None,
    ):
        if total is not None and (not np.isfinite(total) or total <= 0):
            raise InvalidConfigurationError(f"Target total must be positive, got {total}")
        self.weights = dict(weights) if weights is not None else None
        self.total = total
        self.factors_: dict[str, float] = {}

    def targets(self, embedding: JointEmbedding) -> dict[str, float]:
        """Target absolute total of each block."""
        fractions = _weight_fractions(embedding, self.weights)

        total = self.total
        if total is None:
            total = DEFAULT_REFERENCE_TOTAL if self.weights is not None else sum(
                block_totals(embedding).values()
            )
        return {name: fraction * total for name, fraction in fractions.items()}

    def transform(self, embedding: JointEmbedding) -> JointEmbedding:
        """Return a new embedding with every block rescaled to its target."""
        totals = block_totals(embedding)
        for name, block_total in totals.items():
            if block_total == 0:
                raise ZeroNormBlockError(
                    f"Block '{name}' has zero absolute total and cannot be rescaled"
                )

        targets = self.targets(embedding)

        values = embedding.values.to_numpy(dtype=float, copy=True)
        columns = list(embedding.values.columns)
        self.factors_ = {}
        for name, cols in embedding.blocks.items():
            factor = targets[name] / totals[name]
            idx = [columns.index(c) for c in cols]
            values[:, idx] *= factor
            self.factors_[name] = factor
            logger.debug(
                "Block '%s': total %.4g -> %.4g (x%.4g)", name, totals[name], targets[name], factor
            )

        return embedding.with_values(values)


def reweight_embedding(
    embedding: JointEmbedding,
    weights: Optional[Mapping[str, float]] = None,
    total: Optional[float] = None,
) -> JointEmbedding:
    """Rescale each reference block of ``embedding``.

    Parameters
    ----------
    embedding : JointEmbedding
        Block-partitioned embedding
    weights : dict, optional
        Block name -> positive weight; uniform if omitted
    total : float, optional
        Absolute mass to distribute among blocks

    Returns
    -------
    JointEmbedding
        Same cells, columns and blocks; each block scaled by one factor
    """
    return EmbeddingReweighter(weights=weights, total=total).transform(embedding)
