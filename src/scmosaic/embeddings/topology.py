"""Feature overlap topology between datasets.

Datasets are nodes; two datasets are linked when they measure at least one
common feature. The embedder walks this graph to reach every dataset from
each reference.
"""

import itertools
import logging
from collections.abc import Iterable, Mapping
from typing import Optional

import networkx as nx
import pandas as pd

from scmosaic.errors import (
    DisjointFeaturesError,
    InvalidConfigurationError,
    UnreachableReferenceError,
)

logger = logging.getLogger(__name__)


class FeatureOverlapGraph:
    """Shared features for every pair of datasets.

    Build with :py:meth:`from_matrices`. The pairwise intersections are kept
    in ``overlaps`` (keyed by ``frozenset({a, b})``) and mirrored in a
    :py:class:`networkx.Graph` whose edges carry the shared features, so path
    queries use networkx.

    Args:
        names: Dataset names in input order.
        overlaps: Mapping from unordered dataset pair to shared feature ids.
    """

    def __init__(self, names: list[str], overlaps: dict[frozenset, list]):
        self.names = list(names)
        self.overlaps = overlaps

        self.graph = nx.Graph()
        self.graph.add_nodes_from(self.names)
        for a, b in itertools.combinations(self.names, 2):
            shared = overlaps.get(frozenset((a, b)), [])
            if shared:
                self.graph.add_edge(a, b, features=shared, weight=len(shared))

    @classmethod
    def from_matrices(
        cls,
        matrices: Mapping[str, pd.DataFrame],
        reference: Optional[Iterable[str]] = None,
    ) -> "FeatureOverlapGraph":
        """Intersect the feature ids of every pair of features x cells matrices.

        Args:
            matrices: Dataset name -> features x cells matrix.
            reference: Dataset names that will anchor the embedding. Each must
                share at least one feature with another dataset.

        Returns:
            The overlap graph.

        Raises:
            DisjointFeaturesError: A reference dataset overlaps with nothing.
            InvalidConfigurationError: A reference name is not in ``matrices``.
        """
        names = list(matrices)
        overlaps = {}
        for a, b in itertools.combinations(names, 2):
            other = set(matrices[b].index)
            overlaps[frozenset((a, b))] = [f for f in matrices[a].index if f in other]

        topology = cls(names, overlaps)

        for ref in reference or []:
            if ref not in matrices:
                raise InvalidConfigurationError(
                    f"Reference dataset '{ref}' not found. Available: {names}"
                )
            if len(names) > 1 and topology.graph.degree(ref) == 0:
                raise DisjointFeaturesError(
                    f"Reference dataset '{ref}' shares no features with any of "
                    f"{[n for n in names if n != ref]}"
                )

        logger.debug(
            "Feature overlap graph: %d datasets, %d linked pairs",
            len(names),
            topology.graph.number_of_edges(),
        )
        return topology

    def _check(self, name: str) -> None:
        if name not in self.graph:
            raise InvalidConfigurationError(f"Unknown dataset '{name}'. Available: {self.names}")

    def shared(self, a: str, b: str) -> list:
        """Features measured in both ``a`` and ``b``."""
        self._check(a)
        self._check(b)
        if a == b:
            raise InvalidConfigurationError(f"Shared features need two datasets, got '{a}' twice")
        return list(self.overlaps.get(frozenset((a, b)), []))

    def neighbors(self, name: str) -> list[str]:
        """Datasets sharing at least one feature with ``name``, in input order."""
        self._check(name)
        linked = set(self.graph.neighbors(name))
        return [n for n in self.names if n in linked]

    def is_connected(self, a: str, b: str) -> bool:
        self._check(a)
        self._check(b)
        return nx.has_path(self.graph, a, b)

    def path(self, source: str, target: str) -> list[str]:
        """Shortest chain of overlapping datasets from ``source`` to ``target``.

        Raises:
            UnreachableReferenceError: No chain exists.
        """
        self._check(source)
        self._check(target)
        try:
            return nx.shortest_path(self.graph, source, target)
        except nx.NetworkXNoPath:
            raise UnreachableReferenceError(
                f"Dataset '{target}' shares no chain of features with reference '{source}'"
            ) from None

    def to_frame(self) -> pd.DataFrame:
        """Square table of shared-feature counts (diagonal left at zero)."""
        counts = pd.DataFrame(0, index=self.names, columns=self.names, dtype=int)
        for a, b in itertools.combinations(self.names, 2):
            n = len(self.overlaps.get(frozenset((a, b)), []))
            counts.loc[a, b] = n
            counts.loc[b, a] = n
        return counts

    def __repr__(self) -> str:
        return (
            f"FeatureOverlapGraph(datasets={self.names}, "
            f"linked_pairs={self.graph.number_of_edges()})"
        )
