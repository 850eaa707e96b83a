"""Exceptions raised by the mosaic integration pipeline.

Every error is raised at the point of detection and carries the dataset,
feature or cell names needed to track the problem back to the input data.
"""


class MosaicError(Exception):
    """Base class for all scMosaic errors."""


class InvalidConfigurationError(MosaicError, ValueError):
    """Malformed option value (non-positive k, empty reference set, unknown names)."""


class DuplicateCellError(MosaicError, ValueError):
    """The same cell identifier appears in more than one dataset."""


class DisjointFeaturesError(MosaicError):
    """A reference dataset shares no feature with any other dataset."""


class UnreachableReferenceError(MosaicError):
    """No chain of shared features links a dataset to a reference."""


class ZeroNormBlockError(MosaicError):
    """An embedding block sums to zero and cannot be rescaled."""


class InsufficientMatchesError(MosaicError):
    """Too few mutual nearest neighbour pairs for a stable batch correction."""


class EmptyNeighborhoodError(MosaicError):
    """More neighbours were requested than reference cells are available."""
