"""Configuration for mosaic integration runs."""

import json
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Literal, Optional

from scmosaic.errors import InvalidConfigurationError

# Assay picked for a dataset when a setting names none
DEFAULT_ASSAY = "logcounts"


@dataclass
class IntegrationConfig:
    """Options for one run of the mosaic pipeline."""

    # Datasets whose feature spaces define the embedding blocks
    reference_datasets: list[str] = field(default_factory=list)

    # Embedding
    embedding_rank_per_reference: int = 50
    center: bool = True
    scale: bool = False

    # Block reweighting (None = equal blocks)
    reweight_targets: Optional[dict[str, float]] = None
    reweight_total: Optional[float] = None

    # Shared by batch correction and imputation
    neighbor_count: int = 5

    # Batch correction
    batch_correction: bool = True
    # References only; None = reference order
    batch_correction_anchor_order: Optional[list[str]] = None
    mnn_sigma: float = 0.1
    min_matches: int = 3

    # Imputation
    imputation_weighting: Literal["uniform", "distance"] = "uniform"

    # Execution
    n_jobs: Optional[int] = None
    show_progress: bool = False

    def validate(self, dataset_names: Iterable[str]) -> None:
        """Check every option against the datasets of a run.

        Raises:
            InvalidConfigurationError: On the first malformed option found.
        """
        names = list(dataset_names)

        if not self.reference_datasets:
            raise InvalidConfigurationError("reference_datasets must name at least one dataset")
        unknown = [r for r in self.reference_datasets if r not in names]
        if unknown:
            raise InvalidConfigurationError(
                f"Unknown reference datasets {unknown}. Available: {names}"
            )
        if len(set(self.reference_datasets)) != len(self.reference_datasets):
            raise InvalidConfigurationError(
                f"reference_datasets lists a dataset twice: {self.reference_datasets}"
            )

        if not _positive_int(self.embedding_rank_per_reference):
            raise InvalidConfigurationError(
                "embedding_rank_per_reference must be a positive integer, "
                f"got {self.embedding_rank_per_reference!r}"
            )
        if not _positive_int(self.neighbor_count):
            raise InvalidConfigurationError(
                f"neighbor_count must be a positive integer, got {self.neighbor_count!r}"
            )
        if not _positive_int(self.min_matches):
            raise InvalidConfigurationError(
                f"min_matches must be a positive integer, got {self.min_matches!r}"
            )
        if not self.mnn_sigma > 0:
            raise InvalidConfigurationError(f"mnn_sigma must be positive, got {self.mnn_sigma}")

        if self.reweight_targets is not None:
            unknown = [n for n in self.reweight_targets if n not in self.reference_datasets]
            if unknown:
                raise InvalidConfigurationError(
                    f"reweight_targets names datasets that are not references: {unknown}"
                )
            bad = {n: w for n, w in self.reweight_targets.items() if not w > 0}
            if bad:
                raise InvalidConfigurationError(f"reweight_targets must be positive: {bad}")
        if self.reweight_total is not None and not self.reweight_total > 0:
            raise InvalidConfigurationError(
                f"reweight_total must be positive, got {self.reweight_total}"
            )

        if self.batch_correction_anchor_order is not None:
            outside = [
                n for n in self.batch_correction_anchor_order if n not in self.reference_datasets
            ]
            if outside:
                raise InvalidConfigurationError(
                    "batch_correction_anchor_order names datasets that are not references: "
                    f"{outside}"
                )
            if len(set(self.batch_correction_anchor_order)) != len(
                self.batch_correction_anchor_order
            ):
                raise InvalidConfigurationError(
                    "batch_correction_anchor_order lists a dataset twice: "
                    f"{self.batch_correction_anchor_order}"
                )

        if self.imputation_weighting not in ("uniform", "distance"):
            raise InvalidConfigurationError(
                f"imputation_weighting must be 'uniform' or 'distance', "
                f"got {self.imputation_weighting!r}"
            )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping) -> "IntegrationConfig":
        known = set(cls.__dataclass_fields__)
        extra = [k for k in data if k not in known]
        if extra:
            raise InvalidConfigurationError(f"Unrecognized configuration options: {extra}")
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save configuration to JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str | Path) -> "IntegrationConfig":
        """Load configuration from JSON file."""
        with open(path) as f:
            return cls.from_dict(json.load(f))


def _positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass(frozen=True)
class IntegrationSetting:
    """One named choice of datasets, feature matrices and references.

    A setting is picked once per analysis instead of toggling between
    alternatives in code.

    Attributes:
        name: Label for the setting, e.g. "rna_and_spatial_reference"
        datasets: Dataset names taking part
        reference_datasets: Subset of ``datasets`` anchoring the embedding
        feature_matrices: Optional dataset name -> assay key, for callers that
            keep several matrices (raw, log-normalized, ...) per dataset
    """

    name: str
    datasets: tuple[str, ...]
    reference_datasets: tuple[str, ...]
    feature_matrices: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.datasets:
            raise InvalidConfigurationError(f"Setting '{self.name}' has no datasets")
        if not self.reference_datasets:
            raise InvalidConfigurationError(f"Setting '{self.name}' has no reference datasets")
        outside = [r for r in self.reference_datasets if r not in self.datasets]
        if outside:
            raise InvalidConfigurationError(
                f"Setting '{self.name}' references datasets it does not include: {outside}"
            )
        outside = [d for d in self.feature_matrices if d not in self.datasets]
        if outside:
            raise InvalidConfigurationError(
                f"Setting '{self.name}' picks matrices for datasets it does not include: {outside}"
            )

    def select(self, datasets: Mapping):
        """Keep only this setting's entries of ``datasets`` (name -> anything), in setting order."""
        missing = [d for d in self.datasets if d not in datasets]
        if missing:
            raise InvalidConfigurationError(
                f"Setting '{self.name}' needs datasets that were not supplied: {missing}"
            )
        return {name: datasets[name] for name in self.datasets}

    def matrix_key(self, dataset: str, default: str = DEFAULT_ASSAY) -> str:
        """Assay key to use for ``dataset``."""
        return self.feature_matrices.get(dataset, default)

    def select_matrices(self, assays: Mapping[str, Mapping]) -> dict:
        """Pick one feature matrix per dataset of this setting.

        Args:
            assays: Dataset name -> {assay key -> matrix}. The values are not
                inspected, so file paths work as well as loaded matrices.

        Returns:
            Dataset name -> the matrix stored under ``matrix_key(name)``
        """
        chosen = {}
        for name, available in self.select(assays).items():
            key = self.matrix_key(name)
            if key not in available:
                raise InvalidConfigurationError(
                    f"Setting '{self.name}' uses assay '{key}' of dataset '{name}', "
                    f"which only has {sorted(available)}"
                )
            chosen[name] = available[key]
        return chosen

    def to_config(self, **options) -> IntegrationConfig:
        """IntegrationConfig for this setting; ``options`` set the remaining fields."""
        return IntegrationConfig(reference_datasets=list(self.reference_datasets), **options)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "datasets": list(self.datasets),
            "reference_datasets": list(self.reference_datasets),
            "feature_matrices": dict(self.feature_matrices),
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "IntegrationSetting":
        known = set(cls.__dataclass_fields__)
        extra = [k for k in data if k not in known]
        if extra:
            raise InvalidConfigurationError(f"Unrecognized setting options: {extra}")
        missing = [k for k in ("name", "datasets", "reference_datasets") if k not in data]
        if missing:
            raise InvalidConfigurationError(f"Setting is missing {missing}")
        return cls(
            name=data["name"],
            datasets=tuple(data["datasets"]),
            reference_datasets=tuple(data["reference_datasets"]),
            feature_matrices=dict(data.get("feature_matrices", {})),
        )

    def save(self, path: str | Path) -> None:
        """Save setting to JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str | Path) -> "IntegrationSetting":
        """Load setting from JSON file."""
        with open(path) as f:
            return cls.from_dict(json.load(f))
