#!/usr/bin/env python3
"""Run mosaic integration on feature matrices stored on disk.

Each dataset is a features x cells matrix (CSV, TSV or parquet), optionally
with a cells x annotations metadata table holding spatial coordinates.

Creates standardized outputs:
    outputs/mosaic/
    ├── config.json
    ├── setting.json          # with --setting
    ├── stabilized/           # embeddings.parquet, blocks.json, manifest.json
    ├── reweighted/
    ├── corrected/
    ├── imputed/{donor}__{query}.parquet
    ├── joint_matrix.parquet  # observed + imputed, features x cells
    ├── cells.parquet         # dataset, metadata, coordinates, corrected embedding
    └── integration_metrics.csv

Usage:
    # scRNA-seq + seqFISH, both as references
    python scripts/run_mosaic.py \\
        --dataset sce=data/rna.parquet --dataset spe=data/seqfish.parquet \\
        --metadata spe=data/seqfish_meta.csv \\
        --reference sce --reference spe --rank 50 --k 5

    # Only the scRNA-seq reference, subsampled to 5000 cells each
    python scripts/run_mosaic.py --dataset sce=rna.csv --dataset spe=fish.csv \\
        --reference sce --subsample 5000 --seed 2021

    # Datasets, assays and references picked by a saved IntegrationSetting
    python scripts/run_mosaic.py --setting settings/rna_reference.json \\
        --dataset sce=rna_logcounts.parquet --dataset sce:counts=rna_counts.parquet \\
        --dataset spe=fish.parquet
"""

import argparse
import logging
from pathlib import Path

import numpy as np

from scmosaic.analysis import compute_integration_metrics
from scmosaic.config import DEFAULT_ASSAY, IntegrationConfig, IntegrationSetting
from scmosaic.data import load_dataset, subsample_dataset
from scmosaic.embeddings import save_embedding
from scmosaic.log import setup_logging
from scmosaic.pipeline import assemble_cell_table, assemble_joint_matrix, run_mosaic

logger = logging.getLogger("scmosaic.scripts.run_mosaic")


def _pairs(values: list[str], option: str) -> dict[str, str]:
    parsed = {}
    for value in values or []:
        if "=" not in value:
            raise SystemExit(f"{option} expects NAME=VALUE, got '{value}'")
        name, rest = value.split("=", 1)
        parsed[name] = rest
    return parsed


def _assay_paths(values: list[str]) -> dict[str, dict[str, str]]:
    """Group --dataset entries as dataset -> {assay -> path}; NAME alone means the default assay."""
    assays: dict[str, dict[str, str]] = {}
    for key, path in _pairs(values, "--dataset").items():
        name, _, assay = key.partition(":")
        assays.setdefault(name, {})[assay or DEFAULT_ASSAY] = path
    return assays


def parse_args():
    parser = argparse.ArgumentParser(
        description="Mosaic integration of datasets with partially overlapping features",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--dataset",
        action="append",
        required=True,
        help="NAME=PATH or NAME:ASSAY=PATH of a features x cells matrix (repeat per dataset)",
    )
    parser.add_argument(
        "--metadata",
        action="append",
        help="NAME=PATH of a cells x annotations table for a dataset",
    )
    parser.add_argument(
        "--reference",
        action="append",
        help="Reference dataset name (repeat for several)",
    )
    parser.add_argument("--config", type=Path, help="JSON IntegrationConfig; flags override it")
    parser.add_argument(
        "--setting",
        type=Path,
        help="JSON IntegrationSetting choosing datasets, assays and references",
    )
    parser.add_argument("--rank", type=int, help="Embedding rank per reference")
    parser.add_argument("--k", type=int, help="Neighbours for batch correction and imputation")
    parser.add_argument(
        "--weight",
        action="append",
        help="NAME=WEIGHT reweighting target for a reference block",
    )
    parser.add_argument(
        "--anchor-order",
        nargs="+",
        help="Batch correction merge order; the first dataset stays fixed",
    )
    parser.add_argument(
        "--weighting",
        choices=["uniform", "distance"],
        help="Neighbour averaging for imputation",
    )
    parser.add_argument("--no-batch-correction", action="store_true")
    parser.add_argument(
        "--label-col", help="Metadata column with cell types, scored by label transfer"
    )
    parser.add_argument("--subsample", type=int, help="Cells to keep per dataset")
    parser.add_argument("--seed", type=int, default=42, help="Random seed for subsampling")
    parser.add_argument("--n-jobs", type=int, help="Parallel jobs")
    parser.add_argument(
        "--output-dir", type=Path, default=Path("outputs/mosaic"), help="Output directory"
    )
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args()


def build_config(args) -> IntegrationConfig:
    config = IntegrationConfig.load(args.config) if args.config else IntegrationConfig()

    if args.reference:
        config.reference_datasets = list(args.reference)
    if args.rank is not None:
        config.embedding_rank_per_reference = args.rank
    if args.k is not None:
        config.neighbor_count = args.k
    if args.weight:
        config.reweight_targets = {n: float(w) for n, w in _pairs(args.weight, "--weight").items()}
    if args.anchor_order:
        config.batch_correction_anchor_order = list(args.anchor_order)
    if args.weighting:
        config.imputation_weighting = args.weighting
    if args.no_batch_correction:
        config.batch_correction = False
    if args.n_jobs is not None:
        config.n_jobs = args.n_jobs
    return config


def main():
    args = parse_args()
    output_dir = args.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)
    setup_logging(args.log_level, out_dir=str(output_dir))

    config = build_config(args)
    assay_paths = _assay_paths(args.dataset)
    if args.setting:
        setting = IntegrationSetting.load(args.setting)
        if args.reference and list(args.reference) != list(setting.reference_datasets):
            raise SystemExit(
                f"--reference {args.reference} conflicts with setting '{setting.name}' "
                f"references {list(setting.reference_datasets)}"
            )
        config.reference_datasets = list(setting.reference_datasets)
        matrix_paths = setting.select_matrices(assay_paths)
        setting.save(output_dir / "setting.json")
    else:
        several = [name for name, paths in assay_paths.items() if len(paths) > 1]
        if several:
            raise SystemExit(f"Datasets {several} list several assays; pick one with --setting")
        matrix_paths = {name: next(iter(paths.values())) for name, paths in assay_paths.items()}
    metadata_paths = _pairs(args.metadata, "--metadata")

    rng = np.random.default_rng(args.seed)
    datasets = []
    for name, path in matrix_paths.items():
        dataset = load_dataset(name, path, metadata_path=metadata_paths.get(name))
        if args.subsample is not None:
            dataset = subsample_dataset(dataset, args.subsample, rng)
        logger.info("Dataset %r", dataset)
        datasets.append(dataset)

    result = run_mosaic(datasets, config)

    config.save(output_dir / "config.json")
    for stage, embedding in (
        ("stabilized", result.embedding),
        ("reweighted", result.reweighted),
        ("corrected", result.corrected),
    ):
        save_embedding(output_dir / stage, embedding, stage, config.to_dict())

    imputed_dir = output_dir / "imputed"
    imputed_dir.mkdir(exist_ok=True)
    for (donor, query), imputation in result.imputations.items():
        imputation.values.to_parquet(imputed_dir / f"{donor}__{query}.parquet")

    matrices = {d.name: d.expression for d in datasets}
    joint = assemble_joint_matrix(matrices, result.imputations.values())
    joint.to_parquet(output_dir / "joint_matrix.parquet")
    logger.info("joint_matrix.parquet: %d features x %d cells", *joint.shape)

    cells = assemble_cell_table(datasets, result.corrected)
    cells.to_parquet(output_dir / "cells.parquet")

    batch_labels = result.batch_labels().to_numpy()
    cell_types = None
    if args.label_col:
        if args.label_col not in cells.columns:
            raise SystemExit(f"--label-col '{args.label_col}' not found in cell metadata")
        cell_types = cells[args.label_col].reindex(result.corrected.cells).astype(str).to_numpy()

    metrics = compute_integration_metrics(
        {
            "stabilized": result.embedding.values.to_numpy(),
            "reweighted": result.reweighted.values.to_numpy(),
            "corrected": result.corrected.values.to_numpy(),
        },
        batch_labels,
        labels=cell_types,
        rng=rng,
    )
    metrics.to_csv(output_dir / "integration_metrics.csv", index=False)

    logger.info("Output saved to: %s", output_dir)


if __name__ == "__main__":
    main()
