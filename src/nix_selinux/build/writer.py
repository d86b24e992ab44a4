"""Persist per-run build artifacts: JSON summary and step-results parquet."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import polars as pl

from nix_selinux.utils.paths import atomic_temp_path, write_json_atomically

RUN_SUMMARIES_DIR = "run_summaries"


@dataclass(frozen=True, slots=True)
class RunArtifactPaths:
    """Locations of the artifacts one build run writes."""

    summary_path: Path
    step_results_path: Path


def run_artifact_paths(artifacts_root: Path, run_id: str) -> RunArtifactPaths:
    artifacts_dir = artifacts_root / RUN_SUMMARIES_DIR
    return RunArtifactPaths(
        summary_path=artifacts_dir / f"{run_id}_build_run_summary.json",
        step_results_path=artifacts_dir / f"{run_id}_step_results.parquet",
    )


def _step_results_schema() -> dict[str, pl.DataType]:
    return {
        "run_id": pl.String,
        "step": pl.String,
        "status": pl.String,
        "phase": pl.String,
        "source_path": pl.String,
        "file_contexts_path": pl.String,
        "module_path": pl.String,
        "package_path": pl.String,
        "package_sha256": pl.String,
        "returncode": pl.Int64,
        "duration_sec": pl.Float64,
        "error_message": pl.String,
    }


def empty_step_results_df() -> pl.DataFrame:
    """Create an empty step-results frame with stable schema."""

    return pl.DataFrame(schema=_step_results_schema())


def build_step_results_df(rows: Sequence[dict[str, Any]]) -> pl.DataFrame:
    if not rows:
        return empty_step_results_df()
    return pl.DataFrame(list(rows), schema_overrides=_step_results_schema())


def write_parquet_atomically(df: pl.DataFrame, output_path: Path) -> Path:
    """Write parquet atomically to output path."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = atomic_temp_path(output_path)
    try:
        df.write_parquet(temp_path)
        os.replace(temp_path, output_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()
    return output_path


def write_run_artifacts(
    *,
    paths: RunArtifactPaths,
    summary: dict[str, Any],
    step_rows: Sequence[dict[str, Any]],
) -> RunArtifactPaths:
    """Write the run summary JSON and the step-results parquet."""

    write_json_atomically(summary, paths.summary_path)
    write_parquet_atomically(build_step_results_df(step_rows), paths.step_results_path)
    return paths
