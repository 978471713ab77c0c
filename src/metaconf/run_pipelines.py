from __future__ import annotations

from pathlib import Path

import pandas as pd

from .constants import REQUIRED_INPUT_COLUMNS
from .data_validation import _validate_required_columns, prepare_confidence_data
from .meta_dprime import _validate_meta_models, fit_meta_dprime
from .optimizer_runner import _build_fit_config
from .orchestration import build_fit_pipeline_config, fit_conf_models
from .results_store import (
    build_basic_manifest,
    list_runs,
    load_run,
    prepare_run_dir,
    save_json,
    save_run_tables,
)
from .winner_rules import apply_winner_rules, validate_criterion


FIT_PIPELINE_NAME = "fit"
META_DPRIME_PIPELINE_NAME = "metad"


def _n_failed(table: pd.DataFrame) -> int:
    if "fit_status" not in table.columns:
        return 0
    return int((table["fit_status"] == "failed").sum())


def run_fit_pipeline(
    df: pd.DataFrame,
    *,
    run_id: str,
    output_root: str | Path = "data/metaconf",
    config: dict[str, object],
    criterion: str = "BIC",
    overwrite: bool = False,
) -> dict[str, object]:
    """Fit the configured models to every participant and persist all tables.

    Args:
        df: Trial-level confidence data.
        run_id: Stable run identifier.
        output_root: Root output folder, defaulting to `data/metaconf`.
        config: Output of `build_fit_pipeline_config`.
        criterion: Information criterion used for winner selection.
        overwrite: Whether to overwrite an existing run directory.

    Returns:
        Dictionary with run paths, manifest, and in-memory tables.
    """
    _validate_required_columns(df, REQUIRED_INPUT_COLUMNS, context="fit pipeline input")
    # input errors must surface before a run directory exists
    prepare_confidence_data(df)
    validate_criterion(criterion)
    fit_config = dict(config["fit_config"])
    normalized_config = build_fit_pipeline_config(
        models=config["models"],
        n_inits=int(fit_config["n_inits"]),
        n_restarts=int(fit_config["n_restarts"]),
        parallel=bool(config["parallel"]),
        n_workers=config["n_workers"],
        fit_config=fit_config,
    )
    normalized_config["models"] = list(normalized_config["models"])
    normalized_config["criterion"] = str(criterion)

    paths = prepare_run_dir(
        output_root,
        pipeline_name=FIT_PIPELINE_NAME,
        run_id=run_id,
        overwrite=overwrite,
    )
    config_path = save_json(normalized_config, paths["run_dir"] / "config.json")

    fit_results = fit_conf_models(
        df,
        normalized_config["models"],
        n_inits=int(normalized_config["fit_config"]["n_inits"]),
        n_restarts=int(normalized_config["fit_config"]["n_restarts"]),
        parallel=bool(normalized_config["parallel"]),
        n_workers=normalized_config["n_workers"],
        fit_config=normalized_config["fit_config"],
    )
    winners = apply_winner_rules(fit_results, criterion=criterion)
    tables = {
        "fit_results": fit_results,
        "participant_winner_table": winners["participant_winner_table"],
        "group_winner_counts": winners["group_winner_counts"],
    }
    table_paths = save_run_tables(tables, paths["tables_dir"])

    group_counts = winners["group_winner_counts"]
    manifest = build_basic_manifest(
        run_id=run_id,
        pipeline_name=FIT_PIPELINE_NAME,
        run_dir=paths["run_dir"],
        config_path=config_path,
        status="completed",
        extra={
            "n_participants": int(fit_results["participant"].nunique()),
            "n_rows": int(len(fit_results)),
            "n_failed_rows": _n_failed(fit_results),
            "criterion": str(criterion),
            "group_winner_model": (
                None if group_counts.empty else str(group_counts.iloc[0]["model"])
            ),
            "tables": table_paths,
        },
    )
    save_json(manifest, paths["run_dir"] / "manifest.json")

    return {
        "run_id": str(run_id),
        "run_dir": paths["run_dir"],
        "manifest": manifest,
        "config": normalized_config,
        "tables": tables,
    }


def run_meta_dprime_pipeline(
    df: pd.DataFrame,
    *,
    run_id: str,
    output_root: str | Path = "data/metaconf",
    models: tuple[str, ...] = ("ML",),
    n_inits: int = 5,
    n_restarts: int = 3,
    parallel: bool = False,
    n_workers: int | None = None,
    overwrite: bool = False,
) -> dict[str, object]:
    """Estimate meta-d' for every participant and persist the result table."""
    _validate_required_columns(df, REQUIRED_INPUT_COLUMNS, context="meta-d' pipeline input")
    prepare_confidence_data(df)
    models = _validate_meta_models(models)
    _build_fit_config({"n_inits": int(n_inits), "n_restarts": int(n_restarts)})
    if n_workers is not None and int(n_workers) <= 0:
        raise ValueError("n_workers must be > 0 when given.")
    config = {
        "models": list(models),
        "n_inits": int(n_inits),
        "n_restarts": int(n_restarts),
        "parallel": bool(parallel),
        "n_workers": None if n_workers is None else int(n_workers),
    }
    paths = prepare_run_dir(
        output_root,
        pipeline_name=META_DPRIME_PIPELINE_NAME,
        run_id=run_id,
        overwrite=overwrite,
    )
    config_path = save_json(config, paths["run_dir"] / "config.json")

    meta_results = fit_meta_dprime(
        df,
        tuple(models),
        n_inits=int(n_inits),
        n_restarts=int(n_restarts),
        parallel=bool(parallel),
        n_workers=n_workers,
    )
    tables = {"meta_dprime": meta_results}
    table_paths = save_run_tables(tables, paths["tables_dir"])

    manifest = build_basic_manifest(
        run_id=run_id,
        pipeline_name=META_DPRIME_PIPELINE_NAME,
        run_dir=paths["run_dir"],
        config_path=config_path,
        status="completed",
        extra={
            "n_participants": int(meta_results["participant"].nunique()),
            "n_rows": int(len(meta_results)),
            "n_failed_rows": _n_failed(meta_results),
            "tables": table_paths,
        },
    )
    save_json(manifest, paths["run_dir"] / "manifest.json")

    return {
        "run_id": str(run_id),
        "run_dir": paths["run_dir"],
        "manifest": manifest,
        "config": config,
        "tables": tables,
    }


def load_fit_run(run_id: str, *, output_root: str | Path = "data/metaconf") -> dict[str, object]:
    return load_run(run_id, pipeline_name=FIT_PIPELINE_NAME, output_root=output_root)


def list_fit_runs(*, output_root: str | Path = "data/metaconf") -> pd.DataFrame:
    return list_runs(pipeline_name=FIT_PIPELINE_NAME, output_root=output_root)


def load_meta_dprime_run(
    run_id: str,
    *,
    output_root: str | Path = "data/metaconf",
) -> dict[str, object]:
    return load_run(run_id, pipeline_name=META_DPRIME_PIPELINE_NAME, output_root=output_root)
