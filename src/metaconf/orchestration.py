from __future__ import annotations

import os
import warnings
from multiprocessing import Pool
from typing import Any, Callable, Iterable, Sequence

import numpy as np
import pandas as pd

from .constants import FIT_STATISTIC_COLUMNS, SUPPORTED_MODEL_NAMES
from .count_tables import CountTable, build_count_table, build_count_tables
from .data_validation import prepare_confidence_data, validate_model_names
from .evaluation import information_criteria
from .optimizer_runner import _build_fit_config, fit_model_parameters
from .parameter_space import count_parameters


_ID_COLUMNS: tuple[str, ...] = ("model", "participant")
_STATUS_COLUMNS: tuple[str, ...] = ("fit_status", "fit_message")


def build_fit_pipeline_config(
    *,
    models: str | Sequence[str] = "all",
    n_inits: int = 5,
    n_restarts: int = 4,
    parallel: bool = False,
    n_workers: int | None = None,
    fit_config: dict[str, object] | None = None,
) -> dict[str, object]:
    """Build the canonical configuration for a multi-model fitting batch.

    Args:
        models: Catalog model names, or ``"all"``.
        n_inits: Number of grid-search starting points per fit.
        n_restarts: Nelder-Mead restarts per starting point.
        parallel: Dispatch participant-model jobs to a worker pool.
        n_workers: Pool size; defaults to available CPUs minus one.
        fit_config: Further optimizer settings (see `optimizer_runner`).

    Returns:
        Normalized configuration dictionary.
    """
    merged_fit = dict(fit_config or {})
    merged_fit["n_inits"] = int(n_inits)
    merged_fit["n_restarts"] = int(n_restarts)
    if n_workers is not None and int(n_workers) <= 0:
        raise ValueError("n_workers must be > 0 when given.")
    return {
        "models": validate_model_names(models),
        "parallel": bool(parallel),
        "n_workers": None if n_workers is None else int(n_workers),
        "fit_config": _build_fit_config(merged_fit),
    }


def _resolve_n_workers(n_workers: int | None, n_jobs: int) -> int:
    if n_workers is None:
        n_workers = (os.cpu_count() or 2) - 1
    return max(1, min(int(n_workers), int(n_jobs)))


def run_jobs(
    job_fn: Callable[[Any], dict[str, object]],
    jobs: list[Any],
    *,
    parallel: bool = False,
    n_workers: int | None = None,
) -> list[dict[str, object]]:
    """Run independent jobs sequentially or on a worker pool, preserving job order.

    The pool lives only for this call and is terminated on every exit path.
    """
    if not parallel or len(jobs) <= 1:
        return [job_fn(job) for job in jobs]
    with Pool(processes=_resolve_n_workers(n_workers, len(jobs))) as pool:
        return pool.map(job_fn, jobs)


def _failed_row(
    participant: object,
    model_name: str,
    count_table: CountTable,
    exc: Exception,
) -> dict[str, object]:
    return {
        "model": str(model_name),
        "participant": participant,
        "negLogLik": np.nan,
        "N": count_table.n_trials,
        "k": count_parameters(model_name, count_table.n_conditions, count_table.n_ratings),
        "BIC": np.nan,
        "AICc": np.nan,
        "AIC": np.nan,
        "fit_status": "failed",
        "fit_message": (
            f"participant={participant!r}, model={model_name}: {type(exc).__name__}: {exc}"
        ),
    }


def build_fit_result_row(fit_output: dict[str, object]) -> dict[str, object]:
    """Assemble one self-contained result row from a fit output."""
    nll = float(fit_output["best_neg_log_likelihood"])
    k = int(fit_output["n_parameters"])
    n = int(fit_output["n_trials"])
    row: dict[str, object] = {
        "model": str(fit_output["model_name"]),
        "participant": fit_output["participant"],
    }
    row.update(dict(fit_output["best_named_params"]))
    row["negLogLik"] = nll
    row["N"] = n
    row["k"] = k
    row.update(information_criteria(nll, k, n))
    row["fit_status"] = "ok"
    row["fit_message"] = None
    return row


def _run_fit_job(job: tuple[object, str, CountTable, dict[str, object]]) -> dict[str, object]:
    participant, model_name, count_table, fit_config = job
    try:
        fit_output = fit_model_parameters(count_table, model_name, fit_config=fit_config)
    except Exception as exc:  # reported as a failed row, not raised
        return _failed_row(participant, model_name, count_table, exc)
    return build_fit_result_row(fit_output)


def _warn_failed_rows(rows: Iterable[dict[str, object]]) -> None:
    for row in rows:
        if row.get("fit_status") == "failed":
            warnings.warn(f"Fit failed: {row['fit_message']}", RuntimeWarning, stacklevel=3)


def merge_result_rows(
    rows: list[dict[str, object]],
    *,
    trailing_columns: Sequence[str] = FIT_STATISTIC_COLUMNS,
) -> pd.DataFrame:
    """Merge sparse result rows into one table.

    Parameter columns follow their first appearance; columns that are null in
    every row are dropped.
    """
    fixed = set(_ID_COLUMNS) | set(trailing_columns) | set(_STATUS_COLUMNS)
    param_columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in fixed and key not in param_columns:
                param_columns.append(key)

    columns = [*_ID_COLUMNS, *param_columns, *trailing_columns, *_STATUS_COLUMNS]
    merged = pd.DataFrame(rows).reindex(columns=columns)
    return merged.dropna(axis=1, how="all").reset_index(drop=True)


def fit_conf_models(
    data: pd.DataFrame,
    models: str | Sequence[str] = "all",
    *,
    n_inits: int = 5,
    n_restarts: int = 4,
    parallel: bool = False,
    n_workers: int | None = None,
    fit_config: dict[str, object] | None = None,
) -> pd.DataFrame:
    """Fit confidence models to every participant by maximum likelihood.

    Args:
        data: One row per trial with `participant`, `stimulus`, `correct`,
            `rating`, and optionally `condition`.
        models: Catalog model names, or ``"all"`` for the whole catalog.
        n_inits: Number of grid-search starting points per fit.
        n_restarts: Nelder-Mead restarts per starting point.
        parallel: Dispatch participant-model jobs to a worker pool.
        n_workers: Pool size; defaults to available CPUs minus one.
        fit_config: Further optimizer settings.

    Returns:
        One row per participant-model pair in (participant, model) order with
        natural parameters, `negLogLik`, `N`, `k`, `BIC`, `AICc`, `AIC`, and
        `fit_status`.
    """
    config = build_fit_pipeline_config(
        models=models,
        n_inits=n_inits,
        n_restarts=n_restarts,
        parallel=parallel,
        n_workers=n_workers,
        fit_config=fit_config,
    )
    prepared = prepare_confidence_data(data)
    count_tables = build_count_tables(prepared)

    jobs = [
        (participant, model_name, count_table, config["fit_config"])
        for participant, count_table in count_tables.items()
        for model_name in config["models"]
    ]
    rows = run_jobs(
        _run_fit_job,
        jobs,
        parallel=bool(config["parallel"]),
        n_workers=config["n_workers"],
    )
    _warn_failed_rows(rows)
    return merge_result_rows(rows)


def run_all_models_for_participant(
    df: pd.DataFrame,
    participant: object,
    *,
    models: str | Sequence[str] = SUPPORTED_MODEL_NAMES,
    fit_config: dict[str, object] | None = None,
) -> dict[str, dict[str, object]]:
    """Fit the requested models for one participant and keep full fit outputs."""
    model_names = validate_model_names(models)
    prepared = prepare_confidence_data(df)
    count_table = build_count_table(prepared, participant)
    return {
        model_name: fit_model_parameters(count_table, model_name, fit_config=fit_config)
        for model_name in model_names
    }
