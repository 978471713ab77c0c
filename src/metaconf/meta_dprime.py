"""Meta-d' and meta-d'/d' estimation.

Stage 1 computes type-1 d' and c in closed form from (padded) hit and
false-alarm rates. Stage 2 keeps them fixed and fits the metacognitive
efficiency ``m`` together with the confidence criteria under an independent
truncated Gaussian model, using the same grid search and restarted
Nelder-Mead driver as the full model catalog.

Two variants are supported:

- ``"ML"`` (Maniscalco & Lau): the confidence sample is truncated at
  ``m * c``, so the hypothetical criterion keeps its position relative to d'.
- ``"F"`` (Fleming's HMeta-d): the confidence sample is truncated at ``c``.
"""

from __future__ import annotations

import itertools
import warnings
from typing import Sequence

import numpy as np
import pandas as pd

from .confidence_models import count_neg_log_likelihood, independent_gaussian_probabilities
from .constants import META_DPRIME_OUTPUT_COLUMNS, SUPPORTED_META_DPRIME_MODELS
from .count_tables import CountTable, build_count_tables, padded_counts
from .data_validation import prepare_confidence_data
from .grid_search import (
    empirical_criterion_distances,
    empirical_type1_estimates,
    rank_grid_candidates,
)
from .optimizer_runner import _build_fit_config, run_multistart_nelder_mead
from .orchestration import merge_result_rows, run_jobs
from .parameter_space import _exp_stable, criteria_to_eta, eta_to_criteria


_META_M_GRID: tuple[float, ...] = (0.25, 0.5, 0.75, 1.0, 1.25, 1.5, 2.0)
_META_CRITERIA_SPREADS: tuple[float, ...] = (0.5, 1.0, 1.5, 2.0)


def _validate_meta_models(model: str | Sequence[str]) -> tuple[str, ...]:
    models = (model,) if isinstance(model, str) else tuple(model)
    if len(models) == 0:
        raise ValueError("model must not be empty.")
    invalid = [name for name in models if name not in SUPPORTED_META_DPRIME_MODELS]
    if invalid:
        raise ValueError(
            f"model must be either 'ML' or 'F'; got {invalid}."
        )
    return tuple(str(name) for name in models)


def type1_parameters(count_table: CountTable, adjustment: float | None = None) -> dict[str, float]:
    """Closed-form d' and c with every cell padded by `adjustment`.

    The default padding 1 / (2 L) follows Maniscalco and Lau (2012) and keeps
    both rates strictly inside (0, 1).
    """
    if adjustment is None:
        adjustment = 1.0 / (2.0 * count_table.n_ratings)
    pooled = padded_counts(count_table, adjustment).sum(axis=0, keepdims=True)
    estimates = empirical_type1_estimates(pooled)
    return {
        "dprime": float(estimates["dprime"][0]),
        "c": float(estimates["c"][0]),
        "hit_rate": float(estimates["hit_rate"][0]),
        "false_alarm_rate": float(estimates["false_alarm_rate"][0]),
    }


def truncation_point(variant: str, m: float, c: float) -> float:
    return float(m) * float(c) if variant == "ML" else float(c)


def meta_eta_to_params(eta: np.ndarray, *, variant: str, c: float) -> dict[str, object]:
    """Unpack `[log m, criteria increments...]` into m and criteria."""
    eta = np.asarray(eta, dtype=float)
    m = float(_exp_stable(eta[:1])[0])
    theta_minus, theta_plus = eta_to_criteria(eta[1:], anchor=truncation_point(variant, m, c))
    return {"m": m, "theta_minus": theta_minus, "theta_plus": theta_plus}


def meta_params_to_eta(
    m: float,
    theta_minus: np.ndarray,
    theta_plus: np.ndarray,
    *,
    variant: str,
    c: float,
) -> np.ndarray:
    if float(m) <= 0.0:
        raise ValueError(f"m must be > 0, got {m}.")
    return np.concatenate(
        (
            [np.log(float(m))],
            criteria_to_eta(theta_minus, theta_plus, anchor=truncation_point(variant, m, c)),
        )
    )


def meta_neg_log_likelihood(
    eta: np.ndarray,
    counts: np.ndarray,
    *,
    dprime: float,
    c: float,
    variant: str,
    eps: float,
) -> float:
    params = meta_eta_to_params(eta, variant=variant, c=c)
    with np.errstate(all="ignore"):
        probabilities = independent_gaussian_probabilities(
            np.asarray([dprime], dtype=float),
            c,
            params["m"],
            params["theta_minus"],
            params["theta_plus"],
            truncation=truncation_point(variant, params["m"], c),
        )
        return count_neg_log_likelihood(probabilities, counts, eps=eps)


def _build_meta_grid(counts: np.ndarray, *, variant: str, c: float) -> np.ndarray:
    distances_minus, distances_plus = empirical_criterion_distances(counts)
    candidates = []
    for m, spread in itertools.product(_META_M_GRID, _META_CRITERIA_SPREADS):
        anchor = truncation_point(variant, m, c)
        candidates.append(
            meta_params_to_eta(
                m,
                anchor - spread * distances_minus,
                anchor + spread * distances_plus,
                variant=variant,
                c=c,
            )
        )
    return np.vstack(candidates)


def fit_meta_dprime_participant(
    count_table: CountTable,
    variant: str = "ML",
    fit_config: dict[str, object] | None = None,
) -> dict[str, object]:
    """Two-stage meta-d' fit for one participant's pooled count table."""
    variant = _validate_meta_models(variant)[0]
    config = _build_fit_config({"n_restarts": 3, **dict(fit_config or {})})
    if count_table.n_conditions != 1:
        raise ValueError("meta-d' is fitted on count tables with pooled conditions.")

    counts = padded_counts(count_table, 1.0 / (2.0 * count_table.n_ratings))
    type1 = type1_parameters(count_table)

    def objective(eta: np.ndarray) -> float:
        return meta_neg_log_likelihood(
            eta,
            counts,
            dprime=type1["dprime"],
            c=type1["c"],
            variant=variant,
            eps=float(config["eps"]),
        )

    grid_output = rank_grid_candidates(
        objective,
        _build_meta_grid(counts, variant=variant, c=type1["c"]),
        n_inits=int(config["n_inits"]),
    )
    optimizer_output = run_multistart_nelder_mead(
        objective,
        grid_output["initial_points"],
        n_restarts=int(config["n_restarts"]),
        max_iterations=int(config["max_iterations"]),
        xatol=float(config["xatol"]),
        fatol=float(config["fatol"]),
        penalty=float(config["penalty"]),
    )
    params = meta_eta_to_params(optimizer_output["best_eta"], variant=variant, c=type1["c"])
    meta_d = float(params["m"]) * type1["dprime"]

    return {
        "model_name": variant,
        "participant": count_table.participant,
        "dprime": type1["dprime"],
        "c": type1["c"],
        "m": float(params["m"]),
        "metaD": meta_d,
        "Ratio": meta_d / type1["dprime"] if type1["dprime"] != 0.0 else np.nan,
        "theta_minus": params["theta_minus"],
        "theta_plus": params["theta_plus"],
        "best_neg_log_likelihood": float(optimizer_output["best_neg_log_likelihood"]),
        "n_trials": count_table.n_trials,
        "trace_table": optimizer_output["trace_table"],
    }


def _run_meta_job(job: tuple[object, str, CountTable, dict[str, object]]) -> dict[str, object]:
    participant, variant, count_table, fit_config = job
    type1 = type1_parameters(count_table)
    row: dict[str, object] = {
        "model": variant,
        "participant": participant,
        "dprime": type1["dprime"],
        "c": type1["c"],
    }
    try:
        fit_output = fit_meta_dprime_participant(count_table, variant, fit_config=fit_config)
    except Exception as exc:  # reported as a failed row, not raised
        row.update(
            {
                "metaD": np.nan,
                "Ratio": np.nan,
                "fit_status": "failed",
                "fit_message": (
                    f"participant={participant!r}, model={variant}: {type(exc).__name__}: {exc}"
                ),
            }
        )
        return row
    row.update(
        {
            "metaD": fit_output["metaD"],
            "Ratio": fit_output["Ratio"],
            "fit_status": "ok",
            "fit_message": None,
        }
    )
    return row


def fit_meta_dprime(
    data: pd.DataFrame,
    model: str | Sequence[str] = "ML",
    *,
    n_inits: int = 5,
    n_restarts: int = 3,
    parallel: bool = False,
    n_workers: int | None = None,
    fit_config: dict[str, object] | None = None,
) -> pd.DataFrame:
    """Compute d', c, meta-d', and meta-d'/d' for every participant.

    Args:
        data: One row per trial with `participant`, `stimulus`, `correct`,
            and `rating`. A `condition` column is ignored (conditions are
            pooled).
        model: ``"ML"``, ``"F"``, or a sequence of both.
        n_inits: Number of grid-search starting points.
        n_restarts: Nelder-Mead restarts per starting point.
        parallel: Dispatch participant jobs to a worker pool.
        n_workers: Pool size; defaults to available CPUs minus one.
        fit_config: Further optimizer settings.

    Returns:
        One row per participant and variant with `model`, `participant`,
        `dprime`, `c`, `metaD`, `Ratio`, and `fit_status`.
    """
    variants = _validate_meta_models(model)
    config = _build_fit_config(
        {**dict(fit_config or {}), "n_inits": int(n_inits), "n_restarts": int(n_restarts)}
    )
    if n_workers is not None and int(n_workers) <= 0:
        raise ValueError("n_workers must be > 0 when given.")

    prepared = prepare_confidence_data(data)
    count_tables = build_count_tables(prepared, pool_conditions=True)
    jobs = [
        (participant, variant, count_table, config)
        for participant, count_table in count_tables.items()
        for variant in variants
    ]
    rows = run_jobs(_run_meta_job, jobs, parallel=bool(parallel), n_workers=n_workers)
    for row in rows:
        if row["fit_status"] == "failed":
            warnings.warn(f"meta-d' fit failed: {row['fit_message']}", RuntimeWarning, stacklevel=2)

    return merge_result_rows(rows, trailing_columns=META_DPRIME_OUTPUT_COLUMNS[2:])
