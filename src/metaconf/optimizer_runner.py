from __future__ import annotations

from copy import deepcopy
from typing import Any, Callable

import numpy as np
import pandas as pd
from scipy.optimize import minimize

from .confidence_models import DEFAULT_QUADRATURE_NODES, get_confidence_model
from .constants import EPSILON, NON_FINITE_PENALTY
from .count_tables import CountTable
from .grid_search import build_model_grid, rank_grid_candidates


_DEFAULT_FIT_CONFIG: dict[str, object] = {
    "n_inits": 5,
    "n_restarts": 4,
    "max_iterations": 2000,
    "xatol": 1e-6,
    "fatol": 1e-6,
    "n_quadrature_nodes": DEFAULT_QUADRATURE_NODES,
    "eps": EPSILON,
    "penalty": NON_FINITE_PENALTY,
}


def _build_fit_config(fit_config: dict[str, object] | None) -> dict[str, object]:
    merged = deepcopy(_DEFAULT_FIT_CONFIG)
    if fit_config is not None:
        unknown = sorted(set(fit_config) - set(_DEFAULT_FIT_CONFIG))
        if unknown:
            raise ValueError(
                f"Unknown fit_config keys: {unknown}. Allowed keys: {sorted(_DEFAULT_FIT_CONFIG)}"
            )
        merged.update(fit_config)

    if int(merged["n_inits"]) <= 0:
        raise ValueError("n_inits must be > 0.")
    if int(merged["n_restarts"]) <= 0:
        raise ValueError("n_restarts must be > 0.")
    if int(merged["max_iterations"]) <= 0:
        raise ValueError("max_iterations must be > 0.")
    if float(merged["xatol"]) <= 0.0:
        raise ValueError("xatol must be > 0.")
    if float(merged["fatol"]) <= 0.0:
        raise ValueError("fatol must be > 0.")
    if int(merged["n_quadrature_nodes"]) < 8:
        raise ValueError("n_quadrature_nodes must be >= 8.")
    if float(merged["eps"]) <= 0.0:
        raise ValueError("eps must be > 0.")
    if not np.isfinite(float(merged["penalty"])):
        raise ValueError("penalty must be finite.")

    return {
        "n_inits": int(merged["n_inits"]),
        "n_restarts": int(merged["n_restarts"]),
        "max_iterations": int(merged["max_iterations"]),
        "xatol": float(merged["xatol"]),
        "fatol": float(merged["fatol"]),
        "n_quadrature_nodes": int(merged["n_quadrature_nodes"]),
        "eps": float(merged["eps"]),
        "penalty": float(merged["penalty"]),
    }


def _guard_objective(
    objective: Callable[[np.ndarray], float],
    penalty: float,
) -> Callable[[np.ndarray], float]:
    def guarded(eta: np.ndarray) -> float:
        value = float(objective(np.asarray(eta, dtype=float)))
        return value if np.isfinite(value) else float(penalty)

    return guarded


def run_multistart_nelder_mead(
    objective: Callable[[np.ndarray], float],
    initial_points: np.ndarray,
    *,
    n_restarts: int,
    max_iterations: int,
    xatol: float = 1e-6,
    fatol: float = 1e-6,
    penalty: float = NON_FINITE_PENALTY,
) -> dict[str, object]:
    """Minimize `objective` from each initial point with restarted Nelder-Mead.

    Every restart begins at the optimum of the previous restart for the same
    initial point. Hitting the iteration cap is not an error; the best point
    over all runs is returned.
    """
    guarded = _guard_objective(objective, penalty)
    trace_rows: list[dict[str, object]] = []
    best_eta: np.ndarray | None = None
    best_value = np.inf
    n_evaluations = 0

    for init_idx, x0 in enumerate(np.atleast_2d(np.asarray(initial_points, dtype=float))):
        current = np.asarray(x0, dtype=float).copy()
        for restart_idx in range(int(n_restarts)):
            result = minimize(
                guarded,
                current,
                method="Nelder-Mead",
                options={
                    "maxiter": int(max_iterations),
                    "xatol": float(xatol),
                    "fatol": float(fatol),
                },
            )
            n_evaluations += int(result.nfev)
            current = np.asarray(result.x, dtype=float)
            value = float(result.fun)

            trace_rows.append(
                {
                    "init_index": int(init_idx),
                    "restart_index": int(restart_idx),
                    "neg_log_likelihood": value,
                    "n_iterations": int(result.nit),
                    "converged": bool(result.success),
                }
            )

            if value < best_value:
                best_value = value
                best_eta = current.copy()

    if best_eta is None:
        raise RuntimeError("No optimization runs were performed.")

    return {
        "best_eta": best_eta,
        "best_neg_log_likelihood": float(best_value),
        "n_evaluations": int(n_evaluations),
        "trace_table": pd.DataFrame(trace_rows),
    }


def fit_model_parameters(
    count_table: CountTable,
    model_name: str,
    fit_config: dict[str, object] | None = None,
) -> dict[str, object]:
    """Fit one model to one participant: grid search, then restarted Nelder-Mead."""
    config = _build_fit_config(fit_config)
    model = get_confidence_model(model_name)
    n_conditions = count_table.n_conditions
    n_ratings = count_table.n_ratings
    counts = count_table.counts

    def objective(eta: np.ndarray) -> float:
        return model.neg_log_likelihood(
            eta,
            counts,
            eps=float(config["eps"]),
            n_nodes=int(config["n_quadrature_nodes"]),
        )

    grid_output = rank_grid_candidates(
        objective,
        build_model_grid(model.name, count_table),
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

    best_eta = np.asarray(optimizer_output["best_eta"], dtype=float)
    best_theta = model.eta_to_theta(best_eta, n_conditions, n_ratings)
    result: dict[str, Any] = {
        "model_name": model.name,
        "participant": count_table.participant,
        "best_neg_log_likelihood": float(optimizer_output["best_neg_log_likelihood"]),
        "best_eta": best_eta,
        "best_theta": best_theta,
        "best_named_params": model.named_params(best_theta, n_conditions, n_ratings),
        "n_parameters": model.n_parameters(n_conditions, n_ratings),
        "n_trials": count_table.n_trials,
        "n_evaluations": int(optimizer_output["n_evaluations"]) + int(grid_output["n_candidates"]),
        "n_grid_candidates": int(grid_output["n_candidates"]),
        "n_grid_finite": int(grid_output["n_finite"]),
        "fit_config": config,
        "trace_table": optimizer_output["trace_table"],
    }
    return result
