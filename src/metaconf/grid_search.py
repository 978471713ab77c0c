"""Structured grid search for optimizer starting points."""

from __future__ import annotations

import itertools
from typing import Callable

import numpy as np
import pandas as pd
from scipy.stats import norm

from .confidence_models import get_confidence_model
from .constants import NON_FINITE_PENALTY
from .count_tables import CountTable


_D_SCALES: tuple[float, ...] = (0.75, 1.0, 1.25)
_C_OFFSETS: tuple[float, ...] = (-0.3, 0.0, 0.3)
_CRITERIA_SPREADS: tuple[float, ...] = (0.5, 1.0, 1.5)
_EXTRA_GRIDS: dict[str, tuple[float, ...]] = {
    "sigma": (0.5, 1.0, 2.0),
    "w": (0.25, 0.5, 0.75),
    "b": (0.5, 1.0, 2.0),
    "m": (0.5, 1.0, 1.5),
}

_MIN_SENSITIVITY = 0.1
_MAX_SENSITIVITY = 5.0
_MIN_CRITERION_DISTANCE = 0.05
_ORDER_STEP = 0.01


class GridSearchError(RuntimeError):
    """Raised when no grid candidate yields a finite likelihood."""

    def __init__(self, message: str, *, n_candidates: int = 0) -> None:
        super().__init__(message)
        self.n_candidates = int(n_candidates)


def _strictly_increasing(values: np.ndarray, *, floor: float) -> np.ndarray:
    values = np.maximum(np.asarray(values, dtype=float), float(floor))
    return np.maximum.accumulate(values) + _ORDER_STEP * np.arange(values.size)


def empirical_type1_estimates(counts: np.ndarray) -> dict[str, np.ndarray]:
    """Per-condition hit rate, false-alarm rate, d' and c from (padded) counts.

    Hits are "+1" responses to the "+1" stimulus; false alarms are "+1"
    responses to the "-1" stimulus.
    """
    response_counts = np.asarray(counts, dtype=float).sum(axis=3)
    hit_rate = response_counts[:, 1, 1] / response_counts[:, 1, :].sum(axis=1)
    false_alarm_rate = response_counts[:, 0, 1] / response_counts[:, 0, :].sum(axis=1)
    z_hit = norm.ppf(hit_rate)
    z_false_alarm = norm.ppf(false_alarm_rate)
    return {
        "hit_rate": hit_rate,
        "false_alarm_rate": false_alarm_rate,
        "dprime": z_hit - z_false_alarm,
        "c": -0.5 * (z_hit + z_false_alarm),
    }


def empirical_criterion_distances(counts: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Criterion distances from the type-1 criterion implied by rating proportions.

    For each response side the share of ratings above level j is converted to
    a half-normal quantile; returns `(distances_minus, distances_plus)`.
    """
    counts = np.asarray(counts, dtype=float)
    distances: list[np.ndarray] = []
    for side in (0, 1):
        rating_counts = counts[:, :, side, :].sum(axis=(0, 1))
        total = max(float(rating_counts.sum()), 1.0)
        above = np.cumsum(rating_counts[::-1])[::-1][1:] / total
        above = np.clip(above, 0.02, 0.98)
        distances.append(
            _strictly_increasing(norm.ppf(1.0 - above / 2.0), floor=_MIN_CRITERION_DISTANCE)
        )
    return distances[0], distances[1]


def build_model_grid(model_name: str, count_table: CountTable) -> np.ndarray:
    """Candidate `eta` vectors spanning data-derived ranges for one model."""
    model = get_confidence_model(model_name)
    n_conditions = count_table.n_conditions
    n_ratings = count_table.n_ratings
    adjusted = np.asarray(count_table.counts, dtype=float) + 1.0 / (2.0 * n_ratings)

    type1 = empirical_type1_estimates(adjusted)
    d_seed = _strictly_increasing(
        np.clip(type1["dprime"], _MIN_SENSITIVITY, _MAX_SENSITIVITY),
        floor=_MIN_SENSITIVITY,
    )
    c_seed = float(np.mean(type1["c"]))
    distances_minus, distances_plus = empirical_criterion_distances(adjusted)

    extras = model.extra_parameters
    extra_grid = [_EXTRA_GRIDS[name] for name in extras]

    candidates: list[np.ndarray] = []
    for d_scale, c_offset, spread, *extra_values in itertools.product(
        _D_SCALES, _C_OFFSETS, _CRITERIA_SPREADS, *extra_grid
    ):
        c = c_seed + c_offset
        named_extras = dict(zip(extras, extra_values, strict=True))
        anchor = model.criteria_anchor({"c": c, **named_extras})
        if anchor is None:
            anchor = c
        theta = np.concatenate(
            (
                d_seed * d_scale,
                [c],
                anchor - spread * distances_minus,
                anchor + spread * distances_plus,
                np.asarray(extra_values, dtype=float),
            )
        )
        candidates.append(model.theta_to_eta(theta, n_conditions, n_ratings))
    return np.vstack(candidates)


def rank_grid_candidates(
    objective: Callable[[np.ndarray], float],
    candidates: np.ndarray,
    *,
    n_inits: int,
) -> dict[str, object]:
    """Score every candidate and keep the best `n_inits` distinct finite ones.

    Ties keep grid enumeration order (stable sort).

    Raises:
        GridSearchError: If no candidate has a finite likelihood.
    """
    if int(n_inits) <= 0:
        raise ValueError("n_inits must be > 0.")
    candidates = np.atleast_2d(np.asarray(candidates, dtype=float))
    scores = np.asarray([float(objective(eta)) for eta in candidates], dtype=float)
    finite_mask = np.isfinite(scores) & (scores < NON_FINITE_PENALTY)
    if not bool(finite_mask.any()):
        raise GridSearchError(
            f"None of the {len(candidates)} grid candidates yields a finite likelihood.",
            n_candidates=len(candidates),
        )

    order = np.argsort(np.where(finite_mask, scores, np.inf), kind="stable")
    selected: list[int] = []
    seen: set[tuple[float, ...]] = set()
    for idx in order:
        if not finite_mask[idx]:
            break
        key = tuple(np.round(candidates[idx], 10).tolist())
        if key in seen:
            continue
        seen.add(key)
        selected.append(int(idx))
        if len(selected) == int(n_inits):
            break

    rank = np.full(len(candidates), -1, dtype=int)
    rank[np.asarray(selected, dtype=int)] = np.arange(len(selected))
    grid_table = pd.DataFrame(
        {
            "candidate_index": np.arange(len(candidates)),
            "neg_log_likelihood": scores,
            "finite": finite_mask,
            "selected_rank": rank,
        }
    )
    return {
        "initial_points": candidates[selected].copy(),
        "initial_scores": scores[selected].copy(),
        "n_candidates": int(len(candidates)),
        "n_finite": int(finite_mask.sum()),
        "grid_table": grid_table,
    }
