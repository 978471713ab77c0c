from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from .confidence_models import predict_cell_probabilities


def _levels(levels: Sequence[object] | None, default_count: int, start: int = 1) -> list[object]:
    if levels is None:
        return list(range(start, start + default_count))
    return list(levels)


def _cell_rows(
    cell_counts: np.ndarray,
    *,
    participant: object,
    condition_levels: list[object],
    stimulus_levels: list[object],
    rating_levels: list[object],
) -> pd.DataFrame:
    """Expand a (K, 2, 2, L) count array to one row per trial."""
    rows: list[dict[str, object]] = []
    for k_idx, condition in enumerate(condition_levels):
        for s_idx, stimulus in enumerate(stimulus_levels):
            for r_idx in range(2):
                for rating_idx, rating in enumerate(rating_levels):
                    n = int(cell_counts[k_idx, s_idx, r_idx, rating_idx])
                    rows.extend(
                        {
                            "participant": participant,
                            "condition": condition,
                            "stimulus": stimulus,
                            "correct": int(r_idx == s_idx),
                            "rating": rating,
                        }
                        for _ in range(n)
                    )
    out = pd.DataFrame(rows, columns=["participant", "condition", "stimulus", "correct", "rating"])
    for column, levels in (
        ("condition", condition_levels),
        ("stimulus", stimulus_levels),
        ("rating", rating_levels),
    ):
        out[column] = pd.Categorical(out[column], categories=levels, ordered=True)
    return out


def simulate_confidence_data(
    model_name: str,
    named_params: dict[str, float],
    *,
    n_trials_per_stimulus: int,
    n_conditions: int = 1,
    n_ratings: int,
    participant: object = "sim",
    condition_levels: Sequence[object] | None = None,
    stimulus_levels: Sequence[object] = (-1, 1),
    rating_levels: Sequence[object] | None = None,
    random_seed: int = 0,
) -> pd.DataFrame:
    """Draw a trial table from a catalog model at natural parameters.

    Each (condition, stimulus) pair receives `n_trials_per_stimulus` trials,
    distributed over response and rating cells by a multinomial draw from the
    model's predicted probabilities. Row order is shuffled.
    """
    if int(n_trials_per_stimulus) <= 0:
        raise ValueError("n_trials_per_stimulus must be > 0.")
    condition_levels = _levels(condition_levels, n_conditions)
    rating_levels = _levels(rating_levels, n_ratings)
    probs = predict_cell_probabilities(model_name, named_params, n_conditions, n_ratings)

    rng = np.random.default_rng(int(random_seed))
    cell_counts = np.zeros_like(probs)
    for k_idx in range(n_conditions):
        for s_idx in range(2):
            cell_p = np.clip(probs[k_idx, s_idx].ravel(), 0.0, None)
            cell_counts[k_idx, s_idx] = rng.multinomial(
                int(n_trials_per_stimulus), cell_p / cell_p.sum()
            ).reshape(2, n_ratings)

    trials = _cell_rows(
        cell_counts,
        participant=participant,
        condition_levels=condition_levels,
        stimulus_levels=list(stimulus_levels),
        rating_levels=rating_levels,
    )
    shuffled = rng.permutation(len(trials))
    return trials.iloc[shuffled].reset_index(drop=True)


def expected_confidence_data(
    model_name: str,
    named_params: dict[str, float],
    *,
    n_trials_per_stimulus: int,
    n_conditions: int = 1,
    n_ratings: int,
    participant: object = "expected",
    condition_levels: Sequence[object] | None = None,
    stimulus_levels: Sequence[object] = (-1, 1),
    rating_levels: Sequence[object] | None = None,
) -> pd.DataFrame:
    """Trial table whose cell counts are the rounded expected counts of a model."""
    if int(n_trials_per_stimulus) <= 0:
        raise ValueError("n_trials_per_stimulus must be > 0.")
    probs = predict_cell_probabilities(model_name, named_params, n_conditions, n_ratings)
    cell_counts = np.rint(np.clip(probs, 0.0, None) * int(n_trials_per_stimulus))
    return _cell_rows(
        cell_counts,
        participant=participant,
        condition_levels=_levels(condition_levels, n_conditions),
        stimulus_levels=list(stimulus_levels),
        rating_levels=_levels(rating_levels, n_ratings),
    )
