"""Participant- and group-level model comparison by information criteria."""

from __future__ import annotations

import numpy as np
import pandas as pd

from .data_validation import _validate_required_columns


_CRITERION_COLUMNS: tuple[str, ...] = ("BIC", "AICc", "AIC", "negLogLik")


def _find_tied_min_models(
    score_chunk: pd.DataFrame,
    *,
    score_column: str,
    tie_tolerance: float,
) -> tuple[list[str], float]:
    """Find models tied at the minimum score within tolerance.

    Args:
        score_chunk: One participant's fit rows.
        score_column: Information criterion column.
        tie_tolerance: Inclusive tolerance around the minimum score.

    Returns:
        Tuple of tied model names and minimum score.
    """
    min_score = float(score_chunk[score_column].min())
    tied = score_chunk[score_chunk[score_column] <= (min_score + float(tie_tolerance))]["model"]
    return sorted(set(tied.astype(str).tolist())), min_score


def validate_criterion(criterion: str) -> str:
    if criterion not in _CRITERION_COLUMNS:
        raise ValueError(f"criterion must be one of {list(_CRITERION_COLUMNS)}, got '{criterion}'.")
    return str(criterion)


def _build_empty_outputs(criterion: str) -> dict[str, pd.DataFrame]:
    participant_winner_table = pd.DataFrame(
        columns=[
            "participant",
            "winner_model",
            "winner_score",
            "criterion",
            "tie",
            "tied_models",
            "delta_to_runner_up",
        ]
    )
    group_winner_counts = pd.DataFrame(
        columns=["model", "participant_win_count", f"{criterion}_sum"]
    )
    return {
        "participant_winner_table": participant_winner_table,
        "group_winner_counts": group_winner_counts,
    }


def apply_winner_rules(
    fit_table: pd.DataFrame,
    *,
    criterion: str = "BIC",
    tie_tolerance: float = 1e-9,
) -> dict[str, pd.DataFrame]:
    """Select the best model per participant and count wins across participants.

    Failed fits (non-finite criterion values) are excluded. Ties within
    `tie_tolerance` are broken lexically by model name.

    Args:
        fit_table: Output of `fit_conf_models`.
        criterion: One of ``BIC``, ``AICc``, ``AIC``, ``negLogLik``.
        tie_tolerance: Inclusive tolerance for tie detection.

    Returns:
        Dictionary with ``participant_winner_table`` and ``group_winner_counts``.
    """
    criterion = validate_criterion(criterion)
    if float(tie_tolerance) < 0.0:
        raise ValueError("tie_tolerance must be >= 0.")
    if fit_table.empty:
        return _build_empty_outputs(criterion)
    _validate_required_columns(fit_table, ("participant", "model", criterion), context="winner rules")

    score_df = fit_table[["participant", "model", criterion]].copy()
    score_df[criterion] = pd.to_numeric(score_df[criterion], errors="coerce")
    score_df = score_df[np.isfinite(score_df[criterion].to_numpy(dtype=float))]
    if score_df.empty:
        return _build_empty_outputs(criterion)

    participant_rows: list[dict[str, object]] = []
    for participant, chunk in score_df.groupby("participant", sort=False):
        tied_models, min_score = _find_tied_min_models(
            chunk, score_column=criterion, tie_tolerance=float(tie_tolerance)
        )
        ordered_scores = np.sort(chunk[criterion].to_numpy(dtype=float))
        participant_rows.append(
            {
                "participant": participant,
                "winner_model": tied_models[0],
                "winner_score": float(min_score),
                "criterion": criterion,
                "tie": len(tied_models) > 1,
                "tied_models": tied_models,
                "delta_to_runner_up": (
                    float(ordered_scores[1] - ordered_scores[0])
                    if ordered_scores.size > 1
                    else np.nan
                ),
            }
        )
    participant_winner_table = pd.DataFrame(participant_rows)

    model_names = sorted(score_df["model"].astype(str).unique().tolist())
    vote_counts = (
        participant_winner_table["winner_model"].value_counts().reindex(model_names, fill_value=0)
    )
    score_sums = score_df.groupby("model")[criterion].sum().reindex(model_names)
    group_winner_counts = pd.DataFrame(
        {
            "model": model_names,
            "participant_win_count": vote_counts.to_numpy(dtype=int),
            f"{criterion}_sum": score_sums.to_numpy(dtype=float),
        }
    ).sort_values(
        ["participant_win_count", f"{criterion}_sum", "model"],
        ascending=[False, True, True],
    ).reset_index(drop=True)

    return {
        "participant_winner_table": participant_winner_table,
        "group_winner_counts": group_winner_counts,
    }
