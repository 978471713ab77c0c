from __future__ import annotations

import warnings
from typing import Iterable

import numpy as np
import pandas as pd

from .constants import (
    CONDITION_COLUMN,
    MIN_RECOMMENDED_TRIALS,
    REQUIRED_INPUT_COLUMNS,
    SUPPORTED_MODEL_NAMES,
)


def _validate_required_columns(
    df: pd.DataFrame,
    required_columns: Iterable[str],
    *,
    context: str,
) -> None:
    """Validate that a DataFrame contains all required columns."""
    missing = sorted(set(required_columns) - set(df.columns))
    if missing:
        raise ValueError(
            f"Missing required columns for {context}: {missing}. "
            f"Found columns: {list(df.columns)}"
        )


def _coerce_categorical_column(df: pd.DataFrame, column: str) -> pd.DataFrame:
    """Convert a column to an ordered categorical, warning when coercion was needed."""
    if not isinstance(df[column].dtype, pd.CategoricalDtype):
        warnings.warn(
            f"{column} is transformed to a categorical column.",
            UserWarning,
            stacklevel=3,
        )
        levels = sorted(df[column].dropna().unique().tolist())
        df[column] = pd.Categorical(df[column], categories=levels, ordered=True)
    else:
        df[column] = df[column].cat.remove_unused_categories()
    return df


def _validate_correct_column(df: pd.DataFrame) -> pd.DataFrame:
    """Validate the `correct` coding and presence of both outcomes."""
    raw_correct = pd.to_numeric(df["correct"], errors="coerce")
    valid_mask = raw_correct.isin((0.0, 1.0))
    if not bool(valid_mask.all()):
        invalid_values = (
            df.loc[~valid_mask, "correct"].drop_duplicates().astype(str).sort_values().tolist()
        )
        raise ValueError(
            f"correct should be 1 or 0; found invalid values: {invalid_values}"
        )
    df["correct"] = raw_correct.astype(int)
    outcomes = df.groupby("participant", sort=False, observed=True)["correct"].agg(["min", "max"])
    no_errors = outcomes.index[outcomes["min"] == 1].astype(str).tolist()
    if no_errors:
        raise ValueError(
            f"There should be at least one erroneous response per participant; none for {no_errors}."
        )
    no_correct = outcomes.index[outcomes["max"] == 0].astype(str).tolist()
    if no_correct:
        raise ValueError(
            f"There should be at least one correct response per participant; none for {no_correct}."
        )
    return df


def validate_model_names(models: str | Iterable[str]) -> tuple[str, ...]:
    """Normalize a requested model set, expanding `"all"` to the full catalog."""
    if isinstance(models, str):
        models = SUPPORTED_MODEL_NAMES if models == "all" else (models,)
    normalized = tuple(str(model_name) for model_name in models)
    if len(normalized) == 0:
        raise ValueError("models must not be empty.")
    invalid = [model_name for model_name in normalized if model_name not in SUPPORTED_MODEL_NAMES]
    if invalid:
        raise ValueError(
            f"Unsupported models: {invalid}. "
            f"Supported models: {list(SUPPORTED_MODEL_NAMES)}"
        )
    return normalized


def _warn_small_participants(df: pd.DataFrame) -> None:
    trial_counts = df.groupby("participant", sort=False, observed=True).size()
    small = trial_counts[trial_counts < MIN_RECOMMENDED_TRIALS]
    if not small.empty:
        warnings.warn(
            f"At least {MIN_RECOMMENDED_TRIALS} trials per participant are recommended "
            "for measuring metacognitive performance; found fewer for participants "
            f"{small.index.astype(str).tolist()}.",
            UserWarning,
            stacklevel=3,
        )


def prepare_confidence_data(df: pd.DataFrame) -> pd.DataFrame:
    """Validate trial data and attach the integer codes used by count aggregation.

    Args:
        df: One row per trial with `participant`, `stimulus`, `correct`,
            `rating`, and optionally `condition`.

    Returns:
        Copy of the data with `stimulus_code` (-1/+1), `response_code`
        (-1/+1), `rating_index` (0..L-1), and `condition_index` (0..K-1).

    Raises:
        ValueError: If the data cannot be fitted.
    """
    _validate_required_columns(df, REQUIRED_INPUT_COLUMNS, context="confidence data")
    if df.empty:
        raise ValueError("confidence data must contain at least one trial.")

    out = df.copy()
    if out[list(REQUIRED_INPUT_COLUMNS)].isna().any().any():
        raise ValueError(
            f"confidence data contains missing values in {list(REQUIRED_INPUT_COLUMNS)}."
        )

    if out["stimulus"].nunique() != 2:
        raise ValueError(
            "There must be exactly two different possible values of stimulus; "
            f"found {sorted(out['stimulus'].astype(str).unique().tolist())}."
        )
    out = _coerce_categorical_column(out, "stimulus")
    out = _coerce_categorical_column(out, "rating")
    if len(out["rating"].cat.categories) < 2:
        raise ValueError("rating must have at least two different levels.")

    if CONDITION_COLUMN not in out.columns:
        out[CONDITION_COLUMN] = pd.Categorical(np.ones(len(out), dtype=int), ordered=True)
    else:
        out = _coerce_categorical_column(out, CONDITION_COLUMN)

    out = _validate_correct_column(out)
    _warn_small_participants(out)

    stimulus_code = np.where(out["stimulus"].cat.codes.to_numpy() == 0, -1, 1)
    out["stimulus_code"] = stimulus_code.astype(int)
    out["response_code"] = np.where(
        out["correct"].to_numpy() == 1, stimulus_code, -stimulus_code
    ).astype(int)
    out["rating_index"] = out["rating"].cat.codes.astype(int)
    out["condition_index"] = out[CONDITION_COLUMN].cat.codes.astype(int)
    return out
