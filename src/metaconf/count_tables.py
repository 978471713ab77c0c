from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from .constants import CONDITION_COLUMN, MODEL_READY_COLUMNS
from .data_validation import _validate_required_columns


@dataclass(frozen=True)
class CountTable:
    """Multinomial cell counts for one participant.

    `counts` has shape (K, 2, 2, L) and is indexed by
    [condition, stimulus, response, rating], with index 0 meaning -1 on the
    stimulus and response axes. The array is read-only.
    """

    participant: object
    counts: np.ndarray
    condition_levels: tuple[object, ...]
    stimulus_levels: tuple[object, ...]
    rating_levels: tuple[object, ...]

    @property
    def n_conditions(self) -> int:
        return int(self.counts.shape[0])

    @property
    def n_ratings(self) -> int:
        return int(self.counts.shape[3])

    @property
    def n_trials(self) -> int:
        return int(round(float(self.counts.sum())))


def _freeze(array: np.ndarray) -> np.ndarray:
    frozen = np.array(array, dtype=float, copy=True)
    frozen.flags.writeable = False
    return frozen


def build_count_table(
    prepared_df: pd.DataFrame,
    participant: object,
    *,
    pool_conditions: bool = False,
) -> CountTable:
    """Aggregate one participant's prepared trials into cell counts.

    Args:
        prepared_df: Output of `prepare_confidence_data`, possibly holding
            several participants.
        participant: Participant whose trials are aggregated.
        pool_conditions: Collapse all difficulty levels into one.

    Returns:
        Immutable `CountTable`; levels are shared across participants so all
        tables from one call have the same shape.
    """
    _validate_required_columns(prepared_df, MODEL_READY_COLUMNS, context="count aggregation")

    condition_levels = tuple(prepared_df[CONDITION_COLUMN].cat.categories.tolist())
    stimulus_levels = tuple(prepared_df["stimulus"].cat.categories.tolist())
    rating_levels = tuple(prepared_df["rating"].cat.categories.tolist())
    n_conditions = 1 if pool_conditions else len(condition_levels)

    subset = prepared_df[prepared_df["participant"] == participant]
    if subset.empty:
        available = prepared_df["participant"].astype(str).unique().tolist()
        raise ValueError(f"No rows for participant='{participant}'. Available: {available}")

    condition_idx = (
        np.zeros(len(subset), dtype=int)
        if pool_conditions
        else subset["condition_index"].to_numpy(dtype=int)
    )
    stimulus_idx = (subset["stimulus_code"].to_numpy(dtype=int) + 1) // 2
    response_idx = (subset["response_code"].to_numpy(dtype=int) + 1) // 2
    rating_idx = subset["rating_index"].to_numpy(dtype=int)

    counts = np.zeros((n_conditions, 2, 2, len(rating_levels)), dtype=float)
    np.add.at(counts, (condition_idx, stimulus_idx, response_idx, rating_idx), 1.0)

    return CountTable(
        participant=participant,
        counts=_freeze(counts),
        condition_levels=("pooled",) if pool_conditions else condition_levels,
        stimulus_levels=stimulus_levels,
        rating_levels=rating_levels,
    )


def build_count_tables(
    prepared_df: pd.DataFrame,
    *,
    pool_conditions: bool = False,
) -> dict[object, CountTable]:
    """Build count tables for all participants in order of first appearance."""
    participants = pd.unique(prepared_df["participant"])
    return {
        participant: build_count_table(prepared_df, participant, pool_conditions=pool_conditions)
        for participant in participants
    }


def padded_counts(count_table: CountTable, adjustment: float) -> np.ndarray:
    """Counts with `adjustment` added to every cell (low-frequency correction)."""
    return np.asarray(count_table.counts, dtype=float) + float(adjustment)


def count_table_to_frame(count_table: CountTable) -> pd.DataFrame:
    """Long-format export of a count table (one row per cell)."""
    rows: list[dict[str, object]] = []
    for k_idx, condition in enumerate(count_table.condition_levels):
        for s_idx, stimulus in enumerate(count_table.stimulus_levels):
            for r_idx, response_code in enumerate((-1, 1)):
                for rating_idx, rating in enumerate(count_table.rating_levels):
                    rows.append(
                        {
                            "participant": count_table.participant,
                            "condition": condition,
                            "stimulus": stimulus,
                            "stimulus_code": -1 if s_idx == 0 else 1,
                            "response_code": int(response_code),
                            "rating": rating,
                            "n": int(count_table.counts[k_idx, s_idx, r_idx, rating_idx]),
                        }
                    )
    return pd.DataFrame(rows)
