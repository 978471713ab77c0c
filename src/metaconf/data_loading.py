from __future__ import annotations

from pathlib import Path

import pandas as pd

from .constants import REQUIRED_INPUT_COLUMNS
from .data_validation import _validate_required_columns


def _resolve_csv_path(csv_path: str | Path) -> Path:
    """Resolve a CSV path relative to the working directory.

    Raises:
        FileNotFoundError: If the path does not exist.
    """
    path = Path(csv_path)
    if path.exists():
        return path.resolve()
    raise FileNotFoundError(f"Could not find CSV file: {csv_path}")


def load_confidence_data(
    csv_path: str | Path,
    participant_ids: list[str] | None = None,
) -> pd.DataFrame:
    """Load trial-level confidence data from CSV.

    Args:
        csv_path: Path to a CSV with one row per trial.
        participant_ids: Optional participant filter, compared as strings.

    Returns:
        Trial table with `participant`, `stimulus`, `rating`, and `condition`
        (when present) read as categorical columns.
    """
    df = pd.read_csv(_resolve_csv_path(csv_path))
    _validate_required_columns(df, REQUIRED_INPUT_COLUMNS, context="confidence CSV")

    if participant_ids is not None:
        wanted = {str(participant_id) for participant_id in participant_ids}
        df = df[df["participant"].astype(str).isin(wanted)].copy()
        if df.empty:
            raise ValueError(f"No rows for participant_ids={sorted(wanted)} in {csv_path}.")

    for column in ("stimulus", "rating", "condition"):
        if column in df.columns:
            levels = sorted(df[column].dropna().unique().tolist())
            df[column] = pd.Categorical(df[column], categories=levels, ordered=True)
    return df.reset_index(drop=True)
