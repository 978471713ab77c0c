from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from metaconf.count_tables import build_count_table, build_count_tables, count_table_to_frame
from metaconf.data_loading import load_confidence_data
from metaconf.data_validation import prepare_confidence_data, validate_model_names
from metaconf.constants import SUPPORTED_MODEL_NAMES


def _trials(n: int = 500, **overrides) -> pd.DataFrame:
    rng = np.random.default_rng(0)
    df = pd.DataFrame(
        {
            "participant": "p1",
            "stimulus": pd.Categorical(rng.choice(["left", "right"], size=n)),
            "correct": (np.arange(n) % 4 != 0).astype(int),
            "rating": pd.Categorical(rng.choice([1, 2, 3, 4], size=n), categories=[1, 2, 3, 4]),
        }
    )
    for column, value in overrides.items():
        df[column] = value
    return df


def test_prepare_adds_codes_and_default_condition():
    prepared = prepare_confidence_data(_trials())

    assert set(prepared["stimulus_code"].unique()) == {-1, 1}
    left = prepared["stimulus"] == "left"
    assert (prepared.loc[left, "stimulus_code"] == -1).all()
    incorrect = prepared["correct"] == 0
    assert (
        prepared.loc[incorrect, "response_code"] == -prepared.loc[incorrect, "stimulus_code"]
    ).all()
    assert prepared["condition"].cat.categories.tolist() == [1]
    assert prepared["rating_index"].between(0, 3).all()


def test_single_rating_level_is_rejected():
    df = _trials(rating=pd.Categorical([2] * 500))
    with pytest.raises(ValueError, match="rating must have at least two"):
        prepare_confidence_data(df)


def test_no_errors_is_rejected():
    with pytest.raises(ValueError, match="at least one erroneous response"):
        prepare_confidence_data(_trials(correct=1))


def test_both_outcomes_are_required_per_participant(small_trials):
    df = small_trials.copy()
    df.loc[df["participant"] == "p1", "correct"] = 1
    with pytest.raises(ValueError, match=r"erroneous response per participant; none for \['p1'\]"):
        prepare_confidence_data(df)

    df.loc[df["participant"] == "p1", "correct"] = 0
    with pytest.raises(ValueError, match=r"correct response per participant; none for \['p1'\]"):
        prepare_confidence_data(df)


def test_invalid_correct_coding_is_rejected():
    df = _trials()
    df.loc[3, "correct"] = 2
    with pytest.raises(ValueError, match="correct should be 1 or 0"):
        prepare_confidence_data(df)


def test_stimulus_must_have_two_values():
    df = _trials()
    df["stimulus"] = np.resize(["a", "b", "c"], len(df))
    with pytest.raises(ValueError, match="exactly two different possible values"):
        prepare_confidence_data(df)


def test_missing_columns_are_reported():
    with pytest.raises(ValueError, match="Missing required columns"):
        prepare_confidence_data(_trials().drop(columns=["rating"]))


def test_few_trials_warn():
    with pytest.warns(UserWarning, match="400 trials"):
        prepare_confidence_data(_trials(n=120))


def test_non_categorical_rating_warns_and_is_ordered():
    df = _trials()
    df["rating"] = df["rating"].astype(int)
    with pytest.warns(UserWarning, match="rating is transformed to a categorical column"):
        prepared = prepare_confidence_data(df)
    assert prepared["rating"].cat.categories.tolist() == [1, 2, 3, 4]


def test_all_expands_to_catalog():
    assert validate_model_names("all") == SUPPORTED_MODEL_NAMES
    assert validate_model_names("GN") == ("GN",)
    with pytest.raises(ValueError, match="Unsupported models"):
        validate_model_names(["SDT", "2DSD"])


def test_count_tables_follow_first_appearance(small_trials):
    prepared = prepare_confidence_data(small_trials)
    tables = build_count_tables(prepared)

    assert list(tables) == ["p2", "p1"]
    table = tables["p2"]
    assert table.counts.shape == (2, 2, 2, 3)
    assert table.n_trials == 120
    assert table.condition_levels == ("hard", "easy")
    with pytest.raises(ValueError):
        table.counts[0, 0, 0, 0] = 5.0


def test_count_table_matches_trials(small_trials):
    prepared = prepare_confidence_data(small_trials)
    table = build_count_table(prepared, "p1")
    frame = count_table_to_frame(table)

    subset = small_trials[small_trials["participant"] == "p1"]
    hard_plus_correct = subset[
        (subset["condition"] == "hard") & (subset["stimulus"] == 1) & (subset["correct"] == 1)
    ]
    observed = frame[
        (frame["condition"] == "hard") & (frame["stimulus"] == 1) & (frame["response_code"] == 1)
    ]["n"].sum()
    assert observed == len(hard_plus_correct)
    assert frame["n"].sum() == len(subset)


def test_pooled_count_table(small_trials):
    prepared = prepare_confidence_data(small_trials)
    pooled = build_count_table(prepared, "p1", pool_conditions=True)
    split = build_count_table(prepared, "p1")

    assert pooled.counts.shape == (1, 2, 2, 3)
    np.testing.assert_array_equal(pooled.counts[0], split.counts.sum(axis=0))

    with pytest.raises(ValueError, match="No rows for participant"):
        build_count_table(prepared, "p9")


def test_load_confidence_data_filters_participants(tmp_path):
    csv_path = tmp_path / "trials.csv"
    pd.DataFrame(
        {
            "participant": [1, 1, 2, 2],
            "stimulus": ["a", "b", "a", "b"],
            "correct": [1, 0, 1, 1],
            "rating": [1, 2, 2, 1],
        }
    ).to_csv(csv_path, index=False)

    loaded = load_confidence_data(csv_path, participant_ids=["2"])
    assert loaded["participant"].tolist() == [2, 2]
    assert isinstance(loaded["rating"].dtype, pd.CategoricalDtype)

    with pytest.raises(FileNotFoundError):
        load_confidence_data(tmp_path / "missing.csv")
