from __future__ import annotations

import numpy as np
import pytest

from metaconf.confidence_models import get_confidence_model
from metaconf.constants import NON_FINITE_PENALTY, SUPPORTED_MODEL_NAMES
from metaconf.count_tables import build_count_table
from metaconf.data_validation import prepare_confidence_data
from metaconf.grid_search import (
    GridSearchError,
    build_model_grid,
    empirical_type1_estimates,
    rank_grid_candidates,
)
from metaconf.simulation import expected_confidence_data


@pytest.fixture
def count_table(sdt_params):
    trials = expected_confidence_data("SDT", sdt_params, n_trials_per_stimulus=400, n_ratings=4)
    return build_count_table(prepare_confidence_data(trials), "expected")


def test_all_penalized_candidates_raise():
    candidates = np.zeros((6, 3))
    with pytest.raises(GridSearchError) as excinfo:
        rank_grid_candidates(lambda eta: NON_FINITE_PENALTY, candidates, n_inits=2)
    assert excinfo.value.n_candidates == 6

    with pytest.raises(GridSearchError):
        rank_grid_candidates(lambda eta: np.inf, candidates, n_inits=2)


def test_best_distinct_candidates_are_kept():
    candidates = np.array([[3.0], [1.0], [1.0], [2.0], [5.0]])
    output = rank_grid_candidates(
        lambda eta: float(eta[0]) if eta[0] != 5.0 else np.nan,
        candidates,
        n_inits=3,
    )

    np.testing.assert_array_equal(output["initial_points"][:, 0], [1.0, 2.0, 3.0])
    np.testing.assert_array_equal(output["initial_scores"], [1.0, 2.0, 3.0])
    assert output["n_finite"] == 4
    assert output["grid_table"]["selected_rank"].tolist() == [2, 0, -1, 1, -1]


@pytest.mark.parametrize("model_name", SUPPORTED_MODEL_NAMES)
def test_model_grid_has_finite_initializers(model_name, count_table):
    model = get_confidence_model(model_name)
    grid = build_model_grid(model_name, count_table)
    assert grid.shape[1] == model.n_parameters(1, 4)

    def objective(eta):
        return model.neg_log_likelihood(eta, count_table.counts)

    output = rank_grid_candidates(objective, grid, n_inits=4)
    assert output["initial_points"].shape == (4, grid.shape[1])
    assert np.all(np.isfinite(output["initial_scores"]))
    assert np.all(output["initial_scores"] < NON_FINITE_PENALTY)


def test_type1_estimates_from_counts(sdt_params, count_table):
    estimates = empirical_type1_estimates(count_table.counts)
    assert estimates["dprime"][0] == pytest.approx(1.5, abs=0.05)
    assert estimates["c"][0] == pytest.approx(0.0, abs=0.05)
