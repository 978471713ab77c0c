from __future__ import annotations

import numpy as np
import pytest

from metaconf.count_tables import build_count_table
from metaconf.data_validation import prepare_confidence_data
from metaconf.meta_dprime import (
    fit_meta_dprime,
    fit_meta_dprime_participant,
    meta_eta_to_params,
    meta_params_to_eta,
    truncation_point,
    type1_parameters,
)
from metaconf.simulation import expected_confidence_data


_META_PARAMS = {
    "d_1": 1.5,
    "c": 0.1,
    "theta_minus.1": -0.4,
    "theta_minus.2": -0.9,
    "theta_minus.3": -1.4,
    "theta_plus.1": 0.6,
    "theta_plus.2": 1.1,
    "theta_plus.3": 1.6,
    "m": 1.0,
}


@pytest.fixture
def ideal_observer_trials():
    return expected_confidence_data(
        "ITGcm", _META_PARAMS, n_trials_per_stimulus=5000, n_ratings=4, participant="ideal"
    )


def test_ml_ratio_is_one_for_an_ideal_observer(ideal_observer_trials):
    result = fit_meta_dprime(ideal_observer_trials, "ML", n_inits=3, n_restarts=2)

    assert result.columns.tolist()[:6] == ["model", "participant", "dprime", "c", "metaD", "Ratio"]
    row = result.iloc[0]
    assert row["model"] == "ML"
    assert row["fit_status"] == "ok"
    assert row["dprime"] == pytest.approx(1.5, abs=0.05)
    assert row["c"] == pytest.approx(0.1, abs=0.05)
    assert abs(row["Ratio"] - 1.0) < 0.1
    assert row["metaD"] == pytest.approx(row["Ratio"] * row["dprime"])


def test_both_variants_pool_conditions(ideal_observer_trials):
    trials = ideal_observer_trials.copy()
    trials["condition"] = np.resize(["a", "b"], len(trials))
    result = fit_meta_dprime(trials, ["ML", "F"], n_inits=1, n_restarts=1)

    assert result["model"].tolist() == ["ML", "F"]
    assert (result["participant"] == "ideal").all()
    assert np.isfinite(result["Ratio"]).all()
    assert result["dprime"].nunique() == 1


def test_unknown_variant_is_rejected(ideal_observer_trials):
    with pytest.raises(ValueError, match="either 'ML' or 'F'"):
        fit_meta_dprime(ideal_observer_trials, "H")


def test_type1_parameters_use_padded_rates(ideal_observer_trials):
    table = build_count_table(
        prepare_confidence_data(ideal_observer_trials), "ideal", pool_conditions=True
    )
    padded = type1_parameters(table)
    raw = type1_parameters(table, adjustment=0.0)
    assert 0.0 < padded["false_alarm_rate"] < padded["hit_rate"] < 1.0
    assert padded["dprime"] < raw["dprime"]


def test_meta_parameters_round_trip():
    theta_minus = np.array([-0.1, -0.6])
    theta_plus = np.array([0.5, 1.2])
    for variant in ("ML", "F"):
        eta = meta_params_to_eta(0.8, theta_minus, theta_plus, variant=variant, c=0.2)
        params = meta_eta_to_params(eta, variant=variant, c=0.2)
        assert params["m"] == pytest.approx(0.8)
        np.testing.assert_allclose(params["theta_minus"], theta_minus)
        np.testing.assert_allclose(params["theta_plus"], theta_plus)

    assert truncation_point("ML", 0.8, 0.2) == pytest.approx(0.16)
    assert truncation_point("F", 0.8, 0.2) == pytest.approx(0.2)


def test_participant_fit_requires_pooled_table(small_trials):
    table = build_count_table(prepare_confidence_data(small_trials), "p1")
    with pytest.raises(ValueError, match="pooled conditions"):
        fit_meta_dprime_participant(table, "ML")
