from __future__ import annotations

import numpy as np
import pytest
from scipy.stats import norm

from metaconf.confidence_models import (
    get_confidence_model,
    list_confidence_models,
    predict_cell_probabilities,
    predict_frame,
)
from metaconf.constants import NON_FINITE_PENALTY, SUPPORTED_MODEL_NAMES


@pytest.mark.parametrize("model_name", SUPPORTED_MODEL_NAMES)
def test_predicted_probabilities_sum_to_one(model_name, make_params):
    probs = predict_cell_probabilities(model_name, make_params(model_name, 2, 4), 2, 4)

    assert probs.shape == (2, 2, 2, 4)
    assert np.all(probs >= -1e-12)
    np.testing.assert_allclose(probs.sum(axis=(2, 3)), 1.0, atol=1e-8)


@pytest.mark.parametrize("model_name", SUPPORTED_MODEL_NAMES)
def test_type1_response_rates_match_signal_detection(model_name, make_params):
    params = make_params(model_name, 1, 3)
    probs = predict_cell_probabilities(model_name, params, 1, 3)

    d, c = params["d_1"], params["c"]
    expected_plus = norm.sf(c - np.array([-d / 2.0, d / 2.0]))
    np.testing.assert_allclose(probs[0, :, 1, :].sum(axis=-1), expected_plus, atol=1e-8)


def test_sdt_rating_probabilities_are_normal_intervals(sdt_params):
    probs = predict_cell_probabilities("SDT", sdt_params, 1, 4)
    mean = 0.75
    expected = [
        norm.cdf(0.5 - mean) - norm.cdf(0.0 - mean),
        norm.cdf(1.0 - mean) - norm.cdf(0.5 - mean),
        norm.cdf(1.5 - mean) - norm.cdf(1.0 - mean),
        norm.sf(1.5 - mean),
    ]
    np.testing.assert_allclose(probs[0, 1, 1], expected, atol=1e-12)


def test_more_readout_noise_flattens_gn_ratings(sdt_params):
    low = predict_cell_probabilities("GN", {**sdt_params, "sigma": 0.5}, 1, 4)
    high = predict_cell_probabilities("GN", {**sdt_params, "sigma": 3.0}, 1, 4)
    # errors rated with top confidence
    assert high[0, 1, 0, 3] > 2.0 * low[0, 1, 0, 3]


def test_itgcm_with_unit_m_matches_sdt(sdt_params):
    itg_params = {**sdt_params, "m": 1.0}
    np.testing.assert_allclose(
        predict_cell_probabilities("ITGcm", itg_params, 1, 4),
        predict_cell_probabilities("SDT", sdt_params, 1, 4),
        atol=1e-10,
    )


def test_catalog_lists_every_model_once():
    models = list_confidence_models()
    assert [model.name for model in models] == list(SUPPORTED_MODEL_NAMES)
    assert get_confidence_model("WEV").extra_parameters == ("sigma", "w")
    with pytest.raises(ValueError, match="Unsupported model_name"):
        get_confidence_model("RCE")


def test_neg_log_likelihood_penalizes_non_finite_eta():
    model = get_confidence_model("SDT")
    counts = np.ones((1, 2, 2, 3))
    eta = np.zeros(model.n_parameters(1, 3))
    assert np.isfinite(model.neg_log_likelihood(eta, counts))

    eta[0] = np.nan
    assert model.neg_log_likelihood(eta, counts) == NON_FINITE_PENALTY


def test_predict_frame_is_conditional_on_condition_and_stimulus(make_params):
    frame = predict_frame(
        "logWEV",
        make_params("logWEV", 2, 3),
        condition_levels=["hard", "easy"],
        stimulus_levels=["left", "right"],
        rating_levels=[1, 2, 3],
    )
    assert len(frame) == 2 * 2 * 2 * 3
    sums = frame.groupby(["condition", "stimulus"])["p"].sum()
    np.testing.assert_allclose(sums.to_numpy(), 1.0, atol=1e-8)
    assert set(frame.loc[frame["correct"] == 1, "response_code"].unique()) == {-1, 1}
