"""Catalog of generative models of decision confidence.

Every model shares the same type-1 stage: evidence ``x ~ N(S * d_k / 2, 1)``
for stimulus ``S`` in ``{-1, +1}`` and difficulty level ``k``, with response
``R = +1`` when ``x > c``. The models differ in how the confidence rating is
produced. Predicted cell probabilities are returned as arrays of shape
``(K, 2, 2, L)`` indexed by ``[condition, stimulus, response, rating]`` where
index 0 on the stimulus and response axes stands for ``-1``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

import numpy as np
import pandas as pd
from numpy.polynomial.legendre import leggauss
from scipy.stats import norm

from .constants import EPSILON, NON_FINITE_PENALTY, SUPPORTED_MODEL_NAMES
from .parameter_space import (
    _MODEL_LAYOUTS,
    _validate_model_name,
    count_parameters,
    criteria_anchor,
    eta_to_theta,
    get_parameter_names,
    split_theta,
    theta_to_eta,
    theta_to_named_params,
)


_STIMULUS_SIGNS = np.array([-1.0, 1.0])
DEFAULT_QUADRATURE_NODES = 64


def _plus_edges(theta_plus: np.ndarray, inner: float) -> np.ndarray:
    return np.concatenate(([float(inner)], np.asarray(theta_plus, dtype=float), [np.inf]))


def _minus_edges(theta_minus: np.ndarray, inner: float) -> np.ndarray:
    return np.concatenate(([float(inner)], np.asarray(theta_minus, dtype=float), [-np.inf]))


def _interval_probs_plus(edges: np.ndarray, mean: np.ndarray, scale: float = 1.0) -> np.ndarray:
    """P(edges[r-1] < y < edges[r]) for y ~ N(mean, scale); rating axis appended last."""
    z = (edges - mean[..., None]) / float(scale)
    return norm.sf(z[..., :-1]) - norm.sf(z[..., 1:])


def _interval_probs_minus(edges: np.ndarray, mean: np.ndarray, scale: float = 1.0) -> np.ndarray:
    """P(edges[r] < y < edges[r-1]) for y ~ N(mean, scale) with descending edges."""
    z = (edges - mean[..., None]) / float(scale)
    return norm.cdf(z[..., :-1]) - norm.cdf(z[..., 1:])


def _stack_responses(p_minus: np.ndarray, p_plus: np.ndarray) -> np.ndarray:
    return np.stack((p_minus, p_plus), axis=2)


def _evidence_means(d: np.ndarray) -> np.ndarray:
    return _STIMULUS_SIGNS[None, :] * np.asarray(d, dtype=float)[:, None] / 2.0


def _evidence_quadrature(
    mu: np.ndarray,
    c: float,
    n_nodes: int,
) -> dict[str, tuple[np.ndarray, np.ndarray]]:
    """Quadrature nodes over the evidence on each side of the type-1 criterion.

    Nodes are placed in probability space so that weights already include the
    evidence density: summing ``weight * g(x)`` over nodes approximates
    ``integral over the response region of phi(x - mu) g(x) dx``.
    """
    t, w = leggauss(int(n_nodes))
    unit = (t + 1.0) / 2.0

    mass_plus = norm.sf(c - mu)
    v_plus = mass_plus[..., None] * unit
    x_plus = mu[..., None] + norm.isf(v_plus)

    mass_minus = norm.cdf(c - mu)
    v_minus = mass_minus[..., None] * unit
    x_minus = mu[..., None] + norm.ppf(v_minus)

    return {
        "plus": (x_plus, mass_plus[..., None] * w / 2.0),
        "minus": (x_minus, mass_minus[..., None] * w / 2.0),
    }


def _integrate(weights: np.ndarray, conditional: np.ndarray) -> np.ndarray:
    # Nodes pushed to +-inf by an empty response region carry zero weight.
    return np.einsum("ksn,ksnr->ksr", weights, np.nan_to_num(conditional, nan=0.0))


def _sdt_probabilities(parts: dict[str, object], n_nodes: int) -> np.ndarray:
    mu = _evidence_means(parts["d"])
    c = float(parts["c"])
    p_plus = _interval_probs_plus(_plus_edges(parts["theta_plus"], c), mu)
    p_minus = _interval_probs_minus(_minus_edges(parts["theta_minus"], c), mu)
    return _stack_responses(p_minus, p_plus)


def _noisy_readout_probabilities(
    parts: dict[str, object],
    n_nodes: int,
    *,
    readout: Callable[[np.ndarray, float, np.ndarray], tuple[np.ndarray, float]],
) -> np.ndarray:
    """Confidence from a Gaussian readout y | x ~ N(mean(x), sd) compared with criteria."""
    d = np.asarray(parts["d"], dtype=float)
    mu = _evidence_means(d)
    c = float(parts["c"])
    nodes = _evidence_quadrature(mu, c, n_nodes)
    plus_edges = _plus_edges(parts["theta_plus"], -np.inf)
    minus_edges = _minus_edges(parts["theta_minus"], np.inf)

    x_plus, w_plus = nodes["plus"]
    mean_plus, sd_plus = readout(x_plus, 1.0, d)
    p_plus = _integrate(w_plus, _interval_probs_plus(plus_edges, mean_plus, sd_plus))

    x_minus, w_minus = nodes["minus"]
    mean_minus, sd_minus = readout(x_minus, -1.0, d)
    p_minus = _integrate(w_minus, _interval_probs_minus(minus_edges, mean_minus, sd_minus))
    return _stack_responses(p_minus, p_plus)


def _gn_probabilities(parts: dict[str, object], n_nodes: int) -> np.ndarray:
    sigma = float(parts["sigma"])
    return _noisy_readout_probabilities(
        parts,
        n_nodes,
        readout=lambda x, response, d: (x, sigma),
    )


def _wev_probabilities(parts: dict[str, object], n_nodes: int) -> np.ndarray:
    sigma = float(parts["sigma"])
    w = float(parts["w"])
    return _noisy_readout_probabilities(
        parts,
        n_nodes,
        readout=lambda x, response, d: (
            (1.0 - w) * x + w * response * d[:, None, None],
            sigma,
        ),
    )


def _pda_probabilities(parts: dict[str, object], n_nodes: int) -> np.ndarray:
    b = float(parts["b"])
    return _noisy_readout_probabilities(
        parts,
        n_nodes,
        readout=lambda x, response, d: (
            x + _STIMULUS_SIGNS[None, :, None] * b * d[:, None, None] / 2.0,
            float(np.sqrt(b)),
        ),
    )


def _rating_from_exceedance(exceed: np.ndarray) -> np.ndarray:
    """Turn P(rating >= j + 1), j = 1..L-1, into per-rating probabilities."""
    ones = np.ones(exceed.shape[:-1] + (1,))
    zeros = np.zeros(exceed.shape[:-1] + (1,))
    at_least = np.concatenate((ones, exceed, zeros), axis=-1)
    return at_least[..., :-1] - at_least[..., 1:]


def _lognormal_probabilities(
    parts: dict[str, object],
    n_nodes: int,
    *,
    log_confidence: Callable[[np.ndarray, np.ndarray], np.ndarray],
) -> np.ndarray:
    """Confidence from comparing a lognormal-noise quantity with criterion distances."""
    d = np.asarray(parts["d"], dtype=float)
    mu = _evidence_means(d)
    c = float(parts["c"])
    sigma = float(parts["sigma"])
    nodes = _evidence_quadrature(mu, c, n_nodes)

    by_side: dict[str, np.ndarray] = {}
    for side, criteria in (
        ("plus", np.asarray(parts["theta_plus"], dtype=float) - c),
        ("minus", c - np.asarray(parts["theta_minus"], dtype=float)),
    ):
        x, weights = nodes[side]
        distance = np.maximum(np.abs(x - c), np.finfo(float).tiny)
        location = log_confidence(distance, d)
        exceed = norm.cdf((location[..., None] - np.log(criteria)) / sigma)
        by_side[side] = _integrate(weights, _rating_from_exceedance(exceed))
    return _stack_responses(by_side["minus"], by_side["plus"])


def _logn_probabilities(parts: dict[str, object], n_nodes: int) -> np.ndarray:
    sigma = float(parts["sigma"])
    return _lognormal_probabilities(
        parts,
        n_nodes,
        log_confidence=lambda distance, d: np.log(distance) + sigma**2 / 2.0,
    )


def _logwev_probabilities(parts: dict[str, object], n_nodes: int) -> np.ndarray:
    sigma = float(parts["sigma"])
    w = float(parts["w"])
    return _lognormal_probabilities(
        parts,
        n_nodes,
        log_confidence=lambda distance, d: (
            np.log((1.0 - w) * distance + w * d[:, None, None]) - sigma**2 / 2.0
        ),
    )


def independent_gaussian_probabilities(
    d: np.ndarray,
    c: float,
    m: float,
    theta_minus: np.ndarray,
    theta_plus: np.ndarray,
    *,
    truncation: float | None,
) -> np.ndarray:
    """Cell probabilities when confidence comes from a second, independent sample.

    The confidence sample is ``z ~ N(S * m * d_k / 2, 1)``. With a truncation
    point, `z` is restricted to the side of that point that matches the
    response; without one, each response side's criteria partition the line.
    """
    mu = _evidence_means(d)
    mu_z = m * mu
    p_response_plus = norm.sf(c - mu)
    p_response_minus = norm.cdf(c - mu)

    if truncation is None:
        conf_plus = _interval_probs_plus(_plus_edges(theta_plus, -np.inf), mu_z)
        conf_minus = _interval_probs_minus(_minus_edges(theta_minus, np.inf), mu_z)
    else:
        t = float(truncation)
        mass_plus = np.maximum(norm.sf(t - mu_z), np.finfo(float).tiny)
        mass_minus = np.maximum(norm.cdf(t - mu_z), np.finfo(float).tiny)
        conf_plus = _interval_probs_plus(_plus_edges(theta_plus, t), mu_z) / mass_plus[..., None]
        conf_minus = _interval_probs_minus(_minus_edges(theta_minus, t), mu_z) / mass_minus[..., None]

    return _stack_responses(
        p_response_minus[..., None] * conf_minus,
        p_response_plus[..., None] * conf_plus,
    )


def _ig_probabilities(parts: dict[str, object], n_nodes: int) -> np.ndarray:
    return independent_gaussian_probabilities(
        parts["d"], parts["c"], parts["m"], parts["theta_minus"], parts["theta_plus"],
        truncation=None,
    )


def _itgc_probabilities(parts: dict[str, object], n_nodes: int) -> np.ndarray:
    return independent_gaussian_probabilities(
        parts["d"], parts["c"], parts["m"], parts["theta_minus"], parts["theta_plus"],
        truncation=float(parts["c"]),
    )


def _itgcm_probabilities(parts: dict[str, object], n_nodes: int) -> np.ndarray:
    return independent_gaussian_probabilities(
        parts["d"], parts["c"], parts["m"], parts["theta_minus"], parts["theta_plus"],
        truncation=float(parts["m"]) * float(parts["c"]),
    )


def count_neg_log_likelihood(
    probabilities: np.ndarray,
    counts: np.ndarray,
    eps: float = EPSILON,
) -> float:
    """Multinomial negative log-likelihood with probabilities floored at `eps`."""
    floored = np.maximum(np.asarray(probabilities, dtype=float), float(eps))
    floored = np.where(np.isnan(floored), float(eps), floored)
    return float(-np.sum(np.asarray(counts, dtype=float) * np.log(floored)))


@dataclass(frozen=True)
class ConfidenceModel:
    """One entry of the model catalog.

    Instances are stateless; dimensions (K conditions, L rating levels) are
    passed with every call so the same object serves all participants.
    """

    name: str
    description: str
    probability_fn: Callable[[dict[str, object], int], np.ndarray] = field(repr=False)

    @property
    def extra_parameters(self) -> tuple[str, ...]:
        return tuple(_MODEL_LAYOUTS[self.name]["extras"])

    def parameter_names(self, n_conditions: int, n_ratings: int) -> list[str]:
        return get_parameter_names(self.name, n_conditions, n_ratings)

    def n_parameters(self, n_conditions: int, n_ratings: int) -> int:
        return count_parameters(self.name, n_conditions, n_ratings)

    def theta_to_eta(self, theta: np.ndarray, n_conditions: int, n_ratings: int) -> np.ndarray:
        return theta_to_eta(self.name, theta, n_conditions, n_ratings)

    def eta_to_theta(self, eta: np.ndarray, n_conditions: int, n_ratings: int) -> np.ndarray:
        return eta_to_theta(self.name, eta, n_conditions, n_ratings)

    def named_params(self, theta: np.ndarray, n_conditions: int, n_ratings: int) -> dict[str, float]:
        return theta_to_named_params(self.name, theta, n_conditions, n_ratings)

    def criteria_anchor(self, parts: dict[str, object]) -> float | None:
        return criteria_anchor(self.name, parts)

    def predict(
        self,
        theta: np.ndarray,
        n_conditions: int,
        n_ratings: int,
        n_nodes: int = DEFAULT_QUADRATURE_NODES,
    ) -> np.ndarray:
        """Predicted (K, 2, 2, L) cell probabilities at natural parameters."""
        parts = split_theta(self.name, theta, n_conditions, n_ratings)
        return self.probability_fn(parts, int(n_nodes))

    def neg_log_likelihood(
        self,
        eta: np.ndarray,
        counts: np.ndarray,
        *,
        eps: float = EPSILON,
        n_nodes: int = DEFAULT_QUADRATURE_NODES,
    ) -> float:
        """Negative log-likelihood of a count array at unconstrained parameters.

        Non-finite results are replaced with a large finite penalty so that
        optimizers never see NaN or infinity.
        """
        eta_vector = np.asarray(eta, dtype=float)
        if not np.isfinite(eta_vector).all():
            return NON_FINITE_PENALTY
        n_conditions, _, _, n_ratings = np.shape(counts)
        theta = self.eta_to_theta(eta_vector, n_conditions, n_ratings)
        with np.errstate(all="ignore"):
            value = count_neg_log_likelihood(
                self.predict(theta, n_conditions, n_ratings, n_nodes=n_nodes),
                counts,
                eps=eps,
            )
        if not np.isfinite(value):
            return NON_FINITE_PENALTY
        return value


_MODEL_REGISTRY: dict[str, ConfidenceModel] = {
    model.name: model
    for model in (
        ConfidenceModel("SDT", "Signal detection rating model", _sdt_probabilities),
        ConfidenceModel("GN", "Gaussian noise model", _gn_probabilities),
        ConfidenceModel("WEV", "Weighted evidence and visibility model", _wev_probabilities),
        ConfidenceModel("PDA", "Post-decisional accumulation model", _pda_probabilities),
        ConfidenceModel("IG", "Independent Gaussian model", _ig_probabilities),
        ConfidenceModel(
            "ITGc", "Independent truncated Gaussian model (truncation at c)", _itgc_probabilities
        ),
        ConfidenceModel(
            "ITGcm",
            "Independent truncated Gaussian model (truncation at m * c)",
            _itgcm_probabilities,
        ),
        ConfidenceModel("logN", "Lognormal noise model", _logn_probabilities),
        ConfidenceModel(
            "logWEV", "Lognormal weighted evidence and visibility model", _logwev_probabilities
        ),
    )
}


def get_confidence_model(model_name: str) -> ConfidenceModel:
    """Return the catalog entry for `model_name`."""
    return _MODEL_REGISTRY[_validate_model_name(model_name)]


def list_confidence_models() -> list[ConfidenceModel]:
    return [_MODEL_REGISTRY[model_name] for model_name in SUPPORTED_MODEL_NAMES]


def predict_cell_probabilities(
    model_name: str,
    named_params: dict[str, float],
    n_conditions: int,
    n_ratings: int,
) -> np.ndarray:
    """Standalone prediction from named natural parameters, e.g. a fit result row."""
    model = get_confidence_model(model_name)
    names = model.parameter_names(n_conditions, n_ratings)
    theta = np.asarray([float(named_params[name]) for name in names], dtype=float)
    return model.predict(theta, n_conditions, n_ratings)


def predict_frame(
    model_name: str,
    named_params: dict[str, float],
    *,
    condition_levels: list[object],
    stimulus_levels: list[object],
    rating_levels: list[object],
) -> pd.DataFrame:
    """Long-format predicted probabilities for plotting against observed data.

    Probabilities are conditional on condition and stimulus, i.e. they sum to
    one within each (condition, stimulus) pair.
    """
    if len(stimulus_levels) != 2:
        raise ValueError("stimulus_levels must contain exactly two levels.")
    probs = predict_cell_probabilities(
        model_name, named_params, len(condition_levels), len(rating_levels)
    )

    rows: list[dict[str, object]] = []
    for k_idx, condition in enumerate(condition_levels):
        for s_idx, stimulus in enumerate(stimulus_levels):
            for r_idx, response in enumerate((-1, 1)):
                for rating_idx, rating in enumerate(rating_levels):
                    rows.append(
                        {
                            "model": str(model_name),
                            "condition": condition,
                            "stimulus": stimulus,
                            "response_code": int(response),
                            "correct": int(response == int(_STIMULUS_SIGNS[s_idx])),
                            "rating": rating,
                            "p": float(probs[k_idx, s_idx, r_idx, rating_idx]),
                        }
                    )
    return pd.DataFrame(rows)
