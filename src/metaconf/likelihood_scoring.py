from __future__ import annotations

import numpy as np

from .confidence_models import (
    DEFAULT_QUADRATURE_NODES,
    count_neg_log_likelihood,
    get_confidence_model,
)
from .constants import EPSILON
from .count_tables import CountTable


def score_count_table(
    count_table: CountTable,
    *,
    model_name: str,
    theta: np.ndarray,
    eps: float = EPSILON,
    n_quadrature_nodes: int = DEFAULT_QUADRATURE_NODES,
) -> dict[str, object]:
    """Score a participant's count table at natural parameters.

    Returns the total negative log-likelihood plus its split over response
    sides, which is handy when checking where a model misfits.
    """
    if eps <= 0:
        raise ValueError("eps must be > 0")

    model = get_confidence_model(model_name)
    probabilities = model.predict(
        np.asarray(theta, dtype=float),
        count_table.n_conditions,
        count_table.n_ratings,
        n_nodes=int(n_quadrature_nodes),
    )
    counts = np.asarray(count_table.counts, dtype=float)

    return {
        "model_name": str(model_name),
        "participant": count_table.participant,
        "neg_log_likelihood": count_neg_log_likelihood(probabilities, counts, eps=eps),
        "neg_log_likelihood_response_minus": count_neg_log_likelihood(
            probabilities[:, :, 0], counts[:, :, 0], eps=eps
        ),
        "neg_log_likelihood_response_plus": count_neg_log_likelihood(
            probabilities[:, :, 1], counts[:, :, 1], eps=eps
        ),
        "n_trials": count_table.n_trials,
    }


def score_eta_candidate(
    count_table: CountTable,
    *,
    model_name: str,
    eta: np.ndarray,
    eps: float = EPSILON,
    n_quadrature_nodes: int = DEFAULT_QUADRATURE_NODES,
) -> float:
    """Objective used during fitting: negative log-likelihood at unconstrained `eta`."""
    return get_confidence_model(model_name).neg_log_likelihood(
        eta,
        count_table.counts,
        eps=float(eps),
        n_nodes=int(n_quadrature_nodes),
    )
