from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from metaconf.parameter_space import get_parameter_names


_EXTRA_VALUES = {"sigma": 1.3, "w": 0.4, "b": 0.8, "m": 1.2}


def natural_params(model_name: str, n_conditions: int = 1, n_ratings: int = 4) -> dict[str, float]:
    """Valid natural parameters for any catalog model."""
    c = 0.2
    m = _EXTRA_VALUES["m"]
    anchor = m * c if model_name == "ITGcm" else c
    steps = 0.5 * np.arange(1, n_ratings)

    params: dict[str, float] = {}
    for name in get_parameter_names(model_name, n_conditions, n_ratings):
        if name.startswith("d_"):
            params[name] = 1.0 * int(name.split("_")[1])
        elif name == "c":
            params[name] = c
        elif name.startswith("theta_minus."):
            params[name] = float(anchor - steps[int(name.split(".")[1]) - 1])
        elif name.startswith("theta_plus."):
            params[name] = float(anchor + steps[int(name.split(".")[1]) - 1])
        else:
            params[name] = _EXTRA_VALUES[name]
    return params


@pytest.fixture
def make_params():
    return natural_params


@pytest.fixture
def sdt_params() -> dict[str, float]:
    return {
        "d_1": 1.5,
        "c": 0.0,
        "theta_minus.1": -0.5,
        "theta_minus.2": -1.0,
        "theta_minus.3": -1.5,
        "theta_plus.1": 0.5,
        "theta_plus.2": 1.0,
        "theta_plus.3": 1.5,
    }


@pytest.fixture
def small_trials() -> pd.DataFrame:
    """Two participants, two conditions, three rating levels, categorical columns."""
    rng = np.random.default_rng(7)
    n = 240
    participants = np.repeat(["p2", "p1"], n // 2)
    stimulus = rng.choice([-1, 1], size=n)
    correct = (rng.random(n) < 0.75).astype(int)
    correct[:2] = [0, 1]
    correct[n // 2 : n // 2 + 2] = [0, 1]
    return pd.DataFrame(
        {
            "participant": participants,
            "condition": pd.Categorical(rng.choice(["easy", "hard"], size=n), categories=["hard", "easy"]),
            "stimulus": pd.Categorical(stimulus, categories=[-1, 1]),
            "correct": correct,
            "rating": pd.Categorical(rng.choice([1, 2, 3], size=n), categories=[1, 2, 3]),
        }
    )
