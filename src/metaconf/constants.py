from __future__ import annotations


EPSILON = 1e-10
NON_FINITE_PENALTY = 1e10

MIN_RECOMMENDED_TRIALS = 400

REQUIRED_INPUT_COLUMNS: tuple[str, ...] = (
    "participant",
    "stimulus",
    "correct",
    "rating",
)

CONDITION_COLUMN = "condition"

MODEL_READY_COLUMNS: tuple[str, ...] = (
    "participant",
    "stimulus",
    "correct",
    "rating",
    "condition",
    "stimulus_code",
    "response_code",
    "rating_index",
    "condition_index",
)

SUPPORTED_MODEL_NAMES: tuple[str, ...] = (
    "SDT",
    "GN",
    "WEV",
    "PDA",
    "IG",
    "ITGc",
    "ITGcm",
    "logN",
    "logWEV",
)

SUPPORTED_META_DPRIME_MODELS: tuple[str, ...] = ("ML", "F")

FIT_STATISTIC_COLUMNS: tuple[str, ...] = (
    "negLogLik",
    "N",
    "k",
    "BIC",
    "AICc",
    "AIC",
)

META_DPRIME_OUTPUT_COLUMNS: tuple[str, ...] = (
    "model",
    "participant",
    "dprime",
    "c",
    "metaD",
    "Ratio",
)
