"""Public API for confidence model fitting."""

from .confidence_models import get_confidence_model, list_confidence_models, predict_frame
from .count_tables import build_count_table, build_count_tables
from .data_loading import load_confidence_data
from .data_validation import prepare_confidence_data
from .evaluation import aic, aicc, bic, information_criteria
from .grid_search import GridSearchError
from .likelihood_scoring import score_count_table
from .meta_dprime import fit_meta_dprime, fit_meta_dprime_participant
from .optimizer_runner import fit_model_parameters
from .orchestration import build_fit_pipeline_config, fit_conf_models, run_all_models_for_participant
from .parameter_space import (
    eta_to_theta,
    get_parameter_names,
    get_parameter_spec,
    theta_to_eta,
    theta_to_named_params,
)
from .run_pipelines import (
    list_fit_runs,
    load_fit_run,
    load_meta_dprime_run,
    run_fit_pipeline,
    run_meta_dprime_pipeline,
)
from .simulation import expected_confidence_data, simulate_confidence_data
from .winner_rules import apply_winner_rules

__all__ = [
    "load_confidence_data",
    "prepare_confidence_data",
    "build_count_table",
    "build_count_tables",
    "get_confidence_model",
    "list_confidence_models",
    "predict_frame",
    "score_count_table",
    "fit_model_parameters",
    "GridSearchError",
    "build_fit_pipeline_config",
    "fit_conf_models",
    "run_all_models_for_participant",
    "fit_meta_dprime",
    "fit_meta_dprime_participant",
    "aic",
    "bic",
    "aicc",
    "information_criteria",
    "apply_winner_rules",
    "simulate_confidence_data",
    "expected_confidence_data",
    "run_fit_pipeline",
    "run_meta_dprime_pipeline",
    "load_fit_run",
    "list_fit_runs",
    "load_meta_dprime_run",
    "get_parameter_spec",
    "get_parameter_names",
    "eta_to_theta",
    "theta_to_eta",
    "theta_to_named_params",
]
