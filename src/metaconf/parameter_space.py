from __future__ import annotations

from typing import Iterable

import numpy as np

from .constants import SUPPORTED_MODEL_NAMES


_TRANSFORM_EPS = 1e-12
_EXP_CLIP = 50.0

# Extra parameters appended after d, c, and the confidence criteria.
_MODEL_LAYOUTS: dict[str, dict[str, object]] = {
    "SDT": {"extras": (), "anchor": "c"},
    "GN": {"extras": ("sigma",), "anchor": "c"},
    "WEV": {"extras": ("sigma", "w"), "anchor": "c"},
    "PDA": {"extras": ("b",), "anchor": "c"},
    "IG": {"extras": ("m",), "anchor": "free"},
    "ITGc": {"extras": ("m",), "anchor": "c"},
    "ITGcm": {"extras": ("m",), "anchor": "mc"},
    "logN": {"extras": ("sigma",), "anchor": "c"},
    "logWEV": {"extras": ("sigma", "w"), "anchor": "c"},
}

_EXTRA_TRANSFORMS: dict[str, str] = {
    "sigma": "log",
    "w": "logit",
    "b": "log",
    "m": "log",
}


def _validate_model_name(model_name: str) -> str:
    model_name_str = str(model_name)
    if model_name_str not in SUPPORTED_MODEL_NAMES:
        raise ValueError(
            f"Unsupported model_name '{model_name_str}'. "
            f"Supported models: {list(SUPPORTED_MODEL_NAMES)}"
        )
    return model_name_str


def _validate_dimensions(n_conditions: int, n_ratings: int) -> tuple[int, int]:
    if int(n_conditions) < 1:
        raise ValueError(f"n_conditions must be >= 1, got {n_conditions}.")
    if int(n_ratings) < 2:
        raise ValueError(f"n_ratings must be >= 2, got {n_ratings}.")
    return int(n_conditions), int(n_ratings)


def _as_1d_float_vector(values: np.ndarray | Iterable[float], *, name: str) -> np.ndarray:
    vector = np.asarray(values, dtype=float)
    if vector.ndim != 1:
        raise ValueError(f"{name} must be a one-dimensional vector; found shape {vector.shape}.")
    if not np.isfinite(vector).all():
        raise ValueError(f"{name} contains non-finite values.")
    return vector


def _sigmoid_stable(x: np.ndarray) -> np.ndarray:
    clipped = np.clip(x, -60.0, 60.0)
    return 1.0 / (1.0 + np.exp(-clipped))


def _logit_stable(p: np.ndarray, eps: float = _TRANSFORM_EPS) -> np.ndarray:
    clipped = np.clip(p, eps, 1.0 - eps)
    return np.log(clipped / (1.0 - clipped))


def _exp_stable(x: np.ndarray) -> np.ndarray:
    return np.exp(np.clip(x, -_EXP_CLIP, _EXP_CLIP))


def _increments_to_eta(values: np.ndarray, *, start: float, name: str) -> np.ndarray:
    """Log-increments of a strictly increasing sequence measured from `start`."""
    steps = np.diff(np.concatenate(([float(start)], values)))
    if not bool(np.all(steps > 0.0)):
        raise ValueError(f"{name} must be strictly increasing from {start}.")
    return np.log(steps)


def ordered_positive_to_eta(values: np.ndarray, *, name: str = "d") -> np.ndarray:
    """Map a positive increasing sequence to log-increments."""
    return _increments_to_eta(np.asarray(values, dtype=float), start=0.0, name=name)


def eta_to_ordered_positive(eta: np.ndarray) -> np.ndarray:
    """Map log-increments to a positive increasing sequence."""
    return np.cumsum(_exp_stable(np.asarray(eta, dtype=float)))


def criteria_to_eta(
    theta_minus: np.ndarray,
    theta_plus: np.ndarray,
    *,
    anchor: float | None,
) -> np.ndarray:
    """Map confidence criteria to an unconstrained vector.

    With an anchor, `theta_plus` must rise from it and `theta_minus` must fall
    from it. Without one, the first criterion on each side is kept as-is and
    the remaining ones are stored as log-increments.
    """
    theta_minus = np.asarray(theta_minus, dtype=float)
    theta_plus = np.asarray(theta_plus, dtype=float)
    if anchor is None:
        eta_minus = np.concatenate(
            (
                theta_minus[:1],
                _increments_to_eta(-theta_minus[1:], start=-theta_minus[0], name="theta_minus"),
            )
        )
        eta_plus = np.concatenate(
            (
                theta_plus[:1],
                _increments_to_eta(theta_plus[1:], start=theta_plus[0], name="theta_plus"),
            )
        )
    else:
        eta_minus = _increments_to_eta(-theta_minus, start=-float(anchor), name="theta_minus")
        eta_plus = _increments_to_eta(theta_plus, start=float(anchor), name="theta_plus")
    return np.concatenate((eta_minus, eta_plus))


def eta_to_criteria(
    eta: np.ndarray,
    *,
    anchor: float | None,
) -> tuple[np.ndarray, np.ndarray]:
    """Inverse of `criteria_to_eta`; returns `(theta_minus, theta_plus)`."""
    eta = np.asarray(eta, dtype=float)
    n_side = eta.size // 2
    eta_minus, eta_plus = eta[:n_side], eta[n_side:]
    if anchor is None:
        theta_minus = eta_minus[0] - np.concatenate(([0.0], np.cumsum(_exp_stable(eta_minus[1:]))))
        theta_plus = eta_plus[0] + np.concatenate(([0.0], np.cumsum(_exp_stable(eta_plus[1:]))))
    else:
        theta_minus = float(anchor) - np.cumsum(_exp_stable(eta_minus))
        theta_plus = float(anchor) + np.cumsum(_exp_stable(eta_plus))
    return theta_minus, theta_plus


def get_parameter_spec(
    model_name: str,
    n_conditions: int,
    n_ratings: int,
) -> list[dict[str, object]]:
    """Return the ordered natural-space parameter specification for a model."""
    model_name_str = _validate_model_name(model_name)
    n_conditions, n_ratings = _validate_dimensions(n_conditions, n_ratings)
    layout = _MODEL_LAYOUTS[model_name_str]

    spec: list[dict[str, object]] = [
        {"name": f"d_{idx}", "group": "d", "transform": "ordered_positive"}
        for idx in range(1, n_conditions + 1)
    ]
    spec.append({"name": "c", "group": "c", "transform": "identity"})
    criterion_transform = "ordered_free" if layout["anchor"] == "free" else "ordered_from_anchor"
    spec.extend(
        {"name": f"theta_minus.{idx}", "group": "theta_minus", "transform": criterion_transform}
        for idx in range(1, n_ratings)
    )
    spec.extend(
        {"name": f"theta_plus.{idx}", "group": "theta_plus", "transform": criterion_transform}
        for idx in range(1, n_ratings)
    )
    spec.extend(
        {"name": extra, "group": extra, "transform": _EXTRA_TRANSFORMS[extra]}
        for extra in layout["extras"]
    )
    return spec


def get_parameter_names(model_name: str, n_conditions: int, n_ratings: int) -> list[str]:
    return [str(entry["name"]) for entry in get_parameter_spec(model_name, n_conditions, n_ratings)]


def count_parameters(model_name: str, n_conditions: int, n_ratings: int) -> int:
    """Free-parameter count k for a model at K conditions and L rating levels."""
    return len(get_parameter_spec(model_name, n_conditions, n_ratings))


def split_theta(
    model_name: str,
    theta: np.ndarray,
    n_conditions: int,
    n_ratings: int,
) -> dict[str, object]:
    """Split an ordered `theta` vector into d, c, criteria, and extras."""
    model_name_str = _validate_model_name(model_name)
    n_conditions, n_ratings = _validate_dimensions(n_conditions, n_ratings)
    theta_vector = np.asarray(theta, dtype=float)
    expected = count_parameters(model_name_str, n_conditions, n_ratings)
    if theta_vector.ndim != 1 or theta_vector.size != expected:
        raise ValueError(
            f"theta length mismatch for model '{model_name_str}': "
            f"expected {expected}, got {theta_vector.size}."
        )

    n_crit = n_ratings - 1
    pos = n_conditions
    parts: dict[str, object] = {
        "d": theta_vector[:pos].copy(),
        "c": float(theta_vector[pos]),
        "theta_minus": theta_vector[pos + 1 : pos + 1 + n_crit].copy(),
        "theta_plus": theta_vector[pos + 1 + n_crit : pos + 1 + 2 * n_crit].copy(),
    }
    pos = pos + 1 + 2 * n_crit
    for extra in _MODEL_LAYOUTS[model_name_str]["extras"]:
        parts[str(extra)] = float(theta_vector[pos])
        pos += 1
    return parts


def criteria_anchor(model_name: str, parts: dict[str, object]) -> float | None:
    """Return the point criteria are anchored to, or None for free criteria."""
    anchor_kind = _MODEL_LAYOUTS[_validate_model_name(model_name)]["anchor"]
    if anchor_kind == "free":
        return None
    if anchor_kind == "mc":
        return float(parts["m"]) * float(parts["c"])
    return float(parts["c"])


def theta_to_eta(
    model_name: str,
    theta: np.ndarray,
    n_conditions: int,
    n_ratings: int,
) -> np.ndarray:
    """Map natural `theta` to the unconstrained `eta` used by the optimizer."""
    model_name_str = _validate_model_name(model_name)
    theta_vector = _as_1d_float_vector(theta, name="theta")
    parts = split_theta(model_name_str, theta_vector, n_conditions, n_ratings)

    eta_parts = [
        ordered_positive_to_eta(parts["d"], name="d"),
        np.asarray([parts["c"]], dtype=float),
        criteria_to_eta(
            parts["theta_minus"],
            parts["theta_plus"],
            anchor=criteria_anchor(model_name_str, parts),
        ),
    ]
    for extra in _MODEL_LAYOUTS[model_name_str]["extras"]:
        value = float(parts[str(extra)])
        if _EXTRA_TRANSFORMS[str(extra)] == "logit":
            if not 0.0 < value < 1.0:
                raise ValueError(f"{extra} must lie in (0, 1), got {value}.")
            eta_parts.append(_logit_stable(np.asarray([value])))
        else:
            if value <= 0.0:
                raise ValueError(f"{extra} must be > 0, got {value}.")
            eta_parts.append(np.log(np.asarray([value])))
    return np.concatenate(eta_parts)


def eta_to_theta(
    model_name: str,
    eta: np.ndarray,
    n_conditions: int,
    n_ratings: int,
) -> np.ndarray:
    """Map unconstrained `eta` back to natural `theta` (ordered, positive, bounded)."""
    model_name_str = _validate_model_name(model_name)
    n_conditions, n_ratings = _validate_dimensions(n_conditions, n_ratings)
    eta_vector = _as_1d_float_vector(eta, name="eta")
    expected = count_parameters(model_name_str, n_conditions, n_ratings)
    if eta_vector.size != expected:
        raise ValueError(
            f"eta length mismatch for model '{model_name_str}': "
            f"expected {expected}, got {eta_vector.size}."
        )

    n_crit = n_ratings - 1
    d = eta_to_ordered_positive(eta_vector[:n_conditions])
    c = float(eta_vector[n_conditions])
    pos = n_conditions + 1 + 2 * n_crit
    criteria_eta = eta_vector[n_conditions + 1 : pos]

    extras: dict[str, float] = {}
    for extra in _MODEL_LAYOUTS[model_name_str]["extras"]:
        raw = eta_vector[pos : pos + 1]
        if _EXTRA_TRANSFORMS[str(extra)] == "logit":
            extras[str(extra)] = float(_sigmoid_stable(raw)[0])
        else:
            extras[str(extra)] = float(_exp_stable(raw)[0])
        pos += 1

    parts = {"c": c, **extras}
    theta_minus, theta_plus = eta_to_criteria(
        criteria_eta, anchor=criteria_anchor(model_name_str, parts)
    )
    return np.concatenate(
        (d, [c], theta_minus, theta_plus, np.asarray(list(extras.values()), dtype=float))
    )


def theta_to_named_params(
    model_name: str,
    theta: np.ndarray,
    n_conditions: int,
    n_ratings: int,
) -> dict[str, float]:
    """Convert ordered `theta` values to named scalar parameters."""
    theta_vector = _as_1d_float_vector(theta, name="theta")
    names = get_parameter_names(model_name, n_conditions, n_ratings)
    if theta_vector.size != len(names):
        raise ValueError(
            f"theta length mismatch for model '{model_name}': "
            f"expected {len(names)}, got {theta_vector.size}."
        )
    return {name: float(value) for name, value in zip(names, theta_vector, strict=True)}


def named_params_to_theta(
    model_name: str,
    named_params: dict[str, float],
    n_conditions: int,
    n_ratings: int,
) -> np.ndarray:
    """Assemble an ordered `theta` vector from named parameters."""
    names = get_parameter_names(model_name, n_conditions, n_ratings)
    missing = [name for name in names if name not in named_params]
    if missing:
        raise ValueError(f"Missing parameters for model '{model_name}': {missing}")
    return np.asarray([float(named_params[name]) for name in names], dtype=float)
