from __future__ import annotations

import math


def aic(nll: float, k: int) -> float:
    return 2 * k + 2 * nll


def bic(nll: float, k: int, n: int) -> float:
    return math.log(n) * k + 2 * nll


def aicc(nll: float, k: int, n: int) -> float:
    """Small-sample corrected AIC; infinite when n <= k + 1."""
    if n - k - 1 <= 0:
        return math.inf
    return aic(nll, k) + 2 * k * (k + 1) / (n - k - 1)


def information_criteria(nll: float, k: int, n: int) -> dict[str, float]:
    return {
        "BIC": bic(nll, k, n),
        "AICc": aicc(nll, k, n),
        "AIC": aic(nll, k),
    }
