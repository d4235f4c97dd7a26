"""Statistics helpers shared by the scoring, trend and correlation stages."""

from __future__ import annotations

import statistics
from typing import Iterable, Sequence

import numpy as np


class EmptyInputError(ValueError):
    """Raised when a statistic is requested over no values."""


class DegenerateRegressionError(ValueError):
    """Raised when a regression has no unique solution (all x identical)."""


def mean(xs: Sequence[float]) -> float:
    """Arithmetic mean. Callers must guard against empty input."""
    if not xs:
        raise EmptyInputError("mean() of an empty sequence")
    return float(statistics.mean(xs))


def weighted_mean(pairs: Iterable[tuple[float, float]]) -> float:
    """Weighted mean over ``(value, weight)`` pairs.

    Dividing by the sum of the present weights is what redistributes the
    weight of absent components over the present ones.
    """
    pairs = list(pairs)
    if not pairs:
        raise EmptyInputError("weighted_mean() of an empty sequence")
    values = [v for v, _ in pairs]
    weights = [w for _, w in pairs]
    if sum(weights) == 0:
        raise EmptyInputError("weighted_mean() with zero total weight")
    return float(np.average(values, weights=weights))


def pearson(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson correlation coefficient in [-1, 1].

    Returns 0.0 when either series has zero variance.

    Raises:
        ValueError: If the series differ in length or have fewer than 2 points.
    """
    if len(xs) != len(ys):
        raise ValueError(f"pearson() needs equal lengths, got {len(xs)} and {len(ys)}")
    if len(xs) < 2:
        raise ValueError("pearson() needs at least 2 points")

    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)
    # corrcoef is nan for a constant series
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return 0.0
    r = float(np.corrcoef(x, y)[0, 1])
    if np.isnan(r):
        return 0.0
    return max(-1.0, min(1.0, r))


def linear_regression(xs: Sequence[float], ys: Sequence[float]) -> tuple[float, float]:
    """Closed-form ordinary least squares fit of ``y = slope * x + intercept``.

    Returns:
        ``(slope, intercept)``

    Raises:
        EmptyInputError: If there are no points.
        DegenerateRegressionError: If every x is identical.
    """
    if len(xs) != len(ys):
        raise ValueError(f"linear_regression() needs equal lengths, got {len(xs)} and {len(ys)}")
    if not xs:
        raise EmptyInputError("linear_regression() of an empty sequence")
    if len(set(xs)) == 1:
        raise DegenerateRegressionError("all x values are identical")

    try:
        fit = statistics.linear_regression(
            [float(x) for x in xs], [float(y) for y in ys]
        )
    except statistics.StatisticsError as exc:
        raise DegenerateRegressionError(str(exc)) from exc
    return fit.slope, fit.intercept


def clamp_score(value: float) -> int:
    """Truncate to int and clamp to the [0, 100] score range."""
    return max(0, min(100, int(value)))
