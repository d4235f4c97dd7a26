"""Pluggable regression models used by the trend and correlation stages.

The analyzers only depend on two small interfaces:

* ``Regressor.fit(features, targets) -> FittedModel`` and
  ``Regressor.load(artifact) -> FittedModel``
* ``FittedModel.predict(row) -> float`` and ``FittedModel.to_artifact() -> dict``

Artifacts are plain JSON-serializable dicts so the cache store can persist
trained models next to the cached results they produced.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class ModelFitError(Exception):
    """Raised when a model cannot be trained or restored."""


class FittedModel(Protocol):
    def predict(self, row: Sequence[float]) -> float: ...

    def to_artifact(self) -> dict[str, Any]: ...


class Regressor(Protocol):
    name: str

    def fit(
        self, features: Sequence[Sequence[float]], targets: Sequence[float]
    ) -> FittedModel: ...

    def load(self, artifact: dict[str, Any]) -> FittedModel: ...


@dataclass(frozen=True)
class LinearModel:
    """``y = intercept + sum(coefficients[i] * row[i])``."""

    coefficients: tuple[float, ...]
    intercept: float

    def predict(self, row: Sequence[float]) -> float:
        if len(row) != len(self.coefficients):
            raise ModelFitError(
                f"Expected {len(self.coefficients)} features, got {len(row)}"
            )
        return self.intercept + sum(c * x for c, x in zip(self.coefficients, row))

    def to_artifact(self) -> dict[str, Any]:
        return {
            "kind": "linear",
            "coefficients": list(self.coefficients),
            "intercept": self.intercept,
        }


class LeastSquaresRegressor:
    """Multivariate ordinary least squares via ``numpy.linalg.lstsq``.

    Rank-deficient designs (e.g. a feature column that is constant because
    every row fell back to its default) get the minimum-norm solution rather
    than an error.
    """

    name = "least_squares"

    def fit(
        self, features: Sequence[Sequence[float]], targets: Sequence[float]
    ) -> LinearModel:
        if len(features) == 0:
            raise ModelFitError("No training rows")
        if len(features) != len(targets):
            raise ModelFitError(
                f"Feature/target length mismatch: {len(features)} vs {len(targets)}"
            )

        try:
            x = np.asarray(features, dtype=float)
            y = np.asarray(targets, dtype=float)
        except (TypeError, ValueError) as exc:
            raise ModelFitError(f"Non-numeric training data: {exc}") from exc

        if x.ndim != 2:
            raise ModelFitError("Features must be a 2-D table")
        if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
            raise ModelFitError("Training data contains NaN or infinite values")

        design = np.column_stack([x, np.ones(len(x))])
        try:
            beta, _, rank, _ = np.linalg.lstsq(design, y, rcond=None)
        except np.linalg.LinAlgError as exc:
            raise ModelFitError(f"Least squares did not converge: {exc}") from exc

        if not np.all(np.isfinite(beta)):
            raise ModelFitError("Least squares produced non-finite coefficients")

        logger.debug(
            "Fitted least squares model: %d rows, %d features, rank %d",
            x.shape[0], x.shape[1], rank,
        )
        return LinearModel(
            coefficients=tuple(float(b) for b in beta[:-1]),
            intercept=float(beta[-1]),
        )

    def load(self, artifact: dict[str, Any]) -> LinearModel:
        try:
            if artifact["kind"] != "linear":
                raise ModelFitError(f"Unsupported artifact kind: {artifact['kind']!r}")
            coefficients = tuple(float(c) for c in artifact["coefficients"])
            intercept = float(artifact["intercept"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ModelFitError(f"Malformed model artifact: {exc}") from exc

        if not all(math.isfinite(v) for v in (*coefficients, intercept)):
            raise ModelFitError("Model artifact contains non-finite values")
        return LinearModel(coefficients=coefficients, intercept=intercept)
