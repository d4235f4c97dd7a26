"""Per-metric trend fitting with a 24-hour retrain cache.

For every metric with enough history, fits value vs. day offset, labels the
direction from the mean-normalized slope and extrapolates the line 7, 30 and
90 days past the latest reading. Results and model parameters are cached per
metric and reused until the retrain interval passes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from vitalcore.core.storage.cache import AnalysisCache, CacheError
from vitalcore.domains.health.domain_logic.models import (
    RETRAIN_INTERVAL_SECONDS,
    TREND_METRICS,
    HealthProjection,
    HealthReadings,
    TrendDirection,
    TrendResult,
)
from vitalcore.domains.health.domain_logic.regression import (
    FittedModel,
    LeastSquaresRegressor,
    LinearModel,
    ModelFitError,
    Regressor,
)
from vitalcore.domains.health.domain_logic.stats import (
    DegenerateRegressionError,
    linear_regression,
    mean,
)

logger = logging.getLogger(__name__)

MIN_POINTS = 5
MIN_SPAN_DAYS = 14
SLOPE_THRESHOLD = 0.005
PROJECTION_HORIZONS = {"one_week": 7, "one_month": 30, "three_months": 90}
RECENT_WINDOW = 7

_DISPLAY_NAMES = {
    "bp": "Blood pressure",
    "pulse": "Pulse",
    "glucose": "Glucose",
    "sleep": "Sleep duration",
    "weight": "Weight",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def day_offset(earliest: datetime, moment: datetime) -> int:
    """Whole days elapsed from ``earliest`` to ``moment``."""
    return int((moment - earliest).total_seconds() // 86400)


def meets_trend_gate(timestamps: Sequence[datetime]) -> bool:
    """At least ``MIN_POINTS`` samples spanning ``MIN_SPAN_DAYS`` days."""
    if len(timestamps) < MIN_POINTS:
        return False
    return day_offset(min(timestamps), max(timestamps)) >= MIN_SPAN_DAYS


def classify_slope(metric: str, normalized_slope: float) -> tuple[TrendDirection, str]:
    """Map a mean-normalized slope to a direction and message.

    Rising values are worsening for every metric. Falling values are improving
    except for sleep, where less sleep is worse.
    """
    display = _DISPLAY_NAMES.get(metric, metric)
    if normalized_slope > SLOPE_THRESHOLD:
        return TrendDirection.WORSENING, f"{display} is trending upward."
    if normalized_slope < -SLOPE_THRESHOLD:
        if metric == "sleep":
            return TrendDirection.WORSENING, f"{display} is trending downward."
        return TrendDirection.IMPROVING, f"{display} is trending downward."
    return TrendDirection.STABLE, f"{display} is stable."


def trend_cache_key(metric: str) -> str:
    return f"trend:{metric}"


class TrendAnalyzer:
    """Computes and caches per-metric trends.

    Usage::

        analyzer = TrendAnalyzer(cache)
        trends, log = analyzer.analyze_trends(readings)
        trends["glucose"].direction  # TrendDirection.STABLE
    """

    def __init__(
        self,
        cache: AnalysisCache,
        regressor: Regressor | None = None,
        *,
        ttl_seconds: float = RETRAIN_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._cache = cache
        self._regressor = regressor or LeastSquaresRegressor()
        self._ttl = ttl_seconds
        self._clock = clock

    def analyze_trends(
        self, readings: HealthReadings
    ) -> tuple[dict[str, TrendResult], list[str]]:
        """Fit every trend metric that passes the input gate.

        Returns:
            ``(results keyed by metric, log lines)``. Metrics without enough
            history are absent from the results.
        """
        log: list[str] = ["[Trend] Starting trend analysis..."]
        results: dict[str, TrendResult] = {}

        for metric, series in readings.trend_series().items():
            result = self.analyze_metric(metric, series, log)
            if result is not None:
                results[metric] = result

        log.append(
            f"[Trend] Completed: {len(results)} metrics with trends, "
            f"{len(TREND_METRICS) - len(results)} insufficient data"
        )
        return results, log

    def analyze_metric(
        self,
        metric: str,
        series: Sequence[tuple[float, datetime]],
        log: list[str],
    ) -> TrendResult | None:
        """Trend for one metric, served from cache while it is fresh."""
        if len(series) < MIN_POINTS:
            log.append(f"[Trend] {metric}: {len(series)} points (need >={MIN_POINTS}), skipped")
            return None

        ordered = sorted(series, key=lambda point: point[1])
        earliest = ordered[0][1]
        total_days = day_offset(earliest, ordered[-1][1])
        if total_days < MIN_SPAN_DAYS:
            log.append(
                f"[Trend] {metric}: {len(ordered)} points over {total_days} days "
                f"(need >={MIN_SPAN_DAYS}), skipped"
            )
            return None

        values = [value for value, _ in ordered]
        current_avg = mean(values[-RECENT_WINDOW:])
        key = trend_cache_key(metric)

        with self._cache.lock(key):
            cached = self._load_fresh(key)
            if cached is not None:
                log.append(
                    f"[Trend] {metric}: {len(ordered)} pts, {total_days} days, CACHE HIT -> "
                    f"{cached.direction.value} (slope={cached.slope_per_day:.4f}/day)"
                )
                projection = self._projection_from_artifact(
                    metric, key, total_days, current_avg, log
                )
                if projection is None:
                    return cached
                return TrendResult(
                    direction=cached.direction,
                    slope_per_day=cached.slope_per_day,
                    message=cached.message,
                    projection=projection,
                )

            days = [day_offset(earliest, ts) for _, ts in ordered]
            result, model = self._train(metric, days, values, total_days, current_avg, log)
            if result is not None and model is not None:
                self._store(key, result, model, log)
            return result

    def clear_cache(self) -> int:
        """Remove every per-metric trend entry and trend model artifact."""
        removed = 0
        for metric in TREND_METRICS:
            key = trend_cache_key(metric)
            with self._cache.lock(key):
                removed += int(self._cache.delete(key))
                removed += int(self._cache.delete_artifact(key))
        logger.info("Trend cache cleared (%d rows)", removed)
        return removed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _load_fresh(self, key: str) -> TrendResult | None:
        try:
            entry = self._cache.get(key)
        except CacheError as exc:
            logger.warning("Trend cache read failed for %s, retraining: %s", key, exc)
            return None
        if entry is None or not entry.is_fresh(self._clock(), self._ttl):
            return None
        payload: Any = entry.payload
        try:
            return TrendResult(
                direction=TrendDirection(payload["direction"]),
                slope_per_day=float(payload["slope"]),
                message=str(payload["message"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed trend cache entry %s", key)
            return None

    def _train(
        self,
        metric: str,
        days: list[int],
        values: list[float],
        total_days: int,
        current_avg: float,
        log: list[str],
    ) -> tuple[TrendResult | None, FittedModel | None]:
        mean_value = mean(values)
        method = self._regressor.name

        try:
            model: FittedModel = self._regressor.fit([[float(d)] for d in days], values)
            start = model.predict([0.0])
            end = model.predict([float(total_days)])
            slope = (end - start) / total_days
        except ModelFitError as exc:
            log.append(
                f"[Trend] {metric}: {method} failed ({exc}), falling back to manual regression"
            )
            try:
                slope, intercept = linear_regression([float(d) for d in days], values)
            except DegenerateRegressionError:
                log.append(f"[Trend] {metric}: denominator=0 in regression, skipped")
                return None, None
            model = LinearModel(coefficients=(slope,), intercept=intercept)
            method = "fallback regression"

        normalized = slope / mean_value if mean_value != 0 else 0.0
        direction, message = classify_slope(metric, normalized)
        projection = self._project(model, metric, total_days, current_avg)

        log.append(
            f"[Trend] {metric}: {len(values)} pts, {total_days} days, {method}, "
            f"slope={slope:.4f}/day, normalized={normalized:.5f}, mean={mean_value:.1f}, "
            f"direction={direction.value} (CACHE MISS)"
        )
        return (
            TrendResult(
                direction=direction,
                slope_per_day=slope,
                message=message,
                projection=projection,
            ),
            model,
        )

    @staticmethod
    def _project(
        model: FittedModel, metric: str, total_days: int, current_avg: float
    ) -> HealthProjection:
        at = {
            label: model.predict([float(total_days + horizon)])
            for label, horizon in PROJECTION_HORIZONS.items()
        }
        return HealthProjection(metric=metric, current_avg=current_avg, **at)

    def _projection_from_artifact(
        self,
        metric: str,
        key: str,
        total_days: int,
        current_avg: float,
        log: list[str],
    ) -> HealthProjection | None:
        try:
            stored = self._cache.get_artifact(key)
        except CacheError as exc:
            log.append(f"[Trend] {metric}: stored model unavailable ({exc})")
            return None
        if stored is None:
            return None
        try:
            model = self._regressor.load(stored.artifact)
            projection = self._project(model, metric, total_days, current_avg)
        except ModelFitError as exc:
            log.append(f"[Trend] {metric}: failed to load model for projections ({exc})")
            return None
        log.append(f"[Trend] {metric}: loaded stored model for projections")
        return projection

    def _store(self, key: str, result: TrendResult, model: FittedModel, log: list[str]) -> None:
        try:
            self._cache.put_artifact(key, model.to_artifact())
            self._cache.set(
                key,
                {
                    "direction": result.direction.value,
                    "slope": result.slope_per_day,
                    "message": result.message,
                },
                trained_at=self._clock(),
            )
        except CacheError as exc:
            logger.warning("Could not cache trend %s: %s", key, exc)
            log.append(f"[Trend] {key}: result not cached ({exc})")
