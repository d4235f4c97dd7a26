"""Cross-metric correlation mining and composite-score regression.

Readings are bucketed into day-aligned feature rows. Pairwise Pearson
correlations over those rows produce alerts (cached for 24 hours as one set),
and a regression from row features to the row's rule score yields a learned
composite score plus projected scores at +7/+30/+90 days.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Mapping, Sequence

from vitalcore.core.storage.cache import AnalysisCache, CacheError
from vitalcore.domains.health.domain_logic.models import (
    RETRAIN_INTERVAL_SECONDS,
    CorrelationAlert,
    HealthProjection,
    HealthReadings,
    MetricRisk,
    ProjectedScores,
)
from vitalcore.domains.health.domain_logic.regression import (
    FittedModel,
    LeastSquaresRegressor,
    ModelFitError,
    Regressor,
)
from vitalcore.domains.health.domain_logic.rule_scorer import compute_bmi, score_row
from vitalcore.domains.health.domain_logic.stats import clamp_score, mean, pearson
from vitalcore.domains.health.domain_logic.trend_analyzer import day_offset, meets_trend_gate

logger = logging.getLogger(__name__)

ALERTS_CACHE_KEY = "correlation:alerts"
COMPOSITE_ARTIFACT = "correlation:composite"

MIN_METRIC_TYPES = 2
MIN_ROWS = 14
MIN_PAIRED_ROWS = 7
MIN_ROW_FIELDS = 2
ELEVATED_CORRELATION = 0.6
HIGH_CORRELATION = 0.8
RECENT_ROWS = 7
DEFAULT_HEIGHT_CM = 170.0

FEATURE_NAMES = ("systolic", "diastolic", "pulse", "glucose", "sleep", "bmi")

# Population-typical values for fields missing from a row
FEATURE_DEFAULTS = {
    "systolic": 120.0,
    "diastolic": 80.0,
    "pulse": 72.0,
    "glucose": 95.0,
    "sleep": 7.5,
    "bmi": 22.0,
}

# (display name, row field) pairs that are correlated against each other
CORRELATED_METRICS = [
    ("Blood Pressure", "systolic"),
    ("Pulse", "pulse"),
    ("Glucose", "glucose"),
    ("Sleep", "sleep"),
    ("BMI", "bmi"),
]

_HORIZONS = ("one_week", "one_month", "three_months")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FeatureRow:
    """Daily averages for one calendar-day bucket."""

    day_index: int
    systolic: float | None = None
    diastolic: float | None = None
    pulse: float | None = None
    glucose: float | None = None
    sleep: float | None = None
    bmi: float | None = None

    def populated(self) -> int:
        return sum(getattr(self, name) is not None for name in FEATURE_NAMES)

    def feature_vector(self) -> list[float]:
        """Values in ``FEATURE_NAMES`` order, defaults filled in."""
        vector = []
        for name in FEATURE_NAMES:
            value = getattr(self, name)
            vector.append(FEATURE_DEFAULTS[name] if value is None else value)
        return vector


@dataclass
class CorrelationOutcome:
    alerts: list[CorrelationAlert] = field(default_factory=list)
    ml_score: int | None = None
    projected_scores: ProjectedScores | None = None
    log: list[str] = field(default_factory=list)


def average_height(readings: HealthReadings) -> float | None:
    if not readings.height:
        return None
    return mean([r.cm for r in readings.height])


def build_feature_rows(readings: HealthReadings) -> list[FeatureRow]:
    """Bucket readings by day offset from the earliest reading of any metric.

    BMI is derived per day from that day's weight and the overall average
    height. Rows with fewer than ``MIN_ROW_FIELDS`` fields are dropped.
    """
    timestamps = (
        [r.timestamp for r in readings.blood_pressure]
        + [r.timestamp for r in readings.pulse]
        + [r.timestamp for r in readings.glucose]
        + [r.timestamp for r in readings.sleep]
        + [r.timestamp for r in readings.weight]
    )
    if not timestamps:
        return []
    earliest = min(timestamps)
    if day_offset(earliest, max(timestamps)) <= 0:
        return []

    buckets: dict[str, dict[int, list[float]]] = {
        name: defaultdict(list) for name in FEATURE_NAMES
    }
    for r in readings.blood_pressure:
        day = day_offset(earliest, r.timestamp)
        buckets["systolic"][day].append(float(r.systolic))
        buckets["diastolic"][day].append(float(r.diastolic))
    for r in readings.pulse:
        buckets["pulse"][day_offset(earliest, r.timestamp)].append(float(r.bpm))
    for r in readings.glucose:
        buckets["glucose"][day_offset(earliest, r.timestamp)].append(r.mg_dl)
    for r in readings.sleep:
        buckets["sleep"][day_offset(earliest, r.timestamp)].append(r.hours)

    height = average_height(readings)
    if height is not None and height > 0:
        for r in readings.weight:
            buckets["bmi"][day_offset(earliest, r.timestamp)].append(compute_bmi(r.kg, height))

    days = sorted({day for per_day in buckets.values() for day in per_day})
    rows = []
    for day in days:
        row = FeatureRow(
            day_index=day,
            **{
                name: mean(buckets[name][day]) if buckets[name].get(day) else None
                for name in FEATURE_NAMES
            },
        )
        if row.populated() >= MIN_ROW_FIELDS:
            rows.append(row)
    return rows


def compute_correlation_alerts(
    rows: Sequence[FeatureRow], log: list[str]
) -> list[CorrelationAlert]:
    """Pearson correlation for every metric pair with enough joint rows."""
    alerts: list[CorrelationAlert] = []
    pairs_checked = 0

    for i, (name_a, field_a) in enumerate(CORRELATED_METRICS):
        for name_b, field_b in CORRELATED_METRICS[i + 1:]:
            xs: list[float] = []
            ys: list[float] = []
            for row in rows:
                a = getattr(row, field_a)
                b = getattr(row, field_b)
                if a is not None and b is not None:
                    xs.append(a)
                    ys.append(b)

            if len(xs) < MIN_PAIRED_ROWS:
                log.append(
                    f"[CrossMetric] {name_a} vs {name_b}: {len(xs)} paired points "
                    f"(need >={MIN_PAIRED_ROWS}), skipped"
                )
                continue

            pairs_checked += 1
            r = pearson(xs, ys)
            strength = abs(r)
            if strength >= ELEVATED_CORRELATION:
                direction = "positively" if r > 0 else "inversely"
                severity = MetricRisk.HIGH if strength >= HIGH_CORRELATION else MetricRisk.ELEVATED
                alerts.append(CorrelationAlert(
                    metrics=(name_a, name_b),
                    description=(
                        f"{name_a} and {name_b} appear {direction} correlated in your readings."
                    ),
                    severity=severity,
                ))
                log.append(
                    f"[CrossMetric] {name_a} vs {name_b}: r={r:.3f} ({len(xs)} pairs) "
                    f"-> ALERT ({severity.value}, {direction})"
                )
            else:
                log.append(
                    f"[CrossMetric] {name_a} vs {name_b}: r={r:.3f} ({len(xs)} pairs) "
                    f"-> below threshold"
                )

    log.append(
        f"[CrossMetric] Checked {pairs_checked} metric pairs, generated {len(alerts)} alerts"
    )
    return alerts


class CorrelationAnalyzer:
    """Cross-metric alerts and learned composite score.

    Usage::

        analyzer = CorrelationAnalyzer(cache)
        outcome = analyzer.analyze(readings, projections)
        outcome.alerts, outcome.ml_score, outcome.projected_scores
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

    def analyze(
        self,
        readings: HealthReadings,
        projections: Mapping[str, HealthProjection] | None = None,
    ) -> CorrelationOutcome:
        outcome = CorrelationOutcome()
        log = outcome.log
        log.append("[CrossMetric] Starting cross-metric correlation analysis...")

        qualified = [
            f"{label}({len(series)})"
            for label, series in (
                ("BP", readings.blood_pressure),
                ("Pulse", readings.pulse),
                ("Glucose", readings.glucose),
                ("Sleep", readings.sleep),
                ("Weight", readings.weight),
            )
            if meets_trend_gate([r.timestamp for r in series])
        ]
        log.append(
            f"[CrossMetric] Qualified metrics ({len(qualified)}/{MIN_METRIC_TYPES} needed): "
            f"{', '.join(qualified)}"
        )
        if len(qualified) < MIN_METRIC_TYPES:
            log.append("[CrossMetric] Not enough metric types, skipping correlation analysis")
            return outcome

        with self._cache.lock(ALERTS_CACHE_KEY):
            cached = self._load_fresh_alerts()
            if cached is not None:
                log.append(f"[CrossMetric] CACHE HIT: {len(cached)} cached alerts")
                for alert in cached:
                    log.append(
                        f"[CrossMetric]   -> {' vs '.join(alert.metrics)}: "
                        f"{alert.description} [{alert.severity.value}]"
                    )

            rows = build_feature_rows(readings)
            log.append(
                f"[CrossMetric] Built {len(rows)} day-aligned feature rows (need >={MIN_ROWS})"
            )
            if len(rows) < MIN_ROWS:
                log.append("[CrossMetric] Not enough aligned rows, skipping")
                outcome.alerts = cached or []
                return outcome

            if cached is not None:
                outcome.alerts = cached
            else:
                outcome.alerts = compute_correlation_alerts(rows, log)
                self._store_alerts(outcome.alerts, log)
                log.append(
                    f"[CrossMetric] CACHE MISS, computed {len(outcome.alerts)} alerts (cached for 24h)"
                )

        height = average_height(readings)
        outcome.ml_score, outcome.projected_scores = self._composite_scores(
            rows,
            DEFAULT_HEIGHT_CM if height is None else height,
            projections or {},
            log,
        )
        return outcome

    def clear_cache(self) -> int:
        """Remove the shared alert entry and the composite model artifact."""
        with self._cache.lock(ALERTS_CACHE_KEY):
            removed = int(self._cache.delete(ALERTS_CACHE_KEY))
            removed += int(self._cache.delete_artifact(COMPOSITE_ARTIFACT))
        logger.info("Correlation cache cleared (%d rows)", removed)
        return removed

    # ------------------------------------------------------------------
    # Alert cache
    # ------------------------------------------------------------------

    def _load_fresh_alerts(self) -> list[CorrelationAlert] | None:
        try:
            entry = self._cache.get(ALERTS_CACHE_KEY)
        except CacheError as exc:
            logger.warning("Correlation alert cache read failed, recomputing: %s", exc)
            return None
        if entry is None or not entry.is_fresh(self._clock(), self._ttl):
            return None
        try:
            return [CorrelationAlert.from_payload(item) for item in entry.payload]
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed correlation alert cache entry")
            return None

    def _store_alerts(self, alerts: list[CorrelationAlert], log: list[str]) -> None:
        try:
            self._cache.set(
                ALERTS_CACHE_KEY,
                [alert.to_payload() for alert in alerts],
                trained_at=self._clock(),
            )
        except CacheError as exc:
            logger.warning("Could not cache correlation alerts: %s", exc)
            log.append(f"[CrossMetric] Alerts not cached ({exc})")

    # ------------------------------------------------------------------
    # Composite-score regression
    # ------------------------------------------------------------------

    def _composite_scores(
        self,
        rows: Sequence[FeatureRow],
        height_cm: float,
        projections: Mapping[str, HealthProjection],
        log: list[str],
    ) -> tuple[int | None, ProjectedScores | None]:
        features = [row.feature_vector() for row in rows]
        targets = [float(score_row(*vector)) for vector in features]

        try:
            model = self._regressor.fit(features, targets)
            latest = [mean([vector[i] for vector in features[-RECENT_ROWS:]])
                      for i in range(len(FEATURE_NAMES))]
            ml_score = clamp_score(model.predict(latest))
        except ModelFitError as exc:
            log.append(f"[CrossMetric] Composite regression failed: {exc}")
            return None, None

        log.append(
            f"[CrossMetric] {self._regressor.name} composite model trained on "
            f"{len(rows)} rows, current predicted score: {ml_score}"
        )
        try:
            self._cache.put_artifact(COMPOSITE_ARTIFACT, model.to_artifact())
        except CacheError as exc:
            logger.warning("Could not store composite model: %s", exc)

        if not projections:
            return ml_score, None

        scores = {}
        for horizon in _HORIZONS:
            try:
                scores[horizon] = self._predict_projected(
                    model, latest, height_cm, projections, horizon
                )
            except ModelFitError as exc:
                log.append(f"[CrossMetric] Projected score ({horizon}) failed: {exc}")
                return ml_score, None

        projected = ProjectedScores(**scores)
        log.append(
            f"[CrossMetric] Projected scores: 1w={projected.one_week}, "
            f"1m={projected.one_month}, 3m={projected.three_months}"
        )
        return ml_score, projected

    @staticmethod
    def _predict_projected(
        model: FittedModel,
        latest: list[float],
        height_cm: float,
        projections: Mapping[str, HealthProjection],
        horizon: str,
    ) -> int:
        """Predict a score with projected metric values substituted in.

        Diastolic follows projected systolic at the latest dia/sys ratio; BMI
        is recomputed from projected weight and the average height. Features
        without a projection keep their latest average.
        """
        latest_sys, latest_dia, latest_pulse, latest_glucose, latest_sleep, latest_bmi = latest

        def projected(metric: str, fallback: float) -> float:
            projection = projections.get(metric)
            return getattr(projection, horizon) if projection is not None else fallback

        sys = projected("bp", latest_sys)
        dia = sys * (latest_dia / max(latest_sys, 1.0))
        bmi = latest_bmi
        weight = projections.get("weight")
        if weight is not None and height_cm > 0:
            bmi = compute_bmi(getattr(weight, horizon), height_cm)

        row = [
            sys,
            dia,
            projected("pulse", latest_pulse),
            projected("glucose", latest_glucose),
            projected("sleep", latest_sleep),
            bmi,
        ]
        return clamp_score(model.predict(row))
