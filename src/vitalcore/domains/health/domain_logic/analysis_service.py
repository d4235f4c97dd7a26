"""Analysis orchestrator: rule scoring -> trends -> correlations -> result.

Runs the stages strictly in order, blends the rule and learned scores,
applies trend adjustments, classifies the status and assembles an
``AnalysisResult`` together with the ordered log of every decision taken.
``analyze()`` always returns a complete result; stage failures degrade to
absent outputs and are recorded in the log.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from vitalcore.core.storage.cache import AnalysisCache
from vitalcore.domains.health.domain_logic.correlation_analyzer import (
    CorrelationAnalyzer,
    CorrelationOutcome,
)
from vitalcore.domains.health.domain_logic.models import (
    RETRAIN_INTERVAL_SECONDS,
    STATUS_AT_RISK,
    STATUS_HEALTHY,
    STATUS_NEEDS_ATTENTION,
    AnalysisResult,
    HealthProjection,
    HealthReadings,
    MetricAnalysis,
    TrendDirection,
    TrendResult,
)
from vitalcore.domains.health.domain_logic.regression import Regressor
from vitalcore.domains.health.domain_logic.rule_scorer import compute_bmi, score_readings
from vitalcore.domains.health.domain_logic.stats import clamp_score, mean
from vitalcore.domains.health.domain_logic.trend_analyzer import TrendAnalyzer

logger = logging.getLogger(__name__)

RULE_WEIGHT = 0.6
ML_WEIGHT = 0.4
WORSENING_PENALTY = 3
IMPROVING_BONUS = 2
RECENT_WINDOW = 7

NO_READINGS_MESSAGE = "Add health readings to see your wellness score."
NO_TRENDS_MESSAGE = "Keep tracking for 14+ days to see health trends."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def classify_status(score: int) -> str:
    if score >= 80:
        return STATUS_HEALTHY
    if score >= 60:
        return STATUS_NEEDS_ATTENTION
    return STATUS_AT_RISK


def recent_average(key: str, readings: HealthReadings) -> float | None:
    """Mean of the last readings of a scored metric (BP uses systolic)."""
    if key == "bp":
        values = [float(r.systolic) for r in readings.blood_pressure]
    elif key == "pulse":
        values = [float(r.bpm) for r in readings.pulse]
    elif key == "glucose":
        values = [r.mg_dl for r in readings.glucose]
    elif key == "sleep":
        values = [r.hours for r in readings.sleep]
    elif key == "bmi":
        if not readings.weight or not readings.height:
            return None
        height = readings.height[-1].cm
        if height <= 0:
            return None
        weight = mean([r.kg for r in readings.weight[-RECENT_WINDOW:]])
        return compute_bmi(weight, height)
    else:
        return None
    if not values:
        return None
    return mean(values[-RECENT_WINDOW:])


class HealthAnalysisService:
    """Entry point of the wellness core.

    Usage::

        service = HealthAnalysisService(InMemoryAnalysisCache())
        result = service.analyze(readings)
        result.score, result.status

        # from async code, off the event loop thread
        result = await service.analyze_async(readings)

        service.reset_caches()
    """

    def __init__(
        self,
        cache: AnalysisCache,
        *,
        regressor: Regressor | None = None,
        ttl_seconds: float = RETRAIN_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._cache = cache
        self._clock = clock
        self.trend_analyzer = TrendAnalyzer(
            cache, regressor, ttl_seconds=ttl_seconds, clock=clock
        )
        self.correlation_analyzer = CorrelationAnalyzer(
            cache, regressor, ttl_seconds=ttl_seconds, clock=clock
        )

    @property
    def cache(self) -> AnalysisCache:
        return self._cache

    async def analyze_async(self, readings: HealthReadings) -> AnalysisResult:
        """Run :meth:`analyze` in a worker thread."""
        return await asyncio.to_thread(self.analyze, readings)

    def analyze(self, readings: HealthReadings) -> AnalysisResult:
        started = self._clock()
        log: list[str] = [
            "[Analysis] ========== Starting Health Analysis ==========",
            f"[Analysis] Timestamp: {started.isoformat()}",
        ]
        counts = readings.counts()
        log.append(
            "[Analysis] Input counts: "
            + ", ".join(f"{name}={count}" for name, count in counts.items())
        )
        total_readings = readings.total_excluding_height()
        log.append(f"[Analysis] Total readings (excl. height): {total_readings}")

        # 1. Rule-based scoring (always runs)
        log.append("[Analysis] --- Phase 1: Rule-Based Scoring ---")
        rule = score_readings(
            bp=[(r.systolic, r.diastolic) for r in readings.blood_pressure],
            pulse=[float(r.bpm) for r in readings.pulse],
            glucose=[r.mg_dl for r in readings.glucose],
            sleep=[r.hours for r in readings.sleep],
            weight=[r.kg for r in readings.weight],
            height=[r.cm for r in readings.height],
        )
        log.extend(rule.log)

        # 2. Trends
        log.append("[Analysis] --- Phase 2: Trend Analysis ---")
        trends = self._run_trends(readings, log)
        projections: dict[str, HealthProjection] = {
            key: trend.projection for key, trend in trends.items() if trend.projection
        }
        log.append(f"[Analysis] Extracted {len(projections)} metric projections from trends")

        # 3. Cross-metric correlations (consumes projections)
        log.append("[Analysis] --- Phase 3: Cross-Metric Correlation ---")
        correlation = self._run_correlations(readings, projections, log)

        # 4. Per-metric analyses
        log.append("[Analysis] --- Phase 4: Building Metric Analyses ---")
        metric_analyses: dict[str, MetricAnalysis] = {}
        for key, risk in rule.risks.items():
            trend = trends.get(key)
            avg = recent_average(key, readings)
            metric_analyses[key] = MetricAnalysis(
                risk=risk,
                trend=trend.direction if trend else None,
                recent_avg=avg,
                message=rule.messages.get(key, ""),
            )
            log.append(
                f"[Analysis] Metric '{key}': risk={risk.value}, "
                f"trend={trend.direction.value if trend else 'n/a'}, "
                f"recentAvg={'n/a' if avg is None else f'{avg:.1f}'}"
            )

        # 5. Blend and adjust
        log.append("[Analysis] --- Phase 5: Score Blending ---")
        score = self._blend(rule.score, correlation.ml_score, log)
        score = self._apply_trend_adjustment(score, trends, log)
        score = clamp_score(score)
        log.append(f"[Analysis] Adjusted final score: {score}")

        # 6. Status
        status = classify_status(score)
        log.append(f"[Analysis] Status: {status}")

        # 7. Data sufficiency
        insufficiency: str | None = None
        if total_readings == 0:
            insufficiency = NO_READINGS_MESSAGE
            log.append("[Analysis] Data insufficiency: no readings at all")
        elif not trends:
            insufficiency = NO_TRENDS_MESSAGE
            log.append(
                "[Analysis] Data insufficiency: not enough data for trend analysis (need 14+ days)"
            )
        else:
            log.append(f"[Analysis] Data sufficiency: OK ({len(trends)} trend metrics available)")

        log.append("[Analysis] ========== Analysis Complete ==========")
        log.append(
            f"[Analysis] Final: score={score}, status={status}, metrics={len(metric_analyses)}, "
            f"trends={len(trends)}, alerts={len(correlation.alerts)}, "
            f"projections={len(projections)}"
        )
        logger.info(
            "Analysis complete: score=%d status=%s trends=%d alerts=%d",
            score, status, len(trends), len(correlation.alerts),
        )

        return AnalysisResult(
            score=score,
            status=status,
            metric_analyses=metric_analyses,
            correlation_alerts=list(correlation.alerts),
            data_insufficiency_message=insufficiency,
            projections=projections,
            projected_scores=correlation.projected_scores,
            log=log,
            timestamp=started,
        )

    def reset_caches(self) -> int:
        """Clear all trend entries, the alert cache and every model artifact.

        Returns:
            Number of cache rows removed.
        """
        removed = self._cache.clear_all()
        logger.warning("All analysis caches and models cleared (%d rows)", removed)
        return removed

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _run_trends(
        self, readings: HealthReadings, log: list[str]
    ) -> dict[str, TrendResult]:
        try:
            trends, trend_log = self.trend_analyzer.analyze_trends(readings)
        except Exception as exc:
            logger.exception("Trend analysis failed")
            log.append(f"[Analysis] Trend analysis failed ({type(exc).__name__}: {exc}), no trends used")
            return {}
        log.extend(trend_log)
        return trends

    def _run_correlations(
        self,
        readings: HealthReadings,
        projections: dict[str, HealthProjection],
        log: list[str],
    ) -> CorrelationOutcome:
        try:
            outcome = self.correlation_analyzer.analyze(readings, projections)
        except Exception as exc:
            logger.exception("Cross-metric analysis failed")
            log.append(
                f"[Analysis] Cross-metric analysis failed ({type(exc).__name__}: {exc}), "
                "no alerts or ML score used"
            )
            return CorrelationOutcome()
        log.extend(outcome.log)
        return outcome

    @staticmethod
    def _blend(rule_score: int, ml_score: int | None, log: list[str]) -> int:
        if ml_score is None:
            log.append(f"[Analysis] Base rule score: {rule_score} (no ML score available)")
            return rule_score
        blended = round(RULE_WEIGHT * rule_score + ML_WEIGHT * ml_score)
        log.append(
            f"[Analysis] Blended score: {RULE_WEIGHT} * rule({rule_score}) + "
            f"{ML_WEIGHT} * ML({ml_score}) = {blended}"
        )
        return blended

    @staticmethod
    def _apply_trend_adjustment(
        score: int, trends: dict[str, TrendResult], log: list[str]
    ) -> int:
        worsening = sum(t.direction == TrendDirection.WORSENING for t in trends.values())
        improving = sum(t.direction == TrendDirection.IMPROVING for t in trends.values())
        if worsening:
            penalty = worsening * WORSENING_PENALTY
            score -= penalty
            log.append(f"[Analysis] Worsening trends: {worsening}, penalty: -{penalty}")
        if improving:
            bonus = improving * IMPROVING_BONUS
            score += bonus
            log.append(f"[Analysis] Improving trends: {improving}, bonus: +{bonus}")
        return score
