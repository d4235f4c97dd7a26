"""Deterministic rule-based scoring: per-metric thresholds -> composite score.

Each metric average maps to ``(score, risk, message)`` through fixed wellness
thresholds. The composite is the weighted mean over the metrics that actually
have readings, so absent metrics drop out instead of counting as zero.
All formulas are deterministic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from vitalcore.domains.health.domain_logic.models import MetricRisk
from vitalcore.domains.health.domain_logic.stats import clamp_score, mean, weighted_mean

logger = logging.getLogger(__name__)

# Composite weights (percent). Only present metrics contribute.
METRIC_WEIGHTS = {
    "bp": 30.0,
    "pulse": 15.0,
    "glucose": 20.0,
    "sleep": 20.0,
    "bmi": 15.0,
}

DEFAULT_SCORE = 50


@dataclass
class ScoringResult:
    score: int
    risks: dict[str, MetricRisk] = field(default_factory=dict)
    messages: dict[str, str] = field(default_factory=dict)
    log: list[str] = field(default_factory=list)


def compute_bmi(weight_kg: float, height_cm: float) -> float:
    """BMI from kilograms and centimetres. Callers guard ``height_cm > 0``."""
    metres = height_cm / 100
    return weight_kg / (metres * metres)


# ---------------------------------------------------------------------------
# Per-metric thresholds
# ---------------------------------------------------------------------------

def score_bp(avg_sys: float, avg_dia: float) -> tuple[float, MetricRisk, str]:
    if avg_sys >= 135 or avg_dia >= 88:
        return 40, MetricRisk.HIGH, "Blood pressure is elevated. Consider stress management and reducing sodium."
    if avg_sys >= 125 or avg_dia >= 82:
        return 65, MetricRisk.ELEVATED, "Blood pressure is slightly above optimal. Monitor regularly."
    if avg_sys < 90 or avg_dia < 60:
        return 60, MetricRisk.ELEVATED, "Blood pressure is lower than usual. Stay hydrated."
    return 100, MetricRisk.NORMAL, "Blood pressure is in a healthy range."


def score_pulse(avg: float) -> tuple[float, MetricRisk, str]:
    if avg > 100 or avg < 50:
        return 40, MetricRisk.HIGH, "Resting pulse is outside normal range."
    if avg > 90 or avg < 55:
        return 70, MetricRisk.ELEVATED, "Pulse is slightly outside optimal range."
    return 100, MetricRisk.NORMAL, "Pulse is in a healthy range."


def score_glucose(avg: float) -> tuple[float, MetricRisk, str]:
    if avg > 130 or avg < 65:
        return 40, MetricRisk.HIGH, "Glucose levels need attention."
    if avg > 110:
        return 70, MetricRisk.ELEVATED, "Glucose is slightly elevated."
    return 100, MetricRisk.NORMAL, "Glucose is in a healthy range."


def score_sleep(avg: float) -> tuple[float, MetricRisk, str]:
    if avg < 5.5 or avg > 10.5:
        return 40, MetricRisk.HIGH, "Sleep duration needs attention. Aim for 7-9 hours."
    if avg < 6.5 or avg > 9.5:
        return 70, MetricRisk.ELEVATED, "Sleep is slightly outside optimal range."
    return 100, MetricRisk.NORMAL, "Sleep duration is healthy."


def score_bmi(bmi: float) -> tuple[float, MetricRisk, str]:
    if bmi > 30 or bmi < 17:
        return 40, MetricRisk.HIGH, "BMI is outside the healthy range."
    if bmi > 27 or bmi < 18.5:
        return 70, MetricRisk.ELEVATED, "BMI is slightly outside optimal."
    return 100, MetricRisk.NORMAL, "BMI is in a healthy range."


# ---------------------------------------------------------------------------
# Composite scoring
# ---------------------------------------------------------------------------

def score_readings(
    *,
    bp: Sequence[tuple[int, int]] = (),
    pulse: Sequence[float] = (),
    glucose: Sequence[float] = (),
    sleep: Sequence[float] = (),
    weight: Sequence[float] = (),
    height: Sequence[float] = (),
) -> ScoringResult:
    """Score overall averages of each metric and combine them.

    Args:
        bp: ``(systolic, diastolic)`` pairs.
        pulse: Beats per minute.
        glucose: mg/dL.
        sleep: Hours per night.
        weight: Kilograms.
        height: Centimetres.

    Returns:
        ``ScoringResult``. With no usable metric (or a non-positive average
        height) the score is ``DEFAULT_SCORE``.
    """
    components: list[tuple[str, float, float]] = []  # (name, score, weight)
    result = ScoringResult(score=DEFAULT_SCORE)
    log = result.log

    log.append(
        f"[Scoring] Input: BP={len(bp)}, Pulse={len(pulse)}, Glucose={len(glucose)}, "
        f"Sleep={len(sleep)}, Weight={len(weight)}, Height={len(height)}"
    )

    if bp:
        avg_sys = mean([s for s, _ in bp])
        avg_dia = mean([d for _, d in bp])
        score, risk, message = score_bp(avg_sys, avg_dia)
        components.append(("bp", score, METRIC_WEIGHTS["bp"]))
        result.risks["bp"] = risk
        result.messages["bp"] = message
        log.append(
            f"[Scoring] BP: avg sys={int(avg_sys)} dia={int(avg_dia)}, "
            f"score={int(score)} ({risk.value})"
        )
    else:
        log.append("[Scoring] BP: no data, skipped")

    if pulse:
        avg = mean(pulse)
        score, risk, message = score_pulse(avg)
        components.append(("pulse", score, METRIC_WEIGHTS["pulse"]))
        result.risks["pulse"] = risk
        result.messages["pulse"] = message
        log.append(f"[Scoring] Pulse: avg={int(avg)} bpm, score={int(score)} ({risk.value})")
    else:
        log.append("[Scoring] Pulse: no data, skipped")

    if glucose:
        avg = mean(glucose)
        score, risk, message = score_glucose(avg)
        components.append(("glucose", score, METRIC_WEIGHTS["glucose"]))
        result.risks["glucose"] = risk
        result.messages["glucose"] = message
        log.append(f"[Scoring] Glucose: avg={avg:.1f} mg/dL, score={int(score)} ({risk.value})")
    else:
        log.append("[Scoring] Glucose: no data, skipped")

    if sleep:
        avg = mean(sleep)
        score, risk, message = score_sleep(avg)
        components.append(("sleep", score, METRIC_WEIGHTS["sleep"]))
        result.risks["sleep"] = risk
        result.messages["sleep"] = message
        log.append(f"[Scoring] Sleep: avg={avg:.1f} hrs, score={int(score)} ({risk.value})")
    else:
        log.append("[Scoring] Sleep: no data, skipped")

    if weight and height:
        avg_w = mean(weight)
        avg_h = mean(height)
        if avg_h <= 0:
            # Treated as a failure of the whole call, not just the BMI term
            log.append("[Scoring] BMI: height=0, cannot compute, returning default 50")
            return ScoringResult(
                score=DEFAULT_SCORE, risks=result.risks, messages=result.messages, log=log
            )
        bmi = compute_bmi(avg_w, avg_h)
        score, risk, message = score_bmi(bmi)
        components.append(("bmi", score, METRIC_WEIGHTS["bmi"]))
        result.risks["bmi"] = risk
        result.messages["bmi"] = message
        log.append(
            f"[Scoring] BMI: {bmi:.1f} (w={avg_w:.1f}kg, h={avg_h:.1f}cm), "
            f"score={int(score)} ({risk.value})"
        )
    else:
        log.append("[Scoring] BMI: missing weight or height, skipped")

    if not components:
        log.append(f"[Scoring] No metrics available, returning default score {DEFAULT_SCORE}")
        return result

    total_weight = sum(w for _, _, w in components)
    final = clamp_score(weighted_mean((s, w) for _, s, w in components))
    active = ", ".join(f"{name}={int(w)}%" for name, _, w in components)
    log.append(f"[Scoring] Active weights (redistributed): {active}, totalWeight={int(total_weight)}")
    log.append(f"[Scoring] Final rule-based score: {final}")

    result.score = final
    logger.debug("Rule-based score %d from %d metrics", final, len(components))
    return result


def score_row(
    sys: float, dia: float, pulse: float, glucose: float, sleep: float, bmi: float
) -> int:
    """Composite score of one fully-populated feature row.

    Used as the regression target for the cross-metric model; every component
    is present so no weight redistribution happens.
    """
    components = [
        (score_bp(sys, dia)[0], METRIC_WEIGHTS["bp"]),
        (score_pulse(pulse)[0], METRIC_WEIGHTS["pulse"]),
        (score_glucose(glucose)[0], METRIC_WEIGHTS["glucose"]),
        (score_sleep(sleep)[0], METRIC_WEIGHTS["sleep"]),
        (score_bmi(bmi)[0], METRIC_WEIGHTS["bmi"]),
    ]
    return clamp_score(weighted_mean(components))
