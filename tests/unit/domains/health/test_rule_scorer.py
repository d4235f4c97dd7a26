"""Tests for the deterministic rule scorer."""

from __future__ import annotations

import pytest

from vitalcore.domains.health.domain_logic.models import MetricRisk
from vitalcore.domains.health.domain_logic.rule_scorer import (
    DEFAULT_SCORE,
    compute_bmi,
    score_bmi,
    score_bp,
    score_glucose,
    score_pulse,
    score_readings,
    score_row,
    score_sleep,
)


class TestThresholds:
    @pytest.mark.parametrize(
        "sys, dia, expected",
        [
            (118, 76, (100, MetricRisk.NORMAL)),
            (135, 70, (40, MetricRisk.HIGH)),
            (120, 88, (40, MetricRisk.HIGH)),
            (125, 70, (65, MetricRisk.ELEVATED)),
            (120, 82, (65, MetricRisk.ELEVATED)),
            (88, 70, (60, MetricRisk.ELEVATED)),
            (110, 58, (60, MetricRisk.ELEVATED)),
        ],
    )
    def test_bp(self, sys, dia, expected):
        score, risk, _ = score_bp(sys, dia)
        assert (score, risk) == expected

    @pytest.mark.parametrize(
        "bpm, expected",
        [(70, 100), (101, 40), (49, 40), (95, 70), (52, 70), (100, 70), (50, 70)],
    )
    def test_pulse(self, bpm, expected):
        assert score_pulse(bpm)[0] == expected

    @pytest.mark.parametrize("mg_dl, expected", [(95, 100), (131, 40), (64, 40), (115, 70), (110, 100)])
    def test_glucose(self, mg_dl, expected):
        assert score_glucose(mg_dl)[0] == expected

    @pytest.mark.parametrize("hours, expected", [(7.5, 100), (5.0, 40), (11.0, 40), (6.0, 70), (10.0, 70)])
    def test_sleep(self, hours, expected):
        assert score_sleep(hours)[0] == expected

    @pytest.mark.parametrize("bmi, expected", [(22.0, 100), (31.0, 40), (16.5, 40), (28.0, 70), (18.0, 70)])
    def test_bmi(self, bmi, expected):
        assert score_bmi(bmi)[0] == expected

    def test_compute_bmi(self):
        assert compute_bmi(70.0, 175.0) == pytest.approx(22.857, abs=1e-3)


class TestScoreReadings:
    def test_no_metrics_returns_default(self):
        result = score_readings()
        assert result.score == DEFAULT_SCORE
        assert result.risks == {}
        assert result.messages == {}
        assert any("returning default score 50" in line for line in result.log)

    def test_all_healthy_scores_100(self):
        result = score_readings(
            bp=[(118, 75)],
            pulse=[70],
            glucose=[95.0],
            sleep=[7.5],
            weight=[70.0],
            height=[175.0],
        )
        assert result.score == 100
        assert set(result.risks) == {"bp", "pulse", "glucose", "sleep", "bmi"}
        assert all(r == MetricRisk.NORMAL for r in result.risks.values())

    def test_all_unhealthy_scores_40(self):
        result = score_readings(
            bp=[(160, 100)],
            pulse=[120],
            glucose=[200.0],
            sleep=[3.0],
            weight=[130.0],
            height=[165.0],
        )
        assert result.score == 40
        assert set(result.risks) == {"bp", "pulse", "glucose", "sleep", "bmi"}
        assert all(r == MetricRisk.HIGH for r in result.risks.values())

    def test_weights_redistributed_over_present_metrics(self):
        # BP high (40, w30) + sleep normal (100, w20) -> (1200 + 2000) / 50 = 64
        result = score_readings(bp=[(140, 80)], sleep=[8.0])
        assert result.score == 64
        assert "pulse" not in result.risks
        assert any("bp=30%, sleep=20%" in line for line in result.log)

    def test_composite_is_truncated(self):
        # BP elevated (65, w30) + pulse normal (100, w15) -> 76.67 -> 76
        assert score_readings(bp=[(126, 70)], pulse=[70]).score == 76

    def test_bmi_needs_weight_and_height(self):
        result = score_readings(weight=[70.0])
        assert "bmi" not in result.risks
        assert result.score == DEFAULT_SCORE

    def test_zero_height_returns_default(self):
        result = score_readings(bp=[(150, 95)], weight=[80.0], height=[0.0])
        assert result.score == DEFAULT_SCORE
        assert any("height=0" in line for line in result.log)

    def test_averages_are_used(self):
        # Mean systolic 130 -> elevated, though one reading alone is normal
        result = score_readings(bp=[(115, 70), (145, 70)])
        assert result.risks["bp"] == MetricRisk.ELEVATED


class TestScoreRow:
    def test_healthy_row(self):
        assert score_row(115, 75, 68, 92, 7.5, 22.0) == 100

    def test_mixed_row(self):
        # glucose high (40, w20), rest 100 -> (8000 + 800) / 100 = 88
        assert score_row(115, 75, 68, 140, 7.5, 22.0) == 88
