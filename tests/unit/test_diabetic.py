"""
Unit Tests for the Diabetic Classification Boundary

Tests for expected healing time and classification normalization.
"""
import pytest

from woundcare.core.eligibility import (
    DiabeticClassification,
    RiskLevel,
    UTStage,
    calculate_expected_healing_time,
    risk_level_from_score,
)


class TestExpectedHealingTime:
    """Tests for calculate_expected_healing_time."""

    @pytest.mark.parametrize("wagner,stage,grade,risk,expected", [
        (1, "A", 0, "low", 18),
        (2, "a", 2, "moderate", 50),
        (2, UTStage.A, 2, RiskLevel.HIGH, 66),
        (3, "D", 3, "critical", 280),
    ])
    def test_combined_factors(self, wagner, stage, grade, risk, expected):
        assert calculate_expected_healing_time(wagner, stage, grade, risk) == expected

    def test_out_of_range_inputs(self):
        with pytest.raises(ValueError):
            calculate_expected_healing_time(6, "A", 0, "low")
        with pytest.raises(ValueError):
            calculate_expected_healing_time(1, "E", 0, "low")
        with pytest.raises(ValueError):
            calculate_expected_healing_time(1, "A", 4, "low")
        with pytest.raises(ValueError):
            calculate_expected_healing_time(1, "A", 0, "severe")


class TestDiabeticClassification:
    """Tests for DiabeticClassification."""

    def test_risk_level_from_score(self):
        assert risk_level_from_score(10) == RiskLevel.LOW
        assert risk_level_from_score(45) == RiskLevel.MODERATE
        assert risk_level_from_score(75) == RiskLevel.HIGH
        assert risk_level_from_score(95) == RiskLevel.CRITICAL

    def test_derived_fields(self):
        """Risk level is derived from the score when not supplied."""
        c = DiabeticClassification(
            wagner_grade=2,
            wagner_description="Deep ulcer to tendon or capsule",
            ut_stage="a",
            ut_grade=2,
            ut_description="Clean wound penetrating to tendon or capsule",
            risk_score=75,
        )
        assert c.ut_stage == UTStage.A
        assert c.risk_level == RiskLevel.HIGH
        assert c.expected_healing_days == 66
        assert c.to_dict()["risk_level"] == "high"

    def test_score_clamped(self):
        c = DiabeticClassification(0, "Pre-ulcerative", UTStage.A, 0, "Pre-ulcerative lesion", 140, "low")
        assert c.risk_score == 100
        assert c.risk_level == RiskLevel.LOW
