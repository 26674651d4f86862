"""
Diabetic Classification Boundary

Wagner grade and University of Texas (UT) staging are scored by an
external collaborator. This module defines what that collaborator hands
back and combines it into an expected healing time.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

from woundcare.models import EncounterRecord, EpisodeRecord


class UTStage(str, Enum):
    """UT stage: A clean, B infected, C ischemic, D infected and ischemic."""
    A = "A"
    B = "B"
    C = "C"
    D = "D"


class RiskLevel(str, Enum):
    LOW      = "low"
    MODERATE = "moderate"
    HIGH     = "high"
    CRITICAL = "critical"


# ── Healing-time factors ────────────────────────────────────────────────
WAGNER_BASE_DAYS = {0: 14, 1: 28, 2: 42, 3: 70, 4: 112, 5: 180}
UT_MULTIPLIERS = {
    UTStage.A: {0: 0.8, 1: 1.0, 2: 1.2, 3: 1.5},
    UTStage.B: {0: 1.0, 1: 1.3, 2: 1.5, 3: 1.8},
    UTStage.C: {0: 1.1, 1: 1.4, 2: 1.7, 3: 2.0},
    UTStage.D: {0: 1.4, 1: 1.8, 2: 2.2, 3: 2.5},
}
RISK_MULTIPLIERS = {
    RiskLevel.LOW: 0.8,
    RiskLevel.MODERATE: 1.0,
    RiskLevel.HIGH: 1.3,
    RiskLevel.CRITICAL: 1.6,
}


def risk_level_from_score(score: float) -> RiskLevel:
    """Map a 0-100 risk score onto a level: <30 low, <60 moderate, <80 high."""
    if score < 30:
        return RiskLevel.LOW
    if score < 60:
        return RiskLevel.MODERATE
    if score < 80:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def _ut_stage(value: Union[UTStage, str]) -> UTStage:
    if isinstance(value, UTStage):
        return value
    return UTStage(value.strip().upper())


def _risk_level(value: Union[RiskLevel, str]) -> RiskLevel:
    if isinstance(value, RiskLevel):
        return value
    return RiskLevel(value.strip().lower())


def calculate_expected_healing_time(
    wagner_grade: int,
    ut_stage: Union[UTStage, str],
    ut_grade: int,
    risk_level: Union[RiskLevel, str],
) -> int:
    """
    Expected healing time in days.

    base(Wagner grade) × UT(stage, grade) × risk multiplier, rounded.

    Raises:
        ValueError: for a grade, stage or level outside the tables
    """
    if wagner_grade not in WAGNER_BASE_DAYS:
        raise ValueError(f"Wagner grade must be 0-5, got {wagner_grade}")
    stage = _ut_stage(ut_stage)
    if ut_grade not in UT_MULTIPLIERS[stage]:
        raise ValueError(f"UT grade must be 0-3, got {ut_grade}")
    level = _risk_level(risk_level)

    days = WAGNER_BASE_DAYS[wagner_grade] * UT_MULTIPLIERS[stage][ut_grade] * RISK_MULTIPLIERS[level]
    return int(round(days))


@dataclass
class DiabeticClassification:
    """Scores supplied by the diabetic classification collaborator."""
    wagner_grade: int
    wagner_description: str
    ut_stage: UTStage
    ut_grade: int
    ut_description: str
    risk_score: int
    risk_level: Optional[RiskLevel] = None

    def __post_init__(self):
        self.ut_stage = _ut_stage(self.ut_stage)
        self.risk_score = int(max(0, min(100, self.risk_score)))
        if self.risk_level is None:
            self.risk_level = risk_level_from_score(self.risk_score)
        else:
            self.risk_level = _risk_level(self.risk_level)

    @property
    def expected_healing_days(self) -> int:
        return calculate_expected_healing_time(
            self.wagner_grade, self.ut_stage, self.ut_grade, self.risk_level
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wagner_grade": self.wagner_grade,
            "wagner_description": self.wagner_description,
            "ut_stage": self.ut_stage.value,
            "ut_grade": self.ut_grade,
            "ut_description": self.ut_description,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "expected_healing_days": self.expected_healing_days,
        }


@runtime_checkable
class DiabeticClassifier(Protocol):
    """External scorer for Wagner grade, UT stage and risk."""

    def classify(
        self, episode: EpisodeRecord, encounters: List[EncounterRecord]
    ) -> DiabeticClassification: ...
