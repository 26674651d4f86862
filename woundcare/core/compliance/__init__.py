"""
Compliance Module - Binding Coverage Evaluators

Phase-aware area reduction, conservative-care timeline and wound-type
gates, and diagnosis code validation under Medicare LCD L39806.

Usage:
    from woundcare.core.compliance import evaluate_area_reduction_compliance, EpisodePhase

    result = evaluate_area_reduction_compliance("ep-1", measurements, EpisodePhase.PRE_CTP)
    if result.meets_phase_requirement:
        ...
"""
from .base import (
    ComplianceStatus,
    EpisodePhase,
    PolicyMetadata,
    LCD_POLICY_ID,
    LCD_JURISDICTION,
    LCD_CITATION,
)
from .area_reduction import (
    AreaReductionEvaluator,
    ComplianceResult,
    FourWeekPeriod,
    evaluate_area_reduction_compliance,
)
from .gating import (
    WoundCategory,
    WoundClassification,
    WoundTypeResult,
    TimelineResult,
    classify_wound,
    is_ctp_code,
    validate_wound_type_for_coverage,
    validate_conservative_care_timeline,
)
from .diagnosis import (
    DiagnosisValidationResult,
    validate_diagnosis_codes,
)

__all__ = [
    "ComplianceStatus",
    "EpisodePhase",
    "PolicyMetadata",
    "LCD_POLICY_ID",
    "LCD_JURISDICTION",
    "LCD_CITATION",
    "AreaReductionEvaluator",
    "ComplianceResult",
    "FourWeekPeriod",
    "evaluate_area_reduction_compliance",
    "WoundCategory",
    "WoundClassification",
    "WoundTypeResult",
    "TimelineResult",
    "classify_wound",
    "is_ctp_code",
    "validate_wound_type_for_coverage",
    "validate_conservative_care_timeline",
    "DiagnosisValidationResult",
    "validate_diagnosis_codes",
]
