"""
Eligibility Module - Pre-Eligibility Orchestration

Folds the binding gates (wound type, conservative care, measurements,
area reduction) into one coverage verdict and attaches the informational
outputs beside it.

Usage:
    from woundcare.core.eligibility import perform_pre_eligibility_checks

    result = perform_pre_eligibility_checks(episode, encounters)
    result.overall_eligible, result.failure_reasons, result.audit_trail
"""
from .diabetic import (
    UTStage,
    RiskLevel,
    DiabeticClassification,
    DiabeticClassifier,
    calculate_expected_healing_time,
    risk_level_from_score,
)
from .orchestrator import (
    MeasurementCheck,
    AreaReductionCheck,
    RegulatoryConflict,
    PreEligibilityResult,
    PreEligibilityOrchestrator,
    perform_pre_eligibility_checks,
)

__all__ = [
    "UTStage",
    "RiskLevel",
    "DiabeticClassification",
    "DiabeticClassifier",
    "calculate_expected_healing_time",
    "risk_level_from_score",
    "MeasurementCheck",
    "AreaReductionCheck",
    "RegulatoryConflict",
    "PreEligibilityResult",
    "PreEligibilityOrchestrator",
    "perform_pre_eligibility_checks",
]
