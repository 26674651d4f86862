"""
Advisory Module - Depth & Volume Progression Alerts

Everything in this package is ADVISORY: clinicians see it, coverage
evaluators never read it.

Usage:
    from woundcare.core.advisory import DepthVolumeAdvisoryEngine

    engine = DepthVolumeAdvisoryEngine()
    report = engine.evaluate("ep-1", measurements, anatomical_location="foot")
    if report.alert_issued:
        ...
"""
from .thresholds import (
    AlertTier,
    CLINICAL_THRESHOLDS,
    CLINICAL_EVIDENCE,
    ANATOMICAL_REFERENCE_DATA,
    TIER_WEEKLY_RATES,
)
from .depth import (
    AdvisoryAlert,
    ConfirmationResult,
    DepthValidationResult,
    detect_acute_deterioration,
    detect_consecutive_confirmations,
    validate_alert_requirements,
    validate_depth_measurements,
)
from .volume import VolumeAnalysis, analyze_volume_progression
from .engine import AdvisoryReport, DepthTrend, DepthVolumeAdvisoryEngine

__all__ = [
    "AlertTier",
    "CLINICAL_THRESHOLDS",
    "CLINICAL_EVIDENCE",
    "ANATOMICAL_REFERENCE_DATA",
    "TIER_WEEKLY_RATES",
    "AdvisoryAlert",
    "ConfirmationResult",
    "DepthValidationResult",
    "detect_acute_deterioration",
    "detect_consecutive_confirmations",
    "validate_alert_requirements",
    "validate_depth_measurements",
    "VolumeAnalysis",
    "analyze_volume_progression",
    "AdvisoryReport",
    "DepthTrend",
    "DepthVolumeAdvisoryEngine",
]
