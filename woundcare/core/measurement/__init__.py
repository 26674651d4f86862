"""
Measurement Module - Normalization and Quality Scoring

Usage:
    from woundcare.core.measurement import build_measurement_history, assess_measurement_quality

    history = build_measurement_history(records)
    quality = assess_measurement_quality(records, "foot", window_days=28)
"""
from .normalizer import (
    NormalizedMeasurement,
    MeasurementHistory,
    IrregularAreaResult,
    ExtractedMeasurements,
    normalize_measurement,
    build_measurement_history,
    calculate_irregular_wound_area,
    extract_wound_measurements,
    detect_measurement_anomalies,
    elliptical_area,
    ellipsoid_volume,
    to_cm,
)
from .quality import (
    MeasurementQualityAssessor,
    QualityAssessment,
    assess_measurement_quality,
)

__all__ = [
    "NormalizedMeasurement",
    "MeasurementHistory",
    "IrregularAreaResult",
    "ExtractedMeasurements",
    "normalize_measurement",
    "build_measurement_history",
    "calculate_irregular_wound_area",
    "extract_wound_measurements",
    "detect_measurement_anomalies",
    "elliptical_area",
    "ellipsoid_volume",
    "to_cm",
    "MeasurementQualityAssessor",
    "QualityAssessment",
    "assess_measurement_quality",
]
