"""
Depth Progression Validation

Anatomical plausibility of depth readings, trend confirmation across
consecutive intervals, and the per-tier gates an advisory alert must
clear before it is raised.

ADVISORY ONLY: results here never alter a coverage determination.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from woundcare.core.advisory.thresholds import (
    ANATOMICAL_REFERENCE_DATA,
    CLINICAL_THRESHOLDS,
    TIER_WEEKLY_RATES,
    AlertTier,
    tissue_reference,
)
from woundcare.core.compliance.base import LCD_CITATION
from woundcare.core.measurement.normalizer import MM_PER_CM, as_measurement_record, measurement_id, to_cm
from woundcare.core.measurement.quality import DepthPoint, collect_depth_points
from woundcare.models import DiabeticStatus, ValidationStatus
from woundcare.utils import get_logger, InputDataError

logger = get_logger(__name__)


SHALLOW_DEPTH_MM = 0.5
_CONFIDENCE = CLINICAL_THRESHOLDS["CONFIDENCE"]
_QUALITY = CLINICAL_THRESHOLDS["QUALITY"]
_OVERRIDE = CLINICAL_THRESHOLDS["SAFETY_OVERRIDE"]


# ── Result types ────────────────────────────────────────────────────────

@dataclass
class DepthReadingValidation:
    measurement_id: str
    depth: Optional[float]                   # mm
    anatomically_plausible: bool = True
    measurement_quality_good: bool = True
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "measurement_id": self.measurement_id,
            "depth": None if self.depth is None else round(self.depth, 2),
            "validation_flags": {
                "anatomically_plausible": self.anatomically_plausible,
                "measurement_quality_good": self.measurement_quality_good,
            },
            "recommendations": self.recommendations,
        }


@dataclass
class DepthValidationResult:
    depth_validation_results: List[DepthReadingValidation] = field(default_factory=list)
    overall_quality_score: float = 0.0
    anatomical_feasibility_assessment: Dict[str, Any] = field(default_factory=dict)
    audit_trail: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "depth_validation_results": [r.to_dict() for r in self.depth_validation_results],
            "overall_quality_score": round(self.overall_quality_score, 3),
            "anatomical_feasibility_assessment": self.anatomical_feasibility_assessment,
            "audit_trail": self.audit_trail,
        }


@dataclass
class ConfirmationResult:
    """Run-length of adjacent intervals confirming a depth increase."""
    consecutive_intervals_confirmed: int = 0
    max_consecutive_confirmed: int = 0
    weekly_rate_threshold: float = 0.0
    interval_rates: List[Dict[str, Any]] = field(default_factory=list)
    confirmation_details: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consecutive_intervals_confirmed": self.consecutive_intervals_confirmed,
            "max_consecutive_confirmed": self.max_consecutive_confirmed,
            "weekly_rate_threshold": self.weekly_rate_threshold,
            "interval_rates": self.interval_rates,
            "confirmation_details": self.confirmation_details,
        }


@dataclass
class AdvisoryAlert:
    """
    Outcome of the alert gates for one tier.

    ``advisory`` is always True: these alerts inform clinicians and are
    never an input to coverage.
    """
    tier: AlertTier
    should_issue_alert: bool = False
    quality_score: float = 0.0
    confidence_score: float = 0.0
    consecutive_confirmations: int = 0
    validation_results: Dict[str, bool] = field(default_factory=dict)
    prevention_reasons: List[str] = field(default_factory=list)
    safety_override_triggered: bool = False
    acute_change: Optional[Dict[str, Any]] = None
    audit_trail: List[str] = field(default_factory=list)

    @property
    def alert_type(self) -> str:
        return self.tier.alert_type

    @property
    def advisory(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier.value,
            "alert_type": self.alert_type,
            "should_issue_alert": self.should_issue_alert,
            "quality_score": round(self.quality_score, 3),
            "confidence_score": round(self.confidence_score, 3),
            "consecutive_confirmations": self.consecutive_confirmations,
            "validation_results": self.validation_results,
            "prevention_reasons": self.prevention_reasons,
            "safety_override_triggered": self.safety_override_triggered,
            "acute_change": self.acute_change,
            "advisory": self.advisory,
            "audit_trail": self.audit_trail,
        }


def _days_between(a: DepthPoint, b: DepthPoint) -> float:
    return (b.timestamp - a.timestamp).total_seconds() / 86400.0


def _window(points: List[DepthPoint], window_days: Optional[float]) -> List[DepthPoint]:
    if not points or window_days is None:
        return points
    latest = points[-1].timestamp
    return [p for p in points if (latest - p.timestamp).total_seconds() / 86400.0 <= window_days]


# ── Anatomical plausibility ─────────────────────────────────────────────

def _reading_depth_mm(raw: Any) -> tuple:
    """(id, depth in mm). Raises InputDataError for a record that fails validation."""
    if isinstance(raw, DepthPoint):
        return raw.id, raw.depth_mm
    record = as_measurement_record(raw)
    depth_cm = to_cm(record.depth, record.unit)
    return record.id, None if depth_cm is None else depth_cm * MM_PER_CM


def _is_diabetic(patient_context: Optional[Dict[str, Any]]) -> bool:
    if not patient_context:
        return False
    status = patient_context.get("diabetic_status", patient_context.get("is_diabetic"))
    try:
        return DiabeticStatus.parse(status) == DiabeticStatus.DIABETIC
    except ValueError:
        return False


def validate_depth_measurements(
    measurements: Sequence[Any],
    anatomical_location: str = "default",
    patient_context: Optional[Dict[str, Any]] = None,
) -> DepthValidationResult:
    """
    Check each depth reading against location-specific tissue thickness.

    Readings are converted to mm from their own unit. Values are flagged,
    never altered.
    """
    ref = tissue_reference(anatomical_location)
    result = DepthValidationResult()

    factors: List[str] = []
    if ref["site"] in ANATOMICAL_REFERENCE_DATA["WEIGHT_BEARING_SITES"]:
        factors.append("Weight-bearing location: offloading status affects depth progression")
    if _is_diabetic(patient_context):
        factors.append("Diabetic foot considerations: neuropathy may mask deep tissue involvement")

    result.anatomical_feasibility_assessment = {
        "anatomical_location": ref["site"],
        "expected_depth_range": {"min": ref["min"], "max": ref["max"]},
        "reference_source": ref["source"],
        "location_specific_factors": factors,
    }

    good = 0
    for raw in measurements:
        try:
            mid, depth_mm = _reading_depth_mm(raw)
        except InputDataError:
            result.depth_validation_results.append(DepthReadingValidation(
                measurement_id=measurement_id(raw),
                depth=None,
                anatomically_plausible=False,
                measurement_quality_good=False,
                recommendations=["Measurement record failed validation; re-enter the reading"],
            ))
            continue
        reading = DepthReadingValidation(measurement_id=mid, depth=depth_mm)
        if depth_mm is None:
            reading.anatomically_plausible = False
            reading.measurement_quality_good = False
            reading.recommendations.append("Depth not recorded")
        else:
            if depth_mm <= 0:
                reading.anatomically_plausible = False
                reading.recommendations.append("Non-positive depth value; re-measure")
            elif depth_mm > ref["max"]:
                reading.anatomically_plausible = False
                reading.recommendations.append(
                    f"Depth {depth_mm:.1f} mm exceeds expected anatomical limit of "
                    f"{ref['max']:.0f} mm for {ref['site']}; verify measurement and unit"
                )
            if 0 < depth_mm < SHALLOW_DEPTH_MM:
                reading.measurement_quality_good = False
                reading.recommendations.append(
                    f"Very shallow depth measurement ({depth_mm:.2f} mm); confirm probe technique"
                )
        if reading.anatomically_plausible and reading.measurement_quality_good:
            good += 1
        result.depth_validation_results.append(reading)

    n = len(result.depth_validation_results)
    result.overall_quality_score = good / n if n else 0.0
    result.audit_trail.append(
        f"Depth validation: {good}/{n} readings plausible for {ref['site']} "
        f"({ref['min']:.0f}-{ref['max']:.0f} mm reference)"
    )
    return result


# ── Trend confirmation ──────────────────────────────────────────────────

def detect_consecutive_confirmations(
    measurements: Sequence[Any],
    weekly_rate_threshold: float,
    window_days: Optional[float] = None,
) -> ConfirmationResult:
    """
    Count consecutive intervals whose depth increase meets the weekly rate.

    A decrease, or an increase below threshold, breaks the run. The
    trailing run length is what gates alerts.
    """
    points, _ = collect_depth_points(measurements)
    points = _window(points, window_days)
    result = ConfirmationResult(weekly_rate_threshold=weekly_rate_threshold)

    run = 0
    for a, b in zip(points, points[1:]):
        days = _days_between(a, b)
        if days <= 0:
            continue
        change = b.depth_mm - a.depth_mm
        rate = change / days * 7.0
        result.interval_rates.append({
            "from_id": a.id,
            "to_id": b.id,
            "days": round(days, 2),
            "change_mm": round(change, 2),
            "weekly_rate": round(rate, 3),
        })
        if change < 0:
            run = 0
            result.confirmation_details.append(
                f"Interval {a.id}->{b.id}: Trend break - depth decreased by {abs(change):.1f} mm"
            )
        elif rate >= weekly_rate_threshold:
            run += 1
            result.confirmation_details.append(
                f"Interval {a.id}->{b.id}: confirmed ({rate:.2f} mm/week ≥ {weekly_rate_threshold} mm/week)"
            )
        else:
            run = 0
            result.confirmation_details.append(
                f"Interval {a.id}->{b.id}: below threshold ({rate:.2f} mm/week < {weekly_rate_threshold} mm/week)"
            )
        result.max_consecutive_confirmed = max(result.max_consecutive_confirmed, run)

    result.consecutive_intervals_confirmed = run
    return result


# ── Safety override ─────────────────────────────────────────────────────

def detect_acute_deterioration(measurements: Sequence[Any]) -> Optional[Dict[str, Any]]:
    """
    Largest adjacent depth jump above the acute limit within a week.

    Flagged readings are ignored. Returns None when nothing qualifies.
    """
    points, _ = collect_depth_points(measurements)
    usable = [p for p in points if p.validation_status != ValidationStatus.FLAGGED]
    worst: Optional[Dict[str, Any]] = None
    for a, b in zip(usable, usable[1:]):
        days = _days_between(a, b)
        change = b.depth_mm - a.depth_mm
        if 0 < days <= _OVERRIDE["MAX_INTERVAL_DAYS"] and change > _OVERRIDE["ACUTE_INCREASE_MM"]:
            if worst is None or change > worst["change_mm"]:
                worst = {
                    "from_id": a.id,
                    "to_id": b.id,
                    "change_mm": round(change, 2),
                    "interval_days": round(days, 2),
                    "rate_mm_per_day": round(change / days, 2),
                }
    return worst


# ── Alert gates ─────────────────────────────────────────────────────────

def validate_alert_requirements(
    alert_type: Union[AlertTier, str],
    measurements: Sequence[Any],
    quality_score: float,
    confidence: float,
    consecutive_confirmations: Optional[int] = None,
) -> AdvisoryAlert:
    """
    Apply the minimum-measurement, confidence, quality and trend gates for a tier.

    An acute increase (> 5 mm within 7 days between non-flagged readings)
    issues the alert regardless of the other gates.
    """
    tier = AlertTier.parse(alert_type)
    name = tier.alert_type
    points, _ = collect_depth_points(measurements)
    n = len(points)

    if consecutive_confirmations is None:
        consecutive_confirmations = detect_consecutive_confirmations(
            points, TIER_WEEKLY_RATES[tier]
        ).consecutive_intervals_confirmed

    min_n = _CONFIDENCE["MIN_MEASUREMENTS"][tier]
    min_conf = _CONFIDENCE["MIN_CONFIDENCE"][tier]
    min_quality = _QUALITY["MIN_QUALITY"][tier]
    min_confirm = _CONFIDENCE["MIN_CONSECUTIVE_CONFIRMATIONS"]

    alert = AdvisoryAlert(
        tier=tier,
        quality_score=quality_score,
        confidence_score=confidence,
        consecutive_confirmations=consecutive_confirmations,
    )
    checks = {
        "meets_minimum_measurements": n >= min_n,
        "meets_confidence_threshold": confidence >= min_conf,
        "meets_quality_threshold": quality_score >= min_quality,
        "meets_trend_confirmation": consecutive_confirmations >= min_confirm,
    }
    checks["overall_validation"] = all(checks.values())
    alert.validation_results = checks

    if not checks["meets_minimum_measurements"]:
        alert.prevention_reasons.append(
            f"Insufficient measurements: {n} < {min_n} required for {name} alert"
        )
    if not checks["meets_confidence_threshold"]:
        alert.prevention_reasons.append(
            f"Low statistical confidence: {confidence * 100:.1f}% < {min_conf * 100:.1f}% required for {name} alert"
        )
    if not checks["meets_quality_threshold"]:
        alert.prevention_reasons.append(
            f"Poor data quality: {quality_score * 100:.1f}% < {min_quality * 100:.1f}% required for {name} alert"
        )
    if not checks["meets_trend_confirmation"]:
        alert.prevention_reasons.append(
            f"Insufficient measurements confirming trend: {consecutive_confirmations} consecutive "
            f"intervals < {min_confirm} required for {name} alert"
        )

    alert.audit_trail.append(
        f"{name} alert requirement validation - advisory only, {LCD_CITATION} coverage determination unaffected"
    )
    alert.audit_trail.append(
        f"Measurements {n} (threshold {min_n}), confidence {confidence:.2f} (threshold {min_conf:.2f}), "
        f"quality {quality_score:.2f} (threshold {min_quality:.2f}), "
        f"confirmations {consecutive_confirmations} (threshold {min_confirm})"
    )

    acute = detect_acute_deterioration(points)
    if acute is not None:
        alert.safety_override_triggered = True
        alert.acute_change = acute
        alert.audit_trail.append(
            f"SAFETY OVERRIDE: acute depth increase of {acute['change_mm']:.1f} mm over "
            f"{acute['interval_days']:.1f} days exceeds {_OVERRIDE['ACUTE_INCREASE_MM']:.1f} mm threshold"
        )

    alert.should_issue_alert = checks["overall_validation"] or alert.safety_override_triggered
    alert.audit_trail.append(
        f"{name} alert {'ISSUED' if alert.should_issue_alert else 'SUPPRESSED'} (advisory)"
    )
    logger.debug(f"Alert gates [{name}]: issue={alert.should_issue_alert} n={n}")
    return alert
