"""
Measurement Quality Assessment

Scores a wound depth series for validation coverage, outliers, temporal
gaps and internal consistency. The result gates which advisory tiers may
be raised; it has no bearing on coverage decisions.
NO ML/AI - purely statistical.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from woundcare.models import ValidationStatus
from woundcare.core.measurement.normalizer import (
    MODIFIED_Z_THRESHOLD,
    MM_PER_CM,
    as_measurement_record,
    measurement_id,
    modified_z_scores,
    to_cm,
    validation_priority,
)
from woundcare.utils import get_logger, InputDataError

logger = get_logger(__name__)


# ── Gate thresholds ─────────────────────────────────────────────────────
MAX_OUTLIER_RATE = 0.20
MAX_GAP_DAYS = 21.0
MIN_VALIDATION_RATE = 0.50
GAP_GRACE_DAYS = 7.0               # gaps up to a week cost nothing
MAX_RESIDUAL_CV = 0.25
MIN_POINTS_FOR_STATISTICS = 3

DEFAULT_WEIGHTS = {
    "validation_rate": 0.30,
    "outlier_free": 0.25,
    "temporal_stability": 0.20,
    "measurement_consistency": 0.25,
}

GRADE_BOUNDS = [(0.9, "A"), (0.8, "B"), (0.7, "C"), (0.5, "D")]


@dataclass
class DepthPoint:
    """A usable depth reading in millimetres."""
    id: str
    timestamp: datetime
    depth_mm: float
    validation_status: Optional[ValidationStatus] = None


@dataclass
class QualityAssessment:
    """Quality of one depth series, plus whether high-urgency tiers are allowed."""
    anatomical_location: str
    measurements_assessed: int = 0
    excluded_count: int = 0

    validation_rate: float = 0.0
    outlier_rate: float = 0.0
    temporal_stability: float = 0.0
    measurement_consistency: float = 0.0
    overall_quality_score: float = 0.0
    quality_grade: str = "F"

    max_gap_days: float = 0.0
    outlier_ids: List[str] = field(default_factory=list)
    quality_flags: List[str] = field(default_factory=list)

    allow_high_urgency_alerts: bool = False
    prevention_reasons: List[str] = field(default_factory=list)
    audit_trail: List[str] = field(default_factory=list)

    def compute_overall(self, weights: Optional[Dict[str, float]] = None) -> float:
        """Compute the weighted overall quality score and grade."""
        if weights is None:
            weights = DEFAULT_WEIGHTS

        self.overall_quality_score = float(np.clip(
            self.validation_rate * weights["validation_rate"] +
            (1.0 - self.outlier_rate) * weights["outlier_free"] +
            self.temporal_stability * weights["temporal_stability"] +
            self.measurement_consistency * weights["measurement_consistency"],
            0.0, 1.0,
        ))
        self.quality_grade = grade_for(self.overall_quality_score)
        return self.overall_quality_score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "anatomical_location": self.anatomical_location,
            "measurements_assessed": self.measurements_assessed,
            "excluded_count": self.excluded_count,
            "validation_rate": round(self.validation_rate, 3),
            "outlier_rate": round(self.outlier_rate, 3),
            "temporal_stability": round(self.temporal_stability, 3),
            "measurement_consistency": round(self.measurement_consistency, 3),
            "overall_quality_score": round(self.overall_quality_score, 3),
            "quality_grade": self.quality_grade,
            "max_gap_days": round(self.max_gap_days, 1),
            "outlier_ids": self.outlier_ids,
            "quality_flags": self.quality_flags,
            "allow_high_urgency_alerts": self.allow_high_urgency_alerts,
            "prevention_reasons": self.prevention_reasons,
            "audit_trail": self.audit_trail,
        }


def grade_for(score: float) -> str:
    for bound, grade in GRADE_BOUNDS:
        if score >= bound:
            return grade
    return "F"


def collect_depth_points(
    measurements: Sequence[Any],
    invalid_ids: Optional[List[str]] = None,
) -> Tuple[List[DepthPoint], int]:
    """
    Convert raw measurements into ordered depth points in mm.

    Returns the points and the number of entries dropped for a missing
    depth or timestamp, or for failing record validation. Ids of records
    that failed validation are appended to ``invalid_ids`` when given.
    Same-timestamp duplicates keep the highest validation priority.
    """
    points: List[DepthPoint] = []
    dropped = 0
    for raw in measurements:
        if hasattr(raw, "depth_mm") and hasattr(raw, "timestamp"):
            depth_mm, ts = raw.depth_mm, raw.timestamp
            mid, status = raw.id, raw.validation_status
        else:
            try:
                record = as_measurement_record(raw)
            except InputDataError:
                dropped += 1
                if invalid_ids is not None:
                    invalid_ids.append(measurement_id(raw))
                continue
            depth_cm = to_cm(record.depth, record.unit)
            depth_mm = None if depth_cm is None else depth_cm * MM_PER_CM
            ts, mid, status = record.timestamp, record.id, record.validation_status
        if depth_mm is None or ts is None:
            dropped += 1
            continue
        points.append(DepthPoint(id=mid, timestamp=ts, depth_mm=float(depth_mm), validation_status=status))

    points.sort(key=lambda p: (p.timestamp, -validation_priority(p.validation_status), p.id))
    deduped: List[DepthPoint] = []
    for p in points:
        if deduped and deduped[-1].timestamp == p.timestamp:
            continue
        deduped.append(p)
    return deduped, dropped


class MeasurementQualityAssessor:
    """
    Assesses depth measurement series quality.

    Uses robust statistics only - NO ML/AI.
    """

    def __init__(self):
        """Initialize assessor."""
        self._assessment_count = 0
        logger.info("MeasurementQualityAssessor initialized (NO-ML)")

    def assess(
        self,
        measurements: Sequence[Any],
        anatomical_location: str = "default",
        window_days: int = 28,
    ) -> QualityAssessment:
        """
        Assess a depth series.

        Args:
            measurements: Records, dicts or normalized measurements
            anatomical_location: Wound location label (used in the audit only)
            window_days: Only readings within this many days of the latest are scored

        Returns:
            QualityAssessment; never raises for missing fields
        """
        self._assessment_count += 1
        result = QualityAssessment(anatomical_location=anatomical_location or "default")

        invalid_ids: List[str] = []
        points, dropped = collect_depth_points(measurements, invalid_ids)
        result.excluded_count = dropped
        if dropped > len(invalid_ids):
            result.quality_flags.append(
                f"{dropped - len(invalid_ids)} measurement(s) excluded: missing depth or timestamp"
            )
        if invalid_ids:
            result.quality_flags.append(
                f"{len(invalid_ids)} measurement(s) excluded: record failed validation"
            )
            result.audit_trail.append(
                f"Invalid measurement record(s) excluded: {', '.join(invalid_ids)}"
            )

        if points:
            latest = points[-1].timestamp
            points = [p for p in points if (latest - p.timestamp).total_seconds() / 86400.0 <= window_days]

        result.measurements_assessed = len(points)
        result.audit_trail.append(
            f"Quality assessment: {len(points)} measurements in {window_days}-day window "
            f"(location: {result.anatomical_location})"
        )

        if not points:
            result.quality_flags.append("No usable depth measurements")
            result.prevention_reasons.append("No usable depth measurements")
            result.audit_trail.append("High-urgency alerts blocked: no usable data")
            return result

        self._score_validation(points, result)
        self._score_outliers(points, result)
        self._score_temporal(points, result)
        self._score_consistency(points, result)
        result.compute_overall()
        self._apply_gate(result)

        result.audit_trail.append(
            f"Overall quality {result.overall_quality_score:.2f} (grade {result.quality_grade})"
        )
        if result.allow_high_urgency_alerts:
            result.audit_trail.append("High-urgency alerts permitted")
        else:
            result.audit_trail.append(
                "High-urgency alerts blocked: " + "; ".join(result.prevention_reasons)
            )

        logger.debug(
            f"Quality assessed: n={len(points)} score={result.overall_quality_score:.2f} "
            f"grade={result.quality_grade}"
        )
        return result

    # ── Components ──────────────────────────────────────────────────────

    def _score_validation(self, points: List[DepthPoint], result: QualityAssessment) -> None:
        validated = sum(1 for p in points if p.validation_status == ValidationStatus.VALIDATED)
        result.validation_rate = validated / len(points)
        if result.validation_rate < MIN_VALIDATION_RATE:
            result.quality_flags.append(
                f"Low validation rate: {result.validation_rate:.0%} < {MIN_VALIDATION_RATE:.0%} recommended"
            )

    def _score_outliers(self, points: List[DepthPoint], result: QualityAssessment) -> None:
        if len(points) < MIN_POINTS_FOR_STATISTICS:
            result.outlier_rate = 0.0
            return
        z = modified_z_scores([p.depth_mm for p in points])
        flagged = [p.id for p, score in zip(points, z) if abs(score) > MODIFIED_Z_THRESHOLD]
        result.outlier_ids = flagged
        result.outlier_rate = len(flagged) / len(points)
        if result.outlier_rate > MAX_OUTLIER_RATE:
            result.quality_flags.append(
                f"High outlier rate: {result.outlier_rate:.0%} > {MAX_OUTLIER_RATE:.0%} threshold"
            )

    def _score_temporal(self, points: List[DepthPoint], result: QualityAssessment) -> None:
        if len(points) < 2:
            result.temporal_stability = 0.5
            return
        gaps = [
            (b.timestamp - a.timestamp).total_seconds() / 86400.0
            for a, b in zip(points, points[1:])
        ]
        result.max_gap_days = max(gaps)
        excess = max(0.0, result.max_gap_days - GAP_GRACE_DAYS)
        result.temporal_stability = float(np.clip(1.0 - excess / MAX_GAP_DAYS, 0.0, 1.0))
        if result.max_gap_days > MAX_GAP_DAYS:
            result.quality_flags.append(
                f"Large measurement gap: {result.max_gap_days:.0f} days > {MAX_GAP_DAYS:.0f} day threshold"
            )

    def _score_consistency(self, points: List[DepthPoint], result: QualityAssessment) -> None:
        if len(points) < MIN_POINTS_FOR_STATISTICS:
            result.measurement_consistency = 0.5
            result.quality_flags.append("Limited measurements for consistency assessment")
            return

        t0 = points[0].timestamp
        days = np.array([(p.timestamp - t0).total_seconds() / 86400.0 for p in points])
        depths = np.array([p.depth_mm for p in points])
        mean_depth = float(np.mean(depths))
        if mean_depth <= 0:
            result.measurement_consistency = 0.1
            return

        # residual spread after removing the linear trend
        slope, intercept = np.polyfit(days, depths, 1)
        residuals = depths - (slope * days + intercept)
        cv = float(np.std(residuals)) / mean_depth
        result.measurement_consistency = max(0.1, 1.0 - cv)
        if cv > MAX_RESIDUAL_CV:
            result.quality_flags.append(
                f"High depth variability: residual CV {cv:.0%} > {MAX_RESIDUAL_CV:.0%}"
            )

    def _apply_gate(self, result: QualityAssessment) -> None:
        reasons = []
        if result.outlier_rate > MAX_OUTLIER_RATE:
            reasons.append(f"Outlier rate {result.outlier_rate:.0%} exceeds {MAX_OUTLIER_RATE:.0%} limit")
        if result.max_gap_days > MAX_GAP_DAYS:
            reasons.append(f"Measurement gap of {result.max_gap_days:.0f} days exceeds {MAX_GAP_DAYS:.0f} day limit")
        if result.validation_rate < MIN_VALIDATION_RATE:
            reasons.append(f"Validation rate {result.validation_rate:.0%} below {MIN_VALIDATION_RATE:.0%} minimum")
        result.prevention_reasons.extend(reasons)
        result.allow_high_urgency_alerts = not reasons


_default_assessor: Optional[MeasurementQualityAssessor] = None


def assess_measurement_quality(
    measurements: Sequence[Any],
    anatomical_location: str = "default",
    window_days: int = 28,
) -> QualityAssessment:
    """Module-level convenience wrapper around MeasurementQualityAssessor."""
    global _default_assessor
    if _default_assessor is None:
        _default_assessor = MeasurementQualityAssessor()
    return _default_assessor.assess(measurements, anatomical_location, window_days)
