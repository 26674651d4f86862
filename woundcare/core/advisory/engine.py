"""
Depth/Volume Advisory Engine

Combines quality scoring, trend fitting, tier gating, volume analysis and
the acute-deterioration override into one advisory report per episode.

ADVISORY ONLY - the report is attached beside the coverage verdict and
is never read by any compliance evaluator.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from scipy import stats

from woundcare.core.advisory.depth import (
    AdvisoryAlert,
    DepthValidationResult,
    detect_acute_deterioration,
    detect_consecutive_confirmations,
    validate_alert_requirements,
    validate_depth_measurements,
)
from woundcare.core.advisory.thresholds import CLINICAL_THRESHOLDS, TIER_WEEKLY_RATES, AlertTier
from woundcare.core.advisory.volume import VolumeAnalysis, analyze_volume_progression
from woundcare.core.compliance.base import LCD_CITATION
from woundcare.core.measurement.quality import (
    DepthPoint,
    MeasurementQualityAssessor,
    QualityAssessment,
    collect_depth_points,
)
from woundcare.utils import get_logger

logger = get_logger(__name__)


_DEPTH = CLINICAL_THRESHOLDS["DEPTH_PROGRESSION"]
TWO_WEEK_DAYS = 14.0
TWO_POINT_CONFIDENCE = 0.5         # a straight line through two points proves little
HIGH_URGENCY_TIERS = (AlertTier.URGENT, AlertTier.CRITICAL)


@dataclass
class DepthTrend:
    slope_mm_per_week: float = 0.0
    r_squared: float = 0.0
    two_week_change_mm: float = 0.0
    points: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slope_mm_per_week": round(self.slope_mm_per_week, 3),
            "r_squared": round(self.r_squared, 3),
            "two_week_change_mm": round(self.two_week_change_mm, 2),
            "points": self.points,
        }


@dataclass
class AdvisoryReport:
    """All advisory output for one episode."""
    episode_id: str
    anatomical_location: str
    quality: QualityAssessment
    depth_validation: DepthValidationResult
    trend: DepthTrend
    volume: VolumeAnalysis
    proposed_tier: Optional[AlertTier] = None
    alert: Optional[AdvisoryAlert] = None
    acute_deterioration: Optional[Dict[str, Any]] = None
    audit_trail: List[str] = field(default_factory=list)

    @property
    def advisory(self) -> bool:
        return True

    @property
    def alert_issued(self) -> bool:
        return self.alert is not None and self.alert.should_issue_alert

    def to_dict(self) -> Dict[str, Any]:
        return {
            "episode_id": self.episode_id,
            "anatomical_location": self.anatomical_location,
            "advisory": self.advisory,
            "proposed_tier": self.proposed_tier.value if self.proposed_tier else None,
            "alert_issued": self.alert_issued,
            "alert": self.alert.to_dict() if self.alert else None,
            "acute_deterioration": self.acute_deterioration,
            "trend": self.trend.to_dict(),
            "quality": self.quality.to_dict(),
            "depth_validation": self.depth_validation.to_dict(),
            "volume": self.volume.to_dict(),
            "audit_trail": self.audit_trail,
        }


def fit_depth_trend(points: List[DepthPoint]) -> DepthTrend:
    """Least-squares depth slope (mm/week) with r² as confidence."""
    trend = DepthTrend(points=len(points))
    if len(points) < 2:
        return trend

    t0 = points[0].timestamp
    days = np.array([(p.timestamp - t0).total_seconds() / 86400.0 for p in points])
    depths = np.array([p.depth_mm for p in points])

    if len(points) == 2:
        span = days[1] - days[0]
        trend.slope_mm_per_week = float((depths[1] - depths[0]) / span * 7.0) if span > 0 else 0.0
        trend.r_squared = TWO_POINT_CONFIDENCE if depths[1] != depths[0] else 0.0
    elif np.ptp(days) > 0 and np.ptp(depths) > 0:
        fit = stats.linregress(days, depths)
        trend.slope_mm_per_week = float(fit.slope * 7.0)
        trend.r_squared = float(fit.rvalue ** 2)

    latest = points[-1]
    recent = [p for p in points if (latest.timestamp - p.timestamp).total_seconds() / 86400.0 <= TWO_WEEK_DAYS]
    trend.two_week_change_mm = float(latest.depth_mm - recent[0].depth_mm)
    return trend


def propose_tier(trend: DepthTrend, acute: Optional[Dict[str, Any]]) -> Optional[AlertTier]:
    """Highest tier the observed trend would justify, before gating."""
    weekly, change = trend.slope_mm_per_week, trend.two_week_change_mm
    if acute is not None or weekly >= _DEPTH["CRITICAL_RATE"] or change >= _DEPTH["CRITICAL_CONCERN_2WEEK"]:
        return AlertTier.CRITICAL
    if weekly >= TIER_WEEKLY_RATES[AlertTier.URGENT] or change >= _DEPTH["URGENT_2WEEK"]:
        return AlertTier.URGENT
    if weekly >= _DEPTH["MODERATE_CONCERN_RATE"] or change >= _DEPTH["IMMEDIATE_ATTENTION_2WEEK"]:
        return AlertTier.MODERATE
    if weekly >= _DEPTH["MINOR_CONCERN_RATE"]:
        return AlertTier.MINOR
    return None


class DepthVolumeAdvisoryEngine:
    """
    Advisory depth/volume alerting.

    Stateless apart from an informational counter; safe to share.
    """

    def __init__(self, quality_assessor: Optional[MeasurementQualityAssessor] = None):
        self._quality = quality_assessor or MeasurementQualityAssessor()
        self._evaluation_count = 0
        logger.info("DepthVolumeAdvisoryEngine initialized (advisory only)")

    def evaluate(
        self,
        episode_id: str,
        measurements: Sequence[Any],
        anatomical_location: str = "default",
        window_days: int = 28,
        patient_context: Optional[Dict[str, Any]] = None,
    ) -> AdvisoryReport:
        """
        Build the advisory report for one episode.

        Tiers are tried from the proposed one downwards; the first that
        clears its gates is reported. If none clears, the proposed tier's
        suppressed result is kept so its prevention reasons stay visible.
        """
        self._evaluation_count += 1
        measurements = list(measurements)

        quality = self._quality.assess(measurements, anatomical_location, window_days)
        depth_validation = validate_depth_measurements(measurements, anatomical_location, patient_context)
        volume = analyze_volume_progression(episode_id, measurements, anatomical_location)

        points, _ = collect_depth_points(measurements)
        latest = points[-1].timestamp if points else None
        if latest is not None:
            points = [p for p in points if (latest - p.timestamp).total_seconds() / 86400.0 <= window_days]

        trend = fit_depth_trend(points)
        acute = detect_acute_deterioration(points)
        proposed = propose_tier(trend, acute)

        report = AdvisoryReport(
            episode_id=episode_id,
            anatomical_location=anatomical_location,
            quality=quality,
            depth_validation=depth_validation,
            trend=trend,
            volume=volume,
            proposed_tier=proposed,
            acute_deterioration=acute,
        )
        report.audit_trail.append(
            f"Advisory depth/volume evaluation for episode {episode_id} - "
            f"{LCD_CITATION} coverage determination unaffected"
        )
        report.audit_trail.append(
            f"Depth trend {trend.slope_mm_per_week:.2f} mm/week (r² {trend.r_squared:.2f}), "
            f"2-week change {trend.two_week_change_mm:.1f} mm"
        )

        if proposed is None:
            report.audit_trail.append("No depth progression above minor_concern threshold")
            return report

        first_result: Optional[AdvisoryAlert] = None
        for tier in sorted(AlertTier, key=lambda t: t.rank, reverse=True):
            if tier.rank > proposed.rank:
                continue
            confirmations = detect_consecutive_confirmations(
                points, TIER_WEEKLY_RATES[tier]
            ).consecutive_intervals_confirmed
            candidate = validate_alert_requirements(
                tier, points, quality.overall_quality_score, trend.r_squared, confirmations
            )
            if (tier in HIGH_URGENCY_TIERS and not quality.allow_high_urgency_alerts
                    and not candidate.safety_override_triggered):
                candidate.should_issue_alert = False
                candidate.prevention_reasons.extend(quality.prevention_reasons)
                candidate.audit_trail.append(
                    f"{candidate.alert_type} alert blocked by data quality gate (advisory)"
                )
            if first_result is None:
                first_result = candidate
            if candidate.should_issue_alert:
                report.alert = candidate
                break

        if report.alert is None:
            report.alert = first_result
            report.audit_trail.append(
                f"{proposed.alert_type} alert suppressed; no lower tier cleared its gates"
            )
        else:
            report.audit_trail.append(f"{report.alert.alert_type} alert issued (advisory)")

        logger.info(
            f"Advisory [{episode_id}]: proposed={proposed.value} "
            f"issued={report.alert_issued} override={bool(acute)}"
        )
        return report
