"""
Volume Progression Analysis

Ellipsoid wound volume (π/6 · L · W · D) tracked over time, with
expansion alerts against a rolling four-week reference.

ADVISORY ONLY.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from woundcare.core.advisory.thresholds import CLINICAL_THRESHOLDS
from woundcare.core.compliance.base import LCD_CITATION
from woundcare.core.measurement.normalizer import NormalizedMeasurement, build_measurement_history
from woundcare.core.measurement.quality import QualityAssessment, assess_measurement_quality
from woundcare.utils import get_logger

logger = get_logger(__name__)


_VOLUME = CLINICAL_THRESHOLDS["VOLUME_EXPANSION"]
SEVERITY_BANDS = [
    (_VOLUME["CRITICAL_INCREASE_PERCENT"], "major"),
    (_VOLUME["MODERATE_INCREASE_PERCENT"], "moderate"),
    (_VOLUME["MINOR_INCREASE_PERCENT"], "minor"),
]


@dataclass
class VolumeAnalysis:
    episode_id: str
    total_volume_measurements: int = 0
    volume_metrics: Dict[str, Optional[float]] = field(default_factory=dict)
    expansion_alerts: List[Dict[str, Any]] = field(default_factory=list)
    quality_assessment: Optional[QualityAssessment] = None
    audit_trail: List[str] = field(default_factory=list)

    @property
    def advisory(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "episode_id": self.episode_id,
            "total_volume_measurements": self.total_volume_measurements,
            "volume_metrics": {
                k: (None if v is None else round(v, 3)) for k, v in self.volume_metrics.items()
            },
            "expansion_alerts": self.expansion_alerts,
            "quality_assessment": (
                self.quality_assessment.to_dict() if self.quality_assessment else None
            ),
            "advisory": self.advisory,
            "audit_trail": self.audit_trail,
        }


def severity_for(percent_increase: float) -> Optional[str]:
    for bound, label in SEVERITY_BANDS:
        if percent_increase >= bound:
            return label
    return None


def _elapsed_days(a: NormalizedMeasurement, b: NormalizedMeasurement) -> float:
    return (b.timestamp - a.timestamp).total_seconds() / 86400.0


def analyze_volume_progression(
    episode_id: str,
    measurements: Sequence[Any],
    anatomical_location: str = "default",
) -> VolumeAnalysis:
    """
    Compute volume per measurement and flag expansion.

    Each reading is compared with the earliest reading in the preceding
    28 days; the highest band crossed gives the alert severity.
    """
    history = build_measurement_history(measurements)
    series = [m for m in history.entries if m.volume_cm3 is not None and m.volume_cm3 > 0]

    analysis = VolumeAnalysis(episode_id=episode_id, total_volume_measurements=len(series))
    analysis.quality_assessment = assess_measurement_quality(
        measurements, anatomical_location, window_days=_VOLUME["WINDOW_DAYS"]
    )
    analysis.audit_trail.append(
        f"Volume progression analysis for episode {episode_id}: {len(series)} volume measurements "
        f"(advisory only - {LCD_CITATION} coverage unaffected)"
    )

    if not series:
        analysis.volume_metrics = {
            "initial_volume": None,
            "current_volume": None,
            "percent_change": None,
            "weekly_change": None,
        }
        analysis.audit_trail.append("No measurements with length, width and depth; volume not computed")
        return analysis

    initial, current = series[0], series[-1]
    span_days = _elapsed_days(initial, current)
    analysis.volume_metrics = {
        "initial_volume": initial.volume_cm3,
        "current_volume": current.volume_cm3,
        "percent_change": (current.volume_cm3 - initial.volume_cm3) / initial.volume_cm3 * 100.0,
        "weekly_change": (
            (current.volume_cm3 - initial.volume_cm3) / span_days * 7.0 if span_days > 0 else None
        ),
    }

    for i, m in enumerate(series):
        reference = next(
            (r for r in series[:i] if 0 < _elapsed_days(r, m) <= _VOLUME["WINDOW_DAYS"]),
            None,
        )
        if reference is None:
            continue
        pct = (m.volume_cm3 - reference.volume_cm3) / reference.volume_cm3 * 100.0
        severity = severity_for(pct)
        if severity is None:
            continue
        analysis.expansion_alerts.append({
            "measurement_id": m.id,
            "reference_id": reference.id,
            "severity": severity,
            "percent_increase": round(pct, 1),
            "days": round(_elapsed_days(reference, m), 1),
            "timestamp": m.timestamp.isoformat(),
            "advisory": True,
        })
        analysis.audit_trail.append(
            f"Volume expansion {pct:.1f}% over {_elapsed_days(reference, m):.0f} days "
            f"({severity}; threshold {_VOLUME['MINOR_INCREASE_PERCENT']:.0f}%)"
        )

    logger.debug(
        f"Volume analysis [{episode_id}]: n={len(series)} alerts={len(analysis.expansion_alerts)}"
    )
    return analysis
