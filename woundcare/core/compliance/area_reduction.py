"""
Area Reduction Compliance

Phase-aware percentage area reduction against Medicare LCD L39806:

  Pre-CTP  : < 50% reduction over four weeks of conservative care -> CTP indicated
  Post-CTP : ≥ 20% reduction per four-week period -> continued CTP justified

Each four-week period is evaluated at day 28·k from the baseline, using
the measurement closest to the target within ±7 days.

NON-DECISIONAL INPUTS: advisory depth/volume output is never consulted.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from woundcare.core.compliance.base import (
    ComplianceStatus,
    EpisodePhase,
    PolicyMetadata,
    LCD_CITATION,
)
from woundcare.core.measurement.normalizer import (
    MeasurementHistory,
    NormalizedMeasurement,
    build_measurement_history,
)
from woundcare.utils import get_logger, InsufficientDataError

logger = get_logger(__name__)


# ── Thresholds ──────────────────────────────────────────────────────────
PRE_CTP_THRESHOLD = 50.0           # % reduction at which conservative care is deemed effective
POST_CTP_THRESHOLD = 20.0          # % reduction required to continue CTP
PERIOD_DAYS = 28
WINDOW_TOLERANCE_DAYS = 7
POST_BASELINE_GRACE_DAYS = 7       # baseline may be taken up to a week after CTP start


@dataclass
class FourWeekPeriod:
    """One day-28·k evaluation point."""
    period_number: int
    target_day: int
    measurement_id: Optional[str] = None
    days_from_baseline: Optional[int] = None
    area_cm2: Optional[float] = None
    reduction_percentage: Optional[float] = None

    @property
    def evaluable(self) -> bool:
        return self.measurement_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period_number": self.period_number,
            "target_day": self.target_day,
            "window": [self.target_day - WINDOW_TOLERANCE_DAYS, self.target_day + WINDOW_TOLERANCE_DAYS],
            "measurement_id": self.measurement_id,
            "days_from_baseline": self.days_from_baseline,
            "area_cm2": None if self.area_cm2 is None else round(self.area_cm2, 3),
            "reduction_percentage": (
                None if self.reduction_percentage is None else round(self.reduction_percentage, 2)
            ),
        }


@dataclass
class ComplianceResult:
    """Binding area-reduction decision for one episode and phase."""
    episode_id: str
    phase: EpisodePhase
    phase_threshold: float
    overall_compliance: ComplianceStatus = ComplianceStatus.INSUFFICIENT_DATA

    baseline_area: Optional[float] = None
    current_area: Optional[float] = None
    reduction_percentage: Optional[float] = None
    days_from_baseline: Optional[int] = None
    meets_phase_requirement: bool = False

    four_week_periods: List[FourWeekPeriod] = field(default_factory=list)
    regulatory_notes: List[str] = field(default_factory=list)
    audit_trail: List[str] = field(default_factory=list)
    policy_metadata: PolicyMetadata = field(default_factory=PolicyMetadata)
    next_evaluation_date: Optional[datetime] = None

    @property
    def current_reduction_percentage(self) -> Optional[int]:
        if self.reduction_percentage is None:
            return None
        return int(round(self.reduction_percentage))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "episode_id": self.episode_id,
            "phase": self.phase.value,
            "phase_threshold": self.phase_threshold,
            "overall_compliance": self.overall_compliance.value,
            "baseline_area": None if self.baseline_area is None else round(self.baseline_area, 3),
            "current_area": None if self.current_area is None else round(self.current_area, 3),
            "reduction_percentage": (
                None if self.reduction_percentage is None else round(self.reduction_percentage, 2)
            ),
            "current_reduction_percentage": self.current_reduction_percentage,
            "days_from_baseline": self.days_from_baseline,
            "meets_phase_requirement": self.meets_phase_requirement,
            "four_week_periods": [p.to_dict() for p in self.four_week_periods],
            "regulatory_notes": self.regulatory_notes,
            "audit_trail": self.audit_trail,
            "policy_metadata": self.policy_metadata.to_dict(),
            "next_evaluation_date": (
                self.next_evaluation_date.isoformat() if self.next_evaluation_date else None
            ),
        }


def _elapsed_days(start: datetime, end: datetime) -> float:
    # aware subtraction: absolute elapsed time, unaffected by DST shifts
    return (end - start).total_seconds() / 86400.0


def _reduction(baseline_area: float, current_area: float) -> float:
    return (baseline_area - current_area) / baseline_area * 100.0


def _as_history(measurements: Union[MeasurementHistory, Sequence[Any]]) -> MeasurementHistory:
    if isinstance(measurements, MeasurementHistory):
        return measurements
    items = list(measurements)
    if items and all(isinstance(m, NormalizedMeasurement) for m in items):
        history = MeasurementHistory()
        dated = []
        for m in items:
            if m.timestamp is None:
                history.excluded.append({"id": m.id, "reason": "MISSING_TIMESTAMP"})
            else:
                dated.append(m)
        for m in sorted(dated, key=lambda m: (m.timestamp, -m.priority, m.id)):
            if history.entries and history.entries[-1].timestamp == m.timestamp:
                history.excluded.append({"id": m.id, "reason": "DUPLICATE_TIMESTAMP"})
                continue
            history.entries.append(m)
        return history
    return build_measurement_history(items)


def _select_in_window(
    baseline: NormalizedMeasurement,
    followups: Sequence[NormalizedMeasurement],
    target_day: float,
) -> Optional[NormalizedMeasurement]:
    """Closest to target within tolerance; ties -> priority, later timestamp, id."""
    in_window = []
    for m in followups:
        offset = abs(_elapsed_days(baseline.timestamp, m.timestamp) - target_day)
        if offset <= WINDOW_TOLERANCE_DAYS:
            in_window.append((round(offset, 6), -m.priority, -m.timestamp.timestamp(), m.id, m))
    if not in_window:
        return None
    return min(in_window, key=lambda t: t[:4])[4]


def _build_periods(
    baseline: NormalizedMeasurement,
    followups: Sequence[NormalizedMeasurement],
) -> List[FourWeekPeriod]:
    if not followups:
        return []
    last_day = _elapsed_days(baseline.timestamp, followups[-1].timestamp)
    n_periods = max(1, int((last_day + WINDOW_TOLERANCE_DAYS) // PERIOD_DAYS))

    periods = []
    for k in range(1, n_periods + 1):
        target = PERIOD_DAYS * k
        period = FourWeekPeriod(period_number=k, target_day=target)
        chosen = _select_in_window(baseline, followups, target)
        if chosen is not None:
            period.measurement_id = chosen.id
            period.days_from_baseline = int(round(_elapsed_days(baseline.timestamp, chosen.timestamp)))
            period.area_cm2 = chosen.area_cm2
            period.reduction_percentage = _reduction(baseline.area_cm2, chosen.area_cm2)
        periods.append(period)
    return periods


def _nearest_to_first_period(
    baseline: NormalizedMeasurement,
    followups: Sequence[NormalizedMeasurement],
) -> NormalizedMeasurement:
    if not followups:
        raise InsufficientDataError(
            "No follow-up measurement after baseline", required=2, available=1
        )
    return min(
        followups,
        key=lambda m: (
            abs(_elapsed_days(baseline.timestamp, m.timestamp) - PERIOD_DAYS),
            -m.priority,
            -m.timestamp.timestamp(),
            m.id,
        ),
    )


class AreaReductionEvaluator:
    """
    Evaluates phase-specific area reduction requirements.

    Stateless apart from an informational call counter.
    """

    def __init__(self):
        self._evaluation_count = 0
        logger.info("AreaReductionEvaluator initialized")

    def evaluate(
        self,
        episode_id: str,
        measurement_history: Union[MeasurementHistory, Sequence[Any]],
        phase: Union[EpisodePhase, str] = EpisodePhase.PRE_CTP,
        therapy_start: Optional[datetime] = None,
    ) -> ComplianceResult:
        self._evaluation_count += 1
        phase = EpisodePhase.parse(phase)
        threshold = PRE_CTP_THRESHOLD if phase is EpisodePhase.PRE_CTP else POST_CTP_THRESHOLD
        result = ComplianceResult(episode_id=episode_id, phase=phase, phase_threshold=threshold)

        result.audit_trail.append(
            f"Area reduction evaluation for episode {episode_id} ({phase.label} phase)"
        )
        result.audit_trail.append(
            f"Policy: {LCD_CITATION} ({result.policy_metadata.jurisdiction}), "
            f"{phase.label} threshold {threshold:.0f}%"
        )

        history = _as_history(measurement_history)
        if history.excluded:
            result.audit_trail.append(
                f"{len(history.excluded)} measurement(s) excluded from evaluation (missing or duplicate data)"
            )
            for entry in history.excluded:
                result.audit_trail.append(f"Measurement {entry['id']} excluded: {entry['reason']}")
        for m in history.entries:
            if m.outline_rejected:
                result.audit_trail.append(
                    f"Measurement {m.id}: wound outline rejected (invalid polygon); "
                    f"elliptical L × W area used"
                )

        try:
            if phase is EpisodePhase.PRE_CTP:
                self._evaluate_pre_ctp(history.entries, result)
            else:
                self._evaluate_post_ctp(history.entries, therapy_start, result)
        except InsufficientDataError as exc:
            result.overall_compliance = ComplianceStatus.INSUFFICIENT_DATA
            result.meets_phase_requirement = False
            result.regulatory_notes.append(f"{phase.label}: {exc.message}")
            result.audit_trail.append(f"Decision: insufficient_data ({exc.message})")

        logger.info(
            f"Area reduction [{episode_id}] {phase.label}: {result.overall_compliance.value} "
            f"(reduction={result.current_reduction_percentage}%)"
        )
        return result

    # ── Pre-CTP ─────────────────────────────────────────────────────────

    def _evaluate_pre_ctp(self, entries: List[NormalizedMeasurement], result: ComplianceResult) -> None:
        if len(entries) < 2:
            raise InsufficientDataError(
                "Insufficient measurements: a baseline and a follow-up measurement are required",
                required=2,
                available=len(entries),
            )
        baseline, followups = entries[0], entries[1:]
        self._record_baseline(baseline, result)
        result.four_week_periods = _build_periods(baseline, followups)
        self._audit_periods(result)

        evaluable = [p for p in result.four_week_periods if p.evaluable]
        if evaluable:
            decisive = evaluable[-1]
            current = next(m for m in followups if m.id == decisive.measurement_id)
            self._record_current(baseline, current, result)
        else:
            current = _nearest_to_first_period(baseline, followups)
            self._record_current(baseline, current, result)
            if result.reduction_percentage >= 0:
                raise InsufficientDataError(
                    f"No measurement within ±{WINDOW_TOLERANCE_DAYS} days of a four-week target "
                    f"(nearest at day {result.days_from_baseline})",
                    required=1,
                    available=0,
                )
            result.audit_trail.append(
                f"No in-window measurement; nearest (day {result.days_from_baseline}) shows deterioration"
            )

        reduction = result.reduction_percentage
        if reduction < 0:
            result.overall_compliance = ComplianceStatus.COMPLIANT
            result.regulatory_notes.append(
                f"Pre-CTP: wound area increased by {abs(reduction):.0f}% - "
                f"conservative care insufficient, CTP indicated"
            )
        elif reduction < PRE_CTP_THRESHOLD:
            result.overall_compliance = ComplianceStatus.COMPLIANT
            result.regulatory_notes.append(
                f"Pre-CTP: {reduction:.0f}% area reduction < {PRE_CTP_THRESHOLD:.0f}% threshold - "
                f"conservative care insufficient, CTP indicated"
            )
        else:
            result.overall_compliance = ComplianceStatus.NON_COMPLIANT
            result.regulatory_notes.append(
                f"Pre-CTP: {reduction:.0f}% area reduction ≥ {PRE_CTP_THRESHOLD:.0f}% threshold - "
                f"conservative care was effective - CTP not medically necessary"
            )
        self._finish(result)

    # ── Post-CTP ────────────────────────────────────────────────────────

    def _evaluate_post_ctp(
        self,
        entries: List[NormalizedMeasurement],
        therapy_start: Optional[datetime],
        result: ComplianceResult,
    ) -> None:
        if therapy_start is None:
            raise InsufficientDataError("Post-CTP phase validation requires CTP start date")
        if therapy_start.tzinfo is None:
            therapy_start = therapy_start.replace(tzinfo=timezone.utc)

        before = [m for m in entries if m.timestamp <= therapy_start]
        if before:
            baseline = before[-1]
        else:
            after = [
                m for m in entries
                if 0 < _elapsed_days(therapy_start, m.timestamp) <= POST_BASELINE_GRACE_DAYS
            ]
            if not after:
                raise InsufficientDataError(
                    f"No baseline measurement at or within {POST_BASELINE_GRACE_DAYS} days after CTP start",
                    required=1,
                    available=0,
                )
            baseline = after[0]

        followups = [m for m in entries if m.timestamp > baseline.timestamp]
        if not followups:
            raise InsufficientDataError(
                "Insufficient measurements: no follow-up measurement after CTP baseline",
                required=2,
                available=1,
            )

        self._record_baseline(baseline, result)
        result.four_week_periods = _build_periods(baseline, followups)
        self._audit_periods(result)

        evaluable = [p for p in result.four_week_periods if p.evaluable]
        if not evaluable:
            raise InsufficientDataError(
                f"No measurement within ±{WINDOW_TOLERANCE_DAYS} days of a four-week target",
                required=1,
                available=0,
            )
        decisive = evaluable[-1]
        current = next(m for m in followups if m.id == decisive.measurement_id)
        self._record_current(baseline, current, result)

        reduction = result.reduction_percentage
        if reduction >= POST_CTP_THRESHOLD:
            result.overall_compliance = ComplianceStatus.COMPLIANT
            result.regulatory_notes.append(
                f"Post-CTP: {reduction:.0f}% area reduction ≥ {POST_CTP_THRESHOLD:.0f}% threshold - "
                f"continued CTP therapy justified"
            )
        else:
            result.overall_compliance = ComplianceStatus.NON_COMPLIANT
            result.regulatory_notes.append(
                f"Post-CTP: {reduction:.0f}% area reduction < {POST_CTP_THRESHOLD:.0f}% threshold - "
                f"CTP therapy not effective - discontinue treatment"
            )
        self._finish(result)

    # ── Helpers ─────────────────────────────────────────────────────────

    def _record_baseline(self, baseline: NormalizedMeasurement, result: ComplianceResult) -> None:
        if baseline.area_cm2 <= 0:
            raise InsufficientDataError("Baseline measurement has no measurable area")
        result.baseline_area = baseline.area_cm2
        result.next_evaluation_date = baseline.timestamp + timedelta(days=PERIOD_DAYS)
        result.audit_trail.append(
            f"Baseline measurement {baseline.id}: {baseline.area_cm2:.2f} cm²"
        )

    def _record_current(
        self,
        baseline: NormalizedMeasurement,
        current: NormalizedMeasurement,
        result: ComplianceResult,
    ) -> None:
        result.current_area = current.area_cm2
        result.reduction_percentage = _reduction(baseline.area_cm2, current.area_cm2)
        result.days_from_baseline = int(round(_elapsed_days(baseline.timestamp, current.timestamp)))
        result.next_evaluation_date = current.timestamp + timedelta(days=PERIOD_DAYS)
        result.audit_trail.append(
            f"Current measurement {current.id}: {current.area_cm2:.2f} cm² at day "
            f"{result.days_from_baseline} ({result.reduction_percentage:.1f}% reduction)"
        )

    def _audit_periods(self, result: ComplianceResult) -> None:
        for p in result.four_week_periods:
            if p.evaluable:
                result.audit_trail.append(
                    f"Period {p.period_number} (day {p.target_day}): measurement {p.measurement_id} "
                    f"at day {p.days_from_baseline}, {p.reduction_percentage:.1f}% reduction"
                )
            else:
                result.audit_trail.append(
                    f"Period {p.period_number} (day {p.target_day}): no measurement within "
                    f"±{WINDOW_TOLERANCE_DAYS} days"
                )

    def _finish(self, result: ComplianceResult) -> None:
        result.meets_phase_requirement = result.overall_compliance == ComplianceStatus.COMPLIANT
        result.audit_trail.append(
            f"Decision: {result.overall_compliance.value} under {LCD_CITATION} "
            f"({result.phase.label} threshold {result.phase_threshold:.0f}%)"
        )


_default_evaluator: Optional[AreaReductionEvaluator] = None


def evaluate_area_reduction_compliance(
    episode_id: str,
    measurement_history: Union[MeasurementHistory, Sequence[Any]],
    phase: Union[EpisodePhase, str] = EpisodePhase.PRE_CTP,
    therapy_start: Optional[datetime] = None,
) -> ComplianceResult:
    """
    Evaluate area reduction for one episode.

    Never raises for missing data; returns ``insufficient_data`` instead.
    """
    global _default_evaluator
    if _default_evaluator is None:
        _default_evaluator = AreaReductionEvaluator()
    return _default_evaluator.evaluate(episode_id, measurement_history, phase, therapy_start)
