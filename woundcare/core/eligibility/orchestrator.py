"""
Pre-Eligibility Orchestrator

Runs every binding coverage check for one wound episode and folds them
into a single verdict with a PHI-free audit trail:

  1. Diagnosis code validation (informational)
  2. Wound-type gate
  3. Conservative-care timeline gate
  4. Measurement presence
  5. Phase-aware area reduction
  6. Narrative vs. measurement conflict resolution
  7. Diabetic classification (collaborator)
  8. Advisory depth/volume report (attached, never consulted)

Policy selection runs on the async path and is likewise informational.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from woundcare.core.advisory import AdvisoryReport, DepthVolumeAdvisoryEngine
from woundcare.core.compliance import (
    ComplianceResult,
    ComplianceStatus,
    DiagnosisValidationResult,
    EpisodePhase,
    LCD_CITATION,
    TimelineResult,
    WoundTypeResult,
    evaluate_area_reduction_compliance,
    is_ctp_code,
    validate_conservative_care_timeline,
    validate_diagnosis_codes,
    validate_wound_type_for_coverage,
)
from woundcare.core.compliance.diagnosis import is_icd10_code
from woundcare.core.eligibility.diabetic import DiabeticClassification, DiabeticClassifier
from woundcare.core.measurement import extract_wound_measurements
from woundcare.core.policy import PolicySelectionResult, PolicySelector
from woundcare.core.telemetry import TelemetrySink
from woundcare.models import (
    DiabeticStatus,
    EncounterRecord,
    EpisodeRecord,
    MeasurementRecord,
    MeasurementUnit,
    PatientCharacteristics,
    PolicySelectionRequest,
)
from woundcare.utils import get_logger

logger = get_logger(__name__)


FAILURE_CLAIMS = [
    "not healing", "non-healing", "no improvement", "failed to improve", "not improving",
    "deteriorat", "worsening", "stalled", "no progress", "unchanged",
]
IMPROVEMENT_CLAIMS = [
    "healing well", "significant improvement", "improving", "nearly healed",
    "good progress", "granulating well", "much smaller",
]


@dataclass
class MeasurementCheck:
    has_measurements: bool = False
    measurement_count: int = 0
    encounters_without_measurements: int = 0
    auto_corrections: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_measurements": self.has_measurements,
            "measurement_count": self.measurement_count,
            "encounters_without_measurements": self.encounters_without_measurements,
            "auto_corrections": self.auto_corrections,
        }


@dataclass
class AreaReductionCheck:
    meets_threshold: bool
    result: ComplianceResult

    def to_dict(self) -> Dict[str, Any]:
        return {"meets_threshold": self.meets_threshold, **self.result.to_dict()}


@dataclass
class RegulatoryConflict:
    """Narrative documentation that disagrees with measured reduction."""
    narrative_claim: str                 # "failure" | "improvement"
    measured_reduction: float
    resolution: str = "objective measurement data prioritized"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "narrative_claim": self.narrative_claim,
            "measured_reduction": round(self.measured_reduction, 2),
            "resolution": self.resolution,
        }


@dataclass
class PreEligibilityResult:
    episode_id: str
    overall_eligible: bool = False
    diagnosis_check: Optional[DiagnosisValidationResult] = None
    wound_type_check: Optional[WoundTypeResult] = None
    conservative_care_check: Optional[TimelineResult] = None
    measurement_check: MeasurementCheck = field(default_factory=MeasurementCheck)
    area_reduction_check: Optional[AreaReductionCheck] = None
    diabetic_classification: Optional[DiabeticClassification] = None
    conflicts: List[RegulatoryConflict] = field(default_factory=list)
    advisory: Optional[AdvisoryReport] = None
    policy_selection: Optional[PolicySelectionResult] = None
    failure_reasons: List[str] = field(default_factory=list)
    policy_violations: List[str] = field(default_factory=list)
    audit_trail: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        def _d(obj):
            return obj.to_dict() if obj is not None else None

        return {
            "episode_id": self.episode_id,
            "overall_eligible": self.overall_eligible,
            "diagnosis_check": _d(self.diagnosis_check),
            "wound_type_check": _d(self.wound_type_check),
            "conservative_care_check": _d(self.conservative_care_check),
            "measurement_check": self.measurement_check.to_dict(),
            "area_reduction_check": _d(self.area_reduction_check),
            "diabetic_classification": _d(self.diabetic_classification),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "advisory": _d(self.advisory),
            "policy_selection": _d(self.policy_selection),
            "failure_reasons": self.failure_reasons,
            "policy_violations": self.policy_violations,
            "audit_trail": self.audit_trail,
        }


def _coerce_episode(episode: Union[EpisodeRecord, Dict[str, Any]]) -> EpisodeRecord:
    if isinstance(episode, EpisodeRecord):
        return episode
    return EpisodeRecord.model_validate(episode)


def _encounter_order(e: EncounterRecord):
    # undated encounters sort last
    return (e.date is None, e.date.timestamp() if e.date else 0.0)


class PreEligibilityOrchestrator:
    """
    Composes the coverage checks for one episode.

    Holds no per-episode state; collaborators are injected.
    """

    def __init__(
        self,
        policy_selector: Optional[PolicySelector] = None,
        diabetic_classifier: Optional[DiabeticClassifier] = None,
        advisory_engine: Optional[DepthVolumeAdvisoryEngine] = None,
        telemetry: Optional[TelemetrySink] = None,
    ):
        self.policy_selector = policy_selector
        self.diabetic_classifier = diabetic_classifier
        self.advisory_engine = advisory_engine or DepthVolumeAdvisoryEngine()
        self.telemetry = telemetry
        self._check_count = 0
        logger.info("PreEligibilityOrchestrator initialized")

    # ── Public API ──────────────────────────────────────────────────────

    def check(
        self,
        episode: Union[EpisodeRecord, Dict[str, Any]],
        encounters: Sequence[Union[EncounterRecord, Dict[str, Any]]],
    ) -> PreEligibilityResult:
        """Run all synchronous checks. Never raises for incomplete encounters."""
        self._check_count += 1
        episode = _coerce_episode(episode)
        result = PreEligibilityResult(episode_id=episode.id)
        result.audit_trail.append(f"Pre-eligibility check initiated for episode {episode.id}")

        records = self._coerce_encounters(encounters, result)
        status = self._diabetic_status(records)
        result.audit_trail.append(f"Diabetic status: {status.value}")

        self._check_diagnoses(episode, result)
        self._check_wound_type(episode, records, status, result)
        self._check_timeline(records, result)
        measurements = self._collect_measurements(records, result)
        self._check_area_reduction(episode, records, measurements, result)
        self._check_conflicts(records, result)
        self._classify_diabetic(episode, records, status, result)
        self._attach_advisory(episode, records, measurements, status, result)

        result.overall_eligible = bool(
            result.wound_type_check is not None and result.wound_type_check.is_valid
            and result.conservative_care_check is not None and result.conservative_care_check.is_valid
            and result.measurement_check.has_measurements
            and result.area_reduction_check is not None and result.area_reduction_check.meets_threshold
        )
        result.audit_trail.append(
            f"Pre-eligibility determination: {'ELIGIBLE' if result.overall_eligible else 'NOT ELIGIBLE'} "
            f"under {LCD_CITATION}"
        )
        logger.info(
            f"Pre-eligibility [{episode.id}]: eligible={result.overall_eligible} "
            f"failures={len(result.failure_reasons)}"
        )
        return result

    async def evaluate(
        self,
        episode: Union[EpisodeRecord, Dict[str, Any]],
        encounters: Sequence[Union[EncounterRecord, Dict[str, Any]]],
    ) -> PreEligibilityResult:
        """Synchronous checks plus policy selection. Selection never alters the verdict."""
        episode = _coerce_episode(episode)
        result = self.check(episode, encounters)

        if self.policy_selector is None:
            return result
        if not episode.jurisdiction:
            result.audit_trail.append("Policy selection skipped: no jurisdiction on episode")
            return result

        request = self._selection_request(episode, result)
        result.policy_selection = await self.policy_selector.select_best_policy(request)
        selected = result.policy_selection.policy
        result.audit_trail.append(
            f"Policy selection: {selected.policy_id if selected else 'none'} "
            f"({result.policy_selection.audit.selected_reason})"
        )
        return result

    # ── Steps ───────────────────────────────────────────────────────────

    def _coerce_encounters(
        self,
        encounters: Sequence[Union[EncounterRecord, Dict[str, Any]]],
        result: PreEligibilityResult,
    ) -> List[EncounterRecord]:
        records: List[EncounterRecord] = []
        for index, raw in enumerate(encounters, start=1):
            if isinstance(raw, EncounterRecord):
                records.append(raw)
                continue
            try:
                records.append(EncounterRecord.model_validate(raw))
            except ValidationError as exc:
                result.audit_trail.append(
                    f"Incomplete data: encounter {index} skipped ({exc.error_count()} invalid field(s))"
                )
                logger.warning(f"Encounter {index} failed validation with {exc.error_count()} error(s)")
        records.sort(key=_encounter_order)
        result.audit_trail.append(f"{len(records)} encounter(s) available for evaluation")
        return records

    def _diabetic_status(self, records: List[EncounterRecord]) -> DiabeticStatus:
        for e in reversed(records):
            if e.diabetic_status != DiabeticStatus.UNKNOWN:
                return e.diabetic_status
        return DiabeticStatus.UNKNOWN

    def _check_diagnoses(self, episode: EpisodeRecord, result: PreEligibilityResult) -> None:
        check = validate_diagnosis_codes(
            episode.primary_diagnosis, episode.secondary_diagnoses, self.telemetry
        )
        result.diagnosis_check = check
        result.audit_trail.append(
            f"Diagnosis validation: {'VALID' if check.is_valid else 'INVALID'} "
            f"(score: {check.validation_score})"
        )
        for warning in check.warning_messages:
            result.audit_trail.append(f"Diagnosis warning: {warning}")

    def _check_wound_type(
        self,
        episode: EpisodeRecord,
        records: List[EncounterRecord],
        status: DiabeticStatus,
        result: PreEligibilityResult,
    ) -> None:
        notes = [n for e in records for n in e.notes]
        location = episode.wound_location or next(
            (e.wound_details.location for e in reversed(records)
             if e.wound_details is not None and e.wound_details.location),
            None,
        )
        code = episode.primary_diagnosis if is_icd10_code(episode.primary_diagnosis) else None
        check = validate_wound_type_for_coverage(episode.wound_type, code, notes, status, location)
        result.wound_type_check = check
        result.audit_trail.append(
            f"Wound type check: {'PASS' if check.is_valid else 'FAIL'} - {check.reason}"
        )
        if not check.is_valid:
            result.failure_reasons.append(check.reason)
            if check.policy_violation:
                result.policy_violations.append(check.policy_violation)

    def _check_timeline(self, records: List[EncounterRecord], result: PreEligibilityResult) -> None:
        check = validate_conservative_care_timeline(records)
        result.conservative_care_check = check
        result.audit_trail.append(
            f"Conservative care check: {'PASS' if check.is_valid else 'FAIL'} - "
            f"{check.days_of_care} days documented"
        )
        if not check.is_valid:
            result.failure_reasons.append(check.reason)
            if check.policy_violation:
                result.policy_violations.append(check.policy_violation)

    def _collect_measurements(
        self, records: List[EncounterRecord], result: PreEligibilityResult
    ) -> List[MeasurementRecord]:
        measurements: List[MeasurementRecord] = []
        check = result.measurement_check
        for index, e in enumerate(records, start=1):
            extracted = extract_wound_measurements(e.wound_details, auto_correct=True)
            if extracted is None or e.date is None:
                check.encounters_without_measurements += 1
                continue
            mid = e.id or f"encounter-{index}"
            if extracted.auto_corrections:
                check.auto_corrections.append({"measurement_id": mid, **extracted.auto_corrections})
                result.audit_trail.append(
                    f"Measurement review suggested for {mid} "
                    f"(confidence {extracted.auto_corrections['confidence']:.2f}); original values retained"
                )
            measurements.append(MeasurementRecord(
                id=mid,
                timestamp=e.date,
                length=extracted.length,
                width=extracted.width,
                depth=extracted.depth,
                unit=MeasurementUnit.CM,
                validation_status=e.validation_status,
            ))

        check.measurement_count = len(measurements)
        check.has_measurements = bool(measurements)
        if check.encounters_without_measurements:
            result.audit_trail.append(
                f"Incomplete data: {check.encounters_without_measurements} encounter(s) without wound measurements"
            )
        if not measurements:
            result.failure_reasons.append("Incomplete data: no wound measurements documented")
        result.audit_trail.append(f"Measurement check: {len(measurements)} measurement(s) extracted")
        return measurements

    def _check_area_reduction(
        self,
        episode: EpisodeRecord,
        records: List[EncounterRecord],
        measurements: List[MeasurementRecord],
        result: PreEligibilityResult,
    ) -> None:
        phase = EpisodePhase.POST_CTP if episode.therapy_start else EpisodePhase.PRE_CTP
        cutoff = None
        if phase is EpisodePhase.PRE_CTP:
            # measurements taken after CTP began are not conservative-care evidence
            ctp_dates = [
                e.date for e in records
                if e.date is not None and any(is_ctp_code(pc.code) for pc in e.procedure_codes)
            ]
            cutoff = min(ctp_dates) if ctp_dates else None
        series = [m for m in measurements if cutoff is None or m.timestamp <= cutoff]

        compliance = evaluate_area_reduction_compliance(
            episode.id, series, phase, episode.therapy_start
        )
        meets = compliance.overall_compliance == ComplianceStatus.COMPLIANT
        result.area_reduction_check = AreaReductionCheck(meets_threshold=meets, result=compliance)
        result.audit_trail.extend(compliance.audit_trail)

        if not meets:
            note = compliance.regulatory_notes[-1] if compliance.regulatory_notes else "Area reduction not evaluable"
            if compliance.overall_compliance == ComplianceStatus.INSUFFICIENT_DATA:
                result.failure_reasons.append(f"Incomplete data: {note}")
            else:
                result.failure_reasons.append(note)
                result.policy_violations.append(
                    f"{LCD_CITATION}: {phase.label} area reduction requirement not met"
                )

    def _check_conflicts(self, records: List[EncounterRecord], result: PreEligibilityResult) -> None:
        check = result.area_reduction_check
        if check is None or check.result.reduction_percentage is None:
            return
        text = " ".join(n for e in records for n in e.notes).lower()
        if not text:
            return

        claims_failure = any(kw in text for kw in FAILURE_CLAIMS)
        claims_improvement = not claims_failure and any(kw in text for kw in IMPROVEMENT_CLAIMS)
        reduction = check.result.reduction_percentage
        threshold = check.result.phase_threshold

        conflict = None
        if claims_failure and reduction >= threshold:
            conflict = RegulatoryConflict(narrative_claim="failure", measured_reduction=reduction)
        elif claims_improvement and reduction < threshold:
            conflict = RegulatoryConflict(narrative_claim="improvement", measured_reduction=reduction)
        if conflict is None:
            return

        result.conflicts.append(conflict)
        result.audit_trail.append(
            f"CONFLICT DETECTED: narrative documentation indicates {conflict.narrative_claim} "
            f"but measured area reduction is {reduction:.0f}%"
        )
        result.audit_trail.append(
            "RESOLUTION: objective measurement data prioritized over narrative documentation"
        )
        logger.warning(f"Narrative/measurement conflict in episode {result.episode_id}")

    def _classify_diabetic(
        self,
        episode: EpisodeRecord,
        records: List[EncounterRecord],
        status: DiabeticStatus,
        result: PreEligibilityResult,
    ) -> None:
        if status == DiabeticStatus.NONDIABETIC:
            result.audit_trail.append("Diabetic-specific classifications skipped - patient not diabetic")
            return
        if status == DiabeticStatus.UNKNOWN:
            result.audit_trail.append("Diabetic-specific classifications skipped - diabetic status unknown")
            return
        if self.diabetic_classifier is None:
            result.audit_trail.append("Diabetic-specific classifications unavailable - no classifier configured")
            return

        result.audit_trail.append("Performing diabetic-specific classifications...")
        try:
            c = self.diabetic_classifier.classify(episode, records)
            healing_days = c.expected_healing_days
        except Exception as exc:
            logger.error(f"Diabetic classification failed for episode {episode.id}", exc_info=True)
            result.audit_trail.append(
                f"Diabetic assessment error: {exc.__class__.__name__} - continuing without classifications"
            )
            return

        result.diabetic_classification = c
        result.audit_trail.append(f"Wagner Grade Assessment: Grade {c.wagner_grade} ({c.wagner_description})")
        result.audit_trail.append(
            f"UT Classification: Stage {c.ut_stage.value}{c.ut_grade} ({c.ut_description})"
        )
        result.audit_trail.append(f"Risk Level: {c.risk_level.value} ({c.risk_score}/100)")
        result.audit_trail.append(f"Expected healing time: {healing_days} days")
        result.audit_trail.append("Diabetic assessments completed")

    def _attach_advisory(
        self,
        episode: EpisodeRecord,
        records: List[EncounterRecord],
        measurements: List[MeasurementRecord],
        status: DiabeticStatus,
        result: PreEligibilityResult,
    ) -> None:
        if not any(m.depth is not None for m in measurements):
            return
        location = episode.wound_location or "default"
        try:
            result.advisory = self.advisory_engine.evaluate(
                episode.id,
                measurements,
                anatomical_location=location,
                patient_context={"diabetic_status": status.value},
            )
        except Exception:
            logger.error(f"Advisory analysis failed for episode {episode.id}", exc_info=True)
            result.audit_trail.append("Advisory depth/volume analysis unavailable")
            return
        result.audit_trail.append("Advisory depth/volume analysis attached (does not affect eligibility)")

    def _selection_request(
        self, episode: EpisodeRecord, result: PreEligibilityResult
    ) -> PolicySelectionRequest:
        classification = result.wound_type_check.classification if result.wound_type_check else None
        if classification is not None and classification.is_dfu:
            wound_type = "DFU"
        elif classification is not None and classification.is_vlu:
            wound_type = "VLU"
        else:
            wound_type = episode.wound_type or "wound"
        codes = [
            c for c in [episode.primary_diagnosis, *episode.secondary_diagnoses]
            if is_icd10_code(c)
        ]
        return PolicySelectionRequest(
            jurisdiction=episode.jurisdiction,
            wound_type=wound_type,
            wound_location=episode.wound_location,
            patient_characteristics=PatientCharacteristics(
                is_diabetic=result.diabetic_classification is not None
                or (classification is not None and classification.is_dfu),
                has_venous_disease=classification is not None and classification.is_vlu,
            ),
            diagnosis_codes=codes,
        )


_shared_advisory_engine: Optional[DepthVolumeAdvisoryEngine] = None


def perform_pre_eligibility_checks(
    episode: Union[EpisodeRecord, Dict[str, Any]],
    encounters: Sequence[Union[EncounterRecord, Dict[str, Any]]],
    diabetic_classifier: Optional[DiabeticClassifier] = None,
    telemetry: Optional[TelemetrySink] = None,
) -> PreEligibilityResult:
    """Synchronous pre-eligibility check for one episode."""
    global _shared_advisory_engine
    if _shared_advisory_engine is None:
        _shared_advisory_engine = DepthVolumeAdvisoryEngine()
    orchestrator = PreEligibilityOrchestrator(
        diabetic_classifier=diabetic_classifier,
        advisory_engine=_shared_advisory_engine,
        telemetry=telemetry,
    )
    return orchestrator.check(episode, encounters)
