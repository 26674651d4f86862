"""
Integration Tests for Pre-Eligibility Orchestration

End-to-end episodes through every gate, the diabetic collaborator,
advisory attachment and policy selection.
"""
import json
from typing import Any, Dict, List, Optional

import pytest

from conftest import InMemoryPolicyStore

from woundcare.core.eligibility import (
    DiabeticClassification,
    PreEligibilityOrchestrator,
    perform_pre_eligibility_checks,
)
from woundcare.core.policy import PolicySelector


def encounter(
    eid: str,
    day: str,
    length: Optional[float] = None,
    width: Optional[float] = None,
    depth: Optional[float] = 0.3,
    diabetic_status: str = "diabetic",
    codes: Optional[List[str]] = None,
    notes: Optional[List[str]] = None,
) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "id": eid,
        "date": day,
        "diabetic_status": diabetic_status,
        "procedure_codes": codes or [],
        "notes": notes or ["Offloading boot issued; moist dressing continued"],
        "validation_status": "validated",
    }
    if length is not None:
        record["wound_details"] = {
            "measurements": {"length": length, "width": width, "unit": "cm"},
            "depth": depth,
            "location": "plantar foot",
        }
    return record


@pytest.fixture
def dfu_episode() -> Dict[str, Any]:
    return {
        "id": "ep-dfu",
        "wound_type": "Diabetic foot ulcer",
        "wound_location": "plantar foot",
        "primary_diagnosis": "E11.621",
        "secondary_diagnoses": ["L97.412"],
        "jurisdiction": "J",
    }


@pytest.fixture
def dfu_encounters() -> List[Dict[str, Any]]:
    return [
        encounter("enc-1", "2024-07-01", 4.0, 3.0),
        encounter("enc-2", "2024-07-15", 3.8, 2.9),
        encounter("enc-3", "2024-07-30", 3.5, 2.8, codes=["15271"], notes=["Skin substitute applied"]),
    ]


class StaticClassifier:
    """Diabetic classifier returning a fixed assessment."""

    def __init__(self):
        self.calls = 0

    def classify(self, episode, encounters):
        self.calls += 1
        return DiabeticClassification(
            wagner_grade=2,
            wagner_description="Deep ulcer to tendon or capsule",
            ut_stage="A",
            ut_grade=2,
            ut_description="Clean wound penetrating to tendon or capsule",
            risk_score=75,
        )


class BrokenClassifier:
    def classify(self, episode, encounters):
        raise RuntimeError("scoring service offline")


class BrokenAdvisoryEngine:
    def evaluate(self, *args, **kwargs):
        raise RuntimeError("advisory failure")


class RecordingSelector(PolicySelector):
    """PolicySelector that keeps every request it is asked to serve."""

    def __init__(self, store):
        super().__init__(store)
        self.requests = []

    async def select_best_policy(self, request):
        self.requests.append(request)
        return await super().select_best_policy(request)


class TestEligibleEpisode:
    """A covered DFU with insufficient conservative-care response."""

    def test_dfu_eligible(self, dfu_episode, dfu_encounters):
        """4x3 -> 3.5x2.8 over 29 days with CTP on day 29 is eligible."""
        classifier = StaticClassifier()
        result = perform_pre_eligibility_checks(dfu_episode, dfu_encounters, classifier)

        assert result.overall_eligible
        assert result.failure_reasons == []
        assert result.policy_violations == []
        assert result.wound_type_check.is_valid
        assert result.conservative_care_check.days_of_care == 29
        assert result.measurement_check.measurement_count == 3
        assert result.area_reduction_check.meets_threshold
        assert result.area_reduction_check.result.current_reduction_percentage == 18
        assert result.diagnosis_check.is_valid
        assert result.conflicts == []
        assert result.audit_trail[-1] == "Pre-eligibility determination: ELIGIBLE under Medicare LCD L39806"

    def test_diabetic_classifications_audited(self, dfu_episode, dfu_encounters):
        classifier = StaticClassifier()
        result = perform_pre_eligibility_checks(dfu_episode, dfu_encounters, classifier)

        assert classifier.calls == 1
        assert result.diabetic_classification.expected_healing_days == 66
        for entry in [
            "Performing diabetic-specific classifications...",
            "Wagner Grade Assessment: Grade 2 (Deep ulcer to tendon or capsule)",
            "UT Classification: Stage A2 (Clean wound penetrating to tendon or capsule)",
            "Risk Level: high (75/100)",
            "Expected healing time: 66 days",
            "Diabetic assessments completed",
        ]:
            assert entry in result.audit_trail

    def test_advisory_attached_not_decisional(self, dfu_episode, dfu_encounters):
        """Depth data yields an advisory report beside the verdict."""
        result = perform_pre_eligibility_checks(dfu_episode, dfu_encounters)

        assert result.advisory is not None
        assert result.advisory.advisory
        assert "Advisory depth/volume analysis attached (does not affect eligibility)" in result.audit_trail

    def test_advisory_failure_is_isolated(self, dfu_episode, dfu_encounters):
        orchestrator = PreEligibilityOrchestrator(advisory_engine=BrokenAdvisoryEngine())
        result = orchestrator.check(dfu_episode, dfu_encounters)

        assert result.overall_eligible
        assert result.advisory is None
        assert "Advisory depth/volume analysis unavailable" in result.audit_trail

    def test_serializable(self, dfu_episode, dfu_encounters):
        result = perform_pre_eligibility_checks(dfu_episode, dfu_encounters, StaticClassifier())
        data = json.loads(json.dumps(result.to_dict()))

        assert data["overall_eligible"] is True
        assert data["diabetic_classification"]["ut_stage"] == "A"
        assert data["area_reduction_check"]["meets_threshold"] is True


class TestIneligibleEpisodes:
    """Episodes that fail a binding gate."""

    def test_traumatic_wound(self, dfu_encounters):
        episode = {
            "id": "ep-trauma",
            "wound_type": "Laceration of left lower leg",
            "wound_location": "left lower leg",
            "primary_diagnosis": "S81.802A",
        }
        result = perform_pre_eligibility_checks(episode, dfu_encounters)

        assert not result.overall_eligible
        assert "traumatic wound" in result.failure_reasons[0]
        assert (
            "Medicare LCD L39806 covers only DFU and VLU; traumatic wounds are excluded"
            in result.policy_violations
        )
        assert result.audit_trail[-1].startswith("Pre-eligibility determination: NOT ELIGIBLE")

    def test_narrative_conflict_resolved_by_measurement(self, dfu_episode):
        """Notes claim failure but the wound shrank 67%: measurements win."""
        encounters = [
            encounter("enc-1", "2024-07-01", 4.0, 3.0, notes=["Wound not healing despite offloading"]),
            encounter("enc-2", "2024-07-29", 2.0, 2.0),
        ]
        result = perform_pre_eligibility_checks(dfu_episode, encounters)

        assert not result.overall_eligible
        assert result.conflicts[0].narrative_claim == "failure"
        assert any(e.startswith("CONFLICT DETECTED") for e in result.audit_trail)
        assert (
            "RESOLUTION: objective measurement data prioritized over narrative documentation"
            in result.audit_trail
        )
        assert "Medicare LCD L39806: Pre-CTP area reduction requirement not met" in result.policy_violations

    def test_no_measurements(self, dfu_episode):
        encounters = [
            encounter("enc-1", "2024-07-01"),
            encounter("enc-2", "2024-07-30", codes=["15271"]),
        ]
        result = perform_pre_eligibility_checks(dfu_episode, encounters)

        assert not result.overall_eligible
        assert not result.measurement_check.has_measurements
        assert result.measurement_check.encounters_without_measurements == 2
        assert "Incomplete data: no wound measurements documented" in result.failure_reasons
        assert result.advisory is None

    def test_unparseable_encounter_skipped(self, dfu_episode):
        """A malformed encounter is skipped and noted, never fatal."""
        encounters = [
            encounter("enc-1", "2024-07-01", 4.0, 3.0),
            {"id": "enc-bad", "date": "yesterday"},
            encounter("enc-3", "2024-07-30", codes=["15271"]),
        ]
        result = perform_pre_eligibility_checks(dfu_episode, encounters)

        assert any(e.startswith("Incomplete data: encounter 2 skipped") for e in result.audit_trail)
        assert result.measurement_check.measurement_count == 1
        assert not result.area_reduction_check.meets_threshold
        assert any(r.startswith("Incomplete data: Pre-CTP") for r in result.failure_reasons)
        assert not result.overall_eligible


class TestDiabeticCollaborator:
    """Diabetic classification is skipped or degraded without affecting the verdict."""

    def test_non_diabetic_skips_classification(self):
        episode = {
            "id": "ep-vlu",
            "wound_type": "Venous leg ulcer",
            "wound_location": "left medial malleolus",
            "primary_diagnosis": "I83.012",
        }
        encounters = [
            encounter("enc-1", "2024-07-01", 6.0, 4.0, diabetic_status="nondiabetic"),
            encounter("enc-2", "2024-07-30", 5.5, 3.8, diabetic_status="nondiabetic", codes=["15271"]),
        ]
        classifier = StaticClassifier()
        result = perform_pre_eligibility_checks(episode, encounters, classifier)

        assert result.overall_eligible
        assert classifier.calls == 0
        assert result.diabetic_classification is None
        assert "Diabetic-specific classifications skipped - patient not diabetic" in result.audit_trail

    def test_unknown_status_skips_classification(self, dfu_episode, dfu_encounters):
        for e in dfu_encounters:
            e["diabetic_status"] = "unknown"
        classifier = StaticClassifier()
        result = perform_pre_eligibility_checks(dfu_episode, dfu_encounters, classifier)

        assert classifier.calls == 0
        assert "Diabetic-specific classifications skipped - diabetic status unknown" in result.audit_trail

    def test_classifier_error_recorded(self, dfu_episode, dfu_encounters):
        result = perform_pre_eligibility_checks(dfu_episode, dfu_encounters, BrokenClassifier())

        assert result.overall_eligible
        assert result.diabetic_classification is None
        assert any(e.startswith("Diabetic assessment error: RuntimeError") for e in result.audit_trail)

    def test_latest_known_status_wins(self, dfu_episode, dfu_encounters):
        """A later undocumented status does not erase an earlier diagnosis."""
        dfu_encounters[-1]["diabetic_status"] = "unknown"
        result = perform_pre_eligibility_checks(dfu_episode, dfu_encounters, StaticClassifier())
        assert "Diabetic status: diabetic" in result.audit_trail



class TestPostCTPEpisodes:
    """Narrative conflicts are judged against the phase threshold."""

    @pytest.fixture
    def post_ctp_episode(self, dfu_episode) -> Dict[str, Any]:
        dfu_episode["therapy_start"] = "2024-07-30"
        return dfu_episode

    @staticmethod
    def post_ctp_encounters(note: str) -> List[Dict[str, Any]]:
        return [
            encounter("enc-1", "2024-07-01", 4.0, 3.0),
            encounter("enc-2", "2024-07-30", 4.0, 3.0, codes=["15271"], notes=["Skin substitute applied"]),
            encounter("enc-3", "2024-08-27", 4.0, 2.1, notes=[note]),
        ]

    def test_improvement_note_consistent_with_post_ctp_response(self, post_ctp_episode):
        """30% after CTP meets the 20% post-CTP threshold, so "healing well" is no conflict."""
        result = perform_pre_eligibility_checks(
            post_ctp_episode, self.post_ctp_encounters("Wound healing well")
        )
        compliance = result.area_reduction_check.result

        assert compliance.phase.value == "post-ctp"
        assert compliance.overall_compliance.value == "compliant"
        assert compliance.current_reduction_percentage == 30
        assert result.conflicts == []
        assert not any(e.startswith("CONFLICT DETECTED") for e in result.audit_trail)
        assert result.overall_eligible

    def test_failure_note_conflicts_with_post_ctp_response(self, post_ctp_episode):
        result = perform_pre_eligibility_checks(
            post_ctp_episode, self.post_ctp_encounters("Wound not improving")
        )

        assert [c.narrative_claim for c in result.conflicts] == ["failure"]
        assert (
            "CONFLICT DETECTED: narrative documentation indicates failure "
            "but measured area reduction is 30%"
        ) in result.audit_trail


class TestAdvisoryIndependence:
    """Advisory depth alerts sit beside the area-reduction decision."""

    @staticmethod
    def deepening_encounters(with_depth: bool = True) -> List[Dict[str, Any]]:
        depths = [None, 0.2, 0.32, 0.44, 0.56] if with_depth else [None] * 5
        days = ["2024-07-01", "2024-07-08", "2024-07-15", "2024-07-22", "2024-07-29"]
        return [
            encounter(f"enc-{i}", day, 4.0, 3.0, depth=depth)
            for i, (day, depth) in enumerate(zip(days, depths), start=1)
        ]

    def test_deepening_wound_alerts_without_changing_compliance(self, dfu_episode):
        """A wound deepening 1.2 mm/week raises an alert; area compliance is unchanged."""
        with_depth = perform_pre_eligibility_checks(dfu_episode, self.deepening_encounters())
        without_depth = perform_pre_eligibility_checks(dfu_episode, self.deepening_encounters(False))

        assert with_depth.advisory is not None
        assert with_depth.advisory.alert_issued
        assert without_depth.advisory is None

        compliance = with_depth.area_reduction_check.result
        control = without_depth.area_reduction_check.result
        assert compliance.overall_compliance == control.overall_compliance
        assert compliance.overall_compliance.value == "compliant"
        assert compliance.current_reduction_percentage == control.current_reduction_percentage == 0
        assert with_depth.overall_eligible == without_depth.overall_eligible is True


class TestFreeTextPrivacy:
    """Note text and clinician names never reach the result."""

    def test_note_text_not_in_result(self, dfu_episode, dfu_encounters):
        for e in dfu_encounters:
            e["notes"] = ["Patient John Smith, MRN 445566, wound not healing"]
            e["recorded_by"] = "Dr. Jane Roe"
        result = perform_pre_eligibility_checks(dfu_episode, dfu_encounters, StaticClassifier())

        dumped = json.dumps(result.to_dict(), default=str)
        for secret in ("Jane Roe", "John Smith", "445566"):
            assert secret not in dumped
            assert not any(secret in entry for entry in result.audit_trail)

@pytest.mark.asyncio
class TestPolicySelectionIntegration:
    """Async evaluation with a policy store."""

    async def test_policy_selected(self, dfu_episode, dfu_encounters, policy_store, fixed_today):
        orchestrator = PreEligibilityOrchestrator(
            policy_selector=PolicySelector(policy_store, clock=lambda: fixed_today),
            diabetic_classifier=StaticClassifier(),
        )
        result = await orchestrator.evaluate(dfu_episode, dfu_encounters)

        assert result.overall_eligible
        assert result.policy_selection.policy.policy_id == "L39806"
        assert any(e.startswith("Policy selection: L39806") for e in result.audit_trail)

    async def test_policy_fallback_does_not_change_verdict(self, dfu_episode, dfu_encounters, fixed_today):
        orchestrator = PreEligibilityOrchestrator(
            policy_selector=PolicySelector(InMemoryPolicyStore(), clock=lambda: fixed_today),
        )
        result = await orchestrator.evaluate(dfu_episode, dfu_encounters)

        assert result.overall_eligible
        assert result.policy_selection.policy is None
        assert result.policy_selection.audit.selected_reason == "No policies found for jurisdiction: J"

    async def test_missing_jurisdiction_skips_selection(self, dfu_episode, dfu_encounters, policy_store):
        dfu_episode["jurisdiction"] = None
        orchestrator = PreEligibilityOrchestrator(policy_selector=PolicySelector(policy_store))
        result = await orchestrator.evaluate(dfu_episode, dfu_encounters)

        assert result.policy_selection is None
        assert "Policy selection skipped: no jurisdiction on episode" in result.audit_trail
        assert policy_store.calls == []

    async def test_selection_request_reflects_classification(self, dfu_episode, dfu_encounters, policy_store):
        """The request carries the gate classification and only ICD-10 codes."""
        selector = RecordingSelector(policy_store)
        dfu_episode["secondary_diagnoses"] = ["L97.412", "not-a-code"]
        orchestrator = PreEligibilityOrchestrator(policy_selector=selector)
        await orchestrator.evaluate(dfu_episode, dfu_encounters)

        request = selector.requests[0]
        assert request.jurisdiction == "J"
        assert request.wound_type == "DFU"
        assert request.patient_characteristics.is_diabetic
        assert not request.patient_characteristics.has_venous_disease
        assert request.diagnosis_codes == ["E11.621", "L97.412"]
