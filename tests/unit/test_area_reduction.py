"""
Unit Tests for Area Reduction Compliance

Tests for the pre-CTP and post-CTP thresholds, four-week window
selection and insufficient-data handling.
"""
import json

import pytest
from datetime import timedelta

from conftest import BASE_TIME

from woundcare.core.compliance import (
    AreaReductionEvaluator,
    ComplianceStatus,
    EpisodePhase,
    evaluate_area_reduction_compliance,
)
from woundcare.core.measurement import normalize_measurement


class TestPreCTP:
    """Tests for conservative-care phase evaluation."""

    def test_insufficient_reduction_indicates_ctp(self, measurement_factory):
        """4x3 -> 3.5x2.8 over 29 days is an 18% reduction: CTP indicated."""
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0, 4.0, 3.0),
            measurement_factory("d29", 29, 3.5, 2.8),
        ], EpisodePhase.PRE_CTP)

        assert result.overall_compliance == ComplianceStatus.COMPLIANT
        assert result.meets_phase_requirement
        assert result.reduction_percentage == pytest.approx(18.333, abs=1e-3)
        assert result.current_reduction_percentage == 18
        assert result.days_from_baseline == 29
        assert "CTP indicated" in result.regulatory_notes[-1]

    def test_effective_conservative_care(self, measurement_factory):
        """A 67% reduction means conservative care worked."""
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0, 4.0, 3.0),
            measurement_factory("d28", 28, 2.0, 2.0),
        ])

        assert result.overall_compliance == ComplianceStatus.NON_COMPLIANT
        assert not result.meets_phase_requirement
        assert "CTP not medically necessary" in result.regulatory_notes[-1]

    def test_single_measurement_insufficient(self, measurement_factory):
        """A baseline alone cannot be evaluated."""
        result = evaluate_area_reduction_compliance("ep-1", [measurement_factory("base", 0)])

        assert result.overall_compliance == ComplianceStatus.INSUFFICIENT_DATA
        assert result.reduction_percentage is None
        assert result.regulatory_notes[0].startswith("Pre-CTP: Insufficient measurements")

    def test_out_of_window_growth_is_compliant(self, measurement_factory):
        """With no in-window follow-up, growth still shows conservative care failed."""
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0, 4.0, 3.0),
            measurement_factory("d10", 10, 5.0, 3.0),
        ])

        assert result.overall_compliance == ComplianceStatus.COMPLIANT
        assert result.reduction_percentage < 0
        assert "wound area increased" in result.regulatory_notes[-1]

    def test_out_of_window_shrinkage_is_insufficient(self, measurement_factory):
        """With no in-window follow-up, shrinkage cannot be judged."""
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0, 4.0, 3.0),
            measurement_factory("d10", 10, 3.0, 3.0),
        ])
        assert result.overall_compliance == ComplianceStatus.INSUFFICIENT_DATA

    def test_window_tie_prefers_validated(self, measurement_factory):
        """Equidistant candidates: higher validation priority wins."""
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0),
            measurement_factory("d27", 27, 3.5, 3.0, status="validated"),
            measurement_factory("d29", 29, 3.0, 3.0, status="pending"),
        ])
        assert result.four_week_periods[0].measurement_id == "d27"

    def test_window_tie_prefers_later(self, measurement_factory):
        """Equidistant candidates of equal priority: the later one wins."""
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0),
            measurement_factory("d27", 27, 3.5, 3.0),
            measurement_factory("d29", 29, 3.0, 3.0),
        ])
        assert result.four_week_periods[0].measurement_id == "d29"

    def test_audit_and_next_evaluation(self, measurement_factory):
        """Audit names the episode, phase and policy; next evaluation is 28 days out."""
        result = evaluate_area_reduction_compliance("ep-42", [
            measurement_factory("base", 0),
            measurement_factory("d28", 28, 3.5, 3.0),
        ])
        trail = " ".join(result.audit_trail)
        assert "ep-42" in trail
        assert "Pre-CTP" in trail
        assert "L39806" in trail
        assert result.next_evaluation_date == BASE_TIME + timedelta(days=56)
        assert result.policy_metadata.policy_id == "L39806"


class TestPostCTP:
    """Tests for CTP-in-progress phase evaluation."""

    def test_requires_therapy_start(self, measurement_factory):
        """Post-CTP evaluation without a start date is insufficient data."""
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0),
            measurement_factory("d28", 28, 3.0, 3.0),
        ], EpisodePhase.POST_CTP)

        assert result.overall_compliance == ComplianceStatus.INSUFFICIENT_DATA
        assert result.regulatory_notes == [
            "Post-CTP: Post-CTP phase validation requires CTP start date"
        ]

    def test_continued_therapy_justified(self, measurement_factory):
        """25% reduction clears the 20% bar."""
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0, 4.0, 3.0),
            measurement_factory("d28", 28, 3.0, 3.0),
        ], "post-ctp", therapy_start=BASE_TIME)

        assert result.overall_compliance == ComplianceStatus.COMPLIANT
        assert result.phase_threshold == 20.0
        assert "continued CTP therapy justified" in result.regulatory_notes[-1]

    def test_discontinue_therapy(self, measurement_factory):
        """12.5% reduction fails the 20% bar."""
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0, 4.0, 3.0),
            measurement_factory("d28", 28, 3.5, 3.0),
        ], EpisodePhase.POST_CTP, therapy_start=BASE_TIME)

        assert result.overall_compliance == ComplianceStatus.NON_COMPLIANT
        assert "discontinue treatment" in result.regulatory_notes[-1]

    def test_last_period_decides(self, measurement_factory):
        """With two periods, the later one determines the outcome."""
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0, 4.0, 3.0),
            measurement_factory("d28", 28, 3.6, 3.0),
            measurement_factory("d56", 56, 3.0, 3.0),
        ], EpisodePhase.POST_CTP, therapy_start=BASE_TIME)

        assert [p.measurement_id for p in result.four_week_periods] == ["d28", "d56"]
        assert result.overall_compliance == ComplianceStatus.COMPLIANT
        assert result.current_reduction_percentage == 25

    def test_baseline_within_grace_after_start(self, measurement_factory):
        """A baseline up to a week after CTP start is accepted."""
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 3, 4.0, 3.0),
            measurement_factory("d31", 31, 3.0, 3.0),
        ], EpisodePhase.POST_CTP, therapy_start=BASE_TIME)

        assert result.overall_compliance == ComplianceStatus.COMPLIANT
        assert result.days_from_baseline == 28

    def test_naive_therapy_start(self, measurement_factory):
        """A naive start date is read as UTC."""
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0, 4.0, 3.0),
            measurement_factory("d28", 28, 3.0, 3.0),
        ], EpisodePhase.POST_CTP, therapy_start=BASE_TIME.replace(tzinfo=None))
        assert result.overall_compliance == ComplianceStatus.COMPLIANT


class TestAreaReductionEvaluator:
    """Tests for the evaluator object."""

    def test_unknown_phase_rejected(self, measurement_factory):
        """Phases outside pre/post CTP are a caller error."""
        with pytest.raises(ValueError):
            AreaReductionEvaluator().evaluate("ep-1", [], "maintenance")

    def test_to_dict(self, measurement_factory):
        """Serialized result carries the phase and rounded figures."""
        result = AreaReductionEvaluator().evaluate("ep-1", [
            measurement_factory("base", 0, 4.0, 3.0),
            measurement_factory("d29", 29, 3.5, 2.8),
        ])
        data = result.to_dict()
        assert data["phase"] == "pre-ctp"
        assert data["overall_compliance"] == "compliant"
        assert data["reduction_percentage"] == 18.33
        assert data["four_week_periods"][0]["window"] == [21, 35]


class TestUnusableMeasurements:
    """Unusable records are excluded and audited; the evaluation still returns."""

    BOW_TIE = [(0, 0), (2, 2), (2, 0), (0, 0.5)]

    def test_rejected_outline_uses_dimensions(self, measurement_factory):
        """A self-intersecting day-28 outline does not drive the decision."""
        followup = measurement_factory("d28", 28, 3.5, 2.8)
        followup["vertices"] = self.BOW_TIE
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0, 4.0, 3.0),
            followup,
        ])

        assert result.overall_compliance == ComplianceStatus.COMPLIANT
        assert result.current_reduction_percentage == 18
        assert any("d28: wound outline rejected" in entry for entry in result.audit_trail)

    def test_rejected_outline_without_dimensions_excluded(self, measurement_factory):
        followup = measurement_factory("d28", 28, length=None, width=None)
        followup["vertices"] = self.BOW_TIE
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0, 4.0, 3.0),
            followup,
        ])

        assert result.overall_compliance == ComplianceStatus.INSUFFICIENT_DATA
        assert "Measurement d28 excluded: INPUT_DATA_ERROR" in result.audit_trail

    def test_record_failing_validation_excluded(self, measurement_factory):
        """A follow-up with no id is reported instead of raising."""
        followup = measurement_factory("d28", 28, 2.0, 2.0)
        del followup["id"]
        result = evaluate_area_reduction_compliance("ep-1", [
            measurement_factory("base", 0, 4.0, 3.0),
            followup,
        ])

        assert result.overall_compliance == ComplianceStatus.INSUFFICIENT_DATA
        assert "Measurement unknown excluded: INPUT_DATA_ERROR" in result.audit_trail

    def test_normalized_entry_without_timestamp_excluded(self, measurement_factory):
        """Pre-normalized input with a missing timestamp is filtered before ordering."""
        result = evaluate_area_reduction_compliance("ep-1", [
            normalize_measurement(measurement_factory("base", 0, 4.0, 3.0)),
            normalize_measurement(measurement_factory("d28", 28, 3.6, 3.0)),
            normalize_measurement({"id": "c", "length": 2, "width": 2}),
        ])

        assert result.overall_compliance == ComplianceStatus.COMPLIANT
        assert result.current_reduction_percentage == 10
        assert "Measurement c excluded: MISSING_TIMESTAMP" in result.audit_trail


class TestTimestampsAndPrivacy:
    """Tests for offset-aware day counting and audit content."""

    def test_day_count_across_dst_change(self):
        """Offsets differing across a DST change still give 28 elapsed days."""
        result = evaluate_area_reduction_compliance("ep-1", [
            {"id": "base", "timestamp": "2024-03-09T10:00:00-05:00", "length": 4, "width": 3},
            {"id": "d28", "timestamp": "2024-04-06T10:00:00-04:00", "length": 4, "width": 2},
        ])

        assert result.days_from_baseline == 28
        assert result.current_reduction_percentage == 33
        assert result.overall_compliance == ComplianceStatus.COMPLIANT

    def test_free_text_never_in_result(self, measurement_factory):
        """Clinician names and note text stay out of the result and its audit trail."""
        base = measurement_factory("base", 0, 4.0, 3.0)
        followup = measurement_factory("d28", 28, 3.5, 2.8)
        for m in (base, followup):
            m["recorded_by"] = "Dr. Jane Roe"
            m["notes"] = "Patient John Smith, MRN 445566"
        result = evaluate_area_reduction_compliance("ep-1", [base, followup])

        dumped = json.dumps(result.to_dict(), default=str)
        for secret in ("Jane Roe", "John Smith", "445566"):
            assert secret not in dumped
            assert not any(secret in entry for entry in result.audit_trail)
