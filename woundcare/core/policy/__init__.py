"""
Policy Module - Policy Document Selection

Usage:
    from woundcare.core.policy import PolicySelector
    from woundcare.models import PolicySelectionRequest

    selector = PolicySelector(store, telemetry=sink)
    result = await selector.select_best_policy(
        PolicySelectionRequest(jurisdiction="J", wound_type="DFU")
    )
    result.policy, result.audit
"""
from .base import (
    PolicyStatus,
    FallbackType,
    PolicyCandidate,
    PolicyStore,
    ScoreBreakdown,
    PolicySelectionAudit,
    PolicySelectionResult,
)
from .selector import (
    PolicySelector,
    ScoringWeights,
    select_best_policy,
    is_placeholder,
    is_wound_care_relevant,
)
from .context import PolicyContext, build_policy_context

__all__ = [
    "PolicyStatus",
    "FallbackType",
    "PolicyCandidate",
    "PolicyStore",
    "ScoreBreakdown",
    "PolicySelectionAudit",
    "PolicySelectionResult",
    "PolicySelector",
    "ScoringWeights",
    "select_best_policy",
    "is_placeholder",
    "is_wound_care_relevant",
    "PolicyContext",
    "build_policy_context",
]
