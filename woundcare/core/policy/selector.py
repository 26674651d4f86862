"""
Policy Selector

Chooses the single policy document that best governs an episode:

  1. Fetch current and upcoming candidates for the jurisdiction
  2. Drop superseded, placeholder and non-wound-care documents
  3. Score status + recency + applicability
  4. Highest score wins (ties by policy id); otherwise fall back

Selection is informational. It never changes an eligibility verdict.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from woundcare import config
from woundcare.core.policy.base import (
    FallbackType,
    PolicyCandidate,
    PolicySelectionAudit,
    PolicySelectionResult,
    PolicyStatus,
    PolicyStore,
    ScoreBreakdown,
)
from woundcare.core.telemetry import TelemetrySink
from woundcare.models import PolicySelectionRequest
from woundcare.utils import get_logger, StorageError

logger = get_logger(__name__)


WOUND_CARE_KEYWORDS = [
    "skin substitute", "ctp", "cellular tissue product", "wound", "ulcer",
    "diabetic foot", "diabetic", "venous", "debridement", "cellular",
    "tissue", "graft", "matrix", "collagen",
]
PLACEHOLDER_MARKERS = [
    "placeholder for the full lcd content",
]

FILTER_SUPERSEDED = "superseded_exclusion"
FILTER_PLACEHOLDER = "placeholder_exclusion"
FILTER_RELEVANCE = "wound_care_relevance"
FILTER_FALLBACK = "fallback_logic"


@dataclass(frozen=True)
class ScoringWeights:
    """Tunable scoring constants."""
    status_current: float = 100.0
    status_future: float = 60.0             # only within the lookahead window
    status_proposed: float = 20.0
    recency_max_score: float = 50.0
    recency_max_days: int = 365
    wound_type_title: float = 60.0
    wound_type_content: float = 40.0
    location_hint: float = 15.0
    patient_characteristics: float = 25.0   # per matched characteristic
    diagnosis_code: float = 20.0
    superseded_penalty: float = 0.0         # superseded candidates are filtered before scoring


DEFAULT_WEIGHTS = ScoringWeights()


def _today_utc() -> date:
    return datetime.now(timezone.utc).date()


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def is_placeholder(candidate: PolicyCandidate, min_length: int = config.POLICY_MIN_CONTENT_LENGTH) -> bool:
    text = candidate.content.lower()
    if any(marker in text for marker in PLACEHOLDER_MARKERS):
        return True
    return candidate.content_length < min_length


def is_wound_care_relevant(
    candidate: PolicyCandidate,
    wound_type: str,
    wound_location: Optional[str] = None,
) -> bool:
    text = f"{candidate.title} {candidate.content}".lower()
    terms = list(WOUND_CARE_KEYWORDS)
    if wound_type:
        terms.append(wound_type.lower())
    if wound_location:
        terms.append(wound_location.lower())
    return any(term in text for term in terms)


class PolicySelector:
    """
    Ranks candidate policy documents for an episode.

    The store is awaited once per selection; every other step is pure.
    Store failures degrade to ``error_occurred`` and are never raised.
    """

    def __init__(
        self,
        store: PolicyStore,
        telemetry: Optional[TelemetrySink] = None,
        clock: Optional[Callable[[], date]] = None,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        lookahead_days: int = config.POLICY_LOOKAHEAD_DAYS,
        min_content_length: int = config.POLICY_MIN_CONTENT_LENGTH,
    ):
        self.store = store
        self.telemetry = telemetry
        self.clock = clock or _today_utc
        self.weights = weights
        self.lookahead_days = lookahead_days
        self.min_content_length = min_content_length
        self._selection_count = 0
        logger.info(f"PolicySelector initialized (lookahead={lookahead_days} days)")

    async def select_best_policy(
        self, request: Union[PolicySelectionRequest, Dict[str, Any]]
    ) -> PolicySelectionResult:
        if not isinstance(request, PolicySelectionRequest):
            request = PolicySelectionRequest.model_validate(request)
        self._selection_count += 1
        audit = PolicySelectionAudit()

        try:
            candidates = await self._fetch(request.jurisdiction)
        except StorageError as exc:
            logger.error(f"Policy selection failed for {request.jurisdiction}: {exc.message}", exc_info=True)
            audit.selected_reason = f"Error during policy selection: {exc.message}"
            return self._finish(None, audit, FallbackType.ERROR_OCCURRED, 0, request)

        if not candidates:
            audit.selected_reason = f"No policies found for jurisdiction: {request.jurisdiction}"
            return self._finish(None, audit, FallbackType.NO_POLICIES_AVAILABLE, 0, request)

        audit.considered = len(candidates)
        survivors = self._apply_filters(candidates, request, audit)

        today = self.clock()
        scored = sorted(
            ((self._score(c, request, today), c) for c in survivors),
            key=lambda sc: (-round(sc[0].total, 6), sc[1].policy_id),
        )
        audit.scored = [s for s, _ in scored]

        if scored and scored[0][0].total > 0:
            best_score, best = scored[0]
            audit.selected_reason = f"Selected highest scoring policy with score {best_score.total:.2f}"
            return self._finish(best, audit, None, 0, request)

        audit.filters_applied.append(FILTER_FALLBACK)
        policy, fallback, stages = self._fallback(survivors, today)
        if policy is None:
            audit.selected_reason = "No applicable policies found even with fallback logic"
        elif fallback is FallbackType.NEAREST_FUTURE:
            audit.selected_reason = "Fallback: Selected nearest future wound-care policy"
        else:
            audit.selected_reason = "Fallback: Selected most recent proposed wound-care policy"
        return self._finish(policy, audit, fallback, stages, request)

    # ── Pipeline steps ──────────────────────────────────────────────────

    async def _fetch(self, jurisdiction: str) -> List[PolicyCandidate]:
        try:
            result = await self.store.get_current_and_future_policies_by_mac(
                jurisdiction, self.lookahead_days
            )
        except Exception as exc:
            raise StorageError(
                str(exc) or exc.__class__.__name__,
                operation="get_current_and_future_policies_by_mac",
                details={"jurisdiction": jurisdiction},
            ) from exc
        return list(result or [])

    def _apply_filters(
        self,
        candidates: Sequence[PolicyCandidate],
        request: PolicySelectionRequest,
        audit: PolicySelectionAudit,
    ) -> List[PolicyCandidate]:
        audit.filters_applied.extend([FILTER_SUPERSEDED, FILTER_PLACEHOLDER, FILTER_RELEVANCE])
        survivors = []
        for c in candidates:
            if c.superseded_by or c.status == PolicyStatus.SUPERSEDED:
                audit.excluded.append({"policy_id": c.policy_id, "reason": FILTER_SUPERSEDED})
            elif is_placeholder(c, self.min_content_length):
                audit.excluded.append({"policy_id": c.policy_id, "reason": FILTER_PLACEHOLDER})
            elif not is_wound_care_relevant(c, request.wound_type, request.wound_location):
                audit.excluded.append({"policy_id": c.policy_id, "reason": FILTER_RELEVANCE})
            else:
                survivors.append(c)
        return survivors

    def _score(self, c: PolicyCandidate, request: PolicySelectionRequest, today: date) -> ScoreBreakdown:
        w = self.weights
        score = ScoreBreakdown(policy_id=c.policy_id)
        effective = _as_date(c.effective_date)

        # ── Status ─────────────────────────────────────────────────────
        if c.status == PolicyStatus.CURRENT:
            score.status = w.status_current
        elif c.status == PolicyStatus.FUTURE:
            days_until = (effective - today).days
            score.status = w.status_future if days_until <= self.lookahead_days else 0.0
        elif c.status == PolicyStatus.PROPOSED:
            score.status = w.status_proposed

        # ── Recency (future dates count as fully recent) ───────────────
        days_since = max(0, (today - effective).days)
        score.recency = w.recency_max_score * max(0.0, 1.0 - days_since / w.recency_max_days)

        # ── Applicability ──────────────────────────────────────────────
        title = c.title.lower()
        content = c.content.lower()
        wound_type = request.wound_type.lower()
        if wound_type and wound_type in title:
            score.applicability += w.wound_type_title
        if wound_type and wound_type in content:
            score.applicability += w.wound_type_content
        if request.wound_location:
            loc = request.wound_location.lower()
            if loc in title or loc in content:
                score.applicability += w.location_hint
        traits = request.patient_characteristics
        if traits.is_diabetic and ("diabetic" in title or "diabetic" in content):
            score.applicability += w.patient_characteristics
        if traits.has_venous_disease and ("venous" in title or "venous" in content):
            score.applicability += w.patient_characteristics
        upper = f"{c.title} {c.content}".upper()
        if any(code.strip().upper() in upper for code in request.diagnosis_codes if code.strip()):
            score.applicability += w.diagnosis_code

        score.superseded = w.superseded_penalty if c.superseded_by else 0.0
        return score

    def _fallback(
        self, survivors: Sequence[PolicyCandidate], today: date
    ) -> Tuple[Optional[PolicyCandidate], FallbackType, int]:
        future = [c for c in survivors if c.status == PolicyStatus.FUTURE]
        if future:
            nearest = min(future, key=lambda c: (_as_date(c.effective_date), c.policy_id))
            return nearest, FallbackType.NEAREST_FUTURE, 1
        proposed = [c for c in survivors if c.status == PolicyStatus.PROPOSED]
        if proposed:
            latest = max(proposed, key=lambda c: (_as_date(c.effective_date), c.policy_id))
            return latest, FallbackType.MOST_RECENT_PROPOSED, 2
        return None, FallbackType.NO_POLICIES_AVAILABLE, 2

    def _finish(
        self,
        policy: Optional[PolicyCandidate],
        audit: PolicySelectionAudit,
        fallback: Optional[FallbackType],
        stages: int,
        request: PolicySelectionRequest,
    ) -> PolicySelectionResult:
        audit.fallback_used = fallback
        if fallback is not None and self.telemetry is not None:
            self.telemetry.record_policy_fallback(
                fallback.value, stages, audit.considered, request.jurisdiction
            )
        logger.info(
            f"Policy selection [{request.jurisdiction}/{request.wound_type}]: "
            f"selected={policy.policy_id if policy else None} considered={audit.considered} "
            f"fallback={fallback.value if fallback else None}"
        )
        return PolicySelectionResult(policy=policy, audit=audit)


async def select_best_policy(
    store: PolicyStore,
    request: Union[PolicySelectionRequest, Dict[str, Any]],
    telemetry: Optional[TelemetrySink] = None,
) -> PolicySelectionResult:
    """One-shot selection with default weights and the system clock."""
    return await PolicySelector(store, telemetry=telemetry).select_best_policy(request)
