"""
Policy Selection: Base Types

Candidate policy documents, the store protocol they are read through,
and the audit record every selection returns.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


class PolicyStatus(str, Enum):
    """Publication state of a policy document."""
    CURRENT    = "current"
    FUTURE     = "future"
    PROPOSED   = "proposed"
    SUPERSEDED = "superseded"


class FallbackType(str, Enum):
    """Why the selector did not return a normally scored winner."""
    NEAREST_FUTURE         = "nearest_future"
    MOST_RECENT_PROPOSED   = "most_recent_proposed"
    NO_POLICIES_AVAILABLE  = "no_policies_available"
    ERROR_OCCURRED         = "error_occurred"


@dataclass
class PolicyCandidate:
    """One policy document as returned by the store."""
    jurisdiction: str
    policy_id: str
    title: str
    status: PolicyStatus
    effective_date: date
    content: str = ""
    superseded_by: Optional[str] = None
    url: Optional[str] = None
    policy_type: str = "final"

    def __post_init__(self):
        if not isinstance(self.status, PolicyStatus):
            self.status = PolicyStatus(str(self.status).lower())

    @property
    def content_length(self) -> int:
        return len(self.content.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jurisdiction": self.jurisdiction,
            "policy_id": self.policy_id,
            "title": self.title,
            "status": self.status.value,
            "effective_date": self.effective_date.isoformat(),
            "superseded_by": self.superseded_by,
            "url": self.url,
            "policy_type": self.policy_type,
            "content_length": self.content_length,
        }


@runtime_checkable
class PolicyStore(Protocol):
    """Read access to the policy corpus."""

    async def get_current_and_future_policies_by_mac(
        self, jurisdiction: str, days_ahead: int
    ) -> List[PolicyCandidate]: ...


@dataclass
class ScoreBreakdown:
    policy_id: str
    status: float = 0.0
    recency: float = 0.0
    applicability: float = 0.0
    superseded: float = 0.0

    @property
    def total(self) -> float:
        return self.status + self.recency + self.applicability + self.superseded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "score": round(self.total, 2),
            "components": {
                "status": round(self.status, 2),
                "recency": round(self.recency, 2),
                "applicability": round(self.applicability, 2),
                "superseded": round(self.superseded, 2),
            },
        }


@dataclass
class PolicySelectionAudit:
    considered: int = 0
    filters_applied: List[str] = field(default_factory=list)
    excluded: List[Dict[str, str]] = field(default_factory=list)
    scored: List[ScoreBreakdown] = field(default_factory=list)
    selected_reason: str = ""
    fallback_used: Optional[FallbackType] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "considered": self.considered,
            "filters_applied": self.filters_applied,
            "excluded": self.excluded,
            "scored": [s.to_dict() for s in self.scored],
            "selected_reason": self.selected_reason,
            "fallback_used": self.fallback_used.value if self.fallback_used else None,
        }


@dataclass
class PolicySelectionResult:
    policy: Optional[PolicyCandidate]
    audit: PolicySelectionAudit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy": self.policy.to_dict() if self.policy else None,
            "audit": self.audit.to_dict(),
        }
