"""
Compliance Layer: Base Types

Shared enums and policy metadata for the binding coverage evaluators.
Nothing in this package reads advisory output.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict


# ── Governing policy ────────────────────────────────────────────────────
LCD_POLICY_ID = "L39806"
LCD_JURISDICTION = "Palmetto GBA Jurisdiction J"
LCD_TITLE = (
    "Skin Substitute Grafts/Cellular and Tissue-Based Products for the Treatment "
    "of Diabetic Foot Ulcers and Venous Leg Ulcers"
)
LCD_EFFECTIVE_DATE = date(2025, 2, 12)
LCD_CITATION = f"Medicare LCD {LCD_POLICY_ID}"


class ComplianceStatus(str, Enum):
    """Outcome of a binding coverage evaluation."""
    COMPLIANT         = "compliant"
    NON_COMPLIANT     = "non_compliant"
    INSUFFICIENT_DATA = "insufficient_data"


class EpisodePhase(str, Enum):
    """
    Evaluation phase relative to the first CTP application.

    PRE_CTP  – conservative care; reduction < 50% supports CTP
    POST_CTP – CTP in progress; reduction ≥ 20% supports continuation
    """
    PRE_CTP  = "pre-ctp"
    POST_CTP = "post-ctp"

    @property
    def label(self) -> str:
        return "Pre-CTP" if self is EpisodePhase.PRE_CTP else "Post-CTP"

    @classmethod
    def parse(cls, value: Any) -> "EpisodePhase":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("_", "-").replace(" ", "-")
        if key in ("pre-ctp", "pre", "pre-therapy", "conservative"):
            return cls.PRE_CTP
        if key in ("post-ctp", "post", "post-therapy"):
            return cls.POST_CTP
        raise ValueError(f"Unknown episode phase: {value!r}")


@dataclass
class PolicyMetadata:
    """Identity of the policy a decision was made under."""
    policy_id: str = LCD_POLICY_ID
    jurisdiction: str = LCD_JURISDICTION
    effective_date: date = LCD_EFFECTIVE_DATE
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "jurisdiction": self.jurisdiction,
            "effective_date": self.effective_date.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }
