"""
Policy Context

Renders the selected policy as a text block with a single citation, for
downstream narrative generation.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from woundcare.core.policy.base import PolicySelectionAudit, PolicySelectionResult, PolicyStatus
from woundcare.models import PolicySelectionRequest


@dataclass
class PolicyContext:
    content: str
    citations: List[Dict[str, Any]] = field(default_factory=list)
    selected_policy_id: Optional[str] = None
    audit: Optional[PolicySelectionAudit] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "citations": self.citations,
            "selected_policy_id": self.selected_policy_id,
            "audit": self.audit.to_dict() if self.audit else None,
        }


def build_policy_context(
    selection: PolicySelectionResult,
    request: PolicySelectionRequest,
) -> PolicyContext:
    policy, audit = selection.policy, selection.audit

    if policy is None:
        reason = f" ({audit.selected_reason})" if audit.fallback_used else ""
        content = (
            f"No specific LCD policies found for jurisdiction {request.jurisdiction} and wound type "
            f"\"{request.wound_type}\"{reason}. General Medicare coverage principles apply: "
            f"coverage may be available for medically necessary wound care treatments that meet "
            f"Medicare criteria. Refer to general Medicare guidelines and consult the MAC for "
            f"specific coverage determinations."
        )
        return PolicyContext(content=content, audit=audit)

    effective = policy.effective_date.isoformat()
    future_note = " (Effective in future)" if policy.status == PolicyStatus.FUTURE else ""
    content = (
        f"LCD: {policy.title} ({policy.policy_id})\n"
        f"MAC: {policy.jurisdiction}\n"
        f"Effective Date: {effective}\n"
        f"Status: {policy.status.value}{future_note}\n"
        f"Policy Type: {policy.policy_type or 'final'}\n"
        f"\n"
        f"Content:\n"
        f"{policy.content}"
    )
    citation = {
        "title": policy.title,
        "url": policy.url,
        "policy_id": policy.policy_id,
        "effective_date": effective,
        "jurisdiction": policy.jurisdiction,
    }
    return PolicyContext(
        content=content,
        citations=[citation],
        selected_policy_id=policy.policy_id,
        audit=audit,
    )
