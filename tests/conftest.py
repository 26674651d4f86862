"""
Pytest Configuration and Fixtures

Shared fixtures for coverage engine tests.
"""
import pytest
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from woundcare.core.policy import PolicyCandidate, PolicyStatus
from woundcare.core.telemetry import InMemoryTelemetrySink


BASE_TIME = datetime(2024, 7, 1, 9, 0, tzinfo=timezone.utc)

WOUND_CARE_TEXT = (
    "Skin substitute grafts and cellular and tissue-based products are covered for "
    "diabetic foot ulcers and venous leg ulcers that fail to heal after four weeks of "
    "standard wound care. "
)


def wound_care_content(repeat: int = 12) -> str:
    """Policy body long enough to pass the placeholder filter."""
    return WOUND_CARE_TEXT * repeat


class InMemoryPolicyStore:
    """Policy store backed by a plain list."""

    def __init__(self, policies: Optional[List[PolicyCandidate]] = None):
        self.policies = list(policies or [])
        self.calls: List[Dict[str, Any]] = []

    async def get_current_and_future_policies_by_mac(
        self, jurisdiction: str, days_ahead: int
    ) -> List[PolicyCandidate]:
        self.calls.append({"jurisdiction": jurisdiction, "days_ahead": days_ahead})
        return [p for p in self.policies if p.jurisdiction == jurisdiction]


class FailingPolicyStore:
    """Policy store whose reads always fail."""

    async def get_current_and_future_policies_by_mac(self, jurisdiction: str, days_ahead: int):
        raise ConnectionError("policy database unavailable")


def make_policy(
    policy_id: str,
    status: PolicyStatus = PolicyStatus.CURRENT,
    effective: date = date(2025, 2, 12),
    title: str = "Skin Substitute Grafts for Diabetic Foot Ulcers and Venous Leg Ulcers",
    content: Optional[str] = None,
    jurisdiction: str = "J",
    superseded_by: Optional[str] = None,
) -> PolicyCandidate:
    return PolicyCandidate(
        jurisdiction=jurisdiction,
        policy_id=policy_id,
        title=title,
        status=status,
        effective_date=effective,
        content=wound_care_content() if content is None else content,
        superseded_by=superseded_by,
        url=f"https://www.cms.gov/medicare-coverage-database/view/lcd.aspx?lcdid={policy_id}",
    )


@pytest.fixture
def measurement_factory():
    """Build measurement dicts relative to BASE_TIME."""
    def _make(
        mid: str,
        day: float,
        length: Optional[float] = 4.0,
        width: Optional[float] = 3.0,
        depth: Optional[float] = None,
        unit: str = "cm",
        status: Optional[str] = "validated",
    ) -> Dict[str, Any]:
        return {
            "id": mid,
            "timestamp": BASE_TIME + timedelta(days=day),
            "length": length,
            "width": width,
            "depth": depth,
            "unit": unit,
            "validation_status": status,
        }
    return _make


@pytest.fixture
def depth_series(measurement_factory):
    """Weekly depth readings in mm, all with a fixed 4 x 3 cm footprint."""
    def _make(depths_mm: List[float], status: str = "validated", interval_days: float = 7.0):
        return [
            measurement_factory(
                f"m{i}", i * interval_days, length=40.0, width=30.0,
                depth=d, unit="mm", status=status,
            )
            for i, d in enumerate(depths_mm)
        ]
    return _make


@pytest.fixture
def telemetry() -> InMemoryTelemetrySink:
    """Fresh telemetry sink."""
    return InMemoryTelemetrySink()


@pytest.fixture
def fixed_today() -> date:
    """Selection clock date."""
    return date(2025, 3, 1)


@pytest.fixture
def policy_store() -> InMemoryPolicyStore:
    """Store holding the current L39806 policy and a proposed revision."""
    return InMemoryPolicyStore([
        make_policy("L39806"),
        make_policy("DL39999", status=PolicyStatus.PROPOSED, effective=date(2025, 1, 1)),
    ])
