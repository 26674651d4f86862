"""
Advisory Thresholds & Clinical Evidence

Reference tables for depth/volume progression alerts. Every threshold
here drives ADVISORY output only; none of it is read by the coverage
evaluators.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict


class AlertTier(str, Enum):
    """Advisory alert urgency tiers, lowest first."""
    MINOR    = "minor"
    MODERATE = "moderate"
    URGENT   = "urgent"
    CRITICAL = "critical"

    @property
    def alert_type(self) -> str:
        return _ALERT_TYPES[self]

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    @classmethod
    def parse(cls, value: Any) -> "AlertTier":
        """Accept a tier (``urgent``) or its alert type (``urgent_clinical_review``)."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for tier, alert_type in _ALERT_TYPES.items():
            if key in (tier.value, alert_type):
                return tier
        raise ValueError(f"Unknown alert type: {value!r}")


_ALERT_TYPES = {
    AlertTier.MINOR:    "minor_concern",
    AlertTier.MODERATE: "moderate_concern",
    AlertTier.URGENT:   "urgent_clinical_review",
    AlertTier.CRITICAL: "critical_intervention",
}
_TIER_ORDER = [AlertTier.MINOR, AlertTier.MODERATE, AlertTier.URGENT, AlertTier.CRITICAL]


CLINICAL_THRESHOLDS: Dict[str, Dict[str, Any]] = {
    "DEPTH_PROGRESSION": {
        # weekly rate of depth increase (mm/week)
        "MINOR_CONCERN_RATE": 0.5,
        "MODERATE_CONCERN_RATE": 1.0,
        "CRITICAL_RATE": 2.0,
        # absolute increase over a two-week span (mm)
        "IMMEDIATE_ATTENTION_2WEEK": 2.0,
        "URGENT_2WEEK": 3.0,
        "CRITICAL_CONCERN_2WEEK": 5.0,
    },
    "VOLUME_EXPANSION": {
        # percent increase over four weeks
        "MINOR_INCREASE_PERCENT": 20.0,
        "MODERATE_INCREASE_PERCENT": 35.0,
        "CRITICAL_INCREASE_PERCENT": 50.0,
        "WINDOW_DAYS": 28,
    },
    "CONFIDENCE": {
        "MIN_MEASUREMENTS": {
            AlertTier.MINOR: 2,
            AlertTier.MODERATE: 3,
            AlertTier.URGENT: 3,
            AlertTier.CRITICAL: 4,
        },
        "MIN_CONFIDENCE": {
            AlertTier.MINOR: 0.50,
            AlertTier.MODERATE: 0.50,
            AlertTier.URGENT: 0.60,
            AlertTier.CRITICAL: 0.75,
        },
        "MIN_CONSECUTIVE_CONFIRMATIONS": 2,
    },
    "QUALITY": {
        "MIN_QUALITY": {
            AlertTier.MINOR: 0.50,
            AlertTier.MODERATE: 0.50,
            AlertTier.URGENT: 0.70,
            AlertTier.CRITICAL: 0.80,
        },
    },
    "SAFETY_OVERRIDE": {
        "ACUTE_INCREASE_MM": 5.0,
        "MAX_INTERVAL_DAYS": 7,
    },
}

# Weekly rate (mm/week) an interval must reach to confirm a tier's trend.
TIER_WEEKLY_RATES: Dict[AlertTier, float] = {
    AlertTier.MINOR: CLINICAL_THRESHOLDS["DEPTH_PROGRESSION"]["MINOR_CONCERN_RATE"],
    AlertTier.MODERATE: CLINICAL_THRESHOLDS["DEPTH_PROGRESSION"]["MODERATE_CONCERN_RATE"],
    AlertTier.URGENT: CLINICAL_THRESHOLDS["DEPTH_PROGRESSION"]["URGENT_2WEEK"] / 2.0,
    AlertTier.CRITICAL: CLINICAL_THRESHOLDS["DEPTH_PROGRESSION"]["CRITICAL_RATE"],
}


CLINICAL_EVIDENCE: Dict[str, Any] = {
    "DEPTH_PROGRESSION": {
        "guidelineReferences": [
            {
                "organization": "International Working Group on the Diabetic Foot (IWGDF)",
                "guideline": "IWGDF 2023 Guidelines on the prevention and management of diabetes-related foot disease",
                "recommendation": "Reassess wound depth at every visit; increasing depth indicates treatment failure",
            },
            {
                "organization": "Wound Healing Society (WHS)",
                "guideline": "WHS Guidelines for the treatment of diabetic and venous ulcers",
                "recommendation": "Depth increase of more than 2mm over 2-week period warrants clinical review",
            },
        ],
        "evidenceBasis": [
            {"pmid": "PMID: 33844426", "finding": "Depth progression predicts delayed healing in DFU"},
            {"pmid": "PMID: 32418335", "finding": "Serial depth measurement improves early deterioration detection"},
        ],
    },
    "VOLUME_EXPANSION": {
        "guidelineReferences": [
            {
                "organization": "Wound Healing Society (WHS)",
                "guideline": "WHS wound assessment guidance",
                "recommendation": "Volume increase above 20% over four weeks indicates wound deterioration",
            },
        ],
        "evidenceBasis": [
            {"pmid": "PMID: 32418335", "finding": "Volumetric change tracks healing trajectory more closely than area"},
        ],
    },
    "MEDICARE_LCD": {
        "policyReferences": [
            {
                "policy": "Local Coverage Determination (LCD) L39806",
                "jurisdiction": "Palmetto GBA Jurisdiction J",
                "complianceNote": "All depth/volume alerts maintain advisory status only",
            },
        ],
    },
}


ANATOMICAL_REFERENCE_DATA: Dict[str, Dict[str, Any]] = {
    "TISSUE_THICKNESS": {
        "foot":    {"min": 15.0, "max": 25.0, "source": "Diabetic foot anatomy studies"},
        "heel":    {"min": 20.0, "max": 30.0, "source": "Heel pad thickness literature"},
        "toe":     {"min": 5.0,  "max": 12.0, "source": "Digital soft tissue measurements"},
        "ankle":   {"min": 8.0,  "max": 18.0, "source": "Malleolar soft tissue studies"},
        "leg":     {"min": 10.0, "max": 25.0, "source": "Lower leg soft tissue ultrasound studies"},
        "sacrum":  {"min": 15.0, "max": 35.0, "source": "Sacral pressure injury literature"},
        "default": {"min": 10.0, "max": 30.0, "source": "General soft tissue reference ranges"},
    },
    "WEIGHT_BEARING_SITES": ["foot", "heel", "toe"],
}


def tissue_reference(location: str) -> Dict[str, Any]:
    """Thickness range for the closest matching anatomical site."""
    table = ANATOMICAL_REFERENCE_DATA["TISSUE_THICKNESS"]
    site = (location or "").lower()
    # most specific first: "heel of foot" is a heel
    for key in ("heel", "toe", "ankle", "sacrum", "foot", "leg"):
        if key in site:
            return {"site": key, **table[key]}
    if any(s in site for s in ("plantar", "metatarsal")):
        return {"site": "foot", **table["foot"]}
    if any(s in site for s in ("calf", "shin")):
        return {"site": "leg", **table["leg"]}
    return {"site": "default", **table["default"]}
