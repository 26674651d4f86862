"""
Coverage Gates

Binary pre-conditions for CTP coverage under Medicare LCD L39806:

  1. Wound type     – only DFU and VLU are covered indications
  2. Timeline       – at least 28 days of conservative care before CTP

Clinical note text is searched for evidence but never copied into the
returned reasons or audit entries.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from woundcare.core.compliance.base import LCD_CITATION
from woundcare.models import DiabeticStatus, EncounterRecord
from woundcare.utils import get_logger

logger = get_logger(__name__)


MIN_CONSERVATIVE_CARE_DAYS = 28

# ── CTP procedure codes ─────────────────────────────────────────────────
CTP_CODE_PATTERNS = [
    re.compile(r"^Q4[1-3]\d{2}$"),             # Q4100-Q4399 skin substitute products
    re.compile(r"^1527[1-8]$"),                # CPT 15271-15278 application
    re.compile(r"^A20(0[1-9]|1\d)$"),          # A2001-A2019
]

# ── Etiology patterns ───────────────────────────────────────────────────
DFU_PATTERNS = [
    r"\bdfu\b", r"diabetic.*foot", r"foot.*diabetic", r"diabetic.*ulcer.*foot",
    r"plantar.*ulcer", r"toe.*ulcer.*diabet", r"heel.*ulcer.*diabet",
    r"diabetic.*ulcer", r"neuropathic.*ulcer",
]
VLU_PATTERNS = [
    r"\bvlu\b", r"venous.*leg", r"leg.*venous", r"venous.*ulcer.*leg",
    r"stasis.*ulcer", r"chronic.*venous", r"lower.*leg.*ulcer",
    r"venous.*insufficiency", r"venous.*stasis",
]
PRESSURE_PATTERNS = [
    r"pressure.*ulcer", r"decubitus", r"bed.*sore", r"pressure.*sore",
    r"stage.*[1-4]", r"sacral.*ulcer", r"heel.*pressure",
]
ARTERIAL_PATTERNS = [
    r"arterial.*ulcer", r"ischemic.*ulcer", r"\bpad\b.*ulcer",
    r"peripheral.*arterial", r"arterial.*insufficiency",
]

VENOUS_EVIDENCE_KEYWORDS = [
    "venous insufficiency", "venous hypertension", "venous reflux", "varicose",
    "stasis dermatitis", "venous stasis", "chronic venous", "ceap",
    "venous duplex", "lipodermatosclerosis", "hemosiderin",
]

FOOT_SITES = ("foot", "toe", "heel", "plantar", "metatarsal")
LEG_SITES = ("leg", "ankle", "calf", "malleol", "shin")


class WoundCategory(str, Enum):
    """Wound etiology as far as coverage is concerned."""
    DIABETIC_FOOT = "diabetic-foot"
    VENOUS_LEG    = "venous-leg"
    PRESSURE      = "pressure"
    ARTERIAL      = "arterial"
    TRAUMATIC     = "traumatic"
    CHRONIC       = "chronic_wound"
    OTHER         = "other"


@dataclass
class WoundClassification:
    category: WoundCategory = WoundCategory.OTHER
    requires_offloading: bool = False
    requires_compression: bool = False
    icd10_codes: List[str] = field(default_factory=list)
    evidence_source: str = "clinical-assessment"

    @property
    def is_dfu(self) -> bool:
        return self.category == WoundCategory.DIABETIC_FOOT

    @property
    def is_vlu(self) -> bool:
        return self.category == WoundCategory.VENOUS_LEG

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "is_dfu": self.is_dfu,
            "is_vlu": self.is_vlu,
            "requires_offloading": self.requires_offloading,
            "requires_compression": self.requires_compression,
            "icd10_codes": self.icd10_codes,
            "evidence_source": self.evidence_source,
        }


@dataclass
class WoundTypeResult:
    """Outcome of the wound-type coverage gate."""
    is_valid: bool
    reason: str
    classification: WoundClassification
    policy_violation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "reason": self.reason,
            "policy_violation": self.policy_violation,
            "classification": self.classification.to_dict(),
        }


@dataclass
class TimelineResult:
    """Outcome of the conservative-care timeline gate."""
    is_valid: bool
    reason: str
    days_of_care: int = 0
    first_encounter_date: Optional[datetime] = None
    ctp_start_date: Optional[datetime] = None
    policy_violation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "reason": self.reason,
            "days_of_care": self.days_of_care,
            "first_encounter_date": (
                self.first_encounter_date.isoformat() if self.first_encounter_date else None
            ),
            "ctp_start_date": self.ctp_start_date.isoformat() if self.ctp_start_date else None,
            "policy_violation": self.policy_violation,
        }


def _matches_any(patterns: Sequence[str], text: str) -> bool:
    return any(re.search(p, text) for p in patterns)


def _site_category(site: str) -> Optional[WoundCategory]:
    if any(s in site for s in FOOT_SITES):
        return WoundCategory.DIABETIC_FOOT
    if any(s in site for s in LEG_SITES):
        return WoundCategory.VENOUS_LEG
    return None


def is_traumatic_code(code: Optional[str]) -> bool:
    """ICD-10 chapter XIX (injury) codes start with S or T."""
    return bool(code) and re.match(r"^[ST]\d", code.strip().upper()) is not None


def is_ctp_code(code: str) -> bool:
    code = code.strip().upper()
    return any(p.match(code) for p in CTP_CODE_PATTERNS)


def classify_wound(
    description: Optional[str],
    diagnosis_code: Optional[str] = None,
    location: Optional[str] = None,
) -> WoundClassification:
    """
    Classify a wound from its ICD-10 code, falling back to the description.

    The code wins when it is specific; L97 (non-pressure chronic ulcer)
    is resolved by anatomical site.
    """
    result = WoundClassification()
    code = (diagnosis_code or "").strip().upper()
    site = (location or "").lower()

    if code:
        result.icd10_codes.append(code)
        result.evidence_source = "icd10-primary"
        if code.startswith(("E10.6", "E11.6", "E13.6")):
            result.category = WoundCategory.DIABETIC_FOOT
        elif code.startswith(("I83.0", "I83.2", "I87")):
            result.category = WoundCategory.VENOUS_LEG
        elif code.startswith("L89"):
            result.category = WoundCategory.PRESSURE
        elif code.startswith("L97"):
            result.category = _site_category(site) or WoundCategory.CHRONIC
        elif code.startswith("L98.4"):
            result.category = WoundCategory.CHRONIC
        elif code.startswith("I70.2"):
            result.category = WoundCategory.ARTERIAL
        elif is_traumatic_code(code):
            result.category = WoundCategory.TRAUMATIC
        else:
            result.evidence_source = "clinical-assessment"

    if result.category == WoundCategory.OTHER and description:
        result.evidence_source = "wound-type-field"
        text = description.lower()
        if "full-thickness" in text or "full thickness" in text:
            if "ulcer" in text or "wound" in text:
                result.category = _site_category(site) or _site_category(text) or WoundCategory.CHRONIC

        if result.category == WoundCategory.OTHER:
            if _matches_any(DFU_PATTERNS, text):
                result.category = WoundCategory.DIABETIC_FOOT
            elif _matches_any(VLU_PATTERNS, text):
                result.category = WoundCategory.VENOUS_LEG
            elif _matches_any(PRESSURE_PATTERNS, text):
                result.category = WoundCategory.PRESSURE
            elif _matches_any(ARTERIAL_PATTERNS, text):
                result.category = WoundCategory.ARTERIAL
            else:
                result.category = WoundCategory.CHRONIC

    result.requires_offloading = result.category == WoundCategory.DIABETIC_FOOT
    result.requires_compression = result.category == WoundCategory.VENOUS_LEG
    return result


def _has_venous_evidence(code: str, texts: Iterable[str]) -> bool:
    if code.startswith(("I87.2", "I83")):
        return True
    return any(kw in t.lower() for t in texts for kw in VENOUS_EVIDENCE_KEYWORDS)


def validate_wound_type_for_coverage(
    description: Optional[str],
    diagnosis_code: Optional[str] = None,
    note_keywords: Optional[Sequence[str]] = None,
    diabetic_status: Union[DiabeticStatus, str, None] = DiabeticStatus.UNKNOWN,
    location: Optional[str] = None,
) -> WoundTypeResult:
    """
    Check that the wound is a covered indication (DFU or VLU).

    Args:
        description: Documented wound type / description
        diagnosis_code: Primary ICD-10 code, if any
        note_keywords: Note text searched for venous-insufficiency evidence
        diabetic_status: Patient diabetic status
        location: Anatomical site, used to resolve L97 codes
    """
    code = (diagnosis_code or "").strip().upper()
    status = DiabeticStatus.parse(diabetic_status)
    notes = list(note_keywords or [])

    # ── Rule 1: traumatic wounds are excluded outright ─────────────────
    if is_traumatic_code(code):
        classification = WoundClassification(
            category=WoundCategory.TRAUMATIC, icd10_codes=[code], evidence_source="icd10-primary"
        )
        return WoundTypeResult(
            is_valid=False,
            reason=f"Diagnosis code {code} indicates a traumatic wound, which is not a covered indication",
            classification=classification,
            policy_violation=f"{LCD_CITATION} covers only DFU and VLU; traumatic wounds are excluded",
        )

    classification = classify_wound(description, code or None, location)

    # ── Rule 2: DFU requires a diabetic patient ────────────────────────
    if classification.is_dfu:
        if status == DiabeticStatus.NONDIABETIC:
            return WoundTypeResult(
                is_valid=False,
                reason="DFU classification conflicts with confirmed non-diabetic status",
                classification=classification,
                policy_violation=f"DFU diagnosis requires diabetic patient ({LCD_CITATION})",
            )
        reason = "DFU meets Medicare LCD covered indication"
        if status == DiabeticStatus.UNKNOWN:
            reason += " (diabetic status not documented)"
        return WoundTypeResult(is_valid=True, reason=reason, classification=classification)

    # ── Rule 3: VLU requires documented venous insufficiency ───────────
    if classification.is_vlu:
        texts = notes + ([description] if description else [])
        if _has_venous_evidence(code, texts):
            return WoundTypeResult(
                is_valid=True,
                reason="VLU meets Medicare LCD covered indication",
                classification=classification,
            )
        return WoundTypeResult(
            is_valid=False,
            reason="VLU classification lacks documented venous insufficiency",
            classification=classification,
            policy_violation=f"VLU coverage requires documented venous insufficiency ({LCD_CITATION})",
        )

    # ── Rule 4: everything else is outside the covered indications ─────
    return WoundTypeResult(
        is_valid=False,
        reason=f"Wound category '{classification.category.value}' is not a covered indication",
        classification=classification,
        policy_violation=f"{LCD_CITATION} covers only DFU and VLU",
    )


def _coerce_encounter(encounter: Union[EncounterRecord, Dict[str, Any]]) -> EncounterRecord:
    if isinstance(encounter, EncounterRecord):
        return encounter
    return EncounterRecord.model_validate(encounter)


def validate_conservative_care_timeline(
    encounters: Sequence[Union[EncounterRecord, Dict[str, Any]]],
) -> TimelineResult:
    """
    Measure documented conservative care before the first CTP application.

    The window runs from the earliest dated encounter to the first
    encounter billing a CTP code, or to the latest encounter when no CTP
    has been applied yet.
    """
    records = [_coerce_encounter(e) for e in encounters]
    dated = sorted((e for e in records if e.date is not None), key=lambda e: e.date)

    if not dated:
        return TimelineResult(
            is_valid=False,
            reason="Incomplete data: no dated encounters to establish conservative care",
            policy_violation=(
                f"{LCD_CITATION} requires minimum {MIN_CONSERVATIVE_CARE_DAYS} days "
                f"of documented conservative care"
            ),
        )

    first = dated[0].date
    ctp_encounter = next(
        (e for e in dated if any(is_ctp_code(pc.code) for pc in e.procedure_codes)),
        None,
    )
    end = ctp_encounter.date if ctp_encounter else dated[-1].date
    days = int(round((end - first).total_seconds() / 86400.0))

    result = TimelineResult(
        is_valid=days >= MIN_CONSERVATIVE_CARE_DAYS,
        reason="",
        days_of_care=days,
        first_encounter_date=first,
        ctp_start_date=ctp_encounter.date if ctp_encounter else None,
    )
    if result.is_valid:
        result.reason = "Conservative care timeline meets requirements"
    else:
        anchor = "before CTP application" if ctp_encounter else "to date"
        result.reason = f"Conservative care period insufficient: only {days} days documented {anchor}"
        result.policy_violation = (
            f"{LCD_CITATION} requires minimum {MIN_CONSERVATIVE_CARE_DAYS} days "
            f"of documented conservative care"
        )
    logger.debug(f"Timeline gate: {days} days of care, valid={result.is_valid}")
    return result
