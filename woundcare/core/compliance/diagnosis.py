"""
Diagnosis Code Validation

ICD-10 format checks for the episode's primary and secondary diagnoses.
Anything that fails to match is counted in telemetry by shape and
length only; free-text descriptions are never echoed back.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from woundcare.core.telemetry import TelemetrySink
from woundcare.utils import get_logger

logger = get_logger(__name__)


ICD10_PATTERN = re.compile(r"^[A-Z][0-9]{2}(\.[0-9A-Z]{1,4})?$")
ICD10_LIKE_PATTERN = re.compile(r"^[A-Za-z][0-9]{2}[.]?[0-9A-Za-z]{0,5}$")
WOUND_CODE_PREFIXES = ("L89", "L97", "L98", "E10.6", "E11.6", "E13.6")

# ── Score deductions ────────────────────────────────────────────────────
MISSING_PRIMARY_PENALTY = 30
PRIMARY_FORMAT_PENALTY = 20
SECONDARY_FORMAT_PENALTY = 10
NON_WOUND_PENALTY = 5


@dataclass
class DiagnosisValidationResult:
    is_valid: bool = True
    validation_score: int = 100
    error_messages: List[str] = field(default_factory=list)
    warning_messages: List[str] = field(default_factory=list)
    audit_trail: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "validation_score": self.validation_score,
            "error_messages": self.error_messages,
            "warning_messages": self.warning_messages,
            "audit_trail": self.audit_trail,
            "timestamp": self.timestamp.isoformat(),
        }


def is_icd10_code(value: Optional[str]) -> bool:
    return bool(value) and ICD10_PATTERN.match(value.strip()) is not None


def classify_unmatched_format(value: str) -> str:
    """Shape of a diagnosis string that failed the ICD-10 check."""
    text = value.strip()
    if ICD10_LIKE_PATTERN.match(text):
        return "icd10_like"
    if re.search(r"[A-Za-z]{3,}\s+[A-Za-z]", text):
        return "text_description"
    return "invalid_format"


def _safe_label(value: str) -> str:
    text = value.strip()
    if len(text) <= 12 and not re.search(r"\s", text):
        return text
    return "free-text entry"


def validate_diagnosis_codes(
    primary: Optional[str],
    secondaries: Optional[Sequence[str]] = None,
    telemetry: Optional[TelemetrySink] = None,
) -> DiagnosisValidationResult:
    """
    Validate primary and secondary diagnosis codes.

    Args:
        primary: Primary diagnosis (ICD-10 expected)
        secondaries: Secondary diagnoses
        telemetry: Optional sink receiving one event per unmatched diagnosis
    """
    result = DiagnosisValidationResult()
    result.audit_trail.append(f"Diagnosis code validation initiated at {result.timestamp.isoformat()}")
    primary = (primary or "").strip()
    secondaries = list(secondaries or [])

    if len(primary) < 3:
        result.error_messages.append("Primary diagnosis code is required and must be at least 3 characters")
        result.validation_score -= MISSING_PRIMARY_PENALTY
        result.is_valid = False
        if primary and telemetry is not None:
            telemetry.record_unmatched_diagnosis("primary", len(primary), classify_unmatched_format(primary))
    elif not is_icd10_code(primary):
        result.error_messages.append("Primary diagnosis does not match ICD-10 format")
        result.validation_score -= PRIMARY_FORMAT_PENALTY
        result.is_valid = False
        if telemetry is not None:
            telemetry.record_unmatched_diagnosis("primary", len(primary), classify_unmatched_format(primary))
    else:
        result.audit_trail.append(f"Primary diagnosis {primary} format validated")

    for index, code in enumerate(secondaries, start=1):
        code = (code or "").strip()
        if is_icd10_code(code):
            continue
        result.error_messages.append(
            f"Secondary diagnosis {index} ({_safe_label(code)}) does not match ICD-10 format"
        )
        result.validation_score -= SECONDARY_FORMAT_PENALTY
        if telemetry is not None:
            telemetry.record_unmatched_diagnosis("secondary", len(code), classify_unmatched_format(code))
    if secondaries:
        result.audit_trail.append(f"Validated {len(secondaries)} secondary diagnoses")

    if is_icd10_code(primary) and primary.startswith(WOUND_CODE_PREFIXES):
        result.audit_trail.append("Primary diagnosis identified as wound-related")
    else:
        result.warning_messages.append("Primary diagnosis may not be wound-related")
        result.validation_score -= NON_WOUND_PENALTY

    result.audit_trail.append(
        f"Diagnosis validation completed: {'VALID' if result.is_valid else 'INVALID'} "
        f"(score: {result.validation_score})"
    )
    logger.debug(f"Diagnosis validation: valid={result.is_valid} score={result.validation_score}")
    return result
